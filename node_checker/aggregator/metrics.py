"""
Prometheus 指标

- NodeCheckMetrics: 控制器侧的集群汇总。所有 Gauge 注册在独立的 CollectorRegistry 中,
  每次刷新先清空再写入,没有取到数值的 (节点, 指标) 组合直接省略。
- AgentMetrics: 节点 Agent 自身的检查与回写情况。
"""

import logging
import time
from typing import Dict, Iterable, List, Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, generate_latest, start_http_server

from ..collectors.nodecheck import NodeCheck
from ..collectors.models import CheckStatus
from .extract import extract_node_metrics
from .rollup import fleet_stats

logger = logging.getLogger(__name__)

# extract_node_metrics 的键 -> (指标名, 说明)
_NODE_GAUGES = {
    "temperature": ("nodecheck_temperature_celsius", "Average temperature in Celsius for a node"),
    "cpu_usage": ("nodecheck_cpu_usage_percent", "CPU usage percentage for a node"),
    "memory_usage": ("nodecheck_memory_usage_percent", "Memory usage percentage for a node"),
    "uptime": ("nodecheck_uptime_seconds", "System uptime in seconds for a node"),
    "load_1m": ("nodecheck_load_average_1m", "1-minute load average for a node"),
    "load_5m": ("nodecheck_load_average_5m", "5-minute load average for a node"),
    "load_15m": ("nodecheck_load_average_15m", "15-minute load average for a node"),
}


class NodeCheckMetrics:
    """NodeCheck 汇总指标

    Example:
        metrics = NodeCheckMetrics()
        metrics.update(await api.list_nodechecks())
        metrics.serve(8080)
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or CollectorRegistry()

        self.node_status = Gauge(
            "nodecheck_node_status_total",
            "Number of NodeCheck resources per overall node status",
            ["status"], registry=self.registry,
        )
        self.nodechecks_total = Gauge(
            "nodecheck_nodechecks_total",
            "Total number of NodeCheck resources monitored",
            registry=self.registry,
        )
        self.check_status = Gauge(
            "nodecheck_check_status_total",
            "Aggregated number of check results per category, check name and status",
            ["category", "check", "status"], registry=self.registry,
        )
        self.last_update = Gauge(
            "nodecheck_stats_last_update_timestamp_seconds",
            "Unix timestamp of the last stats refresh",
            registry=self.registry,
        )
        self.node_gauges: Dict[str, Gauge] = {
            key: Gauge(name, doc, ["node"], registry=self.registry)
            for key, (name, doc) in _NODE_GAUGES.items()
        }

    def _clear(self):
        self.node_status.clear()
        self.check_status.clear()
        for gauge in self.node_gauges.values():
            gauge.clear()

    def update(self, nodechecks: Iterable[NodeCheck], now: Optional[float] = None) -> Dict:
        """用最新的 NodeCheck 列表刷新全部指标

        Returns:
            本次计算的 fleet_stats 结果
        """
        nodechecks: List[NodeCheck] = list(nodechecks)
        stats = fleet_stats(nodechecks)

        self._clear()
        self.nodechecks_total.set(stats["totalNodeChecks"])
        self.node_status.labels(status=CheckStatus.HEALTHY.value).set(stats["healthyNodes"])
        self.node_status.labels(status=CheckStatus.WARNING.value).set(stats["warningNodes"])
        self.node_status.labels(status=CheckStatus.CRITICAL.value).set(stats["criticalNodes"])
        self.node_status.labels(status=CheckStatus.UNKNOWN.value).set(stats["unknownNodes"])

        for check in stats["checks"]:
            for status, field in (
                (CheckStatus.HEALTHY, "healthyCount"),
                (CheckStatus.WARNING, "warningCount"),
                (CheckStatus.CRITICAL, "criticalCount"),
                (CheckStatus.UNKNOWN, "unknownCount"),
            ):
                self.check_status.labels(
                    category=check["category"], check=check["name"], status=status.value,
                ).set(check[field])

        for nc in nodechecks:
            if nc.is_wildcard:
                continue
            node = nc.spec.node_name or nc.name
            for key, value in extract_node_metrics(nc.check_results).items():
                if value is not None:
                    self.node_gauges[key].labels(node=node).set(value)

        self.last_update.set(time.time() if now is None else now)
        logger.debug("指标已刷新: %d 个 NodeCheck", stats["totalNodeChecks"])
        return stats

    def render(self) -> bytes:
        """Prometheus 文本格式"""
        return generate_latest(self.registry)

    def serve(self, port: int, addr: str = "0.0.0.0"):
        """在后台线程中暴露 /metrics"""
        start_http_server(port, addr=addr, registry=self.registry)
        logger.info("指标服务已启动: %s:%d", addr, port)


class AgentMetrics:
    """节点 Agent 指标

    Example:
        metrics = AgentMetrics()
        metrics.serve(8080)
        metrics.record_check("worker-1-check", "Healthy")
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or CollectorRegistry()

        self.last_check = Gauge(
            "nodecheck_agent_last_check_timestamp_seconds",
            "Unix timestamp of the last completed check per NodeCheck",
            ["nodecheck"], registry=self.registry,
        )
        self.overall_status = Gauge(
            "nodecheck_agent_overall_status",
            "Overall status of the last check per NodeCheck (1 for the current status)",
            ["nodecheck", "status"], registry=self.registry,
        )
        self.failures = Counter(
            "nodecheck_agent_processing_failures",
            "Number of NodeCheck requests that could not be processed",
            registry=self.registry,
        )

    def record_check(self, nodecheck: str, overall: str, now: Optional[float] = None):
        self.last_check.labels(nodecheck=nodecheck).set(time.time() if now is None else now)
        for status in CheckStatus:
            self.overall_status.labels(nodecheck=nodecheck, status=status.value).set(
                1 if status.value == overall else 0
            )

    def record_failure(self):
        self.failures.inc()

    def render(self) -> bytes:
        return generate_latest(self.registry)

    def serve(self, port: int, addr: str = "0.0.0.0"):
        start_http_server(port, addr=addr, registry=self.registry)
        logger.info("Agent 指标服务已启动: %s:%d", addr, port)
