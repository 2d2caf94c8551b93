"""
节点 Agent 主循环

每个节点运行一个 Agent (由 DaemonSet 部署),职责:
1. 找出指向本节点的 NodeCheck (spec.nodeName 为空时认领并回写本节点名)
2. 按 checkInterval 判断是否到期
3. 并发执行开启的探针,组装 ResultBundle
4. 汇总整体状态,写回 status 子资源,并保存本地快照
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from filelock import Timeout

from ..aggregator.metrics import AgentMetrics
from ..aggregator.rollup import rollup_bundle
from ..collectors.cluster_api import ClusterApi
from ..collectors.models import parse_timestamp
from ..collectors.nodecheck import NodeCheck
from ..utils.errors import DiagnosticErrorCode, OrchestrationAPIError, ValidationError
from ..utils.retry import retry_on_k8s_error
from .executor import ProbeExecutor, build_bundle
from .registry import enabled_probes
from .state import SnapshotStore

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 30.0


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _rfc3339(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class NodeCheckAgent:
    """单节点的检查 Agent

    Example:
        agent = NodeCheckAgent("worker-1", "node-check-operator-system",
                               api=ClusterApi(), executor=ProbeExecutor("worker-1"))
        await agent.run_forever()
    """

    def __init__(
        self,
        node_name: str,
        namespace: str,
        api: Optional[ClusterApi] = None,
        executor: Optional[ProbeExecutor] = None,
        store: Optional[SnapshotStore] = None,
        metrics: Optional[AgentMetrics] = None,
        clock: Callable[[], datetime] = _utc_now,
    ):
        if not node_name:
            raise ValidationError(
                "node name is required (set NODE_NAME or --node-name)", field="node_name"
            )
        self.node_name = node_name
        self.namespace = namespace
        self.api = api or ClusterApi()
        self.executor = executor or ProbeExecutor(node_name)
        self.store = store
        self.metrics = metrics
        self.clock = clock
        # 最近一次完整处理列表的时间,/readyz 据此判断就绪
        self.last_pass: Optional[datetime] = None

    def targets_this_node(self, nodecheck: NodeCheck) -> bool:
        return nodecheck.spec.node_name == self.node_name

    def is_due(self, nodecheck: NodeCheck, now: Optional[datetime] = None) -> bool:
        """距上次检查是否已超过 checkInterval"""
        last = parse_timestamp(nodecheck.last_check_time)
        if last is None:
            return True
        now = now or self.clock()
        elapsed = (now - last).total_seconds()
        return elapsed >= nodecheck.spec.interval_minutes * 60

    async def claim(self, nodecheck: NodeCheck) -> NodeCheck:
        """spec.nodeName 为空时把本节点名写回 spec

        patch 携带列表时的 resourceVersion,其他节点先一步认领时以 CONFLICT 失败。

        Raises:
            OrchestrationAPIError: 写回失败 (含 CONFLICT)
        """
        spec = nodecheck.spec.model_copy(update={"node_name": self.node_name})
        await self.api.update_nodecheck_spec(
            nodecheck.name, nodecheck.namespace, {"nodeName": self.node_name},
            resource_version=nodecheck.resource_version or None,
        )
        logger.info("NodeCheck %s/%s 未指定节点,已认领为 %s",
                    nodecheck.namespace, nodecheck.name, self.node_name)
        return nodecheck.model_copy(update={"spec": spec})

    async def check(self, nodecheck: NodeCheck) -> Dict:
        """执行一次检查并返回要写入的 status"""
        probes = enabled_probes(nodecheck.spec)
        logger.info("开始检查 %s: %d 个探针", nodecheck.name, len(probes))

        results = await self.executor.run(probes)
        bundle = build_bundle(results, flatten=True)
        overall, message = rollup_bundle(bundle)

        return {
            "nodeName": self.node_name,
            "overallStatus": overall.value,
            "message": message,
            "lastCheckTime": _rfc3339(self.clock()),
            "checkResults": bundle,
        }

    async def process(self, nodecheck: NodeCheck, force: bool = False) -> Optional[Dict]:
        """处理单个 NodeCheck

        Args:
            nodecheck: NodeCheck 资源
            force: 忽略检查间隔

        Returns:
            写入的 status,跳过时返回 None

        Raises:
            OrchestrationAPIError: 回写 spec 或 status 失败
        """
        if nodecheck.deletion_timestamp or nodecheck.is_wildcard:
            return None

        if not nodecheck.spec.node_name:
            try:
                nodecheck = await self.claim(nodecheck)
            except OrchestrationAPIError as e:
                if e.code != DiagnosticErrorCode.CONFLICT:
                    raise
                logger.info("NodeCheck %s 已被其他节点认领,跳过", nodecheck.name)
                return None
        if not self.targets_this_node(nodecheck):
            return None

        if not force and not self.is_due(nodecheck):
            logger.debug("NodeCheck %s 未到检查时间,跳过", nodecheck.name)
            return None

        status = await self.check(nodecheck)
        await self.api.update_nodecheck_status(nodecheck.name, nodecheck.namespace, status)
        logger.info("NodeCheck %s 检查完成: %s - %s",
                    nodecheck.name, status["overallStatus"], status["message"])
        if self.metrics:
            self.metrics.record_check(nodecheck.name, status["overallStatus"])

        if self.store:
            try:
                self.store.save({"name": nodecheck.name, "namespace": nodecheck.namespace,
                                 "status": status})
            except (OSError, Timeout) as e:
                logger.warning("本地快照保存失败 %s: %s", self.store.path, e)
        return status

    async def run_once(self, force: bool = False) -> List[str]:
        """处理命名空间中的全部 NodeCheck

        单个 NodeCheck 处理失败只记录日志,不影响其他 NodeCheck。

        Returns:
            本轮完成检查的 NodeCheck 名称
        """
        nodechecks = await self.api.list_nodechecks(self.namespace)
        processed = []
        for nodecheck in nodechecks:
            try:
                status = await self.process(nodecheck, force=force)
            except OrchestrationAPIError as e:
                logger.error("NodeCheck %s 处理失败: %s", nodecheck.name, e)
                self._record_failure()
                continue
            except Exception:
                logger.exception("NodeCheck %s 处理时出现未预期的错误", nodecheck.name)
                self._record_failure()
                continue
            if status is not None:
                processed.append(nodecheck.name)
        self.last_pass = self.clock()
        return processed

    def _record_failure(self):
        if self.metrics:
            self.metrics.record_failure()

    def is_ready(self) -> bool:
        return self.last_pass is not None

    async def run_forever(self, poll_interval: float = DEFAULT_POLL_INTERVAL):
        """周期执行 run_once;列表失败按指数退避重试,重试耗尽后等待下一轮"""

        @retry_on_k8s_error(max_attempts=3)
        async def list_and_process():
            return await self.run_once()

        logger.info("Agent 已启动: node=%s namespace=%s", self.node_name, self.namespace)
        while True:
            try:
                await list_and_process()
            except OrchestrationAPIError as e:
                logger.error("本轮检查失败: %s", e)
            await asyncio.sleep(poll_interval)
