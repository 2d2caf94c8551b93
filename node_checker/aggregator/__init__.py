"""
汇总模块 - 状态汇总、数值提取与 Prometheus 指标
"""

from .rollup import fleet_stats, rollup_bundle, summarize_request
from .extract import extract_node_metrics
from .metrics import AgentMetrics, NodeCheckMetrics

__all__ = [
    "fleet_stats",
    "rollup_bundle",
    "summarize_request",
    "extract_node_metrics",
    "NodeCheckMetrics",
    "AgentMetrics",
]
