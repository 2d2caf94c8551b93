"""
收集器模块 - 宿主机命令、/proc 读取、集群 API 与结果模型
"""

from .k8s_client import get_k8s_client, KubectlWrapper, items_of
from .cache import K8sCache, get_cache, reset_cache
from .cluster_api import ClusterApi
from .host_runner import CommandOutcome, HostCommandRunner
from .models import (
    CheckResult,
    CheckStatus,
    worst_status,
    CATEGORY_SYSTEM,
    CATEGORY_HARDWARE,
    CATEGORY_DISK,
    CATEGORY_NETWORK,
    CATEGORY_KUBERNETES,
)
from .nodecheck import NodeCheck, NodeCheckSpec, Toleration, is_wildcard_node

__all__ = [
    # K8s 客户端
    "get_k8s_client",
    "KubectlWrapper",
    "items_of",
    "ClusterApi",
    # 缓存
    "K8sCache",
    "get_cache",
    "reset_cache",
    # 命令执行
    "CommandOutcome",
    "HostCommandRunner",
    # 模型
    "CheckResult",
    "CheckStatus",
    "worst_status",
    "CATEGORY_SYSTEM",
    "CATEGORY_HARDWARE",
    "CATEGORY_DISK",
    "CATEGORY_NETWORK",
    "CATEGORY_KUBERNETES",
    "NodeCheck",
    "NodeCheckSpec",
    "Toleration",
    "is_wildcard_node",
]
