"""
检查器模块 - 各类节点探针

每个检查器持有一组命名探针,探针签名统一为 async def check_xxx(self) -> CheckResult。
"""

from .base import BaseChecker, EventWindow
from .system import SystemChecker
from .hardware import HardwareChecker
from .disk import DiskChecker
from .network import NetworkChecker
from .kubernetes import KubernetesChecker

__all__ = [
    "BaseChecker",
    "EventWindow",
    "SystemChecker",
    "HardwareChecker",
    "DiskChecker",
    "NetworkChecker",
    "KubernetesChecker",
]
