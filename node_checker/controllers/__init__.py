"""
控制器模块 - 通配扇出、Agent DaemonSet 放置
"""

from .daemonset import build_daemonset, diff_daemonset, merge_constraints
from .fanout import FanoutController
from .placement import AgentPlacementController
from .manager import ControllerManager

__all__ = [
    "build_daemonset",
    "diff_daemonset",
    "merge_constraints",
    "FanoutController",
    "AgentPlacementController",
    "ControllerManager",
]
