"""
Agent 模块 - 探针注册表与执行池

NodeCheckAgent 见 agent.loop。
"""

from .registry import PROBES, ProbeSpec, enabled_probes, find_probe
from .executor import ProbeExecutor, build_bundle

__all__ = [
    "PROBES",
    "ProbeSpec",
    "enabled_probes",
    "find_probe",
    "ProbeExecutor",
    "build_bundle",
]
