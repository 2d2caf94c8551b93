"""
探针执行池

- 通过信号量限制并发,每个探针有独立的超时
- 超时降级为 Warning,意外异常降级为 Unknown
- 单个探针失败不影响其他探针
"""

import asyncio
import logging
import time
from typing import Dict, List, Optional, Tuple

from ..checks import (
    DiskChecker,
    HardwareChecker,
    KubernetesChecker,
    NetworkChecker,
    SystemChecker,
)
from ..collectors.host_runner import HostCommandRunner
from ..collectors.k8s_client import KubectlWrapper
from ..collectors.models import CheckResult, CheckStatus, bundle_put, empty_bundle
from .registry import DISK, HARDWARE, KUBERNETES, NETWORK, SYSTEM, ProbeSpec

logger = logging.getLogger(__name__)

DEFAULT_PROBE_TIMEOUT = 60.0
DEFAULT_MAX_WORKERS = 8


class ProbeExecutor:
    """持有各检查器实例并并发执行探针

    检查器在 Agent 生命周期内复用,事件窗口因此能跨多轮检查累积。

    Example:
        executor = ProbeExecutor("worker-1", max_workers=4)
        results = await executor.run(enabled_probes(spec))
    """

    def __init__(
        self,
        node_name: str,
        runner: Optional[HostCommandRunner] = None,
        client: Optional[KubectlWrapper] = None,
        max_workers: int = DEFAULT_MAX_WORKERS,
        probe_timeout: float = DEFAULT_PROBE_TIMEOUT,
        checkers: Optional[Dict[str, object]] = None,
    ):
        """
        Args:
            node_name: 节点名
            runner: 宿主机命令执行器
            client: kubectl 客户端 (集群层探针使用)
            max_workers: 最大并发探针数
            probe_timeout: 单个探针超时 (秒)
            checkers: 预先构造的检查器 (测试时注入)
        """
        self.node_name = node_name
        self.max_workers = max(1, max_workers)
        self.probe_timeout = probe_timeout
        self.runner = runner or HostCommandRunner()
        self._client = client
        self._checkers: Dict[str, object] = dict(checkers or {})

    def checker(self, name: str):
        """按名称获取检查器,首次使用时创建"""
        if name not in self._checkers:
            self._checkers[name] = self._build_checker(name)
        return self._checkers[name]

    def _build_checker(self, name: str):
        if name == SYSTEM:
            return SystemChecker(self.node_name, self.runner)
        if name == HARDWARE:
            return HardwareChecker(self.node_name, self.runner)
        if name == DISK:
            return DiskChecker(self.node_name, self.runner)
        if name == NETWORK:
            return NetworkChecker(self.node_name, self.runner)
        if name == KUBERNETES:
            return KubernetesChecker(self.node_name, client=self._client, runner=self.runner)
        raise KeyError(f"unknown checker: {name}")

    async def run_probe(self, probe: ProbeSpec) -> CheckResult:
        """执行单个探针,永不抛出异常 (取消除外)"""
        started = time.monotonic()
        try:
            method = getattr(self.checker(probe.checker), probe.method)
            result = await asyncio.wait_for(method(), timeout=self.probe_timeout)
        except asyncio.TimeoutError:
            logger.warning("探针超时: %s (%.0fs)", probe.key, self.probe_timeout)
            result = CheckResult(
                status=CheckStatus.WARNING,
                message=f"{probe.display_name} check timed out after {self.probe_timeout:.0f}s",
            )
            result.details["error"] = "timeout"
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception("探针执行异常: %s", probe.key)
            result = CheckResult(
                status=CheckStatus.UNKNOWN,
                message=f"{probe.display_name} check failed unexpectedly: {e}",
            )
            result.details["error"] = str(e)
            result.details["error_type"] = type(e).__name__

        if not isinstance(result.status, CheckStatus):
            result.status = CheckStatus.parse(result.status)
        logger.debug("探针完成: %s -> %s (%.2fs)",
                     probe.key, result.status.value, time.monotonic() - started)
        return result

    async def run(self, probes: List[ProbeSpec]) -> List[Tuple[ProbeSpec, CheckResult]]:
        """限制并发执行一组探针

        Returns:
            [(探针, 结果), ...],顺序与输入一致
        """
        semaphore = asyncio.Semaphore(self.max_workers)

        async def run_with_semaphore(probe: ProbeSpec):
            async with semaphore:
                return await self.run_probe(probe)

        results = await asyncio.gather(*[run_with_semaphore(p) for p in probes])
        return list(zip(probes, results))


def build_bundle(results: List[Tuple[ProbeSpec, CheckResult]], flatten: bool = True) -> Dict:
    """把探针结果组装为 ResultBundle

    Args:
        results: ProbeExecutor.run 的返回值
        flatten: 是否把 details 中的嵌套结构编码为字符串 (写入 API 前需要)
    """
    bundle = empty_bundle()
    for probe, result in results:
        bundle_put(bundle, probe.category, probe.key, result.to_dict(flatten=flatten))
    return bundle
