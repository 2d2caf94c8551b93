#!/usr/bin/env python3
"""
测试探针执行池: 超时与异常降级、兄弟探针互不影响、ResultBundle 组装
"""

import asyncio

from node_checker.agent.executor import ProbeExecutor, build_bundle
from node_checker.agent.registry import ProbeSpec
from node_checker.collectors.models import (
    CATEGORY_DISK,
    CATEGORY_KUBERNETES,
    CATEGORY_SYSTEM,
    CheckResult,
    CheckStatus,
)


class StubChecker:
    """探针行为可控的检查器"""

    def __init__(self):
        self.running = 0
        self.peak = 0

    async def check_fast(self):
        return CheckResult(status=CheckStatus.HEALTHY, message="fine",
                           details={"samples": [1, 2, 3]})

    async def check_slow(self):
        await asyncio.sleep(5)
        return CheckResult(status=CheckStatus.HEALTHY, message="too late")

    async def check_broken(self):
        raise RuntimeError("parser exploded")

    async def check_tracked(self):
        self.running += 1
        self.peak = max(self.peak, self.running)
        await asyncio.sleep(0.01)
        self.running -= 1
        return CheckResult(status=CheckStatus.HEALTHY, message="ok")


def probe(key, method, category=CATEGORY_SYSTEM):
    return ProbeSpec(category, key, key.title(), "system", method)


def make_executor(stub, **kwargs):
    return ProbeExecutor("worker-1", checkers={"system": stub}, **kwargs)


def test_timeout_degrades_to_warning():
    executor = make_executor(StubChecker(), probe_timeout=0.05)

    result = asyncio.run(executor.run_probe(probe("slow", "check_slow")))

    assert result.status == CheckStatus.WARNING
    assert result.details["error"] == "timeout"
    assert "timed out" in result.message


def test_unexpected_exception_degrades_to_unknown():
    executor = make_executor(StubChecker())

    result = asyncio.run(executor.run_probe(probe("broken", "check_broken")))

    assert result.status == CheckStatus.UNKNOWN
    assert result.details["error_type"] == "RuntimeError"
    assert "parser exploded" in result.message


def test_siblings_complete_when_one_probe_fails():
    """一个探针超时或异常时,其余探针照常返回结果"""
    executor = make_executor(StubChecker(), probe_timeout=0.05)
    probes = [
        probe("fast", "check_fast"),
        probe("slow", "check_slow"),
        probe("broken", "check_broken"),
        probe("space", "check_fast", category=CATEGORY_DISK),
    ]

    results = asyncio.run(executor.run(probes))

    assert [p.key for p, _ in results] == ["fast", "slow", "broken", "space"]
    statuses = [r.status for _, r in results]
    assert statuses == [
        CheckStatus.HEALTHY, CheckStatus.WARNING, CheckStatus.UNKNOWN, CheckStatus.HEALTHY,
    ]


def test_concurrency_is_bounded():
    stub = StubChecker()
    executor = make_executor(stub, max_workers=2)
    probes = [probe(f"p{i}", "check_tracked") for i in range(6)]

    asyncio.run(executor.run(probes))

    assert stub.peak <= 2


def test_build_bundle_places_results_and_flattens_details():
    results = [
        (probe("uptime", "check_fast"), CheckResult(status=CheckStatus.HEALTHY,
                                                    details={"samples": [1, 2]})),
        (probe("space", "check_fast", category=CATEGORY_DISK),
         CheckResult(status=CheckStatus.CRITICAL, message="full")),
        (probe("pods", "check_fast", category=CATEGORY_KUBERNETES),
         CheckResult(status=CheckStatus.WARNING)),
    ]

    bundle = build_bundle(results)

    assert bundle["systemResults"]["uptime"]["details"]["samples"] == "[1,2]"
    assert bundle["systemResults"]["disks"]["space"]["status"] == "Critical"
    assert bundle["kubernetesResults"]["pods"]["status"] == "Warning"

    nested = build_bundle(results, flatten=False)
    assert nested["systemResults"]["uptime"]["details"]["samples"] == [1, 2]


def test_unknown_checker_name_is_reported_as_unknown():
    executor = ProbeExecutor("worker-1", checkers={})
    bogus = ProbeSpec(CATEGORY_SYSTEM, "bogus", "Bogus", "quantum", "check_bogus")

    result = asyncio.run(executor.run_probe(bogus))

    assert result.status == CheckStatus.UNKNOWN
