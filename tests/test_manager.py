#!/usr/bin/env python3
"""
测试控制器主循环的单轮调和与 API 重试
"""

import asyncio

import pytest
from prometheus_client import CollectorRegistry

from node_checker.aggregator.metrics import NodeCheckMetrics
from node_checker.config import Settings
from node_checker.controllers.manager import ControllerManager
from node_checker.controllers.placement import ACTION_CREATED
from node_checker.utils.errors import OrchestrationAPIError
from node_checker.utils.retry import retry_on_k8s_error

from fakes import FakeClusterApi, node_object, nodecheck_object


def test_reconcile_once_runs_fanout_placement_and_metrics():
    api = FakeClusterApi(
        [nodecheck_object("fleet", nodeName="all", systemChecks={"uptime": True})],
        nodes=[node_object("worker-1"), node_object("worker-2")],
    )
    registry = CollectorRegistry()
    settings = Settings.load(overrides={"namespace": "test-ns"}, environ={})
    manager = ControllerManager(settings, api=api, metrics=NodeCheckMetrics(registry))

    result = asyncio.run(manager.reconcile_once())

    assert result["fanout"]["fleet"]["created"] == ["fleet-worker-1", "fleet-worker-2"]
    # 子请求是非通配请求,所以本轮就会创建 DaemonSet
    assert result["daemonset"] == ACTION_CREATED
    assert result["stats"]["totalNodeChecks"] == 2
    assert registry.get_sample_value("nodecheck_node_status_total", {"status": "Unknown"}) == 2


def test_api_failure_propagates():
    api = FakeClusterApi()
    api.fail_with = OrchestrationAPIError("connection refused", resource_type="NodeCheck")
    settings = Settings.load(overrides={"namespace": "test-ns"}, environ={})
    manager = ControllerManager(settings, api=api, metrics=NodeCheckMetrics(CollectorRegistry()))

    with pytest.raises(OrchestrationAPIError):
        asyncio.run(manager.reconcile_once())


def test_retry_reraises_after_attempts():
    calls = []

    @retry_on_k8s_error(max_attempts=3, wait_min=0, wait_max=0)
    async def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise OrchestrationAPIError("temporarily unavailable")
        return "ok"

    @retry_on_k8s_error(max_attempts=2, wait_min=0, wait_max=0)
    async def broken():
        raise OrchestrationAPIError("still down")

    assert asyncio.run(flaky()) == "ok"
    assert len(calls) == 3
    with pytest.raises(OrchestrationAPIError):
        asyncio.run(broken())
