#!/usr/bin/env python3
"""
测试节点 Agent: 认领、目标过滤、检查间隔、status 回写与本地快照
"""

import asyncio
from datetime import datetime, timezone

import pytest
from prometheus_client import CollectorRegistry

from node_checker.agent.loop import NodeCheckAgent
from node_checker.agent.state import SnapshotStore
from node_checker.aggregator.metrics import AgentMetrics
from node_checker.collectors.models import CheckResult, CheckStatus
from node_checker.utils.errors import OrchestrationAPIError, ValidationError

from fakes import FakeClusterApi, nodecheck_object

NOW = datetime(2024, 5, 1, 10, 0, 0, tzinfo=timezone.utc)
CHECKS = {"systemChecks": {"uptime": True, "disks": {"space": True}}}


class StubExecutor:
    """按探针键返回预设状态的执行器"""

    def __init__(self, statuses=None):
        self.statuses = statuses or {}
        self.runs = []

    async def run(self, probes):
        self.runs.append([p.key for p in probes])
        return [
            (p, CheckResult(status=self.statuses.get(p.key, CheckStatus.HEALTHY),
                            message=f"{p.key} result", details={"items": [p.key]}))
            for p in probes
        ]


def make_agent(api, executor=None, store=None):
    return NodeCheckAgent("worker-1", "test-ns", api=api,
                          executor=executor or StubExecutor(), store=store,
                          clock=lambda: NOW)


def test_node_name_is_required():
    with pytest.raises(ValidationError):
        NodeCheckAgent("", "test-ns", api=FakeClusterApi(), executor=StubExecutor())


def test_checks_request_for_this_node_and_writes_status():
    api = FakeClusterApi([nodecheck_object("nc-1", nodeName="worker-1", **CHECKS)])
    executor = StubExecutor({"space": CheckStatus.CRITICAL})

    processed = asyncio.run(make_agent(api, executor).run_once())

    assert processed == ["nc-1"]
    assert executor.runs == [["uptime", "space"]]
    status = api.objects["nc-1"]["status"]
    assert status["nodeName"] == "worker-1"
    assert status["overallStatus"] == "Critical"
    assert status["message"] == "space result"
    assert status["lastCheckTime"] == "2024-05-01T10:00:00Z"
    assert status["checkResults"]["systemResults"]["disks"]["space"]["status"] == "Critical"
    # 写入 API 前 details 被扁平化
    assert status["checkResults"]["systemResults"]["uptime"]["details"]["items"] == '["uptime"]'


def test_all_healthy_message():
    api = FakeClusterApi([nodecheck_object("nc-1", nodeName="worker-1", **CHECKS)])

    asyncio.run(make_agent(api).run_once())

    assert api.objects["nc-1"]["status"]["overallStatus"] == "Healthy"
    assert api.objects["nc-1"]["status"]["message"] == "All checks passed"


def test_other_nodes_and_wildcards_are_skipped():
    api = FakeClusterApi([
        nodecheck_object("nc-other", nodeName="worker-2", **CHECKS),
        nodecheck_object("nc-all", nodeName="*", **CHECKS),
    ])
    executor = StubExecutor()

    processed = asyncio.run(make_agent(api, executor).run_once())

    assert processed == []
    assert executor.runs == []
    assert api.mutations == []


def test_unassigned_request_is_claimed():
    api = FakeClusterApi([nodecheck_object("nc-new", **CHECKS)])

    processed = asyncio.run(make_agent(api).run_once())

    assert processed == ["nc-new"]
    assert api.objects["nc-new"]["spec"]["nodeName"] == "worker-1"
    assert api.mutations == [
        ("update_nodecheck_spec", "nc-new"),
        ("update_nodecheck_status", "nc-new"),
    ]


def test_interval_gating():
    """checkInterval 为 10 分钟: 5 分钟前检查过则跳过,15 分钟前则执行"""
    recent = nodecheck_object("nc-recent", nodeName="worker-1", checkInterval=10, **CHECKS,
                              status={"lastCheckTime": "2024-05-01T09:55:00Z"})
    stale = nodecheck_object("nc-stale", nodeName="worker-1", checkInterval=10, **CHECKS,
                             status={"lastCheckTime": "2024-05-01T09:45:00Z"})
    api = FakeClusterApi([recent, stale])
    agent = make_agent(api)

    assert asyncio.run(agent.run_once()) == ["nc-stale"]
    assert asyncio.run(agent.run_once(force=True)) == ["nc-recent", "nc-stale"]


def test_default_interval_applies_when_unset():
    obj = nodecheck_object("nc-1", nodeName="worker-1", **CHECKS,
                           status={"lastCheckTime": "2024-05-01T09:56:00Z"})
    api = FakeClusterApi([obj])

    assert asyncio.run(make_agent(api).run_once()) == []


def test_deleting_request_is_skipped():
    obj = nodecheck_object("nc-1", nodeName="worker-1", **CHECKS)
    obj["metadata"]["deletionTimestamp"] = "2024-05-01T09:00:00Z"
    api = FakeClusterApi([obj])

    assert asyncio.run(make_agent(api).run_once()) == []


def test_status_write_failure_does_not_stop_other_requests():
    api = FakeClusterApi([
        nodecheck_object("nc-1", nodeName="worker-1", **CHECKS),
        nodecheck_object("nc-2", nodeName="worker-1", **CHECKS),
    ])
    original = api.update_nodecheck_status

    async def flaky(name, namespace, status):
        if name == "nc-1":
            raise OrchestrationAPIError("conflict", resource_type="NodeCheck")
        return await original(name, namespace, status)

    api.update_nodecheck_status = flaky

    assert asyncio.run(make_agent(api).run_once()) == ["nc-2"]


def test_snapshot_is_saved(tmp_path):
    store = SnapshotStore(str(tmp_path / "state" / "last.json"))
    api = FakeClusterApi([nodecheck_object("nc-1", nodeName="worker-1", **CHECKS)])

    asyncio.run(make_agent(api, store=store).run_once())

    snapshot = store.load()
    assert snapshot["name"] == "nc-1"
    assert snapshot["namespace"] == "test-ns"
    assert snapshot["status"]["overallStatus"] == "Healthy"


def test_snapshot_load_handles_missing_and_corrupt_files(tmp_path):
    path = tmp_path / "last.json"
    store = SnapshotStore(str(path))
    assert store.load() is None

    path.write_text("{not json", encoding="utf-8")
    assert store.load() is None


def test_claim_lost_to_another_node_is_skipped():
    """列表之后其他节点先认领,带旧 resourceVersion 的 patch 冲突,本节点跳过"""
    api = FakeClusterApi([nodecheck_object("nc-new", **CHECKS)])
    original = api.list_nodechecks

    async def list_then_race(namespace=None):
        listed = await original(namespace)
        api.objects["nc-new"]["spec"]["nodeName"] = "worker-2"
        api.objects["nc-new"]["metadata"]["resourceVersion"] = "2"
        return listed

    api.list_nodechecks = list_then_race
    executor = StubExecutor()

    assert asyncio.run(make_agent(api, executor).run_once()) == []
    assert executor.runs == []
    assert api.objects["nc-new"]["spec"]["nodeName"] == "worker-2"
    assert api.mutations == []


def test_snapshot_save_failure_does_not_stop_status_writes(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory")
    store = SnapshotStore(str(blocker / "last.json"))
    api = FakeClusterApi([
        nodecheck_object("nc-1", nodeName="worker-1", **CHECKS),
        nodecheck_object("nc-2", nodeName="worker-1", **CHECKS),
    ])

    processed = asyncio.run(make_agent(api, store=store).run_once())

    assert processed == ["nc-1", "nc-2"]
    assert api.objects["nc-2"]["status"]["overallStatus"] == "Healthy"


def test_unexpected_error_does_not_stop_other_requests():
    api = FakeClusterApi([
        nodecheck_object("nc-1", nodeName="worker-1", **CHECKS),
        nodecheck_object("nc-2", nodeName="worker-1", **CHECKS),
    ])
    original = api.update_nodecheck_status

    async def broken(name, namespace, status):
        if name == "nc-1":
            raise RuntimeError("unexpected")
        return await original(name, namespace, status)

    api.update_nodecheck_status = broken

    assert asyncio.run(make_agent(api).run_once()) == ["nc-2"]
    assert "status" in api.objects["nc-2"]


def test_ready_after_first_pass_and_metrics_recorded():
    api = FakeClusterApi([nodecheck_object("nc-1", nodeName="worker-1", **CHECKS)])
    registry = CollectorRegistry()
    agent = NodeCheckAgent("worker-1", "test-ns", api=api, executor=StubExecutor(),
                           metrics=AgentMetrics(registry=registry), clock=lambda: NOW)

    assert not agent.is_ready()
    asyncio.run(agent.run_once())

    assert agent.is_ready()
    assert registry.get_sample_value(
        "nodecheck_agent_overall_status", {"nodecheck": "nc-1", "status": "Healthy"}) == 1


def test_failures_are_counted():
    api = FakeClusterApi([nodecheck_object("nc-1", nodeName="worker-1", **CHECKS)])
    registry = CollectorRegistry()
    agent = NodeCheckAgent("worker-1", "test-ns", api=api, executor=StubExecutor(),
                           metrics=AgentMetrics(registry=registry), clock=lambda: NOW)

    async def refuse(name, namespace, status):
        raise OrchestrationAPIError("forbidden", resource_type="NodeCheck")

    api.update_nodecheck_status = refuse
    asyncio.run(agent.run_once())

    assert registry.get_sample_value("nodecheck_agent_processing_failures_total") == 1
