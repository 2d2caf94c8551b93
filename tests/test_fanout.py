#!/usr/bin/env python3
"""
测试通配请求扇出: 子请求的创建、同步与删除
"""

import asyncio

from node_checker.collectors.nodecheck import NODE_LABEL, TEMPLATE_LABEL, NodeCheck
from node_checker.controllers.fanout import FanoutController, child_name, child_spec

from fakes import FakeClusterApi, node_object, nodecheck_object

CHECKS = {"systemChecks": {"uptime": True}, "kubernetesChecks": {"nodeStatus": True}}


def template_object(node_selector=None, **extra):
    obj = nodecheck_object("fleet", nodeName="*", nodeSelector=node_selector or {},
                           checkInterval=10, **CHECKS, **extra)
    obj["metadata"]["uid"] = "uid-123"
    return obj


def test_child_spec_targets_one_node_without_selector():
    template = NodeCheck.from_k8s(template_object({"role": "worker"}))

    spec = child_spec(template, "worker-1")

    assert spec.node_name == "worker-1"
    assert spec.node_selector == {}
    assert spec.check_interval == 10
    assert spec.system_checks.uptime is True
    # 模板本身不被修改
    assert template.spec.node_selector == {"role": "worker"}
    assert child_name("fleet", "worker-1") == "fleet-worker-1"


def test_creates_one_child_per_matching_node():
    api = FakeClusterApi(
        [template_object({"role": "worker"})],
        nodes=[
            node_object("worker-2", {"role": "worker"}),
            node_object("worker-1", {"role": "worker"}),
            node_object("master-1", {"role": "master"}),
        ],
    )

    results = asyncio.run(FanoutController(api, "test-ns").reconcile())

    assert results["fleet"]["created"] == ["fleet-worker-1", "fleet-worker-2"]
    child = api.objects["fleet-worker-1"]
    assert child["spec"]["nodeName"] == "worker-1"
    assert child["metadata"]["labels"] == {TEMPLATE_LABEL: "fleet", NODE_LABEL: "worker-1"}
    assert child["metadata"]["ownerReferences"][0]["uid"] == "uid-123"


def test_second_pass_is_a_no_op():
    api = FakeClusterApi([template_object()], nodes=[node_object("worker-1")])
    controller = FanoutController(api, "test-ns")

    asyncio.run(controller.reconcile())
    mutations = len(api.mutations)
    results = asyncio.run(controller.reconcile())

    assert results["fleet"] == {"created": [], "updated": [], "deleted": []}
    assert len(api.mutations) == mutations


def test_template_change_is_synced_to_children():
    api = FakeClusterApi([template_object()], nodes=[node_object("worker-1")])
    controller = FanoutController(api, "test-ns")
    asyncio.run(controller.reconcile())

    api.objects["fleet"]["spec"]["checkInterval"] = 30
    results = asyncio.run(controller.reconcile())

    assert results["fleet"]["updated"] == ["fleet-worker-1"]
    assert api.objects["fleet-worker-1"]["spec"]["checkInterval"] == 30


def test_child_removed_when_node_no_longer_matches():
    api = FakeClusterApi(
        [template_object({"role": "worker"})],
        nodes=[node_object("worker-1", {"role": "worker"})],
    )
    controller = FanoutController(api, "test-ns")
    asyncio.run(controller.reconcile())

    api.nodes = [node_object("worker-1", {"role": "retired"})]
    results = asyncio.run(controller.reconcile())

    assert results["fleet"]["deleted"] == ["fleet-worker-1"]
    assert "fleet-worker-1" not in api.objects


def test_unrelated_requests_are_untouched():
    api = FakeClusterApi(
        [template_object(), nodecheck_object("manual", nodeName="worker-1")],
        nodes=[node_object("worker-1")],
    )

    results = asyncio.run(FanoutController(api, "test-ns").reconcile())

    assert list(results) == ["fleet"]
    assert "manual" in api.objects
    assert ("delete_nodecheck", "manual") not in api.mutations
