#!/usr/bin/env python3
"""
测试只读查询接口: 列表、详情、节点信息与节点上的 Pod
"""

import asyncio

import pytest

from node_checker.dashboard.queries import DashboardQueries
from node_checker.utils.errors import OrchestrationAPIError

from fakes import FakeClusterApi, FakeKubectl, nodecheck_object

BUNDLE = {
    "systemResults": {
        "uptime": {"status": "Healthy", "message": "Load is normal",
                   "details": {"load_1min": 0.2}},
        "disks": {"space": {"status": "Warning", "message": "Warning disk usage: /var: 88%",
                            "details": {"warning_disks": '["/var: 88%"]'}}},
    },
    "kubernetesResults": {},
}


def make_queries(nodechecks=None, **kubectl):
    queries = DashboardQueries("test-ns", client=FakeKubectl(**kubectl))
    queries.api = FakeClusterApi(nodechecks or [])
    return queries


def test_list_requests_sorted_with_optional_wildcards():
    queries = make_queries([
        nodecheck_object("zeta", nodeName="worker-2"),
        nodecheck_object("fleet", nodeName="*"),
        nodecheck_object("alpha", nodeName="worker-1",
                         status={"overallStatus": "Warning", "checkResults": BUNDLE}),
    ])

    rows = asyncio.run(queries.list_requests())
    concrete = asyncio.run(queries.list_requests(include_wildcards=False))

    assert [r["name"] for r in rows] == ["alpha", "fleet", "zeta"]
    assert [r["name"] for r in concrete] == ["alpha", "zeta"]
    assert rows[0]["warningCount"] == 1
    assert rows[2]["overallStatus"] == "Unknown"


def test_request_detail_restores_details():
    queries = make_queries([nodecheck_object(
        "alpha", nodeName="worker-1", systemChecks={"uptime": True},
        status={"overallStatus": "Warning", "message": "Warning disk usage: /var: 88%",
                "checkResults": BUNDLE},
    )])

    detail = asyncio.run(queries.get_request_detail("alpha"))

    assert detail["overallStatus"] == "Warning"
    assert detail["spec"]["systemChecks"]["uptime"] is True
    results = {r["key"]: r for r in detail["results"]}
    assert results["space"]["name"] == "Disk Space"
    assert results["space"]["category"] == "disk"
    assert results["space"]["details"]["warning_disks"] == ["/var: 88%"]
    assert asyncio.run(queries.get_request_detail("missing")) is None


def test_node_info():
    node = {
        "metadata": {"name": "worker-1", "creationTimestamp": "2024-01-01T00:00:00Z",
                     "labels": {"zone": "a"}},
        "spec": {"taints": [{"key": "dedicated", "effect": "NoSchedule"}]},
        "status": {"conditions": [{"type": "Ready", "status": "True"}],
                   "capacity": {"cpu": "4"}, "nodeInfo": {"kubeletVersion": "v1.29.0"}},
    }

    info = asyncio.run(make_queries(node=node).get_node_info("worker-1"))

    assert info["labels"] == {"zone": "a"}
    assert info["taints"][0]["key"] == "dedicated"
    assert info["unschedulable"] is False
    assert info["nodeInfo"]["kubeletVersion"] == "v1.29.0"
    assert asyncio.run(make_queries().get_node_info("ghost")) is None


def test_node_pods():
    pods = [
        {"metadata": {"name": "web", "namespace": "default"},
         "spec": {"containers": [{"name": "a"}, {"name": "b"}]},
         "status": {"phase": "Running", "containerStatuses": [
             {"name": "a", "ready": True, "restartCount": 2},
             {"name": "b", "ready": False, "restartCount": 1},
         ]}},
        {"metadata": {"name": "dns", "namespace": "kube-system"},
         "spec": {"containers": [{"name": "dns"}]},
         "status": {"phase": "Running"}},
    ]

    rows = asyncio.run(make_queries(pods=pods).get_node_pods("worker-1"))

    assert [(r["namespace"], r["name"]) for r in rows] == [
        ("default", "web"), ("kube-system", "dns"),
    ]
    assert rows[0]["restartCount"] == 3
    assert (rows[0]["readyContainers"], rows[0]["totalContainers"]) == (1, 2)


def test_node_pods_failure_raises():
    with pytest.raises(OrchestrationAPIError):
        asyncio.run(make_queries().get_node_pods("worker-1"))
