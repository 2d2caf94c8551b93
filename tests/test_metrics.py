#!/usr/bin/env python3
"""
测试数值指标提取与 Prometheus Gauge 刷新
"""

from prometheus_client import CollectorRegistry

from node_checker.aggregator.extract import (
    extract_cpu_usage,
    extract_memory_usage,
    extract_node_metrics,
    extract_temperature,
)
from node_checker.aggregator.metrics import AgentMetrics, NodeCheckMetrics
from node_checker.collectors.models import flatten_details
from node_checker.collectors.nodecheck import NodeCheck

from fakes import nodecheck_object


def result(status="Healthy", **details):
    return {"status": status, "message": "", "details": flatten_details(details)}


FULL_BUNDLE = {
    "systemResults": {
        "uptime": result(load_1min=0.5, load_5min=0.0, load_15min=1.25, uptime_seconds=3600),
        "resources": result(cpu_usage=16),
        "memory": result("Warning", memory_usage_percent=85.5),
        "hardware": {
            "temperature": result(temperatures={"Core 0": 40.0, "Core 1": 50.0, "bogus": -1.0}),
        },
    },
    "kubernetesResults": {"nodeStatus": result()},
}


def test_extract_reads_flattened_details():
    metrics = extract_node_metrics(FULL_BUNDLE)

    assert metrics == {
        "temperature": 45.0,
        "cpu_usage": 16.0,
        "memory_usage": 85.5,
        "uptime": 3600.0,
        "load_1m": 0.5,
        "load_5m": 0.0,
        "load_15m": 1.25,
    }


def test_missing_values_are_none_not_zero():
    metrics = extract_node_metrics({"systemResults": {}, "kubernetesResults": {}})

    assert all(value is None for value in metrics.values())
    assert extract_node_metrics(None)["cpu_usage"] is None


def test_cpu_and_memory_fallback_fields():
    idle_only = {"systemResults": {"resources": result(cpu_idle_percent=70)}}
    assert extract_cpu_usage(idle_only) == 30.0

    kb_only = {"systemResults": {"memory": result(memory_used_kb=750, memory_total_kb=1000)}}
    assert extract_memory_usage(kb_only) == 75.0

    no_positive = {"systemResults": {"hardware": {"temperature": result(temperatures={"x": 0})}}}
    assert extract_temperature(no_positive) is None


def request(name, node, overall, bundle):
    return NodeCheck.from_k8s(nodecheck_object(
        name, nodeName=node,
        status={"overallStatus": overall, "checkResults": bundle},
    ))


def test_update_sets_fleet_and_node_gauges():
    registry = CollectorRegistry()
    metrics = NodeCheckMetrics(registry=registry)
    nodechecks = [
        request("nc-a", "worker-a", "Warning", FULL_BUNDLE),
        request("nc-b", "worker-b", "Healthy", {
            "systemResults": {"uptime": result(uptime_seconds=10)},
        }),
        request("nc-all", "all", "Critical", FULL_BUNDLE),
    ]

    stats = metrics.update(nodechecks, now=1714557600.0)

    assert stats["totalNodeChecks"] == 2
    assert registry.get_sample_value("nodecheck_nodechecks_total") == 2
    assert registry.get_sample_value("nodecheck_node_status_total", {"status": "Warning"}) == 1
    assert registry.get_sample_value("nodecheck_node_status_total", {"status": "Critical"}) == 0
    assert registry.get_sample_value(
        "nodecheck_check_status_total",
        {"category": "system", "check": "Memory", "status": "Warning"},
    ) == 1
    assert registry.get_sample_value(
        "nodecheck_stats_last_update_timestamp_seconds"
    ) == 1714557600.0

    assert registry.get_sample_value("nodecheck_temperature_celsius", {"node": "worker-a"}) == 45.0
    assert registry.get_sample_value("nodecheck_load_average_5m", {"node": "worker-a"}) == 0.0
    assert registry.get_sample_value("nodecheck_uptime_seconds", {"node": "worker-b"}) == 10
    # 未采集到的指标不产生样本
    assert registry.get_sample_value("nodecheck_cpu_usage_percent", {"node": "worker-b"}) is None
    assert registry.get_sample_value("nodecheck_uptime_seconds", {"node": "all"}) is None


def test_update_drops_series_of_removed_nodes():
    registry = CollectorRegistry()
    metrics = NodeCheckMetrics(registry=registry)

    metrics.update([request("nc-a", "worker-a", "Warning", FULL_BUNDLE)])
    metrics.update([])

    assert registry.get_sample_value("nodecheck_cpu_usage_percent", {"node": "worker-a"}) is None
    assert registry.get_sample_value("nodecheck_nodechecks_total") == 0


def test_render_contains_metric_names():
    metrics = NodeCheckMetrics(registry=CollectorRegistry())
    metrics.update([request("nc-a", "worker-a", "Healthy", FULL_BUNDLE)])

    text = metrics.render().decode()

    assert "nodecheck_memory_usage_percent{node=\"worker-a\"} 85.5" in text


def test_agent_metrics_track_last_status_and_failures():
    registry = CollectorRegistry()
    metrics = AgentMetrics(registry=registry)

    metrics.record_check("nc-1", "Warning", now=1714557600.0)
    metrics.record_check("nc-1", "Healthy", now=1714557660.0)
    metrics.record_failure()

    assert registry.get_sample_value(
        "nodecheck_agent_last_check_timestamp_seconds", {"nodecheck": "nc-1"}) == 1714557660.0
    assert registry.get_sample_value(
        "nodecheck_agent_overall_status", {"nodecheck": "nc-1", "status": "Healthy"}) == 1
    assert registry.get_sample_value(
        "nodecheck_agent_overall_status", {"nodecheck": "nc-1", "status": "Warning"}) == 0
    assert registry.get_sample_value("nodecheck_agent_processing_failures_total") == 1
