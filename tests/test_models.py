#!/usr/bin/env python3
"""
测试检查结果模型: 状态排序、details 编码与 ResultBundle 布局
"""

from node_checker.collectors.models import (
    CATEGORY_DISK,
    CATEGORY_HARDWARE,
    CATEGORY_KUBERNETES,
    CATEGORY_SYSTEM,
    CheckResult,
    CheckStatus,
    bundle_put,
    empty_bundle,
    flatten_details,
    iter_bundle,
    parse_timestamp,
    reconstruct_details,
    worst_status,
)


def test_status_parse_always_returns_a_known_value():
    """无法识别的状态值解析为 Unknown"""
    assert CheckStatus.parse("Healthy") == CheckStatus.HEALTHY
    assert CheckStatus.parse("Critical") == CheckStatus.CRITICAL
    assert CheckStatus.parse("degraded") == CheckStatus.UNKNOWN
    assert CheckStatus.parse(None) == CheckStatus.UNKNOWN
    assert CheckStatus.parse(CheckStatus.WARNING) == CheckStatus.WARNING


def test_worst_status_ordering():
    """Critical > Warning > Unknown > Healthy"""
    assert worst_status(["Healthy", "Warning", "Critical"]) == CheckStatus.CRITICAL
    assert worst_status(["Healthy", "Unknown"]) == CheckStatus.UNKNOWN
    assert worst_status(["Unknown", "Warning"]) == CheckStatus.WARNING
    assert worst_status(["Healthy", "Healthy"]) == CheckStatus.HEALTHY
    assert worst_status([]) == CheckStatus.UNKNOWN


def test_escalate_only_raises_severity():
    result = CheckResult(status=CheckStatus.WARNING, message="first")
    result.escalate(CheckStatus.HEALTHY, "ignored")
    assert result.status == CheckStatus.WARNING
    assert result.message == "first"

    result.escalate(CheckStatus.CRITICAL, "worse")
    assert result.status == CheckStatus.CRITICAL
    assert result.message == "worse"


def test_nested_details_survive_flatten_and_reconstruct():
    """嵌套结构在写入边界编码为字符串,读取时还原"""
    details = {
        "temperatures": {"Core 0": 45.0, "Core 1": 51.5},
        "critical_disks": ["/var: 96%"],
        "count": 3,
        "note": "plain text",
    }
    flattened = flatten_details(details)
    assert isinstance(flattened["temperatures"], str)
    assert isinstance(flattened["critical_disks"], str)
    assert flattened["count"] == 3
    assert flattened["note"] == "plain text"

    assert reconstruct_details(flattened) == details


def test_reconstruct_leaves_non_json_strings_alone():
    restored = reconstruct_details({"raw": "[not json", "brace": "{oops}", "short": "["})
    assert restored == {"raw": "[not json", "brace": "{oops}", "short": "["}


def test_result_round_trip_through_wire_format():
    result = CheckResult(
        status=CheckStatus.WARNING,
        message="High load",
        command="read /proc/loadavg",
        details={"load_1min": 3.1, "samples": [1, 2]},
    )
    wire = result.to_dict(flatten=True)
    assert wire["status"] == "Warning"
    assert wire["details"]["samples"] == "[1,2]"

    restored = CheckResult.from_dict(wire)
    assert restored.status == CheckStatus.WARNING
    assert restored.details == {"load_1min": 3.1, "samples": [1, 2]}


def test_bundle_layout_nests_hardware_and_disks_under_system_results():
    bundle = empty_bundle()
    bundle_put(bundle, CATEGORY_SYSTEM, "uptime", {"status": "Healthy"})
    bundle_put(bundle, CATEGORY_HARDWARE, "temperature", {"status": "Warning"})
    bundle_put(bundle, CATEGORY_DISK, "space", {"status": "Critical"})
    bundle_put(bundle, CATEGORY_KUBERNETES, "nodeStatus", {"status": "Healthy"})

    assert bundle["systemResults"]["hardware"]["temperature"]["status"] == "Warning"
    assert bundle["systemResults"]["disks"]["space"]["status"] == "Critical"
    assert bundle["kubernetesResults"]["nodeStatus"]["status"] == "Healthy"

    entries = {(category, key) for category, key, _ in iter_bundle(bundle)}
    assert entries == {
        (CATEGORY_SYSTEM, "uptime"),
        (CATEGORY_HARDWARE, "temperature"),
        (CATEGORY_DISK, "space"),
        (CATEGORY_KUBERNETES, "nodeStatus"),
    }


def test_iter_bundle_tolerates_partial_bundles():
    assert iter_bundle(None) == []
    assert iter_bundle({"systemResults": {"hardware": None}}) == []


def test_parse_timestamp():
    parsed = parse_timestamp("2024-05-01T10:00:00Z")
    assert parsed is not None
    assert parsed.tzinfo is not None
    assert parse_timestamp("not a time") is None
    assert parse_timestamp("") is None
