"""
结果汇总

- 单个 NodeCheck: 所有探针结果取最严重状态
- 集群视图: 按整体状态统计请求数,按探针统计各状态出现次数

只读,容忍部分填充或过期的结果。
"""

from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Tuple

from ..agent.registry import find_probe
from ..collectors.models import CheckStatus, iter_bundle, worst_status
from ..collectors.nodecheck import NodeCheck

ALL_PASSED_MESSAGE = "All checks passed"


def rollup_bundle(bundle: Optional[Dict]) -> Tuple[CheckStatus, str]:
    """计算 ResultBundle 的整体状态和消息

    消息取第一个最严重结果的消息;全部健康时为 "All checks passed"。

    Returns:
        (整体状态, 消息),bundle 为空时为 (Unknown, "No check results")
    """
    entries = iter_bundle(bundle)
    if not entries:
        return CheckStatus.UNKNOWN, "No check results"

    overall = worst_status(result.get("status") for _, _, result in entries)
    if overall == CheckStatus.HEALTHY:
        return overall, ALL_PASSED_MESSAGE

    for _, _, result in entries:
        if CheckStatus.parse(result.get("status")) == overall:
            return overall, result.get("message") or f"{overall.value} check detected"
    return overall, ""


def count_statuses(statuses: Iterable) -> Dict[CheckStatus, int]:
    """按状态计数,无法识别的值计为 Unknown"""
    counts = {status: 0 for status in CheckStatus}
    for value in statuses:
        counts[CheckStatus.parse(value)] += 1
    return counts


def overall_from_counts(counts: Dict[CheckStatus, int]) -> CheckStatus:
    """计数中出现过的最严重状态,全部为 0 时为 Healthy"""
    present = [status for status, count in counts.items() if count > 0]
    if not present:
        return CheckStatus.HEALTHY
    return worst_status(present)


def summarize_request(nodecheck: NodeCheck) -> Dict:
    """单个 NodeCheck 的摘要 (列表视图使用)"""
    entries = iter_bundle(nodecheck.check_results)
    counts = count_statuses(result.get("status") for _, _, result in entries)
    return {
        "name": nodecheck.name,
        "namespace": nodecheck.namespace,
        "nodeName": nodecheck.spec.node_name,
        "overallStatus": nodecheck.overall_status or CheckStatus.UNKNOWN.value,
        "lastCheck": nodecheck.last_check_time,
        "message": nodecheck.status.get("message", ""),
        "checkCount": len(entries),
        "healthyCount": counts[CheckStatus.HEALTHY],
        "warningCount": counts[CheckStatus.WARNING],
        "criticalCount": counts[CheckStatus.CRITICAL],
    }


def _check_label(category: str, key: str) -> Tuple[str, str]:
    probe = find_probe(category, key)
    if probe:
        return probe.display_name, probe.dashboard_category
    return key, "kubernetes" if category == "kubernetes" else "system"


def fleet_stats(nodechecks: Iterable[NodeCheck], now: Optional[datetime] = None) -> Dict:
    """集群级统计

    通配请求只是模板,正在删除的请求即将消失,二者都不参与统计;
    缺少整体状态的请求计为 Unknown。

    Args:
        nodechecks: NodeCheck 列表
        now: 统计时间 (默认当前 UTC 时间)

    Returns:
        totalNodeChecks / healthyNodes / warningNodes / criticalNodes /
        unknownNodes / lastUpdate / overallStatus / checks
    """
    concrete = [nc for nc in nodechecks if not nc.is_wildcard and not nc.deletion_timestamp]
    node_counts = count_statuses(nc.overall_status for nc in concrete)

    checks: Dict[Tuple[str, str], Dict] = {}
    for nc in concrete:
        for category, key, result in iter_bundle(nc.check_results):
            name, dashboard_category = _check_label(category, key)
            summary = checks.setdefault((dashboard_category, name), {
                "name": name,
                "category": dashboard_category,
                "enabled": True,
                "counts": {status: 0 for status in CheckStatus},
            })
            summary["counts"][CheckStatus.parse(result.get("status"))] += 1

    check_summaries: List[Dict] = []
    for summary in checks.values():
        counts = summary.pop("counts")
        summary.update({
            "healthyCount": counts[CheckStatus.HEALTHY],
            "warningCount": counts[CheckStatus.WARNING],
            "criticalCount": counts[CheckStatus.CRITICAL],
            "unknownCount": counts[CheckStatus.UNKNOWN],
            "overallStatus": overall_from_counts(counts).value,
        })
        check_summaries.append(summary)
    check_summaries.sort(key=lambda s: (s["category"], s["name"]))

    if concrete:
        overall = worst_status(nc.overall_status for nc in concrete)
    else:
        overall = CheckStatus.UNKNOWN

    return {
        "totalNodeChecks": len(concrete),
        "healthyNodes": node_counts[CheckStatus.HEALTHY],
        "warningNodes": node_counts[CheckStatus.WARNING],
        "criticalNodes": node_counts[CheckStatus.CRITICAL],
        "unknownNodes": node_counts[CheckStatus.UNKNOWN],
        "overallStatus": overall.value,
        "lastUpdate": (now or datetime.now(timezone.utc)).strftime("%Y-%m-%dT%H:%M:%SZ"),
        "checks": check_summaries,
    }
