"""
从结果 details 中提取数值指标

每个指标按字段优先级依次尝试;字段缺失返回 None (不是 0),
由指标层决定省略该样本。details 可能是写入时被编码成字符串的形式,这里先还原。
"""

from typing import Any, Dict, Optional

from ..collectors.models import reconstruct_details
from ..utils.parsers import parse_float


def _section(bundle: Optional[Dict], *path: str) -> Dict:
    node: Any = bundle or {}
    for key in path:
        if not isinstance(node, dict):
            return {}
        node = node.get(key) or {}
    return node if isinstance(node, dict) else {}


def _details(bundle: Optional[Dict], *path: str) -> Dict[str, Any]:
    result = _section(bundle, *path)
    return reconstruct_details(result.get("details") or {})


def _number(details: Dict[str, Any], key: str) -> Optional[float]:
    if key not in details:
        return None
    return parse_float(details[key])


def _first(details: Dict[str, Any], *keys: str) -> Optional[float]:
    for key in keys:
        value = _number(details, key)
        if value is not None:
            return value
    return None


def extract_temperature(bundle: Optional[Dict]) -> Optional[float]:
    """hardware.temperature 中所有正值传感器读数的平均值"""
    details = _details(bundle, "systemResults", "hardware", "temperature")
    readings = details.get("temperatures")
    if isinstance(readings, dict):
        values = list(readings.values())
    elif isinstance(readings, list):
        values = readings
    else:
        return None

    positive = [v for v in (parse_float(x) for x in values) if v is not None and v > 0]
    if not positive:
        return None
    return sum(positive) / len(positive)


def extract_cpu_usage(bundle: Optional[Dict]) -> Optional[float]:
    """CPU 使用率 (%),来自 resources 探针"""
    details = _details(bundle, "systemResults", "resources")
    value = _first(details, "cpu_usage", "cpuUsage", "cpu")
    if value is not None:
        return value

    idle = _number(details, "cpu_idle_percent")
    if idle is not None:
        return 100 - idle

    user = _number(details, "cpu_user_percent")
    system = _number(details, "cpu_system_percent")
    if user is not None and system is not None:
        return user + system
    return None


def extract_memory_usage(bundle: Optional[Dict]) -> Optional[float]:
    """内存使用率 (%),来自 memory 探针"""
    details = _details(bundle, "systemResults", "memory")
    value = _first(details, "memory_usage_percent", "memoryUsage", "used_percent")
    if value is not None:
        return value

    used = _number(details, "memory_used_kb")
    total = _number(details, "memory_total_kb")
    if used is not None and total:
        return used / total * 100
    return None


def extract_load_averages(bundle: Optional[Dict]) -> Dict[str, Optional[float]]:
    """1/5/15 分钟负载,键为 1m/5m/15m"""
    details = _details(bundle, "systemResults", "uptime")
    return {
        "1m": _number(details, "load_1min"),
        "5m": _number(details, "load_5min"),
        "15m": _number(details, "load_15min"),
    }


def extract_uptime_seconds(bundle: Optional[Dict]) -> Optional[float]:
    details = _details(bundle, "systemResults", "uptime")
    return _number(details, "uptime_seconds")


def extract_node_metrics(bundle: Optional[Dict]) -> Dict[str, Optional[float]]:
    """一个节点的全部数值指标

    Returns:
        {"temperature", "cpu_usage", "memory_usage", "uptime",
         "load_1m", "load_5m", "load_15m"},未采集到的值为 None
    """
    loads = extract_load_averages(bundle)
    return {
        "temperature": extract_temperature(bundle),
        "cpu_usage": extract_cpu_usage(bundle),
        "memory_usage": extract_memory_usage(bundle),
        "uptime": extract_uptime_seconds(bundle),
        "load_1m": loads["1m"],
        "load_5m": loads["5m"],
        "load_15m": loads["15m"],
    }
