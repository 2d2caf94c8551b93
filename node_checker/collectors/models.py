"""
检查结果数据模型定义

使用枚举和 dataclass (而非 Pydantic) 描述单个探针结果;
NodeCheck 资源本身的模型见 nodecheck.py。
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional


class CheckStatus(str, Enum):
    """健康状态枚举

    严重度排序: Critical > Warning > Unknown > Healthy
    """
    HEALTHY = "Healthy"
    WARNING = "Warning"
    CRITICAL = "Critical"
    UNKNOWN = "Unknown"

    @property
    def severity(self) -> int:
        return _SEVERITY[self]

    @classmethod
    def parse(cls, value) -> "CheckStatus":
        """将任意值解析为状态,无法识别时返回 Unknown"""
        if isinstance(value, CheckStatus):
            return value
        for status in cls:
            if status.value == value:
                return status
        return cls.UNKNOWN


_SEVERITY = {
    CheckStatus.HEALTHY: 0,
    CheckStatus.UNKNOWN: 1,
    CheckStatus.WARNING: 2,
    CheckStatus.CRITICAL: 3,
}


def worst_status(statuses: Iterable) -> CheckStatus:
    """返回最严重的状态

    Args:
        statuses: 状态序列 (CheckStatus 或其字符串值)

    Returns:
        最严重的状态,输入为空时返回 Unknown
    """
    worst = None
    for value in statuses:
        status = CheckStatus.parse(value)
        if worst is None or status.severity > worst.severity:
            worst = status
    return worst or CheckStatus.UNKNOWN


# 结果分类
CATEGORY_SYSTEM = "system"
CATEGORY_HARDWARE = "hardware"
CATEGORY_DISK = "disk"
CATEGORY_NETWORK = "network"
CATEGORY_KUBERNETES = "kubernetes"

ALL_CATEGORIES = [
    CATEGORY_SYSTEM,
    CATEGORY_HARDWARE,
    CATEGORY_DISK,
    CATEGORY_NETWORK,
    CATEGORY_KUBERNETES,
]

# ResultBundle 中各分类所在的位置 (顶层键, 子分组键)
CATEGORY_LOCATIONS = {
    CATEGORY_SYSTEM: ("systemResults", None),
    CATEGORY_HARDWARE: ("systemResults", "hardware"),
    CATEGORY_DISK: ("systemResults", "disks"),
    CATEGORY_NETWORK: ("systemResults", "network"),
    CATEGORY_KUBERNETES: ("kubernetesResults", None),
}


def utc_now() -> str:
    """RFC3339 格式的当前 UTC 时间"""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """解析 RFC3339 时间戳,失败返回 None"""
    if not value:
        return None
    text = value.replace("Z", "+00:00")
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class CheckResult:
    """单个探针的检查结果

    status 始终有值;Unknown 表示"无法判断",与 Healthy 不同。
    """
    status: CheckStatus = CheckStatus.UNKNOWN
    message: str = ""
    timestamp: str = field(default_factory=utc_now)
    command: str = ""
    details: Dict[str, Any] = field(default_factory=dict)

    def set(self, status: CheckStatus, message: str) -> "CheckResult":
        """同时设置状态和消息"""
        self.status = status
        self.message = message
        return self

    def escalate(self, status: CheckStatus, message: Optional[str] = None) -> "CheckResult":
        """只在新状态更严重时提升状态"""
        if status.severity > self.status.severity:
            self.status = status
            if message is not None:
                self.message = message
        return self

    def to_dict(self, flatten: bool = False) -> Dict[str, Any]:
        """转换为线上格式

        Args:
            flatten: 是否把 details 中的嵌套结构编码为字符串
        """
        return {
            "status": self.status.value,
            "message": self.message,
            "timestamp": self.timestamp,
            "command": self.command,
            "details": flatten_details(self.details) if flatten else dict(self.details),
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "CheckResult":
        """从线上格式恢复,details 中的编码字符串会被还原"""
        data = data or {}
        return cls(
            status=CheckStatus.parse(data.get("status")),
            message=data.get("message", "") or "",
            timestamp=data.get("timestamp", "") or "",
            command=data.get("command", "") or "",
            details=reconstruct_details(data.get("details") or {}),
        )


def flatten_details(details: Dict[str, Any]) -> Dict[str, Any]:
    """写入边界: 嵌套的 dict/list 值序列化为 JSON 字符串

    持久层会丢弃未知的嵌套字段,因此只保留标量。
    """
    flattened = {}
    for key, value in (details or {}).items():
        if isinstance(value, (dict, list, tuple)):
            flattened[key] = json.dumps(value, separators=(",", ":"), default=str)
        elif isinstance(value, Enum):
            flattened[key] = value.value
        else:
            flattened[key] = value
    return flattened


def reconstruct_details(details: Dict[str, Any]) -> Dict[str, Any]:
    """读取边界: 还原被编码为字符串的嵌套结构"""
    restored = {}
    for key, value in (details or {}).items():
        restored[key] = reconstruct_value(value)
    return restored


def reconstruct_value(value: Any) -> Any:
    """以 {} 或 [] 包裹且能解析为 JSON 的字符串还原为结构,其余保持原样"""
    if not isinstance(value, str):
        return value
    text = value.strip()
    if len(text) < 2:
        return value
    if (text[0] == "{" and text[-1] == "}") or (text[0] == "[" and text[-1] == "]"):
        try:
            return json.loads(text)
        except ValueError:
            return value
    return value


def empty_bundle() -> Dict[str, Dict[str, Any]]:
    """空的 ResultBundle"""
    return {"systemResults": {}, "kubernetesResults": {}}


def bundle_put(bundle: Dict, category: str, key: str, result: Dict[str, Any]):
    """把单个结果写入 ResultBundle 对应分类的槽位"""
    top, group = CATEGORY_LOCATIONS[category]
    section = bundle.setdefault(top, {})
    if group:
        section = section.setdefault(group, {})
    section[key] = result


def iter_bundle(bundle: Optional[Dict]) -> List[tuple]:
    """遍历 ResultBundle

    Returns:
        [(category, key, result_dict), ...]
    """
    items = []
    if not bundle:
        return items

    system = bundle.get("systemResults") or {}
    for key, value in system.items():
        if key in ("hardware", "disks", "network"):
            category = {
                "hardware": CATEGORY_HARDWARE,
                "disks": CATEGORY_DISK,
                "network": CATEGORY_NETWORK,
            }[key]
            for sub_key, sub_value in (value or {}).items():
                if isinstance(sub_value, dict):
                    items.append((category, sub_key, sub_value))
        elif isinstance(value, dict):
            items.append((CATEGORY_SYSTEM, key, value))

    for key, value in (bundle.get("kubernetesResults") or {}).items():
        if isinstance(value, dict):
            items.append((CATEGORY_KUBERNETES, key, value))

    return items
