"""
检查器公共部分

- EventWindow: 滑动时间窗口,用于判断事件是否"反复出现"以避免瞬时尖峰误报
- BaseChecker: 持有节点名和命令执行器,提供结果构造的辅助方法
"""

import threading
import time
from typing import Callable, List, Optional

from ..collectors.host_runner import HostCommandRunner
from ..collectors.models import CheckResult, CheckStatus


class EventWindow:
    """滑动时间窗口计数

    Example:
        window = EventWindow(600)   # 10 分钟
        window.add()
        if window.count() >= 3:
            ...
    """

    def __init__(self, window_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.window_seconds = window_seconds
        self._clock = clock
        self._events: List[float] = []
        self._lock = threading.Lock()

    def add(self):
        """记录一次事件并丢弃窗口外的旧事件"""
        with self._lock:
            now = self._clock()
            self._events.append(now)
            cutoff = now - self.window_seconds
            self._events = [t for t in self._events if t >= cutoff]

    def count(self) -> int:
        """窗口内的事件数"""
        with self._lock:
            cutoff = self._clock() - self.window_seconds
            return sum(1 for t in self._events if t > cutoff)

    def last_event(self) -> Optional[float]:
        """最近一次事件的时间,没有事件时返回 None"""
        with self._lock:
            return self._events[-1] if self._events else None


class BaseChecker:
    """检查器基类

    每个探针方法签名为 async def check_xxx(self) -> CheckResult,
    不向外抛异常,任何意外都降级为 Warning/Unknown。
    """

    def __init__(self, node_name: str, runner: Optional[HostCommandRunner] = None):
        self.node_name = node_name
        self.runner = runner or HostCommandRunner()

    @staticmethod
    def new_result(command: str = "") -> CheckResult:
        return CheckResult(status=CheckStatus.UNKNOWN, command=command)

    @staticmethod
    def fail(result: CheckResult, status: CheckStatus, message: str,
             error: Optional[Exception] = None) -> CheckResult:
        """以指定状态结束检查,并记录错误"""
        result.status = status
        result.message = f"{message}: {error}" if error is not None else message
        if error is not None:
            result.details["error"] = str(error)
        return result
