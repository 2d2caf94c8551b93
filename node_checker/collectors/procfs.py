"""
/proc 文件读取与解析

所有读取优先走宿主机挂载路径,失败时回退到容器内路径。
"""

from dataclasses import dataclass
from typing import Dict, Tuple

from ..utils.errors import ParseFailureError
from .host_runner import HostCommandRunner


@dataclass
class MemInfo:
    """/proc/meminfo 摘要 (字节)"""
    total: int = 0
    available: int = 0
    free: int = 0
    used: int = 0
    buffers: int = 0
    cached: int = 0
    swap_total: int = 0
    swap_free: int = 0

    @property
    def usage_percent(self) -> float:
        if self.total <= 0:
            return 0.0
        return self.used / self.total * 100


@dataclass
class CPUStats:
    """/proc/stat 中 "cpu " 汇总行的计数 (jiffies)"""
    user: int = 0
    nice: int = 0
    system: int = 0
    idle: int = 0
    iowait: int = 0
    irq: int = 0
    softirq: int = 0
    steal: int = 0

    @property
    def total(self) -> int:
        return (self.user + self.nice + self.system + self.idle
                + self.iowait + self.irq + self.softirq + self.steal)


def parse_loadavg(content: str) -> Tuple[float, float, float]:
    """解析 /proc/loadavg

    Raises:
        ParseFailureError: 格式不符合预期
    """
    parts = content.split()
    if len(parts) < 3:
        raise ParseFailureError("invalid /proc/loadavg format", raw_output=content)
    try:
        return float(parts[0]), float(parts[1]), float(parts[2])
    except ValueError as e:
        raise ParseFailureError(f"invalid /proc/loadavg values: {e}", raw_output=content)


def parse_meminfo(content: str) -> MemInfo:
    """解析 /proc/meminfo (单位 KB,换算为字节)

    used = total - available;没有 MemAvailable 时
    used = total - free - buffers - cached。
    """
    values: Dict[str, int] = {}
    for line in content.splitlines():
        fields = line.split()
        if len(fields) < 2:
            continue
        key = fields[0].rstrip(":")
        try:
            values[key] = int(fields[1]) * 1024
        except ValueError:
            continue

    info = MemInfo(
        total=values.get("MemTotal", 0),
        available=values.get("MemAvailable", 0),
        free=values.get("MemFree", 0),
        buffers=values.get("Buffers", 0),
        cached=values.get("Cached", 0),
        swap_total=values.get("SwapTotal", 0),
        swap_free=values.get("SwapFree", 0),
    )
    if info.total == 0:
        raise ParseFailureError("could not read MemTotal", raw_output=content)

    if info.available > 0:
        info.used = info.total - info.available
    else:
        info.used = info.total - info.free - info.buffers - info.cached
    return info


def parse_procs_blocked(content: str) -> int:
    """从 /proc/stat 中读取 procs_blocked"""
    for line in content.splitlines():
        if line.startswith("procs_blocked"):
            fields = line.split()
            if len(fields) >= 2:
                try:
                    return int(fields[1])
                except ValueError as e:
                    raise ParseFailureError(f"invalid procs_blocked: {e}", raw_output=line)
    raise ParseFailureError("procs_blocked not found in /proc/stat")


def parse_cpu_stats(content: str) -> CPUStats:
    """解析 /proc/stat 的汇总 cpu 行

    格式: cpu user nice system idle iowait irq softirq steal guest guest_nice
    """
    for line in content.splitlines():
        if not line.startswith("cpu "):
            continue
        fields = line.split()
        if len(fields) < 9:
            raise ParseFailureError("invalid cpu line format", raw_output=line)

        numbers = []
        for value in fields[1:9]:
            try:
                numbers.append(int(value))
            except ValueError:
                numbers.append(0)
        return CPUStats(*numbers)

    raise ParseFailureError("cpu aggregate line not found in /proc/stat")


def parse_stat_counter(content: str, name: str) -> int:
    """读取 /proc/stat 或 /proc/vmstat 中 "<name> <value>" 形式的计数"""
    for line in content.splitlines():
        fields = line.split()
        if len(fields) >= 2 and fields[0] == name:
            try:
                return int(fields[1])
            except ValueError:
                break
    raise ParseFailureError(f"{name} not found")


def read_loadavg(runner: HostCommandRunner) -> Tuple[float, float, float, str]:
    """读取负载,返回 (1分钟, 5分钟, 15分钟, 来源)"""
    content, source = runner.read_file("/proc/loadavg")
    load1, load5, load15 = parse_loadavg(content)
    return load1, load5, load15, source


def read_meminfo(runner: HostCommandRunner) -> Tuple[MemInfo, str]:
    content, source = runner.read_file("/proc/meminfo")
    return parse_meminfo(content), source


def read_procs_blocked(runner: HostCommandRunner) -> int:
    content, _ = runner.read_file("/proc/stat")
    return parse_procs_blocked(content)


def read_cpu_stats(runner: HostCommandRunner) -> CPUStats:
    content, _ = runner.read_file("/proc/stat")
    return parse_cpu_stats(content)


def read_uptime_seconds(runner: HostCommandRunner) -> float:
    """读取 /proc/uptime 的第一列"""
    content, _ = runner.read_file("/proc/uptime")
    parts = content.split()
    if not parts:
        raise ParseFailureError("empty /proc/uptime")
    try:
        return float(parts[0])
    except ValueError as e:
        raise ParseFailureError(f"invalid /proc/uptime: {e}", raw_output=content)
