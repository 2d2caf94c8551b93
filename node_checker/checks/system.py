"""
系统级探针

覆盖负载、进程、内存、服务、日志、内核事件、CPU 调度等 21 个检查项。
所有数据优先来自宿主机 (nsenter / 挂载的 /proc),失败时回退到容器内执行。

阈值说明:
- 负载: Healthy ≤ 0.75×核数, Warning ≤ 1.5×核数, 以上 Critical
- 内存 / 文件描述符: >90% Critical, >80% Warning
- 僵尸进程: >10 Critical, >0 Warning
"""

import asyncio
import logging
import os
from typing import List, Optional, Tuple

from ..collectors import procfs
from ..collectors.host_runner import (
    SOURCE_CONTAINER,
    SOURCE_HOST,
    CommandOutcome,
    HostCommandRunner,
)
from ..collectors.models import CheckResult, CheckStatus
from ..utils.errors import DiagnosticError
from ..utils.parsers import (
    cap_samples,
    parse_float,
    parse_int,
    parse_key_value_lines,
    parse_memory_size,
)
from .base import BaseChecker, EventWindow

logger = logging.getLogger(__name__)

SYSTEMD_ABSENT_MARKER = "System has not been booted with systemd"

# 日志中视为严重错误的关键字
CRITICAL_LOG_KEYWORDS = (
    "kernel panic",
    "panic:",
    "fatal error",
    "fatal:",
    "oom",
    "out of memory",
)

PANIC_PATTERN = "(kernel panic|Oops:|BUG:|general protection fault|segfault|double fault)"
OOM_PATTERN = "(Out of memory|oom-killer|OOM killer|invoked oom-killer|Memory cgroup out of memory)"

# 中断不均衡时不影响性能的设备
BENIGN_IRQ_DEVICES = ("XHCI_HCD", "MEI_ME", "I915", "SND_HDA", "THUNDERBOLT")
IRQ_IMBALANCE_THRESHOLD = 0.60

# file-nr 中 max 为 int64 最大值时表示不限制
UNLIMITED_FD_MAX = 9223372036854775807


def vmstat_last_fields(output: str) -> List[str]:
    """取 vmstat 输出最后一行数据的字段,跳过表头"""
    for line in reversed(output.strip().splitlines()):
        stripped = line.strip()
        if not stripped or stripped.startswith("procs") or line.startswith(" r "):
            continue
        if stripped.startswith("r ") or stripped.startswith("r\t"):
            continue
        return stripped.split()
    return []


def unique_lines(text: str) -> List[str]:
    """去重后的非空行,保持原有顺序"""
    seen = set()
    lines = []
    for line in text.splitlines():
        line = line.strip()
        if line and line not in seen:
            seen.add(line)
            lines.append(line)
    return lines


def classify_load(load: float, cores: int) -> CheckStatus:
    """按核数缩放的负载分级"""
    warning_threshold = cores * 0.75
    critical_threshold = cores * 1.5
    if load > critical_threshold:
        return CheckStatus.CRITICAL
    if load > warning_threshold:
        return CheckStatus.WARNING
    return CheckStatus.HEALTHY


def parse_uptime_output(output: str) -> Tuple[float, float, float]:
    """解析 uptime 命令输出末尾的三个负载值

    Raises:
        ValueError: 格式不符合预期
    """
    parts = output.split()
    if len(parts) < 10:
        raise ValueError("unexpected uptime output")
    values = [float(p.strip(",")) for p in parts[-3:]]
    return values[0], values[1], values[2]


class SystemChecker(BaseChecker):
    """系统级检查器

    事件窗口属于检查器实例: 同一个 Agent 进程中连续多轮检查共享窗口,
    不同实例之间互不影响。
    """

    def __init__(
        self,
        node_name: str,
        runner: Optional[HostCommandRunner] = None,
        cpu_cores: Optional[int] = None,
        sample_interval: float = 1.0,
    ):
        """
        Args:
            node_name: 节点名
            runner: 命令执行器
            cpu_cores: CPU 核数 (默认取 os.cpu_count())
            sample_interval: /proc/stat 两次采样的间隔 (秒)
        """
        super().__init__(node_name, runner)
        self.cpu_cores = cpu_cores or os.cpu_count() or 1
        self.sample_interval = sample_interval

        self.oom_window = EventWindow(10 * 60)
        self.panic_window = EventWindow(30 * 60)
        self.blocked_window = EventWindow(5 * 60)
        self.steal_window = EventWindow(5 * 60)

    # === 辅助方法 ===

    async def _sample_cpu(self) -> Optional[Tuple[procfs.CPUStats, procfs.CPUStats]]:
        """间隔 sample_interval 读取两次 /proc/stat,失败返回 None"""
        try:
            first = procfs.read_cpu_stats(self.runner)
            await asyncio.sleep(self.sample_interval)
            second = procfs.read_cpu_stats(self.runner)
        except DiagnosticError as e:
            logger.debug("读取 /proc/stat 失败: %s", e)
            return None
        return first, second

    async def _run_systemd(self, command: str) -> Tuple[bool, CommandOutcome]:
        """执行依赖 systemd 的命令

        Returns:
            (systemd 是否可用, 执行结果)
        """
        outcome = await self.runner.run(command)
        if SYSTEMD_ABSENT_MARKER in outcome.output:
            return False, outcome
        return True, outcome

    # === 探针 ===

    async def check_uptime(self) -> CheckResult:
        """负载检查,阈值按 CPU 核数缩放"""
        result = self.new_result("read /proc/loadavg")
        details = result.details

        try:
            load1, load5, load15, _ = procfs.read_loadavg(self.runner)
            details["check_source"] = "proc_loadavg"
        except DiagnosticError as e:
            outcome = await self.runner.run("uptime")
            result.command = "uptime"
            if not outcome.ok:
                details["check_source"] = "failed"
                return self.fail(
                    result, CheckStatus.WARNING,
                    f"Failed to read load averages: {e} (fallback also failed: {outcome.error})",
                )
            details["check_source"] = (
                "host_fallback" if outcome.source == SOURCE_HOST else "container_fallback"
            )
            try:
                load1, load5, load15 = parse_uptime_output(outcome.output)
            except ValueError:
                details["raw_output"] = outcome.output.strip()
                return result.set(
                    CheckStatus.WARNING, "Could not parse load averages from uptime output"
                )

        cores = self.cpu_cores
        warning_threshold = cores * 0.75
        critical_threshold = cores * 1.5
        details.update({
            "load_1min": load1,
            "load_5min": load5,
            "load_15min": load15,
            "cpu_cores": cores,
            "warning_threshold": warning_threshold,
            "critical_threshold": critical_threshold,
        })

        try:
            details["uptime_seconds"] = procfs.read_uptime_seconds(self.runner)
        except DiagnosticError:
            pass

        # iowait 只用于说明负载来源,不参与分级
        iowait = None
        samples = await self._sample_cpu()
        if samples is not None:
            first, second = samples
            total = second.total - first.total
            if total > 0:
                iowait = (second.iowait - first.iowait) / total * 100
                details["iowait_percent"] = round(iowait, 2)

        status = classify_load(max(load1, load5), cores)
        loads = f"{load1:.2f} (1m), {load5:.2f} (5m), {load15:.2f} (15m)"
        suffix = f" - I/O wait: {iowait:.1f}%" if iowait is not None else ""

        if status == CheckStatus.CRITICAL:
            result.set(status, f"Very high load average: {loads}{suffix} - "
                               f"threshold: {critical_threshold:.2f} ({cores} cores)")
        elif status == CheckStatus.WARNING:
            result.set(status, f"High load average: {loads}{suffix} - "
                               f"threshold: {warning_threshold:.2f} ({cores} cores)")
        else:
            result.set(status, f"Load average is normal: {loads} - {cores} cores")

        if status != CheckStatus.HEALTHY and iowait is not None:
            details["load_type"] = "io_bound" if iowait >= 10 else "cpu_bound"
        return result

    async def check_processes(self) -> CheckResult:
        command = "top -bn1 | head -20"
        result = self.new_result(command)
        details = result.details

        outcome = await self.runner.run(command, requires=("top",))
        if not outcome.ok:
            return outcome.degrade(result, "Failed to execute top")
        details["check_source"] = outcome.source
        details["top_output"] = outcome.output.strip()

        for line in outcome.output.splitlines():
            if "Cpu(s)" in line:
                idle = _top_field(line, "id")
                if idle is not None:
                    details["cpu_usage"] = round(100 - idle, 1)
            elif "Mem" in line and ":" in line:
                used = _top_field(line, "used")
                if used is not None:
                    scale = {"MiB": 1024, "GiB": 1024 ** 2}.get(line.split()[0], 1)
                    details["memory_used_kb"] = int(used * scale)

        cpu = details.get("cpu_usage")
        if cpu is not None and cpu > 90:
            result.set(CheckStatus.WARNING, f"High CPU usage: {cpu:.1f}%")
        elif cpu is not None:
            result.set(CheckStatus.HEALTHY, "CPU usage is normal")
        else:
            return result.set(
                CheckStatus.WARNING, "Could not parse top output (no Cpu(s) line found)"
            )

        if outcome.source == SOURCE_CONTAINER:
            details["note"] = "Showing container processes (host access unavailable)"
            if result.status == CheckStatus.HEALTHY:
                result.message = "Warning: Showing container processes (host access unavailable)"
        return result

    async def check_resources(self) -> CheckResult:
        command = "vmstat 1 3"
        result = self.new_result(command)
        details = result.details

        outcome = await self.runner.run(command)
        if not outcome.ok:
            return outcome.degrade(result, "Failed to execute vmstat")
        details["check_source"] = outcome.source

        fields = vmstat_last_fields(outcome.output)
        if len(fields) < 17:
            details["raw_output"] = outcome.output.strip()
            return result.set(
                CheckStatus.WARNING, "Could not parse vmstat output (no data lines found)"
            )

        values = [parse_int(f, 0) for f in fields]
        swap_used = values[2]
        swap_in, swap_out = values[6], values[7]
        details.update({
            "runnable_processes": values[0],
            "blocked_processes": values[1],
            "swap_used_kb": swap_used,
            "free_memory_kb": values[3],
            "swap_in_per_sec": swap_in,
            "swap_out_per_sec": swap_out,
            "cpu_user_percent": values[12],
            "cpu_system_percent": values[13],
            "cpu_idle_percent": values[14],
            "cpu_usage": 100 - values[14],
        })
        if len(values) > 15:
            details["cpu_iowait_percent"] = values[15]

        if (swap_in > 0 or swap_out > 0) and swap_used > 0:
            return result.set(
                CheckStatus.WARNING,
                f"Swap is actively being used: {swap_used} KB "
                f"(si: {swap_in}, so: {swap_out} pages/sec)",
            )
        if swap_used > 0:
            details["note"] = "Swap is allocated but not actively used"
            return result.set(
                CheckStatus.HEALTHY,
                f"Resource usage is normal (swap allocated: {swap_used} KB, but not actively used)",
            )
        return result.set(CheckStatus.HEALTHY, "Resource usage is normal")

    async def check_services(self) -> CheckResult:
        command = "systemctl --failed --no-pager"
        result = self.new_result(command)
        details = result.details

        available, outcome = await self._run_systemd(command)
        if not available:
            details["note"] = ("System has not been booted with systemd. "
                               "Service monitoring requires systemd.")
            details["check_source"] = "systemd_not_available"
            return result.set(CheckStatus.HEALTHY, "Systemd not available in this environment")

        output = outcome.output if outcome.ok else ""
        if not output.strip():
            journal_cmd = ("journalctl --no-pager -u '*.service' --since '1 hour ago' "
                           "--priority=err --no-hostname | head -50")
            journal = await self.runner.run(journal_cmd, requires=("journalctl",))
            if journal.ok and journal.output.strip():
                output = journal.output
                result.command = journal_cmd
                details["check_method"] = "journalctl"
                outcome = journal

        if not output.strip():
            details["error"] = str(outcome.error) if outcome.error else "empty output"
            return result.set(
                CheckStatus.WARNING,
                "Service check not available (cannot access host systemd via nsenter)",
            )

        details["check_source"] = outcome.source
        service_output = output.strip()
        details["failed_services"] = service_output

        failed_count = 0
        names = []
        for line in service_output.splitlines():
            line = line.strip()
            if not line or line.startswith(("UNIT", "LOAD", "ACTIVE", "SUB", "DESCRIPTION")):
                continue
            if "lines" in line:
                continue
            if "failed" in line or ".service" in line:
                failed_count += 1
                name = line.split()[0]
                # systemctl 会在失败单元前输出 "●"
                if name == "●" and len(line.split()) > 1:
                    name = line.split()[1]
                if name.endswith(".service"):
                    names.append(name)

        details["failed_service_count"] = failed_count
        if names:
            details["failed_service_names"] = names

        if failed_count > 0:
            return result.set(CheckStatus.WARNING, f"Found {failed_count} failed services")
        return result.set(CheckStatus.HEALTHY, "All services are running normally")

    async def check_memory(self) -> CheckResult:
        """内存使用率: >90% Critical, >80% Warning"""
        result = self.new_result("read /proc/meminfo")
        details = result.details

        try:
            info, source = procfs.read_meminfo(self.runner)
        except DiagnosticError as e:
            return await self._memory_fallback(result, e)

        usage = info.usage_percent
        details.update({
            "check_source": source,
            "total_bytes": info.total,
            "available_bytes": info.available,
            "free_bytes": info.free,
            "used_bytes": info.used,
            "buffers_bytes": info.buffers,
            "cached_bytes": info.cached,
            "memory_usage_percent": round(usage, 2),
        })

        gb = 1024 ** 3
        if usage > 90:
            return result.set(
                CheckStatus.CRITICAL,
                f"Very high memory usage: {usage:.1f}% "
                f"({info.used / gb:.1f} GB used / {info.total / gb:.1f} GB total)",
            )
        if usage > 80:
            return result.set(
                CheckStatus.WARNING,
                f"High memory usage: {usage:.1f}% "
                f"({info.used / gb:.1f} GB used / {info.total / gb:.1f} GB total)",
            )
        return result.set(
            CheckStatus.HEALTHY,
            f"Memory usage is normal: {usage:.1f}% "
            f"({info.available / gb:.1f} GB available / {info.total / gb:.1f} GB total)",
        )

    async def _memory_fallback(self, result: CheckResult, error: Exception) -> CheckResult:
        """/proc/meminfo 不可读时用 free -h"""
        command = "free -h"
        result.command = command
        outcome = await self.runner.run(command)
        if not outcome.ok:
            result.details["check_source"] = "failed"
            return self.fail(
                result, CheckStatus.WARNING,
                f"Failed to read memory info: {error} (fallback also failed: {outcome.error})",
            )

        result.details["check_source"] = outcome.source + "_fallback"
        for line in outcome.output.splitlines():
            if not line.startswith("Mem:"):
                continue
            fields = line.split()
            if len(fields) < 3:
                break
            try:
                total = parse_memory_size(fields[1])
                used = parse_memory_size(fields[2])
            except ValueError:
                break
            if total <= 0:
                break
            usage = used / total * 100
            result.details.update({
                "total_bytes": total,
                "used_bytes": used,
                "memory_usage_percent": round(usage, 2),
            })
            if usage > 90:
                return result.set(CheckStatus.CRITICAL, f"Very high memory usage: {usage:.1f}%")
            if usage > 80:
                return result.set(CheckStatus.WARNING, f"High memory usage: {usage:.1f}%")
            return result.set(CheckStatus.HEALTHY, "Memory usage is normal")

        result.details["raw_output"] = outcome.output.strip()
        return result.set(CheckStatus.WARNING, "Memory check completed (using fallback method)")

    async def check_uninterruptible_tasks(self) -> CheckResult:
        """D 状态任务数,结合 5 分钟窗口区分瞬时和持续"""
        result = self.new_result("read /proc/stat (procs_blocked)")
        details = result.details

        try:
            blocked = procfs.read_procs_blocked(self.runner)
            details["check_source"] = "proc_stat"
        except DiagnosticError as e:
            command = "cat /proc/stat | grep procs_blocked"
            result.command = command
            outcome = await self.runner.run(command)
            if not outcome.ok:
                details["check_source"] = "failed"
                return self.fail(
                    result, CheckStatus.WARNING,
                    f"Failed to read /proc/stat: {e} (fallback also failed: {outcome.error})",
                )
            details["check_source"] = outcome.source + "_fallback"
            try:
                blocked = procfs.parse_procs_blocked(outcome.output)
            except DiagnosticError as parse_error:
                return self.fail(result, CheckStatus.WARNING,
                                 "Could not parse procs_blocked", parse_error)

        details["blocked_tasks"] = blocked

        try:
            load1, load5, load15, _ = procfs.read_loadavg(self.runner)
            details.update({"load_1min": load1, "load_5min": load5, "load_15min": load15})
        except DiagnosticError:
            pass

        if blocked > 5:
            self.blocked_window.add()
        recent = self.blocked_window.count()
        details["recent_high_blocked_count"] = recent
        details["window_duration_minutes"] = 5

        if blocked > 10 and recent >= 3:
            return result.set(
                CheckStatus.CRITICAL,
                f"High number of uninterruptible tasks: {blocked} "
                f"(sustained, may indicate I/O wait issues)",
            )
        if blocked > 10:
            return result.set(
                CheckStatus.WARNING,
                f"High number of uninterruptible tasks: {blocked} (transient, monitoring)",
            )
        if blocked > 5 and recent >= 2:
            return result.set(
                CheckStatus.WARNING,
                f"Elevated number of uninterruptible tasks: {blocked} (sustained)",
            )
        if blocked > 5:
            return result.set(
                CheckStatus.WARNING,
                f"Elevated number of uninterruptible tasks: {blocked} (transient)",
            )
        return result.set(CheckStatus.HEALTHY, f"Uninterruptible tasks count is normal: {blocked}")

    async def check_system_logs(self) -> CheckResult:
        command = "journalctl --no-pager -p err --since '1 hour ago' --no-hostname"
        result = self.new_result(command)
        details = result.details

        available, outcome = await self._run_systemd(command)
        if not available:
            details["note"] = ("System has not been booted with systemd. "
                               "System log monitoring requires systemd/journald.")
            details["check_source"] = "systemd_not_available"
            return result.set(CheckStatus.HEALTHY, "Systemd not available in this environment")

        if not outcome.ok or not outcome.output.strip():
            details["error"] = str(outcome.error) if outcome.error else "empty output"
            return result.set(
                CheckStatus.WARNING,
                "System logs check not available (cannot access host journal via nsenter)",
            )
        details["check_source"] = outcome.source

        lines = [
            line.strip() for line in outcome.output.splitlines()
            if line.strip() and not line.strip().startswith("--")
        ]
        error_count = len(lines)

        if lines:
            details["recent_errors"] = "\n".join(lines[:10])
        else:
            details["recent_errors"] = "-- No entries --"
        if error_count > 10:
            details["recent_errors_truncated"] = True

        critical = [
            line for line in lines
            if any(keyword in line.lower() for keyword in CRITICAL_LOG_KEYWORDS)
        ]
        details["check_time_window"] = "1 hour"
        details["note"] = ("Only errors from the last hour are checked. "
                           "Errors that occurred earlier or have been resolved may not appear.")
        details["error_count"] = error_count
        details["critical_error_count"] = len(critical)
        details["critical_errors"] = cap_samples(critical)

        boots = await self.runner.run(
            "journalctl --no-pager --list-boots --no-hostname | tail -5", requires=("journalctl",)
        )
        if boots.ok and boots.output.strip():
            boot_lines = boots.output.strip().splitlines()
            details["recent_boots"] = len(boot_lines)
            if len(boot_lines) > 1:
                details["last_boot"] = boot_lines[-1]

        if critical:
            return result.set(
                CheckStatus.CRITICAL,
                f"Found {len(critical)} critical errors in system logs (last hour)",
            )
        if error_count == 0:
            return result.set(CheckStatus.HEALTHY, "No errors found in system logs (last hour)")
        return result.set(
            CheckStatus.WARNING, f"Found {error_count} errors in system logs in the last hour"
        )

    async def check_file_descriptors(self) -> CheckResult:
        result = self.new_result("read /proc/sys/fs/file-nr")
        details = result.details

        try:
            content, source = self.runner.read_file("/proc/sys/fs/file-nr")
            details["check_source"] = source
        except DiagnosticError as e:
            outcome = await self.runner.run("cat /proc/sys/fs/file-nr")
            result.command = "cat /proc/sys/fs/file-nr"
            if not outcome.ok:
                details["check_source"] = "failed"
                return self.fail(
                    result, CheckStatus.WARNING,
                    f"Failed to read file descriptor stats: {e} "
                    f"(fallback also failed: {outcome.error})",
                )
            content = outcome.output
            details["check_source"] = outcome.source + "_fallback"

        fields = content.split()
        if len(fields) < 3:
            details["raw_output"] = content.strip()
            return result.set(CheckStatus.WARNING, "Could not parse /proc/sys/fs/file-nr")

        allocated = parse_int(fields[0], 0)
        unused = parse_int(fields[1], 0)
        maximum = parse_int(fields[2], 0)
        details.update({"allocated": allocated, "unused": unused, "max": maximum})

        if maximum == UNLIMITED_FD_MAX:
            details["unlimited"] = True
            return result.set(CheckStatus.HEALTHY, "File descriptor limit is unlimited")
        if maximum <= 0:
            return result.set(
                CheckStatus.HEALTHY, f"File descriptor usage: {allocated} (no limit configured)"
            )

        usage = allocated / maximum * 100
        details["usage_percent"] = round(usage, 2)
        summary = f"{usage:.1f}% ({allocated}/{maximum})"
        if usage > 90:
            return result.set(CheckStatus.CRITICAL, f"File descriptor usage is critical: {summary}")
        if usage > 80:
            return result.set(CheckStatus.WARNING, f"File descriptor usage is high: {summary}")
        return result.set(CheckStatus.HEALTHY, f"File descriptor usage is normal: {summary}")

    async def check_zombie_processes(self) -> CheckResult:
        command = "ps -eo stat | awk '/^Z/ {c++} END {print c+0}'"
        result = self.new_result(command)
        details = result.details

        outcome = await self.runner.run(command, requires=("ps", "awk"))
        if not outcome.ok:
            return outcome.degrade(result, "Failed to check zombie processes")
        details["check_source"] = outcome.source

        text = outcome.output.strip()
        try:
            count = int(text.splitlines()[-1].strip())
        except (ValueError, IndexError):
            details["raw_output"] = text
            return result.set(
                CheckStatus.WARNING,
                f"Failed to parse zombie process count (output: {text[:100]})",
            )

        details["zombie_count"] = count
        if count > 10:
            return result.set(CheckStatus.CRITICAL, f"High number of zombie processes: {count}")
        if count > 0:
            return result.set(CheckStatus.WARNING, f"Zombie processes detected: {count}")
        return result.set(CheckStatus.HEALTHY, "No zombie processes found")

    async def check_ntp_sync(self) -> CheckResult:
        """依次尝试 chronyd、ntpd、systemd-timesyncd"""
        result = self.new_result()
        details = result.details

        chrony = await self.runner.run("chronyc tracking 2>/dev/null")
        if chrony.ok and chrony.output.strip():
            result.command = chrony.command
            details["ntp_daemon"] = "chronyd"
            tracking = parse_key_value_lines(chrony.output)
            details["leap_status"] = tracking.get("Leap status", "")
            details["reference_id"] = tracking.get("Reference ID", "")
            details["system_time"] = tracking.get("System time", "")
            if details["leap_status"] == "Normal":
                return result.set(CheckStatus.HEALTHY, "NTP synchronization is normal (chronyd)")
            return result.set(CheckStatus.WARNING, "NTP synchronization may have issues (chronyd)")

        ntpq = await self.runner.run("ntpq -p 2>/dev/null")
        if ntpq.ok and ntpq.output.strip():
            result.command = ntpq.command
            details["ntp_daemon"] = "ntpd"
            details["peers_output"] = ntpq.output.strip()
            if "*" in ntpq.output:
                return result.set(CheckStatus.HEALTHY, "NTP synchronization is normal (ntpd)")
            return result.set(CheckStatus.WARNING, "No synchronized NTP peers found (ntpd)")

        timedatectl = await self.runner.run("timedatectl status 2>/dev/null")
        if timedatectl.ok and timedatectl.output.strip():
            result.command = timedatectl.command
            details["ntp_daemon"] = "systemd-timesyncd"
            details["timedatectl_output"] = timedatectl.output.strip()
            if "synchronized: yes" in timedatectl.output:
                return result.set(
                    CheckStatus.HEALTHY, "NTP synchronization is normal (systemd-timesyncd)"
                )
            return result.set(
                CheckStatus.WARNING, "NTP synchronization may have issues (systemd-timesyncd)"
            )

        details["ntp_daemon"] = "none"
        details["note"] = "None of chronyc, ntpq or timedatectl is available"
        return result.set(CheckStatus.WARNING, "NTP daemon not found or not accessible")

    async def check_kernel_panics(self) -> CheckResult:
        """内核 panic/Oops/BUG,出现即 Critical"""
        command = (f"dmesg 2>/dev/null | grep -iE '{PANIC_PATTERN}' "
                   f"| grep -viE '(WARNING:|INFO:|DEBUG:)' | tail -20")
        result = self.new_result(command)
        details = result.details

        outcome = await self.runner.run(command, requires=("dmesg",))
        details["check_source"] = outcome.source
        panic_output = outcome.output.strip() if outcome.ok else ""

        journal_cmd = (f"journalctl --no-pager -k -p err --since '1 hour ago' "
                       f"| grep -iE '{PANIC_PATTERN}' "
                       f"| grep -viE '(WARNING:|INFO:|DEBUG:)' | tail -20")
        journal_out, journal_err = await self.runner.run_host(journal_cmd, requires=("journalctl",))
        if journal_err is None and journal_out.strip():
            details["journal_panic_output"] = journal_out.strip()
            panic_output = "\n".join(filter(None, [panic_output, journal_out.strip()]))

        if not outcome.ok and journal_err is not None:
            details["error"] = str(outcome.error)
            details["note"] = "Neither dmesg nor the kernel journal could be read"

        events = unique_lines(panic_output)
        for _ in events:
            self.panic_window.add()

        panic_count = len(events)
        recent = self.panic_window.count()
        details["panic_count"] = panic_count
        details["panic_samples"] = cap_samples(events)
        details["recent_panic_count_in_window"] = recent
        details["window_duration_minutes"] = 30

        if panic_count > 0 or recent > 0:
            if recent > 0:
                message = (f"Found {panic_count} kernel panic/Oops/BUG events "
                           f"(recent: {recent} in last 30 min)")
            else:
                message = f"Found {panic_count} kernel panic/Oops/BUG events"
            return result.set(CheckStatus.CRITICAL, message)

        if not outcome.ok and journal_err is not None:
            return result.set(CheckStatus.WARNING, "Kernel panic check not available")
        return result.set(CheckStatus.HEALTHY, "No kernel panics detected")

    async def check_oom_killer(self) -> CheckResult:
        """OOM 事件: 10 分钟窗口内 ≥3 次 Critical,其余出现即 Warning"""
        command = f"dmesg --since=-1h 2>/dev/null | grep -iE '{OOM_PATTERN}' | tail -20"
        result = self.new_result(command)
        details = result.details

        outcome = await self.runner.run(command, requires=("dmesg",))
        if not outcome.ok or not outcome.output.strip():
            # 部分发行版的 dmesg 不支持 --since
            fallback = f"dmesg --ctime 2>/dev/null | tail -200 | grep -iE '{OOM_PATTERN}' || true"
            outcome = await self.runner.run(fallback, requires=("dmesg",))
            result.command = fallback
        details["check_source"] = outcome.source
        oom_output = outcome.output.strip() if outcome.ok else ""

        journal_cmd = (f"journalctl --no-pager -p err --since '1 hour ago' "
                       f"| grep -iE '{OOM_PATTERN}' | tail -20")
        journal_out, journal_err = await self.runner.run_host(journal_cmd, requires=("journalctl",))
        if journal_err is None and journal_out.strip():
            details["journal_oom_output"] = journal_out.strip()
            oom_output = "\n".join(filter(None, [oom_output, journal_out.strip()]))

        events = unique_lines(oom_output)
        for _ in events:
            self.oom_window.add()

        oom_count = len(events)
        recent = self.oom_window.count()
        details["oom_count"] = oom_count
        details["oom_samples"] = cap_samples(events)
        details["recent_oom_count_in_window"] = recent
        details["window_duration_minutes"] = 10

        if recent >= 3:
            return result.set(
                CheckStatus.CRITICAL,
                f"Found {recent} OOM killer events in the last 10 minutes (sustained issue)",
            )
        if oom_count > 0 or recent > 0:
            if recent > 0:
                message = f"Found {oom_count} OOM killer events (recent: {recent} in last 10 min)"
            else:
                message = f"Found {oom_count} OOM killer events"
            return result.set(CheckStatus.WARNING, message)
        if not outcome.ok:
            details["error"] = str(outcome.error)
            return result.set(CheckStatus.WARNING, "OOM killer check not available")
        return result.set(CheckStatus.HEALTHY, "No OOM killer events detected")

    async def check_cpu_frequency(self) -> CheckResult:
        command = "cat /sys/devices/system/cpu/cpu*/cpufreq/scaling_governor 2>/dev/null | sort -u"
        result = self.new_result(command)
        details = result.details

        outcome = await self.runner.run(command)
        governors = [line.strip() for line in outcome.output.splitlines() if line.strip()]
        if not outcome.ok or not governors:
            details["note"] = "CPU frequency scaling information not available"
            return result.set(CheckStatus.WARNING, "CPU frequency scaling check not available")

        details["check_source"] = outcome.source
        details["governors"] = governors

        throttle = await self.runner.run(
            "cat /sys/devices/system/cpu/cpu*/thermal_throttle/* 2>/dev/null | head -20"
        )
        if throttle.ok and throttle.output.strip():
            details["throttle_info"] = throttle.output.strip()

        freq = await self.runner.run(
            "cat /sys/devices/system/cpu/cpu*/cpufreq/scaling_cur_freq 2>/dev/null | head -5"
        )
        if freq.ok and freq.output.strip():
            details["current_frequencies_sample"] = freq.output.strip().splitlines()

        return result.set(
            CheckStatus.HEALTHY,
            f"CPU frequency scaling active (governors: {', '.join(governors)})",
        )

    async def check_interrupts_balance(self) -> CheckResult:
        """单个设备中断集中在一个 CPU 上 (>60%) 时告警,从不判定 Critical"""
        result = self.new_result("cat /proc/interrupts")
        details = result.details

        try:
            content, source = self.runner.read_file("/proc/interrupts")
        except DiagnosticError as e:
            details["check_source"] = "failed"
            return self.fail(result, CheckStatus.WARNING,
                             "Failed to read interrupt statistics", e)
        details["check_source"] = source

        lines = content.strip().splitlines()
        if len(lines) < 2:
            return result.set(CheckStatus.WARNING, "Invalid /proc/interrupts format")

        cpu_count = sum(1 for field in lines[0].split() if field.startswith("CPU"))
        if cpu_count == 0:
            return result.set(
                CheckStatus.WARNING, "Could not determine CPU count from /proc/interrupts"
            )
        details["cpu_count"] = cpu_count

        imbalanced = []
        excluded = 0
        for line in lines[1:]:
            fields = line.split()
            if len(fields) < 1 + cpu_count:
                continue

            name = " ".join(fields[1 + cpu_count:]) or fields[0]
            upper = name.upper()
            # MSI/MSI-X 中断本就绑定单个 CPU
            if "MSI-X" in upper or "MSIX" in upper or "IR-PCI-MSI" in upper:
                excluded += 1
                continue

            counts = [parse_int(v, 0) for v in fields[1:1 + cpu_count]]
            total = sum(counts)
            if total < 100:
                continue

            peak = max(counts)
            ratio = peak / total
            if ratio > IRQ_IMBALANCE_THRESHOLD:
                imbalanced.append({
                    "irq_name": name,
                    "irq_number": fields[0].rstrip(":"),
                    "max_cpu": counts.index(peak),
                    "max_cpu_count": peak,
                    "total_count": total,
                    "imbalance_ratio": f"{ratio * 100:.1f}%",
                    "non_critical_device": any(dev in upper for dev in BENIGN_IRQ_DEVICES),
                })

        critical_irqs = [irq for irq in imbalanced if not irq["non_critical_device"]]
        benign_irqs = [irq for irq in imbalanced if irq["non_critical_device"]]

        details["imbalance_threshold"] = "60%"
        details["total_irqs_checked"] = len(lines) - 1
        details["msix_interrupts_excluded"] = excluded
        details["critical_imbalanced_irqs"] = cap_samples(critical_irqs)
        details["non_critical_imbalanced_irqs"] = cap_samples(benign_irqs)
        details["critical_imbalanced_count"] = len(critical_irqs)

        if critical_irqs:
            if len(critical_irqs) == 1:
                irq = critical_irqs[0]
                message = (f"IRQ imbalance detected on critical device: {irq['irq_name']} "
                           f"({irq['imbalance_ratio']} on CPU{irq['max_cpu']})")
            else:
                message = (f"IRQ imbalance detected: {len(critical_irqs)} critical devices "
                           f"with >60% imbalance")
            if benign_irqs:
                message += f" ({len(benign_irqs)} non-critical devices also imbalanced)"
            return result.set(CheckStatus.WARNING, message)

        if benign_irqs:
            details["note"] = ("Non-critical hardware devices (USB, audio, graphics, ME) have "
                               "imbalanced interrupts with low frequency")
            return result.set(
                CheckStatus.HEALTHY,
                f"IRQ imbalance detected only on non-critical devices "
                f"({len(benign_irqs)} devices: USB, audio, graphics, ME) - not a performance concern",
            )
        return result.set(
            CheckStatus.HEALTHY, f"Interrupt balance is normal ({len(lines) - 1} IRQs checked)"
        )

    async def check_cpu_steal_time(self) -> CheckResult:
        """虚拟化环境的 CPU 窃取时间"""
        result = self.new_result("read /proc/stat (2 measurements)")
        details = result.details

        samples = await self._sample_cpu()
        if samples is None:
            return await self._steal_from_top(result)

        first, second = samples
        total = second.total - first.total
        details["check_source"] = "proc_stat"
        details["measurement_interval_seconds"] = self.sample_interval
        if total <= 0:
            return result.set(CheckStatus.WARNING, "No CPU activity detected (total diff is 0)")

        steal_jiffies = second.steal - first.steal
        steal = steal_jiffies / total * 100
        details["steal_percent"] = round(steal, 2)
        details["steal_jiffies"] = steal_jiffies
        details["total_jiffies"] = total

        if steal >= 10:
            self.steal_window.add()
        recent = self.steal_window.count()
        details["recent_high_steal_count"] = recent
        details["window_duration_minutes"] = 5

        if steal >= 20 and recent >= 2:
            return result.set(
                CheckStatus.CRITICAL,
                f"Very high CPU steal time: {steal:.1f}% (sustained, {recent} occurrences "
                f"in last 5 min) - indicates severe resource contention in virtualized environment",
            )
        if steal >= 20:
            return result.set(
                CheckStatus.WARNING,
                f"Very high CPU steal time: {steal:.1f}% (transient) - "
                f"indicates resource contention in virtualized environment",
            )
        if steal >= 10 and recent >= 2:
            return result.set(
                CheckStatus.WARNING,
                f"High CPU steal time: {steal:.1f}% (persistent, {recent} occurrences "
                f"in last 5 min) - may indicate resource contention",
            )
        if steal >= 10:
            return result.set(
                CheckStatus.WARNING, f"High CPU steal time: {steal:.1f}% (transient) - monitoring"
            )
        return result.set(CheckStatus.HEALTHY, f"CPU steal time is normal: {steal:.1f}%")

    async def _steal_from_top(self, result: CheckResult) -> CheckResult:
        command = "top -bn1 | grep -i 'Cpu(s)'"
        result.command = command
        outcome = await self.runner.run(command, requires=("top",))
        if not outcome.ok:
            result.details["check_source"] = "failed"
            return outcome.degrade(result, "Failed to check CPU steal time")

        result.details["check_source"] = outcome.source + "_fallback"
        line = outcome.output.strip()
        result.details["cpu_line"] = line
        steal = _top_field(line, "st") or 0.0
        result.details["steal_percent"] = steal
        if steal > 10:
            return result.set(
                CheckStatus.WARNING, f"High CPU steal time: {steal:.1f}% (using fallback method)"
            )
        return result.set(
            CheckStatus.HEALTHY, f"CPU steal time is normal: {steal:.1f}% (using fallback method)"
        )

    async def check_memory_fragmentation(self) -> CheckResult:
        result = self.new_result("cat /proc/buddyinfo")
        details = result.details

        try:
            content, source = self.runner.read_file("/proc/buddyinfo")
        except DiagnosticError as e:
            return self.fail(result, CheckStatus.WARNING,
                             "Failed to check memory fragmentation", e)
        details["check_source"] = source
        details["buddyinfo"] = content.strip()

        # Normal 区 order 0-10 的空闲块数
        total_free = 0
        for line in content.splitlines():
            if "Normal" not in line:
                continue
            for value in line.split()[4:15]:
                total_free += parse_int(value, 0)
        details["total_free_pages"] = total_free

        return result.set(CheckStatus.HEALTHY, "Memory fragmentation check completed")

    async def check_swap_activity(self) -> CheckResult:
        command = "vmstat 1 3"
        result = self.new_result(command)
        details = result.details

        outcome = await self.runner.run(command)
        if not outcome.ok:
            return outcome.degrade(result, "Failed to check swap activity")
        details["check_source"] = outcome.source

        fields = vmstat_last_fields(outcome.output)
        if len(fields) < 8:
            details["raw_output"] = outcome.output.strip()
            return result.set(CheckStatus.UNKNOWN, "Could not parse vmstat output")

        swap_in = parse_int(fields[6], 0)
        swap_out = parse_int(fields[7], 0)
        details["swap_in_per_sec"] = swap_in
        details["swap_out_per_sec"] = swap_out
        rates = f"(si: {swap_in}, so: {swap_out} pages/sec)"

        if swap_in > 100 or swap_out > 100:
            return result.set(CheckStatus.WARNING, f"High swap activity detected {rates}")
        if swap_in > 10 or swap_out > 10:
            return result.set(CheckStatus.WARNING, f"Moderate swap activity detected {rates}")
        if swap_in > 0 or swap_out > 0:
            return result.set(CheckStatus.HEALTHY, f"Minimal swap activity {rates} - normal")
        return result.set(CheckStatus.HEALTHY, "No swap activity detected")

    async def check_context_switches(self) -> CheckResult:
        command = "vmstat 1 3"
        result = self.new_result(command)
        details = result.details

        outcome = await self.runner.run(command)
        if not outcome.ok:
            return outcome.degrade(result, "Failed to check context switches")
        details["check_source"] = outcome.source

        fields = vmstat_last_fields(outcome.output)
        switches = parse_int(fields[10]) if len(fields) >= 11 else None
        if switches is None:
            details["raw_output"] = outcome.output.strip()
            return result.set(CheckStatus.UNKNOWN, "Could not parse vmstat output")

        details["context_switches_per_sec"] = switches
        if switches > 100000:
            return result.set(CheckStatus.WARNING, f"Very high context switch rate: {switches}/sec")
        if switches > 50000:
            return result.set(CheckStatus.WARNING, f"High context switch rate: {switches}/sec")
        return result.set(CheckStatus.HEALTHY, f"Context switch rate is normal: {switches}/sec")

    async def check_selinux_status(self) -> CheckResult:
        command = "getenforce 2>/dev/null"
        result = self.new_result(command)
        details = result.details

        output, error = await self.runner.run_host(command)
        if error is not None:
            details["note"] = "SELinux may not be installed or accessible"
            details["error"] = str(error)
            return result.set(
                CheckStatus.WARNING,
                "SELinux status check not available (getenforce not found or not accessible)",
            )

        mode = output.strip()
        details["status"] = mode

        sestatus, sestatus_err = await self.runner.run_host("sestatus 2>/dev/null")
        if sestatus_err is None and sestatus.strip():
            details["sestatus_output"] = sestatus.strip()

        if mode == "Enforcing":
            return result.set(CheckStatus.HEALTHY, "SELinux is enforcing")
        if mode == "Permissive":
            return result.set(CheckStatus.WARNING, "SELinux is in permissive mode")
        if mode == "Disabled":
            return result.set(CheckStatus.WARNING, "SELinux is disabled")
        return result.set(CheckStatus.UNKNOWN, f"SELinux status: {mode}")

    async def check_ssh_access(self) -> CheckResult:
        """SSH 服务状态与最近登录,仅做信息收集"""
        result = self.new_result("last -n 20 2>/dev/null | head -20")
        details = result.details

        available, status = await self._run_systemd(
            "systemctl is-active sshd 2>/dev/null || systemctl is-active ssh 2>/dev/null"
        )
        if not available:
            details["note"] = "Systemd not available, cannot check SSH service status"
        elif status.output.strip():
            details["ssh_service_status"] = status.output.strip()

        logins, error = await self.runner.run_host(result.command)
        if error is not None:
            result.command = "who 2>/dev/null"
            logins, error = await self.runner.run_host(result.command)
        if error is None and logins.strip():
            details["recent_ssh_connections"] = logins.strip()

        perms, perms_err = await self.runner.run_host("ls -l /etc/ssh/sshd_config 2>/dev/null")
        if perms_err is None and perms.strip():
            details["sshd_config_permissions"] = perms.strip()

        return result.set(CheckStatus.HEALTHY, "SSH access check completed")

    async def check_kernel_modules(self) -> CheckResult:
        command = "lsmod | head -50"
        result = self.new_result(command)
        details = result.details

        outcome = await self.runner.run(command, requires=("lsmod",))
        if not outcome.ok:
            return outcome.degrade(result, "Failed to list kernel modules")
        details["check_source"] = outcome.source

        lines = outcome.output.strip().splitlines()
        modules = [line.split()[0] for line in lines[1:] if line.split()]
        details["module_count"] = len(modules)
        if modules:
            details["modules_sample"] = modules[:20]
        return result.set(CheckStatus.HEALTHY, f"Found {len(modules)} loaded kernel modules")


def _top_field(line: str, label: str) -> Optional[float]:
    """从 top 的汇总行中取出某个标签前面的数值

    Example:
        _top_field("%Cpu(s):  3.1 us,  1.0 sy,  0.0 ni, 95.5 id", "id")  # 95.5
        _top_field("MiB Mem :  15842.3 total,   8123.4 free,   4000.0 used", "used")  # 4000.0
    """
    tokens = line.replace(",", " ").replace(":", " ").split()
    for i, token in enumerate(tokens):
        if i == 0:
            continue
        if token == label or token.rstrip(".") == label:
            value = parse_float(tokens[i - 1].rstrip("%k"))
            if value is not None:
                return value
        # 旧版 top: "3.1%us"
        if token.endswith("%" + label):
            return parse_float(token[:-len(label) - 1])
    return None
