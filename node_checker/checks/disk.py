"""
存储探针

- 容量/inode: df,≥95% Critical,≥85% Warning
- SMART: lsblk + smartctl
- 性能: iostat -x,延迟阈值按设备类型 (NVMe / 机械盘) 和利用率分档自适应
- RAID: /proc/mdstat 与 megacli
- LVM: pvs / lvs / vgs,含 thin pool 使用率
- 内核日志中的文件系统错误与只读重挂载
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from ..collectors.models import CheckResult, CheckStatus
from ..utils.errors import ToolUnavailableError
from ..utils.parsers import (
    cap_samples,
    find_last_header,
    parse_float,
    parse_percent,
    parse_size_to_gb,
    truncate,
)
from .base import BaseChecker

logger = logging.getLogger(__name__)

USAGE_CRITICAL_PERCENT = 95
USAGE_WARNING_PERCENT = 85

# PV/VG 空闲低于该比例判定 Critical (经验值)
LOW_FREE_PERCENT = 5

SKIP_FS_TYPES = {
    "tmpfs", "devtmpfs", "squashfs", "overlay", "proc", "sysfs", "cgroup", "cgroup2",
    "debugfs", "tracefs", "securityfs", "pstore", "hugetlbfs", "configfs", "fusectl",
    "ramfs", "composefs",
}

# inode 抽查的关键路径
IMPORTANT_PATHS = ["/", "/etc", "/var", "/var/log", "/var/lib/containers", "/var/lib/kubelet", "/boot"]

# iostat -x 字段: 名称 -> (表头列名, 默认列位置)
IOSTAT_COLUMNS = {
    "reads_per_sec": ("r/s", 1),
    "read_kb_per_sec": ("rkB/s", 2),
    "read_requests_merged": ("rrqm/s", 3),
    "read_await_ms": ("r_await", 5),
    "read_avg_request_size": ("rareq-sz", 6),
    "writes_per_sec": ("w/s", 7),
    "write_kb_per_sec": ("wkB/s", 8),
    "write_requests_merged": ("wrqm/s", 9),
    "write_await_ms": ("w_await", 11),
    "write_avg_request_size": ("wareq-sz", 12),
    "avg_queue_size": ("aqu-sz", 21),
    "utilization_percent": ("%util", 22),
}

IOSTAT_NOTE = ("Performance metrics are averaged over 3 seconds. Thresholds depend on device "
               "type (NVMe vs rotational) and utilization bucket (low <50%, moderate 50-80%, "
               "heavy >80%). Service time is approximated from r_await and w_await.")

HIGH_UTILIZATION_PERCENT = 90
HIGH_QUEUE_DEPTH = 10.0


def classify_usage(percent: float) -> CheckStatus:
    """容量/inode 使用率分级"""
    if percent >= USAGE_CRITICAL_PERCENT:
        return CheckStatus.CRITICAL
    if percent >= USAGE_WARNING_PERCENT:
        return CheckStatus.WARNING
    return CheckStatus.HEALTHY


def is_nvme(device: str) -> bool:
    return "nvme" in device


def latency_thresholds(device: str, util: Optional[float]) -> Tuple[float, float, float]:
    """按设备类型和利用率分档计算延迟阈值

    Returns:
        (读延迟 ms, 写延迟 ms, 近似服务时间 ms)
    """
    heavy = util is not None and util > 80
    moderate = util is not None and util > 50

    if is_nvme(device):
        if heavy:
            return 150.0, 300.0, 100.0
        if moderate:
            return 100.0, 200.0, 50.0
        return 100.0, 250.0, 30.0

    if heavy:
        return 150.0, 300.0, 100.0
    if moderate:
        return 100.0, 200.0, 50.0
    return 100.0, 200.0, 50.0


@dataclass
class DeviceStats:
    """iostat -x 中单个设备的统计"""
    device: str
    stats: Dict[str, float]

    @property
    def util(self) -> Optional[float]:
        return self.stats.get("utilization_percent")


def parse_iostat(output: str) -> Optional[List[DeviceStats]]:
    """解析 iostat -x 最后一组采样

    Returns:
        设备统计列表;找不到表头时返回 None
    """
    lines = output.strip().splitlines()
    header_index = find_last_header(lines, "Device", "r/s")
    if header_index < 0:
        return None

    header = lines[header_index].split()
    positions = {}
    for name, (column, default) in IOSTAT_COLUMNS.items():
        positions[name] = header.index(column) if column in header else default

    devices = []
    for line in lines[header_index + 1:]:
        fields = line.split()
        if len(fields) < 14:
            continue
        device = fields[0]
        if device in ("Device", "Device:") or device.startswith(("avg-cpu", "Linux")):
            continue
        if device.startswith(("loop", "dm-")):
            continue

        stats = {}
        for name, index in positions.items():
            if index < len(fields):
                value = parse_float(fields[index])
                if value is not None:
                    stats[name] = value
        devices.append(DeviceStats(device, stats))
    return devices


def parse_df_line(line: str, with_type: bool = True) -> Optional[Dict[str, str]]:
    """解析 df -PT 的一行: filesystem type size used avail use% mount"""
    fields = line.split()
    minimum = 7 if with_type else 6
    if len(fields) < minimum:
        return None
    if with_type:
        return {
            "filesystem": fields[0],
            "fs_type": fields[1],
            "size": fields[2],
            "used": fields[3],
            "available": fields[4],
            "use_percent": fields[5],
            "mounted_on": " ".join(fields[6:]),
        }
    return {
        "filesystem": fields[0],
        "fs_type": "",
        "size": fields[1],
        "used": fields[2],
        "available": fields[3],
        "use_percent": fields[4],
        "mounted_on": " ".join(fields[5:]),
    }


class DiskChecker(BaseChecker):
    """存储检查器"""

    async def check_space(self) -> CheckResult:
        result = self.new_result("df -hPT")
        details = result.details

        outcome = await self.runner.run("df -hPT", "df -hPT")
        if not outcome.ok:
            return outcome.degrade(result, "Failed to execute df")
        details["check_source"] = outcome.source

        usage = []
        critical = []
        warning = []
        for line in outcome.output.strip().splitlines()[1:]:
            entry = parse_df_line(line)
            if entry is None:
                continue
            mount = entry["mounted_on"]
            if entry["fs_type"] in SKIP_FS_TYPES:
                continue
            if "/tmp" in mount or mount.startswith("/run/"):
                continue
            # 只读小镜像永远显示 100%
            if entry["available"] == "0" and entry["use_percent"] == "100%":
                continue

            usage.append(entry)
            percent = parse_percent(entry["use_percent"])
            if percent is None:
                continue
            status = classify_usage(percent)
            if status == CheckStatus.CRITICAL:
                critical.append(f"{mount}: {percent:.0f}%")
            elif status == CheckStatus.WARNING:
                warning.append(f"{mount}: {percent:.0f}%")

        logger.debug("解析到 %d 个文件系统 (critical=%d, warning=%d)",
                     len(usage), len(critical), len(warning))
        details["disk_usage"] = usage
        details["critical_disks"] = critical
        details["warning_disks"] = warning

        if critical:
            return result.set(CheckStatus.CRITICAL, f"Critical disk usage: {', '.join(critical)}")
        if warning:
            return result.set(CheckStatus.WARNING, f"Warning disk usage: {', '.join(warning)}")
        return result.set(CheckStatus.HEALTHY, "Disk usage is normal")

    async def check_smart(self) -> CheckResult:
        result = self.new_result("lsblk -d -n -o NAME")
        details = result.details

        listing = await self.runner.run("lsblk -d -n -o NAME")
        if not listing.ok:
            return listing.degrade(result, "Failed to list disk devices")
        details["check_source"] = listing.source

        devices = [
            name.strip() for name in listing.output.splitlines()
            if name.strip().startswith(("sd", "nvme", "vd", "hd"))
        ]

        smart: Dict[str, Dict] = {}
        critical = []
        warning = []
        for device in devices:
            outcome = await self.runner.run(f"smartctl -H -A /dev/{device}")
            # smartctl 的退出码是位掩码,非 0 时输出仍然有效
            text = outcome.output.strip()
            if not text or outcome.tool_missing:
                smart[device] = {"status": "not_accessible",
                                 "error": str(outcome.error) if outcome.error else "no output"}
                continue

            info = parse_smartctl(text)
            smart[device] = info
            if info.get("health") and info["health"] != "PASSED":
                critical.append(f"{device}: SMART test failed")
            if info.get("pending_sectors", 0) > 0:
                critical.append(f"{device}: {info['pending_sectors']} pending sectors")
            if info.get("reallocated_sectors", 0) > 0:
                warning.append(f"{device}: {info['reallocated_sectors']} reallocated sectors")

        details["devices_checked"] = devices
        details["smart_results"] = smart
        details["critical_disks"] = critical
        details["warning_disks"] = warning

        if devices and all(v.get("status") == "not_accessible" for v in smart.values()):
            details["note"] = "smartctl is not available or devices do not support SMART"
            return result.set(CheckStatus.UNKNOWN, "SMART data not accessible on any device")

        if critical:
            return result.set(CheckStatus.CRITICAL, f"Critical SMART issues: {', '.join(critical)}")
        if warning:
            return result.set(CheckStatus.WARNING, f"Warning SMART issues: {', '.join(warning)}")
        return result.set(CheckStatus.HEALTHY, "All disks are healthy")

    async def _iostat(self, result: CheckResult) -> Optional[List[DeviceStats]]:
        """执行 iostat -x 1 3 并解析;失败时填充 result 并返回 None"""
        command = "iostat -x 1 3"
        result.command = command
        outcome = await self.runner.run(command)
        if not outcome.ok:
            outcome.degrade(result, "Failed to execute iostat (iostat may not be installed)")
            result.details["note"] = ("iostat is part of the sysstat package. Install with: "
                                      "yum install sysstat or apt-get install sysstat")
            return None
        result.details["check_source"] = outcome.source

        devices = parse_iostat(outcome.output)
        if devices is None:
            result.details["raw_output"] = truncate(outcome.output.strip())
            result.set(CheckStatus.WARNING, "Unable to parse iostat output (header not found)")
            return None
        return devices

    async def check_performance(self) -> CheckResult:
        """iostat 利用率、读写延迟和近似服务时间"""
        result = self.new_result()
        details = result.details

        devices = await self._iostat(result)
        if devices is None:
            return result

        high_util = []
        high_latency = []
        high_service = []
        device_stats = {}
        for dev in devices:
            stats = dev.stats
            util = dev.util
            context = f" (util: {util:.1f}%)" if util is not None else ""

            if util is not None and util > HIGH_UTILIZATION_PERCENT:
                high_util.append(f"{dev.device}: {util:.1f}%")

            read_limit, write_limit, service_limit = latency_thresholds(dev.device, util)
            r_await = stats.get("read_await_ms")
            w_await = stats.get("write_await_ms")
            if r_await is not None and r_await > read_limit:
                high_latency.append(f"{dev.device} read: {r_await:.1f}ms{context}")
            if w_await is not None and w_await > write_limit:
                high_latency.append(f"{dev.device} write: {w_await:.1f}ms{context}")

            rps = stats.get("reads_per_sec")
            wps = stats.get("writes_per_sec")
            if None not in (r_await, w_await, rps, wps) and rps + wps > 0:
                service = (r_await * rps + w_await * wps) / (rps + wps)
                stats["service_time_ms"] = round(service, 2)
                if service > service_limit:
                    suffix = f" (util: {util:.1f}%, approx)" if util is not None else " (approx)"
                    high_service.append(f"{dev.device}: {service:.1f}ms{suffix}")

            stats["device_class"] = "nvme" if is_nvme(dev.device) else "rotational"
            device_stats[dev.device] = stats

        details["device_stats"] = device_stats
        details["check_method"] = "iostat -x (3 second average)"
        details["note"] = IOSTAT_NOTE
        details["high_utilization"] = high_util
        details["high_latency"] = high_latency
        details["high_service_time"] = high_service

        issues = []
        if high_util:
            issues.append(f"High utilization: {', '.join(high_util)}")
        if high_latency:
            issues.append(f"High latency: {', '.join(high_latency)}")
        if high_service:
            issues.append(f"High service time: {', '.join(high_service)}")

        if issues:
            return result.set(CheckStatus.WARNING, "; ".join(issues))
        return result.set(
            CheckStatus.HEALTHY,
            "Disk performance is normal (utilization, latency, and service time "
            "within acceptable ranges)",
        )

    async def check_io_wait(self) -> CheckResult:
        result = self.new_result()
        devices = await self._iostat(result)
        if devices is None:
            return result

        busy = [
            (dev.device, dev.util) for dev in devices
            if dev.util is not None and dev.util > HIGH_UTILIZATION_PERCENT
        ]
        max_util = max((util for _, util in busy), default=0.0)
        result.details["high_io_wait_devices"] = [f"{name}: {util:.1f}%" for name, util in busy]
        result.details["max_io_wait"] = max_util

        if busy:
            return result.set(
                CheckStatus.WARNING,
                f"High I/O wait detected on {len(busy)} devices (max: {max_util:.1f}%)",
            )
        return result.set(CheckStatus.HEALTHY, "I/O wait is normal")

    async def check_queue_depth(self) -> CheckResult:
        result = self.new_result()
        devices = await self._iostat(result)
        if devices is None:
            return result

        deep = [
            f"{dev.device}: {dev.stats['avg_queue_size']:.2f}" for dev in devices
            if dev.stats.get("avg_queue_size", 0) > HIGH_QUEUE_DEPTH
        ]
        result.details["high_queue_depth_devices"] = deep
        if deep:
            return result.set(
                CheckStatus.WARNING, f"High queue depth detected on {len(deep)} devices"
            )
        return result.set(CheckStatus.HEALTHY, "Queue depth is normal")

    async def check_raid(self) -> CheckResult:
        result = self.new_result("cat /proc/mdstat")
        details = result.details

        critical = []
        warning = []
        arrays: Dict[str, str] = {}

        try:
            mdstat, source = self.runner.read_file("/proc/mdstat")
            details["check_source"] = source
        except ToolUnavailableError as e:
            mdstat = ""
            details["mdstat_error"] = str(e)

        for line in mdstat.splitlines():
            fields = line.split()
            if len(fields) >= 4 and fields[0].startswith("md") and fields[1] == ":":
                name = fields[0]
                status = " ".join(fields[2:])
                arrays[name] = status
                if "degraded" in status:
                    warning.append(f"{name}: degraded")
                if "failed" in status or "inactive" in status:
                    critical.append(f"{name}: failed")
            elif "[" in line and "_" in line.split("[")[-1] and arrays:
                # 形如 [2/1] [U_] 的成员状态行
                last = list(arrays)[-1]
                if f"{last}: degraded" not in warning:
                    warning.append(f"{last}: degraded")
        details["raid_arrays"] = arrays

        megacli = await self.runner.run("megacli -LDInfo -Lall -aALL")
        if megacli.ok and megacli.output.strip():
            details["megacli_output"] = truncate(megacli.output.strip())
            for line in megacli.output.splitlines():
                if "State" not in line:
                    continue
                if "Degraded" in line:
                    warning.append("Hardware RAID: degraded")
                elif "Failed" in line or "Offline" in line:
                    critical.append("Hardware RAID: failed")

        details["critical_arrays"] = critical
        details["warning_arrays"] = warning

        if critical:
            return result.set(CheckStatus.CRITICAL, f"Critical RAID issues: {', '.join(critical)}")
        if warning:
            return result.set(CheckStatus.WARNING, f"Warning RAID issues: {', '.join(warning)}")
        if not arrays and not megacli.ok:
            details["note"] = "No software RAID arrays and no hardware RAID controller tool found"
            return result.set(CheckStatus.HEALTHY, "No RAID arrays detected")
        return result.set(CheckStatus.HEALTHY, "RAID status is normal")

    async def check_pvs(self) -> CheckResult:
        """LVM 物理卷: 空闲 <5% 或缺失 (attr 第 5 位为 m) 判定 Critical"""
        command = ("pvs --noheadings --units g --separator '|' "
                   "-o pv_name,vg_name,pv_size,pv_free,pv_attr")
        result = self.new_result(command)
        details = result.details

        outcome = await self.runner.run(command)
        if not outcome.ok:
            outcome.degrade(result, "LVM Physical Volumes not available or no physical volumes found")
            return result
        details["check_source"] = outcome.source

        volumes = []
        critical = []
        for line in outcome.output.splitlines():
            fields = [f.strip() for f in line.strip().split("|")]
            if len(fields) < 5:
                continue
            name, vg, size, free, attr = fields[:5]
            info = {"name": name, "vg": vg, "size": size, "free": free, "attr": attr}

            size_gb = parse_size_to_gb(size)
            free_gb = parse_size_to_gb(free)
            if size_gb > 0:
                free_percent = free_gb / size_gb * 100
                info.update({
                    "size_gb": round(size_gb, 2),
                    "free_gb": round(free_gb, 2),
                    "used_gb": round(size_gb - free_gb, 2),
                    "used_percent": f"{100 - free_percent:.1f}",
                    "free_percent": f"{free_percent:.1f}",
                })
                if vg and free_percent < LOW_FREE_PERCENT:
                    critical.append(f"PV {name}: only {free_percent:.1f}% free space")

            if len(attr) >= 5 and attr[4] == "m":
                critical.append(f"PV {name}: missing")
            volumes.append(info)

        details["physical_volumes"] = volumes
        details["critical_pvs"] = critical

        if critical:
            return result.set(
                CheckStatus.CRITICAL, f"Critical Physical Volume issues: {', '.join(critical)}"
            )
        if volumes:
            return result.set(
                CheckStatus.HEALTHY, f"Physical Volumes are healthy ({len(volumes)} total)"
            )
        return result.set(CheckStatus.HEALTHY, "No Physical Volumes found")

    async def check_lvm(self) -> CheckResult:
        """逻辑卷健康、卷组空闲空间和 thin pool 使用率"""
        command = ("lvs --noheadings --units g --separator '|' "
                   "-o lv_name,vg_name,lv_size,lv_attr,lv_health_status,data_percent")
        result = self.new_result(command)
        details = result.details

        outcome = await self.runner.run(command)
        if not outcome.ok:
            outcome.degrade(result, "LVM not available or no logical volumes found")
            return result
        details["check_source"] = outcome.source

        critical = []
        warning = []
        volumes = []
        thin_pools = []
        for line in outcome.output.splitlines():
            fields = [f.strip() for f in line.strip().split("|")]
            if len(fields) < 5:
                continue
            name, vg, size, attr, health = fields[:5]
            data_percent = parse_percent(fields[5]) if len(fields) > 5 else None
            volumes.append({"name": name, "vg": vg, "size": size, "attr": attr, "health": health})

            if health in ("p", "m", "partial", "mismatches exist"):
                critical.append(f"{vg}/{name}: {health}")
            elif health and health != "-":
                warning.append(f"{vg}/{name}: {health}")

            if len(attr) >= 5:
                if attr[4] == "s":
                    warning.append(f"{vg}/{name}: suspended")
                elif attr[4] == "I":
                    warning.append(f"{vg}/{name}: invalid snapshot")

            # attr 首位为 t 表示 thin pool
            if attr.startswith("t") and data_percent is not None:
                total_gb = parse_size_to_gb(size)
                thin_pools.append({
                    "vg_name": vg,
                    "thin_pool": name,
                    "total_size_gb": round(total_gb, 2),
                    "data_percent": data_percent,
                    "used_size_gb": round(total_gb * data_percent / 100, 2),
                })
                if data_percent > 90:
                    critical.append(f"Thin Pool {vg}/{name}: {data_percent:.1f}% used")
                elif data_percent > 80:
                    warning.append(f"Thin Pool {vg}/{name}: {data_percent:.1f}% used")

        details["logical_volumes"] = volumes
        if thin_pools:
            details["thin_pools"] = thin_pools

        vgs = await self.runner.run(
            "vgs --noheadings --units g --separator '|' -o vg_name,vg_size,vg_free,vg_attr"
        )
        if vgs.ok:
            groups = []
            for line in vgs.output.splitlines():
                fields = [f.strip() for f in line.strip().split("|")]
                if len(fields) < 4:
                    continue
                name, size, free, attr = fields[:4]
                info = {"name": name, "size": size, "free": free, "attr": attr}
                size_gb = parse_size_to_gb(size)
                free_gb = parse_size_to_gb(free)
                if size_gb > 0:
                    free_percent = free_gb / size_gb * 100
                    info["free_percent"] = f"{free_percent:.1f}"
                    if free_percent < LOW_FREE_PERCENT:
                        critical.append(f"VG {name}: only {free_percent:.1f}% free space")
                groups.append(info)
            details["volume_groups"] = groups

        details["critical_lvs"] = critical
        details["warning_lvs"] = warning

        if critical:
            return result.set(CheckStatus.CRITICAL, f"Critical LVM issues: {', '.join(critical)}")
        if warning:
            return result.set(CheckStatus.WARNING, f"Warning LVM issues: {', '.join(warning)}")
        if volumes:
            return result.set(
                CheckStatus.HEALTHY, f"LVM status is normal ({len(volumes)} logical volumes)"
            )
        return result.set(CheckStatus.HEALTHY, "No LVM volumes found")

    async def check_filesystem_errors(self) -> CheckResult:
        command = ("dmesg 2>/dev/null | grep -i 'filesystem error\\|ext4.*error\\|"
                   "xfs.*error\\|ext3.*error' | tail -50")
        result = self.new_result(command)
        details = result.details

        outcome = await self.runner.run(command, requires=("dmesg",))
        if not outcome.ok:
            return outcome.degrade(result, "Failed to read kernel log for filesystem errors")
        details["check_source"] = outcome.source

        events = [line.strip() for line in outcome.output.splitlines() if line.strip()]

        journal_out, journal_err = await self.runner.run_host(
            "journalctl --no-pager --since '7 days ago' 2>/dev/null "
            "| grep -i 'filesystem error\\|ext4.*error\\|xfs.*error' | tail -50",
            requires=("journalctl",),
        )
        if journal_err is None and journal_out.strip():
            details["journal_fs_error_samples"] = cap_samples(journal_out.strip().splitlines())

        details["error_count"] = len(events)
        details["filesystem_error_samples"] = cap_samples(events)

        if events:
            return result.set(CheckStatus.CRITICAL, f"Found {len(events)} filesystem error events")
        return result.set(CheckStatus.HEALTHY, "No filesystem errors detected")

    async def check_inode_usage(self) -> CheckResult:
        """inode 使用率,关键路径单独抽查后再扫描全部文件系统"""
        result = self.new_result("df -iPT")
        details = result.details

        critical: List[str] = []
        high: List[str] = []
        processed = set()

        def add_entry(filesystem: str, fs_type: str, mount: str, ipercent: str, source: str):
            percent = parse_percent(ipercent)
            if percent is None:
                return
            key = f"{filesystem}|{mount}"
            if key in processed:
                return
            if not filesystem.startswith("/dev/") or filesystem.startswith("/dev/loop"):
                return
            if ("/var/lib/containers/storage/overlay" in mount
                    or "/var/lib/kubelet/pods" in mount
                    or mount.startswith(("/run/", "/sys/"))):
                return

            processed.add(key)
            label = f"{filesystem} ({fs_type})" if fs_type else filesystem
            entry = f"{label} on {mount}: {percent:.0f}% [{source}]"
            status = classify_usage(percent)
            if status == CheckStatus.CRITICAL:
                critical.append(entry)
            elif status == CheckStatus.WARNING:
                high.append(entry)

        checked = []
        for path in IMPORTANT_PATHS:
            output, error = await self.runner.run_host(f"df -iP {path} 2>/dev/null")
            if error is not None or not output.strip():
                continue
            for line in output.strip().splitlines()[1:]:
                entry = parse_df_line(line, with_type=False)
                if entry is None:
                    continue
                add_entry(entry["filesystem"], "", entry["mounted_on"],
                          entry["use_percent"], f"path {path}")
            checked.append(path)
        details["important_paths_checked"] = checked

        outcome = await self.runner.run("df -iPT")
        if not outcome.ok:
            if not checked:
                return outcome.degrade(result, "Failed to check inode usage")
            details["scan_error"] = str(outcome.error)
        else:
            details["check_source"] = outcome.source
            for line in outcome.output.strip().splitlines()[1:]:
                entry = parse_df_line(line)
                if entry is None or entry["use_percent"] == "-":
                    continue
                add_entry(entry["filesystem"], entry["fs_type"], entry["mounted_on"],
                          entry["use_percent"], "scan")

        details["high_inode_usage"] = high
        details["critical_inode_usage"] = critical

        if critical:
            return result.set(
                CheckStatus.CRITICAL, f"Critical inode usage on {len(critical)} filesystems"
            )
        if high:
            return result.set(CheckStatus.WARNING, f"High inode usage on {len(high)} filesystems")
        return result.set(CheckStatus.HEALTHY, "Inode usage is normal")

    async def check_mount_points(self) -> CheckResult:
        """内核日志中的重挂载错误和只读文件系统错误"""
        result = self.new_result("dmesg | grep -iE 'remount|read-only|readonly'")
        details = result.details

        outcome = await self.runner.run(
            "dmesg 2>/dev/null | grep -iE 'remount|read-only|readonly' | tail -100",
            requires=("dmesg",),
        )
        if outcome.ok:
            details["check_source"] = f"{outcome.source} (dmesg)"
            log = outcome.output
        else:
            journal = await self.runner.run(
                "journalctl -k --no-pager 2>/dev/null | grep -iE 'remount|read-only|readonly' "
                "| tail -100",
                requires=("journalctl",),
            )
            log = journal.output if journal.ok else ""
            details["check_source"] = (f"{journal.source} (journalctl)" if journal.ok
                                       else "dmesg/journalctl not accessible")

        remount_errors, readonly_errors = classify_mount_errors(log)

        mounts = await self.runner.run("mount")
        mount_count = len([l for l in mounts.output.splitlines() if l.strip()]) if mounts.ok else 0

        details["mount_point_count"] = mount_count
        details["remount_errors"] = cap_samples(remount_errors)
        details["readonly_errors"] = cap_samples(readonly_errors)
        details["total_filesystem_errors"] = len(remount_errors) + len(readonly_errors)

        if remount_errors or readonly_errors:
            parts = []
            if remount_errors:
                parts.append(f"{len(remount_errors)} remount error(s)")
            if readonly_errors:
                parts.append(f"{len(readonly_errors)} read-only filesystem error(s)")
            return result.set(CheckStatus.WARNING, f"Found filesystem errors: {', '.join(parts)}")
        return result.set(
            CheckStatus.HEALTHY, f"No filesystem errors detected ({mount_count} mount points)"
        )


def classify_mount_errors(log: str) -> Tuple[List[str], List[str]]:
    """从内核日志中挑出重挂载错误和只读错误,各自去重

    Returns:
        (重挂载错误, 只读错误)
    """
    remount: List[str] = []
    readonly: List[str] = []
    for line in dict.fromkeys(l.strip() for l in log.splitlines() if l.strip()):
        lower = line.lower()
        if "remount" in lower and (
            "read-only" in lower or "failed" in lower or "error" in lower or "warning" in lower
        ):
            remount.append(line)
            continue
        if ("read-only" in lower
                and any(word in lower for word in ("error", "warning", "failed"))
                and "mounted read-only" not in lower
                and "mounting read-only" not in lower):
            readonly.append(line)
    return remount, readonly


def parse_smartctl(text: str) -> Dict:
    """从 smartctl -H -A 输出中提取整体健康状态和关键属性"""
    info: Dict = {}
    for line in text.splitlines():
        if "overall-health self-assessment test result:" in line:
            info["health"] = line.split(":", 1)[1].strip()
        elif "SMART Health Status:" in line:
            # SAS 设备
            status = line.split(":", 1)[1].strip()
            info["health"] = "PASSED" if status == "OK" else status
        elif "Reallocated_Sector_Ct" in line or "Current_Pending_Sector" in line:
            fields = line.split()
            if len(fields) >= 10:
                raw = parse_float(fields[9])
                if raw is None:
                    continue
                key = ("reallocated_sectors" if "Reallocated" in line else "pending_sectors")
                info[key] = int(raw)
        elif line.startswith("Media and Data Integrity Errors:"):
            info["media_errors"] = int(parse_float(line.split(":", 1)[1], 0))
    return info
