"""
硬件探针

温度 (lm-sensors)、IPMI 传感器、BMC、风扇、电源、内存 ECC 错误、PCIe 错误、微码。
IPMI 相关检查在没有 /dev/ipmi* 设备的节点上判定为 Unknown (功能缺失,而非故障)。
"""

import logging
import re
from typing import Dict, List, Optional, Tuple

from ..collectors.host_runner import CommandOutcome
from ..collectors.models import CheckResult, CheckStatus
from ..utils.parsers import cap_samples, parse_float, truncate
from .base import BaseChecker

logger = logging.getLogger(__name__)

HIGH_TEMPERATURE_CELSIUS = 80.0
MEMORY_ERROR_SAMPLE_LIMIT = 5

# ipmitool sdr 状态列
_SDR_CRITICAL = {"cr", "nr", "lcr", "ucr", "lnr", "unr"}
_SDR_WARNING = {"nc", "lnc", "unc", "ns"}

_IPMI_ABSENT_MARKERS = ("could not open device", "no such file or directory")

_TEMPERATURE_RE = re.compile(r"([+-]?\d+(?:\.\d+)?)\s*°C")
_DMESG_TIMESTAMP_RE = re.compile(r"^\[\s*(\d+(?:\.\d+)?)\]")
_UE_RE = re.compile(r"\bue\b")
_CE_RE = re.compile(r"\bce\b")


def parse_sensors_output(output: str) -> Dict[str, float]:
    """解析 sensors 输出,每行取第一个 °C 读数

    high/crit 等阈值在括号内,不计入读数。

    Example:
        parse_sensors_output("Core 0:  +45.0°C  (high = +80.0°C, crit = +100.0°C)")
        # {"Core 0": 45.0}
    """
    temperatures: Dict[str, float] = {}
    for line in output.splitlines():
        if "°C" not in line or ":" not in line:
            continue
        name, _, rest = line.partition(":")
        reading = rest.split("(")[0]
        match = _TEMPERATURE_RE.search(reading)
        if not match:
            continue
        name = name.strip() or "sensor"
        key = name
        suffix = 2
        while key in temperatures:
            key = f"{name} #{suffix}"
            suffix += 1
        temperatures[key] = float(match.group(1))
    return temperatures


def parse_sdr_line(line: str) -> Optional[Tuple[str, str, str]]:
    """解析 ipmitool sdr 行: 名称 | ID | 状态 | 实体 | 读数

    Returns:
        (名称, 状态, 读数);不是传感器行时返回 None
    """
    parts = [p.strip() for p in line.split("|")]
    if len(parts) < 3:
        return None
    if len(parts) >= 5:
        return parts[0], parts[2].lower(), parts[4]
    return parts[0], parts[1].lower(), parts[2]


def classify_sdr_status(status: str, line: str) -> CheckStatus:
    lower = line.lower()
    if status in _SDR_CRITICAL or "critical" in lower or "failed" in lower:
        return CheckStatus.CRITICAL
    if status in _SDR_WARNING or "warning" in lower:
        return CheckStatus.WARNING
    return CheckStatus.HEALTHY


def ipmi_absent(outcome: CommandOutcome) -> bool:
    """IPMI 硬件或工具不存在"""
    if outcome.tool_missing:
        return True
    lower = outcome.output.lower()
    return any(marker in lower for marker in _IPMI_ABSENT_MARKERS)


class HardwareChecker(BaseChecker):
    """硬件检查器"""

    def _ipmi_unavailable(self, result: CheckResult, outcome: CommandOutcome,
                          feature: str) -> CheckResult:
        """ipmitool 执行失败时的统一降级"""
        if outcome.output.strip():
            result.details["command_output"] = truncate(outcome.output.strip(), 500)
        if outcome.error is not None:
            result.details["error"] = str(outcome.error)
        result.details["check_source"] = outcome.source

        if ipmi_absent(outcome):
            result.details["note"] = (f"Node appears to lack /dev/ipmi* devices or ipmitool; "
                                      f"{feature} not supported.")
            return result.set(CheckStatus.UNKNOWN, f"{feature} hardware not detected on this node")

        result.details["note"] = ("Ensure /dev/ipmi* devices are present on the host "
                                  "and mounted into the executor pod.")
        return result.set(
            CheckStatus.WARNING,
            f"{feature} monitoring not available (ipmitool may need access to /dev/ipmi* "
            f"devices or hardware not present)",
        )

    async def check_temperature(self) -> CheckResult:
        """sensors 读数,任一传感器 >80°C 告警"""
        command = "sensors"
        result = self.new_result(command)
        details = result.details

        outcome = await self.runner.run(command)
        if not outcome.ok:
            details["check_source"] = outcome.source
            details["error"] = str(outcome.error)
            return result.set(
                CheckStatus.WARNING,
                "Temperature monitoring not available (sensors command not found)",
            )
        details["check_source"] = outcome.source
        details["sensors_output"] = truncate(outcome.output.strip())

        temperatures = parse_sensors_output(outcome.output)
        details["temperatures"] = temperatures

        hot = [
            f"{name}: {value:.1f}°C"
            for name, value in temperatures.items()
            if value > HIGH_TEMPERATURE_CELSIUS
        ]
        max_temp = max(temperatures.values()) if temperatures else 0.0
        if temperatures:
            details["max_temperature"] = max_temp

        if hot:
            details["high_temperature_sensors"] = cap_samples(hot)
            return result.set(
                CheckStatus.WARNING, f"High temperatures detected: {', '.join(hot[:10])}"
            )
        if max_temp > 0:
            return result.set(
                CheckStatus.HEALTHY, f"Temperatures are normal (max: {max_temp:.1f}°C)"
            )
        return result.set(CheckStatus.WARNING, "No temperature readings available")

    async def check_ipmi(self) -> CheckResult:
        command = "ipmitool sdr elist"
        result = self.new_result(command)
        details = result.details

        outcome = await self.runner.run(command)
        if not outcome.ok or not outcome.output.strip():
            return self._ipmi_unavailable(result, outcome, "IPMI")
        details["check_source"] = outcome.source

        sensors: Dict[str, str] = {}
        critical: List[str] = []
        warning: List[str] = []
        for line in outcome.output.splitlines():
            parsed = parse_sdr_line(line)
            if parsed is None:
                continue
            name, status, value = parsed
            sensors[name] = value
            level = classify_sdr_status(status, line)
            if level == CheckStatus.CRITICAL:
                critical.append(f"{name}: {value}")
            elif level == CheckStatus.WARNING and status != "ns":
                # 未接入的传感器 (ns) 很常见,不计为告警
                warning.append(f"{name}: {value}")

        details["sensor_count"] = len(sensors)
        details["sensors"] = sensors
        details["critical_sensors"] = cap_samples(critical)
        details["warning_sensors"] = cap_samples(warning)

        if critical:
            return result.set(
                CheckStatus.CRITICAL, f"Critical IPMI sensors: {', '.join(critical[:10])}"
            )
        if warning:
            return result.set(
                CheckStatus.WARNING, f"Warning IPMI sensors: {', '.join(warning[:10])}"
            )
        return result.set(CheckStatus.HEALTHY, "All IPMI sensors are normal")

    async def check_bmc(self) -> CheckResult:
        command = "ipmitool chassis status"
        result = self.new_result(command)
        details = result.details

        outcome = await self.runner.run(command)
        if not outcome.ok or not outcome.output.strip():
            return self._ipmi_unavailable(result, outcome, "BMC")
        details["check_source"] = outcome.source

        chassis: Dict[str, str] = {}
        for line in outcome.output.splitlines():
            if ":" not in line:
                continue
            key, _, value = line.partition(":")
            chassis[key.strip()] = value.strip()
        details["chassis_status"] = chassis

        critical = []
        warning = []
        for key, value in chassis.items():
            lower = value.lower()
            # "Drive Fault : false" 这类布尔项为 true 时表示故障
            if "fault" in key.lower() and lower == "true":
                critical.append(f"{key}: {value}")
            elif key.lower() in ("power overload", "main power fault") and lower == "true":
                critical.append(f"{key}: {value}")
            elif "warning" in lower:
                warning.append(f"{key}: {value}")

        if chassis.get("System Power", "").lower() == "off":
            details["note"] = "Chassis reports system power off"

        if critical:
            return result.set(CheckStatus.CRITICAL, f"Critical BMC status: {', '.join(critical)}")
        if warning:
            return result.set(CheckStatus.WARNING, f"Warning BMC status: {', '.join(warning)}")
        return result.set(CheckStatus.HEALTHY, "BMC status is normal")

    async def _sdr_type_check(self, sdr_type: str, label: str, plural: str) -> CheckResult:
        """ipmitool sdr type <类型> 的通用检查 (风扇/电源)"""
        command = f"ipmitool sdr type '{sdr_type}' 2>/dev/null"
        result = self.new_result(command)
        details = result.details

        outcome = await self.runner.run(command)
        if not outcome.ok or not outcome.output.strip():
            return self._ipmi_unavailable(result, outcome, label)
        details["check_source"] = outcome.source

        entries = []
        critical = []
        warning = []
        for line in outcome.output.splitlines():
            line = line.strip()
            if not line:
                continue
            entries.append(line)
            parsed = parse_sdr_line(line)
            status = parsed[1] if parsed else ""
            level = classify_sdr_status(status, line)
            if level == CheckStatus.CRITICAL:
                critical.append(line)
            elif level == CheckStatus.WARNING:
                warning.append(line)

        key = sdr_type.lower().replace(" ", "_")
        details[f"{key}_count"] = len(entries)
        details[f"{key}_status"] = cap_samples(entries, 20)

        if critical:
            return result.set(
                CheckStatus.CRITICAL,
                f"Critical {label.lower()} issues detected: {len(critical)} {plural}",
            )
        if warning:
            return result.set(
                CheckStatus.WARNING,
                f"Warning {label.lower()} issues detected: {len(warning)} {plural}",
            )
        return result.set(
            CheckStatus.HEALTHY,
            f"All {plural} are operating normally ({len(entries)} {plural})",
        )

    async def check_fan_status(self) -> CheckResult:
        return await self._sdr_type_check("Fan", "Fan", "fans")

    async def check_power_supply(self) -> CheckResult:
        return await self._sdr_type_check("Power Supply", "Power supply", "power supplies")

    async def check_memory_errors(self) -> CheckResult:
        """EDAC/MCE 内存错误: 不可纠正 Critical,可纠正 Warning"""
        command = (
            "dmesg 2>/dev/null | grep -iE '\\b(EDAC|MCE|memory error|ecc error)' "
            "| grep -vE '(macvtap|tun|bridge|@if|veth|interface|Giving out device|Ver:)' "
            "| tail -50"
        )
        result = self.new_result(command)
        details = result.details

        outcome = await self.runner.run(command, requires=("dmesg",))
        details["check_source"] = outcome.source
        raw = outcome.output.strip() if outcome.ok else ""

        journal_cmd = (
            "journalctl -k -p err --since '1 hour ago' --no-pager 2>/dev/null "
            "| grep -iE '\\b(EDAC.*\\b(UE|Uncorrected|Hardware Error)|MCE:\\s*\\[Hardware Error\\]"
            "|memory.*error.*uncorrected)' "
            "| grep -vE '(macvtap|tun|bridge|@if|veth|interface|Giving out device)' | tail -50"
        )
        journal_out, journal_err = await self.runner.run_host(journal_cmd, requires=("journalctl",))
        if journal_err is None and journal_out.strip():
            details["journal_memory_error_output"] = truncate(journal_out.strip())
            raw = "\n".join(filter(None, [raw, journal_out.strip()]))

        edac_out, edac_err = await self.runner.run_host(
            "find /sys/devices/system/edac -name '*_ce_count' -o -name '*_ue_count' 2>/dev/null "
            "| head -10 | xargs cat 2>/dev/null"
        )
        if edac_err is None and edac_out.strip():
            details["edac_error_counts"] = edac_out.strip().split()

        real, corrected, uncorrected = classify_memory_errors(raw)

        details["error_count"] = len(real)
        details["corrected_errors"] = len(corrected)
        details["uncorrected_errors"] = len(uncorrected)
        if corrected:
            details["corrected_error_samples"] = corrected[:MEMORY_ERROR_SAMPLE_LIMIT]
        if uncorrected:
            details["uncorrected_error_samples"] = uncorrected[:MEMORY_ERROR_SAMPLE_LIMIT]

        if uncorrected:
            return result.set(
                CheckStatus.CRITICAL,
                f"Found {len(uncorrected)} uncorrected memory errors (UE) - "
                f"{len(real)} total memory error events",
            )
        if corrected and not real:
            return result.set(
                CheckStatus.WARNING,
                f"Found {len(corrected)} corrected memory errors (CE) - "
                f"these are handled automatically",
            )
        if real:
            return result.set(
                CheckStatus.WARNING, f"Found {len(real)} memory error events (ECC/MCE/EDAC)"
            )
        return result.set(CheckStatus.HEALTHY, "No memory errors detected")

    async def check_pcie_errors(self) -> CheckResult:
        command = "dmesg 2>/dev/null | grep -i 'pci.*error\\|pcie.*error\\|aer.*error' | tail -50"
        result = self.new_result(command)
        details = result.details

        outcome = await self.runner.run(command, requires=("dmesg",))
        details["check_source"] = outcome.source
        if not outcome.ok:
            return outcome.degrade(result, "Failed to read kernel log for PCIe errors")

        lines = [line.strip() for line in outcome.output.splitlines() if line.strip()]
        details["pcie_error_samples"] = cap_samples(lines)

        aer_out, aer_err = await self.runner.run_host(
            "find /sys/devices -name 'aer_dev_fatal' -o -name 'aer_dev_nonfatal' 2>/dev/null "
            "| head -10 | xargs cat 2>/dev/null"
        )
        if aer_err is None and aer_out.strip():
            details["aer_error_counts"] = truncate(aer_out.strip())

        details["error_count"] = len(lines)
        if lines:
            return result.set(CheckStatus.WARNING, f"Found {len(lines)} PCIe error events")
        return result.set(CheckStatus.HEALTHY, "No PCIe errors detected")

    async def check_cpu_microcode(self) -> CheckResult:
        command = "grep -m1 microcode /proc/cpuinfo"
        result = self.new_result(command)
        details = result.details

        outcome = await self.runner.run(command)
        if not outcome.ok:
            details["note"] = "Microcode information may not be available in /proc/cpuinfo"
            return result.set(CheckStatus.WARNING, "CPU microcode information not available")
        details["check_source"] = outcome.source

        line = outcome.output.strip()
        details["microcode_info"] = line
        _, _, version = line.partition(":")
        if version.strip():
            details["microcode_version"] = version.strip()

        dmesg_out, dmesg_err = await self.runner.run_host(
            "dmesg 2>/dev/null | grep -i microcode | tail -10", requires=("dmesg",)
        )
        if dmesg_err is None and dmesg_out.strip():
            details["microcode_dmesg"] = dmesg_out.strip().splitlines()

        return result.set(CheckStatus.HEALTHY, "CPU microcode check completed")


def classify_memory_errors(raw: str) -> Tuple[List[str], List[str], List[str]]:
    """对内核日志中的内存错误行去重并分类

    启动前 10 秒的初始化信息和 IBECC 提示信息会被跳过。

    Returns:
        (真实错误, 可纠正错误, 不可纠正错误)
    """
    real: List[str] = []
    corrected: List[str] = []
    uncorrected: List[str] = []
    seen = set()

    for line in raw.splitlines():
        line = line.strip()
        if not line or line in seen:
            continue
        lower = line.lower()

        if "giving out device" in lower or "ver:" in lower or "version" in lower:
            continue
        if "controller" in lower and "interrupt" in lower:
            continue
        if "handling ibecc memory error" in lower:
            continue

        match = _DMESG_TIMESTAMP_RE.match(line)
        if match and parse_float(match.group(1), 0.0) < 10.0:
            continue

        seen.add(line)
        if "uncorrected" in lower or _UE_RE.search(lower) or "hardware error" in lower:
            uncorrected.append(line)
            real.append(line)
        elif "corrected" in lower or _CE_RE.search(lower):
            corrected.append(line)
        else:
            real.append(line)

    return real, corrected, uncorrected
