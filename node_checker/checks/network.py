"""
网络探针

接口状态、路由与网关可达性、外部连通性、DNS、接口错误计数、延迟、bonding、防火墙规则。
容器/Pod 网络产生的虚拟接口 (veth、OVS 网桥等) 不参与判定。
"""

import asyncio
import logging
import re
from typing import Dict, List, Optional, Tuple

from ..collectors.models import CheckResult, CheckStatus
from ..utils.errors import ToolUnavailableError
from ..utils.parsers import parse_int
from .base import BaseChecker

logger = logging.getLogger(__name__)

IGNORED_INTERFACES = {"lo", "ovs-system", "br-int", "br-ex", "genev_sys_6081", "vxlan_sys_4789"}

CONNECTIVITY_TARGETS = ["8.8.8.8", "1.1.1.1", "google.com", "kubernetes.io", "redhat.com", "quay.io"]
DNS_TEST_DOMAINS = ["google.com", "8.8.8.8"]
DEFAULT_DNS_SERVERS = ["8.8.8.8", "1.1.1.1"]

INTERFACE_ERROR_THRESHOLD = 100
LINK_ERROR_THRESHOLD = 1000

_HEX_NAME_RE = re.compile(r"^[0-9a-fA-F]{12,}$")
_IFACE_LINE_RE = re.compile(r"^\d+:\s+([^:\s]+):\s+<([^>]*)>(.*)$")
_RTT_RE = re.compile(r"=\s*([\d.]+)/([\d.]+)/([\d.]+)")
_LOSS_RE = re.compile(r"([\d.]+)% packet loss")


def is_ignored_interface(name: str) -> bool:
    """容器运行时和 SDN 创建的虚拟接口

    Example:
        is_ignored_interface("veth1a2b")           # True
        is_ignored_interface("90202e15cd0b96f")    # True, veth 对端的哈希名
        is_ignored_interface("eth0")               # False
    """
    if name in IGNORED_INTERFACES:
        return True
    if "@if" in name or name.startswith("veth"):
        return True
    return bool(_HEX_NAME_RE.match(name))


def parse_ip_addr(output: str) -> Dict[str, Dict[str, str]]:
    """解析 ip a 输出

    Returns:
        {接口名: {"status": UP/DOWN, "mtu": ..., "ip": ...}},已过滤虚拟接口
    """
    interfaces: Dict[str, Dict[str, str]] = {}
    current: Optional[str] = None
    for raw in output.splitlines():
        line = raw.strip()
        match = _IFACE_LINE_RE.match(line)
        if match:
            name, flags, rest = match.groups()
            if is_ignored_interface(name):
                current = None
                continue
            current = name
            info = {"status": "UP" if "UP" in flags.split(",") else "DOWN"}
            mtu = re.search(r"\bmtu\s+(\d+)", rest)
            if mtu:
                info["mtu"] = mtu.group(1)
            interfaces[name] = info
            continue

        if current and line.startswith("inet ") and "ip" not in interfaces[current]:
            parts = line.split()
            if len(parts) >= 2:
                interfaces[current]["ip"] = parts[1]
    return interfaces


def parse_link_stats(output: str) -> Dict[str, Dict[str, int]]:
    """解析 ip -s link show 输出中的 RX/TX errors 和 dropped

    统计行格式为表头 + 数值行:
        RX:  bytes packets errors dropped  missed   mcast
          123456     789      0       0       0       0
    """
    stats: Dict[str, Dict[str, int]] = {}
    current: Optional[str] = None
    header: Optional[Tuple[str, List[str]]] = None

    for raw in output.splitlines():
        line = raw.strip()
        match = _IFACE_LINE_RE.match(line)
        if match:
            name = match.group(1).split("@")[0]
            current = None if is_ignored_interface(match.group(1)) else name
            if current:
                stats[current] = {}
            header = None
            continue
        if current is None:
            continue

        if line.startswith(("RX:", "TX:")):
            direction = "rx" if line.startswith("RX") else "tx"
            header = (direction, line.split()[1:])
            continue

        if header is not None:
            direction, columns = header
            values = line.split()
            for column, value in zip(columns, values):
                if column in ("errors", "dropped"):
                    count = parse_int(value)
                    if count is not None:
                        stats[current][f"{direction}_{column}"] = count
            header = None
    return stats


def parse_proc_net_dev(content: str) -> Dict[str, Dict[str, int]]:
    """解析 /proc/net/dev 的收发错误计数"""
    stats: Dict[str, Dict[str, int]] = {}
    for line in content.splitlines()[2:]:
        if ":" not in line:
            continue
        name, _, data = line.partition(":")
        name = name.strip()
        if is_ignored_interface(name):
            continue
        fields = data.split()
        if len(fields) < 16:
            continue
        stats[name] = {
            "rx_errors": parse_int(fields[2], 0),
            "rx_dropped": parse_int(fields[3], 0),
            "tx_errors": parse_int(fields[10], 0),
            "tx_dropped": parse_int(fields[11], 0),
        }
    return stats


def parse_ping(output: str) -> Dict[str, float]:
    """从 ping 输出中提取 rtt min/avg/max (ms) 和丢包率"""
    summary: Dict[str, float] = {}
    rtt_line = next((l for l in output.splitlines() if "min/avg/max" in l), "")
    rtt = _RTT_RE.search(rtt_line)
    if rtt:
        summary["min_ms"] = float(rtt.group(1))
        summary["avg_ms"] = float(rtt.group(2))
        summary["max_ms"] = float(rtt.group(3))
    loss = _LOSS_RE.search(output)
    if loss:
        summary["packet_loss_percent"] = float(loss.group(1))
    return summary


def parse_bonding(content: str) -> Dict:
    """解析 /proc/net/bonding/<bond>,返回模式和各成员的 MII 状态"""
    info: Dict = {"slaves": {}}
    current_slave = None
    for line in content.splitlines():
        key, sep, value = line.partition(":")
        if not sep:
            continue
        key = key.strip()
        value = value.strip()
        if key == "Bonding Mode":
            info["mode"] = value
        elif key == "Slave Interface":
            current_slave = value
            info["slaves"][current_slave] = "unknown"
        elif key == "MII Status":
            if current_slave is None:
                info["mii_status"] = value
            else:
                info["slaves"][current_slave] = value
    return info


class NetworkChecker(BaseChecker):
    """网络检查器"""

    def __init__(self, node_name: str, runner=None,
                 connectivity_targets: Optional[List[str]] = None,
                 dns_domains: Optional[List[str]] = None):
        super().__init__(node_name, runner)
        self.connectivity_targets = connectivity_targets or list(CONNECTIVITY_TARGETS)
        self.dns_domains = dns_domains or list(DNS_TEST_DOMAINS)

    async def check_interfaces(self) -> CheckResult:
        result = self.new_result("ip a")
        details = result.details

        outcome = await self.runner.run("ip a")
        if not outcome.ok:
            return outcome.degrade(result, "Failed to execute ip a")
        details["check_source"] = outcome.source

        interfaces = parse_ip_addr(outcome.output)
        down = [name for name, info in interfaces.items() if info["status"] == "DOWN"]
        no_ip = [name for name, info in interfaces.items()
                 if info["status"] == "UP" and "ip" not in info]

        details["interfaces"] = interfaces
        details["down_interfaces"] = down
        details["no_ip_interfaces"] = no_ip

        if down:
            return result.set(CheckStatus.WARNING, f"Down interfaces: {', '.join(down)}")
        if no_ip:
            return result.set(CheckStatus.WARNING, f"Interfaces without IP: {', '.join(no_ip)}")
        return result.set(CheckStatus.HEALTHY, "All network interfaces are operational")

    async def _ping(self, target: str, count: int = 1, wait: int = 2) -> Tuple[bool, str]:
        outcome = await self.runner.run(f"ping -c {count} -W {wait} {target}")
        return outcome.ok, outcome.output

    async def check_routing(self) -> CheckResult:
        """默认路由存在且网关可 ping 通"""
        result = self.new_result("ip route")
        details = result.details

        outcome = await self.runner.run("ip route")
        if not outcome.ok:
            return outcome.degrade(result, "Failed to execute ip route")
        details["check_source"] = outcome.source

        routes = [line.strip() for line in outcome.output.splitlines() if line.strip()]
        default_route = next((r for r in routes if r.startswith("default")), "")
        details["routes"] = routes
        details["default_route"] = default_route

        if not default_route:
            return result.set(CheckStatus.CRITICAL, "No default route found")

        gateway = default_gateway(default_route)
        reachable = True
        if gateway:
            details["gateway"] = gateway
            reachable, _ = await self._ping(gateway)
        details["gateway_reachable"] = reachable

        if not reachable:
            return result.set(CheckStatus.WARNING, "Default gateway is not reachable")
        return result.set(CheckStatus.HEALTHY, "Routing table is normal")

    async def _reachable(self, target: str) -> bool:
        """ping 不通时再尝试 HTTPS / HTTP (部分网络屏蔽 ICMP)"""
        candidates = [
            f"ping -c 1 -W 5 {target}",
            f"curl -s -L -o /dev/null --head --max-time 10 --connect-timeout 5 https://{target}",
            f"curl -s -L -o /dev/null --head --max-time 10 --connect-timeout 5 http://{target}",
        ]
        outcome = await self.runner.run_first(candidates)
        return outcome.ok

    async def check_connectivity(self) -> CheckResult:
        result = self.new_result(
            "ping -c 1 -W 5 <target>; "
            "curl -s -L -o /dev/null --head --max-time 10 --connect-timeout 5 <target>"
        )
        details = result.details

        reachable = await asyncio.gather(*(self._reachable(t) for t in self.connectivity_targets))
        connectivity = dict(zip(self.connectivity_targets, reachable))
        failed = [target for target, ok in connectivity.items() if not ok]

        details["connectivity_results"] = connectivity
        details["failed_targets"] = failed

        if len(failed) > 2:
            return result.set(
                CheckStatus.CRITICAL, f"Multiple connectivity failures: {', '.join(failed)}"
            )
        if failed:
            return result.set(CheckStatus.WARNING, f"Some connectivity issues: {', '.join(failed)}")
        return result.set(CheckStatus.HEALTHY, "Network connectivity is normal")

    async def check_statistics(self) -> CheckResult:
        """套接字统计 (ss -s) 和各接口收发错误 (/proc/net/dev)"""
        result = self.new_result("ss -s")
        details = result.details

        outcome = await self.runner.run("ss -s")
        if not outcome.ok:
            return outcome.degrade(result, "Failed to execute ss -s")
        details["check_source"] = outcome.source

        socket_stats: Dict[str, int] = {}
        for line in outcome.output.splitlines():
            if line.startswith("Total:"):
                total = parse_int(line.split()[1]) if len(line.split()) > 1 else None
                if total is not None:
                    socket_stats["total_connections"] = total
            elif line.startswith("TCP:"):
                established = re.search(r"estab\s+(\d+)", line)
                if established:
                    socket_stats["tcp_established"] = int(established.group(1))
                timewait = re.search(r"timewait\s+(\d+)", line)
                if timewait:
                    socket_stats["tcp_timewait"] = int(timewait.group(1))
        details["socket_stats"] = socket_stats

        try:
            content, _ = self.runner.read_file("/proc/net/dev")
            interface_stats = parse_proc_net_dev(content)
        except ToolUnavailableError as e:
            logger.debug("读取 /proc/net/dev 失败: %s", e)
            interface_stats = {}
        details["interface_stats"] = interface_stats

        high_errors = []
        for iface, stats in interface_stats.items():
            if stats.get("rx_errors", 0) > INTERFACE_ERROR_THRESHOLD:
                high_errors.append(f"{iface}: {stats['rx_errors']} RX errors")
            if stats.get("tx_errors", 0) > INTERFACE_ERROR_THRESHOLD:
                high_errors.append(f"{iface}: {stats['tx_errors']} TX errors")
        details["high_error_interfaces"] = high_errors

        if high_errors:
            return result.set(CheckStatus.WARNING, f"High network errors: {', '.join(high_errors)}")
        return result.set(CheckStatus.HEALTHY, "Network statistics are normal")

    async def check_errors(self) -> CheckResult:
        """ip -s link 中 errors + dropped 合计 >1000 的接口"""
        result = self.new_result("ip -s link show")
        details = result.details

        outcome = await self.runner.run("ip -s link show")
        if not outcome.ok:
            return outcome.degrade(result, "Failed to check network errors")
        details["check_source"] = outcome.source

        interface_errors = parse_link_stats(outcome.output)
        details["interface_errors"] = interface_errors

        high_errors = []
        for iface, counters in interface_errors.items():
            total = sum(counters.values())
            if total > LINK_ERROR_THRESHOLD:
                high_errors.append(f"{iface}: {total} errors")
        details["high_error_interfaces"] = high_errors

        if high_errors:
            return result.set(
                CheckStatus.WARNING,
                f"High network errors detected on {len(high_errors)} interfaces",
            )
        return result.set(CheckStatus.HEALTHY, "Network error rates are normal")

    async def check_latency(self) -> CheckResult:
        """网关和首个 DNS 服务器的 ping 延迟,仅记录不判定"""
        result = self.new_result("ip route | grep default; ping -c 3 -W 1 <gateway>; "
                                 "ping -c 3 -W 1 <dns>")
        details = result.details

        route = await self.runner.run("ip route show default")
        gateway = default_gateway(route.output) if route.ok else ""
        if gateway:
            details["gateway"] = gateway
            ok, output = await self._ping(gateway, count=3, wait=1)
            if ok:
                details["gateway_latency"] = parse_ping(output)

        dns_servers = list(DEFAULT_DNS_SERVERS)
        try:
            resolv, _ = self.runner.read_file("/etc/resolv.conf")
            servers = [line.split()[1] for line in resolv.splitlines()
                       if line.startswith("nameserver") and len(line.split()) > 1]
            dns_servers = servers[:1] + dns_servers
        except ToolUnavailableError as e:
            logger.debug("读取 resolv.conf 失败: %s", e)

        dns = dns_servers[0]
        details["dns_server"] = dns
        ok, output = await self._ping(dns, count=3, wait=1)
        if ok:
            details["dns_latency"] = parse_ping(output)

        return result.set(CheckStatus.HEALTHY, "Network latency check completed")

    async def check_dns_resolution(self) -> CheckResult:
        result = self.new_result("getent hosts <domain> || nslookup <domain>")
        details = result.details

        dns_results = {}
        for domain in self.dns_domains:
            outcome = await self.runner.run(
                f"getent hosts {domain} 2>&1 || nslookup {domain} 2>&1 | head -5"
            )
            text = outcome.output
            dns_results[domain] = (
                outcome.ok and bool(text.strip())
                and "not found" not in text and "NXDOMAIN" not in text
            )

        details["dns_results"] = dns_results
        details["note"] = ("kubernetes.default.svc.cluster.local is only resolvable from the pod "
                           "network, not the host network, so it is not tested here")

        failed = [domain for domain, ok in dns_results.items() if not ok]
        if failed:
            return result.set(CheckStatus.WARNING, f"DNS resolution failed for: {', '.join(failed)}")
        return result.set(CheckStatus.HEALTHY, "DNS resolution is working")

    async def check_bonding_status(self) -> CheckResult:
        result = self.new_result("ls /sys/class/net/ | grep bond")
        details = result.details

        output, error = await self.runner.run_host("ls /sys/class/net/ | grep bond")
        bonds = output.split() if error is None else []
        if not bonds:
            details["note"] = "No bonding interfaces detected (normal if bonding is not configured)"
            return result.set(CheckStatus.HEALTHY, "No bonding interfaces found")

        details["bond_interfaces"] = bonds
        bond_status = {}
        degraded = []
        for bond in bonds:
            content, err = await self.runner.run_host(f"cat /proc/net/bonding/{bond} 2>/dev/null")
            if err is not None or not content.strip():
                continue
            info = parse_bonding(content)
            bond_status[bond] = info
            down = [slave for slave, state in info["slaves"].items() if state.lower() != "up"]
            if info.get("mii_status", "up").lower() != "up":
                degraded.append(f"{bond}: bond down")
            elif down:
                degraded.append(f"{bond}: slaves down ({', '.join(down)})")
        details["bond_status"] = bond_status

        if degraded:
            return result.set(CheckStatus.WARNING, f"Degraded bonding: {', '.join(degraded)}")
        return result.set(CheckStatus.HEALTHY, f"Found {len(bonds)} bonding interface(s)")

    async def check_firewall_rules(self) -> CheckResult:
        result = self.new_result("iptables -L -n | wc -l")
        details = result.details

        output, error = await self.runner.run_host(
            "iptables -L -n 2>/dev/null | wc -l", requires=("iptables",)
        )
        firewall_active = error is None
        if firewall_active:
            count = parse_int(output.strip())
            if count is not None:
                details["iptables_rule_count"] = count

        nft_output, nft_error = await self.runner.run_host(
            "nft list ruleset 2>/dev/null | wc -l", requires=("nft",)
        )
        if nft_error is None:
            count = parse_int(nft_output.strip())
            if count is not None:
                details["nftables_line_count"] = count

        details["firewall_active"] = firewall_active
        return result.set(CheckStatus.HEALTHY, "Firewall rules check completed")


def default_gateway(route_output: str) -> str:
    """从 default 路由行中提取 via 之后的网关地址"""
    for line in route_output.splitlines():
        if not line.strip().startswith("default"):
            continue
        fields = line.split()
        if "via" in fields:
            index = fields.index("via")
            if index + 1 < len(fields):
                return fields[index + 1]
    return ""
