"""
探针注册表

把 NodeCheck spec 中的每个开关映射到 (分类, 结果键, 显示名, 检查器, 方法)。
结果键与 spec 开关名一致 (camelCase),显示名用于统计面板。
"""

import re
from dataclasses import dataclass
from typing import List, Optional

from ..collectors.models import (
    CATEGORY_DISK,
    CATEGORY_HARDWARE,
    CATEGORY_KUBERNETES,
    CATEGORY_NETWORK,
    CATEGORY_SYSTEM,
)
from ..collectors.nodecheck import NodeCheckSpec

# 检查器属性名 (ProbeExecutor 中的实例)
SYSTEM = "system"
HARDWARE = "hardware"
DISK = "disk"
NETWORK = "network"
KUBERNETES = "kubernetes"


@dataclass(frozen=True)
class ProbeSpec:
    """单个探针的注册信息

    Attributes:
        category: 结果分类 (决定在 ResultBundle 中的位置)
        key: 结果键,同时是 spec 中的开关名
        display_name: 统计面板中的名称
        checker: 检查器名 (system/hardware/disk/network/kubernetes)
        method: 检查器上的探针方法名
    """
    category: str
    key: str
    display_name: str
    checker: str
    method: str

    @property
    def dashboard_category(self) -> str:
        """统计面板只区分 system 与 kubernetes 两类"""
        return "kubernetes" if self.category == CATEGORY_KUBERNETES else "system"

    @property
    def field_name(self) -> str:
        return camel_to_snake(self.key)


def camel_to_snake(name: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower()


def _probes(category: str, checker: str, entries) -> List[ProbeSpec]:
    return [ProbeSpec(category, key, display, checker, method) for key, display, method in entries]


PROBES: List[ProbeSpec] = (
    _probes(CATEGORY_SYSTEM, SYSTEM, [
        ("uptime", "Uptime", "check_uptime"),
        ("processes", "Processes", "check_processes"),
        ("resources", "Resources", "check_resources"),
        ("memory", "Memory", "check_memory"),
        ("uninterruptibleTasks", "Uninterruptible Tasks", "check_uninterruptible_tasks"),
        ("services", "Services", "check_services"),
        ("systemLogs", "System Logs", "check_system_logs"),
        ("fileDescriptors", "File Descriptors", "check_file_descriptors"),
        ("zombieProcesses", "Zombie Processes", "check_zombie_processes"),
        ("ntpSync", "NTP Sync", "check_ntp_sync"),
        ("kernelPanics", "Kernel Panics", "check_kernel_panics"),
        ("oomKiller", "OOM Killer", "check_oom_killer"),
        ("cpuFrequency", "CPU Frequency", "check_cpu_frequency"),
        ("interruptsBalance", "Interrupts Balance", "check_interrupts_balance"),
        ("cpuStealTime", "CPU Steal Time", "check_cpu_steal_time"),
        ("memoryFragmentation", "Memory Fragmentation", "check_memory_fragmentation"),
        ("swapActivity", "Swap Activity", "check_swap_activity"),
        ("contextSwitches", "Context Switches", "check_context_switches"),
        ("selinuxStatus", "SELinux Status", "check_selinux_status"),
        ("sshAccess", "SSH Access", "check_ssh_access"),
        ("kernelModules", "Kernel Modules", "check_kernel_modules"),
    ])
    + _probes(CATEGORY_HARDWARE, HARDWARE, [
        ("temperature", "Temperature", "check_temperature"),
        ("ipmi", "IPMI", "check_ipmi"),
        ("bmc", "BMC", "check_bmc"),
        ("fanStatus", "Fan Status", "check_fan_status"),
        ("powerSupply", "Power Supply", "check_power_supply"),
        ("memoryErrors", "Memory Errors", "check_memory_errors"),
        ("pcieErrors", "PCIe Errors", "check_pcie_errors"),
        ("cpuMicrocode", "CPU Microcode", "check_cpu_microcode"),
    ])
    + _probes(CATEGORY_DISK, DISK, [
        ("space", "Disk Space", "check_space"),
        ("smart", "Disk SMART", "check_smart"),
        ("performance", "Disk Performance", "check_performance"),
        ("raid", "RAID", "check_raid"),
        ("pvs", "LVM PVs", "check_pvs"),
        ("lvm", "LVM", "check_lvm"),
        ("ioWait", "I/O Wait", "check_io_wait"),
        ("queueDepth", "Queue Depth", "check_queue_depth"),
        ("filesystemErrors", "Filesystem Errors", "check_filesystem_errors"),
        ("inodeUsage", "Inode Usage", "check_inode_usage"),
        ("mountPoints", "Mount Points", "check_mount_points"),
    ])
    + _probes(CATEGORY_NETWORK, NETWORK, [
        ("interfaces", "Network Interfaces", "check_interfaces"),
        ("routing", "Network Routing", "check_routing"),
        ("connectivity", "Network Connectivity", "check_connectivity"),
        ("statistics", "Network Statistics", "check_statistics"),
        ("errors", "Network Errors", "check_errors"),
        ("latency", "Network Latency", "check_latency"),
        ("dnsResolution", "DNS Resolution", "check_dns_resolution"),
        ("bondingStatus", "Bonding Status", "check_bonding_status"),
        ("firewallRules", "Firewall Rules", "check_firewall_rules"),
    ])
    + _probes(CATEGORY_KUBERNETES, KUBERNETES, [
        ("nodeStatus", "Node Status", "check_node_status"),
        ("pods", "Pods", "check_pods"),
        ("clusterOperators", "Cluster Operators", "check_cluster_operators"),
        ("nodeResources", "Node Resources", "check_node_resources"),
        ("nodeResourceUsage", "Node Resource Usage", "check_node_resource_usage"),
        ("containerRuntime", "Container Runtime", "check_container_runtime"),
        ("kubeletHealth", "Kubelet Health", "check_kubelet_health"),
        ("cniPlugin", "CNI Plugin", "check_cni_plugin"),
        ("nodeConditions", "Node Conditions", "check_node_conditions"),
    ])
)

_BY_LOCATION = {(p.category, p.key): p for p in PROBES}


def find_probe(category: str, key: str) -> Optional[ProbeSpec]:
    return _BY_LOCATION.get((category, key))


def _toggles_for(spec: NodeCheckSpec, category: str):
    if category == CATEGORY_SYSTEM:
        return spec.system_checks
    if category == CATEGORY_HARDWARE:
        return spec.system_checks.hardware
    if category == CATEGORY_DISK:
        return spec.system_checks.disks
    if category == CATEGORY_NETWORK:
        return spec.system_checks.network
    return spec.kubernetes_checks


def is_enabled(spec: NodeCheckSpec, probe: ProbeSpec) -> bool:
    return bool(getattr(_toggles_for(spec, probe.category), probe.field_name, False))


def enabled_probes(spec: NodeCheckSpec) -> List[ProbeSpec]:
    """spec 中开启的探针,保持注册顺序"""
    return [probe for probe in PROBES if is_enabled(spec, probe)]
