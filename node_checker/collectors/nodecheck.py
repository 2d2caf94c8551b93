"""
NodeCheck 资源模型

NodeCheck (nodecheck.openshift.io/v1alpha1) 是声明式的诊断请求:
- spec.nodeName: 目标节点;为空表示由 Agent 自动检测,"*"/"all" 表示通配 (仅用于扇出)
- spec.checkInterval: 检查间隔 (分钟)
- spec.nodeSelector / spec.tolerations: 影响 Agent DaemonSet 调度
- spec.systemChecks / spec.kubernetesChecks: 探针开关
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


API_GROUP = "nodecheck.openshift.io"
API_VERSION = "v1alpha1"
KIND = "NodeCheck"
PLURAL = "nodechecks"
RESOURCE = f"{PLURAL}.{API_GROUP}"

WILDCARD_NODE_NAMES = ("*", "all")
DEFAULT_CHECK_INTERVAL_MINUTES = 5

# 扇出生成的子资源标签
TEMPLATE_LABEL = f"{API_GROUP}/template"
NODE_LABEL = f"{API_GROUP}/node"


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class HardwareChecks(_CamelModel):
    temperature: bool = False
    ipmi: bool = False
    bmc: bool = False
    fan_status: bool = Field(False, alias="fanStatus")
    power_supply: bool = Field(False, alias="powerSupply")
    memory_errors: bool = Field(False, alias="memoryErrors")
    pcie_errors: bool = Field(False, alias="pcieErrors")
    cpu_microcode: bool = Field(False, alias="cpuMicrocode")


class DiskChecks(_CamelModel):
    space: bool = False
    smart: bool = False
    performance: bool = False
    raid: bool = False
    pvs: bool = False
    lvm: bool = False
    io_wait: bool = Field(False, alias="ioWait")
    queue_depth: bool = Field(False, alias="queueDepth")
    filesystem_errors: bool = Field(False, alias="filesystemErrors")
    inode_usage: bool = Field(False, alias="inodeUsage")
    mount_points: bool = Field(False, alias="mountPoints")


class NetworkChecks(_CamelModel):
    interfaces: bool = False
    routing: bool = False
    connectivity: bool = False
    statistics: bool = False
    errors: bool = False
    latency: bool = False
    dns_resolution: bool = Field(False, alias="dnsResolution")
    bonding_status: bool = Field(False, alias="bondingStatus")
    firewall_rules: bool = Field(False, alias="firewallRules")


class SystemChecks(_CamelModel):
    uptime: bool = False
    processes: bool = False
    resources: bool = False
    services: bool = False
    memory: bool = False
    uninterruptible_tasks: bool = Field(False, alias="uninterruptibleTasks")
    system_logs: bool = Field(False, alias="systemLogs")
    file_descriptors: bool = Field(False, alias="fileDescriptors")
    zombie_processes: bool = Field(False, alias="zombieProcesses")
    ntp_sync: bool = Field(False, alias="ntpSync")
    kernel_panics: bool = Field(False, alias="kernelPanics")
    oom_killer: bool = Field(False, alias="oomKiller")
    cpu_frequency: bool = Field(False, alias="cpuFrequency")
    interrupts_balance: bool = Field(False, alias="interruptsBalance")
    cpu_steal_time: bool = Field(False, alias="cpuStealTime")
    memory_fragmentation: bool = Field(False, alias="memoryFragmentation")
    swap_activity: bool = Field(False, alias="swapActivity")
    context_switches: bool = Field(False, alias="contextSwitches")
    selinux_status: bool = Field(False, alias="selinuxStatus")
    ssh_access: bool = Field(False, alias="sshAccess")
    kernel_modules: bool = Field(False, alias="kernelModules")
    hardware: HardwareChecks = Field(default_factory=HardwareChecks)
    disks: DiskChecks = Field(default_factory=DiskChecks)
    network: NetworkChecks = Field(default_factory=NetworkChecks)


class KubernetesChecks(_CamelModel):
    node_status: bool = Field(False, alias="nodeStatus")
    pods: bool = False
    cluster_operators: bool = Field(False, alias="clusterOperators")
    node_resources: bool = Field(False, alias="nodeResources")
    node_resource_usage: bool = Field(False, alias="nodeResourceUsage")
    container_runtime: bool = Field(False, alias="containerRuntime")
    kubelet_health: bool = Field(False, alias="kubeletHealth")
    cni_plugin: bool = Field(False, alias="cniPlugin")
    node_conditions: bool = Field(False, alias="nodeConditions")


class Toleration(_CamelModel):
    key: Optional[str] = None
    operator: Optional[str] = None
    value: Optional[str] = None
    effect: Optional[str] = None
    toleration_seconds: Optional[int] = Field(None, alias="tolerationSeconds")

    def identity(self) -> str:
        """去重键: key:operator:effect"""
        return f"{self.key or ''}:{self.operator or ''}:{self.effect or ''}"

    def to_k8s(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class NodeCheckSpec(_CamelModel):
    node_name: str = Field("", alias="nodeName")
    check_interval: int = Field(0, alias="checkInterval")
    node_selector: Dict[str, str] = Field(default_factory=dict, alias="nodeSelector")
    tolerations: List[Toleration] = Field(default_factory=list)
    system_checks: SystemChecks = Field(default_factory=SystemChecks, alias="systemChecks")
    kubernetes_checks: KubernetesChecks = Field(
        default_factory=KubernetesChecks, alias="kubernetesChecks"
    )

    @property
    def is_wildcard(self) -> bool:
        return is_wildcard_node(self.node_name)

    @property
    def interval_minutes(self) -> int:
        """生效的检查间隔,未设置或非法时为默认值"""
        if self.check_interval and self.check_interval > 0:
            return self.check_interval
        return DEFAULT_CHECK_INTERVAL_MINUTES

    def to_k8s(self) -> Dict[str, Any]:
        """转换为 API 对象中的 spec 字段"""
        return self.model_dump(by_alias=True, exclude_none=True)


class NodeCheck(_CamelModel):
    """NodeCheck 资源 (只解析控制器和 Agent 关心的字段)"""
    name: str
    namespace: str = ""
    labels: Dict[str, str] = Field(default_factory=dict)
    resource_version: str = ""
    deletion_timestamp: Optional[str] = None
    spec: NodeCheckSpec = Field(default_factory=NodeCheckSpec)
    status: Dict[str, Any] = Field(default_factory=dict)
    raw: Dict[str, Any] = Field(default_factory=dict, exclude=True)

    @classmethod
    def from_k8s(cls, obj: Dict[str, Any]) -> "NodeCheck":
        metadata = obj.get("metadata") or {}
        return cls(
            name=metadata.get("name", ""),
            namespace=metadata.get("namespace", ""),
            labels=metadata.get("labels") or {},
            resource_version=metadata.get("resourceVersion", ""),
            deletion_timestamp=metadata.get("deletionTimestamp"),
            spec=NodeCheckSpec.model_validate(obj.get("spec") or {}),
            status=obj.get("status") or {},
            raw=obj,
        )

    @property
    def is_wildcard(self) -> bool:
        return self.spec.is_wildcard

    @property
    def overall_status(self) -> str:
        return self.status.get("overallStatus") or ""

    @property
    def last_check_time(self) -> str:
        return self.status.get("lastCheckTime") or ""

    @property
    def check_results(self) -> Dict[str, Any]:
        return self.status.get("checkResults") or {}


def is_wildcard_node(node_name: Optional[str]) -> bool:
    """是否为通配目标 ("*" 或 "all")"""
    return (node_name or "") in WILDCARD_NODE_NAMES


def build_nodecheck_object(
    name: str,
    namespace: str,
    spec: NodeCheckSpec,
    labels: Optional[Dict[str, str]] = None,
    owner: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """构建可提交给 API 的 NodeCheck 对象"""
    metadata: Dict[str, Any] = {"name": name, "namespace": namespace}
    if labels:
        metadata["labels"] = dict(labels)
    if owner:
        metadata["ownerReferences"] = [owner]
    return {
        "apiVersion": f"{API_GROUP}/{API_VERSION}",
        "kind": KIND,
        "metadata": metadata,
        "spec": spec.to_k8s(),
    }
