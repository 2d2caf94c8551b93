"""
集群层探针

节点状态与 conditions、节点上的 Pod、OpenShift ClusterOperator、资源分配与实时用量、
容器运行时 socket、kubelet healthz、CNI 配置。

API 访问统一走 KubectlWrapper (结果带 TTL 缓存,同一轮检查内多次读取节点对象只调用一次 kubectl)。
"""

import logging
from typing import Dict, List, Optional

from ..collectors.host_runner import HostCommandRunner
from ..collectors.k8s_client import KubectlWrapper, get_k8s_client, items_of
from ..collectors.models import CheckResult, CheckStatus
from ..utils.parsers import parse_cpu_quantity, parse_memory_quantity
from .base import BaseChecker

logger = logging.getLogger(__name__)

OPENSHIFT_API_GROUP = "config.openshift.io"

PRESSURE_CONDITIONS = {
    "MemoryPressure": "Memory pressure detected",
    "DiskPressure": "Disk pressure detected",
    "PIDPressure": "PID pressure detected",
}

RUNTIME_SOCKETS = [
    ("containerd", "/run/containerd/containerd.sock"),
    ("crio", "/var/run/crio/crio.sock"),
    ("docker", "/var/run/docker.sock"),
]

KUBELET_HEALTHZ_PORT = 10248
CNI_CONFIG_DIR = "/etc/cni/net.d"
CNI_BIN_DIR = "/opt/cni/bin"

USAGE_HIGH_PERCENT = 90
USAGE_ELEVATED_PERCENT = 80


def container_resources(pod: Dict) -> Dict[str, int]:
    """汇总 Pod 内全部容器的 requests/limits (CPU 毫核,内存字节)"""
    totals = {"cpu_requests": 0, "cpu_limits": 0, "memory_requests": 0, "memory_limits": 0}
    for container in (pod.get("spec") or {}).get("containers") or []:
        resources = container.get("resources") or {}
        requests = resources.get("requests") or {}
        limits = resources.get("limits") or {}
        totals["cpu_requests"] += parse_cpu_quantity(requests.get("cpu"))
        totals["cpu_limits"] += parse_cpu_quantity(limits.get("cpu"))
        totals["memory_requests"] += parse_memory_quantity(requests.get("memory"))
        totals["memory_limits"] += parse_memory_quantity(limits.get("memory"))
    return totals


def pod_restart_count(pod: Dict) -> int:
    statuses = (pod.get("status") or {}).get("containerStatuses") or []
    return sum(int(s.get("restartCount") or 0) for s in statuses)


def is_crash_looping(pod: Dict) -> bool:
    for status in (pod.get("status") or {}).get("containerStatuses") or []:
        waiting = (status.get("state") or {}).get("waiting") or {}
        if waiting.get("reason") == "CrashLoopBackOff":
            return True
    return False


def percent(part: float, whole: float) -> float:
    return part / whole * 100 if whole > 0 else 0.0


class KubernetesChecker(BaseChecker):
    """集群层检查器

    Args:
        node_name: 节点名
        client: KubectlWrapper,默认使用全局单例
        runner: 宿主机命令执行器 (运行时/kubelet/CNI 检查使用)
    """

    def __init__(self, node_name: str, client: Optional[KubectlWrapper] = None,
                 runner: Optional[HostCommandRunner] = None):
        super().__init__(node_name, runner)
        self.client = client or get_k8s_client()
        self._is_openshift: Optional[bool] = None

    async def is_openshift(self) -> bool:
        """是否为 OpenShift 集群,首次探测后缓存"""
        if self._is_openshift is None:
            result = await self.client.get_api_versions()
            data = result.get("data") if result.get("success") else ""
            self._is_openshift = OPENSHIFT_API_GROUP in str(data or "")
            logger.debug("OpenShift 探测结果: %s", self._is_openshift)
        return self._is_openshift

    async def _get_node(self) -> Dict:
        """读取本节点对象;失败时返回 {"error": ...}"""
        result = await self.client.get_node(self.node_name)
        if not result.get("success"):
            return {"error": result.get("error", "unknown error")}
        data = result.get("data")
        return data if isinstance(data, dict) else {"error": "unexpected node response"}

    async def _get_node_pods(self) -> Optional[List[Dict]]:
        result = await self.client.get_pods(field_selector=f"spec.nodeName={self.node_name}")
        if not result.get("success"):
            return None
        return items_of(result)

    async def check_node_status(self) -> CheckResult:
        result = self.new_result(f"kubectl get node {self.node_name}")
        details = result.details

        node = await self._get_node()
        if "error" in node:
            return result.set(CheckStatus.CRITICAL,
                              f"Failed to get node information: {node['error']}")

        metadata = node.get("metadata") or {}
        spec = node.get("spec") or {}
        status = node.get("status") or {}

        conditions = {}
        critical = []
        warning = []
        for condition in status.get("conditions") or []:
            ctype = condition.get("type", "")
            cstatus = condition.get("status", "")
            conditions[ctype] = {
                "status": cstatus,
                "reason": condition.get("reason", ""),
                "message": condition.get("message", ""),
                "last_heartbeat": condition.get("lastHeartbeatTime", ""),
                "last_transition": condition.get("lastTransitionTime", ""),
            }
            if ctype == "Ready" and cstatus != "True":
                critical.append(f"Node not ready: {condition.get('message', '')}")
            elif ctype in PRESSURE_CONDITIONS and cstatus == "True":
                warning.append(PRESSURE_CONDITIONS[ctype])

        details["node"] = {
            "name": metadata.get("name", self.node_name),
            "creation_time": metadata.get("creationTimestamp", ""),
            "labels": metadata.get("labels") or {},
            "taints": spec.get("taints") or [],
            "unschedulable": bool(spec.get("unschedulable", False)),
            "conditions": conditions,
        }
        details["capacity"] = status.get("capacity") or {}
        details["allocatable"] = status.get("allocatable") or {}
        details["critical_conditions"] = critical
        details["warning_conditions"] = warning

        if critical:
            return result.set(CheckStatus.CRITICAL,
                              f"Critical node conditions: {', '.join(critical)}")
        if warning:
            return result.set(CheckStatus.WARNING, f"Warning node conditions: {', '.join(warning)}")
        return result.set(CheckStatus.HEALTHY, "Node status is healthy")

    async def check_pods(self) -> CheckResult:
        """Failed Pod 判定 Critical,CrashLoopBackOff / Pending 判定 Warning"""
        result = self.new_result(f"kubectl get pods -A --field-selector spec.nodeName={self.node_name}")
        details = result.details

        pods = await self._get_node_pods()
        if pods is None:
            return result.set(CheckStatus.CRITICAL, "Failed to list pods on node")

        failed = []
        pending = []
        crash_loop = []
        pod_details = []
        for pod in pods:
            metadata = pod.get("metadata") or {}
            phase = (pod.get("status") or {}).get("phase", "")
            name = f"{metadata.get('namespace', '')}/{metadata.get('name', '')}"
            pod_details.append({
                "name": metadata.get("name", ""),
                "namespace": metadata.get("namespace", ""),
                "phase": phase,
                "creation_time": metadata.get("creationTimestamp", ""),
                "restart_count": pod_restart_count(pod),
            })
            if phase == "Failed":
                failed.append(name)
            elif phase == "Pending":
                pending.append(name)
            if is_crash_looping(pod):
                crash_loop.append(name)

        details["pods"] = pod_details
        details["total_pods"] = len(pods)
        details["failed_pods"] = failed
        details["pending_pods"] = pending
        details["crash_loop_pods"] = crash_loop

        if failed:
            return result.set(CheckStatus.CRITICAL, f"Failed pods: {', '.join(failed)}")
        if crash_loop:
            return result.set(CheckStatus.WARNING, f"Crash loop pods: {', '.join(crash_loop)}")
        if pending:
            return result.set(CheckStatus.WARNING, f"Pending pods: {', '.join(pending)}")
        return result.set(CheckStatus.HEALTHY, "All pods are running normally")

    async def check_cluster_operators(self) -> CheckResult:
        result = self.new_result("kubectl get clusteroperators.config.openshift.io")
        details = result.details

        response = await self.client.get_cluster_operators()
        if not response.get("success"):
            details["error"] = response.get("error", "")
            details["note"] = "ClusterOperators exist only on OpenShift"
            return result.set(
                CheckStatus.WARNING,
                f"ClusterOperators not available: {response.get('error', 'unknown error')} "
                f"(this is normal on non-OpenShift clusters)",
            )

        unavailable = []
        degraded = []
        progressing = []
        operators = []
        for item in items_of(response):
            name = (item.get("metadata") or {}).get("name", "")
            conditions = (item.get("status") or {}).get("conditions") or []
            operators.append({"name": name, "conditions": conditions})
            for condition in conditions:
                ctype = condition.get("type")
                cstatus = condition.get("status")
                entry = f"{name}: {condition.get('message', '')}"
                if ctype == "Available" and cstatus != "True":
                    unavailable.append(entry)
                elif ctype == "Degraded" and cstatus == "True":
                    degraded.append(entry)
                elif ctype == "Progressing" and cstatus == "True":
                    progressing.append(entry)

        details["operators"] = operators
        details["total_operators"] = len(operators)
        details["unavailable_operators"] = unavailable
        details["degraded_operators"] = degraded
        details["progressing_operators"] = progressing

        if unavailable or degraded:
            parts = []
            if unavailable:
                parts.append(f"Unavailable: {', '.join(unavailable)}")
            if degraded:
                parts.append(f"Degraded: {', '.join(degraded)}")
            return result.set(CheckStatus.CRITICAL, "; ".join(parts))
        if progressing:
            return result.set(CheckStatus.WARNING,
                              f"Some operators are progressing: {', '.join(progressing)}")
        return result.set(CheckStatus.HEALTHY, "All ClusterOperators are available and not degraded")

    async def check_node_resources(self) -> CheckResult:
        """Pod requests/limits 相对节点容量的分配比例 (不是实时用量)"""
        result = self.new_result("kubectl describe node (allocated resources)")
        details = result.details

        node = await self._get_node()
        if "error" in node:
            return result.set(CheckStatus.CRITICAL,
                              f"Failed to get node information: {node['error']}")
        pods = await self._get_node_pods()
        if pods is None:
            return result.set(CheckStatus.CRITICAL, "Failed to list pods on node")

        totals = {"cpu_requests": 0, "cpu_limits": 0, "memory_requests": 0, "memory_limits": 0}
        active = 0
        for pod in pods:
            if (pod.get("metadata") or {}).get("deletionTimestamp"):
                continue
            if (pod.get("status") or {}).get("phase") in ("Failed", "Succeeded"):
                continue
            active += 1
            for key, value in container_resources(pod).items():
                totals[key] += value

        status = node.get("status") or {}
        capacity = status.get("capacity") or {}
        allocatable = status.get("allocatable") or {}
        cpu_capacity = parse_cpu_quantity(capacity.get("cpu"))
        memory_capacity = parse_memory_quantity(capacity.get("memory"))

        cpu_request_pct = percent(totals["cpu_requests"], cpu_capacity)
        cpu_limit_pct = percent(totals["cpu_limits"], cpu_capacity)
        memory_request_pct = percent(totals["memory_requests"], memory_capacity)
        memory_limit_pct = percent(totals["memory_limits"], memory_capacity)

        details["node_name"] = self.node_name
        details["capacity"] = {"cpu": capacity.get("cpu", ""), "memory": capacity.get("memory", "")}
        details["allocatable"] = {"cpu": allocatable.get("cpu", ""),
                                  "memory": allocatable.get("memory", "")}
        details["allocated"] = {
            "cpu_requests": f"{totals['cpu_requests']}m",
            "cpu_limits": f"{totals['cpu_limits']}m",
            "memory_requests": str(totals["memory_requests"]),
            "memory_limits": str(totals["memory_limits"]),
        }
        details["percentages"] = {
            "cpu_request_percent": round(cpu_request_pct, 2),
            "cpu_limit_percent": round(cpu_limit_pct, 2),
            "memory_request_percent": round(memory_request_pct, 2),
            "memory_limit_percent": round(memory_limit_pct, 2),
        }
        details["total_pods"] = active
        details["note"] = ("Values are resource allocations (requests/limits) from pod specs, "
                           "not real-time consumption. See nodeResourceUsage for actual usage.")

        overcommit = []
        if cpu_limit_pct > 100:
            overcommit.append(f"CPU limits overcommitted: {cpu_limit_pct:.1f}%")
        if memory_limit_pct > 100:
            overcommit.append(f"Memory limits overcommitted: {memory_limit_pct:.1f}%")

        summary = f"CPU requests: {cpu_request_pct:.1f}%, Memory requests: {memory_request_pct:.1f}%"
        if overcommit:
            return result.set(CheckStatus.WARNING,
                              f"Resource allocation overcommit detected: {'; '.join(overcommit)}")
        if cpu_request_pct < 10 and memory_request_pct < 10:
            return result.set(CheckStatus.HEALTHY, f"Node allocation is underutilized ({summary})")
        if cpu_request_pct > 90 or memory_request_pct > 90:
            return result.set(CheckStatus.WARNING, f"High resource allocation ({summary})")
        return result.set(CheckStatus.HEALTHY, f"Resource allocation is normal ({summary})")

    async def check_node_resource_usage(self) -> CheckResult:
        """metrics.k8s.io 实时用量,>90% 或 >80% 均为 Warning"""
        result = self.new_result(f"kubectl get --raw /apis/metrics.k8s.io/v1beta1/nodes/{self.node_name}")
        details = result.details

        openshift = await self.is_openshift()
        details["is_openshift"] = openshift

        metrics = await self.client.get_node_metrics(self.node_name)
        if not metrics.get("success"):
            error = metrics.get("error", "unknown error")
            details["error"] = error
            if openshift:
                details["note"] = ("OpenShift ships metrics-server by default; verify the "
                                   "monitoring pods are running.")
                hint = "OpenShift should have metrics-server by default, check if it's running"
            else:
                details["note"] = "Node resource usage requires metrics-server to be installed."
                hint = "metrics-server may not be installed or accessible"
            return result.set(CheckStatus.WARNING, f"Metrics API not available: {error} ({hint})")

        data = metrics.get("data")
        usage = data.get("usage") if isinstance(data, dict) else None
        if not usage or "cpu" not in usage or "memory" not in usage:
            details["error"] = "Metrics API returned unexpected format"
            return result.set(CheckStatus.WARNING,
                              "Failed to parse metrics response (unexpected format)")

        node = await self._get_node()
        if "error" in node:
            details["error"] = node["error"]
            return result.set(CheckStatus.WARNING, f"Failed to get node information: {node['error']}")

        capacity = (node.get("status") or {}).get("capacity") or {}
        cpu_used = parse_cpu_quantity(usage["cpu"])
        memory_used = parse_memory_quantity(usage["memory"])
        cpu_pct = percent(cpu_used, parse_cpu_quantity(capacity.get("cpu")))
        memory_pct = percent(memory_used, parse_memory_quantity(capacity.get("memory")))

        details["node_name"] = self.node_name
        details["cpu_usage"] = {"cores": f"{cpu_used}m", "percent": round(cpu_pct, 2),
                                "capacity": capacity.get("cpu", "")}
        details["memory_usage"] = {"bytes": memory_used, "human": usage["memory"],
                                   "percent": round(memory_pct, 2),
                                   "capacity": capacity.get("memory", "")}
        details["check_method"] = "Metrics API (metrics-server)"

        issues = []
        if cpu_pct > USAGE_HIGH_PERCENT:
            issues.append(f"High CPU usage: {cpu_pct:.1f}%")
        if memory_pct > USAGE_HIGH_PERCENT:
            issues.append(f"High memory usage: {memory_pct:.1f}%")

        if issues:
            return result.set(CheckStatus.WARNING, "; ".join(issues))
        if cpu_pct > USAGE_ELEVATED_PERCENT or memory_pct > USAGE_ELEVATED_PERCENT:
            return result.set(CheckStatus.WARNING,
                              f"Elevated resource usage (CPU: {cpu_pct:.1f}%, "
                              f"Memory: {memory_pct:.1f}%)")
        return result.set(CheckStatus.HEALTHY,
                          f"Resource usage is normal (CPU: {cpu_pct:.1f}%, Memory: {memory_pct:.1f}%)")

    async def check_container_runtime(self) -> CheckResult:
        result = self.new_result("test -S <runtime socket>")
        details = result.details

        for runtime, socket in RUNTIME_SOCKETS:
            output, error = await self.runner.run_host(
                f"test -S {socket} && echo exists || echo not_found"
            )
            if error is None and "exists" in output:
                details["runtime"] = runtime
                details["socket"] = socket
                if runtime == "docker":
                    return result.set(
                        CheckStatus.WARNING,
                        "Docker runtime detected (may be deprecated in newer Kubernetes versions)",
                    )
                label = "CRI-O" if runtime == "crio" else runtime
                return result.set(CheckStatus.HEALTHY, f"Container runtime ({label}) is available")

        details["note"] = "Container runtime socket may not be accessible from the container"
        return result.set(CheckStatus.WARNING, "Container runtime socket not found or not accessible")

    async def check_kubelet_health(self) -> CheckResult:
        command = (f"curl -s -k https://localhost:{KUBELET_HEALTHZ_PORT}/healthz 2>&1 "
                   f"|| curl -s http://localhost:{KUBELET_HEALTHZ_PORT}/healthz 2>&1")
        result = self.new_result(command)
        details = result.details

        output, error = await self.runner.run_host(command)
        if error is not None:
            details["note"] = "Kubelet health endpoint may not be accessible from the container"
            details["error"] = str(error)
            return result.set(CheckStatus.WARNING, "Kubelet health endpoint not accessible")

        response = output.strip()
        details["health_response"] = response[:500]
        if response == "ok":
            return result.set(CheckStatus.HEALTHY, "Kubelet health endpoint is responding")
        return result.set(CheckStatus.WARNING, f"Kubelet health endpoint returned: {response[:200]}")

    async def check_cni_plugin(self) -> CheckResult:
        result = self.new_result(f"ls {CNI_CONFIG_DIR}; ls {CNI_BIN_DIR}")
        details = result.details

        configs, error = await self.runner.run_host(f"ls {CNI_CONFIG_DIR} 2>/dev/null | head -5")
        if error is None and configs.strip():
            details["cni_config_dir"] = CNI_CONFIG_DIR
            details["cni_configs"] = configs.strip().splitlines()

        binaries, error = await self.runner.run_host(f"ls {CNI_BIN_DIR} 2>/dev/null | head -10")
        if error is None and binaries.strip():
            details["cni_bin_dir"] = CNI_BIN_DIR
            details["cni_binaries"] = binaries.strip().splitlines()

        if details:
            return result.set(CheckStatus.HEALTHY, "CNI plugin configuration found")
        details["note"] = "CNI directories may not be accessible from the container"
        return result.set(CheckStatus.WARNING, "CNI plugin configuration not found or not accessible")

    async def check_node_conditions(self) -> CheckResult:
        """Ready 以外的 condition 为 True 即视为异常"""
        result = self.new_result(f"kubectl get node {self.node_name} -o jsonpath='{{.status.conditions}}'")
        details = result.details

        node = await self._get_node()
        if "error" in node:
            return result.set(CheckStatus.WARNING, f"Failed to get node: {node['error']}")

        conditions = {}
        unhealthy = []
        for condition in (node.get("status") or {}).get("conditions") or []:
            ctype = condition.get("type", "")
            cstatus = condition.get("status", "")
            conditions[ctype] = {
                "status": cstatus,
                "lastTransitionTime": condition.get("lastTransitionTime", ""),
                "reason": condition.get("reason", ""),
                "message": condition.get("message", ""),
            }
            if (ctype == "Ready") != (cstatus == "True"):
                unhealthy.append(ctype)

        details["conditions"] = conditions
        details["node_name"] = self.node_name

        if unhealthy:
            return result.set(CheckStatus.WARNING,
                              f"Unhealthy node conditions: {', '.join(unhealthy)}")
        return result.set(CheckStatus.HEALTHY, "All node conditions are healthy")
