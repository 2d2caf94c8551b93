"""
只读查询接口

为 CLI (以及任何上层界面) 提供 NodeCheck 列表、详情、集群统计、
节点信息和节点上的 Pod。节点与 Pod 查询走 KubectlWrapper 的响应缓存。
"""

import logging
from typing import Dict, List, Optional

from ..aggregator.rollup import fleet_stats, summarize_request
from ..agent.registry import find_probe
from ..collectors.cluster_api import ClusterApi
from ..collectors.k8s_client import KubectlWrapper, get_k8s_client, items_of
from ..collectors.models import CheckResult, iter_bundle
from ..checks.kubernetes import pod_restart_count
from ..utils.errors import DiagnosticErrorCode, OrchestrationAPIError

logger = logging.getLogger(__name__)


class DashboardQueries:
    """NodeCheck 查询

    Example:
        queries = DashboardQueries("node-check-operator-system")
        for row in await queries.list_requests():
            print(row["nodeName"], row["overallStatus"])
    """

    def __init__(self, namespace: str, client: Optional[KubectlWrapper] = None):
        self.namespace = namespace
        self.client = client or get_k8s_client()
        self.api = ClusterApi(self.client)

    async def list_requests(self, include_wildcards: bool = True) -> List[Dict]:
        """所有 NodeCheck 的摘要,按名称排序"""
        nodechecks = await self.api.list_nodechecks(self.namespace)
        rows = [
            summarize_request(nc) for nc in nodechecks
            if include_wildcards or not nc.is_wildcard
        ]
        return sorted(rows, key=lambda row: row["name"])

    async def get_request_detail(self, name: str) -> Optional[Dict]:
        """单个 NodeCheck 的完整结果

        Returns:
            摘要字段加上 spec 与 results (details 已还原);不存在时返回 None
        """
        nodecheck = await self.api.get_nodecheck(name, self.namespace)
        if nodecheck is None:
            return None

        results = []
        for category, key, raw in iter_bundle(nodecheck.check_results):
            result = CheckResult.from_dict(raw)
            probe = find_probe(category, key)
            entry = result.to_dict()
            entry.update({
                "category": category,
                "key": key,
                "name": probe.display_name if probe else key,
            })
            results.append(entry)

        detail = summarize_request(nodecheck)
        detail["spec"] = nodecheck.spec.to_k8s()
        detail["results"] = results
        return detail

    async def get_fleet_stats(self) -> Dict:
        """集群级统计 (不含通配模板)"""
        return fleet_stats(await self.api.list_nodechecks(self.namespace))

    async def get_node_info(self, node: str) -> Optional[Dict]:
        """节点基本信息,节点不存在时返回 None

        Raises:
            OrchestrationAPIError: 查询失败 (NotFound 除外)
        """
        result = await self.client.get_node(node, use_cache=True)
        if not result.get("success"):
            if result.get("not_found"):
                return None
            raise OrchestrationAPIError(
                f"get Node failed: {result.get('error', 'unknown error')}",
                resource_type="Node", resource_name=node,
                code=DiagnosticErrorCode.API_ERROR,
            )

        data = result.get("data") or {}
        metadata = data.get("metadata") or {}
        spec = data.get("spec") or {}
        status = data.get("status") or {}
        return {
            "name": metadata.get("name", node),
            "creationTime": metadata.get("creationTimestamp", ""),
            "labels": metadata.get("labels") or {},
            "annotations": metadata.get("annotations") or {},
            "taints": spec.get("taints") or [],
            "unschedulable": bool(spec.get("unschedulable", False)),
            "conditions": status.get("conditions") or [],
            "capacity": status.get("capacity") or {},
            "allocatable": status.get("allocatable") or {},
            "addresses": status.get("addresses") or [],
            "nodeInfo": status.get("nodeInfo") or {},
        }

    async def get_node_pods(self, node: str) -> List[Dict]:
        """调度到节点上的 Pod

        Raises:
            OrchestrationAPIError: 查询失败
        """
        result = await self.client.get_pods(
            field_selector=f"spec.nodeName={node}", use_cache=True
        )
        if not result.get("success"):
            raise OrchestrationAPIError(
                f"list Pods on {node} failed: {result.get('error', 'unknown error')}",
                resource_type="Pod", code=DiagnosticErrorCode.API_ERROR,
            )

        pods = []
        for pod in items_of(result):
            metadata = pod.get("metadata") or {}
            statuses = (pod.get("status") or {}).get("containerStatuses") or []
            pods.append({
                "name": metadata.get("name", ""),
                "namespace": metadata.get("namespace", ""),
                "phase": (pod.get("status") or {}).get("phase", "Unknown"),
                "creationTime": metadata.get("creationTimestamp", ""),
                "restartCount": pod_restart_count(pod),
                "readyContainers": sum(1 for s in statuses if s.get("ready")),
                "totalContainers": len((pod.get("spec") or {}).get("containers") or statuses),
            })
        return sorted(pods, key=lambda p: (p["namespace"], p["name"]))
