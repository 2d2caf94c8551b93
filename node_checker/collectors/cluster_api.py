"""
调和层使用的集群 API

与 KubectlWrapper 的 {"success": ...} 返回约定不同,
这里任何读写失败都抛出 OrchestrationAPIError,交给调和调度层退避重试;
只有 get_* 遇到 NotFound 时返回 None。
"""

import logging
from typing import Any, Dict, List, Optional

from ..utils.errors import DiagnosticErrorCode, OrchestrationAPIError
from .k8s_client import KubectlWrapper, get_k8s_client
from .nodecheck import NodeCheck, RESOURCE as NODECHECK_RESOURCE

logger = logging.getLogger(__name__)


def _raise_for(result: Dict, action: str, resource_type: str, name: str = ""):
    if result.get("success"):
        return
    if result.get("not_found"):
        code = DiagnosticErrorCode.RESOURCE_NOT_FOUND
    elif result.get("conflict"):
        code = DiagnosticErrorCode.CONFLICT
    else:
        code = DiagnosticErrorCode.API_ERROR
    raise OrchestrationAPIError(
        f"{action} {resource_type} failed: {result.get('error', 'unknown error')}",
        resource_type=resource_type,
        resource_name=name or None,
        code=code,
    )


class ClusterApi:
    """基于 kubectl 的严格集群 API"""

    def __init__(self, client: Optional[KubectlWrapper] = None):
        self.client = client or get_k8s_client()

    # === NodeCheck ===

    async def list_nodechecks(self, namespace: Optional[str] = None) -> List[NodeCheck]:
        result = await self.client.list_nodechecks(namespace)
        _raise_for(result, "list", "NodeCheck")
        data = result.get("data") or {}
        items = data.get("items", []) if isinstance(data, dict) else []
        return [NodeCheck.from_k8s(item) for item in items]

    async def get_nodecheck(self, name: str, namespace: str) -> Optional[NodeCheck]:
        result = await self.client.get_nodecheck(name, namespace)
        if not result.get("success") and result.get("not_found"):
            return None
        _raise_for(result, "get", "NodeCheck", name)
        return NodeCheck.from_k8s(result.get("data") or {})

    async def create_nodecheck(self, obj: Dict[str, Any]) -> Dict:
        result = await self.client.create_object(obj)
        _raise_for(result, "create", "NodeCheck", obj["metadata"]["name"])
        return result.get("data") or {}

    async def update_nodecheck_spec(self, name: str, namespace: str, spec: Dict[str, Any],
                                    resource_version: Optional[str] = None) -> Dict:
        """合并 patch spec;给出 resource_version 时对象已被改动则以 CONFLICT 失败"""
        patch: Dict[str, Any] = {"spec": spec}
        if resource_version:
            patch["metadata"] = {"resourceVersion": resource_version}
        result = await self.client.patch_nodecheck(name, namespace, patch)
        _raise_for(result, "update", "NodeCheck", name)
        return result.get("data") or {}

    async def update_nodecheck_status(self, name: str, namespace: str,
                                      status: Dict[str, Any]) -> Dict:
        result = await self.client.patch_nodecheck(
            name, namespace, {"status": status}, status=True
        )
        _raise_for(result, "update status of", "NodeCheck", name)
        return result.get("data") or {}

    async def delete_nodecheck(self, name: str, namespace: str):
        result = await self.client.delete_object(NODECHECK_RESOURCE, name, namespace)
        if not result.get("success") and result.get("not_found"):
            return
        _raise_for(result, "delete", "NodeCheck", name)

    # === DaemonSet ===

    async def get_daemonset(self, name: str, namespace: str) -> Optional[Dict]:
        result = await self.client.get_daemonset(name, namespace)
        if not result.get("success") and result.get("not_found"):
            return None
        _raise_for(result, "get", "DaemonSet", name)
        return result.get("data") or {}

    async def create_daemonset(self, obj: Dict[str, Any]) -> Dict:
        result = await self.client.create_object(obj)
        _raise_for(result, "create", "DaemonSet", obj["metadata"]["name"])
        logger.info("已创建 DaemonSet %s/%s",
                    obj["metadata"].get("namespace"), obj["metadata"]["name"])
        return result.get("data") or {}

    async def update_daemonset(self, obj: Dict[str, Any]) -> Dict:
        result = await self.client.replace_object(obj)
        _raise_for(result, "update", "DaemonSet", obj["metadata"]["name"])
        logger.info("已更新 DaemonSet %s/%s",
                    obj["metadata"].get("namespace"), obj["metadata"]["name"])
        return result.get("data") or {}

    async def delete_daemonset(self, name: str, namespace: str):
        result = await self.client.delete_object("daemonset", name, namespace)
        if not result.get("success") and result.get("not_found"):
            return
        _raise_for(result, "delete", "DaemonSet", name)
        logger.info("已删除 DaemonSet %s/%s", namespace, name)

    # === Node ===

    async def list_nodes(self, selector: Optional[Dict[str, str]] = None) -> List[Dict]:
        label_selector = ",".join(f"{k}={v}" for k, v in sorted((selector or {}).items()))
        result = await self.client.get_nodes(label_selector or None, use_cache=False)
        _raise_for(result, "list", "Node")
        data = result.get("data") or {}
        return data.get("items", []) if isinstance(data, dict) else []
