"""
通配请求扇出

spec.nodeName 为 "*" 或 "all" 的 NodeCheck 是模板:
为每个匹配 nodeSelector 的节点维护一个子请求 `<模板名>-<节点名>`,
子请求带 TEMPLATE_LABEL 标签,spec 与模板保持一致 (nodeName 为节点,不带 nodeSelector)。
节点不再匹配时删除对应子请求。
"""

import logging
from typing import Dict, List, Optional

from ..collectors.cluster_api import ClusterApi
from ..collectors.nodecheck import (
    NODE_LABEL,
    TEMPLATE_LABEL,
    NodeCheck,
    NodeCheckSpec,
    build_nodecheck_object,
)

logger = logging.getLogger(__name__)


def child_name(template: str, node: str) -> str:
    return f"{template}-{node}"


def child_spec(template: NodeCheck, node: str) -> NodeCheckSpec:
    """子请求的 spec: 复制模板,指定节点,去掉 nodeSelector"""
    return template.spec.model_copy(
        update={"node_name": node, "node_selector": {}}, deep=True
    )


def _spec_dict(spec: NodeCheckSpec) -> Dict:
    return spec.to_k8s()


def _owner_reference(template: NodeCheck) -> Optional[Dict]:
    uid = (template.raw.get("metadata") or {}).get("uid")
    if not uid:
        return None
    return {
        "apiVersion": template.raw.get("apiVersion", ""),
        "kind": template.raw.get("kind", ""),
        "name": template.name,
        "uid": uid,
        "controller": True,
        "blockOwnerDeletion": True,
    }


class FanoutController:
    """通配请求的子请求维护器"""

    def __init__(self, api: Optional[ClusterApi], namespace: str):
        self.api = api or ClusterApi()
        self.namespace = namespace

    async def reconcile_template(self, template: NodeCheck,
                                 existing: List[NodeCheck]) -> Dict[str, List[str]]:
        """同步单个模板的子请求

        Args:
            template: 通配 NodeCheck
            existing: 命名空间中已有的 NodeCheck

        Returns:
            {"created": [...], "updated": [...], "deleted": [...]}

        Raises:
            OrchestrationAPIError: 读写 API 失败
        """
        nodes = await self.api.list_nodes(template.spec.node_selector)
        node_names = sorted(
            (node.get("metadata") or {}).get("name", "") for node in nodes
        )
        node_names = [n for n in node_names if n]

        children = {
            nc.name: nc for nc in existing
            if nc.labels.get(TEMPLATE_LABEL) == template.name
        }
        summary: Dict[str, List[str]] = {"created": [], "updated": [], "deleted": []}
        wanted = set()

        for node in node_names:
            name = child_name(template.name, node)
            wanted.add(name)
            spec = child_spec(template, node)
            child = children.get(name)

            if child is None:
                labels = {TEMPLATE_LABEL: template.name, NODE_LABEL: node}
                obj = build_nodecheck_object(
                    name, self.namespace, spec, labels=labels,
                    owner=_owner_reference(template),
                )
                await self.api.create_nodecheck(obj)
                summary["created"].append(name)
                logger.info("已为节点 %s 创建子请求 %s", node, name)
            elif _spec_dict(child.spec) != _spec_dict(spec):
                await self.api.update_nodecheck_spec(name, self.namespace, _spec_dict(spec))
                summary["updated"].append(name)
                logger.info("子请求 %s 与模板不一致,已同步", name)

        for name in sorted(set(children) - wanted):
            await self.api.delete_nodecheck(name, self.namespace)
            summary["deleted"].append(name)
            logger.info("节点不再匹配,已删除子请求 %s", name)

        return summary

    async def reconcile(self) -> Dict[str, Dict[str, List[str]]]:
        """同步命名空间中所有模板

        Returns:
            {模板名: reconcile_template 的结果}
        """
        nodechecks = await self.api.list_nodechecks(self.namespace)
        results = {}
        for template in nodechecks:
            if template.is_wildcard and not template.deletion_timestamp:
                results[template.name] = await self.reconcile_template(template, nodechecks)
        return results
