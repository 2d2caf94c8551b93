"""
Agent 放置控制器

根据命名空间中的 NodeCheck 维护唯一的 Agent DaemonSet:
- 有非通配请求而 DaemonSet 不存在: 创建
- DaemonSet 存在但镜像/nodeSelector/tolerations 与期望不一致: 原地替换
- 没有非通配请求: 删除

每轮最多一次写操作,世界不变时第二轮不产生任何写操作。
"""

import logging
from typing import Dict, List, Optional

from ..collectors.cluster_api import ClusterApi
from ..collectors.nodecheck import NodeCheck
from ..config import DEFAULT_IMAGE
from .daemonset import (
    DAEMONSET_NAME,
    apply_desired,
    build_daemonset,
    diff_daemonset,
    merge_constraints,
)

logger = logging.getLogger(__name__)

ACTION_CREATED = "created"
ACTION_UPDATED = "updated"
ACTION_DELETED = "deleted"
ACTION_NONE = "unchanged"


def active_requests(nodechecks: List[NodeCheck]) -> List[NodeCheck]:
    """未处于删除中的 NodeCheck"""
    return [nc for nc in nodechecks if not nc.deletion_timestamp]


class AgentPlacementController:
    """Agent DaemonSet 调和器

    Example:
        controller = AgentPlacementController(ClusterApi(), "node-check-operator-system")
        action = await controller.reconcile()
    """

    def __init__(self, api: Optional[ClusterApi], namespace: str, image: str = DEFAULT_IMAGE):
        self.api = api or ClusterApi()
        self.namespace = namespace
        self.image = image

    def desired_daemonset(self, nodechecks: List[NodeCheck]) -> Optional[Dict]:
        """期望的 DaemonSet;没有非通配请求时为 None"""
        active = active_requests(nodechecks)
        if not any(not nc.is_wildcard for nc in active):
            return None
        selector, tolerations = merge_constraints(active)
        return build_daemonset(self.namespace, self.image, selector, tolerations)

    async def reconcile(self) -> str:
        """执行一轮调和

        Returns:
            本轮执行的动作 (created/updated/deleted/unchanged)

        Raises:
            OrchestrationAPIError: 读写 API 失败
        """
        nodechecks = await self.api.list_nodechecks(self.namespace)
        desired = self.desired_daemonset(nodechecks)
        current = await self.api.get_daemonset(DAEMONSET_NAME, self.namespace)

        if desired is None:
            if current is None:
                return ACTION_NONE
            logger.info("没有活动的 NodeCheck,删除 Agent DaemonSet")
            await self.api.delete_daemonset(DAEMONSET_NAME, self.namespace)
            return ACTION_DELETED

        if current is None:
            await self.api.create_daemonset(desired)
            return ACTION_CREATED

        changed = diff_daemonset(current, desired)
        if not changed:
            return ACTION_NONE

        logger.info("Agent DaemonSet 需要更新: %s", ", ".join(changed))
        await self.api.update_daemonset(apply_desired(current, desired))
        return ACTION_UPDATED
