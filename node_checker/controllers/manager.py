"""
控制器主循环

每轮依次执行:
1. 通配请求扇出
2. Agent DaemonSet 调和
3. 刷新 Prometheus 指标

API 失败按指数退避重试 (tenacity),重试耗尽后记录日志并等待下一轮。
"""

import asyncio
import logging
from typing import Dict, Optional

from ..aggregator.metrics import NodeCheckMetrics
from ..collectors.cluster_api import ClusterApi
from ..config import Settings
from ..utils.errors import OrchestrationAPIError
from ..utils.retry import retry_on_k8s_error
from .fanout import FanoutController
from .placement import AgentPlacementController

logger = logging.getLogger(__name__)


class ControllerManager:
    """组合扇出、放置与指标刷新"""

    def __init__(
        self,
        settings: Settings,
        api: Optional[ClusterApi] = None,
        metrics: Optional[NodeCheckMetrics] = None,
    ):
        self.settings = settings
        self.api = api or ClusterApi()
        self.fanout = FanoutController(self.api, settings.namespace)
        self.placement = AgentPlacementController(self.api, settings.namespace, settings.image)
        self.metrics = metrics or NodeCheckMetrics()

    async def reconcile_once(self) -> Dict:
        """执行一轮完整调和

        Raises:
            OrchestrationAPIError: 任一步骤读写 API 失败
        """
        fanout = await self.fanout.reconcile()
        action = await self.placement.reconcile()
        stats = self.metrics.update(await self.api.list_nodechecks(self.settings.namespace))
        return {"fanout": fanout, "daemonset": action, "stats": stats}

    async def run_forever(self):
        @retry_on_k8s_error(max_attempts=5)
        async def reconcile_with_retry():
            return await self.reconcile_once()

        logger.info("控制器已启动: namespace=%s interval=%.0fs",
                    self.settings.namespace, self.settings.reconcile_interval)
        while True:
            try:
                result = await reconcile_with_retry()
                logger.debug("调和完成: daemonset=%s", result["daemonset"])
            except OrchestrationAPIError as e:
                logger.error("调和失败: %s", e)
            await asyncio.sleep(self.settings.reconcile_interval)
