"""
重试机制模块

基于 Tenacity 库提供指数退避重试功能
"""

import logging
from typing import Tuple, Type

from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
    before_sleep_log,
)

from .errors import OrchestrationAPIError

logger = logging.getLogger(__name__)


def retry_on_k8s_error(
    max_attempts: int = 3,
    wait_min: float = 2,
    wait_max: float = 10,
    exceptions: Tuple[Type[Exception], ...] = (
        OrchestrationAPIError,
        TimeoutError,
        ConnectionError,
    )
):
    """Kubernetes API 调用重试装饰器

    对可能失败的操作进行重试,使用指数退避策略。
    最后一次失败的异常原样抛出,由调用方决定如何处理。

    Args:
        max_attempts: 最大重试次数 (默认 3)
        wait_min: 最小等待时间 (秒, 默认 2)
        wait_max: 最大等待时间 (秒, 默认 10)
        exceptions: 需要重试的异常类型

    Returns:
        装饰器函数

    Example:
        @retry_on_k8s_error(max_attempts=5)
        async def reconcile_once():
            return await controller.reconcile()
    """
    return retry(
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=1, min=wait_min, max=wait_max),
        retry=retry_if_exception_type(exceptions),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )

