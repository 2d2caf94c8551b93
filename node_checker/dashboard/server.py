"""
HTTP 服务

- create_app: 控制器上的只读 JSON 接口 (/api/v1/...) 与存活探针
- create_health_app: 节点 Agent 的 /healthz 与 /readyz
- serve_app: 在当前事件循环中运行 uvicorn

错误响应统一为 {"error": "..."}:资源不存在 404,集群查询失败 500。
"""

import logging
from typing import Callable

import uvicorn
from fastapi import APIRouter, FastAPI, status
from fastapi.responses import JSONResponse

from ..utils.errors import OrchestrationAPIError
from .queries import DashboardQueries

logger = logging.getLogger(__name__)


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def create_app(queries: DashboardQueries) -> FastAPI:
    """NodeCheck 查询接口

    Example:
        app = create_app(DashboardQueries("node-check-operator-system"))
        await serve_app(app, 31682)
    """
    app = FastAPI(title="node-checker", description="NodeCheck results and fleet statistics")

    @app.exception_handler(OrchestrationAPIError)
    async def _api_error(request, exc: OrchestrationAPIError):
        logger.error("查询失败 %s: %s", request.url.path, exc)
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc))

    @app.get("/health", tags=["health"])
    async def health():
        return {"status": "healthy"}

    @app.get("/healthz", tags=["health"])
    async def healthz():
        return {"ok": True}

    @app.get("/readyz", tags=["health"])
    async def readyz():
        return {"ok": True}

    api_v1 = APIRouter(prefix="/api/v1")

    @api_v1.get("/stats", tags=["nodechecks"])
    async def get_stats():
        return await queries.get_fleet_stats()

    @api_v1.get("/nodechecks", tags=["nodechecks"])
    async def list_nodechecks(include_wildcards: bool = True):
        return await queries.list_requests(include_wildcards=include_wildcards)

    @api_v1.get("/nodechecks/{name}", tags=["nodechecks"])
    async def get_nodecheck(name: str):
        detail = await queries.get_request_detail(name)
        if detail is None:
            return _error(status.HTTP_404_NOT_FOUND, "NodeCheck not found")
        return detail

    @api_v1.get("/nodes/{name}", tags=["nodes"])
    async def get_node(name: str):
        info = await queries.get_node_info(name)
        if info is None:
            return _error(status.HTTP_404_NOT_FOUND, "Node not found")
        return info

    @api_v1.get("/nodes/{name}/pods", tags=["nodes"])
    async def get_node_pods(name: str):
        return await queries.get_node_pods(name)

    app.include_router(api_v1)
    return app


def create_health_app(is_ready: Callable[[], bool]) -> FastAPI:
    """Agent 探针接口

    Args:
        is_ready: 返回 Agent 是否已完成至少一轮检查
    """
    app = FastAPI(title="node-checker-agent")

    @app.get("/healthz", tags=["health"])
    async def healthz():
        return {"ok": True}

    @app.get("/readyz", tags=["health"])
    async def readyz():
        if not is_ready():
            return JSONResponse(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content={"ok": False}
            )
        return {"ok": True}

    return app


async def serve_app(app: FastAPI, port: int, host: str = "0.0.0.0"):
    """在当前事件循环中运行 HTTP 服务,直到进程退出"""
    config = uvicorn.Config(app, host=host, port=port, log_level="warning", access_log=False)
    logger.info("HTTP 服务已启动: %s:%d", host, port)
    await uvicorn.Server(config).serve()
