"""
查询模块 - NodeCheck 只读视图与 HTTP 接口
"""

from .queries import DashboardQueries
from .server import create_app, create_health_app, serve_app

__all__ = ["DashboardQueries", "create_app", "create_health_app", "serve_app"]
