"""
node-checker - Kubernetes 节点健康检查
"""

__version__ = "1.0.0"
