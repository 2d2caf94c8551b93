"""
工具模块
"""

from .errors import (
    DiagnosticError,
    DiagnosticErrorCode,
    ToolUnavailableError,
    CommandFailedError,
    ParseFailureError,
    NamespaceEntryError,
    OrchestrationAPIError,
    ValidationError,
)
from .retry import retry_on_k8s_error

__all__ = [
    "DiagnosticError",
    "DiagnosticErrorCode",
    "ToolUnavailableError",
    "CommandFailedError",
    "ParseFailureError",
    "NamespaceEntryError",
    "OrchestrationAPIError",
    "ValidationError",
    "retry_on_k8s_error",
]
