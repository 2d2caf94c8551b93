"""
诊断错误类型定义

提供结构化的错误处理机制。

错误分类:
- ToolUnavailableError: 命令或挂载点不存在 (探针降级为 Warning/Unknown)
- ParseFailureError: 输出格式不符合预期 (探针降级为 Warning,保留原始输出)
- NamespaceEntryError: 无法进入宿主机命名空间 (触发宿主机 → 容器回退)
- OrchestrationAPIError: 集群 API 读写失败 (唯一向调和层传播的错误)
- ValidationError: 请求或配置校验失败
"""

from enum import Enum
from typing import Dict, Any, Optional


class DiagnosticErrorCode(Enum):
    """诊断错误码枚举"""

    # 超时类错误
    TIMEOUT = "TIMEOUT"

    # 权限类错误
    PERMISSION_DENIED = "PERMISSION_DENIED"
    NAMESPACE_ENTRY_FAILED = "NAMESPACE_ENTRY_FAILED"

    # 资源类错误
    RESOURCE_NOT_FOUND = "RESOURCE_NOT_FOUND"
    RESOURCE_ALREADY_EXISTS = "RESOURCE_ALREADY_EXISTS"
    CONFLICT = "CONFLICT"

    # 工具类错误
    TOOL_UNAVAILABLE = "TOOL_UNAVAILABLE"
    COMMAND_FAILED = "COMMAND_FAILED"
    PARSE_FAILURE = "PARSE_FAILURE"

    # API 类错误
    API_ERROR = "API_ERROR"
    API_UNAVAILABLE = "API_UNAVAILABLE"

    # 配置类错误
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    INVALID_PARAMETER = "INVALID_PARAMETER"

    # 未知错误
    UNKNOWN = "UNKNOWN"


class DiagnosticError(Exception):
    """诊断异常基类

    提供结构化的错误信息,便于日志记录和错误处理

    Attributes:
        message: 错误消息
        code: 错误码
        details: 额外的错误详情
    """

    def __init__(
        self,
        message: str,
        code: DiagnosticErrorCode = DiagnosticErrorCode.UNKNOWN,
        details: Optional[Dict[str, Any]] = None
    ):
        """初始化诊断错误

        Args:
            message: 错误描述信息
            code: 错误码
            details: 额外的错误详情 (如命令、资源名等)
        """
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """转换为字典格式

        Returns:
            包含完整错误信息的字典
        """
        return {
            "error": self.message,
            "code": self.code.value,
            "details": self.details
        }

    def __str__(self) -> str:
        """友好的字符串表示"""
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"[{self.code.value}] {self.message} ({details_str})"
        return f"[{self.code.value}] {self.message}"


class ToolUnavailableError(DiagnosticError):
    """工具不可用错误

    命令不在 PATH 中、宿主机根目录未挂载,或宿主机与容器两条路径都失败
    """

    def __init__(
        self,
        message: str,
        tool: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        """初始化工具不可用错误

        Args:
            message: 错误描述
            tool: 缺失的工具或路径
            details: 额外详情
        """
        all_details = details or {}
        if tool:
            all_details["tool"] = tool

        super().__init__(message, DiagnosticErrorCode.TOOL_UNAVAILABLE, all_details)


class CommandFailedError(DiagnosticError):
    """命令执行失败 (非零退出码或超时)

    output 保留命令的合并输出,便于调用方判断失败原因
    """

    def __init__(
        self,
        message: str,
        command: Optional[str] = None,
        returncode: Optional[int] = None,
        output: Optional[str] = None,
        code: DiagnosticErrorCode = DiagnosticErrorCode.COMMAND_FAILED,
        details: Optional[Dict[str, Any]] = None
    ):
        all_details = details or {}
        if command:
            all_details["command"] = command
        if returncode is not None:
            all_details["returncode"] = returncode
        self.output = output or ""

        super().__init__(message, code, all_details)


class ParseFailureError(DiagnosticError):
    """输出解析错误

    保留原始输出 (截断) 以便排查
    """

    def __init__(
        self,
        message: str,
        raw_output: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        all_details = details or {}
        if raw_output is not None:
            all_details["raw_output"] = raw_output[:2000]

        super().__init__(message, DiagnosticErrorCode.PARSE_FAILURE, all_details)


class NamespaceEntryError(DiagnosticError):
    """命名空间进入错误

    nsenter 执行被拒绝或失败
    """

    def __init__(
        self,
        message: str,
        command: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        all_details = details or {}
        if command:
            all_details["command"] = command

        super().__init__(message, DiagnosticErrorCode.NAMESPACE_ENTRY_FAILED, all_details)


class OrchestrationAPIError(DiagnosticError):
    """集群 API 错误

    调和过程中读写集群状态失败,需要向上传播并由调度层退避重试
    """

    def __init__(
        self,
        message: str,
        resource_type: Optional[str] = None,
        resource_name: Optional[str] = None,
        code: DiagnosticErrorCode = DiagnosticErrorCode.API_ERROR,
        details: Optional[Dict[str, Any]] = None
    ):
        """初始化 API 错误

        Args:
            message: 错误描述
            resource_type: 资源类型 (如 DaemonSet, NodeCheck)
            resource_name: 资源名称
            code: 错误码 (默认 API_ERROR)
            details: 额外详情
        """
        all_details = details or {}
        if resource_type:
            all_details["resource_type"] = resource_type
        if resource_name:
            all_details["resource_name"] = resource_name

        super().__init__(message, code, all_details)


class ValidationError(DiagnosticError):
    """数据验证错误

    用于请求规格或配置的验证失败
    """

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        """初始化验证错误

        Args:
            message: 错误描述
            field: 出错的字段名
            value: 错误的值
            details: 额外详情
        """
        all_details = details or {}
        if field:
            all_details["field"] = field
        if value is not None:
            all_details["value"] = str(value)

        super().__init__(message, DiagnosticErrorCode.INVALID_PARAMETER, all_details)
