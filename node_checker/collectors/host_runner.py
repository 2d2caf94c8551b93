"""
宿主机命令执行器 - 基于 nsenter 和挂载的宿主机根目录

执行策略:
1. 宿主机: nsenter 进入 PID 1 的命名空间,chroot 到 /host/root 后执行
2. 容器内: 直接 /bin/sh -c 执行
3. 备选工具: 按优先级依次尝试多条命令

run_host_command 本身不做任何回退,前置条件不满足时立即返回错误;
回退策略由 HostCommandRunner.run() 统一实现。

管道的退出码只取最后一个命令,管道首部的工具缺失时 shell 仍返回 0。
带 requires 的命令先用 `command -v` 检查工具,缺失时以 127 退出。
"""

import asyncio
import logging
import os
import shutil
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from ..utils.errors import (
    CommandFailedError,
    DiagnosticError,
    DiagnosticErrorCode,
    NamespaceEntryError,
    ToolUnavailableError,
)
from ..utils.parsers import truncate
from .models import CheckResult, CheckStatus

logger = logging.getLogger(__name__)

HOST_ROOT_MOUNT_PATH = "/host/root"
DEFAULT_COMMAND_TIMEOUT = 30

SOURCE_HOST = "host"
SOURCE_CONTAINER = "container"
SOURCE_NONE = "none"

# nsenter 自身失败时的典型输出
_NAMESPACE_ERROR_MARKERS = (
    "nsenter: cannot open",
    "nsenter: reassociate to namespace",
    "nsenter: failed to execute",
    "Operation not permitted",
    "Permission denied",
)

EXIT_COMMAND_NOT_FOUND = 127


def require_tools(command: str, requires: Sequence[str] = ()) -> str:
    """在命令前加工具存在性检查

    Example:
        require_tools("top -bn1 | head -20", ["top"])
        # command -v top >/dev/null 2>&1 || { echo 'top: not found'; exit 127; }; top -bn1 ...
    """
    checks = [
        f"command -v {tool} >/dev/null 2>&1 || "
        f"{{ echo '{tool}: not found'; exit {EXIT_COMMAND_NOT_FOUND}; }}"
        for tool in requires
    ]
    return "; ".join(checks + [command])


def _missing_tool(output: str, command: str, requires: Sequence[str]) -> str:
    for tool in requires:
        if f"{tool}: not found" in output:
            return tool
    return command.split()[0] if command.split() else command


async def _run_process(argv: Sequence[str], timeout: float) -> Tuple[int, str]:
    """执行外部进程并返回 (退出码, 合并后的 stdout+stderr)

    超时或被取消时杀掉子进程。

    Raises:
        FileNotFoundError: 可执行文件不存在
        asyncio.TimeoutError: 超时
    """
    proc = await asyncio.create_subprocess_exec(
        *argv,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.STDOUT,
    )
    try:
        stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except (asyncio.TimeoutError, asyncio.CancelledError):
        if proc.returncode is None:
            proc.kill()
            await proc.wait()
        raise

    return proc.returncode, stdout.decode("utf-8", errors="replace")


async def run_host_command(
    command: str,
    timeout: float = DEFAULT_COMMAND_TIMEOUT,
    host_root: str = HOST_ROOT_MOUNT_PATH,
    requires: Sequence[str] = (),
) -> Tuple[str, Optional[DiagnosticError]]:
    """在宿主机命名空间内执行 shell 命令

    Args:
        command: shell 命令 (可包含管道)
        timeout: 超时时间 (秒)
        host_root: 宿主机根目录挂载路径
        requires: 命令依赖的工具,任一缺失时返回 ToolUnavailableError

    Returns:
        (合并输出, 错误);成功时错误为 None

    Example:
        output, err = await run_host_command("df -hPT")
    """
    if shutil.which("nsenter") is None:
        return "", ToolUnavailableError("nsenter not available", tool="nsenter")

    if not os.path.exists(host_root):
        return "", ToolUnavailableError(
            f"host root not mounted at {host_root}", tool=host_root
        )

    argv = [
        "nsenter", "-t", "1", "-m", "-p", "-n",
        "chroot", host_root,
        "/bin/sh", "-c", require_tools(command, requires),
    ]

    try:
        returncode, output = await _run_process(argv, timeout)
    except asyncio.TimeoutError:
        return "", CommandFailedError(
            f"Command timed out after {timeout}s",
            command=command,
            code=DiagnosticErrorCode.TIMEOUT,
        )
    except FileNotFoundError as e:
        return "", ToolUnavailableError(f"nsenter not executable: {e}", tool="nsenter")
    except PermissionError as e:
        return "", NamespaceEntryError(f"nsenter permission denied: {e}", command=command)

    if returncode == 0:
        return output, None

    if any(marker in output for marker in _NAMESPACE_ERROR_MARKERS) and "nsenter" in output:
        return output, NamespaceEntryError(
            f"failed to enter host namespaces: {output.strip()[:200]}", command=command
        )
    if returncode == EXIT_COMMAND_NOT_FOUND:
        return output, ToolUnavailableError(
            f"command not found on host: {output.strip()[:200]}",
            tool=_missing_tool(output, command, requires),
        )
    return output, CommandFailedError(
        f"exit status {returncode}", command=command, returncode=returncode, output=output
    )


async def run_container_command(
    command: str,
    timeout: float = DEFAULT_COMMAND_TIMEOUT,
    requires: Sequence[str] = (),
) -> Tuple[str, Optional[DiagnosticError]]:
    """在容器内执行 shell 命令,参数与返回值约定与 run_host_command 相同"""
    try:
        returncode, output = await _run_process(
            ["/bin/sh", "-c", require_tools(command, requires)], timeout
        )
    except asyncio.TimeoutError:
        return "", CommandFailedError(
            f"Command timed out after {timeout}s",
            command=command,
            code=DiagnosticErrorCode.TIMEOUT,
        )
    except FileNotFoundError as e:
        return "", ToolUnavailableError(f"shell not available: {e}", tool="/bin/sh")

    if returncode == 0:
        return output, None
    if returncode == EXIT_COMMAND_NOT_FOUND:
        return output, ToolUnavailableError(
            f"command not found: {output.strip()[:200]}",
            tool=_missing_tool(output, command, requires),
        )
    return output, CommandFailedError(
        f"exit status {returncode}", command=command, returncode=returncode, output=output
    )


@dataclass
class CommandOutcome:
    """命令执行结果

    Attributes:
        output: 命令输出
        source: 数据来源 host / container / none
        error: 最后一次失败的错误 (成功时为 None)
        command: 实际执行成功 (或最后尝试) 的命令
        degrade_status: 失败时探针应降级到的状态
    """
    output: str = ""
    source: str = SOURCE_NONE
    error: Optional[DiagnosticError] = None
    command: str = ""
    degrade_status: CheckStatus = CheckStatus.WARNING

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def tool_missing(self) -> bool:
        return isinstance(self.error, ToolUnavailableError)

    def degrade(self, result: CheckResult, message: str) -> CheckResult:
        """按降级策略填充失败结果"""
        result.status = self.degrade_status
        result.message = f"{message}: {self.error}" if self.error else message
        result.details["check_source"] = self.source
        if self.error is not None:
            result.details["error"] = str(self.error)
        if self.output:
            result.details["raw_output"] = truncate(self.output.strip())
        return result


class HostCommandRunner:
    """宿主机/容器命令执行器

    所有探针通过同一个实例执行命令,便于测试时整体替换。

    Example:
        runner = HostCommandRunner()
        outcome = await runner.run("df -hPT", "df -h")
        if not outcome.ok:
            return outcome.degrade(result, "Failed to get disk usage")
    """

    def __init__(
        self,
        host_root: str = HOST_ROOT_MOUNT_PATH,
        timeout: float = DEFAULT_COMMAND_TIMEOUT,
    ):
        """
        Args:
            host_root: 宿主机根目录挂载路径
            timeout: 单条命令默认超时 (秒)
        """
        self.host_root = host_root
        self.timeout = timeout

    async def run_host(
        self, command: str, timeout: Optional[float] = None, requires: Sequence[str] = ()
    ) -> Tuple[str, Optional[DiagnosticError]]:
        """仅在宿主机执行"""
        return await run_host_command(
            command, timeout or self.timeout, self.host_root, requires=requires
        )

    async def run_container(
        self, command: str, timeout: Optional[float] = None, requires: Sequence[str] = ()
    ) -> Tuple[str, Optional[DiagnosticError]]:
        """仅在容器内执行"""
        return await run_container_command(command, timeout or self.timeout, requires=requires)

    async def run(
        self,
        host_cmd: str,
        container_cmd: Optional[str] = None,
        timeout: Optional[float] = None,
        degrade: CheckStatus = CheckStatus.WARNING,
        requires: Sequence[str] = (),
    ) -> CommandOutcome:
        """先宿主机后容器执行命令

        Args:
            host_cmd: 宿主机命令
            container_cmd: 容器内命令 (默认与宿主机相同)
            timeout: 超时时间
            degrade: 两条路径都失败时的降级状态
            requires: 命令依赖的工具 (管道首部的工具需在此列出)

        Returns:
            CommandOutcome
        """
        output, error = await self.run_host(host_cmd, timeout, requires)
        if error is None:
            return CommandOutcome(output, SOURCE_HOST, None, host_cmd, degrade)

        logger.debug("宿主机执行失败,回退到容器: %s (%s)", host_cmd, error)

        fallback = container_cmd or host_cmd
        c_output, c_error = await self.run_container(fallback, timeout, requires)
        if c_error is None:
            return CommandOutcome(c_output, SOURCE_CONTAINER, None, fallback, degrade)

        # 两条路径都进不去或都找不到工具,视为工具不可用
        if isinstance(error, (NamespaceEntryError, ToolUnavailableError)) and isinstance(
            c_error, ToolUnavailableError
        ):
            tool = c_error.details.get("tool") or fallback.split()[0]
            c_error = ToolUnavailableError(
                f"{tool} unavailable on host and in container",
                tool=tool,
                details={"host_error": str(error), "container_error": str(c_error)},
            )
        return CommandOutcome(c_output or output, SOURCE_NONE, c_error, fallback, degrade)

    async def run_first(
        self,
        candidates: List[str],
        timeout: Optional[float] = None,
        degrade: CheckStatus = CheckStatus.WARNING,
        accept=None,
    ) -> CommandOutcome:
        """按优先级依次尝试多条命令 (备选工具链)

        Args:
            candidates: 命令列表,按优先级排列
            timeout: 单条命令超时
            degrade: 全部失败时的降级状态
            accept: 可选的输出校验函数,返回 False 时继续尝试下一条

        Returns:
            第一个成功的 CommandOutcome;全部失败时返回最后一次的结果
        """
        last = CommandOutcome(degrade_status=degrade)
        for command in candidates:
            outcome = await self.run(command, timeout=timeout, degrade=degrade)
            if outcome.ok and (accept is None or accept(outcome.output)):
                return outcome
            if outcome.ok:
                outcome = CommandOutcome(
                    outcome.output, SOURCE_NONE,
                    CommandFailedError("unexpected output", command=command),
                    command, degrade,
                )
            last = outcome
        return last

    def host_path(self, path: str) -> str:
        """宿主机路径在容器内的位置"""
        return self.host_root.rstrip("/") + "/" + path.lstrip("/")

    def read_file(self, path: str) -> Tuple[str, str]:
        """读取文件,优先宿主机挂载路径,失败时读容器内路径

        Returns:
            (内容, 来源)

        Raises:
            ToolUnavailableError: 两处都读取失败
        """
        for candidate, source in ((self.host_path(path), SOURCE_HOST), (path, SOURCE_CONTAINER)):
            try:
                with open(candidate, "r", encoding="utf-8", errors="replace") as f:
                    return f.read(), source
            except OSError:
                continue
        raise ToolUnavailableError(f"cannot read {path}", tool=path)

    def path_exists(self, path: str) -> bool:
        """宿主机或容器内是否存在该路径"""
        return os.path.exists(self.host_path(path)) or os.path.exists(path)
