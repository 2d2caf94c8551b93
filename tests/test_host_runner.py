#!/usr/bin/env python3
"""
测试宿主机命令执行器: 前置条件、宿主机→容器回退与备选工具链
"""

import asyncio

from node_checker.collectors import host_runner
from node_checker.collectors.host_runner import (
    SOURCE_CONTAINER,
    SOURCE_HOST,
    SOURCE_NONE,
    run_host_command,
)
from node_checker.collectors.models import CheckResult, CheckStatus
from node_checker.utils.errors import ToolUnavailableError

from fakes import FakeRunner, command_failed


def test_missing_nsenter_fails_without_spawning(monkeypatch):
    """nsenter 不存在时立即返回 ToolUnavailableError"""
    monkeypatch.setattr(host_runner.shutil, "which", lambda name: None)

    output, error = asyncio.run(run_host_command("df -h"))

    assert output == ""
    assert isinstance(error, ToolUnavailableError)
    assert "nsenter" in str(error)


def test_unmounted_host_root_fails(monkeypatch, tmp_path):
    monkeypatch.setattr(host_runner.shutil, "which", lambda name: "/usr/bin/nsenter")

    output, error = asyncio.run(
        run_host_command("df -h", host_root=str(tmp_path / "missing"))
    )

    assert isinstance(error, ToolUnavailableError)
    assert "not mounted" in str(error)


def test_host_success_is_used_first():
    runner = FakeRunner(host={"uptime": "up 3 days"}, container={"uptime": "container"})

    outcome = asyncio.run(runner.run("uptime"))

    assert outcome.ok
    assert outcome.source == SOURCE_HOST
    assert outcome.output == "up 3 days"
    assert runner.calls == [("host", "uptime")]


def test_falls_back_to_container_command():
    runner = FakeRunner(container={"df -h": "Filesystem Size"})

    outcome = asyncio.run(runner.run("df -hPT", "df -h"))

    assert outcome.ok
    assert outcome.source == SOURCE_CONTAINER
    assert outcome.command == "df -h"


def test_tool_missing_on_both_paths_degrades_with_message():
    """两条路径都没有工具时报告 ToolUnavailable,按指定状态降级"""
    runner = FakeRunner()

    outcome = asyncio.run(runner.run("ipmitool sensor", degrade=CheckStatus.UNKNOWN))

    assert not outcome.ok
    assert outcome.tool_missing
    assert outcome.source == SOURCE_NONE

    result = outcome.degrade(CheckResult(), "Failed to query IPMI")
    assert result.status == CheckStatus.UNKNOWN
    assert result.message.startswith("Failed to query IPMI")
    assert "unavailable on host and in container" in result.details["error"]


def test_command_failure_is_not_tool_missing():
    runner = FakeRunner(container={"systemctl --failed": command_failed("systemctl", "boom")})

    outcome = asyncio.run(runner.run("systemctl --failed"))

    assert not outcome.ok
    assert not outcome.tool_missing
    assert outcome.degrade_status == CheckStatus.WARNING


def test_run_first_tries_alternatives_in_order():
    runner = FakeRunner(host={
        "chronyc tracking": "506 Cannot talk to daemon",
        "timedatectl": "System clock synchronized: yes",
    })

    outcome = asyncio.run(runner.run_first(
        ["chronyc tracking", "ntpq -p", "timedatectl"],
        accept=lambda output: "Cannot talk" not in output,
    ))

    assert outcome.ok
    assert outcome.command == "timedatectl"


def test_run_first_reports_last_failure():
    runner = FakeRunner()

    outcome = asyncio.run(runner.run_first(["ping -c 1 x", "curl x"]))

    assert not outcome.ok
    assert outcome.command == "curl x"


def test_read_file_prefers_host_mount(tmp_path):
    host_root = tmp_path / "host"
    (host_root / "proc").mkdir(parents=True)
    (host_root / "proc" / "loadavg").write_text("0.10 0.20 0.30 1/100 42\n")

    runner = host_runner.HostCommandRunner(host_root=str(host_root))
    content, source = runner.read_file("/proc/loadavg")

    assert source == SOURCE_HOST
    assert content.startswith("0.10")
    assert runner.path_exists("/proc/loadavg")


def test_require_tools_prefixes_existence_checks():
    script = host_runner.require_tools("top -bn1 | head -20", ["top"])

    assert script.startswith("command -v top >/dev/null 2>&1 || ")
    assert script.endswith("; top -bn1 | head -20")
    assert host_runner.require_tools("uptime") == "uptime"


def test_missing_pipeline_head_is_reported_as_tool_unavailable():
    """head 成功也不能掩盖管道首部缺失的工具"""
    output, error = asyncio.run(host_runner.run_container_command(
        "no-such-tool-xyz --list | head -5", requires=["no-such-tool-xyz"]
    ))

    assert isinstance(error, ToolUnavailableError)
    assert error.details["tool"] == "no-such-tool-xyz"
    assert "no-such-tool-xyz: not found" in output
