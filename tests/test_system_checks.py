#!/usr/bin/env python3
"""
测试系统级探针: 负载分级、内存、systemd 缺失与事件窗口
"""

import asyncio
import os
import shutil

import pytest

from node_checker.checks.base import EventWindow
from node_checker.checks.system import (
    SystemChecker,
    classify_load,
    parse_uptime_output,
    vmstat_last_fields,
)
from node_checker.collectors.host_runner import HostCommandRunner
from node_checker.collectors.models import CheckStatus

from fakes import FakeRunner


MEMINFO_TEMPLATE = """MemTotal:       {total} kB
MemFree:          100000 kB
MemAvailable:   {available} kB
Buffers:           10000 kB
Cached:           200000 kB
"""

VMSTAT_OUTPUT = """procs -----------memory---------- ---swap-- -----io---- -system-- ------cpu-----
 r  b   swpd   free   buff  cache   si   so    bi    bo   in   cs us sy id wa st
 1  0      0 812344  10240 204800    0    0     1     2   50  100  5  3 91  1  0
 2  0      0 812000  10240 204800    0    0     0     0   60  120 10  5 84  1  0
"""


def test_load_thresholds_scale_with_cores():
    """4 核: >3.0 Warning,>6.0 Critical"""
    assert classify_load(2.9, 4) == CheckStatus.HEALTHY
    assert classify_load(3.0, 4) == CheckStatus.HEALTHY
    assert classify_load(3.1, 4) == CheckStatus.WARNING
    assert classify_load(6.0, 4) == CheckStatus.WARNING
    assert classify_load(6.1, 4) == CheckStatus.CRITICAL


def test_parse_uptime_output():
    output = " 10:15:01 up 12 days,  3:04,  2 users,  load average: 0.52, 0.58, 0.59"
    assert parse_uptime_output(output) == (0.52, 0.58, 0.59)


def test_vmstat_last_fields_skips_headers():
    fields = vmstat_last_fields(VMSTAT_OUTPUT)
    assert fields[0] == "2"
    assert fields[14] == "84"


def test_check_uptime_reads_proc_loadavg():
    runner = FakeRunner(files={
        "/proc/loadavg": "3.10 2.00 1.00 1/200 4242\n",
        "/proc/uptime": "86400.50 1000.00\n",
    })
    checker = SystemChecker("worker-1", runner, cpu_cores=4, sample_interval=0)

    result = asyncio.run(checker.check_uptime())

    assert result.status == CheckStatus.WARNING
    assert "High load average" in result.message
    assert result.details["load_1min"] == 3.10
    assert result.details["uptime_seconds"] == 86400.50
    assert result.details["check_source"] == "proc_loadavg"


def test_check_uptime_uses_max_of_1m_and_5m_load():
    runner = FakeRunner(files={"/proc/loadavg": "0.50 6.50 2.00 1/200 4242\n"})
    checker = SystemChecker("worker-1", runner, cpu_cores=4, sample_interval=0)

    result = asyncio.run(checker.check_uptime())

    assert result.status == CheckStatus.CRITICAL


def test_check_uptime_without_any_source_degrades():
    checker = SystemChecker("worker-1", FakeRunner(), cpu_cores=4, sample_interval=0)

    result = asyncio.run(checker.check_uptime())

    assert result.status == CheckStatus.WARNING
    assert "Failed to read load averages" in result.message


def test_check_memory_bands():
    def run(total, available):
        content = MEMINFO_TEMPLATE.format(total=total, available=available)
        checker = SystemChecker("worker-1", FakeRunner(files={"/proc/meminfo": content}))
        return asyncio.run(checker.check_memory())

    assert run(1000000, 500000).status == CheckStatus.HEALTHY
    assert run(1000000, 150000).status == CheckStatus.WARNING
    critical = run(1000000, 50000)
    assert critical.status == CheckStatus.CRITICAL
    assert critical.details["memory_usage_percent"] == 95.0


def test_check_resources_parses_vmstat():
    checker = SystemChecker("worker-1", FakeRunner(host={"vmstat 1 3": VMSTAT_OUTPUT}))

    result = asyncio.run(checker.check_resources())

    assert result.status == CheckStatus.HEALTHY
    assert result.details["cpu_idle_percent"] == 84
    assert result.details["cpu_usage"] == 16


def test_services_without_systemd_is_healthy():
    marker = "System has not been booted with systemd as init system (PID 1). Can't operate."
    runner = FakeRunner(host={"systemctl --failed --no-pager": marker})
    checker = SystemChecker("worker-1", runner)

    result = asyncio.run(checker.check_services())

    assert result.status == CheckStatus.HEALTHY
    assert result.details["check_source"] == "systemd_not_available"


def test_event_window_expires_old_events():
    now = [100.0]
    window = EventWindow(60, clock=lambda: now[0])

    window.add()
    now[0] = 130.0
    window.add()
    assert window.count() == 2

    now[0] = 170.0
    assert window.count() == 1
    assert window.last_event() == 130.0

    now[0] = 500.0
    assert window.count() == 0


TOP_OUTPUT = """top - 10:00:01 up 12 days,  3:04,  2 users,  load average: 0.52, 0.58, 0.59
Tasks: 210 total,   1 running, 209 sleeping,   0 stopped,   0 zombie
%Cpu(s):  4.2 us,  1.3 sy,  0.0 ni, 94.0 id,  0.3 wa,  0.0 hi,  0.2 si,  0.0 st
MiB Mem :  15886.4 total,   8012.3 free,   3120.7 used,   4753.4 buff/cache
"""


def _restricted_path(tmp_path, monkeypatch, tools):
    """PATH 只包含给定工具的目录,宿主机根目录不存在"""
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    for tool in tools:
        located = shutil.which(tool)
        if located is None:
            pytest.skip(f"{tool} not installed")
        os.symlink(located, bin_dir / tool)
    monkeypatch.setenv("PATH", str(bin_dir))
    return HostCommandRunner(host_root=str(tmp_path / "nonexistent"), timeout=10)


def test_check_processes_parses_cpu_line():
    checker = SystemChecker("worker-1", FakeRunner(host={"top -bn1 | head -20": TOP_OUTPUT}))

    result = asyncio.run(checker.check_processes())

    assert result.status == CheckStatus.HEALTHY
    assert result.details["cpu_usage"] == 6.0
    assert result.details["memory_used_kb"] == int(3120.7 * 1024)


def test_check_processes_without_cpu_line_is_warning():
    checker = SystemChecker("worker-1", FakeRunner(host={"top -bn1 | head -20": "\n"}))

    result = asyncio.run(checker.check_processes())

    assert result.status == CheckStatus.WARNING
    assert "Could not parse top output" in result.message


def test_check_processes_without_top_is_not_healthy(tmp_path, monkeypatch):
    """管道尾部的 head 成功时,缺失的 top 仍要报告为工具不可用"""
    runner = _restricted_path(tmp_path, monkeypatch, ["head"])
    checker = SystemChecker("worker-1", runner)

    result = asyncio.run(checker.check_processes())

    assert result.status == CheckStatus.WARNING
    assert result.message.startswith("Failed to execute top")
    assert "top unavailable on host and in container" in result.details["error"]


def test_check_zombie_processes_counts_states():
    command = "ps -eo stat | awk '/^Z/ {c++} END {print c+0}'"
    checker = SystemChecker("worker-1", FakeRunner(host={command: "3\n"}))

    result = asyncio.run(checker.check_zombie_processes())

    assert result.status == CheckStatus.WARNING
    assert result.details["zombie_count"] == 3


def test_check_zombie_processes_without_ps_is_not_healthy(tmp_path, monkeypatch):
    """awk 对空输入打印 0,缺失的 ps 不能被当成零个僵尸进程"""
    runner = _restricted_path(tmp_path, monkeypatch, ["awk"])
    checker = SystemChecker("worker-1", runner)

    result = asyncio.run(checker.check_zombie_processes())

    assert result.status == CheckStatus.WARNING
    assert "zombie_count" not in result.details
    assert "ps unavailable on host and in container" in result.details["error"]
