#!/usr/bin/env python3
"""
测试存储探针: 容量分级、iostat 解析、延迟阈值与 RAID/SMART 解析
"""

import asyncio

from node_checker.checks.disk import (
    DiskChecker,
    classify_mount_errors,
    classify_usage,
    latency_thresholds,
    parse_df_line,
    parse_iostat,
    parse_smartctl,
)
from node_checker.collectors.models import CheckStatus

from fakes import FakeRunner


IOSTAT_MODERN = """Linux 5.14.0 (worker-1)  05/01/2024  _x86_64_  (8 CPU)

avg-cpu:  %user   %nice %system %iowait  %steal   %idle
           2.00    0.00    1.00    0.50    0.00   96.50

Device            r/s     rkB/s   rrqm/s  %rrqm r_await rareq-sz     w/s     wkB/s   wrqm/s  %wrqm w_await wareq-sz     d/s     dkB/s   drqm/s  %drqm d_await dareq-sz     f/s f_await  aqu-sz  %util
nvme0n1         99.00   4000.00     0.00   0.00    0.10    40.00   99.00   4000.00     0.00   0.00    0.20    40.00    0.00      0.00     0.00   0.00    0.00     0.00    0.00    0.00   50.00  99.00
sda              1.00     10.00     0.00   0.00    1.00    10.00    1.00     10.00     0.00   0.00    1.00    10.00    0.00      0.00     0.00   0.00    0.00     0.00    0.00    0.00    0.01   1.00

avg-cpu:  %user   %nice %system %iowait  %steal   %idle
           2.00    0.00    1.00    0.50    0.00   96.50

Device            r/s     rkB/s   rrqm/s  %rrqm r_await rareq-sz     w/s     wkB/s   wrqm/s  %wrqm w_await wareq-sz     d/s     dkB/s   drqm/s  %drqm d_await dareq-sz     f/s f_await  aqu-sz  %util
nvme0n1         10.00    400.00     0.00   0.00    0.50    40.00   20.00    800.00     0.00   0.00    0.80    40.00    0.00      0.00     0.00   0.00    0.00     0.00    0.00    0.00    0.02   3.00
sda              5.00     50.00     0.00   0.00  120.00    10.00    5.00     50.00     0.00   0.00  350.00    10.00    0.00      0.00     0.00   0.00    0.00     0.00    0.00    0.00   12.50  95.00
loop0            0.10      0.10     0.00   0.00    0.00     1.00    0.00      0.00     0.00   0.00    0.00     0.00    0.00      0.00     0.00   0.00    0.00     0.00    0.00    0.00    0.00   0.00
"""

IOSTAT_LEGACY = """Device:         rrqm/s   wrqm/s     r/s     w/s    rkB/s    wkB/s avgrq-sz avgqu-sz   await r_await w_await  svctm  %util
sdb               0.00     1.00    2.00    3.00    16.00    24.00     8.00     0.05    4.00    3.00    5.00   1.00  42.00
"""

DF_OUTPUT = """Filesystem     Type      Size  Used Avail Use% Mounted on
/dev/sda1      xfs        50G   42G    8G  84% /
/dev/sda2      xfs        50G   43G    7G  85% /var
/dev/sda3      xfs        50G   47G    3G  94% /var/lib/containers
/dev/sdb1      ext4       50G   48G    2G  95% /data
tmpfs          tmpfs      16G   16G     0 100% /dev/shm
/dev/loop0     squashfs   64M   64M     0 100% /snap/core
"""


def test_usage_bands():
    assert classify_usage(84) == CheckStatus.HEALTHY
    assert classify_usage(85) == CheckStatus.WARNING
    assert classify_usage(94) == CheckStatus.WARNING
    assert classify_usage(95) == CheckStatus.CRITICAL


def test_latency_thresholds_by_device_class_and_load():
    """NVMe 与旋转盘按利用率分档"""
    assert latency_thresholds("nvme0n1", 10) == (100.0, 250.0, 30.0)
    assert latency_thresholds("nvme0n1", 60) == (100.0, 200.0, 50.0)
    assert latency_thresholds("nvme0n1", 90) == (150.0, 300.0, 100.0)
    assert latency_thresholds("sda", 10) == (100.0, 200.0, 50.0)
    assert latency_thresholds("sda", 90) == (150.0, 300.0, 100.0)
    assert latency_thresholds("sda", None) == (100.0, 200.0, 50.0)


def test_parse_iostat_uses_last_sample_and_skips_loop_devices():
    devices = parse_iostat(IOSTAT_MODERN)

    assert [d.device for d in devices] == ["nvme0n1", "sda"]
    nvme, sda = devices
    assert nvme.util == 3.0
    assert sda.stats["read_await_ms"] == 120.0
    assert sda.stats["write_await_ms"] == 350.0
    assert sda.stats["avg_queue_size"] == 12.5


def test_parse_iostat_maps_legacy_columns_by_name():
    (sdb,) = parse_iostat(IOSTAT_LEGACY)

    assert sdb.device == "sdb"
    assert sdb.stats["reads_per_sec"] == 2.0
    assert sdb.stats["writes_per_sec"] == 3.0
    assert sdb.stats["read_await_ms"] == 3.0
    assert sdb.util == 42.0


def test_parse_iostat_without_header():
    assert parse_iostat("iostat: command not found") is None


def test_parse_df_line():
    entry = parse_df_line("/dev/sda1 xfs 50G 42G 8G 84% /var/lib/my data")
    assert entry["fs_type"] == "xfs"
    assert entry["use_percent"] == "84%"
    assert entry["mounted_on"] == "/var/lib/my data"
    assert parse_df_line("short line") is None


def test_check_space_classifies_each_mount():
    runner = FakeRunner(host={"df -hPT": DF_OUTPUT})
    checker = DiskChecker("worker-1", runner)

    result = asyncio.run(checker.check_space())

    assert result.status == CheckStatus.CRITICAL
    assert result.details["critical_disks"] == ["/data: 95%"]
    assert result.details["warning_disks"] == ["/var: 85%", "/var/lib/containers: 94%"]
    mounts = [entry["mounted_on"] for entry in result.details["disk_usage"]]
    assert "/dev/shm" not in mounts
    assert "/snap/core" not in mounts


def test_check_space_degrades_when_df_missing():
    checker = DiskChecker("worker-1", FakeRunner())

    result = asyncio.run(checker.check_space())

    assert result.status == CheckStatus.WARNING
    assert result.message.startswith("Failed to execute df")


def test_performance_flags_latency_and_utilization():
    runner = FakeRunner(host={"iostat -x 1 3": IOSTAT_MODERN})
    checker = DiskChecker("worker-1", runner)

    performance = asyncio.run(checker.check_performance())
    queue = asyncio.run(checker.check_queue_depth())
    io_wait = asyncio.run(checker.check_io_wait())

    assert performance.status == CheckStatus.WARNING
    assert "sda: 95.0%" in performance.details["high_utilization"]
    assert any("sda write" in item for item in performance.details["high_latency"])
    assert performance.details["device_stats"]["nvme0n1"]["device_class"] == "nvme"

    assert queue.status == CheckStatus.WARNING
    assert queue.details["high_queue_depth_devices"] == ["sda: 12.50"]

    assert io_wait.status == CheckStatus.WARNING
    assert io_wait.details["max_io_wait"] == 95.0


def test_raid_without_arrays_is_healthy():
    runner = FakeRunner(files={"/proc/mdstat": "Personalities :\nunused devices: <none>\n"})
    checker = DiskChecker("worker-1", runner)

    result = asyncio.run(checker.check_raid())

    assert result.status == CheckStatus.HEALTHY


def test_raid_degraded_array_warns():
    mdstat = ("Personalities : [raid1]\n"
              "md0 : active raid1 sdb1[1] sda1[0] degraded\n"
              "      1046528 blocks super 1.2 [2/1] [U_]\n")
    checker = DiskChecker("worker-1", FakeRunner(files={"/proc/mdstat": mdstat}))

    result = asyncio.run(checker.check_raid())

    assert result.status == CheckStatus.WARNING
    assert result.details["warning_arrays"] == ["md0: degraded"]


def test_parse_smartctl():
    text = """SMART overall-health self-assessment test result: PASSED
  5 Reallocated_Sector_Ct   0x0033   100   100   010    Pre-fail  Always       -       8
197 Current_Pending_Sector  0x0012   100   100   000    Old_age   Always       -       0
"""
    info = parse_smartctl(text)
    assert info["health"] == "PASSED"
    assert info["reallocated_sectors"] == 8
    assert info["pending_sectors"] == 0


def test_classify_mount_errors():
    log = "\n".join([
        "EXT4-fs (sda1): Remounting filesystem read-only",
        "EXT4-fs (sda1): Remounting filesystem read-only",
        "XFS (sdb1): write error: read-only file system",
        "EXT4-fs (sdc1): mounted read-only",
    ])
    remount, readonly = classify_mount_errors(log)
    assert remount == ["EXT4-fs (sda1): Remounting filesystem read-only"]
    assert readonly == ["XFS (sdb1): write error: read-only file system"]
