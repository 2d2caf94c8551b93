#!/usr/bin/env python3
"""
测试网络探针: 虚拟接口过滤、ip / ping / bonding 输出解析
"""

import asyncio

from node_checker.checks.network import (
    NetworkChecker,
    default_gateway,
    is_ignored_interface,
    parse_bonding,
    parse_ip_addr,
    parse_link_stats,
    parse_ping,
    parse_proc_net_dev,
)
from node_checker.collectors.models import CheckStatus

from fakes import FakeRunner


IP_ADDR_OUTPUT = """1: lo: <LOOPBACK,UP,LOWER_UP> mtu 65536 qdisc noqueue state UNKNOWN group default qlen 1000
    inet 127.0.0.1/8 scope host lo
2: eth0: <BROADCAST,MULTICAST,UP,LOWER_UP> mtu 1500 qdisc mq state UP group default qlen 1000
    inet 10.0.0.5/24 brd 10.0.0.255 scope global eth0
    inet 10.0.0.6/24 scope global secondary eth0
3: eth1: <BROADCAST,MULTICAST> mtu 9000 qdisc noop state DOWN group default qlen 1000
4: veth1a2b3c@if5: <BROADCAST,MULTICAST,UP,LOWER_UP> mtu 1400 qdisc noqueue state UP
5: 90202e15cd0b96f: <BROADCAST,MULTICAST,UP,LOWER_UP> mtu 1400 qdisc noqueue state UP
6: br-int: <BROADCAST,MULTICAST> mtu 1400 qdisc noop state DOWN
"""

LINK_STATS_OUTPUT = """2: eth0: <BROADCAST,MULTICAST,UP,LOWER_UP> mtu 1500 qdisc mq state UP mode DEFAULT
    link/ether 52:54:00:12:34:56 brd ff:ff:ff:ff:ff:ff
    RX:  bytes packets errors dropped  missed   mcast
    123456789  654321    150       3       0       0
    TX:  bytes packets errors dropped carrier collsns
    987654321  123456      0    2000       0       0
7: vethabc@if3: <BROADCAST,MULTICAST,UP,LOWER_UP> mtu 1400 qdisc noqueue state UP
    RX:  bytes packets errors dropped  missed   mcast
         100       1   9999    9999       0       0
"""

PROC_NET_DEV = """Inter-|   Receive                                                |  Transmit
 face |bytes    packets errs drop fifo frame compressed multicast|bytes    packets errs drop fifo colls carrier compressed
    lo:  1000      10    0    0    0     0          0         0     1000      10    0    0    0     0       0          0
  eth0: 5000000  40000    7    1    0     0          0         0  6000000   50000    2    4    0     0       0          0
"""

PING_OUTPUT = """PING 10.0.0.1 (10.0.0.1) 56(84) bytes of data.
64 bytes from 10.0.0.1: icmp_seq=1 ttl=64 time=0.412 ms

--- 10.0.0.1 ping statistics ---
3 packets transmitted, 3 received, 0% packet loss, time 2003ms
rtt min/avg/max/mdev = 0.301/0.412/0.530/0.093 ms
"""

BONDING_OUTPUT = """Ethernet Channel Bonding Driver: v5.14.0

Bonding Mode: IEEE 802.3ad Dynamic link aggregation
MII Status: up
MII Polling Interval (ms): 100

Slave Interface: ens1f0
MII Status: up
Speed: 25000 Mbps

Slave Interface: ens1f1
MII Status: down
Speed: Unknown
"""


def test_virtual_interfaces_are_ignored():
    assert is_ignored_interface("lo")
    assert is_ignored_interface("veth1a2b")
    assert is_ignored_interface("eth0@if12")
    assert is_ignored_interface("90202e15cd0b96f")
    assert is_ignored_interface("genev_sys_6081")
    assert not is_ignored_interface("eth0")
    assert not is_ignored_interface("bond0")


def test_parse_ip_addr_keeps_physical_interfaces():
    interfaces = parse_ip_addr(IP_ADDR_OUTPUT)

    assert set(interfaces) == {"eth0", "eth1"}
    assert interfaces["eth0"] == {"status": "UP", "mtu": "1500", "ip": "10.0.0.5/24"}
    assert interfaces["eth1"]["status"] == "DOWN"
    assert "ip" not in interfaces["eth1"]


def test_check_interfaces_reports_down_interface():
    checker = NetworkChecker("worker-1", FakeRunner(host={"ip a": IP_ADDR_OUTPUT}))

    result = asyncio.run(checker.check_interfaces())

    assert result.status == CheckStatus.WARNING
    assert result.message == "Down interfaces: eth1"
    assert result.details["check_source"] == "host"


def test_parse_link_stats_reads_errors_and_drops():
    stats = parse_link_stats(LINK_STATS_OUTPUT)

    assert set(stats) == {"eth0"}
    assert stats["eth0"] == {
        "rx_errors": 150,
        "rx_dropped": 3,
        "tx_errors": 0,
        "tx_dropped": 2000,
    }


def test_parse_proc_net_dev():
    stats = parse_proc_net_dev(PROC_NET_DEV)

    assert "lo" not in stats
    assert stats["eth0"] == {"rx_errors": 7, "rx_dropped": 1, "tx_errors": 2, "tx_dropped": 4}


def test_parse_ping_summary():
    summary = parse_ping(PING_OUTPUT)

    assert summary == {
        "min_ms": 0.301,
        "avg_ms": 0.412,
        "max_ms": 0.530,
        "packet_loss_percent": 0.0,
    }
    assert parse_ping("ping: unknown host") == {}


def test_parse_bonding_members():
    info = parse_bonding(BONDING_OUTPUT)

    assert info["mode"] == "IEEE 802.3ad Dynamic link aggregation"
    assert info["mii_status"] == "up"
    assert info["slaves"] == {"ens1f0": "up", "ens1f1": "down"}


def test_degraded_bond_warns():
    runner = FakeRunner(host={
        "ls /sys/class/net/ | grep bond": "bond0\n",
        "cat /proc/net/bonding/bond0 2>/dev/null": BONDING_OUTPUT,
    })
    checker = NetworkChecker("worker-1", runner)

    result = asyncio.run(checker.check_bonding_status())

    assert result.status == CheckStatus.WARNING
    assert "bond0: slaves down (ens1f1)" in result.message


def test_no_bonds_is_healthy():
    checker = NetworkChecker("worker-1", FakeRunner())

    result = asyncio.run(checker.check_bonding_status())

    assert result.status == CheckStatus.HEALTHY
    assert result.message == "No bonding interfaces found"


def test_default_gateway():
    routes = "default via 10.0.0.1 dev eth0 proto dhcp metric 100\n10.0.0.0/24 dev eth0"
    assert default_gateway(routes) == "10.0.0.1"
    assert default_gateway("10.0.0.0/24 dev eth0") == ""
