#!/usr/bin/env python3
"""
node-checker 命令行入口

- agent / controller: 集群内的长期运行模式 (DaemonSet 通过 --mode=executor 启动 agent)
- run-checks: 在当前主机上直接执行探针,不访问 NodeCheck 资源
- status / detail / stats / node: 只读查询
- local-status: 查看 Agent 保存在本地的最近一次结果
"""

import asyncio
import json
import logging
import sys
from typing import Dict, List, Optional

from dotenv import load_dotenv
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from node_checker.agent.executor import ProbeExecutor, build_bundle
from node_checker.agent.loop import NodeCheckAgent
from node_checker.agent.registry import PROBES, ProbeSpec
from node_checker.agent.state import SnapshotStore
from node_checker.aggregator.metrics import AgentMetrics
from node_checker.aggregator.rollup import rollup_bundle
from node_checker.collectors.cluster_api import ClusterApi
from node_checker.collectors.host_runner import HostCommandRunner
from node_checker.collectors.k8s_client import KubectlWrapper
from node_checker.collectors.models import CheckResult, CheckStatus, iter_bundle
from node_checker.config import Settings
from node_checker.controllers.manager import ControllerManager
from node_checker.dashboard.queries import DashboardQueries
from node_checker.dashboard.server import create_app, create_health_app, serve_app
from node_checker.utils.errors import DiagnosticError


load_dotenv()

console = Console()
logger = logging.getLogger("node_checker")

# --mode 与子命令的对应关系
MODES = {"executor": "agent", "controller": "controller"}

STATUS_STYLES = {
    CheckStatus.HEALTHY.value: "green",
    CheckStatus.WARNING.value: "yellow",
    CheckStatus.CRITICAL.value: "red",
    CheckStatus.UNKNOWN.value: "dim",
}


def setup_logging(level: str):
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True)],
        force=True,
    )


def styled(status: str) -> str:
    style = STATUS_STYLES.get(status or "", "dim")
    return f"[{style}]{status or 'Unknown'}[/{style}]"


def print_header(title: str):
    """打印标题"""
    console.print()
    console.print(Panel(f"[bold cyan]{title}[/bold cyan]", expand=False))
    console.print()


def print_results(results: List[Dict]):
    """打印探针结果表"""
    table = Table(show_lines=False)
    table.add_column("Category", style="cyan")
    table.add_column("Check")
    table.add_column("Status")
    table.add_column("Message", overflow="fold")
    for entry in results:
        table.add_row(entry["category"], entry["name"], styled(entry["status"]), entry["message"])
    console.print(table)


def print_json(data):
    console.print_json(json.dumps(data, default=str))


# === 长期运行模式 ===

async def run_agent(settings: Settings, once: bool = False) -> int:
    client = KubectlWrapper(context=settings.kube_context, enable_cache=True)
    runner = HostCommandRunner(host_root=settings.host_root, timeout=settings.command_timeout)
    executor = ProbeExecutor(
        settings.node_name, runner=runner, client=client,
        max_workers=settings.max_workers, probe_timeout=settings.probe_timeout,
    )
    metrics = AgentMetrics()
    agent = NodeCheckAgent(
        settings.node_name, settings.namespace,
        api=ClusterApi(client), executor=executor,
        store=SnapshotStore(settings.state_file), metrics=metrics,
    )
    if once:
        processed = await agent.run_once(force=True)
        console.print(f"[green]✅ 已完成 {len(processed)} 个 NodeCheck[/green]")
        return 0

    if settings.metrics_port:
        metrics.serve(settings.metrics_port)
    tasks = [agent.run_forever(poll_interval=settings.reconcile_interval)]
    if settings.health_port:
        tasks.append(serve_app(create_health_app(agent.is_ready), settings.health_port))
    await asyncio.gather(*tasks)
    return 0


async def run_controller(settings: Settings, once: bool = False) -> int:
    client = KubectlWrapper(context=settings.kube_context, enable_cache=True)
    manager = ControllerManager(settings, api=ClusterApi(client))
    if once:
        result = await manager.reconcile_once()
        console.print(f"[green]✅ DaemonSet: {result['daemonset']}[/green]")
        for template, changes in result["fanout"].items():
            console.print(f"[dim]{template}: {changes}[/dim]")
        return 0
    if settings.metrics_port:
        manager.metrics.serve(settings.metrics_port)
    tasks = [manager.run_forever()]
    if settings.dashboard_port:
        queries = DashboardQueries(settings.namespace, client)
        tasks.append(serve_app(create_app(queries), settings.dashboard_port))
    await asyncio.gather(*tasks)
    return 0


# === 本机检查 ===

def select_probes(categories: Optional[List[str]], keys: Optional[List[str]]) -> List[ProbeSpec]:
    probes = PROBES
    if categories:
        probes = [p for p in probes if p.category in categories]
    if keys:
        probes = [p for p in probes if p.key in keys]
    return probes


async def run_checks(settings: Settings, categories: Optional[List[str]],
                     keys: Optional[List[str]], as_json: bool) -> int:
    probes = select_probes(categories, keys)
    if not probes:
        console.print("[yellow]⚠️  没有匹配的探针[/yellow]")
        return 1

    runner = HostCommandRunner(host_root=settings.host_root, timeout=settings.command_timeout)
    client = KubectlWrapper(context=settings.kube_context)
    executor = ProbeExecutor(
        settings.node_name, runner=runner, client=client,
        max_workers=settings.max_workers, probe_timeout=settings.probe_timeout,
    )

    if not as_json:
        print_header(f"🔍 节点检查: {settings.node_name or '(local)'}")
        console.print(f"[dim]执行 {len(probes)} 个探针...[/dim]")

    results = await executor.run(probes)
    bundle = build_bundle(results, flatten=False)
    overall, message = rollup_bundle(bundle)

    if as_json:
        print_json({"overallStatus": overall.value, "message": message, "checkResults": bundle})
    else:
        print_results([
            {"category": probe.category, "name": probe.display_name,
             "status": result.status.value, "message": result.message}
            for probe, result in results
        ])
        console.print()
        console.print(f"[bold]整体状态:[/bold] {styled(overall.value)} - {message}")
    return 0 if overall != CheckStatus.CRITICAL else 2


# === 查询 ===

async def show_status(queries: DashboardQueries, as_json: bool) -> int:
    rows = await queries.list_requests()
    if as_json:
        print_json(rows)
        return 0

    table = Table(title=f"NodeChecks ({queries.namespace})")
    for column in ("Name", "Node", "Status", "Checks", "H/W/C", "Last Check", "Message"):
        table.add_column(column)
    for row in rows:
        table.add_row(
            row["name"], row["nodeName"], styled(row["overallStatus"]),
            str(row["checkCount"]),
            f"{row['healthyCount']}/{row['warningCount']}/{row['criticalCount']}",
            row["lastCheck"] or "-", row["message"],
        )
    console.print(table)
    return 0


async def show_detail(queries: DashboardQueries, name: str, as_json: bool) -> int:
    detail = await queries.get_request_detail(name)
    if detail is None:
        console.print(f"[red]❌ NodeCheck 不存在: {name}[/red]")
        return 1
    if as_json:
        print_json(detail)
        return 0

    print_header(f"📋 {detail['name']} → {detail['nodeName']}")
    console.print(f"[bold]整体状态:[/bold] {styled(detail['overallStatus'])}")
    console.print(f"[bold]消息:[/bold] {detail['message']}")
    console.print(f"[bold]上次检查:[/bold] {detail['lastCheck'] or '-'}")
    console.print()
    print_results(detail["results"])
    return 0


async def show_stats(queries: DashboardQueries, as_json: bool) -> int:
    stats = await queries.get_fleet_stats()
    if as_json:
        print_json(stats)
        return 0

    print_header("📊 集群统计")
    console.print(
        f"NodeChecks: {stats['totalNodeChecks']}  "
        f"[green]Healthy {stats['healthyNodes']}[/green]  "
        f"[yellow]Warning {stats['warningNodes']}[/yellow]  "
        f"[red]Critical {stats['criticalNodes']}[/red]  "
        f"[dim]Unknown {stats['unknownNodes']}[/dim]"
    )
    console.print()

    table = Table()
    for column in ("Category", "Check", "Healthy", "Warning", "Critical", "Unknown", "Overall"):
        table.add_column(column)
    for check in stats["checks"]:
        table.add_row(
            check["category"], check["name"],
            str(check["healthyCount"]), str(check["warningCount"]),
            str(check["criticalCount"]), str(check["unknownCount"]),
            styled(check["overallStatus"]),
        )
    console.print(table)
    return 0


async def show_node(queries: DashboardQueries, node: str, as_json: bool) -> int:
    info = await queries.get_node_info(node)
    if info is None:
        console.print(f"[red]❌ 节点不存在: {node}[/red]")
        return 1
    pods = await queries.get_node_pods(node)
    if as_json:
        print_json({"node": info, "pods": pods})
        return 0

    print_header(f"🖥️  {info['name']}")
    for condition in info["conditions"]:
        console.print(f"  {condition.get('type')}: {condition.get('status')}")
    console.print(f"[dim]unschedulable={info['unschedulable']} "
                  f"taints={len(info['taints'])}[/dim]")
    console.print()

    table = Table(title=f"Pods ({len(pods)})")
    for column in ("Namespace", "Name", "Phase", "Ready", "Restarts"):
        table.add_column(column)
    for pod in pods:
        table.add_row(pod["namespace"], pod["name"], pod["phase"],
                      f"{pod['readyContainers']}/{pod['totalContainers']}",
                      str(pod["restartCount"]))
    console.print(table)
    return 0


def show_local_status(settings: Settings, as_json: bool) -> int:
    snapshot = SnapshotStore(settings.state_file).load()
    if snapshot is None:
        console.print(f"[yellow]⚠️  没有本地结果: {settings.state_file}[/yellow]")
        return 1
    if as_json:
        print_json(snapshot)
        return 0

    status = snapshot.get("status") or {}
    print_header(f"📋 {snapshot.get('name')} (local)")
    console.print(f"[bold]整体状态:[/bold] {styled(status.get('overallStatus'))}")
    console.print(f"[bold]消息:[/bold] {status.get('message', '')}")
    console.print(f"[bold]上次检查:[/bold] {status.get('lastCheckTime', '-')}")
    console.print()
    print_results([
        dict(CheckResult.from_dict(raw).to_dict(), category=category, name=key)
        for category, key, raw in iter_bundle(status.get("checkResults"))
    ])
    return 0


def build_parser():
    import argparse

    parser = argparse.ArgumentParser(
        prog="node-checker",
        description="Kubernetes 节点健康检查",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
示例:
  %(prog)s run-checks --category system
  %(prog)s status
  %(prog)s detail worker-1-check
  %(prog)s --mode=executor
        """
    )
    parser.add_argument("--config", help="YAML 配置文件")
    parser.add_argument("--namespace", help="NodeCheck 所在命名空间")
    parser.add_argument("--context", dest="kube_context", help="kubeconfig context")
    parser.add_argument("--log-level", help="日志级别 (默认 INFO)")
    parser.add_argument("--mode", choices=sorted(MODES), help="等同于 agent/controller 子命令")

    sub = parser.add_subparsers(dest="command")

    agent = sub.add_parser("agent", help="运行节点 Agent")
    agent.add_argument("--node-name", help="节点名 (默认读取 NODE_NAME)")
    agent.add_argument("--metrics-port", type=int, help="指标端口 (0 表示不启动)")
    agent.add_argument("--health-port", type=int, help="/healthz 与 /readyz 端口 (0 表示不启动)")
    agent.add_argument("--once", action="store_true", help="执行一轮后退出 (忽略检查间隔)")

    controller = sub.add_parser("controller", help="运行控制器 (扇出、DaemonSet、指标、查询接口)")
    controller.add_argument("--image", help="Agent 镜像")
    controller.add_argument("--metrics-port", type=int, help="指标端口 (0 表示不启动)")
    controller.add_argument("--dashboard-port", type=int, help="查询接口端口 (0 表示不启动)")
    controller.add_argument("--once", action="store_true", help="调和一轮后退出")

    checks = sub.add_parser("run-checks", help="在本机直接执行探针")
    checks.add_argument("--node-name", help="节点名")
    checks.add_argument("--category", action="append",
                        choices=["system", "hardware", "disk", "network", "kubernetes"])
    checks.add_argument("--check", action="append", help="探针键,如 uptime、space")
    checks.add_argument("--json", action="store_true")

    for name, help_text in (("status", "列出 NodeCheck"), ("stats", "集群统计"),
                            ("local-status", "查看本地最近一次结果")):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("--json", action="store_true")

    detail = sub.add_parser("detail", help="NodeCheck 详情")
    detail.add_argument("name")
    detail.add_argument("--json", action="store_true")

    node = sub.add_parser("node", help="节点信息与 Pod")
    node.add_argument("name")
    node.add_argument("--json", action="store_true")

    return parser


async def main_async(args, settings: Settings) -> int:
    """异步主函数"""
    command = args.command
    as_json = getattr(args, "json", False)

    if command == "agent":
        return await run_agent(settings, once=args.once)
    if command == "controller":
        return await run_controller(settings, once=args.once)
    if command == "run-checks":
        return await run_checks(settings, args.category, args.check, as_json)
    if command == "local-status":
        return show_local_status(settings, as_json)

    queries = DashboardQueries(
        settings.namespace, KubectlWrapper(context=settings.kube_context)
    )
    if command == "status":
        return await show_status(queries, as_json)
    if command == "detail":
        return await show_detail(queries, args.name, as_json)
    if command == "stats":
        return await show_stats(queries, as_json)
    if command == "node":
        return await show_node(queries, args.name, as_json)
    return 1


def main(argv: Optional[List[str]] = None):
    """CLI 主入口"""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None and args.mode:
        args.command = MODES[args.mode]
        args.once = False
    if args.command is None:
        parser.print_help()
        return 1

    overrides = {
        "namespace": args.namespace,
        "kube_context": args.kube_context,
        "log_level": args.log_level,
        "node_name": getattr(args, "node_name", None),
        "image": getattr(args, "image", None),
        "metrics_port": getattr(args, "metrics_port", None),
        "health_port": getattr(args, "health_port", None),
        "dashboard_port": getattr(args, "dashboard_port", None),
    }
    try:
        settings = Settings.load(args.config, overrides)
    except DiagnosticError as e:
        console.print(f"[red]❌ 配置错误: {e}[/red]")
        return 1

    setup_logging(settings.log_level)

    try:
        return asyncio.run(main_async(args, settings))
    except DiagnosticError as e:
        console.print(f"[red]❌ {e}[/red]")
        return 1
    except KeyboardInterrupt:
        console.print()
        console.print("[yellow]已中断[/yellow]")
        return 130


if __name__ == "__main__":
    sys.exit(main())
