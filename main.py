"""
Indicator Dependency Resolver - CLI demo entry point.
指标依赖解析器 —— 命令行演示入口。

Loads a dependency graph (a JSON file in `DependencyGraph.to_dict()` format,
or a built-in sample), prints the whole-graph analysis and the execution plan
for the requested targets with a Rich console UI, and optionally simulates a
level-by-level run.
加载依赖图（`DependencyGraph.to_dict()` 格式的 JSON 文件或内置示例），
通过 Rich 控制台展示全图分析和目标指标的执行计划，并可选地模拟逐层执行。

Usage / 用法:
    python main.py                         # sample graph, plan for all indicators
    python main.py graph.json macd rsi     # plan for selected targets
    python main.py --run -v                # simulate execution with debug logs
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from typing import Any

from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table
from rich.tree import Tree

from depgraph import DependencyResolutionError, IndicatorDependencyResolver, PlanExecutor
from schema import DependencyAnalysis, ExecutionPlan, ExecutionReport

console = Console()

# Indicator status -> Rich style mapping
# 指标状态 -> Rich 样式映射
_STATUS_STYLES = {
    "pending": "dim",
    "running": "bold yellow",
    "completed": "green",
    "failed": "red",
    "skipped": "dim strike",
}

# A small technical-analysis pipeline used when no graph file is given.
# 未指定图文件时使用的小型技术指标流水线示例。
SAMPLE_GRAPH: dict[str, Any] = {
    "nodes": [
        {"id": "close", "dependencies": [], "metadata": {"estimated_processing_time": 2}},
        {"id": "volume", "dependencies": [], "metadata": {"estimated_processing_time": 2}},
        {"id": "ema_12", "dependencies": ["close"], "metadata": {"estimated_processing_time": 8}},
        {"id": "ema_26", "dependencies": ["close"], "metadata": {"estimated_processing_time": 8}},
        {"id": "rsi_14", "dependencies": ["close"], "metadata": {"estimated_processing_time": 12}},
        {"id": "obv", "dependencies": ["close", "volume"], "metadata": {"estimated_processing_time": 6}},
        {"id": "macd", "dependencies": ["ema_12", "ema_26"], "metadata": {"estimated_processing_time": 5}},
        {"id": "macd_signal", "dependencies": ["macd"], "metadata": {"estimated_processing_time": 5}},
        {"id": "composite", "dependencies": ["macd_signal", "rsi_14", "obv"],
         "metadata": {"estimated_processing_time": 20, "tags": ["signal"]}},
    ]
}


# ======================================================================
# Rendering
# 渲染
# ======================================================================

def _render_analysis(analysis: DependencyAnalysis) -> None:
    """
    Print whole-graph analytics: order, critical path, bottlenecks, parallelism.
    打印全图分析：拓扑顺序、关键路径、瓶颈、并行机会。
    """
    console.print(Panel(
        f"[bold]Topological order:[/bold] {' -> '.join(analysis.topological_order)}\n"
        f"[bold]Critical path:[/bold] [magenta]{' -> '.join(analysis.critical_path)}[/magenta] "
        f"({analysis.critical_path_time:g})\n"
        f"[bold]Bottlenecks:[/bold] {', '.join(analysis.bottlenecks) or '-'}",
        title="[bold blue]Dependency Analysis[/bold blue]",
        border_style="blue",
    ))

    if analysis.parallelization_opportunities:
        table = Table(title="Parallelization Opportunities", border_style="cyan")
        table.add_column("Level", style="cyan", width=6)
        table.add_column("Indicators", style="white")
        table.add_column("Sequential", justify="right")
        table.add_column("Parallel", justify="right")
        table.add_column("Speedup", justify="right", style="green")
        for opp in analysis.parallelization_opportunities:
            table.add_row(
                str(opp.level),
                ", ".join(opp.indicators),
                f"{opp.sequential_time:g}",
                f"{opp.parallel_time:g}",
                f"{opp.estimated_speedup:.2f}x",
            )
        console.print(table)


def _build_plan_tree(plan: ExecutionPlan, resolver: IndicatorDependencyResolver) -> Tree:
    """
    Build a Rich Tree: one branch per level, indicators as leaves.
    构建 Rich Tree：每个层级一个分支，指标作为叶节点。
    """
    tree = Tree(
        f"[bold]Execution Plan[/bold] [dim]({plan.metadata.total_indicators} indicators, "
        f"{plan.total_levels} levels, est. {plan.estimated_execution_time:g})[/dim]"
    )
    critical = set(plan.critical_path)
    for idx, level in enumerate(plan.levels):
        branch = tree.add(f"[cyan]Level {idx}[/cyan] [dim]({len(level)} parallel)[/dim]")
        for nid in level:
            node = resolver.get_node(nid)
            weight = node.weight if node else 0
            deps = ", ".join(resolver.get_dependencies(nid)) or "-"
            label = f"[magenta]{nid}[/magenta]" if nid in critical else nid
            branch.add(f"{label} [dim]t={weight:g} deps={deps}[/dim]")
    return tree


def _render_report(report: ExecutionReport) -> None:
    table = Table(title="Execution Report", border_style="green" if report.success else "red")
    table.add_column("Indicator", style="cyan")
    table.add_column("Level", justify="right")
    table.add_column("Status")
    table.add_column("ms", justify="right")
    for rid, result in report.results.items():
        style = _STATUS_STYLES.get(result.status.value, "white")
        table.add_row(
            rid,
            str(result.level),
            f"[{style}]{result.status.value}[/{style}]",
            f"{result.duration_ms:.1f}",
        )
    console.print(table)


# ======================================================================
# UI Event Handler
# UI 事件处理器
# ======================================================================

def on_event(event: str, data: Any) -> None:
    """
    Pretty-print resolver and executor events.
    美化打印解析器与执行器事件。
    """
    if event == "level_start":
        nodes = data["indicators"]
        parallel_note = " (parallel)" if len(nodes) > 1 else ""
        console.print(
            f"\n  [bold yellow]--- Level {data['level']} ---[/bold yellow] "
            f"Running {len(nodes)}/{data['total']} indicators{parallel_note}: "
            f"[cyan]{', '.join(nodes)}[/cyan]"
        )
    elif event == "indicator_completed":
        console.print(f"    [green]<< {data['id']} completed ({data['duration_ms']:.1f} ms)[/green]")
    elif event == "indicator_failed":
        console.print(f"    [red]<< {data['id']} FAILED: {data['error']}[/red]")
    elif event == "indicator_skipped":
        console.print(f"    [dim]<< {data['id']} skipped ({data['reason']})[/dim]")
    elif event in ("indicator_added", "indicator_removed", "dependencies_updated"):
        logging.getLogger(__name__).debug("%s: %s", event, data)


# ======================================================================
# Main
# 主函数
# ======================================================================

def setup_logging(verbose: bool = False) -> None:
    """
    Configure logging with rich handler.
    使用 Rich 处理器配置日志系统。verbose=True 时启用 DEBUG 级别。
    """
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False, rich_tracebacks=True)],
    )


def load_resolver(path: str | None) -> IndicatorDependencyResolver:
    if path is None:
        data = SAMPLE_GRAPH
    else:
        with open(path, encoding="utf-8") as fh:
            data = json.load(fh)
    return IndicatorDependencyResolver.from_dict(data, on_event=on_event)


async def simulate(resolver: IndicatorDependencyResolver, targets: list[str]) -> ExecutionReport:
    """
    Run the plan with a runner that just sleeps for each indicator's weight (ms).
    用「按权重休眠若干毫秒」的模拟函数执行计划。
    """
    async def runner(indicator_id: str, inputs: dict[str, Any]) -> float:
        node = resolver.get_node(indicator_id)
        weight = node.weight if node else 0
        await asyncio.sleep(weight / 1000.0)
        return weight + sum(v for v in inputs.values() if isinstance(v, (int, float)))

    executor = PlanExecutor(resolver, runner, on_event=on_event)
    return await executor.execute(targets)


def main() -> None:
    """
    程序入口：解析命令行参数。
    - 第一个以 .json 结尾的位置参数：依赖图文件
    - 其余位置参数：目标指标（缺省为全部指标）
    - --run：模拟逐层执行
    - -v / --verbose：启用调试日志
    """
    verbose = "--verbose" in sys.argv or "-v" in sys.argv
    run = "--run" in sys.argv
    setup_logging(verbose)

    args = [a for a in sys.argv[1:] if not a.startswith("-")]
    path = args.pop(0) if args and args[0].endswith(".json") else None

    try:
        resolver = load_resolver(path)
        targets = args or resolver.indicator_ids
        _render_analysis(resolver.analyze())
        plan = resolver.create_plan(targets)
        console.print(Panel(
            _build_plan_tree(plan, resolver),
            title="[bold magenta]Plan[/bold magenta]",
            border_style="magenta",
        ))
        console.print(
            f"  [dim]max concurrency={plan.metadata.max_concurrency} "
            f"memory={plan.metadata.memory_required} bytes[/dim]"
        )
        if run:
            _render_report(asyncio.run(simulate(resolver, targets)))
    except (DependencyResolutionError, OSError, ValueError) as exc:
        console.print(f"[red]Error: {exc}[/red]")
        sys.exit(1)


if __name__ == "__main__":
    main()
