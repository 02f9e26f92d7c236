"""
Graph Analytics - Whole-graph algorithms over a node mapping.
图分析 —— 针对节点映射的全图算法。

Every function takes a `Mapping[str, DependencyNode]` so the same code runs
over the full graph and over an induced subgraph built by the planner.
Node weight is `metadata.estimated_processing_time`.

所有函数都接收 `Mapping[str, DependencyNode]`，因此同一份代码既可作用于全图，
也可作用于规划器构造的诱导子图。节点权重为 `metadata.estimated_processing_time`。

  - topological_sort():                    Kahn's algorithm, deterministic
  - strongly_connected_components():       Tarjan's algorithm (iterative)
  - critical_path():                       longest weighted path (PERT/CPM)
  - find_bottlenecks():                    fan-out / slow-node heuristic
  - group_into_levels():                   earliest-possible execution levels
  - find_parallelization_opportunities():  per-level speedup estimate
  - analyze():                             all of the above as one snapshot
"""

from __future__ import annotations

import logging
from collections import deque
from typing import Mapping

import config
from depgraph.errors import CircularDependencyError
from depgraph.validation import adjacency_of, detect_cycles
from schema import DependencyAnalysis, DependencyNode, ParallelizationOpportunity

logger = logging.getLogger(__name__)

Nodes = Mapping[str, DependencyNode]


def _present_dependencies(nodes: Nodes, node_id: str) -> list[str]:
    return sorted(d for d in nodes[node_id].dependencies if d in nodes)


def _present_dependents(nodes: Nodes, node_id: str) -> list[str]:
    return sorted(d for d in nodes[node_id].dependents if d in nodes)


# ----------------------------------------------------------------------
# Topological order
# 拓扑排序
# ----------------------------------------------------------------------

def topological_sort(nodes: Nodes) -> list[str]:
    """
    Kahn's algorithm: returns node IDs so that every node follows all of
    its dependencies. Zero in-degree nodes are seeded in insertion order and
    dependents are visited in sorted order, so the result is deterministic.

    Kahn 算法 —— 返回节点 ID，保证每个节点都排在其所有依赖之后。
    入度为 0 的节点按插入顺序入队，下游按字典序访问，因此结果是确定的。

    Raises CircularDependencyError if fewer than N nodes can be ordered;
    analytics presupposes a validated, acyclic graph.
    若可排序节点少于 N 个则抛出 CircularDependencyError —— 图分析以已校验的无环图为前提。
    """
    # 入度 = 图中实际存在的依赖数量
    in_degree = {nid: len(_present_dependencies(nodes, nid)) for nid in nodes}
    queue = deque(nid for nid, deg in in_degree.items() if deg == 0)
    result: list[str] = []

    while queue:
        nid = queue.popleft()
        result.append(nid)
        for dependent_id in _present_dependents(nodes, nid):
            in_degree[dependent_id] -= 1
            if in_degree[dependent_id] == 0:
                queue.append(dependent_id)

    if len(result) != len(nodes):
        cycles = detect_cycles(adjacency_of(nodes))
        logger.error("[Analytics] Cycle detected! Ordered %d of %d nodes", len(result), len(nodes))
        raise CircularDependencyError(cycles)
    return result


# ----------------------------------------------------------------------
# Strongly connected components
# 强连通分量
# ----------------------------------------------------------------------

def strongly_connected_components(nodes: Nodes) -> list[list[str]]:
    """
    Tarjan's algorithm with explicit index / low-link maps and an on-stack
    set, driven by a work stack instead of recursion. On a valid graph every
    component is a singleton; a larger one means a cycle slipped past
    validation.

    Tarjan 算法：显式维护 index / low-link 表与栈内集合，用工作栈代替递归。
    合法图中每个分量都只有一个节点；出现更大的分量说明有环绕过了校验。
    """
    counter = 0
    index: dict[str, int] = {}
    low: dict[str, int] = {}
    stack: list[str] = []
    on_stack: set[str] = set()
    components: list[list[str]] = []

    def visit(nid: str) -> None:
        nonlocal counter
        index[nid] = low[nid] = counter
        counter += 1
        stack.append(nid)
        on_stack.add(nid)

    for root in nodes:
        if root in index:
            continue
        visit(root)
        work = [(root, iter(_present_dependencies(nodes, root)))]

        while work:
            nid, deps = work[-1]
            descended = False
            for dep in deps:
                if dep not in index:
                    visit(dep)
                    work.append((dep, iter(_present_dependencies(nodes, dep))))
                    descended = True
                    break
                if dep in on_stack:
                    low[nid] = min(low[nid], index[dep])
            if descended:
                continue

            work.pop()
            if work:
                parent = work[-1][0]
                low[parent] = min(low[parent], low[nid])

            if low[nid] == index[nid]:
                component: list[str] = []
                while True:
                    member = stack.pop()
                    on_stack.discard(member)
                    component.append(member)
                    if member == nid:
                        break
                components.append(component)

    oversized = [c for c in components if len(c) > 1]
    if oversized:
        logger.error("[Analytics] Strongly connected components with cycles: %s", oversized)
    return components


# ----------------------------------------------------------------------
# Critical path
# 关键路径
# ----------------------------------------------------------------------

def critical_path(nodes: Nodes, order: list[str] | None = None) -> tuple[list[str], float]:
    """
    Longest weighted path in a DAG (PERT/CPM).
    DAG 中的最长加权路径（PERT/CPM）。

    Each node starts at its own weight; in topological order every dependent
    is relaxed to max(current, distance[node] + dependent.weight) and the
    predecessor achieving the maximum is recorded. The path is rebuilt by
    walking predecessors back from the maximum-distance node. Ties keep the
    first predecessor found.

    每个节点的距离初始化为自身权重；按拓扑序将每个下游松弛为
    max(当前值, distance[node] + 下游权重)，并记录取得最大值的前驱。
    从距离最大的节点沿前驱回溯即得路径。并列时保留最先找到的前驱。

    Returns (path, total_weight).
    """
    if not nodes:
        return [], 0.0
    if order is None:
        order = topological_sort(nodes)

    distance = {nid: nodes[nid].weight for nid in nodes}
    predecessor: dict[str, str | None] = {nid: None for nid in nodes}

    for nid in order:
        for dependent_id in _present_dependents(nodes, nid):
            candidate = distance[nid] + nodes[dependent_id].weight
            if candidate > distance[dependent_id]:
                distance[dependent_id] = candidate
                predecessor[dependent_id] = nid

    end = order[0]
    for nid in order:
        if distance[nid] > distance[end]:
            end = nid

    path: list[str] = []
    current: str | None = end
    while current is not None:
        path.append(current)
        current = predecessor[current]
    path.reverse()
    return path, distance[end]


# ----------------------------------------------------------------------
# Bottlenecks
# 瓶颈识别
# ----------------------------------------------------------------------

def find_bottlenecks(
    nodes: Nodes,
    dependent_threshold: int | None = None,
    time_threshold: float | None = None,
) -> list[str]:
    """
    Heuristic: a node is a bottleneck if many nodes depend on it or it is slow.
    启发式：下游依赖过多或处理时间过长的节点即为瓶颈。
    """
    if dependent_threshold is None:
        dependent_threshold = config.BOTTLENECK_DEPENDENT_THRESHOLD
    if time_threshold is None:
        time_threshold = config.BOTTLENECK_TIME_THRESHOLD

    return [
        nid for nid, node in nodes.items()
        if len(_present_dependents(nodes, nid)) > dependent_threshold
        or node.weight > time_threshold
    ]


# ----------------------------------------------------------------------
# Levels and parallelism
# 层级划分与并行机会
# ----------------------------------------------------------------------

def group_into_levels(nodes: Nodes, order: list[str] | None = None) -> list[list[str]]:
    """
    Partition nodes into execution levels. A node lands in the earliest level
    whose predecessors all sit in strictly earlier levels, i.e.
    level(n) = 0 for roots, else 1 + max(level(dep)). This yields the minimum
    number of levels. Within a level, members keep topological order.

    将节点划分为执行层级。每个节点被放入其所有依赖都位于更早层级之后的最早层级，
    即根节点 level = 0，否则 level = 1 + max(依赖的 level)，层级数最少。
    同一层级内的成员保持拓扑顺序。
    """
    if order is None:
        order = topological_sort(nodes)

    level_of: dict[str, int] = {}
    for nid in order:
        deps = _present_dependencies(nodes, nid)
        level_of[nid] = 1 + max(level_of[d] for d in deps) if deps else 0

    levels: list[list[str]] = [[] for _ in range(max(level_of.values(), default=-1) + 1)]
    for nid in order:
        levels[level_of[nid]].append(nid)
    return levels


def level_time(nodes: Nodes, level: list[str]) -> float:
    """Wall time of one level when run fully in parallel. 层级完全并行时的耗时。"""
    return max((nodes[nid].weight for nid in level), default=0.0)


def find_parallelization_opportunities(
    nodes: Nodes,
    levels: list[list[str]] | None = None,
) -> list[ParallelizationOpportunity]:
    """
    For every level with more than one member, compare sequential time (sum
    of weights) with parallel time (max weight).
    对于每个成员数大于 1 的层级，比较串行耗时（权重之和）与并行耗时（最大权重）。
    """
    if levels is None:
        levels = group_into_levels(nodes)

    opportunities: list[ParallelizationOpportunity] = []
    for idx, level in enumerate(levels):
        if len(level) <= 1:
            continue
        sequential = sum(nodes[nid].weight for nid in level)
        parallel = level_time(nodes, level)
        # 全部为零权重时没有可衡量的加速
        speedup = sequential / parallel if parallel > 0 else 1.0
        opportunities.append(ParallelizationOpportunity(
            level=idx,
            indicators=list(level),
            sequential_time=sequential,
            parallel_time=parallel,
            estimated_speedup=speedup,
        ))
    return opportunities


# ----------------------------------------------------------------------
# Full analysis
# 全图分析
# ----------------------------------------------------------------------

def analyze(nodes: Nodes) -> DependencyAnalysis:
    """
    Run every analytic over `nodes` (expected to be a snapshot copy).
    对 `nodes`（应为快照副本）执行全部分析。
    """
    components = strongly_connected_components(nodes)
    order = topological_sort(nodes)
    path, path_time = critical_path(nodes, order)
    levels = group_into_levels(nodes, order)

    analysis = DependencyAnalysis(
        graph=dict(nodes),
        strongly_connected_components=components,
        topological_order=order,
        critical_path=path,
        critical_path_time=path_time,
        bottlenecks=find_bottlenecks(nodes),
        parallelization_opportunities=find_parallelization_opportunities(nodes, levels),
    )
    logger.debug(
        "[Analytics] %d nodes, %d levels, critical path %s (%.1f)",
        len(nodes), len(levels), path, path_time,
    )
    return analysis
