"""
Validation - Admission checks for a candidate indicator.
校验 —— 候选指标加入依赖图前的准入检查。

validate() answers "may indicator X with dependencies D enter the graph?":
  1. every dependency must already exist (unknown reference -> error)
  2. the candidate is overlaid onto the graph and full-graph cycle
     detection runs (cycle -> error)
  3. the dependency depth below the candidate is measured
     (too deep -> warning only)

validate() 回答「指标 X 携带依赖 D 能否加入依赖图？」：
  1. 所有依赖必须已存在（未知引用 -> error）
  2. 将候选节点叠加到图上，执行全图环检测（存在环 -> error）
  3. 计算候选节点下方的依赖深度（过深 -> 仅 warning）

The overlay is a plain adjacency dict, so the live graph is never touched.
All traversals use explicit stacks instead of recursion.
叠加层只是一个普通的邻接 dict，绝不修改真实依赖图。所有遍历都使用显式栈而非递归。
"""

from __future__ import annotations

import logging
from typing import Iterable, Mapping

import config
from schema import DependencyNode, ValidationResult

logger = logging.getLogger(__name__)

Adjacency = Mapping[str, Iterable[str]]


def adjacency_of(nodes: Mapping[str, DependencyNode]) -> dict[str, set[str]]:
    """Forward adjacency (id -> dependencies) of a node mapping."""
    return {nid: set(n.dependencies) for nid, n in nodes.items()}


# ----------------------------------------------------------------------
# Cycle detection
# 环检测
# ----------------------------------------------------------------------

def detect_cycles(adjacency: Adjacency) -> list[list[str]]:
    """
    Depth-first search with an explicit recursion stack.
    A dependency that is still on the stack closes a cycle, recorded as the
    stack slice from its first occurrence to the repeat, inclusive,
    e.g. ["A", "B", "A"].

    使用显式递归栈的深度优先搜索。
    若遇到仍在栈上的依赖即构成环，记录为从其首次出现到重复出现的栈切片（含两端），
    例如 ["A", "B", "A"]。
    """
    cycles: list[list[str]] = []
    visited: set[str] = set()

    for root in adjacency:
        if root in visited:
            continue

        visited.add(root)
        path: list[str] = [root]          # 当前递归路径
        on_stack: set[str] = {root}       # 路径上的节点集合，O(1) 判断
        frames = [iter(sorted(adjacency[root]))]

        while frames:
            dep = next(frames[-1], None)
            if dep is None:
                # 当前节点的所有依赖已处理完，出栈
                frames.pop()
                on_stack.discard(path.pop())
                continue
            if dep in on_stack:
                start = path.index(dep)
                cycles.append(path[start:] + [dep])
                continue
            if dep in visited or dep not in adjacency:
                continue
            visited.add(dep)
            path.append(dep)
            on_stack.add(dep)
            frames.append(iter(sorted(adjacency[dep])))

    return cycles


# ----------------------------------------------------------------------
# Depth
# 依赖深度
# ----------------------------------------------------------------------

def dependency_depth(adjacency: Adjacency, node_id: str) -> int:
    """
    Length of the longest dependency chain below `node_id`, counting each
    dependency as one level. A node without dependencies has depth 0; unknown
    IDs count as a single level. Back-edges of a cycle are ignored.

    `node_id` 下方最长依赖链的长度，每个依赖计一层。无依赖的节点深度为 0；
    未知 ID 计为一层；环上的回边被忽略。
    """
    if node_id not in adjacency:
        return 0

    heights: dict[str, int] = {}               # 已完成节点的高度（含自身）
    best: dict[str, int] = {node_id: 0}        # 正在处理节点的子树最大高度
    on_path: set[str] = {node_id}
    frames = [(node_id, iter(sorted(adjacency[node_id])))]

    while frames:
        nid, deps = frames[-1]
        descended = False
        for dep in deps:
            if dep in heights:
                best[nid] = max(best[nid], heights[dep])
            elif dep in on_path:
                continue
            elif dep not in adjacency:
                heights[dep] = 1
                best[nid] = max(best[nid], 1)
            else:
                on_path.add(dep)
                best[dep] = 0
                frames.append((dep, iter(sorted(adjacency[dep]))))
                descended = True
                break
        if descended:
            continue

        frames.pop()
        on_path.discard(nid)
        heights[nid] = best[nid] + 1
        if frames:
            parent = frames[-1][0]
            best[parent] = max(best[parent], heights[nid])

    return heights[node_id] - 1


# ----------------------------------------------------------------------
# Validation entry point
# 校验入口
# ----------------------------------------------------------------------

def validate(
    nodes: Mapping[str, DependencyNode],
    candidate_id: str,
    candidate_dependencies: Iterable[str],
    max_depth: int | None = None,
) -> ValidationResult:
    """
    Validate a candidate (new indicator or replacement dependency set)
    against the graph. Never raises for bad input and never mutates `nodes`.

    校验候选节点（新增指标或替换后的依赖集合）。对错误输入不抛异常，也绝不修改 `nodes`。
    """
    max_depth = config.MAX_DEPENDENCY_DEPTH if max_depth is None else max_depth
    dependencies = sorted(set(candidate_dependencies))
    errors: list[str] = []
    warnings: list[str] = []

    # 1. 未知引用检查
    for dep_id in dependencies:
        if dep_id not in nodes:
            errors.append(f"Dependency {dep_id} does not exist")

    # 2. 叠加候选节点后做全图环检测（同 ID 的已有节点被替换，用于校验依赖更新）
    overlay = adjacency_of(nodes)
    overlay[candidate_id] = set(dependencies)
    cycles = detect_cycles(overlay)
    if cycles:
        rendered = "; ".join(" -> ".join(c) for c in cycles)
        errors.append(f"Circular dependencies detected: {rendered}")

    # 3. 深度检查（仅警告）
    if dependencies:
        depth = dependency_depth(overlay, candidate_id)
        if depth > max_depth:
            warnings.append(
                f"Dependency depth ({depth}) exceeds recommended maximum ({max_depth})"
            )

    result = ValidationResult(
        is_valid=not errors,
        errors=errors,
        warnings=warnings,
        circular_dependencies=cycles,
    )
    if not result.is_valid:
        logger.warning("[Validator] %s rejected: %s", candidate_id, errors)
    elif warnings:
        logger.info("[Validator] %s accepted with warnings: %s", candidate_id, warnings)
    return result
