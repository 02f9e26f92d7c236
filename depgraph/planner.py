"""
Execution Planner - Turns a set of requested indicators into ordered levels.
执行规划器 —— 将一组请求的指标转换为有序执行层级。

create_plan() pipeline:
  1. verify every requested ID exists
  2. collect the transitive dependency closure (relevant set)
  3. build the induced subgraph over the relevant set
  4. topologically sort the subgraph
  5. group into earliest-possible levels
  6. estimated time = sum over levels of the slowest member
  7. critical path over the subgraph
  8. memory = sum of memory_usage, max concurrency = largest level

create_plan() 流程：
  1. 校验所有请求 ID 都存在
  2. 收集传递依赖闭包（相关节点集合）
  3. 基于相关集合构建诱导子图
  4. 对子图做拓扑排序
  5. 按「尽早执行」原则分层
  6. 预计耗时 = 各层级最慢成员耗时之和
  7. 在子图上计算关键路径
  8. 内存 = memory_usage 之和，最大并发 = 最大层级的大小

Consumers run one level at a time and wait for the whole level before
starting the next (barrier).
使用方逐层执行，每层全部完成后才开始下一层（屏障）。
"""

from __future__ import annotations

import logging
from typing import Iterable

from depgraph import analytics
from depgraph.errors import MissingIndicatorsError
from depgraph.graph import DependencyGraph
from schema import ExecutionPlan, PlanMetadata

logger = logging.getLogger(__name__)


def plan_cache_key(indicator_ids: Iterable[str]) -> tuple[str, ...]:
    """Sorted, de-duplicated request; request order never matters."""
    return tuple(sorted(set(indicator_ids)))


class ExecutionPlanner:
    """
    Builds and caches execution plans over a DependencyGraph.
    基于 DependencyGraph 构建并缓存执行计划。

    The cache is coarse: any graph mutation must call clear_cache().
    缓存是粗粒度的：任何图变更都必须调用 clear_cache()。
    """

    def __init__(self, graph: DependencyGraph):
        self._graph = graph
        self._cache: dict[tuple[str, ...], ExecutionPlan] = {}

    def clear_cache(self) -> None:
        self._cache.clear()

    @property
    def cached_plans(self) -> int:
        return len(self._cache)

    # ------------------------------------------------------------------
    # Closure
    # 传递闭包
    # ------------------------------------------------------------------

    def relevant_nodes(self, indicator_ids: Iterable[str]) -> list[str]:
        """
        Requested IDs plus every transitive dependency, de-duplicated,
        in discovery order. Dangling references are skipped.

        请求 ID 及其全部传递依赖（去重，按发现顺序）。悬空引用会被跳过。
        """
        relevant: list[str] = []
        seen: set[str] = set()
        stack = list(reversed(list(indicator_ids)))

        while stack:
            nid = stack.pop()
            if nid in seen:
                continue
            seen.add(nid)
            node = self._graph.get(nid)
            if node is None:
                logger.warning("[Planner] Skipping unknown dependency '%s'", nid)
                continue
            relevant.append(nid)
            stack.extend(sorted(node.dependencies, reverse=True))

        return relevant

    # ------------------------------------------------------------------
    # Planning
    # 规划
    # ------------------------------------------------------------------

    def create_plan(self, indicator_ids: Iterable[str]) -> ExecutionPlan:
        """
        Build (or fetch from cache) the plan for `indicator_ids`.
        Raises MissingIndicatorsError listing every unknown ID, and
        CircularDependencyError if the closure contains a cycle.

        构建（或从缓存获取）`indicator_ids` 的执行计划。
        存在未知 ID 时抛出 MissingIndicatorsError（列出全部缺失 ID）；
        闭包中有环时抛出 CircularDependencyError。
        """
        requested = list(dict.fromkeys(indicator_ids))
        missing = [nid for nid in requested if nid not in self._graph]
        if missing:
            raise MissingIndicatorsError(missing)

        key = plan_cache_key(requested)
        cached = self._cache.get(key)
        if cached is not None:
            logger.debug("[Planner] Cache hit for %s", list(key))
            return cached.model_copy(deep=True)

        plan = self._build_plan(requested)
        self._cache[key] = plan
        return plan.model_copy(deep=True)

    def _build_plan(self, requested: list[str]) -> ExecutionPlan:
        relevant = self.relevant_nodes(requested)
        subgraph = self._graph.subgraph(relevant)

        order = analytics.topological_sort(subgraph)
        levels = analytics.group_into_levels(subgraph, order)
        path, path_time = analytics.critical_path(subgraph, order)

        plan = ExecutionPlan(
            levels=levels,
            total_levels=len(levels),
            parallelizable=any(len(level) > 1 for level in levels),
            estimated_execution_time=sum(analytics.level_time(subgraph, lvl) for lvl in levels),
            critical_path=path,
            critical_path_time=path_time,
            metadata=PlanMetadata(
                total_indicators=len(subgraph),
                max_concurrency=max((len(level) for level in levels), default=0),
                memory_required=sum(n.metadata.memory_usage for n in subgraph.values()),
                total_processing_time=sum(n.weight for n in subgraph.values()),
            ),
        )
        logger.info(
            "[Planner] Plan for %s: %d indicators in %d levels (est. %.1f, max concurrency %d)",
            requested, plan.metadata.total_indicators, plan.total_levels,
            plan.estimated_execution_time, plan.metadata.max_concurrency,
        )
        return plan

    def resolve_execution_order(self, indicator_ids: Iterable[str]) -> list[list[str]]:
        """Levels only, from the same cache as create_plan()."""
        return self.create_plan(indicator_ids).levels
