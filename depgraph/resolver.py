"""
IndicatorDependencyResolver - Thread-safe facade over store, validation,
analytics and planning.
IndicatorDependencyResolver —— 图存储、校验、分析与规划之上的线程安全门面。

Responsibilities, bottom-up:
  - Graph Store:   add_node / remove_node / update_dependencies
  - Validation:    validate (returned as data, never raised)
  - Analytics:     analyze / topological_sort / critical_path / ...
  - Planner:       create_plan / resolve_execution_order
  - Queries:       get_dependencies / get_all_dependents / depends_on / ...

职责（自底向上）：
  - 图存储： add_node / remove_node / update_dependencies
  - 校验：   validate（以数据形式返回，从不抛出）
  - 分析：   analyze / topological_sort / critical_path / ...
  - 规划：   create_plan / resolve_execution_order
  - 查询：   get_dependencies / get_all_dependents / depends_on / ...

Concurrency: a single re-entrant lock serializes every mutation together
with its cache invalidation, and every read, so no caller can observe a
half-updated reverse index. Results handed out are copies.
并发：一把可重入锁将「变更 + 缓存失效」作为原子单元串行化，读取同样持锁，
因此调用方永远不会看到更新到一半的反向索引。返回给调用方的结果均为副本。
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Iterable

import config
from depgraph import analytics
from depgraph.errors import DuplicateIndicatorError, InvalidDependenciesError, MissingIndicatorsError
from depgraph.graph import DependencyGraph, EventCallback
from depgraph.planner import ExecutionPlanner
from depgraph.validation import validate as validate_candidate
from schema import (
    DependencyAnalysis,
    DependencyNode,
    ExecutionPlan,
    GraphStatistics,
    NodeMetadata,
    ParallelizationOpportunity,
    ValidationResult,
)

logger = logging.getLogger(__name__)


class IndicatorDependencyResolver:
    """
    Dependency resolution and execution planning for indicators.
    指标的依赖解析与执行规划。

    With `enforce_validation` on (the default), add_node and
    update_dependencies validate first and raise InvalidDependenciesError
    instead of admitting unknown references or cycles. Turn it off for bulk
    loads that add nodes before their dependencies; validate() and the
    analytics still catch cycles afterwards.

    开启 `enforce_validation`（默认）时，add_node 与 update_dependencies 会先校验，
    遇到未知引用或环直接抛出 InvalidDependenciesError。
    对于先加入下游、后加入依赖的批量加载，可关闭该选项；之后 validate() 与图分析仍能发现环。
    """

    def __init__(
        self,
        max_depth: int | None = None,
        max_nodes: int | None = None,
        enforce_validation: bool | None = None,
        on_event: EventCallback | None = None,
    ):
        self.max_depth = config.MAX_DEPENDENCY_DEPTH if max_depth is None else max_depth
        self.enforce_validation = (
            config.ENFORCE_VALIDATION if enforce_validation is None else enforce_validation
        )
        self._graph = DependencyGraph(max_nodes=max_nodes)
        self._planner = ExecutionPlanner(self._graph)
        self._analysis_cache: dict[str, DependencyAnalysis] = {}  # 结构哈希 -> 分析结果
        self._lock = threading.RLock()
        if on_event is not None:
            self._graph.subscribe(on_event)

    # ------------------------------------------------------------------
    # Observers
    # 观察者
    # ------------------------------------------------------------------

    def subscribe(self, callback: EventCallback) -> None:
        with self._lock:
            self._graph.subscribe(callback)

    def unsubscribe(self, callback: EventCallback) -> None:
        with self._lock:
            self._graph.unsubscribe(callback)

    # ------------------------------------------------------------------
    # Graph Store
    # 图存储（变更）
    # ------------------------------------------------------------------

    def add_node(
        self,
        node_id: str,
        dependencies: Iterable[str] | None = None,
        metadata: NodeMetadata | dict[str, Any] | None = None,
    ) -> DependencyNode:
        """
        Add an indicator. Raises DuplicateIndicatorError, GraphCapacityError,
        or (when enforcing) InvalidDependenciesError.
        添加指标。可能抛出 DuplicateIndicatorError、GraphCapacityError，
        强制校验模式下还可能抛出 InvalidDependenciesError。
        """
        dependencies = list(dependencies or ())
        with self._lock:
            if node_id in self._graph:
                raise DuplicateIndicatorError(node_id)
            if self.enforce_validation:
                self._require_valid(node_id, dependencies)
            node = self._graph.add_node(node_id, dependencies, metadata)
            self._clear_caches()
            return node.model_copy(deep=True)

    def remove_node(self, node_id: str) -> bool:
        with self._lock:
            removed = self._graph.remove_node(node_id)
            if removed:
                self._clear_caches()
            return removed

    def update_dependencies(self, node_id: str, new_dependencies: Iterable[str]) -> bool:
        """
        Replace an indicator's dependencies. Returns False for an unknown ID.
        替换指标的依赖集合。ID 不存在时返回 False。
        """
        new_dependencies = list(new_dependencies)
        with self._lock:
            if node_id not in self._graph:
                return False
            if self.enforce_validation:
                self._require_valid(node_id, new_dependencies)
            self._graph.update_dependencies(node_id, new_dependencies)
            self._clear_caches()
            return True

    def _require_valid(self, node_id: str, dependencies: list[str]) -> None:
        result = validate_candidate(self._graph.nodes, node_id, dependencies, self.max_depth)
        if not result.is_valid:
            raise InvalidDependenciesError(node_id, result)

    def _clear_caches(self) -> None:
        self._planner.clear_cache()
        self._analysis_cache.clear()

    # ------------------------------------------------------------------
    # Validation
    # 校验
    # ------------------------------------------------------------------

    def validate(self, node_id: str, dependencies: Iterable[str]) -> ValidationResult:
        """
        Check a candidate node (or a replacement dependency set for an
        existing one) without mutating the graph.
        在不修改依赖图的前提下校验候选节点（或已有节点的替换依赖集合）。
        """
        with self._lock:
            return validate_candidate(self._graph.nodes, node_id, dependencies, self.max_depth)

    # ------------------------------------------------------------------
    # Analytics
    # 图分析
    # ------------------------------------------------------------------

    def analyze(self) -> DependencyAnalysis:
        """
        Whole-graph analysis, cached under the graph's structural hash.
        全图分析，以图的结构哈希为缓存 key。
        """
        with self._lock:
            key = self._graph.structural_hash()
            cached = self._analysis_cache.get(key)
            if cached is None:
                cached = analytics.analyze(self._graph.snapshot())
                self._analysis_cache[key] = cached
            else:
                logger.debug("[Resolver] Analysis cache hit")
            return cached.model_copy(deep=True)

    def topological_sort(self) -> list[str]:
        return self.analyze().topological_order

    def strongly_connected_components(self) -> list[list[str]]:
        return self.analyze().strongly_connected_components

    def critical_path(self) -> list[str]:
        return self.analyze().critical_path

    def bottlenecks(self) -> list[str]:
        return self.analyze().bottlenecks

    def parallelization_opportunities(self) -> list[ParallelizationOpportunity]:
        return self.analyze().parallelization_opportunities

    # ------------------------------------------------------------------
    # Execution Planner
    # 执行规划
    # ------------------------------------------------------------------

    def create_plan(self, indicator_ids: Iterable[str]) -> ExecutionPlan:
        with self._lock:
            return self._planner.create_plan(indicator_ids)

    def resolve_execution_order(self, indicator_ids: Iterable[str]) -> list[list[str]]:
        with self._lock:
            return self._planner.resolve_execution_order(indicator_ids)

    # ------------------------------------------------------------------
    # Queries
    # 查询（无缓存）
    # ------------------------------------------------------------------

    def __contains__(self, node_id: object) -> bool:
        with self._lock:
            return node_id in self._graph

    def __len__(self) -> int:
        with self._lock:
            return len(self._graph)

    @property
    def indicator_ids(self) -> list[str]:
        with self._lock:
            return list(self._graph)

    def get_node(self, node_id: str) -> DependencyNode | None:
        with self._lock:
            node = self._graph.get(node_id)
            return node.model_copy(deep=True) if node is not None else None

    def get_dependencies(self, node_id: str) -> list[str]:
        with self._lock:
            node = self._graph.get(node_id)
            return sorted(node.dependencies) if node is not None else []

    def get_dependents(self, node_id: str) -> list[str]:
        with self._lock:
            node = self._graph.get(node_id)
            return sorted(node.dependents) if node is not None else []

    def get_all_dependencies(self, node_id: str) -> list[str]:
        """Transitive dependencies in depth-first discovery order. 传递依赖（深度优先发现顺序）。"""
        with self._lock:
            return self._transitive(node_id, forward=True)

    def get_all_dependents(self, node_id: str) -> list[str]:
        """Transitive dependents in depth-first discovery order. 传递下游（深度优先发现顺序）。"""
        with self._lock:
            return self._transitive(node_id, forward=False)

    def depends_on(self, node_id: str, dependency_id: str) -> bool:
        return dependency_id in self.get_all_dependencies(node_id)

    def _transitive(self, node_id: str, forward: bool) -> list[str]:
        node = self._graph.get(node_id)
        if node is None:
            return []

        def neighbours(n: DependencyNode) -> set[str]:
            return n.dependencies if forward else n.dependents

        # visited 预置起点，防止环导致死循环，也保证结果不含自身
        visited: set[str] = {node_id}
        result: list[str] = []
        stack = sorted(neighbours(node), reverse=True)
        while stack:
            nid = stack.pop()
            if nid in visited:
                continue
            visited.add(nid)
            result.append(nid)
            current = self._graph.get(nid)
            if current is not None:
                stack.extend(sorted(neighbours(current) - visited, reverse=True))
        return result

    def get_graph_statistics(self) -> GraphStatistics:
        with self._lock:
            nodes = list(self._graph.nodes.values())
            fan_out = [len(n.dependencies) for n in nodes]
            total_edges = sum(fan_out)
            return GraphStatistics(
                total_nodes=len(nodes),
                total_edges=total_edges,
                average_dependencies=total_edges / len(nodes) if nodes else 0.0,
                max_dependencies=max(fan_out, default=0),
                isolated_nodes=sum(1 for n in nodes if not n.dependencies and not n.dependents),
                leaf_nodes=sum(1 for n in nodes if not n.dependents),
                root_nodes=sum(1 for n in nodes if not n.dependencies),
            )

    # ------------------------------------------------------------------
    # Snapshots
    # 快照
    # ------------------------------------------------------------------

    def snapshot(self) -> dict[str, DependencyNode]:
        with self._lock:
            return self._graph.snapshot()

    def to_dict(self) -> dict[str, Any]:
        with self._lock:
            return self._graph.to_dict()

    @classmethod
    def from_dict(cls, data: dict[str, Any], **kwargs: Any) -> IndicatorDependencyResolver:
        """
        Build a resolver from `to_dict()` output. Nodes are loaded without
        per-node validation (order is arbitrary), then the whole graph is
        checked. With `enforce_validation` on, dependencies that never
        appear as nodes raise MissingIndicatorsError; cycles always raise
        CircularDependencyError.

        从 `to_dict()` 的输出构建解析器。加载时不逐节点校验（顺序任意），
        加载完成后做全图检查：强制校验模式下，引用了不存在指标的依赖会抛出
        MissingIndicatorsError；含环时总是抛出 CircularDependencyError。
        """
        resolver = cls(**kwargs)
        with resolver._lock:
            resolver._graph.load(data)
            resolver._clear_caches()
            if resolver.enforce_validation:
                unknown = resolver._graph.dangling_dependencies()
                if unknown:
                    logger.error("[Resolver] Load rejected, unknown dependencies: %s", unknown)
                    raise MissingIndicatorsError(unknown)
        # 加载后立即做一次全图分析，含环的输入会在此抛出 CircularDependencyError
        resolver.analyze()
        logger.info("[Resolver] Loaded %s", resolver._graph.summary())
        return resolver
