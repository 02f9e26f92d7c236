"""
DependencyGraph - In-memory store of indicators and their dependency edges.
DependencyGraph —— 指标及其依赖边的内存存储。

The DependencyGraph holds:
  - nodes: dict of DependencyNode keyed by indicator ID
  - forward adjacency: node.dependencies (what a node needs)
  - reverse adjacency: node.dependents (who needs this node)
  - subscribers: observers notified on every mutation

DependencyGraph 包含：
  - nodes:       以指标 ID 为 key 的 DependencyNode 字典
  - 正向邻接：    node.dependencies（本节点需要谁）
  - 反向邻接：    node.dependents（谁需要本节点）
  - subscribers: 每次变更时被通知的观察者

Key invariant: for every edge "A depends on B" with both ends present,
B.dependents contains A, and vice versa. Every mutation below keeps both
directions in sync before returning.

核心不变量：对于任意两端都存在的边「A 依赖 B」，B.dependents 必包含 A，反之亦然。
下面每个变更方法在返回前都会同步更新正反两个方向。

The store is not synchronized by itself; IndicatorDependencyResolver owns
the lock that serializes mutations and reads.
本类自身不加锁；由 IndicatorDependencyResolver 持有的锁串行化读写。
"""

from __future__ import annotations

import hashlib
import json
import logging
from typing import Any, Callable, Iterable, Iterator

import config
from depgraph.errors import DuplicateIndicatorError, GraphCapacityError
from schema import DependencyNode, NodeMetadata, ResolverEvent

logger = logging.getLogger(__name__)

EventCallback = Callable[[str, Any], None]


def coerce_metadata(metadata: NodeMetadata | dict[str, Any] | None) -> NodeMetadata:
    """Accept a NodeMetadata, a plain dict of overrides, or None (all defaults)."""
    if metadata is None:
        return NodeMetadata()
    if isinstance(metadata, NodeMetadata):
        return metadata.model_copy(deep=True)
    return NodeMetadata(**metadata)


class DependencyGraph:
    """
    Mutable dependency graph with a transactionally maintained reverse index.
    带事务性反向索引维护的可变依赖图。
    """

    def __init__(self, max_nodes: int | None = None):
        self.nodes: dict[str, DependencyNode] = {}  # 所有节点，key 为指标 ID（保持插入顺序）
        self.max_nodes = config.MAX_GRAPH_NODES if max_nodes is None else max_nodes
        self._subscribers: list[EventCallback] = []

    # ------------------------------------------------------------------
    # Container protocol
    # 容器协议
    # ------------------------------------------------------------------

    def __contains__(self, node_id: object) -> bool:
        return node_id in self.nodes

    def __len__(self) -> int:
        return len(self.nodes)

    def __iter__(self) -> Iterator[str]:
        return iter(self.nodes)

    def get(self, node_id: str) -> DependencyNode | None:
        return self.nodes.get(node_id)

    # ------------------------------------------------------------------
    # Observers
    # 观察者
    # ------------------------------------------------------------------

    def subscribe(self, callback: EventCallback) -> None:
        if callback not in self._subscribers:
            self._subscribers.append(callback)

    def unsubscribe(self, callback: EventCallback) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    def _emit(self, event: ResolverEvent, data: dict[str, Any]) -> None:
        """
        Notify observers. Purely observational: an observer failure is logged
        and never propagates into graph state.
        通知观察者。纯观察性质：观察者异常只记录日志，绝不影响图状态。
        """
        for callback in list(self._subscribers):
            try:
                callback(event.value, data)
            except Exception:
                logger.exception("[Graph] Observer failed while handling %s", event.value)

    # ------------------------------------------------------------------
    # Mutations
    # 变更方法
    # ------------------------------------------------------------------

    def add_node(
        self,
        node_id: str,
        dependencies: Iterable[str] | None = None,
        metadata: NodeMetadata | dict[str, Any] | None = None,
    ) -> DependencyNode:
        """
        Insert a new indicator. Raises DuplicateIndicatorError if the ID exists.
        插入新指标。ID 已存在时抛出 DuplicateIndicatorError。

        Dependencies that are not in the graph yet are kept as dangling
        edges; the reverse index is back-filled when they are added later.
        尚不存在的依赖会作为悬空边保留；当被依赖节点稍后加入时回填反向索引。
        """
        if node_id in self.nodes:
            raise DuplicateIndicatorError(node_id)
        if len(self.nodes) >= self.max_nodes:
            raise GraphCapacityError(self.max_nodes)

        node = DependencyNode(
            id=node_id,
            dependencies=set(dependencies or ()),
            metadata=coerce_metadata(metadata),
        )
        self.nodes[node_id] = node

        # 将本节点登记到每个已存在依赖的 dependents 中
        for dep_id in node.dependencies:
            dep_node = self.nodes.get(dep_id)
            if dep_node is not None:
                dep_node.dependents.add(node_id)

        # 回填：此前已引用本节点的其他节点
        for other in self.nodes.values():
            if node_id in other.dependencies:
                node.dependents.add(other.id)

        dangling = sorted(d for d in node.dependencies if d not in self.nodes)
        if dangling:
            logger.warning("[Graph] %s references unknown indicators: %s", node_id, dangling)
        logger.info("[Graph] Indicator added: %s (deps=%s)", node_id, sorted(node.dependencies))

        self._emit(ResolverEvent.INDICATOR_ADDED, {
            "id": node_id,
            "dependencies": sorted(node.dependencies),
            "metadata": node.metadata.model_dump(),
        })
        return node

    def remove_node(self, node_id: str) -> bool:
        """
        Remove an indicator and detach it from every neighbour.
        Returns False if the ID is unknown.

        The ID is also dropped from its dependents' dependency sets, and
        re-adding it later does not restore those edges. Remove-then-re-add
        yields the original graph only for a leaf (no dependents).

        移除指标，并将其从所有相邻节点上摘除。ID 不存在时返回 False。
        下游节点的 dependencies 中也会删除该 ID，之后重新加入不会恢复这些边；
        只有叶子节点（无下游）先删后加才能得到与原来相同的图。
        """
        node = self.nodes.get(node_id)
        if node is None:
            return False

        # 从下游节点的 dependencies 中删除本节点
        for dependent_id in node.dependents:
            dependent = self.nodes.get(dependent_id)
            if dependent is not None:
                dependent.dependencies.discard(node_id)

        # 从上游节点的 dependents 中删除本节点
        for dep_id in node.dependencies:
            dep_node = self.nodes.get(dep_id)
            if dep_node is not None:
                dep_node.dependents.discard(node_id)

        del self.nodes[node_id]
        logger.info("[Graph] Indicator removed: %s", node_id)

        self._emit(ResolverEvent.INDICATOR_REMOVED, {
            "id": node_id,
            "dependencies": sorted(node.dependencies),
            "dependents": sorted(node.dependents - {node_id}),
        })
        return True

    def update_dependencies(self, node_id: str, new_dependencies: Iterable[str]) -> bool:
        """
        Atomically replace an indicator's dependency set.
        Returns False if the ID is unknown.

        原子性替换指标的依赖集合。ID 不存在时返回 False。
        """
        node = self.nodes.get(node_id)
        if node is None:
            return False

        old_dependencies = set(node.dependencies)
        new_set = set(new_dependencies)

        for dep_id in old_dependencies - new_set:
            dep_node = self.nodes.get(dep_id)
            if dep_node is not None:
                dep_node.dependents.discard(node_id)

        node.dependencies = new_set

        for dep_id in new_set:
            dep_node = self.nodes.get(dep_id)
            if dep_node is not None:
                dep_node.dependents.add(node_id)

        logger.info(
            "[Graph] Dependencies updated: %s %s -> %s",
            node_id, sorted(old_dependencies), sorted(new_set),
        )
        self._emit(ResolverEvent.DEPENDENCIES_UPDATED, {
            "id": node_id,
            "old_dependencies": sorted(old_dependencies),
            "new_dependencies": sorted(new_set),
        })
        return True

    # ------------------------------------------------------------------
    # Copies and hashing
    # 副本与哈希
    # ------------------------------------------------------------------

    def snapshot(self) -> dict[str, DependencyNode]:
        """Deep copy of all nodes, safe to hand out to callers. 所有节点的深拷贝。"""
        return {nid: n.model_copy(deep=True) for nid, n in self.nodes.items()}

    def subgraph(self, node_ids: Iterable[str]) -> dict[str, DependencyNode]:
        """
        Induced subgraph: copies of the given nodes with edge sets filtered
        to members of the set. Unknown IDs are ignored; graph order is kept.

        诱导子图：给定节点的副本，边集只保留集合内部成员。
        忽略未知 ID，保持图中的插入顺序。
        """
        members = set(node_ids)
        result: dict[str, DependencyNode] = {}
        for nid, node in self.nodes.items():
            if nid not in members:
                continue
            result[nid] = DependencyNode(
                id=nid,
                dependencies={d for d in node.dependencies if d in members},
                dependents={d for d in node.dependents if d in members},
                metadata=node.metadata.model_copy(deep=True),
            )
        return result

    def structural_hash(self) -> str:
        """
        SHA-256 over a canonical rendering of (ids, edges, metadata).
        Structurally identical graphs hash equal regardless of mutation history.

        基于 (ID、边、元数据) 规范化表示的 SHA-256。
        结构相同的图无论经历何种变更历史，哈希值都相同。
        """
        canonical = [
            {
                "id": nid,
                "deps": sorted(node.dependencies),
                "priority": node.metadata.priority,
                "time": node.metadata.estimated_processing_time,
                "memory": node.metadata.memory_usage,
                "tags": sorted(node.metadata.tags),
            }
            for nid, node in sorted(self.nodes.items())
        ]
        payload = json.dumps(canonical, sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()

    # ------------------------------------------------------------------
    # Serialization
    # 序列化 / 反序列化
    # ------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        """
        Serialize nodes (forward edges + metadata) to a plain dict.
        将节点（正向边 + 元数据）序列化为普通 dict。
        The reverse index is derived, so it is not written.
        """
        return {
            "nodes": [
                {
                    "id": nid,
                    "dependencies": sorted(node.dependencies),
                    "metadata": node.metadata.model_dump(mode="json"),
                }
                for nid, node in self.nodes.items()
            ]
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any], max_nodes: int | None = None) -> DependencyGraph:
        """
        Rebuild a graph from `to_dict()` output. Nodes may appear in any order;
        forward references are resolved by the reverse-index back-fill.
        从 `to_dict()` 的输出重建依赖图。节点顺序任意，前向引用由反向索引回填解决。
        """
        graph = cls(max_nodes=max_nodes)
        graph.load(data)
        return graph

    def load(self, data: dict[str, Any]) -> None:
        """Add every node of a `to_dict()` payload to this graph."""
        for entry in data.get("nodes", []):
            self.add_node(
                entry["id"],
                entry.get("dependencies", []),
                entry.get("metadata"),
            )

    # ------------------------------------------------------------------
    # Display helpers
    # 展示辅助方法
    # ------------------------------------------------------------------

    def edge_count(self) -> int:
        return sum(len(n.dependencies) for n in self.nodes.values())

    def dangling_dependencies(self) -> list[str]:
        """Dependency IDs referenced by some node but absent from the graph, sorted."""
        return sorted({
            dep for node in self.nodes.values() for dep in node.dependencies
            if dep not in self.nodes
        })

    def summary(self) -> str:
        """
        One-line summary for logging, e.g. Graph[4 indicators, 4 edges].
        生成单行摘要，用于日志输出。
        """
        return f"Graph[{len(self.nodes)} indicators, {self.edge_count()} edges]"
