"""
依赖解析器门面测试 — 验证：
  1. 菱形依赖场景（拓扑序、层级、关键路径、并行机会）
  2. 环与缺失引用场景
  3. 执行计划（闭包、元数据、缓存与失效）
  4. 查询 API 与图统计
  5. 强制校验模式与并发安全

运行方式:
    pytest tests/test_resolver.py -v
"""

from __future__ import annotations

import threading

import pytest

from depgraph import (
    CircularDependencyError,
    DuplicateIndicatorError,
    GraphCapacityError,
    IndicatorDependencyResolver,
    InvalidDependenciesError,
    MissingIndicatorsError,
)

MB = 1024 * 1024


def _build_diamond(**kwargs) -> IndicatorDependencyResolver:
    """
        A(10)
        /   \\
      B(5)  C(5)
        \\   /
        D(10)
    """
    resolver = IndicatorDependencyResolver(**kwargs)
    resolver.add_node("A", [], {"estimated_processing_time": 10, "memory_usage": 1 * MB})
    resolver.add_node("B", ["A"], {"estimated_processing_time": 5, "memory_usage": 2 * MB})
    resolver.add_node("C", ["A"], {"estimated_processing_time": 5, "memory_usage": 3 * MB})
    resolver.add_node("D", ["B", "C"], {"estimated_processing_time": 10, "memory_usage": 4 * MB})
    return resolver


# ======================================================================
# Scenarios
# 场景测试
# ======================================================================


class TestDiamondScenario:

    def test_topological_sort(self):
        order = _build_diamond().topological_sort()
        assert order[0] == "A"
        assert order[-1] == "D"
        assert len(order) == 4

    def test_resolve_execution_order(self):
        assert _build_diamond().resolve_execution_order(["D"]) == [["A"], ["B", "C"], ["D"]]

    def test_critical_path(self):
        resolver = _build_diamond()
        analysis = resolver.analyze()
        assert analysis.critical_path in (["A", "B", "D"], ["A", "C", "D"])
        assert analysis.critical_path_time == 25

    def test_parallelization_opportunity(self):
        opportunities = _build_diamond().parallelization_opportunities()
        assert len(opportunities) == 1
        assert opportunities[0].level == 1
        assert set(opportunities[0].indicators) == {"B", "C"}
        assert opportunities[0].estimated_speedup == pytest.approx(2.0)

    def test_no_cycles_in_validated_graph(self):
        components = _build_diamond().strongly_connected_components()
        assert all(len(c) == 1 for c in components)


class TestCycleAndMissingScenarios:

    def test_validate_reports_cycle(self):
        resolver = IndicatorDependencyResolver()
        resolver.add_node("A")
        resolver.add_node("B", ["A"])

        result = resolver.validate("A", ["B"])
        assert result.is_valid is False
        assert any({"A", "B"} <= set(c) for c in result.circular_dependencies)

    def test_enforced_update_rejects_cycle(self):
        resolver = IndicatorDependencyResolver(enforce_validation=True)
        resolver.add_node("A")
        resolver.add_node("B", ["A"])

        with pytest.raises(InvalidDependenciesError) as exc_info:
            resolver.update_dependencies("A", ["B"])
        assert exc_info.value.result.circular_dependencies
        assert resolver.get_dependencies("A") == [], "被拒绝的更新不能改变依赖图"

    def test_unenforced_update_lets_cycle_through_to_analytics(self):
        """关闭强制校验时，环会一直潜伏到图分析才以硬错误暴露。"""
        resolver = IndicatorDependencyResolver(enforce_validation=False)
        resolver.add_node("A")
        resolver.add_node("B", ["A"])
        assert resolver.update_dependencies("A", ["B"]) is True

        with pytest.raises(CircularDependencyError):
            resolver.topological_sort()
        with pytest.raises(CircularDependencyError):
            resolver.create_plan(["B"])

    def test_validate_missing_reference(self):
        result = IndicatorDependencyResolver().validate("X", ["not-present"])
        assert result.is_valid is False
        assert any("not-present" in e for e in result.errors)

    def test_enforced_add_rejects_missing_reference(self):
        resolver = IndicatorDependencyResolver(enforce_validation=True)
        with pytest.raises(InvalidDependenciesError):
            resolver.add_node("X", ["not-present"])
        assert "X" not in resolver

    def test_unenforced_add_allows_forward_reference(self):
        resolver = IndicatorDependencyResolver(enforce_validation=False)
        resolver.add_node("macd", ["ema"])
        resolver.add_node("ema")
        assert resolver.get_dependents("ema") == ["macd"]
        assert resolver.resolve_execution_order(["macd"]) == [["ema"], ["macd"]]

    def test_duplicate_add(self):
        resolver = _build_diamond()
        with pytest.raises(DuplicateIndicatorError):
            resolver.add_node("A")

    def test_capacity(self):
        resolver = IndicatorDependencyResolver(max_nodes=1)
        resolver.add_node("A")
        with pytest.raises(GraphCapacityError):
            resolver.add_node("B")


# ======================================================================
# Execution planning
# 执行计划
# ======================================================================


class TestExecutionPlan:

    def test_plan_metadata(self):
        plan = _build_diamond().create_plan(["D"])
        assert plan.levels == [["A"], ["B", "C"], ["D"]]
        assert plan.total_levels == 3
        assert plan.parallelizable is True
        assert plan.estimated_execution_time == 25     # 10 + max(5, 5) + 10
        assert plan.critical_path_time == 25
        assert plan.metadata.total_indicators == 4
        assert plan.metadata.max_concurrency == 2
        assert plan.metadata.memory_required == 10 * MB
        assert plan.metadata.total_processing_time == 30

    def test_closure_only_includes_needed_nodes(self):
        plan = _build_diamond().create_plan(["B"])
        assert plan.levels == [["A"], ["B"]]
        assert plan.critical_path == ["A", "B"]
        assert plan.parallelizable is False
        assert plan.metadata.memory_required == 3 * MB

    def test_memory_independent_of_request_order(self):
        resolver = _build_diamond()
        first = resolver.create_plan(["D", "B", "B"])
        second = resolver.create_plan(["B", "D"])
        assert first.metadata.memory_required == second.metadata.memory_required == 10 * MB

    def test_missing_targets_listed(self):
        with pytest.raises(MissingIndicatorsError) as exc_info:
            _build_diamond().create_plan(["D", "nope", "gone"])
        assert exc_info.value.missing == ["nope", "gone"]
        assert "nope" in str(exc_info.value) and "gone" in str(exc_info.value)

    def test_empty_request(self):
        plan = _build_diamond().create_plan([])
        assert plan.levels == []
        assert plan.metadata.max_concurrency == 0
        assert plan.estimated_execution_time == 0

    def test_plan_cached_and_invalidated(self):
        resolver = _build_diamond()
        resolver.create_plan(["D"])
        resolver.resolve_execution_order(["D"])
        assert resolver._planner.cached_plans == 1

        resolver.add_node("E", ["D"])
        assert resolver._planner.cached_plans == 0
        assert resolver.resolve_execution_order(["E"])[-1] == ["E"]

    def test_cached_plan_cannot_be_corrupted_by_caller(self):
        resolver = _build_diamond()
        plan = resolver.create_plan(["D"])
        plan.levels.append(["bogus"])
        assert resolver.create_plan(["D"]).levels == [["A"], ["B", "C"], ["D"]]

    def test_mutation_visible_in_next_plan(self):
        resolver = _build_diamond()
        assert resolver.resolve_execution_order(["D"]) == [["A"], ["B", "C"], ["D"]]
        resolver.update_dependencies("D", ["B"])
        assert resolver.resolve_execution_order(["D"]) == [["A"], ["B"], ["D"]]


# ======================================================================
# Analysis caching
# 分析缓存
# ======================================================================


class TestAnalysisCache:

    def test_remove_then_readd_leaf_gives_identical_analysis(self):
        """叶子节点（无下游）先删后加，分析结果与原来一致。"""
        resolver = _build_diamond()
        before = resolver.analyze()

        resolver.remove_node("D")
        assert "D" not in resolver.analyze().topological_order
        resolver.add_node("D", ["B", "C"], {"estimated_processing_time": 10, "memory_usage": 4 * MB})

        after = resolver.analyze()
        assert after.model_dump() == before.model_dump()

    def test_readding_inner_node_does_not_restore_dependent_edges(self):
        """非叶子节点被删除后，下游的依赖边随之消失，重新加入也不会恢复。"""
        resolver = IndicatorDependencyResolver()
        resolver.add_node("A", [], {"estimated_processing_time": 10})
        resolver.add_node("B", ["A"], {"estimated_processing_time": 5})
        assert resolver.analyze().critical_path == ["A", "B"]

        resolver.remove_node("A")
        resolver.add_node("A", [], {"estimated_processing_time": 10})

        assert resolver.get_dependencies("B") == []
        assert resolver.analyze().critical_path == ["A"]
        assert resolver.analyze().critical_path_time == 10

    def test_analysis_cache_cleared_on_mutation(self):
        resolver = _build_diamond()
        resolver.analyze()
        assert len(resolver._analysis_cache) == 1
        resolver.remove_node("A")
        assert resolver._analysis_cache == {}


# ======================================================================
# Queries
# 查询 API
# ======================================================================


class TestQueries:

    def test_direct_neighbours(self):
        resolver = _build_diamond()
        assert resolver.get_dependencies("D") == ["B", "C"]
        assert resolver.get_dependents("A") == ["B", "C"]
        assert resolver.get_dependencies("nope") == []

    def test_transitive_closures(self):
        resolver = _build_diamond()
        assert set(resolver.get_all_dependencies("D")) == {"A", "B", "C"}
        assert set(resolver.get_all_dependents("A")) == {"B", "C", "D"}
        assert len(resolver.get_all_dependencies("D")) == 3, "结果不应重复"
        assert resolver.get_all_dependents("nope") == []

    def test_depends_on(self):
        resolver = _build_diamond()
        assert resolver.depends_on("D", "A") is True
        assert resolver.depends_on("A", "D") is False
        assert resolver.depends_on("A", "A") is False
        for a in resolver.indicator_ids:
            for b in resolver.indicator_ids:
                assert resolver.depends_on(a, b) == (b in resolver.get_all_dependencies(a))

    def test_closure_terminates_on_cycle(self):
        resolver = IndicatorDependencyResolver(enforce_validation=False)
        resolver.add_node("A", ["B"])
        resolver.add_node("B", ["A"])
        assert resolver.get_all_dependencies("A") == ["B"]

    def test_graph_statistics(self):
        resolver = _build_diamond()
        resolver.add_node("E")
        stats = resolver.get_graph_statistics()
        assert stats.total_nodes == 5
        assert stats.total_edges == 4
        assert stats.average_dependencies == pytest.approx(0.8)
        assert stats.max_dependencies == 2
        assert stats.isolated_nodes == 1
        assert stats.leaf_nodes == 2
        assert stats.root_nodes == 2

    def test_empty_statistics(self):
        stats = IndicatorDependencyResolver().get_graph_statistics()
        assert stats.total_nodes == 0
        assert stats.average_dependencies == 0.0


# ======================================================================
# Events, loading and concurrency
# 事件、加载与并发
# ======================================================================


class TestEventsAndLoading:

    def test_events_carry_edge_sets(self):
        events = []
        resolver = IndicatorDependencyResolver(on_event=lambda e, d: events.append((e, d)))
        resolver.add_node("A")
        resolver.add_node("B", ["A"])
        resolver.update_dependencies("B", [])
        resolver.remove_node("A")

        names = [e for e, _ in events]
        assert names == ["indicator_added", "indicator_added", "dependencies_updated", "indicator_removed"]
        assert events[2][1] == {"id": "B", "old_dependencies": ["A"], "new_dependencies": []}

    def test_rejected_mutation_emits_nothing(self):
        events = []
        resolver = IndicatorDependencyResolver(on_event=lambda e, d: events.append(e))
        with pytest.raises(InvalidDependenciesError):
            resolver.add_node("X", ["missing"])
        assert events == []

    def test_from_dict_accepts_any_order(self):
        data = {
            "nodes": [
                {"id": "D", "dependencies": ["B", "C"]},
                {"id": "B", "dependencies": ["A"]},
                {"id": "C", "dependencies": ["A"]},
                {"id": "A", "dependencies": []},
            ]
        }
        resolver = IndicatorDependencyResolver.from_dict(data)
        assert resolver.resolve_execution_order(["D"]) == [["A"], ["B", "C"], ["D"]]

    def test_from_dict_rejects_cycle(self):
        data = {"nodes": [{"id": "A", "dependencies": ["B"]}, {"id": "B", "dependencies": ["A"]}]}
        with pytest.raises(CircularDependencyError):
            IndicatorDependencyResolver.from_dict(data)

    def test_from_dict_rejects_unknown_dependency_when_enforcing(self):
        """图文件中拼错的依赖 ID 必须阻止加载，而不是在规划时被悄悄丢弃。"""
        data = {
            "nodes": [
                {"id": "ema"},
                {"id": "macd", "dependencies": ["ema", "emaa_typo"]},
                {"id": "signal", "dependencies": ["macd", "rsi"]},
            ]
        }
        with pytest.raises(MissingIndicatorsError) as exc_info:
            IndicatorDependencyResolver.from_dict(data, enforce_validation=True)
        assert exc_info.value.missing == ["emaa_typo", "rsi"]

    def test_from_dict_keeps_dangling_dependency_when_not_enforcing(self):
        data = {"nodes": [{"id": "ema"}, {"id": "macd", "dependencies": ["ema", "later"]}]}
        resolver = IndicatorDependencyResolver.from_dict(data, enforce_validation=False)
        assert resolver.get_dependencies("macd") == ["ema", "later"]
        resolver.add_node("later")
        assert resolver.resolve_execution_order(["macd"]) == [["ema", "later"], ["macd"]]

    def test_concurrent_writers_keep_invariant(self):
        resolver = IndicatorDependencyResolver()
        resolver.add_node("root")

        def writer(prefix: str) -> None:
            for i in range(50):
                resolver.add_node(f"{prefix}{i}", ["root"])
                resolver.create_plan([f"{prefix}{i}"])
                if i % 2:
                    resolver.remove_node(f"{prefix}{i}")

        threads = [threading.Thread(target=writer, args=(p,)) for p in ("x", "y", "z")]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        snapshot = resolver.snapshot()
        assert len(snapshot) == 1 + 3 * 25
        assert snapshot["root"].dependents == set(snapshot) - {"root"}
        assert len(resolver.topological_sort()) == len(snapshot)
