"""
准入校验测试 — 验证：
  1. 未知引用作为 error 返回
  2. 环检测（显式栈 DFS）及其报告格式
  3. 依赖深度只产生 warning
  4. 校验绝不修改依赖图

运行方式:
    pytest tests/test_validation.py -v
"""

from __future__ import annotations

from depgraph.graph import DependencyGraph
from depgraph.validation import adjacency_of, dependency_depth, detect_cycles, validate


def _build_chain(length: int) -> DependencyGraph:
    """n0 <- n1 <- ... <- n{length-1}"""
    graph = DependencyGraph()
    graph.add_node("n0")
    for i in range(1, length):
        graph.add_node(f"n{i}", [f"n{i - 1}"])
    return graph


class TestCycleDetection:

    def test_acyclic_graph_has_no_cycles(self):
        assert detect_cycles({"A": [], "B": ["A"], "C": ["A", "B"]}) == []

    def test_two_node_cycle_reported_as_stack_slice(self):
        cycles = detect_cycles({"A": ["B"], "B": ["A"]})
        assert cycles == [["A", "B", "A"]]

    def test_self_loop(self):
        assert detect_cycles({"A": ["A"]}) == [["A", "A"]]

    def test_cycle_below_entry_point(self):
        """从非环节点进入时，只报告环本身那一段路径。"""
        cycles = detect_cycles({"root": ["x"], "x": ["y"], "y": ["z"], "z": ["x"]})
        assert cycles == [["x", "y", "z", "x"]]

    def test_dangling_reference_is_not_a_cycle(self):
        assert detect_cycles({"A": ["ghost"]}) == []

    def test_deep_chain_does_not_recurse(self):
        """显式栈实现：超过默认递归上限的长链也不会溢出。"""
        size = 5000
        adjacency = {f"n{i}": [f"n{i - 1}"] if i else [] for i in range(size)}
        adjacency["n0"] = [f"n{size - 1}"]
        cycles = detect_cycles(adjacency)
        assert len(cycles) == 1
        assert len(cycles[0]) == size + 1


class TestDependencyDepth:

    def test_leaf_has_zero_depth(self):
        assert dependency_depth({"A": []}, "A") == 0

    def test_chain_depth(self):
        graph = _build_chain(5)
        assert dependency_depth(adjacency_of(graph.nodes), "n4") == 4

    def test_longest_branch_wins(self):
        adjacency = {"A": [], "B": ["A"], "C": ["B"], "D": ["A", "C"]}
        assert dependency_depth(adjacency, "D") == 3

    def test_shared_ancestors_counted_correctly(self):
        """已访问过的公共祖先不能让深度被低估。"""
        adjacency = {"A": [], "B": ["A"], "C": ["B"], "D": ["A"], "E": ["D", "C"]}
        assert dependency_depth(adjacency, "E") == 3


class TestValidate:

    def test_missing_reference(self):
        graph = DependencyGraph()
        result = validate(graph.nodes, "X", ["not-present"])
        assert result.is_valid is False
        assert any("not-present" in e for e in result.errors)

    def test_valid_candidate(self):
        graph = _build_chain(3)
        result = validate(graph.nodes, "X", ["n2", "n0"])
        assert result.is_valid is True
        assert result.errors == []
        assert result.circular_dependencies == []

    def test_cycle_through_replacement(self):
        """B 依赖 A，再尝试让 A 依赖 B —— 必须检出包含 A 和 B 的环。"""
        graph = DependencyGraph()
        graph.add_node("A")
        graph.add_node("B", ["A"])

        result = validate(graph.nodes, "A", ["B"])
        assert result.is_valid is False
        assert result.circular_dependencies, "应报告至少一个环"
        assert any({"A", "B"} <= set(cycle) for cycle in result.circular_dependencies)

    def test_validation_does_not_mutate(self):
        graph = DependencyGraph()
        graph.add_node("A")
        graph.add_node("B", ["A"])
        before = graph.structural_hash()

        validate(graph.nodes, "A", ["B"])
        validate(graph.nodes, "C", ["A", "B"])

        assert graph.structural_hash() == before
        assert "C" not in graph
        assert graph.nodes["A"].dependencies == set(), "已存在的同 ID 节点不能被删除或修改"
        assert graph.nodes["A"].dependents == {"B"}

    def test_depth_warning_is_not_an_error(self):
        graph = _build_chain(12)
        result = validate(graph.nodes, "X", ["n11"], max_depth=10)
        assert result.is_valid is True
        assert len(result.warnings) == 1
        assert "exceeds" in result.warnings[0]

    def test_depth_at_bound_has_no_warning(self):
        graph = _build_chain(10)
        result = validate(graph.nodes, "X", ["n9"], max_depth=10)
        assert result.warnings == []

    def test_no_dependencies_skips_depth_check(self):
        result = validate(DependencyGraph().nodes, "X", [], max_depth=0)
        assert result.is_valid is True
        assert result.warnings == []
