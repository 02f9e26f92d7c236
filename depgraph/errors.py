"""
Exception hierarchy for the dependency resolver.
依赖解析器的异常层级。

Validation problems are returned as ValidationResult data; the exceptions
below signal hard failures (bad API usage or a broken graph invariant).
校验问题以 ValidationResult 数据形式返回；以下异常仅表示硬性失败
（API 误用或图不变量被破坏）。
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from schema import ValidationResult


class DependencyResolutionError(Exception):
    """Base class for all resolver errors. 所有解析器异常的基类。"""
    pass


class DuplicateIndicatorError(DependencyResolutionError):
    def __init__(self, indicator_id: str):
        self.indicator_id = indicator_id
        super().__init__(f"Indicator {indicator_id} already exists in dependency graph")


class GraphCapacityError(DependencyResolutionError):
    def __init__(self, max_nodes: int):
        self.max_nodes = max_nodes
        super().__init__(f"Dependency graph is full (max {max_nodes} indicators)")


class CircularDependencyError(DependencyResolutionError):
    """
    Raised when analytics or planning runs over a graph that contains a cycle.
    This means a mutation bypassed validation.
    当分析或规划遇到含环的图时抛出——说明某次变更绕过了校验。
    """

    def __init__(self, cycles: list[list[str]] | None = None, message: str | None = None):
        self.cycles = cycles or []
        if message is None:
            message = "Circular dependency detected in graph"
            if self.cycles:
                message += ": " + "; ".join(" -> ".join(c) for c in self.cycles)
        super().__init__(message)


class MissingIndicatorsError(DependencyResolutionError):
    def __init__(self, missing: list[str]):
        self.missing = list(missing)
        super().__init__(f"Missing indicators: {', '.join(self.missing)}")


class InvalidDependenciesError(DependencyResolutionError):
    """
    Raised by enforcing mutations when validation rejects the new edges.
    强制校验模式下，变更操作的新依赖未通过校验时抛出。
    """

    def __init__(self, indicator_id: str, result: ValidationResult):
        self.indicator_id = indicator_id
        self.result = result
        super().__init__(
            f"Invalid dependencies for indicator {indicator_id}: {', '.join(result.errors)}"
        )
