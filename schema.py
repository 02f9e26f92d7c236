"""
Pydantic data models for the Indicator Dependency Resolver.
Defines the core data structures shared by the graph store, analytics,
the execution planner and the level executor.
指标依赖解析器的 Pydantic 数据模型。
定义了贯穿图存储、图分析、执行规划器与层级执行器的核心数据结构。
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

import config


# ======================================================================
# Graph Models
# 依赖图模型
# ======================================================================

class NodeMetadata(BaseModel):
    """
    Scheduling hints attached to every indicator.
    附加在每个指标上的调度元数据。
    """
    priority: int = Field(default_factory=lambda: config.DEFAULT_PRIORITY)                              # 优先级
    estimated_processing_time: float = Field(default_factory=lambda: config.DEFAULT_PROCESSING_TIME, ge=0)  # 预计处理时间（节点权重）
    memory_usage: int = Field(default_factory=lambda: config.DEFAULT_MEMORY_USAGE, ge=0)                # 预计内存占用（字节）
    tags: set[str] = Field(default_factory=set)                                                          # 标签


class DependencyNode(BaseModel):
    """
    A single indicator in the dependency graph.
    依赖图中的单个指标节点。

    `dependencies` are the forward edges (what this node needs);
    `dependents` is the reverse index and is maintained by DependencyGraph.
    `dependencies` 为正向边（本节点需要哪些输入）；
    `dependents` 为反向索引，由 DependencyGraph 统一维护。
    """
    id: str = Field(description="Unique indicator ID, e.g. 'sma_20', 'macd'")  # 指标唯一 ID
    dependencies: set[str] = Field(default_factory=set)                        # 本节点依赖的指标
    dependents: set[str] = Field(default_factory=set)                          # 依赖本节点的指标（反向索引）
    metadata: NodeMetadata = Field(default_factory=NodeMetadata)

    @property
    def weight(self) -> float:
        return self.metadata.estimated_processing_time


class ResolverEvent(str, Enum):
    """
    Observational events emitted on graph mutation.
    图变更时发出的观察事件（单向通知，不影响图状态）。
    """
    INDICATOR_ADDED = "indicator_added"
    INDICATOR_REMOVED = "indicator_removed"
    DEPENDENCIES_UPDATED = "dependencies_updated"


# ======================================================================
# Validation
# 校验结果模型
# ======================================================================

class ValidationResult(BaseModel):
    """
    Outcome of validating a candidate indicator against the live graph.
    Errors block admission; warnings do not.

    候选指标相对于当前依赖图的校验结果。
    errors 会阻止加入，warnings 不会。
    """
    is_valid: bool
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    circular_dependencies: list[list[str]] = Field(default_factory=list)  # 每个环为有序 ID 序列，首尾相同


# ======================================================================
# Execution Planning
# 执行计划模型
# ======================================================================

class PlanMetadata(BaseModel):
    total_indicators: int = 0
    max_concurrency: int = 0                # 最大层级的大小
    memory_required: int = 0                # 相关节点 memory_usage 之和
    total_processing_time: float = 0.0      # 串行执行时各节点权重之和


class ExecutionPlan(BaseModel):
    """
    Ordered levels plus derived cost/concurrency metadata for a requested
    subset of indicators. Every level must fully complete before the next
    one starts.

    针对一组请求指标的执行计划：有序层级 + 成本/并发元数据。
    每个层级必须完全执行完毕后才能开始下一层级（屏障）。
    """
    levels: list[list[str]] = Field(default_factory=list)
    total_levels: int = 0
    parallelizable: bool = False
    estimated_execution_time: float = 0.0   # 各层级最大权重之和
    critical_path: list[str] = Field(default_factory=list)
    critical_path_time: float = 0.0
    metadata: PlanMetadata = Field(default_factory=PlanMetadata)


# ======================================================================
# Whole-graph Analysis
# 全图分析模型
# ======================================================================

class ParallelizationOpportunity(BaseModel):
    level: int
    indicators: list[str]
    sequential_time: float
    parallel_time: float
    estimated_speedup: float


class DependencyAnalysis(BaseModel):
    """
    Snapshot of whole-graph analytics.
    全图分析结果快照。
    """
    graph: dict[str, DependencyNode] = Field(default_factory=dict)
    strongly_connected_components: list[list[str]] = Field(default_factory=list)
    topological_order: list[str] = Field(default_factory=list)
    critical_path: list[str] = Field(default_factory=list)
    critical_path_time: float = 0.0
    bottlenecks: list[str] = Field(default_factory=list)
    parallelization_opportunities: list[ParallelizationOpportunity] = Field(default_factory=list)


class GraphStatistics(BaseModel):
    total_nodes: int = 0
    total_edges: int = 0
    average_dependencies: float = 0.0
    max_dependencies: int = 0
    isolated_nodes: int = 0   # 既无依赖也无下游
    leaf_nodes: int = 0       # 无下游
    root_nodes: int = 0       # 无依赖


# ======================================================================
# Plan Execution Results
# 计划执行结果模型
# ======================================================================

class IndicatorStatus(str, Enum):
    """
    Indicator lifecycle during plan execution, managed by IndicatorStateMachine.
    计划执行期间指标的生命周期状态，由 IndicatorStateMachine 强制管理。

    Transition graph:
    转移图：
        PENDING -> RUNNING -> COMPLETED
                           -> FAILED
        PENDING            -> SKIPPED（上游失败或执行被终止）
    """
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class FailurePolicy(str, Enum):
    ABORT = "abort"                      # 任一指标失败即终止所有后续层级
    SKIP_DEPENDENTS = "skip_dependents"  # 仅跳过失败指标的下游


class IndicatorRunResult(BaseModel):
    """
    Result of running a single indicator inside a level.
    单个指标在某一层级中的执行结果。
    """
    indicator_id: str
    status: IndicatorStatus = IndicatorStatus.PENDING
    output: Any = None
    error: str | None = None
    level: int | None = None
    duration_ms: float = 0.0


class ExecutionReport(BaseModel):
    """
    Summary of a full plan execution.
    完整计划执行的汇总结果。
    """
    plan: ExecutionPlan
    results: dict[str, IndicatorRunResult] = Field(default_factory=dict)
    levels_completed: int = 0
    aborted: bool = False

    @property
    def success(self) -> bool:
        return all(r.status == IndicatorStatus.COMPLETED for r in self.results.values())

    def outputs(self) -> dict[str, Any]:
        return {
            rid: r.output for rid, r in self.results.items()
            if r.status == IndicatorStatus.COMPLETED
        }

    def failed(self) -> list[str]:
        return [rid for rid, r in self.results.items() if r.status == IndicatorStatus.FAILED]

    def skipped(self) -> list[str]:
        return [rid for rid, r in self.results.items() if r.status == IndicatorStatus.SKIPPED]
