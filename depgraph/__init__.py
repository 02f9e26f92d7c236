"""
depgraph module - Dependency resolution core for indicator evaluation.
depgraph 模块 —— 指标计算平台的依赖解析核心。

Components:
  - graph.py:         DependencyGraph store with forward/reverse adjacency
  - validation.py:    Admission checks (unknown references, cycles, depth)
  - analytics.py:     Topological order, SCC, critical path, levels
  - planner.py:       ExecutionPlanner (closure, subgraph, levels, metadata)
  - resolver.py:      IndicatorDependencyResolver (thread-safe facade + caches)
  - state_machine.py: Indicator run lifecycle state machine
  - executor.py:      PlanExecutor (level-by-level execution with barriers)

模块组成：
  - graph.py:         DependencyGraph 图存储（正向/反向邻接）
  - validation.py:    准入校验（未知引用、环、深度）
  - analytics.py:     拓扑排序、强连通分量、关键路径、层级划分
  - planner.py:       ExecutionPlanner（闭包、子图、分层、元数据）
  - resolver.py:      IndicatorDependencyResolver（线程安全门面 + 缓存）
  - state_machine.py: 指标执行生命周期状态机
  - executor.py:      PlanExecutor（逐层执行，层间屏障）
"""

from depgraph.errors import (  # 异常层级
    CircularDependencyError,
    DependencyResolutionError,
    DuplicateIndicatorError,
    GraphCapacityError,
    InvalidDependenciesError,
    MissingIndicatorsError,
)
from depgraph.graph import DependencyGraph                      # 依赖图存储
from depgraph.planner import ExecutionPlanner                   # 执行规划器
from depgraph.resolver import IndicatorDependencyResolver       # 依赖解析器门面
from depgraph.state_machine import IndicatorStateMachine        # 指标状态机
from depgraph.executor import PlanExecutor                      # 计划执行器
