"""
Plan Executor - Runs an ExecutionPlan level by level.
计划执行器 —— 逐层执行 ExecutionPlan。

The resolver only plans; this module is the reference consumer of a plan:
  1. Request a plan for the target indicators
  2. For each level, dispatch members via asyncio.gather, with a semaphore
     keeping at most `max_parallel` running at once
  3. Wait for the whole level (barrier): later levels assume earlier
     outputs exist
  4. Apply the failure policy, then move to the next level

解析器只负责规划；本模块是执行计划的参考使用方：
  1. 为目标指标申请执行计划
  2. 对每个层级，通过 asyncio.gather 分发成员，信号量保证同时运行的不超过 `max_parallel` 个
  3. 等待整个层级完成（屏障）：后续层级依赖前面层级的输出
  4. 应用失败策略，然后进入下一层级

How an indicator computes its value is injected by the caller as an async
`runner(indicator_id, inputs)`, where `inputs` maps each direct dependency
to its output.
指标如何计算由调用方注入异步函数 `runner(indicator_id, inputs)`，
其中 `inputs` 为「直接依赖 ID -> 其输出」的映射。
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Iterable

import config
from depgraph.resolver import IndicatorDependencyResolver
from depgraph.state_machine import IndicatorStateMachine
from schema import (
    ExecutionPlan,
    ExecutionReport,
    FailurePolicy,
    IndicatorRunResult,
    IndicatorStatus,
)

logger = logging.getLogger(__name__)

IndicatorRunner = Callable[[str, dict[str, Any]], Awaitable[Any]]


class PlanExecutor:
    """
    Executes plans produced by IndicatorDependencyResolver with a barrier
    between levels.
    以层级屏障方式执行 IndicatorDependencyResolver 生成的计划。
    """

    def __init__(
        self,
        resolver: IndicatorDependencyResolver,
        runner: IndicatorRunner,
        max_parallel: int | None = None,
        failure_policy: FailurePolicy | str | None = None,
        on_event: Callable[[str, Any], None] | None = None,
    ):
        self._resolver = resolver
        self._runner = runner                                                    # 注入的指标计算函数
        if max_parallel is None:
            max_parallel = config.MAX_PARALLEL_NODES
        self._max_parallel = max(1, max_parallel)                                # 同时运行的最大指标数，至少为 1
        self._policy = FailurePolicy(failure_policy or config.EXECUTOR_FAILURE_POLICY)
        self._emit = on_event or (lambda *_: None)                               # 事件回调（用于 UI 实时更新）
        self._sm = IndicatorStateMachine(on_transition=self._on_transition)

    # ------------------------------------------------------------------
    # Main execution loop
    # 主执行循环
    # ------------------------------------------------------------------

    async def execute(self, indicator_ids: Iterable[str]) -> ExecutionReport:
        """
        Plan and run `indicator_ids` with their transitive dependencies.
        为 `indicator_ids` 及其传递依赖生成计划并执行。
        """
        plan = self._resolver.create_plan(indicator_ids)
        return await self.execute_plan(plan)

    async def execute_plan(self, plan: ExecutionPlan) -> ExecutionReport:
        report = ExecutionReport(plan=plan)
        for idx, level in enumerate(plan.levels):
            for nid in level:
                report.results[nid] = IndicatorRunResult(indicator_id=nid, level=idx)

        # 在开始时固定计划内的依赖关系，执行期间不再读取可变的依赖图
        dependencies = {
            nid: [d for d in self._resolver.get_dependencies(nid) if d in report.results]
            for nid in report.results
        }
        outputs: dict[str, Any] = {}

        for idx, level in enumerate(plan.levels):
            if report.aborted:
                break

            runnable = [nid for nid in level if report.results[nid].status == IndicatorStatus.PENDING]
            self._emit("level_start", {
                "level": idx,
                "indicators": runnable,
                "total": len(level),
            })

            # 信号量限制同时运行的指标数，某个慢指标不会拖住同层其余指标的启动
            slots = asyncio.Semaphore(self._max_parallel)
            await asyncio.gather(*[
                self._run_indicator(nid, report, dependencies[nid], outputs, slots)
                for nid in runnable
            ])

            # --- Barrier reached: the whole level is terminal ---
            # --- 屏障：本层级全部到达终态 ---
            report.levels_completed += 1
            failed = [nid for nid in level if report.results[nid].status == IndicatorStatus.FAILED]
            if failed:
                self._handle_failures(failed, report, dependencies)

            self._emit("level_complete", {"level": idx, "failed": failed})
            logger.info(
                "[Executor] Level %d/%d done (%d ran, %d failed)",
                idx + 1, len(plan.levels), len(runnable), len(failed),
            )

        return report

    # ------------------------------------------------------------------
    # Indicator execution
    # 指标执行
    # ------------------------------------------------------------------

    async def _run_indicator(
        self,
        indicator_id: str,
        report: ExecutionReport,
        dependencies: list[str],
        outputs: dict[str, Any],
        slots: asyncio.Semaphore,
    ) -> None:
        record = report.results[indicator_id]
        inputs = {dep: outputs[dep] for dep in dependencies if dep in outputs}

        start = time.perf_counter()
        try:
            async with slots:
                self._sm.transition(record, IndicatorStatus.RUNNING)
                self._emit("indicator_running", {"id": indicator_id, "level": record.level})
                start = time.perf_counter()
                output = await self._runner(indicator_id, inputs)
        except Exception as exc:
            record.duration_ms = (time.perf_counter() - start) * 1000.0
            record.error = f"{type(exc).__name__}: {exc}"
            self._sm.transition(record, IndicatorStatus.FAILED)
            logger.warning("[Executor] %s failed: %s", indicator_id, record.error)
            self._emit("indicator_failed", {"id": indicator_id, "error": record.error})
            return

        record.duration_ms = (time.perf_counter() - start) * 1000.0
        record.output = output
        outputs[indicator_id] = output
        self._sm.transition(record, IndicatorStatus.COMPLETED)
        self._emit("indicator_completed", {"id": indicator_id, "duration_ms": record.duration_ms})

    # ------------------------------------------------------------------
    # Failure handling
    # 失败处理
    # ------------------------------------------------------------------

    def _handle_failures(
        self,
        failed: list[str],
        report: ExecutionReport,
        dependencies: dict[str, list[str]],
    ) -> None:
        """
        ABORT: skip everything still pending.
        SKIP_DEPENDENTS: skip only the downstream of the failed indicators.

        ABORT：跳过所有仍处于 PENDING 的指标。
        SKIP_DEPENDENTS：仅跳过失败指标的下游。
        """
        if self._policy == FailurePolicy.ABORT:
            report.aborted = True
            targets = [nid for nid, r in report.results.items() if r.status == IndicatorStatus.PENDING]
            reason = "aborted"
        else:
            targets = self._downstream(failed, dependencies)
            reason = "upstream_failed"

        for nid in targets:
            record = report.results[nid]
            if record.status != IndicatorStatus.PENDING:
                continue
            self._sm.transition(record, IndicatorStatus.SKIPPED)
            self._emit("indicator_skipped", {"id": nid, "reason": reason})
            logger.info("[Executor] %s SKIPPED (%s)", nid, reason)

    @staticmethod
    def _downstream(failed: list[str], dependencies: dict[str, list[str]]) -> list[str]:
        """Transitive dependents of `failed` within the plan. 计划内失败指标的传递下游。"""
        dependents: dict[str, list[str]] = {nid: [] for nid in dependencies}
        for nid, deps in dependencies.items():
            for dep in deps:
                dependents[dep].append(nid)

        seen: set[str] = set(failed)
        result: list[str] = []
        stack = list(failed)
        while stack:
            for child in dependents[stack.pop()]:
                if child not in seen:
                    seen.add(child)
                    result.append(child)
                    stack.append(child)
        return result

    # ------------------------------------------------------------------
    # Event helpers
    # 事件辅助方法
    # ------------------------------------------------------------------

    def _on_transition(self, indicator_id: str, old: IndicatorStatus, new: IndicatorStatus) -> None:
        self._emit("indicator_transition", {
            "id": indicator_id,
            "from": old.value,
            "to": new.value,
        })
