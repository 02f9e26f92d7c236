"""
Indicator State Machine - Validates and enforces indicator run transitions.
指标状态机 —— 校验并强制执行指标在计划执行期间的合法状态转移。

The transition table is the single source of truth for what state changes
are legal. Any invalid transition raises InvalidTransitionError, so an
indicator can never be reported twice or run after being skipped.
转移表是合法状态变化的唯一权威来源。
任何非法转移都会抛出 InvalidTransitionError，保证指标不会被重复上报，也不会在被跳过后执行。

Transition graph:
转移图：
    PENDING ──> RUNNING ──> COMPLETED   (happy path / 正常路径)
                        ──> FAILED
    PENDING ──────────────> SKIPPED     (upstream failed or run aborted / 上游失败或执行终止)
"""

from __future__ import annotations

import logging
from typing import Callable

from schema import IndicatorRunResult, IndicatorStatus

logger = logging.getLogger(__name__)


class InvalidTransitionError(Exception):
    """
    Raised when an illegal state transition is attempted.
    当尝试非法状态转移时抛出此异常。
    """
    pass


VALID_TRANSITIONS: dict[IndicatorStatus, set[IndicatorStatus]] = {
    IndicatorStatus.PENDING:   {IndicatorStatus.RUNNING, IndicatorStatus.SKIPPED},
    IndicatorStatus.RUNNING:   {IndicatorStatus.COMPLETED, IndicatorStatus.FAILED},
    # Terminal states — no further transitions allowed
    # 终态——不允许任何进一步转移
    IndicatorStatus.COMPLETED: set(),
    IndicatorStatus.FAILED:    set(),
    IndicatorStatus.SKIPPED:   set(),
}

TERMINAL_STATES = frozenset(s for s, targets in VALID_TRANSITIONS.items() if not targets)


class IndicatorStateMachine:
    """
    Validates and applies indicator state transitions.
    校验并应用指标状态转移。
    """

    def __init__(
        self,
        on_transition: Callable[[str, IndicatorStatus, IndicatorStatus], None] | None = None,
    ):
        """
        Args:
            on_transition: Optional callback(indicator_id, old_status, new_status).
            on_transition: 可选回调 callback(指标 ID, 旧状态, 新状态)。
        """
        self._on_transition = on_transition

    def can_transition(self, record: IndicatorRunResult, new_status: IndicatorStatus) -> bool:
        return new_status in VALID_TRANSITIONS.get(record.status, set())

    def transition(self, record: IndicatorRunResult, new_status: IndicatorStatus) -> None:
        """
        Apply a state transition. Raises InvalidTransitionError if illegal.
        应用状态转移。若转移非法则抛出 InvalidTransitionError。
        """
        if not self.can_transition(record, new_status):
            raise InvalidTransitionError(
                f"Indicator '{record.indicator_id}': cannot transition from "
                f"{record.status.value} to {new_status.value}. "
                f"Valid targets: {sorted(s.value for s in VALID_TRANSITIONS.get(record.status, set()))}"
            )

        old_status = record.status
        record.status = new_status

        logger.debug("[SM] %s: %s -> %s", record.indicator_id, old_status.value, new_status.value)

        if self._on_transition:
            try:
                self._on_transition(record.indicator_id, old_status, new_status)
            except Exception:
                # 回调异常不能影响执行流程
                logger.exception("[SM] Transition callback failed for %s", record.indicator_id)
