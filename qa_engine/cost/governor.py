"""
Cost Governor

DESIGN DECISION: The generative fallback has a hard per-period allowance.
The governor is the only component that can authorize an escalation, and
the allowance is decremented in the same synchronous step that grants it,
so no interleaving of concurrent resolutions can spend past the cap.

An escalation that later fails is not refunded: the call may have been
billed even if no usable answer came back.

Periods are calendar-aligned in UTC: a daily budget resets at midnight,
a monthly budget on the first of the month. A rollover also resets the
cost ledger.
"""

from datetime import datetime, timedelta
from typing import Any, Callable, Optional

import structlog
from pydantic import ValidationError

from qa_engine.background import BackgroundTasks
from qa_engine.config import BudgetPeriod, BudgetSettings
from qa_engine.cost.ledger import CostLedgerTracker
from qa_engine.models.resolution import (
    BudgetState,
    Completion,
    EscalationAction,
    EscalationDecision,
    utc_now,
)
from qa_engine.services.storage import KeyValueStore, StorageError


logger = structlog.get_logger(__name__)

BUDGET_STORAGE_KEY = "qa_budget_state"


def period_start_for(moment: datetime, period: BudgetPeriod) -> datetime:
    """Start of the budget period containing moment."""
    day_start = moment.replace(hour=0, minute=0, second=0, microsecond=0)
    if period == BudgetPeriod.DAILY:
        return day_start
    return day_start.replace(day=1)


def period_end_for(start: datetime, period: BudgetPeriod) -> datetime:
    """First instant of the period after the one starting at start."""
    if period == BudgetPeriod.DAILY:
        return start + timedelta(days=1)
    if start.month == 12:
        return start.replace(year=start.year + 1, month=1)
    return start.replace(month=start.month + 1)


class CostGovernor:
    """Decides escalate-or-refuse and records generative costs."""

    def __init__(
        self,
        settings: Optional[BudgetSettings] = None,
        ledger: Optional[CostLedgerTracker] = None,
        store: Optional[KeyValueStore] = None,
        background: Optional[BackgroundTasks] = None,
        storage_key: str = BUDGET_STORAGE_KEY,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._settings = settings or BudgetSettings()
        self._ledger = ledger or CostLedgerTracker(clock=clock)
        self._store = store
        self._background = background
        self._storage_key = storage_key
        self._clock = clock
        self._state = BudgetState(period_start=period_start_for(clock(), self._settings.period))

    @property
    def settings(self) -> BudgetSettings:
        return self._settings

    @property
    def ledger(self) -> CostLedgerTracker:
        return self._ledger

    @property
    def remaining(self) -> int:
        self._roll_over_if_needed()
        return max(self._settings.allowance - self._state.escalations_used, 0)

    @property
    def period_end(self) -> datetime:
        self._roll_over_if_needed()
        return period_end_for(self._state.period_start, self._settings.period)

    def _roll_over_if_needed(self) -> None:
        current_start = period_start_for(self._clock(), self._settings.period)
        if self._state.period_start >= current_start:
            return

        logger.info(
            "budget_period_rolled_over",
            previous_start=self._state.period_start.isoformat(),
            new_start=current_start.isoformat(),
            escalations_used=self._state.escalations_used,
        )
        self._state = BudgetState(period_start=current_start)
        self._ledger.reset(current_start)
        self._schedule_save()

    def decide(self, local_top_score: float) -> EscalationDecision:
        """
        Escalate, stay local, or refuse.

        A confident local answer never escalates; otherwise escalation is
        granted while allowance remains and consumes one unit immediately.
        """
        score = max(local_top_score, 0.0)

        if score >= self._settings.escalation_threshold:
            action = EscalationAction.LOCAL
        elif self.remaining > 0:
            self._state.escalations_used += 1
            self._schedule_save()
            action = EscalationAction.ESCALATE
        else:
            action = EscalationAction.QUOTA_EXCEEDED

        decision = EscalationDecision(
            action=action,
            local_score=score,
            remaining=self.remaining,
            period_end=self.period_end,
        )
        logger.info(
            "budget_decision",
            action=action.value,
            local_score=round(score, 4),
            remaining=decision.remaining,
        )
        return decision

    def record_generation(self, completion: Completion) -> float:
        """Charge a generative call to the ledger; returns its cost."""
        cost = self._settings.token_cost(completion.input_tokens, completion.output_tokens)
        self._ledger.record_generation(cost)
        return cost

    def snapshot(self) -> dict[str, Any]:
        """Budget and ledger state for display."""
        ledger = self._ledger.ledger
        return {
            "period": self._settings.period.value,
            "period_start": self._state.period_start.isoformat(),
            "period_end": self.period_end.isoformat(),
            "allowance": self._settings.allowance,
            "used": self._state.escalations_used,
            "remaining": self.remaining,
            "escalation_threshold": self._settings.escalation_threshold,
            "accrued_cost": ledger.accrued_cost,
            "total_cost_savings": ledger.total_cost_savings,
            "generation_count": ledger.generation_count,
        }

    def _schedule_save(self) -> None:
        if self._store is not None and self._background is not None:
            self._background.spawn(self.save(), name="budget_save")

    async def save(self) -> None:
        if self._store is None:
            return
        try:
            await self._store.set(self._storage_key, self._state.model_dump_json())
        except StorageError as e:
            logger.warning("budget_persist_failed", error=str(e))

    async def load(self) -> None:
        """Restore persisted usage, then apply any pending rollover."""
        if self._store is not None:
            try:
                raw = await self._store.get(self._storage_key)
            except StorageError as e:
                logger.warning("budget_load_failed", error=str(e))
                raw = None
            if raw:
                try:
                    self._state = BudgetState.model_validate_json(raw)
                except ValidationError as e:
                    logger.warning("budget_state_corrupted", error=str(e))
        self._roll_over_if_needed()
