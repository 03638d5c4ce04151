"""
Cost Ledger Tracking

Process-wide usage counters: queries, cache hits and misses, cost
avoided, cost incurred and a rolling average response time.

Every mutation is synchronous, so a counter update always completes
before the caller's next await. Persistence is scheduled afterwards as
best-effort background work.
"""

from datetime import datetime
from typing import Callable, Optional

import structlog
from pydantic import ValidationError

from qa_engine.background import BackgroundTasks
from qa_engine.models.resolution import CostLedger, utc_now
from qa_engine.services.storage import KeyValueStore, StorageError


logger = structlog.get_logger(__name__)

LEDGER_STORAGE_KEY = "qa_cache_metrics"


class CostLedgerTracker:
    """Owns the CostLedger and its persistence."""

    def __init__(
        self,
        store: Optional[KeyValueStore] = None,
        background: Optional[BackgroundTasks] = None,
        storage_key: str = LEDGER_STORAGE_KEY,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._store = store
        self._background = background
        self._storage_key = storage_key
        self._clock = clock
        self._ledger = CostLedger(period_start=clock())
        self._response_samples = 0

    @property
    def ledger(self) -> CostLedger:
        """Copy of the current counters."""
        return self._ledger.model_copy()

    def record_lookup(self, hit: bool) -> None:
        self._ledger.total_queries += 1
        if hit:
            self._ledger.cache_hits += 1
        else:
            self._ledger.cache_misses += 1
        self._schedule_save()

    def record_response_time(self, response_time_ms: float) -> None:
        self._response_samples += 1
        previous = self._ledger.avg_response_time_ms
        self._ledger.avg_response_time_ms = previous + (response_time_ms - previous) / self._response_samples
        self._schedule_save()

    def credit_savings(self, amount: float) -> None:
        self._ledger.total_cost_savings += amount
        self._schedule_save()

    def record_generation(self, cost: float) -> None:
        self._ledger.accrued_cost += cost
        self._ledger.generation_count += 1
        self._schedule_save()

    def reset(self, period_start: Optional[datetime] = None) -> None:
        """Start a new period with zeroed counters."""
        self._ledger = CostLedger(period_start=period_start or self._clock())
        self._response_samples = 0
        self._schedule_save()

    def _schedule_save(self) -> None:
        if self._store is not None and self._background is not None:
            self._background.spawn(self.save(), name="ledger_save")

    async def save(self) -> None:
        if self._store is None:
            return
        try:
            await self._store.set(self._storage_key, self._ledger.model_dump_json())
        except StorageError as e:
            logger.warning("ledger_persist_failed", error=str(e))

    async def load(self) -> None:
        """Restore persisted counters. Corrupted state is treated as absent."""
        if self._store is None:
            return
        try:
            raw = await self._store.get(self._storage_key)
        except StorageError as e:
            logger.warning("ledger_load_failed", error=str(e))
            return
        if not raw:
            return

        try:
            self._ledger = CostLedger.model_validate_json(raw)
        except ValidationError as e:
            logger.warning("ledger_corrupted", error=str(e))
            return
        self._response_samples = self._ledger.total_queries
