"""
Resilience Layer

DESIGN DECISION: Every failure is converted at the boundary that produced
it into exactly one of:
1. A retry signal, consumed internally by `execute`
2. A degraded but usable response (canned text plus browse topics)
3. A logged-and-swallowed side effect (handled by the callers of
   best-effort writes)

Every handled failure is recorded in a bounded ring buffer. HIGH and
CRITICAL failures are additionally raised to operators through the
audit trail. The layer also owns the offline replay queue and drains it
when connectivity returns.
"""

import asyncio
from collections import Counter, deque
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar

import structlog
from pydantic import BaseModel

from qa_engine.audit import AuditLogger
from qa_engine.background import BackgroundTasks
from qa_engine.config import ResilienceSettings
from qa_engine.models.errors import (
    FallbackResponse,
    OfflineActionKind,
    OfflineQueueItem,
    QAError,
)
from qa_engine.resilience import fallbacks
from qa_engine.resilience.classifier import classify, coerce_failure, determine_severity
from qa_engine.resilience.errors import NetworkError, QAFailure
from qa_engine.resilience.offline_queue import DrainReport, OfflineQueue, ReplayHandler
from qa_engine.resilience.strategies import RecoveryStrategy, select_strategy
from qa_engine.services.connectivity import ConnectivityMonitor


logger = structlog.get_logger(__name__)

T = TypeVar("T")


class RecoveryOutcome(BaseModel):
    """Decision taken for one handled failure."""

    error: QAError
    strategy: str
    should_retry: bool
    backoff_ms: int = 0
    fallback: Optional[FallbackResponse] = None


class ExecutionResult(BaseModel, Generic[T]):
    """Either the operation's value or the fallback that replaced it."""

    value: Optional[T] = None
    fallback: Optional[FallbackResponse] = None
    error: Optional[QAError] = None
    attempts: int = 1

    @property
    def succeeded(self) -> bool:
        return self.fallback is None


class ResilienceLayer:
    """Classification, recovery, error log and offline replay."""

    def __init__(
        self,
        settings: Optional[ResilienceSettings] = None,
        connectivity: Optional[ConnectivityMonitor] = None,
        offline_queue: Optional[OfflineQueue] = None,
        audit_logger: Optional[AuditLogger] = None,
        background: Optional[BackgroundTasks] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._settings = settings or ResilienceSettings()
        self._connectivity = connectivity or ConnectivityMonitor()
        self._audit = audit_logger or AuditLogger()
        if offline_queue is None:
            # An empty queue is falsy, so test against None
            offline_queue = OfflineQueue(
                max_retries=self._settings.offline_max_retries,
                audit_logger=self._audit,
            )
        self._offline_queue = offline_queue
        self._background = background or BackgroundTasks()
        self._sleep = sleep
        self._errors: deque[QAError] = deque(maxlen=self._settings.error_log_size)
        self._unsubscribe = self._connectivity.subscribe(self._on_connectivity_change)

    @property
    def is_online(self) -> bool:
        return self._connectivity.is_online

    @property
    def offline_queue(self) -> OfflineQueue:
        return self._offline_queue

    @property
    def timeout_seconds(self) -> float:
        return self._settings.request_timeout_seconds

    def close(self) -> None:
        self._unsubscribe()

    # ------------------------------------------------------------------
    # Failure handling
    # ------------------------------------------------------------------

    async def handle_error(
        self,
        error: BaseException,
        context: Optional[dict[str, Any]] = None,
        retry_count: int = 0,
    ) -> RecoveryOutcome:
        """
        Log a failure and decide what happens next.

        Returns a retry signal while the strategy allows it; otherwise the
        fallback response, with the logged error marked recovered.
        """
        online = self.is_online
        failure = coerce_failure(error)
        error_type = classify(failure, online)
        severity = determine_severity(failure, online)
        strategy = select_strategy(error_type, failure)

        record = QAError(
            error_type=error_type,
            severity=severity,
            message=failure.message or str(failure),
            user_message=fallbacks.USER_MESSAGES[error_type],
            status=getattr(failure, "status", None),
            context={**failure.context, **(context or {})},
            retry_count=retry_count,
        )
        self._errors.append(record)

        logger.warning(
            "qa_error_handled",
            error_id=str(record.id),
            error_type=error_type.value,
            severity=severity.value,
            strategy=strategy.name,
            retry_count=retry_count,
            message=record.message,
        )
        if severity.alerts_operators:
            await self._audit.log_operator_alert(
                error_type=error_type.value,
                severity=severity.value,
                error_message=record.message,
                details={"strategy": strategy.name, "retry_count": retry_count, **record.context},
            )

        if online and self._may_retry(strategy, failure, retry_count):
            return RecoveryOutcome(
                error=record,
                strategy=strategy.name,
                should_retry=True,
                backoff_ms=strategy.backoff_ms,
            )

        fallback_key = strategy.fallback_key if online else fallbacks.OFFLINE
        record.recovered = True
        return RecoveryOutcome(
            error=record,
            strategy=strategy.name,
            should_retry=False,
            fallback=fallbacks.get_fallback(fallback_key),
        )

    @staticmethod
    def _may_retry(strategy: RecoveryStrategy, failure: QAFailure, retry_count: int) -> bool:
        return retry_count < strategy.max_retries and strategy.should_retry(failure, retry_count)

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        context: Optional[dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> ExecutionResult[T]:
        """
        Run operation under its recovery strategy.

        Retries at most max_retries times, sleeping backoff_ms between
        attempts, then falls back exactly once. A timeout is a network
        failure.
        """
        retry_count = 0
        while True:
            try:
                if timeout is not None:
                    value = await asyncio.wait_for(operation(), timeout)
                else:
                    value = await operation()
                return ExecutionResult(value=value, attempts=retry_count + 1)
            except asyncio.TimeoutError as e:
                failure = NetworkError(f"Timed out after {timeout}s", timeout=True) if timeout else e
                outcome = await self.handle_error(failure, context, retry_count)
            except Exception as e:
                outcome = await self.handle_error(e, context, retry_count)

            if not outcome.should_retry:
                return ExecutionResult(
                    fallback=outcome.fallback,
                    error=outcome.error,
                    attempts=retry_count + 1,
                )

            await self._sleep(outcome.backoff_ms / 1000)
            retry_count += 1

    # ------------------------------------------------------------------
    # Error log
    # ------------------------------------------------------------------

    def recent_errors(self, limit: Optional[int] = None) -> list[QAError]:
        """Logged errors, oldest first."""
        errors = list(self._errors)
        return errors[-limit:] if limit else errors

    def clear_error_log(self) -> None:
        self._errors.clear()

    def error_statistics(self) -> dict[str, Any]:
        """Counts by kind and severity, recovery rate and the ten latest errors."""
        errors = list(self._errors)
        recovered = sum(1 for error in errors if error.recovered)
        return {
            "total_errors": len(errors),
            "by_type": dict(Counter(error.error_type.value for error in errors)),
            "by_severity": dict(Counter(error.severity.value for error in errors)),
            "recovery_rate": recovered / len(errors) if errors else 0.0,
            "recent_errors": [
                error.model_dump(mode="json") for error in reversed(errors[-10:])
            ],
        }

    # ------------------------------------------------------------------
    # Offline replay
    # ------------------------------------------------------------------

    async def queue_offline(
        self,
        action: OfflineActionKind,
        payload: dict[str, Any],
    ) -> OfflineQueueItem:
        return await self._offline_queue.enqueue(action, payload)

    def register_replay_handler(self, action: OfflineActionKind, handler: ReplayHandler) -> None:
        self._offline_queue.register_handler(action, handler)

    async def replay_offline_queue(self) -> DrainReport:
        return await self._offline_queue.drain()

    def _on_connectivity_change(self, online: bool) -> None:
        if online and len(self._offline_queue):
            self._background.spawn(self.replay_offline_queue(), name="offline_replay")

    def offline_queue_status(self) -> dict[str, Any]:
        return {"online": self.is_online, **self._offline_queue.status()}
