"""
Audit Logger

DESIGN DECISION: Every resolution, user signal and handled failure is logged.
This provides:
1. Traceability of where each answer came from
2. An analytics stream for improving the FAQ corpus
3. Operator alerts for high-severity failures

The audit logger:
- Always writes a structured local log line
- Forwards to the event sink when one is configured
- Never lets a sink failure reach the user-facing query (`log`)
- Offers `deliver` for callers that must know whether the sink accepted
  the event (offline replay needs that to decide retry vs done)
"""

from typing import Optional
from uuid import UUID, uuid4

import structlog

from qa_engine.models.audit import AuditEvent, AuditEventBuilder, AuditEventType, AuditSeverity
from qa_engine.services.storage import EventSinkInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. The event sink (for persistence and analytics)
    """

    def __init__(
        self,
        sink: Optional[EventSinkInterface] = None,
    ):
        """
        Args:
            sink: Event sink for persistence.
                  If None, only logs locally.
        """
        self._sink = sink
        self._logger = structlog.get_logger(__name__)

    @property
    def has_sink(self) -> bool:
        return self._sink is not None

    def _log_locally(self, event: AuditEvent) -> None:
        log_dict = event.to_log_dict()
        if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

    async def deliver(self, event: AuditEvent) -> bool:
        """
        Log locally and forward to the sink, propagating sink failures.

        Raises:
            StorageError: If the sink rejects or cannot be reached
        """
        self._log_locally(event)
        if self._sink:
            return await self._sink.append_event(event)
        return True

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Returns True if the sink write succeeded (or no sink configured).
        """
        try:
            return await self.deliver(event)
        except Exception as e:
            # Log failure but don't raise
            self._logger.error(
                "audit_sink_failed",
                error=str(e),
                event_id=str(event.event_id),
                event_type=event.event_type.value,
            )
            return False

    async def log_query_resolved(
        self,
        query_key: str,
        source: str,
        response_time_ms: float,
        correlation_id: Optional[UUID] = None,
        faq_id: Optional[str] = None,
    ) -> None:
        event = AuditEventBuilder.query_resolved(
            query_key=query_key,
            source=source,
            response_time_ms=response_time_ms,
            correlation_id=correlation_id,
            faq_id=faq_id,
        )
        await self.log(event)

    async def log_cache_hit(
        self,
        query_key: str,
        hit_count: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.cache_hit(query_key, hit_count, correlation_id))

    async def log_escalated(
        self,
        query_key: str,
        local_score: float,
        remaining: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(
            AuditEventBuilder.escalated(query_key, local_score, remaining, correlation_id)
        )

    async def log_quota_exceeded(
        self,
        query_key: str,
        local_score: float,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.quota_exceeded(query_key, local_score, correlation_id))

    async def log_fallback_served(
        self,
        query_key: str,
        fallback_key: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.fallback_served(query_key, fallback_key, correlation_id))

    async def log_offline_event(
        self,
        event_type: AuditEventType,
        item_id: UUID,
        action: str,
        retry_count: int,
    ) -> None:
        """Log an offline queue transition (queued, replayed or dropped)."""
        await self.log(
            AuditEventBuilder.offline_event(event_type, item_id, action, retry_count)
        )

    async def log_operator_alert(
        self,
        error_type: str,
        severity: str,
        error_message: str,
        details: Optional[dict] = None,
    ) -> None:
        """Surface a high or critical failure to operators."""
        await self.log(
            AuditEventBuilder.operator_alert(error_type, severity, error_message, details)
        )

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        event = AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        )
        await self.log(event)


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a resolution and pass it through every stage.
    """
    return uuid4()
