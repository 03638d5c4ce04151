"""
Audit and Analytics Event Models

Every resolution step, user signal and handled failure becomes an event.
This provides:
1. Traceability of where each answer came from
2. The analytics stream (result clicks, feedback) for corpus curation
3. Operator alerts for high-severity failures

DESIGN DECISION: Events are append-only. The sink never edits or deletes them.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from qa_engine.models.resolution import utc_now


class AuditEventType(str, Enum):
    """Types of events we record."""
    # Resolution
    QUERY_RESOLVED = "query_resolved"
    CACHE_HIT = "cache_hit"
    ESCALATED = "escalated"
    QUOTA_EXCEEDED = "quota_exceeded"
    FALLBACK_SERVED = "fallback_served"

    # User signals
    FEEDBACK_SUBMITTED = "feedback_submitted"
    RESULT_SELECTED = "result_selected"

    # Offline replay
    OFFLINE_QUEUED = "offline_queued"
    OFFLINE_REPLAYED = "offline_replayed"
    OFFLINE_DROPPED = "offline_dropped"

    # System events
    OPERATOR_ALERT = "operator_alert"
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit/analytics event.

    Every significant action creates one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=utc_now,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType
    severity: AuditSeverity = AuditSeverity.INFO

    # What the event is about: a query key, an FAQ id, a queue item id
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None

    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate events of one resolution"
    )

    description: str = Field(..., max_length=500)
    details: dict[str, Any] = Field(default_factory=dict)
    error_message: Optional[str] = None
    is_user_action: bool = False

    def to_log_dict(self) -> dict:
        """Convert to a dictionary suitable for structured logging."""
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }

    def to_sheets_row(self) -> list:
        """
        Convert to a row for the events worksheet.

        Columns follow EVENT_COLUMNS in services/storage/google_sheets.py.
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.entity_type or "",
            self.entity_id or "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(self.details, default=str) if self.details else "",
            self.error_message or "",
            str(self.is_user_action),
        ]


class AuditEventBuilder:
    """
    Helper class to build events with common patterns.

    Usage:
        event = AuditEventBuilder.query_resolved(key, "faq", 12.5, correlation_id)
        event = AuditEventBuilder.feedback_submitted("tfsa-vs-rrsp", True, None)
    """

    @staticmethod
    def query_resolved(
        query_key: str,
        source: str,
        response_time_ms: float,
        correlation_id: Optional[UUID] = None,
        faq_id: Optional[str] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.QUERY_RESOLVED,
            entity_type="query",
            entity_id=query_key,
            correlation_id=correlation_id,
            description=f"Query answered from {source}",
            details={
                "source": source,
                "faq_id": faq_id,
                "response_time_ms": round(response_time_ms, 2),
            },
            is_user_action=True,
        )

    @staticmethod
    def cache_hit(
        query_key: str,
        hit_count: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CACHE_HIT,
            entity_type="query",
            entity_id=query_key,
            correlation_id=correlation_id,
            description=f"Cached answer served (hit #{hit_count})",
            details={"hit_count": hit_count},
        )

    @staticmethod
    def escalated(
        query_key: str,
        local_score: float,
        remaining: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ESCALATED,
            entity_type="query",
            entity_id=query_key,
            correlation_id=correlation_id,
            description=f"Escalated to generative fallback (local score {local_score:.2f})",
            details={
                "local_score": local_score,
                "remaining_allowance": remaining,
            },
        )

    @staticmethod
    def quota_exceeded(
        query_key: str,
        local_score: float,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.QUOTA_EXCEEDED,
            severity=AuditSeverity.WARNING,
            entity_type="query",
            entity_id=query_key,
            correlation_id=correlation_id,
            description="Generative fallback refused: allowance exhausted",
            details={"local_score": local_score},
        )

    @staticmethod
    def fallback_served(
        query_key: str,
        fallback_key: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.FALLBACK_SERVED,
            severity=AuditSeverity.WARNING,
            entity_type="query",
            entity_id=query_key,
            correlation_id=correlation_id,
            description=f"Degraded answer served: {fallback_key}",
            details={"fallback_key": fallback_key},
        )

    @staticmethod
    def feedback_submitted(
        faq_id: str,
        helpful: bool,
        comment: Optional[str],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.FEEDBACK_SUBMITTED,
            entity_type="faq",
            entity_id=faq_id,
            correlation_id=correlation_id,
            description=f"User marked answer as {'helpful' if helpful else 'not helpful'}",
            details={
                "helpful": helpful,
                "comment": comment or "",
            },
            is_user_action=True,
        )

    @staticmethod
    def result_selected(
        faq_id: str,
        query: str,
        position: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RESULT_SELECTED,
            entity_type="faq",
            entity_id=faq_id,
            correlation_id=correlation_id,
            description=f"Search result #{position + 1} opened",
            details={
                "query": query,
                "position": position,
            },
            is_user_action=True,
        )

    @staticmethod
    def offline_event(
        event_type: AuditEventType,
        item_id: UUID,
        action: str,
        retry_count: int,
    ) -> AuditEvent:
        severity = (
            AuditSeverity.WARNING
            if event_type == AuditEventType.OFFLINE_DROPPED
            else AuditSeverity.INFO
        )
        return AuditEvent(
            event_type=event_type,
            severity=severity,
            entity_type="offline_item",
            entity_id=str(item_id),
            description=f"Offline {action} {event_type.value.removeprefix('offline_')}",
            details={
                "action": action,
                "retry_count": retry_count,
            },
        )

    @staticmethod
    def operator_alert(
        error_type: str,
        severity: str,
        error_message: str,
        details: Optional[dict] = None,
    ) -> AuditEvent:
        audit_severity = (
            AuditSeverity.CRITICAL if severity == "critical" else AuditSeverity.ERROR
        )
        return AuditEvent(
            event_type=AuditEventType.OPERATOR_ALERT,
            severity=audit_severity,
            description=f"{severity.capitalize()} {error_type} failure",
            error_message=error_message,
            details=details or {},
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
