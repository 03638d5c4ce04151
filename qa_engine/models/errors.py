"""
Error and Offline Models

Records kept by the resilience layer: handled errors, deferred offline
actions, and the canned responses served when nothing better exists.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from qa_engine.models.resolution import utc_now


class ErrorType(str, Enum):
    """Classified kind of a handled failure."""
    NETWORK = "network"
    API = "api"
    CACHE = "cache"
    SEARCH = "search"
    PARSING = "parsing"
    SYSTEM = "system"


class ErrorSeverity(str, Enum):
    """Severity of a handled failure. HIGH and CRITICAL alert operators."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def alerts_operators(self) -> bool:
        return self in (ErrorSeverity.HIGH, ErrorSeverity.CRITICAL)


class QAError(BaseModel):
    """
    One handled failure.

    Appended to the bounded error log on every failure the resilience
    layer sees, whether or not it was retried.
    """

    id: UUID = Field(default_factory=uuid4)
    timestamp: datetime = Field(default_factory=utc_now)
    error_type: ErrorType
    severity: ErrorSeverity
    message: str
    user_message: str = ""
    status: Optional[int] = Field(
        default=None,
        description="HTTP-like status for api errors"
    )
    context: dict[str, Any] = Field(default_factory=dict)
    recovered: bool = False
    retry_count: int = Field(default=0, ge=0)


class OfflineActionKind(str, Enum):
    """Actions that can be deferred while offline."""
    QUERY = "query"
    FEEDBACK = "feedback"
    ANALYTICS = "analytics"


class OfflineQueueItem(BaseModel):
    """
    An action deferred until connectivity returns.

    retry_count only ever grows; the item is dropped once it reaches
    the configured cap.
    """

    id: UUID = Field(default_factory=uuid4)
    enqueued_at: datetime = Field(default_factory=utc_now)
    action: OfflineActionKind
    payload: dict[str, Any] = Field(default_factory=dict)
    retry_count: int = Field(default=0, ge=0)


class FallbackResponse(BaseModel):
    """A canned, still-useful answer plus suggested help categories."""

    key: str
    text: str
    suggestions: list[str] = Field(default_factory=list)
