"""
Resolution Models

Everything that flows between a question arriving and an answer leaving:
cache entries, the cost ledger, budget decisions and the final response.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


def utc_now() -> datetime:
    """Timezone-aware current time. Used as the default clock everywhere."""
    return datetime.now(timezone.utc)


class AnswerSource(str, Enum):
    """Where an answer came from."""
    CACHE = "cache"
    FAQ = "faq"
    LLM = "llm"
    FALLBACK = "fallback"


class CacheEntryType(str, Enum):
    """What produced a cached answer."""
    FAQ = "faq"
    LLM = "llm"


class ResolutionState(str, Enum):
    """
    States of the per-query resolution state machine.

    RETURN and FALLBACK_RESPONSE are terminal.
    """
    NORMALIZE = "normalize"
    CACHE_LOOKUP = "cache_lookup"
    LOCAL_SEARCH = "local_search"
    ESCALATE = "escalate"
    CACHE_AND_RETURN = "cache_and_return"
    RETURN = "return"
    FALLBACK_RESPONSE = "fallback_response"


class CachedAnswer(BaseModel):
    """The payload stored in a cache entry."""

    text: str
    source: AnswerSource
    suggestions: list[str] = Field(default_factory=list)
    faq_id: Optional[str] = None
    category: Optional[str] = None
    confidence: Optional[float] = None


class CacheEntry(BaseModel):
    """
    A previously computed answer for one normalized query.

    At most one live entry exists per key.
    """

    key: str = Field(..., min_length=1)
    query: str = Field(
        default="",
        description="Original query text that created the entry"
    )
    entry_type: CacheEntryType
    payload: CachedAnswer
    created_at: datetime = Field(default_factory=utc_now)
    last_accessed_at: datetime = Field(default_factory=utc_now)
    hit_count: int = Field(default=0, ge=0)
    cost_saving: float = Field(
        default=0.0,
        ge=0.0,
        description="Estimated cost avoided each time this entry is served"
    )

    def is_expired(self, now: datetime, ttl_seconds: float) -> bool:
        return (now - self.created_at).total_seconds() >= ttl_seconds


class CostLedger(BaseModel):
    """
    Process-wide usage and cost counters.

    Invariant: cache_hits + cache_misses == total_queries.
    """

    total_queries: int = Field(default=0, ge=0)
    cache_hits: int = Field(default=0, ge=0)
    cache_misses: int = Field(default=0, ge=0)
    total_cost_savings: float = Field(default=0.0, ge=0.0)
    accrued_cost: float = Field(default=0.0, ge=0.0)
    generation_count: int = Field(default=0, ge=0)
    avg_response_time_ms: float = Field(default=0.0, ge=0.0)
    period_start: datetime = Field(default_factory=utc_now)

    @property
    def hit_rate(self) -> float:
        if self.total_queries == 0:
            return 0.0
        return self.cache_hits / self.total_queries


class BudgetState(BaseModel):
    """Persisted escalation allowance usage for the current period."""

    period_start: datetime = Field(default_factory=utc_now)
    escalations_used: int = Field(default=0, ge=0)


class EscalationAction(str, Enum):
    """Outcome of a budget decision."""
    LOCAL = "local"
    ESCALATE = "escalate"
    QUOTA_EXCEEDED = "quota_exceeded"


class EscalationDecision(BaseModel):
    """A budget decision and the state it was made against."""

    action: EscalationAction
    local_score: float = Field(..., ge=0.0)
    remaining: int = Field(
        ...,
        ge=0,
        description="Allowance left after this decision"
    )
    period_end: datetime


class Completion(BaseModel):
    """Output of a generative fallback call."""

    text: str
    input_tokens: int = Field(default=0, ge=0)
    output_tokens: int = Field(default=0, ge=0)
    model: Optional[str] = None


class QAResponse(BaseModel):
    """
    The answer handed back to the caller.

    This is the only thing `resolve` ever returns; it never raises.
    """

    query: str
    text: str
    source: AnswerSource
    suggestions: list[str] = Field(default_factory=list)
    faq_id: Optional[str] = None
    category: Optional[str] = None
    match_type: Optional[str] = None
    confidence: Optional[float] = None
    fallback_key: Optional[str] = None
    trace: list[ResolutionState] = Field(
        default_factory=list,
        description="States visited while resolving, in order"
    )
    response_time_ms: float = 0.0
    details: dict[str, Any] = Field(default_factory=dict)

    @property
    def is_degraded(self) -> bool:
        return self.source == AnswerSource.FALLBACK
