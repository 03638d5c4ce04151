"""
Data Models Package

This package contains all Pydantic models used in the QA resolution engine.
All data flowing through the engine must conform to these schemas.
"""

from qa_engine.models.faq import (
    FAQCategory,
    FAQCorpus,
    FAQEntry,
    FuzzyMatchResult,
    MatchType,
    SearchResult,
)
from qa_engine.models.resolution import (
    AnswerSource,
    BudgetState,
    CachedAnswer,
    CacheEntry,
    CacheEntryType,
    Completion,
    CostLedger,
    EscalationAction,
    EscalationDecision,
    QAResponse,
    ResolutionState,
    utc_now,
)
from qa_engine.models.errors import (
    ErrorSeverity,
    ErrorType,
    FallbackResponse,
    OfflineActionKind,
    OfflineQueueItem,
    QAError,
)
from qa_engine.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # FAQ models
    "FAQCategory",
    "FAQCorpus",
    "FAQEntry",
    "FuzzyMatchResult",
    "MatchType",
    "SearchResult",
    # Resolution models
    "AnswerSource",
    "BudgetState",
    "CachedAnswer",
    "CacheEntry",
    "CacheEntryType",
    "Completion",
    "CostLedger",
    "EscalationAction",
    "EscalationDecision",
    "QAResponse",
    "ResolutionState",
    "utc_now",
    # Error models
    "ErrorSeverity",
    "ErrorType",
    "FallbackResponse",
    "OfflineActionKind",
    "OfflineQueueItem",
    "QAError",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
