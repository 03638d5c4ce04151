"""Failure classification, recovery and offline replay."""

from qa_engine.resilience.errors import (
    ApiError,
    CacheError,
    NetworkError,
    ParsingError,
    QAFailure,
    QASystemError,
    SearchError,
)
from qa_engine.resilience.classifier import classify, coerce_failure, determine_severity
from qa_engine.resilience.strategies import RECOVERY_TABLE, RecoveryStrategy, select_strategy
from qa_engine.resilience.offline_queue import DrainReport, OfflineQueue
from qa_engine.resilience.layer import ExecutionResult, RecoveryOutcome, ResilienceLayer

__all__ = [
    # Failure family
    "ApiError",
    "CacheError",
    "NetworkError",
    "ParsingError",
    "QAFailure",
    "QASystemError",
    "SearchError",
    # Classification and recovery
    "RECOVERY_TABLE",
    "RecoveryStrategy",
    "classify",
    "coerce_failure",
    "determine_severity",
    "select_strategy",
    # Offline replay
    "DrainReport",
    "OfflineQueue",
    # Layer
    "ExecutionResult",
    "RecoveryOutcome",
    "ResilienceLayer",
]
