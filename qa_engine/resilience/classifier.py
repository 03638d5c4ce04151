"""
Failure Classification

Maps a failure to its kind and severity. Both are pure functions of the
failure and the current connectivity state.

Severity:
    critical  5xx, or explicitly marked critical
    high      429, or quota exhaustion
    medium    other 4xx, or offline
    low       everything else
"""

import asyncio
import json

from pydantic import ValidationError

from qa_engine.models.errors import ErrorSeverity, ErrorType
from qa_engine.resilience.errors import (
    ApiError,
    CacheError,
    NetworkError,
    ParsingError,
    QAFailure,
    QASystemError,
)
from qa_engine.services.storage.interface import StorageConnectionError, StorageError


def coerce_failure(error: BaseException) -> QAFailure:
    """Convert any exception into a member of the failure family."""
    if isinstance(error, QAFailure):
        return error
    if isinstance(error, (asyncio.TimeoutError, TimeoutError)):
        return NetworkError(str(error) or "Request timed out", timeout=True)
    if isinstance(error, ConnectionError):
        return NetworkError(str(error))
    if isinstance(error, StorageConnectionError):
        return NetworkError(str(error))
    if isinstance(error, StorageError):
        return CacheError(str(error))
    if isinstance(error, (json.JSONDecodeError, ValidationError)):
        return ParsingError(str(error))
    return QASystemError(f"{type(error).__name__}: {error}")


def classify(failure: QAFailure, online: bool = True) -> ErrorType:
    """
    Kind of a failure.

    While offline every failure is a network failure, whatever the
    boundary reported.
    """
    if not online:
        return ErrorType.NETWORK
    return failure.kind


def determine_severity(failure: QAFailure, online: bool = True) -> ErrorSeverity:
    """Severity of a failure; HIGH and CRITICAL are surfaced to operators."""
    if failure.critical:
        return ErrorSeverity.CRITICAL

    if isinstance(failure, ApiError):
        if failure.is_server_error:
            return ErrorSeverity.CRITICAL
        if failure.is_rate_limited or failure.quota:
            return ErrorSeverity.HIGH
        if failure.is_client_error:
            return ErrorSeverity.MEDIUM

    if not online:
        return ErrorSeverity.MEDIUM

    return ErrorSeverity.LOW
