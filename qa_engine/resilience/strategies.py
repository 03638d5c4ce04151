"""
Recovery Strategies

One entry per classified failure kind, with API failures split by status
class. Each entry says how many times to retry, how long to wait between
attempts, whether a given failure is worth retrying at all, and which
canned response to fall back to once retries are spent.

    kind           retries  backoff  fallback
    network        3        1000ms   network_issue
    api (429)      1        5000ms   rate_limited
    api (5xx)      2        2000ms   server_error
    api (other)    0        -        unknown
    search         1        500ms    search_failed
    cache          0        -        cache_error
    parsing        0        -        parsing_error
    system         0        -        unknown
"""

from typing import Callable

from pydantic import BaseModel, ConfigDict, Field

from qa_engine.models.errors import ErrorType
from qa_engine.resilience import fallbacks
from qa_engine.resilience.errors import ApiError, QAFailure


class RecoveryStrategy(BaseModel):
    """How to recover from one kind of failure."""

    model_config = ConfigDict(frozen=True)

    name: str
    max_retries: int = Field(..., ge=0)
    backoff_ms: int = Field(default=0, ge=0)
    fallback_key: str
    should_retry: Callable[[QAFailure, int], bool] = Field(
        default=lambda failure, retry_count: True,
        description="Predicate over (failure, retries so far)",
    )


def _retry_unless_quota(failure: QAFailure, retry_count: int) -> bool:
    # Quota exhaustion will not clear within a backoff window
    return not (isinstance(failure, ApiError) and failure.quota)


RECOVERY_TABLE: dict[str, RecoveryStrategy] = {
    "network": RecoveryStrategy(
        name="network_timeout",
        max_retries=3,
        backoff_ms=1000,
        fallback_key=fallbacks.NETWORK_ISSUE,
    ),
    "api_rate_limit": RecoveryStrategy(
        name="api_rate_limit",
        max_retries=1,
        backoff_ms=5000,
        fallback_key=fallbacks.RATE_LIMITED,
        should_retry=_retry_unless_quota,
    ),
    "api_server_error": RecoveryStrategy(
        name="server_error",
        max_retries=2,
        backoff_ms=2000,
        fallback_key=fallbacks.SERVER_ERROR,
    ),
    "api_client_error": RecoveryStrategy(
        name="client_error",
        max_retries=0,
        fallback_key=fallbacks.UNKNOWN,
    ),
    "search": RecoveryStrategy(
        name="search_failed",
        max_retries=1,
        backoff_ms=500,
        fallback_key=fallbacks.SEARCH_FAILED,
    ),
    "cache": RecoveryStrategy(
        name="cache_error",
        max_retries=0,
        fallback_key=fallbacks.CACHE_ERROR,
    ),
    "parsing": RecoveryStrategy(
        name="parsing_error",
        max_retries=0,
        fallback_key=fallbacks.PARSING_ERROR,
    ),
    "system": RecoveryStrategy(
        name="system_error",
        max_retries=0,
        fallback_key=fallbacks.UNKNOWN,
    ),
}


def select_strategy(error_type: ErrorType, failure: QAFailure) -> RecoveryStrategy:
    """Strategy for a classified failure."""
    if error_type == ErrorType.API and isinstance(failure, ApiError):
        if failure.is_rate_limited or failure.quota:
            return RECOVERY_TABLE["api_rate_limit"]
        if failure.is_server_error:
            return RECOVERY_TABLE["api_server_error"]
        return RECOVERY_TABLE["api_client_error"]
    if error_type == ErrorType.API:
        return RECOVERY_TABLE["api_client_error"]
    return RECOVERY_TABLE[error_type.value]
