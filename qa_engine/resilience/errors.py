"""
Failure Types

DESIGN DECISION: Failures are a closed family of exception types raised at
each external-call boundary:

    NetworkError(timeout) | ApiError(status) | CacheError
    | SearchError | ParsingError | QASystemError

Classification is then a total, pure function over a known type rather
than substring matching on error messages. Anything foreign is converted
exactly once, by `coerce_failure` in classifier.py.
"""

from typing import Any, Optional

from qa_engine.models.errors import ErrorType


class QAFailure(Exception):
    """Base class of every failure the resilience layer understands."""

    kind: ErrorType = ErrorType.SYSTEM

    def __init__(
        self,
        message: str = "",
        *,
        critical: bool = False,
        context: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.critical = critical
        self.context = context or {}


class NetworkError(QAFailure):
    """The remote side could not be reached, or did not answer in time."""

    kind = ErrorType.NETWORK

    def __init__(self, message: str = "", *, timeout: bool = False, **kwargs):
        super().__init__(message, **kwargs)
        self.timeout = timeout


class ApiError(QAFailure):
    """The remote side answered with an error status."""

    kind = ErrorType.API

    def __init__(
        self,
        message: str = "",
        status: Optional[int] = None,
        *,
        quota: bool = False,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.status = status
        self.quota = quota

    @property
    def is_rate_limited(self) -> bool:
        return self.status == 429

    @property
    def is_server_error(self) -> bool:
        return self.status is not None and self.status >= 500

    @property
    def is_client_error(self) -> bool:
        return self.status is not None and 400 <= self.status < 500 and self.status != 429


class CacheError(QAFailure):
    """Persisted state could not be read or written."""

    kind = ErrorType.CACHE


class SearchError(QAFailure):
    """Local FAQ matching failed."""

    kind = ErrorType.SEARCH


class ParsingError(QAFailure):
    """A payload did not have the expected shape."""

    kind = ErrorType.PARSING


class QASystemError(QAFailure):
    """Anything not covered above."""

    kind = ErrorType.SYSTEM
