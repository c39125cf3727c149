"""Typed failure conditions raised by the discovery layers.

Lower layers raise these instead of generic exceptions so the search
service can decide, per type, whether to recover locally or propagate.
"""
from typing import Any, Optional


class SearchError(Exception):
    """Base error: message, HTTP status and whether a retry makes sense."""

    status_code: int = 500
    retryable: bool = False

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    @property
    def status(self) -> str:
        """'fail' for client errors, 'error' for server errors."""
        return "fail" if str(self.status_code).startswith("4") else "error"


class QueryValidationError(SearchError):
    """Malformed query shape or out-of-range field. Never retried."""

    status_code = 400


class StorageUnavailable(SearchError):
    """The business catalog (or history store) could not be read."""

    status_code = 503
    retryable = True


class ExternalProviderDegraded(SearchError):
    """The places provider timed out or answered with an error."""

    status_code = 502
    retryable = True


class CacheUnavailable(SearchError):
    """The key-value store backing recent searches and cached pages is down."""

    status_code = 503
    retryable = True
