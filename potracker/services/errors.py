"""
Service layer exceptions.

Every error raised by the request layer carries a structured ``kind`` so
retry predicates can classify failures without inspecting message text.
"""

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """Failure classes understood by retry predicates."""

    TRANSPORT = "TRANSPORT"  # Network / connection level failure
    SERVER = "SERVER"  # 5xx response
    CLIENT = "CLIENT"  # 4xx response
    VALIDATION = "VALIDATION"  # Rejected locally before sending


class ServiceError(Exception):
    """Base exception for service layer errors."""

    kind: ErrorKind | None = None

    def __init__(self, message: str, endpoint: str | None = None):
        self.endpoint = endpoint
        super().__init__(message)


class TransportError(ServiceError):
    """The request never produced a response."""

    kind = ErrorKind.TRANSPORT


class RequestTimeoutError(TransportError):
    """Request timed out."""

    def __init__(self, endpoint: str, timeout: float):
        self.timeout = timeout
        super().__init__(
            f"Request to '{endpoint}' timed out after {timeout}s",
            endpoint=endpoint,
        )


class ApiError(ServiceError):
    """The server answered with a non-success status."""

    def __init__(
        self,
        message: str,
        status: int,
        endpoint: str | None = None,
        code: str | None = None,
        details: Any = None,
    ):
        self.status = status
        self.code = code
        self.details = details
        super().__init__(message, endpoint=endpoint)

    @property
    def kind(self) -> ErrorKind:  # type: ignore[override]
        return ErrorKind.SERVER if self.status >= 500 else ErrorKind.CLIENT


class RateLimitError(ApiError):
    """Rate limit exceeded."""

    def __init__(
        self,
        endpoint: str | None = None,
        retry_after: float | None = None,
        message: str | None = None,
    ):
        self.retry_after = retry_after
        msg = message or f"Rate limit exceeded for '{endpoint}'"
        if retry_after:
            msg += f", retry after {retry_after}s"
        super().__init__(msg, status=429, endpoint=endpoint)


class ValidationError(ServiceError):
    """Request rejected before it was sent."""

    kind = ErrorKind.VALIDATION
