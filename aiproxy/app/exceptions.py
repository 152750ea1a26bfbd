"""Custom exceptions for the proxy application.

Every failure the proxy can report is a ``ProxyError`` tagged with an
``ErrorKind``. The kind alone decides the numeric code sent on the wire;
``ERROR_CODES`` is the only place that mapping lives.
"""

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Exhaustive classification of proxy failures."""
    VALIDATION = "validation"
    RATE_LIMITED = "rate_limited"
    UPSTREAM_TIMEOUT = "upstream_timeout"
    UPSTREAM_ERROR = "upstream_error"
    INTERNAL = "internal"


ERROR_CODES: dict[ErrorKind, int] = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.RATE_LIMITED: 429,
    ErrorKind.UPSTREAM_TIMEOUT: 504,
    ErrorKind.UPSTREAM_ERROR: 502,
    ErrorKind.INTERNAL: 500,
}


def code_for(kind: ErrorKind) -> int:
    """Return the wire code for an error kind."""
    return ERROR_CODES[kind]


class ProxyError(Exception):
    """Base class for proxy failures.

    Subclasses only pin down ``kind``; the status code is derived from it
    so that callers never hard-code numeric codes.
    """
    kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(self, message: str = "Internal server error"):
        self.message = message
        super().__init__(message)

    @property
    def status_code(self) -> int:
        return code_for(self.kind)


class ValidationError(ProxyError):
    """Raised when an inbound request violates a constraint.

    Maps to 400. ``field`` names the offending wire field when there is one.
    """
    kind = ErrorKind.VALIDATION

    def __init__(self, message: str, field: Optional[str] = None):
        self.field = field
        super().__init__(message)


class RateLimitExceededError(ProxyError):
    """Raised when a client key has used up its window.

    Maps to 429 and carries the seconds until the window resets.
    """
    kind = ErrorKind.RATE_LIMITED

    def __init__(self, retry_after: int, message: Optional[str] = None):
        self.retry_after = retry_after
        super().__init__(
            message or f"Rate limit exceeded. Retry after {retry_after} seconds."
        )


class UpstreamTimeoutError(ProxyError):
    """Raised when the provider did not answer within the deadline.

    Also used once transient failures have exhausted the retry budget.
    """
    kind = ErrorKind.UPSTREAM_TIMEOUT

    def __init__(self, message: str = "The AI provider did not respond in time"):
        super().__init__(message)


class UpstreamError(ProxyError):
    """Raised when the provider rejected the request. Maps to 502."""
    kind = ErrorKind.UPSTREAM_ERROR

    def __init__(self, message: str = "The AI provider could not process the request"):
        super().__init__(message)


class InternalError(ProxyError):
    """Raised for unexpected faults inside the proxy. Maps to 500."""
    kind = ErrorKind.INTERNAL
