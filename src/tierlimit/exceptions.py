"""Rate limiting exceptions for the tierlimit package."""

from __future__ import annotations

from typing import Any, List, Optional


class RateLimitError(Exception):
    """Base class for rate limiting errors."""

    pass


class UnknownLimitClass(RateLimitError):
    """Raised when a limit class is not registered.

    This is a configuration error. It should surface at startup validation,
    never at request time in a correctly configured deployment.

    Attributes:
        limit_class: The limit class that was requested
        available: Registered limit class names
    """

    def __init__(self, limit_class: str, available: Optional[List[str]] = None):
        self.limit_class = limit_class
        self.available = sorted(available or [])

        message = f"Unknown limit class '{limit_class}'."
        if self.available:
            message += f" Available: {self.available}"

        super().__init__(message)


class StoreUnavailable(RateLimitError):
    """Raised when the rate limit store is unreachable or times out.

    The engine converts this into a fail-open decision; callers never see it.
    """

    def __init__(self, message: str = "Rate limit store unavailable", cause: Any = None):
        self.cause = cause
        super().__init__(message)


class EventLogWriteFailure(RateLimitError):
    """Raised when an admission event could not be written.

    Never affects the admission decision.
    """

    pass


class RateLimitExceededError(RateLimitError):
    """Rate limit exceeded (429)."""

    status_code: int = 429
    detail: str = "Rate limit exceeded"

    def __init__(self, decision: Any = None, detail: str | None = None):
        self.decision = decision
        if detail:
            self.detail = detail
        super().__init__(self.detail)
