"""Rate limit decision and counter state dataclasses.

Provides Decision for representing the outcome of an admission check,
including standard HTTP response header and rejection payload generation.
"""

import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional


def epoch_seconds(moment: datetime) -> int:
    """Whole epoch seconds, rounded up so clients never retry early."""
    return int(math.ceil(moment.timestamp()))


def from_epoch_ms(value: int) -> datetime:
    return datetime.fromtimestamp(int(value) / 1000, tz=timezone.utc)


def to_epoch_ms(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)


@dataclass(frozen=True)
class CounterState:
    """Counter state returned by the store's atomic increment.

    Attributes:
        request_count: Requests counted in the current window (including this one)
        max_requests: Quota snapshot taken when the window opened
        window_start: When the current window opened
    """

    request_count: int
    max_requests: int
    window_start: datetime


@dataclass(frozen=True)
class RateLimitRecord:
    """One persisted counter, keyed by (identifier, endpoint, limit_class)."""

    identifier: str
    endpoint: str
    limit_class: str
    request_count: int
    max_requests: int
    window_start: datetime
    last_request_at: datetime


@dataclass
class Decision:
    """Result of an admission check.

    Attributes:
        allowed: Whether the request is allowed
        limit: Maximum requests in the window
        remaining: Requests remaining in current window
        reset_at: When the rate limit window resets
        identifier: The identifier that was checked
        endpoint: The endpoint that was checked
        limit_class: The limit class applied
        degraded: True when the store was unavailable and the check failed open
    """

    allowed: bool
    limit: int
    remaining: int
    reset_at: datetime
    identifier: Optional[str] = None
    endpoint: Optional[str] = None
    limit_class: Optional[str] = None
    degraded: bool = False

    def retry_after_seconds(self, now: Optional[datetime] = None) -> int:
        """Seconds until the window resets, floored at 0."""
        now = now or datetime.now(timezone.utc)
        return max(0, int(math.ceil((self.reset_at - now).total_seconds())))

    def to_headers(self, now: Optional[datetime] = None) -> Dict[str, str]:
        """Generate X-RateLimit-* headers (plus Retry-After when blocked).

        Returns:
            Dictionary of header name -> value
        """
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(epoch_seconds(self.reset_at)),
        }

        if not self.allowed:
            headers["Retry-After"] = str(self.retry_after_seconds(now))

        return headers

    def to_rejection(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Body of the 429 response."""
        return {
            "error": "rate_limit_exceeded",
            "limit": self.limit,
            "remaining": 0,
            "resetAt": epoch_seconds(self.reset_at),
            "retryAfterSeconds": self.retry_after_seconds(now),
        }
