"""Rate limit stores."""

from tierlimit.backends.base import RateLimitBackend
from tierlimit.backends.memory import InMemoryBackend

__all__ = [
    "RateLimitBackend",
    "InMemoryBackend",
]
