"""Rate limit event dataclass.

Defines RateLimitEvent, the immutable record of one admission decision.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from uuid import uuid4

ALLOWED = "allowed"
BLOCKED = "blocked"


@dataclass(frozen=True)
class RateLimitEvent:
    """One admission decision, append-only."""

    identifier: str
    endpoint: str
    limit_class: str
    action: str
    request_count: int
    max_requests: int
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    id: str = field(default_factory=lambda: str(uuid4()))

    def __post_init__(self):
        if self.action not in (ALLOWED, BLOCKED):
            raise ValueError(f"Invalid action: {self.action}")

    @classmethod
    def create(
        cls,
        identifier: str,
        endpoint: str,
        limit_class: str,
        allowed: bool,
        request_count: int,
        max_requests: int,
        created_at: Optional[datetime] = None,
    ) -> "RateLimitEvent":
        """Factory method that derives the action from the decision."""
        return cls(
            identifier=identifier,
            endpoint=endpoint,
            limit_class=limit_class,
            action=ALLOWED if allowed else BLOCKED,
            request_count=request_count,
            max_requests=max_requests,
            created_at=created_at or datetime.now(timezone.utc),
        )

    @property
    def blocked(self) -> bool:
        return self.action == BLOCKED

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary with ISO timestamp."""
        return {
            "id": self.id,
            "identifier": self.identifier,
            "endpoint": self.endpoint,
            "limit_class": self.limit_class,
            "action": self.action,
            "request_count": self.request_count,
            "max_requests": self.max_requests,
            "created_at": self.created_at.isoformat(),
        }

    def to_json(self) -> str:
        """Serialize to JSON string."""
        return json.dumps(self.to_dict(), default=str)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RateLimitEvent":
        """Deserialize from dictionary."""
        created_at = data["created_at"]
        if isinstance(created_at, str):
            if created_at.endswith("Z"):
                created_at = created_at[:-1] + "+00:00"
            created_at = datetime.fromisoformat(created_at)

        return cls(
            id=data["id"],
            identifier=data["identifier"],
            endpoint=data["endpoint"],
            limit_class=data["limit_class"],
            action=data["action"],
            request_count=data["request_count"],
            max_requests=data["max_requests"],
            created_at=created_at,
        )
