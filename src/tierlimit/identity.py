"""Caller identity resolution.

Derives one stable, namespaced identifier per caller:
1. ``user:<id>`` for an authenticated principal
2. ``cred:<id>`` for a machine/service credential
3. ``addr:<ip>`` for the network address (first forwarded hop, else the
   direct connection, else ``unknown``)

The prefixes keep an address that happens to equal a user id from sharing
a counter with that user.
"""

import hashlib
from dataclasses import dataclass
from typing import Any, Optional

USER_PREFIX = "user:"
CREDENTIAL_PREFIX = "cred:"
ADDRESS_PREFIX = "addr:"
UNKNOWN_ADDRESS = "unknown"


def _clean(value: Any) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def fingerprint_api_key(api_key: str) -> str:
    """Stable, non-reversible id for a raw API key."""
    return hashlib.sha256(api_key.encode("utf-8")).hexdigest()[:16]


@dataclass
class RequestMetadata:
    """Caller metadata available to the resolver.

    Attributes:
        principal_id: Authenticated user id from the identity system
        credential_id: Service credential id (API key id or fingerprint)
        forwarded_for: Raw X-Forwarded-For chain, if trusted
        remote_addr: Direct connection address
    """

    principal_id: Optional[str] = None
    credential_id: Optional[str] = None
    forwarded_for: Optional[str] = None
    remote_addr: Optional[str] = None

    @classmethod
    def from_request(
        cls, request: Any, trust_proxy_headers: bool = True
    ) -> "RequestMetadata":
        """Extract metadata from a Starlette/FastAPI request.

        Reads the AuthenticatedUser placed on ``request.state.user`` by JWT
        middleware and a ``credential_id`` placed on ``request.state`` by API
        key middleware. A raw ``X-API-Key`` header is only ever fingerprinted.
        """
        state = getattr(request, "state", None)

        user = getattr(state, "user", None) if state is not None else None
        principal_id = getattr(user, "user_id", None) if user else None

        credential_id = (
            getattr(state, "credential_id", None) if state is not None else None
        )
        if not _clean(credential_id):
            api_key = request.headers.get("X-API-Key")
            credential_id = fingerprint_api_key(api_key) if api_key else None

        forwarded_for = None
        if trust_proxy_headers:
            forwarded_for = request.headers.get("X-Forwarded-For")

        client = getattr(request, "client", None)
        remote_addr = client.host if client else None

        return cls(
            principal_id=_clean(principal_id),
            credential_id=_clean(credential_id),
            forwarded_for=_clean(forwarded_for),
            remote_addr=_clean(remote_addr),
        )


class IdentifierResolver:
    """Resolves a caller identifier from request metadata. Never fails."""

    def resolve(self, metadata: RequestMetadata) -> str:
        principal_id = _clean(metadata.principal_id)
        if principal_id:
            return f"{USER_PREFIX}{principal_id}"

        credential_id = _clean(metadata.credential_id)
        if credential_id:
            return f"{CREDENTIAL_PREFIX}{credential_id}"

        return f"{ADDRESS_PREFIX}{self._address(metadata)}"

    @staticmethod
    def _address(metadata: RequestMetadata) -> str:
        forwarded_for = _clean(metadata.forwarded_for)
        if forwarded_for:
            first_hop = _clean(forwarded_for.split(",")[0])
            if first_hop:
                return first_hop

        remote_addr = _clean(metadata.remote_addr)
        if remote_addr:
            return remote_addr

        return UNKNOWN_ADDRESS
