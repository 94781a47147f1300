"""Admission gate middleware for FastAPI/Starlette.

Provides RateLimitMiddleware that classifies each request, resolves the
caller identifier, asks the engine for a decision and returns a structured
429 response when the limit is exceeded.
"""

import logging
from datetime import datetime
from typing import Any, Callable, List, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from tierlimit.config import RateLimitConfig
from tierlimit.engine import RateLimitEngine, build_engine
from tierlimit.exceptions import UnknownLimitClass
from tierlimit.identity import IdentifierResolver, RequestMetadata
from tierlimit.result import Decision
from tierlimit.routing import EndpointClassifier

logger = logging.getLogger(__name__)


def app_routes(request: Request) -> List[Any]:
    """Routes of the application serving the request (empty if unknown)."""
    app = request.scope.get("app")
    return list(getattr(app, "routes", None) or [])


def rejection_response(
    decision: Decision, include_headers: bool = True, now: Optional[datetime] = None
) -> JSONResponse:
    """Build the 429 response for a blocked decision."""
    return JSONResponse(
        status_code=429,
        content=decision.to_rejection(now),
        headers=decision.to_headers(now) if include_headers else {},
    )


class RateLimitMiddleware(BaseHTTPMiddleware):
    """FastAPI middleware for tiered rate limiting.

    Middleware behavior:
    1. Classify the path (None means not rate limited) and name its counter
       endpoint (matched pattern or route template, never the raw path)
    2. Resolve identifier (user, then credential, then address)
    3. Count the request against the engine
    4. If exceeded: return 429 without calling downstream
    5. If allowed: process request and add X-RateLimit-* headers
    6. On store failure: the engine fails open

    Example:
        >>> from fastapi import FastAPI
        >>> from tierlimit import RateLimitConfig, RateLimitMiddleware
        >>>
        >>> app = FastAPI()
        >>> config = RateLimitConfig(
        ...     backend="redis",
        ...     redis_url="redis://localhost:6379/0",
        ...     route_classes={"/api/ai/*": "ai", "/api/checkout*": "payment"},
        ... )
        >>> app.add_middleware(RateLimitMiddleware, config=config)
    """

    def __init__(
        self,
        app,
        config: RateLimitConfig,
        engine: Optional[RateLimitEngine] = None,
        identifier_extractor: Optional[Callable[[Request], str]] = None,
    ):
        """Initialize rate limit middleware.

        Args:
            app: FastAPI/Starlette application
            config: Rate limit configuration
            engine: Pre-built engine (default: built from config on first request)
            identifier_extractor: Custom function to extract identifier from request
        """
        super().__init__(app)
        self.config = config
        self.classifier = EndpointClassifier(
            config.route_classes, default_class=config.default_class
        )
        self._resolver = IdentifierResolver()
        self._identifier_extractor = (
            identifier_extractor or self._default_identifier_extractor
        )
        self._engine = engine
        self._initialized = False

    async def _ensure_engine(self) -> RateLimitEngine:
        """Lazily build and initialize the engine on first request."""
        if self._engine is None:
            self._engine = build_engine(self.config)
        if not self._initialized:
            await self._engine.initialize()
            self._initialized = True
        return self._engine

    def _default_identifier_extractor(self, request: Request) -> str:
        metadata = RequestMetadata.from_request(
            request, trust_proxy_headers=self.config.trust_proxy_headers
        )
        return self._resolver.resolve(metadata)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """Process request with rate limiting."""
        if not self.config.enabled:
            return await call_next(request)

        path = request.url.path
        matched = self.classifier.match(
            path, routes=app_routes(request), method=request.method
        )
        limit_class = matched.limit_class

        # None means skip rate limiting for this route
        if limit_class is None:
            return await call_next(request)

        engine = await self._ensure_engine()
        identifier = self._identifier_extractor(request)

        try:
            decision = await engine.check(identifier, matched.endpoint, limit_class)
        except UnknownLimitClass:
            if not self.config.is_production:
                raise
            logger.error(
                "Misconfigured limit class '%s' for path %s; letting request through",
                limit_class,
                path,
                exc_info=True,
            )
            return await call_next(request)

        if not decision.allowed:
            return rejection_response(
                decision, include_headers=self.config.include_headers
            )

        response = await call_next(request)

        if self.config.include_headers:
            for header, value in decision.to_headers().items():
                response.headers[header] = value

        return response
