"""HTTP surface for rate limit status and administration.

Note: Do NOT use ``from __future__ import annotations`` in this module.
FastAPI inspects parameter annotations at runtime to recognize special types.
"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from tierlimit.config import RateLimitConfig
from tierlimit.engine import RateLimitEngine
from tierlimit.exceptions import StoreUnavailable, UnknownLimitClass
from tierlimit.identity import IdentifierResolver, RequestMetadata
from tierlimit.middleware import app_routes
from tierlimit.result import epoch_seconds
from tierlimit.routing import EndpointClassifier, EndpointMatch

logger = logging.getLogger(__name__)


def create_rate_limit_router(
    engine: RateLimitEngine,
    config: Optional[RateLimitConfig] = None,
    admin_dependency: Optional[Callable] = None,
    prefix: str = "/rate-limit",
) -> APIRouter:
    """Build the rate limit router.

    Routes:
        GET    {prefix}/status          caller's quota, does not consume it
        DELETE {prefix}/records         reset one counter (admin)
        GET    {prefix}/events          query admission events (admin)
        GET    {prefix}/events/blocked  most-blocked identifiers (admin)

    Admin routes are only mounted when ``admin_dependency`` is given; it
    should raise (e.g. 403) for non-admin callers.

    The endpoint query parameter takes a request path; it is mapped to its
    counter the same way the middleware maps it.

    Args:
        engine: Engine shared with the middleware
        config: Rate limit configuration (route classes and proxy header trust)
        admin_dependency: FastAPI dependency guarding admin routes
        prefix: Route prefix (default: "/rate-limit")
    """
    router = APIRouter(prefix=prefix, tags=["rate-limit"])
    resolver = IdentifierResolver()
    trust_proxy_headers = config.trust_proxy_headers if config else True
    classifier = (
        EndpointClassifier(config.route_classes, default_class=config.default_class)
        if config
        else EndpointClassifier()
    )

    def counter_endpoint(request: Request, path: str) -> EndpointMatch:
        return classifier.match(path, routes=app_routes(request))

    @router.get("/status")
    async def rate_limit_status(
        request: Request,
        endpoint: str = Query(..., description="Endpoint path to inspect"),
        limit_class: Optional[str] = Query(
            None, description="Limit class to inspect (default: the path's class)"
        ),
    ) -> JSONResponse:
        identifier = resolver.resolve(
            RequestMetadata.from_request(request, trust_proxy_headers)
        )
        matched = counter_endpoint(request, endpoint)
        limit_class = limit_class or matched.limit_class
        if limit_class is None:
            raise HTTPException(
                status_code=400, detail=f"Path {endpoint} is not rate limited"
            )
        try:
            decision = await engine.status(identifier, matched.endpoint, limit_class)
        except UnknownLimitClass as e:
            raise HTTPException(status_code=400, detail=str(e))

        return JSONResponse(
            content={
                "identifier": identifier,
                "path": endpoint,
                "endpoint": matched.endpoint,
                "limitClass": decision.limit_class,
                "limit": decision.limit,
                "remaining": decision.remaining,
                "resetAt": epoch_seconds(decision.reset_at),
                "degraded": decision.degraded,
            },
            headers=decision.to_headers(),
        )

    if admin_dependency is None:
        return router

    admin = [Depends(admin_dependency)]

    @router.delete("/records", dependencies=admin)
    async def reset_rate_limit(
        request: Request,
        identifier: str = Query(...),
        endpoint: str = Query(..., description="Endpoint path to reset"),
        limit_class: str = Query(...),
    ) -> Dict[str, Any]:
        matched = counter_endpoint(request, endpoint)
        try:
            removed = await engine.reset(identifier, matched.endpoint, limit_class)
        except UnknownLimitClass as e:
            raise HTTPException(status_code=400, detail=str(e))
        except StoreUnavailable as e:
            logger.error("Rate limit reset failed: %s", e)
            raise HTTPException(status_code=503, detail="Rate limit store unavailable")

        return {"removed": removed}

    @router.get("/events", dependencies=admin)
    async def list_rate_limit_events(
        identifier: Optional[str] = None,
        endpoint: Optional[str] = None,
        limit_class: Optional[str] = None,
        action: Optional[str] = Query(None, pattern="^(allowed|blocked)$"),
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
        limit: int = Query(100, ge=1, le=1000),
        offset: int = Query(0, ge=0),
    ) -> List[Dict[str, Any]]:
        backend = _event_backend(engine)
        try:
            events = await backend.query(
                identifier=identifier,
                endpoint=endpoint,
                limit_class=limit_class,
                action=action,
                start_time=start_time,
                end_time=end_time,
                limit=limit,
                offset=offset,
            )
        except NotImplementedError:
            raise HTTPException(status_code=501, detail="Event queries not supported")

        return [event.to_dict() for event in events]

    @router.get("/events/blocked", dependencies=admin)
    async def blocked_rate_limit_summary(
        since: Optional[datetime] = None,
        limit: int = Query(10, ge=1, le=100),
    ) -> List[Dict[str, Any]]:
        backend = _event_backend(engine)
        try:
            summary = await backend.blocked_summary(since=since, limit=limit)
        except NotImplementedError:
            raise HTTPException(status_code=501, detail="Event queries not supported")

        return [
            {"identifier": identifier, "blocked": count}
            for identifier, count in summary
        ]

    return router


def _event_backend(engine: RateLimitEngine):
    if engine.event_log is None:
        raise HTTPException(status_code=501, detail="Event log disabled")
    return engine.event_log.backend
