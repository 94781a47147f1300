"""Per-endpoint rate limiting decorator.

Provides @rate_limit() for applying a limit class to an individual FastAPI
endpoint without the middleware.
"""

from functools import wraps
from typing import Callable, Optional

from fastapi import Request, Response
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from tierlimit.engine import RateLimitEngine
from tierlimit.identity import IdentifierResolver, RequestMetadata
from tierlimit.middleware import app_routes, rejection_response
from tierlimit.registry import ClassName
from tierlimit.routing import route_template


def rate_limit(
    engine: RateLimitEngine,
    limit_class: ClassName,
    endpoint: Optional[str] = None,
    identifier_extractor: Optional[Callable[[Request], str]] = None,
    trust_proxy_headers: bool = True,
    include_headers: bool = True,
) -> Callable:
    """Decorator for per-endpoint rate limiting.

    Blocked calls get the same 429 response as the middleware. Allowed calls
    get X-RateLimit-* headers; a return value that is not already a Response
    is JSON-encoded into one to carry them.

    Args:
        engine: Engine shared with the rest of the application
        limit_class: Limit class applied to the endpoint
        endpoint: Counter endpoint name (default: the route template)
        identifier_extractor: Custom function to extract identifier from request
        trust_proxy_headers: Read X-Forwarded-For for the caller address
        include_headers: Whether to add X-RateLimit-* headers (default: True)

    Returns:
        Decorator function

    Example:
        >>> @app.post("/api/ai/complete")
        >>> @rate_limit(engine, "ai")
        >>> async def complete(request: Request):
        ...     return {"result": "success"}
    """
    resolver = IdentifierResolver()

    def _default_identifier(request: Request) -> str:
        return resolver.resolve(
            RequestMetadata.from_request(request, trust_proxy_headers)
        )

    extractor = identifier_extractor or _default_identifier

    # Unknown classes fail at decoration time, not per request.
    engine.registry.get_config(limit_class)

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(request: Request, *args, **kwargs):
            counter_endpoint = endpoint or route_template(
                request.url.path, app_routes(request), request.method
            )
            decision = await engine.check(
                extractor(request), counter_endpoint, limit_class
            )

            if not decision.allowed:
                return rejection_response(decision, include_headers=include_headers)

            result = await func(request, *args, **kwargs)
            if not include_headers:
                return result

            if not isinstance(result, Response):
                result = JSONResponse(content=jsonable_encoder(result))
            for header, value in decision.to_headers().items():
                result.headers[header] = value
            return result

        return wrapper

    return decorator
