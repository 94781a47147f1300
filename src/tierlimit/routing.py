"""Endpoint classification.

Maps request paths to limit classes through one declarative table, so the
engine itself never needs endpoint-specific knowledge.

Counters are keyed on a stable endpoint name, never on the raw path: the
matched pattern for classified paths, else the route template
(``/api/items/{item_id}``), else ``UNMATCHED_ENDPOINT``. Path parameters
therefore share one quota.
"""

import fnmatch
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional

from starlette.routing import Match

UNMATCHED_ENDPOINT = "<unmatched>"


@dataclass(frozen=True)
class EndpointMatch:
    """Limit class and counter endpoint name for one path."""

    limit_class: Optional[str]
    endpoint: str


def route_template(path: str, routes: Iterable[Any], method: str = "GET") -> str:
    """Path template of the route serving ``path``.

    A route matching the path but not the method still names the endpoint.
    Paths no route serves collapse to UNMATCHED_ENDPOINT.
    """
    scope = {"type": "http", "path": path, "root_path": "", "method": method}
    partial = None
    for route in routes:
        match, _ = route.matches(scope)
        if match == Match.FULL:
            return getattr(route, "path", UNMATCHED_ENDPOINT)
        if match == Match.PARTIAL and partial is None:
            partial = getattr(route, "path", None)
    return partial or UNMATCHED_ENDPOINT


class EndpointClassifier:
    """Static path pattern -> limit class table.

    Patterns are fnmatch globs evaluated in insertion order; the first match
    wins. A pattern mapped to None excludes the path from rate limiting.
    Unmatched paths get the default class.

    Example:
        >>> classifier = EndpointClassifier(
        ...     {"/api/ai/*": "ai", "/api/checkout*": "payment", "/health": None},
        ...     default_class="api",
        ... )
        >>> classifier.classify("/api/ai/complete")
        'ai'
        >>> classifier.match("/api/ai/jobs/7").endpoint
        '/api/ai/*'
        >>> classifier.classify("/health") is None
        True
    """

    def __init__(
        self,
        route_classes: Optional[Dict[str, Optional[str]]] = None,
        default_class: str = "api",
    ):
        self._routes = dict(route_classes or {})
        self.default_class = default_class

    def classify(self, path: str) -> Optional[str]:
        """Limit class for a path, or None if the path is not rate limited."""
        return self.match(path).limit_class

    def match(
        self, path: str, routes: Iterable[Any] = (), method: str = "GET"
    ) -> EndpointMatch:
        """Limit class and counter endpoint name for a path.

        Args:
            path: Request path
            routes: Application routes, used to name unclassified paths
            method: Request method
        """
        for pattern, limit_class in self._routes.items():
            if fnmatch.fnmatch(path, pattern):
                return EndpointMatch(limit_class, pattern)
        return EndpointMatch(self.default_class, route_template(path, routes, method))
