from __future__ import annotations

import time
from typing import Awaitable, Callable

from fastapi import APIRouter, Request, Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.middleware.base import BaseHTTPMiddleware

REQUEST_COUNTER = Counter(
    "replyrag_http_requests_total",
    "HTTP requests served, by route template and status",
    ["method", "route", "status_code"],
)

REQUEST_LATENCY = Histogram(
    "replyrag_http_request_latency_seconds",
    "HTTP request latency by route template",
    ["method", "route"],
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)

_SKIP_ROUTES = frozenset({"/metrics", "/api/v1/health"})


def _route_label(request: Request) -> str:
    # Templated path keeps label cardinality bounded (/contexts/{context_id}).
    route = request.scope.get("route")
    template = getattr(route, "path", None)
    return template or "unmatched"


class MetricsMiddleware(BaseHTTPMiddleware):
    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        start = time.perf_counter()
        response = await call_next(request)
        elapsed = time.perf_counter() - start

        route = _route_label(request)
        if route not in _SKIP_ROUTES:
            REQUEST_COUNTER.labels(request.method, route, str(response.status_code)).inc()
            REQUEST_LATENCY.labels(request.method, route).observe(elapsed)

        return response


metrics_router = APIRouter(tags=["metrics"])


@metrics_router.get("/metrics")
async def metrics() -> Response:
    """Prometheus scrape endpoint."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
