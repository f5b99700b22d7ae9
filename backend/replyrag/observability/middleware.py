from __future__ import annotations

import time

from fastapi import Request, Response
from opentelemetry.trace import get_current_span
from starlette.middleware.base import BaseHTTPMiddleware

from .logging import get_logger

logger = get_logger("request")

TRACE_HEADER = "X-Trace-Id"


class TraceLoggingMiddleware(BaseHTTPMiddleware):
    """
    Writes one access log line per request and echoes the active trace id
    back to the caller so a reply draft can be matched with its spans.
    """

    async def dispatch(self, request: Request, call_next) -> Response:  # type: ignore[override]
        started = time.perf_counter()
        response = await call_next(request)
        duration_ms = round((time.perf_counter() - started) * 1000, 2)

        ctx = get_current_span().get_span_context()
        if ctx.is_valid:
            response.headers[TRACE_HEADER] = f"{ctx.trace_id:032x}"

        log = logger.warning if response.status_code >= 500 else logger.info
        log(
            "Request handled",
            extra={
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "duration_ms": duration_ms,
            },
        )
        return response
