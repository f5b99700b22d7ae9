from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api.router import router as api_router
from .core.config import settings
from .core.resources import registry
from .observability import otel
from .observability.logging import get_logger, setup_logging
from .observability.metrics import MetricsMiddleware, metrics_router
from .observability.middleware import TraceLoggingMiddleware

logger = get_logger("main")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    # Embedding model, tokenizer and store clients load lazily on first use.
    logger.info("Reply service started", extra={"env": settings.app.env.value})
    try:
        yield
    finally:
        registry.reset()
        otel.shutdown_otel()
        logger.info("Reply service stopped")


def create_app() -> FastAPI:
    """Build the reply service: JSON logs, tracing, metrics and the /api/v1 routes."""
    setup_logging()

    app = FastAPI(
        title=settings.app.name,
        version="0.1.0",
        openapi_url="/api/v1/openapi.json",
        docs_url="/api/docs",
        lifespan=lifespan,
    )
    otel.init_otel(app)

    # Starlette runs the last-added middleware outermost.
    app.add_middleware(TraceLoggingMiddleware)
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "PUT", "DELETE"],
        allow_headers=["*"],
    )

    app.include_router(api_router, prefix="/api/v1")
    app.include_router(metrics_router)
    return app


app = create_app()
