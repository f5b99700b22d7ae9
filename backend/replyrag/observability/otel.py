from __future__ import annotations

from typing import Optional

from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from ..core.config import settings
from .logging import get_logger

logger = get_logger("observability.otel")

# Retrieval, re-rank and generation spans hang off this tracer. Until a
# provider is installed it hands out no-op spans.
tracer = trace.get_tracer("replyrag")

_provider: Optional[TracerProvider] = None


def init_otel(app: FastAPI) -> None:
    """
    Export spans over OTLP gRPC when REPLYRAG_OTEL_ENABLED is set, and
    instrument the FastAPI app so request spans parent the pipeline spans.
    """
    global _provider

    cfg = settings.otel
    if not cfg.enabled:
        logger.info("OpenTelemetry tracing disabled")
        return

    if _provider is None:
        _provider = TracerProvider(
            resource=Resource.create(
                {
                    "service.name": cfg.service_name,
                    "deployment.environment": settings.app.env.value,
                }
            )
        )
        _provider.add_span_processor(
            BatchSpanProcessor(OTLPSpanExporter(endpoint=cfg.exporter_otlp_endpoint, insecure=True))
        )
        trace.set_tracer_provider(_provider)

    FastAPIInstrumentor.instrument_app(app, tracer_provider=_provider)
    logger.info("OpenTelemetry tracing enabled", extra={"endpoint": cfg.exporter_otlp_endpoint})


def shutdown_otel() -> None:
    """Flush buffered spans; no-op when tracing was never enabled."""
    if _provider is not None:
        _provider.shutdown()
