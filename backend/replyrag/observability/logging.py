from __future__ import annotations

import json
import logging
import sys
from typing import Any, Dict, Optional

from opentelemetry.trace import get_current_span

from ..core.config import settings

# Attributes every LogRecord carries; anything else came in through `extra=`.
_RESERVED_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None)).keys()
) | {"message", "asctime", "trace_id", "span_id"}

# Client libraries that log every HTTP round trip or model load at INFO.
_NOISY_LOGGERS = ("opensearch", "httpx", "httpcore", "urllib3", "sentence_transformers")

_factory_installed = False


class JsonFormatter(logging.Formatter):
    """
    One JSON object per line: level, time, logger, message, the service it
    came from, trace/span ids when a span is active, and any `extra=` fields
    as top-level keys.
    """

    def __init__(self, service: str, env: str) -> None:
        super().__init__()
        self.service = service
        self.env = env

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        payload: Dict[str, Any] = {
            "level": record.levelname,
            "time": self.formatTime(record, "%Y-%m-%dT%H:%M:%S%z"),
            "logger": record.name,
            "message": record.getMessage(),
            "service": self.service,
            "env": self.env,
        }

        trace_id = getattr(record, "trace_id", None)
        if trace_id is not None:
            payload["trace_id"] = trace_id
            payload["span_id"] = getattr(record, "span_id", None)

        for key, value in record.__dict__.items():
            if key in _RESERVED_ATTRS or key in payload:
                continue
            payload[key] = value

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(payload, separators=(",", ":"), ensure_ascii=False, default=str)


def _install_log_record_factory() -> None:
    """Stamp every record with the ids of the active OTel span (once per process)."""
    global _factory_installed
    if _factory_installed:
        return

    previous = logging.getLogRecordFactory()

    def record_factory(*args: Any, **kwargs: Any) -> logging.LogRecord:
        record: logging.LogRecord = previous(*args, **kwargs)  # type: ignore[assignment]
        ctx = get_current_span().get_span_context()
        if ctx.is_valid:
            record.trace_id = f"{ctx.trace_id:032x}"
            record.span_id = f"{ctx.span_id:016x}"
        else:
            record.trace_id = None
            record.span_id = None
        return record

    logging.setLogRecordFactory(record_factory)
    _factory_installed = True


def setup_logging(level: Optional[str] = None) -> None:
    """
    Route the root logger to stdout as JSON lines. Safe to call more than
    once (API startup and the offline job CLI both call it).
    """
    app = settings.app
    log_level = (level or app.log_level).upper()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter(service=app.name, env=app.env.value))

    root = logging.getLogger()
    root.setLevel(log_level)
    root.handlers = [handler]

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(logging.WARNING, root.level))

    _install_log_record_factory()


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"replyrag.{name}")
