from __future__ import annotations

from fastapi import APIRouter

from ...core.errors import ReplyRAGError
from ...observability.logging import get_logger
from ...rag.stats import RAGStats, get_stats
from ..errors import to_http_error

logger = get_logger("api.stats")

router = APIRouter(tags=["stats"])


@router.get(
    "/stats",
    response_model=RAGStats,
    summary="Document, chunk, embedding and catalog counts.",
)
async def stats_endpoint() -> RAGStats:
    try:
        return await get_stats()
    except ReplyRAGError as exc:
        logger.error("Stats lookup failed", extra={"error": str(exc)})
        raise to_http_error(exc) from exc
