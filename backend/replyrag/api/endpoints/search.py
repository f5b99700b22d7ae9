from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter
from pydantic import BaseModel, Field
from pydantic.config import ConfigDict

from ...core.errors import ReplyRAGError
from ...observability.logging import get_logger
from ...rag.retriever import SearchOptions, search
from ...schemas.rag import SearchResult, SourceType
from ..errors import to_http_error

logger = get_logger("api.search")

router = APIRouter(tags=["search"])


class SearchRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    query: str = Field(..., min_length=1, description="Free-text query.")
    source_type: Optional[SourceType] = Field(
        default=None,
        description="Restrict to one partition (comment, transcript, product).",
    )
    context_id: Optional[str] = Field(
        default=None,
        description="Video id. Product searches with a context use its relevance pool.",
    )
    top_k: Optional[int] = Field(default=None, ge=1)
    min_score: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    vector_weight: Optional[float] = Field(default=None, ge=0.0)
    keyword_weight: Optional[float] = Field(default=None, ge=0.0)


class SearchResponse(BaseModel):
    results: List[SearchResult]
    tier: str


@router.post(
    "/search",
    response_model=SearchResponse,
    summary="Hybrid vector + keyword search over ingested content.",
)
async def search_endpoint(payload: SearchRequest) -> SearchResponse:
    options = SearchOptions.from_config(
        top_k=payload.top_k,
        source_type=payload.source_type,
        context_id=payload.context_id,
        min_score=payload.min_score,
        vector_weight=payload.vector_weight,
        keyword_weight=payload.keyword_weight,
    )
    try:
        outcome = await search(payload.query, options)
    except ReplyRAGError as exc:
        logger.error("Search failed", extra={"error": str(exc)})
        raise to_http_error(exc) from exc

    return SearchResponse(results=outcome.results, tier=outcome.tier)
