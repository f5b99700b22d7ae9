from __future__ import annotations

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel
from pydantic.config import ConfigDict

from ...db.catalog_store import get_catalog_store
from ...observability.logging import get_logger
from ...rag.relevance_pool import compute_all_pools, compute_pool, get_pool_stats
from ...schemas.catalog import ContextProfile, PoolComputeResult, PoolStats
from ...schemas.ingest import BatchReport

logger = get_logger("api.pools")

router = APIRouter(tags=["pools"])


class PoolComputeRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    overwrite: bool = False


@router.put(
    "/contexts/{context_id}",
    response_model=ContextProfile,
    summary="Create or update the structured signals of a video.",
)
async def upsert_context(context_id: str, payload: ContextProfile) -> ContextProfile:
    if payload.context_id != context_id:
        raise HTTPException(status_code=422, detail="context_id in path and body differ")
    return get_catalog_store().upsert_context(payload)


@router.get(
    "/contexts/{context_id}",
    response_model=ContextProfile,
    summary="Fetch the structured signals of a video.",
)
async def get_context(context_id: str) -> ContextProfile:
    context = get_catalog_store().get_context(context_id)
    if context is None:
        raise HTTPException(status_code=404, detail="Context not found")
    return context


@router.post(
    "/pools/{context_id}",
    response_model=PoolComputeResult,
    summary="Compute the relevance pool of one video.",
)
async def compute_pool_endpoint(
    context_id: str,
    payload: PoolComputeRequest = PoolComputeRequest(),
) -> PoolComputeResult:
    result = compute_pool(context_id, overwrite=payload.overwrite)
    if result.skipped_reason == "context_not_found":
        raise HTTPException(status_code=404, detail="Context not found")
    return result


@router.post(
    "/pools",
    response_model=BatchReport,
    summary="Compute relevance pools for every video with metadata.",
)
async def compute_all_pools_endpoint(
    payload: PoolComputeRequest = PoolComputeRequest(),
) -> BatchReport:
    report = compute_all_pools(overwrite=payload.overwrite)
    logger.info("All pools computed", extra=report.model_dump(exclude={"errors"}))
    return report


@router.get(
    "/pools/{context_id}/stats",
    response_model=PoolStats,
    summary="Score distribution and match counts of a relevance pool.",
)
async def pool_stats_endpoint(context_id: str) -> PoolStats:
    return get_pool_stats(context_id)
