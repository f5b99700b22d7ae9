from __future__ import annotations

from typing import Optional

from fastapi import APIRouter
from pydantic import BaseModel, Field
from pydantic.config import ConfigDict

from ...observability.logging import get_logger
from ...rag.ingest import regenerate_embeddings
from ...schemas.ingest import BatchReport
from ...schemas.rag import SourceType

logger = get_logger("api.embeddings")

router = APIRouter(prefix="/embeddings", tags=["embeddings"])


class RegenerateRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    source_type: Optional[SourceType] = None
    only_missing: bool = Field(
        default=True,
        description="Only embed chunks without a vector (resumes an interrupted run).",
    )
    batch_size: Optional[int] = Field(default=None, ge=1, le=512)


@router.post(
    "/regenerate",
    response_model=BatchReport,
    summary="Re-embed stored chunks in batches.",
)
async def regenerate_endpoint(payload: RegenerateRequest) -> BatchReport:
    report = await regenerate_embeddings(
        source_type=payload.source_type,
        only_missing=payload.only_missing,
        batch_size=payload.batch_size,
    )
    logger.info("Embeddings regenerated", extra=report.model_dump(exclude={"errors"}))
    return report
