from __future__ import annotations

from typing import List

from fastapi import APIRouter
from pydantic import BaseModel, Field
from pydantic.config import ConfigDict

from ...core.errors import ReplyRAGError
from ...observability.logging import get_logger
from ...rag.ingest import (
    embed_missing_products,
    ingest_comments,
    ingest_products,
    ingest_transcripts,
)
from ...rag.store import get_document_store
from ...schemas.ingest import BatchReport, CommentInput, ProductInput, TranscriptInput
from ...schemas.rag import SourceType
from ..errors import to_http_error

logger = get_logger("api.ingest")

router = APIRouter(tags=["ingest"])


class CommentIngestRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    comments: List[CommentInput] = Field(..., min_length=1)
    overwrite: bool = False


class TranscriptIngestRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    transcripts: List[TranscriptInput] = Field(..., min_length=1)
    overwrite: bool = False


class ProductIngestRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    products: List[ProductInput] = Field(..., min_length=1)
    overwrite: bool = False


class DeleteResponse(BaseModel):
    document_id: str
    chunks_deleted: int


@router.post(
    "/ingest/comments",
    response_model=BatchReport,
    summary="Normalize, embed and store comments (one chunk each).",
)
async def ingest_comments_endpoint(payload: CommentIngestRequest) -> BatchReport:
    report = await ingest_comments(payload.comments, overwrite=payload.overwrite)
    logger.info("Comments ingested", extra=report.model_dump(exclude={"errors"}))
    return report


@router.post(
    "/ingest/transcripts",
    response_model=BatchReport,
    summary="Normalize, chunk, embed and store video transcripts.",
)
async def ingest_transcripts_endpoint(payload: TranscriptIngestRequest) -> BatchReport:
    report = await ingest_transcripts(payload.transcripts, overwrite=payload.overwrite)
    logger.info("Transcripts ingested", extra=report.model_dump(exclude={"errors"}))
    return report


@router.post(
    "/ingest/products",
    response_model=BatchReport,
    summary="Store products as summary + detail chunks and sync the catalog.",
)
async def ingest_products_endpoint(payload: ProductIngestRequest) -> BatchReport:
    report = await ingest_products(payload.products, overwrite=payload.overwrite)
    logger.info("Products ingested", extra=report.model_dump(exclude={"errors"}))
    return report


@router.post(
    "/ingest/products/missing",
    response_model=BatchReport,
    summary="Ingest catalog items that have no product document yet.",
)
async def embed_missing_products_endpoint() -> BatchReport:
    return await embed_missing_products()


@router.delete(
    "/documents/{source_type}/{source_id}",
    response_model=DeleteResponse,
    summary="Delete a document and all of its chunks.",
)
async def delete_document_endpoint(source_type: SourceType, source_id: str) -> DeleteResponse:
    store = get_document_store()
    try:
        deleted = await store.delete_document(source_type, source_id)
    except ReplyRAGError as exc:
        logger.error("Document delete failed", extra={"error": str(exc)})
        raise to_http_error(exc) from exc
    return DeleteResponse(
        document_id=f"{source_type.value}:{source_id}",
        chunks_deleted=deleted,
    )
