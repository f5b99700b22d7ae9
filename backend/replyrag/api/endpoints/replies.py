from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field
from pydantic.config import ConfigDict

from ...core.errors import ReplyRAGError
from ...db.catalog_store import get_catalog_store
from ...observability.logging import get_logger
from ...rag.pipeline import generate_batch_replies, reply_to_comment
from ...schemas.reply import BatchReplyReport, CommentToReply, ReplyDraft, ReplyResult
from ..errors import to_http_error

logger = get_logger("api.replies")

router = APIRouter(prefix="/replies", tags=["replies"])


class ReplyRequest(BaseModel):
    """
    A viewer comment to answer, scoped to the video (context) it was posted on.
    """

    model_config = ConfigDict(extra="ignore")

    comment_text: str = Field(..., min_length=1)
    context_id: str = Field(..., description="Video id the comment belongs to.")
    top_k: Optional[int] = Field(default=None, ge=1)
    min_score: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    search_comments: Optional[bool] = Field(
        default=None,
        description="Also retrieve other comments on the same video.",
    )


class BatchReplyRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    context_id: str
    comments: List[CommentToReply] = Field(..., min_length=1)


@router.post(
    "",
    response_model=ReplyResult,
    summary="Generate a grounded reply to one comment.",
)
async def create_reply(payload: ReplyRequest) -> ReplyResult:
    logger.info(
        "Reply request received",
        extra={"context_id": payload.context_id, "comment_chars": len(payload.comment_text)},
    )
    try:
        return await reply_to_comment(
            payload.comment_text,
            payload.context_id,
            top_k=payload.top_k,
            min_score=payload.min_score,
            search_comments=payload.search_comments,
        )
    except ReplyRAGError as exc:
        logger.error(
            "Reply generation failed",
            extra={"context_id": payload.context_id, "error": str(exc)},
        )
        raise to_http_error(exc) from exc


@router.post(
    "/batch",
    response_model=BatchReplyReport,
    summary="Generate and store reply drafts for several comments on one video.",
)
async def create_batch_replies(payload: BatchReplyRequest) -> BatchReplyReport:
    return await generate_batch_replies(payload.context_id, payload.comments)


@router.get(
    "/drafts",
    response_model=List[ReplyDraft],
    summary="List stored reply drafts.",
)
async def list_drafts(context_id: Optional[str] = None, limit: int = 100) -> List[ReplyDraft]:
    return get_catalog_store().list_drafts(context_id=context_id, limit=limit)


@router.get(
    "/drafts/{comment_id}",
    response_model=ReplyDraft,
    summary="Fetch the stored reply draft of one comment.",
)
async def get_draft(comment_id: str) -> ReplyDraft:
    draft = get_catalog_store().get_draft(comment_id)
    if draft is None:
        raise HTTPException(status_code=404, detail="Draft not found")
    return draft
