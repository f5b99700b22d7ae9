from __future__ import annotations

from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field, computed_field

from .rag import QueryIntent, SearchResult


class CandidateItem(BaseModel):
    """One entry of the generation-time allow-list."""

    id: str
    canonical_url: str
    display_name: str
    price: Optional[float] = None


class ProductRecommendation(BaseModel):
    id: str
    url: str = ""
    reason: str = ""
    confidence: float = 0.0


class ReplyOutput(BaseModel):
    """Validated generator output."""

    reply_text: str
    products: List[ProductRecommendation] = Field(default_factory=list)
    parsed: bool = Field(
        default=True,
        description="False when the raw generator text was used as the reply.",
    )


class ReplyResult(BaseModel):
    reply_text: str
    products: List[ProductRecommendation] = Field(default_factory=list)
    contexts: List[SearchResult] = Field(default_factory=list)
    candidates: List[CandidateItem] = Field(default_factory=list)
    intent: QueryIntent = Field(default_factory=QueryIntent)
    token_usage: Dict[str, int] = Field(default_factory=dict)
    model: Optional[str] = None
    retrieval_tier: Optional[str] = None
    parsed: bool = True
    comment_intent: Literal["purchase", "other"] = "purchase"


class ReplyDraft(BaseModel):
    comment_id: str
    context_id: Optional[str] = None
    reply_text: str
    products: List[ProductRecommendation] = Field(default_factory=list)
    created_at: Optional[str] = None


class CommentToReply(BaseModel):
    comment_id: str
    text: str


class BatchReplyItem(BaseModel):
    comment_id: str
    success: bool
    reply_text: Optional[str] = None
    products: List[ProductRecommendation] = Field(default_factory=list)
    error: Optional[str] = None


class BatchReplyReport(BaseModel):
    context_id: str
    total: int = 0
    successful: int = 0
    failed: int = 0
    items: List[BatchReplyItem] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def success(self) -> bool:
        return self.failed == 0


class PurchaseFilters(BaseModel):
    """Shopping constraints read out of a purchase comment."""

    product_type: Optional[str] = None
    budget_min: Optional[float] = None
    budget_max: Optional[float] = None
    brand_prefer: List[str] = Field(default_factory=list)
    brand_avoid: List[str] = Field(default_factory=list)
    usage_notes: Optional[str] = None


class CommentClassification(BaseModel):
    """
    First-stage verdict on a comment. `other` comments carry a ready reply
    grounded on the transcript; `purchase` comments carry the category and
    filters used for product retrieval.
    """

    intent: Literal["purchase", "other"]
    reply_text: Optional[str] = None
    category: Optional[str] = None
    filters: PurchaseFilters = Field(default_factory=PurchaseFilters)
