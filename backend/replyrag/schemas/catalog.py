from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field
from pydantic.config import ConfigDict


class CatalogItem(BaseModel):
    """
    A recommendable product as seen by the prefilter and pool builder.

    `id` matches the sourceId of the product's SourceDocument.
    """

    model_config = ConfigDict(extra="ignore")

    id: str
    name: str
    brand: Optional[str] = None
    category: Optional[str] = None
    price: Optional[float] = None
    tags: List[str] = Field(default_factory=list)
    canonical_url: Optional[str] = Field(
        default=None, description="The only URL a reply may link for this item."
    )
    description: str = ""
    eligible: bool = Field(default=True, description="Flagged eligible for recommendation.")
    updated_at: Optional[str] = None


class ContextProfile(BaseModel):
    """Structured signals of one video (a reply context)."""

    model_config = ConfigDict(extra="ignore")

    context_id: str
    title: Optional[str] = None
    category_tags: List[str] = Field(default_factory=list)
    brand_tags: List[str] = Field(default_factory=list)
    price_range_min: Optional[float] = None
    price_range_max: Optional[float] = None
    tags: List[str] = Field(default_factory=list)

    @property
    def has_price_range(self) -> bool:
        return self.price_range_min is not None and self.price_range_max is not None

    @property
    def has_metadata(self) -> bool:
        return bool(self.category_tags or self.brand_tags or self.has_price_range)


class RelevancePoolEntry(BaseModel):
    context_id: str
    candidate_id: str
    relevance_score: float = Field(..., ge=0.0, le=1.0)
    matched_brand: bool = False
    matched_category: bool = False
    matched_price_range: bool = False


class PoolComputeResult(BaseModel):
    context_id: str
    pool_size: int
    avg_score: float = 0.0
    skipped_reason: Optional[str] = None


class PoolStats(BaseModel):
    context_id: str
    total: int = 0
    avg_score: float = 0.0
    max_score: float = 0.0
    min_score: float = 0.0
    brand_matches: int = 0
    category_matches: int = 0
    price_matches: int = 0
