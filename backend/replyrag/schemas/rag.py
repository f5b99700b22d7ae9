from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, Field
from pydantic.config import ConfigDict


class SourceType(str, Enum):
    COMMENT = "comment"
    TRANSCRIPT = "transcript"
    PRODUCT = "product"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CommentMetadata(BaseModel):
    model_config = ConfigDict(extra="ignore")

    source_type: Literal["comment"] = "comment"
    video_id: str
    author_name: str = ""
    published_at: Optional[datetime] = None
    like_count: Optional[int] = None
    is_reply: bool = False
    parent_id: Optional[str] = None

    @property
    def context_id(self) -> Optional[str]:
        return self.video_id


class TranscriptMetadata(BaseModel):
    model_config = ConfigDict(extra="ignore")

    source_type: Literal["transcript"] = "transcript"
    video_id: str
    title: str = ""
    channel_name: str = ""
    published_at: Optional[datetime] = None
    duration: Optional[float] = Field(default=None, description="Video length in seconds.")
    view_count: Optional[int] = None
    start_time: Optional[float] = Field(
        default=None, description="Estimated start of this chunk in seconds."
    )
    end_time: Optional[float] = Field(
        default=None, description="Estimated end of this chunk in seconds."
    )

    @property
    def context_id(self) -> Optional[str]:
        return self.video_id


class ProductMetadata(BaseModel):
    model_config = ConfigDict(extra="ignore")

    source_type: Literal["product"] = "product"
    name: str
    price: Optional[float] = None
    url: Optional[str] = None
    image_url: Optional[str] = None
    category: Optional[str] = None
    brand: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    chunk_type: Literal["summary", "detail"] = "detail"

    @property
    def context_id(self) -> Optional[str]:
        return None


DocumentMetadata = Annotated[
    Union[CommentMetadata, TranscriptMetadata, ProductMetadata],
    Field(discriminator="source_type"),
]


def document_id_for(source_type: SourceType, source_id: str) -> str:
    return f"{source_type.value}:{source_id}"


def chunk_id_for(document_id: str, index: int) -> str:
    return f"{document_id}:{index}"


class SourceDocument(BaseModel):
    """One ingested comment, transcript or product; owns 1..N chunks."""

    id: str
    source_type: SourceType
    source_id: str = Field(..., description="External natural key (comment id, video id, product id).")
    metadata: DocumentMetadata
    created_at: datetime = Field(default_factory=_utcnow)


class Chunk(BaseModel):
    """
    A bounded, ordered segment of a source document.

    `metadata` is a snapshot of the owning document's metadata at ingest time
    (per-chunk fields such as transcript timing are filled in here).
    """

    id: str
    document_id: str
    source_type: SourceType
    source_id: str
    index: int = Field(..., ge=0)
    text: str
    tokens: int = 0
    start_char: int = 0
    end_char: int = 0
    metadata: DocumentMetadata
    embedding: Optional[List[float]] = None

    @property
    def context_id(self) -> Optional[str]:
        return self.metadata.context_id


class SearchResult(BaseModel):
    chunk_id: str
    document_id: str
    chunk_index: int
    text: str
    metadata: DocumentMetadata
    score: float
    source_type: SourceType
    source_id: str

    # Filled in by price re-ranking.
    semantic_score: Optional[float] = None
    price_score: Optional[float] = None
    reranked: bool = False
    penalized: bool = False

    @property
    def price(self) -> Optional[float]:
        if isinstance(self.metadata, ProductMetadata):
            return self.metadata.price
        return None


class QueryIntent(BaseModel):
    """Signals parsed out of a free-text comment."""

    brands: List[str] = Field(default_factory=list)
    price: Optional[float] = Field(
        default=None, description="Single budget figure mentioned in the text."
    )
    price_range: Optional[Tuple[float, float]] = None
    usage_category: Optional[str] = None
    component_categories: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
