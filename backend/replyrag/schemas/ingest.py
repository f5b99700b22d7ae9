from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, computed_field

from .rag import SourceType


class CommentInput(BaseModel):
    comment_id: str
    video_id: str
    text: str
    author_name: str = ""
    published_at: Optional[datetime] = None
    like_count: Optional[int] = None
    is_reply: bool = False
    parent_id: Optional[str] = None


class TranscriptInput(BaseModel):
    video_id: str
    text: str
    title: str = ""
    channel_name: str = ""
    published_at: Optional[datetime] = None
    duration: Optional[float] = Field(default=None, description="Seconds.")
    view_count: Optional[int] = None


class ProductInput(BaseModel):
    product_id: str
    name: str
    description: str = ""
    price: Optional[float] = None
    url: Optional[str] = None
    image_url: Optional[str] = None
    category: Optional[str] = None
    brand: Optional[str] = None
    tags: List[str] = Field(default_factory=list)


class IngestResult(BaseModel):
    document_id: str
    source_type: SourceType
    source_id: str
    chunks: int = 0
    status: Literal["created", "replaced", "skipped"] = "created"


class BatchReport(BaseModel):
    """
    Outcome of a batch job. The batch counts as successful only with zero
    failures; `errors` holds a capped sample of failure messages.
    """

    processed: int = 0
    successful: int = 0
    failed: int = 0
    skipped: int = 0
    errors: List[str] = Field(default_factory=list)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def success(self) -> bool:
        return self.failed == 0

    def record_error(self, message: str, sample_size: int = 5) -> None:
        self.failed += 1
        if len(self.errors) < sample_size:
            self.errors.append(message)
