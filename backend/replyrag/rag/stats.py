from __future__ import annotations

import asyncio
from typing import Dict, Optional

from pydantic import BaseModel, Field

from ..db.catalog_store import CatalogStore, get_catalog_store
from .store import DocumentStore, get_document_store


class RAGStats(BaseModel):
    documents: Dict[str, int] = Field(default_factory=dict)
    chunks: Dict[str, int] = Field(default_factory=dict)
    chunks_with_embeddings: int = 0
    chunks_missing_embeddings: int = 0
    catalog: Dict[str, int] = Field(default_factory=dict)


async def get_stats(
    store: Optional[DocumentStore] = None,
    catalog: Optional[CatalogStore] = None,
) -> RAGStats:
    """Document/chunk counts per source type plus catalog and pool counts."""
    store = store or get_document_store()
    catalog = catalog or get_catalog_store()

    store_stats = await store.stats()
    catalog_counts = await asyncio.to_thread(catalog.counts)
    return RAGStats(
        documents=store_stats.documents,
        chunks=store_stats.chunks,
        chunks_with_embeddings=store_stats.chunks_with_embeddings,
        chunks_missing_embeddings=store_stats.chunks_missing_embeddings,
        catalog=catalog_counts,
    )
