from __future__ import annotations

import math
import string
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from ..core.config import settings
from ..core.errors import UpstreamServiceError
from ..core.resources import registry
from ..observability.logging import get_logger
from ..schemas.rag import Chunk, SourceDocument, SourceType, document_id_for

logger = get_logger("rag.store")

DOCUMENT_STORE_RESOURCE = "document_store"


class DocumentStoreError(UpstreamServiceError):
    """Base exception for document store errors."""


@dataclass
class SearchFilters:
    """
    Structured filters shared by vector and keyword search.

    `source_ids` restricts results to documents whose sourceId is in the set;
    an empty set matches nothing, None means unrestricted.
    """

    source_type: Optional[SourceType] = None
    context_id: Optional[str] = None
    source_ids: Optional[Sequence[str]] = None

    @property
    def matches_nothing(self) -> bool:
        return self.source_ids is not None and len(self.source_ids) == 0


@dataclass
class ScoredChunk:
    chunk: Chunk
    score: float


@dataclass
class StoreStats:
    documents: Dict[str, int]
    chunks: Dict[str, int]
    chunks_with_embeddings: int
    chunks_missing_embeddings: int


class DocumentStore(ABC):
    """
    Persists documents and their chunks, and serves vector / keyword search.

    Documents are keyed by (source_type, source_id). Writing a document always
    replaces every chunk it had before.
    """

    @abstractmethod
    async def replace_document(self, document: SourceDocument, chunks: Sequence[Chunk]) -> None:
        ...

    @abstractmethod
    async def get_document(self, source_type: SourceType, source_id: str) -> Optional[SourceDocument]:
        ...

    @abstractmethod
    async def delete_document(self, source_type: SourceType, source_id: str) -> int:
        """Delete a document and its chunks; returns the number of chunks removed."""

    @abstractmethod
    async def get_chunks(self, document_id: str) -> List[Chunk]:
        ...

    @abstractmethod
    async def vector_search(
        self,
        embedding: Sequence[float],
        filters: SearchFilters,
        limit: int,
    ) -> List[ScoredChunk]:
        """Nearest neighbours; `score` is the cosine similarity in [-1, 1]."""

    @abstractmethod
    async def keyword_search(
        self,
        query: str,
        filters: SearchFilters,
        limit: int,
    ) -> List[ScoredChunk]:
        """Lexical ranking; `score` is normalized into [0, 1]."""

    @abstractmethod
    async def list_chunks(
        self,
        source_type: Optional[SourceType] = None,
        only_missing_embeddings: bool = False,
        after_id: Optional[str] = None,
        limit: int = 64,
    ) -> List[Chunk]:
        """Page through chunks ordered by id, starting after `after_id`."""

    @abstractmethod
    async def update_embedding(self, chunk_id: str, embedding: Sequence[float]) -> None:
        ...

    @abstractmethod
    async def stats(self) -> StoreStats:
        ...

    async def has_document(self, source_type: SourceType, source_id: str) -> bool:
        return await self.get_document(source_type, source_id) is not None


def _terms(text: str) -> set[str]:
    out = set()
    for raw in text.lower().split():
        term = raw.strip(string.punctuation)
        if term:
            out.add(term)
    return out


def _score_text_overlap(query: str, text: str) -> float:
    query_terms = _terms(query)
    if not query_terms:
        return 0.0

    text_terms = _terms(text)
    overlap = len(query_terms.intersection(text_terms))
    denom = math.sqrt(len(query_terms) * max(1, len(text_terms)))
    return overlap / denom if denom > 0 else 0.0


def _cosine(a: Sequence[float], b: Sequence[float]) -> float:
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)


class InMemoryDocumentStore(DocumentStore):
    """
    Process-local store: exact cosine similarity and term-overlap keyword
    scoring. Suitable for local runs and tests, not for large catalogs.
    """

    def __init__(self) -> None:
        self._documents: Dict[str, SourceDocument] = {}
        self._chunks: Dict[str, Chunk] = {}

    def _matches(self, chunk: Chunk, filters: SearchFilters) -> bool:
        if filters.source_type is not None and chunk.source_type != filters.source_type:
            return False
        if filters.context_id is not None and chunk.context_id != filters.context_id:
            return False
        if filters.source_ids is not None and chunk.source_id not in set(filters.source_ids):
            return False
        return True

    async def replace_document(self, document: SourceDocument, chunks: Sequence[Chunk]) -> None:
        self._drop_chunks(document.id)
        self._documents[document.id] = document
        for chunk in chunks:
            self._chunks[chunk.id] = chunk

    def _drop_chunks(self, document_id: str) -> int:
        stale = [cid for cid, c in self._chunks.items() if c.document_id == document_id]
        for cid in stale:
            del self._chunks[cid]
        return len(stale)

    async def get_document(self, source_type: SourceType, source_id: str) -> Optional[SourceDocument]:
        return self._documents.get(document_id_for(source_type, source_id))

    async def delete_document(self, source_type: SourceType, source_id: str) -> int:
        document_id = document_id_for(source_type, source_id)
        self._documents.pop(document_id, None)
        return self._drop_chunks(document_id)

    async def get_chunks(self, document_id: str) -> List[Chunk]:
        chunks = [c for c in self._chunks.values() if c.document_id == document_id]
        return sorted(chunks, key=lambda c: c.index)

    async def vector_search(
        self,
        embedding: Sequence[float],
        filters: SearchFilters,
        limit: int,
    ) -> List[ScoredChunk]:
        if filters.matches_nothing:
            return []
        scored = [
            ScoredChunk(chunk=c, score=_cosine(embedding, c.embedding))
            for c in self._chunks.values()
            if c.embedding is not None and self._matches(c, filters)
        ]
        scored.sort(key=lambda s: s.score, reverse=True)
        return scored[:limit]

    async def keyword_search(
        self,
        query: str,
        filters: SearchFilters,
        limit: int,
    ) -> List[ScoredChunk]:
        if filters.matches_nothing:
            return []
        scored = []
        for chunk in self._chunks.values():
            if not self._matches(chunk, filters):
                continue
            score = _score_text_overlap(query=query, text=chunk.text)
            if score > 0:
                scored.append(ScoredChunk(chunk=chunk, score=score))
        scored.sort(key=lambda s: s.score, reverse=True)
        return scored[:limit]

    async def list_chunks(
        self,
        source_type: Optional[SourceType] = None,
        only_missing_embeddings: bool = False,
        after_id: Optional[str] = None,
        limit: int = 64,
    ) -> List[Chunk]:
        out = []
        for chunk_id in sorted(self._chunks):
            if after_id is not None and chunk_id <= after_id:
                continue
            chunk = self._chunks[chunk_id]
            if source_type is not None and chunk.source_type != source_type:
                continue
            if only_missing_embeddings and chunk.embedding is not None:
                continue
            out.append(chunk)
            if len(out) >= limit:
                break
        return out

    async def update_embedding(self, chunk_id: str, embedding: Sequence[float]) -> None:
        chunk = self._chunks.get(chunk_id)
        if chunk is None:
            raise DocumentStoreError(f"Chunk not found: {chunk_id}")
        self._chunks[chunk_id] = chunk.model_copy(update={"embedding": list(embedding)})

    async def stats(self) -> StoreStats:
        documents: Dict[str, int] = {t.value: 0 for t in SourceType}
        chunks: Dict[str, int] = {t.value: 0 for t in SourceType}
        for doc in self._documents.values():
            documents[doc.source_type.value] += 1
        with_embeddings = 0
        for chunk in self._chunks.values():
            chunks[chunk.source_type.value] += 1
            if chunk.embedding is not None:
                with_embeddings += 1
        return StoreStats(
            documents=documents,
            chunks=chunks,
            chunks_with_embeddings=with_embeddings,
            chunks_missing_embeddings=len(self._chunks) - with_embeddings,
        )


def _build_document_store() -> DocumentStore:
    backend = settings.store.backend
    logger.info("Initializing document store", extra={"backend": backend})
    if backend == "memory":
        return InMemoryDocumentStore()

    from .opensearch_store import OpenSearchDocumentStore, get_opensearch_client

    return OpenSearchDocumentStore(
        client=get_opensearch_client(),
        index=settings.store.opensearch_index,
        dimensions=settings.embedding.dimensions,
    )


registry.register(DOCUMENT_STORE_RESOURCE, _build_document_store)


def get_document_store() -> DocumentStore:
    return registry.get(DOCUMENT_STORE_RESOURCE)
