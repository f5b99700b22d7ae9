from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional, Sequence

from opensearchpy import OpenSearch, helpers
from pydantic import TypeAdapter

from ..core.config import settings
from ..core.resources import registry
from ..observability.logging import get_logger
from ..schemas.rag import (
    Chunk,
    DocumentMetadata,
    SourceDocument,
    SourceType,
    document_id_for,
)
from .store import (
    DocumentStore,
    DocumentStoreError,
    ScoredChunk,
    SearchFilters,
    StoreStats,
)

logger = get_logger("rag.opensearch_store")

OPENSEARCH_RESOURCE = "opensearch_client"

_metadata_adapter: TypeAdapter[Any] = TypeAdapter(DocumentMetadata)

_CHUNK_SOURCE_FIELDS = [
    "id",
    "document_id",
    "source_type",
    "source_id",
    "chunk_index",
    "text",
    "tokens",
    "start_char",
    "end_char",
    "metadata",
]


def _new_opensearch_client() -> OpenSearch:
    return OpenSearch(
        hosts=[settings.store.opensearch_url],
        timeout=settings.store.opensearch_timeout_seconds,
        use_ssl=False,
        verify_certs=False,
    )


registry.register(
    OPENSEARCH_RESOURCE,
    _new_opensearch_client,
    finalizer=lambda client: client.close(),
)


def get_opensearch_client() -> OpenSearch:
    return registry.get(OPENSEARCH_RESOURCE)


def _chunk_mapping(dims: int) -> Dict[str, Any]:
    return {
        "settings": {
            "index": {
                "number_of_shards": 1,
                "number_of_replicas": 0,
                "knn": True,
            }
        },
        "mappings": {
            "properties": {
                "id": {"type": "keyword"},
                "document_id": {"type": "keyword"},
                "source_type": {"type": "keyword"},
                "source_id": {"type": "keyword"},
                "context_id": {"type": "keyword"},
                "chunk_index": {"type": "integer"},
                "text": {"type": "text"},
                "tokens": {"type": "integer"},
                "start_char": {"type": "integer"},
                "end_char": {"type": "integer"},
                "metadata": {"type": "object", "enabled": False},
                "embedding": {
                    "type": "knn_vector",
                    "dimension": dims,
                    "method": {
                        "name": "hnsw",
                        "space_type": "cosinesimil",
                        "engine": "lucene",
                    },
                },
            }
        },
    }


def _document_mapping() -> Dict[str, Any]:
    return {
        "settings": {"index": {"number_of_shards": 1, "number_of_replicas": 0}},
        "mappings": {
            "properties": {
                "id": {"type": "keyword"},
                "source_type": {"type": "keyword"},
                "source_id": {"type": "keyword"},
                "metadata": {"type": "object", "enabled": False},
                "created_at": {"type": "date"},
            }
        },
    }


def _filter_clauses(filters: SearchFilters) -> List[Dict[str, Any]]:
    clauses: List[Dict[str, Any]] = []
    if filters.source_type is not None:
        clauses.append({"term": {"source_type": filters.source_type.value}})
    if filters.context_id is not None:
        clauses.append({"term": {"context_id": filters.context_id}})
    if filters.source_ids is not None:
        clauses.append({"terms": {"source_id": list(filters.source_ids)}})
    return clauses


def _cosine_from_score(score: float) -> float:
    # lucene cosinesimil scores are (1 + cos) / 2
    return 2.0 * score - 1.0


class OpenSearchDocumentStore(DocumentStore):
    """
    Chunks live in `index` (k-NN + BM25); documents in `{index}_documents`.

    The client is synchronous; every call runs in a worker thread.
    """

    def __init__(self, client: OpenSearch, index: str, dimensions: int) -> None:
        self.client = client
        self.index = index
        self.documents_index = f"{index}_documents"
        self.dimensions = dimensions
        self._ensured = False

    # Index management

    def _ensure_indices(self) -> None:
        if self._ensured:
            return
        if not self.client.indices.exists(index=self.index):
            self.client.indices.create(index=self.index, body=_chunk_mapping(self.dimensions))
            logger.info("Created chunk index", extra={"index": self.index})
        if not self.client.indices.exists(index=self.documents_index):
            self.client.indices.create(index=self.documents_index, body=_document_mapping())
            logger.info("Created document index", extra={"index": self.documents_index})
        self._ensured = True

    async def _run(self, func: Any, *args: Any) -> Any:
        def call() -> Any:
            self._ensure_indices()
            return func(*args)

        try:
            return await asyncio.to_thread(call)
        except DocumentStoreError:
            raise
        except Exception as exc:
            raise DocumentStoreError(f"OpenSearch request failed: {exc}") from exc

    # Conversions

    def _chunk_source(self, chunk: Chunk) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "id": chunk.id,
            "document_id": chunk.document_id,
            "source_type": chunk.source_type.value,
            "source_id": chunk.source_id,
            "context_id": chunk.context_id,
            "chunk_index": chunk.index,
            "text": chunk.text,
            "tokens": chunk.tokens,
            "start_char": chunk.start_char,
            "end_char": chunk.end_char,
            "metadata": chunk.metadata.model_dump(mode="json"),
        }
        if chunk.embedding is not None:
            body["embedding"] = chunk.embedding
        return body

    @staticmethod
    def _hit_to_chunk(hit: Dict[str, Any]) -> Chunk:
        src = hit.get("_source", {})
        return Chunk(
            id=src.get("id") or hit.get("_id") or "",
            document_id=src["document_id"],
            source_type=SourceType(src["source_type"]),
            source_id=src["source_id"],
            index=int(src.get("chunk_index", 0)),
            text=src.get("text", ""),
            tokens=int(src.get("tokens", 0)),
            start_char=int(src.get("start_char", 0)),
            end_char=int(src.get("end_char", 0)),
            metadata=_metadata_adapter.validate_python(src.get("metadata") or {}),
            embedding=src.get("embedding"),
        )

    # Sync operations

    def _replace_document_sync(self, document: SourceDocument, chunks: Sequence[Chunk]) -> None:
        self.client.delete_by_query(
            index=self.index,
            body={"query": {"term": {"document_id": document.id}}},
            refresh=True,
        )
        self.client.index(
            index=self.documents_index,
            id=document.id,
            body={
                "id": document.id,
                "source_type": document.source_type.value,
                "source_id": document.source_id,
                "metadata": document.metadata.model_dump(mode="json"),
                "created_at": document.created_at.isoformat(),
            },
            refresh=True,
        )
        actions = [
            {"_index": self.index, "_id": chunk.id, "_source": self._chunk_source(chunk)}
            for chunk in chunks
        ]
        if actions:
            helpers.bulk(self.client, actions, refresh=True)

    def _get_document_sync(self, source_type: SourceType, source_id: str) -> Optional[SourceDocument]:
        document_id = document_id_for(source_type, source_id)
        if not self.client.exists(index=self.documents_index, id=document_id):
            return None
        src = self.client.get(index=self.documents_index, id=document_id)["_source"]
        return SourceDocument(
            id=src["id"],
            source_type=SourceType(src["source_type"]),
            source_id=src["source_id"],
            metadata=_metadata_adapter.validate_python(src["metadata"]),
            created_at=src["created_at"],
        )

    def _delete_document_sync(self, source_type: SourceType, source_id: str) -> int:
        document_id = document_id_for(source_type, source_id)
        resp = self.client.delete_by_query(
            index=self.index,
            body={"query": {"term": {"document_id": document_id}}},
            refresh=True,
        )
        if self.client.exists(index=self.documents_index, id=document_id):
            self.client.delete(index=self.documents_index, id=document_id, refresh=True)
        return int(resp.get("deleted", 0))

    def _get_chunks_sync(self, document_id: str) -> List[Chunk]:
        resp = self.client.search(
            index=self.index,
            body={
                "size": 1000,
                "query": {"term": {"document_id": document_id}},
                "sort": [{"chunk_index": "asc"}],
            },
        )
        return [self._hit_to_chunk(h) for h in resp.get("hits", {}).get("hits", [])]

    def _vector_search_sync(
        self, embedding: Sequence[float], filters: SearchFilters, limit: int
    ) -> List[ScoredChunk]:
        knn: Dict[str, Any] = {"vector": list(embedding), "k": limit}
        clauses = _filter_clauses(filters)
        if clauses:
            knn["filter"] = {"bool": {"filter": clauses}}
        payload: Dict[str, Any] = {
            "size": limit,
            "_source": _CHUNK_SOURCE_FIELDS,
            "query": {"knn": {"embedding": knn}},
        }
        resp = self.client.search(index=self.index, body=payload)
        hits = resp.get("hits", {}).get("hits", [])
        return [
            ScoredChunk(chunk=self._hit_to_chunk(h), score=_cosine_from_score(float(h["_score"])))
            for h in hits
        ]

    def _keyword_search_sync(
        self, query: str, filters: SearchFilters, limit: int
    ) -> List[ScoredChunk]:
        payload: Dict[str, Any] = {
            "size": limit,
            "_source": _CHUNK_SOURCE_FIELDS,
            "query": {
                "bool": {
                    "must": [{"match": {"text": {"query": query}}}],
                    "filter": _filter_clauses(filters),
                }
            },
        }
        resp = self.client.search(index=self.index, body=payload)
        hits = resp.get("hits", {}).get("hits", [])
        if not hits:
            return []
        # BM25 is unbounded; scale by the best hit so scores land in [0, 1].
        max_score = max(float(h["_score"]) for h in hits) or 1.0
        return [
            ScoredChunk(chunk=self._hit_to_chunk(h), score=float(h["_score"]) / max_score)
            for h in hits
        ]

    def _list_chunks_sync(
        self,
        source_type: Optional[SourceType],
        only_missing_embeddings: bool,
        after_id: Optional[str],
        limit: int,
    ) -> List[Chunk]:
        query: Dict[str, Any] = {"bool": {"filter": [], "must_not": []}}
        if source_type is not None:
            query["bool"]["filter"].append({"term": {"source_type": source_type.value}})
        if only_missing_embeddings:
            query["bool"]["must_not"].append({"exists": {"field": "embedding"}})
        payload: Dict[str, Any] = {
            "size": limit,
            "query": query,
            "sort": [{"id": "asc"}],
        }
        if after_id is not None:
            payload["search_after"] = [after_id]
        resp = self.client.search(index=self.index, body=payload)
        return [self._hit_to_chunk(h) for h in resp.get("hits", {}).get("hits", [])]

    def _update_embedding_sync(self, chunk_id: str, embedding: Sequence[float]) -> None:
        self.client.update(
            index=self.index,
            id=chunk_id,
            body={"doc": {"embedding": list(embedding)}},
        )

    def _stats_sync(self) -> StoreStats:
        def by_type(index: str) -> Dict[str, int]:
            resp = self.client.search(
                index=index,
                body={
                    "size": 0,
                    "aggs": {"by_type": {"terms": {"field": "source_type"}}},
                },
            )
            counts = {t.value: 0 for t in SourceType}
            for bucket in resp.get("aggregations", {}).get("by_type", {}).get("buckets", []):
                counts[bucket["key"]] = int(bucket["doc_count"])
            return counts

        chunks = by_type(self.index)
        missing = self.client.count(
            index=self.index,
            body={"query": {"bool": {"must_not": [{"exists": {"field": "embedding"}}]}}},
        )["count"]
        total = sum(chunks.values())
        return StoreStats(
            documents=by_type(self.documents_index),
            chunks=chunks,
            chunks_with_embeddings=total - int(missing),
            chunks_missing_embeddings=int(missing),
        )

    # Async interface

    async def replace_document(self, document: SourceDocument, chunks: Sequence[Chunk]) -> None:
        await self._run(self._replace_document_sync, document, chunks)

    async def get_document(self, source_type: SourceType, source_id: str) -> Optional[SourceDocument]:
        return await self._run(self._get_document_sync, source_type, source_id)

    async def delete_document(self, source_type: SourceType, source_id: str) -> int:
        return await self._run(self._delete_document_sync, source_type, source_id)

    async def get_chunks(self, document_id: str) -> List[Chunk]:
        return await self._run(self._get_chunks_sync, document_id)

    async def vector_search(
        self,
        embedding: Sequence[float],
        filters: SearchFilters,
        limit: int,
    ) -> List[ScoredChunk]:
        if filters.matches_nothing:
            return []
        return await self._run(self._vector_search_sync, embedding, filters, limit)

    async def keyword_search(
        self,
        query: str,
        filters: SearchFilters,
        limit: int,
    ) -> List[ScoredChunk]:
        if filters.matches_nothing:
            return []
        return await self._run(self._keyword_search_sync, query, filters, limit)

    async def list_chunks(
        self,
        source_type: Optional[SourceType] = None,
        only_missing_embeddings: bool = False,
        after_id: Optional[str] = None,
        limit: int = 64,
    ) -> List[Chunk]:
        return await self._run(
            self._list_chunks_sync, source_type, only_missing_embeddings, after_id, limit
        )

    async def update_embedding(self, chunk_id: str, embedding: Sequence[float]) -> None:
        await self._run(self._update_embedding_sync, chunk_id, embedding)

    async def stats(self) -> StoreStats:
        return await self._run(self._stats_sync)
