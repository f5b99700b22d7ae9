from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from ..core.errors import ValidationError
from ..db.catalog_store import CatalogStore, get_catalog_store
from ..observability.domain_metrics import retrieval_tier_failures_total, retrieval_tier_total
from ..observability.logging import get_logger
from ..observability.otel import tracer
from ..schemas.rag import SearchResult, SourceType
from .embeddings import EmbeddingGateway, get_embedding_gateway
from .prefilter import prefilter_candidates
from .rag_config import get_rag_config
from .relevance_pool import get_pool_ids
from .store import (
    DocumentStore,
    ScoredChunk,
    SearchFilters,
    get_document_store,
)

logger = get_logger("rag.retriever")

TIER_POOL = "pool"
TIER_PREFILTER = "prefilter"
TIER_FULL_SCAN = "full_scan"


@dataclass
class SearchOptions:
    top_k: int = 5
    source_type: Optional[SourceType] = None
    context_id: Optional[str] = None
    min_score: float = 0.2
    vector_weight: float = 0.7
    keyword_weight: float = 0.3

    @classmethod
    def from_config(cls, **overrides) -> "SearchOptions":
        cfg = get_rag_config().retrieval
        values = {
            "top_k": cfg.default_top_k,
            "min_score": cfg.min_score,
            "vector_weight": cfg.vector_weight,
            "keyword_weight": cfg.keyword_weight,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


@dataclass
class RetrievalRequest:
    query: str
    embedding: List[float]
    options: SearchOptions
    store: DocumentStore
    catalog: CatalogStore


@dataclass
class RetrievalOutcome:
    results: List[SearchResult]
    tier: str


Strategy = Callable[[RetrievalRequest], Awaitable[List[SearchResult]]]


def _to_result(scored: ScoredChunk, score: float) -> SearchResult:
    chunk = scored.chunk
    return SearchResult(
        chunk_id=chunk.id,
        document_id=chunk.document_id,
        chunk_index=chunk.index,
        text=chunk.text,
        metadata=chunk.metadata,
        score=score,
        source_type=chunk.source_type,
        source_id=chunk.source_id,
    )


def merge_hybrid(
    vector_hits: Sequence[ScoredChunk],
    keyword_hits: Sequence[ScoredChunk],
    vector_weight: float,
    keyword_weight: float,
) -> List[SearchResult]:
    """
    Merge both result lists by chunk id:
    combined = vectorScore·vectorWeight + keywordScore·keywordWeight,
    where a chunk missing from one list contributes only the other term.
    Vector scores are cosine similarities clamped to [0, 1].
    """
    by_id: Dict[str, ScoredChunk] = {}
    combined: Dict[str, float] = {}

    for hit in vector_hits:
        cid = hit.chunk.id
        by_id[cid] = hit
        clamped = min(1.0, max(0.0, hit.score))
        combined[cid] = combined.get(cid, 0.0) + clamped * vector_weight

    for hit in keyword_hits:
        cid = hit.chunk.id
        by_id.setdefault(cid, hit)
        combined[cid] = combined.get(cid, 0.0) + hit.score * keyword_weight

    ranked = sorted(combined, key=lambda cid: (-combined[cid], cid))
    return [_to_result(by_id[cid], combined[cid]) for cid in ranked]


async def hybrid_search(
    query: str,
    embedding: Sequence[float],
    filters: SearchFilters,
    options: SearchOptions,
    store: DocumentStore,
) -> List[SearchResult]:
    """
    Vector and keyword search run concurrently, each fetching 2·top_k hits.
    A failing sub-search counts as empty, so the query never fails here.
    """
    if filters.matches_nothing:
        return []

    limit = 2 * options.top_k

    async def _vector() -> Optional[List[ScoredChunk]]:
        try:
            return await store.vector_search(embedding, filters, limit)
        except Exception as exc:
            logger.error("Vector sub-search failed", extra={"error": str(exc)})
            return None

    async def _keyword() -> Optional[List[ScoredChunk]]:
        try:
            return await store.keyword_search(query, filters, limit)
        except Exception as exc:
            logger.error("Keyword sub-search failed", extra={"error": str(exc)})
            return None

    vector_hits, keyword_hits = await asyncio.gather(_vector(), _keyword())
    if vector_hits is None and keyword_hits is None:
        logger.warning(
            "Both sub-searches failed, returning no results",
            extra={"source_type": filters.source_type, "top_k": options.top_k},
        )
        return []

    merged = merge_hybrid(
        vector_hits or [],
        keyword_hits or [],
        options.vector_weight,
        options.keyword_weight,
    )
    kept = [r for r in merged if r.score >= options.min_score]
    return kept[: options.top_k]


async def pool_strategy(request: RetrievalRequest) -> List[SearchResult]:
    """Restrict the product search to the context's precomputed relevance pool."""
    context_id = request.options.context_id
    if not context_id:
        return []
    ids = await asyncio.to_thread(get_pool_ids, context_id, catalog=request.catalog)
    if not ids:
        return []
    filters = SearchFilters(source_type=SourceType.PRODUCT, source_ids=ids)
    return await hybrid_search(
        request.query, request.embedding, filters, request.options, request.store
    )


async def prefilter_strategy(request: RetrievalRequest) -> List[SearchResult]:
    """Run the metadata prefilter inline and search that subset."""
    context_id = request.options.context_id
    if not context_id:
        return []
    context = await asyncio.to_thread(request.catalog.get_context, context_id)
    if context is None or not context.has_metadata:
        return []
    items = await asyncio.to_thread(prefilter_candidates, context, catalog=request.catalog)
    if not items:
        return []
    filters = SearchFilters(source_type=SourceType.PRODUCT, source_ids=[i.id for i in items])
    return await hybrid_search(
        request.query, request.embedding, filters, request.options, request.store
    )


async def full_scan_strategy(request: RetrievalRequest) -> List[SearchResult]:
    """Unrestricted search over the whole source-type partition."""
    options = request.options
    # Products are not scoped to a video, so the context filter only applies
    # to transcripts and comments.
    context_id = options.context_id if options.source_type != SourceType.PRODUCT else None
    filters = SearchFilters(source_type=options.source_type, context_id=context_id)
    return await hybrid_search(
        request.query, request.embedding, filters, options, request.store
    )


def strategies_for(options: SearchOptions) -> List[Tuple[str, Strategy]]:
    if options.source_type == SourceType.PRODUCT and options.context_id:
        return [
            (TIER_POOL, pool_strategy),
            (TIER_PREFILTER, prefilter_strategy),
            (TIER_FULL_SCAN, full_scan_strategy),
        ]
    return [(TIER_FULL_SCAN, full_scan_strategy)]


async def run_strategies(
    strategies: Sequence[Tuple[str, Strategy]],
    request: RetrievalRequest,
) -> RetrievalOutcome:
    """
    Try each strategy in order. An empty result or an error moves on to the
    next one; only the last strategy's error reaches the caller.
    """
    if not strategies:
        raise ValidationError("At least one retrieval strategy is required")

    source_type = request.options.source_type.value if request.options.source_type else "any"
    last_index = len(strategies) - 1

    for index, (tier, strategy) in enumerate(strategies):
        try:
            with tracer.start_as_current_span("retrieval.tier") as span:
                span.set_attribute("retrieval.tier", tier)
                span.set_attribute("retrieval.source_type", source_type)
                results = await strategy(request)
        except Exception as exc:
            if index == last_index:
                logger.error(
                    "Final retrieval tier failed",
                    extra={"tier": tier, "error": str(exc)},
                )
                raise
            logger.warning(
                "Retrieval tier failed, trying next",
                extra={"tier": tier, "error": str(exc)},
            )
            retrieval_tier_failures_total.labels(tier=tier).inc()
            continue

        if results or index == last_index:
            retrieval_tier_total.labels(source_type=source_type, tier=tier).inc()
            logger.info(
                "Retrieval tier selected",
                extra={"tier": tier, "source_type": source_type, "results": len(results)},
            )
            return RetrievalOutcome(results=results, tier=tier)

        logger.info("Retrieval tier empty, trying next", extra={"tier": tier})

    raise AssertionError("unreachable")


def _validate(options: SearchOptions) -> SearchOptions:
    cfg = get_rag_config().retrieval
    if options.top_k <= 0:
        raise ValidationError(f"top_k must be positive, got {options.top_k}")
    if options.vector_weight < 0 or options.keyword_weight < 0:
        raise ValidationError("Search weights must be non-negative")
    if options.top_k > cfg.max_top_k:
        options.top_k = cfg.max_top_k
    return options


async def search(
    query: str,
    options: Optional[SearchOptions] = None,
    embedding: Optional[Sequence[float]] = None,
    store: Optional[DocumentStore] = None,
    catalog: Optional[CatalogStore] = None,
    gateway: Optional[EmbeddingGateway] = None,
) -> RetrievalOutcome:
    """
    Top-K hybrid search. Product searches on behalf of a context go through
    the pool -> prefilter -> full scan chain; everything else is a full scan
    filtered by source type and context.

    The query is embedded once unless `embedding` is supplied; an embedding
    failure is raised to the caller.
    """
    options = _validate(options or SearchOptions.from_config())

    if embedding is None:
        gateway = gateway or get_embedding_gateway()
        embedding = await gateway.aembed_query(query)

    request = RetrievalRequest(
        query=query,
        embedding=list(embedding),
        options=options,
        store=store or get_document_store(),
        catalog=catalog or get_catalog_store(),
    )
    return await run_strategies(strategies_for(options), request)
