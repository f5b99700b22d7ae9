import asyncio

import pytest

from backend.replyrag.core.errors import ValidationError
from backend.replyrag.rag import retriever
from backend.replyrag.rag.ingest import ingest_product, ingest_transcript
from backend.replyrag.rag.relevance_pool import compute_pool
from backend.replyrag.rag.store import (
    DocumentStoreError,
    InMemoryDocumentStore,
    ScoredChunk,
    SearchFilters,
)
from backend.replyrag.schemas.catalog import ContextProfile
from backend.replyrag.schemas.ingest import ProductInput, TranscriptInput
from backend.replyrag.schemas.rag import Chunk, ProductMetadata, SourceType


def _chunk(chunk_id):
    return Chunk(
        id=chunk_id,
        document_id=f"product:{chunk_id}",
        source_type=SourceType.PRODUCT,
        source_id=chunk_id,
        index=0,
        text=f"text {chunk_id}",
        metadata=ProductMetadata(name=chunk_id),
    )


def _options(**kwargs):
    values = {"top_k": 5, "min_score": 0.0}
    values.update(kwargs)
    return retriever.SearchOptions(**values)


def _seed_products(env):
    products = [
        ProductInput(
            product_id="nb-1",
            name="Gaming notebook RTX 4050",
            description="Gaming notebook with RTX graphics and 144Hz screen.",
            price=14990,
            url="https://shop.example/nb-1",
            category="Notebook",
            brand="ASUS",
            tags=["gaming"],
        ),
        ProductInput(
            product_id="mouse-1",
            name="Wireless mouse",
            description="Quiet wireless mouse for office work.",
            price=590,
            url="https://shop.example/mouse-1",
            category="Mouse",
            brand="Logitech",
        ),
    ]
    for product in products:
        asyncio.run(
            ingest_product(product, store=env.store, gateway=env.gateway, catalog=env.catalog)
        )


def test_merge_hybrid_weights_and_clamps():
    merged = retriever.merge_hybrid(
        [ScoredChunk(_chunk("a"), 0.8), ScoredChunk(_chunk("b"), -0.5)],
        [ScoredChunk(_chunk("a"), 0.5), ScoredChunk(_chunk("c"), 1.0)],
        vector_weight=0.7,
        keyword_weight=0.3,
    )

    assert [r.chunk_id for r in merged] == ["a", "c", "b"]
    assert merged[0].score == pytest.approx(0.8 * 0.7 + 0.5 * 0.3)
    assert merged[1].score == pytest.approx(0.3)
    assert merged[2].score == pytest.approx(0.0)


class _VectorDownStore(InMemoryDocumentStore):
    async def vector_search(self, embedding, filters, limit):
        raise DocumentStoreError("knn unavailable")


class _AllDownStore(_VectorDownStore):
    async def keyword_search(self, query, filters, limit):
        raise DocumentStoreError("bm25 unavailable")


def test_failing_sub_searches_count_as_empty(fakes):
    store = _VectorDownStore()
    asyncio.run(
        ingest_product(
            ProductInput(product_id="nb-1", name="Gaming notebook", description="RTX gaming notebook"),
            store=store,
            gateway=fakes.gateway,
            catalog=fakes.catalog,
        )
    )
    embedding = fakes.gateway.embed_texts(["gaming notebook"])[0]

    results = asyncio.run(
        retriever.hybrid_search("gaming notebook", embedding, SearchFilters(), _options(), store)
    )
    assert results
    assert all(r.source_id == "nb-1" for r in results)

    both_down = asyncio.run(
        retriever.hybrid_search(
            "gaming notebook", embedding, SearchFilters(), _options(), _AllDownStore()
        )
    )
    assert both_down == []


def test_empty_id_set_matches_nothing(fakes):
    _seed_products(fakes)
    results = asyncio.run(
        retriever.hybrid_search(
            "gaming notebook",
            [0.1] * 32,
            SearchFilters(source_ids=[]),
            _options(),
            fakes.store,
        )
    )
    assert results == []


def test_context_without_metadata_goes_to_full_scan(fakes):
    _seed_products(fakes)
    fakes.catalog.upsert_context(ContextProfile(context_id="v1"))

    outcome = asyncio.run(
        retriever.search(
            "gaming notebook",
            _options(source_type=SourceType.PRODUCT, context_id="v1"),
            store=fakes.store,
            catalog=fakes.catalog,
            gateway=fakes.gateway,
        )
    )
    assert outcome.tier == retriever.TIER_FULL_SCAN
    assert {r.source_id for r in outcome.results} == {"nb-1", "mouse-1"}


def test_pool_tier_restricts_to_pool_members(fakes):
    _seed_products(fakes)
    fakes.catalog.upsert_context(
        ContextProfile(
            context_id="v1",
            category_tags=["Notebook"],
            price_range_min=12000,
            price_range_max=18000,
        )
    )
    compute_pool("v1", catalog=fakes.catalog)

    outcome = asyncio.run(
        retriever.search(
            "gaming notebook",
            _options(source_type=SourceType.PRODUCT, context_id="v1"),
            store=fakes.store,
            catalog=fakes.catalog,
            gateway=fakes.gateway,
        )
    )
    assert outcome.tier == retriever.TIER_POOL
    assert outcome.results
    assert {r.source_id for r in outcome.results} == {"nb-1"}


def test_pool_failure_falls_back_to_prefilter(fakes, monkeypatch):
    _seed_products(fakes)
    fakes.catalog.upsert_context(ContextProfile(context_id="v1", category_tags=["Notebook"]))

    def _pool_down(*args, **kwargs):
        raise DocumentStoreError("pool table locked")

    monkeypatch.setattr(retriever, "get_pool_ids", _pool_down)

    outcome = asyncio.run(
        retriever.search(
            "gaming notebook",
            _options(source_type=SourceType.PRODUCT, context_id="v1"),
            store=fakes.store,
            catalog=fakes.catalog,
            gateway=fakes.gateway,
        )
    )
    assert outcome.tier == retriever.TIER_PREFILTER
    assert {r.source_id for r in outcome.results} == {"nb-1"}


def test_transcript_search_is_scoped_to_context(fakes):
    for video_id in ("v1", "v2"):
        asyncio.run(
            ingest_transcript(
                TranscriptInput(video_id=video_id, text="Review of a gaming notebook."),
                store=fakes.store,
                gateway=fakes.gateway,
            )
        )

    outcome = asyncio.run(
        retriever.search(
            "gaming notebook",
            _options(source_type=SourceType.TRANSCRIPT, context_id="v2"),
            store=fakes.store,
            catalog=fakes.catalog,
            gateway=fakes.gateway,
        )
    )
    assert outcome.tier == retriever.TIER_FULL_SCAN
    assert [r.source_id for r in outcome.results] == ["v2"]


def test_invalid_options_are_rejected(fakes):
    with pytest.raises(ValidationError):
        asyncio.run(retriever.search("x", _options(top_k=0), embedding=[0.0] * 32))
    with pytest.raises(ValidationError):
        asyncio.run(retriever.search("x", _options(vector_weight=-1.0), embedding=[0.0] * 32))


def test_top_k_is_clamped(fakes):
    options = _options(top_k=10_000)
    asyncio.run(retriever.search("gaming", options, embedding=[0.0] * 32))
    assert options.top_k == 50
