import pytest

from backend.replyrag.rag import relevance_pool
from backend.replyrag.rag.prefilter import prefilter_candidates
from backend.replyrag.rag.rag_config import PoolConfig
from backend.replyrag.schemas.catalog import CatalogItem, ContextProfile


def _item(item_id, **kwargs):
    values = {
        "name": f"Item {item_id}",
        "category": "Notebook",
        "brand": "ASUS",
        "price": 15000.0,
        "tags": ["gaming"],
        "canonical_url": f"https://shop.example/{item_id}",
    }
    values.update(kwargs)
    return CatalogItem(id=item_id, **values)


NOTEBOOK_CONTEXT = ContextProfile(
    context_id="v1",
    category_tags=["notebook"],
    brand_tags=["asus"],
    price_range_min=12000,
    price_range_max=18000,
    tags=["Gaming", "rtx"],
)


def test_score_candidate_weights():
    full = relevance_pool.score_candidate(_item("a", tags=["gaming", "RTX"]), NOTEBOOK_CONTEXT)
    assert full.relevance_score == pytest.approx(1.0)
    assert full.matched_brand and full.matched_category and full.matched_price_range

    partial = relevance_pool.score_candidate(
        _item("b", brand="Acer", tags=["gaming"]), NOTEBOOK_CONTEXT
    )
    assert partial.relevance_score == pytest.approx(0.2 + 0.3 + 0.2)
    assert not partial.matched_brand


def test_price_band_overlap():
    assert relevance_pool.price_band_overlaps(19500, 12000, 18000)
    assert not relevance_pool.price_band_overlaps(10000, 12000, 18000)
    assert not relevance_pool.price_band_overlaps(None, 12000, 18000)


def test_compute_pool_skips_and_keeps_existing(fakes):
    catalog = fakes.catalog
    catalog.upsert_item(_item("a"))
    catalog.upsert_item(_item("b", category="Mouse", brand="Logitech", price=900, tags=[]))

    missing = relevance_pool.compute_pool("nope", catalog=catalog)
    assert missing.skipped_reason == "context_not_found"

    catalog.upsert_context(ContextProfile(context_id="bare"))
    bare = relevance_pool.compute_pool("bare", catalog=catalog)
    assert bare.skipped_reason == "no_metadata"
    assert bare.pool_size == 0

    catalog.upsert_context(NOTEBOOK_CONTEXT)
    first = relevance_pool.compute_pool("v1", catalog=catalog)
    assert first.skipped_reason is None
    assert first.pool_size == 1
    assert relevance_pool.get_pool_ids("v1", catalog=catalog) == ["a"]

    catalog.upsert_item(_item("c"))
    again = relevance_pool.compute_pool("v1", catalog=catalog)
    assert again.skipped_reason == "exists"
    assert again.pool_size == 1

    rebuilt = relevance_pool.compute_pool("v1", overwrite=True, catalog=catalog)
    assert rebuilt.pool_size == 2


def test_pool_is_capped_and_ordered(fakes):
    catalog = fakes.catalog
    catalog.upsert_context(NOTEBOOK_CONTEXT)
    for i in range(5):
        catalog.upsert_item(_item(f"p{i}", brand="Acer" if i % 2 else "ASUS"))
    catalog.upsert_item(_item("off", eligible=False))

    config = PoolConfig(min_score=0.1, max_pool_size=3)
    result = relevance_pool.compute_pool("v1", catalog=catalog, config=config)

    assert result.pool_size == 3
    entries = catalog.get_pool("v1")
    scores = [e.relevance_score for e in entries]
    assert scores == sorted(scores, reverse=True)
    assert "off" not in [e.candidate_id for e in entries]

    stats = relevance_pool.get_pool_stats("v1", catalog=catalog)
    assert stats.total == 3
    assert stats.max_score >= stats.min_score


def test_compute_all_pools_continues_past_failures(fakes, monkeypatch):
    catalog = fakes.catalog
    for i in range(7):
        catalog.upsert_context(ContextProfile(context_id=f"v{i}", category_tags=["Notebook"]))
    catalog.upsert_context(ContextProfile(context_id="bare"))

    def _boom(context_id, **kwargs):
        raise RuntimeError(f"cannot score {context_id}")

    monkeypatch.setattr(relevance_pool, "compute_pool", _boom)

    report = relevance_pool.compute_all_pools(catalog=catalog, error_sample_size=5)
    assert report.processed == 7
    assert report.failed == 7
    assert len(report.errors) == 5
    assert report.success is False


def test_prefilter_applies_structured_filters(fakes):
    catalog = fakes.catalog
    catalog.upsert_item(_item("match"))
    catalog.upsert_item(_item("pricey", price=40000))
    catalog.upsert_item(_item("other-tag", tags=["office"]))
    catalog.upsert_item(_item("hidden", eligible=False))

    ids = [i.id for i in prefilter_candidates(NOTEBOOK_CONTEXT, catalog=catalog)]
    assert ids == ["match"]

    assert prefilter_candidates(ContextProfile(context_id="bare"), catalog=catalog) == []
