from __future__ import annotations

from typing import List, Optional, Sequence

from ..db.catalog_store import CatalogStore, get_catalog_store
from ..observability.domain_metrics import pool_computations_total
from ..observability.logging import get_logger
from ..schemas.catalog import (
    CatalogItem,
    ContextProfile,
    PoolComputeResult,
    PoolStats,
    RelevancePoolEntry,
)
from ..schemas.ingest import BatchReport
from .rag_config import PoolConfig, get_rag_config

logger = get_logger("rag.relevance_pool")

TAG_WEIGHT = 0.4
CATEGORY_WEIGHT = 0.3
PRICE_WEIGHT = 0.2
BRAND_WEIGHT = 0.1


def _lower_set(values: Sequence[str]) -> set[str]:
    return {v.strip().lower() for v in values if v and v.strip()}


def price_band_overlaps(
    price: Optional[float],
    range_min: Optional[float],
    range_max: Optional[float],
    band: float = 0.1,
) -> bool:
    """True iff [price·(1-band), price·(1+band)] intersects [range_min, range_max]."""
    if price is None or price <= 0 or range_min is None or range_max is None:
        return False
    low = price * (1 - band)
    high = price * (1 + band)
    return low <= range_max and high >= range_min


def score_candidate(
    item: CatalogItem,
    context: ContextProfile,
    price_band: float = 0.1,
) -> RelevancePoolEntry:
    """
    score = 0.4·tagOverlapRatio + 0.3·category + 0.2·priceOverlap + 0.1·brand

    tagOverlapRatio is |item tags ∩ context tags| / |context tags| (0 without
    context tags). Comparisons are case-insensitive.
    """
    context_tags = _lower_set(context.tags)
    tag_ratio = 0.0
    if context_tags:
        tag_ratio = len(context_tags & _lower_set(item.tags)) / len(context_tags)

    matched_category = bool(item.category) and item.category.strip().lower() in _lower_set(
        context.category_tags
    )
    matched_brand = bool(item.brand) and item.brand.strip().lower() in _lower_set(
        context.brand_tags
    )
    matched_price = price_band_overlaps(
        item.price, context.price_range_min, context.price_range_max, price_band
    )

    score = (
        TAG_WEIGHT * tag_ratio
        + CATEGORY_WEIGHT * float(matched_category)
        + PRICE_WEIGHT * float(matched_price)
        + BRAND_WEIGHT * float(matched_brand)
    )
    return RelevancePoolEntry(
        context_id=context.context_id,
        candidate_id=item.id,
        relevance_score=min(1.0, round(score, 6)),
        matched_brand=matched_brand,
        matched_category=matched_category,
        matched_price_range=matched_price,
    )


def build_pool_entries(
    context: ContextProfile,
    items: Sequence[CatalogItem],
    config: Optional[PoolConfig] = None,
) -> List[RelevancePoolEntry]:
    """Score, drop below the minimum, sort descending, cap at the max pool size."""
    cfg = config or get_rag_config().pool
    scored = [score_candidate(item, context, cfg.price_band) for item in items if item.eligible]
    kept = [e for e in scored if e.relevance_score >= cfg.min_score]
    kept.sort(key=lambda e: (-e.relevance_score, e.candidate_id))
    return kept[: cfg.max_pool_size]


def _avg(entries: Sequence[RelevancePoolEntry]) -> float:
    if not entries:
        return 0.0
    return sum(e.relevance_score for e in entries) / len(entries)


def compute_pool(
    context_id: str,
    overwrite: bool = False,
    catalog: Optional[CatalogStore] = None,
    config: Optional[PoolConfig] = None,
) -> PoolComputeResult:
    """
    Precompute the relevance pool of one context.

    A missing context or one without metadata yields an empty result with a
    `skipped_reason`. An existing pool is kept unless `overwrite` is set.
    """
    catalog = catalog or get_catalog_store()
    cfg = config or get_rag_config().pool

    context = catalog.get_context(context_id)
    if context is None:
        logger.warning("Context not found for pool computation", extra={"context_id": context_id})
        pool_computations_total.labels(outcome="not_found").inc()
        return PoolComputeResult(context_id=context_id, pool_size=0, skipped_reason="context_not_found")

    if not context.has_metadata:
        logger.info("Context has no metadata, pool left empty", extra={"context_id": context_id})
        pool_computations_total.labels(outcome="no_metadata").inc()
        return PoolComputeResult(context_id=context_id, pool_size=0, skipped_reason="no_metadata")

    existing = catalog.pool_size(context_id)
    if existing > 0 and not overwrite:
        pool_computations_total.labels(outcome="exists").inc()
        return PoolComputeResult(
            context_id=context_id,
            pool_size=existing,
            avg_score=_avg(catalog.get_pool(context_id)),
            skipped_reason="exists",
        )

    entries = build_pool_entries(context, catalog.list_items(eligible_only=True), cfg)
    catalog.replace_pool(context_id, entries)

    result = PoolComputeResult(
        context_id=context_id,
        pool_size=len(entries),
        avg_score=_avg(entries),
    )
    pool_computations_total.labels(outcome="computed").inc()
    logger.info(
        "Relevance pool computed",
        extra={
            "context_id": context_id,
            "pool_size": result.pool_size,
            "avg_score": round(result.avg_score, 4),
        },
    )
    return result


def compute_all_pools(
    overwrite: bool = False,
    catalog: Optional[CatalogStore] = None,
    config: Optional[PoolConfig] = None,
    error_sample_size: Optional[int] = None,
) -> BatchReport:
    """
    Compute pools for every context with metadata, sequentially in bounded
    batches. A failing context is logged and counted; the rest continue.
    """
    catalog = catalog or get_catalog_store()
    cfg = config or get_rag_config().pool
    sample_size = error_sample_size or get_rag_config().batch.error_sample_size

    contexts = [c for c in catalog.list_contexts() if c.has_metadata]
    report = BatchReport()

    for start in range(0, len(contexts), cfg.compute_batch_size):
        batch = contexts[start : start + cfg.compute_batch_size]
        for context in batch:
            report.processed += 1
            try:
                result = compute_pool(
                    context.context_id, overwrite=overwrite, catalog=catalog, config=cfg
                )
            except Exception as exc:
                logger.error(
                    "Pool computation failed",
                    extra={"context_id": context.context_id, "error": str(exc)},
                )
                pool_computations_total.labels(outcome="error").inc()
                report.record_error(f"{context.context_id}: {exc}", sample_size)
                continue
            if result.skipped_reason:
                report.skipped += 1
            else:
                report.successful += 1

        logger.info(
            "Pool batch complete",
            extra={"processed": report.processed, "total": len(contexts)},
        )

    return report


def get_pool_ids(
    context_id: str,
    top_k: Optional[int] = None,
    min_score: Optional[float] = None,
    catalog: Optional[CatalogStore] = None,
) -> List[str]:
    catalog = catalog or get_catalog_store()
    cfg = get_rag_config().pool
    entries = catalog.get_pool(
        context_id,
        top_k=top_k if top_k is not None else cfg.query_top_k,
        min_score=min_score if min_score is not None else cfg.min_score,
    )
    return [e.candidate_id for e in entries]


def get_pool_stats(context_id: str, catalog: Optional[CatalogStore] = None) -> PoolStats:
    catalog = catalog or get_catalog_store()
    entries = catalog.get_pool(context_id)
    if not entries:
        return PoolStats(context_id=context_id)
    scores = [e.relevance_score for e in entries]
    return PoolStats(
        context_id=context_id,
        total=len(entries),
        avg_score=sum(scores) / len(scores),
        max_score=max(scores),
        min_score=min(scores),
        brand_matches=sum(1 for e in entries if e.matched_brand),
        category_matches=sum(1 for e in entries if e.matched_category),
        price_matches=sum(1 for e in entries if e.matched_price_range),
    )
