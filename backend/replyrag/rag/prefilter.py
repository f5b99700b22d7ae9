from __future__ import annotations

from typing import List, Optional

from ..db.catalog_store import CatalogStore, get_catalog_store
from ..observability.logging import get_logger
from ..schemas.catalog import CatalogItem, ContextProfile
from .rag_config import get_rag_config

logger = get_logger("rag.prefilter")


def prefilter_candidates(
    context: ContextProfile,
    max_candidates: Optional[int] = None,
    catalog: Optional[CatalogStore] = None,
) -> List[CatalogItem]:
    """
    Narrow the eligible catalog to items matching the context's structured
    signals: category, brand, any shared tag and price range, each applied
    only when the context has it. Most recently updated items come first.

    A context without metadata yields no candidates.
    """
    if not context.has_metadata:
        return []

    catalog = catalog or get_catalog_store()
    limit = max_candidates or get_rag_config().prefilter.max_candidates

    items = catalog.query_eligible_items(
        categories=context.category_tags or None,
        brands=context.brand_tags or None,
        price_min=context.price_range_min if context.has_price_range else None,
        price_max=context.price_range_max if context.has_price_range else None,
    )

    if context.tags:
        wanted = {t.lower() for t in context.tags}
        items = [i for i in items if wanted.intersection(t.lower() for t in i.tags)]

    out = items[:limit]
    logger.info(
        "Prefilter candidates",
        extra={"context_id": context.context_id, "candidates": len(out)},
    )
    return out
