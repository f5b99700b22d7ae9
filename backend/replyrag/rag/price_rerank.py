from __future__ import annotations

import math
from typing import List, Optional, Sequence

from ..core.errors import ValidationError
from ..observability.logging import get_logger
from ..schemas.rag import SearchResult
from .rag_config import get_rag_config

logger = get_logger("rag.price_rerank")

WEIGHT_TOLERANCE = 1e-9


def price_score(query_price: float, item_price: Optional[float]) -> float:
    """
    max(0, 1 - |q - p| / avg(q, p)); 1.0 for an exact match, about 0.33 when
    one price is double the other, 0 for a missing or non-positive price.
    """
    if item_price is None or item_price <= 0 or query_price <= 0:
        return 0.0
    avg = (query_price + item_price) / 2
    return max(0.0, 1 - abs(query_price - item_price) / avg)


def rerank_by_price(
    results: Sequence[SearchResult],
    query_price: Optional[float],
    price_weight: Optional[float] = None,
    semantic_weight: Optional[float] = None,
    min_price_score: Optional[float] = None,
) -> List[SearchResult]:
    cfg = get_rag_config().rerank
    pw = cfg.price_weight if price_weight is None else price_weight
    sw = cfg.semantic_weight if semantic_weight is None else semantic_weight
    floor = cfg.min_price_score if min_price_score is None else min_price_score

    if not math.isclose(pw + sw, 1.0, rel_tol=0.0, abs_tol=WEIGHT_TOLERANCE):
        raise ValidationError(
            f"price_weight + semantic_weight must equal 1.0, got {pw} + {sw}"
        )

    if query_price is None or query_price <= 0:
        return sorted(results, key=lambda r: r.score, reverse=True)

    out: List[SearchResult] = []
    for result in results:
        semantic = result.score
        item_price = result.price
        if item_price is None or item_price <= 0:
            out.append(
                result.model_copy(update={"semantic_score": semantic, "reranked": False})
            )
            continue

        ps = price_score(query_price, item_price)
        if ps < floor:
            # Penalty: semantic term only.
            final = semantic * sw
            penalized = True
        else:
            final = semantic * sw + ps * pw
            penalized = False

        out.append(
            result.model_copy(
                update={
                    "score": final,
                    "semantic_score": semantic,
                    "price_score": ps,
                    "reranked": True,
                    "penalized": penalized,
                }
            )
        )

    out.sort(key=lambda r: r.score, reverse=True)
    logger.info(
        "Price re-rank applied",
        extra={
            "query_price": query_price,
            "results": len(out),
            "penalized": sum(1 for r in out if r.penalized),
        },
    )
    return out
