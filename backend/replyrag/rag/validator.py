from __future__ import annotations

import re
from typing import List, Optional, Sequence, Set, Tuple

from ..core.errors import ParseError
from ..observability.domain_metrics import (
    validator_links_stripped_total,
    validator_products_dropped_total,
)
from ..observability.logging import get_logger
from ..schemas.reply import CandidateItem, ProductRecommendation, ReplyOutput
from .answer import parse_reply
from .rag_config import get_rag_config

logger = get_logger("rag.validator")

_LINK_RE = re.compile(r"(?:https?://|www\.)[^\s<>\"'()\[\]]+", re.IGNORECASE)
_TRAILING_PUNCT = ".,!?;:"


def strip_disallowed_links(
    text: str,
    allowed_urls: Set[str],
    max_links: int = 2,
) -> Tuple[str, int]:
    """
    Remove every link that is not exactly one of `allowed_urls`, keeping at
    most `max_links` distinct allowed links. Returns (text, links removed).
    """
    kept: List[str] = []
    stripped = 0

    def _replace(match: re.Match) -> str:
        nonlocal stripped
        token = match.group(0)
        url = token.rstrip(_TRAILING_PUNCT)
        tail = token[len(url) :]
        if url in allowed_urls and (url in kept or len(kept) < max_links):
            if url not in kept:
                kept.append(url)
            return token
        stripped += 1
        return tail

    cleaned = _LINK_RE.sub(_replace, text)
    if stripped:
        cleaned = re.sub(r"\(\s*\)", "", cleaned)
        cleaned = re.sub(r"[ \t]{2,}", " ", cleaned)
        cleaned = "\n".join(line.strip() for line in cleaned.split("\n")).strip()
    return cleaned, stripped


def validate_output(
    raw_text: str,
    candidates: Sequence[CandidateItem],
    max_products: Optional[int] = None,
    max_links: Optional[int] = None,
) -> ReplyOutput:
    """
    Enforce the candidate allow-list on generator output, in order:
    drop products outside the pool, replace their urls with the canonical
    url, cap the product count, then strip links from the reply text that
    are not canonical urls of the pool.

    Unparseable output becomes the reply text with no products; this never
    raises.
    """
    cfg = get_rag_config().generation
    product_cap = cfg.max_products if max_products is None else max_products
    link_cap = cfg.max_links if max_links is None else max_links

    pool = {c.id: c for c in candidates}
    allowed = {c.canonical_url for c in candidates if c.canonical_url}

    try:
        parsed = parse_reply(raw_text)
    except ParseError as exc:
        logger.warning(
            "Generated output could not be parsed, using raw text",
            extra={"error": str(exc)},
        )
        text, stripped = strip_disallowed_links((raw_text or "").strip(), allowed, link_cap)
        if stripped:
            validator_links_stripped_total.inc(stripped)
        return ReplyOutput(reply_text=text, products=[], parsed=False)

    products: List[ProductRecommendation] = []
    seen: Set[str] = set()
    for product in parsed.products:
        candidate = pool.get(product.id)
        if candidate is None:
            validator_products_dropped_total.labels(reason="not_in_pool").inc()
            logger.warning(
                "Dropping product outside candidate pool",
                extra={"product_id": product.id},
            )
            continue
        if product.id in seen:
            validator_products_dropped_total.labels(reason="duplicate").inc()
            continue
        seen.add(product.id)
        products.append(product.model_copy(update={"url": candidate.canonical_url}))

    if len(products) > product_cap:
        validator_products_dropped_total.labels(reason="over_limit").inc(
            len(products) - product_cap
        )
        products = products[:product_cap]

    text, stripped = strip_disallowed_links(parsed.reply_text, allowed, link_cap)
    if stripped:
        validator_links_stripped_total.inc(stripped)
        logger.info("Stripped links from reply text", extra={"links_stripped": stripped})

    return ReplyOutput(reply_text=text, products=products)
