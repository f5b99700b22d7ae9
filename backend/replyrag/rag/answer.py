from __future__ import annotations

import asyncio
import json
import re
from typing import Any, List, Optional, Sequence

from ..core.errors import ParseError
from ..core.llm import LLMCompletion, Message, get_llm_client
from ..core.prompt import load_prompt
from ..db.catalog_store import CatalogStore, get_catalog_store
from ..observability.llm_obs import traceable_node
from ..observability.logging import get_logger
from ..schemas.rag import QueryIntent, SearchResult
from ..schemas.reply import CandidateItem, ProductRecommendation, ReplyOutput
from .context_assembler import AssembledContext, format_context_block
from .rag_config import get_rag_config

logger = get_logger("rag.answer")

_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*(.*?)\s*```", re.DOTALL)


def strip_code_fences(text: str) -> str:
    """Return the body of the first ``` fenced block, or the trimmed text."""
    stripped = (text or "").strip()
    match = _FENCE_RE.search(stripped)
    if match:
        return match.group(1).strip()
    return stripped


def _coerce_product(item: Any) -> Optional[ProductRecommendation]:
    if not isinstance(item, dict) or not item.get("id"):
        return None
    try:
        confidence = float(item.get("confidence") or 0.0)
    except (TypeError, ValueError):
        confidence = 0.0
    return ProductRecommendation(
        id=str(item["id"]).strip(),
        url=str(item.get("url") or "").strip(),
        reason=str(item.get("reason") or "").strip(),
        confidence=min(1.0, max(0.0, confidence)),
    )


def load_json_object(raw: str) -> dict:
    """
    The JSON object inside generator output, tolerating code fences and
    prose around it. Raises ParseError when there is none.
    """
    body = strip_code_fences(raw)
    if not body.startswith("{"):
        start, end = body.find("{"), body.rfind("}")
        if start == -1 or end <= start:
            raise ParseError("No JSON object found in generated output")
        body = body[start : end + 1]

    try:
        data = json.loads(body)
    except json.JSONDecodeError as exc:
        raise ParseError(f"Generated output is not valid JSON: {exc}") from exc

    if not isinstance(data, dict):
        raise ParseError("Generated output is not a JSON object")
    return data


def parse_reply(raw: str) -> ReplyOutput:
    """
    Parse `{"reply_text": ..., "products": [...]}` out of generator output,
    tolerating code fences and prose around the object.

    Raises ParseError when no usable object is found.
    """
    data = load_json_object(raw)

    reply_text = data.get("reply_text")
    if not isinstance(reply_text, str) or not reply_text.strip():
        raise ParseError("Generated output has no reply_text")

    raw_products = data.get("products") or []
    if not isinstance(raw_products, list):
        raise ParseError("Generated output 'products' is not a list")

    products: List[ProductRecommendation] = []
    for item in raw_products:
        product = _coerce_product(item)
        if product is None:
            logger.warning("Skipping malformed product entry", extra={"entry": str(item)[:200]})
            continue
        products.append(product)

    return ReplyOutput(reply_text=reply_text.strip(), products=products)


def build_candidate_pool(
    product_results: Sequence[SearchResult],
    catalog: Optional[CatalogStore] = None,
    cap: Optional[int] = None,
) -> List[CandidateItem]:
    """
    Allow-list for one generation call: eligible catalog items with a
    canonical url, in the order the products were ranked.
    """
    catalog = catalog or get_catalog_store()
    limit = cap or get_rag_config().generation.candidate_pool_size

    ids: List[str] = []
    for result in product_results:
        if result.source_id not in ids:
            ids.append(result.source_id)

    pool: List[CandidateItem] = []
    for item in catalog.get_items(ids):
        if not item.eligible or not item.canonical_url:
            continue
        pool.append(
            CandidateItem(
                id=item.id,
                canonical_url=item.canonical_url,
                display_name=item.name,
                price=item.price,
            )
        )
        if len(pool) >= limit:
            break
    return pool


def _format_price(value: Optional[float]) -> str:
    return f"{value:,.0f} THB" if value else "n/a"


def build_messages(
    comment_text: str,
    contexts: Sequence[AssembledContext],
    candidates: Sequence[CandidateItem],
    intent: Optional[QueryIntent] = None,
) -> List[Message]:
    lines: List[str] = []

    lines.append("## Context")
    lines.append(format_context_block(contexts))
    lines.append("")

    if intent is not None and (intent.price or intent.price_range):
        lines.append("## Budget")
        if intent.price:
            lines.append(f"- Mentioned budget: {_format_price(intent.price)}")
        if intent.price_range:
            low, high = intent.price_range
            lines.append(f"- Acceptable range: {low:,.0f}-{high:,.0f} THB")
        lines.append("")

    lines.append("## Suggested products")
    if candidates:
        for idx, c in enumerate(candidates, start=1):
            lines.append(
                f"{idx}. id={c.id} | {c.display_name} | "
                f"{_format_price(c.price)} | {c.canonical_url}"
            )
    else:
        lines.append("(none)")
    lines.append("")

    lines.append("## Comment")
    lines.append(f'"{comment_text}"')
    lines.append("")
    lines.append("Return the JSON object only.")

    return [
        {"role": "system", "content": load_prompt("comment_reply")},
        {"role": "user", "content": "\n".join(lines)},
    ]


@traceable_node("comment_reply")
def _call_reply_llm(
    messages: List[Message],
    temperature: float,
    max_tokens: int,
) -> LLMCompletion:
    """
    Internal LLM call wrapped with LangSmith tracing.
    """
    client = get_llm_client()
    return client.complete(
        messages,
        json_mode=True,
        temperature=temperature,
        max_tokens=max_tokens,
    )


async def generate_reply(
    comment_text: str,
    contexts: Sequence[AssembledContext],
    candidates: Sequence[CandidateItem],
    intent: Optional[QueryIntent] = None,
) -> LLMCompletion:
    """Ask the generation service for a structured reply; returns raw text."""
    cfg = get_rag_config().generation
    messages = build_messages(comment_text, contexts, candidates, intent)

    logger.info(
        "Reply generation invoking LLM",
        extra={"contexts": len(contexts), "candidates": len(candidates)},
    )
    return await asyncio.to_thread(_call_reply_llm, messages, cfg.temperature, cfg.max_tokens)
