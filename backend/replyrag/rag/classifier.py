from __future__ import annotations

import asyncio
from typing import Any, List, Optional, Sequence, Tuple

from ..core.errors import ParseError
from ..core.llm import LLMCompletion, Message, get_llm_client
from ..core.prompt import load_prompt
from ..observability.llm_obs import traceable_node
from ..observability.logging import get_logger
from ..schemas.rag import QueryIntent
from ..schemas.reply import CommentClassification, PurchaseFilters
from .answer import load_json_object
from .context_assembler import AssembledContext, format_context_block
from .rag_config import get_rag_config

logger = get_logger("rag.classifier")

PROMPT_NAME = "comment_classify"


def _as_price(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        price = float(str(value).replace(",", "").strip())
    except ValueError:
        return None
    return price if price > 0 else None


def _as_names(value: Any) -> List[str]:
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list):
        return []
    return [str(v).strip() for v in value if str(v).strip()]


def _as_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text if text and text.lower() != "null" else None


def parse_classification(raw: str) -> CommentClassification:
    """
    Read the first-stage verdict. An explicit "intent" wins; without one, a
    bare reply_text (no category, no filters) means "other", anything else
    is a purchase.
    """
    data = load_json_object(raw)
    reply_text = _as_text(data.get("reply_text"))
    raw_filters = data.get("filters")

    intent = str(data.get("intent") or "").strip().lower()
    if intent not in ("purchase", "other"):
        intent = "other" if reply_text and not data.get("category") and not raw_filters else "purchase"

    if intent == "other":
        if not reply_text:
            raise ParseError("Classification 'other' has no reply_text")
        return CommentClassification(intent="other", reply_text=reply_text)

    filters = raw_filters if isinstance(raw_filters, dict) else {}
    return CommentClassification(
        intent="purchase",
        category=_as_text(data.get("category")) or "Unknown",
        filters=PurchaseFilters(
            product_type=_as_text(filters.get("product_type")),
            budget_min=_as_price(filters.get("budget_min")),
            budget_max=_as_price(filters.get("budget_max")),
            brand_prefer=_as_names(filters.get("brand_prefer")),
            brand_avoid=_as_names(filters.get("brand_avoid")),
            usage_notes=_as_text(filters.get("usage_notes")),
        ),
    )


def build_classification_messages(
    comment_text: str,
    transcripts: Sequence[AssembledContext],
) -> List[Message]:
    user = "\n".join(
        [
            "## Video transcript",
            format_context_block(transcripts),
            "",
            "## Comment",
            f'"{comment_text}"',
            "",
            "Return the JSON object only.",
        ]
    )
    return [
        {"role": "system", "content": load_prompt(PROMPT_NAME)},
        {"role": "user", "content": user},
    ]


@traceable_node(PROMPT_NAME)
def _call_classify_llm(messages: List[Message], temperature: float, max_tokens: int) -> LLMCompletion:
    return get_llm_client().complete(
        messages,
        json_mode=True,
        temperature=temperature,
        max_tokens=max_tokens,
    )


async def classify_comment(
    comment_text: str,
    transcripts: Sequence[AssembledContext],
) -> Tuple[CommentClassification, LLMCompletion]:
    """
    Decide whether a comment is a purchase request. LLM failures propagate;
    unreadable output raises ParseError for the caller to recover from.
    """
    cfg = get_rag_config().generation
    messages = build_classification_messages(comment_text, transcripts)
    completion = await asyncio.to_thread(
        _call_classify_llm, messages, cfg.temperature, cfg.classify_max_tokens
    )
    classification = parse_classification(completion.text)
    logger.info(
        "Comment classified",
        extra={
            "comment_intent": classification.intent,
            "category": classification.category,
            "transcripts": len(transcripts),
        },
    )
    return classification, completion


def apply_classification(intent: QueryIntent, classification: CommentClassification) -> QueryIntent:
    """
    Fill budget and brand gaps in the regex intent from the classifier's
    filters. Values parsed from the comment itself are kept.
    """
    filters = classification.filters
    update: dict = {}

    if intent.price is None and filters.budget_max:
        update["price"] = filters.budget_max
    if intent.price_range is None and filters.budget_min and filters.budget_max:
        low, high = sorted((filters.budget_min, filters.budget_max))
        update["price_range"] = (low, high)

    known = {b.lower() for b in intent.brands}
    extra: List[str] = []
    for brand in filters.brand_prefer:
        if brand.lower() not in known:
            known.add(brand.lower())
            extra.append(brand)
    if extra:
        update["brands"] = intent.brands + extra

    return intent.model_copy(update=update) if update else intent
