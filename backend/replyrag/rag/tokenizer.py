from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

import tiktoken

from ..core.resources import registry
from ..observability.logging import get_logger

logger = get_logger("rag.tokenizer")

TOKENIZER_RESOURCE = "tokenizer"

# Rough characters-per-token ratio used when the encoding is unavailable.
CHARS_PER_TOKEN = 4


def _load_encoding() -> tiktoken.Encoding:
    from .rag_config import get_rag_config

    return tiktoken.get_encoding(get_rag_config().tokenizer_encoding)


registry.register(TOKENIZER_RESOURCE, _load_encoding)


def get_encoder() -> Any:
    """Return the process-wide encoding (anything with encode/decode)."""
    return registry.get(TOKENIZER_RESOURCE)


def free_encoder() -> None:
    registry.free(TOKENIZER_RESOURCE)


def estimate_tokens(text: str) -> int:
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def count_tokens(text: str) -> int:
    if not text:
        return 0

    try:
        return len(get_encoder().encode(text))
    except Exception as exc:
        logger.warning(
            "Token counting failed, using character estimate",
            extra={"error": str(exc)},
        )
        return estimate_tokens(text)


def count_tokens_batch(texts: Sequence[str]) -> List[int]:
    return [count_tokens(text) for text in texts]


def truncate_to_tokens(text: str, max_tokens: int) -> str:
    if not text or max_tokens <= 0:
        return ""

    try:
        encoder = get_encoder()
        tokens = encoder.encode(text)
        if len(tokens) <= max_tokens:
            return text
        return encoder.decode(tokens[:max_tokens])
    except Exception as exc:
        logger.warning(
            "Token truncation failed, cutting by characters",
            extra={"error": str(exc)},
        )
        return text[: max_tokens * CHARS_PER_TOKEN]


@dataclass
class ContextCost:
    query_tokens: int
    system_tokens: int
    context_tokens: int
    total_tokens: int
    within_limit: bool

    def as_dict(self) -> Dict[str, Any]:
        return {
            "query_tokens": self.query_tokens,
            "system_tokens": self.system_tokens,
            "context_tokens": self.context_tokens,
            "total_tokens": self.total_tokens,
            "within_limit": self.within_limit,
        }


def estimate_context_cost(
    contexts: Sequence[str],
    query: str,
    system_prompt: str,
    max_total_tokens: Optional[int] = None,
) -> ContextCost:
    if max_total_tokens is None:
        from .rag_config import get_rag_config

        max_total_tokens = get_rag_config().context.max_total_tokens

    query_tokens = count_tokens(query)
    system_tokens = count_tokens(system_prompt)
    context_tokens = sum(count_tokens(ctx) for ctx in contexts)
    total = query_tokens + system_tokens + context_tokens
    return ContextCost(
        query_tokens=query_tokens,
        system_tokens=system_tokens,
        context_tokens=context_tokens,
        total_tokens=total,
        within_limit=total <= max_total_tokens,
    )
