from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence

from ..observability.logging import get_logger
from ..schemas.rag import ProductMetadata, SearchResult, SourceType, TranscriptMetadata
from .rag_config import get_rag_config
from .tokenizer import count_tokens, truncate_to_tokens

logger = get_logger("rag.context_assembler")


@dataclass
class AssembledContext:
    result: SearchResult
    text: str
    tokens: int
    truncated: bool = False


def assemble_contexts(
    results: Sequence[SearchResult],
    max_total_tokens: Optional[int] = None,
    reserved_tokens: Optional[int] = None,
    min_useful_tokens: Optional[int] = None,
) -> List[AssembledContext]:
    """
    Greedily pack ranked results into the token budget left after the
    reserved headroom. The first result that does not fit is cut to the
    remaining budget if that is above the usefulness floor, and nothing
    after it is considered.
    """
    cfg = get_rag_config().context
    total = cfg.max_total_tokens if max_total_tokens is None else max_total_tokens
    reserved = cfg.reserved_tokens if reserved_tokens is None else reserved_tokens
    floor = cfg.min_useful_tokens if min_useful_tokens is None else min_useful_tokens

    budget = max(0, total - reserved)
    used = 0
    out: List[AssembledContext] = []

    for result in results:
        tokens = count_tokens(result.text)
        remaining = budget - used
        if tokens <= remaining:
            out.append(AssembledContext(result=result, text=result.text, tokens=tokens))
            used += tokens
            continue

        if remaining > floor:
            text = truncate_to_tokens(result.text, remaining)
            cut = count_tokens(text)
            out.append(AssembledContext(result=result, text=text, tokens=cut, truncated=True))
            used += cut
        break

    logger.info(
        "Contexts assembled",
        extra={
            "candidates": len(results),
            "included": len(out),
            "tokens_used": used,
            "budget": budget,
        },
    )
    return out


def _label(ctx: AssembledContext) -> str:
    result = ctx.result
    meta = result.metadata
    if result.source_type == SourceType.PRODUCT and isinstance(meta, ProductMetadata):
        price = f"{meta.price:,.0f} THB" if meta.price else "n/a"
        return f"[Product] {meta.name} | {price}"
    if result.source_type == SourceType.TRANSCRIPT and isinstance(meta, TranscriptMetadata):
        title = f" {meta.title}" if meta.title else ""
        return f"[Transcript{title} #{result.chunk_index + 1}]"
    return "[Comment]"


def format_context_block(contexts: Sequence[AssembledContext]) -> str:
    if not contexts:
        return "(no context)"
    return "\n\n".join(f"{_label(ctx)}\n{ctx.text}" for ctx in contexts)
