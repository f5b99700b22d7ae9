from __future__ import annotations

import asyncio
import time
from dataclasses import replace
from typing import List, Optional, Sequence, Tuple

from ..core.errors import ParseError, ReplyRAGError, ValidationError
from ..core.llm import LLMCompletion
from ..db.catalog_store import CatalogStore, get_catalog_store
from ..observability.domain_metrics import (
    reply_latency_seconds,
    reply_requests_total,
    validator_links_stripped_total,
)
from ..observability.logging import get_logger
from ..schemas.rag import QueryIntent, SearchResult, SourceType
from ..schemas.reply import (
    BatchReplyItem,
    BatchReplyReport,
    CommentClassification,
    CommentToReply,
    ReplyDraft,
    ReplyResult,
)
from .answer import build_candidate_pool, generate_reply
from .classifier import apply_classification, classify_comment
from .context_assembler import assemble_contexts
from .embeddings import EmbeddingGateway, get_embedding_gateway
from .normalize import normalize
from .price_rerank import rerank_by_price
from .query_intent import extract_query_intent
from .rag_config import get_rag_config
from .retriever import RetrievalOutcome, SearchOptions, search
from .store import DocumentStore, get_document_store
from .validator import strip_disallowed_links, validate_output

logger = get_logger("rag.pipeline")

NO_CONTEXT_REPLY = (
    "ขออภัยครับ ตอนนี้ยังไม่มีข้อมูลเพียงพอสำหรับคำถามนี้ "
    "เดี๋ยวทีมงานจะกลับมาตอบเพิ่มเติมนะครับ"
)


async def _classify(
    comment_text: str,
    transcripts: Sequence[SearchResult],
) -> Optional[Tuple[CommentClassification, LLMCompletion]]:
    """Classifier verdict, or None when its output is unreadable."""
    try:
        return await classify_comment(comment_text, assemble_contexts(transcripts))
    except ParseError as exc:
        logger.warning(
            "Comment classification unreadable, treating as purchase",
            extra={"error": str(exc)},
        )
        return None


def _direct_reply(
    classification: CommentClassification,
    completion: LLMCompletion,
    transcripts: Sequence[SearchResult],
    intent: QueryIntent,
    tier: Optional[str],
) -> ReplyResult:
    # No candidate pool on this path, so every link is disallowed.
    text, stripped = strip_disallowed_links(
        classification.reply_text or "", set(), get_rag_config().generation.max_links
    )
    if stripped:
        validator_links_stripped_total.inc(stripped)
    return ReplyResult(
        reply_text=text,
        contexts=list(transcripts),
        intent=intent,
        token_usage=completion.usage,
        model=completion.model,
        retrieval_tier=tier,
        comment_intent="other",
    )


async def reply_to_comment(
    comment_text: str,
    context_id: str,
    top_k: Optional[int] = None,
    min_score: Optional[float] = None,
    search_comments: Optional[bool] = None,
    store: Optional[DocumentStore] = None,
    catalog: Optional[CatalogStore] = None,
    gateway: Optional[EmbeddingGateway] = None,
) -> ReplyResult:
    """
    Comment -> intent -> transcript retrieval -> purchase/other classification
    -> tiered product retrieval -> price re-rank -> candidate pool -> context
    budget -> generation -> validation.

    Comments classified as "other" get the classifier's transcript-grounded
    reply with no products. Without any retrieved context a fixed apology is
    returned and the generator is not called.
    """
    if not comment_text or not comment_text.strip():
        raise ValidationError("comment_text must not be empty")

    started = time.perf_counter()
    store = store or get_document_store()
    catalog = catalog or get_catalog_store()
    gateway = gateway or get_embedding_gateway()
    cfg = get_rag_config()
    include_comments = cfg.retrieval.search_comments if search_comments is None else search_comments

    try:
        query = normalize(comment_text)
        intent = extract_query_intent(query)
        embedding = await gateway.aembed_query(query)

        base = SearchOptions.from_config(top_k=top_k, min_score=min_score, context_id=context_id)

        async def _search(source_type: SourceType) -> RetrievalOutcome:
            return await search(
                query,
                replace(base, source_type=source_type),
                embedding=embedding,
                store=store,
                catalog=catalog,
            )

        transcript_outcome = await _search(SourceType.TRANSCRIPT)
        transcripts = transcript_outcome.results

        if cfg.generation.classify_comments and transcripts:
            classified = await _classify(comment_text, transcripts)
            if classified is not None:
                classification, stage_completion = classified
                if classification.intent == "other":
                    reply_requests_total.labels(outcome="direct").inc()
                    return _direct_reply(
                        classification, stage_completion, transcripts, intent, transcript_outcome.tier
                    )
                intent = apply_classification(intent, classification)

        partitions = [SourceType.PRODUCT]
        if include_comments:
            partitions.append(SourceType.COMMENT)
        outcomes = await asyncio.gather(*[_search(source_type) for source_type in partitions])
        by_type = dict(zip(partitions, outcomes))

        product_results: List[SearchResult] = by_type[SourceType.PRODUCT].results
        if intent.price:
            product_results = rerank_by_price(product_results, intent.price)

        ranked = transcripts + product_results
        if include_comments:
            ranked += by_type[SourceType.COMMENT].results

        tier = by_type[SourceType.PRODUCT].tier
        logger.info(
            "Reply retrieval complete",
            extra={
                "context_id": context_id,
                "transcripts": len(transcripts),
                "products": len(product_results),
                "product_tier": tier,
                "budget": intent.price,
            },
        )

        if not ranked:
            reply_requests_total.labels(outcome="no_context").inc()
            return ReplyResult(
                reply_text=NO_CONTEXT_REPLY,
                intent=intent,
                retrieval_tier=tier,
            )

        candidates = await asyncio.to_thread(build_candidate_pool, product_results, catalog)
        contexts = assemble_contexts(ranked)
        completion = await generate_reply(comment_text, contexts, candidates, intent)
        output = validate_output(completion.text, candidates)
    except ReplyRAGError:
        reply_requests_total.labels(outcome="error").inc()
        raise
    finally:
        reply_latency_seconds.observe(time.perf_counter() - started)

    reply_requests_total.labels(outcome="ok").inc()
    return ReplyResult(
        reply_text=output.reply_text,
        products=output.products,
        contexts=[c.result for c in contexts],
        candidates=candidates,
        intent=intent,
        token_usage=completion.usage,
        model=completion.model,
        retrieval_tier=tier,
        parsed=output.parsed,
    )


async def generate_batch_replies(
    context_id: str,
    comments: Sequence[CommentToReply],
    store: Optional[DocumentStore] = None,
    catalog: Optional[CatalogStore] = None,
    gateway: Optional[EmbeddingGateway] = None,
) -> BatchReplyReport:
    """
    Reply to comments one after another and persist each reply as a draft.
    A failing comment is recorded with its error and the batch goes on.
    """
    catalog = catalog or get_catalog_store()
    sample_size = get_rag_config().batch.error_sample_size
    report = BatchReplyReport(context_id=context_id, total=len(comments))

    for comment in comments:
        try:
            result = await reply_to_comment(
                comment.text,
                context_id,
                store=store,
                catalog=catalog,
                gateway=gateway,
            )
            await asyncio.to_thread(
                catalog.save_draft,
                ReplyDraft(
                    comment_id=comment.comment_id,
                    context_id=context_id,
                    reply_text=result.reply_text,
                    products=result.products,
                ),
            )
        except ReplyRAGError as exc:
            logger.error(
                "Batch reply failed",
                extra={"comment_id": comment.comment_id, "error": str(exc)},
            )
            report.failed += 1
            if len(report.errors) < sample_size:
                report.errors.append(f"{comment.comment_id}: {exc}")
            report.items.append(
                BatchReplyItem(comment_id=comment.comment_id, success=False, error=str(exc))
            )
            continue

        report.successful += 1
        report.items.append(
            BatchReplyItem(
                comment_id=comment.comment_id,
                success=True,
                reply_text=result.reply_text,
                products=result.products,
            )
        )

    logger.info(
        "Batch replies complete",
        extra={
            "context_id": context_id,
            "total": report.total,
            "successful": report.successful,
            "failed": report.failed,
        },
    )
    return report
