from __future__ import annotations

import math
from typing import Awaitable, Callable, List, Optional, Sequence, TypeVar

from ..core.errors import UpstreamServiceError, ValidationError
from ..db.catalog_store import CatalogStore, get_catalog_store
from ..observability.domain_metrics import ingest_documents_total
from ..observability.logging import get_logger
from ..schemas.catalog import CatalogItem
from ..schemas.ingest import (
    BatchReport,
    CommentInput,
    IngestResult,
    ProductInput,
    TranscriptInput,
)
from ..schemas.rag import (
    Chunk,
    CommentMetadata,
    DocumentMetadata,
    ProductMetadata,
    SourceDocument,
    SourceType,
    TranscriptMetadata,
    chunk_id_for,
    document_id_for,
)
from .chunker import TextChunk, chunk_comment, chunk_product_description, chunk_transcript
from .embeddings import EmbeddingGateway, get_embedding_gateway
from .normalize import NormalizeOptions, normalize
from .rag_config import get_rag_config
from .store import DocumentStore, get_document_store
from .tokenizer import count_tokens

logger = get_logger("rag.ingest")

T = TypeVar("T")

COMMENT_OPTIONS = NormalizeOptions()
TRANSCRIPT_OPTIONS = NormalizeOptions(remove_emojis=True, clean_urls=True)
PRODUCT_OPTIONS = NormalizeOptions(remove_emojis=True)


async def _prepare(
    source_type: SourceType,
    source_id: str,
    overwrite: bool,
    store: DocumentStore,
) -> Optional[str]:
    """
    Returns the status to report when writing goes ahead, or None when an
    existing document must be left untouched. Replacement itself happens in
    `replace_document`, which drops the old chunks before inserting.
    """
    exists = await store.has_document(source_type, source_id)
    if exists and not overwrite:
        return None
    return "replaced" if exists else "created"


def _skipped(source_type: SourceType, source_id: str) -> IngestResult:
    ingest_documents_total.labels(source_type=source_type.value, outcome="skipped").inc()
    return IngestResult(
        document_id=document_id_for(source_type, source_id),
        source_type=source_type,
        source_id=source_id,
        status="skipped",
    )


async def _write_document(
    source_type: SourceType,
    source_id: str,
    metadata: DocumentMetadata,
    pieces: Sequence[TextChunk],
    chunk_metadata: Sequence[DocumentMetadata],
    status: str,
    store: DocumentStore,
    gateway: EmbeddingGateway,
) -> IngestResult:
    document_id = document_id_for(source_type, source_id)
    vectors = await gateway.aembed_texts([p.text for p in pieces])

    chunks = [
        Chunk(
            id=chunk_id_for(document_id, piece.index),
            document_id=document_id,
            source_type=source_type,
            source_id=source_id,
            index=piece.index,
            text=piece.text,
            tokens=piece.tokens,
            start_char=piece.start_char,
            end_char=piece.end_char,
            metadata=meta,
            embedding=vector,
        )
        for piece, meta, vector in zip(pieces, chunk_metadata, vectors)
    ]
    document = SourceDocument(
        id=document_id,
        source_type=source_type,
        source_id=source_id,
        metadata=metadata,
    )
    await store.replace_document(document, chunks)

    ingest_documents_total.labels(source_type=source_type.value, outcome=status).inc()
    logger.info(
        "Document ingested",
        extra={
            "document_id": document_id,
            "chunks": len(chunks),
            "status": status,
        },
    )
    return IngestResult(
        document_id=document_id,
        source_type=source_type,
        source_id=source_id,
        chunks=len(chunks),
        status=status,  # type: ignore[arg-type]
    )


async def ingest_comment(
    comment: CommentInput,
    overwrite: bool = False,
    store: Optional[DocumentStore] = None,
    gateway: Optional[EmbeddingGateway] = None,
) -> IngestResult:
    """A comment is always stored as exactly one chunk."""
    store = store or get_document_store()
    gateway = gateway or get_embedding_gateway()

    text = normalize(comment.text, COMMENT_OPTIONS)
    if not text:
        raise ValidationError(f"Comment {comment.comment_id} is empty after normalization")

    status = await _prepare(SourceType.COMMENT, comment.comment_id, overwrite, store)
    if status is None:
        return _skipped(SourceType.COMMENT, comment.comment_id)

    metadata = CommentMetadata(
        video_id=comment.video_id,
        author_name=comment.author_name,
        published_at=comment.published_at,
        like_count=comment.like_count,
        is_reply=comment.is_reply,
        parent_id=comment.parent_id,
    )
    pieces = chunk_comment(text)
    return await _write_document(
        SourceType.COMMENT,
        comment.comment_id,
        metadata,
        pieces,
        [metadata] * len(pieces),
        status,
        store,
        gateway,
    )


async def ingest_transcript(
    transcript: TranscriptInput,
    overwrite: bool = False,
    store: Optional[DocumentStore] = None,
    gateway: Optional[EmbeddingGateway] = None,
) -> IngestResult:
    """
    Chunks carry estimated start/end times, spread proportionally to their
    character offsets when the video duration is known.
    """
    store = store or get_document_store()
    gateway = gateway or get_embedding_gateway()

    text = normalize(transcript.text, TRANSCRIPT_OPTIONS)
    if not text:
        raise ValidationError(f"Transcript {transcript.video_id} is empty after normalization")

    status = await _prepare(SourceType.TRANSCRIPT, transcript.video_id, overwrite, store)
    if status is None:
        return _skipped(SourceType.TRANSCRIPT, transcript.video_id)

    metadata = TranscriptMetadata(
        video_id=transcript.video_id,
        title=transcript.title,
        channel_name=transcript.channel_name,
        published_at=transcript.published_at,
        duration=transcript.duration,
        view_count=transcript.view_count,
    )
    pieces = chunk_transcript(text, get_rag_config().chunking.transcript)

    chunk_metadata: List[DocumentMetadata] = []
    total_chars = len(text)
    for piece in pieces:
        if transcript.duration:
            chunk_metadata.append(
                metadata.model_copy(
                    update={
                        "start_time": math.floor(piece.start_char / total_chars * transcript.duration),
                        "end_time": math.floor(piece.end_char / total_chars * transcript.duration),
                    }
                )
            )
        else:
            chunk_metadata.append(metadata)

    return await _write_document(
        SourceType.TRANSCRIPT,
        transcript.video_id,
        metadata,
        pieces,
        chunk_metadata,
        status,
        store,
        gateway,
    )


def _product_pieces(product: ProductInput) -> List[tuple[TextChunk, str]]:
    chunking = get_rag_config().chunking
    pieces: List[tuple[TextChunk, str]] = []

    summary_source = f"{product.name}. {product.description or ''}".strip()
    summary = normalize(
        summary_source,
        NormalizeOptions(remove_emojis=True, max_length=chunking.product_summary_max_chars),
    )
    if summary:
        pieces.append(
            (
                TextChunk(
                    text=summary,
                    index=0,
                    tokens=count_tokens(summary),
                    start_char=0,
                    end_char=len(summary),
                ),
                "summary",
            )
        )

    description = normalize(product.description or "", PRODUCT_OPTIONS)
    if description:
        for detail in chunk_product_description(description, chunking.product):
            pieces.append((detail, "detail"))

    # Summary first, then details, with contiguous indexes.
    return [
        (
            TextChunk(
                text=piece.text,
                index=i,
                tokens=piece.tokens,
                start_char=piece.start_char,
                end_char=piece.end_char,
            ),
            kind,
        )
        for i, (piece, kind) in enumerate(pieces)
    ]


def _sync_catalog_item(product: ProductInput, catalog: CatalogStore) -> None:
    existing = catalog.get_item(product.product_id)
    catalog.upsert_item(
        CatalogItem(
            id=product.product_id,
            name=product.name,
            brand=product.brand,
            category=product.category,
            price=product.price,
            tags=product.tags,
            canonical_url=product.url,
            description=product.description,
            eligible=existing.eligible if existing is not None else True,
        )
    )


async def ingest_product(
    product: ProductInput,
    overwrite: bool = False,
    store: Optional[DocumentStore] = None,
    gateway: Optional[EmbeddingGateway] = None,
    catalog: Optional[CatalogStore] = None,
) -> IngestResult:
    """
    A product becomes one summary chunk (name + description, capped) plus
    detail chunks of its description. The catalog item is kept in sync so
    the pool builder and prefilter see the same product.
    """
    store = store or get_document_store()
    gateway = gateway or get_embedding_gateway()
    catalog = catalog or get_catalog_store()

    pieces = _product_pieces(product)
    if not pieces:
        raise ValidationError(f"Product {product.product_id} has no text after normalization")

    status = await _prepare(SourceType.PRODUCT, product.product_id, overwrite, store)
    if status is None:
        return _skipped(SourceType.PRODUCT, product.product_id)

    base = ProductMetadata(
        name=product.name,
        price=product.price,
        url=product.url,
        image_url=product.image_url,
        category=product.category,
        brand=product.brand,
        tags=product.tags,
    )
    result = await _write_document(
        SourceType.PRODUCT,
        product.product_id,
        base,
        [p for p, _ in pieces],
        [base.model_copy(update={"chunk_type": kind}) for _, kind in pieces],
        status,
        store,
        gateway,
    )
    _sync_catalog_item(product, catalog)
    return result


async def _ingest_batch(
    items: Sequence[T],
    ingest_one: Callable[[T], Awaitable[IngestResult]],
    label: Callable[[T], str],
) -> BatchReport:
    """
    Sequential, bounded batches; a failing item is logged and counted while
    the rest continue.
    """
    batch_cfg = get_rag_config().batch
    report = BatchReport()

    for start in range(0, len(items), batch_cfg.ingest_batch_size):
        for item in items[start : start + batch_cfg.ingest_batch_size]:
            report.processed += 1
            try:
                result = await ingest_one(item)
            except (UpstreamServiceError, ValidationError) as exc:
                logger.error(
                    "Ingest failed for item",
                    extra={"item": label(item), "error": str(exc)},
                )
                report.record_error(f"{label(item)}: {exc}", batch_cfg.error_sample_size)
                continue
            if result.status == "skipped":
                report.skipped += 1
            else:
                report.successful += 1

        logger.info(
            "Ingest batch complete",
            extra={"processed": report.processed, "total": len(items)},
        )

    return report


async def ingest_comments(
    comments: Sequence[CommentInput],
    overwrite: bool = False,
    store: Optional[DocumentStore] = None,
    gateway: Optional[EmbeddingGateway] = None,
) -> BatchReport:
    return await _ingest_batch(
        comments,
        lambda c: ingest_comment(c, overwrite, store, gateway),
        lambda c: c.comment_id,
    )


async def ingest_transcripts(
    transcripts: Sequence[TranscriptInput],
    overwrite: bool = False,
    store: Optional[DocumentStore] = None,
    gateway: Optional[EmbeddingGateway] = None,
) -> BatchReport:
    return await _ingest_batch(
        transcripts,
        lambda t: ingest_transcript(t, overwrite, store, gateway),
        lambda t: t.video_id,
    )


async def ingest_products(
    products: Sequence[ProductInput],
    overwrite: bool = False,
    store: Optional[DocumentStore] = None,
    gateway: Optional[EmbeddingGateway] = None,
    catalog: Optional[CatalogStore] = None,
) -> BatchReport:
    return await _ingest_batch(
        products,
        lambda p: ingest_product(p, overwrite, store, gateway, catalog),
        lambda p: p.product_id,
    )


async def regenerate_embeddings(
    source_type: Optional[SourceType] = None,
    only_missing: bool = True,
    batch_size: Optional[int] = None,
    store: Optional[DocumentStore] = None,
    gateway: Optional[EmbeddingGateway] = None,
) -> BatchReport:
    """
    Page through chunks in id order and (re)embed them batch by batch.

    Each chunk is written on its own, so after a crash a rerun with
    `only_missing` only touches chunks that still have no embedding.
    """
    store = store or get_document_store()
    gateway = gateway or get_embedding_gateway()
    batch_cfg = get_rag_config().batch
    size = batch_size or batch_cfg.embed_batch_size

    report = BatchReport()
    after_id: Optional[str] = None

    while True:
        chunks = await store.list_chunks(
            source_type=source_type,
            only_missing_embeddings=only_missing,
            after_id=after_id,
            limit=size,
        )
        if not chunks:
            break
        after_id = chunks[-1].id

        try:
            vectors = await gateway.aembed_texts([c.text for c in chunks])
        except UpstreamServiceError as exc:
            logger.error(
                "Embedding batch failed",
                extra={"first_chunk": chunks[0].id, "size": len(chunks), "error": str(exc)},
            )
            for chunk in chunks:
                report.processed += 1
                report.record_error(f"{chunk.id}: {exc}", batch_cfg.error_sample_size)
            continue

        for chunk, vector in zip(chunks, vectors):
            report.processed += 1
            try:
                await store.update_embedding(chunk.id, vector)
            except UpstreamServiceError as exc:
                logger.error(
                    "Embedding update failed",
                    extra={"chunk_id": chunk.id, "error": str(exc)},
                )
                report.record_error(f"{chunk.id}: {exc}", batch_cfg.error_sample_size)
                continue
            report.successful += 1

        logger.info(
            "Embedding batch complete",
            extra={"processed": report.processed, "after_id": after_id},
        )

    return report


async def embed_missing_products(
    catalog: Optional[CatalogStore] = None,
    store: Optional[DocumentStore] = None,
    gateway: Optional[EmbeddingGateway] = None,
) -> BatchReport:
    """Ingest catalog items that have no product document yet."""
    catalog = catalog or get_catalog_store()
    store = store or get_document_store()

    missing: List[ProductInput] = []
    for item in catalog.list_items():
        if await store.has_document(SourceType.PRODUCT, item.id):
            continue
        missing.append(
            ProductInput(
                product_id=item.id,
                name=item.name,
                description=item.description,
                price=item.price,
                url=item.canonical_url,
                category=item.category,
                brand=item.brand,
                tags=item.tags,
            )
        )

    logger.info("Embedding missing products", extra={"missing": len(missing)})
    return await ingest_products(missing, overwrite=False, store=store, gateway=gateway, catalog=catalog)
