import asyncio

import pytest

from backend.replyrag.core.errors import ValidationError
from backend.replyrag.rag.embeddings import EmbeddingError, EmbeddingGateway
from backend.replyrag.rag.ingest import (
    embed_missing_products,
    ingest_comment,
    ingest_comments,
    ingest_product,
    ingest_transcript,
    regenerate_embeddings,
)
from backend.replyrag.schemas.catalog import CatalogItem
from backend.replyrag.schemas.ingest import CommentInput, ProductInput, TranscriptInput
from backend.replyrag.schemas.rag import SourceType

LONG_TRANSCRIPT = " ".join(f"Part {i} of the review covers the keyboard." for i in range(200))


def test_comment_becomes_one_chunk(fakes):
    result = asyncio.run(
        ingest_comment(CommentInput(comment_id="c1", video_id="v1", text="งบ 15000 ครับ  😀"))
    )
    assert result.status == "created"
    assert result.document_id == "comment:c1"
    assert result.chunks == 1

    chunks = asyncio.run(fakes.store.get_chunks("comment:c1"))
    assert chunks[0].id == "comment:c1:0"
    assert chunks[0].context_id == "v1"
    assert chunks[0].embedding is not None


def test_existing_document_is_skipped_unless_overwritten(fakes):
    asyncio.run(ingest_transcript(TranscriptInput(video_id="v1", text=LONG_TRANSCRIPT)))
    assert len(asyncio.run(fakes.store.get_chunks("transcript:v1"))) > 1

    skipped = asyncio.run(ingest_transcript(TranscriptInput(video_id="v1", text="Short.")))
    assert skipped.status == "skipped"

    replaced = asyncio.run(
        ingest_transcript(TranscriptInput(video_id="v1", text="Short."), overwrite=True)
    )
    assert replaced.status == "replaced"
    chunks = asyncio.run(fakes.store.get_chunks("transcript:v1"))
    assert [c.text for c in chunks] == ["Short."]


def test_transcript_chunks_carry_estimated_timing(fakes):
    asyncio.run(
        ingest_transcript(TranscriptInput(video_id="v1", text=LONG_TRANSCRIPT, duration=600))
    )
    chunks = asyncio.run(fakes.store.get_chunks("transcript:v1"))

    assert chunks[0].metadata.start_time == 0
    assert chunks[-1].metadata.end_time == 600
    starts = [c.metadata.start_time for c in chunks]
    assert starts == sorted(starts)


def test_product_summary_first_and_catalog_synced(fakes):
    product = ProductInput(
        product_id="nb-1",
        name="ASUS TUF Gaming",
        description="RTX 4050 notebook. 144Hz screen. " * 30,
        price=14990,
        url="https://shop.example/nb-1",
        category="Notebook",
    )
    asyncio.run(ingest_product(product))
    chunks = asyncio.run(fakes.store.get_chunks("product:nb-1"))

    assert chunks[0].metadata.chunk_type == "summary"
    assert chunks[0].text.startswith("ASUS TUF Gaming.")
    assert len(chunks[0].text) <= 500
    assert all(c.metadata.chunk_type == "detail" for c in chunks[1:])
    assert [c.index for c in chunks] == list(range(len(chunks)))

    item = fakes.catalog.get_item("nb-1")
    assert item.canonical_url == "https://shop.example/nb-1"
    assert item.eligible


def test_reingest_keeps_catalog_eligibility(fakes):
    fakes.catalog.upsert_item(CatalogItem(id="nb-1", name="Old name", eligible=False))
    asyncio.run(
        ingest_product(ProductInput(product_id="nb-1", name="New name"), overwrite=True)
    )
    item = fakes.catalog.get_item("nb-1")
    assert item.name == "New name"
    assert item.eligible is False


def test_batch_counts_failures_and_continues(fakes):
    comments = [
        CommentInput(comment_id="c1", video_id="v1", text="hello"),
        CommentInput(comment_id="c2", video_id="v1", text="   "),
        CommentInput(comment_id="c3", video_id="v1", text="world"),
    ]
    report = asyncio.run(ingest_comments(comments))

    assert report.processed == 3
    assert report.successful == 2
    assert report.failed == 1
    assert report.errors[0].startswith("c2:")
    assert report.success is False

    with pytest.raises(ValidationError):
        asyncio.run(ingest_comment(comments[1]))


class _FailOnceBackend:
    def __init__(self, inner):
        self.inner = inner
        self.failed = False

    def embed(self, texts):
        if not self.failed:
            self.failed = True
            raise RuntimeError("rate limited")
        return self.inner.embed(texts)


def test_regenerate_embeddings_resumes_missing_only(fakes):
    for i in range(3):
        asyncio.run(ingest_comment(CommentInput(comment_id=f"c{i}", video_id="v1", text=f"text {i}")))
    for chunk_id in list(fakes.store._chunks):
        fakes.store._chunks[chunk_id] = fakes.store._chunks[chunk_id].model_copy(
            update={"embedding": None}
        )

    flaky = EmbeddingGateway(_FailOnceBackend(fakes.backend), dimensions=32, batch_size=8)
    first = asyncio.run(regenerate_embeddings(batch_size=2, gateway=flaky))
    assert first.processed == 3
    assert first.failed == 2
    assert first.successful == 1

    second = asyncio.run(regenerate_embeddings(source_type=SourceType.COMMENT))
    assert second.processed == 2
    assert second.successful == 2

    stats = asyncio.run(fakes.store.stats())
    assert stats.chunks_missing_embeddings == 0


def test_dimension_mismatch_is_an_embedding_error(fakes):
    gateway = EmbeddingGateway(fakes.backend, dimensions=8, batch_size=4)
    with pytest.raises(EmbeddingError):
        gateway.embed_texts(["hello"])


def test_embed_missing_products_ingests_catalog_only_items(fakes):
    fakes.catalog.upsert_item(
        CatalogItem(id="kb-1", name="Mechanical keyboard", description="Hot-swap switches.")
    )
    asyncio.run(ingest_product(ProductInput(product_id="nb-1", name="Notebook")))

    report = asyncio.run(embed_missing_products())
    assert report.successful == 1
    assert asyncio.run(fakes.store.has_document(SourceType.PRODUCT, "kb-1"))
