import asyncio
import json

import pytest

from backend.replyrag.core.errors import ValidationError
from backend.replyrag.core.llm import LLMError
from backend.replyrag.rag.ingest import ingest_product, ingest_transcript
from backend.replyrag.rag.pipeline import (
    NO_CONTEXT_REPLY,
    generate_batch_replies,
    reply_to_comment,
)
from backend.replyrag.rag.relevance_pool import compute_pool
from backend.replyrag.schemas.catalog import ContextProfile
from backend.replyrag.schemas.ingest import ProductInput, TranscriptInput
from backend.replyrag.schemas.rag import SourceType
from backend.replyrag.schemas.reply import CommentToReply

NOTEBOOK_URL = "https://shop.example/nb-1"


def _seed(env):
    products = [
        ProductInput(
            product_id="nb-1",
            name="ASUS TUF Gaming A15",
            description="โน้ตบุ๊กเล่นเกม RTX 4050 จอ 144Hz",
            price=14990,
            url=NOTEBOOK_URL,
            category="Notebook",
            brand="ASUS",
            tags=["gaming"],
        ),
        ProductInput(
            product_id="nb-2",
            name="Creator notebook OLED",
            description="OLED notebook for video editing",
            price=32000,
            url="https://shop.example/nb-2",
            category="Notebook",
            brand="Dell",
        ),
    ]
    for product in products:
        asyncio.run(ingest_product(product))
    asyncio.run(
        ingest_transcript(
            TranscriptInput(
                video_id="v1",
                title="Budget gaming notebooks",
                text="Today we compare budget gaming notebooks under 15000 baht.",
            )
        )
    )
    env.catalog.upsert_context(
        ContextProfile(
            context_id="v1",
            category_tags=["Notebook"],
            price_range_min=12000,
            price_range_max=18000,
        )
    )
    compute_pool("v1", catalog=env.catalog)


def test_thai_budget_comment_gets_grounded_reply(fakes):
    _seed(fakes)
    fakes.llm.text = json.dumps(
        {
            "reply_text": "รุ่นนี้คุ้มครับ https://fake.example/deal",
            "products": [
                {"id": "nb-1", "url": "https://fake.example/nb-1", "reason": "ตรงงบ"},
                {"id": "made-up", "url": "https://fake.example/x"},
            ],
        },
        ensure_ascii=False,
    )

    result = asyncio.run(
        reply_to_comment("งบ 15000 อยากได้โน้ตบุ๊กเล่นเกม", "v1", min_score=0.0)
    )

    assert result.intent.price == 15000.0
    assert result.retrieval_tier == "pool"
    assert any(c.source_id == "nb-1" for c in result.contexts)
    assert [p.id for p in result.products] == ["nb-1"]
    assert result.products[0].url == NOTEBOOK_URL
    assert "fake.example" not in result.reply_text
    assert result.model == "fake-model"
    assert result.token_usage["prompt_tokens"] == 10

    assert len(fakes.llm.calls) == 1
    user_message = fakes.llm.calls[0][1]["content"]
    assert f"id=nb-1 | ASUS TUF Gaming A15 | 14,990 THB | {NOTEBOOK_URL}" in user_message
    assert "## Budget" in user_message


def test_no_context_returns_apology_without_generation(fakes):
    result = asyncio.run(reply_to_comment("มีรุ่นไหนแนะนำบ้าง", "unknown-video"))

    assert result.reply_text == NO_CONTEXT_REPLY
    assert result.products == []
    assert fakes.llm.calls == []


def test_empty_comment_is_rejected(fakes):
    with pytest.raises(ValidationError):
        asyncio.run(reply_to_comment("   ", "v1"))


def test_batch_replies_store_drafts_and_sample_errors(fakes):
    _seed(fakes)
    comments = [CommentToReply(comment_id="ok", text="gaming notebooks under 15000 baht")]
    comments += [CommentToReply(comment_id=f"bad-{i}", text=" ") for i in range(6)]

    report = asyncio.run(generate_batch_replies("v1", comments))

    assert report.total == 7
    assert report.successful == 1
    assert report.failed == 6
    assert len(report.errors) == 5
    assert report.success is False
    assert fakes.catalog.get_draft("ok").reply_text == "ok"
    assert fakes.catalog.get_draft("bad-0") is None


def test_generation_failure_is_recorded_per_comment(fakes, monkeypatch):
    _seed(fakes)

    def _down(*args, **kwargs):
        raise LLMError("provider unavailable")

    monkeypatch.setattr(fakes.llm, "complete", _down)

    report = asyncio.run(
        generate_batch_replies(
            "v1", [CommentToReply(comment_id="c1", text="gaming notebooks under 15000 baht")]
        )
    )
    assert report.failed == 1
    assert "provider unavailable" in report.items[0].error


def test_budget_notebook_query_recommends_pool_product(fakes):
    url = "https://shop.example/vivobook-go-15"
    asyncio.run(
        ingest_product(
            ProductInput(
                product_id="nb-001",
                name="ASUS Vivobook Go 15",
                description="notebook ราคา 15000 สำหรับงานเอกสาร",
                price=14990,
                url=url,
                category="Notebook",
                brand="ASUS",
            )
        )
    )
    fakes.catalog.upsert_context(
        ContextProfile(
            context_id="v1",
            category_tags=["Notebook"],
            price_range_min=12000,
            price_range_max=18000,
        )
    )
    compute_pool("v1", catalog=fakes.catalog)
    fakes.llm.text = json.dumps(
        {
            "reply_text": f"งบ 15,000 บาทแนะนำ ASUS Vivobook Go 15 ราคา 14,990 บาท {url}",
            "products": [{"id": "nb-001", "url": url, "reason": "ตรงงบ", "confidence": 0.9}],
        },
        ensure_ascii=False,
    )

    result = asyncio.run(reply_to_comment("อยากได้ notebook ราคา 15000 แนะนำหน่อยครับ", "v1"))

    assert result.intent.price == 15000.0
    assert result.retrieval_tier == "pool"
    assert [c.id for c in result.candidates] == ["nb-001"]
    assert [(p.id, p.url) for p in result.products] == [("nb-001", url)]
    assert url in result.reply_text
    assert len(fakes.llm.calls) == 1


def test_non_purchase_comment_gets_direct_transcript_reply(fakes):
    _seed(fakes)
    fakes.llm.classification = json.dumps(
        {"intent": "other", "reply_text": "ขอบคุณครับ ดูรีวิวเต็มได้ที่ https://spam.example/x"},
        ensure_ascii=False,
    )

    result = asyncio.run(reply_to_comment("great video about gaming notebooks", "v1", min_score=0.0))

    assert result.comment_intent == "other"
    assert result.products == []
    assert result.candidates == []
    assert result.reply_text.startswith("ขอบคุณครับ")
    assert "spam.example" not in result.reply_text
    assert result.contexts
    assert all(c.source_type == SourceType.TRANSCRIPT for c in result.contexts)
    assert fakes.llm.calls == []
    assert len(fakes.llm.classify_calls) == 1
    assert "## Video transcript" in fakes.llm.classify_calls[0][1]["content"]


def test_purchase_verdict_fills_missing_budget(fakes):
    _seed(fakes)
    fakes.llm.classification = json.dumps(
        {
            "intent": "purchase",
            "category": "Notebook",
            "filters": {"budget_max": "15,000", "brand_prefer": ["ASUS"]},
        }
    )

    result = asyncio.run(reply_to_comment("which gaming notebook should I buy", "v1", min_score=0.0))

    assert result.comment_intent == "purchase"
    assert result.intent.price == 15000.0
    assert "ASUS" in result.intent.brands
    assert len(fakes.llm.calls) == 1
    assert "## Budget" in fakes.llm.calls[0][1]["content"]


def test_unreadable_verdict_falls_through_to_product_reply(fakes):
    _seed(fakes)
    fakes.llm.classification = "I think this is a purchase question"

    result = asyncio.run(reply_to_comment("gaming notebooks under 15000 baht", "v1", min_score=0.0))

    assert result.comment_intent == "purchase"
    assert len(fakes.llm.classify_calls) == 1
    assert len(fakes.llm.calls) == 1
