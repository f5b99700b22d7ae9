import pytest

from backend.replyrag.core.errors import ParseError
from backend.replyrag.rag.classifier import apply_classification, parse_classification
from backend.replyrag.rag.query_intent import extract_query_intent


def test_explicit_other_verdict():
    verdict = parse_classification('{"intent": "other", "reply_text": "ขอบคุณครับ"}')
    assert verdict.intent == "other"
    assert verdict.reply_text == "ขอบคุณครับ"


def test_bare_reply_text_is_other():
    verdict = parse_classification('```json\n{"reply_text": "thanks for watching"}\n```')
    assert verdict.intent == "other"


def test_purchase_verdict_reads_filters():
    verdict = parse_classification(
        '{"category": "Notebook", "filters": {"budget_min": null, "budget_max": "25,000",'
        ' "brand_prefer": "Lenovo", "usage_notes": "null"}}'
    )
    assert verdict.intent == "purchase"
    assert verdict.category == "Notebook"
    assert verdict.filters.budget_min is None
    assert verdict.filters.budget_max == 25000.0
    assert verdict.filters.brand_prefer == ["Lenovo"]
    assert verdict.filters.usage_notes is None


def test_purchase_without_category_is_unknown():
    verdict = parse_classification('{"intent": "purchase"}')
    assert verdict.category == "Unknown"
    assert verdict.filters.budget_max is None


@pytest.mark.parametrize(
    "raw",
    ['{"intent": "other"}', "no json here", "[1, 2]"],
)
def test_unusable_verdicts_raise(raw):
    with pytest.raises(ParseError):
        parse_classification(raw)


def test_comment_budget_wins_over_classifier():
    intent = extract_query_intent("งบ 20000 อยากได้โน้ตบุ๊ก")
    verdict = parse_classification(
        '{"intent": "purchase", "filters": {"budget_min": 10000, "budget_max": 15000}}'
    )
    merged = apply_classification(intent, verdict)
    assert merged.price == 20000.0
    assert merged.price_range == intent.price_range


def test_classifier_fills_budget_range_and_brands():
    intent = extract_query_intent("gaming notebook for school")
    verdict = parse_classification(
        '{"intent": "purchase", "filters": {"budget_min": 18000, "budget_max": 12000,'
        ' "brand_prefer": ["Acer", "acer"]}}'
    )
    merged = apply_classification(intent, verdict)
    assert merged.price == 12000.0
    assert merged.price_range == (12000.0, 18000.0)
    assert merged.brands == intent.brands + ["Acer"]
