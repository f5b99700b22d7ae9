import pytest

from backend.replyrag.rag.query_intent import (
    detect_brands,
    detect_component_categories,
    detect_usage_category,
    extract_price,
    extract_price_range,
    extract_query_intent,
)


@pytest.mark.parametrize(
    "text,expected",
    [
        ("40K", 40000.0),
        ("งบ 40k ครับ", 40000.0),
        ("งบ 25,000 บาท", 25000.0),
        ("budget: 18000", 18000.0),
        ("ไม่เกิน 30000", 30000.0),
        ("$999", 999.0),
        ("weighs 5kg", None),
        ("no numbers here", None),
    ],
)
def test_extract_price(text, expected):
    assert extract_price(text) == expected


def test_explicit_range_wins_over_tolerance():
    assert extract_price_range("งบ 20k-30k ครับ") == (20000.0, 30000.0)
    assert extract_price_range("ราคา 15000 ถึง 12000") == (12000.0, 15000.0)


def test_range_from_single_price_uses_tolerance():
    low, high = extract_price_range("งบ 15000")
    assert low == pytest.approx(12000.0)
    assert high == pytest.approx(18000.0)
    assert extract_price_range("nothing") is None


def test_latin_keywords_match_whole_tokens_only():
    assert detect_brands("algorithm class") == []
    assert detect_usage_category("send me an email") is None
    assert detect_brands("ASUS or acer?") == ["ASUS", "Acer"]


def test_thai_keywords_match_inside_words():
    assert detect_usage_category("อยากได้เครื่องเล่นเกมส์") == "Gaming"
    assert detect_component_categories("หาโน้ตบุ๊กกับการ์ดจอ") == ["Notebook", "GPU"]


def test_thai_comment_intent():
    intent = extract_query_intent("งบ 15000 อยากได้โน้ตบุ๊กเล่นเกม")

    assert intent.price == 15000.0
    assert intent.price_range == pytest.approx((12000.0, 18000.0))
    assert intent.usage_category == "Gaming"
    assert "Notebook" in intent.component_categories
    assert "gaming" in intent.tags
