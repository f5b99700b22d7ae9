import pytest

from backend.replyrag.rag.chunker import ChunkProfile, chunk_comment, chunk_text
from backend.replyrag.rag.normalize import NormalizeOptions, normalize

SAMPLES = [
    "  “Great” video!!!!  see https://shop.example/a?b=1 or mail me@x.co  ",
    "ดี้้้มากๆๆ ราคา 15,000 บาท 😀🔥",
    "zero\u200bwidth \u2014 dash\u2026 and \u2018quotes\u2019",
    "short",
    "see http:// site now",
    "write to me@shop. thanks a lot",
]

OPTION_SETS = [
    NormalizeOptions(),
    NormalizeOptions(remove_emojis=True, clean_urls=True),
    NormalizeOptions(remove_emojis=True, max_length=20),
    NormalizeOptions(clean_urls=True, max_length=14),
    NormalizeOptions(remove_emojis=True, clean_urls=True, max_length=20),
]


@pytest.mark.parametrize("options", OPTION_SETS)
@pytest.mark.parametrize("text", SAMPLES)
def test_normalize_is_idempotent(text, options):
    once = normalize(text, options)
    assert normalize(once, options) == once


@pytest.mark.parametrize(
    "text, max_length, expected",
    [
        ("see http:// site now", 14, "see http://…"),
        ("write to me@shop. thanks a lot", 18, "write to me@shop.…"),
    ],
)
def test_truncated_link_fragment_is_stable(text, max_length, expected):
    options = NormalizeOptions(clean_urls=True, max_length=max_length)
    once = normalize(text, options)
    assert once == expected
    assert normalize(once, options) == once


def test_normalize_cleans_urls_emojis_and_punctuation():
    out = normalize(SAMPLES[0] + " 😀", NormalizeOptions(remove_emojis=True, clean_urls=True))
    assert "[URL]" in out
    assert "[EMAIL]" in out
    assert "😀" not in out
    assert "!!!" not in out
    assert out.startswith('"Great" video!!')


def test_normalize_collapses_repeated_thai_marks():
    out = normalize("\u0e14\u0e35\u0e49\u0e49\u0e49\u0e21\u0e32\u0e01\u0e46\u0e46")
    assert out == "\u0e14\u0e35\u0e49\u0e21\u0e32\u0e01\u0e46"


def test_truncation_counts_suffix_within_limit():
    out = normalize("word " * 40, NormalizeOptions(max_length=30))
    assert len(out) <= 30
    assert out.endswith("…")


def test_comment_is_single_chunk():
    text = "one two three. " * 200
    chunks = chunk_comment(text)
    assert len(chunks) == 1
    assert chunks[0].index == 0


def test_sentence_chunks_respect_budget_and_overlap():
    sentences = [f"Sentence number {i} talks about laptops." for i in range(30)]
    chunks = chunk_text(" ".join(sentences), ChunkProfile(max_tokens=20, overlap=6))

    assert len(chunks) > 1
    assert [c.index for c in chunks] == list(range(len(chunks)))
    assert all(c.tokens <= 20 for c in chunks)
    for sentence in sentences:
        assert any(sentence in c.text for c in chunks)

    assert chunks[1].text.startswith(sentences[2])


def test_oversized_sentence_is_split_by_characters():
    words = ["word"] * 100
    chunks = chunk_text(" ".join(words), ChunkProfile(max_tokens=10, overlap=0))

    assert len(chunks) > 1
    assert all(c.tokens <= 10 for c in chunks)
    assert " ".join(c.text for c in chunks).split() == words
