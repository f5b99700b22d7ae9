from __future__ import annotations

import html
import re
from dataclasses import dataclass
from typing import Optional

_WHITESPACE_RE = re.compile(r"\s+")
_DOUBLE_QUOTES_RE = re.compile("[\u201c\u201d\u201e\u201f\u00ab\u00bb]")
_SINGLE_QUOTES_RE = re.compile("[\u2018\u2019\u201a\u201b]")
_DASHES_RE = re.compile("[\u2013\u2014\u2015]")
_ZERO_WIDTH_RE = re.compile("[\u200b-\u200d\u2060\ufeff]")

# The truncation ellipsis never counts as part of a URL or address, so a
# link cut by truncation ("http://…") is left alone on the next pass.
_URL_RE = re.compile("https?://[^\\s\u2026]+")
_EMAIL_RE = re.compile("[^\\s\u2026]+@[^\\s\u2026]+\\.[^\\s\u2026]+")
_PUNCT_RUN_RE = re.compile(r"([!?.])[!?.]{2,}")

_EMOJI_RE = re.compile(
    "["
    "\U0001F300-\U0001F9FF"
    "\U0001F600-\U0001F64F"
    "\U0001F680-\U0001F6FF"
    "\u2600-\u26ff"
    "\u2700-\u27bf"
    "]"
)

_THAI_RE = re.compile("[\u0e00-\u0e7f]")
_THAI_TONE_REPEAT_RE = re.compile("([\u0e48-\u0e4b])\\1+")
_THAI_MAI_YAMOK_RE = re.compile("\u0e46{2,}")

_SCRIPT_RE = re.compile(r"<script\b[^>]*>.*?</script\s*>", re.IGNORECASE | re.DOTALL)
_STYLE_RE = re.compile(r"<style\b[^>]*>.*?</style\s*>", re.IGNORECASE | re.DOTALL)
_TAG_RE = re.compile(r"<[^>]+>")

_ELLIPSIS = "\u2026"


@dataclass(frozen=True)
class NormalizeOptions:
    remove_emojis: bool = False
    clean_urls: bool = False
    max_length: Optional[int] = None


def collapse_whitespace(text: str) -> str:
    return _WHITESPACE_RE.sub(" ", text).strip()


def normalize_text(text: str) -> str:
    """Whitespace, quotes, dashes and zero-width characters."""
    if not text:
        return ""

    out = collapse_whitespace(text)
    out = _DOUBLE_QUOTES_RE.sub('"', out)
    out = _SINGLE_QUOTES_RE.sub("'", out)
    out = _DASHES_RE.sub("-", out)
    out = _ZERO_WIDTH_RE.sub("", out)
    return out


def clean_urls(text: str) -> str:
    """Replace URLs and e-mail addresses with placeholders, cap punctuation runs at two."""
    out = _URL_RE.sub("[URL]", text)
    out = _EMAIL_RE.sub("[EMAIL]", out)
    out = _PUNCT_RUN_RE.sub(lambda m: m.group(0)[-1] * 2, out)
    return out


def remove_emojis(text: str) -> str:
    return _EMOJI_RE.sub("", text)


def normalize_thai(text: str) -> str:
    out = _THAI_TONE_REPEAT_RE.sub(r"\1", text)
    out = _THAI_MAI_YAMOK_RE.sub("\u0e46", out)
    return out


def truncate_text(text: str, max_chars: int) -> str:
    """
    Cut `text` to at most `max_chars` characters including the ellipsis suffix.

    Prefers the last word boundary when it falls within the final 20% of the
    window, otherwise cuts mid-word.
    """
    if not text or len(text) <= max_chars:
        return text
    if max_chars <= len(_ELLIPSIS):
        return text[:max_chars]

    budget = max_chars - len(_ELLIPSIS)
    window = text[:budget]
    last_space = window.rfind(" ")
    if last_space > budget * 0.8:
        window = window[:last_space]
    return window.rstrip() + _ELLIPSIS


def strip_html(markup: str) -> str:
    if not markup:
        return ""

    text = _SCRIPT_RE.sub("", markup)
    text = _STYLE_RE.sub("", text)
    text = _TAG_RE.sub(" ", text)
    text = html.unescape(text).replace("\u00a0", " ")
    return normalize_text(text)


def normalize(text: str, options: Optional[NormalizeOptions] = None) -> str:
    """
    Canonicalize raw text before chunking and embedding.

    Deterministic and idempotent: normalize(normalize(x, o), o) == normalize(x, o).
    Emoji removal runs before URL cleaning so that removing a symbol can never
    assemble a new URL or punctuation run that a second pass would rewrite.
    """
    if not text:
        return ""

    opts = options or NormalizeOptions()
    result = normalize_text(text)

    if opts.remove_emojis:
        result = remove_emojis(result)

    if opts.clean_urls:
        result = clean_urls(result)

    if _THAI_RE.search(result):
        result = normalize_thai(result)

    result = collapse_whitespace(result)

    if opts.max_length and len(result) > opts.max_length:
        result = truncate_text(result, opts.max_length)

    return collapse_whitespace(result)
