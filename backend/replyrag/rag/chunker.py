from __future__ import annotations

import re
from dataclasses import dataclass
from typing import List, Optional, Tuple

from .normalize import normalize_text
from .tokenizer import CHARS_PER_TOKEN, count_tokens

# Sentence enders: latin punctuation and the Thai abbreviation mark (ฯ).
_SENTENCE_SPLIT_RE = re.compile("([.!?\u0e2f]\\s+)")


@dataclass
class ChunkProfile:
    """
    Token budget for one content type.

    max_tokens <= 0 means "never split" (comments).
    """

    max_tokens: int = 400
    overlap: int = 60
    preserve_sentences: bool = True


@dataclass
class TextChunk:
    text: str
    index: int
    tokens: int
    start_char: int
    end_char: int


# (text, start, end) of a segment inside the normalized input
_Span = Tuple[str, int, int]


def _split_into_sentences(text: str) -> List[_Span]:
    """
    Split on sentence-ending punctuation, keeping the punctuation with the
    sentence, and locate every sentence inside `text`.
    """
    parts = _SENTENCE_SPLIT_RE.split(text)
    spans: List[_Span] = []
    cursor = 0
    for i in range(0, len(parts), 2):
        punctuation = parts[i + 1] if i + 1 < len(parts) else ""
        sentence = (parts[i] + punctuation).strip()
        if not sentence:
            continue
        start = text.find(sentence, cursor)
        end = start + len(sentence)
        spans.append((sentence, start, end))
        cursor = end
    return spans


def _split_by_characters(span: _Span, max_tokens: int) -> List[_Span]:
    """
    Force-split one oversized segment into windows of ~max_tokens worth of
    characters, preferring a space in the last 20% of each window.
    """
    text, offset, _ = span
    max_chars = max(1, max_tokens * CHARS_PER_TOKEN)
    pieces: List[_Span] = []
    start = 0
    length = len(text)

    while start < length:
        end = min(start + max_chars, length)
        if end < length:
            space_pos = text.rfind(" ", start, end + 1)
            if space_pos > start + max_chars * 0.8:
                end = space_pos

        raw = text[start:end]
        piece = raw.strip()
        if piece:
            lead = len(raw) - len(raw.lstrip())
            piece_start = offset + start + lead
            pieces.append((piece, piece_start, piece_start + len(piece)))
        start = end

    return pieces


def _overlap_tail(spans: List[_Span], overlap_tokens: int) -> List[_Span]:
    """Whole trailing segments whose combined size fits in `overlap_tokens`."""
    if overlap_tokens <= 0 or not spans:
        return []

    tail: List[_Span] = []
    tokens = 0
    for span in reversed(spans):
        span_tokens = count_tokens(span[0])
        if tokens + span_tokens > overlap_tokens:
            break
        tail.insert(0, span)
        tokens += span_tokens
    return tail


def _join(spans: List[_Span]) -> str:
    return " ".join(s[0] for s in spans)


def chunk_text(text: str, profile: ChunkProfile) -> List[TextChunk]:
    """
    Split text into token-bounded chunks with sentence-level overlap.

    - Input that fits in `max_tokens` comes back as a single chunk.
    - Otherwise sentences are packed greedily; a single sentence larger than
      the budget is split by characters.
    - Each new chunk starts with whole trailing sentences of the previous one,
      up to `overlap` tokens, as long as the chunk still fits.
    """
    normalized = normalize_text(text)
    if not normalized:
        return []

    total_tokens = count_tokens(normalized)
    if profile.max_tokens <= 0 or total_tokens <= profile.max_tokens:
        return [
            TextChunk(
                text=normalized,
                index=0,
                tokens=total_tokens,
                start_char=0,
                end_char=len(normalized),
            )
        ]

    max_tokens = profile.max_tokens
    if profile.preserve_sentences:
        segments = _split_into_sentences(normalized)
    else:
        segments = [(normalized, 0, len(normalized))]

    chunks: List[TextChunk] = []

    def emit(spans: List[_Span]) -> None:
        chunk_body = _join(spans)
        chunks.append(
            TextChunk(
                text=chunk_body,
                index=len(chunks),
                tokens=count_tokens(chunk_body),
                start_char=spans[0][1],
                end_char=spans[-1][2],
            )
        )

    current: List[_Span] = []

    for segment in segments:
        if count_tokens(segment[0]) > max_tokens:
            if current:
                emit(current)
            current = []
            for piece in _split_by_characters(segment, max_tokens):
                emit([piece])
            continue

        if current and count_tokens(_join(current + [segment])) > max_tokens:
            emit(current)
            carried = _overlap_tail(current, profile.overlap)
            while carried and count_tokens(_join(carried + [segment])) > max_tokens:
                carried.pop(0)
            current = carried

        current.append(segment)

    if current:
        emit(current)

    return chunks


def chunk_transcript(text: str, profile: Optional[ChunkProfile] = None) -> List[TextChunk]:
    return chunk_text(text, profile or ChunkProfile(max_tokens=400, overlap=60))


def chunk_product_description(
    text: str, profile: Optional[ChunkProfile] = None
) -> List[TextChunk]:
    return chunk_text(text, profile or ChunkProfile(max_tokens=120, overlap=20))


def chunk_comment(text: str) -> List[TextChunk]:
    """Comments are never split."""
    return chunk_text(text, ChunkProfile(max_tokens=0, overlap=0))
