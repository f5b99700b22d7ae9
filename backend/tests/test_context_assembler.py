from backend.replyrag.rag.context_assembler import assemble_contexts, format_context_block
from backend.replyrag.schemas.rag import (
    CommentMetadata,
    ProductMetadata,
    SearchResult,
    SourceType,
)


def _comment(comment_id, words):
    return SearchResult(
        chunk_id=f"comment:{comment_id}:0",
        document_id=f"comment:{comment_id}",
        chunk_index=0,
        text=" ".join(f"w{i}" for i in range(words)),
        metadata=CommentMetadata(video_id="v1"),
        score=0.5,
        source_type=SourceType.COMMENT,
        source_id=comment_id,
    )


def test_first_overflowing_result_is_truncated_then_packing_stops():
    results = [_comment("a", 10), _comment("b", 10), _comment("c", 10), _comment("d", 1)]
    out = assemble_contexts(results, max_total_tokens=30, reserved_tokens=5, min_useful_tokens=3)

    assert [c.result.source_id for c in out] == ["a", "b", "c"]
    assert out[2].truncated
    assert out[2].tokens == 5
    assert sum(c.tokens for c in out) <= 25


def test_remainder_at_or_below_floor_is_dropped():
    results = [_comment("a", 10), _comment("b", 10), _comment("c", 10)]
    out = assemble_contexts(results, max_total_tokens=25, reserved_tokens=3, min_useful_tokens=2)

    assert [c.result.source_id for c in out] == ["a", "b"]
    assert not any(c.truncated for c in out)


def test_context_block_labels():
    product = SearchResult(
        chunk_id="product:nb-1:0",
        document_id="product:nb-1",
        chunk_index=0,
        text="Gaming notebook",
        metadata=ProductMetadata(name="ASUS TUF", price=14990),
        score=0.9,
        source_type=SourceType.PRODUCT,
        source_id="nb-1",
    )
    block = format_context_block(assemble_contexts([product]))

    assert block.startswith("[Product] ASUS TUF | 14,990 THB")
    assert format_context_block([]) == "(no context)"
