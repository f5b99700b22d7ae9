import pytest

from backend.replyrag.core.errors import ValidationError
from backend.replyrag.rag.price_rerank import price_score, rerank_by_price
from backend.replyrag.schemas.rag import ProductMetadata, SearchResult, SourceType


def _result(product_id, score, price):
    return SearchResult(
        chunk_id=f"product:{product_id}:0",
        document_id=f"product:{product_id}",
        chunk_index=0,
        text=product_id,
        metadata=ProductMetadata(name=product_id, price=price),
        score=score,
        source_type=SourceType.PRODUCT,
        source_id=product_id,
    )


def test_price_score_values():
    assert price_score(15000, 15000) == pytest.approx(1.0)
    assert price_score(10000, 20000) == pytest.approx(1 / 3)
    assert price_score(15000, None) == 0.0
    assert price_score(15000, 0) == 0.0


def test_closer_price_moves_up():
    results = [_result("expensive", 0.8, 30000), _result("on-budget", 0.7, 15000)]
    reranked = rerank_by_price(results, 15000, price_weight=0.4, semantic_weight=0.6)

    assert [r.source_id for r in reranked] == ["on-budget", "expensive"]
    top = reranked[0]
    assert top.reranked
    assert top.semantic_score == pytest.approx(0.7)
    assert top.price_score == pytest.approx(1.0)
    assert top.score == pytest.approx(0.7 * 0.6 + 0.4)


def test_item_without_price_keeps_its_score():
    reranked = rerank_by_price([_result("no-price", 0.5, None)], 15000)
    assert reranked[0].score == pytest.approx(0.5)
    assert reranked[0].semantic_score == pytest.approx(0.5)
    assert reranked[0].reranked is False


def test_price_below_floor_is_penalized():
    reranked = rerank_by_price(
        [_result("far", 0.9, 30000)],
        10000,
        price_weight=0.4,
        semantic_weight=0.6,
        min_price_score=0.5,
    )
    assert reranked[0].penalized
    assert reranked[0].score == pytest.approx(0.9 * 0.6)


def test_no_query_price_only_sorts():
    results = [_result("b", 0.2, 100), _result("a", 0.9, 100)]
    reranked = rerank_by_price(results, None)
    assert [r.source_id for r in reranked] == ["a", "b"]
    assert not any(r.reranked for r in reranked)


def test_weights_must_sum_to_one():
    with pytest.raises(ValidationError):
        rerank_by_price([], 15000, price_weight=0.7, semantic_weight=0.2)
