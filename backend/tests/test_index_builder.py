import asyncio
import json

from backend.replyrag.core.resources import registry
from backend.replyrag.rag import index_builder
from backend.replyrag.schemas.catalog import ContextProfile
from backend.replyrag.schemas.rag import SourceType


def _write_jsonl(path, rows):
    lines = [json.dumps(r, ensure_ascii=False) for r in rows]
    path.write_text("\n".join(lines) + "\n\n", encoding="utf-8")


def test_load_jsonl_ingests_products_and_transcripts(fakes, tmp_path):
    products = tmp_path / "products.jsonl"
    transcripts = tmp_path / "transcripts.jsonl"
    _write_jsonl(
        products,
        [
            {"product_id": "nb-1", "name": "ASUS TUF", "price": 14990, "category": "Notebook"},
            {"product_id": "nb-2", "name": "Acer Nitro", "price": 21990, "category": "Notebook"},
        ],
    )
    _write_jsonl(transcripts, [{"video_id": "v1", "text": "รีวิวโน้ตบุ๊กเล่นเกม"}])

    reports = asyncio.run(index_builder.load_jsonl(products, transcripts))

    assert [r.successful for r in reports] == [2, 1]
    assert asyncio.run(fakes.store.has_document(SourceType.TRANSCRIPT, "v1"))
    assert fakes.catalog.get_item("nb-2").price == 21990


def test_cli_pools_exit_code(fakes):
    fakes.catalog.upsert_context(ContextProfile(context_id="v1", category_tags=["Notebook"]))
    assert index_builder.main(["pools"]) == 0
    assert not registry.is_loaded("catalog_store")
