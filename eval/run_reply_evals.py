from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Dict, List

from backend.replyrag.core.resources import registry
from backend.replyrag.rag.pipeline import reply_to_comment
from backend.replyrag.rag.retriever import SearchOptions, search
from backend.replyrag.schemas.rag import SourceType


def _read_jsonl(path: Path) -> List[Dict[str, Any]]:
    lines = path.read_text(encoding="utf-8").splitlines()
    return [json.loads(line) for line in lines if line.strip()]


def _mentioned(text: str, phrases: List[str]) -> List[str]:
    """Phrases that occur in `text`, case-insensitively."""
    lowered = text.casefold()
    return [p for p in phrases if p.casefold() in lowered]


async def _run_retrieval_golden(path: Path) -> Dict[str, Any]:
    rows = _read_jsonl(path)
    results: List[Dict[str, Any]] = []

    for row in rows:
        outcome = await search(
            row["query"],
            SearchOptions.from_config(
                top_k=row.get("top_k", 8),
                source_type=SourceType.PRODUCT,
                context_id=row.get("context_id"),
            ),
        )
        retrieved = [r.source_id for r in outcome.results]
        expected_ids = row.get("expected_product_ids", [])
        missing_ids = [pid for pid in expected_ids if pid not in retrieved]

        expected_tier = row.get("expected_tier")
        tier_ok = expected_tier is None or expected_tier == outcome.tier
        passed = not missing_ids and tier_ok
        results.append(
            {
                "id": row.get("id"),
                "passed": passed,
                "tier": outcome.tier,
                "missing_product_ids": missing_ids,
                "num_results": len(retrieved),
            }
        )

    passed = sum(1 for r in results if r["passed"])
    return {"suite": "retrieval_golden", "passed": passed, "total": len(results), "results": results}


async def _run_reply_golden(path: Path) -> Dict[str, Any]:
    rows = _read_jsonl(path)
    results: List[Dict[str, Any]] = []

    for row in rows:
        result = await reply_to_comment(row["comment"], row["context_id"])
        expected = row.get("expected", {})

        required = expected.get("must_mention", [])
        found = _mentioned(result.reply_text, required)
        missing_mentions = [p for p in required if p not in found]
        present_forbidden = _mentioned(result.reply_text, expected.get("must_not_mention", []))

        # Every recommendation must come from the candidate pool with its canonical url.
        allowed = {c.id: c.canonical_url for c in result.candidates}
        off_pool = [p.id for p in result.products if allowed.get(p.id) != p.url]

        expected_price = expected.get("budget")
        budget_ok = expected_price is None or result.intent.price == expected_price
        passed = not missing_mentions and not present_forbidden and not off_pool and budget_ok

        results.append(
            {
                "id": row.get("id"),
                "passed": passed,
                "tier": result.retrieval_tier,
                "missing_mentions": missing_mentions,
                "present_forbidden": present_forbidden,
                "off_pool_products": off_pool,
                "detected_budget": result.intent.price,
            }
        )

    passed = sum(1 for r in results if r["passed"])
    return {"suite": "reply_golden", "passed": passed, "total": len(results), "results": results}


async def main(eval_root: Path) -> None:
    try:
        retrieval_report = await _run_retrieval_golden(eval_root / "retrieval_golden.jsonl")
        reply_report = await _run_reply_golden(eval_root / "reply_golden.jsonl")
    finally:
        registry.reset()

    report = {
        "summary": {
            "retrieval_golden": f"{retrieval_report['passed']}/{retrieval_report['total']}",
            "reply_golden": f"{reply_report['passed']}/{reply_report['total']}",
        },
        "details": [retrieval_report, reply_report],
    }
    print(json.dumps(report, indent=2, ensure_ascii=False))


if __name__ == "__main__":
    asyncio.run(main(Path(sys.argv[1]) if len(sys.argv) > 1 else Path("eval")))
