from __future__ import annotations

import argparse
import asyncio
import json
from pathlib import Path
from typing import List, Optional

from ..core.resources import registry
from ..observability.logging import get_logger, setup_logging
from ..schemas.ingest import BatchReport, ProductInput, TranscriptInput
from ..schemas.rag import SourceType
from .ingest import ingest_products, ingest_transcripts, regenerate_embeddings
from .relevance_pool import compute_all_pools

logger = get_logger("rag.index_builder")


def _read_jsonl(path: Path) -> List[dict]:
    rows: List[dict] = []
    with path.open("r", encoding="utf-8") as f:
        for line in f:
            text = line.strip()
            if not text:
                continue
            rows.append(json.loads(text))
    return rows


async def load_jsonl(
    products_path: Optional[Path] = None,
    transcripts_path: Optional[Path] = None,
    overwrite: bool = False,
) -> List[BatchReport]:
    """
    Offline bulk load from JSONL exports (one ProductInput / TranscriptInput
    per line). Not used at request time.
    """
    reports: List[BatchReport] = []
    if products_path is not None:
        products = [ProductInput.model_validate(row) for row in _read_jsonl(products_path)]
        reports.append(await ingest_products(products, overwrite=overwrite))
    if transcripts_path is not None:
        transcripts = [
            TranscriptInput.model_validate(row) for row in _read_jsonl(transcripts_path)
        ]
        reports.append(await ingest_transcripts(transcripts, overwrite=overwrite))
    return reports


def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Offline index and pool maintenance jobs.")
    sub = parser.add_subparsers(dest="command", required=True)

    load = sub.add_parser("load", help="Ingest products/transcripts from JSONL files.")
    load.add_argument("--products", type=Path)
    load.add_argument("--transcripts", type=Path)
    load.add_argument("--overwrite", action="store_true")

    pools = sub.add_parser("pools", help="Compute relevance pools for all contexts.")
    pools.add_argument("--overwrite", action="store_true")

    embed = sub.add_parser("embeddings", help="Re-embed stored chunks.")
    embed.add_argument("--source-type", choices=[t.value for t in SourceType])
    embed.add_argument("--all", action="store_true", help="Re-embed chunks that already have vectors.")
    embed.add_argument("--batch-size", type=int)
    return parser


async def _run(args: argparse.Namespace) -> List[BatchReport]:
    if args.command == "load":
        return await load_jsonl(args.products, args.transcripts, overwrite=args.overwrite)
    if args.command == "pools":
        return [await asyncio.to_thread(compute_all_pools, args.overwrite)]
    return [
        await regenerate_embeddings(
            source_type=SourceType(args.source_type) if args.source_type else None,
            only_missing=not args.all,
            batch_size=args.batch_size,
        )
    ]


def main(argv: Optional[List[str]] = None) -> int:
    setup_logging()
    args = _parser().parse_args(argv)
    try:
        reports = asyncio.run(_run(args))
    finally:
        registry.reset()

    for report in reports:
        logger.info("Job finished", extra={"command": args.command, **report.model_dump()})
    return 0 if all(r.success for r in reports) else 1


if __name__ == "__main__":
    raise SystemExit(main())
