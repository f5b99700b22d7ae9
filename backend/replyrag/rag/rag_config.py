from __future__ import annotations

from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from ..core.config import settings
from ..observability.logging import get_logger
from .chunker import ChunkProfile

logger = get_logger("rag.config")

REPO_ROOT = Path(__file__).resolve().parents[3]


@dataclass
class ChunkingConfig:
    transcript: ChunkProfile = field(
        default_factory=lambda: ChunkProfile(max_tokens=400, overlap=60)
    )
    product: ChunkProfile = field(
        default_factory=lambda: ChunkProfile(max_tokens=120, overlap=20)
    )
    product_summary_max_chars: int = 500


@dataclass
class RetrievalConfig:
    default_top_k: int = 5
    max_top_k: int = 50
    min_score: float = 0.2
    vector_weight: float = 0.7
    keyword_weight: float = 0.3
    search_comments: bool = False


@dataclass
class PrefilterConfig:
    max_candidates: int = 100


@dataclass
class PoolConfig:
    min_score: float = 0.1
    max_pool_size: int = 200
    query_top_k: int = 100
    price_band: float = 0.1
    compute_batch_size: int = 10


@dataclass
class RerankConfig:
    price_weight: float = 0.4
    semantic_weight: float = 0.6
    min_price_score: float = 0.0


@dataclass
class ContextBudgetConfig:
    max_total_tokens: int = 2800
    reserved_tokens: int = 500
    min_useful_tokens: int = 50


@dataclass
class GenerationConfig:
    max_products: int = 2
    max_links: int = 2
    candidate_pool_size: int = 10
    temperature: float = 0.3
    max_tokens: int = 800
    classify_comments: bool = True
    classify_max_tokens: int = 400


@dataclass
class BatchConfig:
    ingest_batch_size: int = 20
    embed_batch_size: int = 64
    error_sample_size: int = 5


@dataclass
class RAGConfig:
    tokenizer_encoding: str = "o200k_base"
    chunking: ChunkingConfig = field(default_factory=ChunkingConfig)
    retrieval: RetrievalConfig = field(default_factory=RetrievalConfig)
    prefilter: PrefilterConfig = field(default_factory=PrefilterConfig)
    pool: PoolConfig = field(default_factory=PoolConfig)
    rerank: RerankConfig = field(default_factory=RerankConfig)
    context: ContextBudgetConfig = field(default_factory=ContextBudgetConfig)
    generation: GenerationConfig = field(default_factory=GenerationConfig)
    batch: BatchConfig = field(default_factory=BatchConfig)


def _profile(raw: Dict[str, Any], default: ChunkProfile) -> ChunkProfile:
    return ChunkProfile(
        max_tokens=int(raw.get("max_tokens", default.max_tokens)),
        overlap=int(raw.get("overlap", default.overlap)),
        preserve_sentences=bool(raw.get("preserve_sentences", default.preserve_sentences)),
    )


def load_rag_config(config_path: Path) -> RAGConfig:
    """
    Load RAG tuning from a YAML file; keys that are absent keep their defaults.
    """
    with config_path.open("r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}

    rag_cfg: Dict[str, Any] = raw.get("rag") or {}
    defaults = RAGConfig()

    chunk_raw = rag_cfg.get("chunking") or {}
    product_raw = chunk_raw.get("product") or {}
    chunking = ChunkingConfig(
        transcript=_profile(chunk_raw.get("transcript") or {}, defaults.chunking.transcript),
        product=_profile(product_raw, defaults.chunking.product),
        product_summary_max_chars=int(
            product_raw.get("summary_max_chars", defaults.chunking.product_summary_max_chars)
        ),
    )

    retrieval_raw = rag_cfg.get("retrieval") or {}
    retrieval = RetrievalConfig(
        default_top_k=int(retrieval_raw.get("default_top_k", defaults.retrieval.default_top_k)),
        max_top_k=int(retrieval_raw.get("max_top_k", defaults.retrieval.max_top_k)),
        min_score=float(retrieval_raw.get("min_score", defaults.retrieval.min_score)),
        vector_weight=float(retrieval_raw.get("vector_weight", defaults.retrieval.vector_weight)),
        keyword_weight=float(
            retrieval_raw.get("keyword_weight", defaults.retrieval.keyword_weight)
        ),
        search_comments=bool(
            retrieval_raw.get("search_comments", defaults.retrieval.search_comments)
        ),
    )

    prefilter_raw = rag_cfg.get("prefilter") or {}
    prefilter = PrefilterConfig(
        max_candidates=int(
            prefilter_raw.get("max_candidates", defaults.prefilter.max_candidates)
        ),
    )

    pool_raw = rag_cfg.get("pool") or {}
    pool = PoolConfig(
        min_score=float(pool_raw.get("min_score", defaults.pool.min_score)),
        max_pool_size=int(pool_raw.get("max_pool_size", defaults.pool.max_pool_size)),
        query_top_k=int(pool_raw.get("query_top_k", defaults.pool.query_top_k)),
        price_band=float(pool_raw.get("price_band", defaults.pool.price_band)),
        compute_batch_size=int(
            pool_raw.get("compute_batch_size", defaults.pool.compute_batch_size)
        ),
    )

    rerank_raw = rag_cfg.get("rerank") or {}
    rerank = RerankConfig(
        price_weight=float(rerank_raw.get("price_weight", defaults.rerank.price_weight)),
        semantic_weight=float(
            rerank_raw.get("semantic_weight", defaults.rerank.semantic_weight)
        ),
        min_price_score=float(
            rerank_raw.get("min_price_score", defaults.rerank.min_price_score)
        ),
    )

    context_raw = rag_cfg.get("context") or {}
    context = ContextBudgetConfig(
        max_total_tokens=int(
            context_raw.get("max_total_tokens", defaults.context.max_total_tokens)
        ),
        reserved_tokens=int(context_raw.get("reserved_tokens", defaults.context.reserved_tokens)),
        min_useful_tokens=int(
            context_raw.get("min_useful_tokens", defaults.context.min_useful_tokens)
        ),
    )

    generation_raw = rag_cfg.get("generation") or {}
    generation = GenerationConfig(
        max_products=int(generation_raw.get("max_products", defaults.generation.max_products)),
        max_links=int(generation_raw.get("max_links", defaults.generation.max_links)),
        candidate_pool_size=int(
            generation_raw.get("candidate_pool_size", defaults.generation.candidate_pool_size)
        ),
        temperature=float(generation_raw.get("temperature", defaults.generation.temperature)),
        max_tokens=int(generation_raw.get("max_tokens", defaults.generation.max_tokens)),
        classify_comments=bool(
            generation_raw.get("classify_comments", defaults.generation.classify_comments)
        ),
        classify_max_tokens=int(
            generation_raw.get("classify_max_tokens", defaults.generation.classify_max_tokens)
        ),
    )

    batch_raw = rag_cfg.get("batch") or {}
    batch = BatchConfig(
        ingest_batch_size=int(
            batch_raw.get("ingest_batch_size", defaults.batch.ingest_batch_size)
        ),
        embed_batch_size=int(batch_raw.get("embed_batch_size", defaults.batch.embed_batch_size)),
        error_sample_size=int(
            batch_raw.get("error_sample_size", defaults.batch.error_sample_size)
        ),
    )

    tokenizer_raw = rag_cfg.get("tokenizer") or {}

    return RAGConfig(
        tokenizer_encoding=str(tokenizer_raw.get("encoding", defaults.tokenizer_encoding)),
        chunking=chunking,
        retrieval=retrieval,
        prefilter=prefilter,
        pool=pool,
        rerank=rerank,
        context=context,
        generation=generation,
        batch=batch,
    )


def _resolve_config_path(configured: str) -> Optional[Path]:
    path = Path(configured)
    if path.exists():
        return path
    if not path.is_absolute() and (REPO_ROOT / path).exists():
        return REPO_ROOT / path
    return None


@lru_cache(maxsize=1)
def get_rag_config() -> RAGConfig:
    path = _resolve_config_path(settings.store.rag_config_path)
    if path is None:
        logger.warning(
            "RAG config file not found, using defaults",
            extra={"config_path": settings.store.rag_config_path},
        )
        return RAGConfig()
    return load_rag_config(path)
