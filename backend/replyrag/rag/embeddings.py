from __future__ import annotations

import asyncio
from typing import List, Protocol, Sequence

from openai import OpenAI
from sentence_transformers import SentenceTransformer

from ..core.config import settings
from ..core.errors import UpstreamServiceError
from ..core.resources import registry
from ..observability.logging import get_logger

logger = get_logger("rag.embeddings")

EMBEDDING_RESOURCE = "embedding_gateway"


class EmbeddingError(UpstreamServiceError):
    """Embedding service failed or returned vectors of the wrong shape."""


class EmbeddingBackend(Protocol):
    def embed(self, texts: List[str]) -> List[List[float]]: ...


class SentenceTransformerBackend:
    def __init__(self, model_name: str) -> None:
        self.model_name = model_name
        self._model: SentenceTransformer | None = None

    def _get_model(self) -> SentenceTransformer:
        if self._model is None:
            try:
                self._model = SentenceTransformer(
                    self.model_name,
                    local_files_only=True,
                )
            except Exception as exc:
                raise EmbeddingError(
                    "Embedding model is not available in local cache. "
                    "Preload it once with: "
                    f"python -c \"from sentence_transformers import SentenceTransformer; "
                    f"SentenceTransformer('{self.model_name}')\""
                ) from exc
        return self._model

    def embed(self, texts: List[str]) -> List[List[float]]:
        vectors = self._get_model().encode(texts, normalize_embeddings=True)
        return [v.tolist() for v in vectors]


class OpenAIEmbeddingBackend:
    def __init__(
        self,
        model_name: str,
        dimensions: int,
        api_key: str | None,
        base_url: str | None,
    ) -> None:
        if not api_key:
            raise EmbeddingError("REPLYRAG_EMBED_OPENAI_API_KEY is not set")
        self.model_name = model_name
        self.dimensions = dimensions
        self._client = OpenAI(api_key=api_key, base_url=base_url)

    def embed(self, texts: List[str]) -> List[List[float]]:
        response = self._client.embeddings.create(
            model=self.model_name,
            input=texts,
            dimensions=self.dimensions,
        )
        ordered = sorted(response.data, key=lambda d: d.index)
        return [list(d.embedding) for d in ordered]


class EmbeddingGateway:
    """
    Batches text into fixed-dimension vectors.

    Every returned vector has exactly `dimensions` entries; anything else is
    an EmbeddingError, as is any backend failure.
    """

    def __init__(self, backend: EmbeddingBackend, dimensions: int, batch_size: int) -> None:
        self.backend = backend
        self.dimensions = dimensions
        self.batch_size = max(1, batch_size)

    def embed_texts(self, texts: Sequence[str]) -> List[List[float]]:
        out: List[List[float]] = []
        items = list(texts)
        for start in range(0, len(items), self.batch_size):
            batch = items[start : start + self.batch_size]
            try:
                vectors = self.backend.embed(batch)
            except EmbeddingError:
                raise
            except Exception as exc:
                raise EmbeddingError(f"Embedding request failed: {exc}") from exc

            if len(vectors) != len(batch):
                raise EmbeddingError(
                    f"Embedding backend returned {len(vectors)} vectors for {len(batch)} texts"
                )
            for vector in vectors:
                if len(vector) != self.dimensions:
                    raise EmbeddingError(
                        f"Embedding dimension mismatch: expected {self.dimensions}, got {len(vector)}"
                    )
            out.extend(vectors)
        return out

    async def aembed_texts(self, texts: Sequence[str]) -> List[List[float]]:
        return await asyncio.to_thread(self.embed_texts, texts)

    async def aembed_query(self, text: str) -> List[float]:
        vectors = await self.aembed_texts([text])
        return vectors[0]


def _build_gateway() -> EmbeddingGateway:
    cfg = settings.embedding
    logger.info(
        "Initializing embedding gateway",
        extra={"provider": cfg.provider, "model": cfg.model, "dimensions": cfg.dimensions},
    )
    backend: EmbeddingBackend
    if cfg.provider == "openai":
        backend = OpenAIEmbeddingBackend(
            model_name=cfg.model,
            dimensions=cfg.dimensions,
            api_key=cfg.openai_api_key,
            base_url=cfg.openai_base_url,
        )
    else:
        backend = SentenceTransformerBackend(cfg.model)
    return EmbeddingGateway(backend, dimensions=cfg.dimensions, batch_size=cfg.batch_size)


registry.register(EMBEDDING_RESOURCE, _build_gateway)


def get_embedding_gateway() -> EmbeddingGateway:
    return registry.get(EMBEDDING_RESOURCE)
