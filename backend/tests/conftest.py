import math
import zlib
from types import SimpleNamespace
from typing import List

import pytest

from backend.replyrag.core.llm import LLMCompletion
from backend.replyrag.core.prompt import load_prompt
from backend.replyrag.core.resources import registry
from backend.replyrag.db.catalog_store import CatalogStore
from backend.replyrag.rag.embeddings import EmbeddingGateway
from backend.replyrag.rag.store import InMemoryDocumentStore

DIMENSIONS = 32


class WhitespaceEncoder:
    """One token per whitespace-separated word."""

    def encode(self, text):
        return text.split()

    def decode(self, tokens):
        return " ".join(tokens)


class HashingBackend:
    """Deterministic bag-of-words vectors, unit length."""

    def __init__(self) -> None:
        self.calls = 0

    def embed(self, texts: List[str]) -> List[List[float]]:
        self.calls += 1
        out = []
        for text in texts:
            vector = [0.0] * DIMENSIONS
            for term in text.lower().split():
                vector[zlib.crc32(term.encode("utf-8")) % DIMENSIONS] += 1.0
            norm = math.sqrt(sum(v * v for v in vector)) or 1.0
            out.append([v / norm for v in vector])
        return out


PURCHASE_VERDICT = '{"intent": "purchase", "category": "Notebook", "filters": {}}'


class FakeLLM:
    """
    Answers the classification prompt with `classification` and everything
    else with `text`. `calls` holds reply-generation requests only.
    """

    def __init__(
        self,
        text: str = '{"reply_text": "ok", "products": []}',
        classification: str = PURCHASE_VERDICT,
    ) -> None:
        self.text = text
        self.classification = classification
        self.calls = []
        self.classify_calls = []

    def complete(self, messages, json_mode=True, temperature=0.3, max_tokens=None):
        if messages[0]["content"] == load_prompt("comment_classify"):
            self.classify_calls.append(messages)
            text = self.classification
        else:
            self.calls.append(messages)
            text = self.text
        return LLMCompletion(
            text=text,
            provider="fake",
            model="fake-model",
            usage={"prompt_tokens": 10, "completion_tokens": 5},
        )


@pytest.fixture(autouse=True)
def _whitespace_tokenizer():
    registry.override("tokenizer", WhitespaceEncoder())
    yield
    registry.reset()


@pytest.fixture
def fakes(tmp_path):
    backend = HashingBackend()
    env = SimpleNamespace(
        backend=backend,
        gateway=EmbeddingGateway(backend, dimensions=DIMENSIONS, batch_size=8),
        store=InMemoryDocumentStore(),
        catalog=CatalogStore(tmp_path / "catalog.sqlite3"),
        llm=FakeLLM(),
    )
    registry.override("embedding_gateway", env.gateway)
    registry.override("document_store", env.store)
    registry.override("catalog_store", env.catalog)
    registry.override("llm_client", env.llm)
    return env
