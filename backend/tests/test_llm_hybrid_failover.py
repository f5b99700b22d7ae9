from types import SimpleNamespace

import pytest

from backend.replyrag.core.llm import LLMClient, LLMCompletion, LLMError


def _hybrid_cfg():
    return SimpleNamespace(
        provider="hybrid",
        primary_provider="ollama",
        fallback_provider="openai",
        ollama_base_url="http://localhost:11434",
        ollama_model="qwen3:14b",
        openai_api_key="dummy",
        openai_base_url="https://api.openai.com/v1",
        openai_model="gpt-4o-mini",
        model="qwen3:14b",
        timeout_seconds=5.0,
    )


def test_hybrid_falls_back_when_primary_fails(monkeypatch):
    client = LLMClient()
    client.cfg = _hybrid_cfg()

    def _raise_ollama(*args, **kwargs):
        raise LLMError("boom")

    monkeypatch.setattr(client, "_complete_with_ollama", _raise_ollama)
    monkeypatch.setattr(
        client,
        "_complete_with_openai",
        lambda messages, json_mode, temperature, max_tokens: LLMCompletion(
            text='{"reply_text": "hi", "products": []}',
            provider="openai",
            model="gpt-4o-mini",
        ),
    )

    out = client.complete([{"role": "user", "content": "test"}])
    assert out.provider == "openai"
    assert out.text.startswith("{")


def test_hybrid_raises_when_both_providers_fail(monkeypatch):
    client = LLMClient()
    client.cfg = _hybrid_cfg()

    def _raise(*args, **kwargs):
        raise LLMError("down")

    monkeypatch.setattr(client, "_complete_with_ollama", _raise)
    monkeypatch.setattr(client, "_complete_with_openai", _raise)

    with pytest.raises(LLMError):
        client.complete([{"role": "user", "content": "test"}])


def test_openai_without_key_is_an_llm_error():
    client = LLMClient()
    client.cfg = _hybrid_cfg()
    client.cfg.provider = "openai"
    client.cfg.openai_api_key = None

    with pytest.raises(LLMError):
        client.complete([{"role": "user", "content": "test"}])
