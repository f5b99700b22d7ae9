from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx
from openai import OpenAI

from ..observability.logging import get_logger
from .config import settings
from .errors import UpstreamServiceError
from .resources import registry

logger = get_logger("core.llm")

Message = Dict[str, str]


class LLMError(UpstreamServiceError):
    """Raised when the LLM provider returns an error or an empty response."""


@dataclass
class LLMCompletion:
    text: str
    provider: str
    model: str
    usage: Dict[str, int] = field(default_factory=dict)


class LLMClient:
    """
    Chat completion client over Ollama and OpenAI-compatible APIs.

    `complete` returns the raw text of the first choice. With `json_mode`
    the provider is asked for a JSON object, but callers still parse the
    text themselves since models may wrap it in code fences.
    """

    def __init__(self) -> None:
        self.cfg = settings.llm

    def complete(
        self,
        messages: List[Message],
        json_mode: bool = True,
        temperature: float = 0.3,
        max_tokens: Optional[int] = None,
    ) -> LLMCompletion:
        if self.cfg.provider == "ollama":
            return self._complete_with_ollama(messages, json_mode, temperature, max_tokens)
        if self.cfg.provider == "openai":
            return self._complete_with_openai(messages, json_mode, temperature, max_tokens)
        if self.cfg.provider == "hybrid":
            return self._complete_hybrid(messages, json_mode, temperature, max_tokens)
        raise LLMError(f"Unsupported LLM provider: {self.cfg.provider}")

    async def acomplete(
        self,
        messages: List[Message],
        json_mode: bool = True,
        temperature: float = 0.3,
        max_tokens: Optional[int] = None,
    ) -> LLMCompletion:
        return await asyncio.to_thread(
            self.complete, messages, json_mode, temperature, max_tokens
        )

    def _complete_hybrid(
        self,
        messages: List[Message],
        json_mode: bool,
        temperature: float,
        max_tokens: Optional[int],
    ) -> LLMCompletion:
        primary = self.cfg.primary_provider
        fallback = self.cfg.fallback_provider

        try:
            if primary == "ollama":
                return self._complete_with_ollama(messages, json_mode, temperature, max_tokens)
            return self._complete_with_openai(messages, json_mode, temperature, max_tokens)
        except LLMError as exc:
            logger.error(
                "Primary LLM provider failed, attempting fallback",
                extra={"primary_provider": primary, "fallback_provider": fallback, "error": str(exc)},
            )

        if fallback == "ollama":
            return self._complete_with_ollama(messages, json_mode, temperature, max_tokens)
        return self._complete_with_openai(messages, json_mode, temperature, max_tokens)

    def _complete_with_ollama(
        self,
        messages: List[Message],
        json_mode: bool,
        temperature: float,
        max_tokens: Optional[int],
    ) -> LLMCompletion:
        url = self.cfg.ollama_base_url.rstrip("/") + "/api/chat"
        model = self.cfg.ollama_model or self.cfg.model
        options: Dict[str, Any] = {"temperature": temperature}
        if max_tokens is not None:
            options["num_predict"] = max_tokens
        payload: Dict[str, Any] = {
            "model": model,
            "messages": messages,
            "stream": False,
            "options": options,
        }
        if json_mode:
            payload["format"] = "json"

        try:
            with httpx.Client(timeout=self.cfg.timeout_seconds) as client:
                resp = client.post(url, json=payload)
        except httpx.HTTPError as exc:
            raise LLMError("Ollama chat request failed") from exc

        if resp.status_code != 200:
            raise LLMError(f"Ollama returned status {resp.status_code}: {resp.text[:300]}")

        data = resp.json()
        content = (data.get("message") or {}).get("content")
        if not content:
            raise LLMError("Ollama returned empty content")

        return LLMCompletion(
            text=content,
            provider="ollama",
            model=model,
            usage={
                "prompt_tokens": int(data.get("prompt_eval_count") or 0),
                "completion_tokens": int(data.get("eval_count") or 0),
            },
        )

    def _complete_with_openai(
        self,
        messages: List[Message],
        json_mode: bool,
        temperature: float,
        max_tokens: Optional[int],
    ) -> LLMCompletion:
        if not self.cfg.openai_api_key:
            raise LLMError("REPLYRAG_OPENAI_API_KEY is not set")

        client = OpenAI(
            api_key=self.cfg.openai_api_key,
            base_url=self.cfg.openai_base_url,
            timeout=self.cfg.timeout_seconds,
        )
        kwargs: Dict[str, Any] = {
            "model": self.cfg.openai_model,
            "temperature": temperature,
            "messages": messages,
        }
        if max_tokens is not None:
            kwargs["max_tokens"] = max_tokens
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        try:
            response = client.chat.completions.create(**kwargs)
        except Exception as exc:
            raise LLMError("OpenAI chat request failed") from exc

        if not response.choices:
            raise LLMError("OpenAI returned no choices")
        content = response.choices[0].message.content
        if not content:
            raise LLMError("OpenAI returned empty content")

        usage: Dict[str, int] = {}
        if response.usage is not None:
            usage = {
                "prompt_tokens": response.usage.prompt_tokens,
                "completion_tokens": response.usage.completion_tokens,
            }
        return LLMCompletion(
            text=content,
            provider="openai",
            model=response.model or self.cfg.openai_model,
            usage=usage,
        )


def _build_llm_client() -> LLMClient:
    llm_settings = settings.llm
    logger.info(
        "Initializing LLM client",
        extra={
            "provider": llm_settings.provider,
            "primary_provider": llm_settings.primary_provider,
            "fallback_provider": llm_settings.fallback_provider,
            "model": llm_settings.model,
        },
    )
    return LLMClient()


registry.register("llm_client", _build_llm_client)


def get_llm_client() -> LLMClient:
    return registry.get("llm_client")
