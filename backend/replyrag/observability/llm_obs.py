from __future__ import annotations

import os
from typing import Any, Callable, Dict, Optional

from langsmith import Client, traceable

from ..core.config import settings
from ..core.prompt import prompt_version

DEFAULT_PROJECT = "comment-reply-rag"

_client: Optional[Client] = None


def get_langsmith_client() -> Optional[Client]:
    """LangSmith client, or None unless tracing is on and an API key is set."""
    global _client
    if _client is not None:
        return _client

    cfg = settings.llm_obs
    if not (cfg.tracing_v2 and cfg.langsmith_api_key):
        return None

    # The langsmith SDK reads these at trace time, not from the Client.
    os.environ.setdefault("LANGSMITH_TRACING", "true")
    os.environ.setdefault("LANGSMITH_PROJECT", cfg.langsmith_project or DEFAULT_PROJECT)

    _client = Client(api_key=cfg.langsmith_api_key)
    return _client


def traceable_node(prompt_name: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """
    Trace an LLM call as a LangSmith "llm" run tagged with the prompt name
    and its configured version. Returns the function untouched when
    LangSmith is not configured.
    """
    client = get_langsmith_client()
    if client is None:
        return lambda func: func

    metadata: Dict[str, Any] = {
        "prompt": prompt_name,
        "prompt_version": prompt_version(prompt_name),
    }
    return traceable(
        name=prompt_name,
        run_type="llm",
        client=client,
        project_name=settings.llm_obs.langsmith_project or DEFAULT_PROJECT,
        metadata=metadata,
        tags=["reply-generation"],
    )
