from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Optional

from .config import settings
from .errors import NotFoundError

PROMPT_ROOT = Path(__file__).resolve().parents[3] / "prompts"


def prompt_version(name: str) -> str:
    """Version configured for `name` on settings.prompts, "v1" when unset."""
    return getattr(settings.prompts, name, None) or "v1"


@lru_cache(maxsize=16)
def _read_prompt(path: Path) -> str:
    return path.read_text(encoding="utf-8").strip()


def load_prompt(name: str, version: Optional[str] = None) -> str:
    """
    Return the system prompt stored at prompts/{name}_{version}.md.

    The version defaults to the configured one
    (REPLYRAG_COMMENT_REPLY_PROMPT_VERSION for the reply prompt) so a new
    wording can be rolled out without a code change.
    """
    path = PROMPT_ROOT / f"{name}_{version or prompt_version(name)}.md"
    if not path.is_file():
        raise NotFoundError(f"Prompt file not found: {path.name}")
    return _read_prompt(path)
