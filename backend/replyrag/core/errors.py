from __future__ import annotations


class ReplyRAGError(Exception):
    """Base exception for the reply pipeline."""


class ValidationError(ReplyRAGError):
    """Caller supplied arguments that violate an invariant (fatal for the call)."""


class UpstreamServiceError(ReplyRAGError):
    """Embedding, generation or document store call failed."""


class ParseError(ReplyRAGError):
    """Generated output could not be parsed into the expected structure."""


class NotFoundError(ReplyRAGError):
    """A referenced context or document does not exist."""
