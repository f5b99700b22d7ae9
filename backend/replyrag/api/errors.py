from __future__ import annotations

from fastapi import HTTPException

from ..core.errors import NotFoundError, ReplyRAGError, UpstreamServiceError, ValidationError


def to_http_error(exc: ReplyRAGError) -> HTTPException:
    """Map the service exception hierarchy onto HTTP status codes."""
    if isinstance(exc, ValidationError):
        return HTTPException(status_code=422, detail=str(exc))
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, UpstreamServiceError):
        return HTTPException(status_code=502, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))
