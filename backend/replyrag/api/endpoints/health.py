from __future__ import annotations

from fastapi import APIRouter

from ...core.resources import registry

router = APIRouter(
    prefix="/health",
    tags=["health"],
)


@router.get(
    "",
    summary="Service health check",
)
async def health_check() -> dict:
    """
    Lightweight liveness probe endpoint. Reports which process-wide
    resources (embedding model, tokenizer, stores) are already loaded.
    """
    return {
        "status": "ok",
        "resources": {
            name: registry.is_loaded(name)
            for name in (
                "tokenizer",
                "embedding_gateway",
                "document_store",
                "catalog_store",
                "llm_client",
            )
        },
    }
