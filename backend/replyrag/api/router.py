from __future__ import annotations

from fastapi import APIRouter

from .endpoints.embeddings import router as embeddings_router
from .endpoints.health import router as health_router
from .endpoints.ingest import router as ingest_router
from .endpoints.pools import router as pools_router
from .endpoints.replies import router as replies_router
from .endpoints.search import router as search_router
from .endpoints.stats import router as stats_router

router = APIRouter()

router.include_router(health_router)
router.include_router(search_router)
router.include_router(replies_router)
router.include_router(ingest_router)
router.include_router(pools_router)
router.include_router(embeddings_router)
router.include_router(stats_router)
