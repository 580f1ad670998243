"""FastAPI API endpoints under /api.

Endpoint groups: health/connection check, credits, adventures (generation,
reads, lifecycle, regeneration counts) and movements. Scene endpoints are
nested under /api/adventures/{adventure_id}/movements/{movement_id}.

The caller is identified by the X-User-Id header set by the upstream auth
layer. Failures are returned as the orchestrator's result dict with a
matching HTTP status (see deps.STATUS_BY_CODE).
"""

from fastapi import APIRouter

from .adventures import router as adventures_router
from .credits import router as credits_router
from .movements import router as movements_router
from .settings import router as settings_router

router = APIRouter()
router.include_router(settings_router)
router.include_router(credits_router)
router.include_router(adventures_router)
router.include_router(movements_router)
