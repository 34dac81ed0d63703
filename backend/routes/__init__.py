"""FastAPI endpoints under /api.

Endpoint groups: health, clues (inbox + tracking), stories (read-only
instance views) and session (enter/exit story and the playback actions:
pass, intervene, disengage). Session actions are the only way a caller
changes engine state.
"""

from fastapi import APIRouter

from .clues import router as clues_router
from .session import router as session_router
from .stories import router as stories_router

router = APIRouter()


@router.get("/health")
async def health():
    """Health check."""
    return {"status": "ok"}


router.include_router(clues_router)
router.include_router(stories_router)
router.include_router(session_router)
