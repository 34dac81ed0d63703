"""Clue inbox and tracking endpoints."""

from fastapi import APIRouter, Depends, HTTPException

from nearfield.engine import Engine
from nearfield.errors import NotFoundError

from .deps import get_engine
from .models import ClueInbox

router = APIRouter()


@router.get("/clues")
async def list_clues(engine: Engine = Depends(get_engine)) -> ClueInbox:
    """The player's clue inbox, newest first, with status counts."""
    player_id = engine.orchestrator.player_id
    return ClueInbox(
        clues=engine.tracker.get_inbox(player_id),
        stats=engine.tracker.get_stats(player_id),
    )


@router.get("/clues/{clue_id}")
async def get_clue(clue_id: str, engine: Engine = Depends(get_engine)):
    """Get a single clue record."""
    record = engine.repository.get_clue_record(clue_id)
    if not record:
        raise HTTPException(404, "Clue not found")
    return record


@router.post("/clues/{clue_id}/track")
async def track_clue(clue_id: str, engine: Engine = Depends(get_engine)):
    """Track a clue, opening its story instance. Returns the story instance."""
    try:
        return engine.orchestrator.track_clue(clue_id)
    except NotFoundError as e:
        raise HTTPException(404, str(e))
