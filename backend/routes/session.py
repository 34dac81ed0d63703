"""Story session and playback action endpoints."""

from fastapi import APIRouter, Depends, HTTPException

from nearfield.engine import Engine
from nearfield.errors import ClueNotTrackedError, NotFoundError, SceneDataError
from nearfield.llm import LLMError

from .deps import get_engine
from .models import ActionResult, EnterStoryBody, InterveneBody, SessionView

router = APIRouter()


def _view(engine: Engine) -> SessionView:
    orchestrator = engine.orchestrator
    return SessionView(
        state=orchestrator.session_state,
        active_clue_id=orchestrator.active_clue_id,
        playback=orchestrator.playback_snapshot(),
    )


@router.get("/session")
async def get_session(engine: Engine = Depends(get_engine)) -> SessionView:
    """Session state and the current playback session."""
    return _view(engine)


@router.post("/session/enter")
async def enter_story(body: EnterStoryBody, engine: Engine = Depends(get_engine)) -> SessionView:
    """Enter the story linked to a tracked clue and start its scene."""
    try:
        engine.orchestrator.enter_story(body.clue_id)
    except ClueNotTrackedError as e:
        raise HTTPException(409, str(e))
    except NotFoundError as e:
        raise HTTPException(404, str(e))
    except SceneDataError as e:
        raise HTTPException(422, str(e))
    return _view(engine)


@router.post("/session/exit")
async def exit_story(engine: Engine = Depends(get_engine)) -> SessionView:
    """Leave the active story."""
    engine.orchestrator.exit_story()
    return _view(engine)


@router.post("/session/pass")
async def handle_pass(engine: Engine = Depends(get_engine)) -> ActionResult:
    """Pass on the current decision point."""
    accepted = engine.orchestrator.handle_pass()
    return ActionResult(accepted=accepted, session=_view(engine))


@router.post("/session/intervene")
async def handle_intervention(body: InterveneBody, engine: Engine = Depends(get_engine)) -> ActionResult:
    """Submit one interaction turn."""
    try:
        response = await engine.orchestrator.handle_intervention(body.text)
    except NotFoundError as e:
        raise HTTPException(404, str(e))
    except LLMError as e:
        raise HTTPException(502, str(e))
    except ValueError as e:
        raise HTTPException(400, str(e))
    return ActionResult(accepted=response is not None, session=_view(engine))


@router.post("/session/disengage")
async def handle_disengage(engine: Engine = Depends(get_engine)) -> ActionResult:
    """Walk away from the current interaction."""
    accepted = engine.orchestrator.handle_disengage()
    return ActionResult(accepted=accepted, session=_view(engine))
