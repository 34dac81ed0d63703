"""Read-only views of story, scene and NPC instances."""

from fastapi import APIRouter, Depends, HTTPException

from nearfield.engine import Engine
from nearfield.errors import NotFoundError
from nearfield.repository import scene_instance_id

from .deps import get_engine

router = APIRouter()


@router.get("/stories")
async def list_stories(engine: Engine = Depends(get_engine)):
    """Story instances opened by the player's tracked clues."""
    return engine.tracker.get_tracked_stories(engine.orchestrator.player_id)


@router.get("/stories/{instance_id}")
async def get_story(instance_id: str, engine: Engine = Depends(get_engine)):
    """Get a single story instance."""
    story = engine.repository.get_story_instance(instance_id)
    if not story:
        raise HTTPException(404, "Story instance not found")
    return story


@router.get("/stories/{instance_id}/scenes/{scene_id}")
async def get_scene(instance_id: str, scene_id: str, engine: Engine = Depends(get_engine)):
    """Get the scene instance for a scene of a story instance."""
    scene = engine.repository.get_scene_instance(scene_instance_id(instance_id, scene_id))
    if not scene:
        raise HTTPException(404, "Scene instance not found")
    return scene


@router.get("/stories/{instance_id}/scenes/{scene_id}/npcs")
async def get_scene_npcs(instance_id: str, scene_id: str, engine: Engine = Depends(get_engine)):
    """NPC instances present in a scene."""
    try:
        return engine.repository.get_scene_npcs(scene_instance_id(instance_id, scene_id))
    except NotFoundError:
        raise HTTPException(404, "Scene instance not found")
