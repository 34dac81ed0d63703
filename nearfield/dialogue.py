"""Dialogue providers: produce the response for one interaction turn.

The interaction machine depends only on the protocol:

    async def respond(self, request: TurnRequest) -> TurnResponse: ...

    ScriptedDialogueProvider  canned responses keyed by scene id and
                                "turn_{n}", falling back to "default".
    LLMDialogueProvider       renders a Handlebars prompt and asks an LLM
                                for a JSON reply.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Protocol

from pydantic import BaseModel, Field, ValidationError

from nearfield.errors import NotFoundError
from nearfield.llm import LLM
from nearfield.models import (
    PLAYER_ACTOR,
    SYSTEM_ACTOR,
    EntityUpdate,
    NarrativeUnit,
    NpcInstance,
    SceneTemplate,
    TurnResponse,
    TurnSceneStatus,
)
from nearfield.prompts import DEFAULT_DIALOGUE_TEMPLATE, build_dialogue_context, render_prompt

logger = logging.getLogger(__name__)


class TurnRequest(BaseModel):
    story_id: str
    story_instance_id: str | None = None
    scene: SceneTemplate
    turn_number: int
    max_turns: int
    intent_text: str
    goal: str = ""
    history: list[NarrativeUnit] = Field(default_factory=list)
    npcs: list[NpcInstance] = Field(default_factory=list)


class DialogueProvider(Protocol):
    async def respond(self, request: TurnRequest) -> TurnResponse: ...


# ---------------------------------------------------------------------------
# Scripted
# ---------------------------------------------------------------------------

class ScriptedDialogueProvider:
    """Serves authored turn responses.

    Lookup order per scene: the exact ``turn_{n}`` entry, then ``default``.
    Anything else is an authoring error and raises NotFoundError.
    """

    def __init__(self, scripts: dict[str, dict[str, TurnResponse]]) -> None:
        self._scripts = scripts

    async def respond(self, request: TurnRequest) -> TurnResponse:
        scene_id = request.scene.scene_id
        script = self._scripts.get(scene_id, {})
        key = f"turn_{request.turn_number}"
        response = script.get(key)
        if response is None:
            response = script.get("default")
            if response is None:
                raise NotFoundError(
                    f"No dialogue for scene {scene_id} turn {request.turn_number} and no default"
                )
            logger.debug("scene %s: no %s entry, using default", scene_id, key)
        return response.model_copy(deep=True)


# ---------------------------------------------------------------------------
# LLM-backed
# ---------------------------------------------------------------------------

class LLMDialogueProvider:
    def __init__(self, llm: LLM, template: str = DEFAULT_DIALOGUE_TEMPLATE) -> None:
        self._llm = llm
        self._template = template

    async def respond(self, request: TurnRequest) -> TurnResponse:
        context = build_dialogue_context(
            scene=request.scene,
            npcs=request.npcs,
            history=request.history,
            intent_text=request.intent_text,
            turn_number=request.turn_number,
            max_turns=request.max_turns,
            goal=request.goal,
        )
        output = await self._llm("npc_dialogue", render_prompt(self._template, context))
        return _parse_dialogue_reply(output, request)


def _parse_dialogue_reply(output: str, request: TurnRequest) -> TurnResponse:
    try:
        data: Any = json.loads(_strip_code_fence(output))
    except json.JSONDecodeError as e:
        raise ValueError(f"Dialogue model returned invalid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ValueError(f"Dialogue reply must be a JSON object, got {type(data).__name__}")

    prefix = f"{request.scene.scene_id}_T{request.turn_number:03d}"
    events = [NarrativeUnit(unit_id=f"{prefix}_P", kind="InteractionTurn", actor=PLAYER_ACTOR)]
    for i, line in enumerate(data.get("lines", []), start=1):
        if not isinstance(line, dict) or not line.get("content"):
            logger.warning("Dropping malformed dialogue line %r", line)
            continue
        actor = str(line.get("actor") or SYSTEM_ACTOR)
        if actor == PLAYER_ACTOR:
            logger.warning("Dropping dialogue line spoken for the player: %r", line["content"])
            continue
        events.append(NarrativeUnit(
            unit_id=f"{prefix}_N{i}",
            kind="InteractionTurn",
            actor=actor,
            content=str(line["content"]),
        ))

    try:
        updates = [EntityUpdate.model_validate(u) for u in data.get("entity_updates", [])]
    except ValidationError as e:
        raise ValueError(f"Dialogue reply has invalid entity_updates: {e}") from e

    return TurnResponse(
        new_events=events,
        entity_updates=updates,
        scene_status=TurnSceneStatus(is_scene_over=bool(data.get("is_scene_over", False))),
    )


def _strip_code_fence(text: str) -> str:
    text = text.strip()
    if text.startswith("```"):
        text = text.split("\n", 1)[1] if "\n" in text else ""
        text = text.rsplit("```", 1)[0]
    return text.strip()
