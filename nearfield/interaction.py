"""Interaction sub-machine: bounded multi-turn dialogue at a decision point.

The turn number is never stored. It is recomputed on every submission as
the number of Player turns already in the event log plus one. When that
number reaches the policy's max_turns the response is forced to converge:
it gets a resolving narrative unit if the provider did not supply one,
and ``scene_status.is_scene_over`` is set.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from uuid import uuid4

from nearfield.dialogue import DialogueProvider, TurnRequest
from nearfield.events import EventBus, InteractionTurnEvent
from nearfield.models import (
    PLAYER_ACTOR,
    SYSTEM_ACTOR,
    DialogueRecord,
    InteractionPolicy,
    NarrativeUnit,
    PolicyProgress,
    SceneTemplate,
    TurnResponse,
)
from nearfield.repository import InstanceRepository, npc_instance_id, scene_instance_id

logger = logging.getLogger(__name__)

CONVERGENCE_TEXT = "The moment passes. Whatever was going to happen here has happened."
DISENGAGE_TEXT = "You step back from the exchange and let events run their course."


def count_player_turns(events: list[NarrativeUnit]) -> int:
    return sum(1 for e in events if e.kind == "InteractionTurn" and e.actor == PLAYER_ACTOR)


def current_turn_number(events: list[NarrativeUnit]) -> int:
    return count_player_turns(events) + 1


class InteractionMachine:
    def __init__(
        self,
        repository: InstanceRepository,
        provider: DialogueProvider,
        bus: EventBus | None = None,
    ) -> None:
        self._repo = repository
        self._provider = provider
        self._bus = bus

    async def submit_turn(
        self,
        *,
        story_id: str,
        story_instance_id: str | None,
        scene: SceneTemplate,
        events: list[NarrativeUnit],
        intent_text: str,
        policy: InteractionPolicy | None = None,
        is_current: Callable[[], bool] | None = None,
    ) -> TurnResponse:
        """Produce the response for the next turn and apply its side effects.

        ``events`` is the interaction log so far; it is read, never modified.
        ``is_current`` is checked once the provider has answered; when it
        returns False the response is returned without touching NPC state,
        dialogue history or the bus.
        Raises NotFoundError when the provider has no response for the turn.
        """
        turn_number = current_turn_number(events)
        max_turns = policy.max_turns if policy else scene.max_turns
        scene_inst_id = scene_instance_id(story_instance_id, scene.scene_id) if story_instance_id else None

        npcs = []
        if scene_inst_id and self._repo.get_scene_instance(scene_inst_id):
            npcs = self._repo.get_scene_npcs(scene_inst_id)

        request = TurnRequest(
            story_id=story_id,
            story_instance_id=story_instance_id,
            scene=scene,
            turn_number=turn_number,
            max_turns=max_turns,
            intent_text=intent_text,
            goal=policy.goal if policy else "",
            history=list(events),
            npcs=npcs,
        )
        response = await self._provider.respond(request)
        response.new_events = _with_player_intent(response.new_events, intent_text, scene.scene_id, turn_number)

        if turn_number >= max_turns:
            if not any(e.kind == "Narrative" for e in response.new_events):
                response.new_events.append(NarrativeUnit(
                    unit_id=f"{scene.scene_id}_T{turn_number:03d}_converge",
                    kind="Narrative",
                    actor=SYSTEM_ACTOR,
                    content=CONVERGENCE_TEXT,
                ))
            response.scene_status.is_scene_over = True
            logger.info("scene %s: interaction converged at turn %d/%d", scene.scene_id, turn_number, max_turns)
        response.scene_status.interaction_policy = PolicyProgress(max_turns=max_turns, current_turn=turn_number)

        if is_current is not None and not is_current():
            logger.info("scene %s: turn %d is stale; side effects skipped", scene.scene_id, turn_number)
            return response

        if story_instance_id:
            self._apply_entity_updates(story_instance_id, response)
            self._save_record(story_instance_id, scene_inst_id, turn_number, intent_text, response)

        if self._bus is not None:
            self._bus.publish(InteractionTurnEvent(
                scene_id=scene.scene_id,
                turn_number=turn_number,
                response=response.model_copy(deep=True),
            ))
        return response

    def disengage(self, scene: SceneTemplate, events: list[NarrativeUnit]) -> list[NarrativeUnit]:
        """Closing units for a player who walks away from the exchange."""
        turn_number = current_turn_number(events)
        return [NarrativeUnit(
            unit_id=f"{scene.scene_id}_T{turn_number:03d}_disengage",
            kind="Narrative",
            actor=SYSTEM_ACTOR,
            content=DISENGAGE_TEXT,
        )]

    def _apply_entity_updates(self, story_instance_id: str, response: TurnResponse) -> None:
        for update in response.entity_updates:
            npc_id = npc_instance_id(story_instance_id, update.entity_id)
            npc = self._repo.get_npc_instance(npc_id)
            if npc is None:
                logger.warning("Entity update for %s but no NPC instance %s; skipped", update.entity_id, npc_id)
                continue

            state = npc.current_state
            changes: dict[str, object] = {}
            if update.composure is not None:
                changes["composure"] = update.composure
            if update.status:
                changes["current_mood"] = update.status
            if update.relationship_delta:
                changes["relationship"] = state.relationship + update.relationship_delta
            if update.trust_delta:
                changes["trust_level"] = state.trust_level + update.trust_delta
            if update.alertness is not None:
                changes["alertness"] = update.alertness
            if changes:
                self._repo.update_npc_state(npc_id, changes)
            self._repo.record_npc_interaction(npc_id, update.revealed_secret)

    def _save_record(
        self,
        story_instance_id: str,
        scene_inst_id: str | None,
        turn_number: int,
        intent_text: str,
        response: TurnResponse,
    ) -> None:
        story = self._repo.get_story_instance(story_instance_id)
        if story is None or scene_inst_id is None:
            return
        self._repo.save_dialogue_record(DialogueRecord(
            record_id=uuid4().hex,
            player_id=story.player_id,
            story_instance_id=story_instance_id,
            scene_instance_id=scene_inst_id,
            turn_number=turn_number,
            player_input=intent_text,
            responses=response.new_events,
            entity_updates=response.entity_updates,
        ))


def _with_player_intent(
    events: list[NarrativeUnit], intent_text: str, scene_id: str, turn_number: int
) -> list[NarrativeUnit]:
    """Exactly one Player turn per response, carrying the intent text.

    Empty Player events are filled in, extra Player turns are dropped, and
    one is added at the front when the provider left it out.
    """
    filled: list[NarrativeUnit] = []
    has_player_turn = False
    for e in events:
        if e.actor == PLAYER_ACTOR and e.kind == "InteractionTurn":
            if has_player_turn:
                logger.warning("Dropping extra Player turn %s", e.unit_id)
                continue
            has_player_turn = True
        if e.actor == PLAYER_ACTOR and not e.content:
            e = e.model_copy(update={"content": intent_text})
        filled.append(e)
    if not has_player_turn:
        filled.insert(0, NarrativeUnit(
            unit_id=f"{scene_id}_T{turn_number:03d}_P",
            kind="InteractionTurn",
            actor=PLAYER_ACTOR,
            content=intent_text,
        ))
    return filled
