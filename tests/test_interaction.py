"""Tests for nearfield.interaction: turn numbering, convergence and entity updates."""

import pytest

from nearfield.content import ContentStore
from nearfield.dialogue import ScriptedDialogueProvider, TurnRequest
from nearfield.events import Event, EventBus, InteractionTurnEvent
from nearfield.interaction import (
    CONVERGENCE_TEXT,
    DISENGAGE_TEXT,
    InteractionMachine,
    count_player_turns,
    current_turn_number,
)
from nearfield.models import InteractionPolicy, NarrativeUnit, SceneTemplate, TurnResponse
from nearfield.repository import InstanceRepository


def unit(actor: str, kind: str = "InteractionTurn", content: str = "x") -> NarrativeUnit:
    return NarrativeUnit(unit_id=f"{actor}-{content}", kind=kind, actor=actor, content=content)


@pytest.fixture
def machine(content: ContentStore, repository: InstanceRepository, bus: EventBus) -> InteractionMachine:
    return InteractionMachine(repository, ScriptedDialogueProvider(content.dialogue_scripts()), bus)


@pytest.fixture
def scene_a(content: ContentStore) -> SceneTemplate:
    return content.get_scene_template("demo-story", "scene-a")


@pytest.fixture
def story_instance_id(repository: InstanceRepository, content: ContentStore, scene_a: SceneTemplate) -> str:
    sid = repository.create_story_instance(
        "demo-player", "CLUE_004_GANG_RUMOR", content.get_story_template("demo-story")
    )
    repository.create_scene_instance(sid, scene_a)
    for npc_id in scene_a.present_npc_ids:
        repository.create_npc_instance(sid, content.get_npc_template(npc_id))
    return sid


POLICY = InteractionPolicy(max_turns=3, goal="Defuse the confrontation")


class FixedProvider:
    def __init__(self, response: TurnResponse) -> None:
        self.response = response

    async def respond(self, request: TurnRequest) -> TurnResponse:
        return self.response.model_copy(deep=True)


# ---------------------------------------------------------------------------
# Turn derivation
# ---------------------------------------------------------------------------

class TestTurnNumber:
    def test_empty_log_is_turn_one(self) -> None:
        assert current_turn_number([]) == 1

    def test_counts_only_player_interaction_turns(self) -> None:
        events = [
            unit("Player"),
            unit("npc-fat-tang"),
            unit("Player", kind="Narrative"),
            unit("System", kind="Narrative"),
            unit("Player"),
        ]
        assert count_player_turns(events) == 2
        assert current_turn_number(events) == 3


# ---------------------------------------------------------------------------
# submit_turn
# ---------------------------------------------------------------------------

class TestSubmitTurn:
    async def test_fills_player_intent(
        self, machine: InteractionMachine, scene_a: SceneTemplate, story_instance_id: str
    ) -> None:
        response = await machine.submit_turn(
            story_id="demo-story", story_instance_id=story_instance_id, scene=scene_a,
            events=[], intent_text="Leave her alone", policy=POLICY,
        )
        assert response.new_events[0].actor == "Player"
        assert response.new_events[0].content == "Leave her alone"
        assert response.scene_status.is_scene_over is False
        assert response.scene_status.interaction_policy.current_turn == 1
        assert response.scene_status.interaction_policy.max_turns == 3

    async def test_does_not_modify_event_log(
        self, machine: InteractionMachine, scene_a: SceneTemplate
    ) -> None:
        events: list[NarrativeUnit] = []
        await machine.submit_turn(
            story_id="demo-story", story_instance_id=None, scene=scene_a,
            events=events, intent_text="hi", policy=POLICY,
        )
        assert events == []

    async def test_three_turns_converge_on_the_third(
        self, machine: InteractionMachine, scene_a: SceneTemplate, story_instance_id: str
    ) -> None:
        events: list[NarrativeUnit] = []
        outcomes = []
        for text in ("a", "b", "c"):
            response = await machine.submit_turn(
                story_id="demo-story", story_instance_id=story_instance_id, scene=scene_a,
                events=events, intent_text=text, policy=POLICY,
            )
            events.extend(response.new_events)
            outcomes.append(response.scene_status.is_scene_over)

        assert outcomes == [False, False, True]
        assert count_player_turns(events) == 3
        # the scripted third turn already resolves with its own narration
        assert not any(e.content == CONVERGENCE_TEXT for e in events)

    async def test_forced_convergence_adds_narration(
        self, content: ContentStore, repository: InstanceRepository, scene_a: SceneTemplate
    ) -> None:
        scripts = content.dialogue_scripts()
        machine = InteractionMachine(repository, ScriptedDialogueProvider(scripts))

        response = await machine.submit_turn(
            story_id="demo-story", story_instance_id=None, scene=scene_a,
            events=[], intent_text="a", policy=InteractionPolicy(max_turns=1),
        )
        assert response.scene_status.is_scene_over is True
        assert response.new_events[-1].kind == "Narrative"
        assert response.new_events[-1].content == CONVERGENCE_TEXT

    async def test_scene_max_turns_used_without_policy(
        self, machine: InteractionMachine, scene_a: SceneTemplate
    ) -> None:
        response = await machine.submit_turn(
            story_id="demo-story", story_instance_id=None, scene=scene_a,
            events=[], intent_text="a",
        )
        assert response.scene_status.interaction_policy.max_turns == 5

    async def test_applies_entity_updates(
        self,
        machine: InteractionMachine,
        repository: InstanceRepository,
        scene_a: SceneTemplate,
        story_instance_id: str,
    ) -> None:
        events: list[NarrativeUnit] = []
        for text in ("a", "b", "c"):
            response = await machine.submit_turn(
                story_id="demo-story", story_instance_id=story_instance_id, scene=scene_a,
                events=events, intent_text=text, policy=POLICY,
            )
            events.extend(response.new_events)

        tang = repository.get_npc_instance(f"{story_instance_id}__npc-fat-tang")
        assert tang.current_state.composure == 50
        assert tang.current_state.current_mood == "sullen"
        assert tang.current_state.relationship == -15
        assert tang.interaction_summary.total_interactions == 3

        xue = repository.get_npc_instance(f"{story_instance_id}__npc-xiao-xue")
        assert xue.current_state.relationship == 25
        assert xue.current_state.trust_level == 20
        assert xue.current_state.current_mood == "relieved"

    async def test_saves_dialogue_record(
        self,
        machine: InteractionMachine,
        repository: InstanceRepository,
        scene_a: SceneTemplate,
        story_instance_id: str,
    ) -> None:
        await machine.submit_turn(
            story_id="demo-story", story_instance_id=story_instance_id, scene=scene_a,
            events=[], intent_text="Leave her alone", policy=POLICY,
        )
        history = repository.get_dialogue_history(f"{story_instance_id}__scene-a")
        assert len(history) == 1
        assert history[0].player_input == "Leave her alone"
        assert history[0].turn_number == 1
        assert history[0].player_id == "demo-player"

    async def test_update_for_unknown_npc_is_skipped(
        self, content: ContentStore, repository: InstanceRepository, scene_a: SceneTemplate
    ) -> None:
        sid = repository.create_story_instance(
            "demo-player", "CLUE_005", content.get_story_template("demo-story")
        )
        machine = InteractionMachine(repository, ScriptedDialogueProvider(content.dialogue_scripts()))
        response = await machine.submit_turn(
            story_id="demo-story", story_instance_id=sid, scene=scene_a,
            events=[], intent_text="a", policy=POLICY,
        )
        assert response.entity_updates[0].entity_id == "npc-fat-tang"
        assert repository.get_npc_instance(f"{sid}__npc-fat-tang") is None

    async def test_one_player_turn_per_response(
        self, repository: InstanceRepository, scene_a: SceneTemplate
    ) -> None:
        machine = InteractionMachine(repository, FixedProvider(TurnResponse(new_events=[
            unit("Player", content=""),
            unit("Player", content="ventriloquism"),
            unit("npc-fat-tang", content="Hm."),
        ])))
        events: list[NarrativeUnit] = []
        response = await machine.submit_turn(
            story_id="demo-story", story_instance_id=None, scene=scene_a,
            events=events, intent_text="a", policy=POLICY,
        )
        events.extend(response.new_events)

        assert [(e.actor, e.content) for e in response.new_events] == [("Player", "a"), ("npc-fat-tang", "Hm.")]
        assert current_turn_number(events) == 2

    async def test_stale_turn_has_no_side_effects(
        self,
        machine: InteractionMachine,
        repository: InstanceRepository,
        scene_a: SceneTemplate,
        story_instance_id: str,
        published: list[Event],
    ) -> None:
        response = await machine.submit_turn(
            story_id="demo-story", story_instance_id=story_instance_id, scene=scene_a,
            events=[], intent_text="Leave her alone", policy=POLICY, is_current=lambda: False,
        )
        assert response.entity_updates
        assert repository.get_dialogue_history(f"{story_instance_id}__scene-a") == []
        tang = repository.get_npc_instance(f"{story_instance_id}__npc-fat-tang")
        assert tang.current_state.composure == 100
        assert tang.interaction_summary.total_interactions == 0
        assert not any(isinstance(e, InteractionTurnEvent) for e in published)

    async def test_publishes_turn_event(
        self, machine: InteractionMachine, scene_a: SceneTemplate, published: list[Event]
    ) -> None:
        await machine.submit_turn(
            story_id="demo-story", story_instance_id=None, scene=scene_a,
            events=[], intent_text="a", policy=POLICY,
        )
        turns = [e for e in published if isinstance(e, InteractionTurnEvent)]
        assert [(t.scene_id, t.turn_number) for t in turns] == [("scene-a", 1)]


class TestDisengage:
    def test_returns_closing_narration(self, machine: InteractionMachine, scene_a: SceneTemplate) -> None:
        closing = machine.disengage(scene_a, [unit("Player")])
        assert len(closing) == 1
        assert closing[0].kind == "Narrative"
        assert closing[0].content == DISENGAGE_TEXT
        assert closing[0].unit_id == "scene-a_T002_disengage"
