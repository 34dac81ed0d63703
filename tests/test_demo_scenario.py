"""Demo story scenario tests: the Missing Courier played end to end.

Variants:
  test_full_playthrough       track, enter, talk down Fat Tang, finish both scenes
  test_pass_skips_dialogue    pass at the first decision point; no NPC state changes
  test_replay_after_completion re-entering a completed story starts from scene-a
  test_two_clues_same_story   two clues for one template never share state
"""

from nearfield.engine import Engine
from nearfield.events import EventType, StoryCompletionNotificationEvent
from nearfield.scheduling import ManualScheduler

RUMOR = "CLUE_004_GANG_RUMOR"
CARGO = "CLUE_005_MISSING_CARGO"
SID = f"demo-story__{RUMOR}"


async def play_scene_a(engine: Engine, scheduler: ManualScheduler) -> None:
    orchestrator = engine.orchestrator
    for text in ("Leave her alone", "Calm down, Tang", "The courier isn't here"):
        response = await orchestrator.handle_intervention(text)
        assert response is not None
    scheduler.run_until_idle()


async def test_full_playthrough(engine: Engine, scheduler: ManualScheduler) -> None:
    orchestrator = engine.orchestrator
    notifications: list[StoryCompletionNotificationEvent] = []
    engine.bus.subscribe(EventType.STORY_COMPLETION_NOTIFICATION, notifications.append)

    # inbox
    assert orchestrator.session_state == "idle"
    engine.tracker.mark_read(RUMOR)
    orchestrator.track_clue(RUMOR)
    assert orchestrator.session_state == "ready"

    # scene-a: three narrative beats, then Fat Tang at the counter
    orchestrator.enter_story(RUMOR)
    scheduler.run_until_idle()
    session = orchestrator.playback_snapshot()
    assert [u.unit_id for u in session.visible_units] == ["A001", "A002", "A003", "A004"]
    assert session.mode == "INTERVENTION"

    await play_scene_a(engine, scheduler)
    tang = engine.repository.get_npc_instance(f"{SID}__npc-fat-tang")
    assert tang.current_state.current_mood == "sullen"
    assert tang.current_state.composure == 50

    # scene-b: Xiao Xue opens up, then the player steps back
    session = orchestrator.playback_snapshot()
    assert session.scene_id == "scene-b"
    assert session.intervention_hint == "Xiao Xue looks like she wants to say more."
    await orchestrator.handle_intervention("Where did he go?")
    orchestrator.handle_disengage()
    scheduler.run_until_idle()

    xue = engine.repository.get_npc_instance(f"{SID}__npc-xiao-xue")
    assert xue.current_state.trust_level == 25
    assert xue.interaction_summary.revealed_secrets == ["She hid the courier's jacket."]

    story = engine.repository.get_story_instance(SID)
    assert story.status == "completed"
    assert story.progress_percentage == 100
    assert story.completion_markers == ["CLUE_002_COURIER_ID", "CLUE_003_STORY_END"]
    assert [n.story_title for n in notifications] == ["The Missing Courier"]
    assert engine.tracker.get_stats("demo-player").completed == 1

    assert orchestrator.exit_story() == "ready"
    assert len(engine.repository.get_dialogue_history(f"{SID}__scene-a")) == 3
    assert len(engine.repository.get_dialogue_history(f"{SID}__scene-b")) == 1


async def test_pass_skips_dialogue(engine: Engine, scheduler: ManualScheduler) -> None:
    orchestrator = engine.orchestrator
    orchestrator.track_clue(RUMOR)
    orchestrator.enter_story(RUMOR)
    scheduler.run_until_idle()

    assert orchestrator.handle_pass() is True
    scheduler.run_until_idle()

    assert orchestrator.playback_snapshot().scene_id == "scene-b"
    tang = engine.repository.get_npc_instance(f"{SID}__npc-fat-tang")
    assert tang.current_state.composure == 100
    assert tang.interaction_summary.total_interactions == 0


async def test_replay_after_completion(engine: Engine, scheduler: ManualScheduler) -> None:
    orchestrator = engine.orchestrator
    orchestrator.track_clue(RUMOR)
    orchestrator.enter_story(RUMOR)
    scheduler.run_until_idle()
    orchestrator.handle_pass()
    scheduler.run_until_idle()
    orchestrator.handle_pass()
    scheduler.run_until_idle()
    assert engine.repository.get_story_instance(SID).status == "completed"

    orchestrator.exit_story()
    orchestrator.enter_story(RUMOR)
    assert orchestrator.playback_snapshot().scene_id == "scene-a"
    assert engine.repository.get_story_instance(SID).status == "completed"


async def test_two_clues_same_story(engine: Engine, scheduler: ManualScheduler) -> None:
    orchestrator = engine.orchestrator
    orchestrator.track_clue(RUMOR)
    orchestrator.track_clue(CARGO)

    orchestrator.enter_story(RUMOR)
    scheduler.run_until_idle()
    await play_scene_a(engine, scheduler)
    orchestrator.exit_story()

    other = engine.repository.get_story_instance(f"demo-story__{CARGO}")
    assert other.status == "not_started"
    assert other.completed_scenes == []
    assert engine.repository.get_npc_instance(f"demo-story__{CARGO}__npc-fat-tang") is None

    orchestrator.enter_story(CARGO)
    scheduler.run_until_idle()
    tang = engine.repository.get_npc_instance(f"demo-story__{CARGO}__npc-fat-tang")
    assert tang.current_state.composure == 100
    assert orchestrator.playback_snapshot().scene_id == "scene-a"
