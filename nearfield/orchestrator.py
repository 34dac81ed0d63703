"""Scene/story orchestrator and the player action surface.

Session states (derived, never stored):

    idle     no story active and nothing tracked
    ready    at least one tracked story, none active
    playing  one story instance active

The orchestrator owns the single playback session. When playback reaches
the end of a scene it reads the scene's transition descriptor:

    is_story_terminal  complete story + clue, emit story_ended and
                       story_completion_notification, exit playback after
                       a grace delay
    next_scene_id      complete the scene, move current_scene_id, emit
                       scene_transition, enter the next scene after a
                       grace delay
    neither            authoring gap; exit playback

Everything a caller may change goes through track_clue, enter_story,
exit_story, handle_pass, handle_intervention and handle_disengage.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from nearfield.content import ContentStore
from nearfield.errors import ClueNotTrackedError, NearfieldError
from nearfield.events import (
    EventBus,
    SceneTransitionEvent,
    StoryCompletionNotificationEvent,
    StoryEndedEvent,
    StoryEnteredEvent,
    StoryExitedEvent,
)
from nearfield.models import (
    PlaybackSession,
    SceneTemplate,
    SessionState,
    StoryInstance,
    TriggeredEvent,
    TurnResponse,
    utcnow,
)
from nearfield.playback import REASON_EXHAUSTED, PlaybackMachine
from nearfield.repository import InstanceRepository, scene_instance_id
from nearfield.scheduling import ScheduledHandle, Scheduler
from nearfield.tracker import ClueTracker

logger = logging.getLogger(__name__)


class Orchestrator:
    def __init__(
        self,
        *,
        player_id: str,
        content: ContentStore,
        repository: InstanceRepository,
        tracker: ClueTracker,
        playback: PlaybackMachine,
        scheduler: Scheduler,
        bus: EventBus,
        transition_delay: float = 1.5,
        exit_delay: float = 2.0,
    ) -> None:
        self.player_id = player_id
        self._content = content
        self._repo = repository
        self._tracker = tracker
        self._playback = playback
        self._scheduler = scheduler
        self._bus = bus
        self._transition_delay = transition_delay
        self._exit_delay = exit_delay
        self._active_clue_id: str | None = None
        self._pending: ScheduledHandle | None = None
        self._generation = 0
        playback.on_scene_end = self._handle_scene_end

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    @property
    def session_state(self) -> SessionState:
        if self._active_clue_id is not None:
            return "playing"
        if self._tracker.get_tracked_stories(self.player_id):
            return "ready"
        return "idle"

    @property
    def active_clue_id(self) -> str | None:
        return self._active_clue_id

    @property
    def active_story(self) -> StoryInstance | None:
        if self._active_clue_id is None:
            return None
        return self._tracker.story_for_clue(self._active_clue_id)

    def playback_snapshot(self) -> PlaybackSession:
        return self._playback.snapshot()

    # ------------------------------------------------------------------
    # Player actions
    # ------------------------------------------------------------------

    def track_clue(self, clue_id: str) -> StoryInstance:
        return self._tracker.track_clue(self.player_id, clue_id)

    def enter_story(self, clue_id: str) -> StoryInstance:
        """Activate the story linked to ``clue_id`` and start playing it.

        Raises ClueNotTrackedError if the clue has no story instance yet.
        """
        story = self._tracker.story_for_clue(clue_id)
        if story is None:
            raise ClueNotTrackedError(clue_id)

        self._teardown()
        now = utcnow()
        with self._repo.atomic():
            for other in self._repo.list_story_instances(self.player_id):
                if other.is_active and other.instance_id != story.instance_id:
                    self._repo.update_story_instance(other.instance_id, {"is_active": False})
            self._repo.update_story_instance(story.instance_id, {"is_active": True, "last_played_at": now})
        self._active_clue_id = clue_id
        story = self._tracker.mark_story_started(clue_id)
        logger.info("Entered story %s via clue %s", story.instance_id, clue_id)
        self._bus.publish(StoryEnteredEvent(clue_id=clue_id, story_instance_id=story.instance_id))

        if story.status != "completed" and story.current_scene_id:
            scene_id = story.current_scene_id
        else:
            scene_id = story.story_data.initial_scene_id or story.scene_ids[0]
        try:
            self._enter_scene(story, scene_id)
        except NearfieldError:
            self._deactivate()
            raise
        return self._repo.get_story_instance(story.instance_id)

    def exit_story(self) -> SessionState:
        if self._active_clue_id is None:
            logger.warning("exit_story with no active story; ignored")
            return self.session_state
        story = self.active_story
        self._teardown()
        self._deactivate()
        state = self.session_state
        logger.info("Exited story %s; session %s", story.instance_id if story else None, state)
        self._bus.publish(StoryExitedEvent(
            story_instance_id=story.instance_id if story else None,
            session_state=state,
        ))
        return state

    def handle_pass(self) -> bool:
        return self._playback.handle_pass()

    async def handle_intervention(self, intent_text: str) -> TurnResponse | None:
        return await self._playback.handle_intervention(intent_text)

    def handle_disengage(self) -> bool:
        return self._playback.handle_disengage()

    # ------------------------------------------------------------------
    # Scene entry
    # ------------------------------------------------------------------

    def _enter_scene(self, story: StoryInstance, scene_id: str) -> None:
        """Create the scene and NPC instances if needed, then start playback."""
        scene = self._content.get_scene_template(story.story_template_id, scene_id)
        now = utcnow()
        with self._repo.atomic():
            scene_inst_id = self._repo.create_scene_instance(story.instance_id, scene)
            for npc_id in scene.present_npc_ids:
                self._repo.create_npc_instance(story.instance_id, self._content.get_npc_template(npc_id))

            scene_inst = self._repo.get_scene_instance(scene_inst_id)
            self._repo.update_scene_instance(scene_inst_id, {
                "status": "in_progress" if scene_inst.status == "not_entered" else scene_inst.status,
                "entered_at": scene_inst.entered_at or now,
                "triggered_events": [
                    *scene_inst.triggered_events,
                    TriggeredEvent(event_id="scene_entered", timestamp=now),
                ],
            })

            current = self._repo.get_story_instance(story.instance_id)
            self._repo.update_story_instance(story.instance_id, {
                "current_scene_id": scene_id,
                "last_played_at": now,
                "scene_sequence": [
                    {**item.model_dump(), "status": "unlocked"} if item.scene_id == scene_id else item.model_dump()
                    for item in current.scene_sequence
                ],
            })

        self._playback.enter_scene(story.story_template_id, scene_id, story.instance_id)

    def _enter_next_scene(self, clue_id: str, scene_id: str) -> None:
        story = self._tracker.story_for_clue(clue_id)
        if story is None:
            logger.error("Story for clue %s disappeared before entering %s", clue_id, scene_id)
            self._playback.exit()
            return
        try:
            self._enter_scene(story, scene_id)
        except NearfieldError:
            logger.exception("Cannot enter scene %s; leaving playback", scene_id)
            self._playback.exit()

    # ------------------------------------------------------------------
    # Scene end
    # ------------------------------------------------------------------

    def _handle_scene_end(self, story_id: str, scene: SceneTemplate, reason: str) -> None:
        clue_id = self._active_clue_id
        if clue_id is None:
            logger.warning("Scene %s ended with no active story; leaving playback", scene.scene_id)
            self._playback.exit()
            return
        if reason == REASON_EXHAUSTED:
            self._playback.exit()
            return

        story = self._tracker.story_for_clue(clue_id)
        self._complete_scene_instance(story.instance_id, scene.scene_id)
        transition = scene.transition

        if transition.is_story_terminal:
            story = self._tracker.mark_story_completed(clue_id, transition.completion_clue_id)
            logger.info("Story %s completed", story.instance_id)
            self._bus.publish(StoryEndedEvent(
                story_id=story_id,
                story_instance_id=story.instance_id,
                completion_clue_id=transition.completion_clue_id,
            ))
            self._bus.publish(StoryCompletionNotificationEvent(
                story_title=story.story_data.title,
                completion_clue_id=transition.completion_clue_id,
            ))
            self._schedule(self._exit_delay, self._playback.exit)

        elif transition.next_scene_id:
            next_scene_id = transition.next_scene_id
            self._tracker.mark_scene_completed(clue_id, scene.scene_id)
            if transition.completion_clue_id:
                self._tracker.record_completion_marker(clue_id, transition.completion_clue_id)
            self._repo.update_story_instance(story.instance_id, {"current_scene_id": next_scene_id})
            logger.info("Scene transition %s -> %s in %s", scene.scene_id, next_scene_id, story.instance_id)
            self._bus.publish(SceneTransitionEvent(
                story_instance_id=story.instance_id,
                from_scene_id=scene.scene_id,
                to_scene_id=next_scene_id,
                completion_clue_id=transition.completion_clue_id,
            ))
            self._schedule(self._transition_delay, lambda: self._enter_next_scene(clue_id, next_scene_id))

        else:
            logger.error(
                "Scene %s has neither next_scene_id nor is_story_terminal; leaving playback",
                scene.scene_id,
            )
            self._playback.exit()

    def _complete_scene_instance(self, story_instance_id: str, scene_id: str) -> None:
        scene_inst_id = scene_instance_id(story_instance_id, scene_id)
        scene_inst = self._repo.get_scene_instance(scene_inst_id)
        if scene_inst is None or scene_inst.status == "completed":
            return
        self._repo.update_scene_instance(scene_inst_id, {"status": "completed", "completed_at": utcnow()})

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _schedule(self, delay: float, callback: Callable[[], None]) -> None:
        generation = self._generation

        def _run() -> None:
            self._pending = None
            if self._generation == generation:
                callback()

        if self._pending is not None:
            self._pending.cancel()
        self._pending = self._scheduler.schedule(delay, _run)

    def _teardown(self) -> None:
        """Cancel pending transitions and clear the playback session."""
        self._generation += 1
        if self._pending is not None:
            self._pending.cancel()
            self._pending = None
        self._playback.exit()

    def _deactivate(self) -> None:
        clue_id, self._active_clue_id = self._active_clue_id, None
        if clue_id is None:
            return
        story = self._tracker.story_for_clue(clue_id)
        if story is not None and story.is_active:
            self._repo.update_story_instance(story.instance_id, {"is_active": False, "last_played_at": utcnow()})
