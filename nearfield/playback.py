"""Playback state machine: drives one scene's narrative sequence.

Modes:

    PLAYING       auto-advancing; each Narrative unit schedules the next
    INTERVENTION  paused at a decision point; waits for pass or intervene
    INTERACTION   mid exchange; waits for player text (or disengage)
    SCENE_ENDED   terminal; the scene-end handler decides what happens next

``display_index`` only moves forward, one step per ``play_next`` call,
and is frozen while an interaction runs. When the interaction ends the
machine returns to PLAYING and resumes at the frozen index + 1.

Player actions issued in the wrong mode are logged and ignored.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from nearfield.content import ContentStore
from nearfield.errors import SceneDataError
from nearfield.events import EventBus, PlaybackUpdatedEvent, SceneEndedEvent
from nearfield.interaction import InteractionMachine
from nearfield.models import PlaybackSession, SceneTemplate, TurnResponse
from nearfield.scheduling import ScheduledHandle, Scheduler

logger = logging.getLogger(__name__)

REASON_TERMINAL = "terminal"
REASON_EXHAUSTED = "sequence_exhausted"

# (story_id, scene template, reason)
SceneEndHandler = Callable[[str, SceneTemplate, str], None]


class PlaybackMachine:
    def __init__(
        self,
        content: ContentStore,
        interaction: InteractionMachine,
        scheduler: Scheduler,
        bus: EventBus | None = None,
        *,
        narrative_delay: float = 1.0,
        resume_delay: float = 1.5,
        on_scene_end: SceneEndHandler | None = None,
    ) -> None:
        self._content = content
        self._interaction = interaction
        self._scheduler = scheduler
        self._bus = bus
        self._narrative_delay = narrative_delay
        self._resume_delay = resume_delay
        self.on_scene_end = on_scene_end
        self._session = PlaybackSession()
        self._scene: SceneTemplate | None = None
        self._pending: ScheduledHandle | None = None
        self._turn_in_flight = False

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    @property
    def active(self) -> bool:
        return self._session.active

    @property
    def mode(self) -> str:
        return self._session.mode

    @property
    def display_index(self) -> int:
        return self._session.display_index

    @property
    def intervention_hint(self) -> str | None:
        return self._session.intervention_hint

    @property
    def scene(self) -> SceneTemplate | None:
        return self._scene

    def snapshot(self) -> PlaybackSession:
        return self._session.model_copy(deep=True)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def enter_scene(self, story_id: str, scene_id: str, story_instance_id: str | None = None) -> None:
        """Load a scene and start playing it from the first unit.

        Raises NotFoundError for an unknown scene and SceneDataError for a
        scene with no units. The previous session is discarded either way.
        """
        scene = self._content.get_scene_template(story_id, scene_id)
        if not scene.sequence:
            raise SceneDataError(f"Scene {scene_id} has an empty narrative sequence")

        self._cancel_pending()
        self._scene = scene
        self._session = PlaybackSession(
            active=True,
            story_id=story_id,
            story_instance_id=story_instance_id,
            scene_id=scene_id,
            narrative_sequence=scene.sequence,
        )
        logger.info("Entered scene %s/%s (%d units)", story_id, scene_id, len(scene.sequence))
        self._publish()
        self.play_next()

    def play_next(self) -> None:
        session = self._session
        if not session.active or self._scene is None:
            logger.warning("play_next with no active scene; ignored")
            return
        if session.mode != "PLAYING":
            logger.warning("play_next while %s; ignored", session.mode)
            return

        self._cancel_pending()
        next_index = session.display_index + 1
        if next_index >= len(session.narrative_sequence):
            logger.error(
                "Scene %s reached the end of its sequence without a terminal unit; ending scene",
                session.scene_id,
            )
            self._end_scene(REASON_EXHAUSTED)
            return

        session.display_index = next_index
        unit = session.narrative_sequence[next_index]
        logger.debug("scene %s unit %d: %s %s", session.scene_id, next_index, unit.kind, unit.unit_id)

        if unit.kind == "Narrative":
            if unit.is_terminal:
                self._end_scene(REASON_TERMINAL)
                return
            self._publish()
            self._schedule_next(self._narrative_delay)

        elif unit.kind == "InterventionPoint":
            session.mode = "INTERVENTION"
            session.intervention_hint = unit.hint
            session.active_policy = unit.policy
            session.interaction_events = []
            self._publish()

        elif unit.kind == "InteractionTurn":
            session.mode = "INTERACTION"
            session.active_policy = unit.policy
            session.interaction_events = []
            self._publish()

    def handle_pass(self) -> bool:
        if self._session.mode != "INTERVENTION" or not self._session.active:
            logger.warning("handle_pass while %s; ignored", self._session.mode)
            return False
        if self._turn_in_flight:
            logger.warning("handle_pass while a turn is in flight; ignored")
            return False
        self._session.intervention_hint = None
        self._session.active_policy = None
        self._session.mode = "PLAYING"
        self.play_next()
        return True

    async def handle_intervention(self, intent_text: str) -> TurnResponse | None:
        """Submit one player turn. Returns None when the action is not valid now.

        NotFoundError from the dialogue provider propagates to the caller.
        """
        session = self._session
        if not session.active or session.mode not in ("INTERVENTION", "INTERACTION"):
            logger.warning("handle_intervention while %s; ignored", session.mode)
            return None
        if self._turn_in_flight:
            logger.warning("handle_intervention while a turn is in flight; ignored")
            return None

        self._turn_in_flight = True
        try:
            response = await self._interaction.submit_turn(
                story_id=session.story_id or "",
                story_instance_id=session.story_instance_id,
                scene=self._scene,
                events=session.interaction_events,
                intent_text=intent_text,
                policy=session.active_policy,
                is_current=lambda: self._accepts_turn(session),
            )
        finally:
            self._turn_in_flight = False

        if not self._accepts_turn(session):
            logger.info("Session changed while a turn was generated; response discarded")
            return response

        session.interaction_events.extend(response.new_events)
        session.intervention_hint = None
        session.mode = "INTERACTION"
        if response.scene_status.is_scene_over:
            self._finish_interaction()
        else:
            self._publish()
        return response

    def handle_disengage(self) -> bool:
        session = self._session
        if not session.active or session.mode != "INTERACTION" or self._turn_in_flight:
            logger.warning("handle_disengage while %s; ignored", session.mode)
            return False
        session.interaction_events.extend(
            self._interaction.disengage(self._scene, session.interaction_events)
        )
        self._finish_interaction()
        return True

    def exit(self) -> None:
        """Tear down the session and cancel any pending advance."""
        self._cancel_pending()
        was_active = self._session.active
        self._session = PlaybackSession()
        self._scene = None
        if was_active:
            logger.info("Playback session cleared")
        self._publish()

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _accepts_turn(self, session: PlaybackSession) -> bool:
        return (
            self._session is session
            and session.active
            and session.mode in ("INTERVENTION", "INTERACTION")
        )

    def _finish_interaction(self) -> None:
        session = self._session
        session.mode = "PLAYING"
        session.active_policy = None
        self._publish()
        self._schedule_next(self._resume_delay)

    def _end_scene(self, reason: str) -> None:
        session = self._session
        scene = self._scene
        session.mode = "SCENE_ENDED"
        session.intervention_hint = None
        self._publish()
        if self._bus is not None:
            self._bus.publish(SceneEndedEvent(scene_id=session.scene_id or "", reason=reason))
        if self.on_scene_end is not None and scene is not None:
            self.on_scene_end(session.story_id or "", scene, reason)

    def _schedule_next(self, delay: float) -> None:
        session = self._session

        def _advance() -> None:
            self._pending = None
            if self._session is session:
                self.play_next()

        self._cancel_pending()
        self._pending = self._scheduler.schedule(delay, _advance)

    def _cancel_pending(self) -> None:
        if self._pending is not None:
            self._pending.cancel()
            self._pending = None

    def _publish(self) -> None:
        if self._bus is not None:
            self._bus.publish(PlaybackUpdatedEvent(session=self.snapshot()))
