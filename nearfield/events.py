"""Typed event stream.

Each event is a pydantic payload whose class carries its ``EventType``.
Publishers call ``bus.publish(SceneTransitionEvent(...))``; subscribers
register per type:

    unsubscribe = bus.subscribe(EventType.SCENE_TRANSITION, handler)

Handlers run synchronously in subscription order. A failing handler is
logged with its traceback and does not stop the remaining handlers.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from enum import Enum
from typing import ClassVar

from pydantic import BaseModel

from nearfield.models import ClueStatus, PlaybackSession, SessionState, TurnResponse

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    PLAYBACK_UPDATED = "playback_updated"
    SCENE_ENDED = "scene_ended"
    SCENE_TRANSITION = "scene_transition"
    STORY_ENDED = "story_ended"
    STORY_COMPLETION_NOTIFICATION = "story_completion_notification"
    STORY_ENTERED = "story_entered"
    STORY_EXITED = "story_exited"
    INTERACTION_TURN = "interaction_turn"
    CLUE_STATUS_CHANGED = "clue_status_changed"


class Event(BaseModel):
    event_type: ClassVar[EventType]


class PlaybackUpdatedEvent(Event):
    event_type: ClassVar[EventType] = EventType.PLAYBACK_UPDATED
    session: PlaybackSession


class SceneEndedEvent(Event):
    event_type: ClassVar[EventType] = EventType.SCENE_ENDED
    scene_id: str
    reason: str  # "terminal" | "sequence_exhausted"


class SceneTransitionEvent(Event):
    event_type: ClassVar[EventType] = EventType.SCENE_TRANSITION
    story_instance_id: str | None = None
    from_scene_id: str
    to_scene_id: str
    completion_clue_id: str | None = None


class StoryEndedEvent(Event):
    event_type: ClassVar[EventType] = EventType.STORY_ENDED
    story_id: str
    story_instance_id: str | None = None
    completion_clue_id: str | None = None


class StoryCompletionNotificationEvent(Event):
    event_type: ClassVar[EventType] = EventType.STORY_COMPLETION_NOTIFICATION
    story_title: str
    completion_clue_id: str | None = None


class StoryEnteredEvent(Event):
    event_type: ClassVar[EventType] = EventType.STORY_ENTERED
    clue_id: str
    story_instance_id: str


class StoryExitedEvent(Event):
    event_type: ClassVar[EventType] = EventType.STORY_EXITED
    story_instance_id: str | None = None
    session_state: SessionState


class InteractionTurnEvent(Event):
    event_type: ClassVar[EventType] = EventType.INTERACTION_TURN
    scene_id: str
    turn_number: int
    response: TurnResponse


class ClueStatusChangedEvent(Event):
    event_type: ClassVar[EventType] = EventType.CLUE_STATUS_CHANGED
    clue_id: str
    status: ClueStatus


Handler = Callable[[Event], None]


class EventBus:
    def __init__(self) -> None:
        self._handlers: dict[EventType, list[Handler]] = {}

    def subscribe(self, event_type: EventType, handler: Handler) -> Callable[[], None]:
        """Register ``handler`` for ``event_type``. Returns a function that unsubscribes it."""
        self._handlers.setdefault(event_type, []).append(handler)

        def _unsubscribe() -> None:
            handlers = self._handlers.get(event_type, [])
            if handler in handlers:
                handlers.remove(handler)

        return _unsubscribe

    def publish(self, event: Event) -> None:
        handlers = list(self._handlers.get(event.event_type, []))
        logger.debug("publish %s to %d handler(s)", event.event_type.value, len(handlers))
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                logger.exception("Event handler failed for %s", event.event_type.value)
