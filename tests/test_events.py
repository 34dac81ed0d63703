"""Tests for nearfield.events.EventBus."""

from nearfield.events import (
    ClueStatusChangedEvent,
    Event,
    EventBus,
    EventType,
    SceneEndedEvent,
)


class TestEventBus:
    def test_delivers_by_type(self) -> None:
        bus = EventBus()
        seen: list[Event] = []
        bus.subscribe(EventType.SCENE_ENDED, seen.append)

        bus.publish(SceneEndedEvent(scene_id="s1", reason="terminal"))
        bus.publish(ClueStatusChangedEvent(clue_id="c", status="read"))

        assert len(seen) == 1
        assert seen[0].scene_id == "s1"

    def test_unsubscribe(self) -> None:
        bus = EventBus()
        seen: list[Event] = []
        unsubscribe = bus.subscribe(EventType.SCENE_ENDED, seen.append)
        unsubscribe()
        unsubscribe()
        bus.publish(SceneEndedEvent(scene_id="s1", reason="terminal"))
        assert seen == []

    def test_failing_handler_does_not_stop_others(self, caplog) -> None:
        bus = EventBus()
        seen: list[Event] = []

        def broken(event: Event) -> None:
            raise RuntimeError("boom")

        bus.subscribe(EventType.SCENE_ENDED, broken)
        bus.subscribe(EventType.SCENE_ENDED, seen.append)
        bus.publish(SceneEndedEvent(scene_id="s1", reason="terminal"))

        assert len(seen) == 1
        assert "Event handler failed for scene_ended" in caplog.text

    def test_event_type_is_a_class_attribute(self) -> None:
        event = SceneEndedEvent(scene_id="s1", reason="terminal")
        assert event.event_type is EventType.SCENE_ENDED
        assert "event_type" not in event.model_dump()
