"""Clue and progress tracker.

The only writer of Clue Record status. Story Instance status is the
source of truth; the clue status mirrors it and both are written
together by ``_set_status``:

    story not_started / in_progress  ->  clue tracking
    story completed                  ->  clue completed

Completion markers (clue ids handed out when a scene or story finishes)
are kept on the story instance for history. They never create or touch a
Clue Record.
"""

from __future__ import annotations

import logging
from typing import Any

from nearfield.content import ContentStore
from nearfield.errors import ClueNotTrackedError, NotFoundError
from nearfield.events import ClueStatusChangedEvent, EventBus
from nearfield.models import ClueRecord, ClueStats, StoryInstance, StoryStatus, utcnow
from nearfield.repository import InstanceRepository

logger = logging.getLogger(__name__)


class ClueTracker:
    def __init__(
        self,
        content: ContentStore,
        repository: InstanceRepository,
        bus: EventBus | None = None,
    ) -> None:
        self._content = content
        self._repo = repository
        self._bus = bus

    # ------------------------------------------------------------------
    # Inbox
    # ------------------------------------------------------------------

    def receive_clue(self, player_id: str, clue_id: str) -> ClueRecord:
        """Put a registry clue into the player's inbox as unread. Idempotent."""
        existing = self._repo.get_clue_record(clue_id)
        if existing is not None:
            return existing
        clue = self._content.get_clue_template(clue_id)
        record = ClueRecord(
            clue_id=clue.clue_id,
            player_id=player_id,
            story_template_id=clue.story_id,
            title=clue.title,
            description=clue.summary,
            source=clue.source,
        )
        self._repo.upsert_clue_record(record)
        logger.info("Player %s received clue %s", player_id, clue_id)
        self._notify(clue_id, "unread")
        return record

    def initialize_inbox(self, player_id: str) -> list[ClueRecord]:
        return [self.receive_clue(player_id, clue_id) for clue_id in self._content.initial_clue_ids()]

    def mark_read(self, clue_id: str) -> ClueRecord:
        record = self._require_record(clue_id)
        if record.status != "unread":
            return record
        record = self._repo.update_clue_record(clue_id, {"status": "read", "read_at": utcnow()})
        self._notify(clue_id, "read")
        return record

    def get_inbox(self, player_id: str) -> list[ClueRecord]:
        """The player's clue records, newest first."""
        records = self._repo.list_clue_records(player_id)
        return sorted(records, key=lambda r: r.received_at, reverse=True)

    def get_stats(self, player_id: str) -> ClueStats:
        stats = ClueStats()
        for record in self._repo.list_clue_records(player_id):
            setattr(stats, record.status, getattr(stats, record.status) + 1)
            stats.total += 1
        return stats

    # ------------------------------------------------------------------
    # Tracking
    # ------------------------------------------------------------------

    def track_clue(self, player_id: str, clue_id: str) -> StoryInstance:
        """Open (or return) the story instance for a clue and mark the clue tracking."""
        record = self._repo.get_clue_record(clue_id)
        if record is None:
            record = self.receive_clue(player_id, clue_id)

        if record.story_instance_id:
            story = self._repo.get_story_instance(record.story_instance_id)
            if story is not None:
                return story
            logger.warning(
                "Clue %s links missing story instance %s; creating it again",
                clue_id, record.story_instance_id,
            )

        template = self._content.get_story_template(record.story_template_id)
        now = utcnow()
        with self._repo.atomic():
            instance_id = self._repo.create_story_instance(
                player_id, clue_id, template, self._content.scene_titles(template.story_id)
            )
            self._repo.update_clue_record(clue_id, {
                "story_instance_id": instance_id,
                "status": "tracking",
                "tracked_at": now,
                "read_at": record.read_at or now,
            })
        logger.info("Player %s is tracking clue %s -> %s", player_id, clue_id, instance_id)
        self._notify(clue_id, "tracking")
        return self._repo.get_story_instance(instance_id)

    def story_for_clue(self, clue_id: str) -> StoryInstance | None:
        record = self._repo.get_clue_record(clue_id)
        if record is None or not record.story_instance_id:
            return None
        return self._repo.get_story_instance(record.story_instance_id)

    def get_tracked_stories(self, player_id: str) -> list[StoryInstance]:
        stories = []
        for record in self._repo.list_clue_records(player_id):
            if record.story_instance_id:
                story = self._repo.get_story_instance(record.story_instance_id)
                if story is not None:
                    stories.append(story)
        return stories

    # ------------------------------------------------------------------
    # Progress
    # ------------------------------------------------------------------

    def mark_story_started(self, clue_id: str) -> StoryInstance:
        record, story = self._linked(clue_id)
        if story.status != "not_started":
            return story
        return self._set_status(record, "in_progress", {"started_at": utcnow()})

    def mark_scene_completed(self, clue_id: str, scene_id: str) -> StoryInstance:
        _, story = self._linked(clue_id)
        if scene_id not in story.scene_ids:
            logger.warning("Scene %s is not in the sequence of %s; ignored", scene_id, story.instance_id)
            return story

        completed = list(story.completed_scenes)
        if scene_id not in completed:
            completed.append(scene_id)
        sequence = [
            {**item.model_dump(), "status": "unlocked"} if item.scene_id == scene_id else item.model_dump()
            for item in story.scene_sequence
        ]
        return self._repo.update_story_instance(story.instance_id, {
            "completed_scenes": completed,
            "scene_sequence": sequence,
            "progress_percentage": round(len(completed) / len(sequence) * 100),
        })

    def mark_story_completed(self, clue_id: str, completion_marker: str | None = None) -> StoryInstance:
        """Complete the story and its clue. A second call changes nothing."""
        record, story = self._linked(clue_id)
        if story.status == "completed" and record.status == "completed":
            logger.info("Story %s already completed", story.instance_id)
            return story

        markers = list(story.completion_markers)
        if completion_marker and completion_marker not in markers:
            markers.append(completion_marker)
        return self._set_status(record, "completed", {
            "completed_scenes": story.scene_ids,
            "scene_sequence": [{**item.model_dump(), "status": "unlocked"} for item in story.scene_sequence],
            "progress_percentage": 100,
            "current_scene_id": None,
            "completed_at": story.completed_at or utcnow(),
            "completion_markers": markers,
        })

    def record_completion_marker(self, clue_id: str, completion_marker: str) -> StoryInstance:
        _, story = self._linked(clue_id)
        if completion_marker in story.completion_markers:
            return story
        return self._repo.update_story_instance(story.instance_id, {
            "completion_markers": [*story.completion_markers, completion_marker],
        })

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _set_status(
        self, record: ClueRecord, story_status: StoryStatus, story_updates: dict[str, Any]
    ) -> StoryInstance:
        clue_status = "completed" if story_status == "completed" else "tracking"
        clue_updates: dict[str, Any] = {"status": clue_status}
        if clue_status == "completed":
            clue_updates["completed_at"] = record.completed_at or utcnow()

        with self._repo.atomic():
            story = self._repo.update_story_instance(
                record.story_instance_id, {**story_updates, "status": story_status}
            )
            self._repo.update_clue_record(record.clue_id, clue_updates)

        if record.status != clue_status:
            self._notify(record.clue_id, clue_status)
        return story

    def _require_record(self, clue_id: str) -> ClueRecord:
        record = self._repo.get_clue_record(clue_id)
        if record is None:
            raise NotFoundError(f"Clue record not found: {clue_id}")
        return record

    def _linked(self, clue_id: str) -> tuple[ClueRecord, StoryInstance]:
        record = self._require_record(clue_id)
        if not record.story_instance_id:
            raise ClueNotTrackedError(clue_id)
        story = self._repo.get_story_instance(record.story_instance_id)
        if story is None:
            raise NotFoundError(f"Story instance not found: {record.story_instance_id}")
        return record, story

    def _notify(self, clue_id: str, status: str) -> None:
        if self._bus is not None:
            self._bus.publish(ClueStatusChangedEvent(clue_id=clue_id, status=status))
