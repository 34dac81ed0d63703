"""Instance repository: the authoritative store for mutable runtime state.

Every instance handed in is deep-copied on the way in, and every instance
handed out is deep-copied on the way out. Two story instances built from
the same template therefore never share a list, dict or nested model,
and a caller mutating a returned object never touches stored state.

Instance ids are deterministic:

    story   {story_template_id}__{clue_id}
    scene   {story_instance_id}__{scene_template_id}
    npc     {story_instance_id}__{npc_template_id}

After every mutation the full state is written to the snapshot store, if
one is configured. Snapshot failures are logged and the in-memory state
stays authoritative.
"""

from __future__ import annotations

import copy
import logging
import os
import threading
from pathlib import Path
from typing import Any, Protocol, TypeVar

from pydantic import BaseModel, Field, ValidationError

from nearfield.errors import NotFoundError, PersistenceError
from nearfield.models import (
    ClueRecord,
    DialogueRecord,
    NpcData,
    NpcInstance,
    NpcPersonality,
    NpcState,
    NpcTemplate,
    SceneData,
    SceneInstance,
    SceneSequenceItem,
    SceneTemplate,
    StoryData,
    StoryInstance,
    StoryTemplate,
    utcnow,
)

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


def story_instance_id(story_template_id: str, clue_id: str) -> str:
    return f"{story_template_id}__{clue_id}"


def scene_instance_id(story_instance_id: str, scene_template_id: str) -> str:
    return f"{story_instance_id}__{scene_template_id}"


def npc_instance_id(story_instance_id: str, npc_template_id: str) -> str:
    return f"{story_instance_id}__{npc_template_id}"


# ---------------------------------------------------------------------------
# Snapshot persistence
# ---------------------------------------------------------------------------

class RepositorySnapshot(BaseModel):
    version: int = 1
    story_instances: dict[str, StoryInstance] = Field(default_factory=dict)
    scene_instances: dict[str, SceneInstance] = Field(default_factory=dict)
    npc_instances: dict[str, NpcInstance] = Field(default_factory=dict)
    clue_records: dict[str, ClueRecord] = Field(default_factory=dict)
    dialogue_records: list[DialogueRecord] = Field(default_factory=list)


class SnapshotStore(Protocol):
    def save(self, snapshot: RepositorySnapshot) -> None: ...

    def load(self) -> RepositorySnapshot | None: ...


class JsonSnapshotStore:
    """Writes the snapshot to a single JSON file, replacing it atomically."""

    def __init__(self, path: Path) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def save(self, snapshot: RepositorySnapshot) -> None:
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(snapshot.model_dump_json(indent=2), encoding="utf-8")
            os.replace(tmp, self._path)
        except OSError as e:
            raise PersistenceError(f"Cannot write snapshot to {self._path}: {e}") from e

    def load(self) -> RepositorySnapshot | None:
        if not self._path.exists():
            return None
        try:
            return RepositorySnapshot.model_validate_json(self._path.read_text(encoding="utf-8"))
        except (OSError, ValidationError) as e:
            raise PersistenceError(f"Cannot read snapshot from {self._path}: {e}") from e


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------

class InstanceRepository:
    def __init__(self, store: SnapshotStore | None = None) -> None:
        self._store = store
        self._lock = threading.RLock()
        self._stories: dict[str, StoryInstance] = {}
        self._scenes: dict[str, SceneInstance] = {}
        self._npcs: dict[str, NpcInstance] = {}
        self._clues: dict[str, ClueRecord] = {}
        self._dialogue: list[DialogueRecord] = []

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _copy(model: M) -> M:
        return model.model_copy(deep=True)

    @staticmethod
    def _merge(model: M, updates: dict[str, Any]) -> M:
        """Return a new validated model with ``updates`` applied on top of ``model``.

        Updates are deep-copied first so the caller keeps no handle on the
        stored value. Unknown fields fail validation.
        """
        data = model.model_dump()
        data.update(copy.deepcopy(updates))
        return type(model).model_validate(data)

    def _persist(self) -> None:
        if self._store is None:
            return
        try:
            self._store.save(self.snapshot())
        except PersistenceError:
            logger.exception("Snapshot save failed; keeping in-memory state")

    # ------------------------------------------------------------------
    # Snapshot / lifecycle
    # ------------------------------------------------------------------

    def snapshot(self) -> RepositorySnapshot:
        with self._lock:
            return RepositorySnapshot(
                story_instances={k: self._copy(v) for k, v in self._stories.items()},
                scene_instances={k: self._copy(v) for k, v in self._scenes.items()},
                npc_instances={k: self._copy(v) for k, v in self._npcs.items()},
                clue_records={k: self._copy(v) for k, v in self._clues.items()},
                dialogue_records=[self._copy(r) for r in self._dialogue],
            )

    def restore(self, snapshot: RepositorySnapshot) -> None:
        """Replace all in-memory state with a copy of ``snapshot``."""
        snap = self._copy(snapshot)
        with self._lock:
            self._stories = snap.story_instances
            self._scenes = snap.scene_instances
            self._npcs = snap.npc_instances
            self._clues = snap.clue_records
            self._dialogue = snap.dialogue_records

    def load(self) -> bool:
        """Restore from the snapshot store. Returns True if a snapshot was loaded."""
        if self._store is None:
            return False
        try:
            snapshot = self._store.load()
        except PersistenceError:
            logger.exception("Snapshot load failed; starting with empty state")
            return False
        if snapshot is None:
            return False
        self.restore(snapshot)
        logger.info(
            "Restored snapshot: %d stories, %d scenes, %d npcs, %d clues",
            len(snapshot.story_instances),
            len(snapshot.scene_instances),
            len(snapshot.npc_instances),
            len(snapshot.clue_records),
        )
        return True

    def atomic(self) -> threading.RLock:
        """Hold the write lock across several calls so they apply as one change."""
        return self._lock

    def reset(self) -> None:
        with self._lock:
            self._stories.clear()
            self._scenes.clear()
            self._npcs.clear()
            self._clues.clear()
            self._dialogue.clear()
            self._persist()

    def get_stats(self) -> dict[str, int]:
        with self._lock:
            return {
                "story_instances": len(self._stories),
                "scene_instances": len(self._scenes),
                "npc_instances": len(self._npcs),
                "clue_records": len(self._clues),
                "dialogue_records": len(self._dialogue),
            }

    # ------------------------------------------------------------------
    # Story instances
    # ------------------------------------------------------------------

    def create_story_instance(
        self,
        player_id: str,
        clue_id: str,
        template: StoryTemplate,
        scene_titles: dict[str, str] | None = None,
    ) -> str:
        """Create the instance for (template, clue). Existing instances are left untouched."""
        instance_id = story_instance_id(template.story_id, clue_id)
        with self._lock:
            if instance_id in self._stories:
                logger.debug("Story instance already exists: %s", instance_id)
                return instance_id

            scene_sequence = [
                SceneSequenceItem(
                    scene_id=scene_id,
                    title=(scene_titles or {}).get(scene_id, ""),
                    status="unlocked" if i == 0 else "locked",
                )
                for i, scene_id in enumerate(template.scene_ids)
            ]
            self._stories[instance_id] = StoryInstance(
                instance_id=instance_id,
                player_id=player_id,
                clue_id=clue_id,
                story_template_id=template.story_id,
                story_data=StoryData(
                    story_id=template.story_id,
                    title=template.title,
                    description=template.description,
                    genre=list(template.genre),
                    difficulty=template.difficulty,
                    initial_scene_id=template.scene_ids[0] if template.scene_ids else None,
                    entry_clue_id=template.entry_clue_id,
                ),
                scene_sequence=scene_sequence,
            )
            logger.info("Created story instance %s for player %s", instance_id, player_id)
            self._persist()
        return instance_id

    def get_story_instance(self, instance_id: str) -> StoryInstance | None:
        with self._lock:
            instance = self._stories.get(instance_id)
            return self._copy(instance) if instance else None

    def update_story_instance(self, instance_id: str, updates: dict[str, Any]) -> StoryInstance:
        with self._lock:
            instance = self._stories.get(instance_id)
            if instance is None:
                raise NotFoundError(f"Story instance not found: {instance_id}")
            self._stories[instance_id] = self._merge(instance, updates)
            self._persist()
            return self._copy(self._stories[instance_id])

    def list_story_instances(self, player_id: str | None = None) -> list[StoryInstance]:
        with self._lock:
            return [
                self._copy(s) for s in self._stories.values()
                if player_id is None or s.player_id == player_id
            ]

    # ------------------------------------------------------------------
    # Scene instances
    # ------------------------------------------------------------------

    def create_scene_instance(self, story_instance_id: str, template: SceneTemplate) -> str:
        instance_id = scene_instance_id(story_instance_id, template.scene_id)
        with self._lock:
            if story_instance_id not in self._stories:
                raise NotFoundError(f"Story instance not found: {story_instance_id}")
            if instance_id in self._scenes:
                return instance_id
            self._scenes[instance_id] = SceneInstance(
                instance_id=instance_id,
                story_instance_id=story_instance_id,
                scene_template_id=template.scene_id,
                scene_data=SceneData(
                    title=template.title,
                    location=template.location,
                    time_of_day=template.time_of_day,
                    weather=template.weather,
                    background_info=template.background_info,
                    objective=template.objective,
                ),
                npc_instance_ids=[
                    npc_instance_id(story_instance_id, npc_id) for npc_id in template.present_npc_ids
                ],
            )
            logger.info("Created scene instance %s", instance_id)
            self._persist()
        return instance_id

    def get_scene_instance(self, instance_id: str) -> SceneInstance | None:
        with self._lock:
            instance = self._scenes.get(instance_id)
            return self._copy(instance) if instance else None

    def update_scene_instance(self, instance_id: str, updates: dict[str, Any]) -> SceneInstance:
        with self._lock:
            instance = self._scenes.get(instance_id)
            if instance is None:
                raise NotFoundError(f"Scene instance not found: {instance_id}")
            self._scenes[instance_id] = self._merge(instance, updates)
            self._persist()
            return self._copy(self._scenes[instance_id])

    def get_scene_npcs(self, scene_instance_id: str) -> list[NpcInstance]:
        """NPC instances present in a scene; ids without an instance are skipped."""
        with self._lock:
            scene = self._scenes.get(scene_instance_id)
            if scene is None:
                raise NotFoundError(f"Scene instance not found: {scene_instance_id}")
            return [self._copy(self._npcs[i]) for i in scene.npc_instance_ids if i in self._npcs]

    # ------------------------------------------------------------------
    # NPC instances
    # ------------------------------------------------------------------

    def create_npc_instance(self, story_instance_id: str, template: NpcTemplate) -> str:
        instance_id = npc_instance_id(story_instance_id, template.npc_id)
        with self._lock:
            story = self._stories.get(story_instance_id)
            if story is None:
                raise NotFoundError(f"Story instance not found: {story_instance_id}")
            if instance_id in self._npcs:
                return instance_id
            self._npcs[instance_id] = NpcInstance(
                instance_id=instance_id,
                story_instance_id=story_instance_id,
                npc_template_id=template.npc_id,
                npc_data=NpcData(
                    name=template.name,
                    avatar_url=template.avatar_url,
                    personality=NpcPersonality(
                        traits=list(template.personality.traits),
                        values=list(template.personality.values),
                        speaking_style=template.personality.speaking_style,
                    ),
                    background=template.background,
                    secrets=list(template.secrets),
                ),
                current_state=NpcState(
                    relationship=template.initial_relationship,
                    trust_level=template.initial_relationship,
                ),
            )
            if template.npc_id not in story.npc_ids:
                self._stories[story_instance_id] = self._merge(
                    story, {"npc_ids": [*story.npc_ids, template.npc_id]}
                )
            logger.info("Created NPC instance %s", instance_id)
            self._persist()
        return instance_id

    def get_npc_instance(self, instance_id: str) -> NpcInstance | None:
        with self._lock:
            instance = self._npcs.get(instance_id)
            return self._copy(instance) if instance else None

    def update_npc_instance(self, instance_id: str, updates: dict[str, Any]) -> NpcInstance:
        with self._lock:
            instance = self._npcs.get(instance_id)
            if instance is None:
                raise NotFoundError(f"NPC instance not found: {instance_id}")
            self._npcs[instance_id] = self._merge(instance, updates)
            self._persist()
            return self._copy(self._npcs[instance_id])

    def update_npc_state(self, instance_id: str, state_updates: dict[str, Any]) -> NpcInstance:
        """Merge ``state_updates`` into the NPC's ``current_state``."""
        with self._lock:
            instance = self._npcs.get(instance_id)
            if instance is None:
                raise NotFoundError(f"NPC instance not found: {instance_id}")
            state = self._merge(instance.current_state, state_updates)
            return self.update_npc_instance(instance_id, {"current_state": state.model_dump()})

    def record_npc_interaction(
        self, instance_id: str, revealed_secret: str | None = None
    ) -> NpcInstance:
        with self._lock:
            instance = self._npcs.get(instance_id)
            if instance is None:
                raise NotFoundError(f"NPC instance not found: {instance_id}")
            summary = instance.interaction_summary
            secrets = list(summary.revealed_secrets)
            if revealed_secret and revealed_secret not in secrets:
                secrets.append(revealed_secret)
            return self.update_npc_instance(instance_id, {
                "interaction_summary": {
                    "total_interactions": summary.total_interactions + 1,
                    "last_interaction_at": utcnow(),
                    "revealed_secrets": secrets,
                },
            })

    # ------------------------------------------------------------------
    # Clue records
    # ------------------------------------------------------------------

    def upsert_clue_record(self, record: ClueRecord) -> None:
        with self._lock:
            self._clues[record.clue_id] = self._copy(record)
            self._persist()

    def get_clue_record(self, clue_id: str) -> ClueRecord | None:
        with self._lock:
            record = self._clues.get(clue_id)
            return self._copy(record) if record else None

    def update_clue_record(self, clue_id: str, updates: dict[str, Any]) -> ClueRecord:
        with self._lock:
            record = self._clues.get(clue_id)
            if record is None:
                raise NotFoundError(f"Clue record not found: {clue_id}")
            self._clues[clue_id] = self._merge(record, updates)
            self._persist()
            return self._copy(self._clues[clue_id])

    def list_clue_records(self, player_id: str | None = None) -> list[ClueRecord]:
        with self._lock:
            return [
                self._copy(c) for c in self._clues.values()
                if player_id is None or c.player_id == player_id
            ]

    # ------------------------------------------------------------------
    # Generated content (dialogue records)
    # ------------------------------------------------------------------

    def save_dialogue_record(self, record: DialogueRecord) -> None:
        with self._lock:
            self._dialogue.append(self._copy(record))
            self._persist()

    def get_dialogue_history(self, scene_instance_id: str, limit: int = 10) -> list[DialogueRecord]:
        """Most recent dialogue records for a scene, oldest first."""
        with self._lock:
            records = [r for r in self._dialogue if r.scene_instance_id == scene_instance_id]
            return [self._copy(r) for r in records[-limit:]] if limit > 0 else []
