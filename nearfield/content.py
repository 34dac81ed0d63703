"""Content store: read-only story, scene, NPC and clue templates.

A content pack is a JSON document (or a directory of them) shaped like:

    {
      "stories":  [StoryTemplate, ...],
      "scenes":   {"<story_id>": [SceneTemplate, ...]},
      "npcs":     [NpcTemplate, ...],
      "clues":    [ClueTemplate, ...],
      "initial_clues": ["<clue_id>", ...],
      "dialogue": {"<scene_id>": {"turn_1": TurnResponse, "default": TurnResponse}}
    }

All templates are validated on load and frozen afterwards. The
``dialogue`` section feeds ScriptedDialogueProvider.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from nearfield.errors import NotFoundError
from nearfield.models import (
    ClueTemplate,
    NpcTemplate,
    SceneTemplate,
    StoryTemplate,
    TurnResponse,
)

logger = logging.getLogger(__name__)


class ContentPack(BaseModel):
    stories: list[StoryTemplate] = Field(default_factory=list)
    scenes: dict[str, list[SceneTemplate]] = Field(default_factory=dict)
    npcs: list[NpcTemplate] = Field(default_factory=list)
    clues: list[ClueTemplate] = Field(default_factory=list)
    initial_clues: list[str] = Field(default_factory=list)
    dialogue: dict[str, dict[str, TurnResponse]] = Field(default_factory=dict)


class ContentStore:
    def __init__(self, pack: ContentPack | None = None) -> None:
        self._stories: dict[str, StoryTemplate] = {}
        self._scenes: dict[tuple[str, str], SceneTemplate] = {}
        self._npcs: dict[str, NpcTemplate] = {}
        self._clues: dict[str, ClueTemplate] = {}
        self._initial_clues: list[str] = []
        self._dialogue: dict[str, dict[str, TurnResponse]] = {}
        if pack is not None:
            self.add_pack(pack)

    @classmethod
    def from_file(cls, path: Path) -> ContentStore:
        return cls(ContentPack.model_validate_json(path.read_text(encoding="utf-8")))

    @classmethod
    def from_directory(cls, path: Path) -> ContentStore:
        """Load every ``*.json`` pack in ``path`` in name order."""
        store = cls()
        for pack_file in sorted(path.glob("*.json")):
            store.add_pack(ContentPack.model_validate_json(pack_file.read_text(encoding="utf-8")))
        return store

    @classmethod
    def from_path(cls, path: Path) -> ContentStore:
        return cls.from_directory(path) if path.is_dir() else cls.from_file(path)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ContentStore:
        return cls(ContentPack.model_validate(data))

    def add_pack(self, pack: ContentPack) -> None:
        for story in pack.stories:
            self._stories[story.story_id] = story
        for story_id, scenes in pack.scenes.items():
            for scene in scenes:
                self._scenes[(story_id, scene.scene_id)] = scene
        for npc in pack.npcs:
            self._npcs[npc.npc_id] = npc
        for clue in pack.clues:
            self._clues[clue.clue_id] = clue
        for clue_id in pack.initial_clues:
            if clue_id not in self._initial_clues:
                self._initial_clues.append(clue_id)
        for scene_id, script in pack.dialogue.items():
            self._dialogue.setdefault(scene_id, {}).update(script)
        logger.info(
            "Loaded content pack: %d stories, %d scenes, %d npcs, %d clues",
            len(pack.stories),
            sum(len(s) for s in pack.scenes.values()),
            len(pack.npcs),
            len(pack.clues),
        )

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_story_template(self, story_id: str) -> StoryTemplate:
        try:
            return self._stories[story_id]
        except KeyError:
            raise NotFoundError(f"Story template not found: {story_id}") from None

    def get_scene_template(self, story_id: str, scene_id: str) -> SceneTemplate:
        story = self.get_story_template(story_id)
        if scene_id not in story.scene_ids:
            raise NotFoundError(f"Scene {scene_id} is not part of story {story_id}")
        try:
            return self._scenes[(story_id, scene_id)]
        except KeyError:
            raise NotFoundError(f"Scene template not found: {story_id}/{scene_id}") from None

    def get_npc_template(self, npc_id: str) -> NpcTemplate:
        try:
            return self._npcs[npc_id]
        except KeyError:
            raise NotFoundError(f"NPC template not found: {npc_id}") from None

    def get_clue_template(self, clue_id: str) -> ClueTemplate:
        try:
            return self._clues[clue_id]
        except KeyError:
            raise NotFoundError(f"Clue not found in registry: {clue_id}") from None

    def scene_titles(self, story_id: str) -> dict[str, str]:
        """Titles of the scenes loaded for a story, by scene id."""
        return {
            scene_id: scene.title
            for (sid, scene_id), scene in self._scenes.items()
            if sid == story_id
        }

    def list_story_templates(self) -> list[StoryTemplate]:
        return list(self._stories.values())

    def list_clue_templates(self) -> list[ClueTemplate]:
        return list(self._clues.values())

    def initial_clue_ids(self) -> list[str]:
        return list(self._initial_clues)

    def dialogue_scripts(self) -> dict[str, dict[str, TurnResponse]]:
        """Scripted turn responses by scene id, deep-copied for the caller."""
        return {
            scene_id: {key: resp.model_copy(deep=True) for key, resp in script.items()}
            for scene_id, script in self._dialogue.items()
        }
