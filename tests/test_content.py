"""Tests for nearfield.content.ContentStore."""

import json
from pathlib import Path

import pytest
from pydantic import ValidationError

from nearfield.content import ContentStore
from nearfield.errors import NotFoundError


class TestLookups:
    def test_story_template(self, content: ContentStore) -> None:
        story = content.get_story_template("demo-story")
        assert story.scene_ids == ("scene-a", "scene-b")
        assert story.entry_clue_id == "CLUE_001_UNDELIVERED_PACKAGE"

    def test_scene_template(self, content: ContentStore) -> None:
        scene = content.get_scene_template("demo-story", "scene-a")
        assert [u.unit_id for u in scene.sequence] == ["A001", "A002", "A003", "A004", "A005", "A006"]
        assert scene.sequence[3].policy.max_turns == 3
        assert scene.transition.next_scene_id == "scene-b"

    def test_scene_outside_story_is_not_found(self, content: ContentStore) -> None:
        with pytest.raises(NotFoundError, match="not part of story"):
            content.get_scene_template("demo-story", "scene-z")

    @pytest.mark.parametrize("lookup, key", [
        ("get_story_template", "nope"),
        ("get_npc_template", "npc-nope"),
        ("get_clue_template", "CLUE_404"),
    ])
    def test_missing_lookup_raises(self, content: ContentStore, lookup: str, key: str) -> None:
        with pytest.raises(NotFoundError, match=key):
            getattr(content, lookup)(key)

    def test_scene_titles(self, content: ContentStore) -> None:
        assert content.scene_titles("demo-story") == {
            "scene-a": "The Prospector's Door",
            "scene-b": "Behind the Counter",
        }

    def test_initial_clues(self, content: ContentStore) -> None:
        assert content.initial_clue_ids() == [
            "CLUE_001_UNDELIVERED_PACKAGE", "CLUE_004_GANG_RUMOR", "CLUE_005_MISSING_CARGO",
        ]


class TestImmutability:
    def test_templates_are_frozen(self, content: ContentStore) -> None:
        scene = content.get_scene_template("demo-story", "scene-a")
        with pytest.raises(ValidationError):
            scene.title = "changed"

    def test_dialogue_scripts_are_copies(self, content: ContentStore) -> None:
        scripts = content.dialogue_scripts()
        scripts["scene-a"]["turn_1"].new_events.clear()
        assert len(content.dialogue_scripts()["scene-a"]["turn_1"].new_events) == 2


class TestLoading:
    def test_from_directory_merges_packs(self, tmp_path: Path) -> None:
        (tmp_path / "a.json").write_text(json.dumps({
            "stories": [{"story_id": "s", "title": "S", "scene_ids": ["x"]}],
            "initial_clues": ["c1"],
        }))
        (tmp_path / "b.json").write_text(json.dumps({
            "scenes": {"s": [{"scene_id": "x", "title": "X"}]},
            "clues": [{"clue_id": "c1", "title": "C", "story_id": "s"}],
            "initial_clues": ["c1"],
        }))
        store = ContentStore.from_path(tmp_path)
        assert store.get_scene_template("s", "x").title == "X"
        assert store.initial_clue_ids() == ["c1"]

    def test_story_needs_scenes(self) -> None:
        with pytest.raises(ValidationError):
            ContentStore.from_dict({"stories": [{"story_id": "s", "title": "S", "scene_ids": []}]})

    def test_invalid_unit_kind_rejected(self) -> None:
        with pytest.raises(ValidationError):
            ContentStore.from_dict({"scenes": {"s": [{
                "scene_id": "x", "title": "X",
                "sequence": [{"unit_id": "u", "kind": "Cutscene"}],
            }]}})
