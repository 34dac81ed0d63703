from pathlib import Path

import pytest

from nearfield.config import Delays, Settings
from nearfield.content import ContentStore
from nearfield.engine import Engine, build_engine
from nearfield.events import Event, EventBus, EventType
from nearfield.repository import InstanceRepository
from nearfield.scheduling import ManualScheduler

PRESETS_DIR = Path(__file__).parent / "presets"
DEMO_PACK = PRESETS_DIR / "demo-story.json"
PLAYER = "demo-player"


@pytest.fixture
def content() -> ContentStore:
    return ContentStore.from_file(DEMO_PACK)


@pytest.fixture
def repository() -> InstanceRepository:
    return InstanceRepository()


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def published(bus: EventBus) -> list[Event]:
    """Every event published on ``bus``, in order."""
    seen: list[Event] = []
    for event_type in EventType:
        bus.subscribe(event_type, seen.append)
    return seen


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        data_dir=tmp_path,
        content_path=DEMO_PACK,
        player_id=PLAYER,
        delays=Delays(narrative=0, interaction_resume=0, scene_transition=0, story_exit=0),
    )


@pytest.fixture
def engine(settings: Settings, content: ContentStore, scheduler: ManualScheduler) -> Engine:
    return build_engine(settings, content=content, scheduler=scheduler, persist=False)


TINY_PACK = {
    "stories": [{"story_id": "tiny", "title": "Tiny", "scene_ids": ["s1", "s2", "s3"]}],
    "scenes": {
        "tiny": [
            {
                "scene_id": "s1",
                "title": "No terminal",
                "present_npc_ids": ["npc-a"],
                "sequence": [
                    {"unit_id": "N1", "kind": "Narrative", "content": "one"},
                    {"unit_id": "N2", "kind": "Narrative", "content": "two"},
                    {"unit_id": "IP", "kind": "InterventionPoint", "hint": "decide",
                     "policy": {"max_turns": 3, "goal": "settle it"}},
                ],
            },
            {
                "scene_id": "s2",
                "title": "Inline interaction",
                "max_turns": 2,
                "sequence": [
                    {"unit_id": "M1", "kind": "Narrative", "content": "start"},
                    {"unit_id": "IT", "kind": "InteractionTurn", "actor": "npc-a", "content": "Well?"},
                    {"unit_id": "M3", "kind": "Narrative", "content": "end", "is_terminal": True},
                ],
                "transition": {"is_story_terminal": True},
            },
            {"scene_id": "s3", "title": "Empty", "sequence": []},
        ]
    },
    "npcs": [{"npc_id": "npc-a", "name": "A"}],
    "clues": [{"clue_id": "T1", "title": "Tiny clue", "story_id": "tiny"}],
    "dialogue": {
        "s1": {"default": {"new_events": [
            {"unit_id": "R", "kind": "InteractionTurn", "actor": "npc-a", "content": "Hm."}
        ]}},
        "s2": {"default": {"new_events": [
            {"unit_id": "R", "kind": "InteractionTurn", "actor": "npc-a", "content": "Go on."}
        ]}},
    },
}


@pytest.fixture
def tiny_content() -> ContentStore:
    """A small pack covering edge cases the demo story does not."""
    return ContentStore.from_dict(TINY_PACK)


@pytest.fixture
def tiny_engine(settings: Settings, tiny_content: ContentStore, scheduler: ManualScheduler) -> Engine:
    return build_engine(settings, content=tiny_content, scheduler=scheduler, persist=False)
