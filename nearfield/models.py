"""Core domain models.

Templates come from the content store and are frozen: every sequence on a
template is a tuple, so nothing read from the store can be mutated in
place. Instances and records are mutable and live in the instance
repository, which hands out deep copies. Pydantic is used for validation
and serialisation at every data boundary.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

UnitKind = Literal["Narrative", "InterventionPoint", "InteractionTurn"]

StoryStatus = Literal["not_started", "in_progress", "completed"]

SceneStatus = Literal["not_entered", "in_progress", "completed"]

ClueStatus = Literal["unread", "read", "tracking", "completed", "abandoned"]

SequenceItemStatus = Literal["locked", "unlocked"]

PlaybackMode = Literal["PLAYING", "INTERVENTION", "INTERACTION", "SCENE_ENDED"]

SessionState = Literal["idle", "ready", "playing"]

SYSTEM_ACTOR = "System"
PLAYER_ACTOR = "Player"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Templates (immutable, owned by the content store)
# ---------------------------------------------------------------------------

class _Template(BaseModel):
    model_config = ConfigDict(frozen=True)


class InteractionPolicy(_Template):
    """Bounds for the multi-turn exchange opened at a decision point."""

    max_turns: int = Field(default=3, ge=1)
    goal: str = ""
    constraints: tuple[str, ...] = ()


class NarrativeUnit(_Template):
    """One atomic beat of a scene, or one event produced by an interaction turn."""

    unit_id: str
    kind: UnitKind
    actor: str = SYSTEM_ACTOR  # "System" | "Player" | <npc id or display name>
    content: str = ""
    hint: str | None = None  # shown at InterventionPoint units
    policy: InteractionPolicy | None = None
    is_terminal: bool = False


class SceneTransition(_Template):
    next_scene_id: str | None = None
    is_story_terminal: bool = False
    completion_clue_id: str | None = None


class SceneTemplate(_Template):
    scene_id: str
    title: str
    location: str = ""
    time_of_day: str = ""
    weather: str = ""
    background_info: str = ""
    objective: str = ""
    present_npc_ids: tuple[str, ...] = ()
    sequence: tuple[NarrativeUnit, ...] = ()
    max_turns: int = Field(default=5, ge=1)
    transition: SceneTransition = SceneTransition()


class StoryTemplate(_Template):
    story_id: str
    title: str
    description: str = ""
    genre: tuple[str, ...] = ()
    difficulty: str = "normal"
    scene_ids: tuple[str, ...] = Field(min_length=1)
    entry_clue_id: str | None = None


class Personality(_Template):
    traits: tuple[str, ...] = ()
    values: tuple[str, ...] = ()
    speaking_style: str = ""


class NpcTemplate(_Template):
    npc_id: str
    name: str
    avatar_url: str | None = None
    personality: Personality = Personality()
    background: str = ""
    secrets: tuple[str, ...] = ()
    initial_relationship: int = 0


class ClueTemplate(_Template):
    """A clue registry entry: the hook that opens a story when tracked."""

    clue_id: str
    title: str
    summary: str = ""
    story_id: str
    source: str = "world_feed"


# ---------------------------------------------------------------------------
# Instances (mutable, owned by the instance repository)
# ---------------------------------------------------------------------------

class _Instance(BaseModel):
    model_config = ConfigDict(extra="forbid", validate_assignment=True)


class StoryData(_Instance):
    story_id: str
    title: str
    description: str = ""
    genre: list[str] = Field(default_factory=list)
    difficulty: str = "normal"
    initial_scene_id: str | None = None
    entry_clue_id: str | None = None


class SceneSequenceItem(_Instance):
    scene_id: str
    title: str = ""
    status: SequenceItemStatus = "locked"


class StoryInstance(_Instance):
    """One player's playthrough of a story template, keyed by the clue that opened it."""

    instance_id: str
    player_id: str
    clue_id: str
    story_template_id: str
    story_data: StoryData
    scene_sequence: list[SceneSequenceItem] = Field(default_factory=list)
    npc_ids: list[str] = Field(default_factory=list)
    current_scene_id: str | None = None
    completed_scenes: list[str] = Field(default_factory=list)
    status: StoryStatus = "not_started"
    progress_percentage: int = Field(default=0, ge=0, le=100)
    is_active: bool = False
    completion_markers: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    started_at: datetime | None = None
    completed_at: datetime | None = None
    last_played_at: datetime | None = None

    @property
    def scene_ids(self) -> list[str]:
        return [item.scene_id for item in self.scene_sequence]


class SceneData(_Instance):
    title: str
    location: str = ""
    time_of_day: str = ""
    weather: str = ""
    background_info: str = ""
    objective: str = ""


class TriggeredEvent(_Instance):
    event_id: str
    timestamp: datetime = Field(default_factory=utcnow)


class SceneInstance(_Instance):
    instance_id: str
    story_instance_id: str
    scene_template_id: str
    scene_data: SceneData
    npc_instance_ids: list[str] = Field(default_factory=list)
    status: SceneStatus = "not_entered"
    entered_at: datetime | None = None
    completed_at: datetime | None = None
    triggered_events: list[TriggeredEvent] = Field(default_factory=list)


class NpcPersonality(_Instance):
    traits: list[str] = Field(default_factory=list)
    values: list[str] = Field(default_factory=list)
    speaking_style: str = ""


class NpcData(_Instance):
    name: str
    avatar_url: str | None = None
    personality: NpcPersonality = Field(default_factory=NpcPersonality)
    background: str = ""
    secrets: list[str] = Field(default_factory=list)


class NpcState(_Instance):
    relationship: int = 0
    current_mood: str = "neutral"
    alertness: float = Field(default=0.5, ge=0.0, le=1.0)
    trust_level: int = 0
    composure: int = 100


class InteractionSummary(_Instance):
    total_interactions: int = 0
    last_interaction_at: datetime | None = None
    revealed_secrets: list[str] = Field(default_factory=list)


class NpcInstance(_Instance):
    instance_id: str
    story_instance_id: str
    npc_template_id: str
    npc_data: NpcData
    current_state: NpcState = Field(default_factory=NpcState)
    interaction_summary: InteractionSummary = Field(default_factory=InteractionSummary)
    created_at: datetime = Field(default_factory=utcnow)


class ClueRecord(_Instance):
    """A clue in one player's inbox. Status is only written by the clue tracker."""

    clue_id: str
    player_id: str
    story_template_id: str
    story_instance_id: str | None = None
    title: str
    description: str = ""
    source: str = "world_feed"
    status: ClueStatus = "unread"
    received_at: datetime = Field(default_factory=utcnow)
    read_at: datetime | None = None
    tracked_at: datetime | None = None
    completed_at: datetime | None = None


# ---------------------------------------------------------------------------
# Interaction turn contract
# ---------------------------------------------------------------------------

class EntityUpdate(BaseModel):
    """A state delta for one NPC, carried by a turn response."""

    entity_id: str  # npc template id
    composure: int | None = None
    status: str | None = None  # becomes the NPC's current mood
    relationship_delta: int = 0
    trust_delta: int = 0
    alertness: float | None = Field(default=None, ge=0.0, le=1.0)
    revealed_secret: str | None = None


class PolicyProgress(BaseModel):
    max_turns: int
    current_turn: int


class TurnSceneStatus(BaseModel):
    is_scene_over: bool = False
    next_scene_id: str | None = None
    is_story_over: bool = False
    new_clue: str | None = None
    interaction_policy: PolicyProgress | None = None


class TurnResponse(BaseModel):
    new_events: list[NarrativeUnit] = Field(default_factory=list)
    entity_updates: list[EntityUpdate] = Field(default_factory=list)
    scene_status: TurnSceneStatus = Field(default_factory=TurnSceneStatus)


class DialogueRecord(_Instance):
    """A generated-content record: one accepted interaction turn."""

    record_id: str
    player_id: str
    story_instance_id: str | None = None
    scene_instance_id: str
    turn_number: int
    player_input: str
    responses: list[NarrativeUnit] = Field(default_factory=list)
    entity_updates: list[EntityUpdate] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)


# ---------------------------------------------------------------------------
# Playback session (transient)
# ---------------------------------------------------------------------------

class PlaybackSession(BaseModel):
    active: bool = False
    story_id: str | None = None
    story_instance_id: str | None = None
    scene_id: str | None = None
    narrative_sequence: tuple[NarrativeUnit, ...] = ()
    display_index: int = -1
    mode: PlaybackMode = "PLAYING"
    intervention_hint: str | None = None
    active_policy: InteractionPolicy | None = None
    interaction_events: list[NarrativeUnit] = Field(default_factory=list)

    @property
    def visible_units(self) -> list[NarrativeUnit]:
        return list(self.narrative_sequence[: self.display_index + 1])


# ---------------------------------------------------------------------------
# Derived views
# ---------------------------------------------------------------------------

class ClueStats(BaseModel):
    unread: int = 0
    read: int = 0
    tracking: int = 0
    completed: int = 0
    abandoned: int = 0
    total: int = 0
