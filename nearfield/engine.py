"""Wiring: one engine context per process (or per test).

Each collaborator is built once here and passed explicitly to the parts
that need it. Nothing in the package keeps module-level state.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from nearfield.config import Settings
from nearfield.content import ContentStore
from nearfield.dialogue import DialogueProvider, LLMDialogueProvider, ScriptedDialogueProvider
from nearfield.events import EventBus
from nearfield.interaction import InteractionMachine
from nearfield.llm import HttpLLM
from nearfield.orchestrator import Orchestrator
from nearfield.playback import PlaybackMachine
from nearfield.repository import InstanceRepository, JsonSnapshotStore
from nearfield.scheduling import AsyncioScheduler, Scheduler
from nearfield.tracker import ClueTracker

logger = logging.getLogger(__name__)


@dataclass
class Engine:
    settings: Settings
    content: ContentStore
    repository: InstanceRepository
    bus: EventBus
    tracker: ClueTracker
    playback: PlaybackMachine
    orchestrator: Orchestrator


def build_dialogue_provider(settings: Settings, content: ContentStore) -> DialogueProvider:
    if settings.dialogue_provider == "llm":
        llm = HttpLLM(
            provider_url=settings.llm_url,
            api_key=settings.llm_api_key,
            provider_format=settings.llm_format,
            model=settings.llm_model,
        )
        return LLMDialogueProvider(llm)
    return ScriptedDialogueProvider(content.dialogue_scripts())


def build_engine(
    settings: Settings,
    *,
    content: ContentStore | None = None,
    scheduler: Scheduler | None = None,
    dialogue_provider: DialogueProvider | None = None,
    persist: bool = True,
) -> Engine:
    content = content or ContentStore.from_path(settings.content_path)
    scheduler = scheduler or AsyncioScheduler()
    bus = EventBus()

    repository = InstanceRepository(JsonSnapshotStore(settings.snapshot_path) if persist else None)
    repository.load()

    tracker = ClueTracker(content, repository, bus)
    interaction = InteractionMachine(
        repository,
        dialogue_provider or build_dialogue_provider(settings, content),
        bus,
    )
    playback = PlaybackMachine(
        content,
        interaction,
        scheduler,
        bus,
        narrative_delay=settings.delays.narrative,
        resume_delay=settings.delays.interaction_resume,
    )
    orchestrator = Orchestrator(
        player_id=settings.player_id,
        content=content,
        repository=repository,
        tracker=tracker,
        playback=playback,
        scheduler=scheduler,
        bus=bus,
        transition_delay=settings.delays.scene_transition,
        exit_delay=settings.delays.story_exit,
    )

    if settings.seed_inbox:
        tracker.initialize_inbox(settings.player_id)

    logger.info(
        "Engine ready: player=%s dialogue=%s snapshot=%s",
        settings.player_id,
        settings.dialogue_provider,
        settings.snapshot_path if persist else None,
    )
    return Engine(
        settings=settings,
        content=content,
        repository=repository,
        bus=bus,
        tracker=tracker,
        playback=playback,
        orchestrator=orchestrator,
    )
