"""Pydantic request/response models for API endpoints."""

from pydantic import BaseModel, Field

from nearfield.models import ClueRecord, ClueStats, PlaybackSession, SessionState


class EnterStoryBody(BaseModel):
    clue_id: str


class InterveneBody(BaseModel):
    text: str = Field(min_length=1)


class ClueInbox(BaseModel):
    clues: list[ClueRecord]
    stats: ClueStats


class SessionView(BaseModel):
    state: SessionState
    active_clue_id: str | None = None
    playback: PlaybackSession


class ActionResult(BaseModel):
    accepted: bool
    session: SessionView
