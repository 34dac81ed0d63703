"""Exception types raised by the narrative engine.

Lookup failures propagate to the caller. Invalid player actions and
content authoring gaps are logged and absorbed by the state machines, so
they have no exception type here. Persistence failures are raised by the
snapshot store and absorbed by the repository.
"""


class NearfieldError(Exception):
    """Base class for engine errors."""


class NotFoundError(NearfieldError, LookupError):
    """Raised when a template, instance or scripted turn response is missing."""


class SceneDataError(NearfieldError, ValueError):
    """Raised when a scene template cannot be played (missing or empty sequence)."""


class ClueNotTrackedError(NearfieldError):
    """Raised when a story is entered through a clue that has no story instance."""

    def __init__(self, clue_id: str) -> None:
        super().__init__(f"Clue {clue_id} is not tracked. Track the clue first.")
        self.clue_id = clue_id


class PersistenceError(NearfieldError):
    """Raised by a snapshot store when a snapshot cannot be written or read."""
