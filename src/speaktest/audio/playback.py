"""Prompt playback protocol and events.

Defines the interface every prompt player must follow. A player handles one
resource at a time; load() switches resources and silences anything still
pending from the previous one.
"""

from dataclasses import dataclass
from typing import Protocol

from ..errors import PlaybackFailureError
from ..events import EventEmitter


@dataclass(frozen=True)
class PlaybackStarted:
    """Audio output began."""

    resource: str


@dataclass(frozen=True)
class PlaybackEnded:
    """Playback reached the end of the resource."""

    resource: str


@dataclass(frozen=True)
class PlaybackFailed:
    """Resource could not be decoded, fetched or played."""

    resource: str
    error: PlaybackFailureError


PlaybackEvent = PlaybackStarted | PlaybackEnded | PlaybackFailed


class PlaybackAdapter(Protocol):
    """Interface for prompt playback.

    After load(), each play() yields exactly one PlaybackEnded or one
    PlaybackFailed on `events`, never both.
    """

    events: EventEmitter[PlaybackEvent]

    def load(self, resource: str) -> None:
        """Select the resource to play.

        Invalidates events still pending for the previous resource.
        """
        ...

    def play(self) -> None:
        """Start playing from the current position.

        Raises:
            ProtocolMisuseError: If nothing has been loaded
        """
        ...

    def stop(self) -> None:
        """Stop playback. Idempotent, safe in any state."""
        ...

    def seek_to_start(self) -> None:
        """Rewind to position zero."""
        ...

    @property
    def is_playing(self) -> bool:
        """Return True while audio is playing."""
        ...


__all__ = [
    "PlaybackAdapter",
    "PlaybackEnded",
    "PlaybackEvent",
    "PlaybackFailed",
    "PlaybackStarted",
]
