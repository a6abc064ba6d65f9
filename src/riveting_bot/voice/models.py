"""Data models and errors for voice playback."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from riveting_bot.errors import BotError


class PlaybackState(str, Enum):
    """Lifecycle of a voice session."""

    IDLE = "idle"
    CONNECTING = "connecting"
    LOADING = "loading"
    PLAYING = "playing"
    PAUSED = "paused"
    DISCONNECTING = "disconnecting"
    CLOSED = "closed"


@dataclass(frozen=True)
class Track:
    """A playable audio item.

    Attributes:
        source: URL or path handed to the audio transport.
        requested_by: User ID of the requester.
        title: Display title; defaults to the source.
        duration: Length in seconds, if known.
    """

    source: str
    requested_by: int
    title: str = ""
    duration: float | None = None

    @property
    def display(self) -> str:
        name = self.title or self.source
        if self.duration is None:
            return name
        minutes, seconds = divmod(int(self.duration), 60)
        return f"{name} ({minutes}:{seconds:02d})"


class AlreadyActiveError(BotError):
    """Raised when joining a guild that already has a session in another channel."""

    default_message = "I am already in another voice channel in this server."


class NoSessionError(BotError):
    """Raised for voice operations in a guild without a session."""

    default_message = "I am not in a voice channel."


class TrackLoadError(BotError):
    """Raised when a track requested while idle cannot be started."""

    default_message = "Could not play that track."


class VoiceConnectionError(BotError):
    """Raised when a voice connection cannot be established."""

    default_message = "Could not connect to the voice channel."
