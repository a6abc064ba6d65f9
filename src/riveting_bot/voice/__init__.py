"""Voice channel playback."""

from riveting_bot.voice.manager import VoiceManager
from riveting_bot.voice.models import (
    AlreadyActiveError,
    NoSessionError,
    PlaybackState,
    Track,
    TrackLoadError,
    VoiceConnectionError,
)
from riveting_bot.voice.session import QueueSnapshot, VoiceSession

__all__ = [
    "AlreadyActiveError",
    "NoSessionError",
    "PlaybackState",
    "QueueSnapshot",
    "Track",
    "TrackLoadError",
    "VoiceConnectionError",
    "VoiceManager",
    "VoiceSession",
]
