"""Audio transport protocols.

A :class:`VoiceConnection` belongs to exactly one session. Its ``after``
callback may be invoked from a non-event-loop thread; sessions marshal it back
onto the loop themselves.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Protocol

from riveting_bot.voice.models import Track

TrackFinished = Callable[[Exception | None], None]


class VoiceConnection(Protocol):
    """A live connection to one voice channel."""

    @property
    def channel_id(self) -> int: ...

    def is_connected(self) -> bool: ...

    async def play(self, track: Track, after: TrackFinished) -> None:
        """Start playing ``track``; raises if the track cannot be started."""
        ...

    def pause(self) -> None: ...

    def resume(self) -> None: ...

    def stop(self) -> None: ...

    async def disconnect(self) -> None: ...


class VoiceConnector(Protocol):
    """Opens voice connections."""

    async def connect(self, guild_id: int, channel_id: int) -> VoiceConnection: ...
