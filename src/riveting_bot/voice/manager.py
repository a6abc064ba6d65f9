"""Guild-keyed registry of voice sessions.

The manager creates sessions and forwards requests to them. Sessions never
reference the manager; a finished session task removes its own entry through
a done callback.
"""

from __future__ import annotations

import asyncio
import contextlib

from riveting_bot.config import Settings
from riveting_bot.events import VoiceStateUpdate
from riveting_bot.logging import get_logger
from riveting_bot.voice.models import AlreadyActiveError, NoSessionError, Track
from riveting_bot.voice.session import QueueSnapshot, Reporter, VoiceSession
from riveting_bot.voice.transport import VoiceConnector

log = get_logger("riveting_bot.voice.manager")


class VoiceManager:
    """At most one :class:`VoiceSession` per guild."""

    def __init__(
        self,
        connector: VoiceConnector,
        *,
        max_reconnect_attempts: int = 3,
        reconnect_base_delay: float = 1.0,
        connect_timeout: float = 30.0,
        idle_timeout: float | None = None,
    ) -> None:
        self._connector = connector
        self._max_reconnect_attempts = max_reconnect_attempts
        self._reconnect_base_delay = reconnect_base_delay
        self._connect_timeout = connect_timeout
        self._idle_timeout = idle_timeout
        self._sessions: dict[int, VoiceSession] = {}

    @classmethod
    def from_settings(cls, connector: VoiceConnector, settings: Settings) -> VoiceManager:
        return cls(
            connector,
            max_reconnect_attempts=settings.voice_max_reconnect_attempts,
            reconnect_base_delay=settings.voice_reconnect_base_delay,
            connect_timeout=settings.voice_connect_timeout,
            idle_timeout=(
                settings.voice_idle_timeout_seconds if settings.voice_auto_leave else None
            ),
        )

    def __len__(self) -> int:
        return len(self._sessions)

    def get(self, guild_id: int) -> VoiceSession | None:
        """Live session for a guild, if any."""
        session = self._sessions.get(guild_id)
        if session is not None and session.closed:
            return None
        return session

    def _require(self, guild_id: int) -> VoiceSession:
        session = self.get(guild_id)
        if session is None:
            raise NoSessionError()
        return session

    def _forget(self, session: VoiceSession) -> None:
        if self._sessions.get(session.guild_id) is session:
            del self._sessions[session.guild_id]
            log.debug("voice_session_removed", guild_id=session.guild_id)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def join(
        self,
        guild_id: int,
        channel_id: int,
        reporter: Reporter | None = None,
    ) -> VoiceSession:
        """Join a voice channel.

        Args:
            guild_id: Guild to join in.
            channel_id: Voice channel to join.
            reporter: Receives playback failure messages for this session.

        Returns:
            The (possibly already existing) session.

        Raises:
            AlreadyActiveError: If the guild has a session in another channel.
            VoiceConnectionError: If connecting failed after all retries.
        """
        existing = self.get(guild_id)
        if existing is not None:
            if existing.channel_id == channel_id:
                return existing
            raise AlreadyActiveError()

        session = VoiceSession(
            guild_id,
            channel_id,
            self._connector,
            max_reconnect_attempts=self._max_reconnect_attempts,
            reconnect_base_delay=self._reconnect_base_delay,
            connect_timeout=self._connect_timeout,
            idle_timeout=self._idle_timeout,
            reporter=reporter,
        )
        self._sessions[guild_id] = session
        task = session.start()
        task.add_done_callback(lambda _: self._forget(session))
        log.info("voice_join", guild_id=guild_id, channel_id=channel_id)

        try:
            await session.connect()
        except Exception:
            self._forget(session)
            raise
        return session

    async def enqueue(self, guild_id: int, track: Track) -> int:
        return await self._require(guild_id).enqueue(track)

    async def skip(self, guild_id: int) -> Track:
        return await self._require(guild_id).skip()

    async def pause(self, guild_id: int) -> None:
        await self._require(guild_id).pause()

    async def resume(self, guild_id: int) -> None:
        await self._require(guild_id).resume()

    async def now_playing(self, guild_id: int) -> Track | None:
        return await self._require(guild_id).now_playing()

    async def queue(self, guild_id: int) -> QueueSnapshot:
        return await self._require(guild_id).snapshot()

    async def leave(self, guild_id: int) -> bool:
        """Leave voice in a guild. Succeeds even without a session.

        Returns:
            True if a session was closed.
        """
        session = self._sessions.get(guild_id)
        if session is None:
            return False
        with contextlib.suppress(NoSessionError):
            await session.leave()
        await session.wait_closed()
        self._forget(session)
        log.info("voice_leave", guild_id=guild_id)
        return True

    def handle_voice_state(self, event: VoiceStateUpdate, bot_user_id: int | None) -> None:
        """React to the bot's own voice state changing."""
        if bot_user_id is None or event.user_id != bot_user_id:
            return
        session = self.get(event.guild_id)
        if session is None:
            return
        if event.channel_id is None:
            log.info("voice_connection_dropped", guild_id=event.guild_id)
            session.notify_dropped()
        elif event.channel_id != session.channel_id:
            session.notify_moved(event.channel_id)

    async def shutdown(self) -> None:
        """Leave every session."""
        guild_ids = list(self._sessions)
        if guild_ids:
            log.info("voice_shutdown", sessions=len(guild_ids))
        results = await asyncio.gather(
            *(self.leave(guild_id) for guild_id in guild_ids), return_exceptions=True
        )
        for guild_id, result in zip(guild_ids, results, strict=True):
            if isinstance(result, BaseException):
                log.warning("voice_shutdown_leave_failed", guild_id=guild_id, error=str(result))
