"""Per-guild voice session actor.

A :class:`VoiceSession` owns one voice connection and its track queue. All
state changes happen inside the session's own task: public methods put a
request on the inbox and wait for the reply. Audio transport callbacks are
moved onto the event loop with ``call_soon_threadsafe`` before they touch the
inbox.

Track completion callbacks carry the playback generation they were started
with. Skipping, leaving or reconnecting bumps the generation, so callbacks
from tracks that were already replaced are ignored.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from riveting_bot.errors import InvalidStateError
from riveting_bot.logging import get_logger
from riveting_bot.voice.models import (
    NoSessionError,
    PlaybackState,
    Track,
    TrackLoadError,
    VoiceConnectionError,
)
from riveting_bot.voice.transport import TrackFinished, VoiceConnection, VoiceConnector

log = get_logger("riveting_bot.voice.session")

Reporter = Callable[[str], Awaitable[None]]


class _Op(str, Enum):
    CONNECT = "connect"
    ENQUEUE = "enqueue"
    SKIP = "skip"
    PAUSE = "pause"
    RESUME = "resume"
    LEAVE = "leave"
    NOW_PLAYING = "now_playing"
    QUEUE = "queue"
    FINISHED = "finished"
    DROPPED = "dropped"
    MOVED = "moved"


@dataclass
class _Request:
    op: _Op
    payload: Any = None
    reply: asyncio.Future[Any] | None = field(default=None, repr=False)


@dataclass(frozen=True)
class QueueSnapshot:
    """Read-only view of a session's playback."""

    state: PlaybackState
    current: Track | None
    upcoming: tuple[Track, ...]


class VoiceSession:
    """Actor owning one guild's voice connection and track queue."""

    def __init__(
        self,
        guild_id: int,
        channel_id: int,
        connector: VoiceConnector,
        *,
        max_reconnect_attempts: int = 3,
        reconnect_base_delay: float = 1.0,
        connect_timeout: float = 30.0,
        idle_timeout: float | None = None,
        reporter: Reporter | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.guild_id = guild_id
        self.channel_id = channel_id
        self._connector = connector
        self._max_reconnect_attempts = max_reconnect_attempts
        self._reconnect_base_delay = reconnect_base_delay
        self._connect_timeout = connect_timeout
        self._idle_timeout = idle_timeout
        self._reporter = reporter
        self._sleep = sleep

        self._inbox: asyncio.Queue[_Request] = asyncio.Queue()
        self._queue: deque[Track] = deque()
        self._connection: VoiceConnection | None = None
        self._current: Track | None = None
        self._state = PlaybackState.IDLE
        self._generation = 0
        self._loop: asyncio.AbstractEventLoop | None = None
        self._task: asyncio.Task[None] | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def state(self) -> PlaybackState:
        return self._state

    @property
    def closed(self) -> bool:
        return self._state is PlaybackState.CLOSED or (
            self._task is not None and self._task.done()
        )

    @property
    def task(self) -> asyncio.Task[None] | None:
        return self._task

    def start(self) -> asyncio.Task[None]:
        """Start the session task."""
        if self._task is None:
            self._loop = asyncio.get_running_loop()
            self._task = asyncio.create_task(self._run(), name=f"voice-session-{self.guild_id}")
        return self._task

    async def wait_closed(self) -> None:
        """Wait until the session task has exited."""
        if self._task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await asyncio.shield(self._task)

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    async def _call(self, op: _Op, payload: Any = None) -> Any:
        if self.closed or self._loop is None:
            raise NoSessionError()
        reply: asyncio.Future[Any] = self._loop.create_future()
        self._inbox.put_nowait(_Request(op, payload, reply))
        return await reply

    def _notify(self, op: _Op, payload: Any = None) -> None:
        if not self.closed:
            self._inbox.put_nowait(_Request(op, payload))

    async def connect(self) -> None:
        """Connect to the session's channel, retrying with backoff.

        Raises:
            VoiceConnectionError: When every attempt failed. The session is
                closed afterwards.
        """
        await self._call(_Op.CONNECT)

    async def enqueue(self, track: Track) -> int:
        """Queue a track; playback starts right away when idle.

        Returns:
            Position in the upcoming queue, 0 if it started playing.

        Raises:
            TrackLoadError: If the session was idle and the track failed to start.
        """
        return await self._call(_Op.ENQUEUE, track)

    async def skip(self) -> Track:
        """Drop the current track and return it."""
        return await self._call(_Op.SKIP)

    async def pause(self) -> None:
        await self._call(_Op.PAUSE)

    async def resume(self) -> None:
        await self._call(_Op.RESUME)

    async def leave(self) -> None:
        """Disconnect and close the session."""
        await self._call(_Op.LEAVE)

    async def now_playing(self) -> Track | None:
        return await self._call(_Op.NOW_PLAYING)

    async def snapshot(self) -> QueueSnapshot:
        return await self._call(_Op.QUEUE)

    def notify_dropped(self) -> None:
        """Tell the session its connection was lost."""
        self._notify(_Op.DROPPED)

    def notify_moved(self, channel_id: int) -> None:
        """Tell the session it was moved to another channel."""
        self._notify(_Op.MOVED, channel_id)

    def _after_callback(self, generation: int) -> TrackFinished:
        loop = self._loop
        assert loop is not None

        def after(error: Exception | None) -> None:
            if loop.is_closed():
                return
            with contextlib.suppress(RuntimeError):
                loop.call_soon_threadsafe(
                    self._inbox.put_nowait, _Request(_Op.FINISHED, (generation, error))
                )

        return after

    # ------------------------------------------------------------------
    # Actor loop
    # ------------------------------------------------------------------

    def _idle_deadline(self) -> float | None:
        if (
            self._idle_timeout
            and self._state is PlaybackState.IDLE
            and self._connection is not None
            and not self._queue
        ):
            return self._idle_timeout
        return None

    async def _run(self) -> None:
        log.debug("voice_session_started", guild_id=self.guild_id, channel_id=self.channel_id)
        try:
            while self._state is not PlaybackState.CLOSED:
                timeout = self._idle_deadline()
                try:
                    if timeout is None:
                        request = await self._inbox.get()
                    else:
                        request = await asyncio.wait_for(self._inbox.get(), timeout)
                except TimeoutError:
                    log.info("voice_session_idle_leave", guild_id=self.guild_id)
                    await self._teardown()
                    continue
                await self._handle(request)
        finally:
            if self._connection is not None:
                with contextlib.suppress(Exception):
                    await self._connection.disconnect()
                self._connection = None
            self._state = PlaybackState.CLOSED
            self._queue.clear()
            self._current = None
            while not self._inbox.empty():
                pending = self._inbox.get_nowait()
                if pending.reply is not None and not pending.reply.done():
                    pending.reply.set_exception(NoSessionError())
            log.debug("voice_session_closed", guild_id=self.guild_id)

    async def _handle(self, request: _Request) -> None:
        try:
            result = await self._apply(request)
        except Exception as e:
            if not isinstance(e, InvalidStateError | VoiceConnectionError | TrackLoadError):
                log.exception("voice_request_failed", guild_id=self.guild_id, op=request.op.value)
            if request.reply is not None and not request.reply.done():
                request.reply.set_exception(e)
            return
        if request.reply is not None and not request.reply.done():
            request.reply.set_result(result)

    async def _apply(self, request: _Request) -> Any:
        op = request.op
        if op is _Op.CONNECT:
            return await self._on_connect()
        if op is _Op.ENQUEUE:
            return await self._on_enqueue(request.payload)
        if op is _Op.SKIP:
            return await self._on_skip()
        if op is _Op.PAUSE:
            return self._on_pause()
        if op is _Op.RESUME:
            return self._on_resume()
        if op is _Op.LEAVE:
            return await self._teardown()
        if op is _Op.NOW_PLAYING:
            return self._current
        if op is _Op.QUEUE:
            return QueueSnapshot(self._state, self._current, tuple(self._queue))
        if op is _Op.FINISHED:
            generation, error = request.payload
            return await self._on_finished(generation, error)
        if op is _Op.DROPPED:
            return await self._on_dropped()
        if op is _Op.MOVED:
            self.channel_id = request.payload
            log.info("voice_session_moved", guild_id=self.guild_id, channel_id=self.channel_id)
            return None
        raise ValueError(f"Unknown voice op: {op}")

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    async def _connect_with_retries(self) -> bool:
        self._state = PlaybackState.CONNECTING
        for attempt in range(self._max_reconnect_attempts + 1):
            if attempt:
                await self._sleep(self._reconnect_base_delay * 2 ** (attempt - 1))
            try:
                async with asyncio.timeout(self._connect_timeout):
                    self._connection = await self._connector.connect(
                        self.guild_id, self.channel_id
                    )
            except Exception as e:
                log.warning(
                    "voice_connect_failed",
                    guild_id=self.guild_id,
                    channel_id=self.channel_id,
                    attempt=attempt + 1,
                    error=str(e) or type(e).__name__,
                )
                continue
            log.info("voice_connected", guild_id=self.guild_id, channel_id=self.channel_id)
            return True
        return False

    async def _on_connect(self) -> None:
        if self._connection is not None:
            return
        if self._state is not PlaybackState.IDLE:
            raise InvalidStateError()
        if not await self._connect_with_retries():
            self._state = PlaybackState.CLOSED
            raise VoiceConnectionError()
        self._state = PlaybackState.IDLE
        await self._play_next()

    async def _on_enqueue(self, track: Track) -> int:
        if self._state is PlaybackState.DISCONNECTING:
            raise InvalidStateError()
        self._queue.append(track)
        log.debug("voice_track_queued", guild_id=self.guild_id, source=track.source)
        if self._state is PlaybackState.IDLE and self._connection is not None:
            await self._play_next(report=False)
            if self._current is not track:
                raise TrackLoadError(f"Could not play `{track.display}`.")
            return 0
        return len(self._queue)

    async def _play_next(self, report: bool = True) -> None:
        """Start the next playable track, or go idle."""
        connection = self._connection
        while self._queue and connection is not None:
            track = self._queue.popleft()
            self._state = PlaybackState.LOADING
            self._generation += 1
            try:
                await connection.play(track, self._after_callback(self._generation))
            except Exception as e:
                log.warning(
                    "voice_track_start_failed",
                    guild_id=self.guild_id,
                    source=track.source,
                    error=str(e),
                )
                if report:
                    await self._report(f"Could not play `{track.display}`, skipping it.")
                continue
            self._current = track
            self._state = PlaybackState.PLAYING
            log.info("voice_track_started", guild_id=self.guild_id, source=track.source)
            return
        self._current = None
        self._state = PlaybackState.IDLE

    async def _on_skip(self) -> Track:
        if self._current is None or self._state not in (
            PlaybackState.PLAYING,
            PlaybackState.PAUSED,
        ):
            raise InvalidStateError("Nothing is playing.")
        skipped = self._current
        self._generation += 1
        if self._connection is not None:
            self._connection.stop()
        self._current = None
        await self._play_next()
        return skipped

    def _on_pause(self) -> None:
        if self._state is not PlaybackState.PLAYING or self._connection is None:
            raise InvalidStateError("Nothing is playing.")
        self._connection.pause()
        self._state = PlaybackState.PAUSED

    def _on_resume(self) -> None:
        if self._state is not PlaybackState.PAUSED or self._connection is None:
            raise InvalidStateError("Playback is not paused.")
        self._connection.resume()
        self._state = PlaybackState.PLAYING

    async def _on_finished(self, generation: int, error: Exception | None) -> None:
        if generation != self._generation or self._current is None:
            log.debug("voice_stale_callback", guild_id=self.guild_id, generation=generation)
            return
        if error is not None:
            log.warning("voice_track_error", guild_id=self.guild_id, error=str(error))
            await self._report(f"Playback of `{self._current.display}` failed.")
        self._current = None
        await self._play_next()

    async def _on_dropped(self) -> None:
        if self._state in (PlaybackState.DISCONNECTING, PlaybackState.CLOSED):
            return
        if self._state is PlaybackState.IDLE:
            log.info("voice_dropped_while_idle", guild_id=self.guild_id)
            await self._teardown()
            return

        interrupted = self._current
        was_paused = self._state is PlaybackState.PAUSED
        self._generation += 1
        self._current = None
        old, self._connection = self._connection, None
        if old is not None:
            with contextlib.suppress(Exception):
                await old.disconnect()

        log.info("voice_reconnecting", guild_id=self.guild_id)
        if not await self._connect_with_retries():
            await self._report("Lost the voice connection and could not reconnect.")
            self._state = PlaybackState.IDLE
            await self._teardown()
            return

        if interrupted is not None:
            self._queue.appendleft(interrupted)
        self._state = PlaybackState.IDLE
        await self._play_next()
        resumed = interrupted is not None and self._current is interrupted
        if was_paused and resumed and self._connection is not None:
            self._connection.pause()
            self._state = PlaybackState.PAUSED

    async def _teardown(self) -> None:
        if self._state is PlaybackState.CLOSED:
            return
        self._state = PlaybackState.DISCONNECTING
        self._generation += 1
        self._queue.clear()
        self._current = None
        connection, self._connection = self._connection, None
        if connection is not None:
            try:
                connection.stop()
                await connection.disconnect()
            except Exception as e:
                log.warning("voice_disconnect_failed", guild_id=self.guild_id, error=str(e))
        self._state = PlaybackState.CLOSED
        log.info("voice_session_left", guild_id=self.guild_id)

    async def _report(self, message: str) -> None:
        if self._reporter is None:
            return
        try:
            await self._reporter(message)
        except Exception:
            log.exception("voice_report_failed", guild_id=self.guild_id)
