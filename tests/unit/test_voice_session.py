"""Unit tests for the voice session actor."""

import asyncio
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from conftest import settle

from riveting_bot.errors import InvalidStateError
from riveting_bot.voice import (
    NoSessionError,
    PlaybackState,
    Track,
    TrackLoadError,
    VoiceConnectionError,
    VoiceSession,
)

GUILD = 100
CHANNEL = 400


def track(source, duration=None):
    return Track(source, requested_by=1, duration=duration)


@pytest.fixture
def reporter():
    return AsyncMock()


@pytest.fixture
def sleep():
    return AsyncMock()


@pytest_asyncio.fixture()
async def make_session(voice_connector, reporter, sleep):
    """Factory for started sessions; leftover session tasks are cancelled afterwards."""
    sessions = []

    def factory(**kwargs):
        kwargs.setdefault("reporter", reporter)
        kwargs.setdefault("sleep", sleep)
        session = VoiceSession(GUILD, CHANNEL, voice_connector, **kwargs)
        session.start()
        sessions.append(session)
        return session

    yield factory

    tasks = [s.task for s in sessions if s.task is not None and not s.task.done()]
    for task in tasks:
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)


@pytest_asyncio.fixture()
async def session(make_session):
    session = make_session()
    await session.connect()
    return session


async def finish_current(connection, error=None):
    """Fire the transport's track-finished callback and let the session see it."""
    connection.after(error)
    await settle()


class TestTrack:
    """Tests for Track display."""

    def test_display_prefers_title(self):
        assert Track("http://a", 1, title="Song").display == "Song"

    def test_display_with_duration(self):
        assert track("a.mp3", duration=125).display == "a.mp3 (2:05)"


class TestConnect:
    """Tests for connecting."""

    @pytest.mark.asyncio
    async def test_connect(self, make_session, voice_connector):
        session = make_session()
        await session.connect()

        assert session.state is PlaybackState.IDLE
        assert voice_connector.latest.channel_id == CHANNEL

    @pytest.mark.asyncio
    async def test_connect_is_idempotent(self, session, voice_connector):
        await session.connect()
        assert len(voice_connector.connections) == 1

    @pytest.mark.asyncio
    async def test_connect_retries_with_backoff(self, make_session, voice_connector, sleep):
        voice_connector.failures = 2
        session = make_session(max_reconnect_attempts=3, reconnect_base_delay=1.0)

        await session.connect()

        assert session.state is PlaybackState.IDLE
        assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_connect_gives_up_and_closes(self, make_session, voice_connector, sleep):
        voice_connector.failures = 10
        session = make_session(max_reconnect_attempts=3, reconnect_base_delay=0.5)

        with pytest.raises(VoiceConnectionError):
            await session.connect()
        await session.wait_closed()

        assert session.closed
        assert [c.args[0] for c in sleep.await_args_list] == [0.5, 1.0, 2.0]
        with pytest.raises(NoSessionError):
            await session.now_playing()

    @pytest.mark.asyncio
    async def test_connect_timeout_counts_as_failure(self, make_session, voice_connector):
        async def hang(guild_id, channel_id):
            await asyncio.sleep(10)

        voice_connector.connect = hang
        session = make_session(max_reconnect_attempts=0, connect_timeout=0.01)

        with pytest.raises(VoiceConnectionError):
            await session.connect()


class TestPlayback:
    """Tests for queueing and playback transitions."""

    @pytest.mark.asyncio
    async def test_enqueue_while_idle_starts_playing(self, session, voice_connector):
        position = await session.enqueue(track("a"))

        assert position == 0
        assert session.state is PlaybackState.PLAYING
        assert (await session.now_playing()).source == "a"
        assert voice_connector.latest.played == [track("a")]

    @pytest.mark.asyncio
    async def test_enqueue_while_playing_queues(self, session):
        await session.enqueue(track("a"))

        assert await session.enqueue(track("b")) == 1
        assert await session.enqueue(track("c")) == 2

        snapshot = await session.snapshot()
        assert snapshot.current.source == "a"
        assert [t.source for t in snapshot.upcoming] == ["b", "c"]

    @pytest.mark.asyncio
    async def test_enqueue_before_connect_waits_for_connection(self, make_session):
        session = make_session()

        assert await session.enqueue(track("a")) == 1
        assert session.state is PlaybackState.IDLE

        await session.connect()
        assert (await session.now_playing()).source == "a"

    @pytest.mark.asyncio
    async def test_track_finished_advances_queue(self, session, voice_connector):
        await session.enqueue(track("a"))
        await session.enqueue(track("b"))

        await finish_current(voice_connector.latest)

        assert (await session.now_playing()).source == "b"

    @pytest.mark.asyncio
    async def test_last_track_finished_goes_idle(self, session, voice_connector):
        await session.enqueue(track("a"))

        await finish_current(voice_connector.latest)

        snapshot = await session.snapshot()
        assert snapshot.state is PlaybackState.IDLE
        assert snapshot.current is None

    @pytest.mark.asyncio
    async def test_track_error_is_reported(self, session, voice_connector, reporter):
        await session.enqueue(track("a"))

        await finish_current(voice_connector.latest, RuntimeError("ffmpeg died"))
        await session.snapshot()

        reporter.assert_awaited_once_with("Playback of `a` failed.")

    @pytest.mark.asyncio
    async def test_unplayable_track_while_idle_raises(self, session, voice_connector, reporter):
        voice_connector.fail_sources.add("bad")

        with pytest.raises(TrackLoadError):
            await session.enqueue(track("bad"))

        assert session.state is PlaybackState.IDLE
        reporter.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unplayable_queued_track_is_skipped(self, session, voice_connector, reporter):
        voice_connector.fail_sources.add("bad")
        await session.enqueue(track("a"))
        await session.enqueue(track("bad"))
        await session.enqueue(track("c"))

        await finish_current(voice_connector.latest)

        assert (await session.now_playing()).source == "c"
        reporter.assert_awaited_once_with("Could not play `bad`, skipping it.")

    @pytest.mark.asyncio
    async def test_skip(self, session, voice_connector):
        await session.enqueue(track("a"))
        await session.enqueue(track("b"))

        skipped = await session.skip()

        assert skipped.source == "a"
        assert voice_connector.latest.stopped == 1
        assert (await session.now_playing()).source == "b"

    @pytest.mark.asyncio
    async def test_stale_callback_after_skip_is_ignored(self, session, voice_connector):
        await session.enqueue(track("a"))
        await session.enqueue(track("b"))
        await session.enqueue(track("c"))
        stale_after = voice_connector.latest.after

        await session.skip()
        stale_after(None)
        await settle()

        assert (await session.now_playing()).source == "b"

    @pytest.mark.asyncio
    async def test_skip_with_nothing_playing(self, session):
        with pytest.raises(InvalidStateError, match="Nothing is playing"):
            await session.skip()

    @pytest.mark.asyncio
    async def test_pause_and_resume(self, session, voice_connector):
        await session.enqueue(track("a"))

        await session.pause()
        assert session.state is PlaybackState.PAUSED
        assert voice_connector.latest.paused
        with pytest.raises(InvalidStateError):
            await session.pause()

        await session.resume()
        assert session.state is PlaybackState.PLAYING
        assert not voice_connector.latest.paused
        with pytest.raises(InvalidStateError):
            await session.resume()

    @pytest.mark.asyncio
    async def test_skip_while_paused(self, session):
        await session.enqueue(track("a"))
        await session.pause()

        assert (await session.skip()).source == "a"
        assert session.state is PlaybackState.IDLE


class TestLifecycle:
    """Tests for leaving, drops and idle timeouts."""

    @pytest.mark.asyncio
    async def test_leave_closes_and_disconnects(self, session, voice_connector):
        await session.enqueue(track("a"))
        await session.enqueue(track("b"))

        await session.leave()
        await session.wait_closed()

        assert session.closed
        assert voice_connector.latest.disconnected
        with pytest.raises(NoSessionError):
            await session.enqueue(track("c"))

    @pytest.mark.asyncio
    async def test_late_callback_after_leave_is_harmless(self, session, voice_connector):
        await session.enqueue(track("a"))
        after = voice_connector.latest.after

        await session.leave()
        await session.wait_closed()
        after(None)
        await settle()

        assert session.state is PlaybackState.CLOSED

    @pytest.mark.asyncio
    async def test_drop_while_playing_reconnects_and_resumes(self, session, voice_connector):
        await session.enqueue(track("a"))
        await session.enqueue(track("b"))
        first = voice_connector.latest

        session.notify_dropped()
        snapshot = await session.snapshot()

        assert len(voice_connector.connections) == 2
        assert first.disconnected
        assert snapshot.state is PlaybackState.PLAYING
        assert snapshot.current.source == "a"
        assert [t.source for t in snapshot.upcoming] == ["b"]
        assert voice_connector.latest.played == [track("a")]

    @pytest.mark.asyncio
    async def test_drop_while_paused_stays_paused(self, session, voice_connector):
        await session.enqueue(track("a"))
        await session.pause()

        session.notify_dropped()
        snapshot = await session.snapshot()

        assert len(voice_connector.connections) == 2
        assert snapshot.state is PlaybackState.PAUSED
        assert snapshot.current.source == "a"
        assert voice_connector.latest.played == [track("a")]
        assert voice_connector.latest.paused

        await session.resume()
        assert session.state is PlaybackState.PLAYING

    @pytest.mark.asyncio
    async def test_drop_callback_from_old_connection_is_ignored(self, session, voice_connector):
        await session.enqueue(track("a"))
        await session.enqueue(track("b"))
        old_after = voice_connector.latest.after

        session.notify_dropped()
        await session.snapshot()
        old_after(None)
        await settle()

        assert (await session.now_playing()).source == "a"

    @pytest.mark.asyncio
    async def test_drop_with_failed_reconnect_closes(
        self, make_session, voice_connector, reporter
    ):
        session = make_session(max_reconnect_attempts=1)
        await session.connect()
        await session.enqueue(track("a"))
        voice_connector.failures = 5

        session.notify_dropped()
        await session.wait_closed()

        assert session.closed
        reporter.assert_awaited_once_with("Lost the voice connection and could not reconnect.")

    @pytest.mark.asyncio
    async def test_drop_while_idle_closes(self, session):
        session.notify_dropped()
        await session.wait_closed()
        assert session.closed

    @pytest.mark.asyncio
    async def test_moved_updates_channel(self, session):
        session.notify_moved(401)
        await session.snapshot()
        assert session.channel_id == 401

    @pytest.mark.asyncio
    async def test_idle_timeout_leaves(self, make_session, voice_connector):
        session = make_session(idle_timeout=0.01)
        await session.connect()

        await asyncio.wait_for(session.wait_closed(), timeout=1.0)

        assert session.closed
        assert voice_connector.latest.disconnected

    @pytest.mark.asyncio
    async def test_idle_timeout_does_not_apply_while_playing(self, make_session):
        session = make_session(idle_timeout=0.01)
        await session.connect()
        await session.enqueue(track("a"))

        await asyncio.sleep(0.05)

        assert not session.closed
        assert session.state is PlaybackState.PLAYING
