"""Pytest fixtures for Riveting Bot tests."""

import asyncio
import os
from unittest.mock import AsyncMock

import pytest

OWNER_ID = 1
GUILD_OWNER_ID = 2
ADMIN_ID = 3
USER_ID = 4
BOT_USER_ID = 999

GUILD_ID = 100
ADMIN_ROLE_ID = 200
CHANNEL_ID = 300
VOICE_CHANNEL_ID = 400


@pytest.fixture(scope="session", autouse=True)
def setup_test_environment():
    """Set up test environment variables before any imports.

    Ensures that Settings can be created without a real token.
    """
    os.environ.setdefault("DISCORD_TOKEN", "test-discord-token-placeholder")

    from riveting_bot.config import get_settings

    get_settings.cache_clear()

    yield

    get_settings.cache_clear()


@pytest.fixture
def settings(tmp_path):
    """Settings with every feature enabled and short timeouts."""
    from riveting_bot.config import Settings

    return Settings(
        _env_file=None,
        discord_token="test-discord-token",
        features_str="full",
        data_directory=str(tmp_path / "data"),
        log_to_file=False,
        command_timeout_seconds=5.0,
        standby_timeout_seconds=1.0,
        shutdown_grace_seconds=0.5,
    )


@pytest.fixture
def mock_api():
    """ChatApi mock; sent messages get ID 5000."""
    from riveting_bot.api import ChatApi

    api = AsyncMock(spec=ChatApi)
    api.send_message.return_value = 5000
    api.fetch_message_ids.return_value = []
    return api


@pytest.fixture
def services(settings, mock_api):
    """Services wired with the built-in commands and an in-memory data dir."""
    from riveting_bot.commands.builtin import create_commands
    from riveting_bot.commands.dispatch import Services
    from riveting_bot.guild_config import GuildConfigStore
    from riveting_bot.permissions import PermissionGate
    from riveting_bot.standby import StandbyCollector

    return Services(
        api=mock_api,
        settings=settings,
        registry=create_commands(),
        gate=PermissionGate([OWNER_ID]),
        standby=StandbyCollector(default_timeout=settings.standby_timeout_seconds),
        guild_config=GuildConfigStore(settings.data_path, settings.command_prefix),
        shutdown=asyncio.Event(),
    )


@pytest.fixture
def dispatcher(services):
    from riveting_bot.commands.dispatch import Dispatcher

    return Dispatcher(services)


@pytest.fixture
def guild():
    """Guild owned by GUILD_OWNER_ID with one administrative role."""
    from riveting_bot.events import GuildContext

    return GuildContext(
        guild_id=GUILD_ID,
        owner_id=GUILD_OWNER_ID,
        admin_role_ids=frozenset({ADMIN_ROLE_ID}),
    )


@pytest.fixture
def user_actor():
    from riveting_bot.events import Actor

    return Actor(id=USER_ID, name="user")


@pytest.fixture
def admin_actor():
    from riveting_bot.events import Actor

    return Actor(id=ADMIN_ID, name="admin", role_ids=frozenset({ADMIN_ROLE_ID}))


@pytest.fixture
def owner_actor():
    from riveting_bot.events import Actor

    return Actor(id=OWNER_ID, name="owner")


# ---------------------------------------------------------------------------
# Voice transport fakes
# ---------------------------------------------------------------------------


class FakeVoiceConnection:
    """In-memory voice connection that records what it was asked to do."""

    def __init__(self, channel_id, fail_sources):
        self.channel_id = channel_id
        self.fail_sources = fail_sources
        self.played = []
        self.after = None
        self.paused = False
        self.stopped = 0
        self.disconnected = False

    def is_connected(self):
        return not self.disconnected

    async def play(self, track, after):
        if track.source in self.fail_sources:
            raise RuntimeError(f"cannot load {track.source}")
        self.played.append(track)
        self.after = after

    def pause(self):
        self.paused = True

    def resume(self):
        self.paused = False

    def stop(self):
        self.stopped += 1

    async def disconnect(self):
        self.disconnected = True


class FakeVoiceConnector:
    """Connector that fails the next ``failures`` connects."""

    def __init__(self):
        self.connections = []
        self.failures = 0
        self.fail_sources = set()

    async def connect(self, guild_id, channel_id):
        if self.failures:
            self.failures -= 1
            raise ConnectionError("voice gateway unavailable")
        connection = FakeVoiceConnection(channel_id, self.fail_sources)
        self.connections.append(connection)
        return connection

    @property
    def latest(self):
        return self.connections[-1]


@pytest.fixture
def voice_connector():
    return FakeVoiceConnector()


async def settle():
    """Let callbacks scheduled with call_soon run."""
    await asyncio.sleep(0)
