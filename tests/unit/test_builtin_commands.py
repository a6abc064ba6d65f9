"""Unit tests for the built-in commands."""

import asyncio
import json
import time
from datetime import UTC, datetime, timedelta
from unittest.mock import patch

import httpx
import pytest
import pytest_asyncio
from conftest import ADMIN_ID, CHANNEL_ID, GUILD_ID, USER_ID, VOICE_CHANNEL_ID

from riveting_bot import __version__
from riveting_bot.commands.builtin.user import format_joke
from riveting_bot.commands.dispatch import Invocation, Outcome
from riveting_bot.constants import CANCEL_EMOJI, CONFIRM_EMOJI
from riveting_bot.errors import BotError
from riveting_bot.events import ReactionAdd
from riveting_bot.guild_config import GuildConfigStore
from riveting_bot.moderation import BulkDeleteExecutor
from riveting_bot.moderation.bulk_delete import snowflake_from_timestamp_ms
from riveting_bot.voice import VoiceManager

PROMPT_ID = 5000


async def run(dispatcher, text, actor, guild, *, message_id=42):
    return await dispatcher.dispatch(
        Invocation.from_text(text, "!"),
        actor=actor,
        guild=guild,
        channel_id=CHANNEL_ID,
        guild_id=GUILD_ID,
        message_id=message_id,
    )


def reply(result):
    """Text the user sees for a dispatch result."""
    if result.outcome is Outcome.SUCCESS:
        return result.response.content
    return result.message


class TestMetaCommands:
    """Tests for ping, about and help."""

    @pytest.mark.asyncio
    async def test_about(self, dispatcher, user_actor, guild):
        text = reply(await run(dispatcher, "about", user_actor, guild))

        assert text.startswith("I am a RivetingBot!")
        assert f"`{__version__}`" in text
        assert "`!help`" in text

    @pytest.mark.asyncio
    async def test_help_lists_visible_commands(self, dispatcher, user_actor, guild):
        text = reply(await run(dispatcher, "help", user_actor, guild))

        assert text.startswith("```yaml\nPrefix: '/' or '!'")
        assert "  ping: Ping the bot." in text
        assert "mute" not in text
        assert "shutdown" not in text

    @pytest.mark.asyncio
    async def test_help_for_admin_includes_admin_commands(self, dispatcher, admin_actor, guild):
        text = reply(await run(dispatcher, "help", admin_actor, guild))

        assert "  mute: Time out a member." in text
        assert "shutdown" not in text

    @pytest.mark.asyncio
    async def test_help_for_one_command(self, dispatcher, user_actor, guild):
        text = reply(await run(dispatcher, "help voice", user_actor, guild))

        assert text.splitlines()[0] == "`!voice <join|leave|play|skip|pause|resume|queue>`"
        assert "- `!voice play <source...>`: Play or queue audio." in text

    @pytest.mark.asyncio
    async def test_help_for_unknown_command(self, dispatcher, user_actor, guild):
        text = reply(await run(dispatcher, "help nope", user_actor, guild))
        assert text == "Command `nope` not found :|"


class TestUserCommands:
    """Tests for coinflip and joke."""

    @pytest.mark.asyncio
    async def test_coinflip(self, dispatcher, user_actor, guild):
        with patch("riveting_bot.commands.builtin.user.random.random", return_value=0.1):
            heads = reply(await run(dispatcher, "coinflip", user_actor, guild))
        with patch("riveting_bot.commands.builtin.user.random.random", return_value=0.9):
            tails = reply(await run(dispatcher, "coinflip", user_actor, guild))

        assert heads == ":coin: Heads"
        assert tails == "Tails :coin:"

    def test_format_single_joke(self):
        assert format_joke({"type": "single", "joke": "A joke."}) == "A joke."

    def test_format_twopart_joke(self):
        payload = {"type": "twopart", "setup": "Why?", "delivery": "Because."}
        assert format_joke(payload) == "> Why?\n> Because."

    def test_format_broken_joke(self):
        with pytest.raises(BotError):
            format_joke({"type": "twopart", "setup": "Why?"})

    @pytest.mark.asyncio
    async def test_joke_over_http(self, dispatcher, services, user_actor, guild):
        def handler(request):
            assert str(request.url) == services.settings.joke_api_url
            return httpx.Response(200, json={"type": "single", "joke": "Funny."})

        services.http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        try:
            text = reply(await run(dispatcher, "joke", user_actor, guild))
        finally:
            await services.http.aclose()

        assert text == "Funny."

    @pytest.mark.asyncio
    async def test_joke_api_failure(self, dispatcher, services, user_actor, guild):
        services.http = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: httpx.Response(503))
        )
        try:
            result = await run(dispatcher, "joke", user_actor, guild)
        finally:
            await services.http.aclose()

        assert result.outcome is Outcome.FAILED
        assert result.message == "Could not fetch a joke right now."


class TestDeleteCommand:
    """Tests for the confirmed bulk delete command."""

    @pytest.fixture
    def now_id(self):
        return snowflake_from_timestamp_ms(int(time.time() * 1000))

    @pytest.fixture
    def executor(self, services, mock_api, now_id):
        recent = snowflake_from_timestamp_ms(int(time.time() * 1000) - 60_000)
        mock_api.fetch_message_ids.return_value = [recent + 2, recent + 1, recent]
        services.bulk_delete = BulkDeleteExecutor(mock_api)
        return services.bulk_delete

    async def start_delete(self, dispatcher, services, actor, guild, now_id, count=3):
        task = asyncio.create_task(
            run(dispatcher, f"delete {count}", actor, guild, message_id=now_id)
        )
        for _ in range(100):
            if services.standby.pending or task.done():
                break
            await asyncio.sleep(0)
        return task

    @pytest.mark.asyncio
    async def test_confirmed_delete(
        self, dispatcher, services, mock_api, executor, admin_actor, guild, now_id
    ):
        task = await self.start_delete(dispatcher, services, admin_actor, guild, now_id)

        services.standby.process(
            ReactionAdd(message_id=PROMPT_ID, user_id=ADMIN_ID, emoji=CONFIRM_EMOJI)
        )
        result = await task

        assert reply(result) == "Deleted 3 messages."
        mock_api.add_reaction.assert_any_await(CHANNEL_ID, PROMPT_ID, CONFIRM_EMOJI)
        mock_api.add_reaction.assert_any_await(CHANNEL_ID, PROMPT_ID, CANCEL_EMOJI)
        mock_api.delete_message.assert_awaited_once_with(CHANNEL_ID, PROMPT_ID)
        mock_api.fetch_message_ids.assert_awaited_once_with(
            CHANNEL_ID, limit=3, before=now_id, after=None
        )
        mock_api.delete_messages.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_confirmation_before_reactions_are_added(
        self, dispatcher, services, mock_api, executor, admin_actor, guild, now_id
    ):
        """A confirmation that arrives while the bot is still reacting counts."""

        async def react(channel_id, message_id, emoji):
            if emoji == CONFIRM_EMOJI:
                services.standby.process(
                    ReactionAdd(message_id=PROMPT_ID, user_id=ADMIN_ID, emoji=CONFIRM_EMOJI)
                )

        mock_api.add_reaction.side_effect = react

        result = await run(dispatcher, "delete 3", admin_actor, guild, message_id=now_id)

        assert reply(result) == "Deleted 3 messages."
        mock_api.delete_messages.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_reactions_from_others_do_not_confirm(
        self, dispatcher, services, mock_api, executor, admin_actor, guild, now_id
    ):
        task = await self.start_delete(dispatcher, services, admin_actor, guild, now_id)

        services.standby.process(
            ReactionAdd(message_id=PROMPT_ID, user_id=USER_ID, emoji=CONFIRM_EMOJI)
        )
        services.standby.process(
            ReactionAdd(message_id=PROMPT_ID, user_id=ADMIN_ID, emoji=CANCEL_EMOJI)
        )

        assert reply(await task) == "Cancelled."
        mock_api.delete_messages.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_no_confirmation(
        self, dispatcher, services, mock_api, executor, admin_actor, guild, now_id
    ):
        services.settings.standby_timeout_seconds = 0.01

        result = await run(dispatcher, "delete 3", admin_actor, guild, message_id=now_id)

        assert reply(result) == "No confirmation, nothing was deleted."
        mock_api.delete_message.assert_awaited_once_with(CHANNEL_ID, PROMPT_ID)
        mock_api.delete_messages.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_count_limits(self, dispatcher, executor, admin_actor, guild):
        result = await run(dispatcher, "delete 0", admin_actor, guild)
        assert result.outcome is Outcome.FAILED
        assert result.message == "Count must be between 1 and 1000."


class TestMuteCommand:
    """Tests for mute."""

    @pytest.mark.asyncio
    async def test_mute(self, dispatcher, mock_api, admin_actor, guild):
        before = datetime.now(UTC)

        result = await run(dispatcher, "mute <@55> 10", admin_actor, guild)

        assert reply(result) == "Muted <@55> for 10 minute(s)."
        args = mock_api.timeout_member.await_args
        assert args.args[:2] == (GUILD_ID, 55)
        until = args.args[2]
        assert before + timedelta(minutes=10) <= until <= datetime.now(UTC) + timedelta(
            minutes=10
        )
        assert args.kwargs["reason"] == "Muted by admin"

    @pytest.mark.asyncio
    async def test_mute_defaults_to_one_minute(self, dispatcher, admin_actor, guild):
        result = await run(dispatcher, "mute 55", admin_actor, guild)
        assert reply(result) == "Muted <@55> for 1 minute(s)."

    @pytest.mark.asyncio
    async def test_mute_limits(self, dispatcher, mock_api, admin_actor, guild):
        result = await run(dispatcher, "mute 55 0", admin_actor, guild)

        assert result.outcome is Outcome.FAILED
        mock_api.timeout_member.assert_not_awaited()


class TestVoiceCommands:
    """Tests for the voice command group."""

    @pytest_asyncio.fixture()
    async def voice(self, services, voice_connector):
        services.voice = VoiceManager(voice_connector, max_reconnect_attempts=0)
        yield services.voice
        await services.voice.shutdown()

    @pytest.mark.asyncio
    async def test_join_users_channel(self, dispatcher, services, voice, user_actor, guild):
        services.member_voice[(GUILD_ID, USER_ID)] = VOICE_CHANNEL_ID

        result = await run(dispatcher, "voice join", user_actor, guild)

        assert reply(result) == f"Joined <#{VOICE_CHANNEL_ID}>."
        assert voice.get(GUILD_ID).channel_id == VOICE_CHANNEL_ID

    @pytest.mark.asyncio
    async def test_join_named_channel(self, dispatcher, voice, user_actor, guild):
        result = await run(dispatcher, "voice join <#401>", user_actor, guild)
        assert reply(result) == "Joined <#401>."

    @pytest.mark.asyncio
    async def test_join_without_channel(self, dispatcher, voice, user_actor, guild):
        result = await run(dispatcher, "voice join", user_actor, guild)
        assert result.message == "Join a voice channel first, or tell me which one to join."

    @pytest.mark.asyncio
    async def test_play_queue_skip_leave(self, dispatcher, services, voice, user_actor, guild):
        services.member_voice[(GUILD_ID, USER_ID)] = VOICE_CHANNEL_ID

        first = await run(dispatcher, "voice play http://a/one.mp3", user_actor, guild)
        second = await run(dispatcher, "voice play http://a/two.mp3", user_actor, guild)
        queue = await run(dispatcher, "voice queue", user_actor, guild)
        paused = await run(dispatcher, "voice pause", user_actor, guild)
        skipped = await run(dispatcher, "voice skip", user_actor, guild)
        left = await run(dispatcher, "voice leave", user_actor, guild)
        again = await run(dispatcher, "voice leave", user_actor, guild)

        assert reply(first) == "Now playing `http://a/one.mp3`."
        assert reply(second) == "Queued `http://a/two.mp3` at position 1."
        assert reply(queue) == "Now playing: `http://a/one.mp3`\n1. `http://a/two.mp3`"
        assert reply(paused) == "Paused."
        assert reply(skipped) == "Skipped `http://a/one.mp3`."
        assert reply(left) == "Bye!"
        assert reply(again) == "I am not in a voice channel."

    @pytest.mark.asyncio
    async def test_commands_without_session(self, dispatcher, voice, user_actor, guild):
        result = await run(dispatcher, "voice skip", user_actor, guild)

        assert result.outcome is Outcome.FAILED
        assert result.message == "I am not in a voice channel."

    @pytest.mark.asyncio
    async def test_empty_queue(self, dispatcher, services, voice, user_actor, guild):
        services.member_voice[(GUILD_ID, USER_ID)] = VOICE_CHANNEL_ID
        await run(dispatcher, "voice join", user_actor, guild)

        result = await run(dispatcher, "voice queue", user_actor, guild)
        assert reply(result) == "The queue is empty."

    @pytest.mark.asyncio
    async def test_voice_not_configured(self, dispatcher, user_actor, guild):
        result = await run(dispatcher, "voice join <#401>", user_actor, guild)
        assert result.message == "Voice is not available on this bot."


class TestAdminCommands:
    """Tests for prefix, alias and reaction role commands."""

    @pytest.mark.asyncio
    async def test_change_prefix_is_persisted(
        self, dispatcher, services, settings, admin_actor, guild
    ):
        result = await run(dispatcher, "bot prefix ?", admin_actor, guild)

        assert reply(result) == "Prefix changed from `!` to `?`."
        fresh = GuildConfigStore(settings.data_path)
        assert fresh.prefix_for(GUILD_ID) == "?"

    @pytest.mark.asyncio
    async def test_prefix_too_long(self, dispatcher, admin_actor, guild):
        result = await run(dispatcher, "bot prefix waytoolong", admin_actor, guild)
        assert result.outcome is Outcome.FAILED

    @pytest.mark.asyncio
    async def test_alias_lifecycle(self, dispatcher, services, admin_actor, guild):
        added = await run(dispatcher, "bot alias add Hi voice play song.mp3", admin_actor, guild)
        changed = await run(dispatcher, "bot alias add hi ping", admin_actor, guild)
        listed = await run(dispatcher, "bot alias list", admin_actor, guild)
        removed = await run(dispatcher, "bot alias remove hi", admin_actor, guild)
        missing = await run(dispatcher, "bot alias remove hi", admin_actor, guild)

        assert reply(added) == "Alias `hi` added for `voice play song.mp3`."
        assert reply(changed) == "Alias `hi` changed from `voice play song.mp3` to `ping`."
        assert reply(listed) == "`hi` -> `ping`"
        assert reply(removed) == "Alias `hi` removed."
        assert missing.message == "No alias named `hi`."
        assert services.guild_config.alias_for(GUILD_ID, "hi") is None

    @pytest.mark.asyncio
    async def test_alias_cannot_shadow_command(self, dispatcher, admin_actor, guild):
        result = await run(dispatcher, "bot alias add ping about", admin_actor, guild)
        assert result.message == "`ping` is already a command."

    @pytest.mark.asyncio
    async def test_alias_target_must_be_command(self, dispatcher, admin_actor, guild):
        result = await run(dispatcher, "bot alias add x dance now", admin_actor, guild)
        assert result.message == "`dance` is not a command."

    @pytest.mark.asyncio
    async def test_reaction_roles_lifecycle(
        self, dispatcher, services, settings, mock_api, admin_actor, guild
    ):
        added = await run(dispatcher, "roles add 555 👍 <@&11>", admin_actor, guild)
        listed = await run(dispatcher, "roles list", admin_actor, guild)

        assert reply(added) == "Reacting with 👍 now grants <@&11>."
        mock_api.add_reaction.assert_awaited_once_with(CHANNEL_ID, 555, "👍")
        assert reply(listed) == f"<#{CHANNEL_ID}> `555`: 👍 <@&11>"

        guild_file = settings.data_path / "guilds" / f"{GUILD_ID}.json"
        saved = json.loads(guild_file.read_text(encoding="utf-8"))
        assert saved["reaction_roles"] == {f"{CHANNEL_ID}:555": [{"emoji": "👍", "role_id": 11}]}

        removed = await run(dispatcher, "roles remove 555", admin_actor, guild)
        again = await run(dispatcher, "roles remove 555", admin_actor, guild)

        assert reply(removed) == "Reaction roles removed."
        assert again.outcome is Outcome.FAILED

    @pytest.mark.asyncio
    async def test_same_emoji_replaces_role(self, dispatcher, services, admin_actor, guild):
        await run(dispatcher, "roles add 555 👍 11", admin_actor, guild)
        await run(dispatcher, "roles add 555 👍 12", admin_actor, guild)

        roles = services.guild_config.reaction_roles_for(GUILD_ID, CHANNEL_ID, 555)
        assert [r.role_id for r in roles] == [12]


class TestOwnerCommands:
    """Tests for shutdown."""

    @pytest.mark.asyncio
    async def test_shutdown_sets_event(self, dispatcher, services, mock_api, owner_actor, guild):
        result = await run(dispatcher, "shutdown", owner_actor, guild)

        assert result.outcome is Outcome.SUCCESS
        assert services.shutdown.is_set()
        mock_api.send_message.assert_awaited_once_with(
            CHANNEL_ID, "Shutting down...", reply_to=42
        )
