"""Discord client that feeds the event router."""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import AsyncIterator

import discord
import httpx

from riveting_bot.commands.builtin import create_commands
from riveting_bot.commands.dispatch import Dispatcher, Services
from riveting_bot.config import Feature, Settings
from riveting_bot.discord import translate
from riveting_bot.discord.rest import DiscordChatApi
from riveting_bot.discord.voice import DiscordVoiceConnector
from riveting_bot.events import Event
from riveting_bot.guild_config import GuildConfigStore
from riveting_bot.logging import get_logger
from riveting_bot.moderation import BulkDeleteExecutor
from riveting_bot.permissions import PermissionGate
from riveting_bot.router import EventRouter
from riveting_bot.standby import StandbyCollector
from riveting_bot.voice import VoiceManager

log = get_logger("riveting_bot.discord.bot")


def build_intents(features: frozenset[Feature]) -> discord.Intents:
    """Gateway intents for the enabled features."""
    if Feature.ALL_INTENTS in features:
        return discord.Intents.all()
    intents = discord.Intents.default()
    intents.message_content = True
    intents.voice_states = True
    return intents


class RivetingBot(discord.Client):
    """Translates gateway events and runs the router as a background task."""

    def __init__(self, settings: Settings) -> None:
        """Initialize the bot.

        Args:
            settings: Application settings.
        """
        features = settings.features
        super().__init__(intents=build_intents(features))

        self._settings = settings
        self._events: asyncio.Queue[Event] = asyncio.Queue()
        self._router_task: asyncio.Task[None] | None = None
        self._closing = False

        api = DiscordChatApi(self)
        self.services = Services(
            api=api,
            settings=settings,
            registry=create_commands(),
            gate=PermissionGate(settings.owner_user_ids),
            standby=StandbyCollector(default_timeout=settings.standby_timeout_seconds),
            guild_config=GuildConfigStore(settings.data_path, settings.command_prefix),
            shutdown=asyncio.Event(),
            voice=(
                VoiceManager.from_settings(
                    DiscordVoiceConnector(self, timeout=settings.voice_connect_timeout), settings
                )
                if Feature.VOICE in features
                else None
            ),
            bulk_delete=(
                BulkDeleteExecutor(
                    api,
                    batch_size=settings.bulk_delete_batch_size,
                    max_age_days=settings.bulk_delete_max_age_days,
                )
                if Feature.BULK_DELETE in features
                else None
            ),
        )
        self.router = EventRouter(
            Dispatcher(self.services),
            guild_whitelist=settings.guild_whitelist,
            botdev_channel_id=settings.botdev_channel_id,
            shutdown_grace=settings.shutdown_grace_seconds,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def setup_hook(self) -> None:
        """Discover the application owners and start the router."""
        self.services.http = httpx.AsyncClient(timeout=10.0)

        try:
            app = await self.application_info()
        except discord.HTTPException as e:
            log.warning("application_info_failed", error=str(e))
        else:
            owners = {app.owner.id}
            if app.team is not None:
                owners |= {member.id for member in app.team.members}
            self.services.gate = self.services.gate.with_owners(owners)
            log.info("owners_resolved", count=len(self.services.gate.owner_ids))

        self._router_task = asyncio.create_task(self._run_router(), name="event-router")
        log.info("router_task_started")

    async def _event_stream(self) -> AsyncIterator[Event]:
        while True:
            yield await self._events.get()

    async def _run_router(self) -> None:
        try:
            await self.router.run(self._event_stream())
        except Exception:
            log.exception("router_crashed")
        if not self._closing:
            await self.close()

    async def close(self) -> None:
        """Stop the router, release voice and HTTP resources, then disconnect."""
        if self._closing:
            return
        self._closing = True
        self.router.request_shutdown()

        task = self._router_task
        if task is not None and not task.done() and task is not asyncio.current_task():
            try:
                await asyncio.wait_for(
                    asyncio.shield(task), timeout=self._settings.shutdown_grace_seconds + 5
                )
            except TimeoutError:
                log.warning("router_stop_timed_out")
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task

        if self.services.http is not None:
            await self.services.http.aclose()
            self.services.http = None

        log.info("bot_closing")
        await super().close()

    def push(self, event: Event | None) -> None:
        """Hand an event to the router."""
        if event is not None and not self._closing:
            self._events.put_nowait(event)

    # ------------------------------------------------------------------
    # Gateway events
    # ------------------------------------------------------------------

    async def on_ready(self) -> None:
        """Called when the bot is fully ready."""
        log.info("bot_ready", user=str(self.user), guilds=len(self.guilds))
        if self.user is not None:
            self.push(translate.ready(self.user))

    async def on_guild_available(self, guild: discord.Guild) -> None:
        self.push(translate.guild_create(guild))

    async def on_guild_join(self, guild: discord.Guild) -> None:
        self.push(translate.guild_create(guild))

    async def on_guild_update(self, before: discord.Guild, after: discord.Guild) -> None:
        self.push(translate.guild_update(after))

    async def on_guild_role_update(self, before: discord.Role, after: discord.Role) -> None:
        self.push(translate.guild_update(after.guild))

    async def on_message(self, message: discord.Message) -> None:
        self.push(translate.message_create(message))

    async def on_raw_message_delete(self, payload: discord.RawMessageDeleteEvent) -> None:
        self.push(translate.message_delete(payload))

    async def on_raw_bulk_message_delete(
        self, payload: discord.RawBulkMessageDeleteEvent
    ) -> None:
        self.push(translate.message_delete_bulk(payload))

    async def on_raw_reaction_add(self, payload: discord.RawReactionActionEvent) -> None:
        self.push(translate.reaction(payload))

    async def on_raw_reaction_remove(self, payload: discord.RawReactionActionEvent) -> None:
        self.push(translate.reaction(payload))

    async def on_interaction(self, interaction: discord.Interaction) -> None:
        self.push(translate.interaction_create(interaction))

    async def on_voice_state_update(
        self,
        member: discord.Member,
        before: discord.VoiceState,
        after: discord.VoiceState,
    ) -> None:
        self.push(translate.voice_state(member, after))
