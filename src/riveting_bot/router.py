"""Event router: the bot's main loop.

Events are consumed in arrival order. For each event the router updates its
small cache and resolves standby waiters synchronously, then hands the rest of
the work to a tracked task so a slow command never stalls ingestion.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import AsyncIterable, Iterable

from riveting_bot.commands.dispatch import (
    Dispatcher,
    DispatchResult,
    Invocation,
    Outcome,
    ResponseKind,
)
from riveting_bot.commands.parser import split_once_whitespace, unprefix_with
from riveting_bot.constants import MAX_MESSAGE_LENGTH
from riveting_bot.events import (
    Event,
    GuildContext,
    GuildCreate,
    GuildUpdate,
    InteractionCreate,
    MessageCreate,
    MessageDelete,
    MessageDeleteBulk,
    ReactionAdd,
    ReactionRemove,
    Ready,
    VoiceStateUpdate,
)
from riveting_bot.logging import event_context, get_logger
from riveting_bot.utils import split_text_chunks

log = get_logger("riveting_bot.router")


def mention_hint(prefix: str) -> str:
    return (
        f"Try `/about` or `{prefix}about` for general info, or `/help` or "
        f"`{prefix}help` for commands."
    )


class EventRouter:
    """Routes inbound events to commands, standby waiters and handlers."""

    def __init__(
        self,
        dispatcher: Dispatcher,
        *,
        guild_whitelist: Iterable[int] | None = None,
        botdev_channel_id: int | None = None,
        shutdown_grace: float = 10.0,
    ) -> None:
        self._dispatcher = dispatcher
        self._services = dispatcher.services
        self._whitelist = frozenset(guild_whitelist) if guild_whitelist is not None else None
        self._botdev_channel_id = botdev_channel_id
        self._shutdown_grace = shutdown_grace

        self._guilds: dict[int, GuildContext] = {}
        self._bot_user_id: int | None = None
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def bot_user_id(self) -> int | None:
        return self._bot_user_id

    @property
    def in_flight(self) -> int:
        """Number of event handling tasks still running."""
        return len(self._tasks)

    def guild_context(self, guild_id: int | None) -> GuildContext | None:
        """Cached guild data; a bare context for guilds not seen yet."""
        if guild_id is None:
            return None
        return self._guilds.get(guild_id) or GuildContext(guild_id)

    def request_shutdown(self) -> None:
        """Ask :meth:`run` to stop."""
        self._services.shutdown.set()

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------

    async def run(self, events: AsyncIterable[Event]) -> None:
        """Consume ``events`` until the stream ends or shutdown is requested."""
        shutdown = self._services.shutdown
        iterator = aiter(events)
        shutdown_wait = asyncio.create_task(shutdown.wait())
        log.info("router_started")
        try:
            while not shutdown.is_set():
                next_event = asyncio.ensure_future(anext(iterator))
                done, _ = await asyncio.wait(
                    {next_event, shutdown_wait}, return_when=asyncio.FIRST_COMPLETED
                )
                if next_event not in done:
                    next_event.cancel()
                    with contextlib.suppress(asyncio.CancelledError, StopAsyncIteration):
                        await next_event
                    break
                try:
                    event = next_event.result()
                except StopAsyncIteration:
                    log.info("event_stream_ended")
                    break
                self.submit(event)
        finally:
            shutdown_wait.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await shutdown_wait
            await self._shutdown()

    def submit(self, event: Event) -> asyncio.Task[None]:
        """Route one event.

        Cache updates and standby resolution happen before this returns, so
        they observe events in arrival order.
        """
        self._update_cache(event)
        self._services.standby.process(event)
        task = asyncio.create_task(self._handle(event), name=f"event-{event.kind.value}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        """Wait for every in-flight event task."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _shutdown(self) -> None:
        log.info("router_shutting_down", in_flight=len(self._tasks))
        if self._tasks:
            _, pending = await asyncio.wait(set(self._tasks), timeout=self._shutdown_grace)
            for task in pending:
                task.cancel()
            if pending:
                log.warning("router_cancelled_tasks", count=len(pending))
                await asyncio.gather(*pending, return_exceptions=True)
        self._services.standby.cancel_all()
        if self._services.voice is not None:
            await self._services.voice.shutdown()
        log.info("router_stopped")

    def _update_cache(self, event: Event) -> None:
        if isinstance(event, Ready):
            self._bot_user_id = event.user_id
        elif isinstance(event, GuildCreate | GuildUpdate):
            self._guilds[event.guild.guild_id] = event.guild
        elif isinstance(event, VoiceStateUpdate):
            key = (event.guild_id, event.user_id)
            if event.channel_id is None:
                self._services.member_voice.pop(key, None)
            else:
                self._services.member_voice[key] = event.channel_id

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    async def _handle(self, event: Event) -> None:
        guild_id = getattr(event, "guild_id", None)
        with event_context(event_kind=event.kind.value, guild_id=guild_id):
            await self._route(event)

    async def _route(self, event: Event) -> None:
        try:
            if isinstance(event, Ready):
                await self._on_ready(event)
            elif isinstance(event, GuildCreate):
                await self._on_guild_create(event)
            elif isinstance(event, MessageCreate):
                await self._on_message(event)
            elif isinstance(event, MessageDelete):
                self._forget_reaction_roles(event.guild_id, event.channel_id, [event.message_id])
            elif isinstance(event, MessageDeleteBulk):
                self._forget_reaction_roles(
                    event.guild_id, event.channel_id, list(event.message_ids)
                )
            elif isinstance(event, ReactionAdd | ReactionRemove):
                await self._on_reaction(event)
            elif isinstance(event, InteractionCreate):
                await self._on_interaction(event)
            elif isinstance(event, VoiceStateUpdate):
                if self._services.voice is not None:
                    self._services.voice.handle_voice_state(event, self._bot_user_id)
            else:
                log.debug("event_ignored")
        except Exception as e:
            log.exception("event_handler_failed")
            await self._report_error(f"event {event.kind.value}", e)

    async def _on_ready(self, event: Ready) -> None:
        log.info("bot_ready", user_id=event.user_id, user_name=event.user_name)
        payload = self._services.registry.application_commands()
        await self._services.api.register_commands(payload)
        log.info("application_commands_registered", count=len(payload))

    async def _on_guild_create(self, event: GuildCreate) -> None:
        guild_id = event.guild.guild_id
        if self._whitelist is None or guild_id in self._whitelist:
            log.info("guild_available", guild_id=guild_id, name=event.name)
            return
        log.warning("guild_not_whitelisted", guild_id=guild_id, name=event.name)
        await self._services.api.leave_guild(guild_id)

    def _forget_reaction_roles(
        self, guild_id: int | None, channel_id: int, message_ids: list[int]
    ) -> None:
        if guild_id is None:
            return
        removed = self._services.guild_config.remove_reaction_roles(
            guild_id, channel_id, message_ids
        )
        if removed:
            log.info("reaction_roles_removed", guild_id=guild_id, count=removed)

    async def _on_reaction(self, event: ReactionAdd | ReactionRemove) -> None:
        if event.guild_id is None or event.user_is_bot or event.user_id == self._bot_user_id:
            return
        roles = self._services.guild_config.reaction_roles_for(
            event.guild_id, event.channel_id, event.message_id
        )
        role_ids = [r.role_id for r in roles if r.emoji == event.emoji]
        if not role_ids:
            return

        api = self._services.api
        adding = isinstance(event, ReactionAdd)
        for role_id in role_ids:
            if adding:
                await api.add_member_role(event.guild_id, event.user_id, role_id)
            else:
                await api.remove_member_role(event.guild_id, event.user_id, role_id)
        log.info(
            "reaction_roles_updated",
            guild_id=event.guild_id,
            user_id=event.user_id,
            added=adding,
            roles=len(role_ids),
        )

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def _expand_alias(self, guild_id: int | None, text: str) -> str:
        name, rest = split_once_whitespace(text.strip())
        if not name or self._services.registry.get(name) is not None:
            return text
        alias = self._services.guild_config.alias_for(guild_id, name)
        if alias is None:
            return text
        return f"{alias} {rest}" if rest else alias

    async def _on_message(self, event: MessageCreate) -> None:
        if event.author.is_bot:
            return

        api = self._services.api
        prefix = self._services.guild_config.prefix_for(event.guild_id)
        unprefixed = unprefix_with([prefix], event.content)
        if unprefixed is None:
            if (
                self._bot_user_id is not None
                and self._bot_user_id in event.mention_ids
                and not event.is_reply
            ):
                await api.send_message(
                    event.channel_id, mention_hint(prefix), reply_to=event.message_id
                )
            return

        text = self._expand_alias(event.guild_id, unprefixed[1])
        result = await self._dispatcher.dispatch(
            Invocation.from_text(text, prefix),
            actor=event.author,
            guild=self.guild_context(event.guild_id),
            channel_id=event.channel_id,
            guild_id=event.guild_id,
            message_id=event.message_id,
        )

        if result.outcome is Outcome.UNKNOWN:
            log.debug("unknown_command", content=event.content[:50])
        elif result.outcome is Outcome.SUCCESS and result.response is not None:
            response = result.response
            if response.kind is ResponseKind.CLEAR:
                await api.delete_message(event.channel_id, event.message_id)
            elif response.kind is ResponseKind.MESSAGE:
                await self._send_chunks(event.channel_id, response.content, event.message_id)
        elif result.message:
            await self._send_chunks(event.channel_id, result.message, event.message_id)

        await self._report_result(result)

    async def _on_interaction(self, event: InteractionCreate) -> None:
        responder = event.responder
        await responder.defer()

        result = await self._dispatcher.dispatch(
            Invocation.from_interaction(event.path, event.args),
            actor=event.user,
            guild=self.guild_context(event.guild_id),
            channel_id=event.channel_id,
            guild_id=event.guild_id,
        )

        if result.outcome is Outcome.UNKNOWN:
            await responder.edit("Unknown command.")
        elif result.outcome is Outcome.SUCCESS and result.response is not None:
            response = result.response
            if response.kind is ResponseKind.MESSAGE and response.content:
                first, *rest = split_text_chunks(response.content)
                await responder.edit(first)
                for chunk in rest:
                    await self._services.api.send_message(event.channel_id, chunk)
            else:
                await responder.clear()
        else:
            await responder.edit(result.message or "Something went wrong.")

        await self._report_result(result)

    async def _send_chunks(self, channel_id: int, content: str, reply_to: int | None) -> None:
        for index, chunk in enumerate(split_text_chunks(content)):
            await self._services.api.send_message(
                channel_id, chunk, reply_to=reply_to if index == 0 else None
            )

    # ------------------------------------------------------------------
    # Error reporting
    # ------------------------------------------------------------------

    async def _report_result(self, result: DispatchResult) -> None:
        if result.error is not None:
            await self._report_error(f"command {' '.join(result.command)}", result.error)

    async def _report_error(self, context: str, error: BaseException) -> None:
        if self._botdev_channel_id is None:
            return
        text = f"Error in {context}: {type(error).__name__}: {error}"
        try:
            await self._services.api.send_message(
                self._botdev_channel_id, text[:MAX_MESSAGE_LENGTH]
            )
        except Exception:
            log.exception("error_report_failed", context=context)
