"""Resolving, gating and running commands.

The dispatcher is the only place that checks tiers and feature flags; handlers
can assume they are allowed to run. Every handler failure is turned into a
:class:`DispatchResult` so that nothing a command does can crash the router.
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from riveting_bot.commands.parser import (
    MissingArgsError,
    ensure_rest_is_empty,
    maybe_quoted_arg,
    parse_mention_id,
    split_once_whitespace,
)
from riveting_bot.commands.registry import Command, CommandRegistry, OptionKind
from riveting_bot.errors import BotError, ParseError
from riveting_bot.events import Actor, GuildContext
from riveting_bot.logging import get_logger
from riveting_bot.permissions import PermissionGate, PermissionTier

if TYPE_CHECKING:
    import httpx

    from riveting_bot.api import ChatApi
    from riveting_bot.config import Settings
    from riveting_bot.guild_config import GuildConfigStore
    from riveting_bot.moderation.bulk_delete import BulkDeleteExecutor
    from riveting_bot.standby import StandbyCollector
    from riveting_bot.voice.manager import VoiceManager

log = get_logger("riveting_bot.commands.dispatch")

GENERIC_FAILURE = "Something went wrong while running that command."
FORBIDDEN_REPLY = "Rekt, you cannot use that. :melting_face:"


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


class Outcome(str, Enum):
    """How a dispatch attempt ended."""

    SUCCESS = "success"
    UNKNOWN = "unknown"
    FORBIDDEN = "forbidden"
    UNAVAILABLE = "unavailable"
    FAILED = "failed"


class ResponseKind(str, Enum):
    NONE = "none"
    CLEAR = "clear"
    MESSAGE = "message"


@dataclass(frozen=True)
class Response:
    """What the router should do after a handler returns."""

    kind: ResponseKind = ResponseKind.NONE
    content: str = ""

    @classmethod
    def none(cls) -> Response:
        """Nothing more to send."""
        return cls(ResponseKind.NONE)

    @classmethod
    def clear(cls) -> Response:
        """Remove the invoking message or deferred interaction reply."""
        return cls(ResponseKind.CLEAR)

    @classmethod
    def message(cls, content: str) -> Response:
        """Reply with ``content``."""
        return cls(ResponseKind.MESSAGE, content)


@dataclass(frozen=True)
class DispatchResult:
    """Result of one dispatch.

    Attributes:
        outcome: How dispatch ended.
        response: Handler response on success.
        message: User-facing text for non-success outcomes.
        command: Names along the resolved command path, if any.
        error: Unexpected exception raised by the handler.
    """

    outcome: Outcome
    response: Response | None = None
    message: str | None = None
    command: tuple[str, ...] = ()
    error: BaseException | None = None


# ---------------------------------------------------------------------------
# Invocation and context
# ---------------------------------------------------------------------------


class InvocationSource(str, Enum):
    TEXT = "text"
    INTERACTION = "interaction"


@dataclass(frozen=True)
class Invocation:
    """A command request before resolution.

    Text invocations carry the message content with the prefix removed.
    Interaction invocations carry the already-structured path and args.
    """

    source: InvocationSource
    text: str = ""
    path: tuple[str, ...] = ()
    args: dict[str, str] = field(default_factory=dict)
    prefix: str = ""

    @classmethod
    def from_text(cls, text: str, prefix: str = "") -> Invocation:
        return cls(InvocationSource.TEXT, text=text, prefix=prefix)

    @classmethod
    def from_interaction(cls, path: Sequence[str], args: dict[str, str]) -> Invocation:
        return cls(InvocationSource.INTERACTION, path=tuple(path), args=dict(args), prefix="/")


@dataclass
class Services:
    """Shared collaborators handed to every command."""

    api: ChatApi
    settings: Settings
    registry: CommandRegistry
    gate: PermissionGate
    standby: StandbyCollector
    guild_config: GuildConfigStore
    shutdown: asyncio.Event
    voice: VoiceManager | None = None
    bulk_delete: BulkDeleteExecutor | None = None
    http: httpx.AsyncClient | None = None
    # (guild_id, user_id) -> voice channel the member is in.
    member_voice: dict[tuple[int, int], int] = field(default_factory=dict)


@dataclass
class CommandContext:
    """Everything a handler knows about its invocation."""

    services: Services
    command: Command
    path: tuple[Command, ...]
    actor: Actor
    tier: PermissionTier
    channel_id: int
    guild_id: int | None
    guild: GuildContext | None
    args: dict[str, Any]
    source: InvocationSource
    prefix: str = ""
    message_id: int | None = None

    @property
    def api(self) -> ChatApi:
        return self.services.api

    def arg(self, name: str, default: Any = None) -> Any:
        """Bound argument value by option name."""
        return self.args.get(name, default)

    def require_guild(self) -> int:
        """Guild ID, raising if invoked outside a guild."""
        if self.guild_id is None:
            raise BotError("This command only works in a server.")
        return self.guild_id

    async def say(self, content: str) -> int:
        """Post a message in the invoking channel and return its ID."""
        return await self.api.send_message(self.channel_id, content, reply_to=self.message_id)

    def usage(self) -> str:
        return f"{self.prefix}{self.command.usage(self.path[:-1])}"


# ---------------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------------


class Dispatcher:
    """Resolves invocations against the registry and runs handlers."""

    def __init__(self, services: Services) -> None:
        self._services = services

    @property
    def services(self) -> Services:
        return self._services

    def _resolve(self, invocation: Invocation) -> tuple[list[Command], str | None] | None:
        registry = self._services.registry

        if invocation.source is InvocationSource.INTERACTION:
            resolved = registry.resolve(invocation.path)
            if resolved is None or resolved[1]:
                return None
            return resolved[0], None

        name, rest = split_once_whitespace(invocation.text.strip())
        command = registry.get(name) if name else None
        if command is None:
            return None

        path = [command]
        while rest is not None and path[-1].subcommands:
            try:
                token, after = maybe_quoted_arg(rest)
            except ParseError:
                break
            sub = path[-1].subcommand(token)
            if sub is None:
                break
            path.append(sub)
            rest = after
        return path, rest

    def _check(
        self,
        path: Sequence[Command],
        tier: PermissionTier,
        guild_id: int | None,
    ) -> DispatchResult | None:
        names = tuple(c.name for c in path)
        features = self._services.settings.features

        for node in path:
            if tier < node.required_tier:
                return DispatchResult(Outcome.FORBIDDEN, message=FORBIDDEN_REPLY, command=names)

        for node in path:
            missing = node.required_features - features
            if missing:
                return DispatchResult(
                    Outcome.UNAVAILABLE,
                    message="That command is not enabled on this bot.",
                    command=names,
                )
            if guild_id is None and not node.dm_allowed:
                return DispatchResult(
                    Outcome.UNAVAILABLE,
                    message="That command only works in a server.",
                    command=names,
                )
        return None

    def _bind_text_args(self, command: Command, rest: str | None) -> dict[str, str]:
        args: dict[str, str] = {}
        for opt in command.options:
            if opt.greedy:
                value = (rest or "").strip()
                rest = None
                if value:
                    args[opt.name] = value
                elif opt.required:
                    raise ParseError(f"Missing argument '{opt.name}'.")
                break
            try:
                value, rest = maybe_quoted_arg(rest or "")
            except MissingArgsError:
                if opt.required:
                    raise ParseError(f"Missing argument '{opt.name}'.") from None
                break
            args[opt.name] = value
        ensure_rest_is_empty(rest)
        return args

    def _bind(
        self, command: Command, invocation: Invocation, rest: str | None
    ) -> dict[str, Any]:
        if command.is_group:
            raise ParseError("Missing subcommand.")

        if invocation.source is InvocationSource.TEXT:
            raw = self._bind_text_args(command, rest)
        else:
            raw = dict(invocation.args)
            for opt in command.options:
                if opt.required and opt.name not in raw:
                    raise ParseError(f"Missing argument '{opt.name}'.")

        bound: dict[str, Any] = {}
        for opt in command.options:
            if opt.name not in raw:
                continue
            value = raw[opt.name]
            if opt.kind is OptionKind.INTEGER:
                try:
                    bound[opt.name] = int(value)
                except ValueError:
                    raise ParseError(f"'{opt.name}' must be a whole number.") from None
            elif opt.kind in (OptionKind.USER, OptionKind.ROLE, OptionKind.CHANNEL):
                bound[opt.name] = parse_mention_id(value)
            else:
                bound[opt.name] = value
        return bound

    async def dispatch(
        self,
        invocation: Invocation,
        *,
        actor: Actor,
        guild: GuildContext | None,
        channel_id: int,
        guild_id: int | None,
        message_id: int | None = None,
    ) -> DispatchResult:
        """Resolve and run a command.

        Args:
            invocation: What the user asked for.
            actor: Who asked.
            guild: Cached guild data for permission checks.
            channel_id: Channel the request came from.
            guild_id: Guild the request came from, None in DMs.
            message_id: Invoking message for text commands.

        Returns:
            The dispatch result. Never raises for handler failures.
        """
        resolved = self._resolve(invocation)
        if resolved is None:
            return DispatchResult(Outcome.UNKNOWN)
        path, rest = resolved
        names = tuple(c.name for c in path)
        command = path[-1]

        tier = self._services.gate.resolve(actor, guild)
        denied = self._check(path, tier, guild_id)
        if denied is not None:
            log.info(
                "command_denied",
                command=" ".join(names),
                outcome=denied.outcome.value,
                user_id=actor.id,
                tier=tier.label,
            )
            return denied

        ctx = CommandContext(
            services=self._services,
            command=command,
            path=tuple(path),
            actor=actor,
            tier=tier,
            channel_id=channel_id,
            guild_id=guild_id,
            guild=guild,
            args={},
            source=invocation.source,
            prefix=invocation.prefix,
            message_id=message_id,
        )

        try:
            ctx.args = self._bind(command, invocation, rest)
        except ParseError as e:
            return DispatchResult(
                Outcome.FAILED,
                message=f"{e.user_message}\nUsage: `{ctx.usage()}`",
                command=names,
            )

        assert command.handler is not None
        log.info("command_started", command=" ".join(names), user_id=actor.id, guild_id=guild_id)
        try:
            async with asyncio.timeout(self._services.settings.command_timeout_seconds):
                response = await command.handler(ctx)
        except TimeoutError:
            log.warning("command_timed_out", command=" ".join(names), user_id=actor.id)
            return DispatchResult(
                Outcome.FAILED, message="That command took too long.", command=names
            )
        except BotError as e:
            log.info("command_failed", command=" ".join(names), error=e.user_message)
            return DispatchResult(Outcome.FAILED, message=e.user_message, command=names)
        except Exception as e:
            log.exception("command_crashed", command=" ".join(names), user_id=actor.id)
            return DispatchResult(Outcome.FAILED, message=GENERIC_FAILURE, command=names, error=e)

        log.debug("command_finished", command=" ".join(names), response=response.kind.value)
        return DispatchResult(Outcome.SUCCESS, response=response, command=names)
