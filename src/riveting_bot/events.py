"""Platform-neutral event models consumed by the router.

The Discord adapter translates gateway payloads into these dataclasses; the
core never touches discord.py objects directly. Event kinds the core does not
understand arrive as :class:`UnknownEvent` and are ignored.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol


class EventKind(str, Enum):
    """Tags for inbound events."""

    READY = "ready"
    GUILD_CREATE = "guild_create"
    GUILD_UPDATE = "guild_update"
    MESSAGE_CREATE = "message_create"
    MESSAGE_DELETE = "message_delete"
    MESSAGE_DELETE_BULK = "message_delete_bulk"
    REACTION_ADD = "reaction_add"
    REACTION_REMOVE = "reaction_remove"
    INTERACTION_CREATE = "interaction_create"
    VOICE_STATE_UPDATE = "voice_state_update"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class Actor:
    """Identity of an event's originator.

    Attributes:
        id: Platform user ID.
        name: Display name.
        role_ids: Roles held in the guild the event came from.
        is_bot: Whether the account is a bot.
        is_guild_owner: Whether the actor owns the guild.
        administrator: Whether the platform grants the actor the native
            administrator permission in the guild.
    """

    id: int
    name: str = ""
    role_ids: frozenset[int] = frozenset()
    is_bot: bool = False
    is_guild_owner: bool = False
    administrator: bool = False


@dataclass(frozen=True)
class GuildContext:
    """Already-fetched guild data needed for permission checks."""

    guild_id: int
    owner_id: int | None = None
    admin_role_ids: frozenset[int] = frozenset()


class InteractionResponder(Protocol):
    """Replies to a structured interaction."""

    async def defer(self) -> None: ...

    async def edit(self, content: str) -> None: ...

    async def clear(self) -> None: ...


@dataclass(frozen=True)
class Event:
    """Base class for all inbound events."""

    kind: EventKind = field(init=False, default=EventKind.UNKNOWN)


@dataclass(frozen=True)
class Ready(Event):
    """The gateway session is established."""

    user_id: int = 0
    user_name: str = ""
    kind: EventKind = field(init=False, default=EventKind.READY)


@dataclass(frozen=True)
class GuildCreate(Event):
    """The bot joined a guild or a guild became available."""

    guild: GuildContext = field(default_factory=lambda: GuildContext(0))
    name: str = ""
    kind: EventKind = field(init=False, default=EventKind.GUILD_CREATE)


@dataclass(frozen=True)
class GuildUpdate(Event):
    """A guild's ownership or roles changed."""

    guild: GuildContext = field(default_factory=lambda: GuildContext(0))
    kind: EventKind = field(init=False, default=EventKind.GUILD_UPDATE)


@dataclass(frozen=True)
class MessageCreate(Event):
    """A message was posted."""

    message_id: int = 0
    channel_id: int = 0
    guild_id: int | None = None
    author: Actor = field(default_factory=lambda: Actor(0))
    content: str = ""
    mention_ids: frozenset[int] = frozenset()
    is_reply: bool = False
    kind: EventKind = field(init=False, default=EventKind.MESSAGE_CREATE)


@dataclass(frozen=True)
class MessageDelete(Event):
    """A single message was deleted."""

    message_id: int = 0
    channel_id: int = 0
    guild_id: int | None = None
    kind: EventKind = field(init=False, default=EventKind.MESSAGE_DELETE)


@dataclass(frozen=True)
class MessageDeleteBulk(Event):
    """Several messages were deleted at once."""

    message_ids: tuple[int, ...] = ()
    channel_id: int = 0
    guild_id: int | None = None
    kind: EventKind = field(init=False, default=EventKind.MESSAGE_DELETE_BULK)


@dataclass(frozen=True)
class ReactionAdd(Event):
    """A reaction was added to a message."""

    message_id: int = 0
    channel_id: int = 0
    guild_id: int | None = None
    user_id: int = 0
    emoji: str = ""
    user_is_bot: bool = False
    kind: EventKind = field(init=False, default=EventKind.REACTION_ADD)


@dataclass(frozen=True)
class ReactionRemove(Event):
    """A reaction was removed from a message."""

    message_id: int = 0
    channel_id: int = 0
    guild_id: int | None = None
    user_id: int = 0
    emoji: str = ""
    user_is_bot: bool = False
    kind: EventKind = field(init=False, default=EventKind.REACTION_REMOVE)


@dataclass(frozen=True)
class InteractionCreate(Event):
    """A structured (slash) command invocation.

    Attributes:
        path: Command name followed by nested subcommand/group names.
        args: Option values by option name, already stringified.
        responder: Handle used to acknowledge and answer the interaction.
    """

    interaction_id: int = 0
    channel_id: int = 0
    guild_id: int | None = None
    user: Actor = field(default_factory=lambda: Actor(0))
    path: tuple[str, ...] = ()
    args: dict[str, str] = field(default_factory=dict)
    responder: Any = None
    kind: EventKind = field(init=False, default=EventKind.INTERACTION_CREATE)


@dataclass(frozen=True)
class VoiceStateUpdate(Event):
    """A member joined, left or moved between voice channels."""

    guild_id: int = 0
    user_id: int = 0
    channel_id: int | None = None
    kind: EventKind = field(init=False, default=EventKind.VOICE_STATE_UPDATE)


@dataclass(frozen=True)
class UnknownEvent(Event):
    """Anything the core does not handle."""

    name: str = ""
    kind: EventKind = field(init=False, default=EventKind.UNKNOWN)
