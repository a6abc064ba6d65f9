"""Translation from discord.py objects to core events."""

from __future__ import annotations

from typing import Any

import discord

from riveting_bot.events import (
    Actor,
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
from riveting_bot.logging import get_logger

log = get_logger("riveting_bot.discord.translate")

# Application command option types that nest other options.
_SUB_COMMAND = 1
_SUB_COMMAND_GROUP = 2


def actor_from_user(user: discord.User | discord.Member) -> Actor:
    """Build an :class:`Actor`, including guild data when ``user`` is a member."""
    if isinstance(user, discord.Member):
        return Actor(
            id=user.id,
            name=user.display_name,
            role_ids=frozenset(role.id for role in user.roles),
            is_bot=user.bot,
            is_guild_owner=user.guild.owner_id == user.id,
            administrator=user.guild_permissions.administrator,
        )
    return Actor(id=user.id, name=user.name, is_bot=user.bot)


def guild_context(guild: discord.Guild) -> GuildContext:
    """Owner and administrative roles of a guild."""
    return GuildContext(
        guild_id=guild.id,
        owner_id=guild.owner_id,
        admin_role_ids=frozenset(
            role.id for role in guild.roles if role.permissions.administrator
        ),
    )


def ready(user: discord.ClientUser) -> Ready:
    return Ready(user_id=user.id, user_name=user.name)


def guild_create(guild: discord.Guild) -> GuildCreate:
    return GuildCreate(guild=guild_context(guild), name=guild.name)


def guild_update(guild: discord.Guild) -> GuildUpdate:
    return GuildUpdate(guild=guild_context(guild))


def message_create(message: discord.Message) -> MessageCreate:
    return MessageCreate(
        message_id=message.id,
        channel_id=message.channel.id,
        guild_id=message.guild.id if message.guild is not None else None,
        author=actor_from_user(message.author),
        content=message.content,
        mention_ids=frozenset(user.id for user in message.mentions),
        is_reply=message.reference is not None,
    )


def message_delete(payload: discord.RawMessageDeleteEvent) -> MessageDelete:
    return MessageDelete(
        message_id=payload.message_id,
        channel_id=payload.channel_id,
        guild_id=payload.guild_id,
    )


def message_delete_bulk(payload: discord.RawBulkMessageDeleteEvent) -> MessageDeleteBulk:
    return MessageDeleteBulk(
        message_ids=tuple(sorted(payload.message_ids)),
        channel_id=payload.channel_id,
        guild_id=payload.guild_id,
    )


def reaction(payload: discord.RawReactionActionEvent) -> ReactionAdd | ReactionRemove:
    """Translate a raw reaction add or remove."""
    member = payload.member
    fields: dict[str, Any] = {
        "message_id": payload.message_id,
        "channel_id": payload.channel_id,
        "guild_id": payload.guild_id,
        "user_id": payload.user_id,
        "emoji": str(payload.emoji),
        "user_is_bot": bool(member is not None and member.bot),
    }
    if payload.event_type == "REACTION_ADD":
        return ReactionAdd(**fields)
    return ReactionRemove(**fields)


def voice_state(member: discord.Member, after: discord.VoiceState) -> VoiceStateUpdate:
    return VoiceStateUpdate(
        guild_id=member.guild.id,
        user_id=member.id,
        channel_id=after.channel.id if after.channel is not None else None,
    )


def flatten_command_data(data: dict[str, Any]) -> tuple[tuple[str, ...], dict[str, str]]:
    """Split application command data into a name path and option values.

    Args:
        data: ``interaction.data`` of an application command.

    Returns:
        ``(path, args)`` where ``path`` is the command name followed by any
        subcommand group and subcommand names.
    """
    path = [data["name"]]
    options = data.get("options") or []
    while options and options[0].get("type") in (_SUB_COMMAND, _SUB_COMMAND_GROUP):
        nested = options[0]
        path.append(nested["name"])
        options = nested.get("options") or []
    args = {opt["name"]: str(opt["value"]) for opt in options if "value" in opt}
    return tuple(path), args


class DiscordInteractionResponder:
    """Answers an interaction through its deferred response."""

    def __init__(self, interaction: discord.Interaction) -> None:
        self._interaction = interaction

    async def defer(self) -> None:
        if not self._interaction.response.is_done():
            await self._interaction.response.defer(thinking=True)

    async def edit(self, content: str) -> None:
        await self._interaction.edit_original_response(content=content)

    async def clear(self) -> None:
        await self._interaction.delete_original_response()


def interaction_create(interaction: discord.Interaction) -> InteractionCreate | None:
    """Translate an application command; other interaction kinds return None."""
    if interaction.type is not discord.InteractionType.application_command:
        log.debug("interaction_ignored", interaction_type=str(interaction.type))
        return None
    data: dict[str, Any] = dict(interaction.data or {})
    path, args = flatten_command_data(data)
    return InteractionCreate(
        interaction_id=interaction.id,
        channel_id=interaction.channel_id or 0,
        guild_id=interaction.guild_id,
        user=actor_from_user(interaction.user),
        path=path,
        args=args,
        responder=DiscordInteractionResponder(interaction),
    )
