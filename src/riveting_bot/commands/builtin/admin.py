"""Guild configuration commands: prefix, aliases and reaction roles."""

from __future__ import annotations

from riveting_bot.commands.dispatch import CommandContext, Response
from riveting_bot.commands.parser import parse_mention_id
from riveting_bot.commands.registry import Command, Option, OptionKind
from riveting_bot.config import Feature
from riveting_bot.errors import BotError
from riveting_bot.guild_config import ReactionRole, reaction_role_key
from riveting_bot.logging import get_logger
from riveting_bot.permissions import PermissionTier

log = get_logger("riveting_bot.commands.builtin.admin")

MAX_PREFIX_LENGTH = 8


# ---------------------------------------------------------------------------
# bot prefix / bot alias
# ---------------------------------------------------------------------------


async def set_prefix(ctx: CommandContext) -> Response:
    guild_id = ctx.require_guild()
    prefix = ctx.arg("prefix")
    if len(prefix) > MAX_PREFIX_LENGTH or any(c.isspace() for c in prefix):
        raise BotError(f"A prefix must be 1-{MAX_PREFIX_LENGTH} characters without spaces.")

    store = ctx.services.guild_config
    settings = store.guild(guild_id)
    previous = store.prefix_for(guild_id)
    settings.prefix = prefix
    store.save_guild(guild_id)
    log.info("guild_prefix_changed", guild_id=guild_id, prefix=prefix)
    return Response.message(f"Prefix changed from `{previous}` to `{prefix}`.")


async def alias_add(ctx: CommandContext) -> Response:
    guild_id = ctx.require_guild()
    name = ctx.arg("name").lower()
    command_text = ctx.arg("command")
    if ctx.services.registry.get(name) is not None:
        raise BotError(f"`{name}` is already a command.")
    first = command_text.split(maxsplit=1)[0]
    if ctx.services.registry.get(first) is None:
        raise BotError(f"`{first}` is not a command.")

    store = ctx.services.guild_config
    replaced = store.guild(guild_id).aliases.get(name)
    store.guild(guild_id).aliases[name] = command_text
    store.save_guild(guild_id)
    if replaced is not None:
        return Response.message(f"Alias `{name}` changed from `{replaced}` to `{command_text}`.")
    return Response.message(f"Alias `{name}` added for `{command_text}`.")


async def alias_remove(ctx: CommandContext) -> Response:
    guild_id = ctx.require_guild()
    name = ctx.arg("name").lower()
    store = ctx.services.guild_config
    if store.guild(guild_id).aliases.pop(name, None) is None:
        raise BotError(f"No alias named `{name}`.")
    store.save_guild(guild_id)
    return Response.message(f"Alias `{name}` removed.")


async def alias_list(ctx: CommandContext) -> Response:
    aliases = ctx.services.guild_config.guild(ctx.require_guild()).aliases
    if not aliases:
        return Response.message("No aliases.")
    lines = [f"`{name}` -> `{text}`" for name, text in sorted(aliases.items())]
    return Response.message("\n".join(lines))


# ---------------------------------------------------------------------------
# roles
# ---------------------------------------------------------------------------


async def roles_add(ctx: CommandContext) -> Response:
    """Map an emoji on a message in this channel to a role."""
    guild_id = ctx.require_guild()
    message_id = parse_mention_id(ctx.arg("message"))
    emoji = ctx.arg("emoji")
    role_id = ctx.arg("role")

    store = ctx.services.guild_config
    roles = store.guild(guild_id).reaction_roles.setdefault(
        reaction_role_key(ctx.channel_id, message_id), []
    )
    roles[:] = [r for r in roles if r.emoji != emoji]
    roles.append(ReactionRole(emoji=emoji, role_id=role_id))
    store.save_guild(guild_id)

    await ctx.api.add_reaction(ctx.channel_id, message_id, emoji)
    return Response.message(f"Reacting with {emoji} now grants <@&{role_id}>.")


async def roles_remove(ctx: CommandContext) -> Response:
    guild_id = ctx.require_guild()
    removed = ctx.services.guild_config.remove_reaction_roles(
        guild_id, ctx.channel_id, [parse_mention_id(ctx.arg("message"))]
    )
    if not removed:
        raise BotError("That message has no reaction roles in this channel.")
    return Response.message("Reaction roles removed.")


async def roles_list(ctx: CommandContext) -> Response:
    mapping = ctx.services.guild_config.guild(ctx.require_guild()).reaction_roles
    if not mapping:
        return Response.message("No reaction roles.")
    lines = []
    for key, roles in sorted(mapping.items()):
        channel_id, message_id = key.split(":", 1)
        pairs = ", ".join(f"{r.emoji} <@&{r.role_id}>" for r in roles)
        lines.append(f"<#{channel_id}> `{message_id}`: {pairs}")
    return Response.message("\n".join(lines))


def commands() -> list[Command]:
    admin = frozenset({Feature.ADMIN})
    return [
        Command(
            "bot",
            "Bot settings for this server.",
            required_tier=PermissionTier.ADMIN,
            required_features=admin,
            dm_allowed=False,
            subcommands=(
                Command(
                    "prefix",
                    "Change the text command prefix.",
                    set_prefix,
                    options=(Option("prefix", "New prefix."),),
                ),
                Command(
                    "alias",
                    "Text command aliases.",
                    subcommands=(
                        Command(
                            "add",
                            "Add or replace an alias.",
                            alias_add,
                            options=(
                                Option("name", "Alias name."),
                                Option("command", "Command text it runs.", greedy=True),
                            ),
                        ),
                        Command(
                            "remove",
                            "Remove an alias.",
                            alias_remove,
                            options=(Option("name", "Alias name."),),
                        ),
                        Command("list", "List aliases.", alias_list),
                    ),
                ),
            ),
        ),
        Command(
            "roles",
            "Reaction roles.",
            required_tier=PermissionTier.ADMIN,
            required_features=admin,
            dm_allowed=False,
            subcommands=(
                Command(
                    "add",
                    "Grant a role when reacting to a message in this channel.",
                    roles_add,
                    options=(
                        Option("message", "Message ID."),
                        Option("emoji", "Emoji to react with."),
                        Option("role", "Role to grant.", OptionKind.ROLE),
                    ),
                ),
                Command(
                    "remove",
                    "Remove the reaction roles of a message in this channel.",
                    roles_remove,
                    options=(Option("message", "Message ID."),),
                ),
                Command("list", "List reaction roles.", roles_list),
            ),
        ),
    ]
