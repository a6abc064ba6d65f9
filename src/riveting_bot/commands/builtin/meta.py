"""Commands about the bot itself."""

from __future__ import annotations

from riveting_bot import __repository__, __version__
from riveting_bot.commands.dispatch import CommandContext, Response
from riveting_bot.commands.registry import Command, Option


async def ping(ctx: CommandContext) -> Response:
    return Response.message("Pong!")


def about_text(prefix: str) -> str:
    """Bot introduction shown by ``about``."""
    return (
        "I am a RivetingBot!\n"
        f"You can list my commands with `/help` or `{prefix}help` command.\n"
        f"My current version *(allegedly)* is `{__version__}`.\n"
        f"My source is available at <{__repository__}>"
    )


async def about(ctx: CommandContext) -> Response:
    prefix = ctx.services.guild_config.prefix_for(ctx.guild_id)
    return Response.message(about_text(prefix))


def _visible(command: Command, ctx: CommandContext) -> bool:
    features = ctx.services.settings.features
    return command.required_tier <= ctx.tier and command.required_features <= features


async def help_command(ctx: CommandContext) -> Response:
    """List usable commands, or describe one command."""
    registry = ctx.services.registry
    prefix = ctx.services.guild_config.prefix_for(ctx.guild_id)

    name = ctx.arg("command")
    if name:
        command = registry.get(name)
        if command is None:
            return Response.message(f"Command `{name}` not found :|")
        lines = [f"`{prefix}{command.usage()}`", command.description]
        if command.aliases:
            lines.append("Aliases: " + ", ".join(f"`{a}`" for a in command.aliases))
        for sub in command.subcommands:
            lines.append(f"- `{prefix}{sub.usage([command])}`: {sub.description}")
        for opt in command.options:
            lines.append(f"- `{opt.name}`: {opt.description}")
        return Response.message("\n".join(lines))

    entries = [
        f"  {command.name}: {command.description}"
        for command in registry
        if _visible(command, ctx)
    ]
    body = "\n".join(entries)
    return Response.message(
        f"```yaml\nPrefix: '/' or '{prefix}'\nCommands:\n{body}\n```"
    )


def commands() -> list[Command]:
    return [
        Command("ping", "Ping the bot.", ping),
        Command("about", "Display info about the bot.", about),
        Command(
            "help",
            "List bot commands.",
            help_command,
            options=(Option("command", "Get help on a command.", required=False),),
        ),
    ]
