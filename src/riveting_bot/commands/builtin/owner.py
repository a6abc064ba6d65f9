"""Bot operator commands."""

from __future__ import annotations

from riveting_bot.commands.dispatch import CommandContext, Response
from riveting_bot.commands.registry import Command
from riveting_bot.config import Feature
from riveting_bot.logging import get_logger
from riveting_bot.permissions import PermissionTier

log = get_logger("riveting_bot.commands.builtin.owner")


async def shutdown(ctx: CommandContext) -> Response:
    log.warning("shutdown_requested", user_id=ctx.actor.id)
    await ctx.say("Shutting down...")
    ctx.services.shutdown.set()
    return Response.none()


def commands() -> list[Command]:
    return [
        Command(
            "shutdown",
            "Shut down the bot.",
            shutdown,
            required_tier=PermissionTier.OWNER,
            required_features=frozenset({Feature.OWNER}),
        )
    ]
