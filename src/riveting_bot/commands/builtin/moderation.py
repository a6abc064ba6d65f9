"""Moderation commands for admins."""

from __future__ import annotations

import asyncio
import contextlib
from datetime import UTC, datetime, timedelta

from riveting_bot.commands.dispatch import CommandContext, Response
from riveting_bot.commands.registry import Command, Option, OptionKind
from riveting_bot.config import Feature
from riveting_bot.constants import CANCEL_EMOJI, CONFIRM_EMOJI
from riveting_bot.errors import BotError, TransportError
from riveting_bot.logging import get_logger
from riveting_bot.moderation import BulkDeleteRequest
from riveting_bot.permissions import PermissionTier
from riveting_bot.standby import StandbyTimeoutError

log = get_logger("riveting_bot.commands.builtin.moderation")

MAX_DELETE_COUNT = 1000
# Platform limit for member timeouts.
MAX_MUTE_MINUTES = 28 * 24 * 60


async def delete(ctx: CommandContext) -> Response:
    """Bulk delete recent messages after a reaction confirmation."""
    executor = ctx.services.bulk_delete
    if executor is None:
        raise BotError("Bulk delete is not available on this bot.")

    count = ctx.arg("count")
    if not 1 <= count <= MAX_DELETE_COUNT:
        raise BotError(f"Count must be between 1 and {MAX_DELETE_COUNT}.")

    api = ctx.api
    prompt_id = await ctx.say(
        f"Delete the last {count} messages? React with {CONFIRM_EMOJI} to confirm "
        f"or {CANCEL_EMOJI} to cancel."
    )
    # Listen before adding the reactions so an early answer is not missed.
    confirmation = asyncio.create_task(
        ctx.services.standby.wait_for_reaction(
            prompt_id,
            ctx.actor.id,
            {CONFIRM_EMOJI, CANCEL_EMOJI},
            timeout=ctx.services.settings.standby_timeout_seconds,
        )
    )
    await asyncio.sleep(0)
    try:
        await api.add_reaction(ctx.channel_id, prompt_id, CONFIRM_EMOJI)
        await api.add_reaction(ctx.channel_id, prompt_id, CANCEL_EMOJI)
        reaction = await confirmation
    except StandbyTimeoutError:
        reaction = None
    finally:
        confirmation.cancel()
        with contextlib.suppress(TransportError):
            await api.delete_message(ctx.channel_id, prompt_id)

    if reaction is None:
        return Response.message("No confirmation, nothing was deleted.")
    if reaction.emoji != CONFIRM_EMOJI:
        return Response.message("Cancelled.")

    before = ctx.message_id if ctx.message_id is not None else prompt_id
    result = await executor.bulk_delete(
        BulkDeleteRequest(
            channel_id=ctx.channel_id,
            requester_id=ctx.actor.id,
            count=count,
            before=before,
        )
    )
    summary = f"Deleted {result.deleted} messages."
    if result.too_old:
        summary += f" {len(result.too_old)} were too old to bulk delete."
    return Response.message(summary)


async def mute(ctx: CommandContext) -> Response:
    """Time a member out for a number of minutes."""
    guild_id = ctx.require_guild()
    user_id = ctx.arg("user")
    minutes = ctx.arg("minutes", 1)
    if not 1 <= minutes <= MAX_MUTE_MINUTES:
        raise BotError(f"Minutes must be between 1 and {MAX_MUTE_MINUTES}.")

    until = datetime.now(UTC) + timedelta(minutes=minutes)
    await ctx.api.timeout_member(
        guild_id, user_id, until, reason=f"Muted by {ctx.actor.name or ctx.actor.id}"
    )
    log.info("member_muted", guild_id=guild_id, user_id=user_id, minutes=minutes)
    return Response.message(f"Muted <@{user_id}> for {minutes} minute(s).")


def commands() -> list[Command]:
    return [
        Command(
            "delete",
            "Bulk delete recent messages.",
            delete,
            required_tier=PermissionTier.ADMIN,
            required_features=frozenset({Feature.BULK_DELETE}),
            options=(Option("count", "Number of messages to delete.", OptionKind.INTEGER),),
            dm_allowed=False,
        ),
        Command(
            "mute",
            "Time out a member.",
            mute,
            required_tier=PermissionTier.ADMIN,
            required_features=frozenset({Feature.ADMIN}),
            options=(
                Option("user", "Member to mute.", OptionKind.USER),
                Option("minutes", "Duration in minutes.", OptionKind.INTEGER, required=False),
            ),
            dm_allowed=False,
        ),
    ]
