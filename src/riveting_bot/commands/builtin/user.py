"""Fun commands for everyone."""

from __future__ import annotations

import random

import httpx

from riveting_bot.commands.dispatch import CommandContext, Response
from riveting_bot.commands.registry import Command
from riveting_bot.config import Feature
from riveting_bot.errors import BotError
from riveting_bot.logging import get_logger

log = get_logger("riveting_bot.commands.builtin.user")


async def coinflip(ctx: CommandContext) -> Response:
    flip = ":coin: Heads" if random.random() < 0.5 else "Tails :coin:"
    return Response.message(flip)


def format_joke(payload: dict) -> str:
    """Render a joke API payload.

    Raises:
        BotError: If the payload has neither joke format.
    """
    kind = payload.get("type")
    if kind == "single" and payload.get("joke"):
        return str(payload["joke"])
    if kind == "twopart" and payload.get("setup") and payload.get("delivery"):
        return f"> {payload['setup']}\n> {payload['delivery']}"
    raise BotError("The joke machine is broken today.")


async def joke(ctx: CommandContext) -> Response:
    """Fetch a joke over HTTP."""
    url = ctx.services.settings.joke_api_url
    client = ctx.services.http
    try:
        if client is None:
            async with httpx.AsyncClient(timeout=10.0) as owned:
                response = await owned.get(url)
        else:
            response = await client.get(url)
        response.raise_for_status()
        payload = response.json()
    except (httpx.HTTPError, ValueError) as e:
        log.warning("joke_fetch_failed", url=url, error=str(e))
        raise BotError("Could not fetch a joke right now.") from e
    return Response.message(format_joke(payload))


def commands() -> list[Command]:
    user = frozenset({Feature.USER})
    return [
        Command("coinflip", "Flip a coin.", coinflip, required_features=user),
        Command("joke", "Send a bad joke.", joke, required_features=user),
    ]
