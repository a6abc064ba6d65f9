"""discord.py implementation of :class:`~riveting_bot.api.ChatApi`."""

from __future__ import annotations

import contextlib
from collections.abc import Iterator
from datetime import datetime
from typing import Any

import discord

from riveting_bot.errors import RateLimitedError, TransportError
from riveting_bot.logging import get_logger

log = get_logger("riveting_bot.discord.rest")


@contextlib.contextmanager
def _translate_errors(action: str) -> Iterator[None]:
    try:
        yield
    except discord.RateLimited as e:
        log.warning("discord_rate_limited", action=action, retry_after=e.retry_after)
        raise RateLimitedError(retry_after=e.retry_after) from e
    except discord.HTTPException as e:
        if e.status == 429:
            log.warning("discord_rate_limited", action=action)
            raise RateLimitedError() from e
        log.warning("discord_request_failed", action=action, status=e.status, error=e.text)
        raise TransportError(f"Discord rejected the request ({e.status}): {e.text}") from e


class DiscordChatApi:
    """Outbound chat calls through a logged-in ``discord.Client``."""

    def __init__(self, client: discord.Client) -> None:
        self._client = client

    def _channel(self, channel_id: int) -> discord.PartialMessageable:
        return self._client.get_partial_messageable(channel_id)

    async def send_message(
        self,
        channel_id: int,
        content: str,
        *,
        reply_to: int | None = None,
    ) -> int:
        reference = None
        if reply_to is not None:
            reference = discord.MessageReference(
                message_id=reply_to, channel_id=channel_id, fail_if_not_exists=False
            )
        with _translate_errors("send_message"):
            message = await self._channel(channel_id).send(
                content,
                reference=reference,
                allowed_mentions=discord.AllowedMentions(everyone=False, roles=False),
            )
        return message.id

    async def add_reaction(self, channel_id: int, message_id: int, emoji: str) -> None:
        with _translate_errors("add_reaction"):
            await self._channel(channel_id).get_partial_message(message_id).add_reaction(emoji)

    async def delete_message(self, channel_id: int, message_id: int) -> None:
        with _translate_errors("delete_message"):
            await self._client.http.delete_message(channel_id, message_id)

    async def delete_messages(self, channel_id: int, message_ids: list[int]) -> None:
        with _translate_errors("delete_messages"):
            await self._client.http.delete_messages(channel_id, message_ids)

    async def fetch_message_ids(
        self,
        channel_id: int,
        *,
        limit: int,
        before: int | None = None,
        after: int | None = None,
    ) -> list[int]:
        ids: list[int] = []
        with _translate_errors("fetch_message_ids"):
            async for message in self._channel(channel_id).history(
                limit=limit,
                before=discord.Object(before) if before is not None else None,
                after=discord.Object(after) if after is not None else None,
            ):
                ids.append(message.id)
        return sorted(ids, reverse=True)

    async def add_member_role(self, guild_id: int, user_id: int, role_id: int) -> None:
        with _translate_errors("add_member_role"):
            await self._client.http.add_role(guild_id, user_id, role_id)

    async def remove_member_role(self, guild_id: int, user_id: int, role_id: int) -> None:
        with _translate_errors("remove_member_role"):
            await self._client.http.remove_role(guild_id, user_id, role_id)

    async def timeout_member(
        self,
        guild_id: int,
        user_id: int,
        until: datetime | None,
        *,
        reason: str | None = None,
    ) -> None:
        with _translate_errors("timeout_member"):
            await self._client.http.edit_member(
                guild_id,
                user_id,
                reason=reason,
                communication_disabled_until=until.isoformat() if until else None,
            )

    async def leave_guild(self, guild_id: int) -> None:
        with _translate_errors("leave_guild"):
            await self._client.http.leave_guild(guild_id)

    async def register_commands(self, payload: list[dict[str, Any]]) -> None:
        application_id = self._client.application_id
        if application_id is None:
            raise TransportError("Application ID is not known yet.")
        with _translate_errors("register_commands"):
            await self._client.http.bulk_upsert_global_commands(application_id, payload)
