"""Outbound chat API used by the core.

The core only depends on this protocol. ``riveting_bot.discord.rest`` provides
the discord.py implementation; tests use ``AsyncMock(spec=ChatApi)``.

All methods raise :class:`~riveting_bot.errors.TransportError` when the
platform rejects a call and :class:`~riveting_bot.errors.RateLimitedError`
when the rejection is a rate limit. Callers surface these instead of
retrying.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol


class ChatApi(Protocol):
    """REST-style operations against the chat platform."""

    async def send_message(
        self,
        channel_id: int,
        content: str,
        *,
        reply_to: int | None = None,
    ) -> int:
        """Send a message and return its ID."""
        ...

    async def add_reaction(self, channel_id: int, message_id: int, emoji: str) -> None:
        """React to a message."""
        ...

    async def delete_message(self, channel_id: int, message_id: int) -> None:
        """Delete a single message."""
        ...

    async def delete_messages(self, channel_id: int, message_ids: list[int]) -> None:
        """Delete 2-100 recent messages in one call."""
        ...

    async def fetch_message_ids(
        self,
        channel_id: int,
        *,
        limit: int,
        before: int | None = None,
        after: int | None = None,
    ) -> list[int]:
        """Return up to ``limit`` message IDs, newest first."""
        ...

    async def add_member_role(self, guild_id: int, user_id: int, role_id: int) -> None:
        """Grant a role to a guild member."""
        ...

    async def remove_member_role(self, guild_id: int, user_id: int, role_id: int) -> None:
        """Revoke a role from a guild member."""
        ...

    async def timeout_member(
        self,
        guild_id: int,
        user_id: int,
        until: datetime | None,
        *,
        reason: str | None = None,
    ) -> None:
        """Time a member out until ``until`` (None lifts the timeout)."""
        ...

    async def leave_guild(self, guild_id: int) -> None:
        """Leave a guild."""
        ...

    async def register_commands(self, payload: list[dict[str, Any]]) -> None:
        """Replace the global application command set."""
        ...
