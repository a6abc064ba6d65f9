"""Bulk message deletion within platform limits.

The platform bulk-deletes at most 100 messages per call, needs at least two
IDs per call and refuses messages older than 14 days. The executor turns a
request into sequential batches that respect those limits and stops at the
first failed batch, reporting exactly what was deleted.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass

from riveting_bot.api import ChatApi
from riveting_bot.constants import (
    BULK_DELETE_MAX_BATCH,
    BULK_DELETE_MIN_BATCH,
    DISCORD_EPOCH_MS,
)
from riveting_bot.errors import BotError
from riveting_bot.logging import get_logger

log = get_logger("riveting_bot.moderation.bulk_delete")

MS_PER_DAY = 24 * 60 * 60 * 1000


def snowflake_timestamp_ms(snowflake: int) -> int:
    """Creation time of a snowflake ID in Unix milliseconds."""
    return (snowflake >> 22) + DISCORD_EPOCH_MS


def snowflake_from_timestamp_ms(timestamp_ms: int) -> int:
    """Smallest snowflake created at ``timestamp_ms``."""
    return max(timestamp_ms - DISCORD_EPOCH_MS, 0) << 22


@dataclass(frozen=True)
class BulkDeleteRequest:
    """What to delete.

    Either ``message_ids`` or ``count`` selects targets. ``before`` and
    ``after`` bound the targets by message ID (exclusive).
    """

    channel_id: int
    requester_id: int
    message_ids: tuple[int, ...] | None = None
    count: int | None = None
    before: int | None = None
    after: int | None = None

    def __post_init__(self) -> None:
        if (self.message_ids is None) == (self.count is None):
            raise ValueError("Exactly one of message_ids or count must be given")
        if self.count is not None and self.count < 1:
            raise ValueError("count must be positive")

    def in_bounds(self, message_id: int) -> bool:
        if self.before is not None and message_id >= self.before:
            return False
        return not (self.after is not None and message_id <= self.after)


@dataclass(frozen=True)
class BulkDeleteResult:
    """Outcome of a fully successful run.

    Attributes:
        deleted: Number of messages deleted.
        too_old: IDs excluded because they fall outside the platform window
            or the request bounds.
    """

    deleted: int
    too_old: tuple[int, ...] = ()


class PartialFailureError(BotError):
    """Raised when a batch fails after earlier batches succeeded.

    Attributes:
        deleted: Messages deleted before the failure.
        remaining_ids: IDs of the failed batch and every later batch.
        cause: The error that stopped the run.
    """

    def __init__(self, deleted: int, remaining_ids: tuple[int, ...], cause: Exception) -> None:
        self.deleted = deleted
        self.remaining_ids = remaining_ids
        self.cause = cause
        super().__init__(
            f"Deleted {deleted} messages, then failed with {len(remaining_ids)} left: "
            f"{getattr(cause, 'user_message', str(cause))}"
        )


class BulkDeleteExecutor:
    """Runs bulk delete requests. Holds no state between calls."""

    def __init__(
        self,
        api: ChatApi,
        batch_size: int = BULK_DELETE_MAX_BATCH,
        max_age_days: int = 14,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if not BULK_DELETE_MIN_BATCH <= batch_size <= BULK_DELETE_MAX_BATCH:
            raise ValueError(
                f"batch_size must be between {BULK_DELETE_MIN_BATCH} and {BULK_DELETE_MAX_BATCH}"
            )
        self._api = api
        self._batch_size = batch_size
        self._max_age_ms = max_age_days * MS_PER_DAY
        self._clock = clock

    def _cutoff_ms(self) -> int:
        return int(self._clock() * 1000) - self._max_age_ms

    def partition(
        self, request: BulkDeleteRequest, ids: list[int]
    ) -> tuple[list[int], list[int]]:
        """Split candidate IDs into deletable and excluded.

        Duplicates are dropped. Deletable IDs are ordered newest first.
        """
        cutoff = self._cutoff_ms()
        deletable: list[int] = []
        excluded: list[int] = []
        for message_id in sorted(set(ids), reverse=True):
            if request.in_bounds(message_id) and snowflake_timestamp_ms(message_id) > cutoff:
                deletable.append(message_id)
            else:
                excluded.append(message_id)
        return deletable, excluded

    def batches(self, ids: list[int]) -> list[list[int]]:
        """Split IDs into consecutive batches of at most the batch size."""
        return [ids[i : i + self._batch_size] for i in range(0, len(ids), self._batch_size)]

    async def _targets(self, request: BulkDeleteRequest) -> list[int]:
        if request.message_ids is not None:
            return list(request.message_ids)
        assert request.count is not None
        return await self._api.fetch_message_ids(
            request.channel_id,
            limit=request.count,
            before=request.before,
            after=request.after,
        )

    async def bulk_delete(self, request: BulkDeleteRequest) -> BulkDeleteResult:
        """Delete the requested messages.

        Args:
            request: What to delete. Never modified.

        Returns:
            The number deleted and the excluded IDs.

        Raises:
            PartialFailureError: If a batch fails. Nothing after the failed
                batch is attempted.
            TransportError: If fetching the targets fails.
        """
        deletable, excluded = self.partition(request, await self._targets(request))
        batches = self.batches(deletable)
        log.info(
            "bulk_delete_started",
            channel_id=request.channel_id,
            requester_id=request.requester_id,
            targets=len(deletable),
            excluded=len(excluded),
            batches=len(batches),
        )

        deleted = 0
        for index, batch in enumerate(batches):
            try:
                if len(batch) == 1:
                    await self._api.delete_message(request.channel_id, batch[0])
                else:
                    await self._api.delete_messages(request.channel_id, batch)
            except Exception as e:
                remaining = tuple(id_ for b in batches[index:] for id_ in b)
                log.warning(
                    "bulk_delete_partial_failure",
                    channel_id=request.channel_id,
                    deleted=deleted,
                    remaining=len(remaining),
                    error=str(e),
                )
                raise PartialFailureError(deleted, remaining, e) from e
            deleted += len(batch)

        log.info("bulk_delete_finished", channel_id=request.channel_id, deleted=deleted)
        return BulkDeleteResult(deleted=deleted, too_old=tuple(excluded))
