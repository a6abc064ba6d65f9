"""Moderation tools."""

from riveting_bot.moderation.bulk_delete import (
    BulkDeleteExecutor,
    BulkDeleteRequest,
    BulkDeleteResult,
    PartialFailureError,
)

__all__ = [
    "BulkDeleteExecutor",
    "BulkDeleteRequest",
    "BulkDeleteResult",
    "PartialFailureError",
]
