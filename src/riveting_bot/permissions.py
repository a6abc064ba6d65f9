"""Permission tiers for command access.

Tiers follow a strict hierarchy: owner > admin > user. Resolution is pure and
only reads data that was already fetched with the event, so it can run on
every dispatch without I/O. Missing data always resolves to the lowest tier.
"""

from __future__ import annotations

from collections.abc import Iterable
from enum import IntEnum

from riveting_bot.events import Actor, GuildContext


class PermissionTier(IntEnum):
    """Ordered permission levels - higher integer means more privilege."""

    USER = 1
    ADMIN = 2
    OWNER = 3

    @property
    def label(self) -> str:
        """Lowercase tier name for display."""
        return self.name.lower()


def resolve_tier(
    actor: Actor | None,
    guild: GuildContext | None,
    owner_ids: frozenset[int] = frozenset(),
) -> PermissionTier:
    """Resolve the tier an actor holds in a guild.

    Owner always wins and does not depend on the guild. Admin requires a guild
    and is granted to the guild owner, to holders of the native administrator
    permission, and to holders of any administrative role.

    Args:
        actor: The event originator.
        guild: Guild data, or None outside guilds.
        owner_ids: Configured bot operator IDs.

    Returns:
        The resolved tier.
    """
    if actor is None:
        return PermissionTier.USER

    if actor.id in owner_ids:
        return PermissionTier.OWNER

    if guild is None:
        return PermissionTier.USER

    if actor.is_guild_owner or (guild.owner_id is not None and guild.owner_id == actor.id):
        return PermissionTier.ADMIN

    if actor.administrator:
        return PermissionTier.ADMIN

    if actor.role_ids & guild.admin_role_ids:
        return PermissionTier.ADMIN

    return PermissionTier.USER


class PermissionGate:
    """Resolves tiers against a fixed set of operator IDs."""

    def __init__(self, owner_ids: Iterable[int] = ()) -> None:
        self._owner_ids = frozenset(owner_ids)

    @property
    def owner_ids(self) -> frozenset[int]:
        """Configured operator IDs."""
        return self._owner_ids

    def with_owners(self, owner_ids: Iterable[int]) -> PermissionGate:
        """Return a gate that also recognises ``owner_ids`` as operators."""
        return PermissionGate(self._owner_ids | frozenset(owner_ids))

    def resolve(self, actor: Actor | None, guild: GuildContext | None) -> PermissionTier:
        """Resolve ``actor``'s tier in ``guild``."""
        return resolve_tier(actor, guild, self._owner_ids)

    def allows(
        self,
        actor: Actor | None,
        guild: GuildContext | None,
        required: PermissionTier,
    ) -> bool:
        """Check whether ``actor`` meets ``required`` in ``guild``."""
        return self.resolve(actor, guild) >= required
