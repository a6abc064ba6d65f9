"""On-disk bot and guild configuration.

Layout under the data directory::

    bot.json              global settings
    guilds/<guild_id>.json  per-guild prefix, aliases and reaction roles

Files are rewritten whole on every change. Unreadable files are logged and
treated as empty so a corrupt guild file never blocks the bot.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

from riveting_bot.logging import get_logger

log = get_logger("riveting_bot.guild_config")


def reaction_role_key(channel_id: int, message_id: int) -> str:
    """Key for a reaction-role message."""
    return f"{channel_id}:{message_id}"


@dataclass
class ReactionRole:
    """Emoji that grants a role when reacted with."""

    emoji: str
    role_id: int


@dataclass
class GuildSettings:
    """Settings for a single guild."""

    prefix: str | None = None
    # Alias name -> command text it expands to.
    aliases: dict[str, str] = field(default_factory=dict)
    # "channel:message" -> reaction roles on that message.
    reaction_roles: dict[str, list[ReactionRole]] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> GuildSettings:
        """Build settings from decoded JSON."""
        return cls(
            prefix=data.get("prefix"),
            aliases={str(k).lower(): str(v) for k, v in data.get("aliases", {}).items()},
            reaction_roles={
                key: [
                    ReactionRole(emoji=str(role["emoji"]), role_id=int(role["role_id"]))
                    for role in roles
                ]
                for key, roles in data.get("reaction_roles", {}).items()
            },
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize for JSON."""
        return asdict(self)


@dataclass
class BotSettings:
    """Global settings shared by all guilds."""

    prefix: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BotSettings:
        """Build settings from decoded JSON."""
        return cls(prefix=data.get("prefix"))

    def to_dict(self) -> dict[str, Any]:
        """Serialize for JSON."""
        return asdict(self)


class GuildConfigStore:
    """Loads and saves bot and guild settings under a data directory.

    Guild settings are cached after the first read. Callers mutate the
    returned :class:`GuildSettings` and then call :meth:`save_guild`.
    """

    def __init__(self, data_dir: Path, default_prefix: str = "!") -> None:
        self._data_dir = data_dir
        self._default_prefix = default_prefix
        self._guilds: dict[int, GuildSettings] = {}
        self._bot: BotSettings | None = None

    @property
    def bot_file(self) -> Path:
        return self._data_dir / "bot.json"

    def guild_file(self, guild_id: int) -> Path:
        return self._data_dir / "guilds" / f"{guild_id}.json"

    # ------------------------------------------------------------------
    # Load / save
    # ------------------------------------------------------------------

    def _read(self, path: Path) -> dict[str, Any]:
        if not path.exists():
            return {}
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            log.warning("config_read_failed", path=str(path), error=str(e))
            return {}
        if not isinstance(data, dict):
            log.warning("config_not_object", path=str(path))
            return {}
        return data

    def _write(self, path: Path, data: dict[str, Any]) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(data, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")

    def bot(self) -> BotSettings:
        """Return global settings."""
        if self._bot is None:
            self._bot = BotSettings.from_dict(self._read(self.bot_file))
        return self._bot

    def save_bot(self) -> None:
        """Persist global settings."""
        self._write(self.bot_file, self.bot().to_dict())

    def guild(self, guild_id: int) -> GuildSettings:
        """Return settings for a guild, loading them on first access."""
        settings = self._guilds.get(guild_id)
        if settings is None:
            try:
                settings = GuildSettings.from_dict(self._read(self.guild_file(guild_id)))
            except (KeyError, TypeError, ValueError) as e:
                log.warning("guild_config_invalid", guild_id=guild_id, error=str(e))
                settings = GuildSettings()
            self._guilds[guild_id] = settings
        return settings

    def save_guild(self, guild_id: int) -> None:
        """Persist a guild's settings."""
        self._write(self.guild_file(guild_id), self.guild(guild_id).to_dict())
        log.debug("guild_config_saved", guild_id=guild_id)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def prefix_for(self, guild_id: int | None) -> str:
        """Resolve the text command prefix: guild, then global, then default."""
        if guild_id is not None:
            prefix = self.guild(guild_id).prefix
            if prefix:
                return prefix
        return self.bot().prefix or self._default_prefix

    def alias_for(self, guild_id: int | None, name: str) -> str | None:
        """Return the command text for a guild alias, if one exists."""
        if guild_id is None:
            return None
        return self.guild(guild_id).aliases.get(name.lower())

    def reaction_roles_for(
        self, guild_id: int, channel_id: int, message_id: int
    ) -> list[ReactionRole]:
        """Reaction roles configured on a message."""
        return self.guild(guild_id).reaction_roles.get(
            reaction_role_key(channel_id, message_id), []
        )

    def remove_reaction_roles(
        self, guild_id: int, channel_id: int, message_ids: list[int]
    ) -> int:
        """Drop reaction-role mappings for deleted messages.

        Returns:
            Number of mappings removed. The guild file is only rewritten when
            something changed.
        """
        settings = self.guild(guild_id)
        removed = 0
        for message_id in message_ids:
            if settings.reaction_roles.pop(reaction_role_key(channel_id, message_id), None):
                removed += 1
        if removed:
            self.save_guild(guild_id)
        return removed
