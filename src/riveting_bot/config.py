"""Configuration management for Riveting Bot."""

from __future__ import annotations

from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Self

from pydantic import Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from riveting_bot.constants import BULK_DELETE_MAX_BATCH, BULK_DELETE_MIN_BATCH


class Feature(str, Enum):
    """Feature flags fixed at process start."""

    USER = "user"
    ADMIN = "admin"
    OWNER = "owner"
    VOICE = "voice"
    BULK_DELETE = "bulk-delete"
    ALL_INTENTS = "all-intents"


# Named groups that expand to several flags.
FEATURE_GROUPS: dict[str, frozenset[Feature]] = {
    "default": frozenset({Feature.USER, Feature.ADMIN, Feature.OWNER}),
    "debug": frozenset({Feature.ALL_INTENTS, Feature.BULK_DELETE}),
    "full": frozenset(Feature),
}


def parse_features(value: str) -> frozenset[Feature]:
    """Parse a comma-separated feature list, expanding named groups.

    Args:
        value: Feature names and/or group names, e.g. ``"default,voice"``.

    Returns:
        The set of enabled features.

    Raises:
        ValueError: If a name is neither a feature nor a group.
    """
    features: set[Feature] = set()
    for raw in value.split(","):
        name = raw.strip().lower()
        if not name:
            continue
        if name in FEATURE_GROUPS:
            features |= FEATURE_GROUPS[name]
            continue
        try:
            features.add(Feature(name))
        except ValueError:
            valid = sorted([f.value for f in Feature] + list(FEATURE_GROUPS))
            raise ValueError(f"Unknown feature '{name}', expected one of: {valid}") from None
    return frozenset(features)


def _parse_ids(value: str | None) -> list[int]:
    if value is None:
        return []
    value = value.strip()
    if not value:
        return []
    return [int(part.strip()) for part in value.split(",") if part.strip()]


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        env_parse_none_str="",
        populate_by_name=True,
    )

    # Discord
    discord_token: SecretStr = Field(description="Discord bot token")
    owner_user_ids_str: str | None = Field(
        default=None,
        alias="OWNER_USER_IDS",
        description="Bot operator user IDs granted the owner tier (comma-separated)",
    )
    command_prefix: str = Field(default="!", description="Default text command prefix")
    features_str: str = Field(
        default="default",
        alias="FEATURES",
        description="Enabled features and feature groups (comma-separated)",
    )
    guild_whitelist_str: str | None = Field(
        default=None,
        alias="GUILD_WHITELIST",
        description="Guild IDs the bot may stay in; empty disables the whitelist",
    )
    botdev_channel_id: int | None = Field(
        default=None, description="Channel that receives unexpected error reports"
    )

    # Storage
    data_directory: str = Field(default="data", description="Directory for on-disk config files")

    # Application
    environment: str = Field(default="production", description="Environment name")
    log_level: str = Field(default="INFO", description="Logging level")

    # Logging Configuration
    log_to_file: bool = Field(default=True, description="Enable file-based logging")
    log_directory: str = Field(default="data/logs", description="Directory for log files")
    log_file_max_bytes: int = Field(
        default=10485760,  # 10MB
        description="Max size per log file before rotation",
    )
    log_file_backup_count: int = Field(
        default=5, description="Number of rotated log files to keep"
    )
    log_file_prefix: str = Field(default="riveting_bot", description="Prefix for log file names")

    # Command execution
    command_timeout_seconds: float = Field(
        default=300.0, description="Upper bound on a single command handler run"
    )
    standby_timeout_seconds: float = Field(
        default=30.0, description="Default timeout for interactive confirmations"
    )
    shutdown_grace_seconds: float = Field(
        default=10.0, description="Time given to in-flight commands before cancellation"
    )

    # Voice
    voice_max_reconnect_attempts: int = Field(
        default=3, description="Reconnect attempts before a voice session gives up"
    )
    voice_reconnect_base_delay: float = Field(
        default=1.0, description="Initial reconnect backoff in seconds (doubles per attempt)"
    )
    voice_connect_timeout: float = Field(
        default=30.0, description="Timeout in seconds for a single voice connect"
    )
    voice_auto_leave: bool = Field(
        default=True, description="Leave voice after the queue has been idle for a while"
    )
    voice_idle_timeout_seconds: float = Field(
        default=300.0, description="Idle time before an empty voice session leaves"
    )

    # Moderation
    bulk_delete_batch_size: int = Field(
        default=BULK_DELETE_MAX_BATCH, description="Messages per bulk delete call"
    )
    bulk_delete_max_age_days: int = Field(
        default=14, description="Oldest message age the platform accepts for bulk delete"
    )

    # Fun
    joke_api_url: str = Field(
        default="https://v2.jokeapi.dev/joke/Any", description="Joke API endpoint"
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level names."""
        valid = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid:
            raise ValueError(f"log_level must be one of {sorted(valid)}")
        return v.upper()

    @field_validator("features_str")
    @classmethod
    def validate_features(cls, v: str) -> str:
        """Reject unknown feature names early."""
        parse_features(v)
        return v

    @field_validator("bulk_delete_batch_size")
    @classmethod
    def validate_batch_size(cls, v: int) -> int:
        """Validate the bulk delete batch size against platform limits."""
        if not BULK_DELETE_MIN_BATCH <= v <= BULK_DELETE_MAX_BATCH:
            raise ValueError(
                f"bulk_delete_batch_size must be between "
                f"{BULK_DELETE_MIN_BATCH} and {BULK_DELETE_MAX_BATCH}"
            )
        return v

    @field_validator("voice_max_reconnect_attempts")
    @classmethod
    def validate_reconnect_attempts(cls, v: int) -> int:
        """Validate reconnect attempts are non-negative."""
        if v < 0:
            raise ValueError("voice_max_reconnect_attempts must be >= 0")
        return v

    @model_validator(mode="after")
    def validate_prefix(self) -> Self:
        """A prefix must be non-empty and contain no whitespace."""
        if not self.command_prefix or any(c.isspace() for c in self.command_prefix):
            raise ValueError("command_prefix must be a non-empty string without whitespace")
        return self

    @property
    def owner_user_ids(self) -> list[int]:
        """Parse and return operator user IDs."""
        return _parse_ids(self.owner_user_ids_str)

    @property
    def guild_whitelist(self) -> list[int] | None:
        """Whitelisted guild IDs, or None when the whitelist is disabled."""
        ids = _parse_ids(self.guild_whitelist_str)
        return ids or None

    @property
    def features(self) -> frozenset[Feature]:
        """Enabled feature flags."""
        return parse_features(self.features_str)

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment.lower() == "development"

    @property
    def data_path(self) -> Path:
        """Data directory as a path."""
        return Path(self.data_directory)

    @property
    def log_file_path(self) -> str:
        """Get the full log file path."""
        return f"{self.log_directory}/{self.log_file_prefix}.log"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()  # type: ignore[call-arg]  # Pydantic loads from env vars
