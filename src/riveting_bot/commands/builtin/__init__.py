"""Built-in command set."""

from __future__ import annotations

from riveting_bot.commands.builtin import admin, meta, moderation, owner, user, voice
from riveting_bot.commands.registry import CommandRegistry


def create_commands() -> CommandRegistry:
    """Build and freeze the registry of every built-in command.

    Commands whose features are disabled are still registered so that users
    get an explicit "not enabled" reply instead of silence.

    Raises:
        DuplicateCommandError: If two commands share a name or alias.
    """
    registry = CommandRegistry()
    for module in (meta, user, voice, moderation, admin, owner):
        for command in module.commands():
            registry.register(command)
    registry.freeze()
    return registry


__all__ = ["create_commands"]
