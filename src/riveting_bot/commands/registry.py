"""Command definitions and the lookup table built from them.

The registry is filled once at startup and frozen before the router starts.
Lookups are case-insensitive on names and aliases.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterable, Iterator, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from riveting_bot.config import Feature
from riveting_bot.permissions import PermissionTier

if TYPE_CHECKING:
    from riveting_bot.commands.dispatch import CommandContext, Response

Handler = Callable[["CommandContext"], Awaitable["Response"]]


class DuplicateCommandError(Exception):
    """Raised when a command name or alias is registered twice."""


class RegistryFrozenError(Exception):
    """Raised when registering into a frozen registry."""


class OptionKind(str, Enum):
    """Argument types understood by the platform's structured commands."""

    STRING = "string"
    INTEGER = "integer"
    USER = "user"
    ROLE = "role"
    CHANNEL = "channel"

    @property
    def api_type(self) -> int:
        """Application command option type number."""
        return _OPTION_API_TYPES[self]


_OPTION_API_TYPES = {
    OptionKind.STRING: 3,
    OptionKind.INTEGER: 4,
    OptionKind.USER: 6,
    OptionKind.CHANNEL: 7,
    OptionKind.ROLE: 8,
}

# Application command option types for nesting.
_SUB_COMMAND = 1
_SUB_COMMAND_GROUP = 2


@dataclass(frozen=True)
class Option:
    """A named command argument.

    Attributes:
        greedy: Text commands pass the remaining text verbatim to this option.
            Only valid on the last option.
    """

    name: str
    description: str
    kind: OptionKind = OptionKind.STRING
    required: bool = True
    greedy: bool = False


@dataclass(frozen=True)
class Command:
    """A command or command group.

    A command with subcommands and no handler is a group: invoking it without
    a subcommand is answered with its usage.
    """

    name: str
    description: str
    handler: Handler | None = None
    aliases: tuple[str, ...] = ()
    required_tier: PermissionTier = PermissionTier.USER
    required_features: frozenset[Feature] = frozenset()
    options: tuple[Option, ...] = ()
    subcommands: tuple[Command, ...] = ()
    dm_allowed: bool = True

    def __post_init__(self) -> None:
        greedy = [i for i, opt in enumerate(self.options) if opt.greedy]
        if greedy and greedy != [len(self.options) - 1]:
            raise ValueError(f"Command '{self.name}': only the last option may be greedy")
        if self.handler is None and not self.subcommands:
            raise ValueError(f"Command '{self.name}' needs a handler or subcommands")

    @property
    def is_group(self) -> bool:
        return self.handler is None

    @property
    def names(self) -> tuple[str, ...]:
        """Name followed by aliases."""
        return (self.name, *self.aliases)

    def subcommand(self, name: str) -> Command | None:
        """Find a direct subcommand by name or alias."""
        key = name.lower()
        for sub in self.subcommands:
            if key in (n.lower() for n in sub.names):
                return sub
        return None

    def usage(self, path: Sequence[Command] = ()) -> str:
        """One-line usage string, e.g. ``voice play <source>``."""
        parts = [c.name for c in path] + [self.name]
        for opt in self.options:
            label = f"{opt.name}..." if opt.greedy else opt.name
            parts.append(f"<{label}>" if opt.required else f"[{label}]")
        if self.subcommands:
            parts.append("<" + "|".join(s.name for s in self.subcommands) + ">")
        return " ".join(parts)

    # ------------------------------------------------------------------
    # Application command rendering
    # ------------------------------------------------------------------

    def _render_options(self) -> list[dict[str, Any]]:
        return [
            {
                "type": opt.kind.api_type,
                "name": opt.name,
                "description": opt.description,
                "required": opt.required,
            }
            for opt in self.options
        ]

    def _render_nested(self) -> dict[str, Any]:
        if self.subcommands:
            return {
                "type": _SUB_COMMAND_GROUP,
                "name": self.name,
                "description": self.description,
                "options": [sub._render_nested() for sub in self.subcommands],
            }
        return {
            "type": _SUB_COMMAND,
            "name": self.name,
            "description": self.description,
            "options": self._render_options(),
        }

    def to_application_command(self) -> dict[str, Any]:
        """Render the platform's application command JSON."""
        options = (
            [sub._render_nested() for sub in self.subcommands]
            if self.subcommands
            else self._render_options()
        )
        return {
            "name": self.name,
            "description": self.description,
            "options": options,
            "dm_permission": self.dm_allowed,
        }


class CommandRegistry:
    """Lookup table for top-level commands."""

    def __init__(self, commands: Iterable[Command] = ()) -> None:
        self._commands: list[Command] = []
        self._index: dict[str, Command] = {}
        self._frozen = False
        for command in commands:
            self.register(command)

    def __len__(self) -> int:
        return len(self._commands)

    def __iter__(self) -> Iterator[Command]:
        return iter(self._commands)

    @property
    def frozen(self) -> bool:
        return self._frozen

    def register(self, command: Command) -> None:
        """Add a top-level command.

        Raises:
            RegistryFrozenError: After :meth:`freeze`.
            DuplicateCommandError: If any name or alias is already taken, or
                if two subcommands at the same level share a name.
        """
        if self._frozen:
            raise RegistryFrozenError(f"Cannot register '{command.name}': registry is frozen")

        _check_subcommands(command)
        keys = [n.lower() for n in command.names]
        if len(set(keys)) != len(keys):
            raise DuplicateCommandError(f"Command '{command.name}' repeats a name or alias")
        for key in keys:
            if key in self._index:
                raise DuplicateCommandError(
                    f"'{key}' of command '{command.name}' is already used by "
                    f"'{self._index[key].name}'"
                )

        self._commands.append(command)
        for key in keys:
            self._index[key] = command

    def freeze(self) -> None:
        self._frozen = True

    def get(self, name: str) -> Command | None:
        """Find a top-level command by name or alias."""
        return self._index.get(name.lower())

    def resolve(self, tokens: Sequence[str]) -> tuple[list[Command], list[str]] | None:
        """Walk the command tree along ``tokens``.

        Args:
            tokens: Command name followed by subcommand names and arguments.

        Returns:
            ``(path, remaining)`` where ``path`` runs from the top-level
            command to the deepest matched subcommand, or None if the first
            token names no command.
        """
        if not tokens:
            return None
        command = self.get(tokens[0])
        if command is None:
            return None

        path = [command]
        index = 1
        while index < len(tokens):
            sub = path[-1].subcommand(tokens[index])
            if sub is None:
                break
            path.append(sub)
            index += 1
        return path, list(tokens[index:])

    def application_commands(self) -> list[dict[str, Any]]:
        """Render every command for structured command registration."""
        return [command.to_application_command() for command in self._commands]


def _check_subcommands(command: Command) -> None:
    seen: set[str] = set()
    for sub in command.subcommands:
        for key in (n.lower() for n in sub.names):
            if key in seen:
                raise DuplicateCommandError(
                    f"Subcommand '{key}' is defined twice under '{command.name}'"
                )
            seen.add(key)
        _check_subcommands(sub)
