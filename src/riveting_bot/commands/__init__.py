"""Command parsing, registry and dispatch."""

from riveting_bot.commands.dispatch import (
    CommandContext,
    DispatchResult,
    Dispatcher,
    Invocation,
    Outcome,
    Response,
    Services,
)
from riveting_bot.commands.registry import (
    Command,
    CommandRegistry,
    DuplicateCommandError,
    Option,
    OptionKind,
    RegistryFrozenError,
)

__all__ = [
    "Command",
    "CommandContext",
    "CommandRegistry",
    "DispatchResult",
    "Dispatcher",
    "DuplicateCommandError",
    "Invocation",
    "Option",
    "OptionKind",
    "Outcome",
    "RegistryFrozenError",
    "Response",
    "Services",
]
