"""Exception hierarchy shared across the bot.

Every error that may reach a user derives from :class:`BotError` and carries a
``user_message`` suitable for a chat reply. Anything else escaping a command
handler is treated as a bug and answered with a generic message.
"""

from __future__ import annotations


class BotError(Exception):
    """Base class for errors with a user-facing explanation."""

    default_message = "Something went wrong."

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)
        self.user_message = message or self.default_message


class ParseError(BotError):
    """Raised when command text cannot be tokenized or mapped to arguments."""

    default_message = "Could not understand the command arguments."


class InvalidStateError(BotError):
    """Raised when a voice operation is illegal in the current playback state."""

    default_message = "That cannot be done right now."


class TransportError(BotError):
    """Raised when an outbound platform call is rejected or fails."""

    default_message = "The chat service rejected the request."


class RateLimitedError(TransportError):
    """Raised when an outbound call is rejected by a rate limit.

    Attributes:
        retry_after: Seconds until the platform accepts the call again, if known.
    """

    default_message = "Rate limited by the chat service, try again later."

    def __init__(self, message: str | None = None, retry_after: float | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after
