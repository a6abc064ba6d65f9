"""Functions for parsing text command arguments.

Arguments are separated by whitespace. An argument that starts with one of
:data:`~riveting_bot.constants.DELIMITERS` runs until the next occurrence of
the same character. Escape characters are not handled.
"""

from __future__ import annotations

from collections.abc import Iterable

from riveting_bot.constants import DELIMITERS
from riveting_bot.errors import ParseError


class MissingArgsError(ParseError):
    """Raised when an argument was expected but the input is empty."""

    default_message = "Expected arguments missing."


def unprefix_with(prefixes: Iterable[str], text: str) -> tuple[str, str] | None:
    """Strip the first matching prefix.

    Args:
        prefixes: Candidate prefixes, tried in order.
        text: Message content.

    Returns:
        ``(prefix, unprefixed)`` or None if no prefix matched.
    """
    for prefix in prefixes:
        if prefix and text.startswith(prefix):
            return prefix, text[len(prefix) :]
    return None


def split_once_whitespace(text: str) -> tuple[str, str | None]:
    """Split into the part before the first whitespace and everything after it."""
    for i, char in enumerate(text):
        if char.isspace():
            return text[:i], text[i + 1 :]
    return text, None


def maybe_quoted_arg(text: str) -> tuple[str, str | None]:
    """Parse one argument from ``text``.

    Leading whitespace is skipped. A quoted argument returns what is between
    the quotes; anything directly after the closing quote stays in the rest.
    A non-quoted argument runs to the next whitespace, quote characters
    included.

    Args:
        text: Remaining command text.

    Returns:
        ``(arg, rest)`` where ``rest`` is None when nothing follows.

    Raises:
        MissingArgsError: If ``text`` is empty or whitespace.
        ParseError: If an opening quote has no matching closing quote.
    """
    text = text.lstrip()
    if not text:
        raise MissingArgsError()

    initial = text[0]
    if initial in DELIMITERS:
        end = text.find(initial, 1)
        if end == -1:
            expected = ", ".join(f"'{d}'" for d in DELIMITERS)
            raise ParseError(
                f"Missing matching delimiter: '{text}', expected one of: {expected}."
            )
        rest = text[end + 1 :]
        return text[1:end], rest or None

    return split_once_whitespace(text)


def parse_args(text: str) -> list[str]:
    """Split ``text`` into arguments using :func:`maybe_quoted_arg`."""
    args: list[str] = []
    rest: str | None = text
    while rest is not None:
        try:
            arg, rest = maybe_quoted_arg(rest)
        except MissingArgsError:
            break
        args.append(arg)
    return args


def ensure_rest_is_empty(rest: str | None) -> None:
    """Raise if anything but whitespace is left over."""
    if rest is not None and rest.strip():
        raise ParseError(f"Unexpected '{rest}'")


def parse_mention_id(text: str) -> int:
    """Parse a raw ID or a user, role or channel mention into an ID.

    Accepts ``123``, ``<@123>``, ``<@!123>``, ``<@&123>`` and ``<#123>``.

    Raises:
        ParseError: If ``text`` is neither.
    """
    value = text.strip()
    if value.startswith("<") and value.endswith(">"):
        value = value[1:-1].lstrip("@!&#")
    if not value.isdigit():
        raise ParseError(f"Expected an ID or mention, got '{text}'.")
    return int(value)
