"""Small text helpers."""

from __future__ import annotations

from riveting_bot.constants import MAX_MESSAGE_LENGTH


def split_text_chunks(text: str, max_length: int = MAX_MESSAGE_LENGTH) -> list[str]:
    """Split text into chunks no longer than ``max_length``.

    Splits prefer the last newline, then the last space, inside each window.
    Text without either is cut hard at the limit.

    Args:
        text: Text to split.
        max_length: Maximum chunk length.

    Returns:
        Non-empty chunks in order.
    """
    if max_length <= 0:
        raise ValueError("max_length must be positive")

    chunks: list[str] = []
    remaining = text
    while len(remaining) > max_length:
        window = remaining[:max_length]
        cut = window.rfind("\n")
        if cut <= 0:
            cut = window.rfind(" ")
        if cut <= 0:
            cut = max_length
        chunks.append(remaining[:cut])
        remaining = remaining[cut:].lstrip("\n ") if cut < max_length else remaining[cut:]
    if remaining:
        chunks.append(remaining)
    return [chunk for chunk in chunks if chunk]
