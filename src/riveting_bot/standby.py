"""Waiting for follow-up events inside a running command.

A command that needs a confirmation registers a predicate and awaits the
first event that satisfies it. The router feeds every inbound event through
:meth:`StandbyCollector.process` before normal handling.

All waiter bookkeeping happens on the event loop thread in sections that do
not await, so no lock is needed.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Collection, Iterable
from dataclasses import dataclass, field

from riveting_bot.errors import BotError
from riveting_bot.events import Event, EventKind, MessageCreate, ReactionAdd
from riveting_bot.logging import get_logger

log = get_logger("riveting_bot.standby")

Predicate = Callable[[Event], bool]


class StandbyTimeoutError(BotError):
    """Raised when no matching event arrived before the deadline."""

    default_message = "Timed out waiting for a response."


@dataclass(eq=False)
class StandbyWaiter:
    """A pending wait registered with the collector."""

    predicate: Predicate
    kinds: frozenset[EventKind] | None
    future: asyncio.Future[Event] = field(repr=False)

    def accepts(self, event: Event) -> bool:
        return self.kinds is None or event.kind in self.kinds


class StandbyCollector:
    """Resolves waiters against inbound events."""

    def __init__(self, default_timeout: float = 30.0) -> None:
        self._default_timeout = default_timeout
        self._waiters: list[StandbyWaiter] = []

    @property
    def pending(self) -> int:
        """Number of live waiters."""
        return len(self._waiters)

    async def wait_for(
        self,
        predicate: Predicate,
        *,
        timeout: float | None = None,
        kinds: Iterable[EventKind] | None = None,
    ) -> Event:
        """Wait for the first event that satisfies ``predicate``.

        Args:
            predicate: Called with each candidate event.
            timeout: Seconds to wait; defaults to the collector's timeout.
            kinds: Only events of these kinds are offered to ``predicate``.

        Returns:
            The matching event.

        Raises:
            StandbyTimeoutError: If the deadline passes first.
        """
        loop = asyncio.get_running_loop()
        waiter = StandbyWaiter(
            predicate=predicate,
            kinds=frozenset(kinds) if kinds is not None else None,
            future=loop.create_future(),
        )
        self._waiters.append(waiter)
        # Whichever of match and deadline completes the future first wins.
        deadline = loop.call_later(
            self._default_timeout if timeout is None else timeout, self._expire, waiter
        )
        try:
            return await waiter.future
        finally:
            deadline.cancel()
            self._discard(waiter)

    def process(self, event: Event) -> int:
        """Offer ``event`` to every live waiter.

        Returns:
            Number of waiters resolved by this event.
        """
        resolved = 0
        for waiter in list(self._waiters):
            if waiter.future.done() or not waiter.accepts(event):
                continue
            try:
                matched = waiter.predicate(event)
            except Exception:
                log.exception("standby_predicate_failed", event_kind=event.kind.value)
                continue
            if matched:
                waiter.future.set_result(event)
                self._discard(waiter)
                resolved += 1
        return resolved

    def cancel_all(self) -> None:
        """Cancel every pending waiter."""
        for waiter in self._waiters:
            if not waiter.future.done():
                waiter.future.cancel()
        self._waiters.clear()

    def _expire(self, waiter: StandbyWaiter) -> None:
        if not waiter.future.done():
            waiter.future.set_exception(StandbyTimeoutError())
        self._discard(waiter)

    def _discard(self, waiter: StandbyWaiter) -> None:
        if waiter in self._waiters:
            self._waiters.remove(waiter)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def wait_for_reaction(
        self,
        message_id: int,
        user_id: int,
        emojis: Collection[str] | None = None,
        *,
        timeout: float | None = None,
    ) -> ReactionAdd:
        """Wait for ``user_id`` to react to ``message_id``.

        Args:
            message_id: Message to watch.
            user_id: Only reactions from this user count.
            emojis: Accepted emojis; any emoji when None.
            timeout: Seconds to wait.
        """

        def predicate(event: Event) -> bool:
            return (
                isinstance(event, ReactionAdd)
                and event.message_id == message_id
                and event.user_id == user_id
                and (emojis is None or event.emoji in emojis)
            )

        event = await self.wait_for(predicate, timeout=timeout, kinds=[EventKind.REACTION_ADD])
        assert isinstance(event, ReactionAdd)
        return event

    async def wait_for_message(
        self,
        channel_id: int,
        author_id: int,
        *,
        timeout: float | None = None,
    ) -> MessageCreate:
        """Wait for the next message from ``author_id`` in ``channel_id``."""

        def predicate(event: Event) -> bool:
            return (
                isinstance(event, MessageCreate)
                and event.channel_id == channel_id
                and event.author.id == author_id
            )

        event = await self.wait_for(predicate, timeout=timeout, kinds=[EventKind.MESSAGE_CREATE])
        assert isinstance(event, MessageCreate)
        return event
