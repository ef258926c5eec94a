"""Typed event emission with disposable subscriptions.

Every adapter and the exchange session publish their events through an
EventEmitter. A subscriber keeps the returned Subscription and disposes it
when it stops caring about the source; a disposed subscription is never
called again, even for an event that is already being dispatched.
"""

import logging
from collections.abc import Callable
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

E = TypeVar("E")


class Subscription:
    """Handle returned by EventEmitter.subscribe()."""

    def __init__(self, emitter: "EventEmitter", handler: Callable) -> None:
        self._emitter = emitter
        self._handler = handler
        self._active = True

    @property
    def active(self) -> bool:
        """Return True until the subscription is disposed."""
        return self._active

    def dispose(self) -> None:
        """Stop receiving events. Safe to call more than once."""
        if not self._active:
            return
        self._active = False
        self._emitter._remove(self)

    def _deliver(self, event: object) -> None:
        if self._active:
            self._handler(event)


class EventEmitter(Generic[E]):
    """Synchronous event fan-out to subscribed handlers.

    Handlers run in subscription order on the thread that calls emit().
    Exceptions raised by a handler propagate to the emitter's caller.
    """

    def __init__(self, name: str = "events") -> None:
        self._name = name
        self._subscriptions: list[Subscription] = []

    def subscribe(self, handler: Callable[[E], None]) -> Subscription:
        """Register a handler.

        Args:
            handler: Callable invoked with each emitted event.

        Returns:
            Subscription that detaches the handler when disposed.
        """
        subscription = Subscription(self, handler)
        self._subscriptions.append(subscription)
        return subscription

    def emit(self, event: E) -> None:
        """Deliver an event to every active subscriber."""
        logger.debug(f"{self._name}: {event!r}")
        for subscription in list(self._subscriptions):
            subscription._deliver(event)

    def clear(self) -> None:
        """Dispose every subscription."""
        for subscription in list(self._subscriptions):
            subscription.dispose()

    @property
    def subscriber_count(self) -> int:
        """Number of active subscriptions."""
        return len(self._subscriptions)

    def _remove(self, subscription: Subscription) -> None:
        try:
            self._subscriptions.remove(subscription)
        except ValueError:
            pass


__all__ = ["EventEmitter", "Subscription"]
