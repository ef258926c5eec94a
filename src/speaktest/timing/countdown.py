"""Countdown timer driving the response window.

Emits one tick per elapsed second and an expiry signal when the remaining
time reaches zero. Ticks are scheduled against absolute deadlines measured
from start(), so a late callback does not push later ticks back.
"""

import logging
from dataclasses import dataclass
from enum import Enum

from ..errors import ProtocolMisuseError
from ..events import EventEmitter
from .scheduler import Handle, Scheduler

logger = logging.getLogger(__name__)


class CountdownStatus(Enum):
    """Status of a countdown."""

    IDLE = "idle"
    RUNNING = "running"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class CountdownTick:
    """One second elapsed."""

    remaining: int


@dataclass(frozen=True)
class CountdownExpired:
    """Remaining time reached zero."""

    duration: int


CountdownEvent = CountdownTick | CountdownExpired


class Countdown:
    """Cancellable per-second countdown.

    Resetting is cancel() followed by start() with the full duration; there
    is no pause/resume.
    """

    def __init__(self, scheduler: Scheduler, name: str = "countdown") -> None:
        """Initialize the countdown.

        Args:
            scheduler: Clock and callback scheduler.
            name: Label used in log messages.
        """
        self._scheduler = scheduler
        self._name = name
        self._status = CountdownStatus.IDLE
        self._duration = 0
        self._remaining = 0
        self._started_at = 0.0
        self._elapsed_ticks = 0
        self._handle: Handle | None = None
        self._generation = 0
        self.events: EventEmitter[CountdownEvent] = EventEmitter(f"{name}.events")

    @property
    def status(self) -> CountdownStatus:
        """Get the countdown status."""
        return self._status

    @property
    def is_running(self) -> bool:
        """Return True while the countdown is active."""
        return self._status == CountdownStatus.RUNNING

    @property
    def duration(self) -> int:
        """Duration passed to the last start()."""
        return self._duration

    @property
    def remaining(self) -> int:
        """Whole seconds left, always within [0, duration]."""
        return self._remaining

    def start(self, duration_seconds: int) -> None:
        """Start counting down from duration_seconds.

        Args:
            duration_seconds: Positive number of seconds.

        Raises:
            ProtocolMisuseError: If the countdown is already running.
            ValueError: If duration_seconds is not positive.
        """
        if self._status == CountdownStatus.RUNNING:
            raise ProtocolMisuseError(f"{self._name} already running; cancel() before start()")
        if duration_seconds <= 0:
            raise ValueError(f"Countdown duration must be positive, got {duration_seconds}")

        self._generation += 1
        self._duration = duration_seconds
        self._remaining = duration_seconds
        self._elapsed_ticks = 0
        self._started_at = self._scheduler.now()
        self._status = CountdownStatus.RUNNING
        self._schedule_next(self._generation)
        logger.debug(f"{self._name} started: {duration_seconds}s")

    def cancel(self) -> None:
        """Stop the countdown. Safe to call in any state."""
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        self._generation += 1
        if self._status == CountdownStatus.RUNNING:
            self._status = CountdownStatus.CANCELLED
            logger.debug(f"{self._name} cancelled with {self._remaining}s left")

    def _schedule_next(self, generation: int) -> None:
        deadline = self._started_at + self._elapsed_ticks + 1
        delay = deadline - self._scheduler.now()
        self._handle = self._scheduler.call_later(delay, lambda: self._on_tick(generation))

    def _on_tick(self, generation: int) -> None:
        if generation != self._generation or self._status != CountdownStatus.RUNNING:
            return

        self._elapsed_ticks += 1
        self._remaining = max(0, self._duration - self._elapsed_ticks)

        if self._remaining == 0:
            self._handle = None
            self._status = CountdownStatus.EXPIRED
            self.events.emit(CountdownTick(remaining=0))
            logger.debug(f"{self._name} expired")
            self.events.emit(CountdownExpired(duration=self._duration))
            return

        self._schedule_next(generation)
        self.events.emit(CountdownTick(remaining=self._remaining))


__all__ = [
    "Countdown",
    "CountdownEvent",
    "CountdownExpired",
    "CountdownStatus",
    "CountdownTick",
]
