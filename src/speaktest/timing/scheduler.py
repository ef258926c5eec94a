"""Clock and callback scheduling for the exchange core.

The core never sleeps and never reads the wall clock directly. It asks a
Scheduler for the current time and for deferred callbacks, which lets the
same session code run on an asyncio event loop in production and on a
virtual clock in tests.
"""

import asyncio
import heapq
import itertools
import threading
from collections.abc import Callable
from typing import Protocol


class Handle(Protocol):
    """Cancellable reference to a scheduled callback."""

    def cancel(self) -> None:
        """Prevent the callback from running. Safe to call more than once."""
        ...


class Scheduler(Protocol):
    """Interface for time and deferred execution.

    All callbacks run on the scheduler's own thread, one at a time.
    """

    def now(self) -> float:
        """Return monotonic time in seconds."""
        ...

    def call_soon(self, callback: Callable[[], None]) -> Handle:
        """Run callback on the next scheduler iteration."""
        ...

    def call_later(self, delay: float, callback: Callable[[], None]) -> Handle:
        """Run callback after delay seconds."""
        ...

    def call_soon_threadsafe(self, callback: Callable[[], None]) -> Handle:
        """Schedule callback from any thread."""
        ...


class LoopScheduler:
    """Scheduler backed by an asyncio event loop.

    Implements the Scheduler protocol.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        """Initialize with a loop.

        Args:
            loop: Event loop to schedule on. Defaults to the running loop.
        """
        self._loop = loop if loop is not None else asyncio.get_running_loop()

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        """Get the underlying event loop."""
        return self._loop

    def now(self) -> float:
        """Return the loop's monotonic time."""
        return self._loop.time()

    def call_soon(self, callback: Callable[[], None]) -> Handle:
        """Run callback on the next loop iteration."""
        return self._loop.call_soon(callback)

    def call_later(self, delay: float, callback: Callable[[], None]) -> Handle:
        """Run callback after delay seconds."""
        return self._loop.call_later(max(0.0, delay), callback)

    def call_soon_threadsafe(self, callback: Callable[[], None]) -> Handle:
        """Schedule callback from a worker thread."""
        return self._loop.call_soon_threadsafe(callback)


class VirtualHandle:
    """Handle for a callback queued on a VirtualScheduler."""

    def __init__(self, when: float, callback: Callable[[], None]) -> None:
        self.when = when
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        """Mark the callback as cancelled."""
        self.cancelled = True


class VirtualScheduler:
    """Deterministic scheduler whose clock only moves when told to.

    Time starts at `start` and advances through advance() or run(). Callbacks
    due at the same instant run in the order they were scheduled.

    Implements the Scheduler protocol.
    """

    def __init__(self, start: float = 0.0) -> None:
        """Initialize virtual clock.

        Args:
            start: Initial clock value in seconds
        """
        self._now = start
        self._queue: list[tuple[float, int, VirtualHandle]] = []
        self._counter = itertools.count()
        self._threadsafe: list[VirtualHandle] = []
        self._lock = threading.Lock()

    def now(self) -> float:
        """Return the virtual time."""
        return self._now

    def call_soon(self, callback: Callable[[], None]) -> VirtualHandle:
        """Queue callback at the current virtual time."""
        return self.call_later(0.0, callback)

    def call_later(self, delay: float, callback: Callable[[], None]) -> VirtualHandle:
        """Queue callback delay seconds from now."""
        handle = VirtualHandle(self._now + max(0.0, delay), callback)
        heapq.heappush(self._queue, (handle.when, next(self._counter), handle))
        return handle

    def call_soon_threadsafe(self, callback: Callable[[], None]) -> VirtualHandle:
        """Queue callback from another thread; it runs on the next step."""
        handle = VirtualHandle(self._now, callback)
        with self._lock:
            self._threadsafe.append(handle)
        return handle

    def advance(self, seconds: float) -> None:
        """Move the clock forward, running every callback that becomes due.

        Args:
            seconds: Amount of virtual time to elapse
        """
        if seconds < 0:
            raise ValueError("Cannot move the clock backwards")
        target = self._now + seconds
        self._run_due(target)
        self._now = target

    def run_until_idle(self) -> None:
        """Run everything due at the current instant, including follow-ups."""
        self._run_due(self._now)

    def run(self, limit: float = 3600.0) -> None:
        """Run queued callbacks until none remain or `limit` seconds pass.

        Args:
            limit: Maximum virtual time to elapse
        """
        deadline = self._now + limit
        while True:
            self._drain_threadsafe()
            next_when = self._next_due()
            if next_when is None or next_when > deadline:
                break
            self._run_due(next_when)

    @property
    def pending(self) -> int:
        """Number of queued, non-cancelled callbacks."""
        self._drain_threadsafe()
        return sum(1 for _, _, handle in self._queue if not handle.cancelled)

    def _next_due(self) -> float | None:
        while self._queue and self._queue[0][2].cancelled:
            heapq.heappop(self._queue)
        if not self._queue:
            return None
        return self._queue[0][0]

    def _drain_threadsafe(self) -> None:
        with self._lock:
            pending, self._threadsafe = self._threadsafe, []
        for handle in pending:
            handle.when = self._now
            heapq.heappush(self._queue, (handle.when, next(self._counter), handle))

    def _run_due(self, target: float) -> None:
        while True:
            self._drain_threadsafe()
            if not self._queue or self._queue[0][0] > target:
                return
            when, _, handle = heapq.heappop(self._queue)
            if handle.cancelled:
                continue
            self._now = max(self._now, when)
            handle.callback()


__all__ = [
    "Handle",
    "LoopScheduler",
    "Scheduler",
    "VirtualHandle",
    "VirtualScheduler",
]
