"""Timing module: injectable clock and the response countdown."""

from .countdown import (
    Countdown,
    CountdownEvent,
    CountdownExpired,
    CountdownStatus,
    CountdownTick,
)
from .scheduler import Handle, LoopScheduler, Scheduler, VirtualScheduler

__all__ = [
    "Countdown",
    "CountdownEvent",
    "CountdownExpired",
    "CountdownStatus",
    "CountdownTick",
    "Handle",
    "LoopScheduler",
    "Scheduler",
    "VirtualScheduler",
]
