"""Unit tests for the per-second countdown."""

import pytest

from speaktest.errors import ProtocolMisuseError
from speaktest.timing.countdown import (
    Countdown,
    CountdownEvent,
    CountdownExpired,
    CountdownStatus,
    CountdownTick,
)
from speaktest.timing.scheduler import VirtualScheduler


@pytest.fixture
def sched() -> VirtualScheduler:
    """Create a virtual clock."""
    return VirtualScheduler()


@pytest.fixture
def countdown(sched: VirtualScheduler) -> Countdown:
    """Create a countdown on the virtual clock."""
    return Countdown(sched, name="test")


def record(countdown: Countdown) -> list[CountdownEvent]:
    events: list[CountdownEvent] = []
    countdown.events.subscribe(events.append)
    return events


class TestCountdownTicks:
    """Tests for tick and expiry emission."""

    def test_ticks_once_per_second_then_expires(
        self, sched: VirtualScheduler, countdown: Countdown
    ) -> None:
        """Test a 3 second countdown."""
        events = record(countdown)
        countdown.start(3)

        sched.advance(3.0)

        assert events == [
            CountdownTick(2),
            CountdownTick(1),
            CountdownTick(0),
            CountdownExpired(3),
        ]
        assert countdown.status == CountdownStatus.EXPIRED
        assert countdown.remaining == 0

    def test_remaining_tracks_elapsed_seconds(
        self, sched: VirtualScheduler, countdown: Countdown
    ) -> None:
        """Test remaining between ticks."""
        countdown.start(15)
        assert countdown.remaining == 15

        sched.advance(2.5)
        assert countdown.remaining == 13
        assert countdown.is_running

    def test_no_expiry_before_deadline(
        self, sched: VirtualScheduler, countdown: Countdown
    ) -> None:
        """Test expiry fires exactly at the duration."""
        events = record(countdown)
        countdown.start(2)

        sched.advance(1.5)
        assert not any(isinstance(e, CountdownExpired) for e in events)

        sched.advance(0.5)
        assert isinstance(events[-1], CountdownExpired)

    def test_remaining_is_monotonic(self, sched: VirtualScheduler, countdown: Countdown) -> None:
        """Test remaining never increases while running."""
        values: list[int] = []
        countdown.events.subscribe(
            lambda e: values.append(e.remaining) if isinstance(e, CountdownTick) else None
        )
        countdown.start(10)
        sched.advance(10.0)

        assert values == sorted(values, reverse=True)
        assert values[-1] == 0
        assert all(0 <= v <= 10 for v in values)


class TestCountdownControl:
    """Tests for start/cancel semantics."""

    def test_cancel_stops_events(self, sched: VirtualScheduler, countdown: Countdown) -> None:
        """Test no events after cancel()."""
        events = record(countdown)
        countdown.start(5)
        sched.advance(2.0)

        countdown.cancel()
        sched.advance(10.0)

        assert events == [CountdownTick(4), CountdownTick(3)]
        assert countdown.status == CountdownStatus.CANCELLED

    def test_cancel_is_idempotent(self, countdown: Countdown) -> None:
        """Test cancel() in any state."""
        countdown.cancel()
        countdown.start(3)
        countdown.cancel()
        countdown.cancel()
        assert countdown.status == CountdownStatus.CANCELLED

    def test_start_while_running_raises(self, countdown: Countdown) -> None:
        """Test double start is a protocol error."""
        countdown.start(3)
        with pytest.raises(ProtocolMisuseError):
            countdown.start(3)

    @pytest.mark.parametrize("duration", [0, -1])
    def test_non_positive_duration_rejected(self, countdown: Countdown, duration: int) -> None:
        """Test duration must be positive."""
        with pytest.raises(ValueError):
            countdown.start(duration)

    def test_restart_after_cancel_uses_full_duration(
        self, sched: VirtualScheduler, countdown: Countdown
    ) -> None:
        """Test reset is cancel then start."""
        events = record(countdown)
        countdown.start(5)
        sched.advance(3.0)
        countdown.cancel()
        events.clear()

        countdown.start(5)
        assert countdown.remaining == 5
        sched.advance(5.0)

        assert events[0] == CountdownTick(4)
        assert events[-1] == CountdownExpired(5)

    def test_restart_after_expiry(self, sched: VirtualScheduler, countdown: Countdown) -> None:
        """Test an expired countdown can be started again."""
        countdown.start(1)
        sched.advance(1.0)
        countdown.start(2)
        assert countdown.is_running
        assert countdown.duration == 2
