"""Unit tests for the virtual and asyncio-backed schedulers."""

import asyncio
import threading

import pytest

from speaktest.timing.scheduler import LoopScheduler, VirtualScheduler


class TestVirtualScheduler:
    """Tests for VirtualScheduler."""

    def test_clock_starts_at_given_time(self) -> None:
        """Test initial clock value."""
        assert VirtualScheduler().now() == 0.0
        assert VirtualScheduler(start=100.0).now() == 100.0

    def test_call_later_runs_when_due(self) -> None:
        """Test callbacks run only once their time arrives."""
        sched = VirtualScheduler()
        calls: list[float] = []
        sched.call_later(2.0, lambda: calls.append(sched.now()))

        sched.advance(1.0)
        assert calls == []

        sched.advance(1.0)
        assert calls == [2.0]
        assert sched.now() == 2.0

    def test_same_instant_runs_in_schedule_order(self) -> None:
        """Test FIFO order for callbacks due at the same time."""
        sched = VirtualScheduler()
        order: list[str] = []
        sched.call_later(1.0, lambda: order.append("a"))
        sched.call_later(1.0, lambda: order.append("b"))
        sched.call_soon(lambda: order.append("soon"))

        sched.advance(1.0)

        assert order == ["soon", "a", "b"]

    def test_cancelled_callback_does_not_run(self) -> None:
        """Test cancel() prevents execution."""
        sched = VirtualScheduler()
        calls: list[str] = []
        handle = sched.call_later(1.0, lambda: calls.append("x"))

        handle.cancel()
        handle.cancel()
        sched.advance(5.0)

        assert calls == []
        assert sched.pending == 0

    def test_followups_scheduled_during_advance_run(self) -> None:
        """Test callbacks scheduled by callbacks run if due within the window."""
        sched = VirtualScheduler()
        times: list[float] = []

        def tick() -> None:
            times.append(sched.now())
            if len(times) < 3:
                sched.call_later(1.0, tick)

        sched.call_later(1.0, tick)
        sched.advance(10.0)

        assert times == [1.0, 2.0, 3.0]
        assert sched.now() == 10.0

    def test_advance_rejects_negative(self) -> None:
        """Test the clock cannot move backwards."""
        with pytest.raises(ValueError):
            VirtualScheduler().advance(-1.0)

    def test_run_until_idle_does_not_move_clock(self) -> None:
        """Test run_until_idle only runs what is due now."""
        sched = VirtualScheduler()
        calls: list[str] = []
        sched.call_soon(lambda: calls.append("now"))
        sched.call_later(1.0, lambda: calls.append("later"))

        sched.run_until_idle()

        assert calls == ["now"]
        assert sched.now() == 0.0
        assert sched.pending == 1

    def test_run_stops_at_limit(self) -> None:
        """Test run() leaves callbacks past the limit queued."""
        sched = VirtualScheduler()
        calls: list[float] = []
        sched.call_later(5.0, lambda: calls.append(sched.now()))
        sched.call_later(50.0, lambda: calls.append(sched.now()))

        sched.run(limit=10.0)

        assert calls == [5.0]
        assert sched.pending == 1

    def test_call_soon_threadsafe_from_worker(self) -> None:
        """Test callbacks posted from another thread run on the next step."""
        sched = VirtualScheduler()
        calls: list[str] = []

        worker = threading.Thread(
            target=lambda: sched.call_soon_threadsafe(lambda: calls.append("worker"))
        )
        worker.start()
        worker.join()

        assert calls == []
        sched.run_until_idle()
        assert calls == ["worker"]


class TestLoopScheduler:
    """Tests for LoopScheduler."""

    def test_call_later_on_running_loop(self) -> None:
        """Test callbacks are delivered by the asyncio loop."""

        async def scenario() -> list[str]:
            sched = LoopScheduler()
            done = asyncio.Event()
            calls: list[str] = []

            def fire() -> None:
                calls.append("fired")
                done.set()

            sched.call_later(0.01, fire)
            await asyncio.wait_for(done.wait(), timeout=1.0)
            return calls

        assert asyncio.run(scenario()) == ["fired"]

    def test_now_follows_loop_time(self) -> None:
        """Test now() is the loop's monotonic clock."""

        async def scenario() -> tuple[float, float]:
            sched = LoopScheduler()
            return sched.now(), sched.loop.time()

        scheduler_time, loop_time = asyncio.run(scenario())
        assert loop_time >= scheduler_time

    def test_threadsafe_callback(self) -> None:
        """Test call_soon_threadsafe from a worker thread."""

        async def scenario() -> str:
            sched = LoopScheduler()
            future = asyncio.get_running_loop().create_future()
            threading.Thread(
                target=lambda: sched.call_soon_threadsafe(lambda: future.set_result("ok"))
            ).start()
            return await asyncio.wait_for(future, timeout=1.0)

        assert asyncio.run(scenario()) == "ok"

    def test_requires_loop(self) -> None:
        """Test construction outside a running loop without a loop fails."""
        with pytest.raises(RuntimeError):
            LoopScheduler()
