import asyncio

import pytest

from mock_interviewer.orchestrator.timer import InterviewTimer


class FakeClock:
    def __init__(self, now: float = 0.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class TestInterviewTimer:
    """Tests for the pause-aware interview timer."""

    @pytest.fixture
    def clock(self) -> FakeClock:
        return FakeClock()

    @pytest.fixture
    def expirations(self) -> list[float]:
        return []

    @pytest.fixture
    def timer(self, clock, expirations) -> InterviewTimer:
        return InterviewTimer(300, clock=clock, on_expired=lambda: expirations.append(clock.now))

    def test_remaining_before_start_is_full_budget(self, timer, clock):
        clock.advance(50)
        assert timer.remaining_seconds() == 300
        assert timer.elapsed_seconds() == 0

    def test_pause_scenario_reaches_zero_exactly_once(self, timer, clock, expirations):
        timer.start()
        clock.advance(100)
        timer.pause()
        assert timer.remaining_seconds() == 200

        clock.advance(50)
        assert timer.remaining_seconds() == 200

        timer.resume()
        clock.advance(199)
        assert timer.remaining_seconds() == pytest.approx(1)

        clock.advance(1)
        assert timer.remaining_seconds() == 0
        assert expirations == [350]

        clock.advance(100)
        assert timer.remaining_seconds() == 0
        assert expirations == [350]

    def test_remaining_is_non_increasing_and_frozen_while_paused(self, timer, clock):
        timer.start()
        readings = []
        for step in range(20):
            was_paused = timer.paused
            clock.advance(7)
            value = timer.remaining_seconds()
            if was_paused:
                assert value == readings[-1]
            readings.append(value)
            if step % 5 == 2:
                timer.pause()
            if step % 5 == 4:
                timer.resume()
        assert readings == sorted(readings, reverse=True)
        assert all(r >= 0 for r in readings)

    def test_repeated_pause_and_resume_are_idempotent(self, timer, clock):
        timer.start()
        clock.advance(10)
        timer.pause()
        clock.advance(5)
        timer.pause()
        clock.advance(5)
        timer.resume()
        timer.resume()
        clock.advance(10)
        assert timer.state.total_paused_seconds == 10
        assert timer.remaining_seconds() == 280

    def test_calls_in_any_order_do_not_raise(self, clock):
        timer = InterviewTimer(60, clock=clock)
        timer.resume()
        timer.pause()
        timer.resume()
        timer.start()
        timer.start()
        assert timer.remaining_seconds() == 60

    def test_pause_before_start_holds_clock_until_resume(self, clock):
        timer = InterviewTimer(60, clock=clock)
        timer.pause()
        timer.start()
        clock.advance(30)
        assert timer.remaining_seconds() == 60
        timer.resume()
        clock.advance(30)
        assert timer.remaining_seconds() == 30

    def test_overlapping_holds_resume_only_after_all_released(self, timer, clock):
        timer.start()
        clock.advance(10)
        timer.pause("user")
        timer.pause("processing")
        clock.advance(10)
        timer.resume("processing")
        clock.advance(10)
        assert timer.paused
        assert timer.remaining_seconds() == 290
        timer.resume("user")
        clock.advance(10)
        assert timer.remaining_seconds() == 280

    def test_overshoot_clamps_to_zero(self, timer, clock, expirations):
        timer.start()
        clock.advance(1000)
        assert timer.expired
        assert len(expirations) == 1

    def test_format_remaining(self, timer, clock):
        timer.start()
        assert timer.format_remaining() == "5:00"
        clock.advance(61.5)
        assert timer.format_remaining() == "3:59"

    def test_state_snapshot(self, timer, clock):
        clock.advance(3)
        timer.start()
        clock.advance(4)
        timer.pause()
        state = timer.state
        assert state.start_epoch == 3
        assert state.pause_start_epoch == 7
        assert state.total_paused_seconds == 0


@pytest.mark.asyncio
async def test_ticker_fires_expiry_without_polling() -> None:
    clock = FakeClock()
    fired = asyncio.Event()
    timer = InterviewTimer(5, clock=clock, on_expired=fired.set)
    timer.start()
    task = timer.start_ticker(0.001)
    clock.advance(6)
    await asyncio.wait_for(fired.wait(), timeout=1.0)
    await asyncio.wait_for(task, timeout=1.0)
    assert timer.expired


@pytest.mark.asyncio
async def test_stop_ticker_cancels_task() -> None:
    timer = InterviewTimer(60, clock=FakeClock())
    timer.start()
    task = timer.start_ticker(10)
    await asyncio.sleep(0)
    timer.stop_ticker()
    with pytest.raises(asyncio.CancelledError):
        await task
