"""Tests for throttling and the session idle lifecycle."""
import pytest

from clickstream.client.activity import SessionLifecycle, SessionState, Throttle
from factories import FakeClock, ManualScheduler


def test_throttle_lets_one_event_through_per_window():
    throttle = Throttle(1.0, FakeClock(0.0))

    allowed = [throttle.allow(i / 100) for i in range(100)]

    assert allowed.count(True) == 1
    assert allowed[0] is True


def test_throttle_emits_once_per_interval_on_a_steady_stream():
    throttle = Throttle(1.0, FakeClock(0.0))

    allowed = [throttle.allow(i / 10) for i in range(50)]

    assert allowed.count(True) == 5


def test_throttle_uses_clock_and_reset():
    clock = FakeClock(0.0)
    throttle = Throttle(1.0, clock)

    assert throttle.allow() is True
    clock.advance(0.5)
    assert throttle.allow() is False
    throttle.reset()
    assert throttle.allow() is True


class Recorder:
    def __init__(self):
        self.calls = []

    def opened(self):
        self.calls.append("open")

    def idle(self):
        self.calls.append("idle")

    def closed(self, reason):
        self.calls.append(f"close:{reason}")


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def recorder():
    return Recorder()


def _lifecycle(scheduler, recorder, grace=0.0):
    return SessionLifecycle(
        timeout=60,
        grace=grace,
        scheduler=scheduler,
        on_open=recorder.opened,
        on_idle=recorder.idle,
        on_close=recorder.closed,
    )


def test_activity_keeps_a_single_deadline(scheduler, recorder):
    lifecycle = _lifecycle(scheduler, recorder)

    assert lifecycle.activity() is True
    for _ in range(20):
        scheduler.advance(30)
        assert lifecycle.activity() is False

    assert len(scheduler.pending) == 1
    assert lifecycle.state == SessionState.OPEN
    assert recorder.calls == ["open"]


def test_idle_then_close_after_grace(scheduler, recorder):
    lifecycle = _lifecycle(scheduler, recorder, grace=30)
    lifecycle.open()

    scheduler.advance(60)
    assert lifecycle.state == SessionState.IDLE_PENDING
    assert recorder.calls == ["open", "idle"]

    scheduler.advance(30)
    assert lifecycle.state == SessionState.CLOSED
    assert recorder.calls == ["open", "idle", "close:idle_timeout"]
    assert scheduler.pending == []


def test_activity_while_idle_resumes_the_session(scheduler, recorder):
    lifecycle = _lifecycle(scheduler, recorder, grace=30)
    lifecycle.open()
    scheduler.advance(60)

    scheduler.advance(10)
    assert lifecycle.activity() is False
    scheduler.advance(50)

    assert lifecycle.state == SessionState.OPEN
    assert recorder.calls == ["open", "idle"]


def test_zero_grace_closes_at_the_timeout(scheduler, recorder):
    lifecycle = _lifecycle(scheduler, recorder)
    lifecycle.open()

    scheduler.advance(60)

    assert recorder.calls == ["open", "idle", "close:idle_timeout"]


def test_activity_after_close_opens_new_session(scheduler, recorder):
    lifecycle = _lifecycle(scheduler, recorder)
    lifecycle.open()
    scheduler.advance(120)

    assert lifecycle.activity() is True
    assert recorder.calls.count("open") == 2
    assert lifecycle.state == SessionState.OPEN


def test_explicit_close_cancels_deadline(scheduler, recorder):
    lifecycle = _lifecycle(scheduler, recorder)
    lifecycle.open()

    assert lifecycle.close("unload") is True
    assert lifecycle.close("unload") is False
    scheduler.advance(600)

    assert recorder.calls == ["open", "close:unload"]
    assert scheduler.pending == []
