"""Throttling of high-frequency sources and the session idle lifecycle."""
import asyncio
import time
from enum import Enum
from typing import Callable, Optional, Protocol


class Throttle:
    """Let at most one event through per ``interval`` seconds.

    The reference time only moves when an event is emitted, so a steady
    stream faster than the interval yields exactly one event per interval.
    """

    def __init__(self, interval: float, clock: Callable[[], float] = time.monotonic):
        self.interval = interval
        self._clock = clock
        self._last: Optional[float] = None

    def allow(self, now: Optional[float] = None) -> bool:
        now = self._clock() if now is None else now
        if self._last is None or now - self._last >= self.interval:
            self._last = now
            return True
        return False

    def reset(self) -> None:
        self._last = None


class TimerHandle(Protocol):
    def cancel(self) -> None:
        ...


class Scheduler(Protocol):
    """Schedules one-shot callbacks; lets tests drive time by hand."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        ...


class AsyncioScheduler:
    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop

    def call_later(self, delay: float, callback: Callable[[], None]) -> asyncio.TimerHandle:
        loop = self._loop or asyncio.get_running_loop()
        return loop.call_later(delay, callback)


class SessionState(str, Enum):
    OPEN = "open"
    IDLE_PENDING = "idle_pending"
    CLOSED = "closed"


class SessionLifecycle:
    """
    Session state machine driven by a single cancellable deadline.

    ``OPEN`` moves to ``IDLE_PENDING`` when ``timeout`` passes without
    activity, then to ``CLOSED`` after a further ``grace`` period. Activity
    while idle resumes ``OPEN``; activity after ``CLOSED`` opens a new session.
    """

    def __init__(
        self,
        timeout: float,
        scheduler: Scheduler,
        on_open: Callable[[], None],
        on_idle: Callable[[], None],
        on_close: Callable[[str], None],
        grace: float = 0.0,
    ):
        self.timeout = timeout
        self.grace = grace
        self.scheduler = scheduler
        self._on_open = on_open
        self._on_idle = on_idle
        self._on_close = on_close
        self.state = SessionState.CLOSED
        self._deadline: Optional[TimerHandle] = None

    def _arm(self, delay: float, callback: Callable[[], None]) -> None:
        self._disarm()
        self._deadline = self.scheduler.call_later(delay, callback)

    def _disarm(self) -> None:
        if self._deadline is not None:
            self._deadline.cancel()
            self._deadline = None

    def open(self) -> None:
        if self.state != SessionState.CLOSED:
            return
        self.state = SessionState.OPEN
        self._on_open()
        self._arm(self.timeout, self._idle_deadline)

    def activity(self) -> bool:
        """Record a qualifying interaction. Returns True if it opened a new session."""
        if self.state == SessionState.CLOSED:
            self.open()
            return True
        self.state = SessionState.OPEN
        self._arm(self.timeout, self._idle_deadline)
        return False

    def close(self, reason: str) -> bool:
        """Close the session now. Returns False if it was already closed."""
        self._disarm()
        if self.state == SessionState.CLOSED:
            return False
        self.state = SessionState.CLOSED
        self._on_close(reason)
        return True

    def _idle_deadline(self) -> None:
        self._deadline = None
        if self.state != SessionState.OPEN:
            return
        self.state = SessionState.IDLE_PENDING
        self._on_idle()
        self._arm(self.grace, self._close_deadline)

    def _close_deadline(self) -> None:
        self._deadline = None
        if self.state == SessionState.IDLE_PENDING:
            self.close("idle_timeout")
