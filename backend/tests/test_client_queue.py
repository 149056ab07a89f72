"""Tests for the client event queue."""
import asyncio

import pytest

from clickstream.client.config import TrackerConfig
from clickstream.client.queue import EventQueue
from factories import FakeClock, FakeTransport


def _event(name):
    return {"eventType": "click", "name": name}


def _names(events):
    return [event["name"] for event in events]


def _queue(transport, clock=None, dead=None, **config):
    config.setdefault("batch_size", 100)
    config.setdefault("retry_delay", 0)
    return EventQueue(
        TrackerConfig(**config),
        transport,
        clock=clock or FakeClock(),
        on_dead_letter=dead.extend if dead is not None else None,
    )


@pytest.mark.asyncio
async def test_failed_batch_goes_back_in_front_of_newer_events():
    transport = FakeTransport(fail=1)
    transport.gate = asyncio.Event()
    queue = _queue(transport)
    queue.enqueue(_event("A"))
    queue.enqueue(_event("B"))

    in_flight = asyncio.create_task(queue.flush())
    await asyncio.sleep(0)
    assert queue.is_flushing
    assert await queue.flush() is False

    queue.enqueue(_event("C"))
    queue.enqueue(_event("D"))
    transport.gate.set()
    assert await in_flight is False

    assert _names(queue.events) == ["A", "B", "C", "D"]

    transport.gate = None
    assert await queue.flush() is True
    assert [_names(batch) for batch in transport.sent] == [["A", "B", "C", "D"]]
    assert len(queue) == 0


@pytest.mark.asyncio
async def test_empty_queue_does_not_send():
    transport = FakeTransport()

    assert await _queue(transport).flush() is False
    assert transport.calls == 0


@pytest.mark.asyncio
async def test_flush_is_skipped_during_backoff():
    clock = FakeClock()
    transport = FakeTransport(fail=2)
    queue = _queue(transport, clock=clock, retry_delay=1, max_backoff=60)
    queue.enqueue(_event("A"))

    assert await queue.flush() is False
    assert queue.backoff_remaining == 1

    assert await queue.flush() is False
    assert transport.calls == 1

    clock.advance(1)
    assert await queue.flush() is False
    assert queue.backoff_remaining == 2

    clock.advance(2)
    assert await queue.flush() is True
    assert queue.backoff_remaining == 0


@pytest.mark.asyncio
async def test_backoff_is_capped():
    clock = FakeClock()
    transport = FakeTransport(fail=3)
    queue = _queue(transport, clock=clock, retry_delay=10, max_backoff=15, max_retries=5)
    queue.enqueue(_event("A"))

    await queue.flush()
    assert queue.backoff_remaining == 10
    clock.advance(10)
    await queue.flush()
    assert queue.backoff_remaining == 15


@pytest.mark.asyncio
async def test_events_are_dead_lettered_after_max_retries():
    dead = []
    transport = FakeTransport(fail=10)
    queue = _queue(transport, dead=dead, max_retries=1)
    queue.enqueue(_event("A"))

    await queue.flush()
    assert _names(queue.events) == ["A"]
    assert dead == []

    queue.enqueue(_event("B"))
    await queue.flush()

    assert _names(dead) == ["A"]
    assert _names(queue.events) == ["B"]


def test_queue_drops_oldest_beyond_page_limit():
    queue = _queue(FakeTransport(), max_events_per_page=3)

    for name in "ABCDE":
        queue.enqueue(_event(name))

    assert _names(queue.events) == ["C", "D", "E"]


def test_reaching_batch_size_without_a_loop_keeps_events():
    queue = _queue(FakeTransport(), batch_size=2)

    queue.enqueue(_event("A"))
    queue.enqueue(_event("B"))

    assert len(queue) == 2


@pytest.mark.asyncio
async def test_reaching_batch_size_schedules_a_flush():
    transport = FakeTransport()
    queue = _queue(transport, batch_size=2)

    queue.enqueue(_event("A"))
    await asyncio.sleep(0)
    assert transport.sent == []

    queue.enqueue(_event("B"))
    await asyncio.sleep(0)
    await asyncio.sleep(0)

    assert [_names(batch) for batch in transport.sent] == [["A", "B"]]


@pytest.mark.asyncio
async def test_periodic_timer_flushes():
    transport = FakeTransport()
    queue = _queue(transport, flush_interval=0.01)
    queue.enqueue(_event("A"))

    queue.start_timer()
    await asyncio.sleep(0.05)
    queue.stop_timer()

    assert [_names(batch) for batch in transport.sent] == [["A"]]
    assert not queue.timer_running


@pytest.mark.asyncio
async def test_unload_hands_everything_to_one_beacon():
    transport = FakeTransport()
    queue = _queue(transport, flush_interval=0.01)
    queue.start_timer()
    for name in "ABC":
        queue.enqueue(_event(name))

    handed_off = queue.flush_sync()
    await asyncio.sleep(0.03)

    assert handed_off == 3
    assert [_names(batch) for batch in transport.beacons] == [["A", "B", "C"]]
    assert transport.sent == []
    assert len(queue) == 0
    assert not queue.timer_running


@pytest.mark.asyncio
async def test_forced_synchronous_flush_uses_beacon():
    transport = FakeTransport()
    queue = _queue(transport)
    queue.enqueue(_event("A"))

    assert await queue.flush(force_synchronous=True) is True
    assert len(transport.beacons) == 1
    assert await queue.flush(force_synchronous=True) is False


class BrokenTransport(FakeTransport):
    async def send(self, events):
        self.calls += 1
        raise OSError("connection reset")


@pytest.mark.asyncio
async def test_unexpected_send_error_keeps_the_batch():
    transport = BrokenTransport()
    queue = _queue(transport)
    queue.enqueue(_event("A"))
    queue.enqueue(_event("B"))

    assert await queue.flush() is False

    assert _names(queue.events) == ["A", "B"]
    assert not queue.is_flushing
    assert queue.backoff_remaining == 0


@pytest.mark.asyncio
async def test_unexpected_error_on_batch_triggered_flush_is_contained():
    transport = BrokenTransport()
    queue = _queue(transport, batch_size=2)

    queue.enqueue(_event("A"))
    queue.enqueue(_event("B"))
    await asyncio.sleep(0)
    await asyncio.sleep(0)

    assert transport.calls == 1
    assert _names(queue.events) == ["A", "B"]


@pytest.mark.asyncio
async def test_cancelled_flush_puts_the_batch_back():
    transport = FakeTransport()
    transport.gate = asyncio.Event()
    queue = _queue(transport)
    queue.enqueue(_event("A"))

    in_flight = asyncio.create_task(queue.flush())
    await asyncio.sleep(0)
    queue.enqueue(_event("B"))
    in_flight.cancel()
    with pytest.raises(asyncio.CancelledError):
        await in_flight

    assert _names(queue.events) == ["A", "B"]
