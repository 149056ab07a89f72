"""Client event queue and flush protocol.

Events are delivered in batches. A flush detaches the whole queue; on
failure the detached events go back in front of anything enqueued while the
request was in flight, so delivery order stays chronological. Repeated
failures back off exponentially and events that exhaust their retries are
dead-lettered.
"""
import asyncio
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from clickstream.client.config import TrackerConfig
from clickstream.client.logger import logger
from clickstream.client.transport import Transport, TransportError

DeadLetterCallback = Callable[[List[Dict[str, Any]]], None]


@dataclass
class QueuedEvent:
    payload: Dict[str, Any]
    attempts: int = 0


class EventQueue:
    """Batching queue in front of a Transport. Single event loop, no threads."""

    def __init__(
        self,
        config: TrackerConfig,
        transport: Transport,
        clock: Callable[[], float] = time.monotonic,
        on_dead_letter: Optional[DeadLetterCallback] = None,
    ):
        self.config = config
        self.transport = transport
        self._clock = clock
        self._on_dead_letter = on_dead_letter
        self._events: List[QueuedEvent] = []
        self._flushing = False
        self._failures = 0
        self._backoff_until = 0.0
        self._timer_task: Optional[asyncio.Task] = None
        self._pending_flush: Optional[asyncio.Task] = None

    def __len__(self) -> int:
        return len(self._events)

    @property
    def events(self) -> List[Dict[str, Any]]:
        return [event.payload for event in self._events]

    @property
    def is_flushing(self) -> bool:
        return self._flushing

    @property
    def backoff_remaining(self) -> float:
        return max(0.0, self._backoff_until - self._clock())

    def enqueue(self, event: Dict[str, Any]) -> None:
        """Append an event and schedule a flush once the batch size is reached."""
        self._events.append(QueuedEvent(event))
        self._enforce_limit()
        if len(self._events) >= self.config.batch_size:
            self._schedule_flush()

    def _enforce_limit(self) -> None:
        overflow = len(self._events) - self.config.max_events_per_page
        if overflow > 0:
            del self._events[:overflow]
            logger.warning(f"Event queue full, dropped {overflow} oldest events")

    def _schedule_flush(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop yet; the periodic timer picks the batch up later
            return
        if self._pending_flush is None or self._pending_flush.done():
            self._pending_flush = loop.create_task(self.flush())

    async def flush(self, force_synchronous: bool = False) -> bool:
        """
        Send everything queued.

        Args:
            force_synchronous: Hand the queue to the beacon path instead of
                awaiting a request (page unload)

        Returns:
            True if a batch was handed off successfully
        """
        if force_synchronous:
            return self.flush_sync() > 0

        if not self._events or self._flushing:
            return False
        if self._clock() < self._backoff_until:
            logger.debug(f"Flush skipped, backing off for {self.backoff_remaining:.1f}s")
            return False

        self._flushing = True
        batch, self._events = self._events, []
        for event in batch:
            event.attempts += 1

        try:
            await self.transport.send([event.payload for event in batch])
        except TransportError as e:
            self._handle_failure(batch, e)
            return False
        except asyncio.CancelledError:
            self._events = batch + self._events
            raise
        except Exception as e:
            logger.error(f"Unexpected error sending {len(batch)} events: {e}", exc_info=True)
            self._handle_failure(batch, e)
            return False
        finally:
            self._flushing = False

        self._failures = 0
        self._backoff_until = 0.0
        logger.debug(f"Flushed {len(batch)} events")
        return True

    def _handle_failure(self, batch: List[QueuedEvent], error: Exception) -> None:
        retry = [event for event in batch if event.attempts <= self.config.max_retries]
        dead = [event.payload for event in batch if event.attempts > self.config.max_retries]

        self._events = retry + self._events
        self._enforce_limit()

        self._failures += 1
        delay = min(self.config.retry_delay * 2 ** (self._failures - 1), self.config.max_backoff)
        self._backoff_until = self._clock() + delay
        logger.warning(f"Flush of {len(batch)} events failed ({error}); retrying in {delay:.1f}s")

        if dead:
            logger.warning(f"Dropping {len(dead)} events after {self.config.max_retries} retries")
            if self._on_dead_letter is not None:
                self._on_dead_letter(dead)

    def flush_sync(self) -> int:
        """
        Detach the whole queue and hand it to the transport's beacon.

        The periodic timer is stopped first so it cannot send the same
        events. Returns the number of events handed off.
        """
        self.stop_timer()
        if not self._events:
            return 0

        batch, self._events = self._events, []
        payloads = [event.payload for event in batch]
        self.transport.send_beacon(payloads)
        logger.debug(f"Beacon scheduled for {len(payloads)} events")
        return len(payloads)

    def start_timer(self) -> None:
        """Flush every ``flush_interval`` seconds on the running loop."""
        if self._timer_task is None or self._timer_task.done():
            self._timer_task = asyncio.get_running_loop().create_task(self._run_timer())

    def stop_timer(self) -> None:
        if self._timer_task is not None:
            self._timer_task.cancel()
            self._timer_task = None

    @property
    def timer_running(self) -> bool:
        return self._timer_task is not None and not self._timer_task.done()

    async def _run_timer(self) -> None:
        while True:
            await asyncio.sleep(self.config.flush_interval)
            await self.flush()
