"""Tracker facade tying the queue, throttles and session lifecycle together."""
import secrets
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from clickstream.client.activity import AsyncioScheduler, Scheduler, SessionLifecycle, SessionState, Throttle
from clickstream.client.config import TrackerConfig
from clickstream.client.logger import logger
from clickstream.client.queue import DeadLetterCallback, EventQueue
from clickstream.client.storage import MemoryStorage, Storage
from clickstream.client.transport import HttpTransport, Transport
from clickstream.constants import EventType

USER_ID_KEY = "clickstream_user_id"


def new_session_id(wall_clock: Callable[[], float] = time.time) -> str:
    return f"session_{int(wall_clock() * 1000)}_{secrets.token_hex(5)}"


class Tracker:
    """Records interactions and delivers them to the ingestion endpoint.

    Call :meth:`start` on a running event loop, feed interactions through the
    ``track_*`` methods, and call :meth:`unload` when the page goes away.
    """

    def __init__(
        self,
        config: Optional[TrackerConfig] = None,
        transport: Optional[Transport] = None,
        scheduler: Optional[Scheduler] = None,
        storage: Optional[Storage] = None,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], float] = time.time,
        on_dead_letter: Optional[DeadLetterCallback] = None,
        url: Optional[str] = None,
        device_info: Optional[Dict[str, Any]] = None,
        network_info: Optional[Dict[str, Any]] = None,
    ):
        self.config = config or TrackerConfig()
        self.transport = transport or HttpTransport(self.config)
        self.storage = storage or MemoryStorage()
        self._wall_clock = wall_clock
        self.url = url
        self.device_info = device_info
        self.network_info = network_info

        self.user_id = self.storage.get(USER_ID_KEY)
        if not self.user_id:
            self.user_id = str(uuid.uuid4())
            self.storage.set(USER_ID_KEY, self.user_id)
        self.session_id: Optional[str] = None

        self.queue = EventQueue(self.config, self.transport, clock=clock, on_dead_letter=on_dead_letter)
        self.lifecycle = SessionLifecycle(
            timeout=self.config.session_timeout,
            grace=self.config.idle_close_grace,
            scheduler=scheduler or AsyncioScheduler(),
            on_open=self._session_opened,
            on_idle=self._session_idle,
            on_close=self._session_closed,
        )
        self.throttles = {
            EventType.MOUSE_MOVE: Throttle(self.config.mouse_move_throttle, clock),
            EventType.SCROLL: Throttle(self.config.scroll_throttle, clock),
            EventType.VIEWPORT_RESIZE: Throttle(self.config.resize_throttle, clock),
        }
        self._unloaded = False

    # Lifecycle callbacks

    def _session_opened(self) -> None:
        self.session_id = new_session_id(self._wall_clock)
        self._enqueue(EventType.SESSION_START, {})

    def _session_idle(self) -> None:
        self._enqueue(EventType.USER_IDLE, {"timeout": self.config.session_timeout})

    def _session_closed(self, reason: str) -> None:
        self._enqueue(EventType.SESSION_END, {"reason": reason})

    # Event construction

    def _timestamp(self) -> str:
        return datetime.fromtimestamp(self._wall_clock(), tz=timezone.utc).isoformat()

    def _enqueue(self, event_type: str, data: Dict[str, Any]) -> Dict[str, Any]:
        event = {
            "eventType": event_type,
            "userId": self.user_id,
            "sessionId": self.session_id,
            "timestamp": self._timestamp(),
            "eventData": data,
        }
        if self.url:
            event["url"] = self.url
        if self.device_info:
            event["deviceInfo"] = self.device_info
        if self.network_info:
            event["networkInfo"] = self.network_info

        if self.config.debug:
            logger.debug(f"Queued {event_type}: {data}")
        self.queue.enqueue(event)
        return event

    def track(self, event_type: str, data: Optional[Dict[str, Any]] = None, activity: bool = True) -> Optional[Dict[str, Any]]:
        """
        Queue an event, counting it as user activity unless told otherwise.

        Returns:
            The queued event, or None after :meth:`unload`
        """
        if self._unloaded:
            return None
        if activity:
            self.lifecycle.activity()
        elif self.lifecycle.state == SessionState.CLOSED:
            self.lifecycle.open()
        return self._enqueue(event_type, dict(data or {}))

    def _throttled(self, event_type: str, data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        if not self.throttles[event_type].allow():
            return None
        return self.track(event_type, data)

    # Public API

    def start(self) -> None:
        """Open the first session, record the page view and start the flush timer."""
        self.lifecycle.open()
        self.track_page_view()
        self.queue.start_timer()

    def track_page_view(self, title: Optional[str] = None, referrer: Optional[str] = None) -> Optional[Dict[str, Any]]:
        data = {"url": self.url, "title": title, "referrer": referrer}
        return self.track(EventType.PAGE_VIEW, {k: v for k, v in data.items() if v is not None})

    def track_pointer_move(self, x: int, y: int) -> Optional[Dict[str, Any]]:
        if not self.config.features.track_mouse_movement:
            return None
        return self._throttled(EventType.MOUSE_MOVE, {"x": x, "y": y})

    def track_scroll(self, x: int, y: int, depth: Optional[float] = None) -> Optional[Dict[str, Any]]:
        if not self.config.features.track_scroll:
            return None
        data: Dict[str, Any] = {"x": x, "y": y}
        if depth is not None:
            data["depth"] = depth
        return self._throttled(EventType.SCROLL, data)

    def track_resize(self, width: int, height: int) -> Optional[Dict[str, Any]]:
        return self._throttled(EventType.VIEWPORT_RESIZE, {"width": width, "height": height})

    def track_click(self, x: int, y: int, target: Optional[str] = None, **extra: Any) -> Optional[Dict[str, Any]]:
        if not self.config.features.track_clicks:
            return None
        data: Dict[str, Any] = {"x": x, "y": y, **extra}
        if target:
            data["target"] = target
        return self.track(EventType.CLICK, data)

    def track_form(self, action: str, field: Optional[str] = None, form_id: Optional[str] = None) -> Optional[Dict[str, Any]]:
        """Record ``focus``, ``blur``, ``change`` or ``submit`` on a form."""
        if not self.config.features.track_forms:
            return None
        data = {"fieldName": field, "formId": form_id}
        return self.track(f"form_{action}", {k: v for k, v in data.items() if v is not None})

    def track_error(self, message: str, error_type: Optional[str] = None, stack: Optional[str] = None) -> Optional[Dict[str, Any]]:
        if not self.config.features.track_errors:
            return None
        data = {"message": message, "type": error_type, "stack": stack}
        return self.track(EventType.ERROR, {k: v for k, v in data.items() if v is not None}, activity=False)

    def track_performance(self, **metrics: float) -> Optional[Dict[str, Any]]:
        if not self.config.features.track_performance:
            return None
        return self.track(EventType.PERFORMANCE, metrics, activity=False)

    def track_visibility(self, hidden: bool) -> Optional[Dict[str, Any]]:
        return self.track(EventType.VISIBILITY_CHANGE, {"hidden": hidden}, activity=False)

    def track_network_change(self, online: bool, **connection: Any) -> Optional[Dict[str, Any]]:
        """Record a connectivity change; later events carry the new ``networkInfo``."""
        self.network_info = {"online": online, **connection}
        data: Dict[str, Any] = {"online": online}
        if connection:
            data["connection"] = connection
        return self.track(EventType.NETWORK_CHANGE, data, activity=False)

    def track_conversion(self, goal_type: str, value: Optional[float] = None) -> Optional[Dict[str, Any]]:
        data: Dict[str, Any] = {"goalType": goal_type}
        if value is not None:
            data["value"] = value
        return self.track(EventType.CONVERSION, data)

    def track_custom(self, name: str, data: Optional[Dict[str, Any]] = None) -> Optional[Dict[str, Any]]:
        return self.track(f"{EventType.CUSTOM_PREFIX}{name}", data)

    async def flush(self) -> bool:
        return await self.queue.flush()

    def unload(self) -> int:
        """
        Page is going away: record the exit, close the session and hand
        everything queued to the beacon.

        Returns:
            Number of events handed to the beacon
        """
        if self._unloaded:
            return 0
        self._enqueue(EventType.PAGE_EXIT, {"url": self.url} if self.url else {})
        self.lifecycle.close("unload")
        self._unloaded = True
        return self.queue.flush_sync()

    async def aclose(self) -> None:
        """Stop the timer, deliver what is left and release the HTTP client."""
        self.queue.stop_timer()
        if not self._unloaded:
            await self.queue.flush()
        aclose = getattr(self.transport, "aclose", None)
        if aclose is not None:
            await aclose()
