"""Client-side tracking SDK."""
from clickstream.client.activity import AsyncioScheduler, SessionLifecycle, SessionState, Throttle
from clickstream.client.config import TrackerConfig, TrackerFeatures
from clickstream.client.queue import EventQueue, QueuedEvent
from clickstream.client.storage import FileStorage, MemoryStorage
from clickstream.client.tracker import Tracker
from clickstream.client.transport import HttpTransport, TransportError

__all__ = [
    "AsyncioScheduler",
    "EventQueue",
    "FileStorage",
    "HttpTransport",
    "MemoryStorage",
    "QueuedEvent",
    "SessionLifecycle",
    "SessionState",
    "Throttle",
    "Tracker",
    "TrackerConfig",
    "TrackerFeatures",
    "TransportError",
]
