"""Models package."""
from clickstream.models.api_key import APIKey
from clickstream.models.event import TrackingEvent

__all__ = ["APIKey", "TrackingEvent"]
