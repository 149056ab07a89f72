"""Tracker configuration."""
from pydantic import BaseModel, Field


class TrackerFeatures(BaseModel):
    """Which interaction sources the tracker records."""
    track_clicks: bool = True
    track_scroll: bool = True
    track_mouse_movement: bool = True
    track_forms: bool = True
    track_errors: bool = True
    track_performance: bool = True


class TrackerConfig(BaseModel):
    """Client tracker settings. Durations are in seconds."""

    endpoint: str = "http://localhost:8000/api/tracking"
    api_key: str = ""

    # Session
    session_timeout: float = Field(30 * 60, gt=0)
    idle_close_grace: float = Field(0, ge=0)

    # Batching
    batch_size: int = Field(10, ge=1)
    flush_interval: float = Field(5.0, gt=0)
    max_retries: int = Field(3, ge=0)
    retry_delay: float = Field(1.0, ge=0)
    max_backoff: float = Field(60.0, gt=0)
    max_events_per_page: int = Field(1000, ge=1)

    # Throttling
    mouse_move_throttle: float = Field(1.0, ge=0)
    scroll_throttle: float = Field(1.0, ge=0)
    resize_throttle: float = Field(1.0, ge=0)

    # Transport
    request_timeout: float = Field(10.0, gt=0)
    beacon_timeout: float = Field(5.0, gt=0)

    features: TrackerFeatures = Field(default_factory=TrackerFeatures)

    debug: bool = False

    @property
    def events_url(self) -> str:
        return f"{self.endpoint.rstrip('/')}/events"
