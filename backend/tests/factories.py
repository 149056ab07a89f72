"""Builders shared by the test modules."""
from datetime import datetime, timedelta, timezone

from fastapi.testclient import TestClient

from clickstream.client.transport import TransportError
from clickstream.config import Settings

ADMIN_KEY = "admin-secret"


def make_settings(**overrides) -> Settings:
    values = dict(
        database_url="sqlite://",
        environment="test",
        api_key_salt="test-salt",
        admin_api_key=ADMIN_KEY,
        cache_driver="memory",
        rate_limit_driver="memory",
        tracking_rate_limit=1000,
        analytics_rate_limit=1000,
    )
    values.update(overrides)
    return Settings(_env_file=None, **values)


def iso(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat()


def recent(minutes: int = 0, hours: int = 0) -> str:
    return iso(datetime.now(timezone.utc) - timedelta(minutes=minutes, hours=hours))


def make_event(event_type="page_view", session_id="session_1", **fields):
    event = {
        "eventType": event_type,
        "sessionId": session_id,
        "timestamp": fields.pop("timestamp", recent(minutes=1)),
        "eventData": fields.pop("eventData", {}),
    }
    event.update(fields)
    return event


def create_key(client: TestClient, principal_id: str = "site-1", scopes=None) -> str:
    body = {"principal_id": principal_id, "name": "test"}
    if scopes is not None:
        body["scopes"] = scopes
    response = client.post("/api/api-keys", json=body, headers={"X-Admin-Key": ADMIN_KEY})
    assert response.status_code == 201, response.text
    return response.json()["key"]


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeTransport:
    """Records batches; fails the next ``fail`` sends; ``gate`` holds sends open."""

    def __init__(self, fail: int = 0):
        self.fail = fail
        self.gate = None
        self.calls = 0
        self.sent = []
        self.beacons = []

    async def send(self, events):
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.fail:
            self.fail -= 1
            raise TransportError("service unavailable", 503)
        self.sent.append(list(events))

    def send_beacon(self, events):
        self.beacons.append(list(events))


class ManualTimer:
    def __init__(self, when, callback):
        self.when = when
        self.callback = callback
        self.cancelled = False
        self.fired = False

    def cancel(self):
        self.cancelled = True


class ManualScheduler:
    """Scheduler whose clock only moves when a test calls :meth:`advance`."""

    def __init__(self):
        self.now = 0.0
        self.timers = []

    def call_later(self, delay, callback):
        timer = ManualTimer(self.now + delay, callback)
        self.timers.append(timer)
        return timer

    @property
    def pending(self):
        return [t for t in self.timers if not t.cancelled and not t.fired]

    def advance(self, seconds):
        target = self.now + seconds
        while True:
            due = [t for t in self.pending if t.when <= target]
            if not due:
                break
            timer = min(due, key=lambda t: t.when)
            self.now = timer.when
            timer.fired = True
            timer.callback()
        self.now = target
