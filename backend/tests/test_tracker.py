"""Tests for the Tracker facade."""
import pytest

from clickstream.client.config import TrackerConfig, TrackerFeatures
from clickstream.client.storage import FileStorage, MemoryStorage
from clickstream.client.tracker import USER_ID_KEY, Tracker
from factories import FakeClock, FakeTransport, ManualScheduler

WALL_CLOCK = 1709546130.0


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def transport():
    return FakeTransport()


def _tracker(scheduler, transport, storage=None, **config):
    config.setdefault("batch_size", 100)
    config.setdefault("session_timeout", 60)
    return Tracker(
        TrackerConfig(api_key="cs_test", **config),
        transport=transport,
        scheduler=scheduler,
        storage=storage or MemoryStorage(),
        clock=FakeClock(0.0),
        wall_clock=lambda: WALL_CLOCK,
        url="https://shop.example.com/cart",
        device_info={"type": "desktop"},
    )


def _types(tracker):
    return [event["eventType"] for event in tracker.queue.events]


def test_first_interaction_opens_a_session(scheduler, transport):
    tracker = _tracker(scheduler, transport)

    click = tracker.track_click(10, 20, target="button#buy")

    assert _types(tracker) == ["session_start", "click"]
    assert click["sessionId"].startswith("session_1709546130000_")
    assert click["eventData"] == {"x": 10, "y": 20, "target": "button#buy"}
    assert click["url"] == "https://shop.example.com/cart"
    assert click["deviceInfo"] == {"type": "desktop"}
    assert click["timestamp"] == "2024-03-04T09:55:30+00:00"
    assert {event["sessionId"] for event in tracker.queue.events} == {tracker.session_id}


def test_user_id_survives_tracker_instances(scheduler, transport, tmp_path):
    storage = FileStorage(str(tmp_path / "tracker.json"))

    first = _tracker(scheduler, transport, storage=storage)
    second = _tracker(scheduler, transport, storage=storage)

    assert first.user_id == second.user_id
    assert storage.get(USER_ID_KEY) == first.user_id


def test_unreadable_storage_starts_fresh(scheduler, transport, tmp_path):
    path = tmp_path / "tracker.json"
    path.write_text("{not json")

    tracker = _tracker(scheduler, transport, storage=FileStorage(str(path)))

    assert tracker.user_id
    assert FileStorage(str(path)).get(USER_ID_KEY) == tracker.user_id


def test_idle_timeout_closes_and_next_interaction_starts_new_session(scheduler, transport):
    tracker = _tracker(scheduler, transport)
    tracker.track_click(1, 1)
    first_session = tracker.session_id

    scheduler.advance(60)
    tracker.track_scroll(0, 400)

    assert _types(tracker) == ["session_start", "click", "user_idle", "session_end", "session_start", "scroll"]
    assert tracker.queue.events[3]["eventData"] == {"reason": "idle_timeout"}
    assert tracker.queue.events[3]["sessionId"] == first_session
    assert tracker.session_id != first_session


def test_passive_events_do_not_extend_the_session(scheduler, transport):
    tracker = _tracker(scheduler, transport)
    tracker.track_click(1, 1)

    scheduler.advance(40)
    tracker.track_error("boom", error_type="TypeError")
    tracker.track_performance(loadTime=120.0)
    scheduler.advance(20)

    assert _types(tracker)[-2:] == ["user_idle", "session_end"]


def test_high_frequency_sources_are_throttled(scheduler, transport):
    tracker = _tracker(scheduler, transport)

    for i in range(50):
        tracker.track_pointer_move(i, i)
        tracker.track_resize(800, 600)

    assert _types(tracker).count("mouse_move") == 1
    assert _types(tracker).count("viewport_resize") == 1


def test_disabled_features_record_nothing(scheduler, transport):
    tracker = _tracker(
        scheduler,
        transport,
        features=TrackerFeatures(track_clicks=False, track_forms=False, track_errors=False),
    )

    assert tracker.track_click(1, 1) is None
    assert tracker.track_form("submit", form_id="checkout") is None
    assert tracker.track_error("boom") is None
    assert len(tracker.queue) == 0


def test_form_and_custom_event_names(scheduler, transport):
    tracker = _tracker(scheduler, transport)

    tracker.track_form("submit", field="email", form_id="signup")
    tracker.track_custom("added_to_cart", {"sku": "A-1"})

    assert _types(tracker)[-2:] == ["form_submit", "custom_added_to_cart"]
    assert tracker.queue.events[-2]["eventData"] == {"fieldName": "email", "formId": "signup"}


@pytest.mark.asyncio
async def test_unload_sends_one_beacon_with_everything(scheduler, transport):
    tracker = _tracker(scheduler, transport)
    tracker.start()
    tracker.track_click(5, 5)

    handed_off = tracker.unload()

    assert handed_off == 5
    assert len(transport.beacons) == 1
    assert [e["eventType"] for e in transport.beacons[0]] == [
        "session_start",
        "page_view",
        "click",
        "page_exit",
        "session_end",
    ]
    assert transport.beacons[0][-1]["eventData"] == {"reason": "unload"}
    assert len(tracker.queue) == 0
    assert not tracker.queue.timer_running
    assert scheduler.pending == []

    assert tracker.track_click(1, 1) is None
    assert tracker.unload() == 0


@pytest.mark.asyncio
async def test_flush_sends_queued_events(scheduler, transport):
    tracker = _tracker(scheduler, transport)
    tracker.track_page_view(title="Cart")

    assert await tracker.flush() is True
    await tracker.aclose()

    assert [e["eventType"] for e in transport.sent[0]] == ["session_start", "page_view"]
    assert transport.sent[0][1]["eventData"]["title"] == "Cart"


def test_network_change_updates_network_info(scheduler, transport):
    tracker = _tracker(scheduler, transport)

    tracker.track_network_change(False, effectiveType="3g")
    tracker.track_click(1, 2)

    change, click = tracker.queue.events[-2:]
    assert change["eventType"] == "network_change"
    assert change["eventData"] == {"online": False, "connection": {"effectiveType": "3g"}}
    assert click["networkInfo"] == {"online": False, "effectiveType": "3g"}


def test_conversion_carries_goal_and_value(scheduler, transport):
    tracker = _tracker(scheduler, transport)

    tracker.track_conversion("signup")
    tracker.track_conversion("purchase", value=49.5)

    assert [event["eventData"] for event in tracker.queue.events[-2:]] == [
        {"goalType": "signup"},
        {"goalType": "purchase", "value": 49.5},
    ]
