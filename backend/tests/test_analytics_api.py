"""API tests for /api/analytics."""
from datetime import datetime, timezone

import pytest

from factories import create_key, make_event, recent


@pytest.fixture
def seeded(client, auth_headers):
    events = [
        make_event(deviceInfo={"type": "desktop"}, userId="v1"),
        make_event(deviceInfo={"type": "desktop"}, session_id="session_2"),
        make_event(deviceInfo={"type": "mobile"}),
        make_event("click", deviceInfo={"type": "desktop"}, timestamp=recent(minutes=2)),
        make_event("error", eventData={"message": "boom", "type": "TypeError"}, timestamp=recent(minutes=2)),
        make_event("performance", eventData={"loadTime": 250}),
    ]
    response = client.post("/api/tracking/events", json={"events": events}, headers=auth_headers)
    assert response.json()["processed"] == len(events)
    return events


def test_dashboard_sections(client, auth_headers, seeded):
    response = client.get("/api/analytics/dashboard", params={"range": "24h"}, headers=auth_headers)

    assert response.status_code == 200
    body = response.json()
    assert body["range"] == "24h"
    assert set(body) >= {"pageViews", "userSessions", "interactions", "performance", "devices", "errors"}

    assert sum(row["views"] for row in body["pageViews"]) == 3
    assert body["interactions"] == [{"type": "click", "count": 1, "uniqueUsers": 1}]
    assert body["performance"][0]["metrics"]["loadTime"] == 250.0
    assert body["errors"][0]["type"] == "TypeError"
    assert body["errors"][0]["affectedSessions"] == 1

    devices = {row["type"]: row for row in body["devices"]}
    assert devices["desktop"]["count"] == 3
    assert devices["unknown"]["count"] == 2
    assert sum(row["percentage"] for row in body["devices"]) == pytest.approx(100.0)
    assert body["devices"][0]["type"] == "desktop"


def test_dashboard_is_cached_per_range(client, auth_headers, seeded):
    first = client.get("/api/analytics/dashboard", headers=auth_headers)
    second = client.get("/api/analytics/dashboard", headers=auth_headers)
    other_range = client.get("/api/analytics/dashboard", params={"range": "30d"}, headers=auth_headers)

    assert first.headers["X-Cache"] == "MISS"
    assert second.headers["X-Cache"] == "HIT"
    assert other_range.headers["X-Cache"] == "MISS"
    assert second.json() == first.json()


def test_dashboard_cache_is_not_shared_between_principals(client, auth_headers, seeded):
    client.get("/api/analytics/dashboard", headers=auth_headers)
    other = {"X-API-Key": create_key(client, principal_id="site-2")}

    assert client.get("/api/analytics/dashboard", headers=other).headers["X-Cache"] == "MISS"


def test_dashboard_rejects_unknown_range(client, auth_headers):
    response = client.get("/api/analytics/dashboard", params={"range": "1y"}, headers=auth_headers)

    assert response.status_code == 400
    assert response.json()["error"]["details"]["allowed"] == ["24h", "7d", "30d", "90d"]


def test_realtime_counts_last_minutes(client, auth_headers):
    events = [
        make_event("click", timestamp=recent(minutes=1)),
        make_event("click", timestamp=recent(minutes=1)),
        make_event("click", timestamp=recent(minutes=30)),
    ]
    client.post("/api/tracking/events", json={"events": events}, headers=auth_headers)

    first = client.get("/api/analytics/realtime", headers=auth_headers)
    rows = first.json()

    assert sum(row["count"] for row in rows if row["eventType"] == "click") == 2
    assert all(row["activeUsers"] == 1 for row in rows)
    assert "X-Cache" not in first.headers


def test_page_views_and_visitors(client, auth_headers, seeded):
    params = {"startDate": recent(hours=3), "endDate": recent(minutes=-5)}
    today = datetime.now(timezone.utc).strftime("%Y-%m-%d")

    views = client.get("/api/analytics/pageviews", params=params, headers=auth_headers).json()
    visitors = client.get("/api/analytics/visitors", params=params, headers=auth_headers).json()

    total_views = sum(row["views"] for row in views)
    assert total_views == 3
    assert {row["date"] for row in views} <= {today, recent(hours=3)[:10]}
    assert sum(row["sessions"] for row in visitors) >= 2
    assert all(row["uniqueVisitors"] == 1 for row in visitors)


def test_page_views_require_dates_and_known_interval(client, auth_headers):
    missing = client.get("/api/analytics/pageviews", headers=auth_headers)
    bad_interval = client.get(
        "/api/analytics/pageviews",
        params={"startDate": recent(hours=1), "endDate": recent(), "interval": "fortnight"},
        headers=auth_headers,
    )
    reversed_range = client.get(
        "/api/analytics/visitors",
        params={"startDate": recent(), "endDate": recent(hours=1)},
        headers=auth_headers,
    )

    assert missing.status_code == 400
    assert bad_interval.status_code == 400
    assert reversed_range.status_code == 400


def test_analytics_requires_scope(client):
    headers = {"X-API-Key": create_key(client, scopes=["events:write"])}

    assert client.get("/api/analytics/realtime", headers=headers).status_code == 403


def test_health_and_metrics(client, auth_headers, seeded):
    health = client.get("/health").json()
    metrics = client.get("/metrics").json()

    assert health["status"] == "healthy"
    assert metrics["cache"]["size"] >= 1
    assert "tracking_events_processed" in metrics["metrics"]


def test_behavior_conversions_sessions_and_performance(client, auth_headers, seeded):
    extra = [
        make_event("click", url="https://shop.example.com/cart", timestamp=recent(minutes=2)),
        make_event("conversion", eventData={"goalType": "purchase", "value": 30}),
        make_event("conversion", eventData={"goalType": "signup"}),
        make_event("session_start", session_id="session_9", timestamp=recent(minutes=20)),
        make_event("session_end", session_id="session_9", timestamp=recent(minutes=10)),
    ]
    client.post("/api/tracking/events", json={"events": extra}, headers=auth_headers)
    params = {"startDate": recent(hours=3), "endDate": recent(minutes=-5)}

    def get(path, **query):
        response = client.get(f"/api/analytics/{path}", params={**params, **query}, headers=auth_headers)
        assert response.status_code == 200, response.text
        return response.json()

    behavior = get("behavior")
    purchases = get("conversions", goalType="purchase")
    sessions = get("sessions")
    performance = get("performance", interval="day")

    assert sum(page["totalInteractions"] for page in behavior) == 2
    assert "https://shop.example.com/cart" in {page["page"] for page in behavior}
    assert sum(row["conversions"] for row in purchases) == 1
    assert sum(row["value"] for row in purchases) == 30.0
    assert [session["sessionId"] for session in sessions] == ["session_9"]
    assert sessions[0]["duration"] == pytest.approx(600_000.0, abs=1_000)
    assert performance[0]["metrics"]["loadTime"] == 250.0


def test_new_analytics_routes_require_a_date_range(client, auth_headers):
    for path in ("behavior", "conversions", "sessions", "performance"):
        assert client.get(f"/api/analytics/{path}", headers=auth_headers).status_code == 400
