"""Tests for event and query validation."""
from datetime import timedelta

from clickstream.constants import MAX_EVENT_DATA_FIELDS
from clickstream.utils.validation import validate_date_range, validate_event, validate_query_params
from factories import make_event


def test_valid_event_produces_typed_payload():
    result = validate_event(make_event("performance", eventData={"loadTime": "1200", "custom": 1}))

    assert result.valid
    assert result.value.event_type == "performance"
    assert result.value.event_data == {"loadTime": 1200.0, "custom": 1}


def test_missing_required_fields_are_reported_together():
    result = validate_event({"eventData": {}})

    assert not result.valid
    assert "eventType is required" in result.errors
    assert "sessionId is required" in result.errors
    assert "timestamp is required" in result.errors


def test_unparseable_timestamp_is_invalid():
    result = validate_event(make_event(timestamp="not a date"))

    assert not result.valid
    assert result.errors == ["timestamp is not parseable"]


def test_non_object_event_is_invalid():
    assert not validate_event(["page_view"]).valid
    assert not validate_event(make_event(eventData="oops")).valid


def test_wrong_field_type_in_known_variant_is_invalid():
    result = validate_event(make_event("click", eventData={"x": "left"}))

    assert not result.valid
    assert result.errors[0].startswith("eventData.x")


def test_custom_fields_are_bounded():
    at_limit = {f"k{i}": i for i in range(MAX_EVENT_DATA_FIELDS)}
    over_limit = {f"k{i}": i for i in range(MAX_EVENT_DATA_FIELDS + 1)}

    assert validate_event(make_event("custom_signup", eventData=at_limit)).valid
    assert not validate_event(make_event("custom_signup", eventData=over_limit)).valid


def test_client_user_id_is_kept_separately():
    result = validate_event(make_event(userId="visitor-9"))

    assert result.value.client_user_id == "visitor-9"


def test_date_range_rules():
    ok = validate_date_range("2024-01-01T00:00:00Z", "2024-01-02T00:00:00Z")
    start, end = ok.value
    assert ok.valid and end - start == timedelta(days=1)

    assert not validate_date_range(None, None).valid
    assert validate_date_range(None, None, required=False).value == (None, None)
    assert not validate_date_range("2024-01-02T00:00:00Z", "2024-01-01T00:00:00Z").valid
    assert not validate_date_range("2020-01-01T00:00:00Z", "2024-01-01T00:00:00Z").valid
    assert not validate_date_range("garbage", "2024-01-01T00:00:00Z").valid


def test_query_params_coercion_and_defaults():
    schema = {
        "limit": {"type": "number", "min": 1, "max": 1000, "default": 100},
        "interval": {"type": "string", "enum": ["hour", "day"], "default": "day"},
        "userId": {"required": True},
    }

    result = validate_query_params({"limit": "25", "userId": "u1"}, schema)
    assert result.valid
    assert result.value == {"limit": 25, "interval": "day", "userId": "u1"}

    bad = validate_query_params({"limit": "5000", "interval": "year"}, schema)
    assert not bad.valid
    assert set(bad.errors) == {
        "limit must be at most 1000",
        "interval must be one of: hour, day",
        "userId is required",
    }


def test_network_and_conversion_payloads_are_typed():
    network = validate_event(make_event("network_change", eventData={"online": True, "connection": {"rtt": 50}}))
    conversion = validate_event(make_event("conversion", eventData={"goalType": "signup", "value": "12.5"}))
    bad_conversion = validate_event(make_event("conversion", eventData={"value": "lots"}))

    assert network.value.event_data == {"online": True, "connection": {"rtt": 50}}
    assert conversion.value.event_data == {"goalType": "signup", "value": 12.5}
    assert not bad_conversion.valid
