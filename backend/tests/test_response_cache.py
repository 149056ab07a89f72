"""Tests for response cache helpers."""
import pytest

from clickstream.services.response_cache import DEFAULT_DURATION, parse_duration


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("30s", 30),
        ("5m", 300),
        ("1h", 3600),
        ("1d", 86400),
        (" 2H ", 7200),
        (45, 45),
        ("soon", DEFAULT_DURATION),
        ("10w", DEFAULT_DURATION),
        (None, DEFAULT_DURATION),
        (0, DEFAULT_DURATION),
    ],
)
def test_parse_duration(raw, expected):
    assert parse_duration(raw) == expected
