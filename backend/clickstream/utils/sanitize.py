"""Sanitization and normalisation helpers applied before persistence."""
import ipaddress
import math
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from clickstream.constants import REDACTION_MARKER, SENSITIVE_FIELDS

# Largest epoch-milliseconds value datetime can represent (year 9999)
_MAX_EPOCH_MS = 253402300799999


def is_sensitive_key(key: str, fields: Iterable[str] = SENSITIVE_FIELDS) -> bool:
    lowered = str(key).lower()
    return any(field in lowered for field in fields)


def sanitize_data(data: Any, fields: Iterable[str] = SENSITIVE_FIELDS) -> Any:
    """
    Recursively redact values stored under sensitive keys.

    The input is never mutated; a sanitized copy is returned. Lists are walked
    so that sensitive keys inside arrays of objects are redacted too.

    Args:
        data: Arbitrary JSON-like value
        fields: Lower-case substrings that mark a key as sensitive

    Returns:
        Sanitized copy of ``data``
    """
    fields = tuple(fields)

    if isinstance(data, dict):
        sanitized = {}
        for key, value in data.items():
            if is_sensitive_key(key, fields):
                sanitized[key] = REDACTION_MARKER
            else:
                sanitized[key] = sanitize_data(value, fields)
        return sanitized

    if isinstance(data, (list, tuple)):
        return [sanitize_data(item, fields) for item in data]

    return data


def compress_data(data: Any) -> Any:
    """Drop ``None`` values and empty nested objects from a payload."""
    if not isinstance(data, dict):
        return data

    compressed = {}
    for key, value in data.items():
        if value is None:
            continue
        if isinstance(value, dict):
            value = compress_data(value)
            if not value:
                continue
        compressed[key] = value
    return compressed


def anonymize_ip(ip: Optional[str]) -> Optional[str]:
    """
    Zero the last IPv4 octet or the last IPv6 hextet.

    Args:
        ip: Client IP address as seen by the server

    Returns:
        Anonymized address, or the input unchanged if it is not an IP address
    """
    if not ip:
        return ip

    try:
        address = ipaddress.ip_address(ip)
    except ValueError:
        return ip

    if isinstance(address, ipaddress.IPv4Address):
        octets = address.exploded.split(".")
        octets[-1] = "0"
        return ".".join(octets)

    hextets = address.exploded.split(":")
    hextets[-1] = "0000"
    return str(ipaddress.IPv6Address(":".join(hextets)))


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse a client timestamp into an aware UTC datetime.

    Numbers are epoch milliseconds (what browsers send); strings must be
    ISO-8601, with naive values taken as UTC. Anything else is unparseable.

    Args:
        value: Raw timestamp from the event

    Returns:
        Parsed datetime, or None when the value cannot be parsed
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)):
        if isinstance(value, float) and not math.isfinite(value):
            return None
        if value < 0 or value > _MAX_EPOCH_MS:
            return None
        parsed = datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)
