"""Result-type validation for events and query parameters.

Nothing in here raises on bad input: callers get a ``ValidationResult`` and
decide at the HTTP boundary whether to turn it into a ValidationError.
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError

from clickstream.constants import MAX_QUERY_RANGE_DAYS
from clickstream.schemas.events import parse_event_data
from clickstream.utils.sanitize import parse_timestamp


@dataclass
class ValidationResult:
    valid: bool
    errors: List[str] = field(default_factory=list)
    value: Any = None

    @classmethod
    def ok(cls, value: Any = None) -> "ValidationResult":
        return cls(valid=True, value=value)

    @classmethod
    def fail(cls, *errors: str) -> "ValidationResult":
        return cls(valid=False, errors=list(errors))


@dataclass
class ValidatedEvent:
    """An event that passed validation, before sanitization and enrichment."""
    event_type: str
    session_id: str
    timestamp: datetime
    event_data: Dict[str, Any]
    client_user_id: Optional[str] = None
    url: Optional[str] = None
    device_info: Optional[Dict[str, Any]] = None
    network_info: Optional[Dict[str, Any]] = None


def _non_empty_str(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def validate_event(raw: Any) -> ValidationResult:
    """
    Validate one raw event from an ingestion request.

    Args:
        raw: Decoded JSON value for the event

    Returns:
        ValidationResult whose ``value`` is a ValidatedEvent when valid
    """
    if not isinstance(raw, dict):
        return ValidationResult.fail("event must be an object")

    errors = []

    event_type = _non_empty_str(raw.get("eventType"))
    if not event_type:
        errors.append("eventType is required")

    session_id = _non_empty_str(raw.get("sessionId"))
    if not session_id:
        errors.append("sessionId is required")

    if "timestamp" not in raw:
        errors.append("timestamp is required")
        timestamp = None
    else:
        timestamp = parse_timestamp(raw.get("timestamp"))
        if timestamp is None:
            errors.append("timestamp is not parseable")

    for key in ("eventData", "deviceInfo", "networkInfo"):
        value = raw.get(key)
        if value is not None and not isinstance(value, dict):
            errors.append(f"{key} must be an object")

    if errors:
        return ValidationResult(valid=False, errors=errors)

    try:
        event_data = parse_event_data(event_type, raw.get("eventData"))
    except PydanticValidationError as exc:
        return ValidationResult.fail(
            *(f"{'.'.join(['eventData', *(str(p) for p in err['loc'])])}: {err['msg']}" for err in exc.errors())
        )

    return ValidationResult.ok(
        ValidatedEvent(
            event_type=event_type,
            session_id=session_id,
            timestamp=timestamp,
            event_data=event_data,
            client_user_id=_non_empty_str(raw.get("userId")),
            url=_non_empty_str(raw.get("url")),
            device_info=raw.get("deviceInfo"),
            network_info=raw.get("networkInfo"),
        )
    )


def validate_date_range(
    start: Optional[str],
    end: Optional[str],
    required: bool = True,
    max_days: int = MAX_QUERY_RANGE_DAYS,
) -> ValidationResult:
    """
    Validate an optional ``[start, end)`` pair of ISO/epoch-ms dates.

    Returns:
        ValidationResult whose ``value`` is ``(start_dt, end_dt)``
    """
    if required and (not start or not end):
        return ValidationResult.fail("startDate and endDate are required")

    start_dt = parse_timestamp(start) if start else None
    end_dt = parse_timestamp(end) if end else None

    errors = []
    if start and start_dt is None:
        errors.append("startDate must be a valid date")
    if end and end_dt is None:
        errors.append("endDate must be a valid date")
    if errors:
        return ValidationResult(valid=False, errors=errors)

    if start_dt and end_dt:
        if start_dt > end_dt:
            return ValidationResult.fail("startDate must be before endDate")
        if end_dt - start_dt > timedelta(days=max_days):
            return ValidationResult.fail(f"date range cannot exceed {max_days} days")

    return ValidationResult.ok((start_dt, end_dt))


def validate_query_params(params: Dict[str, Any], schema: Dict[str, Dict[str, Any]]) -> ValidationResult:
    """
    Check query parameters against a small rule schema.

    Supported rules: ``required``, ``type`` (number|date|string), ``min``,
    ``max``, ``enum``, ``default``.

    Returns:
        ValidationResult whose ``value`` is the dict of coerced values
    """
    errors = []
    coerced: Dict[str, Any] = {}

    for key, rules in schema.items():
        value = params.get(key)
        missing = value is None or value == ""

        if missing:
            if rules.get("required"):
                errors.append(f"{key} is required")
            elif "default" in rules:
                coerced[key] = rules["default"]
            continue

        kind = rules.get("type", "string")
        if kind == "number":
            try:
                number = int(value)
            except (TypeError, ValueError):
                errors.append(f"{key} must be a number")
                continue
            if "min" in rules and number < rules["min"]:
                errors.append(f"{key} must be at least {rules['min']}")
                continue
            if "max" in rules and number > rules["max"]:
                errors.append(f"{key} must be at most {rules['max']}")
                continue
            value = number
        elif kind == "date":
            parsed = parse_timestamp(value)
            if parsed is None:
                errors.append(f"{key} must be a valid date")
                continue
            value = parsed

        if "enum" in rules and value not in rules["enum"]:
            errors.append(f"{key} must be one of: {', '.join(rules['enum'])}")
            continue

        coerced[key] = value

    if errors:
        return ValidationResult(valid=False, errors=errors)
    return ValidationResult.ok(coerced)
