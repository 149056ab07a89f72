"""Time-bucketed aggregation of tracking events.

Every analytics view is built on :func:`aggregate_events`, a pure function
over event records. The result depends only on the set of records and the
query, never on their order or on how often it runs.
"""
import math
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy.orm import Session

from clickstream.config import Settings
from clickstream.constants import (
    AGGREGATION_CACHE_PREFIX,
    DASHBOARD_RANGES,
    INTERACTION_EVENT_TYPES,
    REALTIME_WINDOW_MINUTES,
    UNKNOWN_DIMENSION,
    EventType,
)
from clickstream.database import utc_now
from clickstream.services import event_store
from clickstream.services.cache import CacheStore
from clickstream.services.event_store import EventFilter
from clickstream.services.metrics import MetricsCollector
from clickstream.utils.exceptions import ValidationError
from clickstream.utils.hashing import digest
from clickstream.utils.logger import logger
from clickstream.utils.sanitize import parse_timestamp

DIMENSIONS = ("eventType", "userId", "sessionId", "deviceType", "url", "errorType")

PERFORMANCE_FIELDS = ("loadTime", "firstPaint", "firstContentfulPaint", "domInteractive")


class Interval(str, Enum):
    """Bucket granularity."""

    MINUTE = "minute"
    HOUR = "hour"
    DAY = "day"
    WEEK = "week"
    MONTH = "month"


def bucket_key(timestamp: datetime, interval: Interval) -> str:
    """Format the UTC bucket a timestamp falls into."""
    if interval == Interval.MINUTE:
        return timestamp.strftime("%Y-%m-%d %H:%M:00")
    if interval == Interval.HOUR:
        return timestamp.strftime("%Y-%m-%d %H:00")
    if interval == Interval.DAY:
        return timestamp.strftime("%Y-%m-%d")
    if interval == Interval.WEEK:
        year, week, _ = timestamp.isocalendar()
        return f"{year}-W{week:02d}"
    if interval == Interval.MONTH:
        return timestamp.strftime("%Y-%m")
    raise ValueError(f"Unknown interval: {interval}")


def is_valid_dimension(name: str) -> bool:
    return name in DIMENSIONS or (name.startswith("eventData.") and len(name) > len("eventData."))


@dataclass(frozen=True)
class AggregationQuery:
    """What to aggregate. The window is ``[start, end)``; open ends are unbounded."""

    event_types: Tuple[str, ...] = ()
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    interval: Optional[Interval] = None
    group_by: Tuple[str, ...] = ()
    value_fields: Tuple[str, ...] = ()

    def __post_init__(self):
        for name in self.group_by:
            if not is_valid_dimension(name):
                raise ValueError(f"Unknown dimension: {name}")
        if self.interval is not None:
            object.__setattr__(self, "interval", Interval(self.interval))

    def cache_key(self) -> str:
        payload = asdict(self)
        payload["event_types"] = sorted(self.event_types)
        return f"{AGGREGATION_CACHE_PREFIX}{digest(payload)}"


def resolve_field(record: Dict[str, Any], path: str) -> Any:
    """Read a dimension or value field from an event record."""
    event_data = record.get("eventData") or {}
    if path == "errorType":
        error = event_data.get("error")
        value = event_data.get("type")
        if value is None and isinstance(error, dict):
            value = error.get("type")
        return value
    if path.startswith("eventData."):
        value: Any = event_data
        for part in path.split(".")[1:]:
            if not isinstance(value, dict):
                return None
            value = value.get(part)
        return value
    return record.get(path)


def _dimension_value(record: Dict[str, Any], path: str) -> str:
    value = resolve_field(record, path)
    if value is None or value == "" or isinstance(value, (dict, list)):
        return UNKNOWN_DIMENSION
    return str(value)


def _numeric(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not math.isfinite(value):
        return None
    return float(value)


@dataclass
class _Accumulator:
    count: int = 0
    users: set = field(default_factory=set)
    sessions: set = field(default_factory=set)
    sums: Dict[str, float] = field(default_factory=dict)
    samples: Dict[str, int] = field(default_factory=dict)


def aggregate_events(records: Iterable[Dict[str, Any]], query: AggregationQuery) -> List[Dict[str, Any]]:
    """
    Group event records into buckets and compute per-bucket statistics.

    Args:
        records: Event dicts with ``eventType``, ``userId``, ``sessionId``,
            ``timestamp`` and ``eventData``
        query: Filter window, bucket interval, dimensions and value fields

    Returns:
        Rows sorted by (bucket, group) with ``bucket``, ``group``, ``count``,
        ``uniqueUsers``, ``uniqueSessions``, ``averages`` and ``sums``
    """
    event_types = set(query.event_types)
    buckets: Dict[Tuple[str, Tuple[str, ...]], _Accumulator] = {}

    for record in records:
        if event_types and record.get("eventType") not in event_types:
            continue
        timestamp = parse_timestamp(record.get("timestamp"))
        if timestamp is None:
            continue
        if query.start is not None and timestamp < query.start:
            continue
        if query.end is not None and timestamp >= query.end:
            continue

        bucket = bucket_key(timestamp, query.interval) if query.interval else ""
        group = tuple(_dimension_value(record, name) for name in query.group_by)
        acc = buckets.setdefault((bucket, group), _Accumulator())

        acc.count += 1
        if record.get("userId"):
            acc.users.add(record["userId"])
        if record.get("sessionId"):
            acc.sessions.add(record["sessionId"])
        for name in query.value_fields:
            number = _numeric(resolve_field(record, name))
            if number is not None:
                acc.sums[name] = acc.sums.get(name, 0.0) + number
                acc.samples[name] = acc.samples.get(name, 0) + 1

    rows = []
    for (bucket, group), acc in sorted(buckets.items(), key=lambda item: item[0]):
        rows.append({
            "bucket": bucket or None,
            "group": dict(zip(query.group_by, group)),
            "count": acc.count,
            "uniqueUsers": len(acc.users),
            "uniqueSessions": len(acc.sessions),
            "averages": {
                name: (acc.sums[name] / acc.samples[name]) if acc.samples.get(name) else None
                for name in query.value_fields
            },
            "sums": {name: acc.sums.get(name, 0.0) for name in query.value_fields},
        })
    return rows


def largest_remainder_percentages(counts: Sequence[int], decimals: int = 2) -> List[float]:
    """Percentages rounded to ``decimals`` places that always sum to exactly 100."""
    total = sum(counts)
    if total <= 0:
        return [0.0 for _ in counts]

    scale = 10 ** decimals
    units = 100 * scale
    exact = [count * units / total for count in counts]
    floors = [math.floor(value) for value in exact]
    leftover = units - sum(floors)
    order = sorted(range(len(counts)), key=lambda i: (-(exact[i] - floors[i]), i))
    for i in order[:leftover]:
        floors[i] += 1
    return [value / scale for value in floors]


def session_records_with_duration(records: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """``session_start`` records annotated with ``duration`` (ms) to their end marker."""
    ends: Dict[str, List[datetime]] = {}
    for record in records:
        if record.get("eventType") == EventType.SESSION_END:
            ends.setdefault(record.get("sessionId"), []).append(parse_timestamp(record.get("timestamp")))

    annotated = []
    for record in records:
        if record.get("eventType") != EventType.SESSION_START:
            continue
        started = parse_timestamp(record.get("timestamp"))
        later = sorted(t for t in ends.get(record.get("sessionId"), []) if t is not None and t >= started)
        duration = (later[0] - started).total_seconds() * 1000 if later else None
        annotated.append({**record, "duration": duration})
    return annotated


class AggregationEngine:
    """Aggregation over the event store with a cache in front."""

    def __init__(self, settings: Settings, cache: CacheStore, metrics: MetricsCollector):
        self.settings = settings
        self.cache = cache
        self.metrics = metrics

    def _load(self, db: Session, query: AggregationQuery) -> List[Dict[str, Any]]:
        filters = EventFilter(event_types=query.event_types or None, start=query.start, end=query.end)
        return event_store.fetch_records(db, filters)

    async def aggregate(self, db: Session, query: AggregationQuery, use_cache: bool = True) -> List[Dict[str, Any]]:
        """Cache-first aggregation."""
        key = query.cache_key()
        if use_cache:
            cached = await self.cache.get(key)
            if cached is not None:
                self.metrics.capture("aggregation_cache_hits")
                return cached

        rows = aggregate_events(self._load(db, query), query)
        if use_cache:
            await self.cache.set(key, rows, self.settings.aggregation_cache_ttl)
        self.metrics.capture("aggregation_computed", len(rows))
        return rows

    async def realtime(self, db: Session, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        """Per-minute counts by event type over the trailing window."""
        now = now or utc_now()
        query = AggregationQuery(
            start=now - timedelta(minutes=REALTIME_WINDOW_MINUTES),
            end=now + timedelta(microseconds=1),
            interval=Interval.MINUTE,
            group_by=("eventType",),
        )
        rows = await self.aggregate(db, query, use_cache=False)
        return [
            {
                "minute": row["bucket"],
                "eventType": row["group"]["eventType"],
                "count": row["count"],
                "activeUsers": row["uniqueUsers"],
            }
            for row in rows
        ]

    async def distribution(
        self,
        db: Session,
        dimension: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        event_type: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Share of events per value of one dimension, largest first."""
        query = AggregationQuery(
            event_types=(event_type,) if event_type else (),
            start=start,
            end=end,
            group_by=(dimension,),
        )
        rows = await self.aggregate(db, query)
        rows = sorted(rows, key=lambda row: (-row["count"], row["group"][dimension]))
        percentages = largest_remainder_percentages([row["count"] for row in rows])
        return [
            {
                "type": row["group"][dimension],
                "count": row["count"],
                "uniqueUsers": row["uniqueUsers"],
                "percentage": percentage,
            }
            for row, percentage in zip(rows, percentages)
        ]

    async def page_views(
        self, db: Session, start: datetime, end: datetime, interval: Interval = Interval.DAY
    ) -> List[Dict[str, Any]]:
        query = AggregationQuery(event_types=(EventType.PAGE_VIEW,), start=start, end=end, interval=interval)
        rows = await self.aggregate(db, query)
        return [{"date": row["bucket"], "views": row["count"], "uniqueUsers": row["uniqueUsers"]} for row in rows]

    async def visitors(
        self, db: Session, start: datetime, end: datetime, interval: Interval = Interval.DAY
    ) -> List[Dict[str, Any]]:
        query = AggregationQuery(start=start, end=end, interval=interval)
        rows = await self.aggregate(db, query)
        return [
            {"date": row["bucket"], "uniqueVisitors": row["uniqueUsers"], "sessions": row["uniqueSessions"]}
            for row in rows
        ]

    async def user_sessions(self, db: Session, start: datetime, end: datetime) -> List[Dict[str, Any]]:
        """Sessions started per hour with their mean duration."""
        query = AggregationQuery(
            event_types=(EventType.SESSION_START,),
            start=start,
            end=end,
            interval=Interval.HOUR,
            value_fields=("duration",),
        )
        key = f"{query.cache_key()}:sessions"
        cached = await self.cache.get(key)
        if cached is not None:
            return cached

        records = event_store.fetch_records(
            db,
            EventFilter(event_types=(EventType.SESSION_START, EventType.SESSION_END), start=start),
        )
        rows = aggregate_events(session_records_with_duration(records), query)
        result = [
            {"hour": row["bucket"], "sessions": row["count"], "avgDuration": row["averages"]["duration"]}
            for row in rows
        ]
        await self.cache.set(key, result, self.settings.aggregation_cache_ttl)
        return result

    async def interactions(self, db: Session, start: datetime, end: datetime) -> List[Dict[str, Any]]:
        query = AggregationQuery(event_types=INTERACTION_EVENT_TYPES, start=start, end=end, group_by=("eventType",))
        rows = await self.aggregate(db, query)
        return [
            {"type": row["group"]["eventType"], "count": row["count"], "uniqueUsers": row["uniqueUsers"]}
            for row in rows
        ]

    async def behavior(self, db: Session, start: datetime, end: datetime) -> List[Dict[str, Any]]:
        """Interactions per page, busiest page first."""
        query = AggregationQuery(
            event_types=INTERACTION_EVENT_TYPES,
            start=start,
            end=end,
            group_by=("url", "eventType"),
        )
        pages: Dict[str, Dict[str, Any]] = {}
        for row in await self.aggregate(db, query):
            page = pages.setdefault(
                row["group"]["url"],
                {"page": row["group"]["url"], "interactions": [], "totalInteractions": 0},
            )
            page["interactions"].append({
                "type": row["group"]["eventType"],
                "count": row["count"],
                "uniqueUsers": row["uniqueUsers"],
            })
            page["totalInteractions"] += row["count"]
        return sorted(pages.values(), key=lambda page: (-page["totalInteractions"], page["page"]))

    async def conversions(
        self, db: Session, start: datetime, end: datetime, goal_type: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """Conversions per day and goal with their summed ``value``."""
        query = AggregationQuery(
            event_types=(EventType.CONVERSION,),
            start=start,
            end=end,
            interval=Interval.DAY,
            group_by=("eventData.goalType",),
            value_fields=("eventData.value",),
        )
        rows = await self.aggregate(db, query)
        return [
            {
                "date": row["bucket"],
                "goalType": row["group"]["eventData.goalType"],
                "conversions": row["count"],
                "uniqueUsers": row["uniqueUsers"],
                "value": row["sums"]["eventData.value"],
            }
            for row in rows
            if goal_type is None or row["group"]["eventData.goalType"] == goal_type
        ]

    async def session_list(self, db: Session, start: datetime, end: datetime) -> List[Dict[str, Any]]:
        """Sessions started in the window with duration, page views and interactions."""
        query = AggregationQuery(
            event_types=(EventType.PAGE_VIEW,) + INTERACTION_EVENT_TYPES,
            start=start,
            group_by=("sessionId", "eventType"),
        )
        key = f"{query.cache_key()}:{digest(end)}:list"
        cached = await self.cache.get(key)
        if cached is not None:
            return cached

        records = event_store.fetch_records(db, EventFilter(start=start))
        counts: Dict[Tuple[str, str], int] = {
            (row["group"]["sessionId"], row["group"]["eventType"]): row["count"]
            for row in aggregate_events(records, query)
        }

        result = []
        for session in session_records_with_duration(records):
            started = parse_timestamp(session["timestamp"])
            if started >= end:
                continue
            session_id = session["sessionId"]
            result.append({
                "sessionId": session_id,
                "userId": session["userId"],
                "startTime": started.isoformat(),
                "duration": session["duration"],
                "pageViews": counts.get((session_id, EventType.PAGE_VIEW), 0),
                "interactions": sum(counts.get((session_id, name), 0) for name in INTERACTION_EVENT_TYPES),
            })
        result.sort(key=lambda item: (item["startTime"], item["sessionId"]))
        await self.cache.set(key, result, self.settings.aggregation_cache_ttl)
        return result

    async def performance(
        self, db: Session, start: datetime, end: datetime, interval: Interval = Interval.DAY
    ) -> List[Dict[str, Any]]:
        query = AggregationQuery(
            event_types=(EventType.PERFORMANCE,),
            start=start,
            end=end,
            interval=interval,
            value_fields=tuple(f"eventData.{name}" for name in PERFORMANCE_FIELDS),
        )
        rows = await self.aggregate(db, query)
        return [
            {
                "date": row["bucket"],
                "metrics": {name: row["averages"][f"eventData.{name}"] for name in PERFORMANCE_FIELDS},
            }
            for row in rows
        ]

    async def errors(self, db: Session, start: datetime, end: datetime) -> List[Dict[str, Any]]:
        query = AggregationQuery(
            event_types=(EventType.ERROR, EventType.PROMISE_REJECTION),
            start=start,
            end=end,
            group_by=("errorType",),
        )
        rows = await self.aggregate(db, query)
        rows = sorted(rows, key=lambda row: (-row["count"], row["group"]["errorType"]))
        return [
            {
                "type": row["group"]["errorType"],
                "count": row["count"],
                "uniqueUsers": row["uniqueUsers"],
                "affectedSessions": row["uniqueSessions"],
            }
            for row in rows
        ]

    async def dashboard(self, db: Session, range_name: str = "7d", now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Overview for one of the fixed ranges (24h, 7d, 30d, 90d).

        Raises:
            ValidationError: If the range is not recognised
        """
        if range_name not in DASHBOARD_RANGES:
            raise ValidationError(
                "Invalid range",
                details={"range": range_name, "allowed": list(DASHBOARD_RANGES)},
            )
        # Minute-aligned end so repeated requests share cached aggregates
        end = (now or utc_now()).replace(second=0, microsecond=0) + timedelta(minutes=1)
        start = end - timedelta(days=DASHBOARD_RANGES[range_name])
        logger.debug(f"Building dashboard for {range_name} ({start.isoformat()} to {end.isoformat()})")

        return {
            "range": range_name,
            "startDate": start.isoformat(),
            "endDate": end.isoformat(),
            "pageViews": await self.page_views(db, start, end),
            "userSessions": await self.user_sessions(db, start, end),
            "interactions": await self.interactions(db, start, end),
            "performance": await self.performance(db, start, end),
            "devices": await self.distribution(db, "deviceType", start, end),
            "errors": await self.errors(db, start, end),
        }
