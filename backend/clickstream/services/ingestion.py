"""Event ingestion pipeline: validate, sanitize, enrich, persist, cache."""
import time
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from clickstream.config import Settings
from clickstream.constants import ANALYTICS_CACHE_PREFIX, AGGREGATION_CACHE_PREFIX, RESPONSE_CACHE_PREFIX
from clickstream.database import utc_now
from clickstream.models.event import TrackingEvent
from clickstream.services import event_store, sessions
from clickstream.services.cache import CacheStore
from clickstream.services.metrics import MetricsCollector
from clickstream.utils.exceptions import ValidationError, handle_database_error
from clickstream.utils.logger import logger
from clickstream.utils.sanitize import anonymize_ip, compress_data, sanitize_data
from clickstream.utils.validation import ValidatedEvent, validate_event


@dataclass
class RequestContext:
    """Server-side facts attached to every event of one request."""
    principal_id: str
    ip: Optional[str] = None
    user_agent: Optional[str] = None


@dataclass
class IngestResult:
    processed: int
    failed: int
    events: List[TrackingEvent] = field(default_factory=list)


def rolling_cache_key(event_type: str) -> str:
    return f"{ANALYTICS_CACHE_PREFIX}{event_type}:latest"


class IngestionService:
    """Turns raw SDK events into persisted rows and keeps the rolling cache fresh."""

    def __init__(self, settings: Settings, cache: CacheStore, metrics: MetricsCollector):
        self.settings = settings
        self.cache = cache
        self.metrics = metrics

    def build_event(self, validated: ValidatedEvent, context: RequestContext) -> TrackingEvent:
        """Sanitize and enrich a validated event into an unsaved row."""
        device_info = sanitize_data(validated.device_info) if validated.device_info else None
        network_info = sanitize_data(validated.network_info) if validated.network_info else None
        event_data = compress_data(sanitize_data(validated.event_data))

        ip = context.ip
        if ip and self.settings.anonymize_ip:
            ip = anonymize_ip(ip)

        device_type = None
        if device_info and isinstance(device_info.get("type"), str):
            device_type = device_info["type"]

        return TrackingEvent(
            event_type=validated.event_type,
            user_id=context.principal_id,
            client_user_id=validated.client_user_id,
            session_id=validated.session_id,
            timestamp=validated.timestamp,
            received_at=utc_now(),
            url=validated.url,
            ip=ip,
            user_agent=context.user_agent,
            device_type=device_type,
            event_data=event_data,
            device_info=device_info,
            network_info=network_info,
        )

    async def ingest_batch(self, db: Session, raw_events: List[Any], context: RequestContext) -> IngestResult:
        """
        Ingest a batch, dropping invalid events individually.

        Args:
            db: Database session
            raw_events: Decoded JSON events from the request body
            context: Principal and transport facts for enrichment

        Returns:
            IngestResult with processed/failed counts and the stored rows
        """
        started = time.perf_counter()
        rows: List[TrackingEvent] = []
        invalid = 0

        for index, raw in enumerate(raw_events):
            result = validate_event(raw)
            if not result.valid:
                invalid += 1
                logger.warning(f"Dropping invalid event at index {index}: {'; '.join(result.errors)}")
                continue
            rows.append(self.build_event(result.value, context))

        stored, insert_failures = event_store.insert_events(db, rows)
        sessions.record_activity(db, stored)
        await self.update_rolling_cache(stored)

        failed = invalid + insert_failures
        self.metrics.capture("tracking_events_processed", len(stored))
        if failed:
            self.metrics.capture("tracking_events_failed", failed)
        self.metrics.capture("ingestion_duration_ms", (time.perf_counter() - started) * 1000)
        logger.info(f"Ingested {len(stored)} events for {context.principal_id} ({failed} failed)")

        return IngestResult(processed=len(stored), failed=failed, events=stored)

    async def ingest_one(self, db: Session, raw: Any, context: RequestContext) -> TrackingEvent:
        """Ingest a single event; invalid input raises ValidationError."""
        result = validate_event(raw)
        if not result.valid:
            raise ValidationError("Invalid event structure", details={"errors": result.errors})

        row = self.build_event(result.value, context)
        try:
            db.add(row)
            db.commit()
        except Exception as e:
            db.rollback()
            logger.error(f"Failed to store {row.event_type} event: {e}", exc_info=True)
            raise handle_database_error(e, "track_event")

        sessions.record_activity(db, [row])
        await self.update_rolling_cache([row])
        self.metrics.capture("tracking_events_processed", 1)
        return row

    async def update_rolling_cache(self, events: List[TrackingEvent]) -> None:
        """Prepend new events to each type's bounded newest-first list."""
        by_type: Dict[str, List[Dict[str, Any]]] = defaultdict(list)
        for event in events:
            by_type[event.event_type].append(event.to_dict())

        size = self.settings.rolling_cache_size
        for event_type, items in by_type.items():
            items.sort(key=lambda item: item["timestamp"], reverse=True)

            def merge(current, items=items):
                return (items + (current or []))[:size]

            await self.cache.update(rolling_cache_key(event_type), merge, self.settings.rolling_cache_ttl)

    async def invalidate(self, event_type: Optional[str] = None) -> None:
        """Drop cached analytics after a deletion."""
        if event_type:
            await self.cache.delete(rolling_cache_key(event_type))
            await self.cache.delete_pattern(f"{AGGREGATION_CACHE_PREFIX}*")
            await self.cache.delete_pattern(f"{RESPONSE_CACHE_PREFIX}*")
        else:
            await self.cache.delete_pattern(f"{ANALYTICS_CACHE_PREFIX}*")
