"""Persistence queries for tracking events."""
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from clickstream.constants import EventType
from clickstream.models.event import TrackingEvent
from clickstream.utils.logger import logger


@dataclass
class EventFilter:
    user_id: Optional[str] = None
    event_types: Optional[Sequence[str]] = None
    session_id: Optional[str] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None

    def apply(self, query):
        if self.user_id:
            query = query.filter(TrackingEvent.user_id == self.user_id)
        if self.event_types:
            query = query.filter(TrackingEvent.event_type.in_(list(self.event_types)))
        if self.session_id:
            query = query.filter(TrackingEvent.session_id == self.session_id)
        if self.start is not None:
            query = query.filter(TrackingEvent.timestamp >= self.start)
        if self.end is not None:
            query = query.filter(TrackingEvent.timestamp < self.end)
        return query


def insert_events(db: Session, events: List[TrackingEvent]) -> Tuple[List[TrackingEvent], int]:
    """
    Persist a batch of events.

    The whole batch is written in one transaction first. If that fails the
    batch is retried one event at a time so a single bad row cannot roll back
    the others.

    Args:
        db: Database session
        events: Unsaved TrackingEvent instances

    Returns:
        Tuple of (persisted events, number of failed inserts)
    """
    if not events:
        return [], 0

    try:
        db.add_all(events)
        db.commit()
        return events, 0
    except SQLAlchemyError as e:
        db.rollback()
        logger.warning(f"Bulk insert of {len(events)} events failed, retrying individually: {e}")

    stored: List[TrackingEvent] = []
    failed = 0
    for event in events:
        # Detached after the rollback above; copy so each insert starts clean
        fresh = clone_event(event)
        try:
            db.add(fresh)
            db.commit()
            stored.append(fresh)
        except SQLAlchemyError as e:
            db.rollback()
            failed += 1
            logger.error(f"Failed to insert {event.event_type} event for session {event.session_id}: {e}")
    return stored, failed


def clone_event(event: TrackingEvent) -> TrackingEvent:
    columns = [column.key for column in TrackingEvent.__table__.columns]
    return TrackingEvent(**{name: getattr(event, name) for name in columns})


def find_events(
    db: Session,
    filters: EventFilter,
    limit: int = 100,
    skip: int = 0,
) -> Tuple[List[TrackingEvent], int]:
    """Newest-first page of events plus the total matching count."""
    query = filters.apply(db.query(TrackingEvent))
    total = query.count()
    rows = (
        query.order_by(TrackingEvent.timestamp.desc(), TrackingEvent.id.desc())
        .offset(skip)
        .limit(limit)
        .all()
    )
    return rows, total


def fetch_records(db: Session, filters: EventFilter) -> List[Dict[str, Any]]:
    """Load matching events as plain dicts for aggregation."""
    rows = filters.apply(db.query(TrackingEvent)).order_by(TrackingEvent.timestamp.asc()).all()
    return [to_record(row) for row in rows]


def to_record(event: TrackingEvent) -> Dict[str, Any]:
    return {
        "eventType": event.event_type,
        "userId": event.user_id,
        "sessionId": event.session_id,
        "timestamp": event.timestamp,
        "url": event.url,
        "deviceType": event.device_type,
        "eventData": event.event_data or {},
    }


def delete_events(
    db: Session,
    user_id: Optional[str] = None,
    event_type: Optional[str] = None,
    end: Optional[datetime] = None,
) -> int:
    """Delete events matching every given criterion; ``end`` is inclusive. Returns the number removed."""
    query = db.query(TrackingEvent)
    if user_id:
        query = query.filter(TrackingEvent.user_id == user_id)
    if event_type:
        query = query.filter(TrackingEvent.event_type == event_type)
    if end is not None:
        query = query.filter(TrackingEvent.timestamp <= end)

    deleted = query.delete(synchronize_session=False)
    db.commit()
    return deleted


def purge_before(db: Session, cutoff: datetime) -> int:
    """Delete events received before ``cutoff``."""
    deleted = (
        db.query(TrackingEvent)
        .filter(TrackingEvent.received_at < cutoff)
        .delete(synchronize_session=False)
    )
    db.commit()
    return deleted


def get_session_start(db: Session, session_id: str) -> Optional[TrackingEvent]:
    """Most recent ``session_start`` marker for a session."""
    return (
        db.query(TrackingEvent)
        .filter(
            TrackingEvent.session_id == session_id,
            TrackingEvent.event_type == EventType.SESSION_START,
        )
        .order_by(TrackingEvent.timestamp.desc(), TrackingEvent.received_at.desc())
        .first()
    )


def get_session_end(db: Session, session_id: str, since: datetime) -> Optional[TrackingEvent]:
    """First ``session_end`` marker written at or after ``since``."""
    return (
        db.query(TrackingEvent)
        .filter(
            TrackingEvent.session_id == session_id,
            TrackingEvent.event_type == EventType.SESSION_END,
            TrackingEvent.timestamp >= since,
        )
        .order_by(TrackingEvent.timestamp.asc())
        .first()
    )


SESSION_MARKERS = (EventType.SESSION_START, EventType.SESSION_END)


def latest_event_time(db: Session, session_id: str, since: datetime) -> Optional[datetime]:
    """Timestamp of the newest non-marker event in a session at or after ``since``."""
    return (
        db.query(func.max(TrackingEvent.timestamp))
        .filter(
            TrackingEvent.session_id == session_id,
            TrackingEvent.timestamp >= since,
            TrackingEvent.event_type.notin_(SESSION_MARKERS),
        )
        .scalar()
    )


def count_session_events(db: Session, session_id: str) -> int:
    return (
        db.query(func.count(TrackingEvent.id))
        .filter(TrackingEvent.session_id == session_id)
        .scalar()
    )


def find_session_starts(db: Session, last_activity_before: datetime) -> List[TrackingEvent]:
    """``session_start`` markers whose activity is older than the given time."""
    return (
        db.query(TrackingEvent)
        .filter(
            TrackingEvent.event_type == EventType.SESSION_START,
            func.coalesce(TrackingEvent.last_activity, TrackingEvent.timestamp) < last_activity_before,
        )
        .all()
    )
