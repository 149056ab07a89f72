"""Session lifecycle derived from ``session_start``/``session_end`` marker events."""
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from clickstream.constants import EventType, SessionAction
from clickstream.database import utc_now
from clickstream.models.event import TrackingEvent
from clickstream.schemas.session import SessionSummary
from clickstream.services import event_store
from clickstream.utils.exceptions import ValidationError
from clickstream.utils.logger import logger


@dataclass
class SessionOutcome:
    action: str
    session_id: str
    event_id: Optional[str]
    changed: bool


def find_open_session(db: Session, session_id: str) -> Optional[TrackingEvent]:
    """The latest ``session_start`` marker, if no ``session_end`` follows it."""
    start = event_store.get_session_start(db, session_id)
    if start is None:
        return None
    if event_store.get_session_end(db, session_id, start.timestamp) is not None:
        return None
    return start


def _marker(event_type: str, session_id: str, principal_id: str, now: datetime, reason: Optional[str] = None) -> TrackingEvent:
    return TrackingEvent(
        event_type=event_type,
        user_id=principal_id,
        session_id=session_id,
        timestamp=now,
        received_at=now,
        event_data={"reason": reason} if reason else {},
        last_activity=now if event_type == EventType.SESSION_START else None,
    )


def start_session(db: Session, session_id: str, principal_id: str, now: Optional[datetime] = None) -> SessionOutcome:
    now = now or utc_now()
    existing = find_open_session(db, session_id)
    if existing is not None:
        logger.debug(f"Session {session_id} already open")
        return SessionOutcome(SessionAction.START, session_id, existing.id, changed=False)

    marker = _marker(EventType.SESSION_START, session_id, principal_id, now)
    db.add(marker)
    db.commit()
    logger.info(f"Started session {session_id}")
    return SessionOutcome(SessionAction.START, session_id, marker.id, changed=True)


def session_last_activity(db: Session, start: TrackingEvent) -> datetime:
    """Newest of the marker's recorded activity and the session's own events."""
    recorded = start.last_activity or start.timestamp
    latest = event_store.latest_event_time(db, start.session_id, start.timestamp)
    if latest is not None and latest > recorded:
        return latest
    return recorded


def record_activity(db: Session, events: Iterable[TrackingEvent]) -> int:
    """
    Move ``last_activity`` of open sessions forward to their newest ingested event.

    Returns:
        Number of session markers touched
    """
    newest: Dict[str, datetime] = {}
    for event in events:
        if event.event_type in event_store.SESSION_MARKERS:
            continue
        current = newest.get(event.session_id)
        if current is None or event.timestamp > current:
            newest[event.session_id] = event.timestamp

    touched = 0
    for session_id, timestamp in newest.items():
        open_marker = find_open_session(db, session_id)
        if open_marker is None:
            continue
        if timestamp > (open_marker.last_activity or open_marker.timestamp):
            open_marker.last_activity = timestamp
            touched += 1

    if touched:
        try:
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.warning(f"Could not record activity for {touched} sessions: {e}")
            return 0
    return touched


def update_session(db: Session, session_id: str, now: Optional[datetime] = None) -> SessionOutcome:
    open_marker = find_open_session(db, session_id)
    if open_marker is None:
        return SessionOutcome(SessionAction.UPDATE, session_id, None, changed=False)

    open_marker.last_activity = now or utc_now()
    db.commit()
    return SessionOutcome(SessionAction.UPDATE, session_id, open_marker.id, changed=True)


def end_session(
    db: Session,
    session_id: str,
    principal_id: str,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> SessionOutcome:
    now = now or utc_now()
    open_marker = find_open_session(db, session_id)
    if open_marker is None:
        return SessionOutcome(SessionAction.END, session_id, None, changed=False)

    # Keep the end marker inside the session even if the clock went backwards
    end_time = max(now, open_marker.timestamp)
    marker = _marker(EventType.SESSION_END, session_id, principal_id, end_time, reason or "manual")
    db.add(marker)
    db.commit()
    logger.info(f"Ended session {session_id} ({reason or 'manual'})")
    return SessionOutcome(SessionAction.END, session_id, marker.id, changed=True)


def handle_session(
    db: Session,
    session_id: str,
    action: str,
    principal_id: str,
    reason: Optional[str] = None,
) -> SessionOutcome:
    """Dispatch a session action from the SDK."""
    if action == SessionAction.START:
        return start_session(db, session_id, principal_id)
    if action == SessionAction.UPDATE:
        return update_session(db, session_id)
    if action == SessionAction.END:
        return end_session(db, session_id, principal_id, reason)
    raise ValidationError("Invalid session action", details={"action": action})


def summarize_session(db: Session, session_id: str) -> Optional[SessionSummary]:
    start = event_store.get_session_start(db, session_id)
    if start is None:
        return None

    end = event_store.get_session_end(db, session_id, start.timestamp)
    last_activity = session_last_activity(db, start)
    return SessionSummary(
        sessionId=session_id,
        userId=start.user_id,
        startTime=start.timestamp.isoformat(),
        endTime=end.timestamp.isoformat() if end else None,
        lastActivity=last_activity.isoformat(),
        eventCount=event_store.count_session_events(db, session_id),
        open=end is None,
    )


def close_idle_sessions(db: Session, cutoff: datetime, now: Optional[datetime] = None) -> int:
    """Write ``idle_timeout`` end markers for open sessions inactive since before ``cutoff``."""
    now = now or utc_now()
    closed = 0
    for start in event_store.find_session_starts(db, cutoff):
        open_marker = find_open_session(db, start.session_id)
        if open_marker is None or open_marker.id != start.id:
            continue
        # Events may have arrived without a session update
        if session_last_activity(db, start) >= cutoff:
            continue
        end_session(db, start.session_id, start.user_id, reason="idle_timeout", now=now)
        closed += 1
    return closed
