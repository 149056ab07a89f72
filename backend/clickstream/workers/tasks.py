"""ARQ background tasks for session upkeep and retention."""
from datetime import timedelta
from typing import Any, Dict

from clickstream.database import utc_now
from clickstream.services import event_store, sessions
from clickstream.utils.logger import logger


async def close_idle_sessions(ctx: Dict[str, Any]) -> Dict[str, Any]:
    """
    Close sessions that went idle without an explicit end.

    A session is idle when its last activity is older than
    ``session_timeout_seconds``. Each one gets a ``session_end`` marker with
    reason ``idle_timeout``.

    Returns:
        Dict with count of sessions closed
    """
    settings = ctx["settings"]
    db = ctx["session_factory"]()

    try:
        now = utc_now()
        cutoff = now - timedelta(seconds=settings.session_timeout_seconds)
        closed = sessions.close_idle_sessions(db, cutoff, now=now)
        if closed:
            logger.info(f"Closed {closed} idle sessions")
        return {"success": True, "sessions_closed": closed}
    except Exception as e:
        db.rollback()
        logger.error(f"Failed to close idle sessions: {e}", exc_info=True)
        raise
    finally:
        db.close()


async def purge_expired_events(ctx: Dict[str, Any]) -> Dict[str, Any]:
    """
    Delete events older than the retention period.

    Returns:
        Dict with count of events deleted
    """
    settings = ctx["settings"]
    db = ctx["session_factory"]()

    try:
        cutoff = utc_now() - timedelta(days=settings.retention_days)
        deleted = event_store.purge_before(db, cutoff)
        logger.info(f"Purged {deleted} events received before {cutoff.isoformat()}")
        return {"success": True, "events_deleted": deleted}
    except Exception as e:
        db.rollback()
        logger.error(f"Failed to purge expired events: {e}", exc_info=True)
        raise
    finally:
        db.close()
