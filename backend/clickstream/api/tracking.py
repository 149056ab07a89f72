"""Event ingestion, query and session endpoints."""
from typing import Any, Dict

from fastapi import APIRouter, Body, Depends, Request, Response
from sqlalchemy.orm import Session

from clickstream.api.deps import (
    get_aggregation_engine,
    get_ingestion_service,
    get_request_context,
    get_response_cache,
    rate_limit,
)
from clickstream.auth.api_key import Principal, require_scope
from clickstream.constants import Scope
from clickstream.database import get_db
from clickstream.schemas.ingest import (
    AggregateResponse,
    DeleteEventsRequest,
    DeleteEventsResponse,
    EventListResponse,
    IngestRequest,
    IngestResponse,
    Pagination,
    SingleEventResponse,
)
from clickstream.schemas.session import SessionRequest, SessionResponse, SessionSummary
from clickstream.services import event_store, sessions
from clickstream.services.aggregation import AggregationEngine, AggregationQuery, Interval
from clickstream.services.event_store import EventFilter
from clickstream.services.ingestion import IngestionService
from clickstream.services.response_cache import ResponseCache
from clickstream.utils.exceptions import ValidationError, handle_database_error, not_found_error
from clickstream.utils.logger import logger
from clickstream.utils.sanitize import parse_timestamp
from clickstream.utils.validation import validate_date_range, validate_query_params

router = APIRouter(prefix="/api/tracking", tags=["tracking"])

INTERVALS = [interval.value for interval in Interval]

EVENTS_QUERY_SCHEMA = {
    "limit": {"type": "number", "min": 1, "max": 1000, "default": 100},
    "skip": {"type": "number", "min": 0, "default": 0},
}

AGGREGATE_QUERY_SCHEMA = {
    "groupBy": {"type": "string", "default": "eventType"},
    "interval": {"type": "string", "enum": INTERVALS, "default": "day"},
}


def _split(value: str) -> tuple:
    return tuple(part.strip() for part in value.split(",") if part.strip()) if value else ()


@router.post("/events", response_model=IngestResponse, dependencies=[Depends(rate_limit("tracking"))])
async def track_events(
    payload: IngestRequest,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_scope(Scope.EVENTS_WRITE)),
    ingestion: IngestionService = Depends(get_ingestion_service),
) -> IngestResponse:
    """
    Ingest a batch of events from the SDK.

    Invalid events are dropped one by one and counted in ``failed``; the
    rest of the batch is still stored.

    Args:
        payload: Batch of raw events
        request: Incoming request (IP and user agent)
        db: Database session
        principal: Authenticated caller
        ingestion: Ingestion pipeline

    Returns:
        Counts of processed and failed events
    """
    context = get_request_context(request, principal.id)
    result = await ingestion.ingest_batch(db, payload.events, context)
    return IngestResponse(success=True, processed=result.processed, failed=result.failed)


@router.post("/event", response_model=SingleEventResponse, dependencies=[Depends(rate_limit("tracking"))])
async def track_event(
    request: Request,
    event: Dict[str, Any] = Body(...),
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_scope(Scope.EVENTS_WRITE)),
    ingestion: IngestionService = Depends(get_ingestion_service),
) -> SingleEventResponse:
    """Ingest one event; an invalid event is rejected with 400."""
    context = get_request_context(request, principal.id)
    row = await ingestion.ingest_one(db, event, context)
    return SingleEventResponse(success=True, eventId=row.id)


@router.get("/events", response_model=EventListResponse, dependencies=[Depends(rate_limit("analytics"))])
async def get_events(
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_scope(Scope.EVENTS_READ)),
) -> EventListResponse:
    """
    List stored events, newest first.

    Query parameters: ``userId``, ``eventType`` (comma separated),
    ``startDate``, ``endDate``, ``limit`` (1-1000) and ``skip``.
    """
    params = dict(request.query_params)
    paging = validate_query_params(params, EVENTS_QUERY_SCHEMA)
    if not paging.valid:
        raise ValidationError("Invalid query parameters", details={"errors": paging.errors})

    window = validate_date_range(params.get("startDate"), params.get("endDate"), required=False)
    if not window.valid:
        raise ValidationError("Invalid date range", details={"errors": window.errors})
    start, end = window.value

    filters = EventFilter(
        user_id=params.get("userId"),
        event_types=_split(params.get("eventType", "")) or None,
        start=start,
        end=end,
    )
    limit, skip = paging.value["limit"], paging.value["skip"]
    rows, total = event_store.find_events(db, filters, limit=limit, skip=skip)

    return EventListResponse(
        success=True,
        data=[row.to_dict() for row in rows],
        pagination=Pagination(total=total, limit=limit, skip=skip, hasMore=skip + len(rows) < total),
    )


@router.get("/aggregate", response_model=AggregateResponse, dependencies=[Depends(rate_limit("analytics"))])
async def get_aggregate(
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_scope(Scope.ANALYTICS_READ)),
    engine: AggregationEngine = Depends(get_aggregation_engine),
    response_cache: ResponseCache = Depends(get_response_cache),
) -> Dict[str, Any]:
    """
    Aggregate events over ``[startDate, endDate)``.

    ``groupBy=time`` buckets by ``interval``; any other value groups by that
    dimension (``eventType``, ``deviceType``, ``eventData.<key>``...).
    """
    params = dict(request.query_params)
    options = validate_query_params(params, AGGREGATE_QUERY_SCHEMA)
    if not options.valid:
        raise ValidationError("Invalid query parameters", details={"errors": options.errors})

    window = validate_date_range(params.get("startDate"), params.get("endDate"))
    if not window.valid:
        raise ValidationError("Invalid date range", details={"errors": window.errors})
    start, end = window.value

    group_by = options.value["groupBy"]
    try:
        if group_by == "time":
            query = AggregationQuery(
                event_types=_split(params.get("eventType", "")),
                start=start,
                end=end,
                interval=Interval(options.value["interval"]),
            )
        else:
            query = AggregationQuery(
                event_types=_split(params.get("eventType", "")),
                start=start,
                end=end,
                group_by=(group_by,),
            )
    except ValueError as e:
        raise ValidationError("Invalid aggregation", details={"errors": [str(e)]})

    async def compute() -> Dict[str, Any]:
        return {"success": True, "data": await engine.aggregate(db, query)}

    payload, status = await response_cache.respond(request, principal.id, compute)
    response.headers["X-Cache"] = status
    return payload


@router.delete("/events", response_model=DeleteEventsResponse)
async def delete_events(
    payload: DeleteEventsRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_scope(Scope.EVENTS_DELETE)),
    ingestion: IngestionService = Depends(get_ingestion_service),
) -> DeleteEventsResponse:
    """
    Delete events by user, type and/or age, then invalidate cached analytics.

    At least one of ``userId``, ``eventType`` or ``endDate`` is required.
    """
    if not (payload.userId or payload.eventType or payload.endDate):
        raise ValidationError("At least one of userId, eventType or endDate is required")

    end = None
    if payload.endDate:
        end = parse_timestamp(payload.endDate)
        if end is None:
            raise ValidationError("endDate must be a valid date")

    try:
        deleted = event_store.delete_events(db, user_id=payload.userId, event_type=payload.eventType, end=end)
    except Exception as e:
        db.rollback()
        logger.error(f"Failed to delete events: {e}", exc_info=True)
        raise handle_database_error(e, "delete_events")

    await ingestion.invalidate(payload.eventType)
    ingestion.metrics.capture("tracking_events_deleted", deleted)
    logger.info(f"Principal {principal.id} deleted {deleted} events")
    return DeleteEventsResponse(success=True, deletedCount=deleted)


@router.post("/session", response_model=SessionResponse, dependencies=[Depends(rate_limit("tracking"))])
async def handle_session(
    payload: SessionRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_scope(Scope.EVENTS_WRITE)),
) -> SessionResponse:
    """Start, touch or end a session. Repeated starts and ends are no-ops."""
    outcome = sessions.handle_session(db, payload.sessionId, payload.action, principal.id, payload.reason)
    return SessionResponse(
        success=True,
        action=outcome.action,
        sessionId=outcome.session_id,
        eventId=outcome.event_id,
        changed=outcome.changed,
    )


@router.get("/sessions/{session_id}", response_model=SessionSummary)
async def get_session(
    session_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_scope(Scope.EVENTS_READ)),
) -> SessionSummary:
    summary = sessions.summarize_session(db, session_id)
    if summary is None:
        raise not_found_error("Session", session_id)
    return summary
