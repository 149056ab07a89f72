"""Analytics read endpoints."""
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, Request, Response
from sqlalchemy.orm import Session

from clickstream.api.deps import get_aggregation_engine, get_response_cache, rate_limit
from clickstream.auth.api_key import Principal, require_scope
from clickstream.constants import Scope
from clickstream.database import get_db
from clickstream.services.aggregation import AggregationEngine, Interval
from clickstream.services.response_cache import ResponseCache
from clickstream.utils.exceptions import ValidationError
from clickstream.utils.validation import validate_date_range

router = APIRouter(
    prefix="/api/analytics",
    tags=["analytics"],
    dependencies=[Depends(rate_limit("analytics"))],
)


def _window(start_date: str, end_date: str):
    window = validate_date_range(start_date, end_date)
    if not window.valid:
        raise ValidationError("Invalid date range", details={"errors": window.errors})
    return window.value


@router.get("/dashboard")
async def get_dashboard(
    request: Request,
    response: Response,
    range_name: str = Query("7d", alias="range", description="24h, 7d, 30d or 90d"),
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_scope(Scope.ANALYTICS_READ)),
    engine: AggregationEngine = Depends(get_aggregation_engine),
    response_cache: ResponseCache = Depends(get_response_cache),
) -> Dict[str, Any]:
    """
    Dashboard overview for a fixed range.

    Args:
        range_name: One of 24h, 7d, 30d, 90d

    Returns:
        pageViews, userSessions, interactions, performance, devices and errors
    """

    async def compute():
        return await engine.dashboard(db, range_name)

    payload, status = await response_cache.respond(request, principal.id, compute)
    response.headers["X-Cache"] = status
    return payload


@router.get("/realtime")
async def get_realtime(
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_scope(Scope.ANALYTICS_READ)),
    engine: AggregationEngine = Depends(get_aggregation_engine),
) -> List[Dict[str, Any]]:
    """Per-minute event counts for the last five minutes. Never cached."""
    return await engine.realtime(db)


@router.get("/pageviews")
async def get_page_views(
    request: Request,
    response: Response,
    startDate: str = Query(...),
    endDate: str = Query(...),
    interval: Interval = Query(Interval.DAY),
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_scope(Scope.ANALYTICS_READ)),
    engine: AggregationEngine = Depends(get_aggregation_engine),
    response_cache: ResponseCache = Depends(get_response_cache),
) -> List[Dict[str, Any]]:
    start, end = _window(startDate, endDate)

    async def compute():
        return await engine.page_views(db, start, end, interval)

    payload, status = await response_cache.respond(request, principal.id, compute)
    response.headers["X-Cache"] = status
    return payload


@router.get("/visitors")
async def get_visitors(
    request: Request,
    response: Response,
    startDate: str = Query(...),
    endDate: str = Query(...),
    interval: Interval = Query(Interval.DAY),
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_scope(Scope.ANALYTICS_READ)),
    engine: AggregationEngine = Depends(get_aggregation_engine),
    response_cache: ResponseCache = Depends(get_response_cache),
) -> List[Dict[str, Any]]:
    """Unique visitors and sessions per bucket."""
    start, end = _window(startDate, endDate)

    async def compute():
        return await engine.visitors(db, start, end, interval)

    payload, status = await response_cache.respond(request, principal.id, compute)
    response.headers["X-Cache"] = status
    return payload


@router.get("/sessions")
async def get_sessions(
    request: Request,
    response: Response,
    startDate: str = Query(...),
    endDate: str = Query(...),
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_scope(Scope.ANALYTICS_READ)),
    engine: AggregationEngine = Depends(get_aggregation_engine),
    response_cache: ResponseCache = Depends(get_response_cache),
) -> List[Dict[str, Any]]:
    """Sessions started in the range with duration (ms), page views and interactions."""
    start, end = _window(startDate, endDate)

    async def compute():
        return await engine.session_list(db, start, end)

    payload, status = await response_cache.respond(request, principal.id, compute)
    response.headers["X-Cache"] = status
    return payload


@router.get("/behavior")
async def get_behavior(
    request: Request,
    response: Response,
    startDate: str = Query(...),
    endDate: str = Query(...),
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_scope(Scope.ANALYTICS_READ)),
    engine: AggregationEngine = Depends(get_aggregation_engine),
    response_cache: ResponseCache = Depends(get_response_cache),
) -> List[Dict[str, Any]]:
    start, end = _window(startDate, endDate)

    async def compute():
        return await engine.behavior(db, start, end)

    payload, status = await response_cache.respond(request, principal.id, compute)
    response.headers["X-Cache"] = status
    return payload


@router.get("/conversions")
async def get_conversions(
    request: Request,
    response: Response,
    startDate: str = Query(...),
    endDate: str = Query(...),
    goalType: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_scope(Scope.ANALYTICS_READ)),
    engine: AggregationEngine = Depends(get_aggregation_engine),
    response_cache: ResponseCache = Depends(get_response_cache),
) -> List[Dict[str, Any]]:
    """Daily conversions per goal type, optionally for a single goal."""
    start, end = _window(startDate, endDate)

    async def compute():
        return await engine.conversions(db, start, end, goalType)

    payload, status = await response_cache.respond(request, principal.id, compute)
    response.headers["X-Cache"] = status
    return payload


@router.get("/performance")
async def get_performance(
    request: Request,
    response: Response,
    startDate: str = Query(...),
    endDate: str = Query(...),
    interval: Interval = Query(Interval.HOUR),
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_scope(Scope.ANALYTICS_READ)),
    engine: AggregationEngine = Depends(get_aggregation_engine),
    response_cache: ResponseCache = Depends(get_response_cache),
) -> List[Dict[str, Any]]:
    start, end = _window(startDate, endDate)

    async def compute():
        return await engine.performance(db, start, end, interval)

    payload, status = await response_cache.respond(request, principal.id, compute)
    response.headers["X-Cache"] = status
    return payload
