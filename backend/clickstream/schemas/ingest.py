"""Schemas for event ingestion and event queries."""
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class IngestRequest(BaseModel):
    """Request schema for POST /api/tracking/events.

    Events are kept raw so one malformed event cannot reject the batch.
    """
    events: List[Any] = Field(..., description="Array of tracking events")


class IngestResponse(BaseModel):
    """Response schema for POST /api/tracking/events."""
    success: bool
    processed: int
    failed: int


class SingleEventResponse(BaseModel):
    """Response schema for POST /api/tracking/event."""
    success: bool
    eventId: str


class Pagination(BaseModel):
    total: int
    limit: int
    skip: int
    hasMore: bool


class EventListResponse(BaseModel):
    """Response schema for GET /api/tracking/events."""
    success: bool
    data: List[Dict[str, Any]]
    pagination: Pagination


class AggregateResponse(BaseModel):
    """Response schema for GET /api/tracking/aggregate."""
    success: bool
    data: List[Dict[str, Any]]


class DeleteEventsRequest(BaseModel):
    """Request schema for DELETE /api/tracking/events."""
    userId: Optional[str] = None
    eventType: Optional[str] = None
    endDate: Optional[str] = None


class DeleteEventsResponse(BaseModel):
    success: bool
    deletedCount: int
