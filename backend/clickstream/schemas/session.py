"""Schemas for session management."""
from typing import Optional

from pydantic import BaseModel, Field


class SessionRequest(BaseModel):
    """Request schema for POST /api/tracking/session."""
    sessionId: str = Field(..., min_length=1, description="Session ID from SDK")
    action: str = Field(..., description="start | update | end")
    reason: Optional[str] = Field(None, description="Why the session ended (unload, idle_timeout, manual)")


class SessionResponse(BaseModel):
    """Response schema for POST /api/tracking/session."""
    success: bool
    action: str
    sessionId: str
    eventId: Optional[str] = None
    changed: bool = True


class SessionSummary(BaseModel):
    """Session derived from marker events."""
    sessionId: str
    userId: str
    startTime: Optional[str] = None
    endTime: Optional[str] = None
    lastActivity: Optional[str] = None
    eventCount: int
    open: bool
