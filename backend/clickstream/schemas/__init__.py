"""Pydantic schemas for request/response validation."""
from clickstream.schemas.ingest import IngestRequest, IngestResponse
from clickstream.schemas.session import SessionRequest, SessionResponse

__all__ = ["IngestRequest", "IngestResponse", "SessionRequest", "SessionResponse"]
