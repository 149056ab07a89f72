"""Shared request dependencies."""
from typing import Optional

from fastapi import Request, Response

from clickstream.services.aggregation import AggregationEngine
from clickstream.services.ingestion import IngestionService, RequestContext
from clickstream.services.response_cache import ResponseCache


def get_client_ip(request: Request) -> Optional[str]:
    """
    Get the client address, honouring X-Forwarded-For when proxies are trusted.

    Args:
        request: Incoming request

    Returns:
        First address in X-Forwarded-For, else the socket peer address
    """
    if request.app.state.settings.trust_proxy_headers:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


def get_request_context(request: Request, principal_id: str) -> RequestContext:
    return RequestContext(
        principal_id=principal_id,
        ip=get_client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )


def get_ingestion_service(request: Request) -> IngestionService:
    return request.app.state.ingestion


def get_aggregation_engine(request: Request) -> AggregationEngine:
    return request.app.state.aggregation


def get_response_cache(request: Request) -> ResponseCache:
    return request.app.state.response_cache


def rate_limit(name: str):
    """Dependency factory applying the named limiter keyed by API key or client IP."""

    async def dependency(request: Request, response: Response) -> None:
        limiter = request.app.state.rate_limiters[name]
        ip = get_client_ip(request)
        if ip and ip in limiter.whitelist:
            return
        identifier = request.headers.get("x-api-key") or ip or "anonymous"
        status = await limiter.check(identifier)
        response.headers["X-RateLimit-Limit"] = str(status.limit)
        response.headers["X-RateLimit-Remaining"] = str(status.remaining)
        response.headers["X-RateLimit-Reset"] = str(status.reset_in)

    return dependency
