"""Tests for the HTTP transport."""
from datetime import datetime

import httpx
import pytest

from clickstream.client.config import TrackerConfig
from clickstream.client.transport import HttpTransport, TransportError


def _transport(handler):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HttpTransport(TrackerConfig(endpoint="http://ingest.test/api/tracking", api_key="cs_k"), client=client)


@pytest.mark.asyncio
async def test_send_posts_batch_with_api_key():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"success": True})

    transport = _transport(handler)
    await transport.send([{"eventType": "click"}])
    await transport.aclose()

    assert str(seen[0].url) == "http://ingest.test/api/tracking/events"
    assert seen[0].headers["X-API-Key"] == "cs_k"


@pytest.mark.asyncio
async def test_error_status_raises_transport_error():
    transport = _transport(lambda request: httpx.Response(503))

    with pytest.raises(TransportError) as exc_info:
        await transport.send([{"eventType": "click"}])

    assert exc_info.value.status_code == 503


@pytest.mark.asyncio
async def test_unencodable_payload_raises_transport_error():
    transport = _transport(lambda request: httpx.Response(200))

    with pytest.raises(TransportError):
        await transport.send([{"eventType": "custom_x", "eventData": {"at": datetime(2024, 3, 4)}}])


@pytest.mark.asyncio
async def test_connection_failure_raises_transport_error():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(TransportError):
        await _transport(handler).send([{"eventType": "click"}])
