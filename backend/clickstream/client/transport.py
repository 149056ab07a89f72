"""HTTP delivery of event batches."""
import threading
from typing import Any, Dict, List, Optional, Protocol

import httpx

from clickstream.client.config import TrackerConfig
from clickstream.client.logger import logger


class TransportError(Exception):
    """A batch could not be delivered."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class Transport(Protocol):
    async def send(self, events: List[Dict[str, Any]]) -> None:
        """Deliver a batch; raise TransportError on failure."""

    def send_beacon(self, events: List[Dict[str, Any]]) -> None:
        """Fire-and-forget delivery that must not block the caller."""


class HttpTransport:
    """Posts ``{"events": [...]}`` to the ingestion endpoint."""

    def __init__(self, config: TrackerConfig, client: Optional[httpx.AsyncClient] = None):
        self.config = config
        self._client = client
        self._beacons: List[threading.Thread] = []

    @property
    def headers(self) -> Dict[str, str]:
        return {"X-API-Key": self.config.api_key, "Content-Type": "application/json"}

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.config.request_timeout)
        return self._client

    async def send(self, events: List[Dict[str, Any]]) -> None:
        try:
            response = await self._get_client().post(
                self.config.events_url,
                json={"events": events},
                headers=self.headers,
            )
        except httpx.HTTPError as e:
            raise TransportError(f"Request failed: {e}") from e
        except httpx.InvalidURL as e:
            raise TransportError(f"Invalid ingestion URL: {e}") from e
        except (TypeError, ValueError) as e:
            # Payload could not be encoded as JSON
            raise TransportError(f"Could not encode events: {e}") from e

        if response.status_code >= 300:
            raise TransportError(f"Ingestion returned HTTP {response.status_code}", response.status_code)

    def send_beacon(self, events: List[Dict[str, Any]]) -> None:
        """
        Start one best-effort POST on a non-daemon thread.

        The interpreter waits for the thread at exit; the caller does not.
        Failures are logged and otherwise invisible.
        """
        thread = threading.Thread(
            target=self._post_beacon,
            args=(list(events),),
            name="clickstream-beacon",
            daemon=False,
        )
        self._beacons = [t for t in self._beacons if t.is_alive()]
        self._beacons.append(thread)
        thread.start()

    def _post_beacon(self, events: List[Dict[str, Any]]) -> None:
        try:
            with httpx.Client(timeout=self.config.beacon_timeout) as client:
                response = client.post(self.config.events_url, json={"events": events}, headers=self.headers)
            if response.status_code >= 300:
                logger.warning(f"Beacon delivery of {len(events)} events returned HTTP {response.status_code}")
        except (httpx.HTTPError, httpx.InvalidURL, TypeError, ValueError) as e:
            logger.warning(f"Beacon delivery of {len(events)} events failed: {e}")

    def wait_for_beacons(self, timeout: Optional[float] = None) -> None:
        for thread in self._beacons:
            thread.join(timeout)

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
