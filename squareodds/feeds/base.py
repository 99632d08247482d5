"""
Base class for HTTP data sources.
Provides the shared client, per-source timeouts, error mapping and health.
"""

import ssl
import time
from dataclasses import dataclass
from typing import Any, Optional

import certifi
import httpx
import structlog

logger = structlog.get_logger()


class SourceUnavailableError(Exception):
    """A provider could not be reached, timed out or returned an error status."""


class MalformedResponseError(SourceUnavailableError):
    """A provider answered with an unexpected shape."""


def create_http_client(timeout: float = 12.0) -> httpx.AsyncClient:
    """HTTP client with certifi CA bundle, shared by all sources of a service."""
    ssl_context = ssl.create_default_context(cafile=certifi.where())
    return httpx.AsyncClient(
        verify=ssl_context,
        timeout=timeout,
        headers={"Accept": "application/json,text/plain,*/*"},
        follow_redirects=True,
    )


@dataclass
class SourceHealth:
    """Health status of a data source."""
    request_count: int = 0
    error_count: int = 0
    last_success_ms: int = 0
    last_error: str = ""

    @property
    def age_ms(self) -> int:
        """Age of the last successful response in milliseconds."""
        if self.last_success_ms == 0:
            return -1
        return int(time.time() * 1000) - self.last_success_ms


class HttpSource:
    """
    A single external provider reached over HTTP.

    Every request is bounded by ``timeout`` seconds. Any transport error,
    timeout or non-2xx status is raised as SourceUnavailableError so callers
    can degrade gracefully.
    """

    def __init__(
        self,
        name: str,
        timeout: float,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.name = name
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None

        self.health = SourceHealth()
        self.logger = logger.bind(feed=name)

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = create_http_client(self.timeout)
            self._owns_client = True
        return self._client

    async def close(self) -> None:
        """Close the client if this source created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def _get(self, url: str, params: Optional[dict] = None) -> httpx.Response:
        self.health.request_count += 1
        try:
            response = await self.client.get(url, params=params, timeout=self.timeout)
        except httpx.TimeoutException as e:
            self._record_error(f"timeout after {self.timeout:.0f}s")
            raise SourceUnavailableError(f"{self.name}: request timed out for {url}") from e
        except httpx.HTTPError as e:
            self._record_error(str(e))
            raise SourceUnavailableError(f"{self.name}: request failed for {url}: {e}") from e

        if response.status_code < 200 or response.status_code >= 300:
            self._record_error(f"status {response.status_code}")
            raise SourceUnavailableError(
                f"{self.name}: request failed ({response.status_code}) for {url}"
            )

        self.health.last_success_ms = int(time.time() * 1000)
        return response

    async def fetch_json(self, url: str, params: Optional[dict] = None) -> Any:
        """GET a JSON document."""
        response = await self._get(url, params)
        try:
            return response.json()
        except ValueError as e:
            self._record_error("invalid json")
            raise MalformedResponseError(f"{self.name}: invalid JSON from {url}") from e

    async def fetch_text(self, url: str, params: Optional[dict] = None) -> str:
        """GET a text document."""
        response = await self._get(url, params)
        return response.text

    def _record_error(self, error: str) -> None:
        self.health.error_count += 1
        self.health.last_error = error
        self.logger.warning("Source request failed", error=error)

    def get_metrics(self) -> dict:
        """Get source health metrics."""
        return {
            "name": self.name,
            "requests": self.health.request_count,
            "error_count": self.health.error_count,
            "last_error": self.health.last_error,
            "age_ms": self.health.age_ms,
        }
