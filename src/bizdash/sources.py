"""
External sync sources for dashboard metrics.

A sync source returns raw metric snapshots of the form::

    {"metric": str, "value": number, "type": str,
     "timestamp": ISO 8601 str, "source": str (optional)}

Snapshots are untrusted; the dashboard service validates every field before
persisting anything.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

import httpx

from bizdash.errors import ExternalSourceError
from bizdash.logging import get_logger
from bizdash.models import utcnow

if TYPE_CHECKING:
    from bizdash.config import SyncConfig

logger = get_logger(__name__)

# (metric, value, type, age) tuples; timestamps are computed at fetch time
DEFAULT_FIXTURES: list[tuple[str, float, str, timedelta]] = [
    ("Total Revenue", 125000.50, "revenue", timedelta(0)),
    ("Completed Jobs", 45, "jobs", timedelta(0)),
    ("Active Customers", 238, "customers", timedelta(0)),
    ("System Performance Score", 92.5, "performance", timedelta(0)),
    ("Monthly Revenue", 45000.75, "revenue", timedelta(days=1)),
]

DEFAULT_FIXTURE_SOURCE = "simpro_api"


class SyncSource(ABC):
    """Interface for providers of external metric snapshots."""

    @abstractmethod
    async def fetch(self) -> list[dict[str, Any]]:
        """
        Fetch one batch of raw snapshots.

        Returns:
            List of snapshot dictionaries, not yet validated.

        Raises:
            ExternalSourceError: If the provider fails or times out.
        """


class FixtureSyncSource(SyncSource):
    """
    Sync source backed by static fixtures.

    Each fixture carries an age relative to the fetch time, so every call
    returns fresh timestamps (e.g. "now" and "one day ago").

    Example:
        >>> source = FixtureSyncSource()
        >>> snapshots = await source.fetch()
        >>> snapshots[0]["metric"]
        'Total Revenue'
    """

    def __init__(
        self,
        fixtures: list[tuple[str, float, str, timedelta]] | None = None,
        *,
        source: str | None = DEFAULT_FIXTURE_SOURCE,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._fixtures = list(DEFAULT_FIXTURES if fixtures is None else fixtures)
        self._source = source
        self._clock = clock

    async def fetch(self) -> list[dict[str, Any]]:
        now = self._clock()
        snapshots = []
        for metric, value, metric_type, age in self._fixtures:
            snapshot: dict[str, Any] = {
                "metric": metric,
                "value": value,
                "type": metric_type,
                "timestamp": (now - age).isoformat(),
            }
            if self._source is not None:
                snapshot["source"] = self._source
            snapshots.append(snapshot)

        logger.debug("Fixture snapshots generated", extra={"count": len(snapshots)})
        return snapshots


class HTTPSyncSource(SyncSource):
    """
    Sync source that GETs snapshots from an HTTP endpoint.

    The endpoint may answer with a JSON list of snapshots or with an object
    holding the list under ``data``. Every call is bounded by ``timeout``.

    Attributes:
        url: Endpoint URL.
        timeout: Request timeout in seconds.
    """

    def __init__(
        self,
        url: str,
        *,
        timeout: float = 10.0,
        api_token: str | None = None,
    ) -> None:
        """
        Initialize the HTTP sync source.

        Args:
            url: Endpoint returning metric snapshots.
            timeout: Request timeout in seconds.
            api_token: Optional bearer token.
        """
        self._url = url
        self._timeout = timeout
        self._api_token = api_token

    @classmethod
    def from_config(cls, config: SyncConfig) -> HTTPSyncSource:
        """Create an HTTPSyncSource from SyncConfig."""
        return cls(
            config.url,
            timeout=config.timeout_seconds,
            api_token=config.api_token,
        )

    @property
    def url(self) -> str:
        """Return the endpoint URL."""
        return self._url

    @property
    def timeout(self) -> float:
        """Return the request timeout in seconds."""
        return self._timeout

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self._api_token:
            headers["Authorization"] = f"Bearer {self._api_token}"
        return headers

    async def fetch(self) -> list[dict[str, Any]]:
        if not self._url:
            raise ExternalSourceError("Sync source URL not configured")

        logger.debug("Fetching external snapshots", extra={"url": self._url})

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.get(self._url, headers=self._headers())
                response.raise_for_status()
                payload = response.json()
        except httpx.TimeoutException as e:
            logger.error(
                "External source timed out",
                extra={"url": self._url, "timeout": self._timeout},
            )
            raise ExternalSourceError(
                f"External source timed out after {self._timeout}s",
                details={"url": self._url, "timeout": self._timeout},
            ) from e
        except httpx.HTTPError as e:
            logger.error(
                "Failed to fetch external snapshots",
                extra={"url": self._url, "error": str(e)},
            )
            raise ExternalSourceError(
                f"Failed to fetch external snapshots: {e}",
                details={"url": self._url},
            ) from e
        except ValueError as e:
            logger.error(
                "Invalid JSON from external source",
                extra={"url": self._url, "error": str(e)},
            )
            raise ExternalSourceError(
                f"Invalid external source response: {e}",
                details={"url": self._url},
            ) from e

        if isinstance(payload, dict):
            payload = payload.get("data")
        if not isinstance(payload, list):
            raise ExternalSourceError(
                "External source response must be a list of snapshots",
                details={"url": self._url},
            )

        logger.info(
            "External snapshots fetched",
            extra={"url": self._url, "count": len(payload)},
        )
        return payload


def create_sync_source(config: SyncConfig) -> SyncSource:
    """Build the sync source selected by ``sync.mode``."""
    if config.mode == "http":
        return HTTPSyncSource.from_config(config)
    return FixtureSyncSource()
