"""
Dashboard service: the operations behind every RPC method.

DashboardService holds an injected MetricsStore and SyncSource and
implements create, list, summary, the external fetch pass-through and the
sync orchestration.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from bizdash import __version__
from bizdash.config import MAX_LIST_LIMIT
from bizdash.logging import get_logger
from bizdash.models import (
    DEFAULT_EXTERNAL_SOURCE,
    DEFAULT_MANUAL_SOURCE,
    ExternalSnapshot,
    MetricRecord,
    SummaryReport,
    utcnow,
    validate_create_input,
    validate_filter,
    validate_snapshot,
)

if TYPE_CHECKING:
    from bizdash.config import AppConfig
    from bizdash.sources import SyncSource
    from bizdash.storage import MetricsStore

logger = get_logger(__name__)


class DashboardService:
    """
    Business metrics operations over an injected store and sync source.

    Attributes:
        store: Persistence for metric records.
        source: Provider of external snapshots.
        default_limit: Limit applied to list calls that pass none.
        max_limit: Largest limit accepted from callers.

    Example:
        >>> service = DashboardService(InMemoryMetricsStore(), FixtureSyncSource())
        >>> record = await service.create({
        ...     "metric_name": "Job Count", "metric_value": 250, "metric_type": "jobs",
        ... })
        >>> (await service.summary()).total_metrics
        1
    """

    def __init__(
        self,
        store: MetricsStore,
        source: SyncSource,
        *,
        default_limit: int = 100,
        max_limit: int = MAX_LIST_LIMIT,
        external_source_label: str = DEFAULT_EXTERNAL_SOURCE,
    ) -> None:
        self.store = store
        self.source = source
        self.default_limit = default_limit
        self.max_limit = max_limit
        self.external_source_label = external_source_label

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        store: MetricsStore,
        source: SyncSource,
    ) -> DashboardService:
        """Create a service using the dashboard and sync config sections."""
        return cls(
            store,
            source,
            default_limit=config.dashboard.default_limit,
            max_limit=config.dashboard.max_limit,
            external_source_label=config.sync.default_source,
        )

    async def healthcheck(self) -> dict[str, Any]:
        """Return service status, the current time and the record count."""
        return {
            "status": "ok",
            "timestamp": utcnow().isoformat(),
            "version": __version__,
            "total_metrics": await self.store.count(),
        }

    async def create(self, params: Any) -> MetricRecord:
        """
        Validate manual input and append one record.

        Raises:
            ValidationError: If the input violates the schema.
            StorageError: If the write fails.
        """
        data = validate_create_input(params, default_source=DEFAULT_MANUAL_SOURCE)
        record = await self.store.create(data)
        logger.info(
            "Metric record created",
            extra={
                "record_id": record.id,
                "metric_type": record.metric_type.value,
                "source": record.source,
            },
        )
        return record

    async def list(self, params: Any = None) -> list[MetricRecord]:
        """
        Return records matching an optional filter, newest first.

        Raises:
            ValidationError: If the filter is invalid.
            StorageError: If the read fails.
        """
        metric_filter = validate_filter(
            params,
            default_limit=self.default_limit,
            max_limit=self.max_limit,
        )
        records = await self.store.list(metric_filter)
        logger.debug(
            "Metric records listed",
            extra={"filter": metric_filter.to_dict(), "count": len(records)},
        )
        return records

    async def summary(self) -> SummaryReport:
        """Aggregate over every stored record."""
        return await self.store.summary()

    async def fetch_external(self) -> list[ExternalSnapshot]:
        """
        Fetch and validate snapshots without persisting them.

        Raises:
            ExternalSourceError: If the source fails.
            ValidationError: If a snapshot is malformed.
        """
        raw_snapshots = await self.source.fetch()
        return [
            validate_snapshot(raw, default_source=self.external_source_label)
            for raw in raw_snapshots
        ]

    async def sync(self) -> list[MetricRecord]:
        """
        Pull snapshots from the sync source and persist each one.

        The batch is not atomic: when a snapshot fails validation or storage,
        records inserted earlier in the same call remain and the error is
        raised to the caller.

        Returns:
            Persisted records in insertion order.
        """
        raw_snapshots = await self.source.fetch()
        persisted: list[MetricRecord] = []

        for index, raw in enumerate(raw_snapshots):
            try:
                snapshot = validate_snapshot(
                    raw, default_source=self.external_source_label
                )
                persisted.append(await self.store.create(snapshot.to_create_input()))
            except Exception as e:
                logger.error(
                    "Sync aborted",
                    extra={
                        "index": index,
                        "persisted": len(persisted),
                        "error": str(e),
                    },
                )
                raise

        logger.info(
            "Dashboard data synced",
            extra={"fetched": len(raw_snapshots), "persisted": len(persisted)},
        )
        return persisted
