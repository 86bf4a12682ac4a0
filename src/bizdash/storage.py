"""
Storage layer for dashboard metric records.

This module implements:
- MetricsStore: the storage interface injected into the dashboard service
- SQLiteMetricsStore: SQLite-backed persistence used in production
- InMemoryMetricsStore: process-local store for tests and throwaway runs

Both stores share the same semantics: records are append-only, lists are
ordered by date_recorded descending with the most recently inserted record
first on ties, and summaries cover every record.

SQLite Schema:
    CREATE TABLE dashboard_data (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        metric_name TEXT,       -- free-text label
        metric_value TEXT,      -- exact decimal string, e.g. '15000.50'
        metric_type TEXT,       -- 'revenue', 'jobs', 'customers', 'performance'
        date_recorded TEXT,     -- fixed-width ISO 8601 UTC
        source TEXT,
        created_at TEXT         -- fixed-width ISO 8601 UTC
    );
"""

from __future__ import annotations

import asyncio
import sqlite3
from abc import ABC, abstractmethod
from collections.abc import Generator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

from bizdash.errors import StorageError
from bizdash.logging import get_logger
from bizdash.models import (
    CreateMetricInput,
    MetricFilter,
    MetricRecord,
    MetricType,
    SummaryReport,
    format_decimal,
    format_timestamp,
    parse_decimal,
    to_utc,
    utcnow,
)

if TYPE_CHECKING:
    from bizdash.config import StorageConfig

logger = get_logger(__name__)

# =============================================================================
# SQLite Schema
# =============================================================================

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS dashboard_data (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    metric_name TEXT NOT NULL CHECK (length(metric_name) > 0),
    metric_value TEXT NOT NULL,
    metric_type TEXT NOT NULL
        CHECK (metric_type IN ('revenue', 'jobs', 'customers', 'performance')),
    date_recorded TEXT NOT NULL,
    source TEXT NOT NULL CHECK (length(source) > 0),
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_date_recorded ON dashboard_data(date_recorded);
CREATE INDEX IF NOT EXISTS idx_type_date ON dashboard_data(metric_type, date_recorded);
CREATE INDEX IF NOT EXISTS idx_source ON dashboard_data(source);
"""


def _summary_type_counts(counts: dict[str, int]) -> dict[str, int]:
    """Order per-type counts by enum declaration and drop zero counts."""
    return {
        value: counts[value]
        for value in MetricType.values()
        if counts.get(value, 0) > 0
    }


# =============================================================================
# Store Interface
# =============================================================================


class MetricsStore(ABC):
    """
    Interface for metric record persistence.

    Implementations assign ids and created_at on insert, never update or
    delete records, and serialize writes so concurrent creates get unique ids.
    """

    @abstractmethod
    async def initialize(self) -> None:
        """
        Prepare the store for use. Idempotent.

        Raises:
            StorageError: If the store cannot be prepared.
        """

    @abstractmethod
    async def create(self, data: CreateMetricInput) -> MetricRecord:
        """
        Append one record.

        Args:
            data: Validated create input. A missing date_recorded defaults to now.

        Returns:
            The persisted record with its assigned id and created_at.

        Raises:
            StorageError: If the write fails.
        """

    @abstractmethod
    async def list(self, metric_filter: MetricFilter) -> list[MetricRecord]:
        """
        Return at most ``metric_filter.limit`` matching records, newest first.

        Raises:
            StorageError: If the read fails.
        """

    @abstractmethod
    async def summary(self) -> SummaryReport:
        """
        Aggregate over every record.

        ``latest_update`` is the current time when the store is empty.

        Raises:
            StorageError: If the read fails.
        """

    @abstractmethod
    async def count(self) -> int:
        """Return the total number of records."""

    async def close(self) -> None:
        """Release resources held by the store."""


# =============================================================================
# SQLite Store
# =============================================================================


class SQLiteMetricsStore(MetricsStore):
    """
    SQLite-based storage for dashboard metric records.

    Thread Safety:
    - Uses WAL mode for concurrent readers alongside a writer
    - Each operation opens and closes its own connection
    - Id assignment relies on AUTOINCREMENT inside SQLite's write lock

    Example:
        >>> store = SQLiteMetricsStore("/var/lib/bizdash/metrics.db")
        >>> await store.initialize()
        >>> record = await store.create(validate_create_input({...}))
        >>> records = await store.list(MetricFilter(limit=10))
    """

    def __init__(self, db_path: str | Path, busy_timeout: float = 30.0) -> None:
        """
        Initialize the SQLiteMetricsStore.

        Args:
            db_path: Path to the SQLite database file.
            busy_timeout: Seconds a connection waits on a locked database.
        """
        self.db_path = Path(db_path)
        self.busy_timeout = busy_timeout
        self._initialized = False
        self._lock = asyncio.Lock()

    @classmethod
    def from_config(cls, config: StorageConfig) -> SQLiteMetricsStore:
        """Create a store from StorageConfig."""
        return cls(config.db_path, busy_timeout=config.busy_timeout_seconds)

    @contextmanager
    def _get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        """Yield a connection configured for WAL and dict-like rows."""
        conn = sqlite3.connect(str(self.db_path), timeout=self.busy_timeout)
        conn.row_factory = sqlite3.Row
        try:
            conn.execute("PRAGMA journal_mode=WAL")
            yield conn
        finally:
            conn.close()

    async def _run(self, func: Any) -> Any:
        return await asyncio.get_running_loop().run_in_executor(None, func)

    async def initialize(self) -> None:
        """
        Create the dashboard_data table and indices if they don't exist.

        Raises:
            StorageError: If the database cannot be initialized.
        """
        if self._initialized:
            return

        async with self._lock:
            if self._initialized:
                return

            def _init_db() -> None:
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
                with self._get_connection() as conn:
                    conn.executescript(SCHEMA_SQL)
                    conn.commit()

            try:
                await self._run(_init_db)
            except (sqlite3.Error, OSError) as e:
                logger.error(
                    "Failed to initialize metrics database",
                    extra={"db_path": str(self.db_path), "error": str(e)},
                )
                raise StorageError(
                    f"Failed to initialize metrics database: {e}",
                    details={"db_path": str(self.db_path)},
                ) from e

            self._initialized = True
            logger.info(
                "Metrics database initialized",
                extra={"db_path": str(self.db_path)},
            )

    async def _ensure_initialized(self) -> None:
        if not self._initialized:
            await self.initialize()

    async def create(self, data: CreateMetricInput) -> MetricRecord:
        await self._ensure_initialized()

        created_at = utcnow()
        date_recorded = data.date_recorded or created_at
        value_text = format_decimal(data.metric_value)

        def _insert() -> int:
            with self._get_connection() as conn:
                cursor = conn.execute(
                    """
                    INSERT INTO dashboard_data
                        (metric_name, metric_value, metric_type,
                         date_recorded, source, created_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (
                        data.metric_name,
                        value_text,
                        data.metric_type.value,
                        format_timestamp(date_recorded),
                        data.source,
                        format_timestamp(created_at),
                    ),
                )
                conn.commit()
                return cursor.lastrowid

        try:
            record_id = await self._run(_insert)
        except sqlite3.Error as e:
            logger.error(
                "Failed to insert metric record",
                extra={"metric_type": data.metric_type.value, "error": str(e)},
            )
            raise StorageError(
                f"Failed to insert metric record: {e}",
                details={"metric_type": data.metric_type.value},
            ) from e

        return MetricRecord(
            id=record_id,
            metric_name=data.metric_name,
            metric_value=parse_decimal(value_text),
            metric_type=data.metric_type,
            date_recorded=to_utc(date_recorded),
            source=data.source,
            created_at=created_at,
        )

    async def list(self, metric_filter: MetricFilter) -> list[MetricRecord]:
        await self._ensure_initialized()

        def _query() -> list[MetricRecord]:
            conditions = []
            params: list[Any] = []

            if metric_filter.metric_type is not None:
                conditions.append("metric_type = ?")
                params.append(metric_filter.metric_type.value)

            if metric_filter.source is not None:
                conditions.append("source = ?")
                params.append(metric_filter.source)

            if metric_filter.date_from is not None:
                conditions.append("date_recorded >= ?")
                params.append(format_timestamp(metric_filter.date_from))

            if metric_filter.date_to is not None:
                conditions.append("date_recorded <= ?")
                params.append(format_timestamp(metric_filter.date_to))

            where_clause = " WHERE " + " AND ".join(conditions) if conditions else ""
            params.append(metric_filter.limit)

            query = f"""
                SELECT id, metric_name, metric_value, metric_type,
                       date_recorded, source, created_at
                FROM dashboard_data
                {where_clause}
                ORDER BY date_recorded DESC, id DESC
                LIMIT ?
            """

            with self._get_connection() as conn:
                rows = conn.execute(query, params).fetchall()

            return [self._row_to_record(row) for row in rows]

        try:
            return await self._run(_query)
        except sqlite3.Error as e:
            logger.error(
                "Failed to query metric records",
                extra={"filter": metric_filter.to_dict(), "error": str(e)},
            )
            raise StorageError(
                f"Failed to query metric records: {e}",
                details={"filter": metric_filter.to_dict()},
            ) from e

    async def summary(self) -> SummaryReport:
        await self._ensure_initialized()

        def _summarize() -> SummaryReport:
            with self._get_connection() as conn:
                # One read transaction so the three queries see the same rows
                conn.execute("BEGIN")
                totals = conn.execute(
                    "SELECT COUNT(*) AS total, MAX(created_at) AS latest "
                    "FROM dashboard_data"
                ).fetchone()
                type_rows = conn.execute(
                    "SELECT metric_type, COUNT(*) AS count "
                    "FROM dashboard_data GROUP BY metric_type"
                ).fetchall()
                source_rows = conn.execute(
                    "SELECT source FROM dashboard_data "
                    "GROUP BY source ORDER BY MIN(id)"
                ).fetchall()
                conn.commit()

            latest = totals["latest"]
            return SummaryReport(
                total_metrics=totals["total"],
                latest_update=datetime.fromisoformat(latest) if latest else utcnow(),
                metrics_by_type=_summary_type_counts(
                    {row["metric_type"]: row["count"] for row in type_rows}
                ),
                sources=[row["source"] for row in source_rows],
            )

        try:
            return await self._run(_summarize)
        except sqlite3.Error as e:
            logger.error(
                "Failed to summarize metric records",
                extra={"error": str(e)},
            )
            raise StorageError(f"Failed to summarize metric records: {e}") from e

    async def count(self) -> int:
        await self._ensure_initialized()

        def _count() -> int:
            with self._get_connection() as conn:
                row = conn.execute(
                    "SELECT COUNT(*) AS count FROM dashboard_data"
                ).fetchone()
                return row["count"]

        try:
            return await self._run(_count)
        except sqlite3.Error as e:
            logger.error("Failed to count metric records", extra={"error": str(e)})
            raise StorageError(f"Failed to count metric records: {e}") from e

    async def close(self) -> None:
        """
        Close the store (no-op for the connection-per-operation model).
        """
        self._initialized = False
        logger.debug("Metrics store closed")

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> MetricRecord:
        return MetricRecord(
            id=row["id"],
            metric_name=row["metric_name"],
            metric_value=parse_decimal(row["metric_value"]),
            metric_type=MetricType(row["metric_type"]),
            date_recorded=datetime.fromisoformat(row["date_recorded"]),
            source=row["source"],
            created_at=datetime.fromisoformat(row["created_at"]),
        )


# =============================================================================
# In-Memory Store
# =============================================================================


class InMemoryMetricsStore(MetricsStore):
    """
    Process-local store with the same semantics as SQLiteMetricsStore.

    Records are kept in insertion order; an asyncio.Lock serializes id
    assignment. Data is lost when the process exits.
    """

    def __init__(self) -> None:
        self._records: list[MetricRecord] = []
        self._next_id = 1
        self._lock = asyncio.Lock()

    async def initialize(self) -> None:
        return None

    async def create(self, data: CreateMetricInput) -> MetricRecord:
        created_at = utcnow()
        async with self._lock:
            record = MetricRecord(
                id=self._next_id,
                metric_name=data.metric_name,
                metric_value=parse_decimal(format_decimal(data.metric_value)),
                metric_type=data.metric_type,
                date_recorded=to_utc(data.date_recorded or created_at),
                source=data.source,
                created_at=created_at,
            )
            self._next_id += 1
            self._records.append(record)
        return record

    async def list(self, metric_filter: MetricFilter) -> list[MetricRecord]:
        matched = [r for r in self._records if metric_filter.matches(r)]
        matched.sort(key=lambda r: (r.date_recorded, r.id), reverse=True)
        return matched[: metric_filter.limit]

    async def summary(self) -> SummaryReport:
        records = list(self._records)
        counts: dict[str, int] = {}
        for record in records:
            counts[record.metric_type.value] = counts.get(record.metric_type.value, 0) + 1

        return SummaryReport(
            total_metrics=len(records),
            latest_update=(
                max(r.created_at for r in records) if records else utcnow()
            ),
            metrics_by_type=_summary_type_counts(counts),
            sources=list(dict.fromkeys(r.source for r in records)),
        )

    async def count(self) -> int:
        return len(self._records)


def create_store(config: StorageConfig) -> MetricsStore:
    """
    Build the store selected by ``storage.backend``.

    Args:
        config: StorageConfig section of the application config.

    Returns:
        An uninitialized MetricsStore.
    """
    if config.backend == "memory":
        return InMemoryMetricsStore()
    return SQLiteMetricsStore.from_config(config)
