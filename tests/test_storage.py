"""
Tests for the metric record stores.

This test module validates, for both the SQLite and in-memory stores:
- Record creation, id assignment and value round-trip
- Filtered listing, ordering and limits
- Summary aggregation, including the empty store
- Concurrent creates
- SQLite-specific initialization and error handling
"""

from __future__ import annotations

import asyncio
import math
from datetime import UTC, datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path

import pytest

from bizdash.config import StorageConfig
from bizdash.errors import StorageError, ValidationError
from bizdash.models import (
    CreateMetricInput,
    MetricFilter,
    MetricType,
    utcnow,
    validate_create_input,
)
from bizdash.storage import (
    InMemoryMetricsStore,
    MetricsStore,
    SQLiteMetricsStore,
    create_store,
)

# =============================================================================
# Helpers
# =============================================================================


def make_input(
    name: str = "Total Revenue",
    value: float = 100.0,
    metric_type: str = "revenue",
    source: str = "manual",
    date_recorded: datetime | None = None,
) -> CreateMetricInput:
    params = {
        "metric_name": name,
        "metric_value": value,
        "metric_type": metric_type,
        "source": source,
    }
    if date_recorded is not None:
        params["date_recorded"] = date_recorded
    return validate_create_input(params)


async def seed_basic(store: MetricsStore) -> None:
    """Insert the three records used by the filter tests."""
    await store.create(make_input("Total Revenue", 15000.50, "revenue", "simpro_api"))
    await store.create(make_input("Active Jobs", 25, "jobs", "manual"))
    await store.create(make_input("Customer Count", 150, "customers", "external_api"))


# =============================================================================
# Tests for create
# =============================================================================


class TestStoreCreate:
    """Tests for appending records."""

    @pytest.mark.asyncio
    async def test_create_assigns_id_and_created_at(self, store: MetricsStore) -> None:
        """Test that create returns the persisted record."""
        before = utcnow()
        record = await store.create(make_input())
        after = utcnow()

        assert record.id > 0
        assert record.metric_name == "Total Revenue"
        assert record.metric_type is MetricType.REVENUE
        assert record.source == "manual"
        assert before <= record.created_at <= after

    @pytest.mark.asyncio
    async def test_ids_are_unique_and_increasing(self, store: MetricsStore) -> None:
        """Test that each create gets a new, larger id."""
        first = await store.create(make_input())
        second = await store.create(make_input())

        assert second.id > first.id

    @pytest.mark.asyncio
    @pytest.mark.parametrize("value", [15000.50, 99.95, 0, -42.125, 250])
    async def test_value_round_trip(self, store: MetricsStore, value: float) -> None:
        """Test that values come back exactly from create and list."""
        record = await store.create(make_input(value=value))
        listed = await store.list(MetricFilter(limit=10))

        assert record.metric_value == value
        assert listed[0].metric_value == value
        assert isinstance(listed[0].metric_value, float)

    @pytest.mark.asyncio
    async def test_large_value_round_trip_stays_finite(self, store: MetricsStore) -> None:
        """Test that the largest accepted values read back as finite floats."""
        record = await store.create(make_input(value=10**300))
        listed = await store.list(MetricFilter(limit=1))

        assert record.metric_value == 1e300
        assert listed[0].metric_value == 1e300
        assert math.isfinite(listed[0].metric_value)

    @pytest.mark.asyncio
    async def test_value_beyond_float_range_never_stored(self, store: MetricsStore) -> None:
        """Test that an oversized value is rejected before reaching the store."""
        with pytest.raises(ValidationError):
            await store.create(make_input(value=10**400))

        assert await store.count() == 0

    @pytest.mark.asyncio
    async def test_decimal_input_round_trip(self, store: MetricsStore) -> None:
        """Test creating from a Decimal value."""
        data = CreateMetricInput(
            metric_name="Monthly Revenue",
            metric_value=Decimal("45000.75"),
            metric_type=MetricType.REVENUE,
            source="manual",
        )
        record = await store.create(data)

        assert record.metric_value == 45000.75

    @pytest.mark.asyncio
    async def test_default_date_recorded_is_now(self, store: MetricsStore) -> None:
        """Test that a missing date_recorded defaults to the current time."""
        before = utcnow()
        record = await store.create(
            validate_create_input(
                {
                    "metric_name": "Job Count",
                    "metric_value": 250,
                    "metric_type": "jobs",
                    "source": "manual",
                }
            )
        )
        after = utcnow()

        assert before <= record.date_recorded <= after
        assert record.date_recorded.tzinfo is not None

    @pytest.mark.asyncio
    async def test_explicit_date_recorded_kept(self, store: MetricsStore) -> None:
        """Test that a supplied date_recorded is stored as given."""
        when = datetime(2024, 1, 15, 12, 30, 45, 123456, tzinfo=UTC)
        await store.create(make_input(date_recorded=when))

        listed = await store.list(MetricFilter(limit=1))
        assert listed[0].date_recorded == when

    @pytest.mark.asyncio
    async def test_created_record_listed_exactly_once(self, store: MetricsStore) -> None:
        """Test that a created record appears once in an unfiltered list."""
        await seed_basic(store)
        record = await store.create(make_input("Unique", 1, "performance", "monitoring"))

        listed = await store.list(MetricFilter(limit=100))
        assert [r.id for r in listed].count(record.id) == 1

    @pytest.mark.asyncio
    async def test_concurrent_creates_get_unique_ids(self, store: MetricsStore) -> None:
        """Test that concurrent creates neither collide nor get lost."""
        records = await asyncio.gather(
            *(store.create(make_input(name=f"Metric {i}", value=i)) for i in range(20))
        )

        assert len({r.id for r in records}) == 20
        assert await store.count() == 20


# =============================================================================
# Tests for list
# =============================================================================


class TestStoreList:
    """Tests for filtered listing."""

    @pytest.mark.asyncio
    async def test_list_empty_store(self, store: MetricsStore) -> None:
        """Test listing an empty store."""
        assert await store.list(MetricFilter(limit=100)) == []

    @pytest.mark.asyncio
    async def test_list_all(self, store: MetricsStore) -> None:
        """Test listing without predicates."""
        await seed_basic(store)

        records = await store.list(MetricFilter(limit=100))

        assert len(records) == 3

    @pytest.mark.asyncio
    async def test_filter_by_metric_type(self, store: MetricsStore) -> None:
        """Test filtering by metric type."""
        await seed_basic(store)

        records = await store.list(MetricFilter(limit=100, metric_type=MetricType.REVENUE))

        assert len(records) == 1
        assert records[0].metric_name == "Total Revenue"
        assert records[0].metric_value == 15000.50

    @pytest.mark.asyncio
    async def test_filter_by_source(self, store: MetricsStore) -> None:
        """Test filtering by source."""
        await seed_basic(store)

        records = await store.list(MetricFilter(limit=100, source="manual"))

        assert len(records) == 1
        assert records[0].metric_name == "Active Jobs"

    @pytest.mark.asyncio
    async def test_combined_filters(self, store: MetricsStore) -> None:
        """Test that filters are combined with AND."""
        await seed_basic(store)

        matching = await store.list(
            MetricFilter(limit=100, metric_type=MetricType.JOBS, source="manual")
        )
        disjoint = await store.list(
            MetricFilter(limit=100, metric_type=MetricType.JOBS, source="simpro_api")
        )

        assert len(matching) == 1
        assert disjoint == []

    @pytest.mark.asyncio
    async def test_unmatched_type_returns_empty(self, store: MetricsStore) -> None:
        """Test that a type with no records yields an empty list."""
        await seed_basic(store)

        records = await store.list(
            MetricFilter(limit=100, metric_type=MetricType.PERFORMANCE)
        )

        assert records == []

    @pytest.mark.asyncio
    async def test_date_range_is_inclusive(self, store: MetricsStore) -> None:
        """Test that date_from and date_to are inclusive bounds."""
        base = datetime(2024, 6, 1, tzinfo=UTC)
        for days in range(5):
            await store.create(
                make_input(name=f"Day {days}", date_recorded=base + timedelta(days=days))
            )

        records = await store.list(
            MetricFilter(
                limit=100,
                date_from=base + timedelta(days=1),
                date_to=base + timedelta(days=3),
            )
        )

        assert [r.metric_name for r in records] == ["Day 3", "Day 2", "Day 1"]

    @pytest.mark.asyncio
    async def test_inverted_date_range_is_empty(self, store: MetricsStore) -> None:
        """Test that date_from after date_to matches nothing."""
        await seed_basic(store)
        now = utcnow()

        records = await store.list(
            MetricFilter(
                limit=100,
                date_from=now + timedelta(days=1),
                date_to=now - timedelta(days=1),
            )
        )

        assert records == []

    @pytest.mark.asyncio
    async def test_limit_is_respected(self, store: MetricsStore) -> None:
        """Test that at most `limit` records are returned."""
        await seed_basic(store)

        records = await store.list(MetricFilter(limit=2))

        assert len(records) == 2

    @pytest.mark.asyncio
    async def test_ordered_by_date_recorded_desc(self, store: MetricsStore) -> None:
        """Test Newest/Middle/Oldest ordering regardless of insertion order."""
        now = utcnow()
        await store.create(make_input("Oldest", 100, date_recorded=now - timedelta(hours=2)))
        await store.create(make_input("Newest", 200, date_recorded=now))
        await store.create(make_input("Middle", 150, date_recorded=now - timedelta(hours=1)))

        records = await store.list(MetricFilter(limit=100))

        assert [r.metric_name for r in records] == ["Newest", "Middle", "Oldest"]

    @pytest.mark.asyncio
    async def test_ties_broken_by_latest_insert(self, store: MetricsStore) -> None:
        """Test that equal timestamps list the most recent insert first."""
        when = datetime(2024, 3, 1, 9, 0, tzinfo=UTC)
        first = await store.create(make_input("First", date_recorded=when))
        second = await store.create(make_input("Second", date_recorded=when))

        records = await store.list(MetricFilter(limit=100))

        assert [r.id for r in records] == [second.id, first.id]

    @pytest.mark.asyncio
    async def test_mixed_timezones_sorted_chronologically(
        self, store: MetricsStore
    ) -> None:
        """Test that offsets are normalized to UTC before ordering."""
        plus_two = datetime(2024, 1, 1, 14, 0, tzinfo=timezone(timedelta(hours=2)))
        await store.create(make_input("Noon UTC", date_recorded=plus_two))
        await store.create(
            make_input("Eleven UTC", date_recorded=datetime(2024, 1, 1, 11, 0, tzinfo=UTC))
        )

        records = await store.list(MetricFilter(limit=100))

        assert [r.metric_name for r in records] == ["Noon UTC", "Eleven UTC"]
        assert records[0].date_recorded.utcoffset() == timedelta(0)


# =============================================================================
# Tests for summary
# =============================================================================


class TestStoreSummary:
    """Tests for summary aggregation."""

    @pytest.mark.asyncio
    async def test_summary_empty_store(self, store: MetricsStore) -> None:
        """Test that an empty store reports zeros and a current timestamp."""
        before = utcnow()
        report = await store.summary()
        after = utcnow()

        assert report.total_metrics == 0
        assert report.metrics_by_type == {}
        assert report.sources == []
        assert before <= report.latest_update <= after

    @pytest.mark.asyncio
    async def test_summary_scenario(self, store: MetricsStore) -> None:
        """Test the four-type, three-source scenario."""
        await store.create(make_input("Revenue", 50000, "revenue", "simpro_api"))
        await store.create(make_input("Jobs", 25, "jobs", "simpro_api"))
        await store.create(make_input("Customers", 150, "customers", "manual"))
        last = await store.create(make_input("Perf", 95.5, "performance", "monitoring"))

        report = await store.summary()

        assert report.total_metrics == 4
        assert report.metrics_by_type == {
            "revenue": 1,
            "jobs": 1,
            "customers": 1,
            "performance": 1,
        }
        assert report.sources == ["simpro_api", "manual", "monitoring"]
        assert report.latest_update == last.created_at

    @pytest.mark.asyncio
    async def test_summary_omits_absent_types(self, store: MetricsStore) -> None:
        """Test that types without records are not reported."""
        await store.create(make_input(metric_type="jobs"))
        await store.create(make_input(metric_type="jobs"))

        report = await store.summary()

        assert report.metrics_by_type == {"jobs": 2}
        assert "revenue" not in report.metrics_by_type

    @pytest.mark.asyncio
    async def test_summary_counts_sum_to_total(self, store: MetricsStore) -> None:
        """Test that per-type counts add up to the total."""
        for i, metric_type in enumerate(["revenue", "jobs", "revenue", "performance", "jobs"]):
            await store.create(make_input(name=f"M{i}", metric_type=metric_type))

        report = await store.summary()

        assert sum(report.metrics_by_type.values()) == report.total_metrics == 5

    @pytest.mark.asyncio
    async def test_summary_sources_distinct(self, store: MetricsStore) -> None:
        """Test that each source is reported once, in first-seen order."""
        for source in ["manual", "simpro_api", "manual", "manual", "simpro_api"]:
            await store.create(make_input(source=source))

        report = await store.summary()

        assert report.sources == ["manual", "simpro_api"]

    @pytest.mark.asyncio
    async def test_summary_to_dict(self, store: MetricsStore) -> None:
        """Test summary serialization."""
        await store.create(make_input())

        result = (await store.summary()).to_dict()

        assert result["total_metrics"] == 1
        assert isinstance(result["latest_update"], str)
        assert result["metrics_by_type"] == {"revenue": 1}
        assert result["sources"] == ["manual"]


# =============================================================================
# Tests for SQLite specifics
# =============================================================================


class TestSQLiteMetricsStore:
    """Tests specific to the SQLite store."""

    @pytest.mark.asyncio
    async def test_initialize_creates_database(self, temp_db_path: Path) -> None:
        """Test that initialize creates the database file."""
        store = SQLiteMetricsStore(temp_db_path)
        assert not temp_db_path.exists()

        await store.initialize()

        assert temp_db_path.exists()

    @pytest.mark.asyncio
    async def test_initialize_creates_parent_dirs(self, tmp_path: Path) -> None:
        """Test that initialize creates parent directories."""
        db_path = tmp_path / "nested" / "path" / "metrics.db"
        store = SQLiteMetricsStore(db_path)

        await store.initialize()

        assert db_path.exists()

    @pytest.mark.asyncio
    async def test_initialize_is_idempotent(self, temp_db_path: Path) -> None:
        """Test that initialize can be called multiple times."""
        store = SQLiteMetricsStore(temp_db_path)

        await store.initialize()
        await store.initialize()

        assert await store.count() == 0

    @pytest.mark.asyncio
    async def test_create_auto_initializes(self, temp_db_path: Path) -> None:
        """Test that create initializes the schema on first use."""
        store = SQLiteMetricsStore(temp_db_path)

        record = await store.create(make_input())

        assert record.id == 1

    @pytest.mark.asyncio
    async def test_data_persists_across_instances(self, temp_db_path: Path) -> None:
        """Test that records survive a new store on the same file."""
        first = SQLiteMetricsStore(temp_db_path)
        record = await first.create(make_input(value=15000.50))
        await first.close()

        second = SQLiteMetricsStore(temp_db_path)
        records = await second.list(MetricFilter(limit=10))

        assert [r.id for r in records] == [record.id]
        assert records[0].metric_value == 15000.50

    @pytest.mark.asyncio
    async def test_value_stored_as_exact_decimal_text(self, temp_db_path: Path) -> None:
        """Test the on-disk decimal representation."""
        import sqlite3

        store = SQLiteMetricsStore(temp_db_path)
        await store.create(make_input(value=15000.5))

        conn = sqlite3.connect(str(temp_db_path))
        try:
            stored = conn.execute("SELECT metric_value FROM dashboard_data").fetchone()[0]
        finally:
            conn.close()

        assert stored == "15000.50"

    @pytest.mark.asyncio
    async def test_initialize_failure_raises_storage_error(self, tmp_path: Path) -> None:
        """Test that an unusable path raises StorageError."""
        blocker = tmp_path / "not_a_dir"
        blocker.write_text("x")
        store = SQLiteMetricsStore(blocker / "metrics.db")

        with pytest.raises(StorageError) as exc_info:
            await store.initialize()

        assert exc_info.value.error_code == "storage_failure"
        assert "db_path" in exc_info.value.details


# =============================================================================
# Tests for create_store
# =============================================================================


class TestCreateStore:
    """Tests for backend selection."""

    def test_sqlite_backend(self, temp_db_path: Path) -> None:
        """Test that the sqlite backend builds a SQLiteMetricsStore."""
        store = create_store(StorageConfig(db_path=str(temp_db_path)))

        assert isinstance(store, SQLiteMetricsStore)
        assert store.db_path == temp_db_path

    def test_memory_backend(self) -> None:
        """Test that the memory backend builds an InMemoryMetricsStore."""
        store = create_store(StorageConfig(backend="memory"))

        assert isinstance(store, InMemoryMetricsStore)
