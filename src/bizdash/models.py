"""
Domain model for the business metrics dashboard.

This module defines:
- MetricType: the closed set of metric categories
- MetricRecord: one persisted, timestamped, sourced numeric observation
- SummaryReport: aggregate view over all records
- CreateMetricInput / MetricFilter / ExternalSnapshot: validated inputs
- Explicit validation functions for every input type

Validation functions collect every violated field before raising, so a single
ValidationError reports all problems with a request.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any

from bizdash.config import MAX_LIST_LIMIT
from bizdash.errors import ValidationError

DEFAULT_MANUAL_SOURCE = "manual"
DEFAULT_EXTERNAL_SOURCE = "external_api"

# Stored decimal strings carry at least this many fractional digits
VALUE_SCALE = Decimal("0.01")


class MetricType(str, Enum):
    """Closed set of metric categories."""

    REVENUE = "revenue"
    JOBS = "jobs"
    CUSTOMERS = "customers"
    PERFORMANCE = "performance"

    @classmethod
    def values(cls) -> list[str]:
        """Return the string values in declaration order."""
        return [member.value for member in cls]


# =============================================================================
# Timestamp and Decimal Helpers
# =============================================================================


def utcnow() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(UTC)


def to_utc(value: datetime) -> datetime:
    """Convert a datetime to aware UTC; naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def format_timestamp(value: datetime) -> str:
    """
    Format a datetime as a fixed-width ISO 8601 UTC string.

    The fixed width (always microseconds, always ``+00:00``) makes lexical
    order equal to chronological order, which the SQLite store relies on.
    """
    return to_utc(value).isoformat(timespec="microseconds")


def parse_timestamp(value: Any, field_name: str = "timestamp") -> datetime:
    """
    Parse a timestamp value to an aware UTC datetime.

    Accepts:
    - datetime: returned in UTC (naive values are taken as UTC)
    - int/float: Unix timestamp
    - str: ISO 8601, a trailing ``Z`` is accepted

    Raises:
        ValidationError: If the value cannot be parsed.
    """
    if isinstance(value, datetime):
        try:
            return to_utc(value)
        except OverflowError as e:
            raise ValidationError(
                f"Invalid {field_name}: {value.isoformat()}",
                fields={field_name: "out of range in UTC"},
            ) from e

    if isinstance(value, (int, float)) and not isinstance(value, bool):
        if not math.isfinite(value):
            raise ValidationError(
                f"Invalid {field_name}: must be finite",
                fields={field_name: "must be a finite Unix timestamp"},
            )
        try:
            return datetime.fromtimestamp(value, UTC)
        except (OverflowError, OSError, ValueError) as e:
            raise ValidationError(
                f"Invalid {field_name}: {value}",
                fields={field_name: f"out of range: {e}"},
            ) from e

    if isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            return to_utc(datetime.fromisoformat(text))
        except (ValueError, OverflowError) as e:
            raise ValidationError(
                f"Invalid {field_name} format: {value}",
                fields={field_name: "must be an ISO 8601 timestamp"},
            ) from e

    raise ValidationError(
        f"Invalid {field_name} type: {type(value).__name__}",
        fields={field_name: "must be an ISO 8601 string, datetime or Unix timestamp"},
    )


def format_decimal(value: Decimal) -> str:
    """
    Render a decimal as an exact string with at least two fractional digits.

    ``Decimal("15000.5")`` becomes ``"15000.50"``; values with more digits
    are kept as-is so nothing is rounded away.
    """
    exponent = value.as_tuple().exponent
    if isinstance(exponent, int) and exponent > VALUE_SCALE.as_tuple().exponent:
        try:
            value = value.quantize(VALUE_SCALE)
        except InvalidOperation:
            pass
    return format(value, "f")


def parse_decimal(text: str) -> float:
    """Parse a stored decimal string back to a float at the boundary."""
    return float(Decimal(text))


def _coerce_value(value: Any) -> Decimal | None:
    """
    Return an exact Decimal for a finite number, or None if not acceptable.

    Values are read back as floats, so anything beyond the float range is
    rejected here as well.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, int):
        result = Decimal(value)
    elif isinstance(value, float):
        if not math.isfinite(value):
            return None
        # repr gives the shortest string that round-trips the float
        result = Decimal(repr(value))
    else:
        return None
    if not result.is_finite() or not math.isfinite(float(result)):
        return None
    return result


def _coerce_metric_type(value: Any) -> MetricType | None:
    if isinstance(value, MetricType):
        return value
    if isinstance(value, str):
        try:
            return MetricType(value)
        except ValueError:
            return None
    return None


def _type_reason() -> str:
    return f"must be one of: {', '.join(MetricType.values())}"


# =============================================================================
# Entities
# =============================================================================


@dataclass(frozen=True)
class MetricRecord:
    """A persisted metric observation.

    Attributes:
        id: Store-assigned identifier, unique and monotonic.
        metric_name: Free-text label.
        metric_value: Numeric value, parsed from its exact stored form.
        metric_type: Metric category.
        date_recorded: When the metric event occurred (UTC).
        source: Provenance label (e.g. 'manual', 'external_api').
        created_at: When the record was persisted (UTC).
    """

    id: int
    metric_name: str
    metric_value: float
    metric_type: MetricType
    date_recorded: datetime
    source: str
    created_at: datetime

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "metric_name": self.metric_name,
            "metric_value": self.metric_value,
            "metric_type": self.metric_type.value,
            "date_recorded": self.date_recorded.isoformat(),
            "source": self.source,
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class SummaryReport:
    """Aggregate view over all persisted records.

    Attributes:
        total_metrics: Number of records.
        latest_update: Newest created_at, or the current time for an empty store.
        metrics_by_type: Count per metric type; absent types are omitted.
        sources: Distinct sources in first-seen order.
    """

    total_metrics: int
    latest_update: datetime
    metrics_by_type: dict[str, int] = field(default_factory=dict)
    sources: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "total_metrics": self.total_metrics,
            "latest_update": self.latest_update.isoformat(),
            "metrics_by_type": dict(self.metrics_by_type),
            "sources": list(self.sources),
        }


# =============================================================================
# Validated Inputs
# =============================================================================


@dataclass(frozen=True)
class CreateMetricInput:
    """Validated input for creating a record."""

    metric_name: str
    metric_value: Decimal
    metric_type: MetricType
    source: str
    date_recorded: datetime | None = None


@dataclass(frozen=True)
class MetricFilter:
    """Validated list filter; all predicates are combined with AND."""

    limit: int
    metric_type: MetricType | None = None
    source: str | None = None
    date_from: datetime | None = None
    date_to: datetime | None = None

    def matches(self, record: MetricRecord) -> bool:
        """Return True if the record satisfies every predicate."""
        if self.metric_type is not None and record.metric_type is not self.metric_type:
            return False
        if self.source is not None and record.source != self.source:
            return False
        if self.date_from is not None and record.date_recorded < self.date_from:
            return False
        if self.date_to is not None and record.date_recorded > self.date_to:
            return False
        return True

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        return {
            "metric_type": self.metric_type.value if self.metric_type else None,
            "source": self.source,
            "date_from": self.date_from.isoformat() if self.date_from else None,
            "date_to": self.date_to.isoformat() if self.date_to else None,
            "limit": self.limit,
        }


@dataclass(frozen=True)
class ExternalSnapshot:
    """A validated metric snapshot from the external sync source."""

    metric: str
    value: Decimal
    type: MetricType
    timestamp: datetime
    source: str

    def to_create_input(self) -> CreateMetricInput:
        """Map the snapshot onto the create input of the store."""
        return CreateMetricInput(
            metric_name=self.metric,
            metric_value=self.value,
            metric_type=self.type,
            source=self.source,
            date_recorded=self.timestamp,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "metric": self.metric,
            "value": float(self.value),
            "type": self.type.value,
            "timestamp": self.timestamp.isoformat(),
            "source": self.source,
        }


# =============================================================================
# Validation Functions
# =============================================================================


def _require_mapping(params: Any, what: str) -> dict[str, Any]:
    if not isinstance(params, dict):
        raise ValidationError(
            f"{what} must be an object",
            fields={"params": "must be an object"},
        )
    return params


def _check_timestamp(
    params: dict[str, Any], name: str, errors: dict[str, str]
) -> datetime | None:
    raw = params.get(name)
    if raw is None:
        return None
    try:
        return parse_timestamp(raw, name)
    except ValidationError as e:
        errors.update(e.fields)
        return None


def validate_create_input(
    params: Any,
    *,
    default_source: str = DEFAULT_MANUAL_SOURCE,
) -> CreateMetricInput:
    """
    Validate a create request.

    Args:
        params: Raw request parameters.
        default_source: Source used when none is supplied.

    Returns:
        CreateMetricInput ready for the store.

    Raises:
        ValidationError: Listing every violated field.
    """
    params = _require_mapping(params, "Create input")
    errors: dict[str, str] = {}

    metric_name = params.get("metric_name")
    if not isinstance(metric_name, str) or not metric_name.strip():
        errors["metric_name"] = "required non-empty string"

    raw_value = params.get("metric_value")
    metric_value = _coerce_value(raw_value)
    if raw_value is None:
        errors["metric_value"] = "required"
    elif metric_value is None:
        errors["metric_value"] = "must be a finite number"

    raw_type = params.get("metric_type")
    metric_type = _coerce_metric_type(raw_type)
    if raw_type is None:
        errors["metric_type"] = "required"
    elif metric_type is None:
        errors["metric_type"] = _type_reason()

    date_recorded = _check_timestamp(params, "date_recorded", errors)

    source = params.get("source")
    if source is None:
        source = default_source
    elif not isinstance(source, str) or not source.strip():
        errors["source"] = "must be a non-empty string"

    if errors:
        raise ValidationError(
            f"Invalid create input: {', '.join(sorted(errors))}",
            fields=errors,
        )

    return CreateMetricInput(
        metric_name=metric_name,
        metric_value=metric_value,
        metric_type=metric_type,
        source=source,
        date_recorded=date_recorded,
    )


def validate_filter(
    params: Any,
    *,
    default_limit: int = 100,
    max_limit: int = MAX_LIST_LIMIT,
) -> MetricFilter:
    """
    Validate a list filter.

    ``None`` means no filter: every predicate is off and the limit is
    ``default_limit``. A ``date_from`` later than ``date_to`` is accepted and
    simply matches nothing.

    Raises:
        ValidationError: Listing every violated field.
    """
    if params is None:
        return MetricFilter(limit=default_limit)

    params = _require_mapping(params, "Filter")
    errors: dict[str, str] = {}

    metric_type = None
    raw_type = params.get("metric_type")
    if raw_type is not None:
        metric_type = _coerce_metric_type(raw_type)
        if metric_type is None:
            errors["metric_type"] = _type_reason()

    source = params.get("source")
    if source is not None and (not isinstance(source, str) or not source):
        errors["source"] = "must be a non-empty string"

    date_from = _check_timestamp(params, "date_from", errors)
    date_to = _check_timestamp(params, "date_to", errors)

    limit = params.get("limit")
    if limit is None:
        limit = default_limit
    elif isinstance(limit, bool) or not isinstance(limit, int):
        errors["limit"] = f"must be an integer between 1 and {max_limit}"
    elif limit < 1 or limit > max_limit:
        errors["limit"] = f"must be between 1 and {max_limit}"

    if errors:
        raise ValidationError(
            f"Invalid filter: {', '.join(sorted(errors))}",
            fields=errors,
        )

    return MetricFilter(
        limit=limit,
        metric_type=metric_type,
        source=source,
        date_from=date_from,
        date_to=date_to,
    )


def validate_snapshot(
    raw: Any,
    *,
    default_source: str = DEFAULT_EXTERNAL_SOURCE,
) -> ExternalSnapshot:
    """
    Validate one snapshot returned by the external sync source.

    The source is untrusted, so every field is checked. A missing or empty
    ``source`` falls back to ``default_source``.

    Raises:
        ValidationError: Listing every violated field.
    """
    raw = _require_mapping(raw, "Snapshot")
    errors: dict[str, str] = {}

    metric = raw.get("metric")
    if not isinstance(metric, str) or not metric.strip():
        errors["metric"] = "required non-empty string"

    value = _coerce_value(raw.get("value"))
    if value is None:
        errors["value"] = "must be a finite number"

    snapshot_type = _coerce_metric_type(raw.get("type"))
    if snapshot_type is None:
        errors["type"] = _type_reason()

    timestamp = None
    raw_timestamp = raw.get("timestamp")
    if not isinstance(raw_timestamp, str):
        errors["timestamp"] = "must be an ISO 8601 string"
    else:
        timestamp = _check_timestamp(raw, "timestamp", errors)

    source = raw.get("source")
    if source is None or source == "":
        source = default_source
    elif not isinstance(source, str):
        errors["source"] = "must be a string"

    if errors:
        raise ValidationError(
            f"Invalid external snapshot: {', '.join(sorted(errors))}",
            fields=errors,
        )

    return ExternalSnapshot(
        metric=metric,
        value=value,
        type=snapshot_type,
        timestamp=timestamp,
        source=source,
    )
