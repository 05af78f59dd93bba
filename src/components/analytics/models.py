"""
Analytics component input/output models.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Literal

# --- Reasons ---


TrackReason = Literal["duplicate", "product_not_found", "channel_not_found", "disabled"]

REASON_DUPLICATE: TrackReason = "duplicate"
REASON_PRODUCT_NOT_FOUND: TrackReason = "product_not_found"
REASON_CHANNEL_NOT_FOUND: TrackReason = "channel_not_found"
REASON_DISABLED: TrackReason = "disabled"

DateRangePreset = Literal["7days", "30days", "90days"]


# --- Errors ---


class InvalidDateRangeError(ValueError):
    """Raised for malformed or out-of-bounds date ranges."""


# --- Shared ---


@dataclass(frozen=True)
class DateRange:
    """Inclusive calendar-day range."""

    start: date
    end: date

    def __post_init__(self) -> None:
        if self.start > self.end:
            raise InvalidDateRangeError(
                f"Range start {self.start.isoformat()} is after end {self.end.isoformat()}"
            )

    @property
    def days(self) -> int:
        return (self.end - self.start).days + 1


# --- Input Models ---


@dataclass(frozen=True)
class TrackViewInput:
    """Input for tracking one product view."""

    channel_id: str
    product_id: str
    session_token: str | None = None
    customer_id: str | None = None


@dataclass(frozen=True)
class AggregateDateInput:
    """Input for aggregating one calendar day across all channels."""

    day: date


@dataclass(frozen=True)
class AggregateRangeInput:
    """Input for a backfill over an inclusive day range."""

    start: date
    end: date


@dataclass(frozen=True)
class QueryVisitorTimeseriesInput:
    channel_id: str
    range: DateRange


@dataclass(frozen=True)
class QueryTopProductsInput:
    channel_id: str
    range: DateRange
    limit: int = 10


@dataclass(frozen=True)
class QueryProductTrendInput:
    channel_id: str
    product_id: str
    range: DateRange


@dataclass(frozen=True)
class QueryTotalVisitorsInput:
    channel_id: str
    range: DateRange


@dataclass(frozen=True)
class QueryVisitorSummaryInput:
    channel_id: str
    range: DateRange


# --- Output Models ---


@dataclass(frozen=True)
class TrackViewOutput:
    """Tracking result. Misses are reported through reason, never raised."""

    recorded: bool
    reason: TrackReason | None = None
    session_token: str | None = None


@dataclass(frozen=True)
class ChannelRollupResult:
    """Outcome of aggregating one (date, channel) unit."""

    channel_id: str
    unique_visitors: int = 0
    products: int = 0
    skipped: bool = False
    error: str | None = None


@dataclass(frozen=True)
class AggregateDateOutput:
    day: date
    channels: tuple[ChannelRollupResult, ...] = ()

    @property
    def failed(self) -> tuple[ChannelRollupResult, ...]:
        return tuple(c for c in self.channels if c.error is not None)

    @property
    def success(self) -> bool:
        return not self.failed


@dataclass(frozen=True)
class AggregateRangeOutput:
    start: date
    end: date
    days: tuple[AggregateDateOutput, ...] = field(default_factory=tuple)

    @property
    def success(self) -> bool:
        return all(d.success for d in self.days)


@dataclass(frozen=True)
class VisitorTimeseriesPoint:
    date: date
    unique_visitors: int


@dataclass(frozen=True)
class ProductViewItem:
    product_id: str
    views: int
    name: str | None = None
    slug: str | None = None


@dataclass(frozen=True)
class ProductTrendPoint:
    date: date
    views: int


@dataclass(frozen=True)
class VisitorSummary:
    total_unique_visitors: int
    authenticated_visitors: int
    anonymous_visitors: int
