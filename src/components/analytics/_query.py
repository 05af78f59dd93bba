"""
VisitorQueryService - Dashboard read projections.

Reads only the daily rollup tables, never raw events, so cost grows with
the number of days in the range rather than with traffic.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta

from .models import (
    DateRange,
    DateRangePreset,
    InvalidDateRangeError,
    ProductTrendPoint,
    ProductViewItem,
    VisitorSummary,
    VisitorTimeseriesPoint,
)
from .ports import DailyStatRepoPort, ProductLookupPort

_PRESET_DAYS: dict[str, int] = {"7days": 7, "30days": 30, "90days": 90}


@dataclass(frozen=True)
class QueryConfig:
    """Query configuration."""

    default_limit: int = 10
    max_limit: int = 100
    max_range_days: int = 366


DEFAULT_CONFIG = QueryConfig()


# --- Date Range Helpers ---


def parse_date(value: str | date, field_name: str = "date") -> date:
    """
    Parse an ISO date (YYYY-MM-DD) or ISO datetime into a calendar day.

    Raises:
        InvalidDateRangeError: If the value is not ISO 8601.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value

    text = (value or "").strip()
    try:
        if len(text) == 10:
            return date.fromisoformat(text)
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError as e:
        raise InvalidDateRangeError(f"Field '{field_name}' must be an ISO 8601 date") from e


def build_date_range(
    start: str | date,
    end: str | date,
    config: QueryConfig = DEFAULT_CONFIG,
) -> DateRange:
    """Validate and build an inclusive range."""
    date_range = DateRange(start=parse_date(start, "start"), end=parse_date(end, "end"))
    if date_range.days > config.max_range_days:
        raise InvalidDateRangeError(f"Date range exceeds {config.max_range_days} days")
    return date_range


def date_range_for_preset(preset: DateRangePreset | str, today: date) -> DateRange:
    """
    Range covering the last N days, today included.

    >>> date_range_for_preset("7days", date(2024, 1, 10))
    DateRange(start=datetime.date(2024, 1, 4), end=datetime.date(2024, 1, 10))
    """
    days = _PRESET_DAYS.get(preset)
    if days is None:
        raise InvalidDateRangeError(
            f"Unknown preset '{preset}'. Expected one of: {', '.join(_PRESET_DAYS)}"
        )
    return DateRange(start=today - timedelta(days=days - 1), end=today)


# --- Query Service ---


class VisitorQueryService:
    """Read-only analytics queries, scoped to one channel per call."""

    def __init__(
        self,
        stats: DailyStatRepoPort,
        products: ProductLookupPort | None = None,
        config: QueryConfig | None = None,
    ) -> None:
        """Initialize service."""
        self._stats = stats
        self._products = products
        self._config = config or DEFAULT_CONFIG

    def get_visitor_timeseries(
        self, channel_id: str, date_range: DateRange
    ) -> list[VisitorTimeseriesPoint]:
        """Daily unique visitors, ascending by date. Empty when no data."""
        rows = self._stats.list_visitor_stats(channel_id, date_range.start, date_range.end)
        return [VisitorTimeseriesPoint(date=r.date, unique_visitors=r.unique_visitors) for r in rows]

    def get_top_products(
        self,
        channel_id: str,
        date_range: DateRange,
        limit: int | None = None,
    ) -> list[ProductViewItem]:
        """
        Most viewed products over the range.

        Views are summed across days and sorted descending. Name and slug
        are best-effort; they stay None for products that no longer resolve.
        """
        limit = self._clamp_limit(limit)
        ranked = self._stats.top_products(channel_id, date_range.start, date_range.end, limit)

        items = []
        for product_id, views in ranked:
            product = self._products.get_product(product_id) if self._products else None
            items.append(
                ProductViewItem(
                    product_id=product_id,
                    views=views,
                    name=product.name if product else None,
                    slug=product.slug if product else None,
                )
            )
        return items

    def get_product_trend(
        self,
        channel_id: str,
        product_id: str,
        date_range: DateRange,
    ) -> list[ProductTrendPoint]:
        """Daily views of one product, ascending by date."""
        rows = self._stats.list_product_stats(
            channel_id, product_id, date_range.start, date_range.end
        )
        return [ProductTrendPoint(date=r.date, views=r.views) for r in rows]

    def get_total_unique_visitors(self, channel_id: str, date_range: DateRange) -> int:
        """Sum of daily unique visitors. 0 when no rows match."""
        total, _ = self._stats.sum_visitors(channel_id, date_range.start, date_range.end)
        return total or 0

    def get_visitor_summary(self, channel_id: str, date_range: DateRange) -> VisitorSummary:
        """Total, authenticated and anonymous visitors over the range."""
        total, authenticated = self._stats.sum_visitors(
            channel_id, date_range.start, date_range.end
        )
        total = total or 0
        authenticated = authenticated or 0
        return VisitorSummary(
            total_unique_visitors=total,
            authenticated_visitors=authenticated,
            anonymous_visitors=max(total - authenticated, 0),
        )

    def _clamp_limit(self, limit: int | None) -> int:
        if limit is None or limit <= 0:
            return self._config.default_limit
        return min(limit, self._config.max_limit)
