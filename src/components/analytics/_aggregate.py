"""
VisitorAggregationService - Daily rollup writer.

Folds raw sessions and events of one calendar day into the daily stat
tables, per channel. Meant to be triggered on a fixed interval (see
src.adapters.dev_jobs) and by operators for backfills.

Key behaviors:
- Unique visitors = sessions whose first_seen falls on the day
- Product views = distinct sessions per product among that day's events
- Rollup rows are overwritten, never incremented (re-runs are idempotent)
- One (date, channel) unit is written atomically; a failing unit is logged
  and skipped without aborting other channels or days
- Backfills run day by day, ascending, sequentially
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from dataclasses import dataclass
from datetime import UTC, date, datetime, time, timedelta

from src.core.entities import DailyProductViewStat, DailyVisitorStat

from .models import (
    AggregateDateOutput,
    AggregateRangeOutput,
    ChannelRollupResult,
    InvalidDateRangeError,
)
from .ports import (
    AnalyticsStorePort,
    ChannelLookupPort,
    DailyStatRepoPort,
    VisitorEventRepoPort,
    VisitorSessionRepoPort,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AggregationConfig:
    """Aggregation configuration."""

    max_backfill_days: int = 366


DEFAULT_CONFIG = AggregationConfig()


# --- Day Calculation ---


def day_window(day: date) -> tuple[datetime, datetime]:
    """
    UTC window covering one calendar day.

    Returns (start, end) with end exclusive, so every instant up to
    23:59:59.999999 belongs to the day. The last representable day ends at
    datetime.max instead.
    """
    start = datetime.combine(day, time.min, tzinfo=UTC)
    if day == date.max:
        return start, datetime.max.replace(tzinfo=UTC)
    return start, start + timedelta(days=1)


def iter_days(start: date, end: date) -> Iterator[date]:
    """Each calendar day in [start, end], ascending."""
    for offset in range((end - start).days + 1):
        yield start + timedelta(days=offset)


# --- In-Memory Repository ---


class InMemoryDailyStatRepo:
    """In-memory rollup repository for testing/dev."""

    def __init__(self) -> None:
        self._visitors: dict[tuple[date, str], DailyVisitorStat] = {}
        self._products: dict[tuple[date, str, str], DailyProductViewStat] = {}

    def replace_rollup(
        self,
        visitor_stat: DailyVisitorStat,
        product_stats: list[DailyProductViewStat],
    ) -> None:
        self._visitors[(visitor_stat.date, visitor_stat.channel_id)] = visitor_stat.model_copy()
        for stat in product_stats:
            self._products[(stat.date, stat.channel_id, stat.product_id)] = stat.model_copy()

    def get_visitor_stat(self, day: date, channel_id: str) -> DailyVisitorStat | None:
        return self._visitors.get((day, channel_id))

    def get_product_stat(
        self, day: date, channel_id: str, product_id: str
    ) -> DailyProductViewStat | None:
        return self._products.get((day, channel_id, product_id))

    def list_visitor_stats(
        self, channel_id: str, start: date, end: date
    ) -> list[DailyVisitorStat]:
        rows = [
            s
            for (day, cid), s in self._visitors.items()
            if cid == channel_id and start <= day <= end
        ]
        return sorted(rows, key=lambda s: s.date)

    def list_product_stats(
        self, channel_id: str, product_id: str, start: date, end: date
    ) -> list[DailyProductViewStat]:
        rows = [
            s
            for (day, cid, pid), s in self._products.items()
            if cid == channel_id and pid == product_id and start <= day <= end
        ]
        return sorted(rows, key=lambda s: s.date)

    def top_products(
        self, channel_id: str, start: date, end: date, limit: int
    ) -> list[tuple[str, int]]:
        totals: dict[str, int] = {}
        for (day, cid, pid), stat in self._products.items():
            if cid != channel_id or not start <= day <= end:
                continue
            totals[pid] = totals.get(pid, 0) + stat.views

        # Ties broken by product id for a stable order
        ranked = sorted(totals.items(), key=lambda x: (-x[1], x[0]))
        return ranked[:limit]

    def sum_visitors(self, channel_id: str, start: date, end: date) -> tuple[int, int]:
        rows = self.list_visitor_stats(channel_id, start, end)
        return (
            sum(r.unique_visitors for r in rows),
            sum(r.authenticated_visitors for r in rows),
        )

    def clear(self) -> None:
        """Clear all rollups."""
        self._visitors.clear()
        self._products.clear()


# --- Aggregation Service ---


class VisitorAggregationService:
    """
    Visitor aggregation service.

    The only writer of the rollup tables. A single instance should run at a
    time; concurrent runs over the same (date, channel) may lose updates.
    """

    def __init__(
        self,
        sessions: VisitorSessionRepoPort,
        events: VisitorEventRepoPort,
        stats: DailyStatRepoPort,
        channels: ChannelLookupPort,
        config: AggregationConfig | None = None,
    ) -> None:
        """Initialize service."""
        self._sessions = sessions
        self._events = events
        self._stats = stats
        self._channels = channels
        self._config = config or DEFAULT_CONFIG

    def aggregate_date(self, day: date) -> AggregateDateOutput:
        """
        Aggregate one calendar day for every channel.

        Running it twice for the same day leaves identical rollup rows.
        """
        logger.info("Aggregating analytics for date: %s", day.isoformat())

        results = []
        for channel_id in self._channels.list_channel_ids():
            try:
                results.append(self._aggregate_channel(day, channel_id))
            except Exception as e:
                logger.exception(
                    "Aggregation failed for %s on channel %s", day.isoformat(), channel_id
                )
                results.append(ChannelRollupResult(channel_id=channel_id, error=str(e)))

        logger.info("Completed aggregation for date: %s", day.isoformat())
        return AggregateDateOutput(day=day, channels=tuple(results))

    def aggregate_date_range(self, start: date, end: date) -> AggregateRangeOutput:
        """
        Backfill every day in [start, end], one day at a time.

        Stopping between days is safe; an interrupted day can be rerun.

        Raises:
            InvalidDateRangeError: If start is after end or the range is
                longer than max_backfill_days.
        """
        if start > end:
            raise InvalidDateRangeError(
                f"Backfill start {start.isoformat()} is after end {end.isoformat()}"
            )
        span = (end - start).days + 1
        if span > self._config.max_backfill_days:
            raise InvalidDateRangeError(
                f"Backfill of {span} days exceeds {self._config.max_backfill_days} days"
            )

        logger.info("Backfilling aggregations from %s to %s", start.isoformat(), end.isoformat())
        days = tuple(self.aggregate_date(day) for day in iter_days(start, end))
        logger.info("Completed backfill from %s to %s", start.isoformat(), end.isoformat())

        return AggregateRangeOutput(start=start, end=end, days=days)

    def _aggregate_channel(self, day: date, channel_id: str) -> ChannelRollupResult:
        window_start, window_end = day_window(day)

        unique_visitors = self._sessions.count_first_seen(channel_id, window_start, window_end)
        authenticated = self._sessions.count_first_seen(
            channel_id, window_start, window_end, authenticated_only=True
        )
        viewers = self._events.count_distinct_viewers(channel_id, window_start, window_end)

        # The channel may have been deleted while we were counting.
        if self._channels.get_channel(channel_id) is None:
            logger.warning("Channel %s not found, skipping rollup for %s", channel_id, day)
            return ChannelRollupResult(channel_id=channel_id, skipped=True)

        visitor_stat = DailyVisitorStat(
            date=day,
            channel_id=channel_id,
            unique_visitors=unique_visitors,
            authenticated_visitors=authenticated,
        )
        product_stats = [
            DailyProductViewStat(date=day, channel_id=channel_id, product_id=pid, views=views)
            for pid, views in sorted(viewers.items())
        ]
        self._stats.replace_rollup(visitor_stat, product_stats)

        logger.debug(
            "Aggregated %d unique visitors and %d products for %s on channel %s",
            unique_visitors,
            len(product_stats),
            day.isoformat(),
            channel_id,
        )
        return ChannelRollupResult(
            channel_id=channel_id,
            unique_visitors=unique_visitors,
            products=len(product_stats),
        )


# --- Factory ---


def create_aggregation_service(
    store: AnalyticsStorePort,
    config: AggregationConfig | None = None,
) -> VisitorAggregationService:
    """Create a VisitorAggregationService over a bundled store."""
    return VisitorAggregationService(
        sessions=store.sessions,
        events=store.events,
        stats=store.stats,
        channels=store.channels,
        config=config,
    )
