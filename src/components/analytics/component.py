"""
Analytics component - Visitor tracking, daily aggregation and queries.

Records product views per browsing session, folds them into daily rollups
on a schedule, and serves dashboard queries from the rollups.

Invariants:
- I1: At most one event per (session, dedup key)
- I2: first_seen <= last_seen for every session
- I3: Exactly one visitor rollup per (date, channel) and one product
      rollup per (date, channel, product)
- I4: Rollups are replaced, never incremented; aggregation is idempotent
- I5: Queries never scan raw events
"""

from __future__ import annotations

from src.rules.models import AnalyticsRules

from ._aggregate import AggregationConfig, VisitorAggregationService
from ._dedupe import DedupeConfig, DedupeStrategy
from ._impl import TrackingConfig, VisitorTrackingService
from ._query import QueryConfig, VisitorQueryService
from .models import (
    AggregateDateInput,
    AggregateDateOutput,
    AggregateRangeInput,
    AggregateRangeOutput,
    ProductTrendPoint,
    ProductViewItem,
    QueryProductTrendInput,
    QueryTopProductsInput,
    QueryTotalVisitorsInput,
    QueryVisitorSummaryInput,
    QueryVisitorTimeseriesInput,
    TrackViewInput,
    TrackViewOutput,
    VisitorSummary,
    VisitorTimeseriesPoint,
)
from .ports import AnalyticsStorePort, TimePort


def build_tracking_config(rules: AnalyticsRules | None) -> TrackingConfig:
    """Build tracking config from analytics rules."""
    if rules is None:
        return TrackingConfig()

    return TrackingConfig(
        enabled=rules.enabled,
        dedupe=DedupeConfig(strategy=DedupeStrategy(rules.dedupe.strategy)),
        anonymous_token_prefix=rules.anonymous_token_prefix,
    )


def build_aggregation_config(rules: AnalyticsRules | None) -> AggregationConfig:
    """Build aggregation config from analytics rules."""
    if rules is None:
        return AggregationConfig()

    return AggregationConfig(max_backfill_days=rules.aggregation.max_backfill_days)


def build_query_config(rules: AnalyticsRules | None) -> QueryConfig:
    """Build query config from analytics rules."""
    if rules is None:
        return QueryConfig()

    return QueryConfig(
        default_limit=rules.query.default_limit,
        max_limit=rules.query.max_limit,
        max_range_days=rules.query.max_range_days,
    )


# --- Component Entry Points ---


def run_track_view(
    inp: TrackViewInput,
    *,
    store: AnalyticsStorePort,
    time_port: TimePort | None = None,
    rules: AnalyticsRules | None = None,
) -> TrackViewOutput:
    """
    Track one product view.

    Args:
        inp: Channel, product and optional session token / customer.
        store: Analytics store port.
        time_port: Optional time port.
        rules: Optional analytics rules.

    Returns:
        TrackViewOutput; business misses are reported through reason.
    """
    service = VisitorTrackingService(
        sessions=store.sessions,
        events=store.events,
        channels=store.channels,
        products=store.products,
        customers=store.customers,
        time_port=time_port,
        config=build_tracking_config(rules),
    )
    return service.track_view(inp)


def run_aggregate_date(
    inp: AggregateDateInput,
    *,
    store: AnalyticsStorePort,
    rules: AnalyticsRules | None = None,
) -> AggregateDateOutput:
    """Aggregate one day across all channels."""
    service = VisitorAggregationService(
        sessions=store.sessions,
        events=store.events,
        stats=store.stats,
        channels=store.channels,
        config=build_aggregation_config(rules),
    )
    return service.aggregate_date(inp.day)


def run_aggregate_range(
    inp: AggregateRangeInput,
    *,
    store: AnalyticsStorePort,
    rules: AnalyticsRules | None = None,
) -> AggregateRangeOutput:
    """
    Backfill an inclusive day range, one day at a time.

    Raises:
        InvalidDateRangeError: If the range is reversed or longer than
            aggregation.max_backfill_days.
    """
    service = VisitorAggregationService(
        sessions=store.sessions,
        events=store.events,
        stats=store.stats,
        channels=store.channels,
        config=build_aggregation_config(rules),
    )
    return service.aggregate_date_range(inp.start, inp.end)


def _query_service(
    store: AnalyticsStorePort, rules: AnalyticsRules | None
) -> VisitorQueryService:
    return VisitorQueryService(
        stats=store.stats,
        products=store.products,
        config=build_query_config(rules),
    )


def run_query_visitor_timeseries(
    inp: QueryVisitorTimeseriesInput,
    *,
    store: AnalyticsStorePort,
    rules: AnalyticsRules | None = None,
) -> list[VisitorTimeseriesPoint]:
    return _query_service(store, rules).get_visitor_timeseries(inp.channel_id, inp.range)


def run_query_top_products(
    inp: QueryTopProductsInput,
    *,
    store: AnalyticsStorePort,
    rules: AnalyticsRules | None = None,
) -> list[ProductViewItem]:
    return _query_service(store, rules).get_top_products(inp.channel_id, inp.range, inp.limit)


def run_query_product_trend(
    inp: QueryProductTrendInput,
    *,
    store: AnalyticsStorePort,
    rules: AnalyticsRules | None = None,
) -> list[ProductTrendPoint]:
    return _query_service(store, rules).get_product_trend(
        inp.channel_id, inp.product_id, inp.range
    )


def run_query_total_visitors(
    inp: QueryTotalVisitorsInput,
    *,
    store: AnalyticsStorePort,
    rules: AnalyticsRules | None = None,
) -> int:
    return _query_service(store, rules).get_total_unique_visitors(inp.channel_id, inp.range)


def run_query_visitor_summary(
    inp: QueryVisitorSummaryInput,
    *,
    store: AnalyticsStorePort,
    rules: AnalyticsRules | None = None,
) -> VisitorSummary:
    return _query_service(store, rules).get_visitor_summary(inp.channel_id, inp.range)


AnalyticsInput = (
    TrackViewInput
    | AggregateDateInput
    | AggregateRangeInput
    | QueryVisitorTimeseriesInput
    | QueryTopProductsInput
    | QueryProductTrendInput
    | QueryTotalVisitorsInput
    | QueryVisitorSummaryInput
)


def run(
    inp: AnalyticsInput,
    *,
    store: AnalyticsStorePort,
    time_port: TimePort | None = None,
    rules: AnalyticsRules | None = None,
) -> object:
    """
    Main entry point for the analytics component.

    Dispatches to the appropriate handler based on input type.
    """
    if isinstance(inp, TrackViewInput):
        return run_track_view(inp, store=store, time_port=time_port, rules=rules)
    elif isinstance(inp, AggregateDateInput):
        return run_aggregate_date(inp, store=store, rules=rules)
    elif isinstance(inp, AggregateRangeInput):
        return run_aggregate_range(inp, store=store, rules=rules)
    elif isinstance(inp, QueryVisitorTimeseriesInput):
        return run_query_visitor_timeseries(inp, store=store, rules=rules)
    elif isinstance(inp, QueryTopProductsInput):
        return run_query_top_products(inp, store=store, rules=rules)
    elif isinstance(inp, QueryProductTrendInput):
        return run_query_product_trend(inp, store=store, rules=rules)
    elif isinstance(inp, QueryTotalVisitorsInput):
        return run_query_total_visitors(inp, store=store, rules=rules)
    elif isinstance(inp, QueryVisitorSummaryInput):
        return run_query_visitor_summary(inp, store=store, rules=rules)
    else:
        raise ValueError(f"Unknown input type: {type(inp)}")
