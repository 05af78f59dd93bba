"""
Analytics component - Visitor tracking, daily aggregation and queries.
"""

from ._aggregate import (
    AggregationConfig,
    InMemoryDailyStatRepo,
    VisitorAggregationService,
    create_aggregation_service,
    day_window,
    iter_days,
)
from ._dedupe import (
    DedupeConfig,
    DedupeStrategy,
    ensure_utc,
    generate_event_key,
    generate_product_view_key,
    get_day_bucket,
)
from ._impl import (
    DefaultTimePort,
    InMemoryAnalyticsStore,
    InMemoryCatalog,
    InMemoryEventRepo,
    InMemorySessionRepo,
    TrackingConfig,
    VisitorTrackingService,
    create_tracking_service,
    generate_session_token,
    today_utc,
)
from ._query import (
    QueryConfig,
    VisitorQueryService,
    build_date_range,
    date_range_for_preset,
    parse_date,
)
from .component import (
    build_aggregation_config,
    build_query_config,
    build_tracking_config,
    run,
    run_aggregate_date,
    run_aggregate_range,
    run_query_product_trend,
    run_query_top_products,
    run_query_total_visitors,
    run_query_visitor_summary,
    run_query_visitor_timeseries,
    run_track_view,
)
from .models import (
    REASON_CHANNEL_NOT_FOUND,
    REASON_DISABLED,
    REASON_DUPLICATE,
    REASON_PRODUCT_NOT_FOUND,
    AggregateDateInput,
    AggregateDateOutput,
    AggregateRangeInput,
    AggregateRangeOutput,
    ChannelRollupResult,
    DateRange,
    DateRangePreset,
    InvalidDateRangeError,
    ProductTrendPoint,
    ProductViewItem,
    QueryProductTrendInput,
    QueryTopProductsInput,
    QueryTotalVisitorsInput,
    QueryVisitorSummaryInput,
    QueryVisitorTimeseriesInput,
    TrackReason,
    TrackViewInput,
    TrackViewOutput,
    VisitorSummary,
    VisitorTimeseriesPoint,
)
from .ports import (
    AnalyticsStorePort,
    ChannelLookupPort,
    CustomerLookupPort,
    DailyStatRepoPort,
    ProductLookupPort,
    TimePort,
    VisitorEventRepoPort,
    VisitorSessionRepoPort,
)

__all__ = [
    # Entry points
    "run",
    "run_track_view",
    "run_aggregate_date",
    "run_aggregate_range",
    "run_query_visitor_timeseries",
    "run_query_top_products",
    "run_query_product_trend",
    "run_query_total_visitors",
    "run_query_visitor_summary",
    "build_tracking_config",
    "build_aggregation_config",
    "build_query_config",
    # Input models
    "TrackViewInput",
    "AggregateDateInput",
    "AggregateRangeInput",
    "QueryVisitorTimeseriesInput",
    "QueryTopProductsInput",
    "QueryProductTrendInput",
    "QueryTotalVisitorsInput",
    "QueryVisitorSummaryInput",
    # Output models
    "TrackViewOutput",
    "TrackReason",
    "REASON_DUPLICATE",
    "REASON_PRODUCT_NOT_FOUND",
    "REASON_CHANNEL_NOT_FOUND",
    "REASON_DISABLED",
    "ChannelRollupResult",
    "AggregateDateOutput",
    "AggregateRangeOutput",
    "VisitorTimeseriesPoint",
    "ProductViewItem",
    "ProductTrendPoint",
    "VisitorSummary",
    "DateRange",
    "DateRangePreset",
    "InvalidDateRangeError",
    # Ports
    "AnalyticsStorePort",
    "ChannelLookupPort",
    "CustomerLookupPort",
    "DailyStatRepoPort",
    "ProductLookupPort",
    "TimePort",
    "VisitorEventRepoPort",
    "VisitorSessionRepoPort",
    # Services
    "VisitorTrackingService",
    "VisitorAggregationService",
    "VisitorQueryService",
    "TrackingConfig",
    "AggregationConfig",
    "QueryConfig",
    "DefaultTimePort",
    "create_tracking_service",
    "create_aggregation_service",
    # Dedupe
    "DedupeConfig",
    "DedupeStrategy",
    "ensure_utc",
    "generate_event_key",
    "generate_product_view_key",
    "get_day_bucket",
    # Date helpers
    "build_date_range",
    "date_range_for_preset",
    "parse_date",
    "day_window",
    "iter_days",
    "today_utc",
    "generate_session_token",
    # In-memory implementations
    "InMemoryAnalyticsStore",
    "InMemoryCatalog",
    "InMemoryDailyStatRepo",
    "InMemoryEventRepo",
    "InMemorySessionRepo",
]
