"""
Admin Analytics API.

Dashboard queries over the daily rollups plus a manual aggregation /
backfill trigger. All routes are scoped to the channel named in the
X-Channel-Id header and require the ReadAnalytics permission (enforced
where the router is mounted).
"""

from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from src.api.deps import get_channel_id, get_clock, get_rules, get_store
from src.components.analytics import (
    AggregateDateInput,
    AggregateDateOutput,
    AggregateRangeInput,
    AnalyticsStorePort,
    DateRange,
    InvalidDateRangeError,
    QueryProductTrendInput,
    QueryTopProductsInput,
    QueryTotalVisitorsInput,
    QueryVisitorSummaryInput,
    QueryVisitorTimeseriesInput,
    TimePort,
    build_date_range,
    build_query_config,
    date_range_for_preset,
    parse_date,
    run_aggregate_date,
    run_aggregate_range,
    run_query_product_trend,
    run_query_top_products,
    run_query_total_visitors,
    run_query_visitor_summary,
    run_query_visitor_timeseries,
    today_utc,
)
from src.rules.models import Rules

router = APIRouter()

DEFAULT_PRESET = "30days"


# --- Request/Response Models ---


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class VisitorTimeseriesPointResponse(CamelModel):
    date: str
    unique_visitors: int


class VisitorTimeseriesResponse(CamelModel):
    start: str
    end: str
    points: list[VisitorTimeseriesPointResponse]


class ProductViewStatResponse(CamelModel):
    product_id: str
    name: str | None = None
    slug: str | None = None
    views: int


class TopProductsResponse(CamelModel):
    start: str
    end: str
    items: list[ProductViewStatResponse]


class ProductTrendPointResponse(CamelModel):
    date: str
    views: int


class ProductTrendResponse(CamelModel):
    product_id: str
    start: str
    end: str
    points: list[ProductTrendPointResponse]


class VisitorSummaryResponse(CamelModel):
    start: str
    end: str
    total_unique_visitors: int
    authenticated_visitors: int
    anonymous_visitors: int


class TotalVisitorsResponse(CamelModel):
    start: str
    end: str
    total: int


class AggregateRequest(CamelModel):
    """Aggregate one day (date) or backfill an inclusive range (start/end)."""

    date: str | None = None
    start: str | None = None
    end: str | None = None


class ChannelRollupResponse(CamelModel):
    channel_id: str
    unique_visitors: int
    products: int
    skipped: bool
    error: str | None = None


class AggregateDayResponse(CamelModel):
    date: str
    channels: list[ChannelRollupResponse]


class AggregateResponse(CamelModel):
    success: bool
    days: list[AggregateDayResponse]


# --- Helper Functions ---


def resolve_date_range(
    start: str | None = Query(None, description="Start date (ISO 8601)"),
    end: str | None = Query(None, description="End date (ISO 8601)"),
    preset: str | None = Query(None, description="Preset: 7days, 30days, 90days"),
    rules: Rules = Depends(get_rules),
    clock: TimePort = Depends(get_clock),
) -> DateRange:
    """
    Resolve the requested range.

    An explicit start/end pair wins over a preset; with neither, the last
    30 days (today included) are used.
    """
    try:
        if start or end:
            if not (start and end):
                raise InvalidDateRangeError("Both start and end are required")
            return build_date_range(start, end, build_query_config(rules.analytics))
        return date_range_for_preset(preset or DEFAULT_PRESET, today_utc(clock))
    except InvalidDateRangeError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e


def _to_day_response(output: AggregateDateOutput) -> AggregateDayResponse:
    return AggregateDayResponse(
        date=output.day.isoformat(),
        channels=[
            ChannelRollupResponse(
                channel_id=c.channel_id,
                unique_visitors=c.unique_visitors,
                products=c.products,
                skipped=c.skipped,
                error=c.error,
            )
            for c in output.channels
        ],
    )


# --- Routes ---


@router.get("/visitors", response_model=VisitorTimeseriesResponse)
def get_visitors(
    date_range: DateRange = Depends(resolve_date_range),
    channel_id: str = Depends(get_channel_id),
    store: AnalyticsStorePort = Depends(get_store),
    rules: Rules = Depends(get_rules),
) -> VisitorTimeseriesResponse:
    """Daily unique visitors, ascending by date."""
    points = run_query_visitor_timeseries(
        QueryVisitorTimeseriesInput(channel_id=channel_id, range=date_range),
        store=store,
        rules=rules.analytics,
    )
    return VisitorTimeseriesResponse(
        start=date_range.start.isoformat(),
        end=date_range.end.isoformat(),
        points=[
            VisitorTimeseriesPointResponse(
                date=p.date.isoformat(), unique_visitors=p.unique_visitors
            )
            for p in points
        ],
    )


@router.get("/top-products", response_model=TopProductsResponse)
def get_top_products(
    limit: int | None = Query(None, ge=1, description="Number of results"),
    date_range: DateRange = Depends(resolve_date_range),
    channel_id: str = Depends(get_channel_id),
    store: AnalyticsStorePort = Depends(get_store),
    rules: Rules = Depends(get_rules),
) -> TopProductsResponse:
    """Most viewed products over the range."""
    items = run_query_top_products(
        QueryTopProductsInput(
            channel_id=channel_id,
            range=date_range,
            limit=limit or rules.analytics.query.default_limit,
        ),
        store=store,
        rules=rules.analytics,
    )
    return TopProductsResponse(
        start=date_range.start.isoformat(),
        end=date_range.end.isoformat(),
        items=[
            ProductViewStatResponse(
                product_id=i.product_id, name=i.name, slug=i.slug, views=i.views
            )
            for i in items
        ],
    )


@router.get("/product-trend", response_model=ProductTrendResponse)
def get_product_trend(
    product_id: str = Query(..., alias="productId", min_length=1, description="Product ID"),
    date_range: DateRange = Depends(resolve_date_range),
    channel_id: str = Depends(get_channel_id),
    store: AnalyticsStorePort = Depends(get_store),
    rules: Rules = Depends(get_rules),
) -> ProductTrendResponse:
    """Daily views of one product, ascending by date."""
    points = run_query_product_trend(
        QueryProductTrendInput(channel_id=channel_id, product_id=product_id, range=date_range),
        store=store,
        rules=rules.analytics,
    )
    return ProductTrendResponse(
        product_id=product_id,
        start=date_range.start.isoformat(),
        end=date_range.end.isoformat(),
        points=[ProductTrendPointResponse(date=p.date.isoformat(), views=p.views) for p in points],
    )


@router.get("/summary", response_model=VisitorSummaryResponse)
def get_summary(
    date_range: DateRange = Depends(resolve_date_range),
    channel_id: str = Depends(get_channel_id),
    store: AnalyticsStorePort = Depends(get_store),
    rules: Rules = Depends(get_rules),
) -> VisitorSummaryResponse:
    """Total, authenticated and anonymous visitors."""
    summary = run_query_visitor_summary(
        QueryVisitorSummaryInput(channel_id=channel_id, range=date_range),
        store=store,
        rules=rules.analytics,
    )
    return VisitorSummaryResponse(
        start=date_range.start.isoformat(),
        end=date_range.end.isoformat(),
        total_unique_visitors=summary.total_unique_visitors,
        authenticated_visitors=summary.authenticated_visitors,
        anonymous_visitors=summary.anonymous_visitors,
    )


@router.get("/total-visitors", response_model=TotalVisitorsResponse)
def get_total_visitors(
    date_range: DateRange = Depends(resolve_date_range),
    channel_id: str = Depends(get_channel_id),
    store: AnalyticsStorePort = Depends(get_store),
    rules: Rules = Depends(get_rules),
) -> TotalVisitorsResponse:
    """Sum of daily unique visitors over the range."""
    total = run_query_total_visitors(
        QueryTotalVisitorsInput(channel_id=channel_id, range=date_range),
        store=store,
        rules=rules.analytics,
    )
    return TotalVisitorsResponse(
        start=date_range.start.isoformat(),
        end=date_range.end.isoformat(),
        total=total,
    )


@router.post("/aggregate", response_model=AggregateResponse)
def trigger_aggregation(
    body: AggregateRequest,
    store: AnalyticsStorePort = Depends(get_store),
    clock: TimePort = Depends(get_clock),
    rules: Rules = Depends(get_rules),
) -> AggregateResponse:
    """
    Run aggregation now.

    With start/end, backfills every day of the inclusive range. With date,
    aggregates that day. With neither, aggregates today (UTC). Reversed ranges
    and ranges longer than aggregation.max_backfill_days are rejected with 400.
    """
    try:
        if body.start or body.end:
            if not (body.start and body.end):
                raise InvalidDateRangeError("Both start and end are required")
            start = parse_date(body.start, "start")
            end = parse_date(body.end, "end")
            result = run_aggregate_range(
                AggregateRangeInput(start=start, end=end), store=store, rules=rules.analytics
            )
            return AggregateResponse(
                success=result.success, days=[_to_day_response(d) for d in result.days]
            )

        day: date = parse_date(body.date, "date") if body.date else today_utc(clock)
    except InvalidDateRangeError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e

    output = run_aggregate_date(AggregateDateInput(day=day), store=store, rules=rules.analytics)
    return AggregateResponse(success=output.success, days=[_to_day_response(output)])
