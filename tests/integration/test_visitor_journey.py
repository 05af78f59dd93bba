"""
End-to-end visitor analytics flow against SQLite.

Track views through the component entry points, aggregate, then query the
rollups, the way the storefront, scheduler and dashboard drive it.
"""

from __future__ import annotations

import sqlite3
from datetime import UTC, date, datetime, timedelta
from uuid import UUID

import pytest

from src.adapters.clock import FixedClock
from src.adapters.sqlite_db import (
    SQLiteAnalyticsStore,
    SQLiteVisitorEventRepo,
    SQLiteVisitorSessionRepo,
)
from src.components.analytics import (
    REASON_DUPLICATE,
    AggregateDateInput,
    AggregateRangeInput,
    DateRange,
    QueryProductTrendInput,
    QueryTopProductsInput,
    QueryTotalVisitorsInput,
    QueryVisitorSummaryInput,
    QueryVisitorTimeseriesInput,
    TrackViewInput,
    VisitorTrackingService,
    run,
    run_aggregate_date,
    run_track_view,
)
from src.core.entities import Channel, Product, VisitorSession

DAY = date(2024, 1, 1)
RANGE = DateRange(start=DAY, end=DAY + timedelta(days=6))


def track(
    store: SQLiteAnalyticsStore,
    clock: FixedClock,
    token: str,
    product_id: str,
    channel_id: str = "T",
    customer_id: str | None = None,
) -> bool:
    result = run_track_view(
        TrackViewInput(
            channel_id=channel_id,
            product_id=product_id,
            session_token=token,
            customer_id=customer_id,
        ),
        store=store,
        time_port=clock,
    )
    return result.recorded


def dump_rollups(db_path: str) -> list[tuple[object, ...]]:
    conn = sqlite3.connect(db_path)
    try:
        visitors = conn.execute(
            "SELECT date, channel_id, unique_visitors, authenticated_visitors "
            "FROM daily_visitor_stats ORDER BY date, channel_id"
        ).fetchall()
        products = conn.execute(
            "SELECT date, channel_id, product_id, views "
            "FROM daily_product_view_stats ORDER BY date, channel_id, product_id"
        ).fetchall()
        return visitors + products
    finally:
        conn.close()


class TestEndToEnd:
    def test_two_sessions_scenario(
        self, sqlite_store: SQLiteAnalyticsStore, clock: FixedClock
    ) -> None:
        """S1 views P1 and P2; S2 views P1 twice (deduped to once)."""
        assert track(sqlite_store, clock, "S1", "P1")
        assert track(sqlite_store, clock, "S1", "P2")
        assert track(sqlite_store, clock, "S2", "P1")
        clock.set(clock.now_utc() + timedelta(minutes=3))
        assert not track(sqlite_store, clock, "S2", "P1")

        output = run_aggregate_date(AggregateDateInput(day=DAY), store=sqlite_store)

        assert output.success
        visitor = sqlite_store.stats.get_visitor_stat(DAY, "T")
        assert visitor is not None
        assert visitor.unique_visitors == 2
        p1 = sqlite_store.stats.get_product_stat(DAY, "T", "P1")
        p2 = sqlite_store.stats.get_product_stat(DAY, "T", "P2")
        assert p1 is not None and p1.views == 2
        assert p2 is not None and p2.views == 1

    def test_aggregation_rerun_leaves_identical_rows(
        self, sqlite_store: SQLiteAnalyticsStore, clock: FixedClock
    ) -> None:
        track(sqlite_store, clock, "S1", "P1")
        track(sqlite_store, clock, "S2", "P2", customer_id="C1")

        run_aggregate_date(AggregateDateInput(day=DAY), store=sqlite_store)
        first = dump_rollups(sqlite_store.db_path)
        run_aggregate_date(AggregateDateInput(day=DAY), store=sqlite_store)

        assert dump_rollups(sqlite_store.db_path) == first

    def test_queries_read_rollups(
        self, sqlite_store: SQLiteAnalyticsStore, clock: FixedClock
    ) -> None:
        track(sqlite_store, clock, "S1", "P1", customer_id="C1")
        track(sqlite_store, clock, "S2", "P1")
        track(sqlite_store, clock, "S2", "P2")
        clock.set(clock.now_utc() + timedelta(days=1))
        track(sqlite_store, clock, "S3", "P2")

        run(AggregateRangeInput(start=DAY, end=DAY + timedelta(days=1)), store=sqlite_store)

        series = run(QueryVisitorTimeseriesInput(channel_id="T", range=RANGE), store=sqlite_store)
        assert [(p.date, p.unique_visitors) for p in series] == [
            (DAY, 2),
            (DAY + timedelta(days=1), 1),
        ]

        top = run(QueryTopProductsInput(channel_id="T", range=RANGE, limit=5), store=sqlite_store)
        assert [(i.product_id, i.views, i.name) for i in top] == [
            ("P1", 2, "Laptop"),
            ("P2", 2, "Camera"),
        ]

        trend = run(
            QueryProductTrendInput(channel_id="T", product_id="P2", range=RANGE),
            store=sqlite_store,
        )
        assert [(p.date, p.views) for p in trend] == [
            (DAY, 1),
            (DAY + timedelta(days=1), 1),
        ]

        total = run(QueryTotalVisitorsInput(channel_id="T", range=RANGE), store=sqlite_store)
        assert total == 3

        summary = run(QueryVisitorSummaryInput(channel_id="T", range=RANGE), store=sqlite_store)
        assert summary.authenticated_visitors == 1
        assert summary.anonymous_visitors == 2

    def test_channels_do_not_leak(
        self, sqlite_store: SQLiteAnalyticsStore, clock: FixedClock
    ) -> None:
        sqlite_store.catalog.save_channel(Channel(id="U"))
        track(sqlite_store, clock, "S1", "P1", channel_id="T")
        track(sqlite_store, clock, "S2", "P1", channel_id="U")
        track(sqlite_store, clock, "S3", "P1", channel_id="U")

        run_aggregate_date(AggregateDateInput(day=DAY), store=sqlite_store)

        assert run(QueryTotalVisitorsInput(channel_id="T", range=RANGE), store=sqlite_store) == 1
        assert run(QueryTotalVisitorsInput(channel_id="U", range=RANGE), store=sqlite_store) == 2

    def test_unknown_input_type_rejected(self, sqlite_store: SQLiteAnalyticsStore) -> None:
        with pytest.raises(ValueError):
            run("not an input", store=sqlite_store)  # type: ignore[arg-type]


class TestConcurrentWriters:
    """Unique constraints decide races between overlapping requests."""

    def test_event_race_is_duplicate(
        self, sqlite_store: SQLiteAnalyticsStore, clock: FixedClock
    ) -> None:
        class BlindEvents(SQLiteVisitorEventRepo):
            """Misses the other request's insert once, as a concurrent reader would."""

            blind = False

            def exists(self, session_id: UUID, event_key: str) -> bool:
                if self.blind:
                    self.blind = False
                    return False
                return super().exists(session_id, event_key)

        events = BlindEvents(sqlite_store.db_path)

        service = VisitorTrackingService(
            sessions=sqlite_store.sessions,
            events=events,
            channels=sqlite_store.channels,
            products=sqlite_store.products,
            customers=sqlite_store.customers,
            time_port=clock,
        )
        inp = TrackViewInput(channel_id="T", product_id="P1", session_token="S1")

        assert service.track_view(inp).recorded is True
        events.blind = True
        second = service.track_view(inp)

        assert second.recorded is False
        assert second.reason == REASON_DUPLICATE
        with sqlite3.connect(sqlite_store.db_path) as conn:
            assert conn.execute("SELECT COUNT(*) FROM visitor_events").fetchone()[0] == 1

    def test_session_race_reuses_winner(
        self, sqlite_store: SQLiteAnalyticsStore, clock: FixedClock
    ) -> None:
        winner = sqlite_store.sessions.create(
            VisitorSession(
                session_token="S1",
                first_seen=clock.now_utc(),
                last_seen=clock.now_utc(),
                channel_id="T",
            )
        )

        class BlindSessions(SQLiteVisitorSessionRepo):
            """Misses the winner's insert on the first lookup."""

            missed = False

            def get_by_token(self, session_token: str) -> VisitorSession | None:
                if not self.missed:
                    self.missed = True
                    return None
                return super().get_by_token(session_token)

        service = VisitorTrackingService(
            sessions=BlindSessions(sqlite_store.db_path),
            events=sqlite_store.events,
            channels=sqlite_store.channels,
            products=sqlite_store.products,
            customers=sqlite_store.customers,
            time_port=clock,
        )

        result = service.track_view(
            TrackViewInput(channel_id="T", product_id="P1", session_token="S1")
        )

        assert result.recorded is True
        events = sqlite_store.events.list_by_session(winner.id)
        assert len(events) == 1

    def test_stale_touch_keeps_newer_session_state(
        self, sqlite_store: SQLiteAnalyticsStore, clock: FixedClock
    ) -> None:
        """An overlapping request holding an older snapshot must not roll the row back."""
        sqlite_store.catalog.save_product(Product(id="P3", name="Tripod", slug="tripod"))
        start = clock.now_utc()
        track(sqlite_store, clock, "S1", "P1")
        stale = sqlite_store.sessions.get_by_token("S1")
        assert stale is not None

        clock.set(start + timedelta(minutes=2))
        track(sqlite_store, clock, "S1", "P2", customer_id="C1")

        class StaleSessions(SQLiteVisitorSessionRepo):
            """Serves the snapshot read before the customer was linked."""

            def get_by_token(self, session_token: str) -> VisitorSession | None:
                return stale.model_copy()

        service = VisitorTrackingService(
            sessions=StaleSessions(sqlite_store.db_path),
            events=sqlite_store.events,
            channels=sqlite_store.channels,
            products=sqlite_store.products,
            customers=sqlite_store.customers,
            time_port=clock,
        )
        clock.set(start + timedelta(minutes=1))

        result = service.track_view(
            TrackViewInput(channel_id="T", product_id="P3", session_token="S1")
        )

        assert result.recorded is True
        stored = sqlite_store.sessions.get_by_token("S1")
        assert stored is not None
        assert stored.customer_id == "C1"
        assert stored.last_seen == start + timedelta(minutes=2)


class TestLateEvents:
    def test_late_view_needs_reaggregation(
        self, sqlite_store: SQLiteAnalyticsStore
    ) -> None:
        """Rollups reflect raw data as of the last aggregation run."""
        clock = FixedClock(datetime(2024, 1, 1, 9, 0, tzinfo=UTC))
        track(sqlite_store, clock, "S1", "P1")
        run_aggregate_date(AggregateDateInput(day=DAY), store=sqlite_store)

        clock.set(datetime(2024, 1, 1, 23, 0, tzinfo=UTC))
        track(sqlite_store, clock, "S2", "P1")
        p1 = sqlite_store.stats.get_product_stat(DAY, "T", "P1")
        assert p1 is not None and p1.views == 1

        run_aggregate_date(AggregateDateInput(day=DAY), store=sqlite_store)
        p1 = sqlite_store.stats.get_product_stat(DAY, "T", "P1")
        assert p1 is not None and p1.views == 2
