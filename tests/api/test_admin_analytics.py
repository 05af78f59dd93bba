"""
Tests for Admin Analytics API.

Dashboard queries read the daily rollups; /aggregate writes them. Every
route sits behind the ReadAnalytics bearer check.
"""

from __future__ import annotations

from datetime import timedelta

import pytest
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient

from src.adapters.clock import FixedClock
from src.adapters.sqlite_db import SQLiteAnalyticsStore
from src.api.deps import get_clock, get_rules, get_store, require_read_analytics
from src.api.routes import admin_analytics
from src.components.analytics import (
    AggregateRangeInput,
    TrackViewInput,
    run_aggregate_range,
    run_track_view,
)
from src.core.entities import Channel
from src.rules.models import Rules

TOKEN = "admin-secret"
HEADERS = {"X-Channel-Id": "T", "Authorization": f"Bearer {TOKEN}"}
JAN_WEEK = {"start": "2024-01-01", "end": "2024-01-07"}


# --- Test Setup ---


@pytest.fixture
def app(
    sqlite_store: SQLiteAnalyticsStore,
    clock: FixedClock,
    rules: Rules,
    monkeypatch: pytest.MonkeyPatch,
) -> FastAPI:
    """Test FastAPI app with admin analytics routes behind the permission check."""
    monkeypatch.setenv(rules.security.admin_token_env, TOKEN)

    app = FastAPI()
    app.include_router(
        admin_analytics.router,
        prefix="/admin/analytics",
        dependencies=[Depends(require_read_analytics)],
    )

    app.dependency_overrides[get_store] = lambda: sqlite_store
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_rules] = lambda: rules

    return app


@pytest.fixture
def client(app: FastAPI) -> TestClient:
    """Authenticated test client for channel T."""
    return TestClient(app, headers=HEADERS)


@pytest.fixture
def seeded(sqlite_store: SQLiteAnalyticsStore, clock: FixedClock) -> SQLiteAnalyticsStore:
    """
    Two days of traffic, aggregated.

    Jan 1: S1 (customer C1) views P1 and P2, S2 views P1.
    Jan 2: S3 views P2.
    """
    track(sqlite_store, clock, "S1", "P1", customer_id="C1")
    track(sqlite_store, clock, "S1", "P2")
    track(sqlite_store, clock, "S2", "P1")
    clock.set(clock.now_utc() + timedelta(days=1))
    track(sqlite_store, clock, "S3", "P2")
    clock.set(clock.now_utc() - timedelta(days=1))

    start = clock.today_utc()
    run_aggregate_range(
        AggregateRangeInput(start=start, end=start + timedelta(days=1)), store=sqlite_store
    )
    return sqlite_store


# --- Helper Functions ---


def track(
    store: SQLiteAnalyticsStore,
    clock: FixedClock,
    token: str,
    product_id: str,
    customer_id: str | None = None,
) -> None:
    run_track_view(
        TrackViewInput(
            channel_id="T",
            product_id=product_id,
            session_token=token,
            customer_id=customer_id,
        ),
        store=store,
        time_port=clock,
    )


# --- Permission ---


class TestPermission:
    def test_missing_credentials(self, app: FastAPI) -> None:
        response = TestClient(app).get(
            "/admin/analytics/visitors", headers={"X-Channel-Id": "T"}
        )
        assert response.status_code == 401

    def test_wrong_token(self, app: FastAPI) -> None:
        response = TestClient(app).get(
            "/admin/analytics/visitors",
            headers={"X-Channel-Id": "T", "Authorization": "Bearer nope"},
        )
        assert response.status_code == 403

    def test_token_not_configured(
        self, client: TestClient, rules: Rules, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.delenv(rules.security.admin_token_env)

        response = client.get("/admin/analytics/visitors")
        assert response.status_code == 403

    def test_aggregate_also_protected(self, app: FastAPI) -> None:
        response = TestClient(app).post(
            "/admin/analytics/aggregate",
            json={"date": "2024-01-01"},
            headers={"X-Channel-Id": "T"},
        )
        assert response.status_code == 401

    def test_channel_header_required(self, app: FastAPI) -> None:
        response = TestClient(app).get(
            "/admin/analytics/visitors", headers={"Authorization": f"Bearer {TOKEN}"}
        )
        assert response.status_code == 422


# --- Date Ranges ---


class TestDateRange:
    def test_explicit_range_echoed(self, client: TestClient) -> None:
        response = client.get("/admin/analytics/visitors", params=JAN_WEEK)

        assert response.status_code == 200
        data = response.json()
        assert data["start"] == "2024-01-01"
        assert data["end"] == "2024-01-07"

    def test_default_is_last_30_days(self, client: TestClient) -> None:
        data = client.get("/admin/analytics/visitors").json()

        assert data["start"] == "2023-12-03"
        assert data["end"] == "2024-01-01"

    def test_preset(self, client: TestClient) -> None:
        data = client.get("/admin/analytics/visitors", params={"preset": "7days"}).json()

        assert data["start"] == "2023-12-26"
        assert data["end"] == "2024-01-01"

    def test_explicit_range_wins_over_preset(self, client: TestClient) -> None:
        data = client.get(
            "/admin/analytics/visitors", params={**JAN_WEEK, "preset": "90days"}
        ).json()

        assert data["start"] == "2024-01-01"

    @pytest.mark.parametrize(
        "params",
        [
            {"start": "2024-01-07", "end": "2024-01-01"},
            {"start": "2024-01-01"},
            {"start": "not-a-date", "end": "2024-01-01"},
            {"preset": "1year"},
            {"start": "2020-01-01", "end": "2024-01-01"},
        ],
    )
    def test_invalid_range_is_400(self, client: TestClient, params: dict[str, str]) -> None:
        response = client.get("/admin/analytics/visitors", params=params)
        assert response.status_code == 400


# --- Queries ---


class TestQueries:
    def test_visitors_timeseries(self, client: TestClient, seeded: SQLiteAnalyticsStore) -> None:
        data = client.get("/admin/analytics/visitors", params=JAN_WEEK).json()

        assert data["points"] == [
            {"date": "2024-01-01", "uniqueVisitors": 2},
            {"date": "2024-01-02", "uniqueVisitors": 1},
        ]

    def test_top_products(self, client: TestClient, seeded: SQLiteAnalyticsStore) -> None:
        data = client.get("/admin/analytics/top-products", params=JAN_WEEK).json()

        assert data["items"] == [
            {"productId": "P1", "name": "Laptop", "slug": "laptop", "views": 2},
            {"productId": "P2", "name": "Camera", "slug": "camera", "views": 2},
        ]

    def test_top_products_limit(self, client: TestClient, seeded: SQLiteAnalyticsStore) -> None:
        data = client.get(
            "/admin/analytics/top-products", params={**JAN_WEEK, "limit": 1}
        ).json()

        assert [i["productId"] for i in data["items"]] == ["P1"]

    def test_top_products_rejects_zero_limit(self, client: TestClient) -> None:
        response = client.get("/admin/analytics/top-products", params={**JAN_WEEK, "limit": 0})
        assert response.status_code == 422

    def test_product_trend(self, client: TestClient, seeded: SQLiteAnalyticsStore) -> None:
        data = client.get(
            "/admin/analytics/product-trend", params={**JAN_WEEK, "productId": "P2"}
        ).json()

        assert data["productId"] == "P2"
        assert data["points"] == [
            {"date": "2024-01-01", "views": 1},
            {"date": "2024-01-02", "views": 1},
        ]

    def test_product_trend_requires_product(self, client: TestClient) -> None:
        response = client.get("/admin/analytics/product-trend", params=JAN_WEEK)
        assert response.status_code == 422

    def test_summary(self, client: TestClient, seeded: SQLiteAnalyticsStore) -> None:
        data = client.get("/admin/analytics/summary", params=JAN_WEEK).json()

        assert data["totalUniqueVisitors"] == 3
        assert data["authenticatedVisitors"] == 1
        assert data["anonymousVisitors"] == 2

    def test_total_visitors(self, client: TestClient, seeded: SQLiteAnalyticsStore) -> None:
        data = client.get("/admin/analytics/total-visitors", params=JAN_WEEK).json()
        assert data["total"] == 3

    def test_empty_range(self, client: TestClient, seeded: SQLiteAnalyticsStore) -> None:
        params = {"start": "2023-06-01", "end": "2023-06-30"}

        assert client.get("/admin/analytics/visitors", params=params).json()["points"] == []
        assert client.get("/admin/analytics/top-products", params=params).json()["items"] == []
        assert client.get("/admin/analytics/total-visitors", params=params).json()["total"] == 0

    def test_scoped_to_header_channel(
        self, client: TestClient, seeded: SQLiteAnalyticsStore
    ) -> None:
        seeded.catalog.save_channel(Channel(id="U"))

        response = client.get(
            "/admin/analytics/total-visitors",
            params=JAN_WEEK,
            headers={"X-Channel-Id": "U"},
        )
        assert response.json()["total"] == 0


# --- Aggregation Trigger ---


class TestAggregate:
    def test_aggregate_one_day(
        self, client: TestClient, sqlite_store: SQLiteAnalyticsStore, clock: FixedClock
    ) -> None:
        track(sqlite_store, clock, "S1", "P1")

        response = client.post("/admin/analytics/aggregate", json={"date": "2024-01-01"})

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["days"] == [
            {
                "date": "2024-01-01",
                "channels": [
                    {
                        "channelId": "T",
                        "uniqueVisitors": 1,
                        "products": 1,
                        "skipped": False,
                        "error": None,
                    }
                ],
            }
        ]

    def test_defaults_to_today(self, client: TestClient) -> None:
        data = client.post("/admin/analytics/aggregate", json={}).json()
        assert [d["date"] for d in data["days"]] == ["2024-01-01"]

    def test_backfill_range(self, client: TestClient, sqlite_store: SQLiteAnalyticsStore) -> None:
        response = client.post(
            "/admin/analytics/aggregate", json={"start": "2024-01-01", "end": "2024-01-03"}
        )

        assert response.status_code == 200
        assert [d["date"] for d in response.json()["days"]] == [
            "2024-01-01",
            "2024-01-02",
            "2024-01-03",
        ]

    @pytest.mark.parametrize(
        "body",
        [
            {"start": "2024-01-03", "end": "2024-01-01"},
            {"end": "2024-01-01"},
            {"date": "01/01/2024"},
            {"start": "2000-01-01", "end": "2024-01-01"},
        ],
    )
    def test_invalid_body_is_400(self, client: TestClient, body: dict[str, str]) -> None:
        response = client.post("/admin/analytics/aggregate", json=body)
        assert response.status_code == 400

    def test_aggregated_data_is_queryable(
        self, client: TestClient, sqlite_store: SQLiteAnalyticsStore, clock: FixedClock
    ) -> None:
        track(sqlite_store, clock, "S1", "P1")
        track(sqlite_store, clock, "S2", "P1")

        client.post("/admin/analytics/aggregate", json={"date": "2024-01-01"})

        data = client.get("/admin/analytics/visitors", params=JAN_WEEK).json()
        assert data["points"] == [{"date": "2024-01-01", "uniqueVisitors": 2}]
