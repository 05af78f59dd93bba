"""
Tests for visitor event dedup keys.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta, timezone

import pytest

from src.components.analytics import (
    DedupeConfig,
    DedupeStrategy,
    ensure_utc,
    generate_event_key,
    generate_product_view_key,
    get_day_bucket,
)
from src.core.entities import VisitorEventType

DAILY = DedupeConfig(strategy=DedupeStrategy.DAILY)


class TestGenerateEventKey:
    """Test dedup key generation."""

    def test_product_view_key_format(self) -> None:
        """Session strategy key is product-<id>."""
        assert generate_product_view_key("42") == "product-42"

    def test_same_inputs_same_key(self) -> None:
        """Key depends only on semantic identity."""
        ts1 = datetime(2024, 1, 1, 9, 0, tzinfo=UTC)
        ts2 = datetime(2024, 3, 5, 18, 30, tzinfo=UTC)
        assert generate_product_view_key("P1", ts1) == generate_product_view_key("P1", ts2)

    def test_different_products_different_keys(self) -> None:
        assert generate_product_view_key("P1") != generate_product_view_key("P2")

    def test_page_view_prefix(self) -> None:
        key = generate_event_key(VisitorEventType.PAGE_VIEW, "home")
        assert key == "page-home"

    def test_empty_target_rejected(self) -> None:
        with pytest.raises(ValueError):
            generate_product_view_key("")

    def test_overlong_key_rejected(self) -> None:
        with pytest.raises(ValueError):
            generate_product_view_key("x" * 200)


class TestDailyStrategy:
    """Test the per-day dedup strategy."""

    def test_daily_key_includes_utc_day(self) -> None:
        ts = datetime(2024, 1, 1, 23, 59, tzinfo=UTC)
        assert generate_product_view_key("P1", ts, DAILY) == "product-P1-2024-01-01"

    def test_daily_keys_differ_across_days(self) -> None:
        ts = datetime(2024, 1, 1, 12, 0, tzinfo=UTC)
        same_day = generate_product_view_key("P1", ts + timedelta(hours=11), DAILY)
        next_day = generate_product_view_key("P1", ts + timedelta(hours=12), DAILY)

        assert same_day == generate_product_view_key("P1", ts, DAILY)
        assert next_day != same_day

    def test_daily_requires_timestamp(self) -> None:
        with pytest.raises(ValueError):
            generate_product_view_key("P1", None, DAILY)


class TestTimestampHelpers:
    """Test UTC normalization helpers."""

    def test_naive_is_treated_as_utc(self) -> None:
        naive = datetime(2024, 1, 1, 12, 0)
        assert ensure_utc(naive) == datetime(2024, 1, 1, 12, 0, tzinfo=UTC)

    def test_offset_is_converted(self) -> None:
        """Day bucket is taken in UTC, not local time."""
        ts = datetime(2024, 1, 2, 1, 0, tzinfo=timezone(timedelta(hours=3)))
        assert get_day_bucket(ts) == "2024-01-01"
