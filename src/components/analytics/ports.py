"""
Analytics component port definitions.

Raw tables (sessions, events) are written by tracking only; rollup tables
are written by aggregation only. Every write method is its own transaction.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Protocol
from uuid import UUID

from src.core.entities import (
    Channel,
    Customer,
    DailyProductViewStat,
    DailyVisitorStat,
    Product,
    VisitorEvent,
    VisitorSession,
)


class VisitorSessionRepoPort(Protocol):
    """Repository for visitor sessions."""

    def get_by_token(self, session_token: str) -> VisitorSession | None:
        """Point lookup by the unique session token."""
        ...

    def create(self, session: VisitorSession) -> VisitorSession:
        """
        Insert a new session.

        If another writer already created a session with the same token,
        returns that stored session instead of raising.
        """
        ...

    def save(self, session: VisitorSession) -> VisitorSession:
        """
        Merge last_seen and customer_id into an existing session.

        last_seen never moves backwards and customer_id is never cleared.
        """
        ...

    def count_first_seen(
        self,
        channel_id: str,
        start: datetime,
        end: datetime,
        authenticated_only: bool = False,
    ) -> int:
        """Count sessions of a channel whose first_seen is in [start, end)."""
        ...


class VisitorEventRepoPort(Protocol):
    """Repository for visitor events."""

    def exists(self, session_id: UUID, event_key: str) -> bool:
        """Check whether (session_id, event_key) is already stored."""
        ...

    def add(self, event: VisitorEvent) -> bool:
        """
        Insert an event.

        Returns False when (session_id, event_key) already exists, so a
        losing concurrent insert is indistinguishable from a dedup hit.
        """
        ...

    def count_distinct_viewers(
        self,
        channel_id: str,
        start: datetime,
        end: datetime,
    ) -> dict[str, int]:
        """
        Distinct sessions per product for PRODUCT_VIEW events in [start, end).

        Events whose product reference was cleared are ignored.
        """
        ...


class DailyStatRepoPort(Protocol):
    """Repository for daily rollups."""

    def replace_rollup(
        self,
        visitor_stat: DailyVisitorStat,
        product_stats: list[DailyProductViewStat],
    ) -> None:
        """
        Upsert one (date, channel) rollup atomically.

        Existing rows are overwritten, never incremented. Either every row
        is written or none is.
        """
        ...

    def get_visitor_stat(self, day: date, channel_id: str) -> DailyVisitorStat | None:
        ...

    def get_product_stat(
        self, day: date, channel_id: str, product_id: str
    ) -> DailyProductViewStat | None:
        ...

    def list_visitor_stats(
        self, channel_id: str, start: date, end: date
    ) -> list[DailyVisitorStat]:
        """Rows with date in [start, end], ascending by date."""
        ...

    def list_product_stats(
        self, channel_id: str, product_id: str, start: date, end: date
    ) -> list[DailyProductViewStat]:
        """Rows of one product with date in [start, end], ascending by date."""
        ...

    def top_products(
        self, channel_id: str, start: date, end: date, limit: int
    ) -> list[tuple[str, int]]:
        """(product_id, summed views) ordered by views descending."""
        ...

    def sum_visitors(self, channel_id: str, start: date, end: date) -> tuple[int, int]:
        """(unique_visitors, authenticated_visitors) summed over the range."""
        ...


class ChannelLookupPort(Protocol):
    """Channel (tenant) resolution. Absence is a normal outcome."""

    def get_channel(self, channel_id: str) -> Channel | None:
        ...

    def list_channel_ids(self) -> list[str]:
        ...


class ProductLookupPort(Protocol):
    def get_product(self, product_id: str) -> Product | None:
        ...


class CustomerLookupPort(Protocol):
    def get_customer(self, customer_id: str) -> Customer | None:
        ...


class TimePort(Protocol):
    """Time provider interface."""

    def now_utc(self) -> datetime:
        """Get current UTC time."""
        ...


class AnalyticsStorePort(Protocol):
    """All repositories the component needs, bundled for wiring."""

    @property
    def sessions(self) -> VisitorSessionRepoPort: ...

    @property
    def events(self) -> VisitorEventRepoPort: ...

    @property
    def stats(self) -> DailyStatRepoPort: ...

    @property
    def channels(self) -> ChannelLookupPort: ...

    @property
    def products(self) -> ProductLookupPort: ...

    @property
    def customers(self) -> CustomerLookupPort: ...
