"""
SQLite Database Adapter for visitor analytics.

Implements the analytics component ports using SQLite.
Designed to be Postgres-compatible (uses standard SQL patterns:
ON CONFLICT upserts, COUNT(DISTINCT), unique indexes).

Each repository call opens its own connection and commits before
returning, so every write is its own transaction.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import UTC, date, datetime
from typing import Any
from uuid import UUID

from src.core.entities import (
    Channel,
    Customer,
    DailyProductViewStat,
    DailyVisitorStat,
    Product,
    VisitorEvent,
    VisitorEventType,
    VisitorSession,
)

logger = logging.getLogger(__name__)

# -----------------------------------------------------------------------------
# Helper functions
# -----------------------------------------------------------------------------


def dict_factory(cursor: sqlite3.Cursor, row: tuple[Any, ...]) -> dict[str, Any]:
    """Convert SQLite row to dictionary."""
    return {col[0]: row[idx] for idx, col in enumerate(cursor.description)}


def format_dt(dt: datetime) -> str:
    """
    Serialize a timestamp as fixed-width UTC ISO 8601.

    Fixed width keeps lexical order equal to chronological order, which the
    range scans rely on.
    """
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC).isoformat(timespec="microseconds")


def parse_dt(s: str | None) -> datetime | None:
    """Parse ISO datetime string."""
    return datetime.fromisoformat(s) if s else None


# -----------------------------------------------------------------------------
# Base SQLite Repository
# -----------------------------------------------------------------------------


class SQLiteRepoBase:
    """Base class for SQLite repositories."""

    def __init__(self, db_path: str, connection: sqlite3.Connection | None = None):
        self.db_path = db_path
        self._external_conn = connection

    def _get_conn(self) -> sqlite3.Connection:
        """Get database connection (uses external if provided)."""
        if self._external_conn is not None:
            return self._external_conn

        conn = sqlite3.connect(self.db_path)
        conn.row_factory = dict_factory
        conn.execute("PRAGMA foreign_keys = ON;")
        return conn

    def _should_close(self) -> bool:
        """Whether to close connection after use."""
        return self._external_conn is None


# -----------------------------------------------------------------------------
# VisitorSession Repository
# -----------------------------------------------------------------------------


class SQLiteVisitorSessionRepo(SQLiteRepoBase):
    """SQLite implementation of VisitorSessionRepoPort."""

    def get_by_token(self, session_token: str) -> VisitorSession | None:
        conn = self._get_conn()
        try:
            row = conn.execute(
                "SELECT * FROM visitor_sessions WHERE session_token = ?", (session_token,)
            ).fetchone()
            return self._map_row(row) if row else None
        finally:
            if self._should_close():
                conn.close()

    def create(self, session: VisitorSession) -> VisitorSession:
        conn = self._get_conn()
        try:
            conn.execute(
                """
                INSERT INTO visitor_sessions (
                    id, session_token, first_seen, last_seen, channel_id, customer_id
                ) VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    str(session.id),
                    session.session_token,
                    format_dt(session.first_seen),
                    format_dt(session.last_seen),
                    session.channel_id,
                    session.customer_id,
                ),
            )
            if self._should_close():
                conn.commit()
            return session
        except sqlite3.IntegrityError:
            if self._should_close():
                conn.rollback()
            # Lost a race on the token: the other writer's session wins.
            existing = self.get_by_token(session.session_token)
            if existing is None:
                raise
            logger.debug("Session token %s created concurrently", session.session_token)
            return existing
        finally:
            if self._should_close():
                conn.close()

    def save(self, session: VisitorSession) -> VisitorSession:
        """
        Merge a session snapshot into the stored row.

        last_seen only moves forward and a linked customer is never
        unlinked, so a stale snapshot from an overlapping request cannot
        undo a newer write.
        """
        conn = self._get_conn()
        try:
            conn.execute(
                """
                UPDATE visitor_sessions
                SET last_seen = MAX(last_seen, ?),
                    customer_id = COALESCE(customer_id, ?)
                WHERE id = ?
                """,
                (format_dt(session.last_seen), session.customer_id, str(session.id)),
            )
            if self._should_close():
                conn.commit()
            return session
        finally:
            if self._should_close():
                conn.close()

    def count_first_seen(
        self,
        channel_id: str,
        start: datetime,
        end: datetime,
        authenticated_only: bool = False,
    ) -> int:
        conn = self._get_conn()
        try:
            query = """
                SELECT COUNT(*) AS total FROM visitor_sessions
                WHERE channel_id = ? AND first_seen >= ? AND first_seen < ?
            """
            if authenticated_only:
                query += " AND customer_id IS NOT NULL"

            row = conn.execute(query, (channel_id, format_dt(start), format_dt(end))).fetchone()
            return row["total"] if row else 0
        finally:
            if self._should_close():
                conn.close()

    def _map_row(self, row: dict[str, Any]) -> VisitorSession:
        return VisitorSession(
            id=UUID(row["id"]),
            session_token=row["session_token"],
            first_seen=datetime.fromisoformat(row["first_seen"]),
            last_seen=datetime.fromisoformat(row["last_seen"]),
            channel_id=row["channel_id"],
            customer_id=row["customer_id"],
        )


# -----------------------------------------------------------------------------
# VisitorEvent Repository
# -----------------------------------------------------------------------------


class SQLiteVisitorEventRepo(SQLiteRepoBase):
    """SQLite implementation of VisitorEventRepoPort."""

    def exists(self, session_id: UUID, event_key: str) -> bool:
        conn = self._get_conn()
        try:
            row = conn.execute(
                "SELECT 1 FROM visitor_events WHERE session_id = ? AND event_key = ? LIMIT 1",
                (str(session_id), event_key),
            ).fetchone()
            return row is not None
        finally:
            if self._should_close():
                conn.close()

    def add(self, event: VisitorEvent) -> bool:
        conn = self._get_conn()
        try:
            conn.execute(
                """
                INSERT INTO visitor_events (
                    id, type, session_id, channel_id, product_id, event_key, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    str(event.id),
                    event.type.value,
                    str(event.session_id),
                    event.channel_id,
                    event.product_id,
                    event.event_key,
                    format_dt(event.created_at),
                ),
            )
            if self._should_close():
                conn.commit()
            return True
        except sqlite3.IntegrityError:
            if self._should_close():
                conn.rollback()
            # Only the (session_id, event_key) collision is a duplicate;
            # foreign key failures still propagate.
            if self.exists(event.session_id, event.event_key):
                return False
            raise
        finally:
            if self._should_close():
                conn.close()

    def count_distinct_viewers(
        self,
        channel_id: str,
        start: datetime,
        end: datetime,
    ) -> dict[str, int]:
        conn = self._get_conn()
        try:
            rows = conn.execute(
                """
                SELECT product_id, COUNT(DISTINCT session_id) AS viewers
                FROM visitor_events
                WHERE channel_id = ?
                  AND type = ?
                  AND product_id IS NOT NULL
                  AND created_at >= ? AND created_at < ?
                GROUP BY product_id
                """,
                (
                    channel_id,
                    VisitorEventType.PRODUCT_VIEW.value,
                    format_dt(start),
                    format_dt(end),
                ),
            ).fetchall()
            return {r["product_id"]: int(r["viewers"]) for r in rows}
        finally:
            if self._should_close():
                conn.close()

    def list_by_session(self, session_id: UUID) -> list[VisitorEvent]:
        conn = self._get_conn()
        try:
            rows = conn.execute(
                "SELECT * FROM visitor_events WHERE session_id = ? ORDER BY created_at ASC",
                (str(session_id),),
            ).fetchall()
            return [self._map_row(r) for r in rows]
        finally:
            if self._should_close():
                conn.close()

    def _map_row(self, row: dict[str, Any]) -> VisitorEvent:
        return VisitorEvent(
            id=UUID(row["id"]),
            type=VisitorEventType(row["type"]),
            session_id=UUID(row["session_id"]),
            channel_id=row["channel_id"],
            product_id=row["product_id"],
            event_key=row["event_key"],
            created_at=datetime.fromisoformat(row["created_at"]),
        )


# -----------------------------------------------------------------------------
# Daily Rollup Repository
# -----------------------------------------------------------------------------


class SQLiteDailyStatRepo(SQLiteRepoBase):
    """SQLite implementation of DailyStatRepoPort."""

    def replace_rollup(
        self,
        visitor_stat: DailyVisitorStat,
        product_stats: list[DailyProductViewStat],
    ) -> None:
        conn = self._get_conn()
        try:
            now = format_dt(datetime.now(UTC))
            conn.execute(
                """
                INSERT INTO daily_visitor_stats (
                    date, channel_id, unique_visitors, authenticated_visitors, updated_at
                ) VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(date, channel_id) DO UPDATE SET
                    unique_visitors=excluded.unique_visitors,
                    authenticated_visitors=excluded.authenticated_visitors,
                    updated_at=excluded.updated_at
                """,
                (
                    visitor_stat.date.isoformat(),
                    visitor_stat.channel_id,
                    visitor_stat.unique_visitors,
                    visitor_stat.authenticated_visitors,
                    now,
                ),
            )
            conn.executemany(
                """
                INSERT INTO daily_product_view_stats (
                    date, channel_id, product_id, views, updated_at
                ) VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(date, channel_id, product_id) DO UPDATE SET
                    views=excluded.views,
                    updated_at=excluded.updated_at
                """,
                [
                    (s.date.isoformat(), s.channel_id, s.product_id, s.views, now)
                    for s in product_stats
                ],
            )
            if self._should_close():
                conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            if self._should_close():
                conn.close()

    def get_visitor_stat(self, day: date, channel_id: str) -> DailyVisitorStat | None:
        conn = self._get_conn()
        try:
            row = conn.execute(
                "SELECT * FROM daily_visitor_stats WHERE date = ? AND channel_id = ?",
                (day.isoformat(), channel_id),
            ).fetchone()
            return self._map_visitor_row(row) if row else None
        finally:
            if self._should_close():
                conn.close()

    def get_product_stat(
        self, day: date, channel_id: str, product_id: str
    ) -> DailyProductViewStat | None:
        conn = self._get_conn()
        try:
            row = conn.execute(
                """
                SELECT * FROM daily_product_view_stats
                WHERE date = ? AND channel_id = ? AND product_id = ?
                """,
                (day.isoformat(), channel_id, product_id),
            ).fetchone()
            return self._map_product_row(row) if row else None
        finally:
            if self._should_close():
                conn.close()

    def list_visitor_stats(
        self, channel_id: str, start: date, end: date
    ) -> list[DailyVisitorStat]:
        conn = self._get_conn()
        try:
            rows = conn.execute(
                """
                SELECT * FROM daily_visitor_stats
                WHERE channel_id = ? AND date >= ? AND date <= ?
                ORDER BY date ASC
                """,
                (channel_id, start.isoformat(), end.isoformat()),
            ).fetchall()
            return [self._map_visitor_row(r) for r in rows]
        finally:
            if self._should_close():
                conn.close()

    def list_product_stats(
        self, channel_id: str, product_id: str, start: date, end: date
    ) -> list[DailyProductViewStat]:
        conn = self._get_conn()
        try:
            rows = conn.execute(
                """
                SELECT * FROM daily_product_view_stats
                WHERE channel_id = ? AND product_id = ? AND date >= ? AND date <= ?
                ORDER BY date ASC
                """,
                (channel_id, product_id, start.isoformat(), end.isoformat()),
            ).fetchall()
            return [self._map_product_row(r) for r in rows]
        finally:
            if self._should_close():
                conn.close()

    def top_products(
        self, channel_id: str, start: date, end: date, limit: int
    ) -> list[tuple[str, int]]:
        conn = self._get_conn()
        try:
            rows = conn.execute(
                """
                SELECT product_id, SUM(views) AS total_views
                FROM daily_product_view_stats
                WHERE channel_id = ? AND date >= ? AND date <= ?
                GROUP BY product_id
                ORDER BY total_views DESC, product_id ASC
                LIMIT ?
                """,
                (channel_id, start.isoformat(), end.isoformat(), limit),
            ).fetchall()
            return [(r["product_id"], int(r["total_views"] or 0)) for r in rows]
        finally:
            if self._should_close():
                conn.close()

    def sum_visitors(self, channel_id: str, start: date, end: date) -> tuple[int, int]:
        conn = self._get_conn()
        try:
            row = conn.execute(
                """
                SELECT SUM(unique_visitors) AS total,
                       SUM(authenticated_visitors) AS authenticated
                FROM daily_visitor_stats
                WHERE channel_id = ? AND date >= ? AND date <= ?
                """,
                (channel_id, start.isoformat(), end.isoformat()),
            ).fetchone()
            if not row:
                return 0, 0
            return int(row["total"] or 0), int(row["authenticated"] or 0)
        finally:
            if self._should_close():
                conn.close()

    def _map_visitor_row(self, row: dict[str, Any]) -> DailyVisitorStat:
        return DailyVisitorStat(
            date=date.fromisoformat(row["date"]),
            channel_id=row["channel_id"],
            unique_visitors=row["unique_visitors"],
            authenticated_visitors=row["authenticated_visitors"],
        )

    def _map_product_row(self, row: dict[str, Any]) -> DailyProductViewStat:
        return DailyProductViewStat(
            date=date.fromisoformat(row["date"]),
            channel_id=row["channel_id"],
            product_id=row["product_id"],
            views=row["views"],
        )


# -----------------------------------------------------------------------------
# Channel / Product / Customer lookups
# -----------------------------------------------------------------------------


class SQLiteCatalogRepo(SQLiteRepoBase):
    """
    SQLite implementation of ChannelLookupPort, ProductLookupPort and
    CustomerLookupPort.

    The save/delete helpers exist for seeding and tests; in a deployment
    these tables belong to the storefront platform.
    """

    def get_channel(self, channel_id: str) -> Channel | None:
        conn = self._get_conn()
        try:
            row = conn.execute("SELECT * FROM channels WHERE id = ?", (channel_id,)).fetchone()
            return Channel(id=row["id"], code=row["code"]) if row else None
        finally:
            if self._should_close():
                conn.close()

    def list_channel_ids(self) -> list[str]:
        conn = self._get_conn()
        try:
            rows = conn.execute("SELECT id FROM channels ORDER BY id ASC").fetchall()
            return [r["id"] for r in rows]
        finally:
            if self._should_close():
                conn.close()

    def get_product(self, product_id: str) -> Product | None:
        conn = self._get_conn()
        try:
            row = conn.execute("SELECT * FROM products WHERE id = ?", (product_id,)).fetchone()
            return Product(id=row["id"], name=row["name"], slug=row["slug"]) if row else None
        finally:
            if self._should_close():
                conn.close()

    def get_customer(self, customer_id: str) -> Customer | None:
        conn = self._get_conn()
        try:
            row = conn.execute("SELECT * FROM customers WHERE id = ?", (customer_id,)).fetchone()
            return Customer(id=row["id"], email=row["email"]) if row else None
        finally:
            if self._should_close():
                conn.close()

    def save_channel(self, channel: Channel) -> Channel:
        self._execute(
            """
            INSERT INTO channels (id, code) VALUES (?, ?)
            ON CONFLICT(id) DO UPDATE SET code=excluded.code
            """,
            (channel.id, channel.code),
        )
        return channel

    def save_product(self, product: Product) -> Product:
        self._execute(
            """
            INSERT INTO products (id, name, slug) VALUES (?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET name=excluded.name, slug=excluded.slug
            """,
            (product.id, product.name, product.slug),
        )
        return product

    def save_customer(self, customer: Customer) -> Customer:
        self._execute(
            """
            INSERT INTO customers (id, email) VALUES (?, ?)
            ON CONFLICT(id) DO UPDATE SET email=excluded.email
            """,
            (customer.id, customer.email),
        )
        return customer

    def delete_channel(self, channel_id: str) -> None:
        self._execute("DELETE FROM channels WHERE id = ?", (channel_id,))

    def delete_product(self, product_id: str) -> None:
        self._execute("DELETE FROM products WHERE id = ?", (product_id,))

    def _execute(self, sql: str, params: tuple[Any, ...]) -> None:
        conn = self._get_conn()
        try:
            conn.execute(sql, params)
            if self._should_close():
                conn.commit()
        finally:
            if self._should_close():
                conn.close()


# -----------------------------------------------------------------------------
# Store
# -----------------------------------------------------------------------------


class SQLiteAnalyticsStore:
    """
    Bundles the SQLite repositories behind AnalyticsStorePort.

    Repositories are created lazily and do not share a connection.
    """

    def __init__(self, db_path: str):
        self.db_path = db_path

        self._sessions: SQLiteVisitorSessionRepo | None = None
        self._events: SQLiteVisitorEventRepo | None = None
        self._stats: SQLiteDailyStatRepo | None = None
        self._catalog: SQLiteCatalogRepo | None = None

    @property
    def sessions(self) -> SQLiteVisitorSessionRepo:
        if self._sessions is None:
            self._sessions = SQLiteVisitorSessionRepo(self.db_path)
        return self._sessions

    @property
    def events(self) -> SQLiteVisitorEventRepo:
        if self._events is None:
            self._events = SQLiteVisitorEventRepo(self.db_path)
        return self._events

    @property
    def stats(self) -> SQLiteDailyStatRepo:
        if self._stats is None:
            self._stats = SQLiteDailyStatRepo(self.db_path)
        return self._stats

    @property
    def catalog(self) -> SQLiteCatalogRepo:
        if self._catalog is None:
            self._catalog = SQLiteCatalogRepo(self.db_path)
        return self._catalog

    @property
    def channels(self) -> SQLiteCatalogRepo:
        return self.catalog

    @property
    def products(self) -> SQLiteCatalogRepo:
        return self.catalog

    @property
    def customers(self) -> SQLiteCatalogRepo:
        return self.catalog
