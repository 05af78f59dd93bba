from datetime import UTC, datetime
from pathlib import Path

import pytest

from src.adapters.clock import FixedClock
from src.adapters.sqlite.migrator import SQLiteMigrator
from src.adapters.sqlite_db import SQLiteAnalyticsStore
from src.core.entities import Channel, Customer, Product

PROJECT_ROOT = Path(__file__).parent.parent
MIGRATIONS_DIR = str(PROJECT_ROOT / "migrations")


@pytest.fixture
def clock() -> FixedClock:
    """Clock pinned to 2024-01-01 10:00 UTC."""
    return FixedClock(datetime(2024, 1, 1, 10, 0, tzinfo=UTC))


@pytest.fixture
def db_path(tmp_path: Path) -> str:
    """Temporary SQLite database with all migrations applied."""
    path = str(tmp_path / "analytics.db")
    SQLiteMigrator(path, MIGRATIONS_DIR).run_migrations()
    return path


@pytest.fixture
def sqlite_store(db_path: str) -> SQLiteAnalyticsStore:
    """
    SQLite store seeded with one channel, two products and one customer.

    Channel "T", products "P1" / "P2", customer "C1".
    """
    store = SQLiteAnalyticsStore(db_path)
    store.catalog.save_channel(Channel(id="T", code="default"))
    store.catalog.save_product(Product(id="P1", name="Laptop", slug="laptop"))
    store.catalog.save_product(Product(id="P2", name="Camera", slug="camera"))
    store.catalog.save_customer(Customer(id="C1", email="c1@example.com"))
    return store

