"""
Visitor event deduplication keys.

A dedup key is derived only from the semantic identity of an event, so the
same view tracked twice in one session always yields the same key. Together
with the (session_id, event_key) unique index this is the sole correctness
mechanism for suppressing duplicates; there is no time-based debounce.

Strategies:
- session: one view per product per session, forever (default)
- daily: one view per product per session per UTC day
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum

from src.core.entities import VisitorEventType

PRODUCT_KEY_PREFIX = "product-"
PAGE_KEY_PREFIX = "page-"

# Matches the width of the event_key column.
MAX_KEY_LENGTH = 128


class DedupeStrategy(str, Enum):
    SESSION = "session"
    DAILY = "daily"


@dataclass(frozen=True)
class DedupeConfig:
    """Deduplication configuration."""

    strategy: DedupeStrategy = DedupeStrategy.SESSION


DEFAULT_CONFIG = DedupeConfig()


def ensure_utc(timestamp: datetime) -> datetime:
    """Normalize to an aware UTC datetime. Naive values are taken as UTC."""
    if timestamp.tzinfo is None:
        return timestamp.replace(tzinfo=UTC)
    return timestamp.astimezone(UTC)


def get_day_bucket(timestamp: datetime) -> str:
    """UTC calendar day of a timestamp, as YYYY-MM-DD."""
    return ensure_utc(timestamp).date().isoformat()


def generate_event_key(
    event_type: VisitorEventType,
    target_id: str,
    timestamp: datetime | None = None,
    config: DedupeConfig = DEFAULT_CONFIG,
) -> str:
    """
    Build the dedup key for an event.

    >>> generate_event_key(VisitorEventType.PRODUCT_VIEW, "42")
    'product-42'
    """
    if not target_id:
        raise ValueError("target_id is required for a dedup key")

    if event_type == VisitorEventType.PRODUCT_VIEW:
        key = f"{PRODUCT_KEY_PREFIX}{target_id}"
    else:
        key = f"{PAGE_KEY_PREFIX}{target_id}"

    if config.strategy == DedupeStrategy.DAILY:
        if timestamp is None:
            raise ValueError("timestamp is required for the daily dedupe strategy")
        key = f"{key}-{get_day_bucket(timestamp)}"

    if len(key) > MAX_KEY_LENGTH:
        raise ValueError(f"Dedup key exceeds {MAX_KEY_LENGTH} characters")
    return key


def generate_product_view_key(
    product_id: str,
    timestamp: datetime | None = None,
    config: DedupeConfig = DEFAULT_CONFIG,
) -> str:
    """Dedup key for a product view."""
    return generate_event_key(
        VisitorEventType.PRODUCT_VIEW,
        product_id,
        timestamp=timestamp,
        config=config,
    )
