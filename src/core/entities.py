"""
Domain entities for visitor analytics.

Raw records (written by tracking):
- VisitorSession: one browsing session, keyed by an opaque token
- VisitorEvent: one accepted view inside a session

Rollups (written only by aggregation):
- DailyVisitorStat: unique visitors per (date, channel)
- DailyProductViewStat: distinct-session views per (date, channel, product)

Collaborators (Channel, Product, Customer) are owned elsewhere and are
referenced here by identifier only.
"""

from __future__ import annotations

from datetime import UTC, date, datetime
from enum import Enum
from uuid import UUID, uuid4

from pydantic import BaseModel, Field, model_validator

__all__ = [
    "Channel",
    "Customer",
    "DailyProductViewStat",
    "DailyVisitorStat",
    "Product",
    "VisitorEvent",
    "VisitorEventType",
    "VisitorSession",
]


def _utcnow() -> datetime:
    return datetime.now(UTC)


# --- Collaborators ---


class Channel(BaseModel):
    """Storefront partition (tenant)."""

    id: str
    code: str = ""


class Product(BaseModel):
    id: str
    name: str | None = None
    slug: str | None = None


class Customer(BaseModel):
    id: str
    email: str | None = None


# --- Raw tracking records ---


class VisitorEventType(str, Enum):
    """Tracked event types. Only PRODUCT_VIEW is recorded today."""

    PRODUCT_VIEW = "PRODUCT_VIEW"
    PAGE_VIEW = "PAGE_VIEW"


class VisitorSession(BaseModel):
    """
    Browsing session.

    Invariants:
    - session_token is globally unique
    - first_seen <= last_seen
    """

    id: UUID = Field(default_factory=uuid4)
    session_token: str
    first_seen: datetime
    last_seen: datetime
    channel_id: str
    customer_id: str | None = None

    @model_validator(mode="after")
    def _check_seen_order(self) -> VisitorSession:
        if self.last_seen < self.first_seen:
            raise ValueError("last_seen must not precede first_seen")
        return self

    @property
    def is_authenticated(self) -> bool:
        return self.customer_id is not None


class VisitorEvent(BaseModel):
    """
    Accepted tracking event (immutable once stored).

    (session_id, event_key) is unique; the storage layer enforces it.
    """

    id: UUID = Field(default_factory=uuid4)
    type: VisitorEventType = VisitorEventType.PRODUCT_VIEW
    session_id: UUID
    channel_id: str
    product_id: str | None = None
    event_key: str
    created_at: datetime = Field(default_factory=_utcnow)


# --- Rollups ---


class DailyVisitorStat(BaseModel):
    """Unique visitors for one (date, channel). Replaced on every recompute."""

    date: date
    channel_id: str
    unique_visitors: int = Field(default=0, ge=0)
    authenticated_visitors: int = Field(default=0, ge=0)

    @property
    def anonymous_visitors(self) -> int:
        return self.unique_visitors - self.authenticated_visitors


class DailyProductViewStat(BaseModel):
    """Distinct-session product views for one (date, channel, product)."""

    date: date
    channel_id: str
    product_id: str
    views: int = Field(default=0, ge=0)
