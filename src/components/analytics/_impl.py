"""
VisitorTrackingService - Product view recording.

Handles one inbound view: session resolution, dedup check, event
persistence and session touch.

Key behaviors:
- Unknown session tokens create a session (first_seen = last_seen = now)
- Authenticated visitors are linked onto the session once
- One event per (session, dedup key); repeats report "duplicate"
- Missing product or channel is a result, not an exception
- A losing concurrent insert is folded into "duplicate"
"""

from __future__ import annotations

import logging
import secrets
import string
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from uuid import UUID

from src.core.entities import (
    Channel,
    Customer,
    Product,
    VisitorEvent,
    VisitorEventType,
    VisitorSession,
)

from ._aggregate import InMemoryDailyStatRepo
from ._dedupe import DedupeConfig, ensure_utc, generate_product_view_key
from .models import (
    REASON_CHANNEL_NOT_FOUND,
    REASON_DISABLED,
    REASON_DUPLICATE,
    REASON_PRODUCT_NOT_FOUND,
    TrackViewInput,
    TrackViewOutput,
)
from .ports import (
    AnalyticsStorePort,
    ChannelLookupPort,
    CustomerLookupPort,
    ProductLookupPort,
    TimePort,
    VisitorEventRepoPort,
    VisitorSessionRepoPort,
)

logger = logging.getLogger(__name__)

_TOKEN_ALPHABET = string.ascii_lowercase + string.digits


# --- Configuration ---


@dataclass(frozen=True)
class TrackingConfig:
    """Tracking configuration."""

    enabled: bool = True
    dedupe: DedupeConfig = field(default_factory=DedupeConfig)
    anonymous_token_prefix: str = "anonymous"


DEFAULT_CONFIG = TrackingConfig()


class DefaultTimePort:
    """Default time provider."""

    def now_utc(self) -> datetime:
        """Get current UTC time."""
        return datetime.now(UTC)


def generate_session_token(now: datetime, prefix: str = "anonymous") -> str:
    """
    Synthesize a session token for a request that carries none.

    Millisecond timestamp plus a random suffix; unique with overwhelming
    probability.
    """
    millis = int(ensure_utc(now).timestamp() * 1000)
    suffix = "".join(secrets.choice(_TOKEN_ALPHABET) for _ in range(9))
    return f"{prefix}-{millis}-{suffix}"


# --- In-Memory Implementations ---


class InMemorySessionRepo:
    """In-memory session repository for testing/dev."""

    def __init__(self) -> None:
        self._sessions: dict[str, VisitorSession] = {}

    def get_by_token(self, session_token: str) -> VisitorSession | None:
        session = self._sessions.get(session_token)
        return session.model_copy() if session else None

    def create(self, session: VisitorSession) -> VisitorSession:
        existing = self._sessions.get(session.session_token)
        if existing is not None:
            return existing.model_copy()
        self._sessions[session.session_token] = session.model_copy()
        return session

    def save(self, session: VisitorSession) -> VisitorSession:
        stored = self._sessions.get(session.session_token)
        if stored is None:
            raise ValueError(f"Session not found: {session.session_token}")
        # Same merge rules as the SQL adapter: last_seen never moves back,
        # a linked customer stays linked.
        self._sessions[session.session_token] = stored.model_copy(
            update={
                "last_seen": max(ensure_utc(stored.last_seen), ensure_utc(session.last_seen)),
                "customer_id": stored.customer_id or session.customer_id,
            }
        )
        return session

    def count_first_seen(
        self,
        channel_id: str,
        start: datetime,
        end: datetime,
        authenticated_only: bool = False,
    ) -> int:
        return sum(
            1
            for s in self._sessions.values()
            if s.channel_id == channel_id
            and start <= ensure_utc(s.first_seen) < end
            and (s.is_authenticated or not authenticated_only)
        )

    def get_all(self) -> list[VisitorSession]:
        """Get all stored sessions (for testing)."""
        return list(self._sessions.values())


class InMemoryEventRepo:
    """In-memory event repository for testing/dev."""

    def __init__(self) -> None:
        self._events: dict[tuple[UUID, str], VisitorEvent] = {}

    def exists(self, session_id: UUID, event_key: str) -> bool:
        return (session_id, event_key) in self._events

    def add(self, event: VisitorEvent) -> bool:
        key = (event.session_id, event.event_key)
        if key in self._events:
            return False
        self._events[key] = event
        return True

    def count_distinct_viewers(
        self,
        channel_id: str,
        start: datetime,
        end: datetime,
    ) -> dict[str, int]:
        viewers: dict[str, set[UUID]] = {}
        for event in self._events.values():
            if event.type != VisitorEventType.PRODUCT_VIEW or event.product_id is None:
                continue
            if event.channel_id != channel_id:
                continue
            if not start <= ensure_utc(event.created_at) < end:
                continue
            viewers.setdefault(event.product_id, set()).add(event.session_id)
        return {product_id: len(sessions) for product_id, sessions in viewers.items()}

    def get_all(self) -> list[VisitorEvent]:
        """Get all stored events (for testing)."""
        return list(self._events.values())


class InMemoryCatalog:
    """In-memory channel/product/customer lookups for testing/dev."""

    def __init__(
        self,
        channels: list[Channel] | None = None,
        products: list[Product] | None = None,
        customers: list[Customer] | None = None,
    ) -> None:
        self._channels = {c.id: c for c in channels or []}
        self._products = {p.id: p for p in products or []}
        self._customers = {c.id: c for c in customers or []}

    def get_channel(self, channel_id: str) -> Channel | None:
        return self._channels.get(channel_id)

    def list_channel_ids(self) -> list[str]:
        return sorted(self._channels)

    def get_product(self, product_id: str) -> Product | None:
        return self._products.get(product_id)

    def get_customer(self, customer_id: str) -> Customer | None:
        return self._customers.get(customer_id)

    def add_channel(self, channel: Channel) -> None:
        self._channels[channel.id] = channel

    def remove_channel(self, channel_id: str) -> None:
        self._channels.pop(channel_id, None)

    def add_product(self, product: Product) -> None:
        self._products[product.id] = product

    def remove_product(self, product_id: str) -> None:
        self._products.pop(product_id, None)

    def add_customer(self, customer: Customer) -> None:
        self._customers[customer.id] = customer


class InMemoryAnalyticsStore:
    """Bundles the in-memory repositories behind AnalyticsStorePort."""

    def __init__(self, catalog: InMemoryCatalog | None = None) -> None:
        self.catalog = catalog or InMemoryCatalog()
        self._sessions = InMemorySessionRepo()
        self._events = InMemoryEventRepo()
        self._stats = InMemoryDailyStatRepo()

    @property
    def sessions(self) -> InMemorySessionRepo:
        return self._sessions

    @property
    def events(self) -> InMemoryEventRepo:
        return self._events

    @property
    def stats(self) -> InMemoryDailyStatRepo:
        return self._stats

    @property
    def channels(self) -> InMemoryCatalog:
        return self.catalog

    @property
    def products(self) -> InMemoryCatalog:
        return self.catalog

    @property
    def customers(self) -> InMemoryCatalog:
        return self.catalog


# --- Tracking Service ---


class VisitorTrackingService:
    """
    Visitor tracking service.

    Writes only raw sessions and events. Each repository call is its own
    transaction; correctness under concurrent requests rests on the unique
    constraints behind VisitorSessionRepoPort.create and
    VisitorEventRepoPort.add.
    """

    def __init__(
        self,
        sessions: VisitorSessionRepoPort,
        events: VisitorEventRepoPort,
        channels: ChannelLookupPort,
        products: ProductLookupPort,
        customers: CustomerLookupPort,
        time_port: TimePort | None = None,
        config: TrackingConfig | None = None,
    ) -> None:
        """Initialize service."""
        self._sessions = sessions
        self._events = events
        self._channels = channels
        self._products = products
        self._customers = customers
        self._time = time_port or DefaultTimePort()
        self._config = config or DEFAULT_CONFIG

    def track_view(self, inp: TrackViewInput) -> TrackViewOutput:
        """
        Record a product view.

        Returns:
            TrackViewOutput with recorded=True, or recorded=False and one of
            duplicate / product_not_found / channel_not_found / disabled.
        """
        if not self._config.enabled:
            return TrackViewOutput(recorded=False, reason=REASON_DISABLED)

        now = ensure_utc(self._time.now_utc())
        token = inp.session_token or generate_session_token(
            now, self._config.anonymous_token_prefix
        )

        session = self._resolve_session(token, inp.channel_id, inp.customer_id, now)
        if session is None:
            # A new session cannot be owned by a channel that does not exist.
            return TrackViewOutput(
                recorded=False, reason=REASON_CHANNEL_NOT_FOUND, session_token=token
            )

        event_key = generate_product_view_key(inp.product_id, now, self._config.dedupe)
        if self._events.exists(session.id, event_key):
            logger.debug("Duplicate view %s in session %s", event_key, session.id)
            return TrackViewOutput(recorded=False, reason=REASON_DUPLICATE, session_token=token)

        product = self._products.get_product(inp.product_id)
        if product is None:
            logger.debug("Product %s not found, view not recorded", inp.product_id)
            return TrackViewOutput(
                recorded=False, reason=REASON_PRODUCT_NOT_FOUND, session_token=token
            )

        channel = self._channels.get_channel(inp.channel_id)
        if channel is None:
            logger.debug("Channel %s not found, view not recorded", inp.channel_id)
            return TrackViewOutput(
                recorded=False, reason=REASON_CHANNEL_NOT_FOUND, session_token=token
            )

        event = VisitorEvent(
            type=VisitorEventType.PRODUCT_VIEW,
            session_id=session.id,
            channel_id=channel.id,
            product_id=product.id,
            event_key=event_key,
            created_at=now,
        )
        if not self._events.add(event):
            logger.warning(
                "Concurrent insert of %s in session %s treated as duplicate",
                event_key,
                session.id,
            )
            return TrackViewOutput(recorded=False, reason=REASON_DUPLICATE, session_token=token)

        self._touch(session, now)
        return TrackViewOutput(recorded=True, session_token=token)

    def _resolve_session(
        self,
        token: str,
        channel_id: str,
        customer_id: str | None,
        now: datetime,
    ) -> VisitorSession | None:
        """Find the session for a token, creating it when unseen."""
        existing = self._sessions.get_by_token(token)
        if existing is not None:
            if customer_id and existing.customer_id is None:
                customer = self._customers.get_customer(customer_id)
                if customer is not None:
                    existing.customer_id = customer.id
                    existing = self._sessions.save(existing)
            return existing

        channel = self._channels.get_channel(channel_id)
        if channel is None:
            return None

        customer = self._customers.get_customer(customer_id) if customer_id else None
        session = VisitorSession(
            session_token=token,
            first_seen=now,
            last_seen=now,
            channel_id=channel.id,
            customer_id=customer.id if customer else None,
        )
        # create() hands back the winner if another request inserted the token first.
        return self._sessions.create(session)

    def _touch(self, session: VisitorSession, now: datetime) -> None:
        if now > ensure_utc(session.last_seen):
            session.last_seen = now
        self._sessions.save(session)


# --- Factory ---


def create_tracking_service(
    store: AnalyticsStorePort,
    time_port: TimePort | None = None,
    config: TrackingConfig | None = None,
) -> VisitorTrackingService:
    """Create a VisitorTrackingService over a bundled store."""
    return VisitorTrackingService(
        sessions=store.sessions,
        events=store.events,
        channels=store.channels,
        products=store.products,
        customers=store.customers,
        time_port=time_port,
        config=config,
    )


def today_utc(time_port: TimePort | None = None) -> date:
    """Current UTC calendar day."""
    return ensure_utc((time_port or DefaultTimePort()).now_utc()).date()
