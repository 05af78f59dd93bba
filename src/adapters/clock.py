from datetime import UTC, date, datetime


class SystemClock:
    """Wall clock implementing TimePort."""

    def now_utc(self) -> datetime:
        return datetime.now(UTC)

    def today_utc(self) -> date:
        return self.now_utc().date()


class FixedClock:
    """Clock pinned to one instant; set() moves it."""

    def __init__(self, instant: datetime) -> None:
        if instant.tzinfo is None:
            instant = instant.replace(tzinfo=UTC)
        self._now = instant

    def now_utc(self) -> datetime:
        return self._now

    def today_utc(self) -> date:
        return self._now.date()

    def set(self, instant: datetime) -> None:
        if instant.tzinfo is None:
            instant = instant.replace(tzinfo=UTC)
        self._now = instant
