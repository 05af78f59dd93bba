"""
In-process aggregation scheduler.

Runs the daily aggregation for the current UTC day on a fixed interval,
using a background polling thread. A deployment may instead call
run_once() from an external cron.

Key behaviors:
- The first run after the UTC date changes re-aggregates the days since
  the previous run, so views recorded after its last pass are counted
- Synchronous run_once() for predictable testing
- Configurable interval for background mode
- A failing run is logged; the loop keeps going
- Stop is cooperative: an in-flight run finishes before the thread exits
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from datetime import date, timedelta

from src.components.analytics import (
    AggregateDateOutput,
    AnalyticsStorePort,
    TimePort,
    VisitorAggregationService,
    create_aggregation_service,
    iter_days,
    today_utc,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SchedulerRunResult:
    """Outcome of one scheduled aggregation."""

    day: date
    output: AggregateDateOutput | None
    error: str | None = None
    execution_time_ms: int = 0

    @property
    def success(self) -> bool:
        return self.error is None and self.output is not None and self.output.success


class AggregationScheduler:
    """
    Aggregation scheduler with background polling.

    Runs aggregate_date(today) every interval_minutes, catching up on the
    previous day once the date rolls over.
    """

    def __init__(
        self,
        service: VisitorAggregationService,
        interval_minutes: float = 30.0,
        time_port: TimePort | None = None,
    ) -> None:
        """
        Initialize scheduler.

        Args:
            service: Aggregation service to drive
            interval_minutes: Interval between runs
            time_port: Clock used to pick "today"
        """
        self._service = service
        self._interval_seconds = interval_minutes * 60.0
        self._time = time_port
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._running = False
        self._last_result: SchedulerRunResult | None = None
        self._last_day: date | None = None

    def run_once(self, day: date | None = None) -> SchedulerRunResult:
        """
        Aggregate one day synchronously.

        Without an explicit day, aggregates today (UTC). If the previous
        default run happened on an earlier day, every day from that one up to
        yesterday is re-aggregated first. The returned result is today's.
        """
        if day is not None:
            return self._aggregate(day)

        today = today_utc(self._time)
        if self._last_day is not None and self._last_day < today:
            for missed in iter_days(self._last_day, today - timedelta(days=1)):
                logger.info("Day rolled over, re-aggregating %s", missed.isoformat())
                self._aggregate(missed)
        self._last_day = today
        return self._aggregate(today)

    def _aggregate(self, day: date) -> SchedulerRunResult:
        start_time = time.monotonic()

        try:
            output = self._service.aggregate_date(day)
            result = SchedulerRunResult(
                day=day,
                output=output,
                execution_time_ms=int((time.monotonic() - start_time) * 1000),
            )
        except Exception as e:
            logger.exception("Scheduled aggregation failed for %s", day.isoformat())
            result = SchedulerRunResult(
                day=day,
                output=None,
                error=str(e),
                execution_time_ms=int((time.monotonic() - start_time) * 1000),
            )

        self._last_result = result
        return result

    def start(self, run_immediately: bool = False) -> None:
        """Start the background scheduler."""
        if self._running:
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._poll_loop,
            args=(run_immediately,),
            name="analytics-aggregation",
            daemon=True,
        )
        self._thread.start()
        self._running = True
        logger.info(
            "Aggregation scheduler started (interval: %.1f min)", self._interval_seconds / 60.0
        )

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the scheduler gracefully."""
        if not self._running:
            return

        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=timeout)
        self._running = False
        logger.info("Aggregation scheduler stopped")

    def wait(self) -> None:
        """Block until stop() is called from another thread (or Ctrl+C)."""
        while self._running and not self._stop_event.wait(timeout=1.0):
            pass

    @property
    def is_running(self) -> bool:
        """Check if scheduler is active."""
        return self._running

    @property
    def last_result(self) -> SchedulerRunResult | None:
        return self._last_result

    def _poll_loop(self, run_immediately: bool) -> None:
        """Background polling loop."""
        if run_immediately:
            self._run_and_log()

        while not self._stop_event.wait(timeout=self._interval_seconds):
            self._run_and_log()

    def _run_and_log(self) -> None:
        result = self.run_once()
        if result.success:
            logger.info(
                "Scheduled aggregation for %s finished in %d ms",
                result.day.isoformat(),
                result.execution_time_ms,
            )
        elif result.output is not None:
            logger.warning(
                "Scheduled aggregation for %s had %d failed channel(s)",
                result.day.isoformat(),
                len(result.output.failed),
            )


# Factory functions


def create_aggregation_scheduler(
    store: AnalyticsStorePort,
    interval_minutes: float = 30.0,
    time_port: TimePort | None = None,
) -> AggregationScheduler:
    """
    Create a scheduler over a bundled store.

    Args:
        store: Analytics store
        interval_minutes: Interval between runs
        time_port: Clock used to pick "today"

    Returns:
        Configured AggregationScheduler
    """
    return AggregationScheduler(
        create_aggregation_service(store),
        interval_minutes=interval_minutes,
        time_port=time_port,
    )
