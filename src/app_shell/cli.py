import argparse
import logging
import os
import sys
from pathlib import Path

from src.adapters.clock import SystemClock
from src.adapters.dev_jobs import create_aggregation_scheduler
from src.adapters.sqlite.migrator import SQLiteMigrator
from src.adapters.sqlite_db import SQLiteAnalyticsStore
from src.components.analytics import (
    AggregateDateInput,
    AggregateDateOutput,
    AggregateRangeInput,
    InvalidDateRangeError,
    parse_date,
    run_aggregate_date,
    run_aggregate_range,
    today_utc,
)
from src.rules.loader import load_rules
from src.rules.models import Rules

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("cli")

DATA_DIR = os.environ.get("ANALYTICS_DATA_DIR", "./data")
RULES_PATH = os.environ.get("ANALYTICS_RULES_PATH", "rules.yaml")
MIGRATIONS_DIR = "migrations"


def db_path_for(data_dir: str) -> str:
    return str(Path(data_dir) / "analytics.db")


def get_rules(rules_path: str) -> Rules:
    if not Path(rules_path).exists():
        logger.error("Rules file %s not found.", rules_path)
        sys.exit(1)
    return load_rules(Path(rules_path))


def handle_migrate(args: argparse.Namespace) -> None:
    Path(args.data_dir).mkdir(parents=True, exist_ok=True)
    applied = SQLiteMigrator(db_path_for(args.data_dir), args.migrations_dir).run_migrations()
    print(f"Applied {len(applied)} migration(s).")


def _print_day(output: AggregateDateOutput) -> None:
    for c in output.channels:
        if c.error:
            status = f"FAILED ({c.error})"
        elif c.skipped:
            status = "skipped (channel removed)"
        else:
            status = f"{c.unique_visitors} visitors, {c.products} products"
        print(f"{output.day.isoformat()}  {c.channel_id}: {status}")


def handle_aggregate(args: argparse.Namespace) -> int:
    store = SQLiteAnalyticsStore(db_path_for(args.data_dir))
    day = parse_date(args.date, "date") if args.date else today_utc(SystemClock())

    output = run_aggregate_date(AggregateDateInput(day=day), store=store)
    _print_day(output)
    return 0 if output.success else 1


def handle_backfill(args: argparse.Namespace) -> int:
    rules = get_rules(args.rules)
    store = SQLiteAnalyticsStore(db_path_for(args.data_dir))
    start = parse_date(args.start, "start")
    end = parse_date(args.end, "end")

    result = run_aggregate_range(
        AggregateRangeInput(start=start, end=end), store=store, rules=rules.analytics
    )
    for day in result.days:
        _print_day(day)
    print(f"Backfilled {len(result.days)} day(s).")
    return 0 if result.success else 1


def handle_schedule(args: argparse.Namespace) -> None:
    rules = get_rules(args.rules)
    interval = args.interval or rules.analytics.aggregation.interval_minutes

    scheduler = create_aggregation_scheduler(
        SQLiteAnalyticsStore(db_path_for(args.data_dir)),
        interval_minutes=interval,
        time_port=SystemClock(),
    )
    scheduler.start(run_immediately=True)
    try:
        scheduler.wait()
    except KeyboardInterrupt:
        logger.info("Interrupted, stopping scheduler.")
    finally:
        scheduler.stop()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Visitor Analytics CLI")
    parser.add_argument("--data-dir", default=DATA_DIR, help="Directory holding analytics.db")
    parser.add_argument("--rules", default=RULES_PATH, help="Path to rules.yaml")
    parser.add_argument("--migrations-dir", default=MIGRATIONS_DIR, help=argparse.SUPPRESS)
    subparsers = parser.add_subparsers(dest="command", required=True)

    # migrate
    subparsers.add_parser("migrate", help="Apply pending database migrations")

    # aggregate
    aggregate_parser = subparsers.add_parser("aggregate", help="Aggregate one day")
    aggregate_parser.add_argument("--date", help="Day to aggregate (YYYY-MM-DD, default today)")

    # backfill
    backfill_parser = subparsers.add_parser("backfill", help="Aggregate an inclusive day range")
    backfill_parser.add_argument("--start", required=True, help="First day (YYYY-MM-DD)")
    backfill_parser.add_argument("--end", required=True, help="Last day (YYYY-MM-DD)")

    # schedule
    schedule_parser = subparsers.add_parser("schedule", help="Aggregate today on an interval")
    schedule_parser.add_argument(
        "--interval", type=float, help="Minutes between runs (default from rules)"
    )

    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        if args.command == "migrate":
            handle_migrate(args)
        elif args.command == "aggregate":
            return handle_aggregate(args)
        elif args.command == "backfill":
            return handle_backfill(args)
        elif args.command == "schedule":
            handle_schedule(args)
    except InvalidDateRangeError as e:
        logger.error("%s", e)
        return 2
    return 0


if __name__ == "__main__":
    sys.exit(main())
