"""Run recurring generation once from the command line.

    python -m ledger.scripts.generate --date 2024-01-01 --include-overdue
"""
import argparse
import sys
from datetime import date

from ..core.config import load_settings
from ..db import initialise_database
from ..recurrence import RecurringGenerator
from ..repository import SqliteRecurringRepository, SqliteTransactionStore
from ..services.cache_service import CacheService
from ..services.holiday_service import HolidayCalendar
from ..services.logging_service import configure_logging


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Materialize due recurring expenses")
    parser.add_argument("--date", type=date.fromisoformat, default=None, help="generation date (YYYY-MM-DD)")
    parser.add_argument("--include-overdue", action="store_true", help="also pick up missed occurrences")
    parser.add_argument("--db", default=None, help="path to the SQLite database")
    args = parser.parse_args(argv)

    settings = load_settings()
    db_path = args.db or settings.db_path
    configure_logging(settings.log_dir, production=settings.production)
    initialise_database(db_path)

    calendar = HolidayCalendar(
        CacheService(ttl_seconds=settings.holiday_cache_ttl_seconds),
        db_path=db_path,
        api_url=settings.holiday_api_url,
        timeout=settings.holiday_api_timeout,
        failure_ttl_seconds=settings.holiday_failure_ttl_seconds,
    )
    generator = RecurringGenerator(
        SqliteRecurringRepository(db_path),
        SqliteTransactionStore(db_path),
        calendar,
        currency=settings.currency,
    )
    result = generator.run_generation(args.date or date.today(), include_overdue=args.include_overdue)

    summary = result.summary()
    print(
        f"{result.generation_date.isoformat()}: generated={result.generated_count} "
        f"skipped={summary['skipped']} failed={summary['failed']}"
    )
    for outcome in result.outcomes:
        print(f"  {outcome.template_id}\t{outcome.template_name}\t{outcome.status}\t{outcome.reason or ''}")
    for error in result.errors:
        print(f"  ERROR {error}", file=sys.stderr)
    return 1 if result.errors else 0


if __name__ == "__main__":
    sys.exit(main())
