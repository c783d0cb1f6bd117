# --- imports ---
import logging
from pathlib import Path
from typing import Optional

from fastapi import FastAPI

from . import db
from .core.config import Settings, load_settings
from .recurrence import HolidayOracle, RecurringGenerator
from .repository import SqliteRecurringRepository, SqliteTransactionStore
from .services.cache_service import CacheService
from .services.cron_service import CronService
from .services.holiday_service import HolidayCalendar
from .services.logging_service import configure_logging

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    holiday_oracle: Optional[HolidayOracle] = None,
    start_scheduler: Optional[bool] = None,
    setup_logging: bool = True,
) -> FastAPI:
    """Build the FastAPI app and wire every collaborator explicitly.

    ``holiday_oracle`` replaces the HTTP-backed calendar for the generator
    (tests pass a fake); the calendar itself stays available for /sync.
    """
    settings = settings or load_settings()
    if start_scheduler is None:
        start_scheduler = settings.scheduler_enabled
    if setup_logging:
        configure_logging(Path(settings.log_dir), production=settings.production)

    app = FastAPI(title="Expense Ledger", version="0.1.0")

    holiday_cache = CacheService(ttl_seconds=settings.holiday_cache_ttl_seconds)
    calendar = HolidayCalendar(
        holiday_cache,
        db_path=settings.db_path,
        api_url=settings.holiday_api_url,
        timeout=settings.holiday_api_timeout,
        failure_ttl_seconds=settings.holiday_failure_ttl_seconds,
    )
    repository = SqliteRecurringRepository(settings.db_path)
    transactions = SqliteTransactionStore(settings.db_path)
    generator = RecurringGenerator(
        repository,
        transactions,
        holiday_oracle or calendar,
        currency=settings.currency,
    )

    app.state.settings = settings
    app.state.holiday_cache = holiday_cache
    app.state.holidays = calendar
    app.state.repository = repository
    app.state.transactions = transactions
    app.state.generator = generator
    app.state.cron = None

    # --- include routers ---
    from .api.holidays import router as holidays_api
    from .api.recurrences import generation_router as generation_api
    from .api.recurrences import router as recurrences_api
    from .api.transactions import router as transactions_api

    app.include_router(recurrences_api)
    app.include_router(generation_api)
    app.include_router(holidays_api)
    app.include_router(transactions_api)

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    # --- lifecycle: init DB and start/stop cron ---
    @app.on_event("startup")
    async def _on_startup() -> None:
        db.initialise_database(settings.db_path)
        if not start_scheduler:
            return
        try:
            cron = CronService(
                generator,
                hour=settings.cron_hour,
                minute=settings.cron_minute,
                include_overdue=settings.include_overdue,
            )
            cron.start()
            app.state.cron = cron
        except Exception:
            logger.exception("CronService failed to start")

    @app.on_event("shutdown")
    async def _on_shutdown() -> None:
        cron = app.state.cron
        if cron is not None:
            cron.stop()
            app.state.cron = None
        holiday_cache.clear()

    return app


app = create_app()
