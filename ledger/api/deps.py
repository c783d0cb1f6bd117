from fastapi import Request

from ..recurrence import RecurringGenerator
from ..repository import SqliteRecurringRepository, SqliteTransactionStore
from ..services.holiday_service import HolidayCalendar


def get_repository(request: Request) -> SqliteRecurringRepository:
    return request.app.state.repository


def get_transaction_store(request: Request) -> SqliteTransactionStore:
    return request.app.state.transactions


def get_generator(request: Request) -> RecurringGenerator:
    return request.app.state.generator


def get_holiday_calendar(request: Request) -> HolidayCalendar:
    return request.app.state.holidays
