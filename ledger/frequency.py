# ledger/frequency.py
"""
Calendar rules for recurring expense templates.

A template's frequency is a kind (daily / weekly / monthly / yearly) plus a
configuration whose shape depends on that kind. The configuration is held
as one small frozen dataclass per kind, so every rule below dispatches on
the config type and nothing has to guess which optional fields are set.

All functions here are pure: no I/O, no clock. Malformed stored
configuration is repaired on parse instead of raising, because these rules
drive an unattended daily job.

Weekday numbers follow the stored convention 0 = Sunday .. 6 = Saturday.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any, FrozenSet, Mapping, Optional, Union

from dateutil.relativedelta import relativedelta

DAILY = "daily"
WEEKLY = "weekly"
MONTHLY = "monthly"
YEARLY = "yearly"
FREQUENCIES = (DAILY, WEEKLY, MONTHLY, YEARLY)

LAST_DAY = "last"


@dataclass(frozen=True)
class DailyConfig:
    pass


@dataclass(frozen=True)
class WeeklyConfig:
    # None (or empty) means "every 7 days from the anchor"
    days_of_week: Optional[FrozenSet[int]] = None


@dataclass(frozen=True)
class MonthlyConfig:
    # 1..31, LAST_DAY, or None for "the anchor's own day"
    day_of_month: Union[int, str, None] = None


@dataclass(frozen=True)
class YearlyConfig:
    month: Optional[int] = None
    day: Optional[int] = None


FrequencyConfig = Union[DailyConfig, WeeklyConfig, MonthlyConfig, YearlyConfig]


# --------- Helpers: parsing ---------

def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))


def parse_frequency_config(kind: str, raw: Optional[Mapping[str, Any]]) -> FrequencyConfig:
    """Build the typed config for ``kind`` from its stored JSON form.

    Unknown kinds fall back to daily; out-of-range numbers are clamped and
    unusable values are dropped.
    """
    raw = raw or {}
    if kind == WEEKLY:
        days = raw.get("days_of_week")
        if days is None and raw.get("day_of_week") is not None:
            days = [raw.get("day_of_week")]
        valid = set()
        for item in days or ():
            n = _as_int(item)
            if n is not None and 0 <= n <= 6:
                valid.add(n)
        return WeeklyConfig(frozenset(valid) if valid else None)
    if kind == MONTHLY:
        day = raw.get("day_of_month", raw.get("day"))
        if isinstance(day, str) and day.strip().lower() == LAST_DAY:
            return MonthlyConfig(LAST_DAY)
        n = _as_int(day)
        return MonthlyConfig(_clamp(n, 1, 31) if n is not None else None)
    if kind == YEARLY:
        month = _as_int(raw.get("month"))
        day = _as_int(raw.get("day", raw.get("day_of_month")))
        return YearlyConfig(
            _clamp(month, 1, 12) if month is not None else None,
            _clamp(day, 1, 31) if day is not None else None,
        )
    return DailyConfig()


def frequency_of(config: FrequencyConfig) -> str:
    if isinstance(config, WeeklyConfig):
        return WEEKLY
    if isinstance(config, MonthlyConfig):
        return MONTHLY
    if isinstance(config, YearlyConfig):
        return YEARLY
    return DAILY


def config_to_dict(config: FrequencyConfig) -> dict:
    """Inverse of :func:`parse_frequency_config`, used for storage and JSON output."""
    if isinstance(config, WeeklyConfig):
        if not config.days_of_week:
            return {}
        return {"days_of_week": sorted(config.days_of_week)}
    if isinstance(config, MonthlyConfig):
        return {} if config.day_of_month is None else {"day_of_month": config.day_of_month}
    if isinstance(config, YearlyConfig):
        out = {}
        if config.month is not None:
            out["month"] = config.month
        if config.day is not None:
            out["day"] = config.day
        return out
    return {}


# --------- Helpers: dates ---------

def weekday_number(d: date) -> int:
    """0 = Sunday .. 6 = Saturday."""
    return d.isoweekday() % 7


def last_day_of_month(d: date) -> date:
    return d + relativedelta(day=31)


def _monthly_day(config: MonthlyConfig, anchor: date) -> int:
    return config.day_of_month if isinstance(config.day_of_month, int) else anchor.day


# --------- Core ---------

def next_occurrence(config: FrequencyConfig, from_date: date) -> date:
    """Return the first occurrence strictly after ``from_date``.

    When ``from_date`` is itself an occurrence (the normal case: a template
    generates on its due date) this is the same day in the next period.
    Day-of-month targets that the month does not have are clamped to the
    month's last day, so 31 resolves to 30 April and to 28/29 February.
    """
    if isinstance(config, WeeklyConfig):
        if not config.days_of_week:
            return from_date + timedelta(days=7)
        candidate = from_date
        for _ in range(7):
            candidate += timedelta(days=1)
            if weekday_number(candidate) in config.days_of_week:
                return candidate
        return from_date + timedelta(days=7)

    if isinstance(config, MonthlyConfig):
        if config.day_of_month == LAST_DAY:
            return from_date + relativedelta(months=1, day=31)
        target = _monthly_day(config, from_date)
        # relativedelta clamps an absolute day to the month length
        candidate = from_date + relativedelta(day=target)
        if candidate > from_date:
            return candidate
        return from_date + relativedelta(months=1, day=target)

    if isinstance(config, YearlyConfig):
        month = config.month or from_date.month
        day = config.day or from_date.day
        candidate = from_date + relativedelta(month=month, day=day)
        if candidate > from_date:
            return candidate
        return from_date + relativedelta(years=1, month=month, day=day)

    return from_date + timedelta(days=1)


def is_occurrence(config: FrequencyConfig, d: date, anchor: Optional[date] = None) -> bool:
    """Does the template fire on ``d``?

    ``anchor`` (normally the template's start date) supplies the defaults a
    sparse config leaves open: the weekday for plain weekly templates and
    the day/month for monthly and yearly ones.
    """
    anchor = anchor or d
    if isinstance(config, WeeklyConfig):
        if not config.days_of_week:
            return d >= anchor and (d - anchor).days % 7 == 0
        return weekday_number(d) in config.days_of_week
    if isinstance(config, MonthlyConfig):
        if config.day_of_month == LAST_DAY:
            return d == last_day_of_month(d)
        return d == d + relativedelta(day=_monthly_day(config, anchor))
    if isinstance(config, YearlyConfig):
        month = config.month or anchor.month
        day = config.day or anchor.day
        return d.month == month and d == d + relativedelta(day=day)
    return True


def first_occurrence(config: FrequencyConfig, start_date: date, today: date) -> date:
    """Initial ``next_generate`` for a template: first occurrence on or after max(start_date, today)."""
    candidate = max(start_date, today)
    if is_occurrence(config, candidate, anchor=start_date):
        return candidate
    if isinstance(config, WeeklyConfig) and not config.days_of_week:
        elapsed = (candidate - start_date).days
        return candidate + timedelta(days=(7 - elapsed % 7) % 7)
    if isinstance(config, MonthlyConfig) and config.day_of_month == LAST_DAY:
        return last_day_of_month(candidate)
    if isinstance(config, MonthlyConfig) and config.day_of_month is None:
        config = MonthlyConfig(start_date.day)
    elif isinstance(config, YearlyConfig):
        config = YearlyConfig(config.month or start_date.month, config.day or start_date.day)
    return next_occurrence(config, candidate)
