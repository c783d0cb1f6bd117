"""
Holiday calendar used to defer recurring expenses that skip holidays.

Lookups go through three layers, per calendar year:

- the injected ``CacheService`` (one entry per year, TTL owned by the caller);
- the local ``holidays`` table;
- the public holiday API, whose answer is persisted to the table.

``is_holiday`` and ``is_working_day`` never raise: when every source fails
the date is treated as a normal day (weekdays work, weekends do not) so the
daily job is not blocked by an unreachable API. A failed fetch is cached
briefly so a down API costs one request per year per ``failure_ttl_seconds``.
``sync_year`` is the explicit admin refresh and does propagate errors.
"""

from __future__ import annotations

import logging
import re
import sqlite3
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import httpx

from .. import db
from ..core.config import DEFAULT_HOLIDAY_API_URL
from ..frequency import weekday_number
from .cache_service import CacheService

logger = logging.getLogger(__name__)

_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

HOLIDAY_SOURCE = "timor.tech"
USER_AGENT = "smart-ledger/1.0"
DEFAULT_FAILURE_TTL_SECONDS = 300


@dataclass
class HolidayEntry:
    date: str  # YYYY-MM-DD
    is_holiday: bool
    name: Optional[str] = None


def extract_holiday_entries(payload: Any) -> List[HolidayEntry]:
    """Pull dated entries out of the API payload (``holiday`` and/or ``data`` objects)."""
    entries: List[HolidayEntry] = []
    if not isinstance(payload, dict):
        return entries

    for section in ("holiday", "data"):
        block = payload.get(section)
        if not isinstance(block, dict):
            continue
        for value in block.values():
            if not isinstance(value, dict):
                continue
            day = value.get("date")
            if not isinstance(day, str) or not _ISO_DATE.match(day):
                continue
            is_holiday = (
                value.get("holiday") is True
                or value.get("isHoliday") is True
                or value.get("type") == "holiday"
            )
            name = value.get("name") if isinstance(value.get("name"), str) else None
            entries.append(HolidayEntry(day, is_holiday, name))
    return entries


class HolidayCalendar:
    def __init__(
        self,
        cache: CacheService,
        db_path: Optional[Union[str, Path]] = None,
        api_url: str = DEFAULT_HOLIDAY_API_URL,
        timeout: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
        failure_ttl_seconds: float = DEFAULT_FAILURE_TTL_SECONDS,
    ) -> None:
        self._cache = cache
        self._db_path = db_path
        self._api_url = api_url
        self._timeout = timeout
        self._transport = transport
        self._failure_ttl_seconds = failure_ttl_seconds

    def is_holiday(self, day: date) -> bool:
        try:
            return self.year_map(day.year).get(day.isoformat()) is True
        except Exception:
            logger.warning("Holiday lookup failed for %s; treating as a normal day", day, exc_info=True)
            return False

    def is_working_day(self, day: date) -> bool:
        """Official working day: calendar entries win, otherwise Monday to Friday.

        An explicit ``is_holiday=false`` entry marks a make-up working day,
        which may fall on a weekend.
        """
        try:
            marked = self.year_map(day.year).get(day.isoformat())
        except Exception:
            logger.warning("Holiday lookup failed for %s; using the weekday rule", day, exc_info=True)
            marked = None
        if marked is not None:
            return not marked
        return 1 <= weekday_number(day) <= 5

    def year_map(self, year: int) -> Dict[str, bool]:
        cached = self._cache.get(year)
        if cached is not None:
            return cached

        stored = self._load_from_db(year)
        if stored:
            self._cache.set(year, stored)
            return stored

        try:
            entries = self._fetch_remote(year)
        except (httpx.HTTPError, ValueError):
            logger.warning("Failed to fetch holiday data for %s", year, exc_info=True)
            self._cache.set(year, {}, ttl_seconds=self._failure_ttl_seconds)
            return {}
        self._save_to_db(entries)
        mapping = {e.date: e.is_holiday for e in entries}
        self._cache.set(year, mapping)
        return mapping

    def sync_year(self, year: int) -> Dict[str, int]:
        """Force a remote refresh of ``year`` and return how many dates it holds."""
        entries = self._fetch_remote(year)
        self._save_to_db(entries, replace=True)
        mapping = {e.date: e.is_holiday for e in entries}
        self._cache.set(year, mapping)
        logger.info("Synced %s holiday entries for %s", len(mapping), year)
        return {"year": year, "count": len(mapping)}

    # --------------- Sources ---------------

    def _fetch_remote(self, year: int) -> List[HolidayEntry]:
        url = self._api_url.format(year=year)
        headers = {"User-Agent": USER_AGENT, "Accept": "application/json"}
        with httpx.Client(timeout=self._timeout, transport=self._transport) as client:
            response = client.get(url, headers=headers)
            response.raise_for_status()
            return extract_holiday_entries(response.json())

    def _load_from_db(self, year: int) -> Dict[str, bool]:
        try:
            conn = db.get_connection(self._db_path)
            try:
                rows = conn.execute(
                    "SELECT date, is_holiday FROM holidays WHERE date BETWEEN ? AND ?",
                    (f"{year:04d}-01-01", f"{year:04d}-12-31"),
                ).fetchall()
            finally:
                conn.close()
        except sqlite3.Error:
            logger.warning("Failed to load holiday data for %s from DB", year, exc_info=True)
            return {}
        return {row["date"]: bool(row["is_holiday"]) for row in rows}

    def _save_to_db(self, entries: List[HolidayEntry], replace: bool = False) -> None:
        if not entries:
            return
        verb = "INSERT OR REPLACE" if replace else "INSERT OR IGNORE"
        try:
            conn = db.get_connection(self._db_path)
            try:
                conn.executemany(
                    f"{verb} INTO holidays (date, name, is_holiday, source) VALUES (?, ?, ?, ?)",
                    [(e.date, e.name, 1 if e.is_holiday else 0, HOLIDAY_SOURCE) for e in entries],
                )
                conn.commit()
            finally:
                conn.close()
        except sqlite3.Error:
            logger.warning("Failed to save holiday data to DB", exc_info=True)
