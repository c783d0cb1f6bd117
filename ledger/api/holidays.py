import datetime as dt
import logging
from typing import Optional

import httpx
from fastapi import APIRouter, Depends, HTTPException

from .. import schemas
from ..services.holiday_service import HolidayCalendar
from .deps import get_holiday_calendar

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/holidays", tags=["holidays"])


@router.post("/sync", response_model=schemas.HolidaySyncResult)
def api_sync_holidays(
    year: Optional[int] = None,
    calendar: HolidayCalendar = Depends(get_holiday_calendar),
) -> schemas.HolidaySyncResult:
    """Refresh one year of holiday data from the public holiday API."""
    year = year if year is not None else dt.date.today().year
    if year < 2000 or year > 2100:
        raise HTTPException(status_code=400, detail="Invalid year")
    try:
        result = calendar.sync_year(year)
    except (httpx.HTTPError, ValueError) as exc:
        logger.warning("Holiday sync for %s failed: %s", year, exc)
        raise HTTPException(status_code=502, detail=f"Holiday source unavailable: {exc}")
    return schemas.HolidaySyncResult(year=result["year"], count=result["count"])
