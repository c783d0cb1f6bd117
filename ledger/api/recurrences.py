import datetime as dt
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse

from .. import schemas
from ..recurrence import RecurringGenerator
from ..repository import SqliteRecurringRepository
from .deps import get_generator, get_repository

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/recurring-expenses", tags=["recurring-expenses"])
generation_router = APIRouter(prefix="/api/recurring", tags=["recurring"])


def _dump_config(config: Optional[schemas.FrequencyConfig]) -> dict:
    return config.model_dump(exclude_none=True) if config is not None else {}


@router.get("", response_model=List[schemas.RecurringExpense])
async def api_get_recurring_expenses(
    active_only: bool = False,
    repo: SqliteRecurringRepository = Depends(get_repository),
) -> List[schemas.RecurringExpense]:
    """Get all recurring expense templates."""
    return [schemas.RecurringExpense.from_template(t) for t in repo.list_templates(active_only)]


@router.post("", response_model=schemas.RecurringExpense)
async def api_create_recurring_expense(
    rec: schemas.RecurringExpenseCreate,
    repo: SqliteRecurringRepository = Depends(get_repository),
) -> schemas.RecurringExpense:
    """Create a template; its first ``next_generate`` is derived from the start date."""
    data = rec.model_dump()
    data["frequency_config"] = _dump_config(rec.frequency_config)
    try:
        template = repo.create_template(data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return schemas.RecurringExpense.from_template(template)


@router.get("/{rec_id}", response_model=schemas.RecurringExpense)
async def api_get_recurring_expense(
    rec_id: int,
    repo: SqliteRecurringRepository = Depends(get_repository),
) -> schemas.RecurringExpense:
    template = repo.get_template(rec_id)
    if template is None:
        raise HTTPException(status_code=404, detail="Recurring expense not found")
    return schemas.RecurringExpense.from_template(template)


@router.patch("/{rec_id}", response_model=schemas.RecurringExpense)
async def api_update_recurring_expense(
    rec_id: int,
    update: schemas.RecurringExpenseUpdate,
    repo: SqliteRecurringRepository = Depends(get_repository),
) -> schemas.RecurringExpense:
    """Update an existing template."""
    fields = update.model_dump(exclude_unset=True)
    if not fields:
        raise HTTPException(status_code=400, detail="No fields to update")
    if "frequency_config" in fields:
        fields["frequency_config"] = _dump_config(update.frequency_config)
    try:
        template = repo.update_template_fields(rec_id, fields)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    if template is None:
        raise HTTPException(status_code=404, detail="Recurring expense not found")
    return schemas.RecurringExpense.from_template(template)


@router.delete("/{rec_id}")
async def api_delete_recurring_expense(
    rec_id: int,
    repo: SqliteRecurringRepository = Depends(get_repository),
) -> JSONResponse:
    if not repo.delete_template(rec_id):
        raise HTTPException(status_code=404, detail="Recurring expense not found")
    return JSONResponse(content={"deleted": True})


@generation_router.post("/generate", response_model=schemas.GenerationRunResult)
def api_generate_recurring(
    include_overdue: bool = False,
    date: Optional[dt.date] = Query(default=None, description="Generation date, defaults to today"),
    generator: RecurringGenerator = Depends(get_generator),
) -> schemas.GenerationRunResult:
    """Run recurring generation once, on demand."""
    try:
        result = generator.run_generation(date or dt.date.today(), include_overdue=include_overdue)
    except Exception:
        logger.exception("Recurring generation could not select templates")
        raise HTTPException(status_code=500, detail="Recurring generation failed")
    return schemas.GenerationRunResult.from_result(result)


@generation_router.get("/history", response_model=List[schemas.GenerationHistoryItem])
def api_generation_history(
    limit: int = Query(default=20, ge=1, le=500),
    repo: SqliteRecurringRepository = Depends(get_repository),
) -> List[schemas.GenerationHistoryItem]:
    return [schemas.GenerationHistoryItem(**item) for item in repo.generation_history(limit)]


@generation_router.get("/stats", response_model=schemas.GenerationStats)
def api_generation_stats(
    date: Optional[dt.date] = None,
    repo: SqliteRecurringRepository = Depends(get_repository),
) -> schemas.GenerationStats:
    """Counts of today's (or ``date``'s) generation attempts by status."""
    return schemas.GenerationStats(**repo.generation_stats(date or dt.date.today()))


@generation_router.get("/pending", response_model=List[schemas.RecurringExpense])
def api_pending_recurring(
    repo: SqliteRecurringRepository = Depends(get_repository),
) -> List[schemas.RecurringExpense]:
    """Templates due today or overdue."""
    return [schemas.RecurringExpense.from_template(t) for t in repo.list_pending(dt.date.today())]
