import datetime as dt
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel

from ..recurrence import GenerationResult

Status = Literal["success", "skipped", "failed"]


class GenerationOutcome(BaseModel):
    template_id: int
    template_name: str
    status: Status
    reason: Optional[str] = None
    transaction_id: Optional[int] = None
    next_generate: Optional[dt.date] = None


class GenerationSummary(BaseModel):
    total: int
    success: int
    skipped: int
    failed: int


class GenerationRunResult(BaseModel):
    date: dt.date
    generated: int
    errors: List[str]
    summary: GenerationSummary
    results: List[GenerationOutcome]

    @classmethod
    def from_result(cls, result: GenerationResult) -> "GenerationRunResult":
        return cls(
            date=result.generation_date,
            generated=result.generated_count,
            errors=result.errors,
            summary=GenerationSummary(**result.summary()),
            results=[GenerationOutcome(**vars(o)) for o in result.outcomes],
        )


class TemplateBrief(BaseModel):
    name: str
    amount: Decimal
    category: str


class TransactionBrief(BaseModel):
    id: int
    amount: Decimal
    note: Optional[str] = None
    date: dt.date


class GenerationHistoryItem(BaseModel):
    id: int
    recurring_template_id: Optional[int] = None
    generation_date: dt.date
    generated_transaction_id: Optional[int] = None
    status: Status
    reason: Optional[str] = None
    created_at: str
    recurring_template: Optional[TemplateBrief] = None
    transaction: Optional[TransactionBrief] = None


class GenerationStats(BaseModel):
    total: int
    success: int
    skipped: int
    failed: int
    date: dt.date


class HolidaySyncResult(BaseModel):
    success: bool = True
    year: int
    count: int
