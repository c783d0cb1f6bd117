# ledger/recurrence.py
"""
Logic for materializing recurring expense templates into transactions.

A run is invoked once per "today" (by the daily scheduler or on demand).
The repository selects the templates that are due; each of them then goes
through the same small decision procedure, first match wins:

1. already generated today -> skipped ("duplicate"), nothing changes;
2. today is a holiday and the template skips holidays -> skipped
   ("holiday"), ``next_generate`` moves to the next non-holiday
   occurrence (bounded search);
3. otherwise -> create the transaction, advance ``last_generated`` and
   ``next_generate``, record success.

Every attempt appends exactly one audit entry. A failure inside one
template is recorded as ``failed`` and never stops the batch; only a
failure of the selection query propagates to the caller.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, ContextManager, List, Optional, Protocol

from .frequency import FrequencyConfig, WeeklyConfig, next_occurrence

logger = logging.getLogger(__name__)

STATUS_SUCCESS = "success"
STATUS_SKIPPED = "skipped"
STATUS_FAILED = "failed"

REASON_DUPLICATE = "duplicate"
REASON_HOLIDAY = "holiday"

# Upper bound on holiday-skip rescheduling; a calendar source that reports
# every day as a holiday must not hang the job.
MAX_HOLIDAY_SKIPS = 31

# Day-by-day guard for Monday-to-Friday templates, two months of calendar
MAX_WORKDAY_STEPS = 62
WORKDAYS = frozenset({1, 2, 3, 4, 5})

AUTO_NOTE_PREFIX = "[Auto-generated]"


class DuplicateGenerationError(Exception):
    """This template already has a generated transaction or success entry for the date."""


@dataclass
class RecurringTemplate:
    id: int
    name: str
    amount: Decimal
    category: str
    frequency: str
    config: FrequencyConfig
    start_date: date
    next_generate: date
    end_date: Optional[date] = None
    skip_holidays: bool = False
    is_active: bool = True
    last_generated: Optional[date] = None


@dataclass
class GenerationOutcome:
    template_id: int
    template_name: str
    status: str
    reason: Optional[str] = None
    transaction_id: Optional[int] = None
    next_generate: Optional[date] = None


@dataclass
class GenerationResult:
    generation_date: date
    generated_count: int = 0
    errors: List[str] = field(default_factory=list)
    outcomes: List[GenerationOutcome] = field(default_factory=list)

    def summary(self) -> dict:
        counts = {STATUS_SUCCESS: 0, STATUS_SKIPPED: 0, STATUS_FAILED: 0}
        for outcome in self.outcomes:
            counts[outcome.status] += 1
        return {
            "total": len(self.outcomes),
            "success": counts[STATUS_SUCCESS],
            "skipped": counts[STATUS_SKIPPED],
            "failed": counts[STATUS_FAILED],
        }


# --------- Collaborators ---------

class TemplateRepository(Protocol):
    def unit_of_work(self) -> ContextManager[Any]:
        """Repository and transaction-store writes inside the block commit or roll back together."""
        ...

    def find_due_templates(self, today: date, include_overdue: bool = False) -> List[RecurringTemplate]: ...

    def has_successful_generation(self, template_id: int, generation_date: date) -> bool: ...

    def update_template(
        self,
        template_id: int,
        *,
        last_generated: Optional[date] = None,
        next_generate: Optional[date] = None,
    ) -> None: ...

    def append_audit_entry(
        self,
        template_id: Optional[int],
        generation_date: date,
        transaction_id: Optional[int],
        status: str,
        reason: Optional[str] = None,
    ) -> Any: ...


class TransactionStore(Protocol):
    def create_transaction(
        self,
        *,
        type: str,
        category: str,
        amount: Decimal,
        note: str,
        date: date,
        currency: str,
        recurring_template_id: Optional[int] = None,
    ) -> int: ...


class HolidayOracle(Protocol):
    def is_holiday(self, day: date) -> bool: ...

    def is_working_day(self, day: date) -> bool: ...


# --------- Core ---------

class RecurringGenerator:
    """Runs the per-template decision procedure over every due template."""

    def __init__(
        self,
        repository: TemplateRepository,
        transactions: TransactionStore,
        holidays: HolidayOracle,
        currency: str = "CNY",
        max_holiday_skips: int = MAX_HOLIDAY_SKIPS,
    ) -> None:
        self._repository = repository
        self._transactions = transactions
        self._holidays = holidays
        self._currency = currency
        self._max_holiday_skips = max_holiday_skips

    def run_generation(self, today: Optional[date] = None, include_overdue: bool = False) -> GenerationResult:
        if today is None:
            today = date.today()

        # Without a template list there is nothing to isolate: let it raise.
        templates = self._repository.find_due_templates(today, include_overdue)
        result = GenerationResult(generation_date=today)

        for template in templates:
            try:
                outcome = self._process(template, today)
            except Exception as exc:
                logger.exception("Recurring template %s (%s) failed", template.id, template.name)
                outcome = GenerationOutcome(template.id, template.name, STATUS_FAILED, reason=str(exc))
                result.errors.append(f'Failed to generate recurring expense "{template.name}": {exc}')
                self._record_failure(template, today, str(exc), result)

            if outcome.status == STATUS_SUCCESS:
                result.generated_count += 1
            result.outcomes.append(outcome)

        logger.info(
            "Recurring generation for %s: generated=%s %s",
            today.isoformat(),
            result.generated_count,
            result.summary(),
        )
        return result

    def _process(self, template: RecurringTemplate, today: date) -> GenerationOutcome:
        if self._repository.has_successful_generation(template.id, today):
            return self._skip_duplicate(template, today)

        if template.skip_holidays and self._holidays.is_holiday(today):
            next_generate = self.next_non_holiday(template.config, today)
            with self._repository.unit_of_work():
                self._repository.update_template(template.id, next_generate=next_generate)
                self._repository.append_audit_entry(template.id, today, None, STATUS_SKIPPED, REASON_HOLIDAY)
            logger.info(
                "Recurring template %s skipped: %s is a holiday, rescheduled to %s",
                template.id, today.isoformat(), next_generate.isoformat(),
            )
            return GenerationOutcome(
                template.id, template.name, STATUS_SKIPPED, reason=REASON_HOLIDAY, next_generate=next_generate
            )

        # Holidays are only checked when the next run evaluates this date.
        next_generate = next_occurrence(template.config, today)
        # The transaction, the schedule and the success entry land together;
        # any failure rolls all three back and leaves the template as it was.
        try:
            with self._repository.unit_of_work():
                transaction_id = self._transactions.create_transaction(
                    type="expense",
                    category=template.category,
                    amount=template.amount,
                    note=f"{AUTO_NOTE_PREFIX} {template.name}",
                    date=today,
                    currency=self._currency,
                    recurring_template_id=template.id,
                )
                self._repository.update_template(template.id, last_generated=today, next_generate=next_generate)
                self._repository.append_audit_entry(template.id, today, transaction_id, STATUS_SUCCESS)
        except DuplicateGenerationError:
            # Another run got there first
            return self._skip_duplicate(template, today)

        logger.info(
            "Recurring template %s generated transaction %s, next on %s",
            template.id, transaction_id, next_generate.isoformat(),
        )
        return GenerationOutcome(
            template.id, template.name, STATUS_SUCCESS,
            transaction_id=transaction_id, next_generate=next_generate,
        )

    def _skip_duplicate(self, template: RecurringTemplate, today: date) -> GenerationOutcome:
        self._repository.append_audit_entry(template.id, today, None, STATUS_SKIPPED, REASON_DUPLICATE)
        logger.info("Recurring template %s already generated on %s", template.id, today.isoformat())
        return GenerationOutcome(template.id, template.name, STATUS_SKIPPED, reason=REASON_DUPLICATE)

    def _record_failure(self, template: RecurringTemplate, today: date, reason: str, result: GenerationResult) -> None:
        try:
            self._repository.append_audit_entry(template.id, today, None, STATUS_FAILED, reason)
        except Exception as exc:
            logger.exception("Could not write failure entry for recurring template %s", template.id)
            result.errors.append(f'Failed to record failure of "{template.name}": {exc}')

    def next_non_holiday(self, config: FrequencyConfig, start: date) -> date:
        """Advance occurrence by occurrence from ``start`` until a non-holiday.

        Gives up after ``max_holiday_skips`` occurrences and returns the last
        candidate, which is still strictly after ``start``.

        Monday-to-Friday templates follow the official working-day calendar
        instead, so a make-up working weekend day counts as the next occurrence.
        """
        if is_workday_schedule(config):
            return self.next_working_day(config, start)
        candidate = start
        for _ in range(self._max_holiday_skips):
            candidate = next_occurrence(config, candidate)
            if not self._holidays.is_holiday(candidate):
                return candidate
        logger.warning(
            "No non-holiday occurrence within %s steps after %s; using %s",
            self._max_holiday_skips, start.isoformat(), candidate.isoformat(),
        )
        return candidate

    def next_working_day(self, config: FrequencyConfig, start: date) -> date:
        candidate = start
        for _ in range(MAX_WORKDAY_STEPS):
            candidate += timedelta(days=1)
            if self._holidays.is_working_day(candidate):
                return candidate
        logger.warning(
            "No working day within %s days after %s; falling back to the weekly schedule",
            MAX_WORKDAY_STEPS, start.isoformat(),
        )
        return next_occurrence(config, start)


def is_workday_schedule(config: FrequencyConfig) -> bool:
    return isinstance(config, WeeklyConfig) and config.days_of_week == WORKDAYS
