"""In-memory collaborators for exercising the generator without SQLite."""

from contextlib import contextmanager
from datetime import date
from decimal import Decimal

from ledger.frequency import DailyConfig, frequency_of, weekday_number
from ledger.recurrence import STATUS_SUCCESS, DuplicateGenerationError, RecurringTemplate


class FakeRepository:
    """Rolls back template fields, audit entries and the linked store on failure."""

    def __init__(self, templates=(), store=None):
        self.templates = {t.id: t for t in templates}
        self.audit = []
        self.store = store
        self.fail_selection = False
        self.fail_updates_for = set()

    @contextmanager
    def unit_of_work(self):
        saved = {t.id: (t.last_generated, t.next_generate) for t in self.templates.values()}
        audit_len = len(self.audit)
        created_len = len(self.store.created) if self.store is not None else 0
        try:
            yield self
        except BaseException:
            for template_id, (last_generated, next_generate) in saved.items():
                self.templates[template_id].last_generated = last_generated
                self.templates[template_id].next_generate = next_generate
            del self.audit[audit_len:]
            if self.store is not None:
                del self.store.created[created_len:]
            raise

    def find_due_templates(self, today, include_overdue=False):
        if self.fail_selection:
            raise RuntimeError("database is locked")
        due = []
        for t in self.templates.values():
            if not t.is_active or t.start_date > today:
                continue
            if t.end_date is not None and t.end_date < today:
                continue
            if t.next_generate == today or (include_overdue and t.next_generate < today):
                due.append(t)
        return due

    def has_successful_generation(self, template_id, generation_date):
        return any(
            e["template_id"] == template_id
            and e["generation_date"] == generation_date
            and e["status"] == STATUS_SUCCESS
            for e in self.audit
        )

    def update_template(self, template_id, *, last_generated=None, next_generate=None):
        if template_id in self.fail_updates_for:
            raise RuntimeError("disk I/O error")
        t = self.templates[template_id]
        if last_generated is not None:
            t.last_generated = last_generated
        if next_generate is not None:
            t.next_generate = next_generate

    def append_audit_entry(self, template_id, generation_date, transaction_id, status, reason=None):
        self.audit.append({
            "id": len(self.audit) + 1,
            "template_id": template_id,
            "generation_date": generation_date,
            "transaction_id": transaction_id,
            "status": status,
            "reason": reason,
        })
        return len(self.audit)

    def entries_for(self, template_id):
        return [e for e in self.audit if e["template_id"] == template_id]


class FakeTransactionStore:
    """Unique per (template, date), like the SQLite store."""

    def __init__(self, failing_categories=()):
        self.created = []
        self.failing_categories = set(failing_categories)

    def create_transaction(self, *, type, category, amount, note, date, currency, recurring_template_id=None):
        if category in self.failing_categories:
            raise RuntimeError(f"cannot store category {category}")
        for tx in self.created:
            if recurring_template_id is not None and (tx["recurring_template_id"], tx["date"]) == (recurring_template_id, date):
                raise DuplicateGenerationError("already generated")
        tx = {
            "id": len(self.created) + 100,
            "type": type,
            "category": category,
            "amount": amount,
            "note": note,
            "date": date,
            "currency": currency,
            "recurring_template_id": recurring_template_id,
        }
        self.created.append(tx)
        return tx["id"]


class FakeHolidays:
    def __init__(self, dates=(), every_day=False, workdays=()):
        self.dates = set(dates)
        self.every_day = every_day
        self.workdays = set(workdays)
        self.calls = []

    def is_holiday(self, day):
        self.calls.append(day)
        return self.every_day or day in self.dates

    def is_working_day(self, day):
        self.calls.append(day)
        if day in self.workdays:
            return True
        if self.every_day or day in self.dates:
            return False
        return 1 <= weekday_number(day) <= 5


def make_template(id=1, config=None, next_generate=date(2024, 1, 1), **overrides):
    config = config or DailyConfig()
    values = dict(
        id=id,
        name=f"template-{id}",
        amount=Decimal("42.50"),
        category="housing",
        frequency=frequency_of(config),
        config=config,
        start_date=date(2024, 1, 1),
        next_generate=next_generate,
    )
    values.update(overrides)
    return RecurringTemplate(**values)
