import sqlite3
from datetime import date
from decimal import Decimal

import pytest

from ledger.db import get_connection
from ledger.frequency import DailyConfig, MonthlyConfig, WeeklyConfig
from ledger.recurrence import (
    REASON_DUPLICATE,
    REASON_HOLIDAY,
    STATUS_FAILED,
    STATUS_SKIPPED,
    STATUS_SUCCESS,
    DuplicateGenerationError,
    RecurringGenerator,
)
from ledger.repository import SqliteRecurringRepository, SqliteTransactionStore
from tests.helpers.fakes import FakeHolidays

TODAY = date(2024, 1, 1)


def _template(repo, today=TODAY, **overrides):
    data = {
        "name": "Rent",
        "amount": "1200.00",
        "category": "housing",
        "frequency": "daily",
        "frequency_config": {},
        "start_date": today,
    }
    data.update(overrides)
    return repo.create_template(data, today=today)


def test_create_template_stores_decimal_amount_and_first_occurrence(db_path):
    repo = SqliteRecurringRepository(db_path)

    t = _template(repo, frequency="weekly", frequency_config={"days_of_week": [3]})

    assert t.amount == Decimal("1200.00")
    assert t.config == WeeklyConfig(frozenset({3}))
    # 2024-01-01 is a Monday, first Wednesday is the 3rd
    assert t.next_generate == date(2024, 1, 3)
    assert t.is_active is True
    assert t.last_generated is None


def test_sparse_monthly_config_is_pinned_to_start_day(db_path):
    repo = SqliteRecurringRepository(db_path)

    t = _template(repo, frequency="monthly", start_date=date(2024, 1, 31))

    assert t.config == MonthlyConfig(31)
    assert t.next_generate == date(2024, 1, 31)


@pytest.mark.parametrize(
    "overrides, message",
    [
        ({"name": "  "}, "Name"),
        ({"amount": "0"}, "Amount"),
        ({"amount": "abc"}, "Invalid amount"),
        ({"frequency": "hourly"}, "frequency"),
        ({"end_date": date(2023, 12, 31)}, "End date"),
    ],
)
def test_create_template_rejects_invalid_input(db_path, overrides, message):
    repo = SqliteRecurringRepository(db_path)

    with pytest.raises(ValueError, match=message):
        _template(repo, **overrides)


def test_due_selection_honours_window_and_active_flag(db_path):
    repo = SqliteRecurringRepository(db_path)
    due = _template(repo, name="due")
    _template(repo, name="inactive", is_active=False)
    expired = _template(repo, name="expired")
    repo.update_template_fields(expired.id, {"end_date": date(2024, 1, 1)}, today=TODAY)
    _template(repo, name="future", start_date=date(2024, 2, 1))

    selected = repo.find_due_templates(TODAY)
    assert [t.name for t in selected] == ["due", "expired"]
    assert repo.find_due_templates(date(2024, 1, 2)) == []

    repo.update_template(due.id, next_generate=date(2023, 12, 30))
    assert repo.find_due_templates(TODAY) == [repo.get_template(expired.id)]
    assert {t.name for t in repo.find_due_templates(TODAY, include_overdue=True)} == {"due", "expired"}


def test_end_date_before_today_is_not_selected(db_path):
    repo = SqliteRecurringRepository(db_path)
    t = _template(repo, end_date=date(2024, 1, 5))
    repo.update_template(t.id, next_generate=date(2024, 1, 6))

    assert repo.find_due_templates(date(2024, 1, 6)) == []


def test_only_one_success_entry_per_template_and_date(db_path):
    repo = SqliteRecurringRepository(db_path)
    t = _template(repo)

    repo.append_audit_entry(t.id, TODAY, None, STATUS_SKIPPED, REASON_HOLIDAY)
    repo.append_audit_entry(t.id, TODAY, None, STATUS_FAILED, "boom")
    repo.append_audit_entry(t.id, TODAY, None, STATUS_SUCCESS)
    assert repo.has_successful_generation(t.id, TODAY)
    assert not repo.has_successful_generation(t.id, date(2024, 1, 2))

    with pytest.raises(DuplicateGenerationError):
        repo.append_audit_entry(t.id, TODAY, None, STATUS_SUCCESS)


def test_generated_transactions_are_unique_per_template_and_date(db_path):
    repo = SqliteRecurringRepository(db_path)
    store = SqliteTransactionStore(db_path)
    t = _template(repo)
    kwargs = dict(type="expense", category="housing", amount=Decimal("1.10"), note="", date=TODAY, currency="CNY")

    store.create_transaction(recurring_template_id=t.id, **kwargs)
    with pytest.raises(DuplicateGenerationError):
        store.create_transaction(recurring_template_id=t.id, **kwargs)

    # Manual transactions carry no period key and may repeat
    store.create_transaction(**kwargs)
    store.create_transaction(**kwargs)

    rows = store.list_transactions(TODAY, TODAY)
    assert len(rows) == 3
    assert all(r["amount"] == Decimal("1.10") for r in rows)
    assert sum(r["is_auto_generated"] for r in rows) == 1


def test_schedule_edit_recomputes_next_generate(db_path):
    repo = SqliteRecurringRepository(db_path)
    t = _template(repo)

    renamed = repo.update_template_fields(t.id, {"name": "Flat", "amount": "900"}, today=TODAY)
    assert renamed.name == "Flat"
    assert renamed.amount == Decimal("900")
    assert renamed.next_generate == TODAY

    moved = repo.update_template_fields(
        t.id, {"frequency": "monthly", "frequency_config": {"day_of_month": 15}}, today=TODAY
    )
    assert moved.config == MonthlyConfig(15)
    assert moved.next_generate == date(2024, 1, 15)

    # Changing only the frequency drops the old config and falls back to defaults
    daily = repo.update_template_fields(t.id, {"frequency": "daily"}, today=date(2024, 1, 10))
    assert daily.config == DailyConfig()
    assert daily.next_generate == date(2024, 1, 10)

    assert repo.update_template_fields(999, {"name": "x"}) is None


def test_generation_against_sqlite_and_reporting(db_path):
    repo = SqliteRecurringRepository(db_path)
    store = SqliteTransactionStore(db_path)
    rent = _template(repo)
    gym = _template(repo, name="Gym", amount="30", skip_holidays=True)
    generator = RecurringGenerator(repo, store, FakeHolidays({TODAY}))

    result = generator.run_generation(TODAY)

    assert result.generated_count == 1
    assert repo.get_template(rent.id).last_generated == TODAY
    assert repo.get_template(rent.id).next_generate == date(2024, 1, 2)
    assert repo.get_template(gym.id).next_generate == date(2024, 1, 2)

    history = repo.generation_history(limit=10)
    assert {h["status"] for h in history} == {STATUS_SUCCESS, STATUS_SKIPPED}
    success = next(h for h in history if h["status"] == STATUS_SUCCESS)
    assert success["recurring_template"] == {"name": "Rent", "amount": Decimal("1200.00"), "category": "housing"}
    assert success["transaction"]["note"] == "[Auto-generated] Rent"
    assert success["transaction"]["date"] == "2024-01-01"
    skipped = next(h for h in history if h["status"] == STATUS_SKIPPED)
    assert skipped["reason"] == REASON_HOLIDAY
    assert skipped["transaction"] is None

    assert repo.generation_stats(TODAY) == {
        "total": 2, "success": 1, "skipped": 1, "failed": 0, "date": "2024-01-01",
    }
    assert repo.generation_stats(date(2024, 1, 2))["total"] == 0


def test_deleting_template_keeps_its_audit_trail(db_path):
    repo = SqliteRecurringRepository(db_path)
    store = SqliteTransactionStore(db_path)
    t = _template(repo)
    RecurringGenerator(repo, store, FakeHolidays()).run_generation(TODAY)

    assert repo.delete_template(t.id) is True
    assert repo.delete_template(t.id) is False
    assert repo.get_template(t.id) is None

    [entry] = repo.generation_history()
    assert entry["recurring_template_id"] is None
    assert entry["recurring_template"] is None
    assert entry["transaction"] is not None

    conn = get_connection(db_path)
    try:
        tx = conn.execute("SELECT recurring_template_id FROM transactions").fetchone()
    finally:
        conn.close()
    assert tx["recurring_template_id"] is None


def test_list_templates_and_pending(db_path):
    repo = SqliteRecurringRepository(db_path)
    a = _template(repo, name="a")
    _template(repo, name="b", is_active=False)
    repo.update_template(a.id, next_generate=date(2023, 12, 1))

    assert {t.name for t in repo.list_templates()} == {"a", "b"}
    assert [t.name for t in repo.list_templates(active_only=True)] == ["a"]
    assert [t.name for t in repo.list_pending(TODAY)] == ["a"]


def test_unit_of_work_commits_once_or_not_at_all(db_path):
    repo = SqliteRecurringRepository(db_path)
    store = SqliteTransactionStore(db_path)
    t = _template(repo)

    with pytest.raises(RuntimeError):
        with repo.unit_of_work():
            store.create_transaction(
                type="expense", category="housing", amount=Decimal("5"), note="", date=TODAY,
                currency="CNY", recurring_template_id=t.id,
            )
            repo.update_template(t.id, next_generate=date(2024, 2, 1))
            assert repo.get_template(t.id).next_generate == date(2024, 2, 1)
            raise RuntimeError("boom")

    assert repo.get_template(t.id).next_generate == TODAY
    assert store.list_transactions() == []

    with repo.unit_of_work():
        with repo.unit_of_work():
            repo.update_template(t.id, next_generate=date(2024, 2, 1))
    assert repo.get_template(t.id).next_generate == date(2024, 2, 1)


def _failing_once(monkeypatch, obj, name, should_fail, message):
    real = getattr(obj, name)
    failed = []

    def wrapper(*args, **kwargs):
        if not failed and should_fail(*args, **kwargs):
            failed.append(True)
            raise sqlite3.OperationalError(message)
        return real(*args, **kwargs)

    monkeypatch.setattr(obj, name, wrapper)


def _assert_untouched(repo, store, template_id):
    current = repo.get_template(template_id)
    assert current.last_generated is None
    assert current.next_generate == TODAY
    assert store.list_transactions() == []
    assert not repo.has_successful_generation(template_id, TODAY)


def _assert_generated_on_retry(generator, repo, store, template_id):
    retry = generator.run_generation(TODAY)
    assert [o.status for o in retry.outcomes] == [STATUS_SUCCESS]
    current = repo.get_template(template_id)
    assert current.last_generated == TODAY
    assert current.next_generate == date(2024, 1, 2)
    assert len(store.list_transactions()) == 1
    assert repo.generation_stats(TODAY)["success"] == 1


def test_failed_schedule_write_rolls_back_generated_transaction(db_path, monkeypatch):
    repo = SqliteRecurringRepository(db_path)
    store = SqliteTransactionStore(db_path)
    t = _template(repo)
    _failing_once(monkeypatch, repo, "update_template", lambda *a, **kw: True, "database is locked")
    generator = RecurringGenerator(repo, store, FakeHolidays())

    result = generator.run_generation(TODAY)

    assert [(o.status, o.reason) for o in result.outcomes] == [(STATUS_FAILED, "database is locked")]
    _assert_untouched(repo, store, t.id)
    assert [h["status"] for h in repo.generation_history()] == [STATUS_FAILED]
    _assert_generated_on_retry(generator, repo, store, t.id)


def test_failed_success_entry_rolls_back_schedule_and_transaction(db_path, monkeypatch):
    repo = SqliteRecurringRepository(db_path)
    store = SqliteTransactionStore(db_path)
    t = _template(repo)
    _failing_once(
        monkeypatch, repo, "append_audit_entry",
        lambda template_id, day, tx_id, status, reason=None: status == STATUS_SUCCESS,
        "disk I/O error",
    )
    generator = RecurringGenerator(repo, store, FakeHolidays())

    result = generator.run_generation(TODAY)

    assert [(o.status, o.reason) for o in result.outcomes] == [(STATUS_FAILED, "disk I/O error")]
    _assert_untouched(repo, store, t.id)
    _assert_generated_on_retry(generator, repo, store, t.id)


def test_concurrent_success_is_recorded_as_duplicate(db_path, monkeypatch):
    repo = SqliteRecurringRepository(db_path)
    store = SqliteTransactionStore(db_path)
    t = _template(repo)
    # Another run recorded success after this run's duplicate check
    repo.append_audit_entry(t.id, TODAY, None, STATUS_SUCCESS)
    monkeypatch.setattr(repo, "has_successful_generation", lambda template_id, day: False)

    result = RecurringGenerator(repo, store, FakeHolidays()).run_generation(TODAY)

    assert [(o.status, o.reason) for o in result.outcomes] == [(STATUS_SKIPPED, REASON_DUPLICATE)]
    assert result.errors == []
    assert store.list_transactions() == []
    assert repo.get_template(t.id).next_generate == TODAY
