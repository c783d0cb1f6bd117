# ledger/repository.py
"""
SQLite storage for recurring templates, their audit trail and the
transactions they generate.

The generator only depends on the narrow protocols declared in
``recurrence``; the classes here implement them on top of ``db`` and also
carry the template management and reporting queries used by the API.
"""
from __future__ import annotations

import json
import logging
import sqlite3
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, ContextManager, Dict, List, Mapping, Optional, Union

from . import db
from .frequency import (
    FREQUENCIES,
    MonthlyConfig,
    YearlyConfig,
    config_to_dict,
    first_occurrence,
    parse_frequency_config,
)
from .recurrence import STATUS_SUCCESS, DuplicateGenerationError, RecurringTemplate

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

_EDITABLE_FIELDS = (
    "name",
    "amount",
    "category",
    "frequency",
    "frequency_config",
    "start_date",
    "end_date",
    "skip_holidays",
    "is_active",
)
_SCHEDULE_FIELDS = {"frequency", "frequency_config", "start_date"}


# --------- Helpers ---------

def parse_date(ds: Optional[str]) -> Optional[date]:
    if not ds:
        return None
    return datetime.strptime(ds[:10], "%Y-%m-%d").date()


def format_date(d: Optional[date]) -> Optional[str]:
    return d.isoformat() if d else None


def _to_decimal(value: Any) -> Decimal:
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ValueError(f"Invalid amount: {value!r}") from exc


def _normalized_config(frequency: str, raw: Optional[Mapping[str, Any]], start_date: date):
    """Pin sparse monthly/yearly configs to the start date so clamped months don't drift."""
    config = parse_frequency_config(frequency, raw)
    if isinstance(config, MonthlyConfig) and config.day_of_month is None:
        config = MonthlyConfig(start_date.day)
    elif isinstance(config, YearlyConfig):
        config = YearlyConfig(config.month or start_date.month, config.day or start_date.day)
    return config


def _validate(values: Mapping[str, Any]) -> None:
    if not str(values["name"]).strip():
        raise ValueError("Name cannot be empty.")
    if values["amount"] <= 0:
        raise ValueError("Amount must be positive.")
    if values["frequency"] not in FREQUENCIES:
        raise ValueError("Invalid frequency.")
    if values.get("end_date") and values["end_date"] < values["start_date"]:
        raise ValueError("End date cannot be before start date.")


def row_to_template(row: sqlite3.Row) -> RecurringTemplate:
    raw_config = json.loads(row["frequency_config"] or "{}")
    return RecurringTemplate(
        id=row["id"],
        name=row["name"],
        amount=Decimal(row["amount"]),
        category=row["category"],
        frequency=row["frequency"],
        config=parse_frequency_config(row["frequency"], raw_config),
        start_date=parse_date(row["start_date"]),
        end_date=parse_date(row["end_date"]),
        skip_holidays=bool(row["skip_holidays"]),
        is_active=bool(row["is_active"]),
        last_generated=parse_date(row["last_generated"]),
        next_generate=parse_date(row["next_generate"]),
    )


# --------- Templates and audit log ---------

class SqliteRecurringRepository:
    def __init__(self, db_path: Optional[PathLike] = None) -> None:
        self.db_path = db_path

    def unit_of_work(self) -> ContextManager[sqlite3.Connection]:
        """Writes made inside the block commit together or not at all."""
        return db.unit_of_work(self.db_path)

    # Generation collaborator interface

    def find_due_templates(self, today: date, include_overdue: bool = False) -> List[RecurringTemplate]:
        day = today.isoformat()
        sql = (
            "SELECT * FROM recurring_templates "
            "WHERE is_active = 1 AND start_date <= ? "
            "AND (end_date IS NULL OR end_date >= ?) "
        )
        sql += "AND next_generate <= ? " if include_overdue else "AND next_generate = ? "
        sql += "ORDER BY next_generate, id"
        with db.connection(self.db_path) as conn:
            rows = conn.execute(sql, (day, day, day)).fetchall()
        return [row_to_template(r) for r in rows]

    def has_successful_generation(self, template_id: int, generation_date: date) -> bool:
        with db.connection(self.db_path) as conn:
            row = conn.execute(
                "SELECT 1 FROM recurring_generation_logs "
                "WHERE recurring_template_id = ? AND generation_date = ? AND status = 'success' LIMIT 1",
                (template_id, generation_date.isoformat()),
            ).fetchone()
        return row is not None

    def update_template(
        self,
        template_id: int,
        *,
        last_generated: Optional[date] = None,
        next_generate: Optional[date] = None,
    ) -> None:
        fields: Dict[str, Any] = {}
        if last_generated is not None:
            fields["last_generated"] = last_generated.isoformat()
        if next_generate is not None:
            fields["next_generate"] = next_generate.isoformat()
        if not fields:
            return
        set_clause = ", ".join(f"{k} = ?" for k in fields)
        with db.connection(self.db_path) as conn:
            conn.execute(
                f"UPDATE recurring_templates SET {set_clause}, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
                list(fields.values()) + [template_id],
            )

    def append_audit_entry(
        self,
        template_id: Optional[int],
        generation_date: date,
        transaction_id: Optional[int],
        status: str,
        reason: Optional[str] = None,
    ) -> int:
        try:
            with db.connection(self.db_path) as conn:
                cur = conn.execute(
                    "INSERT INTO recurring_generation_logs "
                    "(recurring_template_id, generation_date, generated_transaction_id, status, reason) "
                    "VALUES (?, ?, ?, ?, ?)",
                    (template_id, generation_date.isoformat(), transaction_id, status, reason),
                )
                return cur.lastrowid
        except sqlite3.IntegrityError as exc:
            # ux_generation_logs_success: another run recorded this success first
            if status == STATUS_SUCCESS and "UNIQUE" in str(exc):
                raise DuplicateGenerationError(
                    f"template {template_id} already succeeded on {generation_date.isoformat()}"
                ) from exc
            raise

    # Template management

    def create_template(self, data: Mapping[str, Any], today: Optional[date] = None) -> RecurringTemplate:
        today = today or date.today()
        values = {k: data.get(k) for k in _EDITABLE_FIELDS}
        values["amount"] = _to_decimal(values["amount"])
        values["skip_holidays"] = bool(values.get("skip_holidays") or False)
        values["is_active"] = True if values.get("is_active") is None else bool(values["is_active"])
        _validate(values)

        config = _normalized_config(values["frequency"], values.get("frequency_config"), values["start_date"])
        next_generate = first_occurrence(config, values["start_date"], today)

        with db.connection(self.db_path) as conn:
            cur = conn.execute(
                "INSERT INTO recurring_templates (name, amount, category, frequency, frequency_config, "
                "start_date, end_date, skip_holidays, is_active, next_generate) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    values["name"].strip(),
                    str(values["amount"]),
                    values["category"],
                    values["frequency"],
                    json.dumps(config_to_dict(config)),
                    values["start_date"].isoformat(),
                    format_date(values.get("end_date")),
                    1 if values["skip_holidays"] else 0,
                    1 if values["is_active"] else 0,
                    next_generate.isoformat(),
                ),
            )
            new_id = cur.lastrowid
        logger.info("Created recurring template %s (%s), next on %s", new_id, values["name"], next_generate)
        return self.get_template(new_id)

    def get_template(self, template_id: int) -> Optional[RecurringTemplate]:
        with db.connection(self.db_path) as conn:
            row = conn.execute("SELECT * FROM recurring_templates WHERE id = ?", (template_id,)).fetchone()
        return row_to_template(row) if row else None

    def list_templates(self, active_only: bool = False) -> List[RecurringTemplate]:
        sql = "SELECT * FROM recurring_templates"
        if active_only:
            sql += " WHERE is_active = 1"
        sql += " ORDER BY created_at DESC, id DESC"
        with db.connection(self.db_path) as conn:
            rows = conn.execute(sql).fetchall()
        return [row_to_template(r) for r in rows]

    def update_template_fields(
        self, template_id: int, fields: Mapping[str, Any], today: Optional[date] = None
    ) -> Optional[RecurringTemplate]:
        """Apply a partial edit; schedule changes recompute ``next_generate``."""
        current = self.get_template(template_id)
        if current is None:
            return None
        changes = {k: v for k, v in fields.items() if k in _EDITABLE_FIELDS}
        if not changes:
            return current

        merged = {
            "name": current.name,
            "amount": current.amount,
            "category": current.category,
            "frequency": current.frequency,
            "frequency_config": config_to_dict(current.config),
            "start_date": current.start_date,
            "end_date": current.end_date,
            "skip_holidays": current.skip_holidays,
            "is_active": current.is_active,
        }
        if "frequency" in changes and "frequency_config" not in changes:
            merged["frequency_config"] = {}
        merged.update(changes)
        merged["amount"] = _to_decimal(merged["amount"])
        _validate(merged)

        columns: Dict[str, Any] = {
            "name": str(merged["name"]).strip(),
            "amount": str(merged["amount"]),
            "category": merged["category"],
            "end_date": format_date(merged["end_date"]),
            "skip_holidays": 1 if merged["skip_holidays"] else 0,
            "is_active": 1 if merged["is_active"] else 0,
        }
        if _SCHEDULE_FIELDS & set(changes):
            config = _normalized_config(merged["frequency"], merged["frequency_config"], merged["start_date"])
            columns["frequency"] = merged["frequency"]
            columns["frequency_config"] = json.dumps(config_to_dict(config))
            columns["start_date"] = merged["start_date"].isoformat()
            columns["next_generate"] = first_occurrence(config, merged["start_date"], today or date.today()).isoformat()

        set_clause = ", ".join(f"{k} = ?" for k in columns)
        with db.connection(self.db_path) as conn:
            conn.execute(
                f"UPDATE recurring_templates SET {set_clause}, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
                list(columns.values()) + [template_id],
            )
        return self.get_template(template_id)

    def delete_template(self, template_id: int) -> bool:
        with db.connection(self.db_path) as conn:
            cur = conn.execute("DELETE FROM recurring_templates WHERE id = ?", (template_id,))
            return cur.rowcount > 0

    def list_pending(self, today: date) -> List[RecurringTemplate]:
        return self.find_due_templates(today, include_overdue=True)

    # Reporting

    def generation_history(self, limit: int = 20) -> List[Dict[str, Any]]:
        with db.connection(self.db_path) as conn:
            rows = conn.execute(
                """
                SELECT
                    l.id, l.recurring_template_id, l.generation_date, l.generated_transaction_id,
                    l.status, l.reason, l.created_at,
                    r.name AS template_name, r.amount AS template_amount, r.category AS template_category,
                    t.id AS tx_id, t.amount AS tx_amount, t.note AS tx_note, t.date AS tx_date
                FROM recurring_generation_logs l
                LEFT JOIN recurring_templates r ON l.recurring_template_id = r.id
                LEFT JOIN transactions t ON l.generated_transaction_id = t.id
                ORDER BY l.created_at DESC, l.id DESC
                LIMIT ?
                """,
                (limit,),
            ).fetchall()

        history = []
        for row in rows:
            history.append({
                "id": row["id"],
                "recurring_template_id": row["recurring_template_id"],
                "generation_date": row["generation_date"],
                "generated_transaction_id": row["generated_transaction_id"],
                "status": row["status"],
                "reason": row["reason"],
                "created_at": row["created_at"],
                "recurring_template": {
                    "name": row["template_name"],
                    "amount": Decimal(row["template_amount"]),
                    "category": row["template_category"],
                } if row["template_name"] is not None else None,
                "transaction": {
                    "id": row["tx_id"],
                    "amount": Decimal(row["tx_amount"]),
                    "note": row["tx_note"],
                    "date": row["tx_date"],
                } if row["tx_id"] is not None else None,
            })
        return history

    def generation_stats(self, day: date) -> Dict[str, Any]:
        with db.connection(self.db_path) as conn:
            rows = conn.execute(
                "SELECT status, COUNT(*) AS n FROM recurring_generation_logs "
                "WHERE generation_date = ? GROUP BY status",
                (day.isoformat(),),
            ).fetchall()
        counts = {row["status"]: row["n"] for row in rows}
        return {
            "total": sum(counts.values()),
            "success": counts.get("success", 0),
            "skipped": counts.get("skipped", 0),
            "failed": counts.get("failed", 0),
            "date": day.isoformat(),
        }


# --------- Transactions ---------

class SqliteTransactionStore:
    def __init__(self, db_path: Optional[PathLike] = None) -> None:
        self.db_path = db_path

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
    ) -> int:
        period_key = date.isoformat() if recurring_template_id is not None else None
        try:
            with db.connection(self.db_path) as conn:
                cur = conn.execute(
                    "INSERT INTO transactions (type, date, amount, category, note, currency, "
                    "recurring_template_id, period_key, is_auto_generated) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        type,
                        date.isoformat(),
                        str(amount),
                        category,
                        note,
                        currency,
                        recurring_template_id,
                        period_key,
                        1 if recurring_template_id is not None else 0,
                    ),
                )
                return cur.lastrowid
        except sqlite3.IntegrityError as exc:
            if recurring_template_id is not None and "UNIQUE" in str(exc):
                raise DuplicateGenerationError(
                    f"template {recurring_template_id} already generated on {period_key}"
                ) from exc
            raise

    def list_transactions(
        self, from_date: Optional[date] = None, to_date: Optional[date] = None
    ) -> List[Dict[str, Any]]:
        query = "SELECT * FROM transactions WHERE 1 = 1"
        params: List[Any] = []
        if from_date:
            query += " AND date >= ?"
            params.append(from_date.isoformat())
        if to_date:
            query += " AND date <= ?"
            params.append(to_date.isoformat())
        query += " ORDER BY date DESC, id DESC"
        with db.connection(self.db_path) as conn:
            rows = conn.execute(query, params).fetchall()
        return [dict(row, amount=Decimal(row["amount"])) for row in rows]
