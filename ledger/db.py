# ledger/db.py
"""
Database connection and initialization helpers.
This file is the single source of truth for opening the SQLite connection.
"""

import os
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, Optional, Union

from .core.config import load_settings

# Can be overridden with LEDGER_DB_PATH to run against a temporary copy
DB_PATH = load_settings().db_path

PathLike = Union[str, Path]


def get_connection(db_path: Optional[PathLike] = None) -> sqlite3.Connection:
    conn = sqlite3.connect(
        str(db_path or DB_PATH),
        check_same_thread=False,
    )
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


# Connections owned by an open unit of work, per thread and database file
_local = threading.local()


def _units() -> Dict[str, sqlite3.Connection]:
    units = getattr(_local, "units", None)
    if units is None:
        units = _local.units = {}
    return units


def _key(db_path: Optional[PathLike]) -> str:
    return os.path.abspath(str(db_path or DB_PATH))


@contextmanager
def connection(db_path: Optional[PathLike] = None) -> Iterator[sqlite3.Connection]:
    """Yield a connection that commits on success.

    Inside :func:`unit_of_work` for the same file the unit's connection is
    yielded instead and committing is left to the unit.
    """
    active = _units().get(_key(db_path))
    if active is not None:
        yield active
        return
    conn = get_connection(db_path)
    try:
        yield conn
        conn.commit()
    finally:
        conn.close()


@contextmanager
def unit_of_work(db_path: Optional[PathLike] = None) -> Iterator[sqlite3.Connection]:
    """Group every :func:`connection` use on this thread into one transaction.

    Commits once when the block exits normally, rolls everything back when
    it raises. Nested units join the outer one.
    """
    key = _key(db_path)
    units = _units()
    if key in units:
        yield units[key]
        return
    conn = get_connection(db_path)
    units[key] = conn
    try:
        yield conn
        conn.commit()
    except BaseException:
        conn.rollback()
        raise
    finally:
        del units[key]
        conn.close()


def _reset_database_if_requested(db_path: Path) -> None:
    """Delete the database file when FORCE_DB_RESET=1."""
    if os.environ.get("FORCE_DB_RESET", "").strip() != "1":
        return
    if db_path.exists():
        db_path.unlink()


def initialise_database(db_path: Optional[PathLike] = None) -> None:
    """Create database tables if they don't exist."""
    path = Path(db_path or DB_PATH)
    _reset_database_if_requested(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    conn = get_connection(path)
    cur = conn.cursor()

    cur.execute("""
        CREATE TABLE IF NOT EXISTS recurring_templates (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL,
            amount TEXT NOT NULL,
            category TEXT NOT NULL,
            frequency TEXT NOT NULL,
            frequency_config TEXT NOT NULL DEFAULT '{}',
            start_date TEXT NOT NULL,
            end_date TEXT,
            skip_holidays INTEGER NOT NULL DEFAULT 0,
            is_active INTEGER NOT NULL DEFAULT 1,
            last_generated TEXT,
            next_generate TEXT NOT NULL,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
    """)

    # Generated transactions are unique per (template, date) so that two
    # overlapping runs cannot both materialize the same occurrence.
    cur.execute("""
        CREATE TABLE IF NOT EXISTS transactions (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            type TEXT NOT NULL DEFAULT 'expense',
            date TEXT NOT NULL,
            amount TEXT NOT NULL,
            category TEXT NOT NULL,
            note TEXT,
            currency TEXT NOT NULL DEFAULT 'CNY',
            recurring_template_id INTEGER,
            period_key TEXT,
            is_auto_generated INTEGER NOT NULL DEFAULT 0,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY (recurring_template_id) REFERENCES recurring_templates (id) ON DELETE SET NULL,
            UNIQUE (recurring_template_id, period_key)
        )
    """)

    # Append-only audit trail of generation attempts
    cur.execute("""
        CREATE TABLE IF NOT EXISTS recurring_generation_logs (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            recurring_template_id INTEGER,
            generation_date TEXT NOT NULL,
            generated_transaction_id INTEGER,
            status TEXT NOT NULL CHECK (status IN ('success', 'skipped', 'failed')),
            reason TEXT,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY (recurring_template_id) REFERENCES recurring_templates (id) ON DELETE SET NULL,
            FOREIGN KEY (generated_transaction_id) REFERENCES transactions (id) ON DELETE SET NULL
        )
    """)
    cur.execute("""
        CREATE UNIQUE INDEX IF NOT EXISTS ux_generation_logs_success
        ON recurring_generation_logs (recurring_template_id, generation_date)
        WHERE status = 'success'
    """)
    cur.execute("""
        CREATE INDEX IF NOT EXISTS ix_generation_logs_date
        ON recurring_generation_logs (generation_date)
    """)

    cur.execute("""
        CREATE TABLE IF NOT EXISTS holidays (
            date TEXT PRIMARY KEY,
            name TEXT,
            is_holiday INTEGER NOT NULL,
            source TEXT,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
    """)

    conn.commit()
    conn.close()
