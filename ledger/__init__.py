"""Recurring expense ledger: FastAPI app, storage and the generation engine."""

# Import main modules for easier access
from . import db, frequency, recurrence

__all__ = [
    'db',
    'frequency',
    'recurrence',
]
