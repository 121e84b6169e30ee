"""Ledger: persistent record of simulation runs and their activity."""

from tickflow.core.ledger.database import LedgerDB
from tickflow.core.ledger.models import Run
from tickflow.core.ledger.recorder import LedgerRecorder
from tickflow.core.ledger.schema import activity_entries_table, metadata, runs_table

__all__ = [
    "LedgerDB",
    "LedgerRecorder",
    "Run",
    "activity_entries_table",
    "metadata",
    "runs_table",
]
