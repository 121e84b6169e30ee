# src/tickflow/core/ledger/models.py
"""Dataclass models for ledger rows."""

from dataclasses import dataclass
from datetime import datetime


@dataclass
class Run:
    """A single recorded simulation run."""

    run_id: str
    started_at: datetime
    scenario_hash: str
    scenario_json: str
    settings_json: str
    canonical_version: str
    status: str  # running, completed, failed
    completed_at: datetime | None = None
    tick_count: int | None = None
    final_time: float | None = None
