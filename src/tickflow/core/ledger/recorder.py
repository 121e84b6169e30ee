# src/tickflow/core/ledger/recorder.py
"""LedgerRecorder: High-level API for persisting simulation runs.

The in-memory activity log is bounded; the ledger keeps every entry of a
recorded run so any node's state at any time can be answered afterwards.
"""

import json
import uuid
from collections.abc import Iterable
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import func, select

from tickflow.contracts.activity import ActivityLogEntry, state_at
from tickflow.contracts.enums import ActivityAction
from tickflow.core.canonical import CANONICAL_VERSION, canonical_json, stable_hash, to_json_safe
from tickflow.core.config import EngineSettings, resolve_config
from tickflow.core.ledger.database import LedgerDB
from tickflow.core.ledger.models import Run
from tickflow.core.ledger.schema import activity_entries_table, runs_table
from tickflow.core.scenario import Scenario, scenario_to_dict


def _now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


def _generate_id() -> str:
    """Generate a unique ID."""
    return uuid.uuid4().hex


def _encode_value(value: Any) -> str | None:
    if value is None:
        return None
    try:
        return json.dumps(to_json_safe(value))
    except (TypeError, ValueError):
        # Non-finite floats and opaque objects are kept as their repr
        return json.dumps(repr(value))


class LedgerRecorder:
    """High-level API for recording runs and their activity.

    Example:
        db = LedgerDB()
        recorder = LedgerRecorder(db)

        run = recorder.begin_run(scenario, settings)
        scheduler.activity_log.subscribe(lambda e: recorder.record_entries(run.run_id, [e]))
        scheduler.run(100)
        recorder.complete_run(run.run_id, "completed", tick_count=100, final_time=100.0)
    """

    def __init__(self, db: LedgerDB) -> None:
        self._db = db

    # === Run Management ===

    def begin_run(
        self,
        scenario: Scenario,
        settings: EngineSettings,
        *,
        run_id: str | None = None,
    ) -> Run:
        """Begin a new run.

        The scenario hash is stable: identical scenarios share it.
        """
        scenario_data = scenario_to_dict(scenario)
        run = Run(
            run_id=run_id or _generate_id(),
            started_at=_now(),
            scenario_hash=stable_hash(scenario_data),
            scenario_json=canonical_json(scenario_data),
            settings_json=canonical_json(resolve_config(settings)),
            canonical_version=CANONICAL_VERSION,
            status="running",
        )

        with self._db.connection() as conn:
            conn.execute(
                runs_table.insert().values(
                    run_id=run.run_id,
                    started_at=run.started_at,
                    scenario_hash=run.scenario_hash,
                    scenario_json=run.scenario_json,
                    settings_json=run.settings_json,
                    canonical_version=run.canonical_version,
                    status=run.status,
                )
            )

        return run

    def complete_run(
        self,
        run_id: str,
        status: str,
        *,
        tick_count: int | None = None,
        final_time: float | None = None,
    ) -> Run:
        """Mark a run finished.

        Args:
            run_id: Run to complete
            status: Final status (completed, failed)
            tick_count: Ticks executed
            final_time: Simulation time at completion

        Raises:
            KeyError: If the run does not exist
        """
        with self._db.connection() as conn:
            conn.execute(
                runs_table.update()
                .where(runs_table.c.run_id == run_id)
                .values(
                    status=status,
                    completed_at=_now(),
                    tick_count=tick_count,
                    final_time=final_time,
                )
            )

        run = self.get_run(run_id)
        if run is None:
            raise KeyError(f"Unknown run: {run_id}")
        return run

    def get_run(self, run_id: str) -> Run | None:
        """Get a run by ID, or None if not found."""
        with self._db.connection() as conn:
            row = conn.execute(select(runs_table).where(runs_table.c.run_id == run_id)).fetchone()

        if row is None:
            return None

        return Run(
            run_id=row.run_id,
            started_at=row.started_at,
            completed_at=row.completed_at,
            scenario_hash=row.scenario_hash,
            scenario_json=row.scenario_json,
            settings_json=row.settings_json,
            canonical_version=row.canonical_version,
            status=row.status,
            tick_count=row.tick_count,
            final_time=row.final_time,
        )

    def list_runs(self) -> list[Run]:
        """All runs, oldest first."""
        with self._db.connection() as conn:
            ids = conn.execute(select(runs_table.c.run_id).order_by(runs_table.c.started_at)).scalars().all()
        return [run for run in (self.get_run(run_id) for run_id in ids) if run is not None]

    # === Activity ===

    def record_entries(self, run_id: str, entries: Iterable[ActivityLogEntry]) -> int:
        """Append activity entries to a run.

        Returns:
            Number of entries written
        """
        rows = [
            {
                "run_id": run_id,
                "sequence": entry.sequence,
                "timestamp": entry.timestamp,
                "node_id": entry.node_id,
                "action": entry.action.value,
                "state": entry.state,
                "buffer_size": entry.buffer_size,
                "output_buffer_size": entry.output_buffer_size,
                "value_json": _encode_value(entry.value),
                "details": entry.details,
            }
            for entry in entries
        ]
        if not rows:
            return 0
        with self._db.connection() as conn:
            conn.execute(activity_entries_table.insert(), rows)
        return len(rows)

    def count_entries(self, run_id: str) -> int:
        with self._db.connection() as conn:
            return int(
                conn.execute(
                    select(func.count())
                    .select_from(activity_entries_table)
                    .where(activity_entries_table.c.run_id == run_id)
                ).scalar_one()
            )

    def get_entries(
        self,
        run_id: str,
        *,
        node_id: str | None = None,
        until: float | None = None,
    ) -> list[ActivityLogEntry]:
        """Entries of a run in sequence order.

        Args:
            run_id: Run to read
            node_id: Restrict to one node
            until: Only entries with timestamp <= until
        """
        query = select(activity_entries_table).where(activity_entries_table.c.run_id == run_id)
        if node_id is not None:
            query = query.where(activity_entries_table.c.node_id == node_id)
        if until is not None:
            query = query.where(activity_entries_table.c.timestamp <= until)
        query = query.order_by(activity_entries_table.c.sequence)

        with self._db.connection() as conn:
            rows = conn.execute(query).fetchall()

        return [
            ActivityLogEntry(
                sequence=row.sequence,
                timestamp=row.timestamp,
                node_id=row.node_id,
                action=ActivityAction(row.action),
                state=row.state,
                buffer_size=row.buffer_size,
                output_buffer_size=row.output_buffer_size,
                value=json.loads(row.value_json) if row.value_json is not None else None,
                details=row.details,
            )
            for row in rows
        ]

    def state_at(self, run_id: str, node_id: str, time: float) -> str | None:
        """State of a node at simulation time ``time`` in a recorded run."""
        return state_at(self.get_entries(run_id, node_id=node_id, until=time), time)
