# src/tickflow/core/ledger/schema.py
"""SQLAlchemy table definitions for the run ledger.

Uses SQLAlchemy Core (not ORM) for explicit control over queries
and compatibility with multiple database backends.
"""

from sqlalchemy import (
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
)

# Shared metadata for all tables
metadata = MetaData()

# === Runs ===

runs_table = Table(
    "runs",
    metadata,
    Column("run_id", String(64), primary_key=True),
    Column("started_at", DateTime(timezone=True), nullable=False),
    Column("completed_at", DateTime(timezone=True)),
    Column("scenario_hash", String(64), nullable=False),
    Column("scenario_json", Text, nullable=False),
    Column("settings_json", Text, nullable=False),
    Column("canonical_version", String(64), nullable=False),
    Column("status", String(32), nullable=False),
    Column("tick_count", Integer),
    Column("final_time", Float),
)

# === Activity Entries ===

activity_entries_table = Table(
    "activity_entries",
    metadata,
    Column("entry_id", Integer, primary_key=True, autoincrement=True),
    Column("run_id", String(64), ForeignKey("runs.run_id"), nullable=False),
    Column("sequence", Integer, nullable=False),
    Column("timestamp", Float, nullable=False),
    Column("node_id", String(256), nullable=False),
    Column("action", String(32), nullable=False),
    Column("state", String(64), nullable=False),
    Column("buffer_size", Integer, nullable=False),
    Column("output_buffer_size", Integer, nullable=False),
    Column("value_json", Text),
    Column("details", Text),
    UniqueConstraint("run_id", "sequence"),
)

Index("ix_activity_entries_node", activity_entries_table.c.run_id, activity_entries_table.c.node_id)
