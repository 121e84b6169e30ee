"""Append-only activity log.

Every observable transition of every node becomes one ActivityLogEntry.
Entries are sequence-numbered from a single run-wide counter and never
mutated, so "what state was node X in at time T" can be answered from the
log alone.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Callable, Iterator
from typing import Any

from tickflow.contracts.activity import ActivityLogEntry, state_at
from tickflow.contracts.enums import ERROR_ACTIONS, ActivityAction

EntryListener = Callable[[ActivityLogEntry], None]


class ActivityLog:
    """In-memory activity log with bounded per-node and global views.

    Eviction only drops the oldest entries from the in-memory views; a
    listener (the ledger recorder) sees every entry as it is appended.
    """

    def __init__(
        self,
        *,
        max_node_entries: int = 500,
        max_global_entries: int = 1000,
    ) -> None:
        self._max_node_entries = max_node_entries
        self._by_node: dict[str, deque[ActivityLogEntry]] = {}
        self._global: deque[ActivityLogEntry] = deque(maxlen=max_global_entries)
        self._sequence = 0
        self._listeners: list[EntryListener] = []

    @property
    def last_sequence(self) -> int:
        """Sequence number of the most recent entry (0 when empty)."""
        return self._sequence

    def subscribe(self, listener: EntryListener) -> None:
        """Call ``listener`` with every entry appended from now on."""
        self._listeners.append(listener)

    def append(
        self,
        node_id: str,
        action: ActivityAction,
        *,
        timestamp: float,
        state: str,
        buffer_size: int = 0,
        output_buffer_size: int = 0,
        value: Any = None,
        details: str | None = None,
    ) -> ActivityLogEntry:
        """Append one entry and return it."""
        self._sequence += 1
        entry = ActivityLogEntry(
            sequence=self._sequence,
            timestamp=timestamp,
            node_id=node_id,
            action=action,
            state=state,
            buffer_size=buffer_size,
            output_buffer_size=output_buffer_size,
            value=value,
            details=details,
        )
        node_entries = self._by_node.get(node_id)
        if node_entries is None:
            node_entries = deque(maxlen=self._max_node_entries)
            self._by_node[node_id] = node_entries
        node_entries.append(entry)
        self._global.append(entry)
        for listener in self._listeners:
            listener(entry)
        return entry

    def entries_for(self, node_id: str) -> tuple[ActivityLogEntry, ...]:
        """Retained entries of one node, oldest first."""
        return tuple(self._by_node.get(node_id, ()))

    def entries(self) -> tuple[ActivityLogEntry, ...]:
        """Retained run-wide entries, oldest first."""
        return tuple(self._global)

    def node_ids(self) -> list[str]:
        return list(self._by_node)

    def __iter__(self) -> Iterator[ActivityLogEntry]:
        return iter(tuple(self._global))

    def __len__(self) -> int:
        return len(self._global)

    def state_at(self, node_id: str, time: float) -> str | None:
        """State of a node at simulation time ``time``.

        Returns the ``state`` of the latest entry with timestamp <= time, or
        None if the node has no entry that early.
        """
        return state_at(self.entries_for(node_id), time)

    def latest_error(self, node_id: str) -> ActivityLogEntry | None:
        """Most recent error-class entry of a node, if any."""
        for entry in reversed(self._by_node.get(node_id, ())):
            if entry.action in ERROR_ACTIONS:
                return entry
        return None

    def clear(self) -> None:
        """Drop all entries. The sequence counter keeps counting."""
        self._by_node.clear()
        self._global.clear()

    def forget(self, node_id: str) -> None:
        """Drop the per-node view of a node removed from the scenario."""
        self._by_node.pop(node_id, None)
