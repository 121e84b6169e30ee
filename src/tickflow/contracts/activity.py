"""Activity log entry contract.

Entries are frozen after append. The log is the authoritative source for
"what state was this node in at time T".
"""

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from tickflow.contracts.enums import ActivityAction


@dataclass(frozen=True)
class ActivityLogEntry:
    """One observable transition of one node.

    ``sequence`` comes from a run-wide counter, so it is strictly increasing
    per node as well as globally.
    """

    sequence: int
    timestamp: float
    node_id: str
    action: ActivityAction
    state: str
    buffer_size: int = 0
    output_buffer_size: int = 0
    value: Any = None
    details: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Export with camelCase keys, as consumed by display layers."""
        return {
            "sequence": self.sequence,
            "timestamp": self.timestamp,
            "nodeId": self.node_id,
            "action": self.action.value,
            "value": self.value,
            "state": self.state,
            "bufferSize": self.buffer_size,
            "outputBufferSize": self.output_buffer_size,
            "details": self.details,
        }


def state_at(entries: Iterable[ActivityLogEntry], time: float) -> str | None:
    """Fold entries (ordered by sequence) into the state at ``time``."""
    result: str | None = None
    for entry in entries:
        if entry.timestamp > time:
            break
        result = entry.state
    return result
