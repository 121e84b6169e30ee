"""Token and FSM event/message value objects.

Tokens are immutable once emitted. Buffers own them; a node that derives a
new value creates a new Token whose ``parent_ids`` point at its inputs.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any

from tickflow.contracts.enums import EventSourceType


@dataclass(frozen=True)
class Token:
    """An immutable unit of data flowing along a graph edge.

    Attributes:
        token_id: Unique, deterministic identifier within a run
        value: Primary scalar value (``data.value`` in formulas)
        origin_node_id: Node that emitted the token
        emitted_at: Simulation time of emission
        payload: Richer structured payload (merged into ``data``)
        parent_ids: Token IDs this token was derived from
        generation: 0 for generated tokens, +1 per derivation
        feedback_depth: Number of feedback hops in the causal chain
        destination_input: Named input port on the destination, if any
    """

    token_id: str
    value: Any
    origin_node_id: str
    emitted_at: float
    payload: dict[str, Any] = field(default_factory=dict)
    parent_ids: tuple[str, ...] = ()
    generation: int = 0
    feedback_depth: int = 0
    destination_input: str | None = None

    def data(self) -> dict[str, Any]:
        """Return the ``data`` view used in formula bindings."""
        return {**self.payload, "value": self.value}

    def addressed_to(self, input_name: str | None, feedback_depth: int) -> Token:
        """Return a copy routed to a specific input port."""
        return replace(
            self,
            destination_input=input_name or None,
            feedback_depth=feedback_depth,
        )


@dataclass(frozen=True)
class FSMEvent:
    """A raw event offered to an FSM node before interpretation."""

    event_id: str
    type: str
    timestamp: float
    raw_data: Any
    source_type: EventSourceType = EventSourceType.EXTERNAL
    metadata: dict[str, Any] = field(default_factory=dict)
    input_name: str | None = None
    token: Token | None = None

    def as_binding(self) -> dict[str, Any]:
        """Mapping view used by formulas and templates."""
        return {
            "id": self.event_id,
            "type": self.type,
            "timestamp": self.timestamp,
            "rawData": self.raw_data,
            "sourceType": self.source_type.value,
            "metadata": dict(self.metadata),
        }


@dataclass(frozen=True)
class FSMMessage:
    """A structured message produced by an interpretation rule."""

    message_id: str
    type: str
    timestamp: float
    payload: dict[str, Any] = field(default_factory=dict)
    source_event_id: str | None = None
    interpretation_rule_id: str | None = None
    confidence: float = 1.0

    def as_binding(self) -> dict[str, Any]:
        """Mapping view used by formulas and templates."""
        return {
            "id": self.message_id,
            "type": self.type,
            "timestamp": self.timestamp,
            "payload": dict(self.payload),
            "sourceEventId": self.source_event_id,
            "interpretationRuleId": self.interpretation_rule_id,
            "confidence": self.confidence,
        }
