"""Runtime-only node state, one dataclass per node kind.

States are created when a node enters the simulation, mutated only by that
node's runtime during scheduler ticks, and discarded when the node leaves the
scenario. They never appear in Scenario JSON.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Any, ClassVar

from tickflow.contracts.enums import NodeKind, NodePhase
from tickflow.contracts.tokens import FSMEvent, Token


@dataclass
class NodeState:
    """Fields every node kind carries."""

    kind: ClassVar[NodeKind]

    node_id: str
    phase: str = NodePhase.IDLE.value
    error: str | None = None

    def buffer_size(self) -> int:
        return 0

    def output_buffer_size(self) -> int:
        return 0


@dataclass
class DataSourceState(NodeState):
    kind: ClassVar[NodeKind] = NodeKind.DATA_SOURCE

    last_emission_time: float = -1
    emitted_count: int = 0


@dataclass
class QueueState(NodeState):
    kind: ClassVar[NodeKind] = NodeKind.QUEUE

    input_buffer: list[Token] = field(default_factory=list)
    output_buffer: list[Token] = field(default_factory=list)
    last_aggregation_time: float = -1
    dropped_count: int = 0
    aggregated_count: int = 0

    def buffer_size(self) -> int:
        return len(self.input_buffer)

    def output_buffer_size(self) -> int:
        return len(self.output_buffer)


@dataclass
class ProcessNodeState(NodeState):
    kind: ClassVar[NodeKind] = NodeKind.PROCESS_NODE

    input_buffers: dict[str, list[Token]] = field(default_factory=dict)
    last_fired_time: float = -1
    fired_count: int = 0

    def buffer_size(self) -> int:
        return sum(len(tokens) for tokens in self.input_buffers.values())


@dataclass
class FSMProcessNodeState(NodeState):
    kind: ClassVar[NodeKind] = NodeKind.FSM_PROCESS_NODE

    current_fsm_state: str = ""
    fsm_variables: dict[str, Any] = field(default_factory=dict)
    input_buffers: dict[str, list[Token]] = field(default_factory=dict)
    pending_events: list[FSMEvent] = field(default_factory=list)
    pending_manual: list[str] = field(default_factory=list)
    state_entered_at: float = 0
    last_transition_time: float = -1
    # Output port name -> (destination node ID, destination input name)
    outputs: dict[str, tuple[str, str | None]] = field(default_factory=dict)

    def buffer_size(self) -> int:
        return len(self.pending_events)


@dataclass
class SinkState(NodeState):
    kind: ClassVar[NodeKind] = NodeKind.SINK

    consumed_token_count: int = 0
    last_consumed_time: float = -1
    consumed_tokens: deque[Token] = field(default_factory=lambda: deque(maxlen=50))

    def buffer_size(self) -> int:
        return len(self.consumed_tokens)


@dataclass
class ModuleState(NodeState):
    kind: ClassVar[NodeKind] = NodeKind.MODULE

    input_buffers: dict[str, list[Token]] = field(default_factory=dict)
    output_buffers: dict[str, list[Token]] = field(default_factory=dict)
    sub_graph_states: dict[str, NodeState] = field(default_factory=dict)
    processed_token_count: int = 0

    def buffer_size(self) -> int:
        return sum(len(tokens) for tokens in self.input_buffers.values())

    def output_buffer_size(self) -> int:
        return sum(len(tokens) for tokens in self.output_buffers.values())


@dataclass
class GroupState(NodeState):
    kind: ClassVar[NodeKind] = NodeKind.GROUP

    member_ids: tuple[str, ...] = ()
