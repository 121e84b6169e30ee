"""Shared contracts for cross-boundary data types.

All dataclasses, enums and exceptions that cross subsystem boundaries are
defined here.

Import pattern:
    from tickflow.contracts import NodeKind, Token, ActivityLogEntry
"""

from tickflow.contracts.activity import ActivityLogEntry, state_at
from tickflow.contracts.enums import (
    ERROR_ACTIONS,
    ActivityAction,
    AggregationMethod,
    EventSourceType,
    FeedbackKind,
    FSMActionKind,
    FSMStateType,
    GenerationType,
    InterpretationMethod,
    NodeKind,
    NodePhase,
    QueueTriggerType,
    RefusalReason,
    TriggerKind,
)
from tickflow.contracts.errors import (
    CapacityError,
    ConfigError,
    FeedbackRefusal,
    FormulaError,
    FormulaEvaluationError,
    FormulaSecurityError,
    FormulaSyntaxError,
)
from tickflow.contracts.results import FeedbackDecision, InterpretationResult, TickResult
from tickflow.contracts.states import (
    DataSourceState,
    FSMProcessNodeState,
    GroupState,
    ModuleState,
    NodeState,
    ProcessNodeState,
    QueueState,
    SinkState,
)
from tickflow.contracts.tokens import FSMEvent, FSMMessage, Token

__all__ = [
    # activity
    "ActivityLogEntry",
    "state_at",
    # enums
    "ERROR_ACTIONS",
    "ActivityAction",
    "AggregationMethod",
    "EventSourceType",
    "FSMActionKind",
    "FSMStateType",
    "FeedbackKind",
    "GenerationType",
    "InterpretationMethod",
    "NodeKind",
    "NodePhase",
    "QueueTriggerType",
    "RefusalReason",
    "TriggerKind",
    # errors
    "CapacityError",
    "ConfigError",
    "FeedbackRefusal",
    "FormulaError",
    "FormulaEvaluationError",
    "FormulaSecurityError",
    "FormulaSyntaxError",
    # results
    "FeedbackDecision",
    "InterpretationResult",
    "TickResult",
    # states
    "DataSourceState",
    "FSMProcessNodeState",
    "GroupState",
    "ModuleState",
    "NodeState",
    "ProcessNodeState",
    "QueueState",
    "SinkState",
    # tokens
    "FSMEvent",
    "FSMMessage",
    "Token",
]
