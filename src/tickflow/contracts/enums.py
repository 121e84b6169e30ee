"""All kinds, phases, and actions used across subsystem boundaries.

Enums whose values appear in Scenario JSON or in persisted activity entries
use (str, Enum) so they serialize as their plain value.
"""

from enum import Enum


class NodeKind(str, Enum):
    """Type discriminator of a scenario node.

    Uses (str, Enum) because this IS the ``type`` field in Scenario JSON.
    """

    DATA_SOURCE = "DataSource"
    QUEUE = "Queue"
    PROCESS_NODE = "ProcessNode"
    FSM_PROCESS_NODE = "FSMProcessNode"
    SINK = "Sink"
    MODULE = "Module"
    GROUP = "Group"


class NodePhase(str, Enum):
    """Runtime phase of a node between and during ticks.

    Which phases a node passes through depends on its kind:
    - DataSource: idle -> generating -> emitting -> idle (or waiting)
    - Queue: idle -> accumulating -> batch_ready -> idle
    - ProcessNode: idle -> collecting -> calculating -> emitting
    - Sink: idle -> processing -> idle

    FSMProcessNodes report their current FSM state name instead.
    """

    IDLE = "idle"
    WAITING = "waiting"
    GENERATING = "generating"
    EMITTING = "emitting"
    ACCUMULATING = "accumulating"
    BATCH_READY = "batch_ready"
    COLLECTING = "collecting"
    CALCULATING = "calculating"
    PROCESSING = "processing"


class ActivityAction(str, Enum):
    """Action recorded in an activity log entry.

    Uses (str, Enum) for ledger serialization to activity_entries.action.
    """

    GENERATING = "generating"
    TOKEN_EMITTED = "token_emitted"
    TOKEN_RECEIVED = "token_received"
    ACCUMULATING = "accumulating"
    TOKEN_DROPPED = "token_dropped"
    TRIGGER_MET = "trigger_met"
    PROCESSING = "processing"
    EMITTING = "emitting"
    FIRING = "firing"
    CONSUMING = "consuming"
    TOKEN_CONSUMED = "token_consumed"
    FSM_TRANSITION = "fsm_transition"
    FSM_LOG = "fsm_log"
    MESSAGE_INTERPRETED = "message_interpreted"
    FEEDBACK_REFUSED = "feedback_refused"
    FORMULA_ERROR = "formula_error"
    ERROR = "error"


# Actions that raise a node's displayed error flag.
ERROR_ACTIONS = frozenset(
    {
        ActivityAction.FORMULA_ERROR,
        ActivityAction.ERROR,
        ActivityAction.FEEDBACK_REFUSED,
    }
)


class GenerationType(str, Enum):
    """How a DataSource produces values.

    Values:
        RANDOM: Uniform integer in [valueMin, valueMax]
        UNIFORM: Uniform float in [valueMin, valueMax]
        CONSTANT: Always ``value`` (falls back to valueMin)
    """

    RANDOM = "random"
    UNIFORM = "uniform"
    CONSTANT = "constant"


class AggregationMethod(str, Enum):
    """How a Queue combines its buffered tokens into one."""

    SUM = "sum"
    AVERAGE = "average"
    COUNT = "count"
    FIRST = "first"
    LAST = "last"
    MIN = "min"
    MAX = "max"
    CUSTOM = "custom"


class QueueTriggerType(str, Enum):
    """Primary trigger of a Queue aggregation.

    Values:
        TIME: Fire when the configured window has elapsed
        COUNT: Fire when the buffer holds ``threshold`` tokens
    """

    TIME = "time"
    COUNT = "count"


class FSMStateType(str, Enum):
    """Role of a state inside an FSM definition."""

    INITIAL = "initial"
    INTERMEDIATE = "intermediate"
    FINAL = "final"
    ERROR = "error"


class TriggerKind(str, Enum):
    """What causes an FSM transition to be considered."""

    MESSAGE = "message"
    EVENT = "event"
    TIMER = "timer"
    CONDITION = "condition"
    MANUAL = "manual"


class FSMActionKind(str, Enum):
    """Entry/exit actions an FSM state can run."""

    EMIT = "emit"
    LOG = "log"
    SET_VARIABLE = "set_variable"
    INCREMENT = "increment"
    DECREMENT = "decrement"


class EventSourceType(str, Enum):
    """Where a raw FSM event came from."""

    EXTERNAL = "external"
    INTERNAL = "internal"
    FEEDBACK = "feedback"


class InterpretationMethod(str, Enum):
    """How an interpretation rule turns an event into a message."""

    PATTERN = "pattern"
    FORMULA = "formula"
    SCRIPT = "script"
    AI = "ai"
    PASSTHROUGH = "passthrough"


class RefusalReason(str, Enum):
    """Why the feedback controller refused an emission.

    Checks run in declaration order of the first three groups:
    depth, then circuit breaker, then routing policy.
    """

    MAX_DEPTH_EXCEEDED = "max_depth_exceeded"
    CIRCUIT_BREAKER_OPEN = "circuit_breaker_open"
    FEEDBACK_DISABLED = "feedback_disabled"
    SELF_FEEDBACK_NOT_ALLOWED = "self_feedback_not_allowed"
    EXTERNAL_FEEDBACK_NOT_ALLOWED = "external_feedback_not_allowed"
    BLACKLISTED_DESTINATION = "blacklisted_destination"


class FeedbackKind(str, Enum):
    """Classification of an emission relative to the emitting node."""

    SELF = "self"
    EXTERNAL = "external"
