# src/tickflow/core/scenario.py
"""
Scenario schema, loading and edit validation.

A Scenario is a closed set of per-node-type configuration models, tagged by
``type``. JSON keys are camelCase; Python attributes are snake_case. Models
are frozen: a running simulation never sees its configuration change in the
middle of a tick. Anything invalid is rejected at load time as ConfigError.
"""

import json
import math
import re
from collections.abc import Iterator
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator
from pydantic.alias_generators import to_camel

from tickflow.contracts.enums import (
    AggregationMethod,
    EventSourceType,
    FSMActionKind,
    FSMStateType,
    GenerationType,
    InterpretationMethod,
    NodeKind,
    QueueTriggerType,
)
from tickflow.contracts.errors import ConfigError, FormulaError

# Compiled regex for validating input aliases and variable names
_IDENTIFIER_PATTERN = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")


def _check_formula(v: str | None, what: str = "formula") -> str | None:
    """Validate formula syntax at config time."""
    if v is None:
        return v

    from tickflow.engine.expression_parser import compile_formula

    try:
        compile_formula(v)
    except FormulaError as e:
        raise ValueError(f"Invalid {what} {v!r}: {e}") from e
    return v


class ScenarioModel(BaseModel):
    """Base for every scenario model: frozen, closed, camelCase on the wire."""

    model_config = {
        "frozen": True,
        "extra": "forbid",
        "alias_generator": to_camel,
        "populate_by_name": True,
    }


# === Ports ===


class Position(ScenarioModel):
    x: float = 0.0
    y: float = 0.0


class OutputPort(ScenarioModel):
    """Outgoing edge. An empty destination is a disconnected port."""

    name: str | None = None
    destination_node_id: str = ""
    destination_input_name: str | None = None


class ProcessOutput(OutputPort):
    """Outgoing edge whose value is computed by a formula."""

    formula: str

    @field_validator("formula")
    @classmethod
    def validate_formula(cls, v: str) -> str:
        _check_formula(v)
        return v


class ProcessInput(ScenarioModel):
    """Incoming port of a ProcessNode or FSMProcessNode.

    ``alias`` is the name the port's latest token is bound to in formulas.
    """

    node_id: str = ""
    alias: str
    name: str | None = None
    required: bool = True

    @field_validator("alias")
    @classmethod
    def validate_alias(cls, v: str) -> str:
        if not _IDENTIFIER_PATTERN.match(v):
            raise ValueError(f"Input alias {v!r} must be a valid identifier")
        return v

    @property
    def key(self) -> str:
        """Buffer key: the port name when declared, else the alias."""
        return self.name or self.alias


# === Feedback ===


class CircuitBreakerConfig(ScenarioModel):
    """Rate limit on feedback events from one node."""

    enabled: bool = True
    threshold: int = Field(default=100, gt=0, description="Events per window before opening")
    time_window: float = Field(default=60.0, gt=0, description="Counting window in simulation seconds")
    cooldown_period: float = Field(default=30.0, ge=0, description="Seconds an open breaker stays open")


class RoutingPolicy(ScenarioModel):
    allow_self_feedback: bool = True
    allow_external_feedback: bool = True
    blacklisted_nodes: list[str] = Field(default_factory=list)


class FeedbackConfig(ScenarioModel):
    """Bounds on emissions that re-enter the emitting node."""

    enabled: bool = True
    max_depth: int = Field(default=10, ge=0, description="Maximum feedback hops in one causal chain")
    circuit_breaker: CircuitBreakerConfig = Field(default_factory=CircuitBreakerConfig)
    routing: RoutingPolicy = Field(default_factory=RoutingPolicy)


# === Node variants ===


class BaseNode(ScenarioModel):
    """Fields common to every node variant."""

    node_id: str = Field(min_length=1)
    display_name: str = ""
    position: Position = Field(default_factory=Position)
    tags: list[str] = Field(default_factory=list)

    @property
    def kind(self) -> NodeKind:
        return NodeKind(self.type)  # type: ignore[attr-defined]

    def output_ports(self) -> list[OutputPort]:
        """Outgoing edges; empty for kinds without outputs."""
        return list(getattr(self, "outputs", []))


class Generation(ScenarioModel):
    type: GenerationType = GenerationType.RANDOM
    value_min: float = 0.0
    value_max: float = 10.0
    value: Any = None

    @model_validator(mode="after")
    def validate_range(self) -> "Generation":
        if self.value_min > self.value_max:
            raise ValueError(
                f"valueMin ({self.value_min}) must not exceed valueMax ({self.value_max})"
            )
        if self.type == GenerationType.RANDOM and math.ceil(self.value_min) > math.floor(self.value_max):
            raise ValueError(
                f"random range [{self.value_min}, {self.value_max}] contains no integer"
            )
        return self


def _fold_destination(data: Any) -> Any:
    """Fold the single-destination shorthand into the outputs list."""
    if isinstance(data, dict) and "destinationNodeId" in data and "outputs" not in data:
        data = dict(data)
        data["outputs"] = [{"destinationNodeId": data.pop("destinationNodeId")}]
    return data


class DataSourceNode(BaseNode):
    """Generates a value every ``interval`` seconds."""

    type: Literal["DataSource"] = "DataSource"
    interval: float = Field(gt=0, description="Seconds between emissions")
    generation: Generation = Field(default_factory=Generation)
    outputs: list[OutputPort] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def fold_shorthand(cls, data: Any) -> Any:
        data = _fold_destination(data)
        if isinstance(data, dict) and ("valueMin" in data or "valueMax" in data):
            data = dict(data)
            generation = dict(data.get("generation", {}))
            for key in ("valueMin", "valueMax"):
                if key in data:
                    generation[key] = data.pop(key)
            data["generation"] = generation
        return data


class QueueTrigger(ScenarioModel):
    """When a Queue aggregates.

    A time trigger may also carry a count ``threshold``; when both are
    satisfied in the same tick the time window fires first.
    """

    type: QueueTriggerType = QueueTriggerType.TIME
    window: float | None = Field(default=None, gt=0)
    threshold: int | None = Field(default=None, gt=0)

    @model_validator(mode="after")
    def validate_trigger(self) -> "QueueTrigger":
        if self.type == QueueTriggerType.TIME and self.window is None:
            raise ValueError("time trigger requires a window")
        if self.type == QueueTriggerType.COUNT and self.threshold is None:
            raise ValueError("count trigger requires a threshold")
        return self


class Aggregation(ScenarioModel):
    method: AggregationMethod = AggregationMethod.SUM
    formula: str | None = None
    trigger: QueueTrigger

    @field_validator("formula")
    @classmethod
    def validate_formula(cls, v: str | None) -> str | None:
        return _check_formula(v, "aggregation formula")

    @model_validator(mode="after")
    def validate_custom(self) -> "Aggregation":
        if self.method == AggregationMethod.CUSTOM and not self.formula:
            raise ValueError("custom aggregation requires a formula")
        return self


class QueueNode(BaseNode):
    """Buffers tokens and emits one aggregate per trigger."""

    type: Literal["Queue"] = "Queue"
    aggregation: Aggregation
    capacity: int | None = Field(default=None, gt=0, description="Buffer limit; None is unbounded")
    outputs: list[OutputPort] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def fold_shorthand(cls, data: Any) -> Any:
        data = _fold_destination(data)
        if isinstance(data, dict) and "timeWindow" in data and "aggregation" not in data:
            data = dict(data)
            data["aggregation"] = {
                "method": data.pop("aggregationMethod", "sum"),
                "trigger": {"type": "time", "window": data.pop("timeWindow")},
            }
        return data


class ProcessNode(BaseNode):
    """Evaluates one formula per output once all required inputs are present."""

    type: Literal["ProcessNode"] = "ProcessNode"
    inputs: list[ProcessInput] = Field(default_factory=list)
    outputs: list[ProcessOutput] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_inputs(self) -> "ProcessNode":
        _check_unique([i.alias for i in self.inputs], "input alias")
        _check_unique([i.key for i in self.inputs], "input name")
        return self


# === FSM definition ===


class FSMAction(ScenarioModel):
    """A state entry/exit action."""

    action: FSMActionKind
    target: str | None = None
    formula: str | None = None
    value: Any = None

    @field_validator("formula")
    @classmethod
    def validate_formula(cls, v: str | None) -> str | None:
        return _check_formula(v, "action formula")

    @model_validator(mode="after")
    def validate_target(self) -> "FSMAction":
        if self.action != FSMActionKind.LOG and not self.target:
            raise ValueError(f"{self.action.value} action requires a target")
        return self


class FSMStateDef(ScenarioModel):
    id: str | None = None
    name: str = Field(min_length=1)
    type: FSMStateType = FSMStateType.INTERMEDIATE
    on_entry: list[FSMAction] = Field(default_factory=list)
    on_exit: list[FSMAction] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def accept_actions_alias(cls, data: Any) -> Any:
        if isinstance(data, dict) and "actions" in data and "onEntry" not in data:
            data = dict(data)
            data["onEntry"] = data.pop("actions")
        return data


class MessageTrigger(ScenarioModel):
    type: Literal["message"] = "message"
    message_type: str
    condition: str | None = None

    @field_validator("condition")
    @classmethod
    def validate_condition(cls, v: str | None) -> str | None:
        return _check_formula(v, "condition")


class EventTrigger(ScenarioModel):
    type: Literal["event"] = "event"
    event_type: str
    condition: str | None = None

    @field_validator("condition")
    @classmethod
    def validate_condition(cls, v: str | None) -> str | None:
        return _check_formula(v, "condition")


class TimerTrigger(ScenarioModel):
    type: Literal["timer"] = "timer"
    timeout: float = Field(gt=0, description="Seconds in the source state before firing")


class ConditionTrigger(ScenarioModel):
    type: Literal["condition"] = "condition"
    condition: str

    @field_validator("condition")
    @classmethod
    def validate_condition(cls, v: str) -> str:
        _check_formula(v, "condition")
        return v


class ManualTrigger(ScenarioModel):
    type: Literal["manual"] = "manual"
    label: str | None = None


TransitionTrigger = Annotated[
    Union[MessageTrigger, EventTrigger, TimerTrigger, ConditionTrigger, ManualTrigger],
    Field(discriminator="type"),
]


class FSMTransition(ScenarioModel):
    """Edge of the state machine.

    A bare string trigger is shorthand for a message trigger. The older
    ``token_received``/``condition``/``timer`` string forms are converted to
    their typed equivalents.
    """

    id: str | None = None
    from_state: str = Field(alias="from")
    to: str
    trigger: TransitionTrigger
    priority: int = 100

    @model_validator(mode="before")
    @classmethod
    def expand_string_trigger(cls, data: Any) -> Any:
        if not isinstance(data, dict) or not isinstance(data.get("trigger"), str):
            return data
        data = dict(data)
        trigger = data.pop("trigger")
        if trigger == "token_received":
            data["trigger"] = {"type": "event", "eventType": trigger, "condition": data.pop("condition", None)}
        elif trigger == "condition":
            data["trigger"] = {"type": "condition", "condition": data.pop("condition", "")}
        elif trigger == "timer":
            data["trigger"] = {"type": "timer", "timeout": data.pop("timeout", 5)}
        elif trigger == "manual":
            data["trigger"] = {"type": "manual"}
        else:
            data["trigger"] = {"type": "message", "messageType": trigger, "condition": data.pop("condition", None)}
        return data

    def describe_trigger(self) -> str:
        """Short human form used in fsm_transition details."""
        trig = self.trigger
        if isinstance(trig, MessageTrigger):
            return trig.message_type
        if isinstance(trig, EventTrigger):
            return trig.event_type
        if isinstance(trig, TimerTrigger):
            return f"timer {trig.timeout:g}s"
        if isinstance(trig, ConditionTrigger):
            return f"condition {trig.condition}"
        return f"manual {trig.label}" if trig.label else "manual"


class InterpretationConditions(ScenarioModel):
    """Which events a rule applies to. Empty lists match everything."""

    event_types: list[str] = Field(default_factory=list)
    source_types: list[EventSourceType] = Field(default_factory=list)
    event_pattern: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("event_pattern")
    @classmethod
    def validate_pattern(cls, v: str | None) -> str | None:
        if v is not None:
            try:
                re.compile(v)
            except re.error as e:
                raise ValueError(f"Invalid eventPattern {v!r}: {e}") from e
        return v


class PatternSpec(ScenarioModel):
    pattern: str
    message_type: str
    extract_fields: dict[str, str] = Field(default_factory=dict)

    @field_validator("pattern")
    @classmethod
    def validate_pattern(cls, v: str) -> str:
        try:
            re.compile(v)
        except re.error as e:
            raise ValueError(f"Invalid pattern {v!r}: {e}") from e
        return v


class InterpretationRule(ScenarioModel):
    """Converts a raw event into a structured message."""

    id: str = Field(min_length=1)
    name: str = ""
    enabled: bool = True
    priority: int = 0
    conditions: InterpretationConditions = Field(default_factory=InterpretationConditions)
    method: InterpretationMethod
    message_type: str | None = None
    patterns: list[PatternSpec] = Field(default_factory=list)
    formula: str | None = None
    script: str | None = None
    field_mapping: dict[str, str] = Field(default_factory=dict)
    prompt: str | None = None
    confidence_threshold: float = Field(default=0.0, ge=0.0, le=1.0)
    template: dict[str, str] = Field(default_factory=dict)

    @field_validator("formula")
    @classmethod
    def validate_formula(cls, v: str | None) -> str | None:
        return _check_formula(v, "interpretation formula")

    @model_validator(mode="after")
    def validate_method(self) -> "InterpretationRule":
        if self.method == InterpretationMethod.PATTERN and not self.patterns:
            raise ValueError(f"pattern rule {self.id!r} requires patterns")
        if self.method == InterpretationMethod.FORMULA and not self.formula:
            raise ValueError(f"formula rule {self.id!r} requires a formula")
        if self.method == InterpretationMethod.SCRIPT:
            if not self.script:
                raise ValueError(f"script rule {self.id!r} requires a script")
            from tickflow.engine.interpretation import parse_script

            try:
                parse_script(self.script)
            except FormulaError as e:
                raise ValueError(f"Invalid script in rule {self.id!r}: {e}") from e
        return self


class FSMDefinition(ScenarioModel):
    """Canonical in-memory state machine.

    JSON (this model) and FSL text are both codecs of this one type.
    """

    states: list[FSMStateDef] = Field(min_length=1)
    transitions: list[FSMTransition] = Field(default_factory=list)
    initial_state: str | None = None
    variables: dict[str, Any] = Field(default_factory=dict)
    interpretation_rules: list[InterpretationRule] = Field(default_factory=list)
    feedback_config: FeedbackConfig | None = Field(
        default=None,
        description="Feedback bounds for this node; None uses the run-wide default",
    )

    @model_validator(mode="after")
    def validate_references(self) -> "FSMDefinition":
        _check_unique([s.name for s in self.states], "state name")
        _check_unique([r.id for r in self.interpretation_rules], "interpretation rule id")
        problems = []
        if self.initial_state is not None and self.resolve_state(self.initial_state) is None:
            problems.append(f"initialState {self.initial_state!r} is not a declared state")
        for t in self.transitions:
            for ref in (t.from_state, t.to):
                if self.resolve_state(ref) is None:
                    problems.append(f"transition {t.from_state!r} -> {t.to!r} references unknown state {ref!r}")
        if problems:
            raise ValueError("; ".join(problems))
        return self

    def resolve_state(self, ref: str) -> FSMStateDef | None:
        """Find a state by id, then by name."""
        for state in self.states:
            if state.id == ref:
                return state
        for state in self.states:
            if state.name == ref:
                return state
        return None

    @property
    def entry_state(self) -> FSMStateDef:
        """The state a fresh runtime starts in.

        Explicit ``initialState`` wins, then the first state typed initial,
        then a state named ``idle``, then the first declared state.
        """
        if self.initial_state is not None:
            state = self.resolve_state(self.initial_state)
            if state is not None:
                return state
        for state in self.states:
            if state.type == FSMStateType.INITIAL:
                return state
        return self.resolve_state("idle") or self.states[0]

    def emit_targets(self) -> list[str]:
        """Output names referenced by emit actions, in first-seen order."""
        seen: dict[str, None] = {}
        for state in self.states:
            for action in (*state.on_entry, *state.on_exit):
                if action.action == FSMActionKind.EMIT and action.target:
                    seen.setdefault(action.target, None)
        return list(seen)


class EventInputDef(ScenarioModel):
    name: str
    required: bool = False
    buffer_size: int = Field(default=1000, gt=0)
    event_types: list[str] = Field(default_factory=list)


class MessageInputDef(ScenarioModel):
    name: str
    required: bool = False
    buffer_size: int = Field(default=100, gt=0)
    message_types: list[str] = Field(default_factory=list)


class FSMProcessNode(BaseNode):
    """Runs an FSMDefinition against arriving tokens, timers and conditions."""

    type: Literal["FSMProcessNode"] = "FSMProcessNode"
    fsm: FSMDefinition
    inputs: list[ProcessInput] = Field(default_factory=list)
    event_inputs: list[EventInputDef] = Field(default_factory=list)
    message_inputs: list[MessageInputDef] = Field(default_factory=list)
    outputs: list[OutputPort] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_ports(self) -> "FSMProcessNode":
        _check_unique([o.name for o in self.outputs if o.name], "output name")
        _check_unique([i.alias for i in self.inputs], "input alias")
        return self

    def buffer_limit(self, input_name: str) -> int | None:
        """Configured buffer size of a named event/message input."""
        for spec in (*self.event_inputs, *self.message_inputs):
            if spec.name == input_name:
                return spec.buffer_size
        return None


class SinkNode(BaseNode):
    """Terminal consumer."""

    type: Literal["Sink"] = "Sink"


class ModuleInputPort(ScenarioModel):
    """External input forwarded to an inner node."""

    name: str
    node_id: str
    input_name: str | None = None


class ModuleOutputPort(ScenarioModel):
    """External output fed by inner emissions addressed to the module."""

    name: str
    destination_node_id: str = ""
    destination_input_name: str | None = None


class ModuleNode(BaseNode):
    """Wraps an inner sub-graph behind declared input and output ports."""

    type: Literal["Module"] = "Module"
    nodes: list["Node"] = Field(default_factory=list)
    inputs: list[ModuleInputPort] = Field(default_factory=list)
    outputs: list[ModuleOutputPort] = Field(default_factory=list)

    def output_ports(self) -> list[OutputPort]:
        return [
            OutputPort(
                name=port.name,
                destination_node_id=port.destination_node_id,
                destination_input_name=port.destination_input_name,
            )
            for port in self.outputs
        ]


class GroupNode(BaseNode):
    """Organizational container; never routable, never evaluated."""

    type: Literal["Group"] = "Group"
    contained_nodes: list[str] = Field(default_factory=list)
    group_tag: str | None = None


Node = Annotated[
    Union[
        DataSourceNode,
        QueueNode,
        ProcessNode,
        FSMProcessNode,
        SinkNode,
        ModuleNode,
        GroupNode,
    ],
    Field(discriminator="type"),
]

ModuleNode.model_rebuild()


def _check_unique(values: list[str], what: str) -> None:
    seen: set[str] = set()
    dupes: set[str] = set()
    for v in values:
        if v in seen:
            dupes.add(v)
        seen.add(v)
    if dupes:
        raise ValueError(f"Duplicate {what}(s): {sorted(dupes)}")


def iter_references(node: BaseNode) -> Iterator[tuple[str, str, bool]]:
    """Yield (field, referenced node ID, is_destination) for a node's edges."""
    for i, port in enumerate(node.output_ports()):
        yield f"outputs[{i}].destinationNodeId", port.destination_node_id, True
    for i, inp in enumerate(getattr(node, "inputs", [])):
        if isinstance(inp, ProcessInput):
            yield f"inputs[{i}].nodeId", inp.node_id, False
    if isinstance(node, GroupNode):
        for i, member in enumerate(node.contained_nodes):
            yield f"containedNodes[{i}]", member, False


def _validate_graph(nodes: list[BaseNode], *, scope: str, enclosing: str | None = None) -> list[str]:
    """Check ID uniqueness and edge targets for one graph level."""
    problems: list[str] = []
    by_id: dict[str, BaseNode] = {}
    for node in nodes:
        if node.node_id in by_id:
            problems.append(f"{scope}: duplicate nodeId {node.node_id!r}")
        by_id[node.node_id] = node

    for node in nodes:
        for field_name, ref, is_destination in iter_references(node):
            if not ref:
                continue  # disconnected port
            where = f"{scope}{node.node_id}.{field_name}"
            if ref == enclosing:
                continue  # module port
            target = by_id.get(ref)
            if target is None:
                problems.append(f"{where}: references unknown node {ref!r}")
            elif is_destination and target.kind == NodeKind.GROUP:
                problems.append(f"{where}: Group {ref!r} is not a routable destination")
            elif is_destination and target.kind == NodeKind.DATA_SOURCE:
                problems.append(f"{where}: DataSource {ref!r} accepts no inputs")

        if isinstance(node, ModuleNode):
            inner_ids = {n.node_id for n in node.nodes}
            for port in node.inputs:
                if port.node_id not in inner_ids:
                    problems.append(
                        f"{scope}{node.node_id}.inputs[{port.name}]: unknown inner node {port.node_id!r}"
                    )
            problems.extend(
                _validate_graph(node.nodes, scope=f"{scope}{node.node_id}/", enclosing=node.node_id)
            )
    return problems


class Scenario(ScenarioModel):
    """The engine's sole configuration input."""

    version: int | str = 1
    nodes: list[Node] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_graph(self) -> "Scenario":
        problems = _validate_graph(self.nodes, scope="")
        if problems:
            raise ValueError("; ".join(problems))
        return self

    def node_ids(self) -> list[str]:
        return [node.node_id for node in self.nodes]

    def get_node(self, node_id: str) -> BaseNode:
        """Look up a top-level node.

        Raises:
            KeyError: If the node does not exist
        """
        for node in self.nodes:
            if node.node_id == node_id:
                return node
        raise KeyError(f"Node not found: {node_id}")


# === Loading and edits ===


def _config_error(e: ValidationError, prefix: str) -> ConfigError:
    lines = []
    for error in e.errors():
        loc = ".".join(str(x) for x in error["loc"])
        lines.append(f"{loc}: {error['msg']}" if loc else error["msg"])
    return ConfigError(f"{prefix}: " + "; ".join(lines), errors=lines)


def scenario_from_dict(data: Any) -> Scenario:
    """Validate an already-decoded scenario document.

    Raises:
        ConfigError: If the document is not a valid Scenario
    """
    try:
        return Scenario.model_validate(data)
    except ValidationError as e:
        raise _config_error(e, "Invalid scenario") from e


def load_scenario(text: str | bytes) -> Scenario:
    """Parse and validate Scenario JSON.

    Raises:
        ConfigError: If the JSON is malformed or the scenario is invalid
    """
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise ConfigError(f"Malformed scenario JSON: {e}") from e
    return scenario_from_dict(data)


def scenario_to_dict(scenario: Scenario) -> dict[str, Any]:
    """JSON-mode dict with camelCase keys."""
    return scenario.model_dump(mode="json", by_alias=True, exclude_none=True)


def dump_scenario(scenario: Scenario, *, indent: int | None = 2) -> str:
    """Serialize a Scenario to (pretty-printed) JSON."""
    return json.dumps(scenario_to_dict(scenario), indent=indent)


def apply_scenario_edit(current: Scenario, text: str | bytes) -> Scenario:
    """Validate an edited copy of the current scenario's JSON.

    The edit may change any configuration except node identity: the edited
    document must list the same nodeIds in the same positions. ``current``
    is never modified.

    Raises:
        ConfigError: If the edit is malformed, invalid, or changes a nodeId
    """
    edited = load_scenario(text)
    before, after = current.node_ids(), edited.node_ids()
    if len(before) != len(after):
        raise ConfigError(
            f"Edit changes the node set ({len(before)} nodes before, {len(after)} after); "
            "nodeIds cannot be added or removed through an edit"
        )
    renamed = [f"{old!r} -> {new!r}" for old, new in zip(before, after, strict=True) if old != new]
    if renamed:
        raise ConfigError("Edit changes nodeId: " + ", ".join(renamed), errors=renamed)
    return edited


def apply_node_edit(current: Scenario, node_id: str, text: str | bytes) -> Scenario:
    """Replace one node's configuration from its edited JSON.

    Raises:
        ConfigError: If the JSON is malformed, the nodeId changed, or the
            resulting scenario is invalid
        KeyError: If ``node_id`` is not in the scenario
    """
    current.get_node(node_id)
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise ConfigError(f"Malformed node JSON: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError("Node JSON must be an object")
    new_id = data.get("nodeId", data.get("node_id"))
    if new_id != node_id:
        raise ConfigError(f"Edit changes nodeId: {node_id!r} -> {new_id!r}")

    document = scenario_to_dict(current)
    document["nodes"] = [
        data if node["nodeId"] == node_id else node for node in document["nodes"]
    ]
    return scenario_from_dict(document)
