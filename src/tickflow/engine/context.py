"""Simulation context: the explicit per-run state handed to every runtime.

One context exists per graph level. The top-level context belongs to the
Scheduler; each Module owns a child context over its inner nodes that shares
the clock, activity log, random generator and feedback controller with its
parent but has its own graph, states and outbox.

Delivery is double-buffered. Runtimes call ``emit()`` during evaluation,
which only stages the token; ``commit()`` runs after every node has been
evaluated and hands staged tokens to their destination runtimes. A token
emitted in tick N is therefore never seen by a destination's evaluation
before tick N+1, whatever the evaluation order.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import numpy as np

from tickflow.contracts.enums import ERROR_ACTIONS, ActivityAction
from tickflow.contracts.errors import FeedbackRefusal, FormulaError
from tickflow.contracts.states import NodeState
from tickflow.contracts.tokens import Token
from tickflow.core.config import EngineSettings
from tickflow.core.dag import ScenarioGraph
from tickflow.core.logging import get_logger
from tickflow.core.scenario import BaseNode, FSMDefinition, ModuleNode, OutputPort
from tickflow.engine.activity_log import ActivityLog
from tickflow.engine.clock import SimulationClock
from tickflow.engine.feedback import FeedbackLoopController
from tickflow.engine.fsm import FSMEngine
from tickflow.engine.interpretation import InterpretationClient, InterpretationEngine

if TYPE_CHECKING:
    from tickflow.plugins.manager import RuntimeRegistry

logger = get_logger(__name__)


@dataclass(frozen=True)
class Delivery:
    """A staged token waiting for commit."""

    destination: str
    token: Token
    feedback: bool = False


class SimulationContext:
    """Graph, states and shared services for one graph level."""

    def __init__(
        self,
        nodes: Sequence[BaseNode],
        *,
        clock: SimulationClock,
        log: ActivityLog,
        rng: np.random.Generator,
        feedback: FeedbackLoopController,
        settings: EngineSettings,
        registry: RuntimeRegistry,
        client: InterpretationClient | None = None,
        prefix: str = "",
        exit_id: str | None = None,
    ) -> None:
        self.clock = clock
        self.activity_log = log
        self.rng = rng
        self.feedback = feedback
        self.settings = settings
        self.registry = registry
        self.client = client
        self.prefix = prefix
        self.exit_id = exit_id

        self.configs: dict[str, BaseNode] = {node.node_id: node for node in nodes}
        self.graph = ScenarioGraph.from_nodes(list(nodes), enclosing=exit_id)
        self.order = self.graph.evaluation_order()
        self.states: dict[str, NodeState] = {}

        self._outbox: list[Delivery] = []
        self._exits: list[Token] = []
        self._token_counters: dict[str, int] = {}
        self._children: dict[str, SimulationContext] = {}
        self._fsm_cache: dict[str, tuple[FSMDefinition, FSMEngine, InterpretationEngine]] = {}

    # === Lifecycle ===

    @property
    def now(self) -> float:
        return self.clock.current_time

    def qualify(self, node_id: str) -> str:
        """Run-wide ID of a node at this level (``module/inner`` inside modules)."""
        return f"{self.prefix}{node_id}"

    def initialize(self, previous: SimulationContext | None = None) -> None:
        """Create states for every node.

        Nodes whose configuration is unchanged from ``previous`` keep their
        state (and, for modules, their whole inner context); everything else
        starts fresh. Nodes that disappeared are forgotten by the feedback
        controller.
        """
        for node_id, config in self.configs.items():
            if previous is not None and previous.configs.get(node_id) == config and node_id in previous.states:
                self.states[node_id] = previous.states[node_id]
                self._token_counters[node_id] = previous._token_counters.get(node_id, 0)
                if node_id in previous._children:
                    self._children[node_id] = previous._children[node_id]
                continue
            runtime = self.registry.get(config.kind)
            self.states[node_id] = runtime.initial_state(config, self)

        if previous is not None:
            for node_id in previous.configs:
                if node_id not in self.configs:
                    previous.forget(node_id)

    def forget(self, node_id: str) -> None:
        """Release run-wide resources held for a node (recursively for modules)."""
        child = self._children.pop(node_id, None)
        if child is not None:
            for inner_id in child.configs:
                child.forget(inner_id)
        self.feedback.forget(self.qualify(node_id))
        self.activity_log.forget(self.qualify(node_id))
        self._fsm_cache.pop(node_id, None)

    def child(self, module: ModuleNode) -> SimulationContext:
        """The inner context of a module, created on first use."""
        existing = self._children.get(module.node_id)
        if existing is not None and list(existing.configs.values()) == list(module.nodes):
            return existing
        child = SimulationContext(
            module.nodes,
            clock=self.clock,
            log=self.activity_log,
            rng=self.rng,
            feedback=self.feedback,
            settings=self.settings,
            registry=self.registry,
            client=self.client,
            prefix=f"{self.qualify(module.node_id)}/",
            exit_id=module.node_id,
        )
        child.initialize(existing)
        self._children[module.node_id] = child
        return child

    def fsm_support(self, node_id: str, definition: FSMDefinition) -> tuple[FSMEngine, InterpretationEngine]:
        """FSM and interpretation engines for a node, rebuilt when its definition changes."""
        cached = self._fsm_cache.get(node_id)
        if cached is not None and cached[0] is definition:
            return cached[1], cached[2]
        engine = FSMEngine(definition)
        interpreter = InterpretationEngine(definition.interpretation_rules, client=self.client)
        self._fsm_cache[node_id] = (definition, engine, interpreter)
        return engine, interpreter

    # === Logging ===

    def log(
        self,
        state: NodeState,
        action: ActivityAction,
        *,
        value: Any = None,
        details: str | None = None,
    ) -> None:
        """Append an activity entry for a node, snapshotting its phase and buffers.

        Error-class actions also raise the node's error flag.
        """
        if action in ERROR_ACTIONS:
            state.error = details or action.value
        self.activity_log.append(
            self.qualify(state.node_id),
            action,
            timestamp=self.now,
            state=state.phase,
            buffer_size=state.buffer_size(),
            output_buffer_size=state.output_buffer_size(),
            value=value,
            details=details,
        )

    @staticmethod
    def clear_error(state: NodeState) -> None:
        """Lower the error flag after the node fired cleanly."""
        state.error = None

    def record_failure(self, state: NodeState, exc: Exception) -> None:
        """Convert an exception that escaped a runtime into an activity entry."""
        if isinstance(exc, FormulaError):
            self.log(state, ActivityAction.FORMULA_ERROR, details=f"{exc.formula}: {exc}" if exc.formula else str(exc))
        else:
            self.log(state, ActivityAction.ERROR, details=f"{type(exc).__name__}: {exc}")
        logger.warning(
            "node_failed",
            node_id=self.qualify(state.node_id),
            time=self.now,
            error=str(exc),
            error_type=type(exc).__name__,
        )

    # === Token flow ===

    def next_token_id(self, node_id: str) -> str:
        count = self._token_counters.get(node_id, 0) + 1
        self._token_counters[node_id] = count
        return f"{self.qualify(node_id)}:{count}"

    def emit(
        self,
        state: NodeState,
        port: OutputPort,
        value: Any,
        *,
        parents: Iterable[Token] = (),
        payload: dict[str, Any] | None = None,
    ) -> Token | None:
        """Stage a token on an output port.

        Returns:
            The staged token, or None if the port is disconnected or the
            feedback controller refused the emission (logged as
            feedback_refused).
        """
        destination = port.destination_node_id
        if not destination:
            return None
        source = state.node_id
        parents = list(parents)
        depth = max((p.feedback_depth for p in parents), default=0)

        if destination == self.exit_id:
            token = self._make_token(source, value, parents, payload, depth, port.destination_input_name)
            self._exits.append(token)
            return token

        if destination not in self.configs:
            self.log(state, ActivityAction.ERROR, value=value, details=f"Unknown destination {destination!r}")
            return None

        kind = self.graph.classify_emission(source, destination)
        try:
            decision = self.feedback.check(
                self.qualify(source),
                self.qualify(destination),
                kind=kind,
                depth=depth,
                now=self.now,
            )
        except FeedbackRefusal as e:
            self.log(
                state,
                ActivityAction.FEEDBACK_REFUSED,
                value=value,
                details=f"{e.reason.value}: {e.details}",
            )
            return None

        token = self._make_token(source, value, parents, payload, decision.depth, port.destination_input_name)
        self._outbox.append(Delivery(destination, token, feedback=decision.is_feedback))
        return token

    def _make_token(
        self,
        source: str,
        value: Any,
        parents: list[Token],
        payload: dict[str, Any] | None,
        depth: int,
        input_name: str | None,
    ) -> Token:
        return Token(
            token_id=self.next_token_id(source),
            value=value,
            origin_node_id=source,
            emitted_at=self.now,
            payload=dict(payload or {}),
            parent_ids=tuple(p.token_id for p in parents),
            generation=max((p.generation for p in parents), default=-1) + 1,
            feedback_depth=depth,
            destination_input=input_name,
        )

    def deliver(self, destination: str, token: Token, *, feedback: bool = False) -> None:
        """Hand a token straight to its destination runtime.

        Failures are isolated to the destination node.
        """
        config = self.configs[destination]
        state = self.states[destination]
        try:
            self.registry.get(config.kind).receive(self, config, state, token, feedback=feedback)
        except Exception as e:
            self.record_failure(state, e)

    def commit(self) -> int:
        """Deliver every staged token in emission order.

        Returns:
            Number of tokens delivered
        """
        deliveries, self._outbox = self._outbox, []
        for delivery in deliveries:
            if delivery.destination in self.configs:
                self.deliver(delivery.destination, delivery.token, feedback=delivery.feedback)
        return len(deliveries)

    def drain_exits(self) -> list[Token]:
        """Tokens addressed to the enclosing module since the last drain."""
        exits, self._exits = self._exits, []
        return exits

    @property
    def pending(self) -> int:
        """Number of staged, undelivered tokens."""
        return len(self._outbox)

    # === Evaluation ===

    def run_evaluations(self) -> tuple[list[str], list[str]]:
        """Evaluate every node once in evaluation order.

        Returns:
            (evaluated node IDs, node IDs whose runtime raised)
        """
        evaluated: list[str] = []
        failed: list[str] = []
        for node_id in self.order:
            config = self.configs[node_id]
            state = self.states[node_id]
            try:
                self.registry.get(config.kind).evaluate(self, config, state)
            except Exception as e:
                self.record_failure(state, e)
                failed.append(self.qualify(node_id))
            evaluated.append(self.qualify(node_id))
        return evaluated, failed
