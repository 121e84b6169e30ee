"""Scheduler: advances the clock and drives one tick at a time.

A tick is:
1. apply a staged scenario, if any (only ever between ticks)
2. advance the clock by one step
3. evaluate every node in evaluation order, isolating failures per node
4. commit staged emissions to their destinations

The scheduler owns the top-level SimulationContext; nothing else mutates it.
External observers read immutable snapshots.
"""

from __future__ import annotations

import copy
from collections.abc import Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any

import numpy as np

from tickflow.contracts.activity import ActivityLogEntry
from tickflow.contracts.results import TickResult
from tickflow.contracts.states import FSMProcessNodeState, NodeState
from tickflow.core.config import EngineSettings
from tickflow.core.logging import get_logger
from tickflow.core.scenario import Scenario, apply_scenario_edit
from tickflow.engine.activity_log import ActivityLog
from tickflow.engine.clock import SimulationClock
from tickflow.engine.context import SimulationContext
from tickflow.engine.feedback import FeedbackLoopController
from tickflow.engine.interpretation import InterpretationClient
from tickflow.plugins.manager import RuntimeRegistry, default_registry

logger = get_logger(__name__)


class SchedulerStoppedError(Exception):
    """Raised when ticking a scheduler that was stopped."""


@dataclass(frozen=True)
class SimulationSnapshot:
    """Immutable view of the simulation after a tick.

    ``node_states`` are deep copies; mutating them does not affect the run.
    """

    current_time: float
    tick_count: int
    node_states: Mapping[str, NodeState]
    node_activity_logs: Mapping[str, tuple[ActivityLogEntry, ...]]

    def to_dict(self) -> dict[str, Any]:
        """JSON-friendly export of the activity side (states are runtime objects)."""
        return {
            "currentTime": self.current_time,
            "tickCount": self.tick_count,
            "nodeActivityLogs": {
                node_id: [entry.to_dict() for entry in entries]
                for node_id, entries in self.node_activity_logs.items()
            },
        }


class Scheduler:
    """Runs one scenario.

    Example:
        scheduler = Scheduler(load_scenario(text), EngineSettings(seed=7))
        scheduler.run(10)
        snapshot = scheduler.snapshot()
    """

    def __init__(
        self,
        scenario: Scenario,
        settings: EngineSettings | None = None,
        *,
        registry: RuntimeRegistry | None = None,
        client: InterpretationClient | None = None,
    ) -> None:
        self._settings = settings or EngineSettings()
        self._registry = registry or default_registry()
        self._client = client
        self._clock = SimulationClock(step=self._settings.time_step)
        self._log = ActivityLog(
            max_node_entries=self._settings.activity.max_node_entries,
            max_global_entries=self._settings.activity.max_global_entries,
        )
        self._rng = np.random.default_rng(self._settings.seed)
        self._feedback = FeedbackLoopController(self._settings.feedback)
        self._scenario = scenario
        self._staged: Scenario | None = None
        self._stopped = False
        self._context = self._build_context(scenario, previous=None)

    # === Properties ===

    @property
    def scenario(self) -> Scenario:
        return self._scenario

    @property
    def settings(self) -> EngineSettings:
        return self._settings

    @property
    def current_time(self) -> float:
        return self._clock.current_time

    @property
    def tick_count(self) -> int:
        return self._clock.tick_count

    @property
    def activity_log(self) -> ActivityLog:
        return self._log

    @property
    def context(self) -> SimulationContext:
        return self._context

    @property
    def feedback(self) -> FeedbackLoopController:
        return self._feedback

    @property
    def is_stopped(self) -> bool:
        return self._stopped

    @property
    def has_staged_scenario(self) -> bool:
        return self._staged is not None

    def node_state(self, node_id: str) -> NodeState:
        """Live state of a top-level node.

        Raises:
            KeyError: If the node does not exist
        """
        return self._context.states[node_id]

    # === Lifecycle ===

    def _build_context(self, scenario: Scenario, previous: SimulationContext | None) -> SimulationContext:
        context = SimulationContext(
            scenario.nodes,
            clock=self._clock,
            log=self._log,
            rng=self._rng,
            feedback=self._feedback,
            settings=self._settings,
            registry=self._registry,
            client=self._client,
        )
        context.initialize(previous)
        return context

    def tick(self) -> TickResult:
        """Run one tick.

        Raises:
            SchedulerStoppedError: If stop() was called
        """
        if self._stopped:
            raise SchedulerStoppedError("Scheduler is stopped")
        if self._staged is not None:
            self._apply_staged()

        now = self._clock.advance()
        evaluated, failed = self._context.run_evaluations()
        delivered = self._context.commit()
        if failed:
            logger.warning("tick_failures", time=now, nodes=failed)
        return TickResult(time=now, evaluated=evaluated, delivered=delivered, failed_nodes=failed)

    def run(self, ticks: int) -> list[TickResult]:
        """Run ``ticks`` ticks, stopping early if stop() is called."""
        if ticks < 0:
            raise ValueError(f"ticks must be non-negative, got {ticks}")
        logger.info("run_started", ticks=ticks, start_time=self.current_time, nodes=len(self._scenario.nodes))
        results: list[TickResult] = []
        for _ in range(ticks):
            if self._stopped:
                break
            results.append(self.tick())
        logger.info("run_finished", time=self.current_time, ticks=len(results))
        return results

    def stop(self) -> None:
        """Halt the simulation; further ticks are refused."""
        if not self._stopped:
            self._stopped = True
            logger.info("scheduler_stopped", time=self.current_time)

    # === Configuration changes ===

    def stage_scenario(self, scenario: Scenario | str | bytes) -> Scenario:
        """Validate a new scenario now and apply it before the next tick.

        Text is treated as an edit of the current scenario and may not
        change any nodeId. A Scenario object may add or remove nodes.

        Raises:
            ConfigError: If the new scenario is invalid. Nothing is staged.
        """
        if isinstance(scenario, Scenario):
            staged = scenario
        else:
            staged = apply_scenario_edit(self._scenario, scenario)
        self._staged = staged
        logger.info("scenario_staged", time=self.current_time, nodes=len(staged.nodes))
        return staged

    def _apply_staged(self) -> None:
        assert self._staged is not None
        scenario, self._staged = self._staged, None
        self._context = self._build_context(scenario, previous=self._context)
        self._scenario = scenario
        logger.info("scenario_applied", time=self.current_time, nodes=len(scenario.nodes))

    def request_manual(self, node_id: str, label: str = "") -> None:
        """Queue a manual trigger for an FSM node's next evaluation.

        An empty label fires any manual transition out of the current state.

        Raises:
            KeyError: If the node does not exist
            TypeError: If the node is not an FSMProcessNode
        """
        state = self._context.states[node_id]
        if not isinstance(state, FSMProcessNodeState):
            raise TypeError(f"Node {node_id!r} is not an FSMProcessNode")
        state.pending_manual.append(label)

    # === Observation ===

    def snapshot(self) -> SimulationSnapshot:
        """Immutable per-tick export of node states and activity logs."""
        logs = {node_id: self._log.entries_for(node_id) for node_id in self._log.node_ids()}
        return SimulationSnapshot(
            current_time=self.current_time,
            tick_count=self.tick_count,
            node_states=MappingProxyType(copy.deepcopy(self._context.states)),
            node_activity_logs=MappingProxyType(logs),
        )
