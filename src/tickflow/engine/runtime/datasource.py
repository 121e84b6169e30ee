"""DataSource runtime: emits a generated value every ``interval`` seconds."""

from __future__ import annotations

import math
from typing import Any

import numpy as np

from tickflow.contracts.enums import ActivityAction, GenerationType, NodeKind, NodePhase
from tickflow.contracts.states import DataSourceState
from tickflow.core.scenario import DataSourceNode, Generation
from tickflow.engine.context import SimulationContext
from tickflow.engine.runtime.base import BaseRuntime


def generate_value(generation: Generation, rng: np.random.Generator) -> Any:
    """Draw one value.

    ``random`` is an integer in [valueMin, valueMax] inclusive, ``uniform``
    a float in the same range, ``constant`` the configured value (valueMin
    when unset).
    """
    if generation.type == GenerationType.RANDOM:
        low, high = math.ceil(generation.value_min), math.floor(generation.value_max)
        return int(rng.integers(low, high + 1))
    if generation.type == GenerationType.UNIFORM:
        return float(rng.uniform(generation.value_min, generation.value_max))
    return generation.value if generation.value is not None else generation.value_min


class DataSourceRuntime(BaseRuntime):
    kind = NodeKind.DATA_SOURCE

    def initial_state(self, config: DataSourceNode, ctx: SimulationContext) -> DataSourceState:
        return DataSourceState(node_id=config.node_id)

    def evaluate(self, ctx: SimulationContext, config: DataSourceNode, state: DataSourceState) -> None:
        # Emission times are multiples of the interval from the last emission,
        # never from the tick at which the node happened to be evaluated.
        due = max(state.last_emission_time, 0) + config.interval
        if ctx.now < due:
            state.phase = NodePhase.WAITING.value
            return

        state.phase = NodePhase.GENERATING.value
        value = generate_value(config.generation, ctx.rng)
        ctx.log(state, ActivityAction.GENERATING, value=value, details=f"Generated value {value}")

        state.phase = NodePhase.EMITTING.value
        for port in config.outputs:
            token = ctx.emit(state, port, value)
            if token is not None:
                ctx.log(
                    state,
                    ActivityAction.TOKEN_EMITTED,
                    value=value,
                    details=f"Token {token.token_id} to {port.destination_node_id}",
                )

        state.last_emission_time = ctx.now
        state.emitted_count += 1
        state.phase = NodePhase.IDLE.value
        ctx.clear_error(state)
