"""Queue runtime: buffers tokens and emits one aggregate per trigger.

A time trigger fires once ``window`` seconds have passed since the last
aggregation; a count threshold fires as soon as the buffer holds enough
tokens. When both hold in the same tick the time window fires. Any firing
restarts the window.
"""

from __future__ import annotations

import statistics
from collections.abc import Sequence
from typing import Any

from tickflow.contracts.enums import ActivityAction, AggregationMethod, NodeKind, NodePhase
from tickflow.contracts.errors import CapacityError, FormulaError
from tickflow.contracts.states import QueueState
from tickflow.contracts.tokens import Token
from tickflow.core.scenario import Aggregation, QueueNode
from tickflow.engine.context import SimulationContext
from tickflow.engine.expression_parser import compile_formula
from tickflow.engine.runtime.base import BaseRuntime


def aggregate(aggregation: Aggregation, values: Sequence[Any]) -> Any:
    """Combine buffered values.

    Raises:
        FormulaError: If a custom formula fails
        TypeError: If a numeric method meets non-numeric values
    """
    method = aggregation.method
    if method == AggregationMethod.SUM:
        return sum(values)
    if method == AggregationMethod.AVERAGE:
        return statistics.fmean(values)
    if method == AggregationMethod.COUNT:
        return len(values)
    if method == AggregationMethod.FIRST:
        return values[0]
    if method == AggregationMethod.LAST:
        return values[-1]
    if method == AggregationMethod.MIN:
        return min(values)
    if method == AggregationMethod.MAX:
        return max(values)

    assert aggregation.formula is not None
    try:
        total = sum(values)
    except TypeError:
        total = None
    return compile_formula(aggregation.formula).evaluate({"values": list(values), "count": len(values), "sum": total})


def _describe(aggregation: Aggregation, values: Sequence[Any], result: Any) -> str:
    shown = ", ".join(str(v) for v in values)
    return f"{aggregation.method.value}([{shown}]) = {result}"


class QueueRuntime(BaseRuntime):
    kind = NodeKind.QUEUE

    def initial_state(self, config: QueueNode, ctx: SimulationContext) -> QueueState:
        return QueueState(node_id=config.node_id)

    def _admit(self, config: QueueNode, state: QueueState, token: Token) -> None:
        """Buffer a token.

        Raises:
            CapacityError: If the buffer is full
        """
        if config.capacity is not None and len(state.input_buffer) >= config.capacity:
            raise CapacityError(config.node_id, config.capacity)
        state.input_buffer.append(token)

    def receive(
        self,
        ctx: SimulationContext,
        config: QueueNode,
        state: QueueState,
        token: Token,
        *,
        feedback: bool,
    ) -> None:
        try:
            self._admit(config, state, token)
        except CapacityError as e:
            state.dropped_count += 1
            ctx.log(state, ActivityAction.TOKEN_DROPPED, value=token.value, details=f"Token {token.token_id}: {e}")
            return
        state.phase = NodePhase.ACCUMULATING.value
        capacity = config.capacity if config.capacity is not None else "∞"
        ctx.log(
            state,
            ActivityAction.ACCUMULATING,
            value=token.value,
            details=f"Token {token.token_id} from {token.origin_node_id} ({len(state.input_buffer)}/{capacity})",
        )

    def evaluate(self, ctx: SimulationContext, config: QueueNode, state: QueueState) -> None:
        trigger = config.aggregation.trigger
        batch: int | None = None

        if trigger.window is not None and ctx.now >= max(state.last_aggregation_time, 0) + trigger.window:
            if not state.input_buffer:
                ctx.log(state, ActivityAction.TRIGGER_MET, details="No tokens in input buffer")
                state.last_aggregation_time = ctx.now
                return
            batch = len(state.input_buffer)
        elif trigger.threshold is not None and len(state.input_buffer) >= trigger.threshold:
            batch = trigger.threshold

        if batch is None:
            return
        self._fire(ctx, config, state, batch)

    def _fire(self, ctx: SimulationContext, config: QueueNode, state: QueueState, batch: int) -> None:
        state.phase = NodePhase.BATCH_READY.value
        tokens = state.input_buffer[:batch]
        values = [t.value for t in tokens]
        state.last_aggregation_time = ctx.now
        try:
            result = aggregate(config.aggregation, values)
        except FormulaError as e:
            state.phase = NodePhase.ACCUMULATING.value
            ctx.log(state, ActivityAction.FORMULA_ERROR, details=f"{e.formula}: {e}")
            return
        except (TypeError, ValueError) as e:
            state.phase = NodePhase.ACCUMULATING.value
            ctx.log(state, ActivityAction.ERROR, details=f"{config.aggregation.method.value} aggregation failed: {e}")
            return

        del state.input_buffer[:batch]
        ctx.log(state, ActivityAction.PROCESSING, value=result, details=_describe(config.aggregation, values, result))

        state.phase = NodePhase.EMITTING.value
        emitted: list[Token] = []
        state.output_buffer = emitted
        for port in config.outputs:
            token = ctx.emit(state, port, result, parents=tokens)
            if token is None:
                continue
            emitted.append(token)
            ctx.log(
                state,
                ActivityAction.EMITTING,
                value=result,
                details=f"Aggregated {len(tokens)} tokens to {port.destination_node_id}",
            )
        state.aggregated_count += 1
        state.phase = NodePhase.IDLE.value if not state.input_buffer else NodePhase.ACCUMULATING.value
        ctx.clear_error(state)
