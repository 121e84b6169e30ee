"""ProcessNode runtime: fires when every required input holds a token.

Firing consumes the head token of every non-empty input and evaluates each
output formula on its own, in declaration order. A failing formula skips
only its own output.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from tickflow.contracts.enums import ActivityAction, NodeKind, NodePhase
from tickflow.contracts.errors import FormulaError
from tickflow.contracts.states import ProcessNodeState
from tickflow.contracts.tokens import Token
from tickflow.core.scenario import ProcessInput, ProcessNode
from tickflow.engine.context import SimulationContext
from tickflow.engine.expression_parser import compile_formula
from tickflow.engine.runtime.base import BaseRuntime


def match_input(inputs: list[ProcessInput], token: Token) -> ProcessInput | None:
    """Input a token belongs to.

    A named destination input wins; otherwise the first input wired to the
    token's origin node.
    """
    if token.destination_input:
        for inp in inputs:
            if token.destination_input in (inp.name, inp.alias):
                return inp
    for inp in inputs:
        if inp.node_id and inp.node_id == token.origin_node_id:
            return inp
    return None


def token_bindings(consumed: Mapping[str, Token]) -> dict[str, Any]:
    """Formula bindings for a set of aliased tokens.

    ``{alias: {data, value}, aliasValue, inputs: {alias: {value}}}``
    """
    bindings: dict[str, Any] = {"inputs": {}}
    for alias, token in consumed.items():
        bindings[alias] = {"data": token.data(), "value": token.value}
        bindings[f"{alias}Value"] = token.value
        bindings["inputs"][alias] = {"value": token.value}
    return bindings


class ProcessNodeRuntime(BaseRuntime):
    kind = NodeKind.PROCESS_NODE

    def initial_state(self, config: ProcessNode, ctx: SimulationContext) -> ProcessNodeState:
        return ProcessNodeState(
            node_id=config.node_id,
            input_buffers={inp.key: [] for inp in config.inputs},
        )

    def receive(
        self,
        ctx: SimulationContext,
        config: ProcessNode,
        state: ProcessNodeState,
        token: Token,
        *,
        feedback: bool,
    ) -> None:
        inp = match_input(config.inputs, token)
        if inp is None:
            ctx.log(
                state,
                ActivityAction.TOKEN_DROPPED,
                value=token.value,
                details=f"No input accepts token {token.token_id} from {token.origin_node_id}",
            )
            return
        buffer = state.input_buffers.setdefault(inp.key, [])
        buffer.append(token)
        state.phase = NodePhase.COLLECTING.value
        ctx.log(
            state,
            ActivityAction.TOKEN_RECEIVED,
            value=token.value,
            details=f"Received token from {token.origin_node_id} on {inp.alias} (buffer size: {len(buffer)})",
        )

    def is_ready(self, config: ProcessNode, state: ProcessNodeState) -> bool:
        if not config.inputs:
            return False
        if not any(state.input_buffers.get(inp.key) for inp in config.inputs):
            return False
        return all(state.input_buffers.get(inp.key) for inp in config.inputs if inp.required)

    def evaluate(self, ctx: SimulationContext, config: ProcessNode, state: ProcessNodeState) -> None:
        if not self.is_ready(config, state):
            return

        state.phase = NodePhase.CALCULATING.value
        consumed = {
            inp.alias: state.input_buffers[inp.key].pop(0)
            for inp in config.inputs
            if state.input_buffers.get(inp.key)
        }
        bindings = token_bindings(consumed)

        failed = False
        last_value: Any = None
        for output in config.outputs:
            try:
                value = compile_formula(output.formula).evaluate(bindings)
            except FormulaError as e:
                failed = True
                ctx.log(state, ActivityAction.FORMULA_ERROR, details=f"{output.formula}: {e}")
                continue
            last_value = value
            state.phase = NodePhase.EMITTING.value
            token = ctx.emit(state, output, value, parents=consumed.values())
            if token is not None:
                ctx.log(
                    state,
                    ActivityAction.EMITTING,
                    value=value,
                    details=f"{output.name or output.formula} = {value} to {output.destination_node_id}",
                )

        state.last_fired_time = ctx.now
        state.fired_count += 1
        ctx.log(
            state,
            ActivityAction.FIRING,
            value=last_value,
            details=f"Consumed {len(consumed)} tokens ({', '.join(consumed)})",
        )
        state.phase = NodePhase.COLLECTING.value if state.buffer_size() else NodePhase.IDLE.value
        if not failed:
            ctx.clear_error(state)
