"""Module runtime: an inner sub-graph behind declared ports.

Tokens arriving on an external input port wait in the module's input
buffers until its next evaluation, when they are handed to the mapped inner
node. The inner graph is then evaluated and committed exactly like the top
level. Inner emissions addressed to the module itself leave through the
output port named by their destinationInputName.
"""

from __future__ import annotations

from tickflow.contracts.enums import ActivityAction, NodeKind, NodePhase
from tickflow.contracts.states import ModuleState
from tickflow.contracts.tokens import Token
from tickflow.core.scenario import ModuleInputPort, ModuleNode, ModuleOutputPort, OutputPort
from tickflow.engine.context import SimulationContext
from tickflow.engine.runtime.base import BaseRuntime

# Exit tokens kept per output port for inspection
OUTPUT_HISTORY = 50


def _input_port(config: ModuleNode, token: Token) -> ModuleInputPort | None:
    for port in config.inputs:
        if port.name == token.destination_input:
            return port
    if len(config.inputs) == 1:
        return config.inputs[0]
    return None


def _output_port(config: ModuleNode, input_name: str | None) -> ModuleOutputPort | None:
    for port in config.outputs:
        if port.name == input_name:
            return port
    if len(config.outputs) == 1:
        return config.outputs[0]
    return None


class ModuleRuntime(BaseRuntime):
    kind = NodeKind.MODULE

    def initial_state(self, config: ModuleNode, ctx: SimulationContext) -> ModuleState:
        child = ctx.child(config)
        return ModuleState(
            node_id=config.node_id,
            input_buffers={port.name: [] for port in config.inputs},
            output_buffers={port.name: [] for port in config.outputs},
            sub_graph_states=child.states,
        )

    def receive(
        self,
        ctx: SimulationContext,
        config: ModuleNode,
        state: ModuleState,
        token: Token,
        *,
        feedback: bool,
    ) -> None:
        port = _input_port(config, token)
        if port is None:
            ctx.log(
                state,
                ActivityAction.TOKEN_DROPPED,
                value=token.value,
                details=f"No module input {token.destination_input!r} for token {token.token_id}",
            )
            return
        state.input_buffers.setdefault(port.name, []).append(token)
        ctx.log(
            state,
            ActivityAction.TOKEN_RECEIVED,
            value=token.value,
            details=f"Token {token.token_id} from {token.origin_node_id} on {port.name}",
        )

    def evaluate(self, ctx: SimulationContext, config: ModuleNode, state: ModuleState) -> None:
        child = ctx.child(config)

        forwarded = 0
        for port in config.inputs:
            waiting = state.input_buffers.get(port.name, [])
            state.input_buffers[port.name] = []
            for token in waiting:
                child.deliver(port.node_id, token.addressed_to(port.input_name or port.name, token.feedback_depth))
                forwarded += 1
        state.processed_token_count += forwarded

        child.run_evaluations()
        child.commit()

        exits = child.drain_exits()
        for inner in exits:
            out = _output_port(config, inner.destination_input)
            if out is None:
                ctx.log(
                    state,
                    ActivityAction.TOKEN_DROPPED,
                    value=inner.value,
                    details=f"No module output {inner.destination_input!r} for token {inner.token_id}",
                )
                continue
            port = OutputPort(
                name=out.name,
                destination_node_id=out.destination_node_id,
                destination_input_name=out.destination_input_name,
            )
            token = ctx.emit(state, port, inner.value, parents=[inner], payload=inner.payload)
            if token is None:
                continue
            history = state.output_buffers.setdefault(out.name, [])
            history.append(token)
            del history[:-OUTPUT_HISTORY]
            state.phase = NodePhase.EMITTING.value
            ctx.log(
                state,
                ActivityAction.EMITTING,
                value=token.value,
                details=f"Token {token.token_id} via {out.name} to {out.destination_node_id}",
            )

        state.sub_graph_states = child.states
        state.phase = NodePhase.PROCESSING.value if forwarded or exits else NodePhase.IDLE.value
