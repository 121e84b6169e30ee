"""Sink runtime: terminal consumer.

Sinks consume on arrival, so a token emitted in tick N is counted at the
commit of tick N. They never emit.
"""

from __future__ import annotations

from collections import deque

from tickflow.contracts.enums import ActivityAction, NodeKind, NodePhase
from tickflow.contracts.states import SinkState
from tickflow.contracts.tokens import Token
from tickflow.core.scenario import SinkNode
from tickflow.engine.context import SimulationContext
from tickflow.engine.runtime.base import BaseRuntime


class SinkRuntime(BaseRuntime):
    kind = NodeKind.SINK

    def initial_state(self, config: SinkNode, ctx: SimulationContext) -> SinkState:
        return SinkState(
            node_id=config.node_id,
            consumed_tokens=deque(maxlen=ctx.settings.sink_token_history),
        )

    def receive(
        self,
        ctx: SimulationContext,
        config: SinkNode,
        state: SinkState,
        token: Token,
        *,
        feedback: bool,
    ) -> None:
        state.phase = NodePhase.PROCESSING.value
        state.consumed_token_count += 1
        state.last_consumed_time = ctx.now
        state.consumed_tokens.append(token)
        details = f"Token {token.token_id} from {token.origin_node_id}"
        ctx.log(state, ActivityAction.CONSUMING, value=token.value, details=details)
        ctx.log(state, ActivityAction.TOKEN_CONSUMED, value=token.value, details=details)
        state.phase = NodePhase.IDLE.value
