"""Node runtime protocol and shared base class.

A runtime is the behavior of one node kind. Runtimes are stateless: every
piece of per-node data lives in the NodeState the scheduler hands them, and
everything run-wide (clock, log, routing) comes from the SimulationContext.

Lifecycle per node:
1. initial_state(config, ctx) - once, when the node enters the simulation
2. evaluate(ctx, config, state) - once per tick, in evaluation order
3. receive(ctx, config, state, token, feedback) - once per delivered token,
   at the end of the tick in which it was emitted
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, ClassVar, Protocol, runtime_checkable

from tickflow.contracts.enums import ActivityAction, NodeKind
from tickflow.contracts.states import NodeState
from tickflow.contracts.tokens import Token

if TYPE_CHECKING:
    from tickflow.core.scenario import BaseNode
    from tickflow.engine.context import SimulationContext


@runtime_checkable
class NodeRuntime(Protocol):
    """What the dispatch table needs from a runtime."""

    kind: NodeKind

    def initial_state(self, config: Any, ctx: SimulationContext) -> NodeState:
        """Fresh runtime state for a node entering the simulation."""
        ...

    def evaluate(self, ctx: SimulationContext, config: Any, state: Any) -> None:
        """Run one tick of the node."""
        ...

    def receive(self, ctx: SimulationContext, config: Any, state: Any, token: Token, *, feedback: bool) -> None:
        """Accept one delivered token."""
        ...


class BaseRuntime:
    """Defaults for runtimes that do nothing on a tick or accept no tokens."""

    kind: ClassVar[NodeKind]

    def evaluate(self, ctx: SimulationContext, config: BaseNode, state: NodeState) -> None:
        return None

    def receive(
        self,
        ctx: SimulationContext,
        config: BaseNode,
        state: NodeState,
        token: Token,
        *,
        feedback: bool,
    ) -> None:
        ctx.log(
            state,
            ActivityAction.TOKEN_DROPPED,
            value=token.value,
            details=f"{config.kind.value} accepts no tokens (token {token.token_id} from {token.origin_node_id})",
        )
