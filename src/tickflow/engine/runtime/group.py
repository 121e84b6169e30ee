"""Group runtime: organizational only.

A Group never emits and never receives tokens (the loader rejects it as a
destination). Its state lists its members for display.
"""

from __future__ import annotations

from tickflow.contracts.enums import NodeKind
from tickflow.contracts.states import GroupState
from tickflow.core.scenario import GroupNode
from tickflow.engine.context import SimulationContext
from tickflow.engine.runtime.base import BaseRuntime


def group_members(config: GroupNode, ctx: SimulationContext) -> tuple[str, ...]:
    """Explicit members, then every sibling tagged with ``groupTag``."""
    members: dict[str, None] = dict.fromkeys(config.contained_nodes)
    if config.group_tag:
        for node_id, node in ctx.configs.items():
            if config.group_tag in node.tags:
                members.setdefault(node_id, None)
    members.pop(config.node_id, None)
    return tuple(members)


class GroupRuntime(BaseRuntime):
    kind = NodeKind.GROUP

    def initial_state(self, config: GroupNode, ctx: SimulationContext) -> GroupState:
        return GroupState(node_id=config.node_id, member_ids=group_members(config, ctx))

    def evaluate(self, ctx: SimulationContext, config: GroupNode, state: GroupState) -> None:
        # Membership follows sibling tags, which may change between ticks
        state.member_ids = group_members(config, ctx)
