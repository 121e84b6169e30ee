# src/tickflow/plugins/manager.py
"""Runtime registry: turns hook results into the per-kind dispatch table.

Uses pluggy for hook-based registration.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import pluggy

from tickflow.contracts.enums import NodeKind
from tickflow.plugins.hookspecs import PROJECT_NAME, TickflowRuntimeSpec

if TYPE_CHECKING:
    from tickflow.engine.runtime.base import NodeRuntime


class RuntimeRegistry:
    """Maps each NodeKind to the runtime that executes it.

    Usage:
        registry = RuntimeRegistry()
        registry.register_builtin_runtimes()

        runtime = registry.get(NodeKind.QUEUE)
    """

    def __init__(self) -> None:
        self._pm = pluggy.PluginManager(PROJECT_NAME)
        self._pm.add_hookspecs(TickflowRuntimeSpec)
        self._runtimes: dict[NodeKind, NodeRuntime] = {}

    def register_builtin_runtimes(self) -> None:
        """Register the runtimes for every built-in node kind."""
        from tickflow.engine.runtime.hookimpl import builtin_runtimes

        self.register(builtin_runtimes)

    def register(self, plugin: Any) -> None:
        """Register a plugin.

        Args:
            plugin: Plugin instance implementing hook methods

        Raises:
            ValueError: If the plugin provides a kind that is already covered
        """
        self._pm.register(plugin)
        try:
            self._refresh()
        except ValueError:
            self._pm.unregister(plugin)
            raise

    def _refresh(self) -> None:
        """Rebuild the dispatch table from all registered plugins.

        Raises:
            ValueError: If two runtimes claim the same kind
        """
        table: dict[NodeKind, NodeRuntime] = {}
        for runtimes in self._pm.hook.tickflow_get_node_runtimes():
            for runtime in runtimes:
                kind = NodeKind(runtime.kind)
                if kind in table:
                    raise ValueError(
                        f"Duplicate runtime for node kind '{kind.value}'. "
                        f"Already registered by {type(table[kind]).__name__}"
                    )
                table[kind] = runtime
        self._runtimes = table

    def get(self, kind: NodeKind) -> NodeRuntime:
        """Runtime for a node kind.

        Raises:
            KeyError: If no runtime handles the kind
        """
        try:
            return self._runtimes[kind]
        except KeyError:
            raise KeyError(f"No runtime registered for node kind '{kind.value}'") from None

    def kinds(self) -> list[NodeKind]:
        """Kinds with a registered runtime."""
        return list(self._runtimes)


def default_registry() -> RuntimeRegistry:
    """A registry holding only the built-in runtimes."""
    registry = RuntimeRegistry()
    registry.register_builtin_runtimes()
    return registry
