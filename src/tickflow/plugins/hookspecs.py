# src/tickflow/plugins/hookspecs.py
"""pluggy hook specifications for node runtimes.

Usage (providing runtimes):
    from tickflow.plugins.hookspecs import hookimpl

    class MyRuntimes:
        @hookimpl  # NOT @hookspec - that's for defining specs
        def tickflow_get_node_runtimes(self):
            return [MyQueueRuntime()]

Each runtime declares the NodeKind it handles; a kind may be provided by
exactly one registered plugin.
"""

from typing import TYPE_CHECKING

import pluggy

if TYPE_CHECKING:
    from tickflow.engine.runtime.base import NodeRuntime

# Project name for pluggy
PROJECT_NAME = "tickflow"

# Hook specification marker
hookspec = pluggy.HookspecMarker(PROJECT_NAME)

# Hook implementation marker (for plugins to use)
hookimpl = pluggy.HookimplMarker(PROJECT_NAME)


class TickflowRuntimeSpec:
    """Hook specifications for node runtime plugins."""

    @hookspec
    def tickflow_get_node_runtimes(self) -> list["NodeRuntime"]:  # type: ignore[empty-body]
        """Return node runtime instances.

        Returns:
            List of runtimes, each with a ``kind`` attribute
        """
