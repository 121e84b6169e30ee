"""Hook implementation for the built-in node runtimes."""

from typing import Any

from tickflow.plugins.hookspecs import hookimpl


class TickflowBuiltinRuntimes:
    """Hook implementer for built-in node runtimes."""

    @hookimpl
    def tickflow_get_node_runtimes(self) -> list[Any]:
        """Return one runtime per built-in node kind."""
        from tickflow.engine.runtime.datasource import DataSourceRuntime
        from tickflow.engine.runtime.fsm_node import FSMProcessNodeRuntime
        from tickflow.engine.runtime.group import GroupRuntime
        from tickflow.engine.runtime.module import ModuleRuntime
        from tickflow.engine.runtime.process import ProcessNodeRuntime
        from tickflow.engine.runtime.queue import QueueRuntime
        from tickflow.engine.runtime.sink import SinkRuntime

        return [
            DataSourceRuntime(),
            QueueRuntime(),
            ProcessNodeRuntime(),
            FSMProcessNodeRuntime(),
            SinkRuntime(),
            ModuleRuntime(),
            GroupRuntime(),
        ]


# Singleton instance for registration
builtin_runtimes = TickflowBuiltinRuntimes()
