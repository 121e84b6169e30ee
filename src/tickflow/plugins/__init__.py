"""Node runtime discovery via pluggy.

- Hookspecs: the ``tickflow_get_node_runtimes`` hook
- Manager: RuntimeRegistry, the kind -> runtime dispatch table
"""

from tickflow.plugins.hookspecs import PROJECT_NAME, hookimpl, hookspec
from tickflow.plugins.manager import RuntimeRegistry, default_registry

__all__ = [
    "PROJECT_NAME",
    "RuntimeRegistry",
    "default_registry",
    "hookimpl",
    "hookspec",
]
