"""Per-kind node runtimes.

Runtimes are looked up through tickflow.plugins.RuntimeRegistry rather than
imported directly, so third-party plugins can replace or add kinds.
"""

from tickflow.engine.runtime.base import BaseRuntime, NodeRuntime

__all__ = ["BaseRuntime", "NodeRuntime"]
