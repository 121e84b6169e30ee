"""tickflow: discrete-time node-graph simulation engine."""

__version__ = "0.1.0"
