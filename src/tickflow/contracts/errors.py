"""Error taxonomy shared by the scenario loader and the engine.

Only ConfigError is surfaced to callers as a hard failure. Every other error
is raised inside a node runtime and converted into an activity log entry at
the runtime boundary.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from tickflow.contracts.enums import RefusalReason


class ConfigError(Exception):
    """Raised when a scenario or settings document is rejected.

    Covers malformed JSON, dangling node references, duplicate node IDs and
    edits that would change a node ID. Raised before any state is mutated.
    """

    def __init__(self, message: str, errors: list[str] | None = None) -> None:
        super().__init__(message)
        self.errors: list[str] = errors or [message]


class FormulaError(Exception):
    """Base class for formula failures.

    Carries the offending formula text so callers can log it verbatim.
    """

    def __init__(self, message: str, formula: str = "") -> None:
        super().__init__(message)
        self.formula = formula


class FormulaSyntaxError(FormulaError):
    """Raised when a formula is not a valid expression."""


class FormulaSecurityError(FormulaError):
    """Raised when a formula uses a construct outside the formula language."""


class FormulaEvaluationError(FormulaError):
    """Raised when a valid formula fails against its bindings.

    Missing bindings, type mismatches and division by zero all end up here.
    The original exception is chained via __cause__.
    """


class CapacityError(Exception):
    """Raised when a token arrives at a full Queue buffer."""

    def __init__(self, node_id: str, capacity: int) -> None:
        super().__init__(f"Buffer full ({capacity}/{capacity}) at {node_id}")
        self.node_id = node_id
        self.capacity = capacity


class FeedbackRefusal(Exception):
    """Raised when the feedback controller refuses an emission."""

    def __init__(self, reason: RefusalReason, details: str) -> None:
        super().__init__(f"{reason.value}: {details}")
        self.reason = reason
        self.details = details
