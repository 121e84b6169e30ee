"""Operation outcomes and results.

These types answer: "What did an operation produce?"

InterpretationResult.status uses Literal["success", "no_match", "error"],
NOT an enum, because it never leaves the process.
"""

from dataclasses import dataclass, field
from typing import Literal

from tickflow.contracts.enums import FeedbackKind
from tickflow.contracts.tokens import FSMMessage


@dataclass(frozen=True)
class FeedbackDecision:
    """Outcome of a feedback check that allowed the emission.

    ``kind`` is None for ordinary forward edges; ``depth`` is the feedback
    depth the delivered token will carry.
    """

    kind: FeedbackKind | None
    depth: int

    @property
    def is_feedback(self) -> bool:
        return self.kind is not None


@dataclass
class InterpretationResult:
    """Result of offering one event to the interpretation rules.

    Use the factory methods to create instances.
    """

    status: Literal["success", "no_match", "error"]
    message: FSMMessage | None = None
    rule_id: str | None = None
    error: str | None = None

    @classmethod
    def success(cls, message: FSMMessage, rule_id: str) -> "InterpretationResult":
        """Create a result carrying the produced message."""
        return cls(status="success", message=message, rule_id=rule_id)

    @classmethod
    def no_match(cls) -> "InterpretationResult":
        """No enabled rule matched the event."""
        return cls(status="no_match")

    @classmethod
    def failure(cls, rule_id: str, error: str) -> "InterpretationResult":
        """The winning rule matched but could not produce a message."""
        return cls(status="error", rule_id=rule_id, error=error)

    @property
    def succeeded(self) -> bool:
        return self.status == "success"


@dataclass
class TickResult:
    """Summary of one scheduler tick."""

    time: float
    evaluated: list[str] = field(default_factory=list)
    delivered: int = 0
    failed_nodes: list[str] = field(default_factory=list)
