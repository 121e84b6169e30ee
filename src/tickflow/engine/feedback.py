"""Feedback loop controller.

Bounds emissions that re-enter the emitting node, either directly (self
feedback) or through a path that leads back to it (external feedback).
Checks run in a fixed order and the first failing check wins:

1. depth: the delivered token's feedback depth must not exceed maxDepth
2. circuit breaker: per emitting node, at most ``threshold`` feedback
   events per ``timeWindow``; an open breaker refuses for ``cooldownPeriod``
3. routing policy: enabled flag, self/external permission, blacklist
"""

from __future__ import annotations

from dataclasses import dataclass

from tickflow.contracts.enums import FeedbackKind, RefusalReason
from tickflow.contracts.errors import FeedbackRefusal
from tickflow.contracts.results import FeedbackDecision
from tickflow.core.logging import get_logger
from tickflow.core.scenario import CircuitBreakerConfig, FeedbackConfig

logger = get_logger(__name__)


@dataclass
class CircuitBreakerState:
    """Counting window and open/closed status for one emitting node."""

    window_start: float = 0.0
    count: int = 0
    is_open: bool = False
    opened_at: float | None = None

    def close(self, now: float) -> None:
        self.is_open = False
        self.opened_at = None
        self.window_start = now
        self.count = 0


class FeedbackLoopController:
    """Applies feedback bounds to emissions classified as feedback.

    Nodes register their own FeedbackConfig (FSM nodes carry one in their
    definition); everything else falls back to the run-wide default.
    """

    def __init__(self, default: FeedbackConfig | None = None) -> None:
        self._default = default or FeedbackConfig()
        self._configs: dict[str, FeedbackConfig] = {}
        self._breakers: dict[str, CircuitBreakerState] = {}

    def set_config(self, node_id: str, config: FeedbackConfig | None) -> None:
        """Give a node its own bounds (None restores the default)."""
        if config is None:
            self._configs.pop(node_id, None)
        else:
            self._configs[node_id] = config

    def config_for(self, node_id: str) -> FeedbackConfig:
        return self._configs.get(node_id, self._default)

    def breaker(self, node_id: str) -> CircuitBreakerState:
        """Breaker state of an emitting node, created on first use."""
        state = self._breakers.get(node_id)
        if state is None:
            state = CircuitBreakerState()
            self._breakers[node_id] = state
        return state

    def forget(self, node_id: str) -> None:
        """Drop everything held for a node leaving the scenario."""
        self._configs.pop(node_id, None)
        self._breakers.pop(node_id, None)

    def check(
        self,
        source: str,
        destination: str,
        *,
        kind: FeedbackKind | None,
        depth: int,
        now: float,
    ) -> FeedbackDecision:
        """Decide whether an emission may be delivered.

        Args:
            source: Emitting node ID
            destination: Destination node ID
            kind: Feedback classification of the edge (None for forward edges)
            depth: Feedback depth of the emission's inputs
            now: Current simulation time

        Returns:
            FeedbackDecision with the depth the delivered token carries

        Raises:
            FeedbackRefusal: If any check fails. Refused events are not
                counted against the breaker.
        """
        if kind is None:
            return FeedbackDecision(kind=None, depth=depth)

        config = self.config_for(source)
        new_depth = depth + 1
        if new_depth > config.max_depth:
            raise FeedbackRefusal(
                RefusalReason.MAX_DEPTH_EXCEEDED,
                f"depth {new_depth} exceeds maxDepth {config.max_depth}",
            )

        if config.circuit_breaker.enabled:
            self._check_breaker(source, config.circuit_breaker, now)

        routing = config.routing
        if not config.enabled:
            raise FeedbackRefusal(RefusalReason.FEEDBACK_DISABLED, f"feedback disabled for {source}")
        if kind == FeedbackKind.SELF and not routing.allow_self_feedback:
            raise FeedbackRefusal(RefusalReason.SELF_FEEDBACK_NOT_ALLOWED, f"{source} -> {destination}")
        if kind == FeedbackKind.EXTERNAL and not routing.allow_external_feedback:
            raise FeedbackRefusal(RefusalReason.EXTERNAL_FEEDBACK_NOT_ALLOWED, f"{source} -> {destination}")
        if destination in routing.blacklisted_nodes:
            raise FeedbackRefusal(RefusalReason.BLACKLISTED_DESTINATION, f"{destination} is blacklisted")

        if config.circuit_breaker.enabled:
            self.breaker(source).count += 1
        return FeedbackDecision(kind=kind, depth=new_depth)

    def _check_breaker(self, source: str, config: CircuitBreakerConfig, now: float) -> None:
        state = self.breaker(source)
        if state.is_open:
            assert state.opened_at is not None
            if now - state.opened_at < config.cooldown_period:
                raise FeedbackRefusal(
                    RefusalReason.CIRCUIT_BREAKER_OPEN,
                    f"breaker open since t={state.opened_at:g} (cooldown {config.cooldown_period:g}s)",
                )
            state.close(now)
            logger.info("circuit_breaker_closed", node_id=source, time=now)
        elif now - state.window_start >= config.time_window:
            state.window_start = now
            state.count = 0

        if state.count >= config.threshold:
            state.is_open = True
            state.opened_at = now
            logger.warning("circuit_breaker_opened", node_id=source, time=now, count=state.count)
            raise FeedbackRefusal(
                RefusalReason.CIRCUIT_BREAKER_OPEN,
                f"{state.count} feedback events in {config.time_window:g}s (threshold {config.threshold})",
            )
