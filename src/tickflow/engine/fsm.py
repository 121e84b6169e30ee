"""Generic state machine executor shared by FSMProcessNode runtimes.

The engine is pure with respect to the simulation: it selects transitions
and runs entry/exit actions against a variables mapping, returning the
effects (emissions, log lines, formula failures) for the caller to route and
log. States are tracked by name.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, MutableMapping
from dataclasses import dataclass
from typing import Any, Literal

from tickflow.contracts.enums import FSMActionKind
from tickflow.contracts.errors import FormulaError, FormulaEvaluationError
from tickflow.contracts.tokens import FSMEvent, FSMMessage
from tickflow.core.scenario import (
    ConditionTrigger,
    EventTrigger,
    FSMAction,
    FSMDefinition,
    FSMTransition,
    ManualTrigger,
    MessageTrigger,
    TimerTrigger,
)
from tickflow.engine.expression_parser import compile_formula

# Event type every arriving token carries unless its payload names one
TOKEN_RECEIVED = "token_received"


@dataclass(frozen=True)
class ActionEffect:
    """Something an action asks the caller to do.

    kind:
        emit   send ``value`` out of output ``target``
        log    append an fsm_log entry with ``text``
        error  an action formula failed; ``formula`` and ``text`` say how
    """

    kind: Literal["emit", "log", "error"]
    target: str | None = None
    value: Any = None
    text: str = ""
    formula: str = ""


@dataclass(frozen=True)
class TransitionOutcome:
    """A transition that was executed, with the effects of its actions."""

    transition: FSMTransition
    from_state: str
    to_state: str
    effects: list[ActionEffect]

    @property
    def details(self) -> str:
        """``from → to (trigger)``, as recorded in fsm_transition entries."""
        return f"{self.from_state} → {self.to_state} ({self.transition.describe_trigger()})"


class FSMEngine:
    """Transition selection and action execution for one FSMDefinition.

    Example:
        engine = FSMEngine(definition)
        state = engine.initial_state
        transition = engine.select_for_message(state, message, bindings)
        if transition is not None:
            outcome = engine.execute(transition, variables, bindings)
    """

    def __init__(self, definition: FSMDefinition) -> None:
        self._definition = definition
        # Declaration order is kept; selection relies on it for ties
        self._transitions = list(definition.transitions)

    @property
    def definition(self) -> FSMDefinition:
        return self._definition

    @property
    def initial_state(self) -> str:
        return self._definition.entry_state.name

    def state_name(self, ref: str) -> str:
        """Resolve a state id or name to its name (unknown refs pass through)."""
        state = self._definition.resolve_state(ref)
        return state.name if state is not None else ref

    def outgoing(self, current: str) -> list[FSMTransition]:
        """Transitions leaving ``current``, in declaration order."""
        return [t for t in self._transitions if self.state_name(t.from_state) == current]

    @staticmethod
    def pick(candidates: Iterable[FSMTransition]) -> FSMTransition | None:
        """Highest priority wins; the earliest declared wins ties."""
        best: FSMTransition | None = None
        for transition in candidates:
            if best is None or transition.priority > best.priority:
                best = transition
        return best

    def _condition_holds(self, condition: str | None, bindings: Mapping[str, Any]) -> bool:
        if condition is None:
            return True
        return bool(compile_formula(condition).evaluate(bindings))

    def select_for_message(
        self, current: str, message: FSMMessage, bindings: Mapping[str, Any]
    ) -> FSMTransition | None:
        """Best message-triggered transition for ``message``.

        Raises:
            FormulaError: If a candidate's condition fails to evaluate
        """
        return self.pick(
            t
            for t in self.outgoing(current)
            if isinstance(t.trigger, MessageTrigger)
            and t.trigger.message_type == message.type
            and self._condition_holds(t.trigger.condition, bindings)
        )

    def select_for_event(
        self, current: str, event: FSMEvent, bindings: Mapping[str, Any]
    ) -> FSMTransition | None:
        """Best event-triggered transition for a raw event.

        Raises:
            FormulaError: If a candidate's condition fails to evaluate
        """
        return self.pick(
            t
            for t in self.outgoing(current)
            if isinstance(t.trigger, EventTrigger)
            and t.trigger.event_type in (event.type, "*")
            and self._condition_holds(t.trigger.condition, bindings)
        )

    def select_spontaneous(
        self,
        current: str,
        *,
        elapsed: float,
        bindings: Mapping[str, Any],
        manual: Iterable[str] = (),
    ) -> FSMTransition | None:
        """Best timer, condition or manual transition.

        Args:
            current: Current state name
            elapsed: Seconds spent in ``current``
            bindings: Formula bindings for conditions
            manual: Labels of queued manual triggers; ``""`` matches any
                manual transition

        Raises:
            FormulaError: If a condition fails to evaluate
        """
        labels = set(manual)
        candidates = []
        for t in self.outgoing(current):
            trigger = t.trigger
            if isinstance(trigger, TimerTrigger):
                if elapsed >= trigger.timeout:
                    candidates.append(t)
            elif isinstance(trigger, ConditionTrigger):
                if self._condition_holds(trigger.condition, bindings):
                    candidates.append(t)
            elif isinstance(trigger, ManualTrigger):
                if "" in labels or (trigger.label or "") in labels:
                    candidates.append(t)
        return self.pick(candidates)

    def execute(
        self,
        transition: FSMTransition,
        variables: MutableMapping[str, Any],
        bindings: Mapping[str, Any],
    ) -> TransitionOutcome:
        """Run the source state's exit actions, then the destination's entry actions.

        Variable actions update ``variables`` in place; later actions see
        earlier updates. The caller records the new current state.
        """
        source = self._definition.resolve_state(transition.from_state)
        destination = self._definition.resolve_state(transition.to)
        effects: list[ActionEffect] = []
        if source is not None:
            effects.extend(self.run_actions(source.on_exit, variables, bindings))
        if destination is not None:
            effects.extend(self.run_actions(destination.on_entry, variables, bindings))
        return TransitionOutcome(
            transition=transition,
            from_state=source.name if source is not None else transition.from_state,
            to_state=destination.name if destination is not None else transition.to,
            effects=effects,
        )

    def run_actions(
        self,
        actions: Iterable[FSMAction],
        variables: MutableMapping[str, Any],
        bindings: Mapping[str, Any],
    ) -> list[ActionEffect]:
        """Execute actions in order.

        A failing formula becomes an ``error`` effect and the remaining
        actions still run.
        """
        effects: list[ActionEffect] = []
        for action in actions:
            scope = {**bindings, **variables, "variables": dict(variables)}
            try:
                effect = self._run_action(action, variables, scope)
            except FormulaError as e:
                effects.append(ActionEffect(kind="error", target=action.target, text=str(e), formula=e.formula))
                continue
            if effect is not None:
                effects.append(effect)
        return effects

    def _run_action(
        self,
        action: FSMAction,
        variables: MutableMapping[str, Any],
        scope: Mapping[str, Any],
    ) -> ActionEffect | None:
        kind = action.action
        if kind == FSMActionKind.EMIT:
            if action.formula is not None:
                return ActionEffect(kind="emit", target=action.target, value=compile_formula(action.formula).evaluate(scope))
            if action.value is not None:
                return ActionEffect(kind="emit", target=action.target, value=action.value)
            return None
        if kind == FSMActionKind.LOG:
            text = action.value if action.value is not None else action.formula
            return ActionEffect(kind="log", text=str(text) if text is not None else "FSM log action")

        assert action.target is not None
        if kind == FSMActionKind.SET_VARIABLE:
            if action.formula is not None:
                variables[action.target] = compile_formula(action.formula).evaluate(scope)
            else:
                variables[action.target] = action.value
            return None

        if action.formula is not None:
            step = compile_formula(action.formula).evaluate(scope)
        else:
            step = action.value if action.value is not None else 1
        current = variables.get(action.target) or 0
        try:
            variables[action.target] = current + step if kind == FSMActionKind.INCREMENT else current - step
        except TypeError as e:
            raise FormulaEvaluationError(
                f"cannot {kind.value} {action.target}={current!r} by {step!r}", action.formula or ""
            ) from e
        return None
