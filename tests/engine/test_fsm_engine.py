# tests/engine/test_fsm_engine.py
"""Tests for FSM transition selection and action execution."""

from typing import Any

from tickflow.contracts.tokens import FSMEvent, FSMMessage
from tickflow.core.scenario import FSMAction, FSMDefinition
from tickflow.engine.fsm import FSMEngine


def _definition(transitions: list[dict[str, Any]], **extra: Any) -> FSMDefinition:
    states = extra.pop(
        "states",
        [
            {"name": "idle", "type": "initial"},
            {"name": "a"},
            {"name": "b"},
        ],
    )
    return FSMDefinition.model_validate({"states": states, "transitions": transitions, **extra})


def _message(type: str = "go", **payload: Any) -> FSMMessage:
    return FSMMessage(message_id="m1", type=type, timestamp=1.0, payload=payload)


def _event(type: str) -> FSMEvent:
    return FSMEvent(event_id="e1", type=type, timestamp=1.0, raw_data=None)


class TestInitialState:
    def test_explicit_initial_state_wins(self) -> None:
        definition = _definition([], initialState="b")
        assert FSMEngine(definition).initial_state == "b"

    def test_typed_initial_state(self) -> None:
        definition = _definition([], states=[{"name": "a"}, {"name": "start", "type": "initial"}])
        assert FSMEngine(definition).initial_state == "start"

    def test_idle_then_first_state(self) -> None:
        assert FSMEngine(_definition([], states=[{"name": "a"}, {"name": "idle"}])).initial_state == "idle"
        assert FSMEngine(_definition([], states=[{"name": "x"}, {"name": "y"}])).initial_state == "x"

    def test_state_ids_resolve_to_names(self) -> None:
        definition = _definition(
            [{"from": "s0", "to": "s1", "trigger": "go"}],
            states=[{"id": "s0", "name": "idle"}, {"id": "s1", "name": "busy"}],
        )
        engine = FSMEngine(definition)
        assert engine.state_name("s1") == "busy"
        assert engine.state_name("unknown") == "unknown"
        assert [t.to for t in engine.outgoing("idle")] == ["s1"]


class TestMessageSelection:
    def test_priority_decides(self) -> None:
        engine = FSMEngine(
            _definition(
                [
                    {"from": "idle", "to": "b", "trigger": "go", "priority": 50},
                    {"from": "idle", "to": "a", "trigger": "go", "priority": 100},
                ]
            )
        )
        transition = engine.select_for_message("idle", _message(), {})
        assert transition is not None
        assert transition.to == "a"

    def test_swapped_priorities_flip_destination(self) -> None:
        engine = FSMEngine(
            _definition(
                [
                    {"from": "idle", "to": "b", "trigger": "go", "priority": 100},
                    {"from": "idle", "to": "a", "trigger": "go", "priority": 50},
                ]
            )
        )
        transition = engine.select_for_message("idle", _message(), {})
        assert transition is not None
        assert transition.to == "b"

    def test_equal_priority_keeps_declaration_order(self) -> None:
        engine = FSMEngine(
            _definition(
                [
                    {"from": "idle", "to": "b", "trigger": "go"},
                    {"from": "idle", "to": "a", "trigger": "go"},
                ]
            )
        )
        transition = engine.select_for_message("idle", _message(), {})
        assert transition is not None
        assert transition.to == "b"

    def test_condition_filters_candidates(self) -> None:
        engine = FSMEngine(
            _definition(
                [
                    {"from": "idle", "to": "a", "trigger": "go", "condition": "message.payload.x > 5", "priority": 200},
                    {"from": "idle", "to": "b", "trigger": "go"},
                ]
            )
        )
        low = _message(x=1)
        high = _message(x=9)
        assert engine.select_for_message("idle", low, {"message": low.as_binding()}).to == "b"  # type: ignore[union-attr]
        assert engine.select_for_message("idle", high, {"message": high.as_binding()}).to == "a"  # type: ignore[union-attr]

    def test_other_states_and_types_ignored(self) -> None:
        engine = FSMEngine(_definition([{"from": "a", "to": "b", "trigger": "go"}]))
        assert engine.select_for_message("idle", _message(), {}) is None
        assert engine.select_for_message("a", _message("stop"), {}) is None


class TestEventSelection:
    def test_event_type_and_wildcard(self) -> None:
        engine = FSMEngine(
            _definition(
                [
                    {"from": "idle", "to": "a", "trigger": {"type": "event", "eventType": "ping"}},
                    {"from": "idle", "to": "b", "trigger": {"type": "event", "eventType": "*"}, "priority": 10},
                ]
            )
        )
        assert engine.select_for_event("idle", _event("ping"), {}).to == "a"  # type: ignore[union-attr]
        assert engine.select_for_event("idle", _event("other"), {}).to == "b"  # type: ignore[union-attr]

    def test_token_received_shorthand(self) -> None:
        engine = FSMEngine(_definition([{"from": "idle", "to": "a", "trigger": "token_received"}]))
        transition = engine.select_for_event("idle", _event("token_received"), {})
        assert transition is not None
        assert transition.describe_trigger() == "token_received"


class TestSpontaneousSelection:
    def test_timer_fires_after_timeout(self) -> None:
        engine = FSMEngine(_definition([{"from": "idle", "to": "a", "trigger": "timer", "timeout": 3}]))
        assert engine.select_spontaneous("idle", elapsed=2.0, bindings={}) is None
        assert engine.select_spontaneous("idle", elapsed=3.0, bindings={}) is not None

    def test_condition_trigger(self) -> None:
        engine = FSMEngine(_definition([{"from": "idle", "to": "a", "trigger": "condition", "condition": "count >= 3"}]))
        assert engine.select_spontaneous("idle", elapsed=0, bindings={"count": 2}) is None
        assert engine.select_spontaneous("idle", elapsed=0, bindings={"count": 3}) is not None

    def test_manual_labels(self) -> None:
        engine = FSMEngine(
            _definition(
                [
                    {"from": "idle", "to": "a", "trigger": {"type": "manual", "label": "reset"}},
                    {"from": "idle", "to": "b", "trigger": {"type": "manual", "label": "skip"}},
                ]
            )
        )
        assert engine.select_spontaneous("idle", elapsed=0, bindings={}) is None
        assert engine.select_spontaneous("idle", elapsed=0, bindings={}, manual=["skip"]).to == "b"  # type: ignore[union-attr]
        # An empty label fires any manual transition; declaration order breaks the tie
        assert engine.select_spontaneous("idle", elapsed=0, bindings={}, manual=[""]).to == "a"  # type: ignore[union-attr]


class TestExecute:
    def _engine(self) -> FSMEngine:
        return FSMEngine(
            _definition(
                [{"from": "idle", "to": "a", "trigger": "go"}],
                states=[
                    {
                        "name": "idle",
                        "onExit": [{"action": "log", "value": "leaving idle"}],
                    },
                    {
                        "name": "a",
                        "onEntry": [
                            {"action": "increment", "target": "count"},
                            {"action": "set_variable", "target": "last", "formula": "message.payload.x"},
                            {"action": "emit", "target": "out", "formula": "count * 10"},
                            {"action": "emit", "target": "flag", "value": "on"},
                            {"action": "emit", "target": "nothing"},
                        ],
                    },
                ],
            )
        )

    def test_exit_then_entry_actions(self) -> None:
        engine = self._engine()
        transition = engine.outgoing("idle")[0]
        variables: dict[str, Any] = {"count": 1}
        outcome = engine.execute(transition, variables, {"message": _message(x=4).as_binding()})

        assert variables == {"count": 2, "last": 4}
        assert [(e.kind, e.target, e.value, e.text) for e in outcome.effects] == [
            ("log", None, None, "leaving idle"),
            ("emit", "out", 20, ""),
            ("emit", "flag", "on", ""),
        ]
        assert outcome.from_state == "idle"
        assert outcome.to_state == "a"
        assert outcome.details == "idle → a (go)"

    def test_failing_action_becomes_error_effect(self) -> None:
        engine = self._engine()
        transition = engine.outgoing("idle")[0]
        variables: dict[str, Any] = {}
        # No ``message`` binding: set_variable fails, the emits still run
        outcome = engine.execute(transition, variables, {})

        kinds = [e.kind for e in outcome.effects]
        assert kinds == ["log", "error", "emit", "emit"]
        error = outcome.effects[1]
        assert error.target == "last"
        assert error.formula == "message.payload.x"
        assert variables == {"count": 1}

    def test_decrement_and_non_numeric_increment(self) -> None:
        engine = FSMEngine(_definition([]))
        variables: dict[str, Any] = {"n": 5, "s": "text"}
        effects = engine.run_actions(
            [
                FSMAction.model_validate({"action": "decrement", "target": "n", "value": 2}),
                FSMAction.model_validate({"action": "increment", "target": "s"}),
            ],
            variables,
            {},
        )
        assert variables["n"] == 3
        assert len(effects) == 1
        assert effects[0].kind == "error"
        assert "cannot increment s" in effects[0].text
