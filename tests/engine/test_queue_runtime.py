# tests/engine/test_queue_runtime.py
"""Tests for Queue buffering, triggers and aggregation."""

from typing import Any

import pytest
from scenario_builders import build_scenario, datasource, entries, queue, sink, times

from tickflow.contracts.errors import FormulaEvaluationError
from tickflow.contracts.tokens import Token
from tickflow.core.scenario import Aggregation
from tickflow.engine import Scheduler
from tickflow.engine.runtime.queue import aggregate


def _token(n: int, value: Any) -> Token:
    return Token(token_id=f"feed:{n}", value=value, origin_node_id="feed", emitted_at=0.0)


def _feed(scheduler: Scheduler, node_id: str, values: list[Any], start: int = 0) -> None:
    for offset, value in enumerate(values):
        scheduler.context.deliver(node_id, _token(start + offset, value))


def _aggregation(method: str, formula: str | None = None) -> Aggregation:
    return Aggregation.model_validate({"method": method, "formula": formula, "trigger": {"window": 1}})


class TestAggregate:
    @pytest.mark.parametrize(
        ("method", "expected"),
        [
            ("sum", 10),
            ("average", 2.5),
            ("count", 4),
            ("first", 4),
            ("last", 2),
            ("min", 1),
            ("max", 4),
        ],
    )
    def test_methods(self, method: str, expected: Any) -> None:
        assert aggregate(_aggregation(method), [4, 3, 1, 2]) == expected

    def test_custom_formula_bindings(self) -> None:
        aggregation = _aggregation("custom", "sum / count + values[0]")
        assert aggregate(aggregation, [4, 2]) == 7

    def test_custom_formula_with_non_numeric_values(self) -> None:
        aggregation = _aggregation("custom", "count")
        assert aggregate(aggregation, ["a", "b"]) == 2

    def test_custom_formula_failure(self) -> None:
        with pytest.raises(FormulaEvaluationError):
            aggregate(_aggregation("custom", "values[5]"), [1])

    def test_non_numeric_sum(self) -> None:
        with pytest.raises(TypeError):
            aggregate(_aggregation("sum"), [1, "x"])


class TestCapacityAndTimeWindow:
    def test_full_buffer_drops_and_window_aggregates_retained(self) -> None:
        scenario = build_scenario(
            queue("q", dest="out", capacity=10, trigger={"type": "time", "window": 5}),
            sink("out"),
        )
        scheduler = Scheduler(scenario)

        # 12 tokens within the first 2 simulated seconds
        scheduler.tick()
        _feed(scheduler, "q", list(range(1, 7)))
        scheduler.tick()
        _feed(scheduler, "q", list(range(7, 13)), start=6)

        state = scheduler.node_state("q")
        assert state.buffer_size() == 10
        assert state.dropped_count == 2
        dropped = entries(scheduler, "q", "token_dropped")
        assert [e.value for e in dropped] == [11, 12]
        assert "Buffer full (10/10) at q" in (dropped[0].details or "")

        scheduler.run(3)
        assert times(scheduler, "q", "processing") == [5.0]
        processing = entries(scheduler, "q", "processing")[0]
        assert processing.value == sum(range(1, 11))
        consumed = scheduler.node_state("out").consumed_tokens
        assert [t.value for t in consumed] == [55]
        assert consumed[0].emitted_at == 5.0
        assert len(consumed[0].parent_ids) == 10
        assert consumed[0].generation == 1
        assert state.buffer_size() == 0

    def test_unbounded_queue_never_drops(self) -> None:
        scheduler = Scheduler(build_scenario(queue("q", trigger={"type": "time", "window": 50})))
        _feed(scheduler, "q", list(range(500)))
        state = scheduler.node_state("q")
        assert state.buffer_size() == 500
        assert state.dropped_count == 0

    def test_empty_window_logs_trigger_met(self) -> None:
        scheduler = Scheduler(build_scenario(queue("q", trigger={"type": "time", "window": 2})))
        scheduler.run(5)
        met = entries(scheduler, "q", "trigger_met")
        assert [e.timestamp for e in met] == [2.0, 4.0]
        assert met[0].details == "No tokens in input buffer"
        assert entries(scheduler, "q", "processing") == []

    def test_window_restarts_after_firing(self) -> None:
        scenario = build_scenario(
            datasource("src", dest="q", value=1),
            queue("q", dest="out", trigger={"type": "time", "window": 3}),
            sink("out"),
        )
        scheduler = Scheduler(scenario)
        scheduler.run(9)
        assert times(scheduler, "q", "processing") == [3.0, 6.0, 9.0]
        # Tokens from t=1,2 fire at t=3; later windows hold three each
        assert [t.value for t in scheduler.node_state("out").consumed_tokens] == [2, 3, 3]


class TestCountTrigger:
    def test_fires_threshold_tokens(self) -> None:
        scenario = build_scenario(
            datasource("src", dest="q", value=2),
            queue("q", dest="out", trigger={"type": "count", "threshold": 3}),
            sink("out"),
        )
        scheduler = Scheduler(scenario)
        scheduler.run(4)
        assert times(scheduler, "q", "processing") == [4.0]
        assert [t.value for t in scheduler.node_state("out").consumed_tokens] == [6]

    def test_leftover_tokens_stay_buffered(self) -> None:
        scheduler = Scheduler(build_scenario(queue("q", trigger={"type": "count", "threshold": 2})))
        _feed(scheduler, "q", [1, 2, 3])
        scheduler.tick()
        state = scheduler.node_state("q")
        assert [t.value for t in state.input_buffer] == [3]
        assert state.phase == "accumulating"
        assert state.aggregated_count == 1

    def test_time_window_wins_over_threshold(self) -> None:
        scenario = build_scenario(
            queue("q", dest="out", trigger={"type": "time", "window": 2, "threshold": 2}),
            sink("out"),
        )
        scheduler = Scheduler(scenario)
        scheduler.tick()
        _feed(scheduler, "q", [1, 2, 3])
        scheduler.tick()
        # Both triggers hold at t=2; the window fires over the whole buffer
        assert [t.value for t in scheduler.node_state("out").consumed_tokens] == [6]
        assert scheduler.node_state("q").buffer_size() == 0


class TestAggregationFailures:
    def test_type_error_keeps_tokens(self) -> None:
        scheduler = Scheduler(build_scenario(queue("q", trigger={"type": "count", "threshold": 2})))
        _feed(scheduler, "q", [1, "x"])
        scheduler.tick()
        state = scheduler.node_state("q")
        assert state.buffer_size() == 2
        assert state.error is not None
        errors = entries(scheduler, "q", "error")
        assert errors[0].details.startswith("sum aggregation failed")

    def test_formula_error_logged(self) -> None:
        custom = {"method": "custom", "formula": "values[3]", "trigger": {"type": "count", "threshold": 1}}
        scheduler = Scheduler(build_scenario(queue("q", aggregation=custom)))
        _feed(scheduler, "q", [1])
        scheduler.tick()
        errors = entries(scheduler, "q", "formula_error")
        assert len(errors) == 1
        assert errors[0].details.startswith("values[3]: ")
        assert scheduler.node_state("q").buffer_size() == 1
