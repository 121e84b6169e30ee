# tests/engine/test_process_runtime.py
"""Tests for ProcessNode firing and per-output formulas."""

from typing import Any

from scenario_builders import build_scenario, datasource, entries, process, sink, times

from tickflow.contracts.tokens import Token
from tickflow.core.scenario import ProcessInput
from tickflow.engine import Scheduler
from tickflow.engine.runtime.process import match_input, token_bindings

SUM_TO_SINK = [{"formula": "inputA.data.value + inputB.data.value", "destinationNodeId": "Sink_1"}]


def _two_input_scenario(**b_input: Any) -> Any:
    return build_scenario(
        datasource("A", interval=1, dest="P", value=2),
        datasource("B", interval=2, dest="P", value=3),
        process(
            "P",
            inputs=[
                {"nodeId": "A", "alias": "inputA"},
                {"nodeId": "B", "alias": "inputB", **b_input},
            ],
            outputs=SUM_TO_SINK,
        ),
        sink("Sink_1"),
    )


class TestHelpers:
    def test_match_input_prefers_named_port(self) -> None:
        inputs = [
            ProcessInput(node_id="src", alias="a"),
            ProcessInput(node_id="src", alias="b", name="side"),
        ]
        plain = Token(token_id="t1", value=1, origin_node_id="src", emitted_at=0)
        named = Token(token_id="t2", value=1, origin_node_id="src", emitted_at=0, destination_input="side")
        stranger = Token(token_id="t3", value=1, origin_node_id="other", emitted_at=0)
        assert match_input(inputs, plain) is inputs[0]
        assert match_input(inputs, named) is inputs[1]
        assert match_input(inputs, stranger) is None

    def test_token_bindings(self) -> None:
        token = Token(token_id="t1", value=4, origin_node_id="src", emitted_at=0, payload={"unit": "C"})
        bindings = token_bindings({"a": token})
        assert bindings["a"] == {"data": {"unit": "C", "value": 4}, "value": 4}
        assert bindings["aValue"] == 4
        assert bindings["inputs"] == {"a": {"value": 4}}


class TestFiring:
    def test_requires_both_inputs(self) -> None:
        scheduler = Scheduler(_two_input_scenario())
        scheduler.run(6)

        # B emits at t=2,4,6; P sees each B token the tick after it arrives
        assert times(scheduler, "P", "firing") == [3.0, 5.0]
        assert times(scheduler, "Sink_1", "token_consumed") == [3.0, 5.0]
        sink_state = scheduler.node_state("Sink_1")
        assert [t.value for t in sink_state.consumed_tokens] == [5, 5]
        assert scheduler.node_state("P").fired_count == sink_state.consumed_token_count

    def test_each_firing_adds_one_consumed_token(self) -> None:
        scheduler = Scheduler(_two_input_scenario())
        counts = []
        for _ in range(8):
            scheduler.tick()
            counts.append(
                (scheduler.node_state("P").fired_count, scheduler.node_state("Sink_1").consumed_token_count)
            )
        assert all(fired == consumed for fired, consumed in counts)
        assert counts[-1] == (3, 3)

    def test_fires_with_optional_input_missing(self) -> None:
        scenario = build_scenario(
            datasource("A", interval=1, dest="P", value=2),
            datasource("B", interval=100, dest="P", value=3),
            process(
                "P",
                inputs=[
                    {"nodeId": "A", "alias": "inputA"},
                    {"nodeId": "B", "alias": "inputB", "required": False},
                ],
                outputs=[{"formula": "inputA.data.value * 10", "destinationNodeId": "Sink_1"}],
            ),
            sink("Sink_1"),
        )
        scheduler = Scheduler(scenario)
        scheduler.run(3)
        assert times(scheduler, "P", "firing") == [2.0, 3.0]

    def test_consumes_one_token_per_input(self) -> None:
        scheduler = Scheduler(_two_input_scenario())
        scheduler.run(3)
        state = scheduler.node_state("P")
        # A tokens from t=1,2 arrived; t=1 was consumed at t=3, t=2 and t=3 remain
        assert [t.token_id for t in state.input_buffers["inputA"]] == ["A:2", "A:3"]
        assert state.input_buffers["inputB"] == []
        assert state.phase == "collecting"

    def test_output_token_lineage(self) -> None:
        scheduler = Scheduler(_two_input_scenario())
        scheduler.run(3)
        token = scheduler.node_state("Sink_1").consumed_tokens[0]
        assert token.token_id == "P:1"
        assert token.parent_ids == ("A:1", "B:1")
        assert token.generation == 1


class TestOutputs:
    def test_failing_output_skips_only_itself(self) -> None:
        scenario = build_scenario(
            datasource("A", dest="P", value=2),
            process(
                "P",
                inputs=[{"nodeId": "A", "alias": "a"}],
                outputs=[
                    {"formula": "a.data.missing", "destinationNodeId": "bad"},
                    {"formula": "a.data.value + 1", "destinationNodeId": "good"},
                ],
            ),
            sink("bad"),
            sink("good"),
        )
        scheduler = Scheduler(scenario)
        scheduler.run(2)

        assert scheduler.node_state("bad").consumed_token_count == 0
        assert [t.value for t in scheduler.node_state("good").consumed_tokens] == [3]
        errors = entries(scheduler, "P", "formula_error")
        assert len(errors) == 1
        assert errors[0].details.startswith("a.data.missing: ")
        assert scheduler.node_state("P").error is not None
        assert scheduler.node_state("P").fired_count == 1

    def test_overflowing_function_is_a_formula_error(self) -> None:
        scenario = build_scenario(
            datasource("A", dest="P", value=10),
            process(
                "P",
                inputs=[{"nodeId": "A", "alias": "inputA"}],
                outputs=[
                    {"formula": "ceil(inputA.data.value * 1e308)", "destinationNodeId": "bad"},
                    {"formula": "inputA.data.value + 1", "destinationNodeId": "good"},
                ],
            ),
            sink("bad"),
            sink("good"),
        )
        scheduler = Scheduler(scenario)
        scheduler.run(3)

        assert entries(scheduler, "P", "error") == []
        assert len(entries(scheduler, "P", "formula_error")) == 2
        assert [t.value for t in scheduler.node_state("good").consumed_tokens] == [11, 11]
        assert scheduler.node_state("P").fired_count == 2

    def test_alias_value_shorthand(self) -> None:
        scenario = build_scenario(
            datasource("A", dest="P", value=4),
            process(
                "P",
                inputs=[{"nodeId": "A", "alias": "a"}],
                outputs=[{"formula": "aValue * inputs.a.value", "destinationNodeId": "out"}],
            ),
            sink("out"),
        )
        scheduler = Scheduler(scenario)
        scheduler.run(2)
        assert [t.value for t in scheduler.node_state("out").consumed_tokens] == [16]

    def test_unmatched_token_dropped(self) -> None:
        scenario = build_scenario(process("P", inputs=[{"nodeId": "", "alias": "a", "name": "left"}], outputs=[]))
        scheduler = Scheduler(scenario)
        scheduler.context.deliver("P", Token(token_id="x:1", value=1, origin_node_id="x", emitted_at=0))
        dropped = entries(scheduler, "P", "token_dropped")
        assert len(dropped) == 1
        assert "No input accepts token x:1" in (dropped[0].details or "")

    def test_no_inputs_never_fires(self) -> None:
        scheduler = Scheduler(build_scenario(process("P", inputs=[], outputs=[])))
        scheduler.run(3)
        assert scheduler.node_state("P").fired_count == 0
