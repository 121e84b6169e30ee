# tests/core/test_scenario.py
"""Tests for Scenario loading, validation and edits."""

import json

import pytest
from scenario_builders import build_scenario, datasource, fsm_node, process, queue, sink

from tickflow.contracts.enums import AggregationMethod, FSMStateType, GenerationType, NodeKind
from tickflow.contracts.errors import ConfigError
from tickflow.core.scenario import (
    DataSourceNode,
    FSMDefinition,
    FSMTransition,
    MessageTrigger,
    QueueNode,
    Scenario,
    TimerTrigger,
    apply_node_edit,
    apply_scenario_edit,
    dump_scenario,
    load_scenario,
    scenario_from_dict,
)


def _document(*nodes: dict) -> str:
    return json.dumps({"version": 1, "nodes": list(nodes)})


class TestLoadScenario:
    def test_minimal_scenario(self) -> None:
        scenario = load_scenario(_document(datasource("src", dest="out"), sink("out")))
        assert scenario.node_ids() == ["src", "out"]
        assert scenario.get_node("src").kind == NodeKind.DATA_SOURCE

    def test_empty_scenario_is_valid(self) -> None:
        assert load_scenario('{"nodes": []}').nodes == []

    def test_malformed_json(self) -> None:
        with pytest.raises(ConfigError, match="Malformed scenario JSON"):
            load_scenario("{not json")

    def test_unknown_node_type(self) -> None:
        with pytest.raises(ConfigError):
            load_scenario(_document({"type": "Teleporter", "nodeId": "x"}))

    def test_unknown_field_rejected(self) -> None:
        with pytest.raises(ConfigError):
            load_scenario(_document(sink("out", colour="red")))

    def test_dangling_reference(self) -> None:
        with pytest.raises(ConfigError, match="references unknown node 'ghost'"):
            load_scenario(_document(datasource("src", dest="ghost")))

    def test_duplicate_node_id(self) -> None:
        with pytest.raises(ConfigError, match="duplicate nodeId 'out'"):
            load_scenario(_document(sink("out"), sink("out")))

    def test_group_is_not_a_destination(self) -> None:
        group = {"type": "Group", "nodeId": "g", "containedNodes": []}
        with pytest.raises(ConfigError, match="not a routable destination"):
            load_scenario(_document(datasource("src", dest="g"), group))

    def test_datasource_accepts_no_inputs(self) -> None:
        with pytest.raises(ConfigError, match="accepts no inputs"):
            load_scenario(_document(datasource("a", dest="b"), datasource("b")))

    def test_invalid_formula_rejected_at_load(self) -> None:
        node = process(
            "p",
            inputs=[{"alias": "a"}],
            outputs=[{"destinationNodeId": "", "formula": "a.data.value +"}],
        )
        with pytest.raises(ConfigError, match="Invalid formula"):
            load_scenario(_document(node))

    def test_forbidden_formula_rejected_at_load(self) -> None:
        node = process(
            "p",
            inputs=[{"alias": "a"}],
            outputs=[{"formula": "__import__('os')"}],
        )
        with pytest.raises(ConfigError):
            load_scenario(_document(node))

    def test_config_error_lists_each_problem(self) -> None:
        with pytest.raises(ConfigError) as exc_info:
            load_scenario(_document({"type": "DataSource", "nodeId": "src", "interval": -1}))
        assert exc_info.value.errors
        assert any("interval" in line for line in exc_info.value.errors)


class TestShorthands:
    def test_destination_shorthand(self) -> None:
        node = {"type": "DataSource", "nodeId": "src", "interval": 1, "destinationNodeId": "out"}
        scenario = scenario_from_dict({"nodes": [node, sink("out")]})
        src = scenario.get_node("src")
        assert isinstance(src, DataSourceNode)
        assert src.outputs[0].destination_node_id == "out"

    def test_value_range_shorthand(self) -> None:
        node = {"type": "DataSource", "nodeId": "src", "interval": 1, "valueMin": 2, "valueMax": 4}
        src = scenario_from_dict({"nodes": [node]}).get_node("src")
        assert isinstance(src, DataSourceNode)
        assert src.generation.type == GenerationType.RANDOM
        assert (src.generation.value_min, src.generation.value_max) == (2, 4)

    def test_inverted_range_rejected(self) -> None:
        node = {"type": "DataSource", "nodeId": "src", "interval": 1, "valueMin": 5, "valueMax": 1}
        with pytest.raises(ConfigError, match="must not exceed"):
            scenario_from_dict({"nodes": [node]})

    def test_random_range_without_integer_rejected(self) -> None:
        node = {"type": "DataSource", "nodeId": "src", "interval": 1, "valueMin": 0.2, "valueMax": 0.8}
        with pytest.raises(ConfigError, match="contains no integer"):
            scenario_from_dict({"nodes": [node]})

    def test_queue_time_window_shorthand(self) -> None:
        node = {"type": "Queue", "nodeId": "q", "timeWindow": 3, "aggregationMethod": "average"}
        q = scenario_from_dict({"nodes": [node]}).get_node("q")
        assert isinstance(q, QueueNode)
        assert q.aggregation.method == AggregationMethod.AVERAGE
        assert q.aggregation.trigger.window == 3

    def test_custom_aggregation_needs_formula(self) -> None:
        with pytest.raises(ConfigError, match="custom aggregation requires a formula"):
            build_scenario(queue("q", method="custom"))

    def test_count_trigger_needs_threshold(self) -> None:
        with pytest.raises(ConfigError, match="count trigger requires a threshold"):
            build_scenario(queue("q", trigger={"type": "count"}))


class TestFSMDefinition:
    def test_string_trigger_is_message(self) -> None:
        t = FSMTransition.model_validate({"from": "idle", "to": "busy", "trigger": "start"})
        assert isinstance(t.trigger, MessageTrigger)
        assert t.trigger.message_type == "start"
        assert t.priority == 100

    def test_legacy_timer_string(self) -> None:
        t = FSMTransition.model_validate({"from": "a", "to": "b", "trigger": "timer", "timeout": 3})
        assert isinstance(t.trigger, TimerTrigger)
        assert t.trigger.timeout == 3

    def test_unknown_state_reference(self) -> None:
        with pytest.raises(ValueError, match="unknown state 'nowhere'"):
            FSMDefinition.model_validate(
                {"states": [{"name": "idle"}], "transitions": [{"from": "idle", "to": "nowhere", "trigger": "go"}]}
            )

    def test_entry_state_precedence(self) -> None:
        states = [{"name": "first"}, {"name": "idle"}, {"name": "start", "type": "initial"}]
        assert FSMDefinition.model_validate({"states": states}).entry_state.name == "start"
        assert FSMDefinition.model_validate({"states": states[:2]}).entry_state.name == "idle"
        assert FSMDefinition.model_validate({"states": states[:1]}).entry_state.name == "first"
        explicit = FSMDefinition.model_validate({"states": states, "initialState": "first"})
        assert explicit.entry_state.name == "first"

    def test_states_resolve_by_id_then_name(self) -> None:
        definition = FSMDefinition.model_validate({"states": [{"id": "s1", "name": "idle"}]})
        assert definition.resolve_state("s1") is definition.resolve_state("idle")
        assert definition.entry_state.type == FSMStateType.INTERMEDIATE

    def test_emit_targets(self) -> None:
        definition = FSMDefinition.model_validate(
            {
                "states": [
                    {"name": "a", "onEntry": [{"action": "emit", "target": "out", "value": 1}]},
                    {"name": "b", "actions": [{"action": "emit", "target": "alarm", "value": 2}]},
                ]
            }
        )
        assert definition.emit_targets() == ["out", "alarm"]

    def test_emit_requires_target(self) -> None:
        with pytest.raises(ValueError, match="requires a target"):
            FSMDefinition.model_validate({"states": [{"name": "a", "onEntry": [{"action": "emit", "value": 1}]}]})


class TestModules:
    def test_module_ports_and_inner_graph(self) -> None:
        module = {
            "type": "Module",
            "nodeId": "m",
            "nodes": [
                process(
                    "inner",
                    inputs=[{"alias": "x"}],
                    outputs=[{"destinationNodeId": "m", "destinationInputName": "result", "formula": "x.data.value"}],
                )
            ],
            "inputs": [{"name": "in", "nodeId": "inner"}],
            "outputs": [{"name": "result", "destinationNodeId": "out"}],
        }
        scenario = build_scenario(datasource("src", dest="m"), module, sink("out"))
        assert scenario.get_node("m").kind == NodeKind.MODULE

    def test_module_input_must_name_inner_node(self) -> None:
        module = {"type": "Module", "nodeId": "m", "nodes": [sink("inner")], "inputs": [{"name": "in", "nodeId": "x"}]}
        with pytest.raises(ConfigError, match="unknown inner node 'x'"):
            build_scenario(module)


class TestRoundTrip:
    def test_dump_then_load_is_identity(self) -> None:
        scenario = build_scenario(
            datasource("src", dest="q", generation={"type": "uniform", "valueMin": 1, "valueMax": 2}),
            queue("q", dest="fsm", method="max", capacity=4),
            fsm_node(
                "fsm",
                fsm={
                    "states": [{"name": "idle"}, {"name": "alert"}],
                    "transitions": [{"from": "idle", "to": "alert", "trigger": "token_received"}],
                },
                outputs=[{"name": "out", "destinationNodeId": "out"}],
            ),
            sink("out"),
        )
        text = dump_scenario(scenario)
        assert load_scenario(text) == scenario
        assert '"nodeId"' in text

    def test_compact_dump(self) -> None:
        assert "\n" not in dump_scenario(Scenario(), indent=None)


class TestEdits:
    @pytest.fixture
    def current(self) -> Scenario:
        return build_scenario(datasource("src", interval=2, dest="out"), sink("out"))

    def test_edit_changes_configuration(self, current: Scenario) -> None:
        edited = apply_scenario_edit(current, _document(datasource("src", interval=5, dest="out"), sink("out")))
        src = edited.get_node("src")
        assert isinstance(src, DataSourceNode)
        assert src.interval == 5
        original = current.get_node("src")
        assert isinstance(original, DataSourceNode)
        assert original.interval == 2

    def test_edit_may_not_rename(self, current: Scenario) -> None:
        with pytest.raises(ConfigError, match="changes nodeId"):
            apply_scenario_edit(current, _document(datasource("source", dest="out"), sink("out")))

    def test_edit_may_not_add_nodes(self, current: Scenario) -> None:
        with pytest.raises(ConfigError, match="node set"):
            apply_scenario_edit(current, _document(datasource("src", dest="out"), sink("out"), sink("extra")))

    def test_malformed_edit(self, current: Scenario) -> None:
        with pytest.raises(ConfigError):
            apply_scenario_edit(current, "[")

    def test_node_edit(self, current: Scenario) -> None:
        edited = apply_node_edit(current, "src", json.dumps(datasource("src", interval=9, dest="out")))
        src = edited.get_node("src")
        assert isinstance(src, DataSourceNode)
        assert src.interval == 9

    def test_node_edit_rename_rejected(self, current: Scenario) -> None:
        with pytest.raises(ConfigError, match="changes nodeId"):
            apply_node_edit(current, "src", json.dumps(datasource("other")))

    def test_node_edit_unknown_node(self, current: Scenario) -> None:
        with pytest.raises(KeyError):
            apply_node_edit(current, "ghost", "{}")
