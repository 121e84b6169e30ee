# tests/engine/test_simulation_context.py
"""Tests for staged delivery, token identity and failure isolation."""

from typing import Any

from scenario_builders import build_scenario, datasource, entries, process, queue, sink

from tickflow.contracts.enums import ActivityAction, NodeKind
from tickflow.contracts.errors import FormulaEvaluationError
from tickflow.contracts.tokens import Token
from tickflow.core.scenario import OutputPort
from tickflow.engine import Scheduler
from tickflow.engine.runtime.sink import SinkRuntime
from tickflow.plugins.hookspecs import hookimpl
from tickflow.plugins.manager import RuntimeRegistry


def _scheduler() -> Scheduler:
    return Scheduler(
        build_scenario(
            datasource("src", dest="q", value=1),
            queue("q", dest="out", trigger={"type": "count", "threshold": 1}),
            sink("out"),
        )
    )


class TestStaging:
    def test_emit_stages_until_commit(self) -> None:
        scheduler = _scheduler()
        ctx = scheduler.context
        state = ctx.states["src"]

        token = ctx.emit(state, OutputPort(destination_node_id="q"), 9)
        assert token is not None
        assert ctx.pending == 1
        assert ctx.states["q"].buffer_size() == 0

        assert ctx.commit() == 1
        assert ctx.pending == 0
        assert [t.value for t in ctx.states["q"].input_buffer] == [9]

    def test_token_never_seen_in_tick_it_was_emitted(self) -> None:
        scheduler = _scheduler()
        scheduler.tick()
        # src emitted at t=1; q buffered it at commit but has not evaluated it yet
        assert scheduler.node_state("q").buffer_size() == 1
        assert scheduler.node_state("out").consumed_token_count == 0
        scheduler.tick()
        assert scheduler.node_state("out").consumed_token_count == 1

    def test_disconnected_port_returns_none(self) -> None:
        ctx = _scheduler().context
        assert ctx.emit(ctx.states["src"], OutputPort(), 1) is None
        assert ctx.pending == 0

    def test_unknown_destination_logged(self) -> None:
        scheduler = _scheduler()
        ctx = scheduler.context
        assert ctx.emit(ctx.states["src"], OutputPort(destination_node_id="ghost"), 1) is None
        errors = entries(scheduler, "src", "error")
        assert errors[0].details == "Unknown destination 'ghost'"
        assert ctx.states["src"].error == "Unknown destination 'ghost'"


class TestTokenIdentity:
    def test_ids_count_per_node(self) -> None:
        ctx = _scheduler().context
        assert ctx.next_token_id("src") == "src:1"
        assert ctx.next_token_id("src") == "src:2"
        assert ctx.next_token_id("q") == "q:1"

    def test_derived_token_lineage(self) -> None:
        ctx = _scheduler().context
        parents = [
            Token(token_id="a:1", value=1, origin_node_id="a", emitted_at=0, generation=0, feedback_depth=1),
            Token(token_id="b:1", value=2, origin_node_id="b", emitted_at=0, generation=2),
        ]
        token = ctx.emit(ctx.states["q"], OutputPort(destination_node_id="out"), 3, parents=parents)
        assert token is not None
        assert token.parent_ids == ("a:1", "b:1")
        assert token.generation == 3
        assert token.feedback_depth == 1
        assert token.origin_node_id == "q"

    def test_qualify_without_prefix(self) -> None:
        assert _scheduler().context.qualify("q") == "q"


class TestFailureIsolation:
    def test_runtime_exception_becomes_error_entry(self) -> None:
        class ExplodingSink(SinkRuntime):
            def evaluate(self, ctx: Any, config: Any, state: Any) -> None:
                raise RuntimeError("boom")

        class Plugin:
            @hookimpl
            def tickflow_get_node_runtimes(self) -> list[Any]:
                from tickflow.engine.runtime.datasource import DataSourceRuntime

                return [DataSourceRuntime(), ExplodingSink()]

        registry = RuntimeRegistry()
        registry.register(Plugin())
        assert registry.kinds() == [NodeKind.DATA_SOURCE, NodeKind.SINK]

        scheduler = Scheduler(build_scenario(datasource("src", dest="out", value=1), sink("out")), registry=registry)
        result = scheduler.tick()

        assert result.failed_nodes == ["out"]
        assert result.evaluated == ["src", "out"]
        # Other nodes keep running and delivery still happens
        assert scheduler.node_state("out").consumed_token_count == 1
        errors = entries(scheduler, "out", "error")
        assert errors[0].details == "RuntimeError: boom"

    def test_formula_failure_recorded_with_formula(self) -> None:
        scheduler = _scheduler()
        ctx = scheduler.context
        ctx.record_failure(ctx.states["q"], FormulaEvaluationError("Unknown name 'z'", formula="z + 1"))
        errors = entries(scheduler, "q", ActivityAction.FORMULA_ERROR.value)
        assert errors[0].details == "z + 1: Unknown name 'z'"

    def test_delivery_failure_isolated_to_destination(self) -> None:
        scenario = build_scenario(
            process("p", inputs=[{"nodeId": "", "alias": "a", "name": "left"}], outputs=[]),
            sink("out"),
        )
        scheduler = Scheduler(scenario)
        scheduler.context.states["p"].input_buffers = None  # type: ignore[assignment]
        token = Token(token_id="x:1", value=1, origin_node_id="x", emitted_at=0, destination_input="left")
        scheduler.context.deliver("p", token)
        assert entries(scheduler, "p", "error")[0].details.startswith("AttributeError")
