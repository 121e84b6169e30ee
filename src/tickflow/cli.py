# src/tickflow/cli.py
"""tickflow Command Line Interface.

Entry point for the tickflow CLI tool.
"""

import json
from pathlib import Path
from typing import Any

import typer
from pydantic import ValidationError

from tickflow import __version__
from tickflow.contracts.activity import ActivityLogEntry
from tickflow.contracts.errors import ConfigError
from tickflow.core.config import EngineSettings, load_settings
from tickflow.core.dag import ScenarioGraph
from tickflow.core.logging import configure_logging
from tickflow.core.scenario import Scenario, load_scenario

app = typer.Typer(
    name="tickflow",
    help="tickflow: discrete-time node-graph simulation.",
    no_args_is_help=True,
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"tickflow version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
) -> None:
    """tickflow: discrete-time node-graph simulation."""
    pass


# === Loading helpers ===


def _load_scenario_file(path: str) -> Scenario:
    scenario_path = Path(path)
    try:
        return load_scenario(scenario_path.read_bytes())
    except FileNotFoundError:
        typer.echo(f"Error: Scenario file not found: {path}", err=True)
        raise typer.Exit(1) from None
    except ConfigError as e:
        typer.echo("Scenario errors:", err=True)
        for problem in e.errors:
            typer.echo(f"  - {problem}", err=True)
        raise typer.Exit(1) from None


def _load_settings_file(path: str | None) -> EngineSettings:
    if path is None:
        return EngineSettings()
    try:
        return load_settings(Path(path))
    except FileNotFoundError:
        typer.echo(f"Error: Settings file not found: {path}", err=True)
        raise typer.Exit(1) from None
    except ValidationError as e:
        typer.echo("Configuration errors:", err=True)
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            typer.echo(f"  - {loc}: {error['msg']}", err=True)
        raise typer.Exit(1) from None


# === Commands ===


@app.command()
def validate(
    scenario: str = typer.Argument(..., help="Path to scenario JSON file."),
) -> None:
    """Validate a scenario without running it."""
    loaded = _load_scenario_file(scenario)
    graph = ScenarioGraph.from_scenario(loaded)

    typer.echo(f"Scenario valid: {Path(scenario).name}")
    typer.echo(f"  Graph: {graph.node_count} nodes, {graph.edge_count} edges")
    typer.echo(f"  Evaluation order: {', '.join(graph.evaluation_order())}")
    cycle = graph.find_cycle()
    if cycle:
        typer.echo(f"  Feedback cycle: {' -> '.join(cycle)}")


@app.command()
def run(
    scenario: str = typer.Argument(..., help="Path to scenario JSON file."),
    ticks: int = typer.Option(
        10,
        "--ticks",
        "-t",
        min=0,
        help="Number of ticks to run.",
    ),
    settings: str | None = typer.Option(
        None,
        "--settings",
        "-s",
        help="Path to settings YAML file.",
    ),
    seed: int | None = typer.Option(
        None,
        "--seed",
        help="Seed for DataSource generators (overrides settings).",
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Print the final snapshot as JSON.",
    ),
    ledger: str | None = typer.Option(
        None,
        "--ledger",
        "-l",
        help="SQLAlchemy URL of a ledger to record the run in.",
    ),
) -> None:
    """Run a scenario for a number of ticks."""
    from tickflow.engine import Scheduler

    loaded = _load_scenario_file(scenario)
    config = _load_settings_file(settings)
    if seed is not None:
        config = config.model_copy(update={"seed": seed})
    configure_logging(json_output=config.logging.json_output, level=config.logging.level)

    ledger_url = ledger or config.ledger.url
    scheduler = Scheduler(loaded, config)

    if ledger_url is None:
        scheduler.run(ticks)
        run_id = None
    else:
        run_id = _run_recorded(scheduler, ticks, ledger_url)

    snapshot = scheduler.snapshot()
    if json_output:
        payload: dict[str, Any] = snapshot.to_dict()
        payload["nodes"] = {
            node_id: {"phase": state.phase, "error": state.error, "bufferSize": state.buffer_size()}
            for node_id, state in snapshot.node_states.items()
        }
        if run_id is not None:
            payload["runId"] = run_id
        typer.echo(json.dumps(payload, indent=2, default=repr))
        return

    typer.echo(f"Ran {snapshot.tick_count} ticks (t={snapshot.current_time:g})")
    for node_id, state in snapshot.node_states.items():
        line = f"  {node_id:20} {state.kind.value:15} {state.phase}"
        if state.buffer_size():
            line += f" buffer={state.buffer_size()}"
        if state.error:
            line += f" error={state.error}"
        typer.echo(line)
    if run_id is not None:
        typer.echo(f"  Run ID: {run_id}")


def _run_recorded(scheduler: Any, ticks: int, ledger_url: str) -> str:
    """Run while persisting every activity entry. Returns the run ID."""
    from tickflow.core.ledger import LedgerDB, LedgerRecorder

    db = LedgerDB(ledger_url)
    try:
        recorder = LedgerRecorder(db)
        recorded = recorder.begin_run(scheduler.scenario, scheduler.settings)
        entries: list[ActivityLogEntry] = []
        scheduler.activity_log.subscribe(entries.append)
        try:
            scheduler.run(ticks)
        except Exception as e:
            recorder.record_entries(recorded.run_id, entries)
            recorder.complete_run(recorded.run_id, "failed", tick_count=scheduler.tick_count)
            typer.echo(f"Error during simulation: {e}", err=True)
            raise typer.Exit(1) from None
        recorder.record_entries(recorded.run_id, entries)
        recorder.complete_run(
            recorded.run_id,
            "completed",
            tick_count=scheduler.tick_count,
            final_time=scheduler.current_time,
        )
        return recorded.run_id
    finally:
        db.close()


@app.command()
def fsl(
    path: str = typer.Argument(..., help="Path to an FSL text file."),
) -> None:
    """Convert FSL to a JSON FSM definition."""
    from tickflow.core.fsl import parse_fsl

    try:
        text = Path(path).read_text(encoding="utf-8")
    except FileNotFoundError:
        typer.echo(f"Error: FSL file not found: {path}", err=True)
        raise typer.Exit(1) from None

    result = parse_fsl(text)
    for error in result.errors:
        typer.echo(f"Warning: {error}", err=True)
    if result.definition is None:
        typer.echo("Error: No FSM definition could be built.", err=True)
        raise typer.Exit(1)
    typer.echo(json.dumps(result.definition.model_dump(mode="json", by_alias=True, exclude_none=True), indent=2))


@app.command()
def history(
    ledger: str = typer.Option(..., "--ledger", "-l", help="SQLAlchemy URL of the ledger."),
    run_id: str = typer.Option(..., "--run", "-r", help="Run ID to inspect."),
    node: str = typer.Option(..., "--node", "-n", help="Node ID to inspect."),
    at: float | None = typer.Option(
        None,
        "--at",
        help="Report the node's state at this simulation time.",
    ),
) -> None:
    """Show a node's recorded activity, or its state at a given time."""
    from tickflow.core.ledger import LedgerDB, LedgerRecorder

    db = LedgerDB(ledger, create_tables=False)
    try:
        recorder = LedgerRecorder(db)
        if recorder.get_run(run_id) is None:
            typer.echo(f"Error: Run '{run_id}' not found.", err=True)
            raise typer.Exit(1)

        if at is not None:
            state = recorder.state_at(run_id, node, at)
            if state is None:
                typer.echo(f"{node} has no activity at or before t={at:g}")
            else:
                typer.echo(f"{node} at t={at:g}: {state}")
            return

        entries = recorder.get_entries(run_id, node_id=node)
        if not entries:
            typer.echo(f"No activity recorded for {node}")
            return
        for entry in entries:
            details = f"  {entry.details}" if entry.details else ""
            typer.echo(f"{entry.sequence:6} t={entry.timestamp:<8g} {entry.action.value:20} {entry.state}{details}")
    finally:
        db.close()


if __name__ == "__main__":
    app()
