"""Core infrastructure: Scenario, Canonical, Configuration, DAG, FSL, Logging."""

from tickflow.core.canonical import (
    CANONICAL_VERSION,
    canonical_json,
    stable_hash,
)
from tickflow.core.config import (
    EngineSettings,
    LedgerSettings,
    load_settings,
)
from tickflow.core.dag import (
    NodeInfo,
    ScenarioGraph,
)
from tickflow.core.fsl import parse_fsl, render_fsl
from tickflow.core.logging import (
    configure_logging,
    get_logger,
)
from tickflow.core.scenario import (
    Scenario,
    apply_scenario_edit,
    dump_scenario,
    load_scenario,
)

__all__ = [
    "CANONICAL_VERSION",
    "EngineSettings",
    "LedgerSettings",
    "NodeInfo",
    "Scenario",
    "ScenarioGraph",
    "apply_scenario_edit",
    "canonical_json",
    "configure_logging",
    "dump_scenario",
    "get_logger",
    "load_scenario",
    "load_settings",
    "parse_fsl",
    "render_fsl",
    "stable_hash",
]
