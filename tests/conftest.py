# tests/conftest.py
"""Shared test fixtures.

Hypothesis Configuration:
- "ci" profile: Fast tests for CI (100 examples) - default
- "nightly" profile: Thorough tests (1000 examples)
- "debug" profile: Minimal tests with verbose output (10 examples)

Set profile via environment variable:
    HYPOTHESIS_PROFILE=nightly pytest tests/
"""

import os

import pytest
from hypothesis import Phase, Verbosity, settings
from scenario_builders import build_scenario, datasource, sink

from tickflow.core.config import EngineSettings
from tickflow.core.scenario import Scenario

# =============================================================================
# Hypothesis Configuration
# =============================================================================

settings.register_profile(
    "ci",
    max_examples=100,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

settings.register_profile(
    "nightly",
    max_examples=1000,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

settings.register_profile(
    "debug",
    max_examples=10,
    verbosity=Verbosity.verbose,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "ci"))


@pytest.fixture
def engine_settings() -> EngineSettings:
    """Seeded settings so random generators are reproducible."""
    return EngineSettings(seed=1234)


@pytest.fixture
def source_to_sink() -> Scenario:
    """Constant source feeding a sink every 2 seconds."""
    return build_scenario(
        datasource("src", interval=2, dest="out", value=7),
        sink("out"),
    )
