# src/tickflow/core/config.py
"""
Engine settings schema and loading.

Uses Pydantic for validation and Dynaconf for multi-source loading.
Settings are frozen (immutable) after construction. Scenario content lives in
tickflow.core.scenario; these settings tune how any scenario is run.
"""

from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, model_validator

from tickflow.core.scenario import CircuitBreakerConfig, FeedbackConfig, RoutingPolicy

FeedbackPreset = Literal["conservative", "permissive", "restrictive", "disabled"]

FEEDBACK_PRESETS: dict[str, FeedbackConfig] = {
    "conservative": FeedbackConfig(
        max_depth=5,
        circuit_breaker=CircuitBreakerConfig(threshold=50, time_window=30, cooldown_period=60),
        routing=RoutingPolicy(allow_self_feedback=False, allow_external_feedback=True),
    ),
    "permissive": FeedbackConfig(
        max_depth=20,
        circuit_breaker=CircuitBreakerConfig(threshold=200, time_window=60, cooldown_period=15),
        routing=RoutingPolicy(allow_self_feedback=True, allow_external_feedback=True),
    ),
    "restrictive": FeedbackConfig(
        max_depth=3,
        circuit_breaker=CircuitBreakerConfig(threshold=20, time_window=10, cooldown_period=120),
        routing=RoutingPolicy(allow_self_feedback=False, allow_external_feedback=False),
    ),
    "disabled": FeedbackConfig(
        enabled=False,
        max_depth=0,
        circuit_breaker=CircuitBreakerConfig(enabled=False),
        routing=RoutingPolicy(allow_self_feedback=False, allow_external_feedback=False),
    ),
}


class ActivitySettings(BaseModel):
    """Bounds on the in-memory activity log.

    The ledger, when configured, keeps every entry regardless of these bounds.
    """

    model_config = {"frozen": True}

    max_node_entries: int = Field(
        default=500,
        gt=0,
        description="Entries kept per node (oldest evicted first)",
    )
    max_global_entries: int = Field(
        default=1000,
        gt=0,
        description="Entries kept in the run-wide view",
    )


class LedgerSettings(BaseModel):
    """Where completed runs are persisted."""

    model_config = {"frozen": True}

    url: str | None = Field(
        default=None,
        description="SQLAlchemy connection URL, e.g. sqlite:///./runs/ledger.db",
    )


class LoggingSettings(BaseModel):
    """Process log output."""

    model_config = {"frozen": True}

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    json_output: bool = False


class EngineSettings(BaseModel):
    """Top-level settings for running scenarios.

    Example YAML:
        time_step: 1
        seed: 42
        feedback_preset: conservative
        activity:
          max_node_entries: 500
        ledger:
          url: sqlite:///./runs/ledger.db
    """

    model_config = {"frozen": True}

    time_step: float = Field(default=1.0, gt=0, description="Simulation seconds per tick")
    seed: int | None = Field(default=None, description="Seed for DataSource generators")
    sink_token_history: int = Field(default=50, gt=0, description="Tokens each Sink retains")
    feedback: FeedbackConfig = Field(
        default_factory=FeedbackConfig,
        description="Feedback bounds for nodes without their own feedbackConfig",
    )
    feedback_preset: FeedbackPreset | None = Field(
        default=None,
        description="Named preset replacing 'feedback'",
    )
    activity: ActivitySettings = Field(default_factory=ActivitySettings)
    ledger: LedgerSettings = Field(default_factory=LedgerSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @model_validator(mode="before")
    @classmethod
    def apply_preset(cls, data: Any) -> Any:
        """A preset replaces the explicit feedback block."""
        if isinstance(data, dict) and data.get("feedback_preset") in FEEDBACK_PRESETS:
            data = dict(data)
            data["feedback"] = FEEDBACK_PRESETS[data["feedback_preset"]]
        return data


def load_settings(config_path: Path) -> EngineSettings:
    """Load settings from YAML file with environment variable overrides.

    Uses Dynaconf for multi-source loading with precedence:
    1. Environment variables (TICKFLOW_*) - highest priority
    2. Config file (settings.yaml)
    3. Defaults from Pydantic schema - lowest priority

    Environment variable format: TICKFLOW_LEDGER__URL for nested keys.

    Args:
        config_path: Path to YAML configuration file

    Returns:
        Validated EngineSettings instance

    Raises:
        ValidationError: If configuration fails Pydantic validation
        FileNotFoundError: If config file doesn't exist
    """
    from dynaconf import Dynaconf

    # Dynaconf silently accepts missing files
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    dynaconf_settings = Dynaconf(
        envvar_prefix="TICKFLOW",
        settings_files=[str(config_path)],
        environments=False,
        load_dotenv=False,
        merge_enabled=True,
    )

    # Dynaconf returns uppercase keys; convert to lowercase for Pydantic
    internal_keys = {"LOAD_DOTENV", "ENVIRONMENTS", "SETTINGS_FILES"}
    raw_config = {
        k.lower(): _lower_keys(v)
        for k, v in dynaconf_settings.as_dict().items()
        if k not in internal_keys
    }
    return EngineSettings(**raw_config)


def _lower_keys(value: Any) -> Any:
    if isinstance(value, dict):
        return {str(k).lower(): _lower_keys(v) for k, v in value.items()}
    return value


def resolve_config(settings: EngineSettings) -> dict[str, Any]:
    """Convert validated settings to a dict for ledger storage.

    Args:
        settings: Validated EngineSettings instance

    Returns:
        Dict representation suitable for JSON serialization
    """
    return settings.model_dump(mode="json")
