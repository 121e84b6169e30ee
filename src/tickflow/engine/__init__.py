"""Simulation engine: clock, scheduler, node runtimes and their services.

Import pattern:
    from tickflow.engine import Scheduler
"""

from tickflow.engine.activity_log import ActivityLog
from tickflow.engine.clock import SimulationClock
from tickflow.engine.context import SimulationContext
from tickflow.engine.feedback import CircuitBreakerState, FeedbackLoopController
from tickflow.engine.fsm import FSMEngine
from tickflow.engine.interpretation import AIInterpretation, InterpretationClient, InterpretationEngine
from tickflow.engine.scheduler import Scheduler, SchedulerStoppedError, SimulationSnapshot

__all__ = [
    "AIInterpretation",
    "ActivityLog",
    "CircuitBreakerState",
    "FSMEngine",
    "FeedbackLoopController",
    "InterpretationClient",
    "InterpretationEngine",
    "Scheduler",
    "SchedulerStoppedError",
    "SimulationClock",
    "SimulationContext",
    "SimulationSnapshot",
]
