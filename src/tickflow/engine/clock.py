"""Simulation clock.

Simulation time is a plain number of simulated seconds. It only moves when
the scheduler ticks; nothing in the engine reads wall-clock time, which is
what makes a run reproducible from its activity log.
"""

from __future__ import annotations


class SimulationClock:
    """Owns ``current_time`` and advances it by a fixed step.

    Example:
        clock = SimulationClock(step=1.0)
        clock.advance()  # current_time == 1.0
        clock.advance()  # current_time == 2.0
    """

    def __init__(self, step: float = 1.0, start: float = 0.0) -> None:
        """Initialize the clock.

        Args:
            step: Simulated seconds per tick (must be positive).
            start: Initial time.

        Raises:
            ValueError: If step is not positive.
        """
        if step <= 0:
            raise ValueError(f"Clock step must be positive, got {step}")
        self._step = step
        self._start = start
        self._ticks = 0

    @property
    def step(self) -> float:
        return self._step

    @property
    def tick_count(self) -> int:
        """Number of completed advances."""
        return self._ticks

    @property
    def current_time(self) -> float:
        """Current simulation time.

        Computed from the tick count so repeated steps never accumulate
        floating point drift.
        """
        return self._start + self._ticks * self._step

    def advance(self) -> float:
        """Advance one step and return the new time."""
        self._ticks += 1
        return self.current_time

    def reset(self) -> None:
        """Return to the start time."""
        self._ticks = 0
