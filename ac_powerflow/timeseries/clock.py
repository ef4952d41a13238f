"""
Simulation clock for time-series power flow.
"""

from dataclasses import dataclass


@dataclass
class SimulationClock:
    """
    Monotonic clock advancing by a fixed step (seconds).

    Time is computed as t0 + frame * dt so rounding does not accumulate.
    """
    dt: float
    t0: float = 0.0
    frame: int = 0

    def __post_init__(self):
        if self.dt <= 0:
            raise ValueError(f"dt must be positive, got {self.dt}")

    @property
    def t(self) -> float:
        return self.t0 + self.frame * self.dt

    def advance(self) -> float:
        """Move one step forward and return the new time."""
        self.frame += 1
        return self.t
