"""
Time-series power flow driver.

Repeatedly solves the power flow on a fixed-step clock, applying scheduled
setpoint changes between frames and warm-starting every solve from the
previous converged voltages.
"""

import logging
from dataclasses import dataclass, field

import numpy as np
import pandas as pd

from .actions import ActionQueue, ScheduledLog, TimeSeriesAction
from .clock import SimulationClock

logger = logging.getLogger(__name__)


@dataclass
class TimeSeriesData:
    """Archived voltages (original bus order) and iteration counts per frame."""
    times: list[float] = field(default_factory=list)
    voltages: list[np.ndarray] = field(default_factory=list)
    iterations: list[int] = field(default_factory=list)
    converged: list[bool] = field(default_factory=list)

    def append(self, t: float, v: np.ndarray, iterations: int, converged: bool) -> None:
        self.times.append(t)
        self.voltages.append(np.array(v, copy=True))
        self.iterations.append(iterations)
        self.converged.append(converged)

    def __len__(self) -> int:
        return len(self.times)

    def to_frame(self) -> pd.DataFrame:
        """Per-frame summary: iterations and convergence flag, indexed by time."""
        return pd.DataFrame(
            {"iterations": self.iterations, "converged": self.converged},
            index=pd.Index(self.times, name="t"),
        )

    def _voltage_matrix(self) -> np.ndarray:
        if not self.voltages:
            return np.zeros((0, 0), dtype=np.complex128)
        return np.vstack(self.voltages)

    def vm_frame(self) -> pd.DataFrame:
        """Voltage magnitudes (p.u.), one row per frame and one column per bus."""
        return pd.DataFrame(np.abs(self._voltage_matrix()), index=pd.Index(self.times, name="t"))

    def va_frame(self) -> pd.DataFrame:
        """Voltage angles (degrees), one row per frame and one column per bus."""
        return pd.DataFrame(
            np.rad2deg(np.angle(self._voltage_matrix())),
            index=pd.Index(self.times, name="t"),
        )


class TimeSeriesDriver:
    """
    Runs the power flow over a sequence of frames.

    Each frame advances the clock, applies every action due at the new time
    (ties in insertion order), solves, warm-starts the next frame from the
    converged voltages and archives the result.
    """

    def __init__(
        self,
        network,
        dt: float = 1.0,
        horizon: float | None = None,
        archive: bool = True,
        t0: float = 0.0,
    ):
        """
        Args:
            network: Network to solve
            dt: Step between frames in seconds
            horizon: Simulation end time; run() stops after the last frame
                with t <= horizon
            archive: Keep (t, V) of every frame
            t0: Start time
        """
        self.network = network
        self.clock = SimulationClock(dt, t0)
        self.horizon = horizon
        self.archive = archive
        self.queue = ActionQueue()
        self.log = ScheduledLog()
        self.data = TimeSeriesData()

    def schedule(self, execute_at: float, action: TimeSeriesAction) -> None:
        """Queue an action for the first frame whose time reaches execute_at."""
        self.queue.push(execute_at, action)

    def step(self):
        """
        Run one frame.

        Returns:
            PowerFlowResult of the frame

        Raises:
            NonConvergenceError: propagated from the power flow
        """
        net = self.network
        t = self.clock.advance()
        for scheduled in self.queue.pop_due(t):
            scheduled.action.apply(net)
            self.log.record(t, scheduled)

        result = net.run_pf()
        if net.config.warm_start:
            net.mat.v_bus_init[:] = result.v_internal
        if self.archive:
            self.data.append(t, result.v, result.iterations, result.converged)
        logger.debug(f"Frame {self.clock.frame} (t={t:.3f}): {result.iterations} iterations")
        return result

    def run(self, n_frames: int | None = None) -> TimeSeriesData:
        """
        Run frames up to the horizon or for n_frames, whichever is given.

        Returns:
            TimeSeriesData with the archived frames
        """
        if n_frames is None and self.horizon is None:
            raise ValueError("Either n_frames or a horizon is required")
        eps = 1e-9 * self.clock.dt
        count = 0
        while True:
            if n_frames is not None and count >= n_frames:
                break
            if self.horizon is not None and self.clock.t + self.clock.dt > self.horizon + eps:
                break
            self.step()
            count += 1
        logger.info(f"Time series finished: {count} frames, {len(self.log)} actions applied")
        return self.data
