"""
Power flow configuration.
"""

from dataclasses import dataclass
from enum import Enum

DEFAULT_MAX_IT = 100
DEFAULT_TOL = 1e-6


class SwitchMode(Enum):
    """How closed zero-impedance bus-bus switches enter the model."""
    MERGE = "merge"           # union-find node aggregation
    ADMITTANCE = "admittance"  # high-admittance branch between the two buses


class SolverKind(Enum):
    """Sparse LU backend used by the Newton-Raphson solver."""
    SPLU = "splu"      # full refactorization on every call
    CACHED = "cached"  # column ordering computed once per sparsity pattern


@dataclass
class PowerFlowConfig:
    """
    Solver settings.

    ``max_it`` and ``tol`` may be left as None, in which case the defaults
    (100 iterations, 1e-6) apply.
    """
    max_it: int | None = None
    tol: float | None = None
    enforce_q_lims: bool = False
    switch_mode: SwitchMode = SwitchMode.MERGE
    closed_switch_admittance_s: float = 1e6
    solver: SolverKind = SolverKind.CACHED
    warm_start: bool = True

    def __post_init__(self):
        if isinstance(self.switch_mode, str):
            self.switch_mode = SwitchMode(self.switch_mode)
        if isinstance(self.solver, str):
            self.solver = SolverKind(self.solver)
        if self.max_it is not None and self.max_it < 1:
            raise ValueError(f"max_it must be positive, got {self.max_it}")
        if self.tol is not None and self.tol <= 0:
            raise ValueError(f"tol must be positive, got {self.tol}")
        if self.closed_switch_admittance_s <= 0:
            raise ValueError("closed_switch_admittance_s must be positive")

    @property
    def max_iterations(self) -> int:
        """Iteration limit with the default applied."""
        return self.max_it if self.max_it is not None else DEFAULT_MAX_IT

    @property
    def tolerance(self) -> float:
        """Convergence tolerance with the default applied."""
        return self.tol if self.tol is not None else DEFAULT_TOL
