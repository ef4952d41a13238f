"""
Newton-Raphson power flow, outer scheduling loop and result extraction.
"""

from .newton import (
    JacobianCache,
    NewtonResult,
    newton_pf,
    power_mismatch,
    residual,
)

from .results import (
    BusResult,
    LineResult,
    bus_results,
    extract_bus_results,
    extract_line_results,
    line_results,
)

from .scheduler import (
    ConvergenceStatus,
    DirtyFlags,
    PowerFlowEvent,
    PowerFlowResult,
    PowerFlowScheduler,
)

__all__ = [
    'JacobianCache',
    'NewtonResult',
    'newton_pf',
    'power_mismatch',
    'residual',
    'BusResult',
    'LineResult',
    'bus_results',
    'extract_bus_results',
    'extract_line_results',
    'line_results',
    'ConvergenceStatus',
    'DirtyFlags',
    'PowerFlowEvent',
    'PowerFlowResult',
    'PowerFlowScheduler',
]
