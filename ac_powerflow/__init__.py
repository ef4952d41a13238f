"""
AC Power Flow Library
=====================

A Python library for steady-state AC power flow on transmission networks.

Features:
- Typed network description (buses, lines, transformers, loads, generators,
  shunts, external grids, switches) with per-unit conversion
- Sparse nodal admittance matrix and bus reordering into PV/PQ/Slack blocks
- Newton-Raphson solver with an analytic sparse Jacobian and reusable LU
  column ordering
- Outer control loop with generator reactive power limits
- Node aggregation through closed zero-impedance switches
- Time-series simulation with scheduled setpoint changes and warm start

Quick Start
-----------

Using the high-level Network class:

    from ac_powerflow import Network

    net = Network(base_mva=100.0)
    b0 = net.add_bus(110.0)
    b1 = net.add_bus(110.0)
    net.add_ext_grid(b0, vm_pu=1.0)
    net.add_line(b0, b1, length_km=10.0, r_ohm_per_km=0.1, x_ohm_per_km=0.4)
    net.add_load(b1, p_mw=20.0, q_mvar=5.0)

    result = net.run_pf()
    print(net.res_bus)
    print(net.res_line)

Using the bundled 39-bus system:

    from ac_powerflow import PowerFlowConfig, case39

    net = case39(PowerFlowConfig(tol=1e-8, enforce_q_lims=True))
    net.run_pf()

Using individual functions:

    from ac_powerflow import build_admittance_matrix, newton_pf

    Y = build_admittance_matrix(net.admittance_branches(), net.n_buses, net.base_mva)
"""

__version__ = "0.1.0"

# Errors and configuration
from .errors import (
    PowerFlowError,
    InvalidTopologyError,
    NoSlackBusError,
    SlackLostError,
    SingularJacobianError,
    NonConvergenceError,
    StructuralInconsistencyError,
    BackendFailureError,
    InvalidRangeError,
)

from .config import (
    PowerFlowConfig,
    SolverKind,
    SwitchMode,
)

# Core classes
from .core import (
    Network,
    AdmittanceBranch,
    Bus,
    Line,
    Transformer,
    Switch,
    Shunt,
    Load,
    Generator,
    StaticGenerator,
    ExternalGrid,
    NodeRole,
    SwitchType,
    TapSide,
)

# Matrix functions
from .matrices import (
    PowerFlowMat,
    NodeAggregation,
    aggregate_nodes,
    build_admittance_matrix,
    build_permutation,
    build_power_flow_mat,
    compute_bus_injections,
)

# Power flow
from .powerflow import (
    BusResult,
    LineResult,
    NewtonResult,
    PowerFlowEvent,
    PowerFlowResult,
    PowerFlowScheduler,
    bus_results,
    line_results,
    newton_pf,
)

# Time series
from .timeseries import (
    SetSwitchState,
    SetTargetPMW,
    SetTargetQMvar,
    SetTargetVa,
    SetTargetVM,
    TimeSeriesData,
    TimeSeriesDriver,
)

# Test cases
from .cases import case39

__all__ = [
    # Version
    '__version__',

    # Errors
    'PowerFlowError',
    'InvalidTopologyError',
    'NoSlackBusError',
    'SlackLostError',
    'SingularJacobianError',
    'NonConvergenceError',
    'StructuralInconsistencyError',
    'BackendFailureError',
    'InvalidRangeError',

    # Configuration
    'PowerFlowConfig',
    'SolverKind',
    'SwitchMode',

    # Core classes
    'Network',
    'AdmittanceBranch',
    'Bus',
    'Line',
    'Transformer',
    'Switch',
    'Shunt',
    'Load',
    'Generator',
    'StaticGenerator',
    'ExternalGrid',
    'NodeRole',
    'SwitchType',
    'TapSide',

    # Matrix functions
    'PowerFlowMat',
    'NodeAggregation',
    'aggregate_nodes',
    'build_admittance_matrix',
    'build_permutation',
    'build_power_flow_mat',
    'compute_bus_injections',

    # Power flow
    'BusResult',
    'LineResult',
    'NewtonResult',
    'PowerFlowEvent',
    'PowerFlowResult',
    'PowerFlowScheduler',
    'bus_results',
    'line_results',
    'newton_pf',

    # Time series
    'SetSwitchState',
    'SetTargetPMW',
    'SetTargetQMvar',
    'SetTargetVa',
    'SetTargetVM',
    'TimeSeriesData',
    'TimeSeriesDriver',

    # Test cases
    'case39',
]
