"""
Power flow matrix building and node aggregation functions.
"""

from .builder import (
    BusInjections,
    PowerFlowMat,
    apply_warm_start,
    branch_admittances_pu,
    build_admittance_matrix,
    build_permutation,
    build_power_flow_mat,
    classify_buses,
    compute_bus_injections,
    incidence_matrix,
)

from .topology import (
    NodeAggregation,
    UnionFind,
    aggregate_nodes,
)

__all__ = [
    'BusInjections',
    'PowerFlowMat',
    'apply_warm_start',
    'branch_admittances_pu',
    'build_admittance_matrix',
    'build_permutation',
    'build_power_flow_mat',
    'classify_buses',
    'compute_bus_injections',
    'incidence_matrix',
    'NodeAggregation',
    'UnionFind',
    'aggregate_nodes',
]
