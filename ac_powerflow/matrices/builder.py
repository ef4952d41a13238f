"""
Power flow matrix construction.

This module provides functions for building the nodal admittance matrix,
the bus injection and voltage setpoint vectors, and the bus reordering
permutation used by the Newton-Raphson solver.
"""

import logging
from dataclasses import dataclass, field

import numpy as np
import scipy.sparse as sp

from ..core.elements import GROUND, AdmittanceBranch, NodeRole
from ..errors import NoSlackBusError, StructuralInconsistencyError

logger = logging.getLogger(__name__)


# --- Admittance matrix ---

def incidence_matrix(branches: list[AdmittanceBranch], n_bus: int) -> sp.csc_matrix:
    """
    Build the bus-branch incidence matrix.

    Column k has +1 at the from pin and -1 at the to pin of branch k. Ground
    pins have no row and are skipped.

    Args:
        branches: Admittance branches
        n_bus: Number of buses N

    Returns:
        N x B real CSC matrix
    """
    rows, cols, vals = [], [], []
    for k, branch in enumerate(branches):
        a, b = branch.port
        if a != GROUND:
            rows.append(a)
            cols.append(k)
            vals.append(1.0)
        if b != GROUND:
            rows.append(b)
            cols.append(k)
            vals.append(-1.0)
    return sp.csc_matrix(
        (np.asarray(vals, dtype=float), (np.asarray(rows, dtype=np.int64), np.asarray(cols, dtype=np.int64))),
        shape=(n_bus, len(branches)),
    )


def branch_admittances_pu(branches: list[AdmittanceBranch], base_mva: float) -> np.ndarray:
    """Branch admittances scaled to per-unit: y * v_base^2 / S_base."""
    return np.array([b.get_admittance_pu(base_mva) for b in branches], dtype=np.complex128)


def build_admittance_matrix(
    branches: list[AdmittanceBranch],
    n_bus: int,
    base_mva: float = 100.0,
) -> sp.csc_matrix:
    """
    Build the nodal admittance matrix Y = A * diag(y) * A^T.

    Args:
        branches: Admittance branches (Siemens at their base voltage)
        n_bus: Number of buses N
        base_mva: System base power in MVA

    Returns:
        N x N complex CSC matrix with sorted indices
    """
    a = incidence_matrix(branches, n_bus)
    y_pu = branch_admittances_pu(branches, base_mva)
    k = np.arange(len(branches))
    y_br = sp.csc_matrix((y_pu, (k, k)), shape=(len(branches), len(branches)))
    y = sp.csc_matrix(a @ y_br @ a.T, dtype=np.complex128)
    y.sum_duplicates()
    y.sort_indices()
    return y


# --- Injections and setpoints ---

@dataclass
class BusInjections:
    """
    Per-bus injection primitives in original bus order.

    ``s_set`` is the scheduled injection before reactive-limit clamping; the
    Q-limit check measures generator output against it.
    """
    s_bus: np.ndarray
    s_set: np.ndarray
    v_init: np.ndarray
    roles: list[NodeRole]
    q_min_mvar: np.ndarray
    q_max_mvar: np.ndarray

    @property
    def n_bus(self) -> int:
        return len(self.roles)


def compute_bus_injections(network) -> BusInjections:
    """
    Accumulate injections, voltage setpoints and node roles per bus.

    Loads and static generators add to S. Generators add P and make their bus
    PV (or Slack for slack generators); external grids make their bus Slack.
    A bus with both a PV and a Slack source resolves to Slack. Out-of-service
    buses get the Auxiliary role and a zero voltage.

    Args:
        network: Network holding the element tables

    Returns:
        BusInjections in per-unit on the network base
    """
    n = network.n_buses
    base = network.base_mva
    s_bus = np.zeros(n, dtype=np.complex128)
    v_init = np.ones(n, dtype=np.complex128)
    roles = [NodeRole.PQ] * n
    q_min = np.zeros(n)
    q_max = np.zeros(n)
    setpoint_src: dict[int, str] = {}

    in_service = np.array([bus.in_service for bus in network.buses], dtype=bool)

    def set_voltage(bus: int, vm: float, va_degree: float, source: str) -> None:
        v = vm * np.exp(1j * np.deg2rad(va_degree))
        if bus in setpoint_src and not np.isclose(abs(v_init[bus]), vm):
            logger.warning(f"Bus {bus}: conflicting voltage setpoints from {setpoint_src[bus]} "
                           f"and {source}, using {source}")
        v_init[bus] = v
        setpoint_src[bus] = source

    for table in (network.loads, network.sgens):
        for element in table:
            if element.in_service and in_service[element.bus]:
                s_bus[element.bus] += element.s_injection_mva / base

    for gen in network.generators:
        if not (gen.in_service and in_service[gen.bus]):
            continue
        s_bus[gen.bus] += gen.s_injection_mva / base
        q_min[gen.bus] += gen.min_q_mvar
        q_max[gen.bus] += gen.max_q_mvar
        if gen.role is NodeRole.SLACK or roles[gen.bus] is not NodeRole.SLACK:
            set_voltage(gen.bus, gen.vm_pu, gen.va_degree, f"generator {gen.index}")
        if roles[gen.bus] is not NodeRole.SLACK:
            roles[gen.bus] = gen.role

    for grid in network.ext_grids:
        if not (grid.in_service and in_service[grid.bus]):
            continue
        if roles[grid.bus] is NodeRole.PV:
            logger.debug(f"Bus {grid.bus}: PV and Slack sources, resolving to Slack")
        roles[grid.bus] = NodeRole.SLACK
        set_voltage(grid.bus, grid.vm_pu, grid.va_degree, f"external grid {grid.index}")

    # Bus-level overrides replace element-derived values
    for bus, p in network.p_override_mw.items():
        s_bus[bus] = complex(p / base, s_bus[bus].imag)
    for bus, q in network.q_override_mvar.items():
        s_bus[bus] = complex(s_bus[bus].real, q / base)
    for bus, vm in network.vm_override_pu.items():
        v_init[bus] = vm * np.exp(1j * np.angle(v_init[bus]))
    for bus, va in network.va_override_degree.items():
        v_init[bus] = abs(v_init[bus]) * np.exp(1j * np.deg2rad(va))

    s_set = s_bus.copy()

    # Generators held at a reactive limit behave as PQ injections
    for bus, q_gen in network.q_limited.items():
        if roles[bus] is NodeRole.PV:
            roles[bus] = NodeRole.PQ
            s_bus[bus] += 1j * q_gen / base

    for bus in np.flatnonzero(~in_service):
        roles[bus] = NodeRole.AUXILIARY
        s_bus[bus] = 0.0
        s_set[bus] = 0.0
        v_init[bus] = 0.0

    return BusInjections(s_bus, s_set, v_init, roles, q_min, q_max)


# --- Classification and permutation ---

def classify_buses(roles: list[NodeRole]) -> tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
    """
    Split bus indices by role.

    Returns:
        Tuple of (pv, pq, slack, auxiliary) index arrays, each ascending
    """
    pv, pq, slack, aux = [], [], [], []
    lists = {NodeRole.PV: pv, NodeRole.PQ: pq, NodeRole.SLACK: slack, NodeRole.AUXILIARY: aux}
    for i, role in enumerate(roles):
        lists[role].append(i)
    return tuple(np.asarray(lst, dtype=np.int64) for lst in (pv, pq, slack, aux))


def build_permutation(
    pv: np.ndarray,
    pq: np.ndarray,
    slack: np.ndarray,
    aux: np.ndarray | None = None,
    n_bus: int | None = None,
) -> tuple[sp.csc_matrix, np.ndarray, np.ndarray]:
    """
    Build the permutation that orders buses as [PV | PQ | Slack | Auxiliary].

    The matrix P satisfies (P x)[new] = x[from_perm[new]], so reordered
    quantities are P x and P Y P^T, and P^T lifts them back.

    Returns:
        Tuple of (P as CSC, to_perm, from_perm) where to_perm[orig] = new and
        from_perm[new] = orig

    Raises:
        StructuralInconsistencyError: if the lists overlap or do not cover 0..N-1
    """
    aux = np.zeros(0, dtype=np.int64) if aux is None else aux
    from_perm = np.concatenate([pv, pq, slack, aux]).astype(np.int64)
    n = len(from_perm) if n_bus is None else n_bus
    if len(from_perm) != n or not np.array_equal(np.sort(from_perm), np.arange(n)):
        raise StructuralInconsistencyError(
            f"Bus classification does not partition {n} buses "
            f"(pv={len(pv)}, pq={len(pq)}, slack={len(slack)}, aux={len(aux)})"
        )
    to_perm = np.empty(n, dtype=np.int64)
    to_perm[from_perm] = np.arange(n)
    reorder = sp.csc_matrix(
        (np.ones(n), (np.arange(n), from_perm)),
        shape=(n, n),
    )
    return reorder, to_perm, from_perm


@dataclass
class PowerFlowMat:
    """
    Matrix state of the Newton-Raphson solver in reordered coordinates.

    Attributes:
        reorder: Permutation matrix P
        y_bus: P Y P^T (CSC, complex)
        s_bus: P S (complex per-unit injections)
        v_bus_init: P V0 (start voltages)
        npv: Number of PV buses (first block)
        npq: Number of PQ buses (second block)
        to_perm: to_perm[orig] = reordered index
        from_perm: from_perm[new] = original index
        roles: Node roles in original order
    """
    reorder: sp.csc_matrix
    y_bus: sp.csc_matrix
    s_bus: np.ndarray
    v_bus_init: np.ndarray
    npv: int
    npq: int
    to_perm: np.ndarray
    from_perm: np.ndarray
    roles: list[NodeRole] = field(default_factory=list)

    @property
    def n_bus(self) -> int:
        return self.y_bus.shape[0]

    @property
    def n_slack(self) -> int:
        """Buses with fixed voltage (Slack plus Auxiliary tail)."""
        return self.n_bus - self.npv - self.npq

    def permute(self, x: np.ndarray) -> np.ndarray:
        """Original order to reordered order (P x)."""
        return np.asarray(x)[self.from_perm]

    def lift(self, x: np.ndarray) -> np.ndarray:
        """Reordered order back to original order (P^T x)."""
        return np.asarray(x)[self.to_perm]


def build_power_flow_mat(
    y_bus: sp.csc_matrix,
    s_bus: np.ndarray,
    v_init: np.ndarray,
    roles: list[NodeRole],
) -> PowerFlowMat:
    """
    Reorder Y, S and V0 into [PV | PQ | Slack | Auxiliary] blocks.

    Args:
        y_bus: N x N admittance matrix in original order
        s_bus: Injections in original order
        v_init: Start voltages in original order
        roles: Node role per bus

    Returns:
        PowerFlowMat

    Raises:
        NoSlackBusError: if no bus carries the Slack role
        StructuralInconsistencyError: if the sizes disagree
    """
    n = y_bus.shape[0]
    if y_bus.shape != (n, n) or len(s_bus) != n or len(v_init) != n or len(roles) != n:
        raise StructuralInconsistencyError(
            f"Size mismatch: Y {y_bus.shape}, S {len(s_bus)}, V0 {len(v_init)}, roles {len(roles)}"
        )
    pv, pq, slack, aux = classify_buses(roles)
    if len(slack) == 0:
        raise NoSlackBusError("No slack bus: add an external grid or a slack generator")

    reorder, to_perm, from_perm = build_permutation(pv, pq, slack, aux, n)
    y_r = sp.csc_matrix(reorder @ y_bus @ reorder.T)
    y_r.sort_indices()

    logger.debug(f"Built power flow matrices: {n} buses (pv={len(pv)}, pq={len(pq)}, "
                 f"slack={len(slack)}, aux={len(aux)}), {y_r.nnz} non-zeros")
    return PowerFlowMat(
        reorder=reorder,
        y_bus=y_r,
        s_bus=reorder @ np.asarray(s_bus, dtype=np.complex128),
        v_bus_init=reorder @ np.asarray(v_init, dtype=np.complex128),
        npv=len(pv),
        npq=len(pq),
        to_perm=to_perm,
        from_perm=from_perm,
        roles=list(roles),
    )


def apply_warm_start(mat: PowerFlowMat, v_warm: np.ndarray) -> None:
    """
    Seed the start voltages from a previous solution (original order).

    PQ buses take the previous voltage, PV buses keep their magnitude
    setpoint with the previous angle, Slack buses keep their setpoint.
    Non-finite previous values are skipped.
    """
    v_r = mat.permute(v_warm)
    nb = mat.npv + mat.npq
    ok = np.isfinite(v_r[:nb])
    pv = np.arange(mat.npv)
    pv = pv[ok[:mat.npv]]
    mat.v_bus_init[pv] = np.abs(mat.v_bus_init[pv]) * np.exp(1j * np.angle(v_r[pv]))
    pq = np.arange(mat.npv, nb)
    pq = pq[ok[mat.npv:]]
    mat.v_bus_init[pq] = v_r[pq]
