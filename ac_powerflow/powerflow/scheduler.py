"""
Outer power flow loop.

The scheduler turns pending network events into dirty flags, rebuilds or
patches the matrix state accordingly, runs the Newton-Raphson solver and
evaluates post-solve predicates (reactive power limits) that may change bus
roles and request another pass.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum

import numpy as np

from ..core.elements import NodeRole
from ..errors import NonConvergenceError
from ..matrices import (
    aggregate_nodes,
    apply_warm_start,
    build_admittance_matrix,
    build_power_flow_mat,
    compute_bus_injections,
)
from ..solver import make_solver
from .newton import JacobianCache, NewtonResult, newton_pf
from .results import extract_bus_results, extract_line_results

logger = logging.getLogger(__name__)


class PowerFlowEvent(Enum):
    """Changes reported to the scheduler between outer iterations."""
    VOLTAGE_CHANGED = "voltage_changed"
    INJECTION_CHANGED = "injection_changed"
    NODE_TYPE_CHANGED = "node_type_changed"
    FULL_REBUILD = "full_rebuild"


class ConvergenceStatus(Enum):
    CONVERGED = "converged"
    CONTINUE = "continue"
    MAX_ITER = "max_iter"


@dataclass
class DirtyFlags:
    """OR-merged view of a batch of events."""
    structure: bool = False
    admittance: bool = False
    injection: bool = False
    voltage: bool = False

    @classmethod
    def from_events(cls, events: list[PowerFlowEvent]) -> "DirtyFlags":
        flags = cls()
        for event in events:
            if event is PowerFlowEvent.FULL_REBUILD:
                flags.structure = flags.admittance = True
                flags.injection = flags.voltage = True
            elif event is PowerFlowEvent.NODE_TYPE_CHANGED:
                flags.structure = True
            elif event is PowerFlowEvent.INJECTION_CHANGED:
                flags.injection = True
            elif event is PowerFlowEvent.VOLTAGE_CHANGED:
                flags.voltage = True
        return flags

    @property
    def needs_rebuild(self) -> bool:
        return self.structure or self.admittance


@dataclass
class PowerFlowResult:
    """
    Result of a complete (outer) power flow run.

    ``v`` is in original bus order; out-of-service buses are NaN.
    ``iterations`` sums the inner iterations of all outer passes.
    """
    v: np.ndarray
    iterations: int
    converged: bool
    inner_iterations: list[int] = field(default_factory=list)
    outer_iterations: int = 0
    v_internal: np.ndarray | None = None


class PowerFlowScheduler:
    """
    Drives the inner solver until no post-solve predicate asks for a change.

    Owns the LU backend and the Jacobian cache; both are reset whenever the
    matrix structure is rebuilt.
    """

    def __init__(self, network, max_outer: int | None = None):
        self.network = network
        self.solver = make_solver(network.config.solver)
        self.jacobian = JacobianCache()
        self.max_outer = max_outer
        self.n_rebuilds = 0
        self._v_warm: np.ndarray | None = None

    # --- Matrix maintenance ---

    def rebuild(self, v_warm: np.ndarray | None = None) -> None:
        """Rebuild Y, S, V0 and the permutation from the element tables."""
        net = self.network
        net.validate()
        branches = net.admittance_branches()
        y_full = build_admittance_matrix(branches, net.n_buses, net.base_mva)
        inj = compute_bus_injections(net)

        links = [(sw.bus, sw.element) for sw in net.merging_switches()]
        agg = aggregate_nodes(net.n_buses, links, inj.roles)
        agg.y_bus_full = y_full

        mat = build_power_flow_mat(
            agg.reduce_admittance(y_full),
            agg.reduce_injection(inj.s_bus),
            agg.reduce_voltage(inj.v_init),
            agg.reduce_roles(inj.roles),
        )
        if v_warm is not None and len(v_warm) == net.n_buses:
            apply_warm_start(mat, agg.reduce_voltage(v_warm))

        self.jacobian.reset()
        self.solver.reset()
        net.branches = branches
        net.injections = inj
        net.aggregation = agg
        net.mat = mat
        self.n_rebuilds += 1
        logger.info(f"Rebuilt power flow matrices: {net.n_buses} buses, {len(branches)} branches, "
                    f"pv={mat.npv}, pq={mat.npq}")

    def patch_injection(self) -> None:
        """Refresh S in place through the forward permutation."""
        net = self.network
        inj = compute_bus_injections(net)
        net.injections = inj
        net.mat.s_bus[net.mat.to_perm] = net.aggregation.reduce_injection(inj.s_bus)
        logger.debug("Patched bus injections")

    def patch_voltage(self) -> None:
        """
        Refresh voltage setpoints in place.

        PV buses take the new magnitude and keep their current angle, Slack
        buses take magnitude and angle. PQ start values are left alone.
        """
        net = self.network
        mat = net.mat
        inj = compute_bus_injections(net)
        net.injections = inj
        v_set = mat.permute(net.aggregation.reduce_voltage(inj.v_init))

        pv = np.arange(mat.npv)
        mat.v_bus_init[pv] = np.abs(v_set[pv]) * np.exp(1j * np.angle(mat.v_bus_init[pv]))
        reduced_roles = [mat.roles[i] for i in mat.from_perm]
        fixed = np.array([i for i in range(mat.npv + mat.npq, mat.n_bus)
                          if reduced_roles[i] is NodeRole.SLACK], dtype=np.int64)
        mat.v_bus_init[fixed] = v_set[fixed]
        logger.debug("Patched voltage setpoints")

    # --- Outer loop ---

    def lift(self, v: np.ndarray) -> np.ndarray:
        """Reordered reduced voltages to original bus order (NaN when out of service)."""
        net = self.network
        v_full = np.asarray(net.aggregation.lift_voltage(net.mat.lift(v)), dtype=np.complex128)
        out = np.array([role is NodeRole.AUXILIARY for role in net.injections.roles], dtype=bool)
        v_full[out] = np.nan
        return v_full

    def step(self) -> tuple[ConvergenceStatus, NewtonResult]:
        """
        Run one outer iteration.

        Returns:
            Tuple of (status, inner result)
        """
        net = self.network
        flags = DirtyFlags.from_events(net.drain_events())
        if net.mat is None or flags.needs_rebuild:
            use_warm = net.config.warm_start or (flags.structure and not flags.admittance)
            self.rebuild(self._v_warm if use_warm else None)
        else:
            if flags.injection:
                self.patch_injection()
            if flags.voltage:
                self.patch_voltage()

        mat = net.mat
        cfg = net.config
        result = newton_pf(
            mat.y_bus, mat.s_bus, mat.v_bus_init, mat.npv, mat.npq,
            tol=cfg.tolerance, max_it=cfg.max_iterations,
            solver=self.solver, cache=self.jacobian,
        )
        if not result.converged:
            return ConvergenceStatus.MAX_ITER, result

        self._v_warm = self.lift(result.v)
        if cfg.enforce_q_lims and self.check_q_limits(result.v):
            mat.v_bus_init[:] = result.v
            net.post_event(PowerFlowEvent.NODE_TYPE_CHANGED)
            return ConvergenceStatus.CONTINUE, result
        return ConvergenceStatus.CONVERGED, result

    def run(self) -> PowerFlowResult:
        """
        Run outer iterations until convergence.

        Raises:
            NonConvergenceError: if an inner solve hits its iteration limit
                (the exception carries the last iterate)
        """
        net = self.network
        if net.q_limited:
            net.q_limited.clear()
            net.post_event(PowerFlowEvent.NODE_TYPE_CHANGED)

        max_outer = self.max_outer or net.n_buses + 2
        inner: list[int] = []
        for outer in range(1, max_outer + 1):
            status, nr = self.step()
            inner.append(nr.iterations)
            if status is ConvergenceStatus.CONTINUE:
                continue

            v_full = self.lift(nr.v)
            result = PowerFlowResult(
                v=v_full,
                iterations=sum(inner),
                converged=status is ConvergenceStatus.CONVERGED,
                inner_iterations=inner,
                outer_iterations=outer,
                v_internal=nr.v.copy(),
            )
            net.result = result
            if status is ConvergenceStatus.MAX_ITER:
                net.set_results(None, None)
                raise NonConvergenceError(
                    f"Power flow did not converge in {nr.iterations} iterations "
                    f"(|F| = {nr.mismatch:.3e})",
                    result,
                )
            net.set_results(
                extract_bus_results(net, v_full),
                extract_line_results(net, v_full),
            )
            logger.info(f"Power flow converged: {result.iterations} iterations, "
                        f"{outer} outer iteration(s)")
            return result

        net.set_results(None, None)
        raise NonConvergenceError(f"Reactive limit loop did not settle in {max_outer} outer iterations",
                                  net.result)

    # --- Post-solve predicates ---

    def check_q_limits(self, v: np.ndarray) -> bool:
        """
        Demote PV groups whose generator Q leaves [Q_min, Q_max].

        Generator Q is measured in reduced coordinates as the computed
        injection minus the scheduled one. Every PV bus of a violating group
        is held at its own limit from then on.

        Args:
            v: Converged reordered voltages

        Returns:
            True if at least one bus was demoted
        """
        net = self.network
        mat, agg, inj = net.mat, net.aggregation, net.injections
        s_calc = mat.lift(v * np.conj(mat.y_bus @ v))
        s_set = agg.reduce_injection(inj.s_set)
        q_gen = (s_calc.imag - s_set.imag) * net.base_mva

        pv_groups = mat.from_perm[:mat.npv]
        demoted = False
        for g in pv_groups:
            members = [b for b in agg.members(g) if inj.roles[b] is NodeRole.PV]
            q_min = sum(inj.q_min_mvar[b] for b in members)
            q_max = sum(inj.q_max_mvar[b] for b in members)
            if q_gen[g] > q_max:
                limits = inj.q_max_mvar
                bound = q_max
            elif q_gen[g] < q_min:
                limits = inj.q_min_mvar
                bound = q_min
            else:
                continue
            for b in members:
                net.q_limited[int(b)] = float(limits[b])
            demoted = True
            logger.info(f"Bus {agg.representatives[g]}: generator Q = {q_gen[g]:.3f} Mvar "
                        f"violates limit {bound:.3f} Mvar, switching PV -> PQ")
        return demoted
