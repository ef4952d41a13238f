"""
Newton-Raphson power flow in polar coordinates.

The buses are expected in [PV | PQ | fixed] order, where the fixed tail
(Slack and Auxiliary buses) keeps its start voltage. The state vector holds
the angles of all PV and PQ buses followed by the magnitudes of the PQ buses.

Partial derivatives follow MATPOWER Technical Note 2:

    dS/dVm = diag(V) conj(Y diag(Vnorm)) + conj(diag(I)) diag(Vnorm)
    dS/dVa = j diag(V) conj(diag(I) - Y diag(V))

with I = Y V and Vnorm = V / |V|.
"""

import logging
from dataclasses import dataclass

import numpy as np
import scipy.sparse as sp

from ..config import DEFAULT_MAX_IT, DEFAULT_TOL
from ..solver import LUSolver, SpluSolver
from ..sparse import conjugate, hstack, real_imag, slice_block, slice_block_into, vstack

logger = logging.getLogger(__name__)


@dataclass
class NewtonResult:
    """Outcome of one inner solve, voltages in reordered coordinates."""
    v: np.ndarray
    iterations: int
    converged: bool
    mismatch: float = float("nan")


def power_mismatch(y_bus: sp.csc_matrix, v: np.ndarray, s_bus: np.ndarray) -> np.ndarray:
    """Complex mismatch V * conj(Y V) - S."""
    return v * np.conj(y_bus @ v) - s_bus


def residual(mis: np.ndarray, npv: int, npq: int) -> np.ndarray:
    """Stack real mismatches of PV+PQ buses and reactive mismatches of PQ buses."""
    nb = npv + npq
    return np.concatenate([mis[:nb].real, mis[npv:nb].imag])


class JacobianCache:
    """
    Sparsity state reused across Newton-Raphson iterations.

    Holds the pattern of Y plus its diagonal, on which dS/dV is evaluated,
    and the four real Jacobian blocks. The first evaluation slices fresh
    blocks; later evaluations only refresh their values. The cache is keyed
    by (N, npv, npq, nnz(Y)) and clears itself when that key or the pattern
    of Y changes. New values on an unchanged pattern are picked up as is.
    """

    def __init__(self):
        self.reset()

    def reset(self) -> None:
        self.key: tuple[int, int, int, int] | None = None
        self._indptr: np.ndarray | None = None
        self._rows: np.ndarray | None = None
        self._cols: np.ndarray | None = None
        self._diag: np.ndarray | None = None
        self._y_vals: np.ndarray | None = None
        self._y_conj: np.ndarray | None = None
        self.blocks: list[sp.csc_matrix] | None = None
        self.n_refresh = 0

    def prepare(self, y_bus: sp.csc_matrix, npv: int, npq: int) -> None:
        """
        Record the Y + diagonal pattern and its values.

        A Y with the same key and pattern only refreshes the cached values;
        any other change resets the cache.
        """
        pattern = self._with_diagonal(y_bus)
        key = (y_bus.shape[0], npv, npq, y_bus.nnz)
        if (key == self.key and np.array_equal(pattern.indptr, self._indptr)
                and np.array_equal(pattern.indices, self._rows)):
            self._y_vals = pattern.data
            self._y_conj = conjugate(pattern).data
            return
        if self.key is not None:
            logger.debug(f"Jacobian cache key changed {self.key} -> {key}, resetting")
        self.reset()
        self.key = key

        n = y_bus.shape[0]
        self._indptr = pattern.indptr
        self._rows = pattern.indices
        self._cols = np.repeat(np.arange(n), np.diff(pattern.indptr))
        self._diag = np.flatnonzero(self._rows == self._cols)
        self._y_vals = pattern.data
        self._y_conj = conjugate(pattern).data

    @staticmethod
    def _with_diagonal(y_bus: sp.csc_matrix) -> sp.csc_matrix:
        """Y with explicit (possibly zero) diagonal entries, indices sorted."""
        n = y_bus.shape[0]
        coo = y_bus.tocoo()
        diag = np.arange(n)
        pattern = sp.csc_matrix(
            (
                np.concatenate([coo.data, np.zeros(n, dtype=np.complex128)]),
                (np.concatenate([coo.row, diag]), np.concatenate([coo.col, diag])),
            ),
            shape=(n, n),
        )
        pattern.sort_indices()
        return pattern

    def _matrix(self, data: np.ndarray) -> sp.csc_matrix:
        n = len(self._indptr) - 1
        return sp.csc_matrix((data, self._rows, self._indptr), shape=(n, n))

    def dsbus_dv(self, v: np.ndarray) -> tuple[sp.csc_matrix, sp.csc_matrix]:
        """
        Evaluate dS/dVm and dS/dVa on the cached pattern.

        Args:
            v: Complex bus voltages (reordered)

        Returns:
            Tuple of (dS_dVm, dS_dVa) as complex CSC matrices with identical
            patterns
        """
        rows, cols, diag = self._rows, self._cols, self._diag
        v_norm = np.exp(1j * np.angle(v))
        i_bus = self._matrix(self._y_vals) @ v

        d_vm = v[rows] * self._y_conj * np.conj(v_norm[cols])
        d_vm[diag] += np.conj(i_bus) * v_norm

        d_va = -1j * v[rows] * self._y_conj * np.conj(v[cols])
        d_va[diag] += 1j * v * np.conj(i_bus)
        return self._matrix(d_vm), self._matrix(d_va)

    def jacobian(self, v: np.ndarray, npv: int, npq: int) -> sp.csc_matrix:
        """
        Assemble the real Jacobian

            [ Re dS/dVa[:nb, :nb]       Re dS/dVm[:nb, npv:nb]    ]
            [ Im dS/dVa[npv:nb, :nb]    Im dS/dVm[npv:nb, npv:nb] ]

        where nb = npv + npq.
        """
        nb = npv + npq
        d_vm, d_va = self.dsbus_dv(v)
        re_va, im_va = real_imag(d_va)
        re_vm, im_vm = real_imag(d_vm)
        specs = [
            (re_va, (0, 0), (nb, nb)),
            (re_vm, (0, npv), (nb, npq)),
            (im_va, (npv, 0), (npq, nb)),
            (im_vm, (npv, npv), (npq, npq)),
        ]
        if self.blocks is None:
            self.blocks = [slice_block(m, pos, shape) for m, pos, shape in specs]
        else:
            for dest, (m, pos, shape) in zip(self.blocks, specs):
                slice_block_into(m, pos, shape, dest)
            self.n_refresh += 1
        j11, j12, j21, j22 = self.blocks
        return vstack([hstack([j11, j12]), hstack([j21, j22])])


def newton_pf(
    y_bus: sp.csc_matrix,
    s_bus: np.ndarray,
    v0: np.ndarray,
    npv: int,
    npq: int,
    tol: float = DEFAULT_TOL,
    max_it: int = DEFAULT_MAX_IT,
    solver: LUSolver | None = None,
    cache: JacobianCache | None = None,
) -> NewtonResult:
    """
    Solve the power flow equations with Newton-Raphson.

    Args:
        y_bus: Reordered admittance matrix (CSC)
        s_bus: Reordered injections (per-unit)
        v0: Reordered start voltages
        npv: Number of PV buses
        npq: Number of PQ buses
        tol: Convergence threshold on the 2-norm of the residual
        max_it: Iteration limit
        solver: LU backend (a fresh SpluSolver when omitted)
        cache: Jacobian sparsity cache (a fresh one when omitted)

    Returns:
        NewtonResult; on failure ``v`` is the last finite iterate

    Raises:
        SingularJacobianError: if the Jacobian cannot be factorized
    """
    solver = solver or SpluSolver()
    cache = cache or JacobianCache()
    nb = npv + npq
    v = np.array(v0, dtype=np.complex128)

    if nb == 0:
        return NewtonResult(v, 0, True, 0.0)

    cache.prepare(y_bus, npv, npq)
    va = np.angle(v)
    vm = np.abs(v)

    f = residual(power_mismatch(y_bus, v, s_bus), npv, npq)
    norm = np.linalg.norm(f)
    logger.debug(f"NR iteration 0: |F| = {norm:.3e}")
    if norm < tol:
        return NewtonResult(v, 0, True, norm)

    for it in range(1, max_it + 1):
        jac = cache.jacobian(v, npv, npq)
        dx = solver.factor_and_solve(jac, f)

        va_next = va.copy()
        vm_next = vm.copy()
        va_next[:nb] = np.mod(va[:nb] - dx[:nb], 2 * np.pi)
        vm_next[npv:nb] = vm[npv:nb] - dx[nb:]
        v_next = vm_next * np.exp(1j * va_next)
        if not np.all(np.isfinite(v_next)):
            logger.warning(f"NR iteration {it}: non-finite voltage, stopping at last finite iterate")
            return NewtonResult(v, it - 1, False, norm)

        va, vm, v = va_next, vm_next, v_next
        f = residual(power_mismatch(y_bus, v, s_bus), npv, npq)
        norm = np.linalg.norm(f)
        logger.debug(f"NR iteration {it}: |F| = {norm:.3e}")
        if norm < tol:
            return NewtonResult(v, it, True, norm)

    return NewtonResult(v, max_it, False, norm)
