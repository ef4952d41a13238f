"""Tests for ac_powerflow.powerflow.newton: derivatives, Jacobian and the NR loop."""

import numpy as np
import pytest
import scipy.sparse as sp

from ac_powerflow.powerflow.newton import (
    JacobianCache,
    newton_pf,
    power_mismatch,
    residual,
)
from ac_powerflow.solver import CachedOrderingSolver, SpluSolver

from conftest import Y_STRONG, Y_WEAK


def two_bus_system(load: complex = complex(0.5, 0.2)):
    """Reordered two-bus system: PQ bus first, slack second."""
    y = sp.csc_matrix(np.array([[Y_WEAK, -Y_WEAK], [-Y_WEAK, Y_WEAK]]))
    s = np.array([-load, 0.0], dtype=complex)
    v0 = np.ones(2, dtype=complex)
    return y, s, v0


def ring_system():
    """Reordered 4-bus ring: PV, PQ, PQ, slack."""
    y = np.zeros((4, 4), dtype=complex)
    for a, b in [(0, 1), (1, 2), (2, 3), (3, 0), (0, 2)]:
        y[a, a] += Y_STRONG
        y[b, b] += Y_STRONG
        y[a, b] -= Y_STRONG
        y[b, a] -= Y_STRONG
        y[a, a] += 0.01j
        y[b, b] += 0.01j
    s = np.array([0.4, -0.6 - 0.2j, -0.3 - 0.1j, 0.0])
    v0 = np.array([1.02, 1.0, 1.0, 1.01], dtype=complex)
    return sp.csc_matrix(y), s, v0


def dense_dsbus_dv(y: np.ndarray, v: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    i = y @ v
    v_norm = v / np.abs(v)
    d_vm = np.diag(v) @ np.conj(y @ np.diag(v_norm)) + np.conj(np.diag(i)) @ np.diag(v_norm)
    d_va = 1j * np.diag(v) @ np.conj(np.diag(i) - y @ np.diag(v))
    return d_vm, d_va


# ======================================================================
# Derivatives and Jacobian
# ======================================================================


class TestJacobianCache:
    """Tests for JacobianCache."""

    def test_dsbus_dv_matches_dense(self):
        y, _, _ = ring_system()
        rng = np.random.default_rng(0)
        v = rng.uniform(0.9, 1.1, 4) * np.exp(1j * rng.uniform(-0.3, 0.3, 4))
        cache = JacobianCache()
        cache.prepare(y, 1, 2)
        d_vm, d_va = cache.dsbus_dv(v)
        ref_vm, ref_va = dense_dsbus_dv(y.toarray(), v)
        np.testing.assert_allclose(d_vm.toarray(), ref_vm, atol=1e-12)
        np.testing.assert_allclose(d_va.toarray(), ref_va, atol=1e-12)

    def test_jacobian_matches_finite_differences(self):
        y, s, _ = ring_system()
        npv, npq = 1, 2
        nb = npv + npq
        v = np.array([1.02 * np.exp(0.05j), 0.98 * np.exp(-0.02j), 0.99 * np.exp(-0.04j), 1.01])
        cache = JacobianCache()
        cache.prepare(y, npv, npq)
        jac = cache.jacobian(v, npv, npq).toarray()

        va, vm = np.angle(v), np.abs(v)
        x0 = np.concatenate([va[:nb], vm[npv:nb]])
        h = 1e-7

        def f(x):
            va2, vm2 = va.copy(), vm.copy()
            va2[:nb] = x[:nb]
            vm2[npv:nb] = x[nb:]
            return residual(power_mismatch(y, vm2 * np.exp(1j * va2), s), npv, npq)

        fd = np.column_stack([(f(x0 + h * e) - f(x0 - h * e)) / (2 * h) for e in np.eye(len(x0))])
        np.testing.assert_allclose(jac, fd, atol=1e-6)

    def test_jacobian_shape(self):
        y, _, v0 = ring_system()
        cache = JacobianCache()
        cache.prepare(y, 1, 2)
        assert cache.jacobian(v0, 1, 2).shape == (5, 5)

    def test_blocks_are_refreshed_in_place(self):
        y, _, v0 = ring_system()
        cache = JacobianCache()
        cache.prepare(y, 1, 2)
        cache.jacobian(v0, 1, 2)
        first = cache.blocks
        cache.jacobian(v0 * 0.99, 1, 2)
        assert cache.blocks is first
        assert cache.n_refresh == 1

    def test_key_change_resets(self):
        y, _, v0 = ring_system()
        cache = JacobianCache()
        cache.prepare(y, 1, 2)
        cache.jacobian(v0, 1, 2)
        cache.prepare(y, 0, 3)
        assert cache.blocks is None
        assert cache.key == (4, 0, 3, y.nnz)

    def test_new_values_on_same_pattern(self):
        y, _, v0 = ring_system()
        cache = JacobianCache()
        cache.prepare(y, 1, 2)
        cache.jacobian(v0, 1, 2)

        scaled = sp.csc_matrix(y * 2.0)
        cache.prepare(scaled, 1, 2)
        reused = cache.jacobian(v0, 1, 2).toarray()
        fresh = JacobianCache()
        fresh.prepare(scaled, 1, 2)
        np.testing.assert_allclose(reused, fresh.jacobian(v0, 1, 2).toarray())
        assert cache.n_refresh == 1

    def test_pattern_change_resets(self):
        y, _, v0 = ring_system()
        cache = JacobianCache()
        cache.prepare(y, 1, 2)
        cache.jacobian(v0, 1, 2)
        moved = y.toarray()
        moved[0, 2] = moved[2, 0] = 0.0
        moved[1, 3] = moved[3, 1] = -Y_STRONG
        moved = sp.csc_matrix(moved)
        assert moved.nnz == y.nnz
        cache.prepare(moved, 1, 2)
        assert cache.blocks is None


# ======================================================================
# Newton-Raphson loop
# ======================================================================


class TestNewtonPF:
    """Tests for newton_pf()."""

    def test_two_bus_solution(self):
        y, s, v0 = two_bus_system()
        res = newton_pf(y, s, v0, 0, 1, tol=1e-8)
        assert res.converged
        assert res.iterations <= 5
        assert 0.93 <= abs(res.v[0]) <= 0.99
        assert np.angle(res.v[0]) < 0
        assert res.v[1] == 1.0

    def test_converged_residual_below_tolerance(self):
        y, s, v0 = ring_system()
        tol = 1e-9
        res = newton_pf(y, s, v0, 1, 2, tol=tol)
        assert res.converged
        mis = residual(power_mismatch(y, res.v, s), 1, 2)
        assert np.linalg.norm(mis) < tol
        assert res.mismatch < tol

    def test_pv_magnitude_and_slack_are_held(self):
        y, s, v0 = ring_system()
        res = newton_pf(y, s, v0, 1, 2)
        assert abs(res.v[0]) == pytest.approx(1.02)
        assert res.v[3] == v0[3]

    def test_backends_agree(self):
        y, s, v0 = ring_system()
        r1 = newton_pf(y, s, v0, 1, 2, tol=1e-10, solver=SpluSolver())
        r2 = newton_pf(y, s, v0, 1, 2, tol=1e-10, solver=CachedOrderingSolver())
        np.testing.assert_allclose(r1.v, r2.v, atol=1e-9)

    def test_already_converged_takes_no_iteration(self):
        y, s, v0 = two_bus_system()
        first = newton_pf(y, s, v0, 0, 1, tol=1e-8)
        again = newton_pf(y, s, first.v, 0, 1, tol=1e-8)
        assert again.converged
        assert again.iterations == 0

    def test_cache_counts_refreshes(self):
        y, s, v0 = ring_system()
        cache = JacobianCache()
        res = newton_pf(y, s, v0, 1, 2, tol=1e-10, cache=cache)
        assert res.iterations >= 2
        assert cache.n_refresh == res.iterations - 1

    def test_only_fixed_buses(self):
        y = sp.csc_matrix(np.array([[Y_WEAK]]))
        res = newton_pf(y, np.zeros(1, dtype=complex), np.ones(1, dtype=complex), 0, 0)
        assert res.converged
        assert res.iterations == 0

    def test_non_convergence(self):
        y, s, v0 = two_bus_system(load=complex(20.0, 0.0))
        res = newton_pf(y, s, v0, 0, 1, max_it=10)
        assert not res.converged
        assert res.iterations <= 10
        assert np.all(np.isfinite(res.v))

    def test_start_voltage_not_modified(self):
        y, s, v0 = ring_system()
        before = v0.copy()
        newton_pf(y, s, v0, 1, 2)
        np.testing.assert_array_equal(v0, before)
