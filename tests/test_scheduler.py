"""Tests for ac_powerflow.powerflow.scheduler: outer loop, patching, Q-limits and switches."""

import numpy as np
import pytest

from ac_powerflow import Network, PowerFlowConfig
from ac_powerflow.errors import NoSlackBusError, NonConvergenceError, SingularJacobianError
from ac_powerflow.powerflow.scheduler import DirtyFlags, PowerFlowEvent, PowerFlowScheduler

from conftest import Y_STRONG, q_limit_network, switch_network, two_bus_network, unit_network


# ======================================================================
# Event handling
# ======================================================================


class TestDirtyFlags:
    """Tests for DirtyFlags.from_events()."""

    def test_empty(self):
        flags = DirtyFlags.from_events([])
        assert not (flags.structure or flags.admittance or flags.injection or flags.voltage)
        assert not flags.needs_rebuild

    def test_full_rebuild_sets_everything(self):
        flags = DirtyFlags.from_events([PowerFlowEvent.FULL_REBUILD])
        assert flags.structure and flags.admittance and flags.injection and flags.voltage

    def test_node_type_changed_is_structural(self):
        flags = DirtyFlags.from_events([PowerFlowEvent.NODE_TYPE_CHANGED])
        assert flags.structure and not flags.admittance
        assert flags.needs_rebuild

    def test_events_are_or_merged(self):
        flags = DirtyFlags.from_events([PowerFlowEvent.INJECTION_CHANGED,
                                        PowerFlowEvent.VOLTAGE_CHANGED,
                                        PowerFlowEvent.INJECTION_CHANGED])
        assert flags.injection and flags.voltage
        assert not flags.needs_rebuild

    def test_network_queue_is_drained(self, two_bus):
        two_bus.set_bus_p_mw(1, -0.4)
        events = two_bus.drain_events()
        assert PowerFlowEvent.FULL_REBUILD in events
        assert events[-1] is PowerFlowEvent.INJECTION_CHANGED
        assert two_bus.drain_events() == []


# ======================================================================
# Basic runs and patch paths
# ======================================================================


class TestRun:
    """Tests for PowerFlowScheduler.run() through Network.run_pf()."""

    def test_two_bus(self, two_bus):
        result = two_bus.run_pf()
        assert result.converged
        assert result.outer_iterations == 1
        assert result.iterations <= 5
        assert 0.93 <= abs(result.v[1]) <= 0.99
        assert np.angle(result.v[1]) < 0
        assert two_bus.v_bus is result.v

    def test_results_require_a_run(self, two_bus):
        with pytest.raises(RuntimeError, match="run_pf"):
            _ = two_bus.res_bus
        with pytest.raises(RuntimeError):
            _ = two_bus.v_bus

    def test_no_slack(self):
        net = unit_network(2)
        net.add_admittance(0, 1, Y_STRONG)
        net.add_load(1, 0.5)
        with pytest.raises(NoSlackBusError):
            net.run_pf()

    def test_isolated_pq_bus_is_singular(self):
        net = unit_network(3)
        net.add_ext_grid(0)
        net.add_admittance(0, 1, Y_STRONG)
        net.add_load(1, 0.5)
        with pytest.raises(SingularJacobianError):
            net.run_pf()

    def test_injection_change_is_patched(self, two_bus):
        two_bus.run_pf()
        scheduler = two_bus.scheduler
        assert scheduler.n_rebuilds == 1

        two_bus.set_bus_p_mw(1, -0.8)
        patched = two_bus.run_pf()
        assert scheduler.n_rebuilds == 1

        fresh = two_bus_network()
        fresh.set_bus_p_mw(1, -0.8)
        np.testing.assert_allclose(patched.v, fresh.run_pf().v, atol=1e-6)

    def test_voltage_change_is_patched(self, two_bus):
        two_bus.run_pf()
        two_bus.set_bus_vm_pu(0, 1.05)
        result = two_bus.run_pf()
        assert two_bus.scheduler.n_rebuilds == 1
        assert abs(result.v[0]) == pytest.approx(1.05)
        assert abs(result.v[1]) > 0.99

    def test_topology_change_rebuilds(self):
        net = switch_network()
        net.run_pf()
        net.set_switch(0, False)
        net.run_pf()
        assert net.scheduler.n_rebuilds == 2
        assert net.aggregation.is_identity

    def test_rerun_without_changes(self, two_bus):
        first = two_bus.run_pf()
        second = two_bus.run_pf()
        assert two_bus.scheduler.n_rebuilds == 1
        np.testing.assert_allclose(first.v, second.v)

    def test_v_internal_is_reordered(self, two_bus):
        result = two_bus.run_pf()
        np.testing.assert_array_equal(two_bus.mat.lift(result.v_internal), result.v)


# ======================================================================
# Non-convergence
# ======================================================================


class TestNonConvergence:
    """Overloaded networks raise with the last iterate attached."""

    def test_overload_raises(self):
        net = two_bus_network(load_p=20.0, load_q=0.0, config=PowerFlowConfig(max_it=10))
        with pytest.raises(NonConvergenceError) as excinfo:
            net.run_pf()
        result = excinfo.value.result
        assert not result.converged
        assert np.all(np.isfinite(result.v))
        assert net.result is result
        with pytest.raises(RuntimeError):
            _ = net.res_bus

    def test_outer_limit(self):
        net = q_limit_network()
        with pytest.raises(NonConvergenceError, match="outer"):
            PowerFlowScheduler(net, max_outer=1).run()

    def test_failure_clears_earlier_results(self):
        net = two_bus_network(config=PowerFlowConfig(max_it=10))
        net.run_pf()
        assert net.res_bus.at[1, "vm_pu"] < 1.0

        net.set_bus_p_mw(1, -20.0)
        with pytest.raises(NonConvergenceError):
            net.run_pf()
        assert not net.result.converged
        with pytest.raises(RuntimeError, match="run_pf"):
            _ = net.res_bus
        with pytest.raises(RuntimeError, match="run_pf"):
            _ = net.res_line


# ======================================================================
# Reactive power limits
# ======================================================================


class TestReactiveLimits:
    """PV buses are demoted to PQ when their generator leaves its Q range."""

    def test_demotion(self, q_limit_net):
        result = q_limit_net.run_pf()
        assert result.converged
        assert result.outer_iterations == 2
        assert len(result.inner_iterations) == 2
        assert result.iterations == sum(result.inner_iterations)
        assert q_limit_net.q_limited == {1: 0.3}
        assert abs(result.v[1]) < 1.0
        assert q_limit_net.res_bus.at[1, "q_mvar"] == pytest.approx(-0.3, abs=1e-6)
        assert q_limit_net.res_bus.at[1, "p_mw"] == pytest.approx(0.0, abs=1e-6)

    def test_limits_ignored_when_disabled(self):
        net = q_limit_network(PowerFlowConfig(enforce_q_lims=False))
        result = net.run_pf()
        assert result.outer_iterations == 1
        assert abs(result.v[1]) == pytest.approx(1.0)
        assert net.res_bus.at[1, "q_mvar"] < -0.3

    def test_rerun_starts_from_pv(self, q_limit_net):
        first = q_limit_net.run_pf()
        second = q_limit_net.run_pf()
        assert second.outer_iterations == 2
        np.testing.assert_allclose(first.v, second.v, atol=1e-6)

    def test_generous_limit_keeps_pv(self):
        net = q_limit_network()
        net.generators[0].max_q_mvar = 5.0
        result = net.run_pf()
        assert result.outer_iterations == 1
        assert net.q_limited == {}

    def test_demotion_at_lower_limit(self):
        """A generator held below the slack voltage absorbs Q until Q_min."""
        net = unit_network(2, PowerFlowConfig(enforce_q_lims=True))
        net.add_ext_grid(0, vm_pu=1.0)
        net.add_admittance(0, 1, Y_STRONG)
        net.add_generator(1, p_mw=0.0, vm_pu=0.95, min_q_mvar=-0.1, max_q_mvar=1.0)
        result = net.run_pf()
        assert result.outer_iterations == 2
        assert net.q_limited == {1: -0.1}
        assert all(type(bus) is int for bus in net.q_limited)
        assert abs(result.v[1]) > 0.95
        assert net.res_bus.at[1, "q_mvar"] == pytest.approx(0.1, abs=1e-6)


# ======================================================================
# Bus-bus switches
# ======================================================================


class TestSwitches:
    """Closed zero-impedance switches in merge and admittance mode."""

    def test_merge_mode(self, switch_net):
        result = switch_net.run_pf()
        assert result.converged
        assert switch_net.aggregation.n_groups == 3
        assert result.v[2] == result.v[3]
        p = switch_net.res_bus["p_mw"]
        assert p[2] + p[3] == pytest.approx(0.5, abs=1e-6)

    def test_admittance_mode_matches_merge(self, switch_net):
        merged = switch_net.run_pf().v
        net = switch_network(PowerFlowConfig(switch_mode="admittance"))
        result = net.run_pf()
        assert net.aggregation.is_identity
        assert abs(result.v[2] - result.v[3]) < 1e-5
        np.testing.assert_allclose(result.v, merged, atol=1e-5)

    def test_open_switch_splits_buses(self):
        net = switch_network()
        net.set_switch(0, False)
        result = net.run_pf()
        assert result.v[2] != result.v[3]

    def test_merge_with_generator_group(self):
        """A PV bus behind a closed switch represents its group."""
        net = Network(base_mva=1.0)
        for _ in range(3):
            net.add_bus(1.0)
        net.add_ext_grid(0)
        net.add_admittance(0, 1, Y_STRONG)
        net.add_generator(2, 0.2, vm_pu=1.01)
        net.add_load(1, 0.4, 0.1)
        net.add_switch(1, 2)
        result = net.run_pf()
        assert result.v[1] == result.v[2]
        assert abs(result.v[1]) == pytest.approx(1.01)
