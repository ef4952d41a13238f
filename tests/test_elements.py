"""Tests for ac_powerflow.core.elements: per-unit conversion and element models."""

import math

import pytest

from ac_powerflow.core.elements import (
    GROUND,
    AdmittanceBranch,
    ExternalGrid,
    Generator,
    Line,
    Load,
    NodeRole,
    Shunt,
    StaticGenerator,
    Switch,
    SwitchType,
    TapSide,
    Transformer,
)


def make_trafo(**kwargs) -> Transformer:
    params = dict(index=0, hv_bus=0, lv_bus=1, sn_mva=40.0, vn_hv_kv=110.0, vn_lv_kv=20.0,
                  vk_percent=10.0, vkr_percent=0.5)
    params.update(kwargs)
    return Transformer(**params)


def by_port(branches: list[AdmittanceBranch]) -> dict[tuple[int, int], complex]:
    out: dict[tuple[int, int], complex] = {}
    for b in branches:
        out[b.port] = out.get(b.port, 0j) + b.y
    return out


class TestAdmittanceBranch:
    """Tests for AdmittanceBranch."""

    def test_per_unit_scaling(self):
        """y_pu = y * v_base^2 / S_base."""
        branch = AdmittanceBranch(complex(0.01, -0.1), (0, 1), 110.0)
        assert branch.get_admittance_pu(100.0) == pytest.approx(complex(0.01, -0.1) * 121.0)

    def test_is_shunt(self):
        assert AdmittanceBranch(1j, (3, GROUND), 20.0).is_shunt
        assert not AdmittanceBranch(1j, (3, 4), 20.0).is_shunt


class TestLine:
    """Tests for the line pi-model."""

    def test_series_only(self):
        line = Line(0, 0, 1, length_km=10.0, r_ohm_per_km=0.1, x_ohm_per_km=0.4)
        branches = line.admittance_branches(110.0, 50.0)
        assert len(branches) == 1
        assert branches[0].port == (0, 1)
        assert branches[0].y == pytest.approx(1 / complex(1.0, 4.0))
        assert branches[0].element == ("line", 0)

    def test_charging_split_to_both_ends(self):
        line = Line(3, 0, 1, length_km=20.0, r_ohm_per_km=0.06, x_ohm_per_km=0.4,
                    c_nf_per_km=10.0, g_us_per_km=1.0)
        ports = by_port(line.admittance_branches(110.0, 50.0))
        b = 2 * math.pi * 50.0 * 1e-9 * 10.0 * 20.0
        g = 1e-6 * 1.0 * 20.0
        assert ports[(0, GROUND)] == pytest.approx(0.5 * complex(g, b))
        assert ports[(1, GROUND)] == pytest.approx(0.5 * complex(g, b))

    def test_parallel_scales_impedance_and_shunt(self):
        """Impedance and shunt admittance are both multiplied by parallel."""
        single = Line(0, 0, 1, 5.0, 0.1, 0.3, c_nf_per_km=8.0)
        double = Line(0, 0, 1, 5.0, 0.1, 0.3, c_nf_per_km=8.0, parallel=2)
        p1 = by_port(single.admittance_branches(20.0, 50.0))
        p2 = by_port(double.admittance_branches(20.0, 50.0))
        assert p2[(0, 1)] == pytest.approx(p1[(0, 1)] / 2)
        assert p2[(0, GROUND)] == pytest.approx(p1[(0, GROUND)] * 2)


class TestTransformer:
    """Tests for the two-winding transformer model."""

    def test_nominal_tap(self):
        trafo = make_trafo()
        ports = by_port(trafo.admittance_branches())
        z_base = 20.0 ** 2 / 40.0
        z = z_base * 0.10
        r = z_base * 0.005
        y = 1 / complex(r, math.sqrt(z ** 2 - r ** 2))
        assert ports[(0, 1)] == pytest.approx(y)
        assert ports[(0, GROUND)] == pytest.approx(0.0)
        assert ports[(1, GROUND)] == pytest.approx(0.0)
        assert all(b.v_base_kv == 20.0 for b in trafo.admittance_branches())

    def test_off_nominal_tap(self):
        trafo = make_trafo(tap_pos=2, tap_neutral=0, tap_step_percent=2.5)
        m = 1.05
        assert trafo.tap_ratio == pytest.approx(m)
        ports = by_port(trafo.admittance_branches())
        y = ports[(0, 1)] * m
        assert ports[(0, GROUND)] == pytest.approx((1 - m) * y / m ** 2)
        assert ports[(1, GROUND)] == pytest.approx((1 - 1 / m) * y)

    def test_lv_tap_uses_reciprocal(self):
        hv = make_trafo(tap_pos=1, tap_step_percent=5.0)
        lv = make_trafo(tap_pos=1, tap_step_percent=5.0, tap_side="lv")
        assert lv.tap_side is TapSide.LV
        assert lv.tap_ratio == pytest.approx(1 / hv.tap_ratio)

    def test_parallel(self):
        p1 = by_port(make_trafo().admittance_branches())
        p2 = by_port(make_trafo(parallel=2).admittance_branches())
        assert p2[(0, 1)] == pytest.approx(p1[(0, 1)] / 2)

    def test_magnetizing_branch(self):
        trafo = make_trafo(pfe_kw=30.0, i0_percent=0.1)
        branches = trafo.admittance_branches()
        assert len(branches) == 5
        z_base = 20.0 ** 2 / 40.0
        c = 1 / complex(z_base * 0.001 * 30.0 / 40.0, z_base / 0.001)
        ports = by_port(branches)
        assert ports[(1, GROUND)] == pytest.approx(0.5 * c)
        assert ports[(0, GROUND)] == pytest.approx(0.5 * c)

    def test_no_magnetizing_without_no_load_current(self):
        assert len(make_trafo(pfe_kw=30.0, i0_percent=0.0).admittance_branches()) == 3

    def test_phase_shift_is_ignored_with_warning(self, caplog):
        trafo = make_trafo(shift_degree=30.0)
        with caplog.at_level("WARNING"):
            ports = by_port(trafo.admittance_branches())
        assert "phase shift" in caplog.text
        assert ports[(0, 1)] == pytest.approx(by_port(make_trafo().admittance_branches())[(0, 1)])


class TestShuntAndSwitch:
    """Tests for Shunt and Switch."""

    def test_capacitor_admittance(self):
        """Negative q_mvar is a capacitor: positive susceptance."""
        shunt = Shunt(0, 2, p_mw=0.0, q_mvar=-5.0, vn_kv=20.0, step=2)
        branch = shunt.admittance_branch()
        assert branch.port == (2, GROUND)
        assert branch.y == pytest.approx(complex(0.0, 10.0 / 400.0))

    def test_merges_nodes(self):
        assert Switch(0, 0, 1).merges_nodes
        assert not Switch(0, 0, 1, closed=False).merges_nodes
        assert not Switch(0, 0, 1, z_ohm=0.1).merges_nodes
        assert not Switch(0, 0, 1, et="bl").merges_nodes

    def test_switch_type_coercion(self):
        assert Switch(0, 0, 1, et="bt").et is SwitchType.BUS_TRAFO
        with pytest.raises(ValueError):
            Switch(0, 0, 1, et="xx")


class TestInjections:
    """Injection signs and roles."""

    def test_load_is_negative_injection(self):
        assert Load(0, 0, 10.0, 4.0, scaling=0.5).s_injection_mva == pytest.approx(complex(-5.0, -2.0))

    def test_sgen_is_positive_injection(self):
        assert StaticGenerator(0, 0, 3.0, 1.0).s_injection_mva == pytest.approx(complex(3.0, 1.0))

    def test_generator_roles(self):
        assert Generator(0, 0, 50.0).role is NodeRole.PV
        assert Generator(0, 0, 50.0, slack=True).role is NodeRole.SLACK
        assert Generator(0, 0, 50.0, scaling=2.0).s_injection_mva == pytest.approx(complex(100.0, 0.0))

    def test_external_grid_is_slack(self):
        assert ExternalGrid(0, 0, vm_pu=1.02).role is NodeRole.SLACK
