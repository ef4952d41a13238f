"""Shared test fixtures for the power flow tests."""

import pytest

from ac_powerflow import Network, PowerFlowConfig

# Raw admittances in Siemens; with 1 kV buses and a 1 MVA base they are
# also per-unit values.
Y_WEAK = complex(1.0, -10.0)
Y_STRONG = complex(2.0, -20.0)


def unit_network(n_bus: int, config: PowerFlowConfig | None = None) -> Network:
    """Network of 1 kV buses on a 1 MVA base, so Siemens equal per-unit."""
    net = Network(base_mva=1.0, config=config)
    for _ in range(n_bus):
        net.add_bus(1.0)
    return net


def two_bus_network(load_p: float = 0.5, load_q: float = 0.2,
                    config: PowerFlowConfig | None = None) -> Network:
    """Slack at bus 0, load at bus 1, one series admittance 1 - j10."""
    net = unit_network(2, config)
    net.add_ext_grid(0, vm_pu=1.0, va_degree=0.0)
    net.add_admittance(0, 1, Y_WEAK)
    net.add_load(1, load_p, load_q)
    return net


def q_limit_network(config: PowerFlowConfig | None = None) -> Network:
    """Slack - generator (Q_max 0.3) - load chain."""
    config = config or PowerFlowConfig(enforce_q_lims=True)
    net = unit_network(3, config)
    net.add_ext_grid(0, vm_pu=1.0)
    net.add_admittance(0, 1, Y_STRONG)
    net.add_admittance(1, 2, Y_STRONG)
    net.add_generator(1, p_mw=0.0, vm_pu=1.0, min_q_mvar=-1.0, max_q_mvar=0.3)
    net.add_load(2, 1.0, 0.8)
    return net


def switch_network(config: PowerFlowConfig | None = None) -> Network:
    """Four buses, closed zero-impedance bus-bus switch between buses 2 and 3."""
    net = unit_network(4, config)
    net.add_ext_grid(0)
    net.add_admittance(0, 1, Y_STRONG)
    net.add_admittance(1, 2, Y_STRONG)
    net.add_admittance(0, 3, Y_STRONG)
    net.add_load(2, 0.3, 0.1)
    net.add_load(3, 0.2, 0.1)
    net.add_switch(2, 3, et="bb", closed=True)
    return net


def feeder_network(config: PowerFlowConfig | None = None) -> Network:
    """110 kV feeder with line charging, a transformer, a shunt and a generator."""
    net = Network(base_mva=100.0, f_hz=50.0, config=config)
    hv0 = net.add_bus(110.0, name="HV0")
    hv1 = net.add_bus(110.0, name="HV1")
    hv2 = net.add_bus(110.0, name="HV2")
    mv = net.add_bus(20.0, name="MV")
    net.add_ext_grid(hv0, vm_pu=1.02)
    net.add_line(hv0, hv1, 20.0, 0.06, 0.4, c_nf_per_km=10.0, max_i_ka=0.5, name="L01")
    net.add_line(hv1, hv2, 15.0, 0.06, 0.4, c_nf_per_km=10.0, max_i_ka=0.5, name="L12")
    net.add_line(hv0, hv2, 30.0, 0.06, 0.4, c_nf_per_km=10.0, max_i_ka=0.5, name="L02")
    net.add_transformer(hv2, mv, sn_mva=40.0, vn_hv_kv=110.0, vn_lv_kv=20.0,
                        vk_percent=12.0, vkr_percent=0.4, pfe_kw=20.0, i0_percent=0.05)
    net.add_load(hv1, 30.0, 10.0)
    net.add_load(mv, 25.0, 8.0)
    net.add_generator(hv2, 15.0, vm_pu=1.01)
    net.add_shunt(mv, p_mw=0.0, q_mvar=-5.0)
    return net


@pytest.fixture
def two_bus() -> Network:
    return two_bus_network()


@pytest.fixture
def q_limit_net() -> Network:
    return q_limit_network()


@pytest.fixture
def switch_net() -> Network:
    return switch_network()


@pytest.fixture
def feeder() -> Network:
    return feeder_network()
