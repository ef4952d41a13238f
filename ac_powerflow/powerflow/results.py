"""
Power flow result extraction.

This module contains:
- Bus and line result classes
- Extraction of bus injections and line flows from converged voltages
- Conversion of the results to pandas DataFrames
"""

from dataclasses import dataclass
import math

import numpy as np
import pandas as pd

from ..core.elements import GROUND

BUS_COLUMNS = ["vm_pu", "va_degree", "p_mw", "q_mvar"]
LINE_COLUMNS = [
    "p_from_mw", "q_from_mvar", "p_to_mw", "q_to_mvar", "pl_mw", "ql_mvar",
    "i_from_ka", "i_to_ka", "i_ka", "vm_from_pu", "va_from_degree",
    "vm_to_pu", "va_to_degree", "loading_percent",
]


@dataclass
class BusResult:
    """Load flow results for a bus (p/q positive for consumption)."""
    index: int
    name: str
    vm_pu: float
    va_degree: float
    vn_kv: float
    p_mw: float
    q_mvar: float

    @property
    def voltage_complex(self) -> complex:
        """Return voltage as complex phasor (p.u.)"""
        angle_rad = math.radians(self.va_degree)
        return self.vm_pu * complex(math.cos(angle_rad), math.sin(angle_rad))

    @property
    def voltage_kv(self) -> float:
        return self.vm_pu * self.vn_kv


@dataclass
class LineResult:
    """Branch flows of a line, from side and to side."""
    index: int
    name: str
    p_from_mw: float
    q_from_mvar: float
    p_to_mw: float
    q_to_mvar: float
    pl_mw: float
    ql_mvar: float
    i_from_ka: float
    i_to_ka: float
    i_ka: float
    vm_from_pu: float
    va_from_degree: float
    vm_to_pu: float
    va_to_degree: float
    loading_percent: float

    @property
    def s_from_mva(self) -> complex:
        return complex(self.p_from_mw, self.q_from_mvar)

    @property
    def s_to_mva(self) -> complex:
        return complex(self.p_to_mw, self.q_to_mvar)


def bus_power_injections(network, v_full: np.ndarray) -> np.ndarray:
    """
    Computed complex injection V * conj(Y V) per original bus (per-unit).

    Uses the admittance matrix in original coordinates, so the members of a
    merged group add up to the injection of the group.
    """
    v = np.nan_to_num(v_full)
    y_full = network.aggregation.y_bus_full
    return v * np.conj(y_full @ v)


def shunt_consumption(network, v_full: np.ndarray) -> np.ndarray:
    """Complex power drawn by shunt elements per bus (per-unit)."""
    v = np.nan_to_num(v_full)
    s = np.zeros(network.n_buses, dtype=np.complex128)
    for shunt in network.shunts:
        if not (shunt.in_service and network.buses[shunt.bus].in_service):
            continue
        y_pu = shunt.admittance_branch().get_admittance_pu(network.base_mva)
        s[shunt.bus] += abs(v[shunt.bus]) ** 2 * np.conj(y_pu)
    return s


def extract_bus_results(network, v_full: np.ndarray) -> pd.DataFrame:
    """
    Build the bus result table.

    Args:
        network: Solved network
        v_full: Voltages in original bus order

    Returns:
        DataFrame indexed by bus id with columns vm_pu, va_degree, p_mw,
        q_mvar; out-of-service buses are NaN
    """
    s = (-bus_power_injections(network, v_full) + shunt_consumption(network, v_full)) * network.base_mva
    df = pd.DataFrame(
        {
            "vm_pu": np.abs(v_full),
            "va_degree": np.rad2deg(np.angle(v_full)),
            "p_mw": s.real,
            "q_mvar": s.imag,
        },
        index=pd.RangeIndex(network.n_buses, name="bus"),
    )
    df.loc[np.isnan(v_full), BUS_COLUMNS] = np.nan
    return df


def _line_flow(network, line, children: list, v_full: np.ndarray) -> list[float]:
    """Flows of one line from its admittance branches."""
    base = network.base_mva
    vf, vt = v_full[line.from_bus], v_full[line.to_bus]
    voltages = [abs(vf), math.degrees(np.angle(vf)), abs(vt), math.degrees(np.angle(vt))]

    if not children or not (np.isfinite(vf) and np.isfinite(vt)):
        return [0.0] * 9 + voltages + [0.0]

    y_series = 0j
    y_from = 0j
    y_to = 0j
    v_base = children[0].v_base_kv
    for child in children:
        y_pu = child.get_admittance_pu(base)
        a, b = child.port
        if b == GROUND and a == line.from_bus:
            y_from += y_pu
        elif b == GROUND and a == line.to_bus:
            y_to += y_pu
        else:
            y_series += y_pu

    i_from = (vf - vt) * y_series + vf * y_from
    i_to = (vt - vf) * y_series + vt * y_to
    s_from = vf * np.conj(i_from) * base
    s_to = vt * np.conj(i_to) * base
    loss = s_from + s_to

    i_base_ka = base / (math.sqrt(3) * v_base)
    i_from_ka = abs(i_from) * i_base_ka
    i_to_ka = abs(i_to) * i_base_ka
    i_ka = max(i_from_ka, i_to_ka)
    rating_ka = line.max_i_ka * line.parallel
    loading = i_ka / rating_ka * 100 if rating_ka > 0 else float("nan")

    return [
        s_from.real, s_from.imag, s_to.real, s_to.imag, loss.real, loss.imag,
        i_from_ka, i_to_ka, i_ka,
    ] + voltages + [loading]


def extract_line_results(network, v_full: np.ndarray) -> pd.DataFrame:
    """
    Build the line result table.

    Each line's series branch and optional shunt-to-ground branches are
    classified by port, then from/to currents and powers are computed.
    Out-of-service lines carry zero flow.

    Returns:
        DataFrame indexed by line id (columns as LINE_COLUMNS)
    """
    children: dict[int, list] = {}
    for branch in network.branches:
        if branch.element is not None and branch.element[0] == "line":
            children.setdefault(branch.element[1], []).append(branch)
    rows = [_line_flow(network, line, children.get(line.index, []), v_full) for line in network.lines]
    return pd.DataFrame(
        rows,
        columns=LINE_COLUMNS,
        index=pd.RangeIndex(len(network.lines), name="line"),
        dtype=float,
    )


def bus_results(network) -> dict[int, BusResult]:
    """
    Get bus results as objects.

    Returns:
        Dictionary mapping bus ids to BusResult objects
    """
    df = network.res_bus
    return {
        bus.index: BusResult(
            index=bus.index,
            name=bus.name,
            vm_pu=df.at[bus.index, "vm_pu"],
            va_degree=df.at[bus.index, "va_degree"],
            vn_kv=bus.vn_kv,
            p_mw=df.at[bus.index, "p_mw"],
            q_mvar=df.at[bus.index, "q_mvar"],
        )
        for bus in network.buses
    }


def line_results(network) -> dict[int, LineResult]:
    """
    Get line results as objects.

    Returns:
        Dictionary mapping line ids to LineResult objects
    """
    df = network.res_line
    return {
        line.index: LineResult(line.index, line.name, *(float(df.at[line.index, c]) for c in LINE_COLUMNS))
        for line in network.lines
    }
