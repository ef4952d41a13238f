"""
Element definitions for power system network components.

This module contains:
- Admittance branches, the primitive two-port (or port-to-ground) admittance
  every passive element is lowered to before matrix assembly
- Bus and node role definitions
- Branch elements (lines, transformers, switches)
- Injection elements (loads, generators, static generators, external grids)
- Shunt elements
"""

import logging
import math
from dataclasses import dataclass
from enum import Enum

logger = logging.getLogger(__name__)

GROUND = -1  # Pin index of the ground node, never a bus id


class NodeRole(Enum):
    """Role of a bus in the power flow formulation."""
    PQ = "pq"
    PV = "pv"
    SLACK = "slack"
    AUXILIARY = "auxiliary"  # out of service, excluded from the unknowns


class SwitchType(Enum):
    """Switch element type (pandapower ``et``)."""
    BUS_BUS = "bb"
    BUS_LINE = "bl"
    BUS_TRAFO = "bt"
    BUS_TRAFO3W = "bt3"


class TapSide(Enum):
    """Winding that carries the tap changer."""
    HV = "hv"
    LV = "lv"


@dataclass
class AdmittanceBranch:
    """
    Admittance between two pins, in Siemens at a base voltage.

    A pin equal to GROUND (-1) connects the branch to ground. ``element``
    records the owning element as (table name, index), e.g. ("line", 3).
    """
    y: complex
    port: tuple[int, int]
    v_base_kv: float
    element: tuple[str, int] | None = None

    @property
    def is_shunt(self) -> bool:
        """True when one pin is grounded."""
        return GROUND in self.port

    def get_admittance_pu(self, base_mva: float = 100.0) -> complex:
        """
        Get admittance in per-unit on system base.
        Y_pu = Y_siemens * Z_base = Y_siemens * (V_base^2 / S_base)
        """
        if self.v_base_kv > 0:
            z_base = (self.v_base_kv ** 2) / base_mva
            return self.y * z_base
        return self.y


@dataclass
class Bus:
    """Network node."""
    index: int
    vn_kv: float
    name: str = ""
    min_vm_pu: float = 0.0
    max_vm_pu: float = 2.0
    zone: str | None = None
    in_service: bool = True


@dataclass
class Line:
    """
    Overhead line or cable, pi-model.

    Series impedance r + jx and shunt admittance g + jb (split half to each
    end), both scaled by length and the number of parallel systems.
    """
    index: int
    from_bus: int
    to_bus: int
    length_km: float
    r_ohm_per_km: float
    x_ohm_per_km: float
    c_nf_per_km: float = 0.0
    g_us_per_km: float = 0.0
    max_i_ka: float = float("nan")
    parallel: int = 1
    name: str = ""
    in_service: bool = True

    def admittance_branches(self, v_base_kv: float, f_hz: float) -> list[AdmittanceBranch]:
        """
        Lower the line to admittance branches.

        Args:
            v_base_kv: Nominal voltage of the from bus
            f_hz: System frequency

        Returns:
            [shunt at from, shunt at to] (only if g or c is non-zero) followed
            by the series branch
        """
        owner = ("line", self.index)
        branches = []
        b = 2 * math.pi * f_hz * 1e-9 * self.c_nf_per_km * self.length_km * self.parallel
        g = 1e-6 * self.g_us_per_km * self.length_km * self.parallel
        if self.g_us_per_km != 0 or self.c_nf_per_km != 0:
            y_sh = 0.5 * complex(g, b)
            branches.append(AdmittanceBranch(y_sh, (self.from_bus, GROUND), v_base_kv, owner))
            branches.append(AdmittanceBranch(y_sh, (self.to_bus, GROUND), v_base_kv, owner))

        z = complex(
            self.r_ohm_per_km * self.length_km * self.parallel,
            self.x_ohm_per_km * self.length_km * self.parallel,
        )
        branches.append(AdmittanceBranch(1 / z, (self.from_bus, self.to_bus), v_base_kv, owner))
        return branches


@dataclass
class Transformer:
    """
    Two-winding transformer.

    Uses the pi-model with off-nominal tap ratio on the HV side:

        series HV-LV      y / m
        HV to ground      (1 - m) y / m^2
        LV to ground      (1 - 1/m) y

    Where y = 1/((r + jx) * parallel) in Ohms referred to the LV side and
    m = 1 + (tap_pos - tap_neutral) * tap_step_percent / 100. A tap on the LV
    side uses 1/m. Magnetizing admittance, when i0_percent is non-zero, is
    split half to each side.
    """
    index: int
    hv_bus: int
    lv_bus: int
    sn_mva: float
    vn_hv_kv: float
    vn_lv_kv: float
    vk_percent: float
    vkr_percent: float
    pfe_kw: float = 0.0
    i0_percent: float = 0.0
    parallel: int = 1
    tap_side: TapSide = TapSide.HV
    tap_pos: float = 0.0
    tap_neutral: float = 0.0
    tap_step_percent: float = 0.0
    shift_degree: float = 0.0
    name: str = ""
    in_service: bool = True

    def __post_init__(self):
        if isinstance(self.tap_side, str):
            self.tap_side = TapSide(self.tap_side)

    @property
    def tap_ratio(self) -> float:
        """Off-nominal ratio seen from the HV side."""
        m = 1.0 + (self.tap_pos - self.tap_neutral) * 0.01 * self.tap_step_percent
        if self.tap_side is TapSide.LV:
            return 1.0 / m
        return m

    def admittance_branches(self) -> list[AdmittanceBranch]:
        """Lower the transformer to admittance branches at the LV base voltage."""
        owner = ("trafo", self.index)
        if self.shift_degree != 0:
            logger.warning(f"Transformer {self.index}: phase shift of {self.shift_degree} deg "
                           f"is not modelled and will be ignored")

        v_base = self.vn_lv_kv
        m = self.tap_ratio
        z_base = v_base ** 2 / self.sn_mva
        z = z_base * self.vk_percent / 100
        r = z_base * self.vkr_percent / 100
        x = math.sqrt(z ** 2 - r ** 2)
        y = 1 / (complex(r, x) * self.parallel)

        branches = [
            AdmittanceBranch(y / m, (self.hv_bus, self.lv_bus), v_base, owner),
            AdmittanceBranch((1 - m) * y / m ** 2, (self.hv_bus, GROUND), v_base, owner),
            AdmittanceBranch((1 - 1 / m) * y, (self.lv_bus, GROUND), v_base, owner),
        ]

        # Magnetizing branch is open when no-load current is zero
        if self.i0_percent == 0:
            return branches
        re_c = z_base * 0.001 * self.pfe_kw / self.sn_mva
        im_c = z_base / (0.01 * self.i0_percent)
        c = self.parallel / complex(re_c, im_c)
        if not (math.isfinite(c.real) and math.isfinite(c.imag)):
            return branches
        branches.append(AdmittanceBranch(0.5 * c / m ** 2, (self.hv_bus, GROUND), v_base, owner))
        branches.append(AdmittanceBranch(0.5 * c, (self.lv_bus, GROUND), v_base, owner))
        return branches


@dataclass
class Switch:
    """
    Switch between a bus and another bus, a line or a transformer.

    For bus-bus switches ``element`` is the other bus. ``z_ohm`` only applies
    to closed bus-bus switches.
    """
    index: int
    bus: int
    element: int
    et: SwitchType = SwitchType.BUS_BUS
    closed: bool = True
    z_ohm: float = 0.0
    name: str = ""

    def __post_init__(self):
        if isinstance(self.et, str):
            self.et = SwitchType(self.et)

    @property
    def merges_nodes(self) -> bool:
        """Closed zero-impedance bus-bus switch."""
        return self.et is SwitchType.BUS_BUS and self.closed and self.z_ohm == 0


@dataclass
class Shunt:
    """
    Shunt reactor/capacitor bank.

    p_mw and q_mvar are consumed per step at rated voltage vn_kv, so the
    admittance is y = (p - jq) * step / vn_kv^2 in Siemens.
    """
    index: int
    bus: int
    p_mw: float
    q_mvar: float
    vn_kv: float
    step: int = 1
    max_step: int = 1
    name: str = ""
    in_service: bool = True

    def admittance_branch(self) -> AdmittanceBranch:
        y = complex(self.p_mw, -self.q_mvar) * self.step / self.vn_kv ** 2
        return AdmittanceBranch(y, (self.bus, GROUND), self.vn_kv, ("shunt", self.index))


@dataclass
class Load:
    """Constant power load, positive values mean consumption."""
    index: int
    bus: int
    p_mw: float
    q_mvar: float = 0.0
    scaling: float = 1.0
    name: str = ""
    in_service: bool = True

    @property
    def s_injection_mva(self) -> complex:
        return -complex(self.p_mw, self.q_mvar) * self.scaling


@dataclass
class StaticGenerator:
    """Constant power generator (no voltage control)."""
    index: int
    bus: int
    p_mw: float
    q_mvar: float = 0.0
    scaling: float = 1.0
    name: str = ""
    in_service: bool = True

    @property
    def s_injection_mva(self) -> complex:
        return complex(self.p_mw, self.q_mvar) * self.scaling


@dataclass
class Generator:
    """
    Voltage controlled generator.

    Fixes active power and voltage magnitude at its bus (PV). With
    ``slack=True`` it fixes the voltage angle at zero instead of the active
    power and acts as reference.
    """
    index: int
    bus: int
    p_mw: float
    vm_pu: float = 1.0
    min_q_mvar: float = -math.inf
    max_q_mvar: float = math.inf
    sn_mva: float | None = None
    scaling: float = 1.0
    slack: bool = False
    name: str = ""
    in_service: bool = True

    @property
    def role(self) -> NodeRole:
        return NodeRole.SLACK if self.slack else NodeRole.PV

    @property
    def s_injection_mva(self) -> complex:
        return complex(self.p_mw * self.scaling, 0.0)

    @property
    def va_degree(self) -> float:
        return 0.0


@dataclass
class ExternalGrid:
    """Connection to an upstream grid, the usual slack source."""
    index: int
    bus: int
    vm_pu: float = 1.0
    va_degree: float = 0.0
    name: str = ""
    in_service: bool = True

    @property
    def role(self) -> NodeRole:
        return NodeRole.SLACK
