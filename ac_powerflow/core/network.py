"""
Network container for AC power flow.

This module provides the high-level Network class that owns the element
tables, the solver settings and the matrix/result state of one power flow
case.
"""

import logging
import math

import numpy as np
import pandas as pd

from ..config import PowerFlowConfig, SwitchMode
from ..errors import InvalidTopologyError
from ..powerflow.scheduler import PowerFlowEvent, PowerFlowScheduler
from .elements import (
    GROUND,
    AdmittanceBranch,
    Bus,
    ExternalGrid,
    Generator,
    Line,
    Load,
    Shunt,
    StaticGenerator,
    Switch,
    SwitchType,
    TapSide,
    Transformer,
)

logger = logging.getLogger(__name__)


class Network:
    """
    Element tables plus the power flow state built from them.

    This class provides a convenient interface for:
    - Creating buses, branches and injections
    - Lowering passive elements to admittance branches
    - Running the power flow (outer scheduler around Newton-Raphson)
    - Accessing bus and line results as DataFrames

    Element ids are dense and assigned in creation order.
    """

    def __init__(
        self,
        base_mva: float = 100.0,
        f_hz: float = 50.0,
        config: PowerFlowConfig | None = None,
        verbose: bool = False,
    ):
        """
        Initialize an empty network.

        Args:
            base_mva: System base power in MVA (default 100)
            f_hz: System frequency in Hz (default 50)
            config: Solver settings, defaults to PowerFlowConfig()
            verbose: If True, print a network summary before each rebuild
        """
        if base_mva <= 0:
            raise ValueError(f"base_mva must be positive, got {base_mva}")
        self.base_mva = base_mva
        self.f_hz = f_hz
        self.config = config or PowerFlowConfig()
        self.verbose = verbose

        # Element tables
        self.buses: list[Bus] = []
        self.lines: list[Line] = []
        self.transformers: list[Transformer] = []
        self.loads: list[Load] = []
        self.generators: list[Generator] = []
        self.sgens: list[StaticGenerator] = []
        self.shunts: list[Shunt] = []
        self.ext_grids: list[ExternalGrid] = []
        self.switches: list[Switch] = []
        self.admittances: list[AdmittanceBranch] = []

        # Bus-level overrides (set by time-series actions)
        self.p_override_mw: dict[int, float] = {}
        self.q_override_mvar: dict[int, float] = {}
        self.vm_override_pu: dict[int, float] = {}
        self.va_override_degree: dict[int, float] = {}

        # Generators held at a reactive limit: bus -> generator Q in Mvar
        self.q_limited: dict[int, float] = {}

        # Solver state (rebuilt by the scheduler)
        self.mat = None
        self.aggregation = None
        self.injections = None
        self.branches: list[AdmittanceBranch] = []
        self.result = None
        self._res_bus: pd.DataFrame | None = None
        self._res_line: pd.DataFrame | None = None
        self._events: list[PowerFlowEvent] = [PowerFlowEvent.FULL_REBUILD]
        self._scheduler: PowerFlowScheduler | None = None

    # --- Element creation ---

    def add_bus(self, vn_kv: float, name: str = "", min_vm_pu: float = 0.0,
                max_vm_pu: float = 2.0, zone: str | None = None, in_service: bool = True) -> int:
        """Create a bus and return its id."""
        index = len(self.buses)
        self.buses.append(Bus(index, vn_kv, name, min_vm_pu, max_vm_pu, zone, in_service))
        self.post_event(PowerFlowEvent.FULL_REBUILD)
        return index

    def add_line(self, from_bus: int, to_bus: int, length_km: float, r_ohm_per_km: float,
                 x_ohm_per_km: float, c_nf_per_km: float = 0.0, g_us_per_km: float = 0.0,
                 max_i_ka: float = float("nan"), parallel: int = 1, name: str = "",
                 in_service: bool = True) -> int:
        """Create a line from per-km parameters and return its id."""
        index = len(self.lines)
        self.lines.append(Line(index, from_bus, to_bus, length_km, r_ohm_per_km, x_ohm_per_km,
                               c_nf_per_km, g_us_per_km, max_i_ka, parallel, name, in_service))
        self.post_event(PowerFlowEvent.FULL_REBUILD)
        return index

    def add_transformer(self, hv_bus: int, lv_bus: int, sn_mva: float, vn_hv_kv: float,
                        vn_lv_kv: float, vk_percent: float, vkr_percent: float,
                        pfe_kw: float = 0.0, i0_percent: float = 0.0, parallel: int = 1,
                        tap_side: TapSide | str = TapSide.HV, tap_pos: float = 0.0,
                        tap_neutral: float = 0.0, tap_step_percent: float = 0.0,
                        shift_degree: float = 0.0, name: str = "", in_service: bool = True) -> int:
        """Create a two-winding transformer and return its id."""
        index = len(self.transformers)
        self.transformers.append(Transformer(
            index, hv_bus, lv_bus, sn_mva, vn_hv_kv, vn_lv_kv, vk_percent, vkr_percent,
            pfe_kw, i0_percent, parallel, tap_side, tap_pos, tap_neutral, tap_step_percent,
            shift_degree, name, in_service,
        ))
        self.post_event(PowerFlowEvent.FULL_REBUILD)
        return index

    def add_load(self, bus: int, p_mw: float, q_mvar: float = 0.0, scaling: float = 1.0,
                 name: str = "", in_service: bool = True) -> int:
        """Create a constant power load and return its id."""
        index = len(self.loads)
        self.loads.append(Load(index, bus, p_mw, q_mvar, scaling, name, in_service))
        self.post_event(PowerFlowEvent.FULL_REBUILD)
        return index

    def add_sgen(self, bus: int, p_mw: float, q_mvar: float = 0.0, scaling: float = 1.0,
                 name: str = "", in_service: bool = True) -> int:
        """Create a static generator and return its id."""
        index = len(self.sgens)
        self.sgens.append(StaticGenerator(index, bus, p_mw, q_mvar, scaling, name, in_service))
        self.post_event(PowerFlowEvent.FULL_REBUILD)
        return index

    def add_generator(self, bus: int, p_mw: float, vm_pu: float = 1.0,
                      min_q_mvar: float = -math.inf, max_q_mvar: float = math.inf,
                      sn_mva: float | None = None, scaling: float = 1.0, slack: bool = False,
                      name: str = "", in_service: bool = True) -> int:
        """Create a voltage controlled generator and return its id."""
        index = len(self.generators)
        self.generators.append(Generator(index, bus, p_mw, vm_pu, min_q_mvar, max_q_mvar,
                                         sn_mva, scaling, slack, name, in_service))
        self.post_event(PowerFlowEvent.FULL_REBUILD)
        return index

    def add_shunt(self, bus: int, p_mw: float, q_mvar: float, vn_kv: float | None = None,
                  step: int = 1, max_step: int = 1, name: str = "", in_service: bool = True) -> int:
        """Create a shunt (rated at the bus voltage unless vn_kv is given) and return its id."""
        index = len(self.shunts)
        if vn_kv is None:
            vn_kv = self._bus_vn_kv(bus)
        self.shunts.append(Shunt(index, bus, p_mw, q_mvar, vn_kv, step, max_step, name, in_service))
        self.post_event(PowerFlowEvent.FULL_REBUILD)
        return index

    def add_ext_grid(self, bus: int, vm_pu: float = 1.0, va_degree: float = 0.0,
                     name: str = "", in_service: bool = True) -> int:
        """Create an external grid (slack source) and return its id."""
        index = len(self.ext_grids)
        self.ext_grids.append(ExternalGrid(index, bus, vm_pu, va_degree, name, in_service))
        self.post_event(PowerFlowEvent.FULL_REBUILD)
        return index

    def add_switch(self, bus: int, element: int, et: SwitchType | str = SwitchType.BUS_BUS,
                   closed: bool = True, z_ohm: float = 0.0, name: str = "") -> int:
        """Create a switch and return its id."""
        index = len(self.switches)
        self.switches.append(Switch(index, bus, element, et, closed, z_ohm, name))
        self.post_event(PowerFlowEvent.FULL_REBUILD)
        return index

    def add_admittance(self, from_bus: int, to_bus: int, y: complex,
                       v_base_kv: float | None = None) -> int:
        """
        Create a raw admittance branch in Siemens.

        ``to_bus`` may be GROUND (-1). The base voltage defaults to the
        nominal voltage of ``from_bus``.
        """
        index = len(self.admittances)
        if v_base_kv is None:
            v_base_kv = self._bus_vn_kv(from_bus)
        self.admittances.append(
            AdmittanceBranch(complex(y), (from_bus, to_bus), v_base_kv, ("admittance", index))
        )
        self.post_event(PowerFlowEvent.FULL_REBUILD)
        return index

    def set_switch(self, index: int, closed: bool) -> None:
        """Open or close a switch; this changes topology."""
        self.switches[index].closed = closed
        self.post_event(PowerFlowEvent.FULL_REBUILD)

    # --- Bus-level overrides ---

    def set_bus_p_mw(self, bus: int, value: float) -> None:
        """Fix the net active injection of a bus (generation minus load)."""
        self._check_bus(bus)
        self.p_override_mw[bus] = value
        self.post_event(PowerFlowEvent.INJECTION_CHANGED)

    def set_bus_q_mvar(self, bus: int, value: float) -> None:
        """Fix the net reactive injection of a bus (generation minus load)."""
        self._check_bus(bus)
        self.q_override_mvar[bus] = value
        self.post_event(PowerFlowEvent.INJECTION_CHANGED)

    def set_bus_vm_pu(self, bus: int, value: float) -> None:
        """Change the voltage magnitude setpoint of a bus."""
        self._check_bus(bus)
        self.vm_override_pu[bus] = value
        self.post_event(PowerFlowEvent.VOLTAGE_CHANGED)

    def set_bus_va_degree(self, bus: int, value: float) -> None:
        """Change the voltage angle setpoint of a bus."""
        self._check_bus(bus)
        self.va_override_degree[bus] = value
        self.post_event(PowerFlowEvent.VOLTAGE_CHANGED)

    # --- Events and solving ---

    def post_event(self, event: PowerFlowEvent) -> None:
        """Queue an event for the next outer iteration."""
        self._events.append(event)

    def drain_events(self) -> list[PowerFlowEvent]:
        """Return and clear the pending events."""
        events, self._events = self._events, []
        return events

    @property
    def scheduler(self) -> PowerFlowScheduler:
        """Outer-loop scheduler bound to this network (created lazily)."""
        if self._scheduler is None:
            self._scheduler = PowerFlowScheduler(self)
        return self._scheduler

    def run_pf(self):
        """
        Solve the power flow.

        Returns:
            PowerFlowResult with voltages in original bus order

        Raises:
            NonConvergenceError: if the inner solver reaches its iteration limit
            SingularJacobianError: if the Jacobian cannot be factorized
        """
        if self.verbose and self.mat is None:
            self._print_network_summary("Network summary:")
        return self.scheduler.run()

    def set_results(self, res_bus: pd.DataFrame | None, res_line: pd.DataFrame | None) -> None:
        self._res_bus = res_bus
        self._res_line = res_line

    # --- Topology queries ---

    def validate(self) -> None:
        """
        Check element references.

        Raises:
            InvalidTopologyError: on non-dense bus ids, unknown bus references
                or impossible element data
        """
        n = len(self.buses)
        for i, bus in enumerate(self.buses):
            if bus.index != i:
                raise InvalidTopologyError(f"Bus ids must be dense: position {i} holds id {bus.index}")

        def check(bus: int, what: str, allow_ground: bool = False) -> None:
            if allow_ground and bus == GROUND:
                return
            if not 0 <= bus < n:
                raise InvalidTopologyError(f"{what} references unknown bus {bus}")

        for line in self.lines:
            check(line.from_bus, f"Line {line.index}")
            check(line.to_bus, f"Line {line.index}")
            if line.from_bus == line.to_bus:
                raise InvalidTopologyError(f"Line {line.index} connects bus {line.from_bus} to itself")
            if line.length_km <= 0 or line.parallel < 1:
                raise InvalidTopologyError(f"Line {line.index}: length_km and parallel must be positive")
            if line.r_ohm_per_km == 0 and line.x_ohm_per_km == 0:
                raise InvalidTopologyError(f"Line {line.index} has zero series impedance, use a switch")
        for trafo in self.transformers:
            check(trafo.hv_bus, f"Transformer {trafo.index}")
            check(trafo.lv_bus, f"Transformer {trafo.index}")
            if trafo.vkr_percent > trafo.vk_percent:
                raise InvalidTopologyError(f"Transformer {trafo.index}: vkr_percent exceeds vk_percent")
            if trafo.vk_percent <= 0 or trafo.sn_mva <= 0 or trafo.parallel < 1:
                raise InvalidTopologyError(
                    f"Transformer {trafo.index}: vk_percent, sn_mva and parallel must be positive"
                )
            if 1.0 + (trafo.tap_pos - trafo.tap_neutral) * 0.01 * trafo.tap_step_percent <= 0:
                raise InvalidTopologyError(f"Transformer {trafo.index}: tap position gives a non-positive ratio")
        for shunt in self.shunts:
            if shunt.vn_kv <= 0:
                raise InvalidTopologyError(f"Shunt {shunt.index}: vn_kv must be positive")
        for table, label in ((self.loads, "Load"), (self.sgens, "Static generator"),
                             (self.generators, "Generator"), (self.shunts, "Shunt"),
                             (self.ext_grids, "External grid")):
            for element in table:
                check(element.bus, f"{label} {element.index}")
        for branch in self.admittances:
            check(branch.port[0], f"Admittance {branch.element}")
            check(branch.port[1], f"Admittance {branch.element}", allow_ground=True)
        for sw in self.switches:
            check(sw.bus, f"Switch {sw.index}")
            if sw.et is SwitchType.BUS_BUS:
                check(sw.element, f"Switch {sw.index}")
            elif sw.et is SwitchType.BUS_LINE:
                if not 0 <= sw.element < len(self.lines):
                    raise InvalidTopologyError(f"Switch {sw.index} references unknown line {sw.element}")
            elif sw.et is SwitchType.BUS_TRAFO:
                if not 0 <= sw.element < len(self.transformers):
                    raise InvalidTopologyError(f"Switch {sw.index} references unknown transformer {sw.element}")
            else:
                raise InvalidTopologyError(
                    f"Switch {sw.index}: three-winding transformers are not modelled"
                )

    def _open_switch_elements(self) -> tuple[set[int], set[int]]:
        """Lines and transformers separated from a bus by an open switch."""
        lines, trafos = set(), set()
        for sw in self.switches:
            if sw.closed:
                continue
            if sw.et is SwitchType.BUS_LINE:
                lines.add(sw.element)
            elif sw.et is SwitchType.BUS_TRAFO:
                trafos.add(sw.element)
        return lines, trafos

    def bus_in_service(self, bus: int) -> bool:
        return bus == GROUND or self.buses[bus].in_service

    def admittance_branches(self) -> list[AdmittanceBranch]:
        """
        Lower all active passive elements to admittance branches.

        Closed zero-impedance bus-bus switches are left to node aggregation in
        MERGE mode and become high-admittance branches in ADMITTANCE mode.

        Returns:
            List of AdmittanceBranch in element order (lines, transformers,
            shunts, switches, raw admittances)
        """
        open_lines, open_trafos = self._open_switch_elements()
        branches: list[AdmittanceBranch] = []

        for line in self.lines:
            if not line.in_service or line.index in open_lines:
                continue
            if not (self.bus_in_service(line.from_bus) and self.bus_in_service(line.to_bus)):
                continue
            branches.extend(line.admittance_branches(self.buses[line.from_bus].vn_kv, self.f_hz))

        for trafo in self.transformers:
            if not trafo.in_service or trafo.index in open_trafos:
                continue
            if not (self.bus_in_service(trafo.hv_bus) and self.bus_in_service(trafo.lv_bus)):
                continue
            branches.extend(trafo.admittance_branches())

        for shunt in self.shunts:
            if shunt.in_service and self.bus_in_service(shunt.bus):
                branches.append(shunt.admittance_branch())

        for sw in self.switches:
            if sw.et is not SwitchType.BUS_BUS or not sw.closed:
                continue
            if not (self.bus_in_service(sw.bus) and self.bus_in_service(sw.element)):
                continue
            v_base = self.buses[sw.bus].vn_kv
            if sw.z_ohm != 0:
                y = 1 / complex(sw.z_ohm, 0.0)
            elif self.config.switch_mode is SwitchMode.ADMITTANCE:
                y = complex(self.config.closed_switch_admittance_s, 0.0)
            else:
                continue
            branches.append(AdmittanceBranch(y, (sw.bus, sw.element), v_base, ("switch", sw.index)))

        for branch in self.admittances:
            if all(self.bus_in_service(p) for p in branch.port):
                branches.append(branch)

        return branches

    def merging_switches(self) -> list[Switch]:
        """Closed zero-impedance bus-bus switches between in-service buses."""
        if self.config.switch_mode is not SwitchMode.MERGE:
            return []
        return [
            sw for sw in self.switches
            if sw.merges_nodes and self.bus_in_service(sw.bus) and self.bus_in_service(sw.element)
        ]

    # --- Helpers ---

    def _check_bus(self, bus: int) -> None:
        if not 0 <= bus < len(self.buses):
            raise InvalidTopologyError(f"Unknown bus {bus}")

    def _bus_vn_kv(self, bus: int) -> float:
        self._check_bus(bus)
        return self.buses[bus].vn_kv

    def _print_network_summary(self, title: str = "Network summary:") -> None:
        """Print a summary of network elements to console."""
        counts = [
            ("Lines", self.n_lines),
            ("Transformers", self.n_transformers),
            ("Switches", self.n_switches),
            ("Generators", self.n_generators),
            ("Static generators", len(self.sgens)),
            ("Loads", self.n_loads),
            ("Shunts", len(self.shunts)),
            ("External grids", self.n_external_grids),
            ("Admittances", len(self.admittances)),
        ]
        print(f"{title}")
        for label, count in counts:
            if count > 0:
                print(f"  {label + ':':<20}{count}")
        print(f"  {'Buses:':<20}{self.n_buses}")

    # --- Properties ---

    @property
    def res_bus(self) -> pd.DataFrame:
        """Bus results. Raises if no power flow has converged yet."""
        if self._res_bus is None:
            raise RuntimeError("Must call run_pf() first")
        return self._res_bus

    @property
    def res_line(self) -> pd.DataFrame:
        """Line results. Raises if no power flow has converged yet."""
        if self._res_line is None:
            raise RuntimeError("Must call run_pf() first")
        return self._res_line

    @property
    def v_bus(self) -> np.ndarray:
        """Complex bus voltages (p.u.) in original bus order."""
        if self.result is None:
            raise RuntimeError("Must call run_pf() first")
        return self.result.v

    @property
    def base_power_mva(self) -> float:
        return self.base_mva

    @property
    def base_frequency_hz(self) -> float:
        return self.f_hz

    @property
    def n_buses(self) -> int:
        """Number of buses in the network."""
        return len(self.buses)

    @property
    def n_lines(self) -> int:
        """Number of lines in the network."""
        return len(self.lines)

    @property
    def n_transformers(self) -> int:
        """Number of 2-winding transformers in the network."""
        return len(self.transformers)

    @property
    def n_switches(self) -> int:
        """Number of switches in the network."""
        return len(self.switches)

    @property
    def n_generators(self) -> int:
        """Number of generators in the network."""
        return len(self.generators)

    @property
    def n_loads(self) -> int:
        """Number of loads in the network."""
        return len(self.loads)

    @property
    def n_external_grids(self) -> int:
        """Number of external grids in the network."""
        return len(self.ext_grids)
