"""
Scheduled actions for time-series power flow.

This module contains:
- Actions that change bus setpoints (P, Q, |V|, angle)
- The time-ordered action queue
- The log of executed actions
"""

import heapq
import itertools
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


class TimeSeriesAction(ABC):
    """Change applied to the network when its scheduled time is reached."""

    @abstractmethod
    def apply(self, network) -> None:
        """Apply the change; the network posts the matching event."""


@dataclass
class SetTargetPMW(TimeSeriesAction):
    """Set the net active injection of a bus (MW, generation positive)."""
    bus: int
    value: float

    def apply(self, network) -> None:
        network.set_bus_p_mw(self.bus, self.value)


@dataclass
class SetTargetQMvar(TimeSeriesAction):
    """Set the net reactive injection of a bus (Mvar, generation positive)."""
    bus: int
    value: float

    def apply(self, network) -> None:
        network.set_bus_q_mvar(self.bus, self.value)


@dataclass
class SetTargetVM(TimeSeriesAction):
    """Set the voltage magnitude setpoint of a PV or Slack bus (p.u.)."""
    bus: int
    value: float

    def apply(self, network) -> None:
        network.set_bus_vm_pu(self.bus, self.value)


@dataclass
class SetTargetVa(TimeSeriesAction):
    """Set the voltage angle of a Slack bus (degrees)."""
    bus: int
    value: float

    def apply(self, network) -> None:
        network.set_bus_va_degree(self.bus, self.value)


@dataclass
class SetSwitchState(TimeSeriesAction):
    """Open or close a switch; forces a full rebuild."""
    switch: int
    closed: bool

    def apply(self, network) -> None:
        network.set_switch(self.switch, self.closed)


@dataclass(order=True)
class ScheduledAction:
    """Queue entry, ordered by time and then insertion order."""
    execute_at: float
    seq: int
    action: TimeSeriesAction = field(compare=False)


class ActionQueue:
    """Priority queue of actions, stable for equal execution times."""

    def __init__(self):
        self._heap: list[ScheduledAction] = []
        self._counter = itertools.count()

    def __len__(self) -> int:
        return len(self._heap)

    def push(self, execute_at: float, action: TimeSeriesAction) -> None:
        heapq.heappush(self._heap, ScheduledAction(execute_at, next(self._counter), action))

    def pop_due(self, t: float) -> list[ScheduledAction]:
        """Remove and return every entry with execute_at <= t, in order."""
        due = []
        while self._heap and self._heap[0].execute_at <= t:
            due.append(heapq.heappop(self._heap))
        return due


@dataclass
class LogEntry:
    t: float
    execute_at: float
    action: TimeSeriesAction


@dataclass
class ScheduledLog:
    """Record of executed actions."""
    entries: list[LogEntry] = field(default_factory=list)

    def record(self, t: float, scheduled: ScheduledAction) -> None:
        self.entries.append(LogEntry(t, scheduled.execute_at, scheduled.action))
        logger.debug(f"t={t:.3f}: applied {scheduled.action}")

    def __len__(self) -> int:
        return len(self.entries)
