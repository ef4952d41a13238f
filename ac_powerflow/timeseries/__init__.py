"""
Time-series power flow: clock, scheduled actions and driver.
"""

from .actions import (
    ActionQueue,
    LogEntry,
    ScheduledAction,
    ScheduledLog,
    SetSwitchState,
    SetTargetPMW,
    SetTargetQMvar,
    SetTargetVa,
    SetTargetVM,
    TimeSeriesAction,
)

from .clock import SimulationClock

from .driver import (
    TimeSeriesData,
    TimeSeriesDriver,
)

__all__ = [
    'ActionQueue',
    'LogEntry',
    'ScheduledAction',
    'ScheduledLog',
    'SetSwitchState',
    'SetTargetPMW',
    'SetTargetQMvar',
    'SetTargetVa',
    'SetTargetVM',
    'TimeSeriesAction',
    'SimulationClock',
    'TimeSeriesData',
    'TimeSeriesDriver',
]
