"""
Core network elements and classes.
"""

from .elements import (
    GROUND,
    AdmittanceBranch,
    Bus,
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

from .network import Network

__all__ = [
    'GROUND',
    'AdmittanceBranch',
    'Bus',
    'ExternalGrid',
    'Generator',
    'Line',
    'Load',
    'NodeRole',
    'Shunt',
    'StaticGenerator',
    'Switch',
    'SwitchType',
    'TapSide',
    'Transformer',
    'Network',
]
