"""
Exception types raised by the power flow engine.

All errors derive from PowerFlowError so callers can catch the whole family
at once, or single out one kind (e.g. NonConvergenceError to retry with
altered inputs).
"""


class PowerFlowError(Exception):
    """Base class for all power flow errors."""


class InvalidTopologyError(PowerFlowError):
    """Bus id out of range, or an element references an unknown bus."""


class NoSlackBusError(PowerFlowError):
    """No bus carries the Slack role when the matrices are built."""


class SlackLostError(NoSlackBusError):
    """Node aggregation left no representative with the Slack role."""


class SingularJacobianError(PowerFlowError):
    """The LU backend hit a zero pivot."""


class NonConvergenceError(PowerFlowError):
    """
    Maximum number of Newton-Raphson iterations reached.

    The last iterate is kept on ``result`` (voltages in original bus order).
    """

    def __init__(self, message: str, result=None):
        super().__init__(message)
        self.result = result


class StructuralInconsistencyError(PowerFlowError):
    """Matrix state or classification is ill-formed."""


class BackendFailureError(PowerFlowError):
    """The LU backend failed for a reason other than singularity."""


class InvalidRangeError(PowerFlowError, ValueError):
    """Requested sparse slice lies outside the matrix."""
