"""
Exception taxonomy for mechanics_sketch.

Every failure is raised synchronously by the call that triggered it; nothing
is retried or swallowed.
"""

from typing import Optional


class MechanicsError(Exception):
    """Base class for all mechanics_sketch errors"""


class ShapeMismatch(MechanicsError, ValueError):
    """Structured operands (or a flat buffer and its template) disagree in shape"""

    def __init__(self, message: str, left=None, right=None):
        super().__init__(message)
        self.left = left
        self.right = right


class UnsupportedOperation(MechanicsError, TypeError):
    """A traced function used an operation outside the differentiable set"""


class IntegrationFailure(MechanicsError, ArithmeticError):
    """Numeric failure while advancing the state"""

    def __init__(self, message: str, t: Optional[float] = None):
        if t is not None:
            message = f"{message} (t={t:.6g})"
        super().__init__(message)
        self.t = t


class SingularSystem(IntegrationFailure):
    """The mass matrix is not invertible at a reachable state"""
