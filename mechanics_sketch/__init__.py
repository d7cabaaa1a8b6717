"""
mechanics_sketch: real-time animation of mechanical systems from their
Lagrangians.

A scene is a Lagrangian of the local tuple ``up(t, q, qdot)`` plus a chain of
coordinate transforms. Building it derives the Euler-Lagrange equations with
a small automatic-differentiation engine and wraps them in an adaptive
Runge-Kutta stepper driven once per animation frame.
"""

from .autodiff import (Derivative, LocalPartial, TotalTimeDerivative, derivative,
                       directional_derivative, jvp, local_partial, partial,
                       total_time_derivative, trace)
from .builder import FrameState, Sketch, SketchSpec, build, init, transform
from .config import DEFAULT_CONFIG, SimulationConfig
from .errors import (IntegrationFailure, MechanicsError, ShapeMismatch,
                     SingularSystem, UnsupportedOperation)
from .generic import cos, cube, exp, log, sin, sqrt, square, tan
from .lagrange import (StateDerivative, energy, euler_lagrange_residual,
                       generalized_force, lagrange_equations,
                       lagrangian_to_state_derivative, momentum)
from .stepper import Stepper
from .structure import (Structure, contract, dot, down, flatten, flatten_state,
                        mapr, mapv, restore, restore_state, shape, up)
from .transforms import (Composition, LiftedTransform, TransformChain, compose,
                         identity, promote)

__version__ = "0.1.0"

__all__ = [
    # Structures
    "Structure", "up", "down", "shape", "flatten", "restore", "flatten_state",
    "restore_state", "contract", "dot", "mapr", "mapv",
    # Generic functions
    "sin", "cos", "tan", "exp", "log", "sqrt", "square", "cube",
    # Differentiation
    "Derivative", "LocalPartial", "TotalTimeDerivative", "derivative", "partial",
    "jvp", "directional_derivative", "local_partial", "total_time_derivative", "trace",
    # Transforms
    "Composition", "LiftedTransform", "TransformChain", "compose", "identity", "promote",
    # Equations of motion
    "StateDerivative", "lagrangian_to_state_derivative", "momentum",
    "generalized_force", "energy", "euler_lagrange_residual", "lagrange_equations",
    # Integration and building
    "Stepper", "FrameState", "Sketch", "SketchSpec", "init", "transform", "build",
    "SimulationConfig", "DEFAULT_CONFIG",
    # Errors
    "MechanicsError", "ShapeMismatch", "UnsupportedOperation", "IntegrationFailure",
    "SingularSystem",
]
