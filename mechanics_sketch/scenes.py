"""
Scenario library: Lagrangians and coordinate transforms for the demos.

Everything here is ordinary client code built on the public API.
"""

from typing import Callable, Optional, Sequence, Tuple

from .builder import SketchSpec
from .generic import cos, sin, square
from .structure import (Structure, mapv, structure_to_vector, up,
                        vector_to_down, vector_to_up)


# ============================================================================
# LAGRANGIANS
# ============================================================================

def L_rectangular(masses: Structure, U: Callable) -> Callable:
    """
    Lagrangian for N particles in rectangular coordinates.

    Args:
        masses: down tuple with one mass per particle
        U: potential, a function of all positions

    Returns:
        Function of the local tuple
    """
    def lagrangian(local):
        _, q, qdot = local
        # masses is down and the squared speeds are up: this contracts.
        return 0.5 * masses * mapv(square, qdot) - U(q)

    return lagrangian


def U_uniform_gravity(masses: Structure, g: float, vertical: int = 1) -> Callable:
    """
    Uniform gravitational potential for particles with the given masses.

    Args:
        masses: down tuple with one mass per particle
        g: gravitational acceleration
        vertical: index of the vertical component of each position

    Returns:
        Function of the positions
    """
    def potential(q):
        return g * masses * mapv(lambda p: p[vertical], q)

    return potential


def L_particle(m: float, g: float) -> Callable:
    """Single particle in uniform gravity, q = up(x, y)"""
    def lagrangian(local):
        _, q, qdot = local
        return 0.5 * m * square(qdot) - m * g * q[1]

    return lagrangian


def L_free(m: float) -> Callable:
    def lagrangian(local):
        return 0.5 * m * square(local[2])

    return lagrangian


def L_harmonic(m: float, k: float) -> Callable:
    """Isotropic harmonic oscillator"""
    def lagrangian(local):
        _, q, qdot = local
        return 0.5 * m * square(qdot) - 0.5 * k * square(q)

    return lagrangian


# ============================================================================
# TRANSFORMS
# ============================================================================

def attach_pendulum(l: float, idx: int, anchor: Optional[int] = None,
                    point: Tuple[float, float] = (0.0, 0.0)) -> Callable:
    """
    Replace the angle at position `idx` with the bob of a pendulum.

    The pendulum hangs from the rectangular position stored at index
    `anchor`, or from `point` when no anchor is given or the anchor index
    does not exist.
    """
    def attach(local):
        _, q = local
        v = structure_to_vector(q)
        if anchor is not None and anchor < len(v):
            x, y = v[anchor]
        else:
            x, y = point
        angle = v[idx]
        v[idx] = up(x + l * sin(angle), y - l * cos(angle))
        return vector_to_up(v)

    attach.__name__ = f"attach_pendulum_{idx}"
    return attach


def double_pendulum_to_rect(l1: float, l2: float) -> Callable:
    """Both angles of a double pendulum to bob positions"""
    def to_rect(local):
        _, (theta, phi) = local
        x1 = l1 * sin(theta)
        y1 = -l1 * cos(theta)
        return up(up(x1, y1),
                  up(x1 + l2 * sin(phi), y1 - l2 * cos(phi)))

    return to_rect


def elliptical_to_rect(a: float, b: float, c: float) -> Callable:
    """Angles on a triaxial ellipsoid to rectangular coordinates"""
    def to_rect(local):
        _, (theta, phi) = local
        return up(a * sin(theta) * cos(phi),
                  b * sin(theta) * sin(phi),
                  c * cos(theta))

    return to_rect


def driven_pendulum_to_rect(l: float, yfn: Callable) -> Callable:
    """Pendulum angle to bob position with the support at height yfn(t)"""
    def to_rect(local):
        t, q = local
        theta = q[0]
        return up(l * sin(theta), yfn(t) - l * cos(theta))

    return to_rect


# ============================================================================
# COMPOSITE SCENES
# ============================================================================

def L_chain(masses: Sequence[float], lengths: Sequence[float], g: float) -> SketchSpec:
    """
    Chain of pendulums under gravity in the -y direction.

    Each angle is turned into a rectangular position before the next
    pendulum attaches to it.
    """
    if len(masses) != len(lengths):
        raise ValueError("need one mass per pendulum")
    m = vector_to_down(list(masses))
    spec = SketchSpec.from_lagrangian(L_rectangular(m, U_uniform_gravity(m, g)))
    for i, l in enumerate(lengths):
        spec = spec.transform(attach_pendulum(l, i, anchor=None if i == 0 else i - 1))
    return spec
