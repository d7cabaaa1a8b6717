"""
Lagrangian to state-derivative compiler.

The Euler-Lagrange residual

    E(t, q, qdot, qddot) = Dt(∂2 L) - ∂1 L

is linear in the accelerations, so it splits into a mass matrix
``M = ∂E/∂qddot`` (equal to ∂2∂2 L) and a bias ``b = E(qddot = 0)``.
Both are traced and compiled once; each evaluation fills them and solves
``M qddot = -b``.
"""

import logging
import warnings
from typing import Callable

import numpy as np
import scipy.linalg

from . import expr as E
from .autodiff import LocalPartial, Trace, TotalTimeDerivative
from .config import DEFAULT_CONFIG, SimulationConfig
from .errors import IntegrationFailure, ShapeMismatch, SingularSystem
from .structure import (Structure, check_same_shape, coordinate, flatten,
                        restore, state_time, up, velocity)

logger = logging.getLogger(__name__)


def momentum(L: Callable) -> LocalPartial:
    """Generalized momentum p = ∂L/∂qdot"""
    return LocalPartial(L, 2)


def generalized_force(L: Callable) -> LocalPartial:
    """Generalized force ∂L/∂q"""
    return LocalPartial(L, 1)


def energy(L: Callable) -> Callable:
    """Energy function ``E = p · qdot - L`` of the local tuple"""
    p = momentum(L)

    def energy_function(local):
        return p(local) * velocity(local) - L(local)

    return energy_function


def euler_lagrange_residual(L: Callable) -> Callable:
    """
    Residual of the Euler-Lagrange equations on ``up(t, q, qdot, qddot)``.

    Vanishes along physical motion.
    """
    dt_momentum = TotalTimeDerivative(momentum(L))
    force = generalized_force(L)

    def residual(local):
        return dt_momentum(local) - force(up(local[0], local[1], local[2]))

    return residual


lagrange_equations = euler_lagrange_residual


class StateDerivative:
    """
    Compiled first-order form of the equations of motion.

    Called as ``f(t, y, out)`` with a FlatState ``y = (q, qdot)``; writes
    ``(qdot, qddot)`` into ``out`` and returns it.
    """

    def __init__(self, compiled: Callable, n: int, template: Structure,
                 config: SimulationConfig):
        self._compiled = compiled
        self.n = n
        self.dimension = 2 * n
        self.template = template
        self.config = config
        self._inputs = [0.0] * (1 + 2 * n)
        self._buffer = np.zeros(n * n + n)
        self._mass = self._buffer[:n * n].reshape(n, n)
        self._bias = self._buffer[n * n:]
        self._factor = np.zeros((n, n), order="F")
        self._rhs = np.zeros(n)

    def _fill(self, t, y):
        x = self._inputs
        x[0] = float(t)
        x[1:] = y.tolist() if isinstance(y, np.ndarray) else [float(v) for v in y]
        try:
            self._compiled(x, self._buffer)
        except (ArithmeticError, ValueError) as exc:
            raise IntegrationFailure(f"equations of motion failed: {exc}", t) from exc
        if not np.all(np.isfinite(self._buffer)):
            raise IntegrationFailure("equations of motion produced non-finite values", t)

    def condition(self, t, y) -> float:
        """Condition number of the mass matrix at a state"""
        self._fill(t, y)
        if not self.n:
            return 1.0
        with np.errstate(divide="ignore", invalid="ignore"):
            return float(np.linalg.cond(self._mass))

    def mass_matrix(self, t, y) -> np.ndarray:
        self._fill(t, y)
        return self._mass.copy()

    def __call__(self, t, y, out: np.ndarray = None) -> np.ndarray:
        n = self.n
        if len(y) != self.dimension:
            raise ShapeMismatch(f"state of length {len(y)} does not match {self.dimension} slots")
        if out is None:
            out = np.empty(self.dimension)
        self._fill(t, y)
        out[:n] = y[n:]
        if n == 0:
            return out
        # M = ∂2∂2 L is positive definite for a physical kinetic energy
        np.copyto(self._factor, self._mass)
        try:
            factor = scipy.linalg.cho_factor(self._factor, lower=True,
                                             overwrite_a=True, check_finite=False)
        except np.linalg.LinAlgError as exc:
            raise SingularSystem(f"mass matrix is singular: {exc}", t) from exc
        pivots = np.abs(np.diagonal(factor[0]))
        ratio = (pivots.max() / pivots.min()) ** 2 if pivots.min() > 0 else np.inf
        if not np.isfinite(ratio) or ratio > self.config.max_condition:
            raise SingularSystem(
                f"mass matrix is singular (pivot ratio {ratio:.3g})", t)
        np.negative(self._bias, out=self._rhs)
        out[n:] = scipy.linalg.cho_solve(factor, self._rhs,
                                         overwrite_b=True, check_finite=False)
        return out

    def local(self, local: Structure) -> Structure:
        """Structured form: ``up(1, qdot, qddot)`` for a local tuple"""
        check_same_shape(coordinate(local), coordinate(self.template), "evaluate")
        q_leaves = flatten(coordinate(local))
        y = np.array(q_leaves + flatten(velocity(local)), dtype=np.float64)
        rates = self(state_time(local), y)
        q_template = coordinate(self.template)
        n = self.n
        return up(1.0, restore(rates[:n].tolist(), q_template),
                  restore(rates[n:].tolist(), q_template))


def lagrangian_to_state_derivative(L: Callable, template: Structure,
                                   config: SimulationConfig = DEFAULT_CONFIG) -> StateDerivative:
    """
    Compile a Lagrangian into a state-derivative function.

    Args:
        L: function of ``up(t, q, qdot)`` returning a scalar
        template: a local tuple of the right shape (usually the initial state)
        config: conditioning thresholds

    Returns:
        The compiled StateDerivative

    Raises:
        ShapeMismatch: if q and qdot in `template` differ in shape
        UnsupportedOperation: if L uses an operation that cannot be traced
        SingularSystem: if a coordinate has no inertia at all
    """
    t0, q0, v0 = state_time(template), coordinate(template), velocity(template)
    check_same_shape(q0, v0, "pair positions")
    residual = euler_lagrange_residual(L)
    trace = Trace(lambda t, q, v, a: residual(up(t, q, v, a)), (t0, q0, q0, q0))

    t_var = trace.inputs[0]
    q_vars, v_vars, a_vars = (flatten(x) for x in trace.inputs[1:])
    n = len(q_vars)
    equations = trace.output_leaves
    if len(equations) != n:
        raise ShapeMismatch(
            f"Lagrangian produced {len(equations)} equations for {n} coordinates")

    columns = [E.tangents(equations, {id(a): E.ONE}) for a in a_vars]
    mass = [columns[j][i] for i in range(n) for j in range(n)]
    bias = E.substitute(equations, {id(a): E.ZERO for a in a_vars})

    for i in range(n):
        if all(columns[j][i].op == "const" and columns[j][i].value == 0.0 for j in range(n)):
            raise SingularSystem(
                f"coordinate {i} has no kinetic term; the mass matrix is singular")

    inputs = [t_var] + q_vars + v_vars
    compiled = E.compile_function(mass + bias, inputs, "state_derivative")
    logger.debug("compiled equations of motion: %d coordinates, %d nodes",
                 n, E.count_nodes(mass + bias))

    derivative = StateDerivative(compiled, n, template, config)
    if n:
        y0 = np.array(flatten(q0) + flatten(v0), dtype=np.float64)
        cond = derivative.condition(t0, y0)
        if not np.isfinite(cond) or cond > config.warn_condition:
            warnings.warn(
                f"mass matrix is ill-conditioned at the initial state "
                f"(condition number {cond:.3g})")
    return derivative
