"""
Adaptive explicit Runge-Kutta stepper.

Dormand-Prince 5(4) with first-same-as-last stages, the method behind
scipy's RK45, reshaped for frame-by-frame use: every work array is allocated
once per Stepper and the accepted step size carries over between calls.
"""

import logging
import math
from typing import Callable, Optional

import numpy as np

from .config import DEFAULT_CONFIG, SimulationConfig
from .errors import IntegrationFailure, ShapeMismatch

logger = logging.getLogger(__name__)

# ============================================================================
# DORMAND-PRINCE TABLEAU
# ============================================================================

C = np.array([0.0, 1 / 5, 3 / 10, 4 / 5, 8 / 9, 1.0])
A = [
    np.array([]),
    np.array([1 / 5]),
    np.array([3 / 40, 9 / 40]),
    np.array([44 / 45, -56 / 15, 32 / 9]),
    np.array([19372 / 6561, -25360 / 2187, 64448 / 6561, -212 / 729]),
    np.array([9017 / 3168, -355 / 33, 46732 / 5247, 49 / 176, -5103 / 18656]),
]
B = np.array([35 / 384, 0.0, 500 / 1113, 125 / 192, -2187 / 6784, 11 / 84])
# Fifth- minus fourth-order weights, over all seven stages
E = np.array([71 / 57600, 0.0, -71 / 16695, 71 / 1920, -17253 / 339200, 22 / 525, -1 / 40])

ORDER = 5
SAFETY = 0.9
MIN_FACTOR = 0.2
MAX_FACTOR = 10.0


class Stepper:
    """
    Advances a FlatState between two times within a fixed error tolerance.

    Args:
        derivative: ``f(t, y, out)`` writing dy/dt into ``out``
        dimension: length of the state vector
        config: tolerances and step limits
    """

    def __init__(self, derivative: Callable, dimension: int,
                 config: SimulationConfig = DEFAULT_CONFIG):
        self.derivative = derivative
        self.dimension = dimension
        self.rtol = config.rtol
        self.atol = config.atol
        self.max_step = config.max_step
        self.max_steps = config.max_steps
        self.first_step = config.first_step

        n = dimension
        self._K = np.zeros((7, n))
        self._y = np.zeros(n)
        self._y_new = np.zeros(n)
        self._tmp = np.zeros(n)
        self._scale = np.zeros(n)
        self._err = np.zeros(n)
        self._finite = np.zeros(n, dtype=bool)
        self._result = np.zeros(n)

        self._h_abs: Optional[float] = None
        self.nfev = 0
        self.naccept = 0
        self.nreject = 0

    # ------------------------------------------------------------------------

    def _evaluate(self, t: float, y: np.ndarray, out: np.ndarray):
        self.nfev += 1
        try:
            self.derivative(t, y, out)
        except IntegrationFailure:
            raise
        except (ArithmeticError, ValueError) as exc:
            raise IntegrationFailure(f"state derivative failed: {exc}", t) from exc
        np.isfinite(out, out=self._finite)
        if not self._finite.all():
            raise IntegrationFailure("state derivative produced non-finite values", t)

    def _rms(self, x: np.ndarray) -> float:
        np.divide(x, self._scale, out=self._err)
        return math.sqrt(float(np.dot(self._err, self._err)) / max(self.dimension, 1))

    def _set_scale(self, a: np.ndarray, b: np.ndarray):
        np.abs(a, out=self._scale)
        np.abs(b, out=self._err)
        np.maximum(self._scale, self._err, out=self._scale)
        self._scale *= self.rtol
        self._scale += self.atol

    def _initial_step(self, t: float, direction: float) -> float:
        """Hairer's starting step estimate"""
        y, f0 = self._y, self._K[0]
        self._set_scale(y, y)
        d0 = self._rms(y)
        d1 = self._rms(f0)
        h0 = 1e-6 if d0 < 1e-5 or d1 < 1e-5 else 0.01 * d0 / d1

        y1 = self._y_new
        np.multiply(f0, direction * h0, out=y1)
        y1 += y
        f1 = self._K[1]
        self._evaluate(t + direction * h0, y1, f1)
        np.subtract(f1, f0, out=y1)
        d2 = self._rms(y1) / h0

        if max(d1, d2) <= 1e-15:
            h1 = max(1e-6, h0 * 1e-3)
        else:
            h1 = (0.01 / max(d1, d2)) ** (1 / ORDER)
        return min(100 * h0, h1)

    def _try_step(self, t: float, h: float) -> float:
        """One Dormand-Prince step of signed size h; returns the error norm"""
        K, y, tmp = self._K, self._y, self._tmp
        for i in range(1, 6):
            np.dot(A[i], K[:i], out=tmp)
            tmp *= h
            tmp += y
            self._evaluate(t + C[i] * h, tmp, K[i])

        y_new = self._y_new
        np.dot(B, K[:6], out=y_new)
        y_new *= h
        y_new += y
        self._evaluate(t + h, y_new, K[6])

        self._set_scale(y, y_new)
        np.dot(E, K, out=tmp)
        tmp *= h
        return self._rms(tmp)

    def advance(self, state: np.ndarray, t0: float, t1: float) -> np.ndarray:
        """
        Integrate from `t0` to `t1`.

        The input buffer is copied and never written. The returned array is
        owned by the stepper and overwritten by the next call.

        Args:
            state: FlatState at `t0`
            t0: start time
            t1: end time (may precede `t0`)

        Returns:
            FlatState at `t1`

        Raises:
            IntegrationFailure: on non-finite values, step size underflow or
                an exhausted step budget
            SingularSystem: if the mass matrix becomes singular
        """
        if len(state) != self.dimension:
            raise ShapeMismatch(
                f"state of length {len(state)} does not match dimension {self.dimension}")
        y = self._y
        y[:] = state
        t0 = float(t0)
        t1 = float(t1)
        if t1 == t0 or self.dimension == 0:
            self._result[:] = y
            return self._result

        direction = 1.0 if t1 > t0 else -1.0
        t = t0
        self._evaluate(t, y, self._K[0])

        if self._h_abs is not None:
            h_abs = self._h_abs
        elif self.first_step is not None:
            h_abs = self.first_step
        else:
            h_abs = self._initial_step(t, direction)
        h_abs = min(h_abs, self.max_step)

        steps = 0
        accepted = rejected = 0
        while direction * (t1 - t) > 0:
            if steps >= self.max_steps:
                raise IntegrationFailure(
                    f"step budget of {self.max_steps} exhausted before t={t1:.6g}", t)
            steps += 1

            remaining = abs(t1 - t)
            final = h_abs >= remaining
            h = direction * (remaining if final else h_abs)
            min_step = 10 * np.spacing(abs(t) if t else 1.0)
            if not final and abs(h) < min_step:
                raise IntegrationFailure("step size underflow", t)

            error = self._try_step(t, h)
            if not math.isfinite(error):
                raise IntegrationFailure("error estimate is not finite", t)

            if error <= 1.0:
                t = t1 if final else t + h
                y[:] = self._y_new
                self._K[0][:] = self._K[6]
                accepted += 1
                factor = MAX_FACTOR if error == 0 else min(
                    MAX_FACTOR, SAFETY * error ** (-1 / ORDER))
                # A shortened last step never grows the carried step size.
                if not (final and factor > 1):
                    h_abs = min(abs(h) * factor, self.max_step)
            else:
                rejected += 1
                h_abs = abs(h) * max(MIN_FACTOR, SAFETY * error ** (-1 / ORDER))

        self._h_abs = h_abs
        self.naccept += accepted
        self.nreject += rejected
        logger.debug("advanced %.6g -> %.6g in %d steps (%d rejected)",
                     t0, t1, accepted, rejected)
        self._result[:] = y
        return self._result
