"""Dormand-Prince stepper against closed-form solutions."""

import math

import numpy as np
import pytest

from mechanics_sketch.config import SimulationConfig
from mechanics_sketch.errors import IntegrationFailure, ShapeMismatch
from mechanics_sketch.lagrange import lagrangian_to_state_derivative
from mechanics_sketch.scenes import L_free, L_harmonic
from mechanics_sketch.stepper import Stepper
from mechanics_sketch.structure import up


def _oscillator(k):
    def f(t, y, out):
        out[0] = y[1]
        out[1] = -k * y[0]
        return out
    return f


def _free(t, y, out):
    n = len(y) // 2
    out[:n] = y[n:]
    out[n:] = 0.0
    return out


def test_free_particle_keeps_velocity() -> None:
    stepper = Stepper(_free, 4)
    y0 = np.array([1.0, -2.0, 0.5, 3.0])
    y1 = stepper.advance(y0, 0.0, 2.0)
    assert list(y1[2:]) == [0.5, 3.0]
    assert np.allclose(y1[:2], [2.0, 4.0], rtol=1e-12)


def test_harmonic_oscillator_over_ten_periods() -> None:
    k = 4.0
    omega = math.sqrt(k)
    stepper = Stepper(_oscillator(k), 2)
    T = 10 * 2 * math.pi / omega
    y = stepper.advance(np.array([1.0, 0.0]), 0.0, T)
    assert abs(y[0] - math.cos(omega * T)) < 1e-6
    assert abs(y[1] + omega * math.sin(omega * T)) < 1e-6


def test_frame_sized_calls_match_one_long_call() -> None:
    k = 4.0
    chunked = Stepper(_oscillator(k), 2)
    y = np.array([1.0, 0.0])
    t = 0.0
    for _ in range(300):
        y = chunked.advance(y, t, t + 1 / 60).copy()
        t += 1 / 60
    assert abs(y[0] - math.cos(2.0 * t)) < 1e-6
    # the carried step size keeps the work per frame small
    assert chunked.nfev < 300 * 7 * 4


def test_backward_integration() -> None:
    stepper = Stepper(_oscillator(1.0), 2)
    y = stepper.advance(np.array([1.0, 0.0]), 0.0, -1.5)
    assert np.allclose(y, [math.cos(-1.5), -math.sin(-1.5)], atol=1e-8)


def test_input_buffer_is_not_written() -> None:
    stepper = Stepper(_oscillator(1.0), 2)
    y0 = np.array([1.0, 0.0])
    before = y0.copy()
    result = stepper.advance(y0, 0.0, 1.0)
    assert np.array_equal(y0, before)
    assert result is not y0


def test_zero_interval_returns_state() -> None:
    stepper = Stepper(_oscillator(1.0), 2)
    y = stepper.advance(np.array([0.3, 0.4]), 1.0, 1.0)
    assert list(y) == [0.3, 0.4]
    assert stepper.nfev == 0


def test_non_finite_derivative_fails() -> None:
    def f(t, y, out):
        out[0] = y[1]
        out[1] = math.nan
        return out

    with pytest.raises(IntegrationFailure):
        Stepper(f, 2).advance(np.array([1.0, 0.0]), 0.0, 1.0)


def test_arithmetic_error_is_wrapped() -> None:
    def f(t, y, out):
        out[0] = y[1]
        out[1] = math.log(y[0] - 2.0)
        return out

    with pytest.raises(IntegrationFailure) as excinfo:
        Stepper(f, 2).advance(np.array([1.0, 0.0]), 0.0, 1.0)
    assert excinfo.value.t == 0.0


def test_step_budget() -> None:
    config = SimulationConfig(max_steps=3, max_step=0.01)
    with pytest.raises(IntegrationFailure, match="step budget"):
        Stepper(_oscillator(1.0), 2, config).advance(np.array([1.0, 0.0]), 0.0, 1.0)


def test_wrong_state_length() -> None:
    with pytest.raises(ShapeMismatch):
        Stepper(_oscillator(1.0), 2).advance(np.zeros(3), 0.0, 1.0)


def test_oscillator_from_lagrangian() -> None:
    k = 9.0
    f = lagrangian_to_state_derivative(L_harmonic(1.0, k), up(0.0, up(1.0), up(0.0)))
    stepper = Stepper(f, f.dimension)
    T = 10 * 2 * math.pi / math.sqrt(k)
    y = stepper.advance(np.array([1.0, 0.0]), 0.0, T)
    assert abs(y[0] - math.cos(math.sqrt(k) * T)) < 1e-6


def test_free_particle_from_lagrangian_keeps_velocity() -> None:
    f = lagrangian_to_state_derivative(L_free(2.0), up(0.0, up(0.0, 0.0), up(0.0, 0.0)))
    stepper = Stepper(f, f.dimension)
    y = stepper.advance(np.array([0.0, 1.0, -1.5, 0.25]), 0.0, 7.0)
    assert list(y[2:]) == [-1.5, 0.25]
