"""Scenario library Lagrangians and transforms."""

import math

import numpy as np
import pytest

from mechanics_sketch.builder import SketchSpec
from mechanics_sketch.config import SimulationConfig
from mechanics_sketch.examples import run_headless
from mechanics_sketch.scenes import (L_chain, L_free, L_particle, L_rectangular,
                                     U_uniform_gravity, attach_pendulum,
                                     double_pendulum_to_rect, driven_pendulum_to_rect,
                                     elliptical_to_rect)
from mechanics_sketch.structure import down, flatten, up


def test_rectangular_lagrangian_value() -> None:
    masses = down(1.0, 2.0)
    L = L_rectangular(masses, U_uniform_gravity(masses, 9.8))
    local = up(0.0, up(up(0.0, 1.0), up(0.0, 2.0)), up(up(1.0, 0.0), up(0.0, 1.0)))
    assert np.isclose(L(local), 0.5 * (1.0 + 2.0) - 9.8 * (1.0 + 4.0))


def test_attach_pendulum_hangs_from_anchor() -> None:
    attach = attach_pendulum(2.0, 1, anchor=0)
    q = attach(up(0.0, up(up(1.0, -1.0), math.pi / 2)))
    assert np.allclose(flatten(q), [1.0, -1.0, 3.0, -1.0])

    loose = attach_pendulum(2.0, 0, point=(5.0, 5.0))
    assert np.allclose(flatten(loose(up(0.0, up(0.0)))), [5.0, 3.0])


def test_double_pendulum_positions() -> None:
    q = double_pendulum_to_rect(1.0, 2.0)(up(0.0, up(0.0, math.pi / 2)))
    assert np.allclose(flatten(q), [0.0, -1.0, 2.0, -1.0])


def test_small_angle_chain_matches_pendulum_period() -> None:
    l, g, amplitude = 2.0, 9.8, 1e-3
    sketch = L_chain([1.0], [l], g).build(up(0.0, up(amplitude), up(0.0)))
    summary = run_headless(sketch, duration=1.0)
    t, q, _ = summary["frame"].state
    expected = amplitude * math.cos(math.sqrt(g / l) * t)
    assert abs(q[0] - expected) < 1e-8


def test_chain_needs_one_mass_per_length() -> None:
    with pytest.raises(ValueError):
        L_chain([1.0, 1.0], [1.0], 9.8)


def test_double_pendulum_conserves_energy() -> None:
    masses = down(1.0, 1.0)
    sketch = (SketchSpec.from_lagrangian(L_rectangular(masses, U_uniform_gravity(masses, 9.8)))
              .transform(double_pendulum_to_rect(1.0, 1.0))
              .build(up(0.0, up(1.0, -0.5), up(0.0, 0.0))))
    summary = run_headless(sketch, duration=3.0)
    scale = 9.8 * 2.0
    assert abs(summary["energy_drift"]) < 1e-6 * scale


def test_driven_pendulum_runs() -> None:
    spec = (SketchSpec.from_lagrangian(L_particle(1.0, 9.8))
            .transform(driven_pendulum_to_rect(1.0, lambda t: 0.1 * t * t)))
    sketch = spec.build(up(0.0, up(0.3), up(0.0)))
    summary = run_headless(sketch, duration=0.5)
    assert all(math.isfinite(x) for x in flatten(summary["frame"].state))


def test_ellipse_particle_with_fixed_steps() -> None:
    spec = SketchSpec.from_lagrangian(L_free(1.0)).transform(elliptical_to_rect(3.0, 3.0, 8.0))
    sketch = spec.build(up(0.0, up(1.0, 1.0), up(1.0, 5.0)),
                        SimulationConfig(fixed_timestep=1 / 120))
    summary = run_headless(sketch, duration=0.5)
    assert abs(summary["energy_drift"]) < 1e-6 * abs(summary["initial_energy"])
