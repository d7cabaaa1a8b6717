"""
Built-in example scenes.

    >>> results = run_example("double_pendulum", duration=5.0, headless=True)
"""

import math
import time
from typing import Callable, Dict, Tuple

from .builder import Sketch, SketchSpec
from .config import SimulationConfig
from .generic import cos
from .host import SketchAnimator, draw_chain, draw_driven, draw_particle
from .lagrange import energy
from .scenes import (L_chain, L_free, L_harmonic, L_particle, L_rectangular,
                     U_uniform_gravity, double_pendulum_to_rect,
                     driven_pendulum_to_rect, elliptical_to_rect)
from .structure import down, up


def example_particle(config=None):
    """Particle thrown in uniform gravity"""
    sketch = SketchSpec.from_lagrangian(L_particle(1.0, 9.8)).build(
        up(0.0, up(5.0, 5.0), up(4.0, 10.0)), config)
    return sketch, draw_particle


def example_harmonic(config=None):
    """Two-dimensional harmonic oscillator"""
    sketch = SketchSpec.from_lagrangian(L_harmonic(1.0, 9.8)).build(
        up(0.0, up(5.0, 5.0), up(4.0, 10.0)), config)
    return sketch, draw_particle


def example_triple_pendulum(config=None):
    """Chain of three pendulums built by attaching each bob to the last"""
    spec = L_chain([1.0, 1.0, 1.0], [4.0, 8.0, 12.0], 9.8)
    sketch = spec.build(
        up(0.0, up(math.pi / 2, math.pi / 2, math.pi / 2), up(0.0, 0.0, 0.0)), config)
    return sketch, draw_chain


def example_double_pendulum(config=None):
    """Double pendulum through an explicit angles-to-rectangular transform"""
    masses = down(1.0, 1.0)
    spec = (SketchSpec.from_lagrangian(L_rectangular(masses, U_uniform_gravity(masses, 9.8)))
            .transform(double_pendulum_to_rect(10.0, 10.0)))
    sketch = spec.build(up(0.0, up(math.pi / 2, math.pi / 2), up(0.0, 0.0)), config)
    return sketch, draw_chain


def example_ellipse(config=None):
    """Free particle constrained to a triaxial ellipsoid"""
    spec = (SketchSpec.from_lagrangian(L_free(1.0))
            .transform(elliptical_to_rect(3.0, 3.0, 8.0)))
    sketch = spec.build(up(0.0, up(1.0, 1.0), up(1.0, 5.0)), config)
    return sketch, draw_particle


def _support_height(t):
    return 10.0 * cos(5.0 * t)


def example_driven_pendulum(config=None):
    """Pendulum whose support oscillates vertically"""
    spec = (SketchSpec.from_lagrangian(L_particle(1.0, 9.8))
            .transform(driven_pendulum_to_rect(6.0, _support_height)))
    sketch = spec.build(up(0.0, up(math.pi / 4), up(0.0)), config)
    return sketch, draw_driven(lambda t: (0.0, _support_height(t)))


EXAMPLES: Dict[str, Callable[..., Tuple[Sketch, Callable]]] = {
    "particle": example_particle,
    "harmonic": example_harmonic,
    "triple_pendulum": example_triple_pendulum,
    "double_pendulum": example_double_pendulum,
    "ellipse": example_ellipse,
    "driven_pendulum": example_driven_pendulum,
}


def run_headless(sketch: Sketch, duration: float, fps: int = 60) -> dict:
    """
    Drive a sketch with a simulated clock, one update per frame.

    Returns:
        Dictionary with the final frame and energy bookkeeping
    """
    E = energy(sketch.lagrangian)
    frame = sketch.setup(now=0.0)
    initial_energy = E(frame.state)
    frames = int(round(duration * fps))
    for i in range(1, frames + 1):
        frame = sketch.update(frame, now=i / fps)
    final_energy = E(frame.state)
    return {
        "frame": frame,
        "frames": frames,
        "initial_energy": initial_energy,
        "final_energy": final_energy,
        "energy_drift": final_energy - initial_energy,
        "nfev": sketch.stepper.nfev,
    }


def run_example(example_name: str = "double_pendulum",
                duration: float = 10.0,
                headless: bool = False,
                config: SimulationConfig = None) -> dict:
    """
    Build and run a built-in example.

    Args:
        example_name: key of EXAMPLES
        duration: simulated seconds when headless
        headless: integrate with a simulated clock instead of animating
        config: optional simulation configuration

    Returns:
        Dictionary with the sketch and, when headless, the run summary
    """
    if example_name not in EXAMPLES:
        raise ValueError(f"Unknown example: {example_name}. Choose from {list(EXAMPLES)}")

    start = time.perf_counter()
    sketch, draw = EXAMPLES[example_name](config)
    build_time = time.perf_counter() - start

    print(f"\n{'=' * 70}")
    print(f"Built: {example_name}")
    print(f"Transforms: {len(sketch.spec.chain)}")
    print(f"Build time: {build_time:.4f} seconds")
    print(f"{'=' * 70}\n")

    if not headless:
        animator = SketchAnimator(sketch, draw, title=example_name.replace("_", " ").title())
        animator.show()
        return {"sketch": sketch, "animator": animator}

    summary = run_headless(sketch, duration)
    print(f"Simulated {duration:.2f} s in {summary['frames']} frames "
          f"({summary['nfev']} function evaluations)")
    print(f"Initial energy: {summary['initial_energy']:.6f}")
    print(f"Final energy:   {summary['final_energy']:.6f}")
    print(f"Energy change:  {summary['energy_drift']:.6e}")
    summary["sketch"] = sketch
    return summary
