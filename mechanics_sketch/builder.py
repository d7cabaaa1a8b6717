"""
Builder: wires a Lagrangian and its transform chain into the three closures
an animation host needs.

    spec = (SketchSpec.from_lagrangian(L_free(1.0))
            .transform(elliptical_to_rect(3, 3, 8)))
    sketch = spec.build(up(0.0, up(1.0, 1.0), up(1.0, 5.0)))

    frame = sketch.setup(now=0.0)
    frame = sketch.update(frame, now=1 / 60)
    xyz = sketch.render_coordinates(frame.state)

All differentiation happens in `build`; `update` only integrates.
"""

import dataclasses
import logging
import math
import time
import warnings
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Callable, Mapping, Optional

import numpy as np

from .config import DEFAULT_CONFIG, SimulationConfig
from .errors import ShapeMismatch
from .lagrange import StateDerivative, lagrangian_to_state_derivative
from .stepper import Stepper
from .structure import (Structure, check_same_shape, coordinate, describe,
                        dimension, flatten_state, restore_state, state_time,
                        velocity)
from .transforms import Composition, TransformChain, compose

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FrameState:
    """One frame of host state; each update produces a new one"""

    state: Structure
    time: float
    tick: int = 0
    color: int = 0
    navigation: Mapping[str, float] = field(
        default_factory=lambda: MappingProxyType({"zoom": DEFAULT_CONFIG.zoom}))

    def replace(self, **changes) -> "FrameState":
        return dataclasses.replace(self, **changes)


@dataclass(frozen=True)
class SketchSpec:
    """
    A Lagrangian together with the coordinate transforms to compose it with.

    Immutable: `transform` returns a new spec.
    """

    lagrangian: Callable
    chain: TransformChain = field(default_factory=TransformChain)

    @classmethod
    def from_lagrangian(cls, L: Callable) -> "SketchSpec":
        return cls(L)

    def transform(self, F: Callable, domain=None) -> "SketchSpec":
        """Append a position transform; the first one appended is applied first"""
        return dataclasses.replace(self, chain=self.chain.append(F, domain))

    @property
    def composed_lagrangian(self) -> Composition:
        """The Lagrangian as a function of the generalized local tuple"""
        return compose(self.lagrangian, self.chain.lifted)

    def build(self, initial_state: Structure,
              config: Optional[SimulationConfig] = None,
              clock: Callable[[], float] = time.perf_counter) -> "Sketch":
        return Sketch(self, initial_state, config, clock)


def init(L: Callable) -> SketchSpec:
    return SketchSpec.from_lagrangian(L)


def _check_spec(spec, operation: str) -> None:
    if not isinstance(spec, SketchSpec):
        raise TypeError(
            f"{operation} expects a SketchSpec, got {type(spec).__name__}; "
            f"wrap the Lagrangian with init(L) first")


def transform(spec: SketchSpec, F: Callable, domain=None) -> SketchSpec:
    _check_spec(spec, "transform")
    return spec.transform(F, domain)


def build(spec: SketchSpec, initial_state: Structure,
          config: Optional[SimulationConfig] = None) -> "Sketch":
    _check_spec(spec, "build")
    return spec.build(initial_state, config)


def _check_local(state) -> None:
    if not isinstance(state, Structure) or len(state) != 3:
        raise ShapeMismatch(f"expected a local tuple up(t, q, qdot), got {state!r}")
    check_same_shape(coordinate(state), velocity(state), "pair positions")


class Sketch:
    """
    A built simulation.

    Attributes:
        lagrangian: the Lagrangian composed with every transform
        state_derivative: compiled equations of motion
        stepper: the integrator, owning the only mutable buffers
        compilation_time: seconds spent in `build`
    """

    def __init__(self, spec: SketchSpec, initial_state: Structure,
                 config: Optional[SimulationConfig] = None,
                 clock: Callable[[], float] = time.perf_counter):
        start = time.perf_counter()
        _check_local(initial_state)
        self.spec = spec
        self.config = config or DEFAULT_CONFIG
        self.initial_state = initial_state
        self.clock = clock

        chain = spec.chain.declared(state_time(initial_state), coordinate(initial_state))
        self.lagrangian = compose(spec.lagrangian, chain.lifted)
        self.state_derivative: StateDerivative = lagrangian_to_state_derivative(
            self.lagrangian, initial_state, self.config)
        self.stepper = Stepper(self.state_derivative, dimension(initial_state), self.config)
        self._coordinate = chain.coordinate
        self._y0 = np.zeros(self.stepper.dimension)

        self.compilation_time = time.perf_counter() - start
        logger.debug("built sketch with %d transforms in %.4f s",
                     len(spec.chain), self.compilation_time)

    def _now(self, now: Optional[float]) -> float:
        return self.clock() if now is None else float(now)

    def setup(self, now: Optional[float] = None) -> FrameState:
        """Initial frame at wall-clock time `now`"""
        return FrameState(state=self.initial_state,
                          time=self._now(now),
                          tick=0,
                          color=0,
                          navigation=MappingProxyType({"zoom": self.config.zoom}))

    def _elapsed(self, frame: FrameState, now: float):
        """Physical time to advance and the frame time after advancing"""
        elapsed = now - frame.time
        step = self.config.fixed_timestep
        if step is None:
            return elapsed, now
        count = math.floor(elapsed / step)
        if count > self.config.max_substeps:
            warnings.warn(
                f"dropping {elapsed - self.config.max_substeps * step:.3g} s of "
                f"simulation time: update fell more than {self.config.max_substeps} "
                f"steps behind")
            return self.config.max_substeps * step, now
        return count * step, frame.time + count * step

    def update(self, frame: FrameState, now: Optional[float] = None) -> FrameState:
        """
        Advance `frame` to wall-clock time `now`.

        Raises:
            ValueError: if `now` precedes the frame's time
            IntegrationFailure: if the step fails; `frame` stays valid
        """
        now = self._now(now)
        if now < frame.time:
            raise ValueError(f"update time {now} precedes frame time {frame.time}")
        check_same_shape(coordinate(frame.state), coordinate(self.initial_state), "update")

        advance, new_time = self._elapsed(frame, now)
        t0 = state_time(frame.state)
        state = frame.state
        if advance > 0:
            t1 = t0 + advance
            y0 = flatten_state(frame.state, out=self._y0)
            y1 = self.stepper.advance(y0, t0, t1)
            state = restore_state(y1, t1, self.initial_state)

        return frame.replace(state=state,
                             time=new_time,
                             tick=frame.tick + 1,
                             color=(frame.color + 1) % self.config.color_period)

    def render_coordinates(self, state: Structure):
        """Drawable positions for a local tuple"""
        return self._coordinate(state)

    def __repr__(self):
        return (f"<Sketch {describe(coordinate(self.initial_state))} "
                f"with {len(self.spec.chain)} transforms>")
