"""
Simulation configuration.

Configuration is purely in-process: a frozen dataclass handed to the builder.
"""

import dataclasses
import math
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class SimulationConfig:
    """Tolerances, limits and host bookkeeping for one simulation"""

    # Stepper
    rtol: float = 1e-9
    atol: float = 1e-12
    first_step: Optional[float] = None
    max_step: float = math.inf
    max_steps: int = 100_000

    # Mass matrix conditioning
    max_condition: float = 1e12
    warn_condition: float = 1e8

    # Clock coupling. None integrates to the wall clock every frame.
    fixed_timestep: Optional[float] = None
    max_substeps: int = 240

    # Host bookkeeping
    color_period: int = 255
    frame_rate: int = 60
    zoom: float = 4.0

    def __post_init__(self):
        if self.rtol <= 0 or self.atol <= 0:
            raise ValueError("rtol and atol must be positive")
        if self.max_step <= 0:
            raise ValueError("max_step must be positive")
        if self.first_step is not None and self.first_step <= 0:
            raise ValueError("first_step must be positive")
        if self.fixed_timestep is not None and self.fixed_timestep <= 0:
            raise ValueError("fixed_timestep must be positive")
        if self.color_period < 1:
            raise ValueError("color_period must be at least 1")

    def replace(self, **changes) -> "SimulationConfig":
        """Return a copy with the given fields changed"""
        return dataclasses.replace(self, **changes)


DEFAULT_CONFIG = SimulationConfig()
