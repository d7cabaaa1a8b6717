"""
Reference animation host built on matplotlib.

The host owns the frame clock. It calls `setup` once, then `update` and
`draw` once per frame, handing the current clock reading to `update`.
"""

import time
import warnings
from typing import Callable, Optional

import matplotlib.pyplot as plt
import matplotlib.animation as animation

from .builder import FrameState, Sketch
from .errors import IntegrationFailure
from .structure import flatten


def frame_color(frame: FrameState, period: int = 255):
    """Cycle through the HSV colormap with the frame's colour counter"""
    return plt.cm.hsv(frame.color / period)


def _prepare(ax, frame: FrameState, extent: float):
    ax.clear()
    half = extent / frame.navigation.get("zoom", 1.0)
    ax.set_xlim(-half, half)
    ax.set_ylim(-half, half)
    ax.set_aspect("equal")
    ax.grid(True, alpha=0.3)


def _xy(point):
    x, y = flatten(point)[:2]
    return x, y


def draw_particle(ax, sketch: Sketch, frame: FrameState, extent: float = 80.0):
    """A single particle; only the first two coordinates are drawn"""
    _prepare(ax, frame, extent)
    x, y = _xy(sketch.render_coordinates(frame.state))
    ax.plot([x], [y], "o", markersize=8,
            color=frame_color(frame, sketch.config.color_period))


def draw_chain(ax, sketch: Sketch, frame: FrameState, extent: float = 120.0):
    """Bobs hanging from the origin, each linked to the previous one"""
    _prepare(ax, frame, extent)
    xs, ys = [0.0], [0.0]
    for bob in sketch.render_coordinates(frame.state):
        x, y = _xy(bob)
        xs.append(x)
        ys.append(y)
    ax.plot(xs, ys, "-", linewidth=2, color="#457B9D")
    ax.plot(xs[1:], ys[1:], "o", markersize=8,
            color=frame_color(frame, sketch.config.color_period))


def draw_driven(support: Callable[[float], tuple]) -> Callable:
    """Pendulum whose support point moves as `support(t)`"""
    def draw(ax, sketch: Sketch, frame: FrameState, extent: float = 80.0):
        _prepare(ax, frame, extent)
        x, y = _xy(sketch.render_coordinates(frame.state))
        xs, ys = support(frame.state[0])
        ax.plot([xs, x], [ys, y], "-", linewidth=2, color="#457B9D")
        ax.plot([x], [y], "o", markersize=8,
                color=frame_color(frame, sketch.config.color_period))

    return draw


class SketchAnimator:
    """
    Drives a sketch with `FuncAnimation`.

    If an update fails the animator keeps drawing the last good frame and
    stores the error in `failure`.
    """

    def __init__(self, sketch: Sketch, draw: Callable, title: str = "",
                 clock: Callable[[], float] = time.perf_counter,
                 figsize=(6, 6)):
        self.sketch = sketch
        self.draw = draw
        self.clock = clock
        self.fig, self.ax = plt.subplots(figsize=figsize)
        if title:
            self.fig.suptitle(title)
        self.frame: Optional[FrameState] = None
        self.failure: Optional[IntegrationFailure] = None
        self.animation = None

    def start(self):
        self.frame = self.sketch.setup(self.clock())
        self.draw(self.ax, self.sketch, self.frame)

    def step(self, _index=None):
        if self.frame is None:
            self.start()
            return
        if self.failure is None:
            try:
                self.frame = self.sketch.update(self.frame, self.clock())
            except IntegrationFailure as exc:
                self.failure = exc
                warnings.warn(f"simulation halted, keeping the last good frame: {exc}")
        self.draw(self.ax, self.sketch, self.frame)

    def animate(self) -> animation.FuncAnimation:
        interval = 1000.0 / self.sketch.config.frame_rate
        self.animation = animation.FuncAnimation(
            self.fig, self.step, init_func=self.start,
            interval=interval, blit=False, cache_frame_data=False)
        return self.animation

    def show(self):
        self.animate()
        plt.show()
