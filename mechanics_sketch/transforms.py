"""
Coordinate transforms: lifting position maps to the local tuple and
composing them.

A transform is a function ``F(up(t, q)) -> q'``. It may read the time (a
driven support) but never the velocity. Lifting it gives

    C(up(t, q, qdot)) = up(t, F(t, q), ∂t F + ∂q F · qdot)

where the velocity is the exact chain-rule derivative computed by the
differentiation engine.
"""

from typing import Callable, Dict, Sequence, Tuple

from .autodiff import Evaluator, Trace
from .errors import ShapeMismatch
from .structure import describe, shape, up


def identity(x):
    return x


class Composition:
    """
    Right-to-left composition ``f1(f2(...fn(x)))``.

    The empty composition is the identity.
    """

    def __init__(self, *functions: Callable):
        self.functions = functions

    def __call__(self, x):
        for f in reversed(self.functions):
            x = f(x)
        return x

    def __len__(self):
        return len(self.functions)

    def __repr__(self):
        names = ", ".join(getattr(f, "__name__", repr(f)) for f in self.functions)
        return f"Composition({names})"


def compose(*functions: Callable) -> Composition:
    return Composition(*functions)


class LiftedTransform:
    """A position transform promoted to act on the full local tuple"""

    def __init__(self, F: Callable, domain=None):
        self.F = F
        self.checked = domain is not None
        self.domain = shape(domain) if self.checked else None
        self.__name__ = f"lifted_{getattr(F, '__name__', type(F).__name__)}"
        self._cache: Dict[Tuple, Evaluator] = {}

    def _check_domain(self, q):
        if self.checked and shape(q) != self.domain:
            raise ShapeMismatch(
                f"{self.__name__} expects positions shaped {self.domain}, "
                f"got {describe(q)}")

    def _evaluator(self, t, q) -> Evaluator:
        signature = (shape(t), shape(q))
        evaluator = self._cache.get(signature)
        if evaluator is None:
            trace = Trace(lambda t_, q_: self.F(up(t_, q_)), (t, q))
            position = trace.output
            # position, ∂t F, ∂q F
            combined = up(position, trace.partial(0), trace.partial(1))
            evaluator = Evaluator(combined, trace.variables, self.__name__)
            self._cache[signature] = evaluator
        return evaluator

    def __call__(self, local):
        if len(local) < 3:
            raise ShapeMismatch(
                f"{self.__name__} needs up(t, q, qdot), got {len(local)} slots")
        t, q, qdot = local[0], local[1], local[2]
        self._check_domain(q)
        position, d_t, d_q = self._evaluator(t, q)((t, q))
        return up(t, position, d_t + d_q * qdot)

    def position(self, local):
        """The wrapped map on ``up(t, q)`` alone; no velocity is computed"""
        t, q = local[0], local[1]
        self._check_domain(q)
        return self.F(up(t, q))

    def __repr__(self):
        return f"<LiftedTransform {self.__name__}>"


def promote(F: Callable, domain=None) -> LiftedTransform:
    """
    Lift a position transform to the local tuple.

    Args:
        F: function of ``up(t, q)`` returning new positions
        domain: optional example of the positions F accepts; calls with a
            differently shaped ``q`` raise ShapeMismatch

    Returns:
        The lifted transform
    """
    return LiftedTransform(F, domain)


class TransformChain:
    """
    Immutable ordered sequence of lifted transforms.

    The first transform appended is innermost: it receives the generalized
    coordinates and is applied first.
    """

    def __init__(self, transforms: Sequence[LiftedTransform] = ()):
        self.transforms = tuple(transforms)

    def append(self, F: Callable, domain=None) -> "TransformChain":
        return TransformChain(self.transforms + (promote(F, domain),))

    @property
    def lifted(self) -> Composition:
        """Composite transform of the full local tuple"""
        return Composition(*reversed(self.transforms))

    def declared(self, t, q) -> "TransformChain":
        """
        The chain with every transform's domain fixed, starting from
        positions shaped like `q`.

        Each transform is traced on the output of the one before it, so a
        transform written for other positions raises ShapeMismatch here.
        """
        transforms = []
        for transform in self.transforms:
            if not transform.checked:
                transform = LiftedTransform(transform.F, q)
            transform._check_domain(q)
            q = transform._evaluator(t, q).template[0]
            transforms.append(transform)
        return TransformChain(transforms)

    def coordinate(self, local):
        """Composite position-only projection, used for rendering"""
        t, q = local[0], local[1]
        for transform in self.transforms:
            q = transform.position(up(t, q))
        return q

    def __len__(self):
        return len(self.transforms)

    def __iter__(self):
        return iter(self.transforms)

    def __repr__(self):
        return f"TransformChain({', '.join(t.__name__ for t in self.transforms)})"
