"""
Structured numeric tensors: nested up (contravariant) and down (covariant)
tuples of scalars.

Combining a down tuple with an up tuple of the same length contracts them,
so per-particle masses times per-particle squared speeds give the total
kinetic energy in one product:

    >>> down(2, 3) * up(4, 5)
    23

Leaves may be plain numbers or traced expressions. Shapes are never guessed:
every operation on two structures checks that their shapes agree.
"""

from typing import Any, Callable, Iterable, List, Sequence

import numpy as np

from .errors import ShapeMismatch

UP = "up"
DOWN = "down"


class Structure:
    """A fixed-shape tuple tagged as up (contravariant) or down (covariant)"""

    __slots__ = ("orientation", "_items")

    # Keep numpy scalars from treating structures as sequences.
    __array_ufunc__ = None

    def __init__(self, orientation: str, items: Iterable):
        if orientation not in (UP, DOWN):
            raise ValueError(f"orientation must be 'up' or 'down', got {orientation!r}")
        self.orientation = orientation
        self._items = tuple(items)

    # Sequence protocol ------------------------------------------------------

    def __len__(self):
        return len(self._items)

    def __iter__(self):
        return iter(self._items)

    def __getitem__(self, index):
        if isinstance(index, slice):
            return Structure(self.orientation, self._items[index])
        return self._items[index]

    @property
    def items(self) -> tuple:
        return self._items

    @property
    def shape(self):
        return shape(self)

    def map(self, fn: Callable) -> "Structure":
        """Apply `fn` to every leaf, keeping orientation and nesting"""
        return Structure(self.orientation,
                         (x.map(fn) if isinstance(x, Structure) else fn(x)
                          for x in self._items))

    def dual(self) -> "Structure":
        """Same leaves with every orientation flipped"""
        flipped = DOWN if self.orientation == UP else UP
        return Structure(flipped,
                         (x.dual() if isinstance(x, Structure) else x
                          for x in self._items))

    # Arithmetic -------------------------------------------------------------

    def __add__(self, other):
        return _elementwise(self, other, "+", lambda a, b: a + b)

    def __radd__(self, other):
        return _elementwise(other, self, "+", lambda a, b: a + b)

    def __sub__(self, other):
        return _elementwise(self, other, "-", lambda a, b: a - b)

    def __rsub__(self, other):
        return _elementwise(other, self, "-", lambda a, b: a - b)

    def __neg__(self):
        return self.map(lambda x: -x)

    def __pos__(self):
        return self

    def __mul__(self, other):
        return _multiply(self, other)

    def __rmul__(self, other):
        return _multiply(other, self)

    def __truediv__(self, other):
        if isinstance(other, Structure):
            return _elementwise(self, other, "/", lambda a, b: a / b)
        return self.map(lambda x: x / other)

    def __rtruediv__(self, other):
        return self.map(lambda x: other / x)

    # Comparison -------------------------------------------------------------

    def __eq__(self, other):
        if not isinstance(other, Structure):
            return NotImplemented
        return (self.orientation == other.orientation
                and len(self) == len(other)
                and all(a == b for a, b in zip(self._items, other._items)))

    def __ne__(self, other):
        result = self.__eq__(other)
        return result if result is NotImplemented else not result

    def __hash__(self):
        return hash((self.orientation, self._items))

    def __repr__(self):
        return f"{self.orientation}({', '.join(repr(x) for x in self._items)})"


def up(*items) -> Structure:
    """Contravariant tuple (positions, velocities)"""
    return Structure(UP, items)


def down(*items) -> Structure:
    """Covariant tuple (weights, gradients, momenta)"""
    return Structure(DOWN, items)


def vector_to_up(values: Sequence) -> Structure:
    return Structure(UP, values)


def vector_to_down(values: Sequence) -> Structure:
    return Structure(DOWN, values)


def structure_to_vector(s: Structure) -> List[Any]:
    """Top-level items as a list (nested structures are kept as items)"""
    return list(s.items)


# ============================================================================
# SHAPES
# ============================================================================

def shape(x):
    """
    Hashable shape descriptor.

    Scalars have shape None; a structure has ``(orientation, child shapes)``.
    """
    if isinstance(x, Structure):
        return (x.orientation, tuple(shape(item) for item in x))
    return None


def leaf_shape(x):
    """Shape with orientations erased, used to pair weights with leaves"""
    if isinstance(x, Structure):
        return tuple(leaf_shape(item) for item in x)
    return None


def check_same_shape(a, b, op: str = "combine"):
    if shape(a) != shape(b):
        raise ShapeMismatch(f"cannot {op} {describe(a)} with {describe(b)}", a, b)


def describe(x) -> str:
    if isinstance(x, Structure):
        return f"{x.orientation}[{', '.join(describe(i) for i in x)}]"
    return "scalar"


def _elementwise(a, b, op: str, fn: Callable):
    if not (isinstance(a, Structure) and isinstance(b, Structure)):
        raise ShapeMismatch(
            f"cannot apply '{op}' to {describe(a)} and {describe(b)}", a, b)
    check_same_shape(a, b, f"apply '{op}' to")
    return Structure(a.orientation,
                     (_elementwise(x, y, op, fn) if isinstance(x, Structure) else fn(x, y)
                      for x, y in zip(a, b)))


def _multiply(a, b):
    a_struct = isinstance(a, Structure)
    b_struct = isinstance(b, Structure)
    if a_struct and b_struct:
        if a.orientation == b.orientation:
            return _elementwise(a, b, "*", lambda x, y: x * y)
        if len(a) != len(b):
            raise ShapeMismatch(
                f"cannot contract {describe(a)} with {describe(b)}", a, b)
        return _sum(x * y for x, y in zip(a, b))
    if a_struct:
        return a.map(lambda x: x * b)
    return b.map(lambda x: a * x)


def _sum(terms: Iterable):
    total = None
    for term in terms:
        total = term if total is None else total + term
    return 0.0 if total is None else total


# ============================================================================
# CONTRACTION
# ============================================================================

def flatten(x) -> List[Any]:
    """Leaves in depth-first order; a scalar flattens to itself"""
    if not isinstance(x, Structure):
        return [x]
    leaves: List[Any] = []
    stack = [iter(x)]
    while stack:
        for item in stack[-1]:
            if isinstance(item, Structure):
                stack.append(iter(item))
                break
            leaves.append(item)
        else:
            stack.pop()
    return leaves


def dot(a, b):
    """Sum of products of corresponding leaves of two same-shape values"""
    if isinstance(a, Structure) or isinstance(b, Structure):
        check_same_shape(a, b, "dot")
        return _sum(x * y for x, y in zip(flatten(a), flatten(b)))
    return a * b


def contract(weight, a, b):
    """
    Weighted contraction ``sum_i weight_i * a_i * b_i`` over leaves.

    `weight` is usually a down tuple (masses); `a` and `b` must share its
    leaf layout.
    """
    check_same_shape(a, b, "contract")
    if leaf_shape(weight) != leaf_shape(a):
        raise ShapeMismatch(
            f"weight {describe(weight)} does not match {describe(a)}", weight, a)
    return _sum(w * x * y for w, x, y in zip(flatten(weight), flatten(a), flatten(b)))


def mapv(fn: Callable, s: Structure) -> Structure:
    """Apply `fn` to the top-level items of `s` (which may be structures)"""
    return Structure(s.orientation, (fn(item) for item in s))


def mapr(fn: Callable, first, *rest):
    """Apply `fn` leafwise across several same-shape values"""
    for other in rest:
        check_same_shape(first, other, "map over")
    if not isinstance(first, Structure):
        return fn(first, *rest)
    return Structure(first.orientation,
                     (mapr(fn, *items) for items in zip(first, *rest)))


# ============================================================================
# FLAT STATE
# ============================================================================

def restore(flat: Sequence, template) -> Any:
    """
    Rebuild a structure shaped like `template` from a flat sequence.

    Raises:
        ShapeMismatch: if `flat` holds too few or too many values
    """
    values = iter(flat)
    missing = object()

    def build(t):
        if isinstance(t, Structure):
            return Structure(t.orientation, (build(item) for item in t))
        value = next(values, missing)
        if value is missing:
            raise ShapeMismatch(
                f"flat buffer of length {len(flat)} is too short for {describe(template)}")
        return value

    result = build(template)
    if next(values, missing) is not missing:
        raise ShapeMismatch(
            f"flat buffer of length {len(flat)} is too long for {describe(template)}")
    return result


def local_tuple(t, q, qdot) -> Structure:
    check_same_shape(q, qdot, "pair positions")
    return up(t, q, qdot)


def state_time(local: Structure):
    return local[0]


def coordinate(local: Structure):
    return local[1]


def velocity(local: Structure):
    return local[2]


def dimension(local: Structure) -> int:
    """Length of the FlatState for a local tuple"""
    return 2 * len(flatten(coordinate(local)))


def flatten_state(local: Structure, out: np.ndarray = None) -> np.ndarray:
    """
    Linearize ``(q, qdot)`` of a local tuple into a float64 buffer.

    Args:
        local: ``up(t, q, qdot)``
        out: optional buffer to fill instead of allocating

    Returns:
        The filled buffer
    """
    q, qdot = coordinate(local), velocity(local)
    check_same_shape(q, qdot, "flatten")
    leaves = flatten(q) + flatten(qdot)
    if out is None:
        return np.array(leaves, dtype=np.float64)
    if out.shape != (len(leaves),):
        raise ShapeMismatch(f"buffer of shape {out.shape} cannot hold {len(leaves)} values")
    out[:] = leaves
    return out


def restore_state(flat: Sequence, t, template: Structure) -> Structure:
    """Inverse of `flatten_state`: ``up(t, q, qdot)`` shaped like `template`"""
    q_template = coordinate(template)
    n = len(flatten(q_template))
    if len(flat) != 2 * n:
        raise ShapeMismatch(
            f"flat state of length {len(flat)} does not match {2 * n} state slots")
    values = [float(x) for x in flat]
    return up(t, restore(values[:n], q_template), restore(values[n:], q_template))
