"""
Differentiation engine.

A function is traced once per argument shape: its arguments are replaced by
fresh variables and it runs on expressions, producing a graph from the
closed primitive set in `expr`. Partial derivatives are forward-mode tangent
propagations over that graph. Results are evaluated either by compiled
straight-line code (numeric arguments) or by substitution (traced
arguments), which is what lets derivatives nest:

    >>> d2 = derivative(derivative(f, 0), 0)
"""

import itertools
import logging
from typing import Callable, Dict, List, Sequence, Tuple

from . import expr as E
from .errors import MechanicsError, ShapeMismatch
from .structure import Structure, describe, flatten, restore, shape, up

logger = logging.getLogger(__name__)


def variables_like(template, prefix: str = "x"):
    """Fresh variables arranged in the shape of `template`"""
    if isinstance(template, Structure):
        counter = itertools.count()
        return template.map(lambda _: E.var(f"{prefix}{next(counter)}"))
    return E.var(prefix)


def _as_traced(value):
    if isinstance(value, Structure):
        return value.map(E.as_expr)
    return E.as_expr(value)


def _function_name(f: Callable) -> str:
    return getattr(f, "__name__", type(f).__name__)


def guarded_call(f: Callable, args: Sequence):
    """
    Call `f(*args)`, reporting shape errors in user code as ShapeMismatch.

    Indexing past a structure or unpacking it into the wrong number of names
    means `f` was written for differently shaped arguments.
    """
    try:
        return f(*args)
    except MechanicsError:
        raise
    except (IndexError, ValueError) as exc:
        raise ShapeMismatch(
            f"{_function_name(f)} does not accept arguments shaped "
            f"{', '.join(describe(a) for a in args)}: {exc}") from exc


class Trace:
    """
    A function recorded on variables shaped like a set of example arguments.

    Attributes:
        inputs: one variable structure per argument
        variables: all input variables, flattened in argument order
        output: the function's result with expression leaves
    """

    def __init__(self, f: Callable, args: Sequence):
        self.f = f
        self.inputs = tuple(variables_like(a, f"a{i}_") for i, a in enumerate(args))
        self.variables = [v for x in self.inputs for v in flatten(x)]
        self.output = _as_traced(guarded_call(f, self.inputs))

    @property
    def output_leaves(self) -> List[E.Expr]:
        return flatten(self.output)

    def partial(self, index: int):
        """
        Partial derivative of the output with respect to argument `index`.

        For a scalar argument the result has the output's shape. For a
        structured argument it is covariant: the argument's shape with every
        level turned down, holding one output-shaped partial per leaf.
        """
        slot = self.inputs[index]
        out_leaves = self.output_leaves

        def column(v):
            return restore(E.tangents(out_leaves, {id(v): E.ONE}), self.output)

        if isinstance(slot, Structure):
            return slot.dual().map(column)
        return column(slot)


class Evaluator:
    """Evaluates traced outputs at concrete or traced argument values"""

    def __init__(self, output, variables: Sequence[E.Expr], name: str = "compiled"):
        self.template = output
        self.leaves = flatten(output)
        self.variables = list(variables)
        self.name = name
        self._compiled = None

    def __call__(self, args: Sequence):
        values = [leaf for a in args for leaf in flatten(a)]
        if len(values) != len(self.variables):
            raise ShapeMismatch(
                f"{self.name} expects {len(self.variables)} values, got {len(values)}")
        if any(isinstance(v, E.Expr) for v in values):
            mapping = {id(var): E.as_expr(v) for var, v in zip(self.variables, values)}
            return restore(E.substitute(self.leaves, mapping), self.template)
        if self._compiled is None:
            self._compiled = E.compile_function(self.leaves, self.variables, self.name)
            logger.debug("compiled %s (%d nodes)", self.name, E.count_nodes(self.leaves))
        return restore(self._compiled(values, [0.0] * len(self.leaves)), self.template)


class Derivative:
    """
    Partial derivative of `f` with respect to argument `index`.

    Traced once per argument shape signature; the traced partial is cached
    on this object and reused by every later call with that signature.

    Tracing is lazy: without `example` arguments an unsupported operation in
    `f` surfaces on the first call. Passing `example` traces immediately, so
    the error is raised here instead.
    """

    def __init__(self, f: Callable, index: int, example: Sequence = None):
        self.f = f
        self.index = index
        self.__name__ = f"d{index}_{_function_name(f)}"
        self._cache: Dict[Tuple, Evaluator] = {}
        if example is not None:
            self._evaluator(tuple(example))

    def _evaluator(self, args: tuple) -> Evaluator:
        if not 0 <= self.index < len(args):
            raise ShapeMismatch(
                f"{self.__name__} differentiates argument {self.index} "
                f"but was called with {len(args)} arguments")
        signature = tuple(shape(a) for a in args)
        evaluator = self._cache.get(signature)
        if evaluator is None:
            traced = Trace(self.f, args)
            evaluator = Evaluator(traced.partial(self.index), traced.variables,
                                  self.__name__)
            self._cache[signature] = evaluator
        return evaluator

    def __call__(self, *args):
        return self._evaluator(args)(args)

    def __repr__(self):
        return f"<Derivative {self.__name__}>"


def derivative(f: Callable, index: int, *example) -> Derivative:
    """
    g = ∂f/∂(argument `index`), evaluated at the same point as f.

    With `example` arguments f is traced now and an unsupported operation
    raises UnsupportedOperation here; otherwise on the first call of g.
    """
    return Derivative(f, index, example or None)


def partial(index: int) -> Callable[[Callable], Derivative]:
    """Operator form: ``partial(1)(f) == derivative(f, 1)``"""
    return lambda f: Derivative(f, index)


def directional_derivative(f: Callable, index: int, args: Sequence, direction):
    """Directional derivative of `f` along `direction` in argument `index`"""
    return Derivative(f, index)(*args) * direction


jvp = directional_derivative


def trace(f: Callable, *templates) -> Trace:
    """Record `f` on fresh variables shaped like `templates`"""
    return Trace(f, templates)


# ============================================================================
# FUNCTIONS OF THE LOCAL TUPLE
# ============================================================================

class _SlotFunction:
    """Spreads the slots of a local tuple into positional arguments"""

    def __init__(self, f: Callable):
        self.f = f
        self.__name__ = _function_name(f)

    def __call__(self, *slots):
        return self.f(up(*slots))


class LocalPartial:
    """
    ∂_i of a function of the local tuple ``up(t, q, qdot)``.

    ``LocalPartial(L, 2)`` is the generalized momentum of a Lagrangian and
    ``LocalPartial(L, 1)`` its generalized force. Both are themselves
    functions of the local tuple.
    """

    def __init__(self, f: Callable, index: int):
        self.f = f
        self.index = index
        self._derivative = Derivative(_SlotFunction(f), index)
        self.__name__ = self._derivative.__name__

    def __call__(self, local):
        return self._derivative(*local)


def local_partial(f: Callable, index: int) -> LocalPartial:
    return LocalPartial(f, index)


class TotalTimeDerivative:
    """
    Total time derivative of a function of ``up(t, q, qdot)``.

    Called with ``up(t, q, qdot, qddot)`` it returns
    ``∂0 f + ∂1 f · qdot + ∂2 f · qddot``.
    """

    def __init__(self, f: Callable):
        self.f = f
        self._partials = [LocalPartial(f, i) for i in range(3)]
        self.__name__ = f"Dt_{_function_name(f)}"

    def __call__(self, local):
        if len(local) != 4:
            raise ShapeMismatch(
                "total time derivative needs up(t, q, qdot, qddot), "
                f"got {len(local)} slots")
        t, q, qdot, qddot = local
        state = up(t, q, qdot)
        d_t, d_q, d_qdot = (p(state) for p in self._partials)
        return d_t + d_q * qdot + d_qdot * qddot


def total_time_derivative(f: Callable) -> TotalTimeDerivative:
    return TotalTimeDerivative(f)
