"""
Generic scalar functions that work on numbers, traced expressions and
structures alike.

Use these (or the numpy ufuncs of the same name) inside Lagrangians and
transforms; `math.sin` and friends need a concrete float and cannot be
traced.
"""

import math
from typing import Callable

from . import expr as E
from .structure import Structure, dot


def _generic(name: str, on_number: Callable, on_expr: Callable) -> Callable:
    def fn(x):
        if isinstance(x, Structure):
            return x.map(fn)
        if isinstance(x, E.Expr):
            return on_expr(x)
        return on_number(x)
    fn.__name__ = name
    fn.__doc__ = f"Leafwise {name} of a number, expression or structure"
    return fn


sin = _generic("sin", math.sin, E.sin)
cos = _generic("cos", math.cos, E.cos)
tan = _generic("tan", math.tan, E.tan)
exp = _generic("exp", math.exp, E.exp)
log = _generic("log", math.log, E.log)
sqrt = _generic("sqrt", math.sqrt, E.sqrt)


def square(x):
    """``x * x`` for scalars; the sum of squared leaves for a structure"""
    if isinstance(x, Structure):
        return dot(x, x)
    return x * x


def cube(x):
    return x * x * x
