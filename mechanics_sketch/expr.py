"""
Closed expression graph for the differentiation engine.

Traced functions are recorded as a DAG of `Expr` nodes drawn from a small,
fixed set of primitives. Nodes are hash-consed, so structurally identical
subexpressions are shared, and constant-folded as they are built. The graph
supports three passes:

    tangents    forward-mode (dual number) derivative propagation
    substitute  rebinding variables to other expressions
    compile     straight-line Python code over `math`, one line per node

Anything that would need a concrete value while tracing (truth tests,
comparisons, float conversion, math.* calls) raises UnsupportedOperation.
"""

import itertools
import math
import numbers
import re
import weakref
from typing import Callable, Dict, Iterator, List, Optional, Sequence

from .errors import UnsupportedOperation

# ============================================================================
# NODE TABLE
# ============================================================================

_table = weakref.WeakValueDictionary()
_var_counter = itertools.count()


def _intern(op: str, args: tuple, value=None) -> "Expr":
    # Children of a live node are alive, so their ids are stable keys.
    key = (op, tuple(id(a) for a in args), value)
    node = _table.get(key)
    if node is None:
        node = Expr(op, args, value)
        _table[key] = node
    return node


def _unsupported(what: str):
    raise UnsupportedOperation(
        f"{what} is not supported on traced values; the function must be "
        f"built from +, -, *, /, ** and sin/cos/tan/exp/log/sqrt only"
    )


class Expr:
    """A node in the expression graph"""

    __slots__ = ("op", "args", "value", "__weakref__")

    def __init__(self, op: str, args: tuple = (), value=None):
        self.op = op
        self.args = args
        self.value = value

    # Arithmetic -------------------------------------------------------------

    def __add__(self, other):
        other = _coerce(other)
        return NotImplemented if other is NotImplemented else add(self, other)

    def __radd__(self, other):
        other = _coerce(other)
        return NotImplemented if other is NotImplemented else add(other, self)

    def __sub__(self, other):
        other = _coerce(other)
        return NotImplemented if other is NotImplemented else sub(self, other)

    def __rsub__(self, other):
        other = _coerce(other)
        return NotImplemented if other is NotImplemented else sub(other, self)

    def __mul__(self, other):
        other = _coerce(other)
        return NotImplemented if other is NotImplemented else mul(self, other)

    def __rmul__(self, other):
        other = _coerce(other)
        return NotImplemented if other is NotImplemented else mul(other, self)

    def __truediv__(self, other):
        other = _coerce(other)
        return NotImplemented if other is NotImplemented else div(self, other)

    def __rtruediv__(self, other):
        other = _coerce(other)
        return NotImplemented if other is NotImplemented else div(other, self)

    def __pow__(self, exponent):
        if isinstance(exponent, Expr):
            if exponent.op != "const":
                _unsupported("a traced exponent")
            exponent = exponent.value
        if not isinstance(exponent, numbers.Real):
            return NotImplemented
        return power(self, float(exponent))

    def __rpow__(self, base):
        _unsupported("a traced exponent")

    def __neg__(self):
        return neg(self)

    def __pos__(self):
        return self

    # Scalar functions, also reached through numpy's object dispatch --------

    def sin(self):
        return sin(self)

    def cos(self):
        return cos(self)

    def tan(self):
        return tan(self)

    def exp(self):
        return exp(self)

    def log(self):
        return log(self)

    def sqrt(self):
        return sqrt(self)

    def __array_ufunc__(self, ufunc, method, *inputs, **kwargs):
        if method != "__call__" or kwargs:
            _unsupported(f"numpy.{ufunc.__name__}.{method}")
        handler = _UFUNCS.get(ufunc.__name__)
        if handler is None:
            _unsupported(f"numpy.{ufunc.__name__}")
        args = []
        for x in inputs:
            x = _coerce(x)
            if x is NotImplemented:
                return NotImplemented
            args.append(x)
        return handler(*args)

    # Value-dependent operations --------------------------------------------

    def __bool__(self):
        _unsupported("branching on a value")

    def __eq__(self, other):
        _unsupported("comparison")

    def __ne__(self, other):
        _unsupported("comparison")

    def __lt__(self, other):
        _unsupported("comparison")

    def __le__(self, other):
        _unsupported("comparison")

    def __gt__(self, other):
        _unsupported("comparison")

    def __ge__(self, other):
        _unsupported("comparison")

    def __float__(self):
        _unsupported("conversion to float (math.* functions included)")

    def __int__(self):
        _unsupported("conversion to int")

    def __index__(self):
        _unsupported("use as an index")

    def __abs__(self):
        _unsupported("abs()")

    __hash__ = object.__hash__

    @property
    def is_const(self) -> bool:
        return self.op == "const"

    def __repr__(self):
        if self.op == "const":
            return f"Expr({self.value!r})"
        if self.op == "var":
            return f"Expr(var {self.value})"
        return f"Expr({self.op}, {len(self.args)} args @{id(self):x})"


def _coerce(x):
    if isinstance(x, Expr):
        return x
    if isinstance(x, numbers.Real):
        return const(float(x))
    return NotImplemented


def as_expr(x) -> Expr:
    """Coerce a number or Expr to an Expr"""
    result = _coerce(x)
    if result is NotImplemented:
        raise UnsupportedOperation(
            f"cannot use {type(x).__name__} as a scalar in a traced function"
        )
    return result


# ============================================================================
# CONSTRUCTORS (with constant folding)
# ============================================================================

def const(value: float) -> Expr:
    return _intern("const", (), float(value))


def var(name: Optional[str] = None) -> Expr:
    """Fresh variable; variables are never shared between calls"""
    n = next(_var_counter)
    return Expr("var", (), f"{name or 'x'}#{n}")


ZERO = const(0.0)
ONE = const(1.0)


def _is(node: Expr, value: float) -> bool:
    return node.op == "const" and node.value == value


def add(a: Expr, b: Expr) -> Expr:
    if a.op == "const" and b.op == "const":
        return const(a.value + b.value)
    if _is(a, 0.0):
        return b
    if _is(b, 0.0):
        return a
    return _intern("add", (a, b))


def neg(a: Expr) -> Expr:
    if a.op == "const":
        return const(-a.value)
    if a.op == "neg":
        return a.args[0]
    return _intern("neg", (a,))


def sub(a: Expr, b: Expr) -> Expr:
    if b is a:
        return ZERO
    return add(a, neg(b))


def mul(a: Expr, b: Expr) -> Expr:
    if a.op == "const" and b.op == "const":
        return const(a.value * b.value)
    if b.op == "const":
        a, b = b, a
    if a.op == "const":
        if a.value == 0.0:
            return ZERO
        if a.value == 1.0:
            return b
        if a.value == -1.0:
            return neg(b)
    return _intern("mul", (a, b))


def div(a: Expr, b: Expr) -> Expr:
    if _is(b, 1.0):
        return a
    if _is(a, 0.0):
        return ZERO
    if a.op == "const" and b.op == "const" and b.value != 0.0:
        return const(a.value / b.value)
    return _intern("div", (a, b))


def _fold_unary(op: str, fn: Callable, a: Expr) -> Expr:
    if a.op == "const":
        try:
            return const(fn(a.value))
        except (ValueError, OverflowError):
            # Domain errors surface when the compiled function is evaluated.
            pass
    return _intern(op, (a,))


def sin(a: Expr) -> Expr:
    return _fold_unary("sin", math.sin, a)


def cos(a: Expr) -> Expr:
    return _fold_unary("cos", math.cos, a)


def tan(a: Expr) -> Expr:
    return _fold_unary("tan", math.tan, a)


def exp(a: Expr) -> Expr:
    return _fold_unary("exp", math.exp, a)


def log(a: Expr) -> Expr:
    return _fold_unary("log", math.log, a)


def sqrt(a: Expr) -> Expr:
    return _fold_unary("sqrt", math.sqrt, a)


def power(a: Expr, exponent: float) -> Expr:
    if exponent == 0.0:
        return ONE
    if exponent == 1.0:
        return a
    if exponent == 2.0:
        return mul(a, a)
    if a.op == "const":
        try:
            return const(math.pow(a.value, exponent))
        except (ValueError, OverflowError, ZeroDivisionError):
            pass
    return _intern("pow", (a,), exponent)


_REBUILD = {
    "add": add, "mul": mul, "div": div, "neg": neg,
    "sin": sin, "cos": cos, "tan": tan, "exp": exp, "log": log, "sqrt": sqrt,
}

_UFUNCS = {
    "add": add,
    "subtract": sub,
    "multiply": mul,
    "true_divide": div,
    "divide": div,
    "negative": neg,
    "positive": lambda a: a,
    "sin": sin,
    "cos": cos,
    "tan": tan,
    "exp": exp,
    "log": log,
    "sqrt": sqrt,
    "square": lambda a: mul(a, a),
    "power": lambda a, b: a ** b,
}


# ============================================================================
# GRAPH PASSES
# ============================================================================

def postorder(roots: Sequence[Expr]) -> Iterator[Expr]:
    """Yield every node reachable from `roots` once, children first"""
    seen = set()
    for root in roots:
        if id(root) in seen:
            continue
        stack = [(root, False)]
        while stack:
            node, expanded = stack.pop()
            if expanded:
                yield node
                continue
            if id(node) in seen:
                continue
            seen.add(id(node))
            stack.append((node, True))
            for child in reversed(node.args):
                if id(child) not in seen:
                    stack.append((child, False))


def _tangent_rule(node: Expr, d: Dict[int, Expr], seeds: Dict[int, Expr]) -> Expr:
    op = node.op
    if op == "const":
        return ZERO
    if op == "var":
        return seeds.get(id(node), ZERO)
    a = node.args[0]
    da = d[id(a)]
    if op == "add":
        return add(da, d[id(node.args[1])])
    if op == "neg":
        return neg(da)
    if op == "mul":
        b = node.args[1]
        return add(mul(da, b), mul(a, d[id(b)]))
    if op == "div":
        b = node.args[1]
        db = d[id(b)]
        # (a/b)' = (a' - (a/b) b') / b
        return div(sub(da, mul(node, db)), b)
    if _is(da, 0.0):
        return ZERO
    if op == "sin":
        return mul(cos(a), da)
    if op == "cos":
        return neg(mul(sin(a), da))
    if op == "tan":
        c = cos(a)
        return div(da, mul(c, c))
    if op == "exp":
        return mul(node, da)
    if op == "log":
        return div(da, a)
    if op == "sqrt":
        return div(da, mul(const(2.0), node))
    if op == "pow":
        return mul(mul(const(node.value), power(a, node.value - 1.0)), da)
    raise UnsupportedOperation(f"no derivative rule for {op}")


def tangents(outputs: Sequence[Expr], seeds: Dict[int, Expr]) -> List[Expr]:
    """
    Forward-mode derivative of `outputs` along the seeded variables.

    Args:
        outputs: expressions to differentiate
        seeds: id(var) -> tangent of that variable

    Returns:
        One tangent expression per output
    """
    d: Dict[int, Expr] = {}
    for node in postorder(outputs):
        d[id(node)] = _tangent_rule(node, d, seeds)
    return [d[id(o)] for o in outputs]


def substitute(outputs: Sequence[Expr], mapping: Dict[int, Expr]) -> List[Expr]:
    """Replace variables (by id) with expressions, refolding constants"""
    new: Dict[int, Expr] = {}
    for node in postorder(outputs):
        if node.op == "var":
            new[id(node)] = mapping.get(id(node), node)
        elif node.op == "const":
            new[id(node)] = node
        else:
            args = tuple(new[id(a)] for a in node.args)
            if all(x is y for x, y in zip(args, node.args)):
                new[id(node)] = node
            elif node.op == "pow":
                new[id(node)] = power(args[0], node.value)
            else:
                new[id(node)] = _REBUILD[node.op](*args)
    return [new[id(o)] for o in outputs]


def count_nodes(outputs: Sequence[Expr]) -> int:
    return sum(1 for _ in postorder(outputs))


# ============================================================================
# CODE GENERATION
# ============================================================================

_TEMPLATES = {
    "add": "{0} + {1}",
    "mul": "{0} * {1}",
    "div": "{0} / {1}",
    "neg": "-{0}",
    "sin": "_sin({0})",
    "cos": "_cos({0})",
    "tan": "_tan({0})",
    "exp": "_exp({0})",
    "log": "_log({0})",
    "sqrt": "_sqrt({0})",
}


def compile_function(outputs: Sequence[Expr], inputs: Sequence[Expr],
                     name: str = "compiled") -> Callable:
    """
    Compile expressions into a straight-line Python function.

    The result has signature ``f(x, out)``: it reads variable values from the
    sequence ``x`` (ordered like ``inputs``), writes output ``i`` into
    ``out[i]`` and returns ``out``.

    Args:
        outputs: expressions to evaluate
        inputs: variables, in the order their values appear in ``x``
        name: name of the generated function (shows up in tracebacks)

    Returns:
        The compiled function
    """
    name = re.sub(r"\W", "_", name)
    if not name.isidentifier():
        name = "_" + name
    index = {id(v): i for i, v in enumerate(inputs)}
    constants: List[float] = []
    names: Dict[int, str] = {}
    lines = [f"def {name}(x, out):"]

    for k, node in enumerate(postorder(outputs)):
        ref = f"n{k}"
        if node.op == "var":
            if id(node) not in index:
                raise ValueError(f"free variable {node.value} in compiled expression")
            lines.append(f"    {ref} = x[{index[id(node)]}]")
        elif node.op == "const":
            constants.append(node.value)
            lines.append(f"    {ref} = _c[{len(constants) - 1}]")
        elif node.op == "pow":
            constants.append(node.value)
            lines.append(f"    {ref} = _pow({names[id(node.args[0])]}, _c[{len(constants) - 1}])")
        else:
            operands = [names[id(a)] for a in node.args]
            lines.append(f"    {ref} = " + _TEMPLATES[node.op].format(*operands))
        names[id(node)] = ref

    for i, o in enumerate(outputs):
        lines.append(f"    out[{i}] = {names[id(o)]}")
    lines.append("    return out")

    namespace = {
        "_c": tuple(constants),
        "_pow": math.pow,
        "_sin": math.sin,
        "_cos": math.cos,
        "_tan": math.tan,
        "_exp": math.exp,
        "_log": math.log,
        "_sqrt": math.sqrt,
    }
    source = "\n".join(lines)
    exec(compile(source, f"<mechanics_sketch:{name}>", "exec"), namespace)
    fn = namespace[name]
    fn.source = source
    return fn
