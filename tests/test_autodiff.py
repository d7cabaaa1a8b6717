"""Differentiation engine checked against sympy and closed forms."""

import math

import numpy as np
import pytest
import sympy as sp

from mechanics_sketch import expr as E
from mechanics_sketch.autodiff import (Derivative, LocalPartial, TotalTimeDerivative,
                                       derivative, directional_derivative, jvp,
                                       partial, trace)
from mechanics_sketch.errors import ShapeMismatch, UnsupportedOperation
from mechanics_sketch.generic import exp, log, sin, sqrt, square, tan
from mechanics_sketch.structure import down, up


def _mixed(x, y):
    return sin(x) * exp(y) + log(x) / sqrt(y) + tan(x * y) - x ** 3 / y


def test_first_derivatives_match_sympy() -> None:
    x, y = sp.symbols("x y")
    reference = sp.sin(x) * sp.exp(y) + sp.log(x) / sp.sqrt(y) + sp.tan(x * y) - x ** 3 / y
    point = {x: 0.7, y: 1.3}

    for index, symbol in enumerate((x, y)):
        expected = float(sp.diff(reference, symbol).subs(point))
        got = derivative(_mixed, index)(0.7, 1.3)
        assert np.isclose(got, expected, rtol=1e-12, atol=1e-12)


def test_nested_second_derivatives_match_sympy() -> None:
    x, y = sp.symbols("x y")
    reference = sp.sin(x) * sp.exp(y) + sp.log(x) / sp.sqrt(y) + sp.tan(x * y) - x ** 3 / y
    point = {x: 0.7, y: 1.3}

    d_xy = derivative(derivative(_mixed, 0), 1)
    d_xx = derivative(derivative(_mixed, 0), 0)
    assert np.isclose(d_xy(0.7, 1.3), float(sp.diff(reference, x, y).subs(point)), rtol=1e-10)
    assert np.isclose(d_xx(0.7, 1.3), float(sp.diff(reference, x, x).subs(point)), rtol=1e-10)


def test_structured_argument_gives_covariant_gradient() -> None:
    def f(q):
        return q[0] * q[0] * q[1]

    grad = derivative(f, 0)(up(2.0, 3.0))
    assert grad == down(12.0, 4.0)


def test_structured_output_partials() -> None:
    def f(t, q):
        return up(t * q[0], q[1] * q[1])

    d_t = derivative(f, 0)(2.0, up(3.0, 5.0))
    d_q = derivative(f, 1)(2.0, up(3.0, 5.0))
    assert d_t == up(3.0, 0.0)
    assert d_q == down(up(2.0, 0.0), up(0.0, 10.0))


def test_operator_form_and_jvp() -> None:
    def f(x):
        return square(x) * x

    assert partial(0)(f)(2.0) == 12.0
    assert np.isclose(jvp(lambda q: square(q), 0, (up(1.0, 2.0),), up(1.0, 1.0)), 6.0)


def test_derivative_is_cached_per_shape() -> None:
    d = Derivative(lambda q: square(q), 0)
    d(up(1.0, 2.0))
    d(up(3.0, 4.0))
    assert len(d._cache) == 1
    d(up(1.0, 2.0, 3.0))
    assert len(d._cache) == 2


def test_index_out_of_range() -> None:
    with pytest.raises(ShapeMismatch):
        derivative(lambda x: x, 1)(1.0)


def test_numpy_ufuncs_trace() -> None:
    assert np.isclose(derivative(lambda x: np.sin(x) * np.exp(x), 0)(0.0), 1.0)


def test_branching_is_unsupported() -> None:
    def branchy(x):
        if x > 0:
            return x
        return -x

    with pytest.raises(UnsupportedOperation):
        derivative(branchy, 0)(1.0)


def test_math_functions_are_unsupported() -> None:
    with pytest.raises(UnsupportedOperation):
        derivative(lambda x: math.sin(x), 0)(1.0)


def test_example_arguments_trace_at_construction() -> None:
    with pytest.raises(UnsupportedOperation):
        derivative(lambda x: math.sin(x), 0, 1.0)

    d = derivative(lambda x, y: x * x * y, 0, 1.0, 2.0)
    assert len(d._cache) == 1
    assert d(3.0, 2.0) == 12.0
    assert len(d._cache) == 1


def test_unsupported_numpy_ufunc() -> None:
    with pytest.raises(UnsupportedOperation):
        derivative(lambda x: np.abs(x), 0)(1.0)


def test_traced_exponent_is_unsupported() -> None:
    with pytest.raises(UnsupportedOperation):
        derivative(lambda x: 2.0 ** x, 0)(1.0)


def test_local_partials_of_a_lagrangian() -> None:
    def L(local):
        _, q, qdot = local
        return 0.5 * 2.0 * square(qdot) - 0.5 * 3.0 * square(q)

    state = up(0.0, up(1.0, 2.0), up(4.0, 5.0))
    assert LocalPartial(L, 2)(state) == down(8.0, 10.0)
    assert LocalPartial(L, 1)(state) == down(-3.0, -6.0)
    assert LocalPartial(L, 0)(state) == 0.0


def test_total_time_derivative() -> None:
    def f(local):
        t, q, qdot = local
        return t * q * qdot

    # d/dt (t q v) = q v + t v v + t q a
    got = TotalTimeDerivative(f)(up(2.0, 3.0, 5.0, 7.0))
    assert np.isclose(got, 3.0 * 5.0 + 2.0 * 5.0 * 5.0 + 2.0 * 3.0 * 7.0)

    with pytest.raises(ShapeMismatch):
        TotalTimeDerivative(f)(up(2.0, 3.0, 5.0))


def test_graph_is_hash_consed_and_folded() -> None:
    x = E.var("x")
    assert E.sin(x) is E.sin(x)
    assert (x * 1.0) is x
    assert (x + 0.0) is x
    assert (E.const(2.0) * 3.0).value == 6.0
    assert E.count_nodes([E.sin(x) + E.sin(x)]) == 3


def test_compiled_function_matches_substitution() -> None:
    x, y = E.var("x"), E.var("y")
    out = E.sin(x) * y + E.sqrt(y) / x
    fn = E.compile_function([out], [x, y], "d0_<lambda>")
    value = fn([0.5, 4.0], [0.0])[0]
    assert np.isclose(value, math.sin(0.5) * 4.0 + 2.0 / 0.5)

    folded = E.substitute([out], {id(x): E.const(0.5), id(y): E.const(4.0)})[0]
    assert folded.is_const
    assert np.isclose(folded.value, value)


def test_trace_records_graph() -> None:
    recorded = trace(lambda t, q: up(t * q[0], sin(q[1])), 0.0, up(0.0, 0.0))
    assert len(recorded.variables) == 3
    assert len(recorded.output_leaves) == 2
    assert directional_derivative(lambda q: q[0] * q[1], 0, (up(2.0, 3.0),), up(1.0, 0.0)) == 3.0
