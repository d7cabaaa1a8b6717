"""Lifting position transforms to the local tuple and composing them."""

import numpy as np
import pytest

from mechanics_sketch.errors import ShapeMismatch
from mechanics_sketch.generic import cos, sin
from mechanics_sketch.scenes import double_pendulum_to_rect, elliptical_to_rect
from mechanics_sketch.structure import flatten, up
from mechanics_sketch.transforms import (Composition, TransformChain, compose,
                                         identity, promote)


def test_lifted_sine_velocity() -> None:
    lifted = promote(lambda local: sin(local[1]))
    t, q, qdot = lifted(up(0.0, 0.0, 1.0))
    assert t == 0.0
    assert q == 0.0
    assert qdot == 1.0


def test_lifted_polar_velocity_is_chain_rule() -> None:
    def polar_to_rect(local):
        _, (r, theta) = local
        return up(r * cos(theta), r * sin(theta))

    r, theta, rdot, thetadot = 2.0, 0.3, 0.5, 1.5
    _, pos, vel = promote(polar_to_rect)(up(0.0, up(r, theta), up(rdot, thetadot)))

    assert np.allclose(flatten(pos), [r * np.cos(theta), r * np.sin(theta)])
    expected = [rdot * np.cos(theta) - r * np.sin(theta) * thetadot,
                rdot * np.sin(theta) + r * np.cos(theta) * thetadot]
    assert np.allclose(flatten(vel), expected, rtol=1e-14)


def test_time_dependent_transform_adds_partial_t() -> None:
    lifted = promote(lambda local: local[1] + 3.0 * local[0])
    _, q, qdot = lifted(up(2.0, 1.0, 0.5))
    assert q == 7.0
    assert qdot == 3.5


def test_empty_composition_is_identity() -> None:
    state = up(1.0, up(2.0, 3.0), up(4.0, 5.0))
    assert compose()(state) == state
    assert TransformChain().lifted(state) == state
    assert TransformChain().coordinate(state) == up(2.0, 3.0)
    assert identity(state) is state


def test_composition_applies_right_to_left() -> None:
    f = Composition(lambda x: x + 1, lambda x: 2 * x)
    assert f(3) == 7
    assert len(f) == 2


def test_chain_applies_first_transform_first() -> None:
    chain = (TransformChain()
             .append(lambda local: 2.0 * local[1])
             .append(lambda local: local[1] + 1.0))
    assert chain.coordinate(up(0.0, 3.0)) == 7.0
    _, q, qdot = chain.lifted(up(0.0, 3.0, 1.0))
    assert q == 7.0
    assert qdot == 2.0


def test_chain_is_immutable() -> None:
    base = TransformChain()
    longer = base.append(lambda local: local[1])
    assert len(base) == 0
    assert len(longer) == 1


def test_lifted_position_and_coordinate_agree() -> None:
    chain = TransformChain().append(double_pendulum_to_rect(1.0, 2.0))
    state = up(0.0, up(0.4, -0.2), up(1.0, 2.0))
    _, lifted_q, _ = chain.lifted(state)
    assert np.allclose(flatten(lifted_q), flatten(chain.coordinate(state)))


def test_domain_mismatch_raises() -> None:
    lifted = promote(elliptical_to_rect(1.0, 2.0, 3.0), domain=up(0.0, 0.0))
    with pytest.raises(ShapeMismatch):
        lifted(up(0.0, up(1.0, 2.0, 3.0), up(0.0, 0.0, 0.0)))


def test_transform_reading_velocity_raises() -> None:
    lifted = promote(lambda local: local[1] * local[2])
    with pytest.raises(ShapeMismatch):
        lifted(up(0.0, 1.0, 1.0))


def test_transform_written_for_other_positions_raises() -> None:
    lifted = promote(elliptical_to_rect(1.0, 2.0, 3.0))
    with pytest.raises(ShapeMismatch):
        lifted(up(0.0, up(1.0, 2.0, 3.0), up(0.0, 0.0, 0.0)))


def test_declared_chain_fixes_every_domain() -> None:
    chain = (TransformChain()
             .append(double_pendulum_to_rect(1.0, 1.0))
             .append(lambda local: local[1][1])
             .declared(0.0, up(0.1, 0.2)))
    assert all(transform.checked for transform in chain)
    assert np.allclose(flatten(chain.coordinate(up(0.0, up(0.0, 0.0)))), [0.0, -2.0])
    with pytest.raises(ShapeMismatch):
        chain.lifted(up(0.0, up(0.1, 0.2, 0.3), up(0.0, 0.0, 0.0)))


def test_declared_chain_rejects_wrong_first_positions() -> None:
    chain = TransformChain().append(double_pendulum_to_rect(1.0, 1.0))
    with pytest.raises(ShapeMismatch):
        chain.declared(0.0, up(0.1, 0.2, 0.3))


def test_scalar_domain_is_checked() -> None:
    lifted = promote(lambda local: 2.0 * local[1], 0.0)
    assert lifted.checked
    assert lifted(up(0.0, 1.0, 1.0))[1] == 2.0
    with pytest.raises(ShapeMismatch):
        lifted(up(0.0, up(1.0), up(1.0)))
