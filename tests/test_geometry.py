import math

import pytest

from plantsurveyor.geometry import Position


def test_arithmetic_is_component_wise():
    a = Position(1.0, 2.0, 3.0)
    b = Position(0.5, -1.0, 2.0)
    assert a + b == Position(1.5, 1.0, 5.0)
    assert a - b == Position(0.5, 3.0, 1.0)
    assert -a == Position(-1.0, -2.0, -3.0)


def test_magnitude_and_distance():
    assert Position(3.0, 4.0, 0.0).magnitude() == 5.0
    assert Position(1.0, 1.0, 1.0).distance_to(Position(1.0, 1.0, 3.0)) == 2.0
    assert Position.zero().magnitude() == 0.0


def test_from_sequence_requires_three_numbers():
    assert Position.from_sequence([1, 2, 3]) == Position(1.0, 2.0, 3.0)
    with pytest.raises(ValueError):
        Position.from_sequence([1, 2])
    with pytest.raises(ValueError):
        Position.from_sequence(["a", 2, 3])


def test_is_finite_rejects_nan_and_inf():
    assert Position(0.0, 1.0, 2.0).is_finite()
    assert not Position(math.nan, 0.0, 0.0).is_finite()
    assert not Position(0.0, math.inf, 0.0).is_finite()


def test_isclose_uses_absolute_tolerance():
    assert Position(1.0, 1.0, 1.0).isclose(Position(1.000001, 1.0, 1.0))
    assert not Position(1.0, 1.0, 1.0).isclose(Position(1.001, 1.0, 1.0))


def test_adding_non_position_is_rejected():
    with pytest.raises(TypeError):
        Position(1.0, 2.0, 3.0) + (1.0, 2.0, 3.0)
