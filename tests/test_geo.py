"""
Unit tests for distance, bearing and reciprocity helpers.
"""

import pytest

from spidaqc.geo import (
    are_angles_opposite,
    are_distances_close,
    bearing_degrees,
    direction_similarity,
    haversine_m,
    is_point_along_direction,
    midpoint,
    squared_coordinate_distance,
)
from spidaqc.models import Coordinates, Measurement


@pytest.mark.parametrize("a", [0.0, 45.0, 90.0, 135.5, 200.0, 359.0])
def test_angle_and_its_reverse_are_opposite(a):
    assert are_angles_opposite(a, (a + 180) % 360)


def test_same_angle_is_not_opposite():
    for a in (0.0, 90.0, 270.0):
        assert not are_angles_opposite(a, a)


def test_opposite_across_zero_wrap():
    """358° and 178° are half a turn apart."""
    assert are_angles_opposite(358.0, 178.0)
    assert are_angles_opposite(2.0, 182.0)


def test_nearly_parallel_angles_across_wrap_are_not_opposite():
    # 358° and 2° differ by 4°, they point the same way
    assert not are_angles_opposite(358.0, 2.0)


def test_angle_tolerance_boundary():
    assert are_angles_opposite(0.0, 185.0)
    assert not are_angles_opposite(0.0, 186.0)
    assert are_angles_opposite(0.0, 186.0, tolerance=10.0)


def test_distances_within_five_percent():
    assert are_distances_close(Measurement(100.0), Measurement(104.0))
    assert not are_distances_close(Measurement(100.0), Measurement(110.0))


def test_distances_with_different_units_never_match():
    assert not are_distances_close(Measurement(100.0, "METRE"), Measurement(100.0, "FOOT"))


def test_missing_distance_never_matches():
    assert not are_distances_close(None, Measurement(10.0))
    assert not are_distances_close(Measurement(10.0), None)


def test_near_zero_distances_use_absolute_tolerance():
    assert are_distances_close(Measurement(0.001), Measurement(0.004))
    assert not are_distances_close(Measurement(0.0), Measurement(0.015))


def test_haversine_one_degree_of_latitude():
    assert haversine_m((0.0, 0.0), (1.0, 0.0)) == pytest.approx(111195, rel=1e-3)


def test_haversine_accepts_coordinates():
    p = Coordinates(35.0, -106.0)
    assert haversine_m(p, p) == 0.0


def test_squared_coordinate_distance_scaled_units():
    # 0.0001° = 10 units of 1e-5°
    assert squared_coordinate_distance((35.0, -106.0), (35.0001, -106.0)) == pytest.approx(100.0, rel=1e-6)


def test_squared_coordinate_distance_rounds_noise():
    assert squared_coordinate_distance((35.0, -106.0), (35.000001, -106.000001)) == 0.0


def test_bearing_due_east_and_north():
    assert bearing_degrees((0.0, 0.0), (0.0, 1.0)) == pytest.approx(90.0)
    assert bearing_degrees((0.0, 0.0), (1.0, 0.0)) == pytest.approx(0.0)


def test_direction_similarity_range():
    assert direction_similarity(10.0, 10.0) == 1.0
    assert direction_similarity(0.0, 180.0) == 0.0
    assert direction_similarity(350.0, 10.0) == pytest.approx(1 - 20 / 180)


def test_point_along_direction():
    origin, target = Coordinates(35.0, -106.0), Coordinates(35.0, -105.99)
    along, similarity = is_point_along_direction(origin, target, Coordinates(35.0001, -105.995))
    assert along and similarity > 0.9
    behind, _ = is_point_along_direction(origin, target, Coordinates(35.0, -106.01))
    assert not behind
    assert is_point_along_direction(None, target, origin) == (False, 0.0)


def test_midpoint():
    mid = midpoint(Coordinates(35.0, -106.0), Coordinates(35.0, -105.9995))
    assert mid.latitude == pytest.approx(35.0)
    assert mid.longitude == pytest.approx(-105.99975)
