import math

import pytest

from lidarmap.messages import Quaternion, Vector3
from lidarmap.rotation import (
    odometry_to_transform,
    quaternion_from_rpy,
    rpy_from_quaternion,
    transform_associate_to_map,
    transform_to_orientation,
)

ANGLES = [(0.1, 0.2, 0.3), (-0.5, 0.4, 2.5), (1.2, -1.0, -3.0), (0.0, 0.0, 0.0)]


def test_identity_quaternion_has_zero_angles():
    assert rpy_from_quaternion(0.0, 0.0, 0.0, 1.0) == pytest.approx((0.0, 0.0, 0.0))


@pytest.mark.parametrize("rpy", ANGLES)
def test_rpy_round_trip(rpy):
    q = quaternion_from_rpy(*rpy)
    assert rpy_from_quaternion(q.x, q.y, q.z, q.w) == pytest.approx(rpy, abs=1e-9)


@pytest.mark.parametrize("rpy", ANGLES)
def test_quaternion_from_rpy_is_unit(rpy):
    q = quaternion_from_rpy(*rpy)
    assert q.x**2 + q.y**2 + q.z**2 + q.w**2 == pytest.approx(1.0)


def test_rpy_ignores_quaternion_scale():
    q = quaternion_from_rpy(0.3, -0.2, 1.1)
    scaled = rpy_from_quaternion(3 * q.x, 3 * q.y, 3 * q.z, 3 * q.w)
    assert scaled == pytest.approx((0.3, -0.2, 1.1))


def test_half_turn_about_z():
    q = quaternion_from_rpy(0.0, 0.0, math.pi)
    assert (q.x, q.y, q.z, q.w) == pytest.approx((0.0, 0.0, 1.0, 0.0), abs=1e-12)


def test_gimbal_lock_pitch():
    q = quaternion_from_rpy(0.0, math.pi / 2, 0.0)
    _, pitch, _ = rpy_from_quaternion(q.x, q.y, q.z, q.w)
    assert pitch == pytest.approx(math.pi / 2, abs=1e-6)


def test_zero_quaternion_raises():
    with pytest.raises(ValueError):
        rpy_from_quaternion(0.0, 0.0, 0.0, 0.0)


@pytest.mark.parametrize(
    "transform",
    [(0.1, 0.2, 0.3, 1.0, 2.0, 3.0), (-0.4, 2.0, -1.5, -5.0, 0.0, 7.5), (0.0,) * 6],
)
def test_orientation_round_trip(transform):
    q = transform_to_orientation(transform)
    result = odometry_to_transform(q, Vector3(*transform[3:]))
    assert result == pytest.approx(transform, abs=1e-9)


def test_transform_to_orientation_rejects_wrong_length():
    with pytest.raises(ValueError):
        transform_to_orientation((0.0, 0.0, 0.0))


def test_zero_transforms_give_aft_mapped():
    aft = (0.1, -0.2, 0.3, 4.0, 5.0, 6.0)
    result = transform_associate_to_map((0.0,) * 6, (0.0,) * 6, aft)
    assert result == pytest.approx(aft, abs=1e-9)


def test_no_drift_gives_aft_mapped():
    current = (0.05, 0.7, -0.2, 1.0, -2.0, 3.0)
    aft = (0.1, -0.2, 0.3, 4.0, 5.0, 6.0)
    result = transform_associate_to_map(current, current, aft)
    assert result == pytest.approx(aft, abs=1e-9)


def test_without_mapping_correction_sum_passes_through():
    current = (0.2, -0.6, 1.0, 3.0, 1.0, -4.0)
    result = transform_associate_to_map(current, (0.0,) * 6, (0.0,) * 6)
    assert result == pytest.approx(current, abs=1e-9)


def test_associate_rejects_wrong_length():
    with pytest.raises(ValueError):
        transform_associate_to_map((0.0,) * 5, (0.0,) * 6, (0.0,) * 6)


def test_odometry_to_transform_keeps_position():
    result = odometry_to_transform(Quaternion(), Vector3(1.5, -2.5, 3.5))
    assert result[3:] == (1.5, -2.5, 3.5)
    assert result[:3] == pytest.approx((0.0, 0.0, 0.0))