import dataclasses
import math

import pytest

from lidarmap.messages import (
    CloudMessage,
    Header,
    ImuSample,
    Odometry,
    Quaternion,
    StampedTransform,
    Vector3,
)


def test_default_quaternion_is_identity():
    q = Quaternion()
    assert (q.x, q.y, q.z, q.w) == (0.0, 0.0, 0.0, 1.0)


def test_normalized_has_unit_norm():
    q = Quaternion(1.0, 2.0, -3.0, 4.0).normalized()
    assert math.sqrt(q.x**2 + q.y**2 + q.z**2 + q.w**2) == pytest.approx(1.0)


def test_normalized_keeps_direction():
    original = Quaternion(1.0, 2.0, -3.0, 4.0)
    q = original.normalized()
    assert q.y / q.x == pytest.approx(original.y / original.x)
    assert q.w / q.z == pytest.approx(original.w / original.z)


def test_normalized_unit_unchanged():
    q = Quaternion(0.0, 0.0, 0.0, 1.0).normalized()
    assert q == Quaternion()


def test_zero_quaternion_cannot_be_normalised():
    with pytest.raises(ValueError):
        Quaternion(0.0, 0.0, 0.0, 0.0).normalized()


def test_odometry_defaults():
    odom = Odometry()
    assert odom.position == Vector3(0.0, 0.0, 0.0)
    assert odom.orientation == Quaternion()
    assert odom.header.frame_id == ""


def test_messages_are_frozen():
    header = Header(stamp=1.5, frame_id="camera_init")
    with pytest.raises(dataclasses.FrozenInstanceError):
        header.stamp = 2.0
    assert header.stamp == 1.5


def test_stamped_transform_fields():
    t = StampedTransform(2.0, "camera_init", "camera", origin=Vector3(1.0, 2.0, 3.0))
    assert t.child_frame_id == "camera"
    assert t.origin.z == 3.0
    assert t.rotation == Quaternion()


def test_imu_and_cloud_messages_hold_data():
    imu = ImuSample(Header(3.0), Quaternion(0.0, 0.0, 1.0, 0.0))
    cloud = CloudMessage(Header(3.0, "camera_init"), [1, 2, 3])
    assert imu.header.stamp == cloud.header.stamp
    assert cloud.cloud == [1, 2, 3]