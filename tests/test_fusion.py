import pytest

from lidarmap.fusion import TransformFusion
from lidarmap.messages import Header, Odometry, Vector3
from lidarmap.rotation import odometry_to_transform, transform_to_orientation


def _odometry(transform, stamp=0.0, bef=None):
    angular = Vector3(*bef[:3]) if bef else Vector3()
    linear = Vector3(*bef[3:]) if bef else Vector3()
    return Odometry(
        header=Header(stamp=stamp, frame_id="camera_init"),
        orientation=transform_to_orientation(transform),
        position=Vector3(*transform[3:]),
        angular=angular,
        linear=linear,
    )


def test_without_correction_odometry_passes_through():
    fusion = TransformFusion()
    current = (0.1, 0.2, -0.3, 1.0, 2.0, 3.0)
    odom, _ = fusion.laser_odometry_handler(_odometry(current, stamp=5.0))
    result = odometry_to_transform(odom.orientation, odom.position)
    assert result == pytest.approx(current, abs=1e-9)


def test_output_frames_and_stamp():
    fusion = TransformFusion()
    odom, tf = fusion.laser_odometry_handler(_odometry((0.0,) * 6, stamp=12.5))
    assert odom.header.frame_id == "camera_init"
    assert odom.child_frame_id == "camera"
    assert (tf.frame_id, tf.child_frame_id) == ("camera_init", "camera")
    assert odom.header.stamp == tf.stamp == 12.5


def test_transform_matches_odometry():
    fusion = TransformFusion()
    odom, tf = fusion.laser_odometry_handler(_odometry((0.3, -0.1, 0.2, 4.0, 0.5, -1.0)))
    assert tf.rotation == odom.orientation
    assert tf.origin == odom.position


def test_aft_mapped_handler_stores_transforms():
    fusion = TransformFusion()
    aft = (0.1, 0.2, -0.3, 1.0, 2.0, 3.0)
    bef = (0.05, -0.1, 0.2, 4.0, 5.0, 6.0)
    fusion.odom_aft_mapped_handler(_odometry(aft, bef=bef))
    assert fusion.transform_aft_mapped == pytest.approx(aft, abs=1e-9)
    assert fusion.transform_bef_mapped == pytest.approx(bef)


def test_correction_applied_when_odometry_has_not_moved():
    fusion = TransformFusion()
    aft = (0.1, 0.2, -0.3, 1.0, 2.0, 3.0)
    bef = (0.05, -0.1, 0.2, 4.0, 5.0, 6.0)
    fusion.odom_aft_mapped_handler(_odometry(aft, bef=bef))
    odom, _ = fusion.laser_odometry_handler(_odometry(bef, stamp=1.0))
    result = odometry_to_transform(odom.orientation, odom.position)
    assert result == pytest.approx(aft, abs=1e-9)
    assert fusion.transform_mapped == pytest.approx(aft, abs=1e-9)


def test_current_header_is_recorded():
    fusion = TransformFusion()
    msg = _odometry((0.0,) * 6, stamp=42.0)
    fusion.laser_odometry_handler(msg)
    assert fusion.current_header == msg.header