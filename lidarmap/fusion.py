"""Fuses high-rate laser odometry with low-rate mapping corrections."""

from __future__ import annotations

from .messages import Header, Odometry, StampedTransform, Vector3
from .rotation import (
    Transform,
    odometry_to_transform,
    transform_associate_to_map,
    transform_to_orientation,
)

_ZERO: Transform = (0.0, 0.0, 0.0, 0.0, 0.0, 0.0)


class TransformFusion:
    """Keeps the latest mapping correction and applies it to each odometry pose."""

    frame_id = "camera_init"
    child_frame_id = "camera"

    def __init__(self) -> None:
        self.transform_sum: Transform = _ZERO
        self.transform_mapped: Transform = _ZERO
        self.transform_bef_mapped: Transform = _ZERO
        self.transform_aft_mapped: Transform = _ZERO
        self.current_header = Header()

    def laser_odometry_handler(self, msg: Odometry) -> tuple[Odometry, StampedTransform]:
        """Integrate one odometry message; return the fused odometry and its transform."""
        self.current_header = msg.header
        self.transform_sum = odometry_to_transform(msg.orientation, msg.position)
        self.transform_mapped = transform_associate_to_map(
            self.transform_sum, self.transform_bef_mapped, self.transform_aft_mapped
        )

        orientation = transform_to_orientation(self.transform_mapped)
        position = Vector3(*self.transform_mapped[3:])
        stamp = msg.header.stamp

        odometry = Odometry(
            header=Header(stamp=stamp, frame_id=self.frame_id),
            child_frame_id=self.child_frame_id,
            orientation=orientation,
            position=position,
        )
        transform = StampedTransform(
            stamp=stamp,
            frame_id=self.frame_id,
            child_frame_id=self.child_frame_id,
            rotation=orientation,
            origin=position,
        )
        return odometry, transform

    def odom_aft_mapped_handler(self, msg: Odometry) -> None:
        """Store the mapping result and the odometry pose it was computed from."""
        self.transform_aft_mapped = odometry_to_transform(msg.orientation, msg.position)
        self.transform_bef_mapped = (
            msg.angular.x,
            msg.angular.y,
            msg.angular.z,
            msg.linear.x,
            msg.linear.y,
            msg.linear.z,
        )