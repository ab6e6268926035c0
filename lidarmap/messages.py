"""Plain message types exchanged between the odometry and mapping stages."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class Quaternion:
    """Rotation quaternion with components x, y, z, w."""

    x: float = 0.0
    y: float = 0.0
    z: float = 0.0
    w: float = 1.0

    def normalized(self) -> Quaternion:
        """Return the unit quaternion pointing the same way."""
        norm = math.sqrt(self.x**2 + self.y**2 + self.z**2 + self.w**2)
        if norm == 0.0:
            raise ValueError("cannot normalise a zero quaternion")
        return Quaternion(self.x / norm, self.y / norm, self.z / norm, self.w / norm)


@dataclass(frozen=True)
class Vector3:
    """Three-component vector."""

    x: float = 0.0
    y: float = 0.0
    z: float = 0.0


@dataclass(frozen=True)
class Header:
    """Time stamp in seconds and coordinate frame name."""

    stamp: float = 0.0
    frame_id: str = ""


@dataclass(frozen=True)
class Odometry:
    """Pose with twist; mapping reuses the twist to carry the pre-mapping transform."""

    header: Header = field(default_factory=Header)
    child_frame_id: str = ""
    orientation: Quaternion = field(default_factory=Quaternion)
    position: Vector3 = field(default_factory=Vector3)
    angular: Vector3 = field(default_factory=Vector3)
    linear: Vector3 = field(default_factory=Vector3)


@dataclass(frozen=True)
class StampedTransform:
    """Transform between two named frames at a given time."""

    stamp: float
    frame_id: str
    child_frame_id: str
    rotation: Quaternion = field(default_factory=Quaternion)
    origin: Vector3 = field(default_factory=Vector3)


@dataclass(frozen=True)
class ImuSample:
    """Orientation reading of an inertial sensor."""

    header: Header = field(default_factory=Header)
    orientation: Quaternion = field(default_factory=Quaternion)


@dataclass(frozen=True)
class CloudMessage:
    """Point cloud carried together with its header."""

    header: Header
    cloud: Any