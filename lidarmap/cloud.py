"""Point clouds with intensity, six-degree-of-freedom poses and PCD output."""

from __future__ import annotations

import math
import os
from dataclasses import dataclass
from typing import Sequence, Union

import numpy as np

FIELDS = ("x", "y", "z", "intensity")


class PointCloud:
    """An ordered set of points, each holding x, y, z and intensity as float32."""

    __slots__ = ("_data",)

    def __init__(self, data=None) -> None:
        if data is None:
            arr = np.empty((0, 4), dtype=np.float32)
        else:
            arr = np.array(data, dtype=np.float32)
            if arr.size == 0:
                arr = arr.reshape(0, 4)
            if arr.ndim != 2 or arr.shape[1] not in (3, 4):
                raise ValueError(
                    f"point data must have shape (n, 3) or (n, 4), got {arr.shape}"
                )
            if arr.shape[1] == 3:
                arr = np.column_stack([arr, np.zeros(len(arr), dtype=np.float32)])
        self._data = np.ascontiguousarray(arr, dtype=np.float32)

    @property
    def data(self) -> np.ndarray:
        """The underlying (n, 4) array."""
        return self._data

    def __len__(self) -> int:
        return len(self._data)

    def __add__(self, other: object) -> PointCloud:
        if not isinstance(other, PointCloud):
            return NotImplemented
        return PointCloud(np.concatenate([self._data, other._data]))

    def __getitem__(self, index):
        if isinstance(index, (int, np.integer)):
            return self._data[index]
        return PointCloud(self._data[index])

    def __repr__(self) -> str:
        return f"PointCloud({len(self)} points)"

    @property
    def xyz(self) -> np.ndarray:
        """Coordinates as an (n, 3) array."""
        return self._data[:, :3]

    @property
    def intensity(self) -> np.ndarray:
        """Intensities as an (n,) array."""
        return self._data[:, 3]

    def copy(self) -> PointCloud:
        """Return an independent copy."""
        return PointCloud(self._data.copy())


@dataclass
class Pose6D:
    """Key pose: position, intensity (used as index), rotation angles and time."""

    x: float = 0.0
    y: float = 0.0
    z: float = 0.0
    intensity: float = 0.0
    roll: float = 0.0
    pitch: float = 0.0
    yaw: float = 0.0
    time: float = 0.0

    @classmethod
    def from_transform(cls, transform: Sequence[float]) -> Pose6D:
        """Build a pose from a transform [roll, pitch, yaw, x, y, z]."""
        values = [float(v) for v in transform]
        if len(values) != 6:
            raise ValueError(f"transform must have six components, got {len(values)}")
        roll, pitch, yaw, x, y, z = values
        return cls(x=x, y=y, z=z, roll=roll, pitch=pitch, yaw=yaw)

    def as_transform(self) -> tuple[float, float, float, float, float, float]:
        """Return the pose as a transform [roll, pitch, yaw, x, y, z]."""
        return (self.roll, self.pitch, self.yaw, self.x, self.y, self.z)


def transform_point_cloud(cloud: PointCloud, pose: Pose6D) -> PointCloud:
    """Rotate by yaw, then roll, then pitch, and translate every point; keep intensity."""
    pts = cloud.data.astype(np.float64)
    x, y, z = pts[:, 0], pts[:, 1], pts[:, 2]

    cy, sy = math.cos(pose.yaw), math.sin(pose.yaw)
    cr, sr = math.cos(pose.roll), math.sin(pose.roll)
    cp, sp = math.cos(pose.pitch), math.sin(pose.pitch)

    x1 = cy * x - sy * y
    y1 = sy * x + cy * y
    z1 = z

    y2 = cr * y1 - sr * z1
    z2 = sr * y1 + cr * z1

    out = np.empty_like(pts)
    out[:, 0] = cp * x1 + sp * z2 + pose.x
    out[:, 1] = y2 + pose.y
    out[:, 2] = -sp * x1 + cp * z2 + pose.z
    out[:, 3] = pts[:, 3]
    return PointCloud(out)


def save_pcd_ascii(path: Union[str, os.PathLike], cloud: PointCloud) -> None:
    """Write the cloud as an ASCII PCD file with fields x y z intensity."""
    count = len(cloud)
    header = [
        "# .PCD v0.7 - Point Cloud Data file format",
        "VERSION 0.7",
        "FIELDS " + " ".join(FIELDS),
        "SIZE 4 4 4 4",
        "TYPE F F F F",
        "COUNT 1 1 1 1",
        f"WIDTH {count}",
        "HEIGHT 1",
        "VIEWPOINT 0 0 0 1 0 0 0",
        f"POINTS {count}",
        "DATA ascii",
    ]
    with open(path, "w", encoding="ascii") as handle:
        handle.write("\n".join(header) + "\n")
        for row in cloud.data:
            handle.write(" ".join(f"{float(v):.8g}" for v in row) + "\n")