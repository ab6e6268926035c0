"""Key frame storage and assembly of the local map used for scan matching."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, replace
from typing import Iterable, Iterator, Sequence

import numpy as np

from .cloud import PointCloud, Pose6D, transform_point_cloud
from .filters import KdTree, voxel_downsample
from .params import MappingConfig

_Clouds = tuple[PointCloud, PointCloud, PointCloud]


@dataclass
class KeyFrame:
    """A saved pose with the feature clouds observed from it, in the sensor frame."""

    pose: Pose6D
    corner: PointCloud
    surf: PointCloud
    outlier: PointCloud


def _in_map(frame: KeyFrame) -> _Clouds:
    return (
        transform_point_cloud(frame.corner, frame.pose),
        transform_point_cloud(frame.surf, frame.pose),
        transform_point_cloud(frame.outlier, frame.pose),
    )


def _concat(parts: list[np.ndarray]) -> PointCloud:
    return PointCloud(np.concatenate(parts)) if parts else PointCloud()


def _assemble(frames: Iterable[_Clouds]) -> tuple[PointCloud, PointCloud]:
    corner_parts: list[np.ndarray] = []
    surf_parts: list[np.ndarray] = []
    for corner, surf, outlier in frames:
        corner_parts.append(corner.data)
        surf_parts.append(surf.data)
        surf_parts.append(outlier.data)
    return _concat(corner_parts), _concat(surf_parts)


class KeyFrameStore:
    """All key frames of a run, plus caches of the frames forming the local map."""

    def __init__(self, mapping: MappingConfig | None = None) -> None:
        self.mapping = mapping if mapping is not None else MappingConfig()
        self._frames: list[KeyFrame] = []
        self._recent: deque[_Clouds] = deque()
        self._latest_frame_id = 0
        self._surrounding: dict[int, _Clouds] = {}

    def __len__(self) -> int:
        return len(self._frames)

    def __getitem__(self, index: int) -> KeyFrame:
        return self._frames[index]

    def __iter__(self) -> Iterator[KeyFrame]:
        return iter(self._frames)

    def add(self, pose: Pose6D, corner: PointCloud, surf: PointCloud,
            outlier: PointCloud) -> KeyFrame:
        """Store copies of the clouds; the pose's intensity becomes the frame index."""
        frame = KeyFrame(
            pose=replace(pose, intensity=float(len(self._frames))),
            corner=corner.copy(),
            surf=surf.copy(),
            outlier=outlier.copy(),
        )
        self._frames.append(frame)
        return frame

    def positions(self) -> PointCloud:
        """Key frame positions, with each frame's index as intensity."""
        if not self._frames:
            return PointCloud()
        return PointCloud([(f.pose.x, f.pose.y, f.pose.z, f.pose.intensity) for f in self._frames])

    def recent_map(self) -> tuple[PointCloud, PointCloud]:
        """Corner and surface map built from the most recent key frames."""
        if not self._frames:
            return PointCloud(), PointCloud()
        limit = self.mapping.surrounding_keyframe_search_num
        if len(self._recent) < limit:
            self._recent.clear()
            for frame in reversed(self._frames):
                self._recent.appendleft(_in_map(frame))
                if len(self._recent) >= limit:
                    break
        elif self._latest_frame_id != len(self._frames) - 1:
            self._recent.popleft()
            self._latest_frame_id = len(self._frames) - 1
            self._recent.append(_in_map(self._frames[-1]))
        return _assemble(self._recent)

    def surrounding_map(self, position: Sequence[float]) -> tuple[PointCloud, PointCloud]:
        """Corner and surface map built from key frames near the given position."""
        if not self._frames:
            return PointCloud(), PointCloud()
        positions = self.positions()
        indices, _ = KdTree(positions).radius_search(
            position, self.mapping.surrounding_keyframe_search_radius
        )
        nearby = voxel_downsample(positions[indices], self.mapping.surrounding_keyposes_leaf_size)
        wanted = [int(value) for value in nearby.intensity]
        wanted_set = set(wanted)
        for key in [key for key in self._surrounding if key not in wanted_set]:
            del self._surrounding[key]
        for key in wanted:
            if key not in self._surrounding:
                self._surrounding[key] = _in_map(self._frames[key])
        return _assemble(self._surrounding.values())

    def clear_recent(self) -> None:
        """Forget the recent-frame cache so it is rebuilt from the current poses."""
        self._recent.clear()