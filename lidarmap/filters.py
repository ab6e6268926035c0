"""Voxel-grid downsampling and nearest-neighbour search over point clouds."""

from __future__ import annotations

from typing import Sequence, Union

import numpy as np
from scipy.spatial import cKDTree

from .cloud import PointCloud

LeafSize = Union[float, Sequence[float]]

_MAX_VOXELS = np.iinfo(np.int32).max


def _leaf_triplet(leaf_size: LeafSize) -> tuple[float, float, float]:
    if np.isscalar(leaf_size):
        values = (float(leaf_size),) * 3
    else:
        values = tuple(float(v) for v in leaf_size)
        if len(values) != 3:
            raise ValueError("leaf size must be one value or three values")
    if any(not v > 0.0 for v in values):
        raise ValueError("leaf size must be positive")
    return values  # type: ignore[return-value]


def voxel_downsample(cloud: PointCloud, leaf_size: LeafSize) -> PointCloud:
    """Replace the points of each occupied voxel by their mean (all fields averaged).

    Points with non-finite coordinates are dropped. Output is ordered by voxel
    index. If the grid would have too many voxels the input is returned unchanged.
    """
    leaf = _leaf_triplet(leaf_size)
    data = cloud.data
    finite = np.isfinite(data[:, :3]).all(axis=1)
    pts = data[finite].astype(np.float64)
    if len(pts) == 0:
        return PointCloud()

    inverse_leaf = 1.0 / np.asarray(leaf, dtype=np.float64)
    scaled = pts[:, :3] * inverse_leaf
    min_b = np.floor(scaled.min(axis=0)).astype(np.int64)
    max_b = np.floor(scaled.max(axis=0)).astype(np.int64)
    dims = [int(v) for v in (max_b - min_b + 1)]
    if dims[0] * dims[1] * dims[2] > _MAX_VOXELS:
        return cloud.copy()

    ijk = np.floor(scaled).astype(np.int64) - min_b
    index = ijk[:, 0] + ijk[:, 1] * dims[0] + ijk[:, 2] * dims[0] * dims[1]
    _, inverse = np.unique(index, return_inverse=True)
    inverse = inverse.ravel()
    groups = int(inverse.max()) + 1
    sums = np.zeros((groups, 4), dtype=np.float64)
    np.add.at(sums, inverse, pts)
    counts = np.bincount(inverse, minlength=groups).astype(np.float64)
    return PointCloud(sums / counts[:, None])


class VoxelGrid:
    """Reusable voxel-grid filter with a fixed leaf size."""

    def __init__(self, leaf_size: LeafSize) -> None:
        self.leaf_size = _leaf_triplet(leaf_size)

    def filter(self, cloud: PointCloud) -> PointCloud:
        """Return the downsampled cloud."""
        return voxel_downsample(cloud, self.leaf_size)


class KdTree:
    """Nearest-neighbour index over the coordinates of a point cloud."""

    def __init__(self, cloud: PointCloud) -> None:
        self._count = len(cloud)
        self._tree = cKDTree(cloud.xyz.astype(np.float64)) if self._count else None

    def __len__(self) -> int:
        return self._count

    @staticmethod
    def _query_point(point) -> np.ndarray:
        arr = np.asarray(point, dtype=np.float64).ravel()
        if arr.size < 3:
            raise ValueError("query point needs three coordinates")
        return arr[:3]

    def nearest_k(self, point, k: int) -> tuple[np.ndarray, np.ndarray]:
        """Indices and squared distances of the k nearest points, closest first."""
        if k <= 0:
            raise ValueError("k must be positive")
        query = self._query_point(point)
        count = min(k, self._count)
        if count == 0:
            return np.empty(0, dtype=np.int64), np.empty(0, dtype=np.float64)
        distances, indices = self._tree.query(query, k=count)
        distances = np.atleast_1d(distances).astype(np.float64)
        indices = np.atleast_1d(indices).astype(np.int64)
        return indices, distances**2

    def radius_search(self, point, radius: float) -> tuple[np.ndarray, np.ndarray]:
        """Indices and squared distances of all points within radius, closest first."""
        if radius < 0:
            raise ValueError("radius must not be negative")
        query = self._query_point(point)
        if self._count == 0:
            return np.empty(0, dtype=np.int64), np.empty(0, dtype=np.float64)
        indices = np.asarray(self._tree.query_ball_point(query, radius), dtype=np.int64)
        if indices.size == 0:
            return indices, np.empty(0, dtype=np.float64)
        diff = self._tree.data[indices] - query
        sq = np.einsum("ij,ij->i", diff, diff)
        order = np.argsort(sq, kind="stable")
        return indices[order], sq[order]