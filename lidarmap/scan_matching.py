"""Edge and plane correspondences against the local map and the Gauss-Newton update."""

from __future__ import annotations

import math
from typing import Sequence

import numpy as np

from .cloud import PointCloud, Pose6D, transform_point_cloud
from .filters import KdTree
from .rotation import Transform

NEIGHBOURS = 5
MAX_NEIGHBOUR_SQ_DIST = 1.0
MIN_WEIGHT = 0.1
PLANE_TOLERANCE = 0.2
MIN_CORRESPONDENCES = 50
EIGEN_THRESHOLD = 100.0
CONVERGENCE_ROTATION_DEG = 0.05
CONVERGENCE_TRANSLATION_CM = 0.05


def _to_map(points: PointCloud, transform: Sequence[float]) -> np.ndarray:
    return transform_point_cloud(points, Pose6D.from_transform(transform)).xyz.astype(np.float64)


def _neighbours(kdtree: KdTree, point: np.ndarray):
    indices, sq = kdtree.nearest_k(point, NEIGHBOURS)
    if len(sq) < NEIGHBOURS or not sq[NEIGHBOURS - 1] < MAX_NEIGHBOUR_SQ_DIST:
        return None
    return indices


def _result(points: PointCloud, kept: list[int], coeffs: list[tuple[float, ...]]):
    selected = points[np.asarray(kept, dtype=np.int64)]
    return selected, PointCloud(np.asarray(coeffs, dtype=np.float64).reshape(-1, 4))


def corner_coefficients(points: PointCloud, map_corners: PointCloud, kdtree: KdTree,
                        transform: Sequence[float]) -> tuple[PointCloud, PointCloud]:
    """Match scan points to edge lines of the map.

    Returns the matched original points and, for each, the weighted line
    normal (x, y, z) with the weighted distance as intensity.
    """
    selected = _to_map(points, transform)
    map_xyz = map_corners.xyz.astype(np.float64)
    kept: list[int] = []
    coeffs: list[tuple[float, ...]] = []
    for index, (x0, y0, z0) in enumerate(selected):
        neighbours = _neighbours(kdtree, (x0, y0, z0))
        if neighbours is None:
            continue
        near = map_xyz[neighbours]
        centre = near.mean(axis=0)
        diff = near - centre
        covariance = diff.T @ diff / NEIGHBOURS
        values, vectors = np.linalg.eigh(covariance)
        if not values[2] > 3.0 * values[1]:
            continue
        direction = vectors[:, 2]
        x1, y1, z1 = centre + 0.1 * direction
        x2, y2, z2 = centre - 0.1 * direction

        cross_xy = (x0 - x1) * (y0 - y2) - (x0 - x2) * (y0 - y1)
        cross_xz = (x0 - x1) * (z0 - z2) - (x0 - x2) * (z0 - z1)
        cross_yz = (y0 - y1) * (z0 - z2) - (y0 - y2) * (z0 - z1)
        a012 = math.sqrt(cross_xy * cross_xy + cross_xz * cross_xz + cross_yz * cross_yz)
        l12 = math.sqrt((x1 - x2) ** 2 + (y1 - y2) ** 2 + (z1 - z2) ** 2)
        if a012 == 0.0 or l12 == 0.0:
            continue

        la = ((y1 - y2) * cross_xy + (z1 - z2) * cross_xz) / a012 / l12
        lb = -((x1 - x2) * cross_xy - (z1 - z2) * cross_yz) / a012 / l12
        lc = -((x1 - x2) * cross_xz + (y1 - y2) * cross_yz) / a012 / l12
        ld2 = a012 / l12

        s = 1.0 - 0.9 * abs(ld2)
        if s > MIN_WEIGHT:
            kept.append(index)
            coeffs.append((s * la, s * lb, s * lc, s * ld2))
    return _result(points, kept, coeffs)


def surf_coefficients(points: PointCloud, map_surfs: PointCloud, kdtree: KdTree,
                      transform: Sequence[float]) -> tuple[PointCloud, PointCloud]:
    """Match scan points to planes of the map.

    Returns the matched original points and, for each, the weighted plane
    normal (x, y, z) with the weighted signed distance as intensity.
    """
    selected = _to_map(points, transform)
    map_xyz = map_surfs.xyz.astype(np.float64)
    rhs = -np.ones(NEIGHBOURS)
    kept: list[int] = []
    coeffs: list[tuple[float, ...]] = []
    for index, point in enumerate(selected):
        neighbours = _neighbours(kdtree, point)
        if neighbours is None:
            continue
        near = map_xyz[neighbours]
        normal = np.linalg.lstsq(near, rhs, rcond=None)[0]
        norm = float(np.linalg.norm(normal))
        if norm == 0.0:
            continue
        normal = normal / norm
        offset = 1.0 / norm
        if np.any(np.abs(near @ normal + offset) > PLANE_TOLERANCE):
            continue

        distance = float(normal @ point + offset)
        range_root = math.sqrt(float(np.linalg.norm(point)))
        if range_root == 0.0:
            continue
        s = 1.0 - 0.9 * abs(distance) / range_root
        if s > MIN_WEIGHT:
            kept.append(index)
            pa, pb, pc = normal
            coeffs.append((s * pa, s * pb, s * pc, s * distance))
    return _result(points, kept, coeffs)


class LMSolver:
    """One linearised least-squares step of scan-to-map registration.

    On the first iteration the normal matrix is checked for weak directions;
    while the problem stays degenerate, updates along them are removed.
    """

    def __init__(self) -> None:
        self.is_degenerate = False
        self.projection = np.zeros((6, 6))

    def step(self, points: PointCloud, coeffs: PointCloud, transform: Sequence[float],
             iter_count: int) -> tuple[Transform, bool]:
        """Return the updated transform and whether the step was small enough to stop."""
        current = np.array([float(v) for v in transform])
        if current.shape != (6,):
            raise ValueError(f"transform must have six components, got {current.size}")
        if len(points) != len(coeffs):
            raise ValueError("every point needs one coefficient")
        if len(points) < MIN_CORRESPONDENCES:
            return tuple(float(v) for v in current), False  # type: ignore[return-value]

        srx, crx = math.sin(current[0]), math.cos(current[0])
        sry, cry = math.sin(current[1]), math.cos(current[1])
        srz, crz = math.sin(current[2]), math.cos(current[2])

        x, y, z = points.xyz.astype(np.float64).T
        cx, cy, cz, ci = coeffs.data.astype(np.float64).T

        arx = ((crx * sry * srz * x + crx * crz * sry * y - srx * sry * z) * cx
               + (-srx * srz * x - crz * srx * y - crx * z) * cy
               + (crx * cry * srz * x + crx * cry * crz * y - cry * srx * z) * cz)
        ary = (((cry * srx * srz - crz * sry) * x
                + (sry * srz + cry * crz * srx) * y + crx * cry * z) * cx
               + ((-cry * crz - srx * sry * srz) * x
                  + (cry * srz - crz * srx * sry) * y - crx * sry * z) * cz)
        arz = (((crz * srx * sry - cry * srz) * x + (-cry * crz - srx * sry * srz) * y) * cx
               + (crx * crz * x - crx * srz * y) * cy
               + ((sry * srz + cry * crz * srx) * x + (crz * sry - cry * srx * srz) * y) * cz)

        jacobian = np.column_stack([arx, ary, arz, cx, cy, cz])
        ata = jacobian.T @ jacobian
        atb = jacobian.T @ (-ci)
        delta = np.linalg.lstsq(ata, atb, rcond=None)[0]

        if iter_count == 0:
            values, vectors = np.linalg.eigh(ata)
            values = values[::-1]
            rows = vectors[:, ::-1].T.copy()
            reduced = rows.copy()
            self.is_degenerate = False
            for i in reversed(range(6)):
                if values[i] >= EIGEN_THRESHOLD:
                    break
                reduced[i] = 0.0
                self.is_degenerate = True
            self.projection = np.linalg.inv(rows) @ reduced

        if self.is_degenerate:
            delta = self.projection @ delta

        current += delta
        delta_r = float(np.linalg.norm(np.degrees(delta[:3])))
        delta_t = float(np.linalg.norm(delta[3:] * 100.0))
        converged = delta_r < CONVERGENCE_ROTATION_DEG and delta_t < CONVERGENCE_TRANSLATION_CM
        return tuple(float(v) for v in current), converged  # type: ignore[return-value]