"""Point-to-point iterative closest point alignment and rigid transform helpers."""

from __future__ import annotations

import math
from dataclasses import dataclass

import numpy as np
from scipy.spatial import cKDTree

from .cloud import PointCloud

_ABSOLUTE_MSE = 1e-12
_MIN_CORRESPONDENCES = 3


@dataclass(frozen=True)
class IcpResult:
    """Outcome of an alignment: final 4x4 transform, fitness and convergence flag."""

    converged: bool
    fitness_score: float
    transformation: np.ndarray
    iterations: int
    aligned: PointCloud


def transformation_matrix(x: float, y: float, z: float,
                          roll: float, pitch: float, yaw: float) -> np.ndarray:
    """4x4 transform: translation after rotation Rz(yaw) * Ry(pitch) * Rx(roll)."""
    cr, sr = math.cos(roll), math.sin(roll)
    cp, sp = math.cos(pitch), math.sin(pitch)
    cy, sy = math.cos(yaw), math.sin(yaw)
    m = np.eye(4)
    m[:3, :3] = [
        [cy * cp, cy * sp * sr - sy * cr, cy * sp * cr + sy * sr],
        [sy * cp, sy * sp * sr + cy * cr, sy * sp * cr - cy * sr],
        [-sp, cp * sr, cp * cr],
    ]
    m[:3, 3] = (x, y, z)
    return m


def translation_and_euler(matrix) -> tuple[float, float, float, float, float, float]:
    """Return (x, y, z, roll, pitch, yaw) of a 4x4 transform."""
    m = np.asarray(matrix, dtype=np.float64)
    if m.shape != (4, 4):
        raise ValueError(f"transform must be 4x4, got {m.shape}")
    roll = math.atan2(m[2, 1], m[2, 2])
    pitch = math.asin(max(-1.0, min(1.0, -m[2, 0])))
    yaw = math.atan2(m[1, 0], m[0, 0])
    return float(m[0, 3]), float(m[1, 3]), float(m[2, 3]), roll, pitch, yaw


def _rigid_fit(source: np.ndarray, target: np.ndarray) -> np.ndarray:
    cs = source.mean(axis=0)
    ct = target.mean(axis=0)
    h = (source - cs).T @ (target - ct)
    u, _, vt = np.linalg.svd(h)
    rotation = vt.T @ u.T
    if np.linalg.det(rotation) < 0:
        vt[-1] *= -1
        rotation = vt.T @ u.T
    result = np.eye(4)
    result[:3, :3] = rotation
    result[:3, 3] = ct - rotation @ cs
    return result


def _apply(points: np.ndarray, transform: np.ndarray) -> np.ndarray:
    return points @ transform[:3, :3].T + transform[:3, 3]


def _rotation_cosine(transform: np.ndarray) -> float:
    diagonal_sum = float(transform[0, 0] + transform[1, 1] + transform[2, 2])
    return 0.5 * (diagonal_sum - 1.0)


def align(source: PointCloud, target: PointCloud,
          max_correspondence_distance: float = math.sqrt(np.finfo(np.float64).max),
          max_iterations: int = 10,
          transformation_epsilon: float = 0.0,
          euclidean_fitness_epsilon: float = -math.inf) -> IcpResult:
    """Align source onto target, starting from the identity."""
    if len(source) == 0 or len(target) == 0:
        raise ValueError("source and target clouds must not be empty")
    if max_iterations <= 0:
        raise ValueError("max_iterations must be positive")
    if not max_correspondence_distance > 0:
        raise ValueError("max_correspondence_distance must be positive")

    src = source.xyz.astype(np.float64)
    tgt = target.xyz.astype(np.float64)
    tree = cKDTree(tgt)
    max_sq = max_correspondence_distance ** 2
    rotation_threshold = 1.0 - transformation_epsilon

    transform = np.eye(4)
    previous_mse = np.finfo(np.float64).max
    iterations = 0
    converged = False
    while True:
        moved = _apply(src, transform)
        distances, indices = tree.query(moved, k=1)
        sq = distances ** 2
        mask = sq <= max_sq
        if int(mask.sum()) < _MIN_CORRESPONDENCES:
            converged = False
            break
        delta = _rigid_fit(moved[mask], tgt[indices[mask]])
        transform = delta @ transform
        iterations += 1

        if iterations >= max_iterations:
            converged = True
            break
        cos_angle = _rotation_cosine(delta)
        translation_sq = float(np.dot(delta[:3, 3], delta[:3, 3]))
        if cos_angle >= rotation_threshold and translation_sq <= transformation_epsilon:
            converged = True
            break
        mse = float(sq[mask].mean())
        if abs(mse - previous_mse) < _ABSOLUTE_MSE:
            converged = True
            break
        if abs(mse - previous_mse) / previous_mse < euclidean_fitness_epsilon:
            converged = True
            break
        previous_mse = mse

    aligned_xyz = _apply(src, transform)
    final_distances, _ = tree.query(aligned_xyz, k=1)
    fitness = float(np.mean(final_distances ** 2))
    aligned = PointCloud(np.column_stack([aligned_xyz, source.intensity.astype(np.float64)]))
    return IcpResult(
        converged=converged,
        fitness_score=fitness,
        transformation=transform,
        iterations=iterations,
        aligned=aligned,
    )