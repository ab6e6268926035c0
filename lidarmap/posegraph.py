"""Rotations, rigid poses and a pose graph optimised by Levenberg-Marquardt."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Mapping, Sequence, Union

import numpy as np
from scipy import sparse
from scipy.sparse.linalg import spsolve
from scipy.spatial.transform import Rotation

_JACOBIAN_STEP = 1e-7
_MAX_ITERATIONS = 30
_STEP_TOLERANCE = 1e-10
_COST_TOLERANCE = 1e-14


def _rot_x(angle: float) -> np.ndarray:
    c, s = math.cos(angle), math.sin(angle)
    return np.array([[1.0, 0.0, 0.0], [0.0, c, -s], [0.0, s, c]])


def _rot_y(angle: float) -> np.ndarray:
    c, s = math.cos(angle), math.sin(angle)
    return np.array([[c, 0.0, s], [0.0, 1.0, 0.0], [-s, 0.0, c]])


def _rot_z(angle: float) -> np.ndarray:
    c, s = math.cos(angle), math.sin(angle)
    return np.array([[c, -s, 0.0], [s, c, 0.0], [0.0, 0.0, 1.0]])


class Rot3:
    """A rotation in three dimensions, stored as a 3x3 matrix."""

    __slots__ = ("_matrix",)

    def __init__(self, matrix=None) -> None:
        m = np.eye(3) if matrix is None else np.array(matrix, dtype=np.float64)
        if m.shape != (3, 3):
            raise ValueError(f"rotation matrix must be 3x3, got {m.shape}")
        m.flags.writeable = False
        self._matrix = m

    @property
    def matrix(self) -> np.ndarray:
        """The read-only 3x3 rotation matrix."""
        return self._matrix

    @classmethod
    def from_rzryrx(cls, roll: float, pitch: float, yaw: float) -> Rot3:
        """Rotation Rz(yaw) * Ry(pitch) * Rx(roll)."""
        return cls(_rot_z(yaw) @ _rot_y(pitch) @ _rot_x(roll))

    @classmethod
    def _expmap(cls, omega: np.ndarray) -> Rot3:
        return cls(Rotation.from_rotvec(np.asarray(omega, dtype=np.float64)).as_matrix())

    def _logmap(self) -> np.ndarray:
        return Rotation.from_matrix(self._matrix).as_rotvec()

    def roll(self) -> float:
        """Angle about the x axis."""
        m = self._matrix
        return math.atan2(m[2, 1], m[2, 2])

    def pitch(self) -> float:
        """Angle about the y axis."""
        m = self._matrix
        return math.atan2(-m[2, 0], math.hypot(m[2, 1], m[2, 2]))

    def yaw(self) -> float:
        """Angle about the z axis."""
        m = self._matrix
        return math.atan2(m[1, 0], m[0, 0])

    def compose(self, other: Rot3) -> Rot3:
        """Rotation applying other first, then self."""
        return Rot3(self._matrix @ other._matrix)

    def inverse(self) -> Rot3:
        """The opposite rotation."""
        return Rot3(self._matrix.T)

    def __repr__(self) -> str:
        return f"Rot3(roll={self.roll():.6g}, pitch={self.pitch():.6g}, yaw={self.yaw():.6g})"


class Pose3:
    """A rigid transform: rotation followed by translation."""

    __slots__ = ("_rotation", "_translation")

    def __init__(self, rotation: Rot3 | None = None, translation=None) -> None:
        self._rotation = rotation if rotation is not None else Rot3()
        t = np.zeros(3) if translation is None else np.array(translation, dtype=np.float64).ravel()
        if t.shape != (3,):
            raise ValueError("translation must have three components")
        t.flags.writeable = False
        self._translation = t

    @property
    def rotation(self) -> Rot3:
        return self._rotation

    @property
    def translation(self) -> np.ndarray:
        return self._translation

    @property
    def matrix(self) -> np.ndarray:
        """Homogeneous 4x4 matrix of the pose."""
        m = np.eye(4)
        m[:3, :3] = self._rotation.matrix
        m[:3, 3] = self._translation
        return m

    def compose(self, other: Pose3) -> Pose3:
        """Pose applying other first, then self."""
        return Pose3(
            self._rotation.compose(other._rotation),
            self._translation + self._rotation.matrix @ other._translation,
        )

    def inverse(self) -> Pose3:
        inv = self._rotation.inverse()
        return Pose3(inv, -(inv.matrix @ self._translation))

    def between(self, other: Pose3) -> Pose3:
        """Relative pose from self to other: inverse(self) * other."""
        return self.inverse().compose(other)

    def _retract(self, delta: np.ndarray) -> Pose3:
        return self.compose(Pose3(Rot3._expmap(delta[:3]), delta[3:]))

    def _local(self, other: Pose3) -> np.ndarray:
        rel = self.between(other)
        return np.concatenate([rel.rotation._logmap(), rel.translation])

    def __repr__(self) -> str:
        t = self._translation
        return f"Pose3({self._rotation!r}, translation=({t[0]:.6g}, {t[1]:.6g}, {t[2]:.6g}))"


def _check_variances(variances: Sequence[float]) -> tuple[float, ...]:
    values = tuple(float(v) for v in variances)
    if len(values) != 6:
        raise ValueError(f"noise needs six variances, got {len(values)}")
    if any(not v > 0.0 for v in values):
        raise ValueError("variances must be positive")
    return values


@dataclass(frozen=True)
class PriorFactor:
    """Anchors one pose to a known value; variances ordered rotation then translation."""

    key: int
    prior: Pose3
    variances: Sequence[float] = (1.0,) * 6

    def __post_init__(self) -> None:
        object.__setattr__(self, "variances", _check_variances(self.variances))

    @property
    def keys(self) -> tuple[int, ...]:
        return (self.key,)

    def _whitened_error(self, values: Mapping[int, Pose3]) -> np.ndarray:
        error = self.prior._local(values[self.key])
        return error / np.sqrt(self.variances)


@dataclass(frozen=True)
class BetweenFactor:
    """Constrains the relative pose from key1 to key2 to the measured value."""

    key1: int
    key2: int
    measured: Pose3
    variances: Sequence[float] = (1.0,) * 6

    def __post_init__(self) -> None:
        object.__setattr__(self, "variances", _check_variances(self.variances))

    @property
    def keys(self) -> tuple[int, ...]:
        return (self.key1, self.key2)

    def _whitened_error(self, values: Mapping[int, Pose3]) -> np.ndarray:
        predicted = values[self.key1].between(values[self.key2])
        return self.measured._local(predicted) / np.sqrt(self.variances)


Factor = Union[PriorFactor, BetweenFactor]


class PoseGraph:
    """Accumulates pose factors and initial guesses and keeps an optimised estimate."""

    def __init__(self) -> None:
        self._factors: list[Factor] = []
        self._values: dict[int, Pose3] = {}
        self._pending_factors: list[Factor] = []
        self._pending_values: dict[int, Pose3] = {}

    def add(self, factor: Factor) -> None:
        """Queue a factor for the next update."""
        if not isinstance(factor, (PriorFactor, BetweenFactor)):
            raise TypeError(f"unsupported factor type {type(factor).__name__}")
        self._pending_factors.append(factor)

    def insert(self, key: int, pose: Pose3) -> None:
        """Queue the initial guess of a new pose."""
        if key in self._values or key in self._pending_values:
            raise KeyError(f"pose {key} already exists")
        if not isinstance(pose, Pose3):
            raise TypeError("initial value must be a Pose3")
        self._pending_values[key] = pose

    def update(self) -> None:
        """Add the queued factors and values, then re-optimise the whole graph."""
        known = set(self._values) | set(self._pending_values)
        for factor in self._pending_factors:
            missing = [key for key in factor.keys if key not in known]
            if missing:
                raise KeyError(f"factor refers to unknown pose {missing[0]}")
        self._values.update(self._pending_values)
        self._factors.extend(self._pending_factors)
        self._pending_values = {}
        self._pending_factors = []
        if self._factors:
            self._optimize()

    def estimate(self) -> dict[int, Pose3]:
        """Current optimised poses, ordered by key."""
        return dict(sorted(self._values.items()))

    def __len__(self) -> int:
        return len(self._values)

    def _cost(self, values: Mapping[int, Pose3]) -> float:
        return 0.5 * sum(float(np.dot(r, r)) for r in
                         (factor._whitened_error(values) for factor in self._factors))

    def _linearize(self, values: Mapping[int, Pose3], index: Mapping[int, int]):
        rows: list[int] = []
        cols: list[int] = []
        data: list[float] = []
        residuals: list[np.ndarray] = []
        row = 0
        for factor in self._factors:
            local = {key: values[key] for key in factor.keys}
            r0 = factor._whitened_error(local)
            residuals.append(r0)
            for key in factor.keys:
                base = local[key]
                col0 = index[key] * 6
                for dim in range(6):
                    step = np.zeros(6)
                    step[dim] = _JACOBIAN_STEP
                    plus = factor._whitened_error({**local, key: base._retract(step)})
                    minus = factor._whitened_error({**local, key: base._retract(-step)})
                    column = (plus - minus) / (2.0 * _JACOBIAN_STEP)
                    rows.extend(range(row, row + len(column)))
                    cols.extend([col0 + dim] * len(column))
                    data.extend(column.tolist())
            row += len(r0)
        jac = sparse.csr_matrix((data, (rows, cols)), shape=(row, len(index) * 6))
        return jac, np.concatenate(residuals)

    def _optimize(self) -> None:
        keys = sorted(self._values)
        index = {key: position for position, key in enumerate(keys)}
        values = dict(self._values)
        cost = self._cost(values)
        damping = 1e-5
        for _ in range(_MAX_ITERATIONS):
            jac, residual = self._linearize(values, index)
            hessian = (jac.T @ jac).tocsc()
            gradient = jac.T @ residual
            diag = hessian.diagonal() + 1e-9
            improved = False
            while damping < 1e10:
                system = (hessian + sparse.diags(damping * diag)).tocsc()
                step = np.atleast_1d(spsolve(system, -gradient))
                candidate = {
                    key: values[key]._retract(step[index[key] * 6:index[key] * 6 + 6])
                    for key in keys
                }
                new_cost = self._cost(candidate)
                if new_cost <= cost:
                    improved = True
                    damping = max(damping / 10.0, 1e-12)
                    break
                damping *= 10.0
            if not improved:
                break
            decrease = cost - new_cost
            values, cost = candidate, new_cost
            if np.linalg.norm(step) < _STEP_TOLERANCE or decrease <= _COST_TOLERANCE * max(cost, 1.0):
                break
        self._values = values