"""Ring buffer of inertial orientation readings and the roll/pitch blending step."""

from __future__ import annotations

from typing import Optional, Sequence

from .messages import ImuSample
from .rotation import Transform, rpy_from_quaternion

IMU_WEIGHT = 0.002


class ImuQueue:
    """Fixed-length ring of (time, roll, pitch) readings with a moving read pointer.

    The read pointer only moves forward, so queries are expected in
    non-decreasing time order, as they are during mapping.
    """

    def __init__(self, length: int = 200) -> None:
        if length <= 0:
            raise ValueError("queue length must be positive")
        self._length = length
        self._times = [0.0] * length
        self._rolls = [0.0] * length
        self._pitches = [0.0] * length
        self._front = 0
        self._last = -1

    @property
    def length(self) -> int:
        """Capacity of the ring."""
        return self._length

    @property
    def empty(self) -> bool:
        """True until the first reading arrives."""
        return self._last < 0

    def push(self, stamp: float, roll: float, pitch: float) -> None:
        """Store a reading, overwriting the oldest one when the ring is full."""
        self._last = (self._last + 1) % self._length
        self._times[self._last] = float(stamp)
        self._rolls[self._last] = float(roll)
        self._pitches[self._last] = float(pitch)

    def push_sample(self, sample: ImuSample) -> None:
        """Store the roll and pitch of an inertial message."""
        q = sample.orientation
        roll, pitch, _ = rpy_from_quaternion(q.x, q.y, q.z, q.w)
        self.push(sample.header.stamp, roll, pitch)

    def interpolate(self, time: float) -> Optional[tuple[float, float]]:
        """Return (roll, pitch) at the given time, or None when no reading exists.

        Past the newest reading the newest values are returned; otherwise the
        two readings around the time are blended linearly.
        """
        if self.empty:
            return None
        while self._front != self._last:
            if time < self._times[self._front]:
                break
            self._front = (self._front + 1) % self._length

        front = self._front
        if time > self._times[front]:
            return self._rolls[front], self._pitches[front]

        back = (front + self._length - 1) % self._length
        span = self._times[front] - self._times[back]
        if span == 0.0:
            return self._rolls[front], self._pitches[front]
        ratio_front = (time - self._times[back]) / span
        ratio_back = (self._times[front] - time) / span
        roll = self._rolls[front] * ratio_front + self._rolls[back] * ratio_back
        pitch = self._pitches[front] * ratio_front + self._pitches[back] * ratio_back
        return roll, pitch


def blend_imu(transform: Sequence[float], roll: float, pitch: float) -> Transform:
    """Pull the transform's rotation about x towards pitch and about z towards roll."""
    values = [float(v) for v in transform]
    if len(values) != 6:
        raise ValueError(f"transform must have six components, got {len(values)}")
    values[0] = (1.0 - IMU_WEIGHT) * values[0] + IMU_WEIGHT * pitch
    values[2] = (1.0 - IMU_WEIGHT) * values[2] + IMU_WEIGHT * roll
    return tuple(values)  # type: ignore[return-value]