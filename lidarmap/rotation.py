"""Euler angle and quaternion conversions and the odometry-to-map transform association."""

from __future__ import annotations

import math
from typing import Sequence

from .messages import Quaternion, Vector3

Transform = tuple[float, float, float, float, float, float]


def _clamp_unit(value: float) -> float:
    return max(-1.0, min(1.0, value))


def _as_transform(values: Sequence[float], name: str) -> Transform:
    result = tuple(float(v) for v in values)
    if len(result) != 6:
        raise ValueError(f"{name} must have six components, got {len(result)}")
    return result  # type: ignore[return-value]


def rpy_from_quaternion(x: float, y: float, z: float, w: float) -> tuple[float, float, float]:
    """Return (roll, pitch, yaw) of the rotation described by the quaternion."""
    d = x * x + y * y + z * z + w * w
    if d == 0.0:
        raise ValueError("zero quaternion has no rotation")
    s = 2.0 / d
    xs, ys, zs = x * s, y * s, z * s
    wx, wy = w * xs, w * ys
    xx, xy, xz = x * xs, x * ys, x * zs
    yy, yz, zz = y * ys, y * zs, z * zs
    wz = w * zs

    m00 = 1.0 - (yy + zz)
    m10 = xy + wz
    m20 = xz - wy
    m21 = yz + wx
    m22 = 1.0 - (xx + yy)

    if abs(m20) >= 1.0:
        yaw = 0.0
        roll = math.atan2(m21, m22)
        pitch = math.pi / 2 if m20 < 0 else -math.pi / 2
        return roll, pitch, yaw

    pitch = -math.asin(m20)
    cp = math.cos(pitch)
    roll = math.atan2(m21 / cp, m22 / cp)
    yaw = math.atan2(m10 / cp, m00 / cp)
    return roll, pitch, yaw


def quaternion_from_rpy(roll: float, pitch: float, yaw: float) -> Quaternion:
    """Return the quaternion of fixed-axis rotations roll, pitch, yaw."""
    hr, hp, hy = roll * 0.5, pitch * 0.5, yaw * 0.5
    cr, sr = math.cos(hr), math.sin(hr)
    cp, sp = math.cos(hp), math.sin(hp)
    cy, sy = math.cos(hy), math.sin(hy)
    return Quaternion(
        x=sr * cp * cy - cr * sp * sy,
        y=cr * sp * cy + sr * cp * sy,
        z=cr * cp * sy - sr * sp * cy,
        w=cr * cp * cy + sr * sp * sy,
    )


def odometry_to_transform(orientation: Quaternion, position: Vector3) -> Transform:
    """Convert an odometry pose into the camera-frame transform [rx, ry, rz, tx, ty, tz]."""
    roll, pitch, yaw = rpy_from_quaternion(orientation.z, -orientation.x, -orientation.y, orientation.w)
    return (-pitch, -yaw, roll, position.x, position.y, position.z)


def transform_to_orientation(transform: Sequence[float]) -> Quaternion:
    """Orientation quaternion of a camera-frame transform; inverse of odometry_to_transform."""
    t = _as_transform(transform, "transform")
    geo = quaternion_from_rpy(t[2], -t[0], -t[1])
    return Quaternion(-geo.y, -geo.z, geo.x, geo.w)


def transform_associate_to_map(
    transform_sum: Sequence[float],
    transform_bef_mapped: Sequence[float],
    transform_aft_mapped: Sequence[float],
) -> Transform:
    """Apply the odometry drift since the last mapping result to the mapped pose."""
    ts = _as_transform(transform_sum, "transform_sum")
    tb = _as_transform(transform_bef_mapped, "transform_bef_mapped")
    ta = _as_transform(transform_aft_mapped, "transform_aft_mapped")

    x1 = math.cos(ts[1]) * (tb[3] - ts[3]) - math.sin(ts[1]) * (tb[5] - ts[5])
    y1 = tb[4] - ts[4]
    z1 = math.sin(ts[1]) * (tb[3] - ts[3]) + math.cos(ts[1]) * (tb[5] - ts[5])

    x2 = x1
    y2 = math.cos(ts[0]) * y1 + math.sin(ts[0]) * z1
    z2 = -math.sin(ts[0]) * y1 + math.cos(ts[0]) * z1

    incre_x = math.cos(ts[2]) * x2 + math.sin(ts[2]) * y2
    incre_y = -math.sin(ts[2]) * x2 + math.cos(ts[2]) * y2
    incre_z = z2

    sbcx, cbcx = math.sin(ts[0]), math.cos(ts[0])
    sbcy, cbcy = math.sin(ts[1]), math.cos(ts[1])
    sbcz, cbcz = math.sin(ts[2]), math.cos(ts[2])

    sblx, cblx = math.sin(tb[0]), math.cos(tb[0])
    sbly, cbly = math.sin(tb[1]), math.cos(tb[1])
    sblz, cblz = math.sin(tb[2]), math.cos(tb[2])

    salx, calx = math.sin(ta[0]), math.cos(ta[0])
    saly, caly = math.sin(ta[1]), math.cos(ta[1])
    salz, calz = math.sin(ta[2]), math.cos(ta[2])

    srx = (-sbcx * (salx * sblx + calx * cblx * salz * sblz + calx * calz * cblx * cblz)
           - cbcx * sbcy * (calx * calz * (cbly * sblz - cblz * sblx * sbly)
                            - calx * salz * (cbly * cblz + sblx * sbly * sblz) + cblx * salx * sbly)
           - cbcx * cbcy * (calx * salz * (cblz * sbly - cbly * sblx * sblz)
                            - calx * calz * (sbly * sblz + cbly * cblz * sblx) + cblx * cbly * salx))
    rx = -math.asin(_clamp_unit(srx))
    crx = math.cos(rx)

    srycrx = (sbcx * (cblx * cblz * (caly * salz - calz * salx * saly)
                      - cblx * sblz * (caly * calz + salx * saly * salz) + calx * saly * sblx)
              - cbcx * cbcy * ((caly * calz + salx * saly * salz) * (cblz * sbly - cbly * sblx * sblz)
                               + (caly * salz - calz * salx * saly) * (sbly * sblz + cbly * cblz * sblx)
                               - calx * cblx * cbly * saly)
              + cbcx * sbcy * ((caly * calz + salx * saly * salz) * (cbly * cblz + sblx * sbly * sblz)
                               + (caly * salz - calz * salx * saly) * (cbly * sblz - cblz * sblx * sbly)
                               + calx * cblx * saly * sbly))
    crycrx = (sbcx * (cblx * sblz * (calz * saly - caly * salx * salz)
                      - cblx * cblz * (saly * salz + caly * calz * salx) + calx * caly * sblx)
              + cbcx * cbcy * ((saly * salz + caly * calz * salx) * (sbly * sblz + cbly * cblz * sblx)
                               + (calz * saly - caly * salx * salz) * (cblz * sbly - cbly * sblx * sblz)
                               + calx * caly * cblx * cbly)
              - cbcx * sbcy * ((saly * salz + caly * calz * salx) * (cbly * sblz - cblz * sblx * sbly)
                               + (calz * saly - caly * salx * salz) * (cbly * cblz + sblx * sbly * sblz)
                               - calx * caly * cblx * sbly))
    ry = math.atan2(srycrx / crx, crycrx / crx)

    srzcrx = ((cbcz * sbcy - cbcy * sbcx * sbcz) * (calx * salz * (cblz * sbly - cbly * sblx * sblz)
                                                    - calx * calz * (sbly * sblz + cbly * cblz * sblx)
                                                    + cblx * cbly * salx)
              - (cbcy * cbcz + sbcx * sbcy * sbcz) * (calx * calz * (cbly * sblz - cblz * sblx * sbly)
                                                      - calx * salz * (cbly * cblz + sblx * sbly * sblz)
                                                      + cblx * salx * sbly)
              + cbcx * sbcz * (salx * sblx + calx * cblx * salz * sblz + calx * calz * cblx * cblz))
    crzcrx = ((cbcy * sbcz - cbcz * sbcx * sbcy) * (calx * calz * (cbly * sblz - cblz * sblx * sbly)
                                                    - calx * salz * (cbly * cblz + sblx * sbly * sblz)
                                                    + cblx * salx * sbly)
              - (sbcy * sbcz + cbcy * cbcz * sbcx) * (calx * salz * (cblz * sbly - cbly * sblx * sblz)
                                                      - calx * calz * (sbly * sblz + cbly * cblz * sblx)
                                                      + cblx * cbly * salx)
              + cbcx * cbcz * (salx * sblx + calx * cblx * salz * sblz + calx * calz * cblx * cblz))
    rz = math.atan2(srzcrx / crx, crzcrx / crx)

    x1 = math.cos(rz) * incre_x - math.sin(rz) * incre_y
    y1 = math.sin(rz) * incre_x + math.cos(rz) * incre_y
    z1 = incre_z

    x2 = x1
    y2 = math.cos(rx) * y1 - math.sin(rx) * z1
    z2 = math.sin(rx) * y1 + math.cos(rx) * z1

    tx = ta[3] - (math.cos(ry) * x2 + math.sin(ry) * z2)
    ty = ta[4] - y2
    tz = ta[5] - (-math.sin(ry) * x2 + math.cos(ry) * z2)
    return (rx, ry, rz, tx, ty, tz)