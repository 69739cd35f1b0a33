"""
Quaternion, Euler angle and rotation matrix conversions.

Quaternion layout: (w, x, y, z). Euler layout: (yaw, pitch, roll) with
R = Rz(yaw) @ Ry(pitch) @ Rx(roll), matching the ordering produced by
quaternion_to_euler.

Numerical Policy:
    - Quaternions are normalized only when turned into a rotation; filter
      arithmetic works on the raw 4-vector.
    - The asin argument for pitch is clipped to [-1, 1] so a quaternion that
      is unit-norm up to round-off at gimbal lock never produces NaN.

Ranges of quaternion_to_euler:
    yaw, roll in (-pi, pi], pitch in [-pi/2, pi/2]
"""

import math
from typing import Tuple

import numpy as np

from bingham_icp.common import constants
from bingham_icp.common.errors import DegenerateQuaternionError, DimensionMismatchError


def as_vector(v: np.ndarray, size: int, name: str) -> np.ndarray:
    """Flatten to a float vector of the given length (raises on mismatch)."""
    v = np.asarray(v, dtype=float).reshape(-1)
    if v.shape[0] != size:
        raise DimensionMismatchError(f"{name}: expected {size} components, got {v.shape[0]}")
    return v


def as_cloud(points: np.ndarray, name: str) -> np.ndarray:
    """Validate a (3, N) column-vector cloud."""
    points = np.asarray(points, dtype=float)
    if points.ndim != 2 or points.shape[0] != constants.POINT_DIM:
        raise DimensionMismatchError(f"{name}: expected shape (3, N), got {points.shape}")
    return points


# =============================================================================
# Quaternion helpers
# =============================================================================


def normalize_quaternion(q: np.ndarray) -> np.ndarray:
    """Unit quaternion in (w, x, y, z) order."""
    q = as_vector(q, constants.QUAT_DIM, "quaternion")
    n = float(np.linalg.norm(q))
    if n < constants.QUAT_NORM_EPSILON:
        raise DegenerateQuaternionError(f"quaternion norm {n:.3e} is too small to normalize")
    return q / n


def quaternion_to_rotmat(q: np.ndarray) -> np.ndarray:
    """Convert quaternion (w, x, y, z) to a rotation matrix (normalizes first)."""
    qw, qx, qy, qz = normalize_quaternion(q)

    xx, yy, zz = qx*qx, qy*qy, qz*qz
    xy, xz, yz = qx*qy, qx*qz, qy*qz
    wx, wy, wz = qw*qx, qw*qy, qw*qz

    return np.array([
        [1.0 - 2.0*(yy + zz), 2.0*(xy - wz), 2.0*(xz + wy)],
        [2.0*(xy + wz), 1.0 - 2.0*(xx + zz), 2.0*(yz - wx)],
        [2.0*(xz - wy), 2.0*(yz + wx), 1.0 - 2.0*(xx + yy)]
    ], dtype=float)


def quaternion_to_euler(q: np.ndarray) -> np.ndarray:
    """
    Convert quaternion (w, x, y, z) to Euler angles (yaw, pitch, roll).

    The quaternion is normalized first, so q and -q (and any positive
    multiple) give identical angles.
    """
    qw, qx, qy, qz = normalize_quaternion(q)

    yaw = math.atan2(2.0 * (qx*qy + qw*qz), qw*qw + qx*qx - qy*qy - qz*qz)
    sin_pitch = -2.0 * (qx*qz - qw*qy)
    pitch = math.asin(min(1.0, max(-1.0, sin_pitch)))
    roll = math.atan2(2.0 * (qy*qz + qw*qx), qw*qw - qx*qx - qy*qy + qz*qz)

    return np.array([yaw, pitch, roll], dtype=float)


# =============================================================================
# Euler helpers
# =============================================================================


def euler_to_rotmat(euler: np.ndarray) -> np.ndarray:
    """Rotation matrix R = Rz(yaw) @ Ry(pitch) @ Rx(roll)."""
    yaw, pitch, roll = as_vector(euler, 3, "euler")
    cy, sy = math.cos(yaw), math.sin(yaw)
    cp, sp = math.cos(pitch), math.sin(pitch)
    cr, sr = math.cos(roll), math.sin(roll)

    return np.array([
        [cy*cp, cy*sp*sr - sy*cr, cy*sp*cr + sy*sr],
        [sy*cp, sy*sp*sr + cy*cr, sy*sp*cr - cy*sr],
        [-sp, cp*sr, cp*cr]
    ], dtype=float)


# =============================================================================
# Poses
# =============================================================================


def split_pose(pose: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Split a 6D pose into (translation, euler)."""
    pose = as_vector(pose, constants.POSE_DIM, "pose")
    return pose[:3].copy(), pose[3:].copy()


def apply_pose(pose: np.ndarray, points: np.ndarray) -> np.ndarray:
    """Transform a (3, N) cloud: R(euler) @ p + t."""
    t, euler = split_pose(pose)
    points = as_cloud(points, "points")
    return euler_to_rotmat(euler) @ points + t.reshape(3, 1)


def rotate(pose: np.ndarray, vectors: np.ndarray) -> np.ndarray:
    """Rotate a (3, N) set of directions (e.g. normals) by the pose rotation only."""
    _, euler = split_pose(pose)
    vectors = as_cloud(vectors, "vectors")
    return euler_to_rotmat(euler) @ vectors
