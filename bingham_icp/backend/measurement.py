"""
Quaternion measurement kernel for point / normal correspondences.

MEASUREMENT MODEL:
    For a corresponding pair (p1, p2) with p1 = R(q) p2, the quaternion
    product identity p1 * q = q * p2 (pure quaternions) is linear in q:

        g(q; p1, p2) = H(p1, p2) q = 0

    H is a 4x4 matrix with zero diagonal whose entries are sums and
    differences of the two points' coordinates. The residual g is exactly
    zero at the true rotation, so accumulating H^T W H over many pairs
    builds the information matrix whose null direction is the rotation.

Both functions are pure and linear: g(q) == H @ q.
"""

import numpy as np

from bingham_icp.common import constants
from bingham_icp.common.quaternion import as_vector, quaternion_to_euler

__all__ = [
    "measurement_function",
    "measurement_jacobian",
    "quaternion_to_euler",
]


def measurement_function(state: np.ndarray, p1: np.ndarray, p2: np.ndarray) -> np.ndarray:
    """
    Quaternion-algebra residual between p1 and p2 under state (w, x, y, z).

    Zero when p1 = R(state) p2.
    """
    qw, qx, qy, qz = as_vector(state, constants.QUAT_DIM, "state")
    p1 = as_vector(p1, constants.POINT_DIM, "p1")
    p2 = as_vector(p2, constants.POINT_DIM, "p2")

    d = p1 - p2
    s = p1 + p2
    return np.array([
        -(qx*d[0] + qy*d[1] + qz*d[2]),
        qw*d[0] - qy*s[2] + qz*s[1],
        qw*d[1] + qx*s[2] - qz*s[0],
        qw*d[2] - qx*s[1] + qy*s[0],
    ], dtype=float)


def measurement_jacobian(p1: np.ndarray, p2: np.ndarray) -> np.ndarray:
    """Jacobian of measurement_function with respect to the state (4x4)."""
    p1 = as_vector(p1, constants.POINT_DIM, "p1")
    p2 = as_vector(p2, constants.POINT_DIM, "p2")

    d = p1 - p2
    s = p1 + p2
    return np.array([
        [0.0, -d[0], -d[1], -d[2]],
        [d[0], 0.0, -s[2], s[1]],
        [d[1], s[2], 0.0, -s[0]],
        [d[2], -s[1], s[0], 0.0],
    ], dtype=float)
