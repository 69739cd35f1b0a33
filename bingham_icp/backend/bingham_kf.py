"""
Bingham Normal Kalman Filter (BNKF) for quaternion orientation.

BELIEF REPRESENTATION:
    Orientation uncertainty is a Bingham density on the unit quaternion
    sphere, log p(x) = x^T M Z M^T x + const, factorized as:
        M: 4x4 orthonormal eigenbasis (column 0 is the mode quaternion)
        Z: 4x4 diagonal concentrations, Z[0,0] == 0 exactly, others <= 0

    The density is antipodally symmetric, so q and -q (the same rotation)
    are equally likely.

UPDATE:
    1. Moment-match the prior into a second-moment matrix N = x x^T + P,
       with P = -0.5 (M (Z + cI) M^T)^{-1} and c = min(Z).
    2. Measurement noise for the quaternion residual: R = Rmag (tr(N) I - N),
       inverted through its eigen-decomposition with near-zero eigenvalues
       treated as "no information".
    3. Accumulate information from point-difference correspondences (D1) and
       normal correspondences (D2, re-weighted by Rmag / Qmag).
    4. Posterior concentration D* = -0.5 D1 - 0.5 D2 + M Z M^T,
       re-decomposed and re-centered so the largest eigenvalue maps to 0.

    Point correspondences enter as differences between the two batches
    (p1 - p2), which cancels the unknown translation; the translation is then
    recovered from batch centroids under the updated rotation.

Numerical Policy:
    - Near-singular concentrations (c^2 < 1e-100) are inverted after scaling
      by 1e-100 to keep intermediate magnitudes representable.
    - The measurement noise R is eigen-decomposed after dividing by
      Rmag tr(N) and its inverse kept in factored form, so a large Rmag
      under the near-uninformative prior never overflows.
    - Symmetric eigen-solver on symmetrized inputs; eigenvalues are real.
    - Degeneracy is never raised; dimension and noise errors are.
"""

import logging
import math
from dataclasses import dataclass
from typing import Tuple

import numpy as np

from bingham_icp.backend.measurement import measurement_jacobian
from bingham_icp.common import constants
from bingham_icp.common.errors import DimensionMismatchError, InvalidNoiseError
from bingham_icp.common.quaternion import (
    as_cloud,
    as_vector,
    normalize_quaternion,
    quaternion_to_euler,
    quaternion_to_rotmat,
)

_logger = logging.getLogger(__name__)


# =============================================================================
# State
# =============================================================================


@dataclass(frozen=True)
class BinghamState:
    """
    Mode quaternion plus factorized Bingham concentration.

    x is always M[:, 0]; it is kept explicitly because the prior and the
    filter output both define it, and callers read it most.
    """
    x: np.ndarray  # (4,) mode quaternion (w, x, y, z), not necessarily unit
    M: np.ndarray  # (4, 4) orthonormal eigenbasis
    Z: np.ndarray  # (4, 4) diagonal concentrations, Z[0, 0] == 0

    @classmethod
    def prior(cls, epsilon: float = constants.INITIAL_CONCENTRATION_DEFAULT) -> "BinghamState":
        """Identity mode with almost no information: Z = diag(0, -eps, -eps, -eps)."""
        z = np.zeros((constants.QUAT_DIM, constants.QUAT_DIM), dtype=float)
        for i in range(1, constants.QUAT_DIM):
            z[i, i] = -float(epsilon)
        return cls(
            x=np.array([1.0, 0.0, 0.0, 0.0], dtype=float),
            M=np.eye(constants.QUAT_DIM, dtype=float),
            Z=z,
        )

    @property
    def concentrations(self) -> np.ndarray:
        return np.diag(self.Z).copy()


@dataclass(frozen=True)
class BinghamKFResult:
    """Posterior orientation state and the 6D pose extracted from it."""
    state: BinghamState
    pose: np.ndarray  # (6,) [tx, ty, tz, yaw, pitch, roll]
    regularized_eigenvalues: int  # eigenvalues of R replaced by 1
    scaled_inversion: bool  # near-singular branch taken for the prior inverse


# =============================================================================
# Validation
# =============================================================================


def _as_square(A: np.ndarray, name: str) -> np.ndarray:
    A = np.asarray(A, dtype=float)
    if A.shape != (constants.QUAT_DIM, constants.QUAT_DIM):
        raise DimensionMismatchError(f"{name}: expected shape (4, 4), got {A.shape}")
    return A


def _check_noise(value: float, name: str) -> float:
    value = float(value)
    if not math.isfinite(value) or value <= 0.0:
        raise InvalidNoiseError(f"{name} must be finite and > 0, got {value}")
    return value


def _symmetrize(A: np.ndarray) -> np.ndarray:
    return 0.5 * (A + A.T)


# =============================================================================
# Filter steps
# =============================================================================


def _prior_covariance(M: np.ndarray, Z: np.ndarray) -> Tuple[np.ndarray, bool]:
    """P = -0.5 (M (Z + cI) M^T)^{-1} with c the most negative concentration."""
    c = float(np.min(Z))
    eye = np.eye(constants.QUAT_DIM, dtype=float)
    temp = M @ (Z + c * eye) @ M.T

    scaled = c * c < constants.SINGULAR_CONCENTRATION_THRESHOLD
    try:
        if scaled:
            temp_inv = np.linalg.inv(temp / constants.INVERSION_SCALE) / constants.INVERSION_SCALE
        else:
            temp_inv = np.linalg.inv(temp)
    except np.linalg.LinAlgError:
        _logger.debug("prior concentration singular (c=%.3e), using pseudo-inverse", c)
        temp_inv = np.linalg.pinv(temp)

    return -0.5 * temp_inv, scaled


def _regularized_noise_inverse(N: np.ndarray, r_mag: float) -> Tuple[float, np.ndarray, np.ndarray, int]:
    """
    Factor R^{-1} for R = r_mag (tr(N) I - N) as scale * W_info + W_flat.

    tr(N) reaches ~1e300 under the near-uninformative prior, so R itself is
    never formed: the eigen-solve runs on R / (r_mag tr(N)), whose entries
    are O(1), and scale = 1 / (r_mag tr(N)) is applied afterwards.
    Eigenvalues of R at or below EIGENVALUE_FLOOR are replaced by
    EIGENVALUE_REPLACEMENT; those directions form W_flat, the rest W_info.

    Returns:
        (scale, W_info, W_flat, n_regularized)
    """
    tr = float(np.trace(N))
    eye = np.eye(constants.QUAT_DIM, dtype=float)
    s, U = np.linalg.eigh(_symmetrize(eye - N / tr))
    s = np.real(s)
    U = np.real(U)

    scale = (1.0 / tr) / r_mag
    # s * r_mag * tr <= floor, without forming r_mag * tr
    weak = s <= constants.EIGENVALUE_FLOOR * scale

    U_info = U[:, ~weak]
    U_flat = U[:, weak]
    W_info = U_info @ np.diag(1.0 / s[~weak]) @ U_info.T
    W_flat = (U_flat @ U_flat.T) / constants.EIGENVALUE_REPLACEMENT
    return scale, W_info, W_flat, int(np.count_nonzero(weak))


def _measurement_information(
    W: np.ndarray,
    current: np.ndarray,
    reference: np.ndarray,
) -> np.ndarray:
    """Sum of H^T W H over column-aligned correspondences."""
    D = np.zeros((constants.QUAT_DIM, constants.QUAT_DIM), dtype=float)
    for i in range(current.shape[1]):
        H = measurement_jacobian(current[:, i], reference[:, i])
        D += H.T @ W @ H
    return D


def bingham_normal_kf(
    state: BinghamState,
    r_mag: float,
    q_mag: float,
    p1c: np.ndarray,
    p1r: np.ndarray,
    p2c: np.ndarray,
    p2r: np.ndarray,
    normal_c: np.ndarray,
    normal_r: np.ndarray,
) -> BinghamKFResult:
    """
    One BNKF update.

    Args:
        state: Prior orientation state
        r_mag: Point measurement noise magnitude (> 0)
        q_mag: Normal measurement noise magnitude (> 0)
        p1c, p1r: First point batch, current / reference side (3, K)
        p2c, p2r: Second point batch, current / reference side (3, K)
        normal_c, normal_r: Normal correspondences (3, K'), K' may be 0

    Returns:
        BinghamKFResult with the posterior state and the pose
        [t, yaw, pitch, roll] mapping reference points onto current points.
    """
    x_k = as_vector(state.x, constants.QUAT_DIM, "Xk")
    M_k = _as_square(state.M, "Mk")
    Z_k = _as_square(state.Z, "Zk")
    r_mag = _check_noise(r_mag, "Rmag")
    q_mag = _check_noise(q_mag, "Qmag")

    p1c = as_cloud(p1c, "p1c")
    p1r = as_cloud(p1r, "p1r")
    p2c = as_cloud(p2c, "p2c")
    p2r = as_cloud(p2r, "p2r")
    normal_c = as_cloud(normal_c, "normal_c")
    normal_r = as_cloud(normal_r, "normal_r")

    n_points = p1c.shape[1]
    if n_points == 0:
        raise DimensionMismatchError("point batches must contain at least one correspondence")
    if any(p.shape[1] != n_points for p in (p1r, p2c, p2r)):
        raise DimensionMismatchError(
            f"point batches are not equal in size: p1c={p1c.shape[1]}, p1r={p1r.shape[1]}, "
            f"p2c={p2c.shape[1]}, p2r={p2r.shape[1]}"
        )
    if normal_c.shape[1] != normal_r.shape[1]:
        raise DimensionMismatchError(
            f"normal batches are not equal in size: normal_c={normal_c.shape[1]}, "
            f"normal_r={normal_r.shape[1]}"
        )

    # Prior moments
    P_k, scaled = _prior_covariance(M_k, Z_k)
    N_k = np.outer(x_k, x_k) + P_k

    # Measurement noise R = Rmag (tr(N) I - N), inverted in factored form
    r_scale, W_info, W_flat, n_regularized = _regularized_noise_inverse(N_k, r_mag)
    # Normal noise Q^{-1} = R^{-1} Rmag / Qmag; r_scale * Rmag == 1 / tr(N)
    q_scale = (1.0 / float(np.trace(N_k))) / q_mag

    # Information from point differences and normals
    current, reference = p1c - p2c, p1r - p2r
    D1 = (r_scale * _measurement_information(W_info, current, reference)
          + _measurement_information(W_flat, current, reference))
    D2 = (q_scale * _measurement_information(W_info, normal_c, normal_r)
          + (r_mag / q_mag) * _measurement_information(W_flat, normal_c, normal_r))

    D_star = -0.5 * D1 - 0.5 * D2 + M_k @ Z_k @ M_k.T

    # Posterior: largest eigenvalue becomes the mode, re-centered to 0
    z_tmp, M_tmp = np.linalg.eigh(_symmetrize(D_star))
    z_tmp = np.real(z_tmp)
    M_tmp = np.real(M_tmp)
    order = np.argsort(-z_tmp, kind="stable")

    z_new = z_tmp[order] - z_tmp[order[0]]
    z_new[0] = 0.0
    M_new = M_tmp[:, order].copy()
    x_new = M_new[:, 0].copy()
    new_state = BinghamState(x=x_new, M=M_new, Z=np.diag(z_new))

    # Translation from batch centroids under the updated rotation
    q_unit = normalize_quaternion(x_new)
    centroid_c = 0.5 * (p1c.mean(axis=1) + p2c.mean(axis=1))
    centroid_r = 0.5 * (p1r.mean(axis=1) + p2r.mean(axis=1))
    translation = centroid_c - quaternion_to_rotmat(q_unit) @ centroid_r

    pose = np.concatenate([translation, quaternion_to_euler(q_unit)])

    _logger.debug(
        "BNKF: c=%.3e scaled=%s regularized=%d Z=%s",
        float(np.min(Z_k)), scaled, n_regularized, np.array2string(z_new, precision=3),
    )

    return BinghamKFResult(
        state=new_state,
        pose=pose,
        regularized_eigenvalues=n_regularized,
        scaled_inversion=scaled,
    )


def bingham_update(
    Xk: np.ndarray,
    Mk: np.ndarray,
    Zk: np.ndarray,
    Rmag: float,
    Qmag: float,
    point_batch1: Tuple[np.ndarray, np.ndarray],
    point_batch2: Tuple[np.ndarray, np.ndarray],
    normal_batch: Tuple[np.ndarray, np.ndarray],
) -> Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
    """
    Array-level BNKF update.

    Each batch is a (current, reference) pair of (3, K) clouds.

    Returns:
        (Xk', Mk', Zk', Xreg)
    """
    state = BinghamState(
        x=as_vector(Xk, constants.QUAT_DIM, "Xk"),
        M=_as_square(Mk, "Mk"),
        Z=_as_square(Zk, "Zk"),
    )
    result = bingham_normal_kf(
        state,
        Rmag,
        Qmag,
        point_batch1[0],
        point_batch1[1],
        point_batch2[0],
        point_batch2[1],
        normal_batch[0],
        normal_batch[1],
    )
    return result.state.x, result.state.M, result.state.Z, result.pose
