"""
Bingham Normal ICP registration loop.

WORKFLOW:
    Initialization (window size, search index over the fixed cloud, prior)
          |
          v
    Correspondence search (window of moving points pushed through Xreg)  <--+
          |                                                                 |
    Noise magnitudes from search residuals                                  |
          |                                                                 |
    Bingham Normal Kalman Filter update                                     |
          |                                                                 |
    Convergence check (dT, dR vs previous pose)  ---- not converged --------+
          |
          v  converged / iteration ceiling
    Return final Xreg and the pose history

STATE MACHINE:
    RUNNING -> CONVERGED                (i >= min_iterations, dT, dR within tol)
    RUNNING -> ITERATION_LIMIT_REACHED  (i == min(max_iterations, N // window))

Each iteration consumes the next non-overlapping window of the moving cloud,
in column order. The estimator state (BinghamState + pose) belongs to one
run and is replaced, never shared, by each filter update.
"""

import logging
import math
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple

import numpy as np

from bingham_icp.backend.bingham_kf import BinghamState, bingham_normal_kf
from bingham_icp.backend.diagnostics import IterationDiagnostics
from bingham_icp.common import constants
from bingham_icp.common.errors import (
    CorrespondenceSplitError,
    DimensionMismatchError,
    InvalidPointDimensionError,
)
from bingham_icp.common.param_models import RegistrationParams
from bingham_icp.common.quaternion import as_vector
from bingham_icp.frontend.correspondence import (
    CorrespondenceResult,
    CorrespondenceSearch,
    KDTreeCorrespondenceSearch,
)

_logger = logging.getLogger(__name__)


class RegistrationStatus(str, Enum):
    RUNNING = "running"
    CONVERGED = "converged"
    ITERATION_LIMIT_REACHED = "iteration_limit_reached"


@dataclass
class RegistrationResult:
    """
    Registration output.

    pose_history has iterations + 1 rows; row 0 is the zero prior and row i
    the pose after iteration i.
    """
    pose: np.ndarray  # (6,) final [tx, ty, tz, yaw, pitch, roll]
    pose_history: np.ndarray  # (iterations + 1, 6)
    status: RegistrationStatus
    iterations: int
    state: BinghamState
    diagnostics: List[IterationDiagnostics] = field(default_factory=list)

    @property
    def converged(self) -> bool:
        return self.status == RegistrationStatus.CONVERGED


# =============================================================================
# Helpers
# =============================================================================


def pose_delta(pose_a: np.ndarray, pose_b: np.ndarray) -> Tuple[float, float]:
    """Change between two poses: (||dt||, ||d euler||)."""
    pose_a = as_vector(pose_a, constants.POSE_DIM, "pose_a")
    pose_b = as_vector(pose_b, constants.POSE_DIM, "pose_b")
    diff = pose_a - pose_b
    return float(np.linalg.norm(diff[:3])), float(np.linalg.norm(diff[3:]))


def noise_magnitude(
    residual: float,
    floor: float = constants.NOISE_FLOOR_DEFAULT,
    scale: float = constants.NOISE_RESIDUAL_SCALE_DEFAULT,
) -> float:
    """Adaptive measurement noise: floor + (residual / scale)^2."""
    return floor + (float(residual) / scale) ** 2


def split_correspondences(
    pc: np.ndarray,
    pr: np.ndarray,
    trunc_size: int,
) -> Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
    """
    Interleave the first trunc_size correspondences into two batches.

    Positions are counted from 1: odd positions go to batch 1, even positions
    to batch 2. An odd trunc_size drops its last column.

    Each batch is sized trunc_size // 2 and the loop visits exactly that many
    odd and even positions, so CorrespondenceSplitError cannot trip for any
    trunc_size; it is an internal-consistency guard on the batch counters.
    Too few input columns is a caller error (DimensionMismatchError).

    Returns:
        (p1c, p1r, p2c, p2r), each (3, trunc_size // 2)
    """
    n_odd = trunc_size // 2
    n_even = n_odd
    if pc.shape[1] < trunc_size or pr.shape[1] < trunc_size:
        raise DimensionMismatchError(
            f"search returned {min(pc.shape[1], pr.shape[1])} correspondences, "
            f"expected at least {trunc_size}"
        )

    p1c = np.empty((3, n_odd), dtype=float)
    p1r = np.empty((3, n_odd), dtype=float)
    p2c = np.empty((3, n_even), dtype=float)
    p2r = np.empty((3, n_even), dtype=float)

    p1_count = 0
    p2_count = 0
    for n in range(1, trunc_size - trunc_size % 2 + 1):
        col = n - 1
        if n % 2:
            if p1_count >= n_odd:
                raise CorrespondenceSplitError("Incorrect number of odd entries.")
            p1c[:, p1_count] = pc[:, col]
            p1r[:, p1_count] = pr[:, col]
            p1_count += 1
        else:
            if p2_count >= n_even:
                raise CorrespondenceSplitError("Incorrect number of even entries.")
            p2c[:, p2_count] = pc[:, col]
            p2r[:, p2_count] = pr[:, col]
            p2_count += 1

    return p1c, p1r, p2c, p2r


def _check_cloud(points: np.ndarray, name: str) -> np.ndarray:
    points = np.asarray(points, dtype=float)
    if points.ndim != 2 or points.shape[0] != constants.POINT_DIM:
        raise InvalidPointDimensionError(f"Invalid point dimension for {name}: {points.shape}")
    return points


# =============================================================================
# Registration
# =============================================================================


class BinghamNormalRegistration:
    """
    Registers a moving cloud onto a fixed cloud with the Bingham normal filter.

    The search collaborator is injectable; by default a KD-tree search over
    the fixed cloud is used.
    """

    def __init__(
        self,
        params: Optional[RegistrationParams] = None,
        search: Optional[CorrespondenceSearch] = None,
    ):
        self.params = params or RegistrationParams()
        self.search = search or KDTreeCorrespondenceSearch()

    def iteration_limit(self, n_moving: int) -> int:
        return min(self.params.max_iterations, n_moving // self.params.window_size)

    def register(
        self,
        moving: np.ndarray,
        fixed: np.ndarray,
        normal_moving: np.ndarray,
        normal_fixed: np.ndarray,
    ) -> RegistrationResult:
        """
        Estimate the pose that maps the moving cloud onto the fixed cloud.

        Args:
            moving: Moving (sensed) points (3, N)
            fixed: Fixed (model) points (3, M)
            normal_moving: Moving normals (3, N)
            normal_fixed: Fixed normals (3, M)

        Returns:
            RegistrationResult
        """
        moving = _check_cloud(moving, "moving")
        fixed = _check_cloud(fixed, "fixed")
        normal_moving = _check_cloud(normal_moving, "normal_moving")
        normal_fixed = _check_cloud(normal_fixed, "normal_fixed")
        if normal_moving.shape[1] != moving.shape[1]:
            raise DimensionMismatchError(
                f"moving normals ({normal_moving.shape[1]}) do not match moving points ({moving.shape[1]})"
            )

        p = self.params
        window = p.window_size
        trunc_size = int(math.trunc(window * p.inlier_ratio))
        n_moving = moving.shape[1]
        limit = self.iteration_limit(n_moving)

        index = self.search.build_index(fixed, normal_fixed)

        state = BinghamState.prior(p.initial_concentration)
        pose = np.zeros(constants.POSE_DIM, dtype=float)
        history = np.zeros((p.max_iterations + 1, constants.POSE_DIM), dtype=float)
        diagnostics: List[IterationDiagnostics] = []
        status = RegistrationStatus.RUNNING
        iterations = 0

        _logger.info(
            "Registering %d moving points onto %d fixed points (window=%d, iteration limit=%d)",
            n_moving, fixed.shape[1], window, limit,
        )

        for i in range(1, limit + 1):
            start = window * (i - 1)
            targets = moving[:, start:start + window]
            normal_targets = normal_moving[:, start:start + window]

            t0 = time.perf_counter()
            found: CorrespondenceResult = self.search.search(
                targets, normal_targets, index, p.inlier_ratio, pose
            )
            search_time = time.perf_counter() - t0

            r_mag = noise_magnitude(found.res1, p.noise_floor, p.noise_residual_scale)
            q_mag = noise_magnitude(found.res2, p.noise_floor, p.noise_residual_scale)

            p1c, p1r, p2c, p2r = split_correspondences(found.pc, found.pr, trunc_size)

            t0 = time.perf_counter()
            kf = bingham_normal_kf(
                state, r_mag, q_mag, p1c, p1r, p2c, p2r, found.normal_c, found.normal_r
            )
            filter_time = time.perf_counter() - t0

            state = kf.state
            pose = kf.pose
            history[i] = pose
            iterations = i

            dT, dR = pose_delta(pose, history[i - 1])
            diagnostics.append(IterationDiagnostics(
                iteration=i,
                n_correspondences=2 * p1c.shape[1],
                n_normal_correspondences=found.n_normals,
                res1=found.res1,
                res2=found.res2,
                r_mag=r_mag,
                q_mag=q_mag,
                dT=dT,
                dR=dR,
                pose=pose.copy(),
                concentrations=state.concentrations,
                scaled_inversion=kf.scaled_inversion,
                regularized_eigenvalues=kf.regularized_eigenvalues,
                search_time_sec=search_time,
                filter_time_sec=filter_time,
            ))
            _logger.debug(
                "iter %d: Rmag=%.4g Qmag=%.4g dT=%.3e dR=%.3e search=%.2fms filter=%.2fms",
                i, r_mag, q_mag, dT, dR, 1e3 * search_time, 1e3 * filter_time,
            )

            if i >= p.min_iterations and dT <= p.tol_translation and dR <= p.tol_rotation:
                status = RegistrationStatus.CONVERGED
                break

        if status == RegistrationStatus.RUNNING:
            status = RegistrationStatus.ITERATION_LIMIT_REACHED

        _logger.info(
            "Registration %s after %d iterations: pose=%s",
            status.value, iterations, np.array2string(pose, precision=6),
        )

        return RegistrationResult(
            pose=pose.copy(),
            pose_history=history[:iterations + 1].copy(),
            status=status,
            iterations=iterations,
            state=state,
            diagnostics=diagnostics,
        )


def registration_est_bingham_normal(
    moving: np.ndarray,
    fixed: np.ndarray,
    normal_moving: np.ndarray,
    normal_fixed: np.ndarray,
    params: Optional[RegistrationParams] = None,
    search: Optional[CorrespondenceSearch] = None,
) -> RegistrationResult:
    """Register moving onto fixed using point and normal correspondences."""
    return BinghamNormalRegistration(params=params, search=search).register(
        moving, fixed, normal_moving, normal_fixed
    )
