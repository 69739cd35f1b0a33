"""
Nearest-neighbor correspondence search over the fixed cloud.

GENERATIVE MODEL:
    A moving point m and its fixed counterpart f satisfy f = R m + t + noise,
    and their normals satisfy n_f = R n_m + noise. Given the current pose
    estimate (t, R), each query point is pushed into the fixed frame and
    paired with its nearest fixed point.

OUTPUT CONVENTION:
    pc / normal_c: matched FIXED points / normals ("current" side)
    pr / normal_r: original, untransformed MOVING points / normals
                   ("reference" side)
    Columns are ordered by ascending match distance, so truncating the tail
    drops the worst matches first.

Residuals:
    res1: RMS point match distance of the kept correspondences
    res2: RMS norm of (R n_m - n_f) over the kept correspondences

The KD-tree is built once per registration run and queried every iteration.
"""

import logging
import math
from dataclasses import dataclass
from typing import Protocol

import numpy as np
from scipy.spatial import cKDTree

from bingham_icp.common import constants
from bingham_icp.common.errors import DimensionMismatchError
from bingham_icp.common.quaternion import apply_pose, as_cloud, as_vector, rotate

_logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CorrespondenceIndex:
    """Search structure over the fixed cloud."""
    tree: cKDTree
    points: np.ndarray  # (3, M)
    normals: np.ndarray  # (3, M)

    @property
    def size(self) -> int:
        return int(self.points.shape[1])


@dataclass(frozen=True)
class CorrespondenceResult:
    """Column-aligned point and normal correspondences plus match residuals."""
    pc: np.ndarray  # (3, K) matched fixed points
    pr: np.ndarray  # (3, K) moving points
    normal_c: np.ndarray  # (3, K') matched fixed normals
    normal_r: np.ndarray  # (3, K') moving normals
    res1: float
    res2: float

    @property
    def n_points(self) -> int:
        return int(self.pc.shape[1])

    @property
    def n_normals(self) -> int:
        return int(self.normal_c.shape[1])


class CorrespondenceSearch(Protocol):
    """What the registration loop needs from a correspondence search."""

    def build_index(self, fixed: np.ndarray, fixed_normals: np.ndarray) -> object:
        ...

    def search(
        self,
        query_points: np.ndarray,
        query_normals: np.ndarray,
        index: object,
        inlier_ratio: float,
        pose: np.ndarray,
    ) -> CorrespondenceResult:
        ...


# =============================================================================
# KD-tree search
# =============================================================================


def build_index(fixed: np.ndarray, fixed_normals: np.ndarray) -> CorrespondenceIndex:
    """Build the KD-tree over a (3, M) fixed cloud and keep its normals."""
    fixed = as_cloud(fixed, "fixed")
    fixed_normals = as_cloud(fixed_normals, "fixed_normals")
    if fixed.shape[1] == 0:
        raise DimensionMismatchError("fixed cloud is empty")
    if fixed_normals.shape[1] != fixed.shape[1]:
        raise DimensionMismatchError(
            f"fixed normals ({fixed_normals.shape[1]}) do not match fixed points ({fixed.shape[1]})"
        )
    tree = cKDTree(fixed.T)
    _logger.debug("Built correspondence index over %d fixed points", fixed.shape[1])
    return CorrespondenceIndex(tree=tree, points=fixed, normals=fixed_normals)


def search(
    query_points: np.ndarray,
    query_normals: np.ndarray,
    index: CorrespondenceIndex,
    inlier_ratio: float,
    pose: np.ndarray,
) -> CorrespondenceResult:
    """
    Match query points (moving frame) to the fixed cloud under pose.

    Args:
        query_points: Moving points (3, K)
        query_normals: Moving normals (3, K)
        index: Index from build_index
        inlier_ratio: Fraction of the best matches to keep, in (0, 1]
        pose: Current pose estimate [tx, ty, tz, yaw, pitch, roll]

    Returns:
        CorrespondenceResult with floor(K * inlier_ratio) columns (at least 1)
    """
    query_points = as_cloud(query_points, "query_points")
    query_normals = as_cloud(query_normals, "query_normals")
    pose = as_vector(pose, constants.POSE_DIM, "pose")
    n_query = query_points.shape[1]
    if query_normals.shape[1] != n_query:
        raise DimensionMismatchError(
            f"query normals ({query_normals.shape[1]}) do not match query points ({n_query})"
        )
    if n_query == 0:
        raise DimensionMismatchError("query window is empty")
    if not 0.0 < inlier_ratio <= 1.0:
        raise ValueError(f"inlier_ratio must be in (0, 1], got {inlier_ratio}")

    transformed = apply_pose(pose, query_points)
    dists, idx = index.tree.query(transformed.T, k=1)
    dists = np.asarray(dists, dtype=float).reshape(-1)
    idx = np.asarray(idx, dtype=np.int64).reshape(-1)

    n_keep = max(1, int(math.floor(n_query * inlier_ratio)))
    keep = np.argsort(dists, kind="stable")[:n_keep]

    pc = index.points[:, idx[keep]]
    pr = query_points[:, keep]
    normal_c = index.normals[:, idx[keep]]
    normal_r = query_normals[:, keep]

    res1 = float(math.sqrt(np.mean(dists[keep] ** 2)))
    normal_err = rotate(pose, normal_r) - normal_c
    res2 = float(math.sqrt(np.mean(np.sum(normal_err * normal_err, axis=0))))

    return CorrespondenceResult(
        pc=pc,
        pr=pr.copy(),
        normal_c=normal_c,
        normal_r=normal_r.copy(),
        res1=res1,
        res2=res2,
    )


class KDTreeCorrespondenceSearch:
    """Default CorrespondenceSearch backed by scipy's cKDTree."""

    def build_index(self, fixed: np.ndarray, fixed_normals: np.ndarray) -> CorrespondenceIndex:
        return build_index(fixed, fixed_normals)

    def search(
        self,
        query_points: np.ndarray,
        query_normals: np.ndarray,
        index: CorrespondenceIndex,
        inlier_ratio: float,
        pose: np.ndarray,
    ) -> CorrespondenceResult:
        return search(query_points, query_normals, index, inlier_ratio, pose)
