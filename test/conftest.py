import os
import sys

import numpy as np
import pytest

# Ensure local package import works for pytest collection.
_TEST_DIR = os.path.dirname(__file__)
_PKG_ROOT = os.path.abspath(os.path.join(_TEST_DIR, ".."))
if _PKG_ROOT not in sys.path:
    sys.path.insert(0, _PKG_ROOT)

from bingham_icp.common.quaternion import euler_to_rotmat  # noqa: E402


# =============================================================================
# Synthetic clouds
# =============================================================================


def make_grid_cloud(n_per_axis: int = 8, spacing: float = 0.5):
    """
    Regular grid centered on the origin, with unit radial normals.

    Returns:
        (points, normals), each (3, n_per_axis**3)
    """
    offsets = (np.arange(n_per_axis) - 0.5 * (n_per_axis - 1)) * spacing
    gx, gy, gz = np.meshgrid(offsets, offsets, offsets, indexing="ij")
    points = np.vstack([gx.ravel(), gy.ravel(), gz.ravel()])
    normals = points / np.linalg.norm(points, axis=0, keepdims=True)
    return points, normals


def make_moving_cloud(fixed, fixed_normals, pose, seed: int = 7):
    """
    Moving cloud such that fixed = R(pose) @ moving + t(pose), shuffled.

    Returns:
        (moving, moving_normals)
    """
    R = euler_to_rotmat(pose[3:])
    t = np.asarray(pose[:3], dtype=float).reshape(3, 1)
    moving = R.T @ (fixed - t)
    moving_normals = R.T @ fixed_normals
    perm = np.random.RandomState(seed).permutation(fixed.shape[1])
    return moving[:, perm], moving_normals[:, perm]


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def numpy_seed():
    """Set numpy random seed for reproducible tests."""
    np.random.seed(42)
    yield


@pytest.fixture
def grid_cloud():
    """8x8x8 grid (spacing 0.5) with radial normals."""
    return make_grid_cloud()


@pytest.fixture
def small_pose():
    """Small pose [t, yaw, pitch, roll] well inside the grid's capture radius."""
    return np.array([0.04, -0.03, 0.02, 0.02, -0.015, 0.01], dtype=float)


@pytest.fixture
def identity_pose():
    """Return identity pose as 6D vector [x, y, z, yaw, pitch, roll]."""
    return np.zeros(6, dtype=np.float64)


@pytest.fixture
def registration_pair(grid_cloud, small_pose):
    """(moving, fixed, normal_moving, normal_fixed, true_pose)."""
    fixed, fixed_normals = grid_cloud
    moving, moving_normals = make_moving_cloud(fixed, fixed_normals, small_pose)
    return moving, fixed, moving_normals, fixed_normals, small_pose
