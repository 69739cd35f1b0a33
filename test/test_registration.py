"""
Tests for the Bingham Normal ICP registration loop.

Verifies:
- Recovery of a known pose on a synthetic grid, with convergence no earlier
  than min_iterations
- Iteration ceiling min(max_iterations, N // window)
- Pose history layout and diagnostics
- Batch splitting and loop helpers
"""

import numpy as np
import pytest

from bingham_icp.backend.registration import (
    BinghamNormalRegistration,
    RegistrationStatus,
    noise_magnitude,
    pose_delta,
    registration_est_bingham_normal,
    split_correspondences,
)
from bingham_icp.common.errors import (
    CorrespondenceSplitError,
    DimensionMismatchError,
    InvalidPointDimensionError,
)
from bingham_icp.common.param_models import RegistrationParams
from bingham_icp.frontend.correspondence import CorrespondenceResult

from conftest import make_grid_cloud, make_moving_cloud


class RandomCorrespondenceSearch:
    """Search stub that pairs every query point with a random fixed point."""

    def __init__(self, seed: int = 0):
        self.rng = np.random.RandomState(seed)
        self.index_builds = 0
        self.searches = 0

    def build_index(self, fixed, fixed_normals):
        self.index_builds += 1
        return None

    def search(self, query_points, query_normals, index, inlier_ratio, pose):
        self.searches += 1
        k = query_points.shape[1]
        normals = self.rng.randn(3, k)
        normals /= np.linalg.norm(normals, axis=0, keepdims=True)
        return CorrespondenceResult(
            pc=self.rng.randn(3, k),
            pr=query_points.copy(),
            normal_c=normals,
            normal_r=query_normals.copy(),
            res1=0.5,
            res2=0.5,
        )


def _random_clouds(n, seed=1):
    rng = np.random.RandomState(seed)
    moving = rng.randn(3, n)
    normals = rng.randn(3, n)
    normals /= np.linalg.norm(normals, axis=0, keepdims=True)
    return moving, moving.copy(), normals, normals.copy()


class TestRegistrationConvergence:

    def test_recovers_known_pose(self, registration_pair):
        moving, fixed, normal_moving, normal_fixed, pose = registration_pair
        result = registration_est_bingham_normal(moving, fixed, normal_moving, normal_fixed)

        assert result.status == RegistrationStatus.CONVERGED
        assert result.converged
        assert np.allclose(result.pose, pose, atol=1e-6)

    def test_convergence_not_before_min_iterations(self, registration_pair):
        moving, fixed, normal_moving, normal_fixed, _ = registration_pair
        result = registration_est_bingham_normal(moving, fixed, normal_moving, normal_fixed)
        # 512 points / window 20 -> ceiling 25
        assert result.iterations == 20

    def test_pose_history_layout(self, registration_pair):
        moving, fixed, normal_moving, normal_fixed, _ = registration_pair
        result = registration_est_bingham_normal(moving, fixed, normal_moving, normal_fixed)

        assert result.pose_history.shape == (result.iterations + 1, 6)
        assert np.array_equal(result.pose_history[0], np.zeros(6))
        assert np.array_equal(result.pose_history[-1], result.pose)

    def test_diagnostics_per_iteration(self, registration_pair):
        moving, fixed, normal_moving, normal_fixed, _ = registration_pair
        result = registration_est_bingham_normal(moving, fixed, normal_moving, normal_fixed)

        assert len(result.diagnostics) == result.iterations
        assert [d.iteration for d in result.diagnostics] == list(range(1, result.iterations + 1))
        first = result.diagnostics[0]
        assert first.n_correspondences == 20
        assert first.n_normal_correspondences == 20
        assert first.scaled_inversion
        last = result.diagnostics[-1]
        assert last.dT <= 1e-4
        assert last.dR <= 9e-3
        assert last.concentrations[0] == 0.0

    def test_state_invariant(self, registration_pair):
        moving, fixed, normal_moving, normal_fixed, _ = registration_pair
        result = registration_est_bingham_normal(moving, fixed, normal_moving, normal_fixed)
        z = result.state.concentrations
        assert z[0] == 0.0
        assert np.all(z[1:] <= 0.0)

    def test_identity_registration(self, grid_cloud, identity_pose):
        fixed, normals = grid_cloud
        result = registration_est_bingham_normal(fixed, fixed, normals, normals)
        assert result.converged
        assert np.allclose(result.pose, identity_pose, atol=1e-9)

    def test_large_units_and_offset(self):
        """Clouds in large units with a large initial offset register without overflow."""
        fixed, normals = make_grid_cloud()
        fixed = fixed * 1e6
        pose = np.array([1e5, 0.0, 0.0, 0.02, -0.015, 0.01])
        moving, moving_normals = make_moving_cloud(fixed, normals, pose)

        result = registration_est_bingham_normal(moving, fixed, moving_normals, normals)

        assert result.status in (RegistrationStatus.CONVERGED, RegistrationStatus.ITERATION_LIMIT_REACHED)
        assert np.all(np.isfinite(result.pose_history))
        assert result.state.concentrations[0] == 0.0
        assert result.diagnostics[0].r_mag > 1e8
        assert np.allclose(result.pose[3:], pose[3:], atol=1e-6)


class TestIterationCeiling:

    def test_max_iterations_reached(self):
        moving, fixed, nm, nf = _random_clouds(2400)
        searcher = RandomCorrespondenceSearch()
        result = registration_est_bingham_normal(moving, fixed, nm, nf, search=searcher)

        assert result.status == RegistrationStatus.ITERATION_LIMIT_REACHED
        assert not result.converged
        assert result.iterations == 100
        assert searcher.index_builds == 1
        assert searcher.searches == 100

    def test_cloud_size_bounds_iterations(self):
        moving, fixed, nm, nf = _random_clouds(300)
        result = registration_est_bingham_normal(
            moving, fixed, nm, nf, search=RandomCorrespondenceSearch()
        )
        assert result.status == RegistrationStatus.ITERATION_LIMIT_REACHED
        assert result.iterations == 15
        assert result.pose_history.shape == (16, 6)

    def test_cloud_smaller_than_window(self):
        moving, fixed, nm, nf = _random_clouds(10)
        searcher = RandomCorrespondenceSearch()
        result = registration_est_bingham_normal(moving, fixed, nm, nf, search=searcher)

        assert result.iterations == 0
        assert result.status == RegistrationStatus.ITERATION_LIMIT_REACHED
        assert np.array_equal(result.pose, np.zeros(6))
        assert result.pose_history.shape == (1, 6)
        assert searcher.searches == 0

    def test_iteration_limit(self):
        reg = BinghamNormalRegistration(RegistrationParams(window_size=10, max_iterations=30))
        assert reg.iteration_limit(1000) == 30
        assert reg.iteration_limit(95) == 9
        assert reg.iteration_limit(9) == 0

    def test_windows_are_consumed_in_order(self):
        moving, fixed, nm, nf = _random_clouds(100)
        seen = []

        class RecordingSearch(RandomCorrespondenceSearch):
            def search(self, query_points, query_normals, index, inlier_ratio, pose):
                seen.append(query_points.copy())
                return super().search(query_points, query_normals, index, inlier_ratio, pose)

        registration_est_bingham_normal(moving, fixed, nm, nf, search=RecordingSearch())
        assert len(seen) == 5
        for i, window in enumerate(seen):
            assert np.array_equal(window, moving[:, 20 * i:20 * (i + 1)])


class TestRegistrationInputs:

    def test_rejects_two_dimensional_points(self, grid_cloud):
        fixed, normals = grid_cloud
        with pytest.raises(InvalidPointDimensionError):
            registration_est_bingham_normal(fixed[:2], fixed, normals, normals)

    def test_rejects_two_dimensional_fixed(self, grid_cloud):
        fixed, normals = grid_cloud
        with pytest.raises(InvalidPointDimensionError):
            registration_est_bingham_normal(fixed, fixed[:2], normals, normals)

    def test_rejects_moving_normal_mismatch(self, grid_cloud):
        fixed, normals = grid_cloud
        with pytest.raises(DimensionMismatchError):
            registration_est_bingham_normal(fixed, fixed, normals[:, :-1], normals)

    def test_inputs_not_modified(self, registration_pair):
        moving, fixed, normal_moving, normal_fixed, _ = registration_pair
        copies = [a.copy() for a in (moving, fixed, normal_moving, normal_fixed)]
        registration_est_bingham_normal(moving, fixed, normal_moving, normal_fixed)
        for a, a_copy in zip((moving, fixed, normal_moving, normal_fixed), copies):
            assert np.array_equal(a, a_copy)


class TestSplitCorrespondences:

    def test_interleaves_odd_and_even(self):
        pc = np.arange(18, dtype=float).reshape(3, 6)
        pr = -pc
        p1c, p1r, p2c, p2r = split_correspondences(pc, pr, 6)
        assert np.array_equal(p1c, pc[:, [0, 2, 4]])
        assert np.array_equal(p2c, pc[:, [1, 3, 5]])
        assert np.array_equal(p1r, pr[:, [0, 2, 4]])
        assert np.array_equal(p2r, pr[:, [1, 3, 5]])

    def test_odd_size_drops_last(self):
        pc = np.arange(15, dtype=float).reshape(3, 5)
        p1c, _, p2c, _ = split_correspondences(pc, pc, 5)
        assert np.array_equal(p1c, pc[:, [0, 2]])
        assert np.array_equal(p2c, pc[:, [1, 3]])

    def test_extra_columns_ignored(self):
        pc = np.arange(24, dtype=float).reshape(3, 8)
        p1c, _, p2c, _ = split_correspondences(pc, pc, 4)
        assert p1c.shape == (3, 2)
        assert p2c.shape == (3, 2)

    def test_too_few_columns(self):
        pc = np.zeros((3, 3))
        with pytest.raises(DimensionMismatchError):
            split_correspondences(pc, pc, 4)

    @pytest.mark.parametrize("trunc_size", range(2, 42))
    def test_batch_counters_stay_within_capacity(self, trunc_size):
        """Every trunc_size fills both batches exactly, so the capacity guard never trips."""
        pc = np.arange(3 * trunc_size, dtype=float).reshape(3, trunc_size)
        try:
            p1c, p1r, p2c, p2r = split_correspondences(pc, pc, trunc_size)
        except CorrespondenceSplitError:
            pytest.fail(f"split capacity exceeded for trunc_size={trunc_size}")
        for batch in (p1c, p1r, p2c, p2r):
            assert batch.shape == (3, trunc_size // 2)
        assert np.array_equal(p1c[:, -1], pc[:, 2 * (trunc_size // 2) - 2])
        assert np.array_equal(p2c[:, -1], pc[:, 2 * (trunc_size // 2) - 1])


class TestHelpers:

    def test_pose_delta(self):
        dT, dR = pose_delta(np.array([1.0, 2.0, 2.0, 0.0, 0.0, 0.0]), np.zeros(6))
        assert dT == pytest.approx(3.0)
        assert dR == 0.0

    def test_pose_delta_rotation(self):
        dT, dR = pose_delta(np.zeros(6), np.array([0.0, 0.0, 0.0, 0.3, 0.4, 0.0]))
        assert dT == 0.0
        assert dR == pytest.approx(0.5)

    def test_pose_delta_rejects_short_pose(self):
        with pytest.raises(DimensionMismatchError):
            pose_delta(np.zeros(5), np.zeros(6))

    def test_noise_magnitude_floor(self):
        assert noise_magnitude(0.0) == pytest.approx(0.04)
        assert noise_magnitude(6.0) == pytest.approx(1.04)

    def test_noise_magnitude_monotonic(self):
        values = [noise_magnitude(r) for r in np.linspace(0.0, 10.0, 21)]
        assert all(b > a for a, b in zip(values, values[1:]))
