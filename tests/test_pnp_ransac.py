import math
import random

import numpy as np
import pytest

from slampose.pnp_ransac import PnPResult, PnPSolver

FU, FV, UC, VC = 500.0, 500.0, 320.0, 240.0


def _rotation(ax, ay, az):
    cx, sx = math.cos(ax), math.sin(ax)
    cy, sy = math.cos(ay), math.sin(ay)
    cz, sz = math.cos(az), math.sin(az)
    rx = np.array([[1, 0, 0], [0, cx, -sx], [0, sx, cx]])
    ry = np.array([[cy, 0, sy], [0, 1, 0], [-sy, 0, cy]])
    rz = np.array([[cz, -sz, 0], [sz, cz, 0], [0, 0, 1]])
    return rz @ ry @ rx


def _scene(n_inliers, n_outliers, seed=0):
    gen = np.random.default_rng(seed)
    r = _rotation(0.1, -0.2, 0.05)
    t = np.array([0.3, -0.1, 6.0])
    n = n_inliers + n_outliers
    pw = gen.uniform([-2, -2, -2], [2, 2, 2], size=(n, 3))
    pc = pw @ r.T + t
    uv = np.column_stack([UC + FU * pc[:, 0] / pc[:, 2], VC + FV * pc[:, 1] / pc[:, 2]])
    uv[n_inliers:] += gen.uniform(60, 120, size=(n_outliers, 2))
    return pw, uv, r, t


def test_find_recovers_pose_and_inliers():
    pw, uv, r, t = _scene(30, 8)
    solver = PnPSolver(pw, uv, np.ones(len(pw)), FU, FV, UC, VC, rng=random.Random(1))
    result = solver.find()
    assert result.found
    assert result.pose.shape == (4, 4)
    assert np.allclose(result.pose[:3, :3], r, atol=1e-3)
    assert np.allclose(result.pose[:3, 3], t, atol=1e-2)
    assert np.allclose(result.pose[3], [0, 0, 0, 1])
    assert result.n_inliers == 30
    assert result.inliers == [True] * 30 + [False] * 8


def test_inlier_flags_use_keypoint_indices():
    pw, uv, _, _ = _scene(20, 4, seed=3)
    keypoints = [2 * i + 1 for i in range(len(pw))]
    n_matches = 2 * len(pw) + 5
    solver = PnPSolver(
        pw, uv, np.ones(len(pw)), FU, FV, UC, VC,
        keypoint_indices=keypoints, n_matches=n_matches, rng=random.Random(7),
    )
    result = solver.find()
    assert len(result.inliers) == n_matches
    expected = {keypoints[i] for i in range(20)}
    assert {i for i, flag in enumerate(result.inliers) if flag} == expected
    assert result.n_inliers == sum(result.inliers)


def test_too_few_correspondences_reports_no_more():
    pw, uv, _, _ = _scene(3, 0)
    solver = PnPSolver(pw, uv, np.ones(3), FU, FV, UC, VC, rng=random.Random(0))
    result = solver.iterate(5)
    assert result == PnPResult(pose=None, inliers=[], n_inliers=0, no_more=True)
    assert solver.iterations == 0


def test_all_points_required_gives_single_iteration():
    pw, uv, _, _ = _scene(8, 0)
    solver = PnPSolver(pw, uv, np.ones(8), FU, FV, UC, VC, rng=random.Random(0))
    assert solver.min_inliers == 8
    assert solver.max_iterations == 1
    assert solver.epsilon == pytest.approx(1.0)


def test_parameters_respect_limits():
    pw, uv, _, _ = _scene(100, 0)
    solver = PnPSolver(pw, uv, np.ones(100), FU, FV, UC, VC, rng=random.Random(0))
    solver.set_ransac_parameters(0.99, 10, 300, 4, 0.5, 5.991)
    assert solver.min_inliers == 50
    assert 1 <= solver.max_iterations <= 300
    solver.set_ransac_parameters(0.99, 10, 3, 4, 0.05, 5.991)
    assert solver.max_iterations <= 3
    assert solver.min_inliers == 10
    assert solver.epsilon == pytest.approx(0.1)


def test_noise_only_exhausts_budget():
    gen = np.random.default_rng(5)
    pw = gen.uniform(-2, 2, size=(20, 3)) + np.array([0, 0, 6])
    uv = gen.uniform(0, 640, size=(20, 2))
    solver = PnPSolver(pw, uv, np.ones(20), FU, FV, UC, VC, rng=random.Random(2))
    solver.set_ransac_parameters(0.99, 18, 20, 4, 0.4, 5.991)
    result = solver.iterate(5)
    assert result.pose is None
    assert result.no_more is True
    assert result.inliers == []
    assert solver.iterations >= solver.max_iterations


def test_mismatched_lengths_raise():
    pw, uv, _, _ = _scene(10, 0)
    with pytest.raises(ValueError):
        PnPSolver(pw, uv[:-1], np.ones(10), FU, FV, UC, VC)
    with pytest.raises(ValueError):
        PnPSolver(pw, uv, np.ones(9), FU, FV, UC, VC)


def test_keypoint_index_out_of_range_raises():
    pw, uv, _, _ = _scene(10, 0)
    with pytest.raises(ValueError):
        PnPSolver(pw, uv, np.ones(10), FU, FV, UC, VC, keypoint_indices=range(10), n_matches=5)