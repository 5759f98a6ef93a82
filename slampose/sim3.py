"""Similarity transform (rotation, translation, scale) between two camera frames via RANSAC."""

from __future__ import annotations

import math
import random
from dataclasses import dataclass, field

import numpy as np

# Chi-square threshold (2 degrees of freedom, 99%) scaling each keypoint's variance.
_CHI2_TH = 9.210

_MIN_SET = 3


def _as_points(points, name):
    arr = np.asarray(points, dtype=float)
    if arr.size == 0:
        return np.zeros((0, 3))
    if arr.ndim != 2 or arr.shape[1] != 3:
        raise ValueError(f"{name} must have shape (n, 3)")
    return arr


def _intrinsics(k):
    k = np.asarray(k, dtype=float)
    if k.shape != (3, 3):
        raise ValueError("camera matrix must be 3x3")
    return k[0, 0], k[1, 1], k[0, 2], k[1, 2]


def _rodrigues(axis_angle):
    theta = float(np.linalg.norm(axis_angle))
    if theta == 0.0 or not math.isfinite(theta):
        return np.eye(3)
    k = axis_angle / theta
    kx = np.array([
        [0.0, -k[2], k[1]],
        [k[2], 0.0, -k[0]],
        [-k[1], k[0], 0.0],
    ])
    c, s = math.cos(theta), math.sin(theta)
    return c * np.eye(3) + (1.0 - c) * np.outer(k, k) + s * kx


@dataclass(frozen=True)
class Sim3Estimate:
    """A similarity mapping frame-2 points into frame 1: ``p1 = scale * rotation @ p2 + translation``.

    ``t12`` is the 4x4 matrix of that mapping and ``t21`` its inverse.
    """

    rotation: np.ndarray
    translation: np.ndarray
    scale: float
    t12: np.ndarray
    t21: np.ndarray


def compute_sim3(p1, p2, fix_scale=False):
    """Closed-form similarity aligning ``p2`` onto ``p1`` (Horn's quaternion method).

    ``p1`` and ``p2`` hold corresponding points as rows, at least three each.
    """
    p1 = _as_points(p1, "p1")
    p2 = _as_points(p2, "p2")
    if p1.shape != p2.shape:
        raise ValueError("p1 and p2 must have the same shape")
    if p1.shape[0] < _MIN_SET:
        raise ValueError("at least three correspondences are required")

    o1 = p1.mean(axis=0)
    o2 = p2.mean(axis=0)
    pr1 = p1 - o1
    pr2 = p2 - o2

    m = pr2.T @ pr1
    n11 = m[0, 0] + m[1, 1] + m[2, 2]
    n12 = m[1, 2] - m[2, 1]
    n13 = m[2, 0] - m[0, 2]
    n14 = m[0, 1] - m[1, 0]
    n22 = m[0, 0] - m[1, 1] - m[2, 2]
    n23 = m[0, 1] + m[1, 0]
    n24 = m[2, 0] + m[0, 2]
    n33 = -m[0, 0] + m[1, 1] - m[2, 2]
    n34 = m[1, 2] + m[2, 1]
    n44 = -m[0, 0] - m[1, 1] + m[2, 2]
    n_mat = np.array([
        [n11, n12, n13, n14],
        [n12, n22, n23, n24],
        [n13, n23, n33, n34],
        [n14, n24, n34, n44],
    ])

    _, evecs = np.linalg.eigh(n_mat)
    q = evecs[:, -1]
    vec = q[1:4]
    vec_norm = float(np.linalg.norm(vec))
    if vec_norm == 0.0:
        rotation = np.eye(3)
    else:
        ang = math.atan2(vec_norm, q[0])
        rotation = _rodrigues(2.0 * ang * vec / vec_norm)

    p3 = pr2 @ rotation.T
    if fix_scale:
        scale = 1.0
    else:
        scale = float(np.sum(pr1 * p3) / np.sum(p3 * p3))

    translation = o1 - scale * rotation @ o2

    t12 = np.eye(4)
    t12[:3, :3] = scale * rotation
    t12[:3, 3] = translation

    s_r_inv = (1.0 / scale) * rotation.T
    t21 = np.eye(4)
    t21[:3, :3] = s_r_inv
    t21[:3, 3] = -s_r_inv @ translation

    return Sim3Estimate(rotation, translation, scale, t12, t21)


def project(points, transform, k):
    """Transform points by a 4x4 matrix and project them with camera matrix ``k``."""
    pts = _as_points(points, "points")
    transform = np.asarray(transform, dtype=float)
    if transform.shape[0] < 3 or transform.shape[1] != 4:
        raise ValueError("transform must be a 3x4 or 4x4 matrix")
    cam = pts @ transform[:3, :3].T + transform[:3, 3]
    return camera_to_image(cam, k)


def camera_to_image(points, k):
    """Project camera-frame points to pixel coordinates with camera matrix ``k``."""
    pts = _as_points(points, "points")
    fx, fy, cx, cy = _intrinsics(k)
    with np.errstate(divide="ignore", invalid="ignore"):
        inv_z = 1.0 / pts[:, 2]
        x = pts[:, 0] * inv_z
        y = pts[:, 1] * inv_z
    return np.column_stack([fx * x + cx, fy * y + cy])


@dataclass(frozen=True)
class Sim3Result:
    """Outcome of a run of RANSAC iterations.

    ``transform`` is the accepted 4x4 T12, or ``None``. ``inliers`` has one
    flag per original match. ``no_more`` tells that the iteration budget is spent.
    """

    transform: np.ndarray | None
    inliers: list[bool] = field(default_factory=list)
    n_inliers: int = 0
    no_more: bool = False

    @property
    def found(self) -> bool:
        return self.transform is not None


class Sim3Solver:
    """RANSAC search for the similarity between two keyframes' matched 3D points."""

    def __init__(
        self,
        points_c1,
        points_c2,
        k1,
        k2,
        sigma2_1,
        sigma2_2,
        indices1=None,
        n1=None,
        fix_scale=False,
        rng=None,
    ):
        x1 = _as_points(points_c1, "points_c1")
        x2 = _as_points(points_c2, "points_c2")
        s1 = np.asarray(sigma2_1, dtype=float).reshape(-1)
        s2 = np.asarray(sigma2_2, dtype=float).reshape(-1)
        n = x1.shape[0]
        if x2.shape[0] != n or s1.shape[0] != n or s2.shape[0] != n:
            raise ValueError("points and variances must all have the same length")

        if indices1 is None:
            indices1 = range(n)
        indices = tuple(int(i) for i in indices1)
        if len(indices) != n:
            raise ValueError("indices1 must have one entry per correspondence")
        if n1 is None:
            n1 = max(indices, default=-1) + 1
        n1 = int(n1)
        if any(i < 0 or i >= n1 for i in indices):
            raise ValueError("indices must lie in [0, n1)")

        self._k1 = np.asarray(k1, dtype=float)
        self._k2 = np.asarray(k2, dtype=float)
        _intrinsics(self._k1)
        _intrinsics(self._k2)

        self._x1 = x1
        self._x2 = x2
        self._indices1 = indices
        self.n1 = n1
        self.fix_scale = bool(fix_scale)
        self._max_error1 = _CHI2_TH * s1
        self._max_error2 = _CHI2_TH * s2
        self._p1_im1 = camera_to_image(x1, self._k1)
        self._p2_im2 = camera_to_image(x2, self._k2)
        self._rng = rng if rng is not None else random.Random()

        self.best_inlier_count = 0
        self._best: Sim3Estimate | None = None
        self._best_inliers = np.zeros(n, dtype=bool)

        self.set_ransac_parameters()

    @property
    def n_correspondences(self) -> int:
        return self._x1.shape[0]

    @property
    def estimated_rotation(self):
        return None if self._best is None else self._best.rotation.copy()

    @property
    def estimated_translation(self):
        return None if self._best is None else self._best.translation.copy()

    @property
    def estimated_scale(self):
        return None if self._best is None else self._best.scale

    def set_ransac_parameters(self, probability=0.99, min_inliers=6, max_iterations=300):
        """Set RANSAC parameters and restart the iteration count."""
        n = self.n_correspondences
        self.probability = float(probability)
        self.min_inliers = int(min_inliers)

        if self.min_inliers == n:
            n_iterations = 1
        else:
            eps = self.min_inliers / n if n > 0 else 0.0
            denom_arg = 1.0 - eps ** 3
            if denom_arg <= 0.0 or denom_arg >= 1.0 or self.probability >= 1.0:
                n_iterations = int(max_iterations)
            else:
                n_iterations = math.ceil(
                    math.log(1.0 - self.probability) / math.log(denom_arg)
                )
        self.max_iterations = max(1, min(n_iterations, int(max_iterations)))
        self.iterations = 0

    def find(self) -> Sim3Result:
        """Run RANSAC until a transform is accepted or the budget is spent."""
        return self.iterate(self.max_iterations)

    def iterate(self, n_iterations) -> Sim3Result:
        """Run at most ``n_iterations`` RANSAC iterations, keeping state between calls."""
        flags = [False] * self.n1
        n = self.n_correspondences
        if n < self.min_inliers or n < _MIN_SET:
            return Sim3Result(transform=None, inliers=flags, no_more=True)

        current = 0
        while self.iterations < self.max_iterations and current < n_iterations:
            current += 1
            self.iterations += 1

            available = list(range(n))
            sample = []
            for _ in range(_MIN_SET):
                randi = self._rng.randint(0, len(available) - 1)
                sample.append(available[randi])
                available[randi] = available[-1]
                available.pop()

            with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
                estimate = compute_sim3(self._x1[sample], self._x2[sample], self.fix_scale)
                inliers = self._check_inliers(estimate)
            count = int(inliers.sum())

            if count >= self.best_inlier_count:
                self._best_inliers = inliers
                self.best_inlier_count = count
                self._best = estimate

                if count > self.min_inliers:
                    for corr in np.flatnonzero(inliers):
                        flags[self._indices1[corr]] = True
                    return Sim3Result(
                        transform=estimate.t12.copy(),
                        inliers=flags,
                        n_inliers=count,
                        no_more=False,
                    )

        return Sim3Result(
            transform=None,
            inliers=flags,
            no_more=self.iterations >= self.max_iterations,
        )

    def _check_inliers(self, estimate):
        p2_im1 = project(self._x2, estimate.t12, self._k1)
        p1_im2 = project(self._x1, estimate.t21, self._k2)
        err1 = np.sum((self._p1_im1 - p2_im1) ** 2, axis=1)
        err2 = np.sum((p1_im2 - self._p2_im2) ** 2, axis=1)
        return (err1 < self._max_error1) & (err2 < self._max_error2)