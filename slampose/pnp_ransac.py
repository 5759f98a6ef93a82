"""RANSAC camera pose estimation over EPnP hypotheses, with inlier refinement."""

from __future__ import annotations

import math
import random
from dataclasses import dataclass, field

import numpy as np

from slampose.epnp import EPnP


@dataclass(frozen=True)
class PnPResult:
    """Outcome of a run of RANSAC iterations.

    ``pose`` is the 4x4 world-to-camera transform, or ``None`` when no pose
    was accepted. ``inliers`` has one flag per original match when a pose was
    found and is empty otherwise. ``no_more`` tells that the iteration budget
    is spent and further calls are pointless.
    """

    pose: np.ndarray | None
    inliers: list[bool] = field(default_factory=list)
    n_inliers: int = 0
    no_more: bool = False

    @property
    def found(self) -> bool:
        return self.pose is not None


def _pose_matrix(r, t):
    pose = np.eye(4, dtype=np.float32)
    pose[:3, :3] = r
    pose[:3, 3] = t
    return pose


class PnPSolver:
    """Robust pose from 3D-2D correspondences: random minimal sets, then refinement."""

    def __init__(
        self,
        points_3d,
        points_2d,
        sigma2,
        fu,
        fv,
        uc,
        vc,
        keypoint_indices=None,
        n_matches=None,
        rng=None,
    ):
        pws = np.asarray(points_3d, dtype=float).reshape(-1, 3) if len(points_3d) else np.zeros((0, 3))
        us = np.asarray(points_2d, dtype=float).reshape(-1, 2) if len(points_2d) else np.zeros((0, 2))
        sig = np.asarray(sigma2, dtype=float).reshape(-1)
        if pws.shape[0] != us.shape[0] or pws.shape[0] != sig.shape[0]:
            raise ValueError("points_3d, points_2d and sigma2 must have the same length")
        n = pws.shape[0]

        if keypoint_indices is None:
            keypoint_indices = range(n)
        indices = tuple(int(i) for i in keypoint_indices)
        if len(indices) != n:
            raise ValueError("keypoint_indices must have one entry per correspondence")
        if n_matches is None:
            n_matches = max(indices, default=-1) + 1
        n_matches = int(n_matches)
        if any(i < 0 or i >= n_matches for i in indices):
            raise ValueError("keypoint indices must lie in [0, n_matches)")

        self._pws = pws
        self._us = us
        self._sigma2 = sig
        self._keypoint_indices = indices
        self.n_matches = n_matches
        self.fu = float(fu)
        self.fv = float(fv)
        self.uc = float(uc)
        self.vc = float(vc)
        self._epnp = EPnP(self.fu, self.fv, self.uc, self.vc)
        self._rng = rng if rng is not None else random.Random()

        self.iterations = 0
        self.best_inlier_count = 0
        self._best_inliers = np.zeros(n, dtype=bool)
        self._best_pose: np.ndarray | None = None

        self.set_ransac_parameters()

    @property
    def n_correspondences(self) -> int:
        return self._pws.shape[0]

    def set_ransac_parameters(
        self,
        probability=0.99,
        min_inliers=8,
        max_iterations=300,
        min_set=4,
        epsilon=0.4,
        th2=5.991,
    ):
        """Set RANSAC parameters, adjusted to the number of correspondences."""
        if min_set < 4:
            raise ValueError("min_set must be at least 4")
        n = self.n_correspondences
        self.probability = float(probability)
        self.min_set = int(min_set)

        n_min_inliers = int(n * epsilon)
        n_min_inliers = max(n_min_inliers, int(min_inliers), self.min_set)
        self.min_inliers = n_min_inliers

        eps = float(epsilon)
        if n > 0 and eps < self.min_inliers / n:
            eps = self.min_inliers / n
        self.epsilon = eps

        if self.min_inliers == n:
            n_iterations = 1
        else:
            denom_arg = 1.0 - eps ** 3
            if denom_arg <= 0.0 or denom_arg >= 1.0 or self.probability >= 1.0:
                n_iterations = int(max_iterations)
            else:
                n_iterations = math.ceil(
                    math.log(1.0 - self.probability) / math.log(denom_arg)
                )
        self.max_iterations = max(1, min(n_iterations, int(max_iterations)))

        self._max_error = self._sigma2 * float(th2)

    def find(self) -> PnPResult:
        """Run RANSAC until a pose is accepted or the iteration budget is spent."""
        return self.iterate(self.max_iterations)

    def iterate(self, n_iterations) -> PnPResult:
        """Run RANSAC iterations; the solver keeps its state between calls."""
        n = self.n_correspondences
        if n < self.min_inliers:
            return PnPResult(pose=None, no_more=True)

        all_indices = list(range(n))
        current = 0
        while self.iterations < self.max_iterations or current < n_iterations:
            current += 1
            self.iterations += 1

            available = list(all_indices)
            sample = []
            for _ in range(self.min_set):
                randi = self._rng.randint(0, len(available) - 1)
                sample.append(available[randi])
                available[randi] = available[-1]
                available.pop()

            hypothesis = self._estimate(sample)
            if hypothesis is None:
                continue
            r, t = hypothesis
            inliers = self._check_inliers(r, t)
            count = int(inliers.sum())

            if count >= self.min_inliers:
                if count > self.best_inlier_count:
                    self._best_inliers = inliers
                    self.best_inlier_count = count
                    self._best_pose = _pose_matrix(r, t)

                refined = self._refine()
                if refined is not None:
                    pose, refined_inliers = refined
                    return PnPResult(
                        pose=pose,
                        inliers=self._inlier_flags(refined_inliers),
                        n_inliers=int(refined_inliers.sum()),
                        no_more=False,
                    )

        if self.iterations >= self.max_iterations:
            if self.best_inlier_count >= self.min_inliers and self._best_pose is not None:
                return PnPResult(
                    pose=self._best_pose.copy(),
                    inliers=self._inlier_flags(self._best_inliers),
                    n_inliers=self.best_inlier_count,
                    no_more=True,
                )
            return PnPResult(pose=None, no_more=True)
        return PnPResult(pose=None)

    def _estimate(self, indices):
        try:
            r, t, _ = self._epnp.compute_pose(self._pws[indices], self._us[indices])
        except np.linalg.LinAlgError:
            return None
        return r, t

    def _refine(self):
        indices = np.flatnonzero(self._best_inliers)
        if indices.size == 0:
            return None
        hypothesis = self._estimate(indices)
        if hypothesis is None:
            return None
        r, t = hypothesis
        inliers = self._check_inliers(r, t)
        if int(inliers.sum()) > self.min_inliers:
            return _pose_matrix(r, t), inliers
        return None

    def _check_inliers(self, r, t):
        with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
            pc = self._pws @ np.asarray(r, dtype=float).T + np.asarray(t, dtype=float)
            inv_z = 1.0 / pc[:, 2]
            ue = self.uc + self.fu * pc[:, 0] * inv_z
            ve = self.vc + self.fv * pc[:, 1] * inv_z
            error2 = (self._us[:, 0] - ue) ** 2 + (self._us[:, 1] - ve) ** 2
            return error2 < self._max_error

    def _inlier_flags(self, mask):
        flags = [False] * self.n_matches
        for corr, is_inlier in enumerate(mask):
            if is_inlier:
                flags[self._keypoint_indices[corr]] = True
        return flags