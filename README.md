# slampose

Geometric building blocks for visual SLAM. The package is built on NumPy.

- `slampose.epnp` computes camera pose from 3D–2D correspondences in closed form, using
  EPnP with Gauss–Newton refinement of the betas. The class is `EPnP`. The module also has
  the helpers `qr_solve` (Householder least squares), `mat_to_quat` and `relative_error`.
- `slampose.pnp_ransac` runs `PnPSolver`, which wraps EPnP in RANSAC. Each point gets an
  error threshold of `sigma2 * th2`. After a hypothesis is accepted, the pose is refined on
  its inliers. Results come back as `PnPResult`.
- `slampose.sim3` provides `compute_sim3`, which aligns two point sets with Horn's
  closed-form quaternion method. The scale can be fixed. `Sim3Solver` runs RANSAC on it and
  accepts a point only when its reprojection error is under `9.210 * sigma2` in both cameras.
  The module also has `project`, `camera_to_image`, `Sim3Estimate` and `Sim3Result`.
- `slampose.trajectory` writes camera and keyframe trajectories in the TUM and KITTI text
  formats, and map points as `x y z` lines. It also defines `Sensor`, `FramePose`,
  `rotation_to_quaternion` and `camera_to_world`.
- `slampose.control` has two thread-safe flag sets. `ThreadControl` holds the stop, release
  and finish handshakes of a worker loop. `ModeRequests` holds localization-mode and reset
  requests, which the tracking loop takes as `ModeChange` values and booleans.

## Installation

```
pip install .
```

To run the tests:

```
pip install .[test]
pytest
```

## Pose from correspondences

```python
import numpy as np
from slampose.epnp import EPnP

solver = EPnP(fu=500.0, fv=500.0, uc=320.0, vc=240.0)
points_3d = np.random.default_rng(0).uniform(-1, 1, (20, 3)) + [0, 0, 5]
points_2d = np.column_stack([
    320.0 + 500.0 * points_3d[:, 0] / points_3d[:, 2],
    240.0 + 500.0 * points_3d[:, 1] / points_3d[:, 2],
])
rotation, translation, mean_error = solver.compute_pose(points_3d, points_2d)
```

## Robust pose with RANSAC

```python
import random
from slampose.pnp_ransac import PnPSolver

sigma2 = np.ones(len(points_3d))
solver = PnPSolver(points_3d, points_2d, sigma2, 500.0, 500.0, 320.0, 240.0,
                   rng=random.Random(1))
solver.set_ransac_parameters(0.99, 10, 300, 4, 0.5, 5.991)
result = solver.find()
if result.found:
    print(result.pose, result.n_inliers)
```

`keypoint_indices` and `n_matches` are optional. When they are given, `result.inliers` has
one flag per original match, and the flags are placed at those indices. The solver keeps its
state between calls. `iterate(n)` runs a few iterations at a time, and `result.no_more`
reports that the iteration budget is spent.

## Similarity between two frames

```python
from slampose.sim3 import compute_sim3

estimate = compute_sim3(p1, p2)          # p1 ≈ scale * rotation @ p2 + translation
estimate.rotation, estimate.translation, estimate.scale, estimate.t12, estimate.t21
```

`Sim3Solver(points_c1, points_c2, k1, k2, sigma2_1, sigma2_2, ...)` takes matched points in
each camera's frame along with the two 3×3 camera matrices. Its `find()` returns a
`Sim3Result`. The best estimate so far is available as `estimated_rotation`,
`estimated_translation` and `estimated_scale`.

## Saving trajectories

```python
from slampose.trajectory import FramePose, write_tum_trajectory

frames = [FramePose(timestamp=0.0, tcw=np.eye(4)), FramePose(1.0, np.eye(4), lost=True)]
write_tum_trajectory("CameraTrajectory.txt", frames)   # returns 1: lost frames are skipped
```

Each writer returns the number of lines it wrote.

- `write_tum_trajectory` writes `timestamp tx ty tz qx qy qz qw`, with 9 decimals for the
  pose values.
- `write_keyframe_trajectory` sorts keyframes by `frame_id`, skips those marked `lost`, and
  writes 7 decimals.
- `write_kitti_trajectory` writes the 3×4 camera-to-world matrix of every frame.
- `write_keypoints` writes one `x y z` line per point.

Poses are world-to-camera (`tcw`) and must already be expressed in the frame you want.

## What this package does not do

The package has no feature extraction or matching. It has no tracking loop, map, keyframe
database, loop closing or bundle adjustment. It has no viewer and no command-line program.
It computes poses and similarities from correspondences you supply, writes trajectories from
poses you supply, and provides the flags with which your own threads can coordinate.