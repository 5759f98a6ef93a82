"""Writing camera trajectories and map points in the TUM and KITTI text formats."""

from __future__ import annotations

import enum
import os
from collections.abc import Iterable
from dataclasses import dataclass

import numpy as np


class Sensor(enum.Enum):
    """Kind of input the tracking system works from."""

    MONOCULAR = 0
    STEREO = 1
    RGBD = 2

    @property
    def label(self) -> str:
        return _SENSOR_LABELS[self]

    @property
    def supports_frame_trajectory(self) -> bool:
        """Whether per-frame trajectories can be saved (not for monocular input)."""
        return self is not Sensor.MONOCULAR


_SENSOR_LABELS = {
    Sensor.MONOCULAR: "Monocular",
    Sensor.STEREO: "Stereo",
    Sensor.RGBD: "RGB-D",
}


def _as_pose(tcw) -> np.ndarray:
    arr = np.asarray(tcw, dtype=float)
    if arr.shape == (3, 4):
        arr = np.vstack([arr, [0.0, 0.0, 0.0, 1.0]])
    if arr.shape != (4, 4):
        raise ValueError("pose must be a 4x4 or 3x4 matrix")
    return arr


@dataclass(frozen=True)
class FramePose:
    """World-to-camera pose of a frame or keyframe at a point in time.

    ``lost`` marks a frame whose tracking failed (or a keyframe that was
    culled); ``frame_id`` orders keyframes when they are written.
    """

    timestamp: float
    tcw: np.ndarray
    lost: bool = False
    frame_id: int = 0

    def __post_init__(self):
        object.__setattr__(self, "tcw", _as_pose(self.tcw))
        object.__setattr__(self, "timestamp", float(self.timestamp))


def rotation_to_quaternion(r) -> np.ndarray:
    """Unit quaternion ``[qx, qy, qz, qw]`` of a 3x3 rotation matrix."""
    m = np.asarray(r, dtype=float)
    if m.shape != (3, 3):
        raise ValueError("rotation must be a 3x3 matrix")
    q = np.empty(4)
    trace = m[0, 0] + m[1, 1] + m[2, 2]
    if trace > 0.0:
        s = np.sqrt(trace + 1.0)
        q[3] = 0.5 * s
        s = 0.5 / s
        q[0] = (m[2, 1] - m[1, 2]) * s
        q[1] = (m[0, 2] - m[2, 0]) * s
        q[2] = (m[1, 0] - m[0, 1]) * s
    else:
        i = int(np.argmax(np.diag(m)))
        j = (i + 1) % 3
        k = (j + 1) % 3
        s = np.sqrt(m[i, i] - m[j, j] - m[k, k] + 1.0)
        q[i] = 0.5 * s
        s = 0.5 / s
        q[3] = (m[k, j] - m[j, k]) * s
        q[j] = (m[j, i] + m[i, j]) * s
        q[k] = (m[k, i] + m[i, k]) * s
    return q


def camera_to_world(tcw):
    """Split a world-to-camera pose into the camera's rotation and position in the world."""
    pose = _as_pose(tcw)
    rwc = pose[:3, :3].T
    twc = -rwc @ pose[:3, 3]
    return rwc, twc


def _fmt(values, precision: int) -> str:
    return " ".join(f"{float(np.float32(v)):.{precision}f}" for v in values)


def _write(path, lines: list[str]) -> int:
    with open(os.fspath(path), "w", encoding="utf-8") as f:
        f.writelines(line + "\n" for line in lines)
    return len(lines)


def write_tum_trajectory(path, frames: Iterable[FramePose]) -> int:
    """Write ``timestamp tx ty tz qx qy qz qw`` per tracked frame; lost frames are skipped.

    Returns the number of lines written.
    """
    lines = []
    for frame in frames:
        if frame.lost:
            continue
        rwc, twc = camera_to_world(frame.tcw)
        q = rotation_to_quaternion(rwc)
        lines.append(f"{frame.timestamp:.6f} " + _fmt((*twc, *q), 9))
    return _write(path, lines)


def write_keyframe_trajectory(path, keyframes: Iterable[FramePose]) -> int:
    """Write the TUM trajectory of keyframes ordered by id; culled ones are skipped.

    Returns the number of lines written.
    """
    lines = []
    for keyframe in sorted(keyframes, key=lambda kf: kf.frame_id):
        if keyframe.lost:
            continue
        rwc, center = camera_to_world(keyframe.tcw)
        q = rotation_to_quaternion(rwc)
        lines.append(f"{keyframe.timestamp:.6f} " + _fmt((*center, *q), 7))
    return _write(path, lines)


def write_kitti_trajectory(path, frames: Iterable[FramePose]) -> int:
    """Write the 3x4 camera-to-world matrix of every frame, row by row, one frame per line.

    Returns the number of lines written.
    """
    lines = []
    for frame in frames:
        rwc, twc = camera_to_world(frame.tcw)
        values = np.column_stack([rwc, twc]).reshape(-1)
        lines.append(_fmt(values, 9))
    return _write(path, lines)


def write_keypoints(path, points) -> int:
    """Write ``x y z`` per map point; returns the number of lines written."""
    arr = np.asarray(points, dtype=float)
    if arr.size == 0:
        arr = arr.reshape(0, 3)
    if arr.ndim != 2 or arr.shape[1] != 3:
        raise ValueError("points must have shape (n, 3)")
    return _write(path, [_fmt(p, 6) for p in arr])