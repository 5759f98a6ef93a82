import math

import numpy as np
import pytest

from slampose.trajectory import (
    FramePose,
    Sensor,
    camera_to_world,
    rotation_to_quaternion,
    write_keyframe_trajectory,
    write_keypoints,
    write_kitti_trajectory,
    write_tum_trajectory,
)


def _rot_z(angle):
    c, s = math.cos(angle), math.sin(angle)
    return np.array([[c, -s, 0.0], [s, c, 0.0], [0.0, 0.0, 1.0]])


def _rot_x(angle):
    c, s = math.cos(angle), math.sin(angle)
    return np.array([[1.0, 0.0, 0.0], [0.0, c, -s], [0.0, s, c]])


def _pose(r, t):
    pose = np.eye(4)
    pose[:3, :3] = r
    pose[:3, 3] = t
    return pose


def _quat_to_matrix(q):
    x, y, z, w = q
    return np.array([
        [1 - 2 * (y * y + z * z), 2 * (x * y - z * w), 2 * (x * z + y * w)],
        [2 * (x * y + z * w), 1 - 2 * (x * x + z * z), 2 * (y * z - x * w)],
        [2 * (x * z - y * w), 2 * (y * z + x * w), 1 - 2 * (x * x + y * y)],
    ])


def _read_rows(path):
    return [[float(v) for v in line.split()] for line in path.read_text().splitlines()]


def test_sensor_labels_and_trajectory_support():
    labels = [Sensor[name].label for name in ("MONOCULAR", "STEREO", "RGBD")]
    assert labels == ["Monocular", "Stereo", "RGB-D"]
    assert Sensor(Sensor.STEREO.value) is Sensor.STEREO
    assert not Sensor(Sensor.MONOCULAR.value).supports_frame_trajectory
    assert Sensor(Sensor.STEREO.value).supports_frame_trajectory


def test_identity_quaternion():
    q = rotation_to_quaternion(np.eye(3))
    assert np.allclose(q, [0.0, 0.0, 0.0, 1.0])


@pytest.mark.parametrize(
    "r",
    [
        _rot_z(0.3),
        _rot_x(2.5),
        _rot_x(math.pi),
        _rot_z(math.pi) @ _rot_x(1.1),
        _rot_x(0.4) @ _rot_z(-2.9),
    ],
)
def test_quaternion_round_trip(r):
    q = rotation_to_quaternion(r)
    assert math.isclose(float(np.linalg.norm(q)), 1.0, rel_tol=1e-12)
    assert np.allclose(_quat_to_matrix(q), r, atol=1e-12)


def test_quaternion_rejects_bad_shape():
    with pytest.raises(ValueError):
        rotation_to_quaternion(np.eye(4))


def test_camera_to_world_inverts_pose():
    tcw = _pose(_rot_z(0.7) @ _rot_x(0.2), [0.5, -1.0, 2.0])
    rwc, twc = camera_to_world(tcw)
    assert np.allclose(_pose(rwc, twc) @ tcw, np.eye(4))


def test_camera_to_world_accepts_3x4():
    tcw = _pose(_rot_z(0.1), [1.0, 2.0, 3.0])
    rwc4, twc4 = camera_to_world(tcw)
    rwc3, twc3 = camera_to_world(tcw[:3])
    assert np.allclose(rwc4, rwc3)
    assert np.allclose(twc4, twc3)


def test_frame_pose_rejects_bad_matrix():
    with pytest.raises(ValueError):
        FramePose(0.0, np.eye(3))


def test_tum_line_format(tmp_path):
    path = tmp_path / "traj.txt"
    count = write_tum_trajectory(path, [FramePose(1.5, _pose(np.eye(3), [-1.0, -2.0, -3.0]))])
    assert count == 1
    assert path.read_text() == (
        "1.500000 1.000000000 2.000000000 3.000000000 "
        "0.000000000 0.000000000 0.000000000 1.000000000\n"
    )


def test_tum_skips_lost_frames_and_round_trips(tmp_path):
    tcw = _pose(_rot_x(0.6), [0.2, 0.3, 0.4])
    frames = [
        FramePose(0.1, tcw),
        FramePose(0.2, np.eye(4), lost=True),
        FramePose(0.3, tcw),
    ]
    path = tmp_path / "traj.txt"
    assert write_tum_trajectory(path, frames) == 2
    rows = _read_rows(path)
    assert [row[0] for row in rows] == [0.1, 0.3]
    rwc, twc = camera_to_world(tcw)
    for row in rows:
        assert len(row) == 8
        assert np.allclose(row[1:4], twc, atol=1e-6)
        assert np.allclose(_quat_to_matrix(row[4:]), rwc, atol=1e-6)


def test_keyframe_trajectory_sorted_and_skips_bad(tmp_path):
    keyframes = [
        FramePose(3.0, _pose(np.eye(3), [0.0, 0.0, 1.0]), frame_id=2),
        FramePose(1.0, _pose(np.eye(3), [0.0, 1.0, 0.0]), frame_id=0),
        FramePose(2.0, np.eye(4), lost=True, frame_id=1),
    ]
    path = tmp_path / "kf.txt"
    assert write_keyframe_trajectory(path, keyframes) == 2
    lines = path.read_text().splitlines()
    assert [line.split()[0] for line in lines] == ["1.000000", "3.000000"]
    assert all(len(line.split()[1].split(".")[1]) == 7 for line in lines)
    rows = _read_rows(path)
    assert np.allclose(rows[0][1:4], [0.0, -1.0, 0.0])
    assert np.allclose(rows[1][1:4], [0.0, 0.0, -1.0])


def test_kitti_writes_every_frame(tmp_path):
    tcw = _pose(_rot_z(-0.4), [1.0, 0.5, -0.25])
    frames = [FramePose(0.0, tcw), FramePose(1.0, tcw, lost=True)]
    path = tmp_path / "kitti.txt"
    assert write_kitti_trajectory(path, frames) == 2
    rows = _read_rows(path)
    rwc, twc = camera_to_world(tcw)
    expected = np.column_stack([rwc, twc])
    for row in rows:
        assert len(row) == 12
        assert np.allclose(np.reshape(row, (3, 4)), expected, atol=1e-6)


def test_keypoints_round_trip(tmp_path):
    points = np.array([[0.5, -1.25, 3.0], [10.0, 20.0, 30.0]])
    path = tmp_path / "points.txt"
    assert write_keypoints(path, points) == 2
    assert np.allclose(_read_rows(path), points)
    assert path.read_text().splitlines()[0] == "0.500000 -1.250000 3.000000"


def test_keypoints_empty_and_bad_shape(tmp_path):
    path = tmp_path / "points.txt"
    assert write_keypoints(path, []) == 0
    assert path.read_text() == ""
    with pytest.raises(ValueError):
        write_keypoints(path, [[1.0, 2.0]])