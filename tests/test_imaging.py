import numpy as np
import pytest

from slamkit.imaging import (
    Distortion,
    PinholeIntrinsics,
    read_poses,
    rgbd_point_cloud,
    statistical_outlier_removal,
    stereo_point_cloud,
    undistort_image,
    voxel_downsample,
)
from slamkit.lie import SE3, SO3

UNIT = PinholeIntrinsics(1.0, 1.0, 0.0, 0.0)


def _image(rows=10, cols=10):
    return (np.arange(rows * cols) % 256).astype(np.uint8).reshape(rows, cols)


def test_undistort_without_distortion_is_identity():
    image = _image()
    out = undistort_image(image, UNIT, Distortion())
    np.testing.assert_array_equal(out, image)


def test_undistort_strong_distortion_blanks_outside():
    image = _image() + 1
    out = undistort_image(image, UNIT, Distortion(k1=1.0))
    assert out.shape == image.shape
    assert out.dtype == image.dtype
    assert out[0, 0] == image[0, 0]
    assert out[9, 9] == 0


def test_undistort_rejects_colour():
    with pytest.raises(ValueError):
        undistort_image(np.zeros((4, 4, 3), dtype=np.uint8), UNIT, Distortion())


def test_stereo_point_cloud_skips_invalid_disparity():
    left = np.array([[10, 20, 30, 40]], dtype=np.uint8)
    disparity = np.array([[0.0, 10.0, 96.0, 50.0]])
    cloud = stereo_point_cloud(left, disparity, PinholeIntrinsics(100.0, 100.0, 0.0, 0.0), 0.5, 96.0)
    assert cloud.shape == (2, 4)
    np.testing.assert_allclose(cloud[:, 3], [20 / 255.0, 40 / 255.0])
    assert cloud[0, 2] > cloud[1, 2]
    assert np.all(cloud[:, 2] > 0)


def test_stereo_point_cloud_shape_mismatch():
    with pytest.raises(ValueError):
        stereo_point_cloud(np.zeros((2, 2)), np.zeros((3, 3)))


def test_rgbd_point_cloud_skips_zero_depth_and_keeps_colour():
    color = np.zeros((3, 3, 3), dtype=np.uint8)
    color[1, 1] = (10, 20, 30)
    depth = np.zeros((3, 3), dtype=np.uint16)
    depth[1, 1] = 2000
    intr = PinholeIntrinsics(1.0, 1.0, 1.0, 1.0)
    cloud = rgbd_point_cloud(color, depth, SE3(), intr, 1000.0)
    assert cloud.shape == (1, 6)
    np.testing.assert_allclose(cloud[0, :2], [0.0, 0.0], atol=1e-12)
    np.testing.assert_allclose(cloud[0, 3:], [10, 20, 30])


def test_rgbd_point_cloud_translation_shifts_points():
    rng = np.random.default_rng(1)
    color = rng.integers(0, 255, size=(4, 5, 3), dtype=np.uint8)
    depth = rng.integers(0, 3000, size=(4, 5)).astype(np.uint16)
    intr = PinholeIntrinsics(2.0, 2.0, 2.0, 1.5)
    t = np.array([0.5, -1.0, 2.0])
    base = rgbd_point_cloud(color, depth, SE3(), intr, 1000.0)
    moved = rgbd_point_cloud(color, depth, SE3(SO3(), t), intr, 1000.0)
    assert len(base) == np.count_nonzero(depth)
    np.testing.assert_allclose(moved[:, :3] - base[:, :3], np.tile(t, (len(base), 1)), atol=1e-12)
    np.testing.assert_array_equal(moved[:, 3:], base[:, 3:])


def test_read_poses(tmp_path):
    path = tmp_path / "pose.txt"
    path.write_text("1 2 3 0 0 0 1\n-1 0 0.5 0 0 0 1\n")
    poses = read_poses(path, 2)
    assert len(poses) == 2
    np.testing.assert_allclose(poses[0].translation, [1, 2, 3])
    np.testing.assert_allclose(poses[1].rotation.matrix(), np.eye(3), atol=1e-12)


def test_read_poses_too_few_values(tmp_path):
    path = tmp_path / "pose.txt"
    path.write_text("1 2 3 0 0 0 1\n")
    with pytest.raises(ValueError):
        read_poses(path, 5)


def test_voxel_downsample_merges_points_in_one_voxel():
    points = np.array([[0.01, 0.0, 0.0, 10.0], [0.02, 0.0, 0.0, 20.0], [0.55, 0.0, 0.0, 30.0]])
    out = voxel_downsample(points, 0.1)
    assert out.shape == (2, 4)
    rows = sorted(map(tuple, out))
    np.testing.assert_allclose(rows[0], [0.015, 0.0, 0.0, 15.0])
    np.testing.assert_allclose(rows[1], points[2])


def test_voxel_downsample_never_grows():
    points = np.random.default_rng(2).uniform(-1, 1, size=(200, 3))
    out = voxel_downsample(points, 0.5)
    assert len(out) <= len(points)
    np.testing.assert_allclose(out.mean(axis=0) * 0 + points.min(axis=0) <= out.min(axis=0) + 1e-12, True)


def test_voxel_downsample_rejects_bad_resolution():
    with pytest.raises(ValueError):
        voxel_downsample(np.zeros((1, 3)), 0.0)


def test_statistical_outlier_removal_drops_far_point():
    grid = np.array([[x, y, z] for x in range(3) for y in range(3) for z in range(3)], dtype=float) * 0.1
    points = np.vstack((grid, [[100.0, 100.0, 100.0]]))
    out = statistical_outlier_removal(points, 5, 1.0)
    assert len(out) == len(grid)
    assert not np.any(np.all(out == [100.0, 100.0, 100.0], axis=1))


def test_statistical_outlier_removal_rejects_bad_k():
    with pytest.raises(ValueError):
        statistical_outlier_removal(np.zeros((3, 3)), 0)