"""Image undistortion and point clouds from stereo and RGB-D images."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import List

import numpy as np
from scipy.spatial import cKDTree

from slamkit.lie import SE3


@dataclass(frozen=True)
class PinholeIntrinsics:
    """Focal lengths and principal point of a pinhole camera, in pixels."""

    fx: float
    fy: float
    cx: float
    cy: float


@dataclass(frozen=True)
class Distortion:
    """Radial (k1, k2) and tangential (p1, p2) distortion coefficients."""

    k1: float = 0.0
    k2: float = 0.0
    p1: float = 0.0
    p2: float = 0.0


EUROC_INTRINSICS = PinholeIntrinsics(458.654, 457.296, 367.215, 248.375)
EUROC_DISTORTION = Distortion(-0.28340811, 0.07395907, 0.00019359, 1.76187114e-05)
KITTI_INTRINSICS = PinholeIntrinsics(718.856, 718.856, 607.1928, 185.2157)
KITTI_BASELINE = 0.573
RGBD_INTRINSICS = PinholeIntrinsics(518.0, 519.0, 325.5, 253.5)
RGBD_DEPTH_SCALE = 1000.0


def undistort_image(
    image, intrinsics: PinholeIntrinsics = EUROC_INTRINSICS, distortion: Distortion = EUROC_DISTORTION
) -> np.ndarray:
    """Undistort a grayscale image by nearest-neighbour lookup into the distorted image.

    Pixels that map outside the source image are set to zero.
    """
    image = np.asarray(image)
    if image.ndim != 2:
        raise ValueError("image must be a 2D grayscale array")
    rows, cols = image.shape
    v, u = np.mgrid[0:rows, 0:cols].astype(float)
    k = intrinsics
    d = distortion
    x = (u - k.cx) / k.fx
    y = (v - k.cy) / k.fy
    r2 = x * x + y * y
    radial = 1 + d.k1 * r2 + d.k2 * r2 * r2
    x_d = x * radial + 2 * d.p1 * x * y + d.p2 * (r2 + 2 * x * x)
    y_d = y * radial + d.p1 * (r2 + 2 * y * y) + 2 * d.p2 * x * y
    u_d = k.fx * x_d + k.cx
    v_d = k.fy * y_d + k.cy

    valid = (u_d >= 0) & (v_d >= 0) & (u_d < cols) & (v_d < rows)
    out = np.zeros_like(image)
    out[valid] = image[v_d[valid].astype(int), u_d[valid].astype(int)]
    return out


def stereo_point_cloud(
    left,
    disparity,
    intrinsics: PinholeIntrinsics = KITTI_INTRINSICS,
    baseline: float = KITTI_BASELINE,
    max_disparity: float = 96.0,
) -> np.ndarray:
    """Points ``(x, y, z, intensity)`` from a left grayscale image and its disparity map.

    Pixels with disparity outside ``(0, max_disparity)`` are skipped; intensity is in [0, 1].
    """
    left = np.asarray(left)
    disparity = np.asarray(disparity, dtype=float)
    if left.shape != disparity.shape or left.ndim != 2:
        raise ValueError("left image and disparity must be 2D arrays of the same shape")
    valid = (disparity > 0.0) & (disparity < max_disparity)
    v, u = np.nonzero(valid)
    disp = disparity[v, u]
    depth = intrinsics.fx * baseline / disp
    x = (u - intrinsics.cx) / intrinsics.fx * depth
    y = (v - intrinsics.cy) / intrinsics.fy * depth
    intensity = left[v, u].astype(float) / 255.0
    return np.column_stack((x, y, depth, intensity))


def rgbd_point_cloud(
    color,
    depth,
    pose: SE3,
    intrinsics: PinholeIntrinsics = RGBD_INTRINSICS,
    depth_scale: float = RGBD_DEPTH_SCALE,
) -> np.ndarray:
    """World points ``(x, y, z, r, g, b)`` from an RGB image, a raw depth image and a camera pose.

    ``color`` is HxWx3 in RGB order; ``pose`` maps camera to world. Zero depth means no measurement.
    """
    color = np.asarray(color)
    depth = np.asarray(depth)
    if depth.ndim != 2 or color.shape[:2] != depth.shape or color.ndim != 3 or color.shape[2] < 3:
        raise ValueError("color must be HxWx3 and depth HxW of the same size")
    v, u = np.nonzero(depth)
    z = depth[v, u].astype(float) / depth_scale
    x = (u - intrinsics.cx) * z / intrinsics.fx
    y = (v - intrinsics.cy) * z / intrinsics.fy
    camera_points = np.column_stack((x, y, z))
    world = pose * camera_points if len(camera_points) else np.empty((0, 3))
    rgb = color[v, u, :3].astype(float)
    return np.column_stack((world, rgb))


def read_poses(path, count: int = 5) -> List[SE3]:
    """Read ``count`` poses of seven whitespace-separated values ``tx ty tz qx qy qz qw``."""
    tokens = Path(path).read_text(encoding="utf-8").split()
    needed = 7 * count
    if len(tokens) < needed:
        raise ValueError(f"{path}: expected {needed} values, found {len(tokens)}")
    values = np.array([float(t) for t in tokens[:needed]]).reshape(count, 7)
    return [SE3.from_quaternion((qw, qx, qy, qz), (tx, ty, tz)) for tx, ty, tz, qx, qy, qz, qw in values]


def voxel_downsample(points, resolution: float) -> np.ndarray:
    """Replace the points in each cubic voxel by their centroid (all columns averaged)."""
    if resolution <= 0:
        raise ValueError("resolution must be positive")
    points = np.asarray(points, dtype=float)
    if points.ndim != 2 or points.shape[1] < 3:
        raise ValueError("points must be an Nx3 or wider array")
    if len(points) == 0:
        return points.copy()
    keys = np.floor(points[:, :3] / resolution).astype(np.int64)
    _, inverse, counts = np.unique(keys, axis=0, return_inverse=True, return_counts=True)
    inverse = inverse.reshape(-1)
    sums = np.zeros((len(counts), points.shape[1]))
    np.add.at(sums, inverse, points)
    return sums / counts[:, None]


def statistical_outlier_removal(points, mean_k: int = 50, std_mul: float = 1.0) -> np.ndarray:
    """Drop points whose mean distance to their ``mean_k`` nearest neighbours is above
    the global mean of those distances plus ``std_mul`` standard deviations."""
    if mean_k < 1:
        raise ValueError("mean_k must be at least 1")
    points = np.asarray(points, dtype=float)
    if points.ndim != 2 or points.shape[1] < 3:
        raise ValueError("points must be an Nx3 or wider array")
    n = len(points)
    k = min(mean_k, n - 1)
    if k < 1:
        return points.copy()
    tree = cKDTree(points[:, :3])
    distances, _ = tree.query(points[:, :3], k=k + 1)
    mean_distances = distances[:, 1:].mean(axis=1)
    mean = mean_distances.mean()
    std = mean_distances.std(ddof=1) if n > 1 else 0.0
    threshold = mean + std_mul * std
    return points[mean_distances <= threshold]