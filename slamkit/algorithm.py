"""Geometric algorithms shared by the odometry pipeline."""

from __future__ import annotations

from typing import Optional, Sequence

import numpy as np

from slamkit.lie import SE3


def triangulate(poses: Sequence[SE3], points) -> Optional[np.ndarray]:
    """Linear SVD triangulation of one point seen from several poses.

    ``points`` are the observations on each camera's normalised image plane.
    Returns the world point, or ``None`` when the solution is not well determined.
    """
    poses = list(poses)
    points = [np.asarray(p, dtype=float) for p in points]
    if len(poses) != len(points):
        raise ValueError("poses and points must have the same length")
    if len(poses) < 2:
        raise ValueError("at least two observations are needed")

    rows = []
    for pose, point in zip(poses, points):
        m = pose.matrix3x4()
        rows.append(point[0] * m[2] - m[0])
        rows.append(point[1] * m[2] - m[1])
    _, singular, vh = np.linalg.svd(np.vstack(rows), full_matrices=False)
    solution = vh[3]
    if singular[2] == 0.0 or solution[3] == 0.0:
        return None
    if singular[3] / singular[2] < 1e-2:
        return solution[:3] / solution[3]
    return None


def to_vec2(point) -> np.ndarray:
    """Pixel position as a 2-vector; accepts an object with ``x``/``y`` or a pair."""
    if hasattr(point, "x") and hasattr(point, "y"):
        return np.array([float(point.x), float(point.y)])
    arr = np.asarray(point, dtype=float).reshape(-1)
    if arr.shape != (2,):
        raise ValueError("point must have two coordinates")
    return arr