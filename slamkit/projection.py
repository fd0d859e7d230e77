"""Reprojection errors for bundle adjustment and the Huber robust weight.

Errors are ``measurement - projection``; the pose Jacobians are taken with
respect to a left-multiplied perturbation ``exp(delta) * T`` whose tangent
vector is ordered translation first, rotation second.
"""

from __future__ import annotations

import math

import numpy as np

from slamkit.lie import SE3


def _intrinsics(K) -> np.ndarray:
    arr = np.asarray(K, dtype=float)
    if arr.shape != (3, 3):
        raise ValueError(f"K must be 3x3, got shape {arr.shape}")
    return arr.copy()


def _vec(value, size: int, name: str) -> np.ndarray:
    arr = np.asarray(value, dtype=float).reshape(-1)
    if arr.shape != (size,):
        raise ValueError(f"{name} must have {size} elements")
    return arr


def huber_weight(chi2: float, delta: float) -> float:
    """Weight the Huber kernel gives a residual of squared norm ``chi2``.

    Residuals with ``chi2 <= delta**2`` keep full weight; larger ones get
    ``delta / sqrt(chi2)``.
    """
    if delta <= 0:
        raise ValueError("delta must be positive")
    if chi2 < 0:
        raise ValueError("chi2 must not be negative")
    if chi2 <= delta * delta:
        return 1.0
    return delta / math.sqrt(chi2)


def _project(K: np.ndarray, p_cam: np.ndarray) -> np.ndarray:
    pixel = K @ p_cam
    return pixel[:2] / pixel[2]


def _pose_jacobian(fx: float, fy: float, pos_cam: np.ndarray) -> np.ndarray:
    X, Y, Z = pos_cam
    zinv = 1.0 / (Z + 1e-18)
    zinv2 = zinv * zinv
    return np.array(
        [
            [-fx * zinv, 0.0, fx * X * zinv2, fx * X * Y * zinv2, -fx - fx * X * X * zinv2, fx * Y * zinv],
            [0.0, -fy * zinv, fy * Y * zinv2, fy + fy * Y * Y * zinv2, -fy * X * Y * zinv2, -fy * X * zinv],
        ]
    )


class PoseOnlyProjection:
    """Reprojection of a fixed 3D point; only the camera pose is estimated."""

    def __init__(self, position, K):
        self.position = _vec(position, 3, "position").copy()
        self.K = _intrinsics(K)

    def error(self, pose: SE3, measurement) -> np.ndarray:
        measured = _vec(measurement, 2, "measurement")
        return measured - _project(self.K, pose * self.position)

    def jacobian(self, pose: SE3) -> np.ndarray:
        """2x6 derivative of the error with respect to the pose."""
        return _pose_jacobian(self.K[0, 0], self.K[1, 1], pose * self.position)


class StereoProjection:
    """Reprojection of a landmark into one camera of a stereo rig.

    ``cam_ext`` maps the rig frame to this camera; both the rig pose and the
    landmark position are estimated.
    """

    def __init__(self, K, cam_ext: SE3):
        self.K = _intrinsics(K)
        self.cam_ext = cam_ext

    def error(self, pose: SE3, point, measurement) -> np.ndarray:
        measured = _vec(measurement, 2, "measurement")
        p = _vec(point, 3, "point")
        return measured - _project(self.K, self.cam_ext * (pose * p))

    def jacobians(self, pose: SE3, point):
        """The 2x6 pose Jacobian and the 2x3 landmark Jacobian of the error."""
        p = _vec(point, 3, "point")
        pos_cam = self.cam_ext * (pose * p)
        j_pose = _pose_jacobian(self.K[0, 0], self.K[1, 1], pos_cam)
        j_point = j_pose[:, :3] @ self.cam_ext.rotation.matrix() @ pose.rotation.matrix()
        return j_pose, j_point