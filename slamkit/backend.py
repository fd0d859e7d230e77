"""The backend: bundle adjustment of the active keyframes and landmarks.

A worker thread waits for the frontend to report a map update and then
optimises the map's active window.
"""

from __future__ import annotations

import logging
import math
import threading
import warnings
from typing import Callable, Dict, List, NamedTuple, Optional

import numpy as np
from scipy import sparse
from scipy.sparse.linalg import spsolve

from slamkit.camera import Camera
from slamkit.frame import Frame
from slamkit.lie import SE3
from slamkit.mappoint import MapPoint
from slamkit.projection import StereoProjection, huber_weight

logger = logging.getLogger(__name__)

CHI2_THRESHOLD = 5.991
OPTIMIZE_ITERATIONS = 10
_OUTLIER_ROUNDS = 5
_TAU = 1e-5


class OptimizationStats(NamedTuple):
    """Counts of observations judged outliers and inliers after optimisation."""

    outliers: int
    inliers: int


def _huber_cost(chi2: float, delta: float) -> float:
    if chi2 <= delta * delta:
        return chi2
    return 2.0 * math.sqrt(chi2) * delta - delta * delta


def _levenberg_marquardt(linearize: Callable, cost: Callable[[], float], step: Callable, iterations: int) -> None:
    H, b, chi2 = linearize()
    n = H.shape[0]
    if n == 0 or iterations <= 0:
        return
    diag = H.diagonal()
    top = float(diag.max()) if diag.size else 0.0
    damping = _TAU * top if top > 0 else _TAU
    factor = 2.0
    identity = sparse.identity(n, format="csc")
    for _ in range(iterations):
        accepted = False
        for _attempt in range(10):
            with warnings.catch_warnings():
                warnings.simplefilter("ignore")
                dx = np.atleast_1d(spsolve((H + damping * identity).tocsc(), -b))
            if not np.all(np.isfinite(dx)):
                damping *= factor
                factor *= 2.0
                continue
            undo = step(dx)
            new_chi2 = cost()
            scale = float(dx @ (damping * dx - b)) + 1e-3
            rho = (chi2 - new_chi2) / scale
            if np.isfinite(new_chi2) and rho > 0:
                damping *= max(1.0 / 3.0, 1.0 - (2.0 * rho - 1.0) ** 3)
                factor = 2.0
                accepted = True
                break
            undo()
            damping *= factor
            factor *= 2.0
        if not accepted:
            return
        H, b, chi2 = linearize()


class Backend:
    """Bundle adjustment running on its own thread, triggered by :meth:`update_map`."""

    def __init__(self):
        self._map = None
        self._cam_left: Optional[Camera] = None
        self._cam_right: Optional[Camera] = None
        self._cond = threading.Condition()
        self._running = True
        self._pending = False
        self._thread = threading.Thread(target=self._loop, name="backend", daemon=True)
        self._thread.start()

    @property
    def running(self) -> bool:
        return self._running

    def set_cameras(self, left: Camera, right: Camera) -> None:
        self._cam_left = left
        self._cam_right = right

    def set_map(self, map_) -> None:
        self._map = map_

    def update_map(self) -> None:
        """Ask the worker to optimise the active part of the map."""
        with self._cond:
            self._pending = True
            self._cond.notify()

    def stop(self) -> None:
        """Stop the worker after any requested optimisation and wait for it."""
        with self._cond:
            self._running = False
            self._cond.notify()
        if self._thread.is_alive() and self._thread is not threading.current_thread():
            self._thread.join()

    def __enter__(self) -> "Backend":
        return self

    def __exit__(self, *exc) -> None:
        self.stop()

    def _loop(self) -> None:
        while True:
            with self._cond:
                while self._running and not self._pending:
                    self._cond.wait()
                if not self._pending:
                    break
                self._pending = False
                map_ = self._map
            if map_ is None:
                continue
            try:
                self.optimize(map_.active_keyframes(), map_.active_map_points())
            except Exception:
                logger.exception("backend optimisation failed")

    def optimize(self, keyframes: Dict[int, Frame], landmarks: Dict[int, MapPoint]) -> OptimizationStats:
        """Optimise keyframe poses and landmark positions, then flag outlier observations.

        Outlier features are unlinked from their map points; the optimised
        poses and positions are written back to the frames and map points.
        """
        if self._cam_left is None or self._cam_right is None:
            raise RuntimeError("cameras are not set")
        K = self._cam_left.intrinsics()
        extrinsics = {True: self._cam_left.pose, False: self._cam_right.pose}

        poses: Dict[int, SE3] = {kf_id: kf.pose for kf_id, kf in keyframes.items()}
        offsets: Dict[tuple, int] = {}
        for i, kf_id in enumerate(poses):
            offsets[("pose", kf_id)] = 6 * i
        n = 6 * len(poses)
        points: Dict[int, np.ndarray] = {}
        edges: List[tuple] = []
        for lm_id, landmark in landmarks.items():
            if landmark.is_outlier:
                continue
            for feat in landmark.observations():
                frame = feat.frame
                if feat.is_outlier or frame is None or frame.keyframe_id not in poses:
                    continue
                if lm_id not in points:
                    points[lm_id] = landmark.pos
                    offsets[("point", lm_id)] = n
                    n += 3
                edge = StereoProjection(K, extrinsics[feat.is_on_left_image])
                edges.append((edge, feat, frame.keyframe_id, lm_id))

        delta = CHI2_THRESHOLD

        def cost() -> float:
            total = 0.0
            for edge, feat, kf_id, lm_id in edges:
                err = edge.error(poses[kf_id], points[lm_id], feat.position)
                total += _huber_cost(float(err @ err), delta)
            return total

        def linearize():
            rows, cols, data = [], [], []
            b = np.zeros(n)
            total = 0.0
            for edge, feat, kf_id, lm_id in edges:
                T, p = poses[kf_id], points[lm_id]
                err = edge.error(T, p, feat.position)
                chi2 = float(err @ err)
                total += _huber_cost(chi2, delta)
                w = huber_weight(chi2, delta)
                j_pose, j_point = edge.jacobians(T, p)
                blocks = ((offsets[("pose", kf_id)], j_pose), (offsets[("point", lm_id)], j_point))
                for oi, ji in blocks:
                    b[oi : oi + ji.shape[1]] += w * (ji.T @ err)
                    for oj, jj in blocks:
                        block = w * (ji.T @ jj)
                        r = np.arange(oi, oi + block.shape[0])
                        c = np.arange(oj, oj + block.shape[1])
                        rows.append(np.repeat(r, len(c)))
                        cols.append(np.tile(c, len(r)))
                        data.append(block.ravel())
            if rows:
                H = sparse.coo_matrix(
                    (np.concatenate(data), (np.concatenate(rows), np.concatenate(cols))), shape=(n, n)
                ).tocsc()
            else:
                H = sparse.csc_matrix((n, n))
            return H, b, total

        def step(dx):
            saved_poses, saved_points = dict(poses), dict(points)
            for kf_id in poses:
                o = offsets[("pose", kf_id)]
                poses[kf_id] = SE3.exp(dx[o : o + 6]) * poses[kf_id]
            for lm_id in points:
                o = offsets[("point", lm_id)]
                points[lm_id] = points[lm_id] + dx[o : o + 3]

            def undo():
                poses.update(saved_poses)
                points.update(saved_points)

            return undo

        if edges:
            _levenberg_marquardt(linearize, cost, step, OPTIMIZE_ITERATIONS)

        chi2s = []
        for edge, feat, kf_id, lm_id in edges:
            err = edge.error(poses[kf_id], points[lm_id], feat.position)
            chi2s.append(float(err @ err))

        chi2_th = CHI2_THRESHOLD
        cnt_outlier = cnt_inlier = 0
        for _ in range(_OUTLIER_ROUNDS):
            cnt_outlier = sum(1 for c in chi2s if c > chi2_th)
            cnt_inlier = len(chi2s) - cnt_outlier
            if chi2s and cnt_inlier / len(chi2s) > 0.5:
                break
            chi2_th *= 2

        for (edge, feat, kf_id, lm_id), chi2 in zip(edges, chi2s):
            if chi2 > chi2_th:
                feat.is_outlier = True
                map_point = feat.map_point
                if map_point is not None:
                    map_point.remove_observation(feat)
            else:
                feat.is_outlier = False

        logger.info("Outlier/Inlier in optimization: %d/%d", cnt_outlier, cnt_inlier)

        for kf_id, pose in poses.items():
            keyframes[kf_id].pose = pose
        for lm_id, pos in points.items():
            landmarks[lm_id].pos = pos
        return OptimizationStats(cnt_outlier, cnt_inlier)