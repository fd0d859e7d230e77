"""The frontend: tracks features, estimates each frame's pose and creates keyframes.

Features are Shi-Tomasi corners in the left image. They are followed into the
right image and into the next frame by pyramidal Lucas-Kanade optical flow.
"""

from __future__ import annotations

import enum
import logging
from typing import List, Optional, Sequence, Tuple

import numpy as np
from scipy import ndimage

from slamkit.algorithm import triangulate
from slamkit.camera import Camera
from slamkit.frame import Feature, Frame
from slamkit.lie import SE3
from slamkit.mappoint import MapPoint
from slamkit.projection import PoseOnlyProjection, huber_weight

logger = logging.getLogger(__name__)

CHI2_THRESHOLD = 5.991
HUBER_DELTA = 1.0
POSE_ROUNDS = 4
POSE_ITERATIONS = 10
FEATURE_QUALITY = 0.01
FEATURE_MIN_DISTANCE = 20.0
MASK_HALF_SIZE = 10
LK_WINDOW = 11
LK_LEVELS = 3
LK_ITERATIONS = 30
LK_EPS = 0.01
_LK_MIN_EIG = 1e-2


class FrontendStatus(enum.Enum):
    INITING = "initing"
    TRACKING_GOOD = "tracking_good"
    TRACKING_BAD = "tracking_bad"
    LOST = "lost"


def detect_corners(image, max_corners: int, mask=None, quality: float = FEATURE_QUALITY,
                   min_distance: float = FEATURE_MIN_DISTANCE) -> np.ndarray:
    """Strongest Shi-Tomasi corners as an (N, 2) array of (x, y), at least ``min_distance`` apart."""
    img = np.asarray(image, dtype=float)
    gx = ndimage.sobel(img, axis=1)
    gy = ndimage.sobel(img, axis=0)
    a = ndimage.uniform_filter(gx * gx, size=3)
    b = ndimage.uniform_filter(gx * gy, size=3)
    c = ndimage.uniform_filter(gy * gy, size=3)
    response = (a + c) / 2 - np.sqrt(((a - c) / 2) ** 2 + b * b)
    if mask is not None:
        response = np.where(np.asarray(mask) != 0, response, 0.0)
    response[:2, :] = response[-2:, :] = 0.0
    response[:, :2] = response[:, -2:] = 0.0
    top = float(response.max()) if response.size else 0.0
    if top <= 0 or max_corners <= 0:
        return np.zeros((0, 2))
    local_max = response == ndimage.maximum_filter(response, size=3)
    ys, xs = np.nonzero(local_max & (response > quality * top))
    order = np.argsort(-response[ys, xs], kind="stable")
    accepted: List[Tuple[float, float]] = []
    min_d2 = min_distance * min_distance
    for x, y in zip(xs[order], ys[order]):
        if accepted:
            arr = np.asarray(accepted)
            if np.min((arr[:, 0] - x) ** 2 + (arr[:, 1] - y) ** 2) < min_d2:
                continue
        accepted.append((float(x), float(y)))
        if len(accepted) >= max_corners:
            break
    return np.asarray(accepted, dtype=float).reshape(-1, 2)


def _pyramid(image: np.ndarray, levels: int) -> List[np.ndarray]:
    out = [image]
    for _ in range(levels):
        smaller = ndimage.gaussian_filter(out[-1], 1.0)[::2, ::2]
        if min(smaller.shape) < LK_WINDOW:
            break
        out.append(smaller)
    return out


def track_points(prev, nxt, points, guesses) -> Tuple[np.ndarray, np.ndarray]:
    """Pyramidal Lucas-Kanade flow from ``prev`` to ``nxt`` starting at ``guesses``.

    Returns the tracked positions and a boolean status per point.
    """
    pts = np.asarray(points, dtype=float).reshape(-1, 2)
    guess = np.asarray(guesses, dtype=float).reshape(-1, 2)
    n = len(pts)
    if n == 0:
        return np.zeros((0, 2)), np.zeros(0, dtype=bool)
    prev_pyr = _pyramid(np.asarray(prev, dtype=float), LK_LEVELS)
    next_pyr = _pyramid(np.asarray(nxt, dtype=float), LK_LEVELS)
    levels = min(len(prev_pyr), len(next_pyr))
    half = LK_WINDOW // 2
    oy, ox = np.mgrid[-half : half + 1, -half : half + 1]
    ox = ox.ravel().astype(float)
    oy = oy.ravel().astype(float)
    area = ox.size

    status = np.ones(n, dtype=bool)
    g = (guess - pts) / 2 ** (levels - 1)
    for lvl in range(levels - 1, -1, -1):
        base = prev_pyr[lvl]
        target = next_pyr[lvl]
        grad_y, grad_x = np.gradient(base)
        p = pts / 2**lvl
        xs = p[:, 0, None] + ox
        ys = p[:, 1, None] + oy
        coords = [ys.ravel(), xs.ravel()]

        def sample(img, coords=coords):
            return ndimage.map_coordinates(img, coords, order=1, mode="nearest").reshape(n, area)

        I, Ix, Iy = sample(base), sample(grad_x), sample(grad_y)
        gxx = (Ix * Ix).sum(1)
        gxy = (Ix * Iy).sum(1)
        gyy = (Iy * Iy).sum(1)
        det = gxx * gyy - gxy * gxy
        min_eig = (gxx + gyy) / 2 - np.sqrt(((gxx - gyy) / 2) ** 2 + gxy**2)
        status &= (min_eig / area >= _LK_MIN_EIG) & (det > 0)
        d = np.zeros((n, 2))
        active = status.copy()
        for _ in range(LK_ITERATIONS):
            if not active.any():
                break
            q = p + g + d
            J = ndimage.map_coordinates(
                target, [(q[:, 1, None] + oy).ravel(), (q[:, 0, None] + ox).ravel()],
                order=1, mode="nearest",
            ).reshape(n, area)
            e = I - J
            bx = (e * Ix).sum(1)
            by = (e * Iy).sum(1)
            safe = np.where(det > 0, det, 1.0)
            delta = np.stack([(gyy * bx - gxy * by) / safe, (gxx * by - gxy * bx) / safe], axis=1)
            d[active] += delta[active]
            active &= np.linalg.norm(delta, axis=1) >= LK_EPS
        g = 2 * (g + d) if lvl > 0 else g + d

    result = pts + g
    rows, cols = np.asarray(nxt).shape[:2]
    status &= np.all(np.isfinite(result), axis=1)
    status &= (result[:, 0] >= 0) & (result[:, 1] >= 0) & (result[:, 0] <= cols - 1) & (result[:, 1] <= rows - 1)
    return result, status


def _huber_cost(chi2: float, delta: float) -> float:
    if chi2 <= delta * delta:
        return chi2
    return 2.0 * np.sqrt(chi2) * delta - delta * delta


def _optimize_pose(pose: SE3, edges: Sequence[PoseOnlyProjection], measurements, robust: bool,
                   iterations: int) -> SE3:
    if not edges:
        return pose

    def chi2s(T):
        return [float(e @ e) for e in (edge.error(T, m) for edge, m in zip(edges, measurements))]

    def cost(T) -> float:
        return sum(_huber_cost(c, HUBER_DELTA) if robust else c for c in chi2s(T))

    def linearize(T):
        H = np.zeros((6, 6))
        b = np.zeros(6)
        for edge, m in zip(edges, measurements):
            err = edge.error(T, m)
            w = huber_weight(float(err @ err), HUBER_DELTA) if robust else 1.0
            J = edge.jacobian(T)
            H += w * J.T @ J
            b += w * J.T @ err
        return H, b

    current = cost(pose)
    H, b = linearize(pose)
    top = float(np.max(np.diag(H)))
    damping = 1e-5 * top if top > 0 else 1e-5
    for _ in range(iterations):
        accepted = False
        for _attempt in range(10):
            try:
                dx = np.linalg.solve(H + damping * np.eye(6), -b)
            except np.linalg.LinAlgError:
                damping *= 2.0
                continue
            candidate = SE3.exp(dx) * pose
            new_cost = cost(candidate)
            if np.isfinite(new_cost) and new_cost < current:
                pose, current = candidate, new_cost
                damping /= 3.0
                accepted = True
                break
            damping *= 2.0
        if not accepted:
            break
        H, b = linearize(pose)
    return pose


class Frontend:
    """Estimates the pose of each incoming frame and inserts keyframes into the map."""

    def __init__(self, config=None):
        self.num_features = 200
        self.num_features_init = 100
        self.num_features_tracking = 50
        self.num_features_tracking_bad = 20
        self.num_features_needed_for_keyframe = 80
        if config is not None:
            self.num_features = int(config.get("num_features"))
            self.num_features_init = int(config.get("num_features_init"))
        self.status = FrontendStatus.INITING
        self.current_frame: Optional[Frame] = None
        self.last_frame: Optional[Frame] = None
        self.camera_left: Optional[Camera] = None
        self.camera_right: Optional[Camera] = None
        self.map = None
        self.backend = None
        self.relative_motion = SE3()
        self.tracking_inliers = 0

    def set_map(self, map_) -> None:
        self.map = map_

    def set_backend(self, backend) -> None:
        self.backend = backend

    def set_cameras(self, left: Camera, right: Camera) -> None:
        self.camera_left = left
        self.camera_right = right

    def add_frame(self, frame: Frame) -> bool:
        """Process one stereo frame according to the current status."""
        if self.camera_left is None or self.camera_right is None:
            raise RuntimeError("cameras are not set")
        if self.map is None:
            raise RuntimeError("map is not set")
        self.current_frame = frame
        if self.status is FrontendStatus.INITING:
            self._stereo_init()
        elif self.status in (FrontendStatus.TRACKING_GOOD, FrontendStatus.TRACKING_BAD):
            self._track()
        else:
            self._reset()
        self.last_frame = self.current_frame
        return True

    def _track(self) -> None:
        frame = self.current_frame
        if self.last_frame is not None:
            frame.pose = self.relative_motion * self.last_frame.pose
        self._track_last_frame()
        self.tracking_inliers = self._estimate_current_pose()
        if self.tracking_inliers > self.num_features_tracking:
            self.status = FrontendStatus.TRACKING_GOOD
        elif self.tracking_inliers > self.num_features_tracking_bad:
            self.status = FrontendStatus.TRACKING_BAD
        else:
            self.status = FrontendStatus.LOST
        self._insert_keyframe()
        self.relative_motion = frame.pose * self.last_frame.pose.inverse()

    def _reset(self) -> None:
        # Recovery from a lost track is not attempted; the status stays LOST.
        logger.info("Tracking is lost; frame %d is skipped.", self.current_frame.id)

    def _insert_keyframe(self) -> bool:
        if self.tracking_inliers >= self.num_features_needed_for_keyframe:
            return False
        frame = self.current_frame
        frame.set_keyframe()
        self.map.insert_keyframe(frame)
        logger.info("Set frame %d as keyframe %d", frame.id, frame.keyframe_id)
        self._set_observations_for_keyframe()
        self._detect_features()
        self._find_features_in_right()
        self._triangulate_new_points()
        if self.backend is not None:
            self.backend.update_map()
        return True

    def _set_observations_for_keyframe(self) -> None:
        for feat in self.current_frame.features_left:
            mp = feat.map_point
            if mp is not None:
                mp.add_observation(feat)

    def _stereo_pair_point(self, left: Feature, right: Feature) -> Optional[np.ndarray]:
        poses = [self.camera_left.pose, self.camera_right.pose]
        points = [self.camera_left.pixel_to_camera(left.position), self.camera_right.pixel_to_camera(right.position)]
        pworld = triangulate(poses, points)
        if pworld is None or pworld[2] <= 0:
            return None
        return pworld

    def _make_map_point(self, left: Feature, right: Feature, position) -> MapPoint:
        mp = MapPoint.create()
        mp.pos = position
        mp.add_observation(left)
        mp.add_observation(right)
        left.map_point = mp
        right.map_point = mp
        self.map.insert_map_point(mp)
        return mp

    def _triangulate_new_points(self) -> int:
        frame = self.current_frame
        Twc = frame.pose.inverse()
        count = 0
        for left, right in zip(frame.features_left, frame.features_right):
            if left.map_point is not None or right is None:
                continue
            pworld = self._stereo_pair_point(left, right)
            if pworld is None:
                continue
            self._make_map_point(left, right, Twc * pworld)
            count += 1
        logger.info("new landmarks: %d", count)
        return count

    def _estimate_current_pose(self) -> int:
        frame = self.current_frame
        K = self.camera_left.intrinsics()
        features, edges = [], []
        for feat in frame.features_left:
            mp = feat.map_point
            if mp is not None:
                features.append(feat)
                edges.append(PoseOnlyProjection(mp.pos, K))
        measurements = [f.position for f in features]
        levels = [0] * len(edges)
        robust = True
        cnt_outlier = 0
        pose = frame.pose
        for iteration in range(POSE_ROUNDS):
            use = [i for i, lvl in enumerate(levels) if lvl == 0]
            pose = _optimize_pose(frame.pose, [edges[i] for i in use], [measurements[i] for i in use],
                                  robust, POSE_ITERATIONS)
            cnt_outlier = 0
            for i, (edge, feat) in enumerate(zip(edges, features)):
                err = edge.error(pose, measurements[i])
                if float(err @ err) > CHI2_THRESHOLD:
                    feat.is_outlier = True
                    levels[i] = 1
                    cnt_outlier += 1
                else:
                    feat.is_outlier = False
                    levels[i] = 0
            if iteration == 2:
                robust = False
        logger.info("Outlier/Inlier in pose estimating: %d/%d", cnt_outlier, len(features) - cnt_outlier)
        frame.pose = pose
        for feat in features:
            if feat.is_outlier:
                feat.map_point = None
                feat.is_outlier = False
        return len(features) - cnt_outlier

    def _track_last_frame(self) -> int:
        last, frame = self.last_frame, self.current_frame
        starts, guesses = [], []
        for kp in last.features_left:
            starts.append(kp.position)
            mp = kp.map_point
            guesses.append(self.camera_left.world_to_pixel(mp.pos, frame.pose) if mp is not None else kp.position)
        tracked, status = track_points(last.left_img, frame.left_img, starts, guesses)
        good = 0
        for kp, pos, ok in zip(last.features_left, tracked, status):
            if ok:
                feature = Feature(frame, pos)
                feature.map_point = kp.map_point
                frame.features_left.append(feature)
                good += 1
        logger.info("Find %d in the last image.", good)
        return good

    def _stereo_init(self) -> bool:
        self._detect_features()
        if self._find_features_in_right() < self.num_features_init:
            return False
        self._build_init_map()
        self.status = FrontendStatus.TRACKING_GOOD
        return True

    def _detect_features(self) -> int:
        frame = self.current_frame
        img = np.asarray(frame.left_img)
        mask = np.full(img.shape[:2], 255, dtype=np.uint8)
        for feat in frame.features_left:
            x, y = feat.position
            x0, y0 = max(int(x - MASK_HALF_SIZE), 0), max(int(y - MASK_HALF_SIZE), 0)
            mask[y0 : max(int(y + MASK_HALF_SIZE) + 1, 0), x0 : max(int(x + MASK_HALF_SIZE) + 1, 0)] = 0
        corners = detect_corners(img, self.num_features, mask)
        for corner in corners:
            frame.features_left.append(Feature(frame, corner))
        logger.info("Detect %d new features", len(corners))
        return len(corners)

    def _find_features_in_right(self) -> int:
        frame = self.current_frame
        starts, guesses = [], []
        for kp in frame.features_left:
            starts.append(kp.position)
            mp = kp.map_point
            guesses.append(self.camera_right.world_to_pixel(mp.pos, frame.pose) if mp is not None else kp.position)
        tracked, status = track_points(frame.left_img, frame.right_img, starts, guesses)
        good = 0
        for pos, ok in zip(tracked, status):
            if ok:
                frame.features_right.append(Feature(frame, pos, is_on_left_image=False))
                good += 1
            else:
                frame.features_right.append(None)
        logger.info("Find %d in the right image.", good)
        return good

    def _build_init_map(self) -> int:
        frame = self.current_frame
        count = 0
        for left, right in zip(frame.features_left, frame.features_right):
            if right is None:
                continue
            pworld = self._stereo_pair_point(left, right)
            if pworld is None:
                continue
            self._make_map_point(left, right, pworld)
            count += 1
        frame.set_keyframe()
        self.map.insert_keyframe(frame)
        if self.backend is not None:
            self.backend.update_map()
        logger.info("Initial map created with %d map points", count)
        return count