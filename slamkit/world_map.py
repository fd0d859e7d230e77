"""The map: keyframes and landmarks, with a sliding window of active ones."""

from __future__ import annotations

import logging
import threading
from typing import Dict, Optional

import numpy as np

from slamkit.frame import Frame
from slamkit.mappoint import MapPoint

logger = logging.getLogger(__name__)

MIN_DISTANCE_THRESHOLD = 0.2


class Map:
    """Keyframes and landmarks keyed by id.

    The frontend inserts keyframes and map points; once more than
    ``num_active_keyframes`` keyframes are active, one is deactivated and
    landmarks no longer observed are dropped from the active set.
    """

    def __init__(self, num_active_keyframes: int = 7):
        self.num_active_keyframes = num_active_keyframes
        self._landmarks: Dict[int, MapPoint] = {}
        self._active_landmarks: Dict[int, MapPoint] = {}
        self._keyframes: Dict[int, Frame] = {}
        self._active_keyframes: Dict[int, Frame] = {}
        self.current_frame: Optional[Frame] = None
        self._lock = threading.RLock()

    def insert_keyframe(self, frame: Frame) -> None:
        with self._lock:
            self.current_frame = frame
            self._keyframes[frame.keyframe_id] = frame
            self._active_keyframes[frame.keyframe_id] = frame
            if len(self._active_keyframes) > self.num_active_keyframes:
                self._remove_old_keyframe()

    def insert_map_point(self, map_point: MapPoint) -> None:
        with self._lock:
            self._landmarks[map_point.id] = map_point
            self._active_landmarks[map_point.id] = map_point

    def all_map_points(self) -> Dict[int, MapPoint]:
        with self._lock:
            return dict(self._landmarks)

    def all_keyframes(self) -> Dict[int, Frame]:
        with self._lock:
            return dict(self._keyframes)

    def active_map_points(self) -> Dict[int, MapPoint]:
        with self._lock:
            return dict(self._active_landmarks)

    def active_keyframes(self) -> Dict[int, Frame]:
        with self._lock:
            return dict(self._active_keyframes)

    def _remove_old_keyframe(self) -> None:
        if self.current_frame is None:
            return
        max_dis, min_dis = 0.0, 9999.0
        max_kf_id, min_kf_id = 0, 0
        Twc = self.current_frame.pose.inverse()
        for kf_id, kf in self._active_keyframes.items():
            if kf is self.current_frame:
                continue
            dis = float(np.linalg.norm((kf.pose * Twc).log()))
            if dis > max_dis:
                max_dis, max_kf_id = dis, kf_id
            if dis < min_dis:
                min_dis, min_kf_id = dis, kf_id

        if min_dis < MIN_DISTANCE_THRESHOLD:
            frame_to_remove = self._keyframes[min_kf_id]
        else:
            frame_to_remove = self._keyframes[max_kf_id]

        logger.info("remove keyframe %d", frame_to_remove.keyframe_id)
        self._active_keyframes.pop(frame_to_remove.keyframe_id, None)
        for feat in frame_to_remove.features_left:
            mp = feat.map_point
            if mp is not None:
                mp.remove_observation(feat)
        for feat in frame_to_remove.features_right:
            if feat is None:
                continue
            mp = feat.map_point
            if mp is not None:
                mp.remove_observation(feat)

        self.clean_map()

    def clean_map(self) -> int:
        """Drop active landmarks with no observations; returns how many were dropped."""
        with self._lock:
            stale = [key for key, mp in self._active_landmarks.items() if mp.observed_times == 0]
            for key in stale:
                del self._active_landmarks[key]
        logger.info("Removed %d active landmarks", len(stale))
        return len(stale)