"""Image frames and the 2D features extracted from them."""

from __future__ import annotations

import itertools
import threading
import weakref
from typing import TYPE_CHECKING, List, Optional

import numpy as np

from slamkit.lie import SE3

if TYPE_CHECKING:
    from slamkit.mappoint import MapPoint


class Feature:
    """A 2D keypoint in a frame, linked to a map point once triangulated.

    The owning frame and the map point are held weakly, so neither is kept
    alive by the feature alone.
    """

    def __init__(self, frame: Optional["Frame"] = None, position=(0.0, 0.0), *, is_on_left_image: bool = True):
        self._frame = weakref.ref(frame) if frame is not None else None
        self.position = np.asarray(position, dtype=float).reshape(2)
        self._map_point: Optional[weakref.ref] = None
        self.is_outlier = False
        self.is_on_left_image = is_on_left_image

    @property
    def frame(self) -> Optional["Frame"]:
        """The frame holding this feature, or ``None`` if it no longer exists."""
        return self._frame() if self._frame is not None else None

    @frame.setter
    def frame(self, value: Optional["Frame"]) -> None:
        self._frame = weakref.ref(value) if value is not None else None

    @property
    def map_point(self) -> Optional["MapPoint"]:
        """The associated map point, or ``None`` if unset or no longer alive."""
        return self._map_point() if self._map_point is not None else None

    @map_point.setter
    def map_point(self, value: Optional["MapPoint"]) -> None:
        self._map_point = weakref.ref(value) if value is not None else None

    def __repr__(self) -> str:
        return (
            f"Feature(position={self.position.tolist()!r}, is_outlier={self.is_outlier}, "
            f"is_on_left_image={self.is_on_left_image})"
        )


class Frame:
    """A stereo image pair with its pose (world to camera) and extracted features.

    Every frame made by :meth:`create` gets a fresh id; keyframes get a second,
    separate id from :meth:`set_keyframe`.
    """

    _ids = itertools.count()
    _keyframe_ids = itertools.count()

    def __init__(self, id: int = 0, time_stamp: float = 0.0, pose: Optional[SE3] = None, left_img=None, right_img=None):
        self.id = id
        self.keyframe_id = 0
        self.is_keyframe = False
        self.time_stamp = time_stamp
        self._pose = pose if pose is not None else SE3()
        self._pose_lock = threading.Lock()
        self.left_img = left_img
        self.right_img = right_img
        self.features_left: List[Feature] = []
        self.features_right: List[Optional[Feature]] = []

    @property
    def pose(self) -> SE3:
        """Pose as T_c_w; reading and writing are thread safe."""
        with self._pose_lock:
            return self._pose

    @pose.setter
    def pose(self, value: SE3) -> None:
        with self._pose_lock:
            self._pose = value

    @classmethod
    def create(cls) -> "Frame":
        """New frame with the next frame id."""
        frame = cls()
        frame.id = next(Frame._ids)
        return frame

    def set_keyframe(self) -> None:
        """Mark this frame as a keyframe and give it the next keyframe id."""
        self.is_keyframe = True
        self.keyframe_id = next(Frame._keyframe_ids)

    def __repr__(self) -> str:
        return f"Frame(id={self.id}, keyframe_id={self.keyframe_id}, is_keyframe={self.is_keyframe})"