"""Landmarks: 3D points created by triangulating features."""

from __future__ import annotations

import itertools
import threading
import weakref
from typing import TYPE_CHECKING, List

import numpy as np

if TYPE_CHECKING:
    from slamkit.frame import Feature


class MapPoint:
    """A 3D point in the world and the features that observe it.

    Observations are held weakly; ``observed_times`` counts how many were added
    and not removed.
    """

    _ids = itertools.count()

    def __init__(self, id: int = 0, position=None):
        self.id = id
        self.is_outlier = False
        self._pos = np.zeros(3) if position is None else np.asarray(position, dtype=float).reshape(3).copy()
        self.observed_times = 0
        self._observations: List[weakref.ref] = []
        self._lock = threading.Lock()

    @property
    def pos(self) -> np.ndarray:
        """Position in the world; reading and writing are thread safe."""
        with self._lock:
            return self._pos.copy()

    @pos.setter
    def pos(self, value) -> None:
        arr = np.asarray(value, dtype=float).reshape(3).copy()
        with self._lock:
            self._pos = arr

    @classmethod
    def create(cls) -> "MapPoint":
        """New map point with the next id."""
        point = cls()
        point.id = next(MapPoint._ids)
        return point

    def add_observation(self, feature: "Feature") -> None:
        with self._lock:
            self._observations.append(weakref.ref(feature))
            self.observed_times += 1

    def remove_observation(self, feature: "Feature") -> None:
        """Drop ``feature`` from the observations and unlink it from this point."""
        with self._lock:
            for index, ref in enumerate(self._observations):
                if ref() is feature:
                    del self._observations[index]
                    feature.map_point = None
                    self.observed_times -= 1
                    break

    def observations(self) -> List["Feature"]:
        """The observing features that are still alive."""
        with self._lock:
            refs = list(self._observations)
        return [feature for feature in (ref() for ref in refs) if feature is not None]

    def __repr__(self) -> str:
        return f"MapPoint(id={self.id}, pos={self._pos.tolist()!r}, observed_times={self.observed_times})"