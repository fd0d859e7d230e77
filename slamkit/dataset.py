"""Reading a KITTI-style stereo sequence: calibration and image pairs."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional

import imageio.v3 as iio
import numpy as np

from slamkit.camera import Camera
from slamkit.frame import Frame
from slamkit.lie import SE3, SO3

logger = logging.getLogger(__name__)

CAMERA_COUNT = 4
_VALUES_PER_CAMERA = 12


def _read_gray(path: Path) -> Optional[np.ndarray]:
    if not path.is_file():
        return None
    try:
        image = np.asarray(iio.imread(path))
    except (OSError, ValueError, RuntimeError):
        return None
    if image.dtype == np.uint16:
        image = image >> 8
    if image.ndim == 3:
        rgb = image[..., :3].astype(float)
        gray = 0.299 * rgb[..., 0] + 0.587 * rgb[..., 1] + 0.114 * rgb[..., 2]
        return np.clip(np.rint(gray), 0, 255).astype(np.uint8)
    if image.ndim == 2:
        return image.astype(np.uint8)
    return None


def _half_nearest(image: np.ndarray) -> np.ndarray:
    rows, cols = image.shape[:2]
    new_rows = int(np.rint(rows * 0.5))
    new_cols = int(np.rint(cols * 0.5))
    return image[0 : 2 * new_rows : 2, 0 : 2 * new_cols : 2].copy()


class Dataset:
    """A stereo sequence: ``calib.txt`` plus ``image_0`` and ``image_1`` directories.

    Call :meth:`init` to read the cameras, then :meth:`next_frame` for each
    image pair, halved in size.
    """

    def __init__(self, path):
        self.path = Path(path)
        self.current_image_index = 0
        self._cameras: List[Camera] = []

    def init(self) -> None:
        """Read the four projection matrices of ``calib.txt`` into cameras."""
        calib = self.path / "calib.txt"
        if not calib.is_file():
            raise FileNotFoundError(f"cannot find {calib}!")
        tokens = calib.read_text(encoding="utf-8").split()
        per_camera = _VALUES_PER_CAMERA + 1
        if len(tokens) < CAMERA_COUNT * per_camera:
            raise ValueError(f"{calib}: expected {CAMERA_COUNT} projection matrices")

        cameras = []
        for i in range(CAMERA_COUNT):
            chunk = tokens[i * per_camera : (i + 1) * per_camera]
            try:
                p = np.array([float(v) for v in chunk[1:]]).reshape(3, 4)
            except ValueError as exc:
                raise ValueError(f"{calib}: {exc}") from None
            K = p[:, :3]
            t = np.linalg.solve(K, p[:, 3])
            K = K * 0.5
            camera = Camera(K[0, 0], K[1, 1], K[0, 2], K[1, 2], float(np.linalg.norm(t)), SE3(SO3(), t))
            cameras.append(camera)
            logger.info("Camera %d extrinsics: %s", i, t)
        self._cameras = cameras
        self.current_image_index = 0

    @property
    def cameras(self) -> List[Camera]:
        return list(self._cameras)

    def next_frame(self) -> Optional[Frame]:
        """Frame holding the next stereo pair, or ``None`` when no pair is left."""
        name = f"{self.current_image_index:06d}.png"
        left = _read_gray(self.path / "image_0" / name)
        right = _read_gray(self.path / "image_1" / name)
        if left is None or right is None:
            logger.warning("cannot find images at index %d", self.current_image_index)
            return None
        frame = Frame.create()
        frame.left_img = _half_nearest(left)
        frame.right_img = _half_nearest(right)
        self.current_image_index += 1
        return frame

    def camera(self, camera_id: int) -> Camera:
        if not 0 <= camera_id < len(self._cameras):
            raise IndexError(f"no camera with id {camera_id}")
        return self._cameras[camera_id]