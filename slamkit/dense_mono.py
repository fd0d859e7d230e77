"""Dense depth estimation for a monocular camera moving along a known trajectory.

Each pixel of the reference image carries a Gaussian depth estimate. For every new
image, the pixel is searched along its epipolar line, matched by zero-mean NCC,
triangulated, and the measured depth is fused into the pixel's estimate.
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, NamedTuple, Optional, Tuple

import imageio.v3 as iio
import numpy as np

from slamkit.lie import SE3

BORDER = 20
WIDTH = 640
HEIGHT = 480
FX = float(np.float32(481.2))
FY = float(np.float32(-480.0))
CX = float(np.float32(319.5))
CY = float(np.float32(239.5))
NCC_WINDOW = 3
NCC_AREA = (2 * NCC_WINDOW + 1) ** 2
MIN_COV = 0.1
MAX_COV = 10.0
INIT_DEPTH = 3.0
INIT_COV2 = 3.0
NCC_THRESHOLD = float(np.float32(0.85))
SEARCH_STEP = 0.7
MAX_HALF_LENGTH = 100.0
MIN_SEARCH_DEPTH = 0.1

SEQUENCE_FILE = "first_200_frames_traj_over_table_input_sequence.txt"
REFERENCE_DEPTH_FILE = Path("depthmaps") / "scene_000.depth"

_OFFSET_Y, _OFFSET_X = np.mgrid[-NCC_WINDOW : NCC_WINDOW + 1, -NCC_WINDOW : NCC_WINDOW + 1]
_OFFSET_X = _OFFSET_X.ravel().astype(float)
_OFFSET_Y = _OFFSET_Y.ravel().astype(float)


class DepthError(NamedTuple):
    """Mean and mean squared difference between true and estimated depth."""

    mean_error: float
    mean_squared_error: float


def _pair(value, name: str = "point") -> np.ndarray:
    arr = np.asarray(value, dtype=float).reshape(-1)
    if arr.shape != (2,):
        raise ValueError(f"{name} must have two coordinates")
    return arr


def pixel_to_camera(px) -> np.ndarray:
    """Point on the normalised image plane (z = 1) for a pixel."""
    x, y = _pair(px, "px")
    return np.array([(x - CX) / FX, (y - CY) / FY, 1.0])


def camera_to_pixel(p_cam) -> np.ndarray:
    """Pixel of a point given in camera coordinates."""
    x, y, z = np.asarray(p_cam, dtype=float).reshape(3)
    with np.errstate(divide="ignore", invalid="ignore"):
        return np.array([x * FX / z + CX, y * FY / z + CY])


def inside(pt) -> bool:
    """Whether a pixel lies inside the image, away from the border."""
    x, y = _pair(pt, "pt")
    return bool(x >= BORDER and y >= BORDER and x + BORDER < WIDTH and y + BORDER <= HEIGHT)


def _bilinear_many(image: np.ndarray, xs, ys) -> np.ndarray:
    xs = np.asarray(xs, dtype=float)
    ys = np.asarray(ys, dtype=float)
    rows, cols = image.shape
    ix = np.trunc(xs).astype(np.intp)
    iy = np.trunc(ys).astype(np.intp)
    if np.any((ix < 0) | (iy < 0) | (ix + 1 >= cols) | (iy + 1 >= rows)):
        raise ValueError("sample point outside the image")
    xx = xs - np.floor(xs)
    yy = ys - np.floor(ys)
    return (
        (1 - xx) * (1 - yy) * image[iy, ix]
        + xx * (1 - yy) * image[iy, ix + 1]
        + (1 - xx) * yy * image[iy + 1, ix]
        + xx * yy * image[iy + 1, ix + 1]
    ) / 255.0


def bilinear(image, pt) -> float:
    """Bilinearly interpolated grey value at a sub-pixel position, scaled to [0, 1]."""
    img = np.asarray(image, dtype=float)
    if img.ndim != 2:
        raise ValueError("image must be a 2D grayscale array")
    x, y = _pair(pt, "pt")
    return float(_bilinear_many(img, np.array([x]), np.array([y]))[0])


def _reference_window(ref: np.ndarray, pt_ref: np.ndarray) -> np.ndarray:
    xs = np.trunc(_OFFSET_X + pt_ref[0]).astype(np.intp)
    ys = np.trunc(_OFFSET_Y + pt_ref[1]).astype(np.intp)
    rows, cols = ref.shape
    if np.any((xs < 0) | (ys < 0) | (xs >= cols) | (ys >= rows)):
        raise ValueError("reference window outside the image")
    return ref[ys, xs] / 255.0


def _ncc_many(ref_values: np.ndarray, curr: np.ndarray, centers: np.ndarray) -> np.ndarray:
    xs = centers[:, 0, None] + _OFFSET_X[None, :]
    ys = centers[:, 1, None] + _OFFSET_Y[None, :]
    curr_values = _bilinear_many(curr, xs, ys)
    a = ref_values - ref_values.sum() / NCC_AREA
    b = curr_values - curr_values.sum(axis=1, keepdims=True) / NCC_AREA
    numerator = b @ a
    denominator = (a @ a) * (b * b).sum(axis=1)
    return numerator / np.sqrt(denominator + 1e-10)


def ncc(ref, curr, pt_ref, pt_curr) -> float:
    """Zero-mean normalised cross-correlation of the windows around two pixels."""
    ref = np.asarray(ref, dtype=float)
    curr = np.asarray(curr, dtype=float)
    ref_values = _reference_window(ref, _pair(pt_ref, "pt_ref"))
    center = _pair(pt_curr, "pt_curr").reshape(1, 2)
    return float(_ncc_many(ref_values, curr, center)[0])


def epipolar_search(
    ref, curr, T_C_R: SE3, pt_ref, depth_mu: float, depth_cov: float
) -> Optional[Tuple[np.ndarray, np.ndarray]]:
    """Search the epipolar line of ``pt_ref`` in ``curr`` within three standard deviations.

    Returns the best matching pixel and the unit direction of the epipolar line,
    or ``None`` when no candidate reaches the NCC threshold.
    """
    ref = np.asarray(ref, dtype=float)
    curr = np.asarray(curr, dtype=float)
    pt_ref = _pair(pt_ref, "pt_ref")

    f_ref = pixel_to_camera(pt_ref)
    f_ref = f_ref / np.linalg.norm(f_ref)
    px_mean_curr = camera_to_pixel(T_C_R * (f_ref * depth_mu))

    d_min = depth_mu - 3 * depth_cov
    d_max = depth_mu + 3 * depth_cov
    if d_min < MIN_SEARCH_DEPTH:
        d_min = MIN_SEARCH_DEPTH
    px_min_curr = camera_to_pixel(T_C_R * (f_ref * d_min))
    px_max_curr = camera_to_pixel(T_C_R * (f_ref * d_max))

    epipolar_line = px_max_curr - px_min_curr
    length = float(np.linalg.norm(epipolar_line))
    direction = epipolar_line / length if length > 0 else epipolar_line.copy()
    half_length = 0.5 * length
    if half_length > MAX_HALF_LENGTH:
        half_length = MAX_HALF_LENGTH

    steps = []
    offset = -half_length
    while offset <= half_length:
        steps.append(offset)
        offset += SEARCH_STEP
    if not steps:
        return None

    candidates = px_mean_curr[None, :] + np.array(steps)[:, None] * direction[None, :]
    candidates = np.array([c for c in candidates if inside(c)])
    if len(candidates) == 0:
        return None

    scores = _ncc_many(_reference_window(ref, pt_ref), curr, candidates)
    scores = np.where(np.isnan(scores), -np.inf, scores)
    best = int(np.argmax(scores))
    best_ncc = scores[best] if scores[best] > -1.0 else -1.0
    if best_ncc < NCC_THRESHOLD:
        return None
    return candidates[best].copy(), direction


def update_depth_filter(
    pt_ref, pt_curr, T_C_R: SE3, epipolar_direction, depth: np.ndarray, depth_cov2: np.ndarray
) -> Tuple[float, float]:
    """Triangulate a match and fuse its depth into the pixel's Gaussian estimate.

    ``depth`` and ``depth_cov2`` are updated in place; the fused mean and variance
    are also returned.
    """
    pt_ref = _pair(pt_ref, "pt_ref")
    pt_curr = _pair(pt_curr, "pt_curr")
    direction = _pair(epipolar_direction, "epipolar_direction")

    T_R_C = T_C_R.inverse()
    f_ref = pixel_to_camera(pt_ref)
    f_ref = f_ref / np.linalg.norm(f_ref)
    f_curr = pixel_to_camera(pt_curr)
    f_curr = f_curr / np.linalg.norm(f_curr)

    t = T_R_C.translation
    f2 = T_R_C.rotation * f_curr
    b = np.array([t @ f_ref, t @ f2])
    a00 = np.float64(f_ref @ f_ref)
    a01 = np.float64(-(f_ref @ f2))
    a10 = -a01
    a11 = np.float64(-(f2 @ f2))

    with np.errstate(all="ignore"):
        det = a00 * a11 - a01 * a10
        a_inv = np.array([[a11, -a01], [-a10, a00]]) / det
        ans = a_inv @ b
        xm = ans[0] * f_ref
        xn = t + ans[1] * f2
        p_esti = (xm + xn) / 2.0
        depth_estimation = np.linalg.norm(p_esti)

        t_norm = np.linalg.norm(t)
        alpha = np.arccos(f_ref @ t / t_norm)
        f_curr_prime = pixel_to_camera(pt_curr + direction)
        f_curr_prime = f_curr_prime / np.linalg.norm(f_curr_prime)
        beta_prime = np.arccos(f_curr_prime @ (-t) / t_norm)
        gamma = np.pi - alpha - beta_prime
        p_prime = t_norm * np.sin(beta_prime) / np.sin(gamma)
        d_cov = p_prime - depth_estimation
        d_cov2 = d_cov * d_cov

        row, col = int(pt_ref[1]), int(pt_ref[0])
        mu = depth[row, col]
        sigma2 = depth_cov2[row, col]
        mu_fuse = (d_cov2 * mu + sigma2 * depth_estimation) / (sigma2 + d_cov2)
        sigma_fuse2 = (sigma2 * d_cov2) / (sigma2 + d_cov2)

    depth[row, col] = mu_fuse
    depth_cov2[row, col] = sigma_fuse2
    return float(mu_fuse), float(sigma_fuse2)


def update(ref, curr, T_C_R: SE3, depth: np.ndarray, depth_cov2: np.ndarray) -> int:
    """Update the whole depth map with a new image; returns the number of pixels updated.

    Pixels whose variance is below MIN_COV (converged) or above MAX_COV (diverged)
    are left alone.
    """
    ref = np.asarray(ref, dtype=float)
    curr = np.asarray(curr, dtype=float)
    if depth.shape != depth_cov2.shape or depth.ndim != 2:
        raise ValueError("depth and depth_cov2 must be 2D arrays of the same shape")
    rows, cols = depth.shape
    region = depth_cov2[BORDER : rows - BORDER, BORDER : cols - BORDER]
    active = ~((region < MIN_COV) | (region > MAX_COV))
    xs, ys = np.nonzero(active.T)

    updated = 0
    for x, y in zip(xs + BORDER, ys + BORDER):
        found = epipolar_search(
            ref, curr, T_C_R, (x, y), depth[y, x], float(np.sqrt(depth_cov2[y, x]))
        )
        if found is None:
            continue
        pt_curr, direction = found
        update_depth_filter((x, y), pt_curr, T_C_R, direction, depth, depth_cov2)
        updated += 1
    return updated


def evaluate_depth(depth_truth, depth_estimate) -> DepthError:
    """Mean and mean squared error of the estimate inside the image border."""
    truth = np.asarray(depth_truth, dtype=float)
    estimate = np.asarray(depth_estimate, dtype=float)
    if truth.shape != estimate.shape or truth.ndim != 2:
        raise ValueError("depth maps must be 2D arrays of the same shape")
    rows, cols = truth.shape
    error = (truth - estimate)[BORDER : rows - BORDER, BORDER : cols - BORDER]
    if error.size == 0:
        raise ValueError("depth maps are too small to evaluate")
    return DepthError(float(error.mean()), float((error * error).mean()))


def _read_gray(path: Path) -> Optional[np.ndarray]:
    try:
        image = iio.imread(path)
    except (OSError, ValueError, RuntimeError):
        return None
    image = np.asarray(image)
    if image.dtype == np.uint16:
        image = image >> 8
    if image.ndim == 3:
        rgb = image[..., :3].astype(float)
        gray = 0.299 * rgb[..., 0] + 0.587 * rgb[..., 1] + 0.114 * rgb[..., 2]
        return np.clip(np.rint(gray), 0, 255).astype(np.uint8)
    if image.ndim == 2:
        return image.astype(np.uint8)
    return None


@dataclass
class RemodeDataset:
    """Image files, camera-to-world poses and the reference depth map of a sequence."""

    image_files: List[Path] = field(default_factory=list)
    poses: List[SE3] = field(default_factory=list)
    ref_depth: np.ndarray = field(default_factory=lambda: np.zeros((HEIGHT, WIDTH)))

    def __len__(self) -> int:
        return len(self.image_files)

    def load_image(self, index: int) -> Optional[np.ndarray]:
        """Grayscale image at ``index``, or ``None`` if it cannot be read."""
        return _read_gray(self.image_files[index])


def read_dataset(path) -> RemodeDataset:
    """Read the image list, poses (``name tx ty tz qx qy qz qw``) and reference depth."""
    root = Path(path)
    tokens = (root / SEQUENCE_FILE).read_text(encoding="utf-8").split()
    files: List[Path] = []
    poses: List[SE3] = []
    for name, *values in zip(*[iter(tokens)] * 8):
        tx, ty, tz, qx, qy, qz, qw = (float(v) for v in values)
        files.append(root / "images" / name)
        poses.append(SE3.from_quaternion((qw, qx, qy, qz), (tx, ty, tz)))

    text = (root / REFERENCE_DEPTH_FILE).read_text(encoding="utf-8")
    values = np.array(text.split(), dtype=float)
    needed = HEIGHT * WIDTH
    if values.size < needed:
        raise ValueError(f"reference depth has {values.size} values, expected {needed}")
    ref_depth = values[:needed].reshape(HEIGHT, WIDTH) / 100.0
    return RemodeDataset(files, poses, ref_depth)


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        prog="dense_mapping", description="Dense monocular depth estimation on a REMODE sequence."
    )
    parser.add_argument("dataset", help="path to the test dataset")
    parser.add_argument("--output", default="depth.png", help="where to save the depth map")
    args = parser.parse_args(argv)

    try:
        dataset = read_dataset(args.dataset)
    except (OSError, ValueError):
        print("Reading image files failed!")
        return 1
    if not len(dataset):
        print("Reading image files failed!")
        return 1
    print(f"read total {len(dataset)} files.")

    ref = dataset.load_image(0)
    if ref is None or ref.shape != (HEIGHT, WIDTH):
        print(f"cannot read reference image {dataset.image_files[0]}")
        return 1
    pose_ref = dataset.poses[0]
    depth = np.full((HEIGHT, WIDTH), INIT_DEPTH)
    depth_cov2 = np.full((HEIGHT, WIDTH), INIT_COV2)

    for index, pose_curr in enumerate(dataset.poses[1:], start=1):
        print(f"*** loop {index} ***")
        curr = dataset.load_image(index)
        if curr is None or curr.shape != (HEIGHT, WIDTH):
            continue
        T_C_R = pose_curr.inverse() * pose_ref
        update(ref, curr, T_C_R, depth, depth_cov2)
        error = evaluate_depth(dataset.ref_depth, depth)
        print(
            f"Average squared error = {error.mean_squared_error:g}, "
            f"average error: {error.mean_error:g}"
        )

    print("estimation returns, saving depth map ...")
    iio.imwrite(args.output, np.clip(np.rint(depth), 0, 255).astype(np.uint8))
    print("done.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())