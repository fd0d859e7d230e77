import numpy as np
import pytest
from scipy import ndimage

from slamkit.backend import Backend
from slamkit.camera import Camera
from slamkit.config import Config
from slamkit.frame import Frame
from slamkit.frontend import Frontend, FrontendStatus, detect_corners, track_points
from slamkit.lie import SE3, SO3
from slamkit.world_map import Map

BASELINE = 0.5
SHIFT = 5
FX = 100.0


def _texture(rows=160, cols=240, extra=SHIFT, seed=3):
    rng = np.random.default_rng(seed)
    tex = ndimage.gaussian_filter(rng.random((rows, cols + extra)), 2.0)
    tex = (tex - tex.min()) / (tex.max() - tex.min()) * 255
    return tex[:, :cols].copy(), tex[:, extra : extra + cols].copy()


def _cameras():
    left = Camera(FX, FX, 120.0, 80.0, BASELINE, SE3())
    right = Camera(FX, FX, 120.0, 80.0, BASELINE, SE3(SO3(), np.array([-BASELINE, 0.0, 0.0])))
    return left, right


def _frontend():
    fe = Frontend(Config({"num_features": 150, "num_features_init": 20}))
    fe.set_cameras(*_cameras())
    fe.set_map(Map())
    return fe


def _frame(left, right):
    frame = Frame.create()
    frame.left_img = left
    frame.right_img = right
    return frame


def test_track_points_follows_shift():
    left, right = _texture()
    pts = np.array([[60.0, 60.0], [120.0, 90.0]])
    tracked, status = track_points(left, right, pts, pts)
    assert status.all()
    assert np.allclose(tracked, pts - [SHIFT, 0], atol=0.2)


def test_detect_corners_respects_spacing_and_blank_image():
    left, _ = _texture()
    corners = detect_corners(left, 50)
    assert 0 < len(corners) <= 50
    d = np.linalg.norm(corners[:, None] - corners[None], axis=2) + np.eye(len(corners)) * 1e9
    assert d.min() >= 20
    assert len(detect_corners(np.zeros((50, 50)), 10)) == 0


def test_stereo_init_triangulates_depth():
    left, right = _texture()
    fe = _frontend()
    assert fe.add_frame(_frame(left, right))
    assert fe.status is FrontendStatus.TRACKING_GOOD
    points = fe.map.all_map_points()
    assert len(points) >= 20
    z = np.median([mp.pos[2] for mp in points.values()])
    assert z == pytest.approx(FX * BASELINE / SHIFT, rel=0.05)
    assert len(fe.map.all_keyframes()) == 1


def test_static_second_frame_keeps_identity_pose():
    left, right = _texture()
    fe = _frontend()
    fe.add_frame(_frame(left, right))
    second = _frame(left, right)
    fe.add_frame(second)
    assert fe.status in (FrontendStatus.TRACKING_GOOD, FrontendStatus.TRACKING_BAD)
    assert np.linalg.norm(second.pose.log()) < 0.05


def test_blank_images_do_not_initialise():
    fe = _frontend()
    blank = np.zeros((160, 240))
    fe.add_frame(_frame(blank, blank))
    assert fe.status is FrontendStatus.INITING
    assert fe.map.all_map_points() == {}


def test_backend_is_notified():
    left, right = _texture()
    fe = _frontend()
    with Backend() as backend:
        backend.set_cameras(*_cameras())
        backend.set_map(fe.map)
        fe.set_backend(backend)
        fe.add_frame(_frame(left, right))
    assert backend.running is False
    assert len(fe.map.all_keyframes()) == 1


def test_missing_cameras_raise():
    fe = Frontend()
    fe.set_map(Map())
    with pytest.raises(RuntimeError):
        fe.add_frame(Frame.create())