import numpy as np

from slamkit.camera import Camera
from slamkit.lie import SE3


def _camera():
    return Camera(fx=500.0, fy=480.0, cx=320.0, cy=240.0, baseline=0.5, pose=SE3(translation=[-0.5, 0.0, 0.0]))


T_C_W = SE3.exp([0.1, -0.2, 0.3, 0.05, -0.1, 0.02])


def test_intrinsics_layout():
    k = _camera().intrinsics()
    np.testing.assert_allclose(k, [[500.0, 0.0, 320.0], [0.0, 480.0, 240.0], [0.0, 0.0, 1.0]])


def test_pose_inverse_is_stored():
    cam = _camera()
    np.testing.assert_allclose((cam.pose * cam.pose_inv).matrix(), np.eye(4), atol=1e-12)


def test_pixel_camera_round_trip():
    cam = _camera()
    pixel = np.array([100.0, 200.0])
    p_c = cam.pixel_to_camera(pixel, 2.5)
    assert p_c[2] == 2.5
    np.testing.assert_allclose(cam.camera_to_pixel(p_c), pixel)


def test_pixel_to_camera_default_depth_is_one():
    cam = _camera()
    assert cam.pixel_to_camera([cam.cx, cam.cy])[2] == 1.0
    np.testing.assert_allclose(cam.pixel_to_camera([cam.cx, cam.cy])[:2], [0.0, 0.0])


def test_camera_to_pixel_matches_intrinsics():
    cam = _camera()
    p_c = np.array([0.3, -0.4, 2.0])
    projected = cam.intrinsics() @ p_c
    np.testing.assert_allclose(cam.camera_to_pixel(p_c), projected[:2] / projected[2])


def test_world_camera_round_trip():
    cam = _camera()
    p_w = np.array([1.0, 2.0, 5.0])
    np.testing.assert_allclose(cam.camera_to_world(cam.world_to_camera(p_w, T_C_W), T_C_W), p_w, atol=1e-12)


def test_world_pixel_consistency():
    cam = _camera()
    p_w = np.array([1.0, 2.0, 5.0])
    pixel = cam.world_to_pixel(p_w, T_C_W)
    np.testing.assert_allclose(pixel, cam.camera_to_pixel(cam.world_to_camera(p_w, T_C_W)))
    depth = cam.world_to_camera(p_w, T_C_W)[2]
    np.testing.assert_allclose(cam.pixel_to_world(pixel, T_C_W, depth), p_w, atol=1e-9)