import numpy as np
import pytest
from scipy.linalg import expm

from slamkit.lie import (
    SE3,
    SO3,
    angle_axis_to_matrix,
    euler_angles_zyx,
    hat,
    matrix_to_quaternion,
    quaternion_to_matrix,
    se3_hat,
    se3_vee,
    vee,
)

RNG = np.random.default_rng(7)


def _random_vectors(n, size, scale=1.0):
    return RNG.uniform(-scale, scale, size=(n, size))


def test_hat_vee_round_trip_and_cross_product():
    for v, w in zip(_random_vectors(5, 3), _random_vectors(5, 3)):
        np.testing.assert_allclose(vee(hat(v)), v)
        np.testing.assert_allclose(hat(v) @ w, np.cross(v, w))


def test_hat_rejects_wrong_size():
    with pytest.raises(ValueError):
        hat([1.0, 2.0])


def test_so3_from_matrix_equals_from_quaternion():
    r = angle_axis_to_matrix(np.pi / 2, [0, 0, 1])
    q = matrix_to_quaternion(r)
    np.testing.assert_allclose(SO3(r).matrix(), SO3.from_quaternion(q).matrix(), atol=1e-12)
    np.testing.assert_allclose(SO3(r).log(), [0, 0, np.pi / 2], atol=1e-12)


def test_angle_axis_rotates_x_to_y():
    r = angle_axis_to_matrix(np.pi / 2, [0, 0, 2])
    np.testing.assert_allclose(r @ [1, 0, 0], [0, 1, 0], atol=1e-12)


def test_so3_exp_log_round_trip():
    for omega in _random_vectors(10, 3, 1.5):
        np.testing.assert_allclose(SO3.exp(omega).log(), omega, atol=1e-9)


def test_so3_exp_matches_matrix_exponential():
    omega = np.array([0.3, -0.2, 0.5])
    np.testing.assert_allclose(SO3.exp(omega).matrix(), expm(hat(omega)), atol=1e-12)


def test_so3_rejects_non_rotation():
    with pytest.raises(ValueError):
        SO3(np.diag([1.0, 2.0, 1.0]))


def test_so3_inverse_and_product():
    r = SO3.exp([0.1, 0.2, 0.3])
    np.testing.assert_allclose((r * r.inverse()).matrix(), np.eye(3), atol=1e-12)
    v = np.array([1.0, 2.0, 3.0])
    np.testing.assert_allclose(r * v, r.matrix() @ v)


def test_quaternion_round_trip():
    for omega in _random_vectors(10, 3, 3.0):
        r = SO3.exp(omega).matrix()
        np.testing.assert_allclose(quaternion_to_matrix(matrix_to_quaternion(r)), r, atol=1e-12)
        assert np.linalg.norm(matrix_to_quaternion(r)) == pytest.approx(1.0)


def test_quaternion_zero_rejected():
    with pytest.raises(ValueError):
        quaternion_to_matrix([0, 0, 0, 0])


def test_euler_angles_of_yaw_rotation():
    r = angle_axis_to_matrix(np.pi / 4, [0, 0, 1])
    np.testing.assert_allclose(euler_angles_zyx(r), [np.pi / 4, 0, 0], atol=1e-12)


def test_euler_angles_reconstruct_matrix():
    r = SO3.exp([0.2, -0.4, 0.7]).matrix()
    yaw, pitch, roll = euler_angles_zyx(r)
    rebuilt = (
        angle_axis_to_matrix(yaw, [0, 0, 1])
        @ angle_axis_to_matrix(pitch, [0, 1, 0])
        @ angle_axis_to_matrix(roll, [1, 0, 0])
    )
    np.testing.assert_allclose(rebuilt, r, atol=1e-12)


def test_se3_log_translation_first():
    r = angle_axis_to_matrix(np.pi / 2, [0, 0, 1])
    xi = SE3(r, [1, 0, 0]).log()
    np.testing.assert_allclose(xi, [np.pi / 4, -np.pi / 4, 0, 0, 0, np.pi / 2], atol=1e-12)


def test_se3_hat_vee_round_trip():
    for xi in _random_vectors(5, 6):
        np.testing.assert_allclose(se3_vee(se3_hat(xi)), xi)


def test_se3_exp_matches_matrix_exponential_and_log():
    for xi in _random_vectors(5, 6):
        pose = SE3.exp(xi)
        np.testing.assert_allclose(pose.matrix(), expm(se3_hat(xi)), atol=1e-10)
        np.testing.assert_allclose(pose.log(), xi, atol=1e-9)


def test_se3_inverse_gives_identity():
    pose = SE3.exp([0.5, -1.0, 2.0, 0.1, 0.2, -0.3])
    np.testing.assert_allclose((pose * pose.inverse()).matrix(), np.eye(4), atol=1e-12)
    assert pose.matrix3x4().shape == (3, 4)


def test_se3_adjoint_property():
    pose = SE3.exp([0.5, -1.0, 2.0, 0.1, 0.2, -0.3])
    xi = np.array([0.01, 0.02, -0.03, 0.04, -0.01, 0.02])
    lhs = pose * SE3.exp(xi) * pose.inverse()
    rhs = SE3.exp(pose.adjoint() @ xi)
    np.testing.assert_allclose(lhs.matrix(), rhs.matrix(), atol=1e-12)


def test_se3_transforms_point_arrays():
    pose = SE3.exp([1, 2, 3, 0.3, 0.1, 0.2])
    points = np.array([[0.0, 0.0, 0.0], [1.0, 2.0, 3.0]])
    np.testing.assert_allclose(pose * points, np.vstack([pose * p for p in points]))
    np.testing.assert_allclose(pose * points[0], pose.translation)


def test_coordinate_transform_example():
    t1w = SE3.from_quaternion([0.35, 0.2, 0.3, 0.1], [0.3, 0.1, 0.1])
    t2w = SE3.from_quaternion([-0.5, 0.4, -0.1, 0.2], [-0.1, 0.5, 0.3])
    p2 = t2w * t1w.inverse() * np.array([0.5, 0.0, 0.2])
    np.testing.assert_allclose(p2, [-0.0309731, 0.73499, 0.296108], atol=1e-5)