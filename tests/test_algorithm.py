from types import SimpleNamespace

import numpy as np
import pytest

from slamkit.algorithm import to_vec2, triangulate
from slamkit.lie import SE3


def test_triangulation():
    pt_world = np.array([30.0, 20.0, 10.0])
    poses = [
        SE3.from_quaternion([0, 0, 0, 1], [0, 0, 0]),
        SE3.from_quaternion([0, 0, 0, 1], [0, -10, 0]),
        SE3.from_quaternion([0, 0, 0, 1], [0, 10, 0]),
    ]
    points = []
    for pose in poses:
        pc = pose * pt_world
        points.append(pc / pc[2])

    estimated = triangulate(poses, points)
    assert estimated is not None
    assert estimated[0] == pytest.approx(pt_world[0], abs=0.01)
    assert estimated[1] == pytest.approx(pt_world[1], abs=0.01)
    assert estimated[2] == pytest.approx(pt_world[2], abs=0.01)


def test_degenerate_views_give_none():
    pose = SE3()
    point = np.array([0.2, 0.1, 1.0])
    assert triangulate([pose, pose], [point, point]) is None


def test_mismatched_lengths_rejected():
    with pytest.raises(ValueError):
        triangulate([SE3(), SE3()], [[0.0, 0.0, 1.0]])


def test_single_view_rejected():
    with pytest.raises(ValueError):
        triangulate([SE3()], [[0.0, 0.0, 1.0]])


def test_to_vec2():
    np.testing.assert_allclose(to_vec2(SimpleNamespace(x=3.5, y=-1.0)), [3.5, -1.0])
    np.testing.assert_allclose(to_vec2((4, 5)), [4.0, 5.0])
    with pytest.raises(ValueError):
        to_vec2((1, 2, 3))