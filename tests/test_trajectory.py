import numpy as np
import pytest

from slamkit.lie import SE3, SO3
from slamkit.trajectory import main, read_trajectory, rmse


def _write(path, rows):
    path.write_text("\n".join(" ".join(str(v) for v in row) for row in rows) + "\n\n")
    return path


def test_read_trajectory_parses_translation_and_rotation(tmp_path):
    path = _write(
        tmp_path / "traj.txt",
        [
            (0.0, 1.0, 2.0, 3.0, 0.0, 0.0, 0.0, 1.0),
            (0.1, -1.0, 0.5, 0.0, 0.0, 0.0, 1.0, 0.0),
        ],
    )
    poses = read_trajectory(path)
    assert len(poses) == 2
    np.testing.assert_allclose(poses[0].translation, [1.0, 2.0, 3.0])
    np.testing.assert_allclose(poses[0].rotation.matrix(), np.eye(3), atol=1e-12)
    np.testing.assert_allclose(poses[1].translation, [-1.0, 0.5, 0.0])
    np.testing.assert_allclose(poses[1].rotation.matrix(), np.diag([-1.0, -1.0, 1.0]), atol=1e-12)


def test_read_trajectory_rejects_short_line(tmp_path):
    path = tmp_path / "bad.txt"
    path.write_text("0 1 2 3\n")
    with pytest.raises(ValueError):
        read_trajectory(path)


def test_read_trajectory_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        read_trajectory(tmp_path / "missing.txt")


def test_rmse_identical_is_zero():
    poses = [SE3.exp([0.1, 0.2, 0.3, 0.01, 0.02, 0.03]), SE3.exp([1, 0, 0, 0, 0.5, 0])]
    assert rmse(poses, poses) == pytest.approx(0.0, abs=1e-12)


def test_rmse_pure_translation_offset():
    gt = [SE3(), SE3()]
    est = [SE3(SO3(), [0.3, 0.0, 0.0]), SE3(SO3(), [0.3, 0.0, 0.0])]
    assert rmse(gt, est) == pytest.approx(0.3)


def test_rmse_is_non_negative_and_symmetric_for_translation():
    gt = [SE3(SO3(), [0.0, 1.0, 0.0])]
    est = [SE3(SO3(), [0.0, 0.0, 2.0])]
    forward = rmse(gt, est)
    assert forward > 0
    assert rmse(est, gt) == pytest.approx(forward)


def test_rmse_length_mismatch():
    with pytest.raises(ValueError):
        rmse([SE3()], [SE3(), SE3()])


def test_rmse_empty():
    with pytest.raises(ValueError):
        rmse([], [])


def test_main_prints_rmse(tmp_path, capsys):
    rows = [(0.0, 1.0, 2.0, 3.0, 0.0, 0.0, 0.0, 1.0)]
    gt = _write(tmp_path / "gt.txt", rows)
    est = _write(tmp_path / "est.txt", rows)
    assert main([str(gt), str(est)]) == 0
    out = capsys.readouterr().out
    assert "read total 1 pose entries" in out
    assert "RMSE = 0" in out


def test_main_missing_file_fails(tmp_path):
    assert main([str(tmp_path / "a.txt"), str(tmp_path / "b.txt")]) == 1