"""Reading camera trajectories and comparing an estimate with the ground truth."""

from __future__ import annotations

import argparse
import math
from pathlib import Path
from typing import List, Sequence

import numpy as np

from slamkit.lie import SE3

DEFAULT_GROUNDTRUTH = "./example/groundtruth.txt"
DEFAULT_ESTIMATED = "./example/estimated.txt"


def read_trajectory(path) -> List[SE3]:
    """Read poses stored as ``time tx ty tz qx qy qz qw``, one per line.

    Blank lines are skipped. A line with a different number of fields raises ValueError.
    """
    poses: List[SE3] = []
    with Path(path).open("r", encoding="utf-8") as stream:
        for number, line in enumerate(stream, start=1):
            fields = line.split()
            if not fields:
                continue
            if len(fields) != 8:
                raise ValueError(f"{path}:{number}: expected 8 values, got {len(fields)}")
            try:
                _, tx, ty, tz, qx, qy, qz, qw = (float(f) for f in fields)
            except ValueError as exc:
                raise ValueError(f"{path}:{number}: {exc}") from None
            poses.append(SE3.from_quaternion((qw, qx, qy, qz), (tx, ty, tz)))
    return poses


def rmse(ground_truth: Sequence[SE3], estimated: Sequence[SE3]) -> float:
    """Root mean square of the norm of ``log(gt^-1 * est)`` over matching poses."""
    ground_truth = list(ground_truth)
    estimated = list(estimated)
    if not ground_truth or not estimated:
        raise ValueError("trajectories must not be empty")
    if len(ground_truth) != len(estimated):
        raise ValueError(
            f"trajectories differ in length: {len(ground_truth)} and {len(estimated)}"
        )
    total = sum(
        float(np.linalg.norm((gt.inverse() * est).log())) ** 2
        for gt, est in zip(ground_truth, estimated)
    )
    return math.sqrt(total / len(estimated))


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Compare an estimated trajectory with the ground truth.")
    parser.add_argument("groundtruth", nargs="?", default=DEFAULT_GROUNDTRUTH)
    parser.add_argument("estimated", nargs="?", default=DEFAULT_ESTIMATED)
    args = parser.parse_args(argv)

    try:
        ground_truth = read_trajectory(args.groundtruth)
        estimated = read_trajectory(args.estimated)
        print(f"read total {len(ground_truth)} pose entries")
        print(f"RMSE = {rmse(ground_truth, estimated):g}")
    except (OSError, ValueError) as exc:
        print(f"error: {exc}")
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())