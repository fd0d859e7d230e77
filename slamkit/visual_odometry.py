"""Stereo visual odometry over a dataset, driven by a configuration file."""

from __future__ import annotations

import argparse
import logging
import time
from typing import Optional

from slamkit.backend import Backend
from slamkit.config import Config
from slamkit.dataset import Dataset
from slamkit.frontend import Frontend, FrontendStatus
from slamkit.world_map import Map

logger = logging.getLogger(__name__)

DEFAULT_CONFIG = "./config/default.yaml"


class VisualOdometry:
    """Wires dataset, frontend, backend and map together and runs over every frame."""

    def __init__(self, config_path):
        self.config_path = config_path
        self.dataset: Optional[Dataset] = None
        self.frontend: Optional[Frontend] = None
        self.backend: Optional[Backend] = None
        self.map: Optional[Map] = None

    def init(self) -> None:
        """Read the configuration and the dataset and build the components."""
        config = Config.load(self.config_path)
        dataset = Dataset(config.get("dataset_dir"))
        dataset.init()
        self.dataset = dataset
        self.frontend = Frontend(config)
        self.backend = Backend()
        self.map = Map()

        left, right = dataset.camera(0), dataset.camera(1)
        self.frontend.set_backend(self.backend)
        self.frontend.set_map(self.map)
        self.frontend.set_cameras(left, right)
        self.backend.set_map(self.map)
        self.backend.set_cameras(left, right)

    def run(self) -> int:
        """Process frames until the dataset is exhausted; returns how many were processed."""
        if self.frontend is None:
            raise RuntimeError("init() has not been called")
        count = 0
        try:
            while True:
                logger.info("VO is running")
                if not self.step():
                    break
                count += 1
        finally:
            self.backend.stop()
        logger.info("VO exit")
        return count

    def step(self) -> bool:
        """Process the next frame; False when there is none."""
        if self.dataset is None:
            raise RuntimeError("init() has not been called")
        frame = self.dataset.next_frame()
        if frame is None:
            return False
        start = time.perf_counter()
        success = self.frontend.add_frame(frame)
        logger.info("VO cost time: %g seconds.", time.perf_counter() - start)
        return success

    def frontend_status(self) -> FrontendStatus:
        if self.frontend is None:
            raise RuntimeError("init() has not been called")
        return self.frontend.status


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(prog="run_kitti_stereo", description="Run stereo visual odometry.")
    parser.add_argument("--config_file", default=DEFAULT_CONFIG, help="config file path")
    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.INFO)

    vo = VisualOdometry(args.config_file)
    try:
        vo.init()
    except (OSError, ValueError, KeyError) as exc:
        print(f"error: {exc}")
        return 1
    vo.run()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())