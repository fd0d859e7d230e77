[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "slamkit"
version = "0.1.0"
description = "Visual SLAM building blocks: Lie groups, camera models, triangulation, curve fitting, point clouds, dense depth estimation, pose graphs and stereo visual odometry."
requires-python = ">=3.10"
keywords = [
    "slam",
    "visual-odometry",
    "lie-groups",
    "se3",
    "pose-graph",
    "triangulation",
    "stereo",
    "point-cloud",
    "depth-estimation",
    "computer-vision",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Science/Research",
    "Intended Audience :: Education",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Scientific/Engineering :: Image Processing",
    "Topic :: Scientific/Engineering :: Mathematics",
]
dependencies = [
    "numpy",
    "scipy",
    "imageio",
    "pyyaml",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
slamkit-curve-fit = "slamkit.curve_fitting:main"
slamkit-trajectory-error = "slamkit.trajectory:main"
slamkit-dense-mono = "slamkit.dense_mono:main"
slamkit-pose-graph = "slamkit.pose_graph:main"
slamkit-vo = "slamkit.visual_odometry:main"

[tool.hatch.build.targets.wheel]
packages = ["slamkit"]

[tool.hatch.build.targets.sdist]
include = ["slamkit", "tests", "pyproject.toml"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
ignore_missing_imports = true
warn_unused_ignores = true
