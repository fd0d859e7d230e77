# slamkit

Building blocks for visual SLAM written with NumPy and SciPy.

Conventions used throughout: quaternions are `(w, x, y, z)` with the real part
first, and the SE(3) tangent vector is ordered translation first, rotation
second. Poses of frames are stored as world-to-camera transforms.

## Modules

- `slamkit.lie` – `SO3` and `SE3` with `exp`, `log`, `inverse`, composition by
  `*` (also applied to a 3-vector or an Nx3 array of points), `matrix()`,
  `matrix3x4()`, `adjoint()` and `unit_quaternion()`. Helpers: `hat`, `vee`,
  `se3_hat`, `se3_vee`, `quaternion_to_matrix`, `matrix_to_quaternion`,
  `angle_axis_to_matrix` and `euler_angles_zyx` (yaw, pitch, roll).
- `slamkit.camera` – `Camera`, a pinhole camera with an extrinsic pose, mapping
  points between world, camera and pixel coordinates (`world_to_camera`,
  `camera_to_pixel`, `pixel_to_camera`, `world_to_pixel`, `pixel_to_world`, …)
  and giving its intrinsic matrix with `intrinsics()`.
- `slamkit.algorithm` – `triangulate(poses, points)`, linear SVD
  triangulation from observations on the normalised image plane; it returns
  the world point, or `None` when the solution is poorly determined.
  `to_vec2` turns a pixel position into a 2-vector.
- `slamkit.curve_fitting` – fits `y = exp(a x² + b x + c)`: `make_samples`
  draws noisy samples, `gauss_newton` and `levenberg_marquardt` return a
  `FitResult` with the parameters, final cost and per-iteration history.
- `slamkit.trajectory` – `read_trajectory` reads files of lines
  `time tx ty tz qx qy qz qw`; `rmse` compares two trajectories by the norm of
  `log(gt⁻¹ · est)`.
- `slamkit.imaging` – `undistort_image` (radial-tangential model,
  nearest-neighbour), `stereo_point_cloud` from a disparity map,
  `rgbd_point_cloud` from a colour image, a raw depth image and a pose,
  `read_poses`, `voxel_downsample` and `statistical_outlier_removal`.
  `PinholeIntrinsics` and `Distortion` hold the camera parameters.
- `slamkit.dense_mono` – monocular dense depth estimation for a 640x480 camera
  on a known trajectory: epipolar search, zero-mean NCC matching
  (`epipolar_search`, `ncc`, `bilinear`), triangulation and Gaussian depth
  fusion (`update_depth_filter`, `update`), and `evaluate_depth`.
  `read_dataset` loads a `RemodeDataset`.
- `slamkit.pose_graph` – `PoseGraph` of `PoseVertex` and `PoseEdge`,
  optimised by Levenberg-Marquardt on SE(3); `load_pose_graph` reads
  `VERTEX_SE3:QUAT` / `EDGE_SE3:QUAT` files (vertex 0 is fixed) and
  `PoseGraph.write` writes them back.
- `slamkit.projection` – reprojection errors and Jacobians for bundle
  adjustment (`PoseOnlyProjection`, `StereoProjection`) and `huber_weight`.
- Stereo visual odometry:
  - `slamkit.frame` – `Frame` (stereo images, pose, features, frame and
    keyframe ids) and `Feature` (a 2D keypoint weakly linked to its frame and
    map point).
  - `slamkit.mappoint` – `MapPoint`, a landmark and its observations.
  - `slamkit.world_map` – `Map`, keyframes and landmarks with a sliding window
    of seven active keyframes by default.
  - `slamkit.config` – `Config.load` reads a YAML parameter file (a leading
    `%YAML` directive line is tolerated); `Config.get` returns a value.
  - `slamkit.dataset` – `Dataset` reads `calib.txt` with four projection
    matrices and the stereo pairs `image_0/NNNNNN.png`, `image_1/NNNNNN.png`,
    halving each image.
  - `slamkit.frontend` – `Frontend`: Shi-Tomasi corners, pyramidal
    Lucas-Kanade tracking into the right image and the next frame, stereo
    triangulation, pose estimation with outlier rejection and keyframe
    insertion. `FrontendStatus` tells whether it is initialising, tracking
    well, tracking badly or lost.
  - `slamkit.backend` – `Backend`, bundle adjustment of the active keyframes
    and landmarks on a worker thread, started by `update_map()` and ended by
    `stop()` (it is also a context manager).
  - `slamkit.visual_odometry` – `VisualOdometry` wires these together;
    `init()`, `step()`, `run()` and `frontend_status()`.

Progress of the odometry pipeline is reported through the standard `logging`
module.

## Installation

```
pip install .
```

For the tests:

```
pip install ".[test]"
pytest
```

## Using the library

```python
import numpy as np
from slamkit.lie import SE3

motion = SE3.exp(np.array([1e-4, 0, 0, 0, 0, 0.5]))
back = motion.log()                 # six-vector, translation first
identity = motion * motion.inverse()
print(identity.matrix())
```

```python
from slamkit.curve_fitting import make_samples, gauss_newton

x, y = make_samples(params=(1.0, 2.0, 1.0), count=100, sigma=1.0, seed=0)
result = gauss_newton(x, y, initial=(2.0, -1.0, 5.0), iterations=100, sigma=1.0)
print(result.params, result.cost, result.iterations)
```

## Command-line tools

Each tool prints its usage with `--help`.

| Command | What it does |
| --- | --- |
| `slamkit-curve-fit` | Generates noisy samples and fits the curve model. Options: `--method gauss-newton\|levenberg-marquardt`, `--count`, `--sigma`, `--seed`. |
| `slamkit-trajectory-error` | Reads a ground-truth and an estimated trajectory (defaults `./example/groundtruth.txt` and `./example/estimated.txt`) and prints their RMSE. |
| `slamkit-dense-mono` | Runs dense depth estimation on a dataset directory holding `first_200_frames_traj_over_table_input_sequence.txt`, `images/` and `depthmaps/scene_000.depth`; prints the error after each image and saves the depth map (`--output`, default `depth.png`). |
| `slamkit-pose-graph` | Optimises a pose graph file, prints the error after each iteration and writes the result (`--output`, default `result_lie.g2o`; `--iterations`, default 30). |
| `slamkit-vo` | Runs stereo visual odometry on the dataset named by `dataset_dir` in the YAML file given by `--config_file` (default `./config/default.yaml`); the file must also set `num_features` and `num_features_init`. |

For example:

```
slamkit-pose-graph sphere.g2o
```

## What the package does not do

- It draws nothing: there are no windows for trajectories, point clouds,
  images or the running odometry. Results are returned as arrays, printed or
  written to files.
- The odometry frontend does not recover once tracking is lost; later frames
  are skipped while the status stays `LOST`.
- There is no loop closure or place recognition, and point clouds are not
  saved to any point-cloud file format.