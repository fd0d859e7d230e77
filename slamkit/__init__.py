"""Visual SLAM building blocks: Lie groups, cameras, triangulation, curve fitting,
point clouds, dense depth estimation, pose graphs and stereo visual odometry."""

__version__ = "0.1.0"