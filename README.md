# lidarmap

Lidar mapping in Python, built on NumPy and SciPy. The package takes the
corner, surface and outlier feature clouds that lidar odometry produces and
matches them against a local map of key frames. It keeps the key-frame poses
in a pose graph, which loop closures can correct. A separate transform-fusion
stage combines the fast odometry stream with the slower mapping result into a
single pose stream.

## Installation

```
pip install .
```

To run the tests, install the `test` extra and run `pytest`.

## Modules

- `lidarmap.params`: `SensorConfig` and `MappingConfig`, both frozen
  dataclasses. The sensor defaults describe a 16-beam spinning lidar with 1800
  columns. The mapping defaults cover the process interval, key-frame search
  radii and counts, loop-closure settings, voxel leaf sizes and the output
  directory (`/tmp/`). The module also has `Smoothness` and
  `sort_by_smoothness`.
- `lidarmap.messages`: frozen message types: `Quaternion` (with
  `normalized()`), `Vector3`, `Header`, `Odometry`, `StampedTransform`,
  `ImuSample` and `CloudMessage`.
- `lidarmap.rotation`: `rpy_from_quaternion`, `quaternion_from_rpy`,
  `odometry_to_transform`, `transform_to_orientation` and
  `transform_associate_to_map`. The last one applies the odometry drift since
  the last mapping result to the mapped pose.
- `lidarmap.fusion`: `TransformFusion`, which fuses the odometry and mapping
  streams.
- `lidarmap.cloud`: `PointCloud`, which stores x, y, z and intensity per point
  as float32 and has the `xyz` and `intensity` properties, `+` and `copy()`.
  The module also has `Pose6D`, `transform_point_cloud` and `save_pcd_ascii`.
- `lidarmap.filters`: voxel-grid downsampling (`voxel_downsample`,
  `VoxelGrid`) and nearest-neighbour search (`KdTree.nearest_k`,
  `KdTree.radius_search`).
- `lidarmap.posegraph`: `Rot3`, `Pose3`, `PriorFactor`, `BetweenFactor` and
  `PoseGraph`. `PoseGraph` optimises the whole graph with Levenberg-Marquardt
  on every `update()`.
- `lidarmap.icp`: point-to-point ICP (`align`, which returns an `IcpResult`).
  It also has `transformation_matrix` and `translation_and_euler`, which
  convert between 4×4 transforms and translation plus Euler angles.
- `lidarmap.imu`: `ImuQueue`, a ring buffer of time, roll and pitch, and
  `blend_imu`.
- `lidarmap.scan_matching`: `corner_coefficients` (point-to-line),
  `surf_coefficients` (point-to-plane) and `LMSolver`. On the first iteration,
  `LMSolver` detects degenerate directions and removes updates along them.
- `lidarmap.keyframes`: `KeyFrame` and `KeyFrameStore`. The store holds every
  key frame. It builds the local map either from the most recent frames
  (`recent_map`) or from the frames near a position (`surrounding_map`).
- `lidarmap.mapping`: `MapOptimizer`, the complete mapping stage, and
  `MappingOutput`, which holds what one mapping cycle produces.

## Mapping

Create an optimiser and pass it messages as they arrive. `run()` processes a
scan only under two conditions:

- The corner, surface and outlier clouds and the odometry are all new and
  stamped within 5 ms of each other.
- At least `mapping_process_interval` seconds have passed since the previous
  cycle.

In every other case `run()` returns `None`.

```python
import numpy as np

from lidarmap.cloud import PointCloud
from lidarmap.mapping import MapOptimizer
from lidarmap.messages import Header, Odometry
from lidarmap.params import MappingConfig, SensorConfig

optimizer = MapOptimizer(SensorConfig(), MappingConfig())

stamp = 12.5
corner = PointCloud(np.zeros((0, 4), dtype=np.float32))
surf = PointCloud(np.zeros((0, 4), dtype=np.float32))
outlier = PointCloud(np.zeros((0, 4), dtype=np.float32))

optimizer.on_corner_cloud(stamp, corner)
optimizer.on_surf_cloud(stamp, surf)
optimizer.on_outlier_cloud(stamp, outlier)
optimizer.on_laser_odometry(Odometry(header=Header(stamp=stamp)))

output = optimizer.run()
if output is not None:
    print(output.odometry.position, len(output.key_poses))
```

A `MappingOutput` has these fields:

- `odometry`: the mapped pose. Its twist carries the odometry transform that
  the pose was computed from.
- `transform`: the matching `StampedTransform`.
- `key_poses`: the key-frame positions.
- `recent_cloud`: the downsampled surface map.
- `registered_cloud`: the current scan moved into the map frame.

A new key frame is saved when the pose has moved at least 0.3 m since the
last key frame.

Pass IMU messages (`ImuSample`) to `optimizer.on_imu`. After scan matching,
`transform_update()` pulls the rotation slightly toward the IMU roll and
pitch.

When `MappingConfig(loop_closure_enable=True)` is set, the local map is built
from the most recent key frames. To close loops, call
`optimizer.perform_loop_closure()` yourself from time to time. It does the
following:

1. It looks for a key frame within `history_keyframe_search_radius` of the
   current position that is more than 30 s older.
2. It aligns the latest frame with the frames around the old one using ICP.
3. If the fitness score is at most `history_keyframe_fitness_score`, it adds
   a constraint to the pose graph and returns `True`.

The key-frame poses are corrected on the next `run()`.

`optimizer.global_map()` returns the downsampled map of the key frames within
`global_map_visualization_search_radius` of the current position.

`optimizer.save_maps(directory)` writes four ASCII PCD files and returns their
paths: `finalCloud.pcd`, `cornerMap.pcd`, `surfaceMap.pcd` and
`trajectory.pcd`. Without a directory, it writes them to
`MappingConfig.file_directory`.

## Transform fusion

```python
from lidarmap.fusion import TransformFusion

fusion = TransformFusion()
fusion.odom_aft_mapped_handler(output.odometry)       # each mapping result
odometry, transform = fusion.laser_odometry_handler(laser_odometry)
```

Each laser odometry message comes back in the map frame, corrected by the
latest mapping result. It is returned as an `Odometry` together with a
`StampedTransform` from `camera_init` to `camera`.

## Point-cloud helpers

```python
import numpy as np

from lidarmap.cloud import PointCloud, Pose6D, save_pcd_ascii, transform_point_cloud
from lidarmap.filters import KdTree, VoxelGrid

cloud = PointCloud(np.random.rand(1000, 4).astype(np.float32))
sparse = VoxelGrid(0.4).filter(cloud)
moved = transform_point_cloud(sparse, Pose6D.from_transform([0.0, 0.1, 0.0, 1.0, 2.0, 0.5]))
indices, squared_distances = KdTree(moved).nearest_k((1.0, 2.0, 0.5), 5)
save_pcd_ascii("moved.pcd", moved)
```

A transform is six numbers in the order roll, pitch, yaw, x, y, z. It uses
the camera-style axes of the odometry: z forward, x left, y up.

## What the package does not do

- It has no command-line program and no message transport. You call the
  handlers yourself and use the values they return.
- It does not read raw lidar scans and does not extract the corner, surface
  and outlier features. The mapping stage expects these clouds as input.
- It runs no background threads. Loop closure, global-map building and saving
  happen only when you call `perform_loop_closure`, `global_map` and
  `save_maps`.
- PCD files can be written but not read.