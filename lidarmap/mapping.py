"""Scan-to-map optimisation, key frame selection, pose graph and loop closure."""

from __future__ import annotations

import math
import os
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence, Union

import numpy as np

from .cloud import PointCloud, Pose6D, save_pcd_ascii, transform_point_cloud
from .filters import KdTree, VoxelGrid
from .icp import align, transformation_matrix, translation_and_euler
from .imu import ImuQueue, blend_imu
from .keyframes import KeyFrameStore
from .messages import Header, ImuSample, Odometry, StampedTransform, Vector3
from .params import MappingConfig, SensorConfig
from .posegraph import BetweenFactor, Pose3, PoseGraph, PriorFactor, Rot3
from .rotation import (
    Transform,
    odometry_to_transform,
    transform_associate_to_map,
    transform_to_orientation,
)
from .scan_matching import LMSolver, corner_coefficients, surf_coefficients

_NOISE_VARIANCES = (1e-6, 1e-6, 1e-6, 1e-8, 1e-8, 1e-6)
_STAMP_TOLERANCE = 0.005
_KEYFRAME_DISTANCE = 0.3
_LOOP_TIME_GAP = 30.0
_MAX_SCAN_ITERATIONS = 10
_MIN_MAP_CORNERS = 10
_MIN_MAP_SURFS = 100
_MIN_LOOP_VARIANCE = 1e-9
_FRAME_ID = "camera_init"
_CHILD_FRAME_ID = "/aft_mapped"
_ZERO: Transform = (0.0, 0.0, 0.0, 0.0, 0.0, 0.0)


@dataclass(frozen=True)
class MappingOutput:
    """What one mapping step publishes."""

    odometry: Odometry
    transform: StampedTransform
    key_poses: PointCloud
    recent_cloud: PointCloud
    registered_cloud: PointCloud


def _pose3(transform: Sequence[float]) -> Pose3:
    t = transform
    return Pose3(Rot3.from_rzryrx(t[2], t[0], t[1]), (t[5], t[3], t[4]))


def _concat(clouds: list[PointCloud]) -> PointCloud:
    return PointCloud(np.concatenate([c.data for c in clouds])) if clouds else PointCloud()


class MapOptimizer:
    """Refines odometry against a map of key frames and keeps a pose graph of them."""

    def __init__(self, sensor: SensorConfig | None = None,
                 mapping: MappingConfig | None = None) -> None:
        self.sensor = sensor if sensor is not None else SensorConfig()
        self.mapping = mapping if mapping is not None else MappingConfig()
        m = self.mapping
        self.graph = PoseGraph()
        self.keyframes = KeyFrameStore(m)
        self._imu = ImuQueue(m.imu_que_length)
        self._solver = LMSolver()
        self._lock = threading.RLock()

        self._corner_filter = VoxelGrid(m.corner_leaf_size)
        self._surf_filter = VoxelGrid(m.surf_leaf_size)
        self._outlier_filter = VoxelGrid(m.outlier_leaf_size)
        self._history_filter = VoxelGrid(m.history_keyframes_leaf_size)
        self._global_poses_filter = VoxelGrid(m.global_map_keyposes_leaf_size)
        self._global_frames_filter = VoxelGrid(m.global_map_keyframes_leaf_size)

        self.transform_last: Transform = _ZERO
        self.transform_sum: Transform = _ZERO
        self.transform_tobe_mapped: Transform = _ZERO
        self.transform_bef_mapped: Transform = _ZERO
        self.transform_aft_mapped: Transform = _ZERO

        self._time_corner = 0.0
        self._time_surf = 0.0
        self._time_outlier = 0.0
        self._time_odometry = 0.0
        self._time_last_processing = -1.0
        self._new_corner = False
        self._new_surf = False
        self._new_outlier = False
        self._new_odometry = False

        self._corner_last = PointCloud()
        self._surf_last = PointCloud()
        self._outlier_last = PointCloud()
        self._corner_last_ds = PointCloud()
        self._surf_last_ds = PointCloud()
        self._outlier_last_ds = PointCloud()
        self._surf_total_last = PointCloud()
        self._surf_total_last_ds = PointCloud()
        self._corner_map_ds = PointCloud()
        self._surf_map_ds = PointCloud()

        self._previous_position = np.zeros(3)
        self._current_position = np.zeros(3)

        self._potential_loop = False
        self._loop_start_time = 0.0
        self._closest_history_id = -1
        self._latest_loop_id = -1
        self._latest_loop_cloud = PointCloud()
        self._history_cloud_ds = PointCloud()
        self.loop_closed = False

    # Incoming data

    def on_corner_cloud(self, stamp: float, cloud: PointCloud) -> None:
        self._time_corner = float(stamp)
        self._corner_last = cloud
        self._new_corner = True

    def on_surf_cloud(self, stamp: float, cloud: PointCloud) -> None:
        self._time_surf = float(stamp)
        self._surf_last = cloud
        self._new_surf = True

    def on_outlier_cloud(self, stamp: float, cloud: PointCloud) -> None:
        self._time_outlier = float(stamp)
        self._outlier_last = cloud
        self._new_outlier = True

    def on_laser_odometry(self, msg: Odometry) -> None:
        self._time_odometry = msg.header.stamp
        self.transform_sum = odometry_to_transform(msg.orientation, msg.position)
        self._new_odometry = True

    def on_imu(self, msg: ImuSample) -> None:
        self._imu.push_sample(msg)

    # Processing

    def transform_update(self) -> None:
        """Blend in inertial roll and pitch, then record the mapped transform."""
        reading = self._imu.interpolate(self._time_odometry + self.sensor.scan_period)
        if reading is not None:
            roll, pitch = reading
            self.transform_tobe_mapped = blend_imu(self.transform_tobe_mapped, roll, pitch)
        self.transform_bef_mapped = self.transform_sum
        self.transform_aft_mapped = self.transform_tobe_mapped

    def run(self) -> Optional[MappingOutput]:
        """Process the latest scan if all its parts have arrived; return what is published."""
        odom_time = self._time_odometry
        ready = self._new_odometry and all(
            fresh and abs(stamp - odom_time) < _STAMP_TOLERANCE
            for fresh, stamp in (
                (self._new_corner, self._time_corner),
                (self._new_surf, self._time_surf),
                (self._new_outlier, self._time_outlier),
            )
        )
        if not ready:
            return None
        self._new_corner = self._new_surf = self._new_outlier = self._new_odometry = False

        with self._lock:
            if odom_time - self._time_last_processing < self.mapping.mapping_process_interval:
                return None
            self._time_last_processing = odom_time

            self.transform_tobe_mapped = transform_associate_to_map(
                self.transform_sum, self.transform_bef_mapped, self.transform_aft_mapped
            )
            self._extract_surrounding_key_frames()
            self._downsample_current_scan()
            self._scan_to_map()
            self._save_key_frame()
            self._correct_poses()
            return self._output()

    def _extract_surrounding_key_frames(self) -> None:
        if self.mapping.loop_closure_enable:
            corner, surf = self.keyframes.recent_map()
        else:
            corner, surf = self.keyframes.surrounding_map(self._current_position)
        self._corner_map_ds = self._corner_filter.filter(corner)
        self._surf_map_ds = self._surf_filter.filter(surf)

    def _downsample_current_scan(self) -> None:
        self._corner_last_ds = self._corner_filter.filter(self._corner_last)
        self._surf_last_ds = self._surf_filter.filter(self._surf_last)
        self._outlier_last_ds = self._outlier_filter.filter(self._outlier_last)
        self._surf_total_last = self._surf_last_ds + self._outlier_last_ds
        self._surf_total_last_ds = self._surf_filter.filter(self._surf_total_last)

    def _scan_to_map(self) -> None:
        if len(self._corner_map_ds) <= _MIN_MAP_CORNERS or len(self._surf_map_ds) <= _MIN_MAP_SURFS:
            return
        corner_tree = KdTree(self._corner_map_ds)
        surf_tree = KdTree(self._surf_map_ds)
        for iteration in range(_MAX_SCAN_ITERATIONS):
            corner_points, corner_coeffs = corner_coefficients(
                self._corner_last_ds, self._corner_map_ds, corner_tree, self.transform_tobe_mapped
            )
            surf_points, surf_coeffs = surf_coefficients(
                self._surf_total_last_ds, self._surf_map_ds, surf_tree, self.transform_tobe_mapped
            )
            self.transform_tobe_mapped, converged = self._solver.step(
                corner_points + surf_points,
                corner_coeffs + surf_coeffs,
                self.transform_tobe_mapped,
                iteration,
            )
            if converged:
                break
        self.transform_update()

    def _save_key_frame(self) -> None:
        aft = self.transform_aft_mapped
        self._current_position = np.array(aft[3:6], dtype=np.float64)
        moved = float(np.linalg.norm(self._current_position - self._previous_position))
        count = len(self.keyframes)
        if moved < _KEYFRAME_DISTANCE and count:
            return
        self._previous_position = self._current_position.copy()

        if count == 0:
            pose = _pose3(self.transform_tobe_mapped)
            self.graph.add(PriorFactor(0, pose, _NOISE_VARIANCES))
            self.graph.insert(0, pose)
            self.transform_last = self.transform_tobe_mapped
        else:
            pose_from = _pose3(self.transform_last)
            pose_to = _pose3(aft)
            self.graph.add(BetweenFactor(count - 1, count, pose_from.between(pose_to), _NOISE_VARIANCES))
            self.graph.insert(count, pose_to)
        self.graph.update()

        estimate = self.graph.estimate()
        latest = estimate[max(estimate)]
        tx, ty, tz = (float(v) for v in latest.translation)
        rotation = latest.rotation
        pose6d = Pose6D(
            x=ty, y=tz, z=tx,
            roll=rotation.pitch(), pitch=rotation.yaw(), yaw=rotation.roll(),
            time=self._time_odometry,
        )
        if count + 1 > 1:
            self.transform_aft_mapped = (rotation.pitch(), rotation.yaw(), rotation.roll(), ty, tz, tx)
            self.transform_last = self.transform_aft_mapped
            self.transform_tobe_mapped = self.transform_aft_mapped
        self.keyframes.add(pose6d, self._corner_last_ds, self._surf_last_ds, self._outlier_last_ds)

    def _correct_poses(self) -> None:
        if not self.loop_closed:
            return
        self.keyframes.clear_recent()
        for key, pose in self.graph.estimate().items():
            frame = self.keyframes[key]
            tx, ty, tz = (float(v) for v in pose.translation)
            frame.pose.x, frame.pose.y, frame.pose.z = ty, tz, tx
            frame.pose.roll = pose.rotation.pitch()
            frame.pose.pitch = pose.rotation.yaw()
            frame.pose.yaw = pose.rotation.roll()
        self.loop_closed = False

    def _output(self) -> MappingOutput:
        aft = self.transform_aft_mapped
        bef = self.transform_bef_mapped
        stamp = self._time_odometry
        orientation = transform_to_orientation(aft)
        position = Vector3(*aft[3:6])
        odometry = Odometry(
            header=Header(stamp=stamp, frame_id=_FRAME_ID),
            child_frame_id=_CHILD_FRAME_ID,
            orientation=orientation,
            position=position,
            angular=Vector3(*bef[0:3]),
            linear=Vector3(*bef[3:6]),
        )
        transform = StampedTransform(
            stamp=stamp, frame_id=_FRAME_ID, child_frame_id=_CHILD_FRAME_ID,
            rotation=orientation, origin=position,
        )
        pose = Pose6D.from_transform(self.transform_tobe_mapped)
        registered = (transform_point_cloud(self._corner_last_ds, pose)
                      + transform_point_cloud(self._surf_total_last, pose))
        return MappingOutput(
            odometry=odometry,
            transform=transform,
            key_poses=self.keyframes.positions(),
            recent_cloud=self._surf_map_ds,
            registered_cloud=registered,
        )

    # Loop closure

    def _frame_clouds(self, index: int, include_outlier: bool) -> list[PointCloud]:
        frame = self.keyframes[index]
        clouds = [frame.corner, frame.surf] + ([frame.outlier] if include_outlier else [])
        return [transform_point_cloud(cloud, frame.pose) for cloud in clouds]

    def detect_loop_closure(self) -> bool:
        """Look for an old key frame close to the current position."""
        with self._lock:
            self._latest_loop_cloud = PointCloud()
            self._history_cloud_ds = PointCloud()
            if not len(self.keyframes):
                return False
            indices, _ = KdTree(self.keyframes.positions()).radius_search(
                self._current_position, self.mapping.history_keyframe_search_radius
            )
            self._closest_history_id = -1
            for index in indices:
                if abs(self.keyframes[int(index)].pose.time - self._time_odometry) > _LOOP_TIME_GAP:
                    self._closest_history_id = int(index)
                    break
            if self._closest_history_id == -1:
                return False

            self._latest_loop_id = len(self.keyframes) - 1
            latest = _concat(self._frame_clouds(self._latest_loop_id, False))
            self._latest_loop_cloud = latest[np.trunc(latest.intensity) >= 0]

            span = self.mapping.history_keyframe_search_num
            history: list[PointCloud] = []
            for index in range(self._closest_history_id - span, self._closest_history_id + span + 1):
                if 0 <= index <= self._latest_loop_id:
                    history.extend(self._frame_clouds(index, False))
            self._history_cloud_ds = self._history_filter.filter(_concat(history))
            return True

    def perform_loop_closure(self) -> bool:
        """Try to close a loop; return True when a constraint was added to the graph."""
        with self._lock:
            if not len(self.keyframes):
                return False
            if not self._potential_loop:
                if self.detect_loop_closure():
                    self._potential_loop = True
                    self._loop_start_time = self._time_odometry
                if not self._potential_loop:
                    return False
            self._potential_loop = False

            if not len(self._latest_loop_cloud) or not len(self._history_cloud_ds):
                return False
            result = align(self._latest_loop_cloud, self._history_cloud_ds,
                           max_correspondence_distance=100.0, max_iterations=100,
                           transformation_epsilon=1e-6, euclidean_fitness_epsilon=1e-6)
            if not result.converged or result.fitness_score > self.mapping.history_keyframe_fitness_score:
                return False

            x, y, z, roll, pitch, yaw = translation_and_euler(result.transformation)
            correction = transformation_matrix(z, x, y, yaw, roll, pitch)
            wrong = self.keyframes[self._latest_loop_id].pose
            t_wrong = transformation_matrix(wrong.z, wrong.x, wrong.y, wrong.yaw, wrong.roll, wrong.pitch)
            x, y, z, roll, pitch, yaw = translation_and_euler(correction @ t_wrong)
            pose_from = Pose3(Rot3.from_rzryrx(roll, pitch, yaw), (x, y, z))
            target = self.keyframes[self._closest_history_id].pose
            pose_to = Pose3(Rot3.from_rzryrx(target.yaw, target.roll, target.pitch),
                            (target.z, target.x, target.y))
            variance = max(float(result.fitness_score), _MIN_LOOP_VARIANCE)
            self.graph.add(BetweenFactor(self._latest_loop_id, self._closest_history_id,
                                         pose_from.between(pose_to), (variance,) * 6))
            self.graph.update()
            self.loop_closed = True
            return True

    # Map output

    def global_map(self) -> PointCloud:
        """Downsampled map of all key frames near the current position."""
        with self._lock:
            if not len(self.keyframes):
                return PointCloud()
            positions = self.keyframes.positions()
            indices, _ = KdTree(positions).radius_search(
                self._current_position, self.mapping.global_map_visualization_search_radius
            )
            poses = self._global_poses_filter.filter(positions[indices])
            clouds: list[PointCloud] = []
            for value in poses.intensity:
                clouds.extend(self._frame_clouds(int(value), True))
            return self._global_frames_filter.filter(_concat(clouds))

    def save_maps(self, directory: Union[str, os.PathLike, None] = None) -> list[Path]:
        """Write the global, corner and surface maps and the trajectory as PCD files."""
        target = Path(directory if directory is not None else self.mapping.file_directory)
        target.mkdir(parents=True, exist_ok=True)
        final = self.global_map()
        with self._lock:
            corners: list[PointCloud] = []
            surfaces: list[PointCloud] = []
            for index in range(len(self.keyframes)):
                corner, surf, outlier = self._frame_clouds(index, True)
                corners.append(corner)
                surfaces.extend((surf, outlier))
            outputs = {
                "finalCloud.pcd": final,
                "cornerMap.pcd": self._corner_filter.filter(_concat(corners)),
                "surfaceMap.pcd": self._surf_filter.filter(_concat(surfaces)),
                "trajectory.pcd": self.keyframes.positions(),
            }
        paths = []
        for name, cloud in outputs.items():
            path = target / name
            save_pcd_ascii(path, cloud)
            paths.append(path)
        return paths