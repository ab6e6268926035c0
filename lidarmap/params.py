"""Sensor and mapping parameters, plus the smoothness record used for feature sorting."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable


@dataclass(frozen=True)
class SensorConfig:
    """Lidar geometry and segmentation settings (defaults describe a VLP-16)."""

    n_scan: int = 16
    horizon_scan: int = 1800
    ang_res_x: float = 0.2
    ang_res_y: float = 2.0
    ang_bottom: float = 15.0 + 0.1
    ground_scan_ind: int = 7
    use_cloud_ring: bool = True
    point_cloud_topic: str = "/velodyne_points"
    imu_topic: str = "/imu/data"
    scan_period: float = 0.1
    sensor_minimum_range: float = 1.0
    sensor_mount_angle: float = 0.0
    segment_theta: float = 60.0 / 180.0 * math.pi
    segment_valid_point_num: int = 5
    segment_valid_line_num: int = 3
    edge_feature_num: int = 2
    surf_feature_num: int = 4
    sections_total: int = 6
    edge_threshold: float = 0.1
    surf_threshold: float = 0.1
    nearest_feature_search_sq_dist: float = 25.0

    def __post_init__(self) -> None:
        if self.n_scan <= 0:
            raise ValueError("n_scan must be positive")
        if self.horizon_scan <= 0:
            raise ValueError("horizon_scan must be positive")
        if not 0 <= self.ground_scan_ind < self.n_scan:
            raise ValueError("ground_scan_ind must lie within the scan lines")

    def segment_alpha_x(self) -> float:
        """Horizontal angular resolution in radians."""
        return self.ang_res_x / 180.0 * math.pi

    def segment_alpha_y(self) -> float:
        """Vertical angular resolution in radians."""
        return self.ang_res_y / 180.0 * math.pi


@dataclass(frozen=True)
class MappingConfig:
    """Settings of the scan-to-map optimisation and loop closure."""

    loop_closure_enable: bool = False
    mapping_process_interval: float = 0.3
    system_delay: int = 0
    imu_que_length: int = 200
    file_directory: str = "/tmp/"
    surrounding_keyframe_search_radius: float = 50.0
    surrounding_keyframe_search_num: int = 50
    history_keyframe_search_radius: float = 7.0
    history_keyframe_search_num: int = 25
    history_keyframe_fitness_score: float = 0.3
    global_map_visualization_search_radius: float = 500.0
    corner_leaf_size: float = 0.2
    surf_leaf_size: float = 0.4
    outlier_leaf_size: float = 0.4
    history_keyframes_leaf_size: float = 0.4
    surrounding_keyposes_leaf_size: float = 1.0
    global_map_keyposes_leaf_size: float = 1.0
    global_map_keyframes_leaf_size: float = 0.4

    def __post_init__(self) -> None:
        if self.imu_que_length <= 0:
            raise ValueError("imu_que_length must be positive")
        if self.surrounding_keyframe_search_num <= 0:
            raise ValueError("surrounding_keyframe_search_num must be positive")


@dataclass(frozen=True)
class Smoothness:
    """Curvature value of one point together with its index in the cloud."""

    value: float
    ind: int


def sort_by_smoothness(items: Iterable[Smoothness]) -> list[Smoothness]:
    """Return the items ordered by ascending smoothness value (stable)."""
    return sorted(items, key=lambda item: item.value)