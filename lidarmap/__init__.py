"""Lidar scan-to-map optimisation, key-frame pose graph, ICP loop closure and transform fusion."""

__version__ = "0.1.0"

__all__ = [
    "params",
    "messages",
    "rotation",
    "fusion",
    "cloud",
    "filters",
    "posegraph",
    "icp",
    "imu",
    "scan_matching",
    "keyframes",
    "mapping",
]