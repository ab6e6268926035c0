import numpy as np
import pytest

from lidarmap.cloud import PointCloud
from lidarmap.filters import KdTree, VoxelGrid, voxel_downsample


def _grid_cloud():
    rng = np.random.default_rng(7)
    xyz = rng.uniform(-5.0, 5.0, size=(200, 3))
    intensity = rng.uniform(0.0, 10.0, size=(200, 1))
    return PointCloud(np.hstack([xyz, intensity]))


def test_points_in_one_voxel_are_averaged():
    cloud = PointCloud([[0.1, 0.1, 0.1, 1.0], [0.3, 0.3, 0.3, 3.0]])
    out = voxel_downsample(cloud, 1.0)
    assert len(out) == 1
    assert np.allclose(out.data[0], [0.2, 0.2, 0.2, 2.0])


def test_points_in_separate_voxels_kept():
    cloud = PointCloud([[0.1, 0.1, 0.1, 1.0], [2.5, 0.1, 0.1, 5.0], [0.1, 3.5, 0.1, 6.0]])
    out = voxel_downsample(cloud, 1.0)
    assert len(out) == 3
    assert sorted(out.intensity.tolist()) == [1.0, 5.0, 6.0]


def test_output_points_lie_in_distinct_voxels():
    cloud = _grid_cloud()
    leaf = 2.0
    out = voxel_downsample(cloud, leaf)
    assert 0 < len(out) <= len(cloud)
    voxels_in = {tuple(v) for v in np.floor(cloud.xyz / leaf).astype(int)}
    assert len(out) == len(voxels_in)
    assert out.xyz.min() >= cloud.xyz.min() - 1e-5
    assert out.xyz.max() <= cloud.xyz.max() + 1e-5


def test_mean_position_preserved_for_single_voxel():
    cloud = _grid_cloud()
    out = voxel_downsample(cloud, 100.0)
    assert len(out) == 1
    assert np.allclose(out.data[0], cloud.data.astype(np.float64).mean(axis=0), atol=1e-4)


def test_non_finite_points_dropped():
    cloud = PointCloud([[np.nan, 0.0, 0.0, 1.0], [0.5, 0.5, 0.5, 2.0]])
    out = voxel_downsample(cloud, 1.0)
    assert len(out) == 1
    assert np.allclose(out.data[0], [0.5, 0.5, 0.5, 2.0])


def test_empty_cloud_downsamples_to_empty():
    assert len(voxel_downsample(PointCloud(), 0.4)) == 0


@pytest.mark.parametrize("leaf", [0.0, -1.0, (1.0, 1.0)])
def test_invalid_leaf_raises(leaf):
    with pytest.raises(ValueError):
        voxel_downsample(PointCloud([[0.0, 0.0, 0.0, 0.0]]), leaf)


def test_voxel_grid_matches_function():
    cloud = _grid_cloud()
    grid = VoxelGrid(0.4)
    assert grid.leaf_size == (0.4, 0.4, 0.4)
    assert np.array_equal(grid.filter(cloud).data, voxel_downsample(cloud, 0.4).data)


def test_tiny_leaf_returns_input_unchanged():
    cloud = PointCloud([[0.0, 0.0, 0.0, 1.0], [1000.0, 1000.0, 1000.0, 2.0]])
    out = voxel_downsample(cloud, 1e-4)
    assert np.array_equal(out.data, cloud.data)


def test_nearest_k_sorted_and_self_first():
    cloud = _grid_cloud()
    tree = KdTree(cloud)
    indices, sq = tree.nearest_k(cloud.xyz[10], 5)
    assert len(indices) == 5
    assert indices[0] == 10
    assert sq[0] == pytest.approx(0.0)
    assert np.all(np.diff(sq) >= 0)
    all_sq = ((cloud.xyz.astype(np.float64) - cloud.xyz[10]) ** 2).sum(axis=1)
    assert sq[-1] <= np.sort(all_sq)[4] + 1e-9


def test_nearest_k_more_than_available():
    cloud = PointCloud([[0.0, 0.0, 0.0, 0.0], [1.0, 0.0, 0.0, 1.0]])
    indices, sq = KdTree(cloud).nearest_k([0.0, 0.0, 0.0], 5)
    assert indices.tolist() == [0, 1]
    assert np.allclose(sq, [0.0, 1.0])


def test_nearest_k_invalid_k():
    with pytest.raises(ValueError):
        KdTree(_grid_cloud()).nearest_k([0.0, 0.0, 0.0], 0)


def test_radius_search_complete_and_sorted():
    cloud = _grid_cloud()
    tree = KdTree(cloud)
    center = np.array([0.5, -0.5, 1.0])
    radius = 3.0
    indices, sq = tree.radius_search(center, radius)
    all_sq = ((cloud.xyz.astype(np.float64) - center) ** 2).sum(axis=1)
    expected = set(np.nonzero(all_sq <= radius**2)[0].tolist())
    assert set(indices.tolist()) == expected
    assert np.all(np.diff(sq) >= 0)
    assert np.allclose(sq, all_sq[indices])


def test_radius_search_empty_tree():
    indices, sq = KdTree(PointCloud()).radius_search([0.0, 0.0, 0.0], 10.0)
    assert len(indices) == 0 and len(sq) == 0


def test_radius_search_negative_radius():
    with pytest.raises(ValueError):
        KdTree(_grid_cloud()).radius_search([0.0, 0.0, 0.0], -1.0)