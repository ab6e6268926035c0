import numpy as np
import pytest

from lidarmap.cloud import PointCloud, Pose6D
from lidarmap.keyframes import KeyFrameStore
from lidarmap.params import MappingConfig


def _clouds():
    corner = PointCloud([[0.0, 0.0, 0.0, 0.0]])
    surf = PointCloud([[0.0, 1.0, 0.0, 0.0]])
    outlier = PointCloud([[0.0, 0.0, 1.0, 0.0]])
    return corner, surf, outlier


def _store_with(xs, search_num=50):
    store = KeyFrameStore(MappingConfig(surrounding_keyframe_search_num=search_num))
    for x in xs:
        store.add(Pose6D(x=x), *_clouds())
    return store


def test_add_assigns_indices_and_positions():
    store = _store_with([1.0, 4.0, 9.0])
    assert len(store) == 3
    assert [store[i].pose.intensity for i in range(3)] == [0.0, 1.0, 2.0]
    positions = store.positions()
    np.testing.assert_allclose(positions.xyz[:, 0], [1.0, 4.0, 9.0])
    np.testing.assert_allclose(positions.intensity, [0.0, 1.0, 2.0])


def test_add_copies_clouds():
    store = KeyFrameStore()
    corner, surf, outlier = _clouds()
    store.add(Pose6D(), corner, surf, outlier)
    corner.data[0, 0] = 42.0
    assert store[0].corner.data[0, 0] == 0.0


def test_empty_store_gives_empty_maps():
    store = KeyFrameStore()
    corner, surf = store.surrounding_map((0.0, 0.0, 0.0))
    assert len(corner) == 0 and len(surf) == 0
    corner, surf = store.recent_map()
    assert len(corner) == 0 and len(surf) == 0
    assert len(store.positions()) == 0


def test_recent_map_keeps_newest_frames():
    store = _store_with([0.0, 10.0, 20.0], search_num=2)
    corner, surf = store.recent_map()
    assert sorted(corner.xyz[:, 0].tolist()) == [10.0, 20.0]
    assert len(surf) == 4

    store.add(Pose6D(x=30.0), *_clouds())
    corner, _ = store.recent_map()
    assert sorted(corner.xyz[:, 0].tolist()) == [20.0, 30.0]

    corner, _ = store.recent_map()
    assert sorted(corner.xyz[:, 0].tolist()) == [20.0, 30.0]


def test_clear_recent_rebuilds_from_poses():
    store = _store_with([0.0, 10.0], search_num=2)
    store.recent_map()
    store[1].pose.x = 15.0
    corner, _ = store.recent_map()
    assert 15.0 not in corner.xyz[:, 0].tolist()
    store.clear_recent()
    corner, _ = store.recent_map()
    assert sorted(corner.xyz[:, 0].tolist()) == [0.0, 15.0]


def test_surrounding_map_uses_nearby_frames_only():
    store = _store_with([0.0, 5.0, 200.0])
    corner, surf = store.surrounding_map((0.0, 0.0, 0.0))
    assert sorted(corner.xyz[:, 0].tolist()) == [0.0, 5.0]
    assert len(surf) == 4

    corner, _ = store.surrounding_map((200.0, 0.0, 0.0))
    assert corner.xyz[:, 0].tolist() == [200.0]


def test_surrounding_map_transforms_points():
    store = KeyFrameStore()
    store.add(Pose6D(x=1.0, y=2.0, z=3.0), *_clouds())
    corner, surf = store.surrounding_map((1.0, 2.0, 3.0))
    np.testing.assert_allclose(corner.xyz, [[1.0, 2.0, 3.0]])
    np.testing.assert_allclose(surf.xyz, [[1.0, 3.0, 3.0], [1.0, 2.0, 4.0]])


def test_positions_index_error_for_missing_frame():
    store = _store_with([0.0])
    with pytest.raises(IndexError):
        store[3]
    assert len(store) == 1
    assert store[0].pose.x == 0.0