import numpy as np
import pytest

from lidarmap.cloud import PointCloud
from lidarmap.icp import align, transformation_matrix, translation_and_euler


def _random_cloud(seed=3, count=300):
    rng = np.random.default_rng(seed)
    xyz = rng.uniform(0.0, 10.0, size=(count, 3))
    return PointCloud(np.column_stack([xyz, np.arange(count)]))


def test_identity_transformation_matrix():
    assert np.allclose(transformation_matrix(0, 0, 0, 0, 0, 0), np.eye(4))


def test_translation_and_euler_round_trip():
    values = (1.5, -2.0, 0.25, 0.3, -0.4, 1.2)
    recovered = translation_and_euler(transformation_matrix(*values))
    assert recovered == pytest.approx(values)


def test_translation_and_euler_rejects_bad_shape():
    with pytest.raises(ValueError):
        translation_and_euler(np.eye(3))


def test_align_identical_clouds():
    cloud = _random_cloud()
    result = align(cloud, cloud, 1.0, 50, 1e-10, 1e-10)
    assert result.converged
    assert np.allclose(result.transformation, np.eye(4), atol=1e-9)
    assert result.fitness_score == pytest.approx(0.0, abs=1e-12)


def test_align_recovers_small_motion():
    target = _random_cloud()
    truth = transformation_matrix(0.1, -0.05, 0.08, 0.01, -0.02, 0.02)
    inverse = np.linalg.inv(truth)
    xyz = target.xyz.astype(np.float64) @ inverse[:3, :3].T + inverse[:3, 3]
    source = PointCloud(np.column_stack([xyz, target.intensity]))

    result = align(source, target, 100.0, 100, 1e-12, 1e-12)
    assert result.converged
    assert np.allclose(result.transformation, truth, atol=1e-4)
    assert result.fitness_score < 1e-6
    assert np.allclose(result.aligned.xyz, target.xyz, atol=1e-3)
    assert np.array_equal(result.aligned.intensity, source.intensity)


def test_align_fails_without_correspondences():
    target = _random_cloud()
    source = PointCloud(target.data + np.array([100.0, 0.0, 0.0, 0.0], dtype=np.float32))
    result = align(source, target, 1.0, 10, 1e-6, 1e-6)
    assert not result.converged
    assert result.iterations == 0


def test_align_stops_at_iteration_limit():
    target = _random_cloud()
    truth = transformation_matrix(0.3, 0.0, 0.0, 0.0, 0.0, 0.05)
    xyz = target.xyz.astype(np.float64) @ truth[:3, :3].T + truth[:3, 3]
    source = PointCloud(xyz)
    result = align(source, target, 100.0, 1, 0.0, -np.inf)
    assert result.iterations == 1
    assert result.converged


def test_align_rejects_empty_cloud():
    with pytest.raises(ValueError):
        align(PointCloud(), _random_cloud(), 1.0, 10, 1e-6, 1e-6)


def test_align_rejects_bad_iteration_count():
    cloud = _random_cloud()
    with pytest.raises(ValueError):
        align(cloud, cloud, 1.0, 0, 1e-6, 1e-6)