"""Tests for the view graph containers and rotation helpers."""

import numpy as np
import pytest

from motion_avg.geometry.rotations import (
    angle_axis_to_rotation_matrix,
    angular_distance,
    project_to_orthogonal,
    rotation_matrix_to_angle_axis,
    skew,
)
from motion_avg.scene.data_structures import Camera, Reconstruction, View, view_pair_key
from motion_avg.scene.synthetic import default_intrinsics, project


def test_view_pair_key_orders_ids():
    assert view_pair_key(4, 1) == (1, 4)
    assert view_pair_key(1, 4) == (1, 4)
    with pytest.raises(ValueError):
        view_pair_key(2, 2)


def test_pixel_to_normalized_coordinates_inverts_projection():
    K = default_intrinsics()
    camera = Camera(K=K)
    point = np.array([0.3, -0.2, 4.0])
    uv = project(K, np.eye(3), np.zeros(3), point)

    ray = camera.pixel_to_normalized_coordinates(uv)

    assert ray[2] == pytest.approx(1.0)
    np.testing.assert_allclose(ray, point / point[2], atol=1e-12)


def test_add_observation_updates_view_and_track():
    reconstruction = Reconstruction()
    reconstruction.add_view(View(id=0, camera=Camera(K=np.eye(3))))
    reconstruction.add_view(View(id=1, camera=Camera(K=np.eye(3))))
    reconstruction.add_track(10)

    reconstruction.add_observation(0, 10, np.array([1.0, 2.0]))
    reconstruction.add_observation(1, 10, np.array([3.0, 4.0]))

    assert reconstruction.track(10).view_ids == {0, 1}
    np.testing.assert_array_equal(reconstruction.view(1).feature(10), [3.0, 4.0])
    np.testing.assert_allclose(reconstruction.view(0).normalized_feature(10), [1.0, 2.0, 1.0])


def test_duplicate_ids_are_rejected():
    reconstruction = Reconstruction()
    reconstruction.add_view(View(id=0, camera=Camera(K=np.eye(3))))
    reconstruction.add_track(0)
    with pytest.raises(ValueError):
        reconstruction.add_view(View(id=0, camera=Camera(K=np.eye(3))))
    with pytest.raises(ValueError):
        reconstruction.add_track(0)


def test_positions_only_reports_estimated_views():
    reconstruction = Reconstruction()
    reconstruction.add_view(View(id=0, camera=Camera(K=np.eye(3))))
    reconstruction.add_view(View(id=1, camera=Camera(K=np.eye(3))))

    reconstruction.set_positions({1: np.array([1.0, 2.0, 3.0])})

    assert list(reconstruction.positions()) == [1]


def test_angle_axis_round_trip_and_distance():
    rvec = np.array([0.1, -0.4, 0.25])
    R = angle_axis_to_rotation_matrix(rvec)

    np.testing.assert_allclose(R.T @ R, np.eye(3), atol=1e-12)
    np.testing.assert_allclose(rotation_matrix_to_angle_axis(R), rvec, atol=1e-10)
    assert angular_distance(np.eye(3), R) == pytest.approx(np.linalg.norm(rvec), abs=1e-10)


def test_skew_matches_cross_product():
    v = np.array([1.0, -2.0, 0.5])
    w = np.array([0.3, 0.7, -1.1])
    np.testing.assert_allclose(skew(v) @ w, np.cross(v, w))


def test_project_to_orthogonal_returns_orthonormal_columns():
    rng = np.random.default_rng(0)
    Q = project_to_orthogonal(rng.standard_normal((5, 3)))
    np.testing.assert_allclose(Q.T @ Q, np.eye(3), atol=1e-12)
