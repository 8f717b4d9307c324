"""Shared fixtures: noise-free synthetic scenes with known ground truth."""

import pytest

from motion_avg.geometry.rotations import angle_axis_to_rotation_matrix
from motion_avg.scene.synthetic import make_synthetic_scene


@pytest.fixture
def four_view_scene():
    """Four cameras, every track seen by all four."""
    return make_synthetic_scene(num_views=4, num_points=30, seed=3)


@pytest.fixture
def eight_view_scene():
    """Eight cameras, every track seen by a random subset of four."""
    return make_synthetic_scene(num_views=8, num_points=200, views_per_track=4, seed=7)


@pytest.fixture
def rotation_matrices():
    def _convert(orientations):
        return {
            view_id: angle_axis_to_rotation_matrix(orientation)
            for view_id, orientation in orientations.items()
        }

    return _convert
