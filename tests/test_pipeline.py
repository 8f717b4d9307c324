"""End-to-end test: rotation averaging followed by position averaging."""

from itertools import combinations

import numpy as np

from motion_avg.config import LiGTOptions, SDPSolverOptions
from motion_avg.geometry.rotations import (
    angle_axis_to_rotation_matrix,
    angular_distance,
    relative_rotation,
)
from motion_avg.pipeline.global_averaging import run_global_averaging
from motion_avg.scene.synthetic import make_synthetic_scene


def test_global_averaging_recovers_similarity():
    scene = make_synthetic_scene(num_views=6, num_points=80, views_per_track=4, seed=11)
    reconstruction = scene.reconstruction
    reconstruction.set_orientations({view_id: np.zeros(3) for view_id in reconstruction.views})

    result = run_global_averaging(
        reconstruction,
        scene.view_pairs,
        rotation_options=SDPSolverOptions(tolerance=1e-12),
        position_options=LiGTOptions(num_threads=2),
        compute_error_bound=True,
    )

    assert result.success
    assert result.error_bound > 0
    assert result.rotation_summary.converged

    for i, j in combinations(range(6), 2):
        expected = relative_rotation(
            angle_axis_to_rotation_matrix(scene.orientations[i]),
            angle_axis_to_rotation_matrix(scene.orientations[j]),
        )
        actual = relative_rotation(
            angle_axis_to_rotation_matrix(result.orientations[i]),
            angle_axis_to_rotation_matrix(result.orientations[j]),
        )
        assert angular_distance(actual, expected) < 1e-3

    # Positions agree with the ground truth up to a similarity transform, so
    # every pairwise distance is scaled by the same factor.
    ratios = [
        np.linalg.norm(result.positions[i] - result.positions[j])
        / np.linalg.norm(scene.positions[i] - scene.positions[j])
        for i, j in combinations(range(6), 2)
    ]
    np.testing.assert_allclose(ratios, ratios[0], rtol=1e-3)

    stored = reconstruction.positions()
    assert set(stored) == set(range(6))
    np.testing.assert_allclose(stored[3], result.positions[3])


def test_global_averaging_failure_leaves_reconstruction_untouched():
    scene = make_synthetic_scene(num_views=4, num_points=10, seed=5)
    reconstruction = scene.reconstruction
    before = reconstruction.orientations()
    view_pairs = {pair: scene.view_pairs[pair] for pair in [(0, 1), (2, 3)]}

    result = run_global_averaging(reconstruction, view_pairs)

    assert not result.success
    assert result.positions == {}
    assert reconstruction.positions() == {}
    for view_id, orientation in reconstruction.orientations().items():
        np.testing.assert_array_equal(orientation, before[view_id])
