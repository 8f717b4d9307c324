"""Tests for LiGT position averaging."""

import numpy as np
import pytest
import scipy.sparse as sp

from motion_avg.config import LiGTOptions
from motion_avg.position.ligt_estimator import (
    LiGTPositionEstimator,
    RunState,
    flip_sign_of_positions_if_necessary,
    solve_smallest_eigenvector,
    vectors_are_same_direction,
)
from motion_avg.scene.data_structures import Camera, Reconstruction, RelativePose, View
from motion_avg.scene.synthetic import make_view_pairs


def stacked_relative_positions(positions, view_ids, origin_id):
    return np.concatenate([positions[view_id] - positions[origin_id] for view_id in view_ids])


def assert_positions_match_up_to_scale(estimated, ground_truth, pinned_id, atol=1e-6):
    view_ids = sorted(estimated)
    est = stacked_relative_positions(estimated, view_ids, pinned_id)
    gt = stacked_relative_positions(ground_truth, view_ids, pinned_id)

    scale = float(est @ gt) / float(gt @ gt)
    assert scale > 0
    np.testing.assert_allclose(est / np.linalg.norm(est), gt / np.linalg.norm(gt), atol=atol)


def test_four_views_recovered_up_to_positive_scale(four_view_scene):
    estimator = LiGTPositionEstimator(LiGTOptions(), four_view_scene.reconstruction)
    positions = {}

    assert estimator.estimate_positions(
        four_view_scene.view_pairs, four_view_scene.orientations, positions
    )

    run = estimator.last_run
    pinned_id = run.system.pinned_view()
    assert set(positions) == {0, 1, 2, 3}
    np.testing.assert_array_equal(positions[pinned_id], np.zeros(3))
    assert_positions_match_up_to_scale(positions, four_view_scene.positions, pinned_id)


def test_eight_views_with_partial_tracks(eight_view_scene):
    estimator = LiGTPositionEstimator(LiGTOptions(), eight_view_scene.reconstruction)

    positions = estimator.estimate_positions_dict(
        eight_view_scene.view_pairs, eight_view_scene.orientations
    )

    assert set(positions) == set(range(8))
    assert_positions_match_up_to_scale(
        positions, eight_view_scene.positions, estimator.last_run.system.pinned_view()
    )


def test_run_context_records_progress(four_view_scene):
    estimator = LiGTPositionEstimator(LiGTOptions(), four_view_scene.reconstruction)
    estimator.estimate_positions_dict(four_view_scene.view_pairs, four_view_scene.orientations)

    run = estimator.last_run
    num_tracks = len(four_view_scene.reconstruction.tracks)
    assert run.state == RunState.DONE
    assert run.total_triplets == 2 * num_tracks
    assert sum(run.num_triplets_for_view.values()) == 3 * run.total_triplets
    assert run.eigenvalue is not None and run.eigenvalue >= -1e-8


def test_negated_translations_negate_positions(four_view_scene):
    scene = four_view_scene
    negated_pairs = make_view_pairs(
        scene.orientations, {view_id: -c for view_id, c in scene.positions.items()}
    )
    estimator = LiGTPositionEstimator(LiGTOptions(), scene.reconstruction)

    positions = estimator.estimate_positions_dict(scene.view_pairs, scene.orientations)
    flipped = estimator.estimate_positions_dict(negated_pairs, scene.orientations)

    for view_id in positions:
        np.testing.assert_allclose(flipped[view_id], -positions[view_id], atol=1e-8)


def test_multithreaded_matches_single_threaded(eight_view_scene):
    scene = eight_view_scene
    single = LiGTPositionEstimator(LiGTOptions(num_threads=1), scene.reconstruction)
    multi = LiGTPositionEstimator(LiGTOptions(num_threads=4), scene.reconstruction)

    expected = single.estimate_positions_dict(scene.view_pairs, scene.orientations)
    actual = multi.estimate_positions_dict(scene.view_pairs, scene.orientations)

    assert set(actual) == set(expected)
    for view_id in expected:
        np.testing.assert_allclose(actual[view_id], expected[view_id], atol=1e-8)


def test_fails_without_triplets():
    reconstruction = Reconstruction()
    for view_id in range(3):
        reconstruction.add_view(View(id=view_id, camera=Camera(K=np.eye(3))))
    reconstruction.add_track(0)
    reconstruction.add_observation(0, 0, np.array([0.1, 0.0]))
    reconstruction.add_observation(1, 0, np.array([0.2, 0.0]))
    orientations = {view_id: np.zeros(3) for view_id in range(3)}
    positions = {99: np.ones(3)}

    estimator = LiGTPositionEstimator(LiGTOptions(), reconstruction)

    assert not estimator.estimate_positions({}, orientations, positions)
    assert positions == {}
    assert estimator.last_run.state == RunState.FAILED


def test_fails_without_orientations(four_view_scene):
    estimator = LiGTPositionEstimator(LiGTOptions(), four_view_scene.reconstruction)
    positions = {}

    assert not estimator.estimate_positions(four_view_scene.view_pairs, {}, positions)
    assert positions == {}


def test_invalid_thread_count_is_rejected():
    with pytest.raises(ValueError):
        LiGTOptions(num_threads=0)


def test_sign_flip_is_idempotent(four_view_scene):
    scene = four_view_scene
    positions = {view_id: c.copy() for view_id, c in scene.positions.items()}

    assert not flip_sign_of_positions_if_necessary(scene.view_pairs, scene.orientations, positions)
    for view_id, c in scene.positions.items():
        np.testing.assert_array_equal(positions[view_id], c)

    negated = {view_id: -c for view_id, c in scene.positions.items()}
    assert flip_sign_of_positions_if_necessary(scene.view_pairs, scene.orientations, negated)
    assert not flip_sign_of_positions_if_necessary(scene.view_pairs, scene.orientations, negated)
    for view_id, c in scene.positions.items():
        np.testing.assert_allclose(negated[view_id], c)


def test_tied_vote_keeps_sign():
    orientations = {0: np.zeros(3), 1: np.zeros(3), 2: np.zeros(3)}
    positions = {0: np.zeros(3), 1: np.array([1.0, 0.0, 0.0]), 2: np.array([0.0, 1.0, 0.0])}
    view_pairs = {
        (0, 1): RelativePose(rotation=np.zeros(3), translation=np.array([1.0, 0.0, 0.0])),
        (0, 2): RelativePose(rotation=np.zeros(3), translation=np.array([0.0, -1.0, 0.0])),
    }

    assert not flip_sign_of_positions_if_necessary(view_pairs, orientations, positions)
    np.testing.assert_array_equal(positions[1], [1.0, 0.0, 0.0])


def test_coincident_positions_do_not_vote():
    assert vectors_are_same_direction(np.ones(3), np.ones(3), np.zeros(3), np.array([1.0, 0, 0])) is None
    assert vectors_are_same_direction(
        np.zeros(3), np.array([0.0, 0.0, 2.0]), np.zeros(3), np.array([0.0, 0.0, 1.0])
    )


def test_eigen_solver_rejects_degenerate_matrices():
    assert solve_smallest_eigenvector(sp.csr_matrix((1, 1))) is None
    assert solve_smallest_eigenvector(sp.csr_matrix((6, 6))) is None


def test_eigen_solver_finds_null_vector():
    v = np.array([1.0, 2.0, -1.0, 0.5])
    v /= np.linalg.norm(v)
    matrix = sp.csr_matrix(np.eye(4) - np.outer(v, v))

    eigenvalue, vector = solve_smallest_eigenvector(matrix)

    assert abs(eigenvalue) < 1e-10
    assert abs(abs(vector @ v) - 1.0) < 1e-10
