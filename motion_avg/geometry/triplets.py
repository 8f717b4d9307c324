"""
View triplets and the LiGT linear constraints they induce.

Each track seen by at least three views is turned into triplets
(base_left, middle, base_right). For a triplet with camera centers
c_l, c_m, c_r the builder returns three 3x3 blocks (B, C, D) such that

    B @ c_m + C @ c_l + D @ c_r == 0

holds for noise-free observations. D == -(B + C), so the constraint is
invariant to a global translation of all centers.
"""

from __future__ import annotations

from typing import Dict, List, NamedTuple, Tuple

import numpy as np

from motion_avg.geometry.rotations import relative_rotation, skew
from motion_avg.scene.data_structures import Reconstruction

MIN_TRACK_VIEWS = 3


class Triplet(NamedTuple):
    base_left: int
    middle: int
    base_right: int


class ConstraintBlocks(NamedTuple):
    # Coefficient of the middle view.
    B: np.ndarray
    # Coefficient of the left base view.
    C: np.ndarray
    # Coefficient of the right base view.
    D: np.ndarray


def _oriented_view_ids(
    reconstruction: Reconstruction,
    track_id: int,
    rotations: Dict[int, np.ndarray],
) -> List[int]:
    # Views without a rotation estimate cannot contribute constraints.
    return sorted(
        view_id for view_id in reconstruction.track(track_id).view_ids if view_id in rotations
    )


def parallax_score(
    feature_i: np.ndarray,
    feature_j: np.ndarray,
    R_ij: np.ndarray,
) -> float:
    """
    Squared sine-like parallax between two rays of the same point.

    Args:
        feature_i: Normalized ray in view i (3,).
        feature_j: Normalized ray in view j (3,).
        R_ij: Relative rotation from view i to view j (3x3).

    Returns:
        ||feature_j x (R_ij @ feature_i)||^2, zero for parallel rays.
    """
    return float(np.sum((skew(feature_j) @ R_ij @ feature_i) ** 2))


def select_base_views(
    reconstruction: Reconstruction,
    track_id: int,
    rotations: Dict[int, np.ndarray],
) -> Tuple[int, int]:
    """
    Pick the pair of views of a track with the largest parallax.

    Args:
        reconstruction: View graph holding the track and its observations.
        track_id: Track to inspect (must have >= 2 views).
        rotations: view_id -> world-to-camera rotation matrix (3x3).

    Returns:
        (base_left, base_right), ordered by ascending view id. The first
        pair in iteration order wins ties.
    """
    view_ids = _oriented_view_ids(reconstruction, track_id, rotations)
    features = {
        view_id: reconstruction.view(view_id).normalized_feature(track_id)
        for view_id in view_ids
    }

    base_views = (view_ids[0], view_ids[1])
    best_score = 0.0
    for i in range(len(view_ids)):
        for j in range(i + 1, len(view_ids)):
            id1, id2 = view_ids[i], view_ids[j]
            R12 = relative_rotation(rotations[id1], rotations[id2])
            score = parallax_score(features[id1], features[id2], R12)
            if score > best_score:
                base_views = (id1, id2)
                best_score = score
    return base_views


def extract_triplets(
    reconstruction: Reconstruction,
    track_id: int,
    rotations: Dict[int, np.ndarray],
) -> List[Triplet]:
    """One triplet per non-base view; empty for tracks with < 3 views."""
    view_ids = _oriented_view_ids(reconstruction, track_id, rotations)
    if len(view_ids) < MIN_TRACK_VIEWS:
        return []

    base_left, base_right = select_base_views(reconstruction, track_id, rotations)
    return [
        Triplet(base_left, view_id, base_right)
        for view_id in view_ids
        if view_id not in (base_left, base_right)
    ]


def compute_constraint_blocks(
    reconstruction: Reconstruction,
    triplet: Triplet,
    track_id: int,
    rotations: Dict[int, np.ndarray],
) -> ConstraintBlocks:
    """
    Build the LiGT coefficient blocks for one triplet of a track.

    Args:
        reconstruction: View graph holding the observations.
        triplet: (base_left, middle, base_right) view ids.
        track_id: Track observed by all three views.
        rotations: view_id -> world-to-camera rotation matrix (3x3).

    Returns:
        ConstraintBlocks (B, C, D) with D == -(B + C).
    """
    f1 = reconstruction.view(triplet.base_left).normalized_feature(track_id)
    f2 = reconstruction.view(triplet.middle).normalized_feature(track_id)
    f3 = reconstruction.view(triplet.base_right).normalized_feature(track_id)

    R1 = rotations[triplet.base_left]
    R2 = rotations[triplet.middle]
    R3 = rotations[triplet.base_right]

    R31 = relative_rotation(R3, R1)
    R32 = relative_rotation(R3, R2)

    skew_f1 = skew(f1)
    skew_f2 = skew(f2)

    # Row vector such that the depth of the point in view 3 is proportional
    # to a32 @ R2 @ (c_m - c_r).
    a32 = (skew(R32 @ f3) @ f2) @ skew_f2

    B = np.outer(skew_f1 @ R31 @ f3, a32) @ R2
    theta = parallax_score(f3, f2, R32)
    C = theta * skew_f1 @ R1
    D = -(B + C)
    return ConstraintBlocks(B, C, D)


def compute_track_constraints(
    reconstruction: Reconstruction,
    track_id: int,
    rotations: Dict[int, np.ndarray],
) -> List[Tuple[Triplet, ConstraintBlocks]]:
    """All (triplet, blocks) pairs contributed by a single track."""
    return [
        (triplet, compute_constraint_blocks(reconstruction, triplet, track_id, rotations))
        for triplet in extract_triplets(reconstruction, track_id, rotations)
    ]


__all__ = [
    "MIN_TRACK_VIEWS",
    "Triplet",
    "ConstraintBlocks",
    "parallax_score",
    "select_base_views",
    "extract_triplets",
    "compute_constraint_blocks",
    "compute_track_constraints",
]
