"""
Linear global translation (LiGT) position averaging.

Given global rotations and the tracks of a reconstruction, every track seen
by three or more views yields triplet constraints that are linear in the
camera centers. Stacking them gives a matrix A whose null space holds the
centers; we build M = A^T A directly and take the eigenvector of its
smallest eigenvalue with a shift-invert eigensolver. One camera is fixed at
the origin, the remaining global scale is arbitrary and the global sign is
fixed afterwards by voting with the relative translation directions.
"""

from __future__ import annotations

import logging
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple

import numpy as np
import scipy.sparse as sp
from scipy.sparse.linalg import ArpackNoConvergence, eigsh

from motion_avg.config import LiGTOptions
from motion_avg.geometry.rotations import angle_axis_to_rotation_matrix
from motion_avg.geometry.triplets import compute_track_constraints
from motion_avg.position.linear_system import (
    LinearSystem,
    SystemIndex,
    TrackConstraints,
    assemble_linear_system,
)
from motion_avg.scene.data_structures import Reconstruction, RelativePose

logger = logging.getLogger(__name__)

ViewPairs = Dict[Tuple[int, int], RelativePose]


class RunState(Enum):
    UNINITIALIZED = "uninitialized"
    INPUTS_BOUND = "inputs_bound"
    SYSTEM_ASSEMBLED = "system_assembled"
    SOLVED = "solved"
    SIGN_CORRECTED = "sign_corrected"
    DONE = "done"
    FAILED = "failed"


@dataclass
class LiGTRunContext:
    """Bookkeeping for a single call to estimate_positions."""

    state: RunState = RunState.UNINITIALIZED
    # track_id -> [(triplet, blocks), ...]
    track_constraints: Dict[int, TrackConstraints] = field(default_factory=dict)
    num_triplets_for_view: Counter = field(default_factory=Counter)
    system: Optional[LinearSystem] = None
    eigenvalue: Optional[float] = None
    sign_flipped: bool = False

    @property
    def total_triplets(self) -> int:
        return sum(len(constraints) for constraints in self.track_constraints.values())


def solve_smallest_eigenvector(
    matrix: sp.spmatrix,
    relative_shift: float = 1e-12,
    max_iterations: int = 1000,
) -> Optional[Tuple[float, np.ndarray]]:
    """
    Eigenpair of the smallest-magnitude eigenvalue of a symmetric PSD matrix.

    Uses ARPACK in shift-invert mode around a shift just below zero, so the
    factorized operator stays regular even when the matrix has an exact null
    vector.

    Args:
        matrix: Symmetric positive semidefinite sparse matrix (n, n).
        relative_shift: Shift magnitude relative to the largest diagonal entry.
        max_iterations: ARPACK iteration limit.

    Returns:
        (eigenvalue, eigenvector) or None if the solve failed.
    """
    n = matrix.shape[0]
    if n < 2:
        logger.warning("[ligt] Linear system of size %d is too small to solve", n)
        return None

    scale = float(np.max(np.abs(matrix.diagonal())))
    if not np.isfinite(scale) or scale == 0.0:
        logger.warning("[ligt] Linear system is degenerate (diagonal scale %s)", scale)
        return None

    try:
        eigenvalues, eigenvectors = eigsh(
            sp.csc_matrix(matrix),
            k=1,
            sigma=-relative_shift * scale,
            which="LM",
            maxiter=max_iterations,
        )
    except ArpackNoConvergence as err:
        logger.warning("[ligt] Shift-invert eigensolver did not converge: %s", err)
        return None
    except RuntimeError as err:
        logger.warning("[ligt] Shift-invert factorization failed: %s", err)
        return None

    solution = eigenvectors[:, 0]
    if not np.all(np.isfinite(solution)):
        logger.warning("[ligt] Eigensolver returned a non-finite eigenvector")
        return None
    return float(eigenvalues[0]), solution


def positions_from_eigenvector(
    view_index: Dict[int, SystemIndex],
    solution: np.ndarray,
) -> Dict[int, np.ndarray]:
    """Pinned view at the origin, every other view its 3-vector segment."""
    positions = {}
    for view_id, index in view_index.items():
        if index.is_pinned:
            positions[view_id] = np.zeros(3)
        else:
            start = index.offset()
            positions[view_id] = solution[start:start + 3].copy()
    return positions


def vectors_are_same_direction(
    position1: np.ndarray,
    position2: np.ndarray,
    rotation1: np.ndarray,
    relative_translation12: np.ndarray,
) -> Optional[bool]:
    """
    Whether R1 @ (c2 - c1) points the same way as the measured t_12.

    Returns None for coincident positions, which carry no direction.
    """
    baseline = position2 - position1
    norm = np.linalg.norm(baseline)
    if norm == 0.0:
        return None
    rotated = angle_axis_to_rotation_matrix(rotation1) @ (baseline / norm)
    return bool(np.dot(rotated, relative_translation12) > 0)


def flip_sign_of_positions_if_necessary(
    view_pairs: ViewPairs,
    orientations: Dict[int, np.ndarray],
    positions: Dict[int, np.ndarray],
) -> bool:
    """
    Negate all positions if most relative translations disagree with them.

    Each edge with both positions estimated votes +1 (agrees) or -1. A net
    vote of zero leaves the positions untouched.

    Returns:
        True if the positions were flipped.
    """
    correct_sign_votes = 0
    num_votes = 0
    for (view_id1, view_id2), relative_pose in view_pairs.items():
        if view_id1 not in positions or view_id2 not in positions:
            continue
        same_direction = vectors_are_same_direction(
            positions[view_id1],
            positions[view_id2],
            orientations[view_id1],
            relative_pose.translation,
        )
        if same_direction is None:
            continue
        num_votes += 1
        correct_sign_votes += 1 if same_direction else -1

    if correct_sign_votes >= 0:
        return False

    num_correct = (num_votes + correct_sign_votes) // 2
    logger.info(
        "[ligt] Sign of the positions was incorrect: %d of %d relative translations "
        "had the correct sign. Flipping the sign of the camera positions.",
        num_correct,
        num_votes,
    )
    for view_id in positions:
        positions[view_id] = -positions[view_id]
    return True


class LiGTPositionEstimator:
    """Estimate camera positions from tracks and known global rotations."""

    def __init__(self, options: LiGTOptions, reconstruction: Reconstruction):
        if options.num_threads <= 0:
            raise ValueError(f"num_threads must be > 0, got {options.num_threads}")
        self.options = options
        self.reconstruction = reconstruction
        self.last_run: Optional[LiGTRunContext] = None

    def estimate_positions(
        self,
        view_pairs: ViewPairs,
        orientations: Dict[int, np.ndarray],
        positions: Dict[int, np.ndarray],
    ) -> bool:
        """
        Estimate the camera centers of all views constrained by tracks.

        Args:
            view_pairs: (i, j) with i < j -> RelativePose; only the translation
                directions are used, to resolve the global sign.
            orientations: view_id -> angle-axis world-to-camera rotation.
            positions: Output dict, cleared first and filled on success.

        Returns:
            True on success. On failure `positions` is left empty.
        """
        positions.clear()
        run = LiGTRunContext()
        self.last_run = run

        if not orientations:
            logger.error("[ligt] No orientations given; cannot estimate positions")
            run.state = RunState.FAILED
            return False
        rotations = {
            view_id: angle_axis_to_rotation_matrix(orientation)
            for view_id, orientation in orientations.items()
        }
        run.state = RunState.INPUTS_BOUND

        logger.debug("[ligt] Extracting triplets from tracks and computing constraints")
        self._find_triplets_for_tracks(run, rotations)
        if run.total_triplets == 0:
            logger.error("[ligt] No track is seen by three oriented views; nothing to solve")
            run.state = RunState.FAILED
            return False

        logger.debug("[ligt] Building the constraint matrix")
        run.system = assemble_linear_system(
            [run.track_constraints[track_id] for track_id in sorted(run.track_constraints)],
            num_threads=self.options.num_threads,
        )
        run.state = RunState.SYSTEM_ASSEMBLED
        logger.info(
            "[ligt] Linear system: %d views, %d triplets, matrix %dx%d with %d nonzeros",
            run.system.num_views,
            run.total_triplets,
            run.system.dimension,
            run.system.dimension,
            run.system.upper.nnz,
        )

        logger.debug("[ligt] Solving for positions from the sparse eigenvalue problem")
        result = solve_smallest_eigenvector(
            run.system.full(),
            relative_shift=self.options.eigen_shift,
            max_iterations=self.options.max_eigen_iterations,
        )
        if result is None:
            run.state = RunState.FAILED
            return False
        run.eigenvalue, solution = result
        estimated = positions_from_eigenvector(run.system.view_index, solution)
        run.state = RunState.SOLVED

        run.sign_flipped = flip_sign_of_positions_if_necessary(
            view_pairs, orientations, estimated
        )
        run.state = RunState.SIGN_CORRECTED

        positions.update(estimated)
        run.state = RunState.DONE
        logger.info(
            "[ligt] Estimated %d positions (smallest eigenvalue %.3e)",
            len(positions),
            run.eigenvalue,
        )
        return True

    def estimate_positions_dict(
        self,
        view_pairs: ViewPairs,
        orientations: Dict[int, np.ndarray],
    ) -> Dict[int, np.ndarray]:
        """Like estimate_positions but returns the dict (empty on failure)."""
        positions: Dict[int, np.ndarray] = {}
        self.estimate_positions(view_pairs, orientations, positions)
        return positions

    def _find_triplets_for_tracks(
        self,
        run: LiGTRunContext,
        rotations: Dict[int, np.ndarray],
    ) -> None:
        track_ids = self.reconstruction.track_ids()

        def work(track_id: int) -> TrackConstraints:
            return compute_track_constraints(self.reconstruction, track_id, rotations)

        if self.options.num_threads == 1:
            results: List[TrackConstraints] = [work(track_id) for track_id in track_ids]
        else:
            with ThreadPoolExecutor(max_workers=self.options.num_threads) as ex:
                results = list(ex.map(work, track_ids))

        for track_id, constraints in zip(track_ids, results):
            if not constraints:
                continue
            run.track_constraints[track_id] = constraints
            for triplet, _ in constraints:
                run.num_triplets_for_view.update(triplet)

        logger.info(
            "[ligt] Total number of triplets: %d for %d tracks and %d views",
            run.total_triplets,
            len(track_ids),
            len(self.reconstruction.views),
        )


__all__ = [
    "RunState",
    "LiGTRunContext",
    "solve_smallest_eigenvector",
    "positions_from_eigenvector",
    "vectors_are_same_direction",
    "flip_sign_of_positions_if_necessary",
    "LiGTPositionEstimator",
]
