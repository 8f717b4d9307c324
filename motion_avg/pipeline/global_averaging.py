"""
Global motion averaging: rotations first, then positions.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

import numpy as np

from motion_avg.config import LiGTOptions, SDPSolverOptions
from motion_avg.position.ligt_estimator import LiGTPositionEstimator
from motion_avg.rotation.lagrange_dual import LagrangeDualRotationEstimator
from motion_avg.rotation.sdp_solvers import SDPSummary
from motion_avg.scene.data_structures import Reconstruction, RelativePose

logger = logging.getLogger(__name__)


@dataclass
class GlobalAveragingResult:
    success: bool
    orientations: Dict[int, np.ndarray] = field(default_factory=dict)
    positions: Dict[int, np.ndarray] = field(default_factory=dict)
    rotation_summary: Optional[SDPSummary] = None
    error_bound: Optional[float] = None


def run_global_averaging(
    reconstruction: Reconstruction,
    view_pairs: Dict[Tuple[int, int], RelativePose],
    rotation_options: Optional[SDPSolverOptions] = None,
    position_options: Optional[LiGTOptions] = None,
    compute_error_bound: bool = False,
) -> GlobalAveragingResult:
    """
    Estimate global rotations and positions for every view of a reconstruction.

    The views' current orientations seed the rotation averaging. On success
    the estimated orientations and positions are written back to the views.

    Args:
        reconstruction: View graph with cameras, tracks and observations.
        view_pairs: (i, j) with i < j -> RelativePose.
        rotation_options: Options for the SDP rotation solver.
        position_options: Options for the LiGT position solver.
        compute_error_bound: Also compute the spectral rotation error bound.

    Returns:
        GlobalAveragingResult; `success` is False if either stage failed, in
        which case the reconstruction is left unchanged.
    """
    rotation_estimator = LagrangeDualRotationEstimator(rotation_options)
    orientations = reconstruction.orientations()

    logger.info(
        "[averaging] Averaging %d views with %d view pairs and %d tracks",
        len(orientations),
        len(view_pairs),
        len(reconstruction.tracks),
    )

    if not rotation_estimator.estimate_rotations(view_pairs, orientations):
        logger.error("[averaging] Rotation averaging failed")
        return GlobalAveragingResult(success=False, rotation_summary=rotation_estimator.summary)

    result = GlobalAveragingResult(
        success=False,
        orientations=orientations,
        rotation_summary=rotation_estimator.summary,
    )
    if compute_error_bound:
        result.error_bound = rotation_estimator.compute_error_bound(view_pairs)
        logger.info("[averaging] Rotation error bound: %.4f rad", result.error_bound)

    position_estimator = LiGTPositionEstimator(
        position_options if position_options is not None else LiGTOptions(),
        reconstruction,
    )
    positions: Dict[int, np.ndarray] = {}
    if not position_estimator.estimate_positions(view_pairs, orientations, positions):
        logger.error("[averaging] Position averaging failed")
        return result

    reconstruction.set_orientations(orientations)
    reconstruction.set_positions(positions)
    result.positions = positions
    result.success = True
    return result


__all__ = ["GlobalAveragingResult", "run_global_averaging"]
