"""
Rotation averaging through the Lagrangian dual (SDP relaxation).

Every relative rotation R_ij = R_j R_i^T becomes an off-diagonal block of a
3n x 3n matrix R. The global rotations are recovered from the optimal
solution of the relaxation min tr(-R X), X >= 0, X_ii = I, which is solved by
one of the strategies in sdp_solvers.
"""

from __future__ import annotations

import logging
import math
from typing import Dict, Optional, Tuple

import numpy as np
import scipy.sparse as sp
from scipy.sparse.csgraph import connected_components
from scipy.sparse.linalg import ArpackError

from motion_avg.config import SDPSolverOptions
from motion_avg.geometry.rotations import (
    angle_axis_to_rotation_matrix,
    rotation_matrix_to_angle_axis,
)
from motion_avg.rotation.sdp_solvers import (
    AdjacentEdges,
    SDPSolver,
    SDPSummary,
    create_sdp_solver,
    smallest_eigenpairs,
)
from motion_avg.scene.data_structures import RelativePose

logger = logging.getLogger(__name__)

ViewPairs = Dict[Tuple[int, int], RelativePose]

ROTATION_DIM = 3


def view_id_to_ascending_index(view_ids) -> Dict[int, int]:
    return {view_id: index for index, view_id in enumerate(sorted(view_ids))}


def build_rotation_graph(
    view_pairs: ViewPairs,
    view_id_to_index: Dict[int, int],
    dim: int = ROTATION_DIM,
) -> Tuple[sp.csr_matrix, AdjacentEdges]:
    """
    Block-sparse matrix of relative rotations and the adjacency lists.

    Args:
        view_pairs: (i, j) -> RelativePose with rotation R_ij = R_j R_i^T.
        view_id_to_index: view_id -> row block index.
        dim: Block size.

    Returns:
        (R, adjacent_edges) where block (i, j) of R is R_ij^T, block (j, i)
        is R_ij and the diagonal blocks are empty.
    """
    n = len(view_id_to_index)
    rows, cols, data = [], [], []
    adjacent_edges: AdjacentEdges = {}
    local_rows = np.repeat(np.arange(dim), dim)
    local_cols = np.tile(np.arange(dim), dim)

    for (view_id1, view_id2), relative_pose in view_pairs.items():
        i = view_id_to_index[view_id1]
        j = view_id_to_index[view_id2]
        R_ij = angle_axis_to_rotation_matrix(relative_pose.rotation)

        rows.append(dim * i + local_rows)
        cols.append(dim * j + local_cols)
        data.append(R_ij.T.ravel())
        rows.append(dim * j + local_rows)
        cols.append(dim * i + local_cols)
        data.append(R_ij.ravel())

        adjacent_edges.setdefault(i, []).append(j)
        adjacent_edges.setdefault(j, []).append(i)

    if not data:
        return sp.csr_matrix((dim * n, dim * n)), adjacent_edges

    R = sp.coo_matrix(
        (np.concatenate(data), (np.concatenate(rows), np.concatenate(cols))),
        shape=(dim * n, dim * n),
    ).tocsr()
    return R, adjacent_edges


def count_connected_components(adjacent_edges: AdjacentEdges, num_views: int) -> int:
    """Connected components of the view graph; isolated views count as one each."""
    rows = [i for i, neighbours in adjacent_edges.items() for _ in neighbours]
    cols = [j for neighbours in adjacent_edges.values() for j in neighbours]
    graph = sp.coo_matrix((np.ones(len(rows)), (rows, cols)), shape=(num_views, num_views))
    num_components, _ = connected_components(graph, directed=False)
    return int(num_components)


def compute_error_bound(
    view_pairs: ViewPairs,
    view_id_to_index: Dict[int, int],
) -> float:
    """
    Theoretical bound on the rotation error from the graph's spectral gap.

    alpha_max = 2 * asin(sqrt(1/4 + lambda_2 / (2 * d_max)) - 1/2), where
    lambda_2 is the algebraic connectivity of the view graph Laplacian and
    d_max its maximum degree. lambda_2 falls back to 0 if the eigen solve
    fails.
    """
    n = len(view_id_to_index)
    if n < 2 or not view_pairs:
        return 0.0

    degrees = np.zeros(n)
    rows, cols = [], []
    for view_id1, view_id2 in view_pairs:
        i = view_id_to_index[view_id1]
        j = view_id_to_index[view_id2]
        degrees[i] += 1
        degrees[j] += 1
        rows.extend([i, j])
        cols.extend([j, i])

    adjacency = sp.coo_matrix((np.ones(len(rows)), (rows, cols)), shape=(n, n)).tocsr()
    laplacian = sp.diags(degrees) - adjacency
    max_degree = float(degrees.max())

    try:
        eigenvalues, _ = smallest_eigenpairs(laplacian, 2)
        lambda2 = max(float(eigenvalues[1]), 0.0)
    except (ArpackError, np.linalg.LinAlgError) as err:
        logger.info("[rotation] Computing the algebraic connectivity failed: %s", err)
        lambda2 = 0.0

    return 2.0 * math.asin(math.sqrt(0.25 + lambda2 / (2.0 * max_degree)) - 0.5)


def retrieve_rotations(
    Y: np.ndarray,
    view_id_to_index: Dict[int, int],
    dim: int = ROTATION_DIM,
) -> Dict[int, np.ndarray]:
    """Angle-axis rotation per view from the (dim, dim*n) solution blocks."""
    rotations = {}
    for view_id, i in view_id_to_index.items():
        R = Y[:, dim * i:dim * (i + 1)].T
        if np.linalg.det(R) < 0:
            R = -R
        rotations[view_id] = rotation_matrix_to_angle_axis(R)
    return rotations


class LagrangeDualRotationEstimator:
    """Global rotations from relative rotations via a convex relaxation."""

    def __init__(self, options: Optional[SDPSolverOptions] = None):
        self.options = options if options is not None else SDPSolverOptions()
        self._custom_view_id_to_index: Optional[Dict[int, int]] = None
        self.view_id_to_index: Dict[int, int] = {}
        self.summary = SDPSummary()
        self.error_bound = 0.0
        self.solution: Optional[np.ndarray] = None

    def set_view_id_to_index(self, view_id_to_index: Dict[int, int]) -> None:
        """Use a caller-provided block ordering instead of ascending view ids."""
        self._custom_view_id_to_index = dict(view_id_to_index)

    def set_options(self, options: SDPSolverOptions) -> None:
        self.options = options

    def estimate_rotations(
        self,
        view_pairs: ViewPairs,
        global_rotations: Dict[int, np.ndarray],
    ) -> bool:
        """
        Estimate a consistent rotation for every view in `global_rotations`.

        Args:
            view_pairs: (i, j) with i < j -> RelativePose.
            global_rotations: view_id -> angle-axis rotation. The keys select
                the views to estimate; the values are overwritten on success
                and left untouched on failure.

        Returns:
            True on success.
        """
        self.summary = SDPSummary()
        self.solution = None

        if not view_pairs:
            logger.error("[rotation] No view pairs given; cannot average rotations")
            return False
        if not global_rotations:
            logger.error("[rotation] No views given; cannot average rotations")
            return False

        if self._custom_view_id_to_index is not None:
            view_id_to_index = self._custom_view_id_to_index
        else:
            view_id_to_index = view_id_to_ascending_index(global_rotations)
        if set(view_id_to_index) != set(global_rotations) or sorted(
            view_id_to_index.values()
        ) != list(range(len(global_rotations))):
            logger.error("[rotation] View index mapping does not match the given views")
            return False

        missing = [
            pair for pair in view_pairs
            if pair[0] not in view_id_to_index or pair[1] not in view_id_to_index
        ]
        if missing:
            logger.error(
                "[rotation] %d view pairs reference views without a rotation, e.g. %s",
                len(missing),
                missing[0],
            )
            return False
        self.view_id_to_index = view_id_to_index

        num_views = len(view_id_to_index)
        R, adjacent_edges = build_rotation_graph(view_pairs, view_id_to_index)

        num_components = count_connected_components(adjacent_edges, num_views)
        if num_components > 1:
            logger.error(
                "[rotation] View graph has %d connected components; rotations of "
                "different components cannot be related",
                num_components,
            )
            return False

        solver: Optional[SDPSolver] = create_sdp_solver(num_views, ROTATION_DIM, self.options)
        if solver is None:
            return False

        Y, self.summary = solver.solve(-R, adjacent_edges)
        if not np.all(np.isfinite(Y)):
            logger.error("[rotation] SDP solver returned a non-finite solution")
            return False
        if not self.summary.converged:
            logger.error(
                "[rotation] SDP solver did not converge in %d iterations",
                self.summary.total_iterations_num,
            )
            return False
        self.solution = Y

        global_rotations.update(retrieve_rotations(Y, view_id_to_index))

        logger.info(
            "[rotation] LagrangeDual converged in %d iterations.",
            self.summary.total_iterations_num,
        )
        logger.info(
            "[rotation] Total time [LagrangeDual]: %.3f ms.", self.summary.total_time_ms()
        )
        return True

    def compute_error_bound(self, view_pairs: ViewPairs) -> float:
        """Error bound for the given pairs; uses the last view indexing if any."""
        view_id_to_index = self.view_id_to_index
        if not view_id_to_index:
            view_ids = {view_id for pair in view_pairs for view_id in pair}
            view_id_to_index = view_id_to_ascending_index(view_ids)
        self.error_bound = compute_error_bound(view_pairs, view_id_to_index)
        return self.error_bound

    def estimate_rotations_dict(
        self,
        view_pairs: ViewPairs,
        global_rotations: Dict[int, np.ndarray],
    ) -> Dict[int, np.ndarray]:
        """Like estimate_rotations but works on and returns a copy."""
        rotations = {view_id: np.array(r, dtype=np.float64) for view_id, r in global_rotations.items()}
        self.estimate_rotations(view_pairs, rotations)
        return rotations


__all__ = [
    "ROTATION_DIM",
    "view_id_to_ascending_index",
    "build_rotation_graph",
    "count_connected_components",
    "compute_error_bound",
    "retrieve_rotations",
    "LagrangeDualRotationEstimator",
]
