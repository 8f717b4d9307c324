"""
Semidefinite relaxation solvers for rotation synchronization.

All strategies solve the same problem

    minimize    tr(C X)
    subject to  X >= 0,  X_ii = I  (d x d diagonal blocks)

where C is the negated block matrix of relative rotations. They differ only
in how they search:

- RBRSDPSolver updates one block row/column of the full variable X at a time.
- RankRestrictedSDPSolver works on a low-rank factor X = Y^T Y, Y of shape
  (p, d*n), and updates one d-column block of Y at a time.
- RiemannianStaircase runs the rank-restricted updates at increasing rank
  until a dual certificate proves global optimality.

Each solver returns a (d, d*n) matrix whose blocks are orthogonal, plus an
SDPSummary.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

import numpy as np
import scipy.linalg
import scipy.sparse as sp
from scipy.sparse.linalg import eigsh

from motion_avg.config import SDPSolverOptions, SDPSolverType
from motion_avg.geometry.rotations import project_to_orthogonal

logger = logging.getLogger(__name__)

AdjacentEdges = Dict[int, List[int]]
BlockMap = Dict[Tuple[int, int], np.ndarray]

DENSE_EIGEN_THRESHOLD = 2000


@dataclass
class SDPSummary:
    total_iterations_num: int = 0
    # Wall-clock seconds spent in solve().
    total_time: float = 0.0
    final_objective: float = float("nan")
    rank: int = 0
    converged: bool = False
    certificate_min_eigenvalue: Optional[float] = None
    is_tight: Optional[bool] = None

    def total_time_ms(self) -> float:
        return 1000.0 * self.total_time


class SDPSolver(ABC):
    """Strategy interface: one call, no state shared between strategies."""

    @abstractmethod
    def solve(
        self,
        covariance: sp.spmatrix,
        adjacent_edges: AdjacentEdges,
    ) -> Tuple[np.ndarray, SDPSummary]:
        """
        Args:
            covariance: Symmetric (d*n, d*n) cost matrix C.
            adjacent_edges: view index -> indices of its neighbours.

        Returns:
            (Y, summary) with Y of shape (d, d*n).
        """


def smallest_eigenpairs(
    matrix: sp.spmatrix,
    k: int,
    dense_threshold: int = DENSE_EIGEN_THRESHOLD,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    The k algebraically smallest eigenpairs of a symmetric matrix.

    Small problems use a dense decomposition; larger ones ARPACK.
    Errors from ARPACK propagate to the caller.
    """
    n = matrix.shape[0]
    k = min(k, n)
    if n <= dense_threshold:
        dense = matrix.toarray() if sp.issparse(matrix) else np.asarray(matrix)
        return scipy.linalg.eigh(dense, subset_by_index=[0, k - 1])
    eigenvalues, eigenvectors = eigsh(matrix, k=k, which="SA")
    order = np.argsort(eigenvalues)
    return eigenvalues[order], eigenvectors[:, order]


def covariance_blocks(covariance: sp.spmatrix, dim: int) -> BlockMap:
    """Non-empty (dim x dim) blocks of C keyed by (block_row, block_col)."""
    bsr = sp.bsr_matrix(covariance, blocksize=(dim, dim))
    bsr.sort_indices()
    blocks: BlockMap = {}
    for i in range(bsr.shape[0] // dim):
        for k in range(bsr.indptr[i], bsr.indptr[i + 1]):
            blocks[(i, int(bsr.indices[k]))] = np.array(bsr.data[k])
    return blocks


def factor_objective(covariance: sp.spmatrix, Y: np.ndarray) -> float:
    """tr(C Y^T Y) for a factor Y of shape (p, d*n)."""
    return float(np.sum((covariance @ Y.T).T * Y))


def random_factor(num_views: int, dim: int, rank: int, rng: np.random.Generator) -> np.ndarray:
    blocks = [project_to_orthogonal(rng.standard_normal((rank, dim))) for _ in range(num_views)]
    return np.hstack(blocks)


def round_solution(Y: np.ndarray, dim: int) -> np.ndarray:
    """
    Reduce a factor of any rank to (dim, dim*n) with orthogonal blocks.

    Keeps the dominant rank-dim part of Y^T Y, then projects every block onto
    the orthogonal group.
    """
    if Y.shape[0] > dim:
        _, S, Vt = np.linalg.svd(Y, full_matrices=False)
        Y = S[:dim, None] * Vt[:dim]
    num_views = Y.shape[1] // dim
    return np.hstack(
        [project_to_orthogonal(Y[:, dim * i:dim * (i + 1)]) for i in range(num_views)]
    )


def block_coordinate_sweep(
    Y: np.ndarray,
    blocks: BlockMap,
    adjacent_edges: AdjacentEdges,
    num_views: int,
    dim: int,
) -> None:
    """
    One pass of exact block updates on the factor, in place.

    With everything but Y_i fixed, tr(C Y^T Y) is linear in Y_i with gradient
    2 * sum_j Y_j C_ji, so the optimal orthonormal Y_i is the polar factor of
    the negated sum.
    """
    for i in range(num_views):
        neighbours = sorted(set(adjacent_edges.get(i, [])))
        if not neighbours:
            continue
        G = np.zeros((Y.shape[0], dim))
        for j in neighbours:
            G += Y[:, dim * j:dim * (j + 1)] @ blocks[(j, i)]
        if not np.any(G):
            continue
        Y[:, dim * i:dim * (i + 1)] = project_to_orthogonal(-G)


def run_block_coordinate_minimization(
    Y: np.ndarray,
    covariance: sp.spmatrix,
    blocks: BlockMap,
    adjacent_edges: AdjacentEdges,
    dim: int,
    options: SDPSolverOptions,
) -> Tuple[np.ndarray, int, bool, float]:
    """
    Sweep until the relative objective change drops below the tolerance.

    Returns:
        (Y, iterations, converged, objective)
    """
    num_views = Y.shape[1] // dim
    objective = factor_objective(covariance, Y)
    for iteration in range(1, options.max_iterations + 1):
        block_coordinate_sweep(Y, blocks, adjacent_edges, num_views, dim)
        new_objective = factor_objective(covariance, Y)
        change = abs(objective - new_objective) / max(1.0, abs(objective))
        objective = new_objective
        if change < options.tolerance:
            return Y, iteration, True, objective
    return Y, options.max_iterations, False, objective


def compute_certificate(
    covariance: sp.spmatrix,
    blocks: BlockMap,
    adjacent_edges: AdjacentEdges,
    Y: np.ndarray,
    dim: int,
    tolerance: float,
) -> Tuple[float, np.ndarray, int]:
    """
    Dual certificate S = C - Lambda(Y) of a first-order critical factor Y.

    Lambda is block diagonal with Lambda_i = sym(sum_j C_ij Y_j^T Y_i). Y is
    globally optimal iff S is positive semidefinite. The number of
    eigenvalues of S within `tolerance` of zero is its null-space dimension;
    the relaxation is tight when it equals `dim`.

    Returns:
        (min_eigenvalue, min_eigenvector, null_space_dimension)
    """
    num_views = Y.shape[1] // dim
    lambda_blocks = []
    for i in range(num_views):
        Y_i = Y[:, dim * i:dim * (i + 1)]
        L = np.zeros((dim, dim))
        for j in sorted(set(adjacent_edges.get(i, []))):
            L += blocks[(i, j)] @ (Y[:, dim * j:dim * (j + 1)].T @ Y_i)
        lambda_blocks.append(0.5 * (L + L.T))

    S = sp.csr_matrix(covariance) - sp.block_diag(lambda_blocks, format="csr")
    eigenvalues, eigenvectors = smallest_eigenpairs(S, dim + 1)
    null_space_dimension = int(np.sum(np.abs(eigenvalues) < tolerance))
    return float(eigenvalues[0]), eigenvectors[:, 0], null_space_dimension


def certify_solution(
    summary: SDPSummary,
    covariance: sp.spmatrix,
    blocks: BlockMap,
    adjacent_edges: AdjacentEdges,
    Y: np.ndarray,
    dim: int,
    tolerance: float,
) -> None:
    """Record the certificate of a final factor Y in the summary."""
    min_eigenvalue, _, null_dim = compute_certificate(
        covariance, blocks, adjacent_edges, Y, dim, tolerance
    )
    summary.certificate_min_eigenvalue = min_eigenvalue
    summary.is_tight = min_eigenvalue >= -tolerance and null_dim == dim


class RBRSDPSolver(SDPSolver):
    """Row-by-row block coordinate minimization on the full variable X."""

    def __init__(self, num_views: int, dim: int, options: SDPSolverOptions):
        self.num_views = num_views
        self.dim = dim
        self.options = options

    def solve(
        self,
        covariance: sp.spmatrix,
        adjacent_edges: AdjacentEdges,
    ) -> Tuple[np.ndarray, SDPSummary]:
        start = time.perf_counter()
        summary = SDPSummary(rank=self.dim * self.num_views)
        dim, n = self.dim, self.dim * self.num_views
        C = sp.csr_matrix(covariance)
        blocks = covariance_blocks(C, dim)

        X = np.eye(n)
        objective = float(C.multiply(X).sum())
        for iteration in range(1, self.options.max_iterations + 1):
            for i in range(self.num_views):
                self._update_row(X, blocks, adjacent_edges, i)
            new_objective = float(C.multiply(X).sum())
            change = abs(objective - new_objective) / max(1.0, abs(objective))
            objective = new_objective
            summary.total_iterations_num = iteration
            if change < self.options.tolerance:
                summary.converged = True
                break

        eigenvalues, eigenvectors = scipy.linalg.eigh(X, subset_by_index=[n - dim, n - 1])
        Y = round_solution((eigenvectors * np.sqrt(np.clip(eigenvalues, 0.0, None))).T, dim)
        summary.final_objective = objective
        certify_solution(
            summary, C, blocks, adjacent_edges, Y, dim, self.options.certificate_tolerance
        )
        summary.total_time = time.perf_counter() - start
        return Y, summary

    def _update_row(
        self,
        X: np.ndarray,
        blocks: BlockMap,
        adjacent_edges: AdjacentEdges,
        i: int,
    ) -> None:
        dim = self.dim
        neighbours = sorted(set(adjacent_edges.get(i, [])))
        if not neighbours:
            return
        cols = np.concatenate([np.arange(dim * j, dim * (j + 1)) for j in neighbours])
        C_ni = np.vstack([blocks[(j, i)] for j in neighbours])

        # W = X_{:,N} C_{N,i}; rows of block i are excluded below.
        W = X[:, cols] @ C_ni
        S = C_ni.T @ W[cols]
        eigenvalues, eigenvectors = np.linalg.eigh(0.5 * (S + S.T))
        if eigenvalues[0] <= np.finfo(float).eps * max(1.0, eigenvalues[-1]):
            return
        S_inv_sqrt = (eigenvectors / np.sqrt(eigenvalues)) @ eigenvectors.T

        others = np.ones(X.shape[0], dtype=bool)
        others[dim * i:dim * (i + 1)] = False
        column = -W[others] @ S_inv_sqrt
        X[others, dim * i:dim * (i + 1)] = column
        X[dim * i:dim * (i + 1), others] = column.T


class RankRestrictedSDPSolver(SDPSolver):
    """Block coordinate minimization on a fixed-rank factor of X."""

    def __init__(self, num_views: int, dim: int, options: SDPSolverOptions):
        self.num_views = num_views
        self.dim = dim
        self.options = options

    def solve(
        self,
        covariance: sp.spmatrix,
        adjacent_edges: AdjacentEdges,
    ) -> Tuple[np.ndarray, SDPSummary]:
        start = time.perf_counter()
        rank = self.options.initial_rank
        C = sp.csr_matrix(covariance)
        blocks = covariance_blocks(C, self.dim)
        rng = np.random.default_rng(self.options.seed)

        Y = random_factor(self.num_views, self.dim, rank, rng)
        Y, iterations, converged, objective = run_block_coordinate_minimization(
            Y, C, blocks, adjacent_edges, self.dim, self.options
        )
        summary = SDPSummary(
            total_iterations_num=iterations,
            final_objective=objective,
            rank=rank,
            converged=converged,
        )
        certify_solution(
            summary, C, blocks, adjacent_edges, Y, self.dim, self.options.certificate_tolerance
        )
        summary.total_time = time.perf_counter() - start
        return round_solution(Y, self.dim), summary


class RiemannianStaircase(SDPSolver):
    """
    Rank-escalating search with a global optimality certificate.

    Starts at rank dim. After each local solve the dual certificate is
    checked; if it has a negative eigenvalue the factor is lifted to rank
    p + 1 along the corresponding eigenvector and the search continues.
    """

    def __init__(self, num_views: int, dim: int, options: SDPSolverOptions):
        self.num_views = num_views
        self.dim = dim
        self.options = options

    def solve(
        self,
        covariance: sp.spmatrix,
        adjacent_edges: AdjacentEdges,
    ) -> Tuple[np.ndarray, SDPSummary]:
        start = time.perf_counter()
        dim = self.dim
        C = sp.csr_matrix(covariance)
        blocks = covariance_blocks(C, dim)
        rng = np.random.default_rng(self.options.seed)
        tol = self.options.certificate_tolerance

        summary = SDPSummary()
        rank = dim
        Y = random_factor(self.num_views, dim, rank, rng)
        while True:
            Y, iterations, converged, objective = run_block_coordinate_minimization(
                Y, C, blocks, adjacent_edges, dim, self.options
            )
            summary.total_iterations_num += iterations
            summary.converged = converged
            summary.final_objective = objective
            summary.rank = rank

            min_eigenvalue, direction, null_dim = compute_certificate(
                C, blocks, adjacent_edges, Y, dim, tol
            )
            summary.certificate_min_eigenvalue = min_eigenvalue
            logger.debug(
                "[staircase] rank %d: objective %.6e, min certificate eigenvalue %.3e",
                rank,
                objective,
                min_eigenvalue,
            )
            if min_eigenvalue >= -tol:
                summary.is_tight = null_dim == dim
                break
            if rank >= self.options.max_rank:
                summary.is_tight = False
                logger.warning(
                    "[staircase] Reached max rank %d without a certificate (min eigenvalue %.3e)",
                    rank,
                    min_eigenvalue,
                )
                break
            Y = self._escape_saddle(C, Y, direction)
            rank += 1

        summary.total_time = time.perf_counter() - start
        return round_solution(Y, dim), summary

    def _escape_saddle(
        self,
        covariance: sp.spmatrix,
        Y: np.ndarray,
        direction: np.ndarray,
    ) -> np.ndarray:
        """Lift Y to rank p + 1 and step along the negative-curvature direction."""
        dim = self.dim
        lifted = np.vstack([Y, np.zeros((1, Y.shape[1]))])
        step_direction = np.vstack([np.zeros_like(Y), direction.reshape(1, -1)])
        current = factor_objective(covariance, Y)

        candidate = lifted
        step = 1.0
        while step > 1e-6:
            trial = lifted + step * step_direction
            candidate = np.hstack(
                [
                    project_to_orthogonal(trial[:, dim * i:dim * (i + 1)])
                    for i in range(self.num_views)
                ]
            )
            if factor_objective(covariance, candidate) < current:
                break
            step *= 0.5
        return candidate


def create_sdp_solver(num_views: int, dim: int, options: SDPSolverOptions) -> Optional[SDPSolver]:
    """Instantiate the strategy selected by options.solver_type (None if unknown)."""
    if options.solver_type == SDPSolverType.RBR_BCM:
        return RBRSDPSolver(num_views, dim, options)
    if options.solver_type == SDPSolverType.RANK_RESTRICTED_BCM:
        return RankRestrictedSDPSolver(num_views, dim, options)
    if options.solver_type == SDPSolverType.RIEMANNIAN_STAIRCASE:
        return RiemannianStaircase(num_views, dim, options)
    logger.warning("Solver type %r is not supported!", options.solver_type)
    return None


__all__ = [
    "SDPSummary",
    "SDPSolver",
    "RBRSDPSolver",
    "RankRestrictedSDPSolver",
    "RiemannianStaircase",
    "create_sdp_solver",
    "smallest_eigenpairs",
    "covariance_blocks",
    "factor_objective",
    "round_solution",
    "compute_certificate",
    "certify_solution",
]
