"""
Configuration for the global motion averaging estimators.

Modify the default values here for experimentation.
"""

from __future__ import annotations

import logging
import sys
from dataclasses import dataclass
from enum import Enum


class SDPSolverType(Enum):
    """Strategies available for the rotation averaging SDP relaxation."""

    RBR_BCM = "rbr_bcm"
    RANK_RESTRICTED_BCM = "rank_restricted_bcm"
    RIEMANNIAN_STAIRCASE = "riemannian_staircase"


@dataclass
class SDPSolverOptions:
    """Options shared by all SDP solver strategies."""

    solver_type: SDPSolverType = SDPSolverType.RIEMANNIAN_STAIRCASE
    """Which SDP strategy to use."""

    max_iterations: int = 5000
    """Maximum number of block-coordinate sweeps (per rank for the staircase)."""

    tolerance: float = 1e-8
    """Relative objective change below which a sweep is considered converged."""

    initial_rank: int = 5
    """Rank of the factor used by the rank-restricted solver."""

    max_rank: int = 10
    """Largest rank the staircase may escalate to."""

    certificate_tolerance: float = 1e-6
    """Eigenvalues above -tol certify optimality; eigenvalues below tol count toward the null space."""

    seed: int = 0
    """Seed for the random factor initialization."""

    def __post_init__(self) -> None:
        if self.max_iterations <= 0:
            raise ValueError(f"max_iterations must be > 0, got {self.max_iterations}")
        if self.tolerance <= 0:
            raise ValueError(f"tolerance must be > 0, got {self.tolerance}")
        if self.certificate_tolerance <= 0:
            raise ValueError(
                f"certificate_tolerance must be > 0, got {self.certificate_tolerance}"
            )
        if self.initial_rank < 3 or self.max_rank < self.initial_rank:
            raise ValueError(
                f"Need 3 <= initial_rank <= max_rank, got {self.initial_rank}, {self.max_rank}"
            )


@dataclass
class LiGTOptions:
    """Options for the LiGT position estimator."""

    num_threads: int = 1
    """Worker threads for triplet extraction and matrix accumulation."""

    eigen_shift: float = 1e-12
    """Relative magnitude of the (negative) shift used for shift-invert."""

    max_eigen_iterations: int = 1000
    """ARPACK iteration limit for the spectral solve."""

    def __post_init__(self) -> None:
        if self.num_threads <= 0:
            raise ValueError(f"num_threads must be > 0, got {self.num_threads}")
        if self.eigen_shift < 0:
            raise ValueError(f"eigen_shift must be >= 0, got {self.eigen_shift}")
        if self.max_eigen_iterations <= 0:
            raise ValueError(
                f"max_eigen_iterations must be > 0, got {self.max_eigen_iterations}"
            )


def configure_logging(level: str = "INFO") -> None:
    """Send motion averaging progress messages to stdout."""
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format="%(asctime)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )


__all__ = ["SDPSolverType", "SDPSolverOptions", "LiGTOptions", "configure_logging"]
