"""
Rotation helpers shared by the rotation and position estimators.
"""

from __future__ import annotations

import cv2
import numpy as np


def angle_axis_to_rotation_matrix(angle_axis: np.ndarray) -> np.ndarray:
    """
    Convert an angle-axis vector to a rotation matrix.

    Args:
        angle_axis: Rotation vector (3,).

    Returns:
        Rotation matrix (3x3).
    """
    rvec = np.asarray(angle_axis, dtype=np.float64).reshape(3, 1)
    R, _ = cv2.Rodrigues(rvec)
    return R


def rotation_matrix_to_angle_axis(R: np.ndarray) -> np.ndarray:
    """
    Convert a rotation matrix to an angle-axis vector.

    Args:
        R: Rotation matrix (3x3), assumed proper (det == +1).

    Returns:
        Rotation vector (3,).
    """
    rvec, _ = cv2.Rodrigues(np.ascontiguousarray(R, dtype=np.float64))
    return rvec.flatten()


def skew(v: np.ndarray) -> np.ndarray:
    """Cross-product matrix: skew(v) @ w == np.cross(v, w)."""
    return np.array(
        [
            [0.0, -v[2], v[1]],
            [v[2], 0.0, -v[0]],
            [-v[1], v[0], 0.0],
        ]
    )


def relative_rotation(R_i: np.ndarray, R_j: np.ndarray) -> np.ndarray:
    """Rotation taking the frame of view i to the frame of view j."""
    return R_j @ R_i.T


def project_to_orthogonal(M: np.ndarray) -> np.ndarray:
    """
    Closest matrix with orthonormal columns (polar factor).

    Args:
        M: Matrix (p, 3) with p >= 3.

    Returns:
        U @ Vt from the thin SVD of M.
    """
    U, _, Vt = np.linalg.svd(M, full_matrices=False)
    return U @ Vt


def angular_distance(R1: np.ndarray, R2: np.ndarray) -> float:
    """Angle in radians of the rotation R1.T @ R2."""
    cos_angle = (np.trace(R1.T @ R2) - 1.0) / 2.0
    return float(np.arccos(np.clip(cos_angle, -1.0, 1.0)))


__all__ = [
    "angle_axis_to_rotation_matrix",
    "rotation_matrix_to_angle_axis",
    "skew",
    "relative_rotation",
    "project_to_orthogonal",
    "angular_distance",
]
