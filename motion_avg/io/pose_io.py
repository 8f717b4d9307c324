"""
Serialization helpers for averaged camera poses.
"""

from __future__ import annotations

from typing import Dict, Tuple

import numpy as np


def save_poses_npz(
    output_path: str,
    orientations: Dict[int, np.ndarray],
    positions: Dict[int, np.ndarray],
) -> None:
    """
    Serialize global camera poses to a .npz file.

    Only views that have both an orientation and a position are written.

    Args:
        output_path: Path where the poses will be saved (.npz file).
        orientations: view_id -> angle-axis world-to-camera rotation.
        positions: view_id -> camera center in world coordinates.
    """
    view_ids = np.array(sorted(v for v in positions if v in orientations), dtype=int)
    n_views = len(view_ids)
    view_orientations = np.zeros((n_views, 3))
    view_positions = np.zeros((n_views, 3))

    for i, view_id in enumerate(view_ids):
        view_orientations[i] = np.asarray(orientations[view_id]).flatten()
        view_positions[i] = np.asarray(positions[view_id]).flatten()

    np.savez(
        output_path,
        view_ids=view_ids,
        orientations=view_orientations,
        positions=view_positions,
    )


def load_poses_npz(
    input_path: str,
) -> Tuple[Dict[int, np.ndarray], Dict[int, np.ndarray]]:
    """
    Load poses written by save_poses_npz.

    Returns:
        orientations: view_id -> angle-axis rotation (3,)
        positions: view_id -> camera center (3,)
    """
    data = np.load(input_path)
    orientations = {}
    positions = {}
    for i, view_id in enumerate(data["view_ids"]):
        orientations[int(view_id)] = data["orientations"][i]
        positions[int(view_id)] = data["positions"][i]
    return orientations, positions


__all__ = ["save_poses_npz", "load_poses_npz"]
