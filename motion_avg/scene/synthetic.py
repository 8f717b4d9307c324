"""
Synthetic scenes for testing and prototyping.

Generates cameras looking at a cloud of points together with everything the
estimators consume: a Reconstruction with tracks and pixel observations and
exact relative poses. Useful for:
- unit testing
- algorithm development
- edge case testing
"""

from __future__ import annotations

from dataclasses import dataclass, field
from itertools import combinations
from typing import Dict, Iterable, Optional, Tuple

import numpy as np

from motion_avg.geometry.rotations import (
    angle_axis_to_rotation_matrix,
    relative_rotation,
    rotation_matrix_to_angle_axis,
)
from motion_avg.scene.data_structures import (
    Camera,
    Reconstruction,
    RelativePose,
    View,
    view_pair_key,
)


@dataclass
class SyntheticScene:
    reconstruction: Reconstruction
    # Ground truth, keyed by view id.
    orientations: Dict[int, np.ndarray]
    positions: Dict[int, np.ndarray]
    # (M, 3) world points; row k is track k.
    points: np.ndarray
    view_pairs: Dict[Tuple[int, int], RelativePose] = field(default_factory=dict)


def default_intrinsics(focal: float = 500.0, image_size: Tuple[int, int] = (640, 480)) -> np.ndarray:
    return np.array(
        [
            [focal, 0.0, image_size[0] / 2.0],
            [0.0, focal, image_size[1] / 2.0],
            [0.0, 0.0, 1.0],
        ]
    )


def look_at_rotation(center: np.ndarray, target: np.ndarray) -> np.ndarray:
    """World-to-camera rotation of a camera at `center` whose z axis points at `target`."""
    z = target - center
    z = z / np.linalg.norm(z)
    up = np.array([0.0, 1.0, 0.0])
    x = np.cross(up, z)
    x = x / np.linalg.norm(x)
    y = np.cross(z, x)
    return np.vstack([x, y, z])


def relative_pose_from_poses(
    orientation1: np.ndarray,
    position1: np.ndarray,
    orientation2: np.ndarray,
    position2: np.ndarray,
) -> RelativePose:
    """Exact two-view geometry between two absolute poses."""
    R1 = angle_axis_to_rotation_matrix(orientation1)
    R2 = angle_axis_to_rotation_matrix(orientation2)
    translation = R1 @ (position2 - position1)
    return RelativePose(
        rotation=rotation_matrix_to_angle_axis(relative_rotation(R1, R2)),
        translation=translation / np.linalg.norm(translation),
    )


def make_view_pairs(
    orientations: Dict[int, np.ndarray],
    positions: Dict[int, np.ndarray],
    pairs: Optional[Iterable[Tuple[int, int]]] = None,
) -> Dict[Tuple[int, int], RelativePose]:
    """Relative poses for the given pairs, or for all pairs if None."""
    if pairs is None:
        pairs = combinations(sorted(orientations), 2)
    view_pairs = {}
    for view_id1, view_id2 in pairs:
        i, j = view_pair_key(view_id1, view_id2)
        view_pairs[(i, j)] = relative_pose_from_poses(
            orientations[i], positions[i], orientations[j], positions[j]
        )
    return view_pairs


def project(K: np.ndarray, R: np.ndarray, center: np.ndarray, point: np.ndarray) -> np.ndarray:
    x = K @ (R @ (point - center))
    return x[:2] / x[2]


def make_synthetic_scene(
    num_views: int = 4,
    num_points: int = 30,
    views_per_track: Optional[int] = None,
    pixel_noise: float = 0.0,
    radius: float = 6.0,
    seed: Optional[int] = None,
) -> SyntheticScene:
    """
    Cameras on a ring looking at a unit cube of points.

    Args:
        num_views: Number of cameras.
        num_points: Number of 3D points (one track each).
        views_per_track: If given, each track is seen by this many randomly
            chosen views; otherwise by every view.
        pixel_noise: Standard deviation of Gaussian pixel noise.
        radius: Distance of the cameras from the origin.
        seed: Random seed for reproducibility.

    Returns:
        SyntheticScene with ground truth and a complete set of view pairs.
    """
    rng = np.random.default_rng(seed)
    K = default_intrinsics()

    reconstruction = Reconstruction()
    orientations: Dict[int, np.ndarray] = {}
    positions: Dict[int, np.ndarray] = {}
    rotations: Dict[int, np.ndarray] = {}

    angles = np.linspace(0.0, np.pi, num_views, endpoint=False) + rng.uniform(-0.1, 0.1, num_views)
    for view_id in range(num_views):
        center = np.array(
            [
                radius * np.cos(angles[view_id]),
                rng.uniform(-1.0, 1.0),
                radius * np.sin(angles[view_id]),
            ]
        )
        target = rng.uniform(-0.3, 0.3, size=3)
        R = look_at_rotation(center, target)

        rotations[view_id] = R
        orientations[view_id] = rotation_matrix_to_angle_axis(R)
        positions[view_id] = center
        reconstruction.add_view(
            View(id=view_id, camera=Camera(K=K), orientation=orientations[view_id].copy())
        )

    points = rng.uniform(-1.0, 1.0, size=(num_points, 3))
    for track_id, point in enumerate(points):
        reconstruction.add_track(track_id)
        if views_per_track is None:
            observing = range(num_views)
        else:
            observing = rng.choice(num_views, size=views_per_track, replace=False)
        for view_id in observing:
            uv = project(K, rotations[int(view_id)], positions[int(view_id)], point)
            if pixel_noise > 0:
                uv = uv + rng.normal(0.0, pixel_noise, size=2)
            reconstruction.add_observation(int(view_id), track_id, uv)

    return SyntheticScene(
        reconstruction=reconstruction,
        orientations=orientations,
        positions=positions,
        points=points,
        view_pairs=make_view_pairs(orientations, positions),
    )


__all__ = [
    "SyntheticScene",
    "default_intrinsics",
    "look_at_rotation",
    "relative_pose_from_poses",
    "make_view_pairs",
    "project",
    "make_synthetic_scene",
]
