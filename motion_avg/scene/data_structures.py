"""
Shared core data structures for global motion averaging.

These dataclasses are intentionally simple containers used across:
- rotation averaging
- position averaging
- visualization
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set, Tuple

import numpy as np


def view_pair_key(view_id1: int, view_id2: int) -> Tuple[int, int]:
    """Key for an unordered view pair: the smaller id always comes first."""
    if view_id1 == view_id2:
        raise ValueError(f"A view pair needs two distinct views, got {view_id1} twice")
    return (view_id1, view_id2) if view_id1 < view_id2 else (view_id2, view_id1)


@dataclass
class Camera:
    """Pinhole camera model mapping pixels to rays."""

    # Intrinsic matrix (3x3).
    K: np.ndarray

    def pixel_to_normalized_coordinates(self, uv: np.ndarray) -> np.ndarray:
        """
        Remove the intrinsics from a pixel observation.

        Args:
            uv: Pixel coordinates (2,).

        Returns:
            Ray (3,) through the normalized image plane, i.e. with z == 1.
        """
        ray = np.linalg.solve(self.K, np.array([uv[0], uv[1], 1.0]))
        return ray / ray[2]


@dataclass
class View:
    """A single image: its camera model, pose, and 2D features."""

    id: int
    camera: Camera
    # Angle-axis rotation (3,) from world to camera coordinates.
    orientation: np.ndarray = field(default_factory=lambda: np.zeros(3))
    # Camera center (3,) in world coordinates, None until estimated.
    position: Optional[np.ndarray] = None
    # track_id -> (2,) pixel observation.
    features: Dict[int, np.ndarray] = field(default_factory=dict)

    def feature(self, track_id: int) -> np.ndarray:
        return self.features[track_id]

    def normalized_feature(self, track_id: int) -> np.ndarray:
        return self.camera.pixel_to_normalized_coordinates(self.features[track_id])


@dataclass
class Track:
    """A 3D point seen by several views; the pixels live in View.features."""

    id: int
    view_ids: Set[int] = field(default_factory=set)


@dataclass
class RelativePose:
    """
    Two-view geometry for the pair (i, j) with i < j.

    `rotation` is the angle-axis of R_ij = R_j @ R_i.T and `translation` the
    unit direction of c_j - c_i expressed in the frame of view i.
    """

    rotation: np.ndarray
    translation: np.ndarray


@dataclass
class Reconstruction:
    """
    Read-mostly view graph: views, tracks and their observations.

    This is the main structure passed between the estimators and
    visualization code.
    """

    views: Dict[int, View] = field(default_factory=dict)
    tracks: Dict[int, Track] = field(default_factory=dict)

    def add_view(self, view: View) -> None:
        if view.id in self.views:
            raise ValueError(f"View {view.id} already exists")
        self.views[view.id] = view

    def add_track(self, track_id: int) -> Track:
        if track_id in self.tracks:
            raise ValueError(f"Track {track_id} already exists")
        track = Track(id=track_id)
        self.tracks[track_id] = track
        return track

    def add_observation(self, view_id: int, track_id: int, uv: np.ndarray) -> None:
        """Record that `view_id` observes `track_id` at pixel `uv`."""
        view = self.views[view_id]
        track = self.tracks[track_id]
        view.features[track_id] = np.asarray(uv, dtype=np.float64)
        track.view_ids.add(view_id)

    def view(self, view_id: int) -> View:
        return self.views[view_id]

    def track(self, track_id: int) -> Track:
        return self.tracks[track_id]

    def view_ids(self) -> List[int]:
        return sorted(self.views)

    def track_ids(self) -> List[int]:
        return sorted(self.tracks)

    def orientations(self) -> Dict[int, np.ndarray]:
        return {view_id: view.orientation.copy() for view_id, view in self.views.items()}

    def positions(self) -> Dict[int, np.ndarray]:
        return {
            view_id: view.position.copy()
            for view_id, view in self.views.items()
            if view.position is not None
        }

    def set_orientations(self, orientations: Dict[int, np.ndarray]) -> None:
        for view_id, orientation in orientations.items():
            self.views[view_id].orientation = np.asarray(orientation, dtype=np.float64).copy()

    def set_positions(self, positions: Dict[int, np.ndarray]) -> None:
        for view_id, position in positions.items():
            self.views[view_id].position = np.asarray(position, dtype=np.float64).copy()


__all__ = ["Camera", "View", "Track", "RelativePose", "Reconstruction", "view_pair_key"]
