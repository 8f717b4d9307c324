"""
Visualization of averaged camera poses using Plotly.
"""

from __future__ import annotations

from typing import Dict, Optional

import numpy as np
import plotly.graph_objs as go

from motion_avg.geometry.rotations import angle_axis_to_rotation_matrix


def plot_camera_poses(
    orientations: Dict[int, np.ndarray],
    positions: Dict[int, np.ndarray],
    points: Optional[np.ndarray] = None,
    axis_length: float = 0.5,
) -> go.Figure:
    """
    Create a 3D Plotly figure of camera centers and viewing directions.

    Args:
        orientations: view_id -> angle-axis world-to-camera rotation.
        positions: view_id -> camera center. Views without a position are skipped.
        points: Optional (M, 3) scene points to draw for context.
        axis_length: Length of the drawn optical axis of each camera.

    Returns:
        Plotly Figure with one marker per camera and one line per optical axis.
    """
    view_ids = sorted(view_id for view_id in positions if view_id in orientations)
    centers = (
        np.array([positions[view_id] for view_id in view_ids])
        if view_ids
        else np.array([]).reshape(0, 3)
    )

    fig = go.Figure()

    if points is not None and len(points) > 0:
        fig.add_trace(
            go.Scatter3d(
                x=points[:, 0],
                y=points[:, 1],
                z=points[:, 2],
                mode="markers",
                marker=dict(size=2, color="gray", opacity=0.6),
                name="3D Points",
            )
        )

    if len(centers) > 0:
        fig.add_trace(
            go.Scatter3d(
                x=centers[:, 0],
                y=centers[:, 1],
                z=centers[:, 2],
                mode="markers",
                marker=dict(
                    size=6,
                    color="red",
                    symbol="diamond",
                ),
                name="Camera Centers",
                text=[f"View {view_id}" for view_id in view_ids],
            )
        )

        # Optical axis in world coordinates is the third row of R.
        xs, ys, zs = [], [], []
        for view_id, center in zip(view_ids, centers):
            direction = angle_axis_to_rotation_matrix(orientations[view_id])[2]
            tip = center + axis_length * direction
            xs.extend([center[0], tip[0], None])
            ys.extend([center[1], tip[1], None])
            zs.extend([center[2], tip[2], None])
        fig.add_trace(
            go.Scatter3d(
                x=xs,
                y=ys,
                z=zs,
                mode="lines",
                line=dict(color="blue", width=3),
                name="Optical Axes",
            )
        )

    fig.update_layout(
        title="Global Motion Averaging Result",
        scene=dict(
            xaxis_title="X",
            yaxis_title="Y",
            zaxis_title="Z",
            aspectmode="data",
        ),
        width=800,
        height=600,
    )

    return fig


__all__ = ["plot_camera_poses"]
