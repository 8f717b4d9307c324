import numpy as np

from motion_avg.viz.plotly_viz import plot_camera_poses


def test_figure_contains_points_cameras_and_axes(four_view_scene):
    fig = plot_camera_poses(
        four_view_scene.orientations, four_view_scene.positions, points=four_view_scene.points
    )

    assert [trace.name for trace in fig.data] == ["3D Points", "Camera Centers", "Optical Axes"]
    assert list(fig.data[1].text) == ["View 0", "View 1", "View 2", "View 3"]
    assert fig.layout.title.text == "Global Motion Averaging Result"


def test_views_without_positions_are_skipped(four_view_scene):
    positions = {0: four_view_scene.positions[0], 2: four_view_scene.positions[2]}

    fig = plot_camera_poses(four_view_scene.orientations, positions)

    assert [trace.name for trace in fig.data] == ["Camera Centers", "Optical Axes"]
    np.testing.assert_allclose(fig.data[0].x, [positions[0][0], positions[2][0]])


def test_empty_input_gives_empty_figure():
    fig = plot_camera_poses({}, {})
    assert len(fig.data) == 0
