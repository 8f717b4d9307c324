import numpy as np
import pytest

from motion_avg.cli.main import main
from motion_avg.config import SDPSolverOptions
from motion_avg.io.pose_io import load_poses_npz, save_poses_npz


def test_cli_writes_poses_and_figure(tmp_path):
    exit_code = main(
        [
            "--num-views", "5",
            "--num-points", "60",
            "--views-per-track", "4",
            "--seed", "2",
            "--num-threads", "2",
            "--output-dir", str(tmp_path),
            "--visualize",
        ]
    )

    assert exit_code == 0
    orientations, positions = load_poses_npz(str(tmp_path / "poses.npz"))
    assert sorted(positions) == [0, 1, 2, 3, 4]
    assert (tmp_path / "poses.html").exists()


def test_save_and_load_poses(tmp_path):
    orientations = {3: np.array([0.1, 0.2, 0.3]), 7: np.zeros(3), 9: np.ones(3)}
    positions = {3: np.array([1.0, 2.0, 3.0]), 7: np.array([-1.0, 0.0, 0.5])}
    path = str(tmp_path / "poses.npz")

    save_poses_npz(path, orientations, positions)
    loaded_orientations, loaded_positions = load_poses_npz(path)

    # View 9 has no position and is not written.
    assert sorted(loaded_positions) == [3, 7]
    np.testing.assert_allclose(loaded_orientations[3], orientations[3])
    np.testing.assert_allclose(loaded_positions[7], positions[7])


@pytest.mark.parametrize(
    "kwargs",
    [
        {"max_iterations": 0},
        {"tolerance": 0.0},
        {"certificate_tolerance": -1.0},
        {"initial_rank": 2},
        {"initial_rank": 6, "max_rank": 5},
    ],
)
def test_invalid_solver_options_raise(kwargs):
    with pytest.raises(ValueError):
        SDPSolverOptions(**kwargs)
