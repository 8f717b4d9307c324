"""
Command-line interface: global motion averaging on a synthetic scene.
"""

from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import List, Optional

from motion_avg.config import LiGTOptions, SDPSolverOptions, SDPSolverType, configure_logging
from motion_avg.io.pose_io import save_poses_npz
from motion_avg.pipeline.global_averaging import run_global_averaging
from motion_avg.scene.synthetic import make_synthetic_scene
from motion_avg.viz.plotly_viz import plot_camera_poses

logger = logging.getLogger(__name__)


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main CLI entry point.

    Usage:
        motion-avg-synthetic --num-views 8 --num-points 200 \\
                             --views-per-track 4 \\
                             --output-dir out/ --visualize

    Returns:
        Process exit code (0 on success).
    """
    parser = argparse.ArgumentParser(
        description="Rotation and position averaging on a synthetic multi-view scene"
    )
    parser.add_argument(
        "--num-views",
        type=int,
        default=8,
        help="Number of cameras in the synthetic scene (default: 8)",
    )
    parser.add_argument(
        "--num-points",
        type=int,
        default=200,
        help="Number of scene points, one track each (default: 200)",
    )
    parser.add_argument(
        "--views-per-track",
        type=int,
        default=None,
        help="Views observing each track (default: all views)",
    )
    parser.add_argument(
        "--pixel-noise",
        type=float,
        default=0.0,
        help="Standard deviation of pixel noise (default: 0)",
    )
    parser.add_argument(
        "--seed",
        type=int,
        default=0,
        help="Random seed for the scene (default: 0)",
    )
    parser.add_argument(
        "--solver",
        type=str,
        default=SDPSolverType.RIEMANNIAN_STAIRCASE.value,
        choices=[solver_type.value for solver_type in SDPSolverType],
        help="SDP strategy for rotation averaging (default: riemannian_staircase)",
    )
    parser.add_argument(
        "--num-threads",
        type=int,
        default=1,
        help="Worker threads for the position solver (default: 1)",
    )
    parser.add_argument(
        "--output-dir",
        type=str,
        default="output",
        help="Output directory for the estimated poses (default: output)",
    )
    parser.add_argument(
        "--visualize",
        action="store_true",
        help="Generate HTML visualization of the recovered poses",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        help="Logging level (default: INFO)",
    )

    args = parser.parse_args(argv)
    configure_logging(args.log_level)

    output_dir = Path(args.output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    scene = make_synthetic_scene(
        num_views=args.num_views,
        num_points=args.num_points,
        views_per_track=args.views_per_track,
        pixel_noise=args.pixel_noise,
        seed=args.seed,
    )
    logger.info(
        "Generated scene with %d views, %d tracks and %d view pairs",
        len(scene.reconstruction.views),
        len(scene.reconstruction.tracks),
        len(scene.view_pairs),
    )

    result = run_global_averaging(
        scene.reconstruction,
        scene.view_pairs,
        rotation_options=SDPSolverOptions(solver_type=SDPSolverType(args.solver)),
        position_options=LiGTOptions(num_threads=args.num_threads),
        compute_error_bound=True,
    )
    if not result.success:
        logger.error("Global motion averaging failed")
        return 1

    poses_path = output_dir / "poses.npz"
    logger.info("Saving poses to %s", poses_path)
    save_poses_npz(str(poses_path), result.orientations, result.positions)

    if args.visualize:
        fig = plot_camera_poses(result.orientations, result.positions)
        viz_path = output_dir / "poses.html"
        fig.write_html(str(viz_path))
        logger.info("Visualization saved to %s", viz_path)

    logger.info("Pipeline completed successfully!")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
