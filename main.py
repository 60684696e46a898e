"""Greenhouse flux simulation — CLI entry point.

Runs the illumination flux engine over a scene for a number of frames while
sweeping the sun, then saves the flux history and plots.

Usage
-----
    python main.py --ticks 24
    python main.py --scene scenes/bench.yaml --quadtree
    python main.py --render-only --output output   # re-plot saved data
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path


def setup_logging(level: str = "INFO") -> None:
    """Configure structured logging."""
    fmt = "%(name)s [%(levelname)s] %(message)s"
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=fmt,
        stream=sys.stdout,
    )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments."""
    parser = argparse.ArgumentParser(
        prog="fluxsim",
        description="Greenhouse illumination flux simulation",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            "  python main.py --ticks 24\n"
            "  python main.py --scene scenes/bench.yaml --ticks 10\n"
            "  python main.py --quadtree --log-level DEBUG\n"
            "  python main.py --render-only --output output\n"
        ),
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to config YAML (default: built-in defaults)",
    )
    parser.add_argument(
        "--scene",
        type=str,
        default=None,
        help="Path to a YAML scene file (default: synthetic greenhouse)",
    )
    parser.add_argument(
        "--ticks",
        type=int,
        default=None,
        help="Number of frames to simulate (default: from config)",
    )
    parser.add_argument(
        "--output",
        type=str,
        default="output",
        help="Output directory for plots and data (default: output/)",
    )
    parser.add_argument(
        "--quadtree",
        action="store_true",
        default=False,
        help="Use the X/Z quadtree instead of the octree",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity (default: INFO)",
    )
    parser.add_argument(
        "--no-plots",
        action="store_true",
        default=False,
        help="Skip plot generation",
    )
    parser.add_argument(
        "--render-only",
        action="store_true",
        default=False,
        help="Skip simulation; re-plot data previously saved in --output",
    )

    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    """Main simulation entry point."""
    args = parse_args(argv)
    setup_logging(args.log_level)

    logger = logging.getLogger("fluxsim")
    logger.info("=" * 60)
    logger.info("  Greenhouse Flux Simulation")
    logger.info("=" * 60)

    output_dir = Path(args.output)

    if args.render_only:
        logger.info("Render-only mode: loading saved data from %s/", output_dir)
        from simulation.io_manager import load_results
        from visualization.plotter import plot_flux_history, plot_flux_levels

        data = load_results(output_dir)
        meta = data["metadata"]
        names = meta.get("volume_names", [])
        if data["final_flux"] is None:
            logger.error("No saved flux data in %s", output_dir)
            return 1
        plot_flux_levels(
            names,
            data["final_flux"],
            low_threshold=meta.get("low_threshold", 40.0),
            high_threshold=meta.get("high_threshold", 60.0),
            output_path=output_dir / "flux_levels.png",
        )
        if data["flux_history"] is not None and data["sun_angles"] is not None:
            plot_flux_history(
                data["sun_angles"],
                data["flux_history"],
                names,
                output_path=output_dir / "flux_history.png",
            )
        return 0

    from core_engine.constants import default_config, load_config, log_platform_info
    from simulation.runner import SimulationRunner
    from visualization.plotter import generate_all_plots

    log_platform_info()

    try:
        if args.config:
            config = load_config(args.config)
        else:
            logger.info("Using built-in default configuration")
            config = default_config()

        runner = SimulationRunner(
            config=config,
            scene_path=args.scene,
            index_mode="quadtree" if args.quadtree else None,
        )
        results = runner.run(ticks=args.ticks, save_data=True, output_dir=output_dir)
    except (FileNotFoundError, ValueError) as exc:
        logger.error("Simulation failed: %s", exc)
        return 1

    saved: list[Path] = []
    if not args.no_plots:
        logger.info("Generating plots → %s/", output_dir)
        saved = generate_all_plots(results, output_dir=output_dir)

    last = runner.engine.last_result
    logger.info("=" * 60)
    logger.info("  SIMULATION COMPLETE")
    logger.info("=" * 60)
    logger.info("  Frames: %d, requests: %d, passes: %d",
                len(results.ticks), results.requests, results.passes_run)
    logger.info("  Wall time: %.2f s", results.metadata.get("wall_time_s", 0.0))
    if last is not None:
        logger.info(
            "  Final flux: min=%.2f, max=%.2f, mean=%.2f, levels=%s",
            last.stats["min_flux"], last.stats["max_flux"], last.stats["mean_flux"],
            last.level_counts,
        )
        logger.info("  Spatial index: %s", last.index_stats)
    logger.info("  Plots (%d):", len(saved))
    for p in saved:
        logger.info("    → %s", p)
    logger.info("=" * 60)

    return 0


if __name__ == "__main__":
    sys.exit(main())
