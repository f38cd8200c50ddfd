"""
PRU Sandbox - 3D lattice gravity with structure formation.

Main entry point for headless runs.
"""

from __future__ import annotations
import argparse
import logging
from dataclasses import replace
from pathlib import Path
from typing import List, Optional

from pru_sim.config import SandboxConfig, standard_config
from pru_sim.core import GravityMode, Simulation, TickReport, TickSample
from pru_sim.errors import ConfigurationError


logger = logging.getLogger(__name__)


def run_simulation(
    config: SandboxConfig,
    ticks: int,
    log_interval: Optional[int] = None,
) -> dict:
    """
    Run a headless simulation.

    Args:
        config: Sandbox configuration
        ticks: Number of ticks to run
        log_interval: Ticks between progress lines (default: ticks // 10)

    Returns:
        Dictionary with the simulation, per-tick energy and field samples
        and the final snapshot
    """
    sim = Simulation(config)
    logger.info(f"Starting simulation: shape={config.lattice.shape}, ticks={ticks}, "
                f"mode={config.gravity.mode.value}")

    interval = log_interval or max(1, ticks // 10)
    history: List[TickSample] = []

    def progress(report: TickReport) -> None:
        history.append(report.sample())
        for agent_report in report.reports:
            logger.debug(agent_report.summary)
        if report.tick % interval == 0:
            counts = report.field_metrics.archetype_counts
            logger.info(f"Tick {report.tick}/{ticks} - E={report.energy.total:.4f}, "
                        f"drift={report.energy.drift_ratio:.2e}, "
                        f"stars={counts.get('star', 0)}, black holes={counts.get('black_hole', 0)}, "
                        f"galaxies={len(sim.tracker)}")

    sim.run(ticks, callback=progress)
    snapshot = sim.snapshot()
    logger.info(sim.summary())

    return {
        'simulation': sim,
        'history': history,
        'snapshot': snapshot,
    }


def build_config(args: argparse.Namespace) -> SandboxConfig:
    """Base config (file or standard preset) with command-line overrides."""
    config = SandboxConfig.load(args.config) if args.config else standard_config()

    if args.shape is not None:
        config.lattice.shape = tuple(args.shape)
    if args.seed is not None:
        config.lattice.seed = args.seed
    if args.neighbor_radius is not None:
        config.lattice.neighbor_radius = args.neighbor_radius

    overrides = {}
    if args.mode is not None:
        overrides['mode'] = GravityMode(args.mode)
    if args.G is not None:
        overrides['G'] = args.G
    if args.damping is not None:
        overrides['damping'] = args.damping
    if args.softening is not None:
        overrides['softening'] = args.softening
    if args.no_gravity:
        overrides['enabled'] = False
    if overrides:
        config.gravity = replace(config.gravity, **overrides)

    return config.check()


def main(argv: Optional[List[str]] = None):
    """Command-line interface for running simulations."""
    parser = argparse.ArgumentParser(description="PRU Lattice Sandbox")

    parser.add_argument('--shape', type=int, nargs=3, default=None, metavar=('NX', 'NY', 'NZ'),
                        help='Lattice extent (default: 10 10 10)')
    parser.add_argument('--ticks', type=int, default=600,
                        help='Number of ticks (default: 600)')
    parser.add_argument('--mode', choices=[m.value for m in GravityMode], default=None,
                        help='Gravity solver (default: naive_pairwise)')
    parser.add_argument('--G', type=float, default=None,
                        help='Gravitational constant (default: 0.6)')
    parser.add_argument('--damping', type=float, default=None,
                        help='Velocity damping (default: 0.01)')
    parser.add_argument('--softening', type=float, default=None,
                        help='Softening length (default: 0.25)')
    parser.add_argument('--neighbor-radius', type=float, default=None,
                        help='Stencil radius in lattice units (default: 1.0)')
    parser.add_argument('--no-gravity', action='store_true',
                        help='Disable gravity')
    parser.add_argument('--seed', type=int, default=None,
                        help='Random seed (default: 42)')
    parser.add_argument('--config', type=str, default=None,
                        help='JSON configuration file')
    parser.add_argument('--save-config', type=str, default=None,
                        help='Write the effective configuration to this JSON file')
    parser.add_argument('--plot', type=str, default=None,
                        help='Save an energy/density summary figure to this path')
    parser.add_argument('-v', '--verbose', action='store_true',
                        help='Log agent reports')

    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)

    try:
        config = build_config(args)
    except ConfigurationError as e:
        parser.error(str(e))

    if args.save_config:
        config.save(args.save_config)
        logger.info(f"Configuration saved to: {args.save_config}")

    results = run_simulation(config, args.ticks)

    if args.plot:
        logger.info("Generating plot...")
        import matplotlib.pyplot as plt
        from pru_sim.visualization import plot_energy_summary

        fig = plot_energy_summary(results['history'])
        plot_path = Path(args.plot)
        plot_path.parent.mkdir(parents=True, exist_ok=True)
        fig.savefig(plot_path, dpi=150)
        plt.close(fig)

        logger.info(f"Plot saved to: {plot_path}")

    logger.info("Done!")


if __name__ == "__main__":
    main()
