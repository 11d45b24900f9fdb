#!/usr/bin/env python3
"""
===============================================================================
ORBIT SIM - MAIN ENTRY POINT
===============================================================================
Runs the Keplerian solar-system simulation from a YAML scenario.

USAGE:
    python main.py                              # Default scenario
    python main.py --steps 1440 --dt-ms 60000   # One day in 1-minute ticks
    python main.py --start 2024-03-20T00:00:00Z # Different start epoch
    python main.py --output telemetry.csv       # Export per-tick telemetry

OUTPUTS:
    Per-body summary on the log; optional telemetry CSV indexed by
    (time_ms, name).

DEPENDENCIES:
    numpy, scipy, pandas, pyyaml
    Install: pip install -e .

===============================================================================
"""

import sys
import argparse
import time
import logging
from pathlib import Path

# ---------------------------------------------------------------------------
# Path setup: ensure all project modules are importable
# ---------------------------------------------------------------------------
PROJECT_ROOT = Path(__file__).parent
sys.path.insert(0, str(PROJECT_ROOT))

from core.config import (
    DEFAULT_CONFIG_PATH,
    SimulationSettings,
    build_body_table,
    load_config,
    parse_epoch,
)
from core.constants import MS_PER_DAY, RAD2DEG
from core.exceptions import ConfigurationError, SimulationStepError
from dynamics.bodies import BodyGraph
from simulation.solar_system import SolarSystem
from simulation.telemetry import TelemetryRecorder

logger = logging.getLogger('ORBIT_SIM')


def configure_logging(level: str = 'INFO') -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
        handlers=[logging.StreamHandler(sys.stdout)],
    )


def build_simulation(config: dict, settings: SimulationSettings) -> SolarSystem:
    """Body graph from the config, wrapped in a SolarSystem."""
    graph = BodyGraph.from_table(build_body_table(config))
    logger.info("Body graph: %s", ", ".join(b.name for b in graph))
    return SolarSystem(graph, settings)


def log_summary(system: SolarSystem) -> None:
    """One line per body: primary, regime, a, e, I, period."""
    logger.info("Body summary at t=%.0f ms:", system.time_ms)
    for row in system.snapshot():
        period_days = row['orbital_period'] * 1000.0 / MS_PER_DAY
        logger.info(
            "  %-10s %-8s %-10s a=%-12.6g e=%-10.6f I=%8.3f deg  T=%.3f d",
            row['name'],
            row['primary'] or '-',
            row['regime'],
            row['a'],
            row['e'],
            row['I'] * RAD2DEG,
            period_days,
        )


def run(args: argparse.Namespace) -> int:
    config = load_config(args.config)
    settings = SimulationSettings.from_config(config)

    start_ms = parse_epoch(args.start) if args.start else settings.epoch_ms
    dt_ms = args.dt_ms if args.dt_ms is not None else settings.dt_ms
    steps = args.steps if args.steps is not None else settings.steps

    system = build_simulation(config, settings)
    recorder = TelemetryRecorder(system) if args.output else None

    wall_start = time.time()
    logger.info("Running %d ticks of %.0f ms from t=%.0f ms", steps, dt_ms, start_ms)
    try:
        system.run(start_ms, dt_ms, steps, recorder=recorder)
    except SimulationStepError as exc:
        logger.error("Simulation stopped at t=%s ms: %s", system.time_ms, exc)
        return 2
    logger.info("Simulation complete in %.2f s wall time", time.time() - wall_start)

    log_summary(system)

    if recorder is not None:
        recorder.to_csv(args.output)
    return 0


def main(argv=None) -> int:
    """
    Main entry point. Parses command line arguments and runs the
    simulation.
    """
    parser = argparse.ArgumentParser(
        description='Keplerian solar-system simulation',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py                          Default scenario
  python main.py --steps 60 --dt-ms 1000  One minute in 1-second ticks
  python main.py --output run.csv         Export telemetry
        """
    )

    parser.add_argument('--config', type=str, default=None,
                        help=f'Path to scenario YAML (default: {DEFAULT_CONFIG_PATH})')
    parser.add_argument('--steps', type=int, default=None,
                        help='Number of ticks (default: from config)')
    parser.add_argument('--dt-ms', type=float, default=None,
                        help='Tick length in milliseconds (default: from config)')
    parser.add_argument('--start', type=str, default=None,
                        help='Start epoch, ISO-8601 UTC (default: from config)')
    parser.add_argument('--output', type=str, default=None,
                        help='Write telemetry CSV to this path')
    parser.add_argument('--log-level', type=str, default='INFO',
                        help='Logging level (default: INFO)')

    args = parser.parse_args(argv)
    configure_logging(args.log_level)

    try:
        return run(args)
    except ConfigurationError as exc:
        logger.error("Configuration error: %s", exc)
        return 1


if __name__ == '__main__':
    sys.exit(main())
