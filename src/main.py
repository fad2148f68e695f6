#!/usr/bin/env python3
"""
===============================================================================
ATTITUDE PROPAGATION - MAIN ENTRY POINT
===============================================================================
Runs a propagation scenario described by a YAML file and writes the state
and dependent-variable history to CSV.

USAGE:
    python main.py                               # Default scenario
    python main.py --config my_scenario.yaml     # Custom scenario
    python main.py --output out/history.csv      # Override output path
    python main.py --log-level DEBUG             # Show step rejections

DEPENDENCIES:
    numpy, scipy, pandas, pyyaml
    Install: pip install numpy scipy pandas pyyaml
===============================================================================
"""

import argparse
import logging
import sys
import time
from pathlib import Path

# ---------------------------------------------------------------------------
# Path setup: ensure all project modules are importable
# ---------------------------------------------------------------------------
PROJECT_ROOT = Path(__file__).parent
sys.path.insert(0, str(PROJECT_ROOT))

from core.constants import RAD2DEG
from core.exceptions import ConfigurationError, PropagationError
from simulation.config import build_scenario, load_config
from simulation.dynamics_simulator import SingleArcDynamicsSimulator

logger = logging.getLogger('PROPAGATION_MAIN')


def run_scenario(config: dict, output_path: str = None) -> SingleArcDynamicsSimulator:
    """
    Build and propagate a scenario, then save its history.

    Args:
        config: Scenario dictionary (see config/propagation_config.yaml)
        output_path: CSV path; defaults to simulation.output in the config

    Returns:
        The finished simulator
    """
    bodies, integrator_settings, propagator_settings = build_scenario(config)
    simulator = SingleArcDynamicsSimulator(bodies, integrator_settings, propagator_settings)

    if output_path is None:
        output_path = config.get('simulation', {}).get('output')
    if output_path:
        Path(output_path).parent.mkdir(parents=True, exist_ok=True)
        simulator.save_state_history(output_path)

    details = simulator.termination_details
    logger.info("Terminated on %s at t=%.3f s", details.description, details.time)

    final_epoch, final_state = list(simulator.state_history.items())[-1]
    logger.info("Final state at t=%.3f s: %s", final_epoch, final_state)
    dependent = simulator.dependent_variable_history
    if dependent:
        names = simulator.dependent_variables.column_names()
        for name, value in zip(names, dependent[final_epoch]):
            if name.startswith(('latitude', 'longitude')):
                logger.info("  %-35s: %.6f deg", name, value * RAD2DEG)
            else:
                logger.info("  %-35s: %.6e", name, value)
    return simulator


def main():
    """Parse command line arguments and run the requested scenario."""
    parser = argparse.ArgumentParser(
        description='Coupled translational/rotational dynamics propagation',
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument('--config', type=str, default=None,
                        help='Path to scenario config YAML')
    parser.add_argument('--output', type=str, default=None,
                        help='Output CSV path (overrides simulation.output)')
    parser.add_argument('--log-level', type=str, default='INFO',
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
                        help='Logging level (default: INFO)')
    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    start = time.time()
    try:
        config = load_config(args.config)
        run_scenario(config, args.output)
    except ConfigurationError as exc:
        logger.error("Invalid configuration: %s", exc)
        return 2
    except PropagationError as exc:
        logger.error("Propagation failed: %s", exc)
        return 1

    logger.info("Total wall time: %.1f s", time.time() - start)
    return 0


if __name__ == '__main__':
    sys.exit(main())
