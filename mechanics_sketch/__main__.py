"""Command line interface: ``python -m mechanics_sketch --example NAME``"""

import argparse
import logging
import sys

from .config import SimulationConfig
from .errors import MechanicsError
from .examples import EXAMPLES, run_example


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        prog="mechanics_sketch",
        description="Animate mechanical systems derived from their Lagrangians",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Animate the triple pendulum
  python -m mechanics_sketch --example triple_pendulum

  # Integrate 20 s without a window and report energy drift
  python -m mechanics_sketch --example double_pendulum --headless --time 20

  # Decouple simulation from the frame rate
  python -m mechanics_sketch --example ellipse --fixed-step 0.005
        """,
    )
    parser.add_argument("--example", choices=sorted(EXAMPLES), default="double_pendulum",
                        help="Example scene to run (default: double_pendulum)")
    parser.add_argument("--headless", action="store_true",
                        help="Integrate with a simulated clock instead of animating")
    parser.add_argument("--time", type=float, default=10.0,
                        help="Simulated seconds when headless (default: 10.0)")
    parser.add_argument("--rtol", type=float, default=1e-9, help="Relative tolerance")
    parser.add_argument("--atol", type=float, default=1e-12, help="Absolute tolerance")
    parser.add_argument("--fixed-step", type=float, default=None,
                        help="Fixed simulation timestep (default: follow the wall clock)")
    parser.add_argument("--verbose", action="store_true", help="Log build and step details")

    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING,
                        format="%(levelname)s %(name)s: %(message)s")

    config = SimulationConfig(rtol=args.rtol, atol=args.atol, fixed_timestep=args.fixed_step)
    try:
        run_example(args.example, duration=args.time, headless=args.headless, config=config)
    except MechanicsError as exc:
        print(f"Simulation failed: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
