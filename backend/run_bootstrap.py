from __future__ import annotations

import argparse
import logging
import sys

from bootstrap import run_bootstrap

logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
logger = logging.getLogger(__name__)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Create tables and seed the admin account if missing.")
    parser.add_argument(
        "--skip-admin",
        action="store_true",
        help="Only create tables; do not seed the default admin.",
    )
    return parser.parse_args()


def main() -> int:
    args = parse_args()
    logger.info("Running backend bootstrap...")
    run_bootstrap(seed_admin=not args.skip_admin)
    logger.info("Bootstrap completed.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
