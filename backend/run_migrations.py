from __future__ import annotations

import argparse
import logging
import os
import sys
from typing import List, Optional

from bootstrap import (
    MIGRATION_MARKER_KEY,
    clear_bootstrap_marker,
    has_bootstrap_marker,
    run_bootstrap_migrations,
    set_bootstrap_marker,
)

logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Create the presentation booking schema.")
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument(
        "--force",
        action="store_true",
        help="Create missing tables even when the schema marker is already set.",
    )
    mode.add_argument(
        "--reset-marker",
        action="store_true",
        help=f"Remove the `{MIGRATION_MARKER_KEY}` marker and exit.",
    )
    mode.add_argument(
        "--check",
        action="store_true",
        help="Exit 0 when the schema marker is set, 1 otherwise. Changes nothing.",
    )
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)

    if args.check:
        ready = has_bootstrap_marker()
        logger.info("Schema marker `%s` is %s.", MIGRATION_MARKER_KEY, "set" if ready else "missing")
        return 0 if ready else 1

    if args.reset_marker:
        removed = clear_bootstrap_marker()
        logger.info("Schema marker `%s` %s.", MIGRATION_MARKER_KEY, "removed" if removed else "was not set")
        return 0

    if has_bootstrap_marker() and not args.force:
        logger.info("Schema already bootstrapped; pass --force to create missing tables again.")
        return 0

    run_bootstrap_migrations()
    set_bootstrap_marker()
    logger.info("Presentation schema ready; marker `%s` recorded.", MIGRATION_MARKER_KEY)
    return 0


if __name__ == "__main__":
    sys.exit(main())
