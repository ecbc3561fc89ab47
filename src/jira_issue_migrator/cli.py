"""
Command-line interface for the Jira issue migration tool.
"""

from __future__ import annotations

import argparse
import logging
import sys

from .config import MigrationConfig
from .exceptions import MigrationError
from .migrator import DEFAULT_BATCH_SIZE, JiraIssueMigrator
from .utils import setup_logging

logger: logging.Logger = logging.getLogger(__name__)


def _positive_int(value: str) -> int:
    number = int(value)
    if number < 0:
        msg = f"must not be negative: {value}"
        raise argparse.ArgumentTypeError(msg)
    return number


def _key_list(value: str) -> list[str]:
    keys = [key.strip() for key in value.split(",") if key.strip()]
    if not keys:
        msg = "expected a comma-separated list of issue keys"
        raise argparse.ArgumentTypeError(msg)
    return keys


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Migrate issues from a source Jira project to a target Jira project",
        epilog="Credentials, sites, projects and custom field ids are read from the environment.",
    )

    _ = parser.add_argument("--key", "-k", type=_key_list, help="Comma-separated source issue keys (e.g. ME-1,ME-2)")
    _ = parser.add_argument("--start", "-s", type=_positive_int, help="Index of the first source issue to process")
    _ = parser.add_argument("--end", "-e", type=_positive_int, help="Index to stop before (requires --start)")
    _ = parser.add_argument("--batches", "-b", type=_positive_int, help="Number of batches to process (requires --start)")
    _ = parser.add_argument(
        "--batch-size", type=_positive_int, default=DEFAULT_BATCH_SIZE, help=f"Page size (default: {DEFAULT_BATCH_SIZE})"
    )
    _ = parser.add_argument(
        "--skip-existing", action="store_true", help="Do not update issues that already exist in the target"
    )
    _ = parser.add_argument(
        "--verbose", "-v", action="count", default=0, help="Console verbosity (-v for info, -vv for debug)"
    )

    return parser


def parse_arguments(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments and check that exactly one run mode is selected."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.key is not None:
        if args.start is not None or args.end is not None or args.batches is not None:
            parser.error("--key cannot be combined with --start, --end or --batches")
    elif args.start is None:
        parser.error("select a run mode: --key, or --start with optional --end or --batches")
    elif args.end is not None and args.batches is not None:
        parser.error("--end and --batches are mutually exclusive")
    elif args.end is not None and args.end <= args.start:
        parser.error("--end must be greater than --start")
    if args.batch_size == 0:
        parser.error("--batch-size must be at least 1")

    return args


def main(argv: list[str] | None = None) -> None:
    """Main entry point."""
    args = parse_arguments(argv)

    setup_logging(verbosity=args.verbose)

    try:
        config = MigrationConfig.from_env()
        migrator = JiraIssueMigrator.from_config(config, skip_existing=args.skip_existing)
    except MigrationError:
        logger.exception("Failed to initialize migration")
        sys.exit(1)

    if args.key is not None:
        counters = migrator.sync_issues(keys=args.key, batch_size=args.batch_size)
    else:
        counters = migrator.sync_issues(
            start=args.start, end=args.end, batches=args.batches, batch_size=args.batch_size
        )

    sys.exit(0 if counters.errors == 0 else 1)
