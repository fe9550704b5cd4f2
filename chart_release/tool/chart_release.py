"""Command line tool for releasing charts from a multi-chart Helm repository."""

import argparse
import asyncio
import logging
import sys
import traceback

from chart_release.exceptions import ReleaseException
from . import commit, index, release

_LOGGER = logging.getLogger(__name__)


def _make_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Command line utility for releasing charts to GitHub.",
    )
    parser.add_argument(
        "--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
    )

    subparsers = parser.add_subparsers(dest="command", help="Command", required=True)

    release.ReleaseAction.register(subparsers)
    index.IndexAction.register(subparsers)
    commit.CommitAction.register(subparsers)
    return parser


def main(argv: list[str] | None = None) -> None:
    """Chart-release command line tool main entry point."""
    parser = _make_parser()
    args = parser.parse_args(argv)

    if args.log_level:
        logging.basicConfig(level=args.log_level)

    action = args.cls()
    try:
        asyncio.run(action.run(**vars(args)))
    except ReleaseException as err:
        if args.log_level == "DEBUG":
            traceback.print_exc(file=sys.stderr)
        print("chart-release error: ", err, file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
