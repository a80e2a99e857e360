"""Command entry point: parse arguments, set up logging and run the operation."""

from __future__ import annotations

import logging
import sys

from .cli import Operation, UsageError, parse_and_validate, usage_text
from .migration import run_migration
from .rmi import run_rmi

log = logging.getLogger("parallax")

_FORMAT = 'time="%(asctime)s" level=%(levelname)s msg="%(message)s"'
_DATEFMT = "%Y-%m-%dT%H:%M:%S%z"


def configure_logging(level: int) -> None:
    """Send log records at ``level`` and above to standard output."""
    logging.basicConfig(
        stream=sys.stdout,
        level=level,
        format=_FORMAT,
        datefmt=_DATEFMT,
        force=True,
    )


def main(argv=None) -> int:
    """Run the command; returns the process exit status."""
    try:
        cli = parse_and_validate(argv)
    except UsageError as err:
        print(err, file=sys.stderr)
        print(usage_text(), end="", file=sys.stderr)
        return 2

    configure_logging(cli.log_level)

    if cli.op is Operation.MIGRATE:
        try:
            run_migration(cli.config)
        except Exception as err:  # any failure ends the run
            log.critical("Migration failed for image '%s': %s", cli.config.image, err)
            return 1
    elif cli.op is Operation.RMI:
        try:
            run_rmi(cli.config)
        except Exception as err:  # any failure ends the run
            log.critical("RMI operation failed for image '%s': %s", cli.config.image, err)
            return 1
    else:
        raise RuntimeError("Unknown operation. We should never reach here!")
    return 0