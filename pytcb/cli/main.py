# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

import argparse
import sys

from loguru import logger as LOG

from ..errors import EndorsementError
from . import create_ca, endorse, fw_cfg, pretty_endorsement, rotate, validate

COMMANDS = [
    ("create-ca", create_ca),
    ("rotate", rotate),
    ("endorse", endorse),
    ("verify", validate),
    ("pretty", pretty_endorsement),
    ("fw-cfg", fw_cfg),
]


def configure_logging(verbose: bool):
    LOG.remove()
    LOG.add(sys.stderr, level="DEBUG" if verbose else "INFO")


def main(argv=None):
    parser = argparse.ArgumentParser()
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Enable debug logging"
    )
    sub = parser.add_subparsers(
        help="""Choose one of the available commands to run.
                Use the --help flag to see the options for each command.
                For instance 'pytcb endorse --help' will show the options for the endorse command.
                """,
    )
    for name, module in COMMANDS:
        getattr(module, "cli")(lambda *args, **kw: sub.add_parser(name, *args, **kw))
    args = parser.parse_args(argv)
    configure_logging(args.verbose)
    if not hasattr(args, "func"):
        parser.print_usage()
        return

    try:
        args.func(args)
    except EndorsementError as e:
        LOG.error(f"{type(e).__name__}: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
