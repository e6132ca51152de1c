# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.
import argparse
from pathlib import Path

from ..endorsement import decode_record


def prettyprint_endorsement(endorsement_path: Path):
    """
    Pretty-print an endorsement file. Nothing is verified.
    """
    with open(endorsement_path, "rb") as f:
        buffer = f.read()

    return decode_record(buffer).pretty()


def cli(fn):
    parser = fn(description=prettyprint_endorsement.__doc__)
    parser.add_argument("endorsement", type=Path, help="Path to endorsement file")

    def cmd(args):
        print(prettyprint_endorsement(args.endorsement))

    parser.set_defaults(func=cmd)
    return parser


if __name__ == "__main__":
    parser = cli(argparse.ArgumentParser)
    args = parser.parse_args()
    args.func(args)
