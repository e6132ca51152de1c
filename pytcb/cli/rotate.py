# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

import argparse
import datetime
from pathlib import Path
from typing import Optional

from ..ca import KeyVersion, ValidityWindow
from .ca_arguments import add_ca_arguments, load_ca, save_ca


def rotate(
    ca_dir: Path,
    version: str,
    common_name: Optional[str],
    key_type: str,
    days: int,
):
    """
    Create a new signing key, certify it and make it the primary signing key.
    Endorsements issued under the previous key stay valid.
    """
    ca, key_manager = load_ca(ca_dir)
    now = datetime.datetime.now(datetime.timezone.utc)

    ca.register_key(KeyVersion(version, common_name or version))
    key_manager.create_key(version, kty=key_type)
    ca.issue_certificate(version, ValidityWindow.starting(now, days))
    ca.set_primary_signing_key(version)

    save_ca(ca_dir, ca, key_manager)
    print(f"Primary signing key is now {version}")


def cli(fn):
    parser = fn(description=rotate.__doc__)
    add_ca_arguments(parser)
    parser.add_argument("--version", required=True, help="New key version name")
    parser.add_argument("--common-name", help="Certificate common name")
    parser.add_argument(
        "--key-type", choices=["rsa", "ec", "ed25519"], default="rsa"
    )
    parser.add_argument("--days", type=int, default=365)

    parser.set_defaults(
        func=lambda args: rotate(
            args.ca_dir, args.version, args.common_name, args.key_type, args.days
        )
    )
    return parser


if __name__ == "__main__":
    parser = cli(argparse.ArgumentParser)
    args = parser.parse_args()
    args.func(args)
