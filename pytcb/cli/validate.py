# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

import argparse
import datetime
import sys
from pathlib import Path
from typing import List, Optional

from loguru import logger as LOG

from ..endorsement import decode_record
from ..measure import LaunchConfig
from ..verify import StaticTrustStore, VerifiedFacts, verify


def parse_time(value: str) -> datetime.datetime:
    now = datetime.datetime.fromisoformat(value)
    if now.tzinfo is None:
        now = now.replace(tzinfo=datetime.timezone.utc)
    return now


def validate_endorsement(
    endorsement: Path,
    root_certs: Path,
    uefi: Optional[Path],
    now: Optional[datetime.datetime],
    launch: LaunchConfig,
    required_capabilities: List[str],
) -> VerifiedFacts:
    """
    Verify an endorsement against trusted roots and, optionally, a firmware image.
    """
    if now is None:
        now = datetime.datetime.now(datetime.timezone.utc)
    roots = StaticTrustStore.load(root_certs)
    record = decode_record(endorsement.read_bytes())
    firmware = uefi.read_bytes() if uefi is not None else None

    facts = verify(record, roots, firmware, now=now, launch=launch)

    missing = [c for c in required_capabilities if not facts.has_capability(c)]
    if missing:
        LOG.error(f"Endorsement lacks required capabilities: {', '.join(missing)}")
        sys.exit(1)

    if facts.firmware_verified:
        print(f"Endorsement is valid for {uefi}")
    else:
        print("Endorsement chain and signature are valid (firmware not checked)")
    print(f"  measurement:  {facts.measurement.hex()}")
    print(f"  commit:       {facts.commit}")
    print(f"  capabilities: {', '.join(sorted(facts.capabilities)) or '-'}")
    print(f"  events:       {len(facts.events)}")
    return facts


def cli(fn):
    parser = fn(description=validate_endorsement.__doc__)
    parser.add_argument("endorsement", type=Path, help="Path to endorsement file")
    parser.add_argument(
        "--root-certs",
        type=Path,
        required=True,
        help="PEM bundle, or directory of PEM files, of trusted root certificates",
    )
    parser.add_argument("--uefi", type=Path, help="Firmware image to check against")
    parser.add_argument(
        "--now",
        type=parse_time,
        help="Verification time in ISO 8601 (default: current time)",
    )
    parser.add_argument("--firmware-mib", type=int, default=LaunchConfig.firmware_mib)
    parser.add_argument("--vmsa-count", type=int, default=LaunchConfig.vmsa_count)
    parser.add_argument(
        "--require-capability",
        action="append",
        default=[],
        help="Reject the endorsement unless it has this capability (repeatable)",
    )

    def cmd(args):
        validate_endorsement(
            args.endorsement,
            args.root_certs,
            args.uefi,
            args.now,
            LaunchConfig(args.firmware_mib, args.vmsa_count),
            args.require_capability,
        )

    parser.set_defaults(func=cmd)
    return parser


if __name__ == "__main__":
    parser = cli(argparse.ArgumentParser)
    args = parser.parse_args()
    args.func(args)
