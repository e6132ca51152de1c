# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

import argparse
from pathlib import Path
from typing import List

from loguru import logger as LOG

from ..endorsement import SEV_SNP, encode_record
from ..eventlog import EventLog
from ..measure import LaunchConfig, sha384_measure
from ..sign import Signer
from .ca_arguments import add_ca_arguments, load_ca

ENDORSEMENT_FILENAME = "endorsement.cbor"


def endorse(
    uefi: Path,
    out_dir: Path,
    commit: str,
    capabilities: List[str],
    event_paths: List[Path],
    launch: LaunchConfig,
    ca_dir: Path,
) -> Path:
    """
    Endorse a UEFI firmware image with the primary signing key.
    """
    ca, key_manager = load_ca(ca_dir)
    measurement = sha384_measure(uefi.read_bytes(), launch)
    events = EventLog(tuple(p.read_bytes() for p in event_paths))
    LOG.debug(f"Measured {uefi} as {measurement.hex()}")

    record = Signer(ca, key_manager).issue(measurement, commit, capabilities, events)

    out_dir.mkdir(parents=True, exist_ok=True)
    out_path = out_dir / ENDORSEMENT_FILENAME
    print(f"Writing {out_path}")
    out_path.write_bytes(encode_record(record))
    return out_path


def cli(fn):
    parser = fn(description=endorse.__doc__)
    add_ca_arguments(parser)
    parser.add_argument("--uefi", type=Path, required=True, help="Firmware image")
    parser.add_argument(
        "--out-dir", "--out_dir", dest="out_dir", type=Path, required=True
    )
    parser.add_argument(
        "--commit", required=True, help="Source commit the firmware was built from"
    )
    parser.add_argument(
        "--add-snp",
        "--add_snp",
        dest="add_snp",
        action="store_true",
        help=f"Declare the {SEV_SNP} capability",
    )
    parser.add_argument(
        "--capability",
        action="append",
        default=[],
        help="Additional capability flag (repeatable)",
    )
    parser.add_argument(
        "--event",
        type=Path,
        action="append",
        default=[],
        help="File holding one SP 800-155 event, in log order (repeatable)",
    )
    parser.add_argument("--firmware-mib", type=int, default=LaunchConfig.firmware_mib)
    parser.add_argument("--vmsa-count", type=int, default=LaunchConfig.vmsa_count)

    def cmd(args):
        capabilities = list(args.capability)
        if args.add_snp:
            capabilities.append(SEV_SNP)
        endorse(
            args.uefi,
            args.out_dir,
            args.commit,
            capabilities,
            args.event,
            LaunchConfig(args.firmware_mib, args.vmsa_count),
            args.ca_dir,
        )

    parser.set_defaults(func=cmd)
    return parser


if __name__ == "__main__":
    parser = cli(argparse.ArgumentParser)
    args = parser.parse_args()
    args.func(args)
