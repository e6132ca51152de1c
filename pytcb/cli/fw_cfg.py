# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

import argparse
import datetime
from pathlib import Path

from ..endorsement import decode_record
from ..eventlog import write_fw_cfg
from ..verify import StaticTrustStore, verify


def export_fw_cfg(endorsement: Path, root_certs: Path, out_dir: Path):
    """
    Verify an endorsement and write its event log as fw_cfg files, one per
    event, for the VMM to pass to the firmware.
    """
    record = decode_record(endorsement.read_bytes())
    facts = verify(
        record,
        StaticTrustStore.load(root_certs),
        now=datetime.datetime.now(datetime.timezone.utc),
    )
    write_fw_cfg(facts.events, out_dir)
    print(f"Wrote {len(facts.events)} event(s) to {out_dir}")


def cli(fn):
    parser = fn(description=export_fw_cfg.__doc__)
    parser.add_argument("endorsement", type=Path, help="Path to endorsement file")
    parser.add_argument("--root-certs", type=Path, required=True)
    parser.add_argument("--out-dir", type=Path, required=True)

    parser.set_defaults(
        func=lambda args: export_fw_cfg(args.endorsement, args.root_certs, args.out_dir)
    )
    return parser


if __name__ == "__main__":
    parser = cli(argparse.ArgumentParser)
    args = parser.parse_args()
    args.func(args)
