# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

import argparse
import datetime
from pathlib import Path

from ..ca import CertificateAuthority, KeyRole, KeyVersion, ValidityWindow
from ..kms import InMemoryKeyManager
from .ca_arguments import save_ca

DEFAULT_ROOT_VERSION = "keyRings/tcb-ring/cryptoKeys/tcb-root/cryptoKeyVersions/1"
DEFAULT_SIGNER_VERSION = (
    "keyRings/tcb-ring/cryptoKeys/uefi-signer/cryptoKeyVersions/1"
)


def create_ca(
    out_dir: Path,
    root_version: str,
    root_cn: str,
    signer_version: str,
    signer_cn: str,
    key_type: str,
    days: int,
):
    """
    Create a certificate authority with a root key and a primary signing key.
    """
    now = datetime.datetime.now(datetime.timezone.utc)
    key_manager = InMemoryKeyManager()
    ca = CertificateAuthority.create(
        key_manager,
        KeyVersion(root_version, root_cn),
        ValidityWindow.starting(now, days),
        kty=key_type,
    )

    key_manager.create_key(signer_version, kty=key_type)
    ca.register_key(KeyVersion(signer_version, signer_cn))
    ca.issue_certificate(signer_version, ValidityWindow.starting(now, days))
    ca.set_primary_signing_key(signer_version)

    save_ca(out_dir, ca, key_manager)
    print(f"Writing {out_dir}")


def cli(fn):
    parser = fn(description=create_ca.__doc__)
    parser.add_argument("--out-dir", type=Path, required=True)
    parser.add_argument("--root-version", default=DEFAULT_ROOT_VERSION)
    parser.add_argument("--root-cn", default="tcb-root")
    parser.add_argument("--signer-version", default=DEFAULT_SIGNER_VERSION)
    parser.add_argument("--signer-cn", default="uefi-signer")
    parser.add_argument(
        "--key-type", choices=["rsa", "ec", "ed25519"], default="rsa"
    )
    parser.add_argument(
        "--days", type=int, default=365, help="Certificate validity in days"
    )

    parser.set_defaults(
        func=lambda args: create_ca(
            args.out_dir,
            args.root_version,
            args.root_cn,
            args.signer_version,
            args.signer_cn,
            args.key_type,
            args.days,
        )
    )
    return parser


if __name__ == "__main__":
    parser = cli(argparse.ArgumentParser)
    args = parser.parse_args()
    args.func(args)
