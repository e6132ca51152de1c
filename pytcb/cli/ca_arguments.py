# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

import argparse
import os
from pathlib import Path
from typing import Tuple

from ..ca import CertificateAuthority
from ..kms import InMemoryKeyManager

CA_DIR_ENV = "PYTCB_CA_DIR"
CA_KEYS_DIRNAME = "keys"


def add_ca_arguments(parser: argparse.ArgumentParser):
    """
    Add the --ca-dir argument, defaulting to the PYTCB_CA_DIR environment
    variable when it is set.
    """
    default = os.environ.get(CA_DIR_ENV)
    parser.add_argument(
        "--ca-dir",
        type=Path,
        default=Path(default) if default else None,
        required=default is None,
        help=f"Directory holding the certificate authority (default: ${CA_DIR_ENV})",
    )


def load_ca(ca_dir: Path) -> Tuple[CertificateAuthority, InMemoryKeyManager]:
    key_manager = InMemoryKeyManager.load(ca_dir / CA_KEYS_DIRNAME)
    return CertificateAuthority.load(ca_dir, key_manager), key_manager


def save_ca(ca_dir: Path, ca: CertificateAuthority, key_manager: InMemoryKeyManager):
    key_manager.save(ca_dir / CA_KEYS_DIRNAME)
    ca.save(ca_dir)
