# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

import hashlib
from dataclasses import dataclass
from typing import Callable

import cbor2

MEASUREMENT_LABEL = "pytcb-firmware-digest/v1"


@dataclass(frozen=True)
class LaunchConfig:
    """
    The launch parameters a firmware measurement depends on. The default is a
    VM launched with a single VMSA and a 2MiB firmware region.
    """

    firmware_mib: int = 2
    vmsa_count: int = 1

    def as_dict(self) -> dict:
        return {
            "firmwareMiB": self.firmware_mib,
            "vmsaCount": self.vmsa_count,
        }


@dataclass(frozen=True)
class Measurement:
    digest: bytes
    launch: LaunchConfig = LaunchConfig()

    def __post_init__(self):
        if not self.digest:
            raise ValueError("Measurement digest must not be empty")

    def hex(self) -> str:
        return self.digest.hex()


MeasureFn = Callable[[bytes, LaunchConfig], Measurement]


def sha384_measure(firmware: bytes, launch: LaunchConfig = LaunchConfig()) -> Measurement:
    """
    A SHA-384 digest over the launch configuration and the raw firmware image.

    This is not a SEV-SNP launch measurement. Callers that need the hardware
    launch digest supply their own MeasureFn.
    """
    h = hashlib.sha384()
    h.update(cbor2.dumps([MEASUREMENT_LABEL, launch.as_dict()], canonical=True))
    h.update(firmware)
    return Measurement(h.digest(), launch)
