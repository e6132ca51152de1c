# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

import pytest

from pytcb.measure import LaunchConfig, Measurement, sha384_measure


def test_sha384_measure(firmware: bytes):
    measurement = sha384_measure(firmware)
    assert len(measurement.digest) == 48
    assert measurement.launch == LaunchConfig()
    assert measurement == sha384_measure(firmware, LaunchConfig())
    assert measurement.hex() == measurement.digest.hex()


def test_measurement_depends_on_launch(firmware: bytes):
    default = sha384_measure(firmware)
    assert sha384_measure(firmware, LaunchConfig(firmware_mib=4)) != default
    assert sha384_measure(firmware, LaunchConfig(vmsa_count=2)) != default


def test_measurement_depends_on_firmware(firmware: bytes):
    assert sha384_measure(firmware) != sha384_measure(firmware[:-1])


def test_empty_measurement():
    with pytest.raises(ValueError):
        Measurement(b"")
