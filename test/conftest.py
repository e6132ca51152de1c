# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

import datetime

import pytest

from .infra.x5chain_certificate_authority import X5ChainCertificateAuthority


@pytest.fixture
def now() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc).replace(microsecond=0)


@pytest.fixture
def trusted_ca(now) -> X5ChainCertificateAuthority:
    return X5ChainCertificateAuthority(now)


@pytest.fixture
def firmware() -> bytes:
    return b"OVMF" + bytes(range(256)) * 16
