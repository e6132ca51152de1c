# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

import datetime

import pytest
from cryptography import x509
from cryptography.exceptions import InvalidSignature

from pytcb import crypto
from pytcb.kms import InMemoryKeyManager


@pytest.mark.parametrize(
    "kty, params, algorithm",
    [
        ("rsa", {}, "PS256"),
        ("ec", {"ec_curve": "P-256"}, "ES256"),
        ("ec", {"ec_curve": "P-384"}, "ES384"),
        ("ec", {"ec_curve": "P-521"}, "ES512"),
        ("ed25519", {}, "EdDSA"),
    ],
)
def test_sign_and_verify(kty: str, params: dict, algorithm: str):
    private_pem, public_pem = crypto.generate_keypair(kty, **params)
    key = crypto.load_private_key_pem(private_pem)
    assert crypto.default_algorithm_for_key(key) == algorithm
    assert crypto.public_key_to_pem(key) == public_pem

    signature = crypto.sign_payload(key, b"payload")
    crypto.verify_payload(key.public_key(), signature, b"payload")
    with pytest.raises(InvalidSignature):
        crypto.verify_payload(key.public_key(), signature, b"other payload")


def test_unsupported_key_types():
    with pytest.raises(ValueError):
        crypto.generate_keypair("dsa")
    with pytest.raises(NotImplementedError):
        crypto.generate_keypair("ec", ec_curve="P-192")


def test_certificate_builder():
    key = crypto.load_private_key_pem(crypto.generate_keypair("ec")[0])
    now = datetime.datetime.now(datetime.timezone.utc)
    builder = crypto.certificate_builder(
        key.public_key(),
        cn="Test root",
        not_before=now,
        not_after=now + datetime.timedelta(days=1),
        ca=True,
        path_length=1,
    )
    cert = crypto.sign_certificate(builder, key)

    constraints = cert.extensions.get_extension_for_class(x509.BasicConstraints)
    assert constraints.value.ca and constraints.value.path_length == 1
    usage = cert.extensions.get_extension_for_class(x509.KeyUsage).value
    assert usage.key_cert_sign and not usage.digital_signature
    assert crypto.get_cert_info(cert)["cn"] == "Test root"
    assert crypto.get_cert_info(cert)["issuer"] == "Test root"
    cert.verify_directly_issued_by(cert)

    assert crypto.parse_pem_bundle(crypto.cert_to_pem(cert).encode()) == [cert]
    assert len(crypto.get_cert_fingerprint(cert)) == 64


def test_parse_pem_bundle():
    with pytest.raises(ValueError):
        crypto.parse_pem_bundle(b"no certificates here")


def test_in_memory_key_manager():
    key_manager = InMemoryKeyManager()
    public_key = key_manager.create_key("v1", kty="ec")

    assert key_manager.has_key("v1")
    assert not key_manager.has_key("v2")
    signature = key_manager.sign("v1", b"payload")
    crypto.verify_payload(public_key, signature, b"payload")

    with pytest.raises(ValueError):
        key_manager.create_key("v1", kty="ec")
    with pytest.raises(KeyError):
        key_manager.sign("v2", b"payload")
