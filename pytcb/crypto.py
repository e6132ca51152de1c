# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

import datetime
from pathlib import Path
from typing import List, Optional, Tuple, Union
from uuid import uuid4

from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec, padding, rsa
from cryptography.hazmat.primitives.asymmetric.ec import (
    EllipticCurvePrivateKey,
    EllipticCurvePublicKey,
)
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey, RSAPublicKey
from cryptography.hazmat.primitives.serialization import (
    Encoding,
    NoEncryption,
    PrivateFormat,
    PublicFormat,
    load_pem_private_key,
)
from cryptography.x509.oid import NameOID

RECOMMENDED_RSA_PUBLIC_EXPONENT = 65537

REGISTERED_EC_CURVES = {
    "P-256": ec.SECP256R1,
    "P-384": ec.SECP384R1,
    "P-521": ec.SECP521R1,
}

Pem = str

PrivateKey = Union[RSAPrivateKey, EllipticCurvePrivateKey, Ed25519PrivateKey]
PublicKey = Union[RSAPublicKey, EllipticCurvePublicKey, Ed25519PublicKey]

PEM_CERTIFICATE_END = b"-----END CERTIFICATE-----"


def private_key_to_pem(priv: PrivateKey) -> Pem:
    return priv.private_bytes(
        Encoding.PEM, PrivateFormat.PKCS8, NoEncryption()
    ).decode("ascii")


def public_key_to_pem(priv: PrivateKey) -> Pem:
    return (
        priv.public_key()
        .public_bytes(Encoding.PEM, PublicFormat.SubjectPublicKeyInfo)
        .decode("ascii")
    )


def generate_rsa_keypair(key_size: int) -> Tuple[Pem, Pem]:
    priv = rsa.generate_private_key(
        public_exponent=RECOMMENDED_RSA_PUBLIC_EXPONENT,
        key_size=key_size,
    )
    return private_key_to_pem(priv), public_key_to_pem(priv)


def generate_ec_keypair(curve: str) -> Tuple[Pem, Pem]:
    if curve not in REGISTERED_EC_CURVES:
        raise NotImplementedError(f"Unsupported curve: {curve}")
    priv = ec.generate_private_key(curve=REGISTERED_EC_CURVES[curve]())
    return private_key_to_pem(priv), public_key_to_pem(priv)


def generate_ed25519_keypair() -> Tuple[Pem, Pem]:
    priv = Ed25519PrivateKey.generate()
    return private_key_to_pem(priv), public_key_to_pem(priv)


def generate_keypair(
    kty: str,
    *,
    rsa_key_size: Optional[int] = None,
    ec_curve: Optional[str] = None,
) -> Tuple[str, str]:
    if kty == "rsa":
        return generate_rsa_keypair(rsa_key_size or 2048)
    elif kty == "ec":
        return generate_ec_keypair(ec_curve or "P-256")
    elif kty == "ed25519":
        return generate_ed25519_keypair()
    else:
        raise ValueError(f"Unsupported key type: {kty}")


def load_private_key_pem(pem: Pem) -> PrivateKey:
    key = load_pem_private_key(pem.encode("ascii"), None)
    if not isinstance(
        key, (RSAPrivateKey, EllipticCurvePrivateKey, Ed25519PrivateKey)
    ):
        raise NotImplementedError(f"unsupported key type: {type(key)}")
    return key


def load_private_key(key_path: Path) -> Pem:
    with open(key_path) as f:
        return f.read()


def certificate_builder(
    public_key: PublicKey,
    *,
    cn: Optional[str] = None,
    issuer: Optional[x509.Certificate] = None,
    not_before: datetime.datetime,
    not_after: datetime.datetime,
    ca: bool = False,
    path_length: Optional[int] = None,
) -> x509.CertificateBuilder:
    """
    Prepare an unsigned certificate. Without an issuer, the certificate is
    self-signed: its issuer name is its own subject name.
    """
    if not cn:
        cn = str(uuid4())

    subject_name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, cn)])
    issuer_name = issuer.subject if issuer is not None else subject_name

    builder = (
        x509.CertificateBuilder()
        .subject_name(subject_name)
        .issuer_name(issuer_name)
        .public_key(public_key)
        .serial_number(x509.random_serial_number())
        .not_valid_before(not_before)
        .not_valid_after(not_after)
        .add_extension(
            x509.KeyUsage(
                digital_signature=not ca,
                content_commitment=False,
                key_encipherment=False,
                data_encipherment=False,
                key_agreement=False,
                key_cert_sign=ca,
                crl_sign=ca,
                encipher_only=False,
                decipher_only=False,
            ),
            critical=True,
        )
        .add_extension(
            x509.BasicConstraints(ca=ca, path_length=path_length if ca else None),
            critical=True,
        )
        .add_extension(
            x509.SubjectKeyIdentifier.from_public_key(public_key), critical=False
        )
    )
    if issuer is not None:
        builder = builder.add_extension(
            x509.AuthorityKeyIdentifier.from_issuer_public_key(
                issuer.public_key()  # type: ignore[arg-type]
            ),
            critical=False,
        )
    return builder


def sign_certificate(
    builder: x509.CertificateBuilder, issuer_key: PrivateKey
) -> x509.Certificate:
    if isinstance(issuer_key, Ed25519PrivateKey):
        hash_alg = None
    else:
        hash_alg = hashes.SHA256()
    return builder.sign(issuer_key, hash_alg)


def get_cert_info(cert: x509.Certificate) -> dict:
    cn = cert.subject.get_attributes_for_oid(NameOID.COMMON_NAME)[0].value
    issuer_cn = cert.issuer.get_attributes_for_oid(NameOID.COMMON_NAME)[0].value
    return {
        "cn": cn,
        "issuer": issuer_cn,
        "serial": format(cert.serial_number, "x"),
        "not_before": cert.not_valid_before_utc.isoformat(),
        "not_after": cert.not_valid_after_utc.isoformat(),
    }


def get_cert_fingerprint(cert: x509.Certificate) -> str:
    return cert.fingerprint(hashes.SHA256()).hex()


def cert_to_pem(cert: x509.Certificate) -> Pem:
    return cert.public_bytes(Encoding.PEM).decode("ascii")


def cert_to_der(cert: x509.Certificate) -> bytes:
    return cert.public_bytes(Encoding.DER)


def parse_pem_bundle(data: bytes) -> List[x509.Certificate]:
    """
    Split a PEM bag of certificates into individual certificates.
    """
    if PEM_CERTIFICATE_END not in data:
        raise ValueError("No PEM certificate found in bundle")
    return x509.load_pem_x509_certificates(data)


def default_algorithm_for_key(key) -> str:
    """
    Get the default algorithm for a given key, based on its
    type and parameters.
    """

    if isinstance(key, (RSAPublicKey, RSAPrivateKey)):
        return "PS256"

    elif isinstance(key, (EllipticCurvePublicKey, EllipticCurvePrivateKey)):
        if isinstance(key.curve, ec.SECP256R1):
            return "ES256"
        elif isinstance(key.curve, ec.SECP384R1):
            return "ES384"
        elif isinstance(key.curve, ec.SECP521R1):
            return "ES512"
        else:
            raise NotImplementedError("unsupported curve")

    elif isinstance(key, (Ed25519PublicKey, Ed25519PrivateKey)):
        return "EdDSA"
    else:
        raise NotImplementedError(f"unsupported key type: {type(key)}")


_HASHES = {
    "PS256": hashes.SHA256,
    "ES256": hashes.SHA256,
    "ES384": hashes.SHA384,
    "ES512": hashes.SHA512,
}


def _pss(hash_alg: hashes.HashAlgorithm) -> padding.PSS:
    return padding.PSS(mgf=padding.MGF1(hash_alg), salt_length=padding.PSS.DIGEST_LENGTH)


def sign_payload(key: PrivateKey, data: bytes) -> bytes:
    """
    Sign `data` with the default algorithm for `key`: RSA-PSS, ECDSA with the
    curve's hash (DER-encoded signature), or Ed25519.
    """
    alg = default_algorithm_for_key(key)
    if isinstance(key, RSAPrivateKey):
        hash_alg = _HASHES[alg]()
        return key.sign(data, _pss(hash_alg), hash_alg)
    elif isinstance(key, EllipticCurvePrivateKey):
        return key.sign(data, ec.ECDSA(_HASHES[alg]()))
    else:
        return key.sign(data)


def verify_payload(key: PublicKey, signature: bytes, data: bytes) -> None:
    """
    Raises cryptography.exceptions.InvalidSignature if `signature` is not a
    valid signature of `data` under `key`.
    """
    alg = default_algorithm_for_key(key)
    if isinstance(key, RSAPublicKey):
        hash_alg = _HASHES[alg]()
        key.verify(signature, data, _pss(hash_alg), hash_alg)
    elif isinstance(key, EllipticCurvePublicKey):
        key.verify(signature, data, ec.ECDSA(_HASHES[alg]()))
    elif isinstance(key, Ed25519PublicKey):
        key.verify(signature, data)
    else:
        raise InvalidSignature(f"unsupported key type: {type(key)}")

