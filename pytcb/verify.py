# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

import datetime
import hmac
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import FrozenSet, Iterable, List, Optional, Union

from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.serialization import Encoding
from cryptography.x509 import load_der_x509_certificate
from loguru import logger as LOG

from . import crypto, eventlog
from .ca import MAX_CHAIN_LENGTH
from .endorsement import EndorsementRecord, decode_record
from .errors import (
    ChainInvalid,
    InvalidEventLog,
    MeasurementMismatch,
    SignatureInvalid,
    TrustStoreError,
    VerificationError,
)
from .eventlog import EventLog
from .measure import LaunchConfig, MeasureFn, sha384_measure


@dataclass(frozen=True)
class VerifiedFacts:
    """
    The fields of an endorsement that verification vouches for.

    firmware_verified is False when no firmware was supplied: only the chain
    and the signature were checked, and nothing is known about which image
    the measurement belongs to.
    """

    measurement: bytes
    commit: str
    capabilities: FrozenSet[str]
    events: EventLog
    firmware_verified: bool

    def has_capability(self, flag: str) -> bool:
        return flag in self.capabilities


class TrustStore(ABC):
    @property
    @abstractmethod
    def roots(self) -> List[x509.Certificate]:
        pass

    def find_issuer(self, cert: x509.Certificate) -> Optional[x509.Certificate]:
        """
        Return the trusted root that issued (or is identical to) `cert`.
        """
        for root in self.roots:
            if _directly_issued_by(cert, root) and not _is_root_itself(cert, root):
                return root
        for root in self.roots:
            if _is_root_itself(cert, root):
                return root
        return None


class StaticTrustStore(TrustStore):
    """
    A static trust store, based on a list of trusted root certificates.
    """

    def __init__(self, roots: Iterable[x509.Certificate]):
        self._roots = list(roots)

    @property
    def roots(self) -> List[x509.Certificate]:
        return self._roots

    @staticmethod
    def from_pem(bundle: Union[str, bytes]) -> "StaticTrustStore":
        if isinstance(bundle, str):
            bundle = bundle.encode("ascii")
        return StaticTrustStore(crypto.parse_pem_bundle(bundle))

    @staticmethod
    def load(path: Path) -> "StaticTrustStore":
        """
        Populate a static trust store from a PEM bundle, or from a directory
        in which every *.pem file holds one or more trusted roots.
        """
        try:
            if path.is_dir():
                roots = []
                for pem_path in sorted(path.glob("**/*.pem")):
                    roots.extend(crypto.parse_pem_bundle(pem_path.read_bytes()))
            else:
                roots = crypto.parse_pem_bundle(path.read_bytes())
        except (OSError, ValueError) as e:
            raise TrustStoreError(str(path), str(e)) from e
        if not roots:
            raise TrustStoreError(str(path), "no certificates found")
        LOG.debug(f"Loaded {len(roots)} trusted root(s) from {path}")
        return StaticTrustStore(roots)


def _directly_issued_by(cert: x509.Certificate, issuer: x509.Certificate) -> bool:
    try:
        cert.verify_directly_issued_by(issuer)
    except (ValueError, TypeError, InvalidSignature):
        return False
    return True


def _is_ca(cert: x509.Certificate) -> bool:
    try:
        return cert.extensions.get_extension_for_class(x509.BasicConstraints).value.ca
    except x509.ExtensionNotFound:
        return False


def _path_length(cert: x509.Certificate) -> Optional[int]:
    try:
        return cert.extensions.get_extension_for_class(
            x509.BasicConstraints
        ).value.path_length
    except x509.ExtensionNotFound:
        return None


def _check_path_length(issuer: x509.Certificate, below: int, what: str):
    # `below` counts the CA certificates between `issuer` and the leaf.
    limit = _path_length(issuer)
    if limit is not None and below > limit:
        raise ChainInvalid(
            f"{what} allows {limit} intermediate certificate(s) below it, chain has {below}"
        )


def _check_validity(cert: x509.Certificate, now: datetime.datetime, what: str):
    if now < cert.not_valid_before_utc:
        raise ChainInvalid(
            f"{what} is not valid before {cert.not_valid_before_utc.isoformat()}"
        )
    if now > cert.not_valid_after_utc:
        raise ChainInvalid(f"{what} expired at {cert.not_valid_after_utc.isoformat()}")


def _as_utc(now: datetime.datetime) -> datetime.datetime:
    if now.tzinfo is None:
        return now.replace(tzinfo=datetime.timezone.utc)
    return now.astimezone(datetime.timezone.utc)


def verify_chain(
    chain_der: Iterable[bytes],
    roots: TrustStore,
    now: datetime.datetime,
) -> x509.Certificate:
    """
    Check that the chain leads from a signing certificate to a trusted root,
    with every certificate valid at `now`. Returns the signing certificate.
    """
    try:
        chain = [load_der_x509_certificate(der) for der in chain_der]
    except ValueError as e:
        raise ChainInvalid(f"Unparseable certificate: {e}") from e

    if not chain:
        raise ChainInvalid("Certificate chain is empty")
    if len(chain) > MAX_CHAIN_LENGTH:
        raise ChainInvalid(
            f"Certificate chain has {len(chain)} certificates, at most {MAX_CHAIN_LENGTH} allowed"
        )

    leaf = chain[0]
    if _is_ca(leaf):
        raise ChainInvalid("Signing certificate is CA")

    for i, cert in enumerate(chain):
        _check_validity(cert, now, f"Certificate {i}")

    for i, (cert, issuer) in enumerate(zip(chain, chain[1:])):
        if not _is_ca(issuer):
            raise ChainInvalid(f"Certificate {i + 1} is not a CA certificate")
        if not _directly_issued_by(cert, issuer):
            raise ChainInvalid(f"Certificate {i} was not issued by certificate {i + 1}")
        _check_path_length(issuer, i, f"Certificate {i + 1}")

    root = roots.find_issuer(chain[-1])
    if root is None:
        raise ChainInvalid("Certificate chain is invalid: no trusted root issued it")
    if _is_root_itself(chain[-1], root) and len(chain) == 1:
        raise ChainInvalid("Signing certificate is a trusted root")
    _check_validity(root, now, "Trusted root")
    if not _is_root_itself(chain[-1], root):
        _check_path_length(root, len(chain) - 1, "Trusted root")

    return leaf


def _is_root_itself(cert: x509.Certificate, root: x509.Certificate) -> bool:
    return cert.public_bytes(Encoding.DER) == root.public_bytes(Encoding.DER)


def verify(
    record: EndorsementRecord,
    roots: Union[TrustStore, Iterable[x509.Certificate]],
    expected_firmware: Optional[bytes] = None,
    *,
    now: datetime.datetime,
    launch: LaunchConfig = LaunchConfig(),
    measure: MeasureFn = sha384_measure,
) -> VerifiedFacts:
    """
    Verify an endorsement against a set of trusted roots at time `now`.

    Checks run in order (chain, signature, event log, measurement) and the
    first failure is raised as a VerificationError. The measurement check
    only runs when `expected_firmware` is supplied.
    """
    if not isinstance(roots, TrustStore):
        roots = StaticTrustStore(roots)
    now = _as_utc(now)

    try:
        leaf = verify_chain(record.certificate_chain, roots, now)
        LOG.debug("Certificate chain is valid")

        try:
            crypto.verify_payload(leaf.public_key(), record.signature, record.tbs())  # type: ignore[arg-type]
        except (InvalidSignature, NotImplementedError, ValueError, TypeError) as e:
            raise SignatureInvalid("Signature verification failed") from e
        LOG.debug("Endorsement signature is valid")

        eventlog.validate(record.events.events)
        indexed = EventLog.from_indexed(record.events.to_indexed(), strict=True)
        if indexed != record.events:
            raise InvalidEventLog("Event log does not survive indexed transport")
        LOG.debug(f"Event log has {len(record.events)} event(s)")

        firmware_verified = False
        if expected_firmware is not None:
            actual = measure(expected_firmware, launch).digest
            if not hmac.compare_digest(actual, record.measurement):
                raise MeasurementMismatch(
                    f"Firmware measures to {actual.hex()}, "
                    f"endorsement is for {record.measurement.hex()}"
                )
            firmware_verified = True
            LOG.debug("Firmware measurement matches")
    except VerificationError as e:
        LOG.warning(f"Endorsement rejected: {e}")
        raise

    return VerifiedFacts(
        measurement=record.measurement,
        commit=record.commit,
        capabilities=record.capabilities,
        events=record.events,
        firmware_verified=firmware_verified,
    )


def verify_endorsement(
    buf: bytes,
    roots: Union[TrustStore, Iterable[x509.Certificate]],
    expected_firmware: Optional[bytes] = None,
    **kwargs,
) -> VerifiedFacts:
    """
    Decode a serialized endorsement and verify it.
    """
    try:
        record = decode_record(buf)
    except VerificationError as e:
        LOG.warning(f"Endorsement rejected: {e}")
        raise
    return verify(record, roots, expected_firmware, **kwargs)
