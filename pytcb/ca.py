# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

import datetime
import json
import threading
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Tuple
from urllib.parse import quote

from cryptography import x509
from loguru import logger as LOG

from . import crypto
from .errors import (
    DuplicateVersionName,
    SigningFailure,
    SigningFailureReason,
    UnknownVersionName,
)
from .kms import KeyManager

# Certificates between a signing certificate and the root, root excluded.
MAX_CHAIN_LENGTH = 3

CA_CONFIG_FILENAME = "ca.json"
CA_CERTS_DIRNAME = "certs"
CA_ROOT_FILENAME = "root.pem"


class KeyRole(Enum):
    ROOT = "root"
    PRIMARY_SIGNING = "primary-signing"
    AUXILIARY_SIGNING = "auxiliary-signing"


@dataclass(frozen=True)
class KeyVersion:
    version_name: str
    common_name: str

    def as_dict(self) -> dict:
        return {"versionName": self.version_name, "commonName": self.common_name}

    @staticmethod
    def from_dict(data: dict) -> "KeyVersion":
        return KeyVersion(data["versionName"], data["commonName"])


@dataclass(frozen=True)
class ValidityWindow:
    not_before: datetime.datetime
    not_after: datetime.datetime

    def __post_init__(self):
        if self.not_after <= self.not_before:
            raise ValueError("Validity window must end after it starts")

    @staticmethod
    def starting(now: datetime.datetime, days: int) -> "ValidityWindow":
        return ValidityWindow(now, now + datetime.timedelta(days=days))


@dataclass(frozen=True)
class PrimarySnapshot:
    """
    The primary signing key together with its chain, as seen at one instant.
    """

    version_name: str
    chain: Tuple[x509.Certificate, ...]


class CertificateAuthority:
    """
    An X.509 certificate authority for endorsement signing keys.

    The CA owns a root key and the certificates it issues. At most one
    registered key is the primary signing key; readers always observe the
    primary and its chain together, through a single PrimarySnapshot.
    """

    def __init__(
        self,
        key_manager: KeyManager,
        root: KeyVersion,
        root_certificate: x509.Certificate,
    ):
        self.key_manager = key_manager
        self.root = root
        self.root_certificate = root_certificate

        self._lock = threading.Lock()
        self._keys: Dict[str, KeyVersion] = {root.version_name: root}
        self._roles: Dict[str, KeyRole] = {root.version_name: KeyRole.ROOT}
        self._certificates: Dict[str, x509.Certificate] = {}
        self._issuers: Dict[str, str] = {}
        self._primary_name: Optional[str] = None
        self._primary: Optional[PrimarySnapshot] = None

    @staticmethod
    def create(
        key_manager: KeyManager,
        root: KeyVersion,
        validity: ValidityWindow,
        **key_kwargs,
    ) -> "CertificateAuthority":
        """
        Create a CA with a fresh self-signed root certificate. The root key is
        created in the key manager if it does not exist yet.
        """
        if not key_manager.has_key(root.version_name):
            key_manager.create_key(root.version_name, **key_kwargs)

        builder = crypto.certificate_builder(
            key_manager.public_key(root.version_name),
            cn=root.common_name,
            not_before=validity.not_before,
            not_after=validity.not_after,
            ca=True,
            path_length=MAX_CHAIN_LENGTH - 1,
        )
        try:
            cert = key_manager.sign_certificate(root.version_name, builder)
        except Exception as e:
            raise SigningFailure(SigningFailureReason.BACKEND_ERROR, str(e)) from e

        LOG.info(f"Created root certificate for {root.version_name}")
        return CertificateAuthority(key_manager, root, cert)

    def register_key(
        self, key_version: KeyVersion, role: KeyRole = KeyRole.AUXILIARY_SIGNING
    ) -> None:
        if role == KeyRole.ROOT:
            raise ValueError("A certificate authority has exactly one root")

        with self._lock:
            if key_version.version_name in self._keys:
                raise DuplicateVersionName(key_version.version_name)
            self._keys[key_version.version_name] = key_version
            self._roles[key_version.version_name] = KeyRole.AUXILIARY_SIGNING
            if role == KeyRole.PRIMARY_SIGNING:
                self._promote(key_version.version_name)

        LOG.debug(f"Registered {key_version.version_name} as {role.value}")

    def set_primary_signing_key(self, version_name: str) -> None:
        with self._lock:
            if version_name not in self._keys:
                raise UnknownVersionName(version_name)
            if self._roles[version_name] == KeyRole.ROOT:
                raise ValueError("The root key cannot sign endorsements")
            self._promote(version_name)

        LOG.info(f"Primary signing key is now {version_name}")

    def _promote(self, version_name: str) -> None:
        # Caller holds the lock. The snapshot is replaced by a single
        # assignment, so lock-free readers see either the old or the new one.
        if self._primary_name is not None:
            self._roles[self._primary_name] = KeyRole.AUXILIARY_SIGNING
        self._roles[version_name] = KeyRole.PRIMARY_SIGNING
        self._primary_name = version_name
        self._primary = PrimarySnapshot(version_name, self._chain_for(version_name))

    def _chain_for(self, version_name: str) -> Tuple[x509.Certificate, ...]:
        # Caller holds the lock. An empty chain means the key has no
        # certificate yet.
        chain = []
        current = version_name
        for _ in range(MAX_CHAIN_LENGTH):
            cert = self._certificates.get(current)
            if cert is None:
                return ()
            chain.append(cert)
            current = self._issuers[current]
            if current == self.root.version_name:
                return tuple(chain)
        return ()

    def issue_certificate(
        self,
        version_name: str,
        validity: ValidityWindow,
        *,
        issuer: Optional[str] = None,
        ca: bool = False,
    ) -> x509.Certificate:
        """
        Certify a registered key. The issuer defaults to the root; any other
        issuer must be a registered key holding a CA certificate.
        """
        issuer = issuer or self.root.version_name

        with self._lock:
            if version_name not in self._keys:
                raise UnknownVersionName(version_name)
            if self._roles[version_name] == KeyRole.ROOT:
                raise ValueError("The root certificate is self-signed")
            if issuer not in self._keys:
                raise UnknownVersionName(issuer)
            if issuer == version_name:
                raise ValueError("Only the root certificate is self-signed")

            if issuer == self.root.version_name:
                issuer_cert = self.root_certificate
                depth = 1
            else:
                issuer_cert = self._certificates.get(issuer)
                issuer_chain = self._chain_for(issuer)
                if issuer_cert is None or not issuer_chain or not _is_ca(issuer_cert):
                    raise ValueError(f"{issuer} does not hold a CA certificate")
                depth = len(issuer_chain) + 1
            if depth > MAX_CHAIN_LENGTH:
                raise ValueError(
                    f"Chain for {version_name} would exceed {MAX_CHAIN_LENGTH} certificates"
                )
            key_version = self._keys[version_name]

        try:
            builder = crypto.certificate_builder(
                self.key_manager.public_key(version_name),
                cn=key_version.common_name,
                issuer=issuer_cert,
                not_before=validity.not_before,
                not_after=validity.not_after,
                ca=ca,
                path_length=max(MAX_CHAIN_LENGTH - depth - 1, 0) if ca else None,
            )
            cert = self.key_manager.sign_certificate(issuer, builder)
        except Exception as e:
            raise SigningFailure(
                SigningFailureReason.BACKEND_ERROR,
                f"Could not issue certificate for {version_name}: {e}",
            ) from e

        with self._lock:
            self._certificates[version_name] = cert
            self._issuers[version_name] = issuer
            if self._primary_name is not None:
                self._primary = PrimarySnapshot(
                    self._primary_name, self._chain_for(self._primary_name)
                )

        LOG.info(
            f"Issued certificate for {version_name} by {issuer}, "
            f"valid until {validity.not_after.isoformat()}"
        )
        return cert

    def primary(self) -> PrimarySnapshot:
        snapshot = self._primary
        if snapshot is None:
            raise SigningFailure(
                SigningFailureReason.NO_PRIMARY_KEY,
                "No primary signing key is configured",
            )
        if not snapshot.chain:
            raise SigningFailure(
                SigningFailureReason.NO_CERTIFICATE,
                f"Primary signing key {snapshot.version_name} has no certificate",
            )
        return snapshot

    def current_chain(self) -> List[x509.Certificate]:
        """
        The primary signing certificate followed by its issuers, up to but
        excluding the root.
        """
        return list(self.primary().chain)

    def chain_for(self, version_name: str) -> List[x509.Certificate]:
        with self._lock:
            if version_name not in self._keys:
                raise UnknownVersionName(version_name)
            return list(self._chain_for(version_name))

    @property
    def primary_signing_key(self) -> Optional[str]:
        snapshot = self._primary
        return snapshot.version_name if snapshot else None

    def role_of(self, version_name: str) -> KeyRole:
        with self._lock:
            try:
                return self._roles[version_name]
            except KeyError:
                raise UnknownVersionName(version_name) from None

    def key_version(self, version_name: str) -> KeyVersion:
        with self._lock:
            try:
                return self._keys[version_name]
            except KeyError:
                raise UnknownVersionName(version_name) from None

    def certificate(self, version_name: str) -> Optional[x509.Certificate]:
        if version_name == self.root.version_name:
            return self.root_certificate
        with self._lock:
            if version_name not in self._keys:
                raise UnknownVersionName(version_name)
            return self._certificates.get(version_name)

    def save(self, directory: Path) -> None:
        """
        Persist the CA's key versions, roles and certificates. Key material is
        the key manager's business and is not written here.
        """
        certs_dir = directory / CA_CERTS_DIRNAME
        certs_dir.mkdir(parents=True, exist_ok=True)

        with self._lock:
            keys = []
            for name, key_version in self._keys.items():
                if name == self.root.version_name:
                    continue
                entry = key_version.as_dict()
                if name in self._issuers:
                    entry["issuer"] = self._issuers[name]
                keys.append(entry)
            certificates = dict(self._certificates)
            config = {
                "root": self.root.as_dict(),
                "keys": keys,
                "primarySigningKey": self._primary_name,
            }

        certificates[self.root.version_name] = self.root_certificate
        for name, cert in certificates.items():
            (certs_dir / (quote(name, safe="") + ".pem")).write_text(
                crypto.cert_to_pem(cert)
            )
        (directory / CA_ROOT_FILENAME).write_text(crypto.cert_to_pem(self.root_certificate))
        with open(directory / CA_CONFIG_FILENAME, "w") as f:
            json.dump(config, f, indent=2)
        LOG.info(f"Wrote certificate authority to {directory}")

    @staticmethod
    def load(directory: Path, key_manager: KeyManager) -> "CertificateAuthority":
        with open(directory / CA_CONFIG_FILENAME) as f:
            config = json.load(f)
        certs_dir = directory / CA_CERTS_DIRNAME

        def read_cert(name: str) -> Optional[x509.Certificate]:
            path = certs_dir / (quote(name, safe="") + ".pem")
            if not path.exists():
                return None
            return x509.load_pem_x509_certificate(path.read_bytes())

        root = KeyVersion.from_dict(config["root"])
        root_cert = read_cert(root.version_name)
        if root_cert is None:
            raise ValueError(f"Missing root certificate in {certs_dir}")

        ca = CertificateAuthority(key_manager, root, root_cert)
        with ca._lock:
            for entry in config.get("keys", []):
                key_version = KeyVersion.from_dict(entry)
                if key_version.version_name in ca._keys:
                    raise DuplicateVersionName(key_version.version_name)
                ca._keys[key_version.version_name] = key_version
                ca._roles[key_version.version_name] = KeyRole.AUXILIARY_SIGNING
                cert = read_cert(key_version.version_name)
                if cert is not None:
                    ca._certificates[key_version.version_name] = cert
                    ca._issuers[key_version.version_name] = entry.get(
                        "issuer", root.version_name
                    )
            primary = config.get("primarySigningKey")
            if primary is not None:
                if primary not in ca._keys:
                    raise UnknownVersionName(primary)
                ca._promote(primary)
        return ca


def _is_ca(cert: x509.Certificate) -> bool:
    try:
        return cert.extensions.get_extension_for_class(x509.BasicConstraints).value.ca
    except x509.ExtensionNotFound:
        return False
