# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

import os
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Optional
from urllib.parse import quote, unquote

from cryptography import x509
from loguru import logger as LOG

from . import crypto
from .crypto import Pem, PrivateKey, PublicKey

KEY_FILE_SUFFIX = ".pem"


class KeyManager(ABC):
    """
    Holds signing keys, addressed by a stable key version name. Callers never
    see private key material, only signatures and public keys.
    """

    @abstractmethod
    def create_key(
        self,
        version_name: str,
        *,
        kty: str = "rsa",
        rsa_key_size: Optional[int] = None,
        ec_curve: Optional[str] = None,
    ) -> PublicKey:
        """Create a new key under `version_name` and return its public key."""

    @abstractmethod
    def has_key(self, version_name: str) -> bool:
        pass

    @abstractmethod
    def public_key(self, version_name: str) -> PublicKey:
        pass

    @abstractmethod
    def sign(self, version_name: str, payload: bytes) -> bytes:
        """Sign a payload with the key identified by version_name.

        :param version_name: The key version to sign with.
        :type version_name: str
        :param payload: The bytes to sign.
        :type payload: bytes

        :return: The signature over the payload.
        :rtype: bytes
        """

    @abstractmethod
    def sign_certificate(
        self, version_name: str, builder: x509.CertificateBuilder
    ) -> x509.Certificate:
        """Sign a prepared certificate, acting as its issuer.

        :param version_name: The issuer's key version.
        :type version_name: str
        :param builder: The unsigned certificate.
        :type builder: x509.CertificateBuilder

        :return: The signed certificate.
        :rtype: x509.Certificate
        """


class InMemoryKeyManager(KeyManager):
    """
    A key manager that keeps PEM private keys in process memory. Keys can be
    saved to and loaded from a directory, one PEM file per key version.
    """

    def __init__(self, keys: Optional[Dict[str, Pem]] = None):
        self._lock = threading.Lock()
        self._keys: Dict[str, PrivateKey] = {}
        for version_name, pem in (keys or {}).items():
            self.import_key(version_name, pem)

    def _get(self, version_name: str) -> PrivateKey:
        with self._lock:
            try:
                return self._keys[version_name]
            except KeyError:
                raise KeyError(f"No key for version {version_name}") from None

    def import_key(self, version_name: str, pem: Pem) -> None:
        key = crypto.load_private_key_pem(pem)
        with self._lock:
            if version_name in self._keys:
                raise ValueError(f"Key already exists: {version_name}")
            self._keys[version_name] = key

    def create_key(
        self,
        version_name: str,
        *,
        kty: str = "rsa",
        rsa_key_size: Optional[int] = None,
        ec_curve: Optional[str] = None,
    ) -> PublicKey:
        private_pem, _ = crypto.generate_keypair(
            kty, rsa_key_size=rsa_key_size, ec_curve=ec_curve
        )
        self.import_key(version_name, private_pem)
        LOG.debug(f"Created {kty} key {version_name}")
        return self.public_key(version_name)

    def has_key(self, version_name: str) -> bool:
        with self._lock:
            return version_name in self._keys

    def public_key(self, version_name: str) -> PublicKey:
        return self._get(version_name).public_key()

    def sign(self, version_name: str, payload: bytes) -> bytes:
        return crypto.sign_payload(self._get(version_name), payload)

    def sign_certificate(
        self, version_name: str, builder: x509.CertificateBuilder
    ) -> x509.Certificate:
        return crypto.sign_certificate(builder, self._get(version_name))

    def save(self, directory: Path) -> None:
        directory.mkdir(parents=True, exist_ok=True)
        with self._lock:
            keys = dict(self._keys)
        for version_name, key in keys.items():
            path = directory / (quote(version_name, safe="") + KEY_FILE_SUFFIX)
            fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            # O_CREAT does not change the mode of an existing file.
            os.fchmod(fd, 0o600)
            with os.fdopen(fd, "w") as f:
                f.write(crypto.private_key_to_pem(key))
        LOG.info(f"Wrote {len(keys)} key(s) to {directory}")

    @staticmethod
    def load(directory: Path) -> "InMemoryKeyManager":
        keys = {}
        for path in sorted(directory.glob("*" + KEY_FILE_SUFFIX)):
            version_name = unquote(path.name[: -len(KEY_FILE_SUFFIX)])
            keys[version_name] = crypto.load_private_key(path)
        return InMemoryKeyManager(keys)
