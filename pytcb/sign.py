# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

from typing import Iterable, Optional, Union

from loguru import logger as LOG

from . import crypto
from .ca import CertificateAuthority
from .endorsement import EndorsementRecord, canonical_tbs
from .errors import SigningFailure, SigningFailureReason
from .eventlog import EventLog
from .kms import KeyManager
from .measure import Measurement


class Signer:
    """
    Issues endorsements with whatever key is the CA's primary signing key at
    the time of the call.
    """

    def __init__(self, ca: CertificateAuthority, key_manager: Optional[KeyManager] = None):
        self.ca = ca
        self.key_manager = key_manager or ca.key_manager

    def issue(
        self,
        measurement: Union[bytes, Measurement],
        commit: str,
        capabilities: Iterable[str],
        events: Union[EventLog, Iterable[bytes]] = (),
    ) -> EndorsementRecord:
        if isinstance(measurement, Measurement):
            measurement = measurement.digest
        if not measurement:
            raise ValueError("Measurement must not be empty")
        if not isinstance(commit, str):
            raise TypeError("Commit must be a string")
        if isinstance(capabilities, str):
            raise TypeError("Capabilities must be a collection of flags")
        if not isinstance(events, EventLog):
            events = EventLog.of(events)
        capabilities = frozenset(capabilities)
        for flag in capabilities:
            if not isinstance(flag, str):
                raise TypeError(f"Capability flags must be strings, got {flag!r}")

        # A single snapshot, so the key that signs and the chain that is
        # embedded always belong together, even across a concurrent rotation.
        primary = self.ca.primary()

        tbs = canonical_tbs(measurement, commit, capabilities, events)
        try:
            signature = self.key_manager.sign(primary.version_name, tbs)
        except Exception as e:
            raise SigningFailure(
                SigningFailureReason.BACKEND_ERROR,
                f"Signing with {primary.version_name} failed: {e}",
            ) from e

        LOG.info(
            f"Endorsed measurement {measurement.hex()} at commit {commit} "
            f"with {primary.version_name}"
        )
        return EndorsementRecord(
            measurement=bytes(measurement),
            commit=commit,
            capabilities=capabilities,
            events=events,
            signature=signature,
            certificate_chain=tuple(crypto.cert_to_der(c) for c in primary.chain),
            key_version=primary.version_name,
        )
