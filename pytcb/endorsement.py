# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

import base64
import json
from dataclasses import dataclass, field
from typing import Any, FrozenSet, Iterable, List, Optional, Tuple

import cbor2
from cbor2 import CBORError
from cryptography.x509 import load_der_x509_certificate

from . import crypto
from .errors import MalformedEndorsement
from .eventlog import EventLog

# Capabilities are free-form strings. This is the one the CLI sets with --add-snp.
SEV_SNP = "SEV-SNP"

CANONICAL_FORMAT = "pytcb-endorsement/v1"

FIELD_MEASUREMENT = "measurement"
FIELD_COMMIT = "commit"
FIELD_CAPABILITIES = "capabilities"
FIELD_EVENTS = "events"
FIELD_SIGNATURE = "signature"
FIELD_CERTIFICATE_CHAIN = "certificateChain"
FIELD_KEY_VERSION = "keyVersion"


def canonical_tbs(
    measurement: bytes,
    commit: str,
    capabilities: Iterable[str],
    events: EventLog,
) -> bytes:
    """
    The exact bytes an endorsement signature covers.

    Built from field values only, never from the wire encoding, so that
    changes to the record layout cannot change what is signed.
    """
    body = {
        FIELD_MEASUREMENT: bytes(measurement),
        FIELD_COMMIT: commit,
        FIELD_CAPABILITIES: sorted(capabilities),
        FIELD_EVENTS: list(events.events),
    }
    return cbor2.dumps([CANONICAL_FORMAT, body], canonical=True)


@dataclass(frozen=True)
class EndorsementRecord:
    measurement: bytes
    commit: str
    capabilities: FrozenSet[str]
    events: EventLog
    signature: bytes
    certificate_chain: Tuple[bytes, ...]
    # Hint for operators. Not covered by the signature.
    key_version: Optional[str] = field(default=None, compare=False)

    def tbs(self) -> bytes:
        return canonical_tbs(
            self.measurement, self.commit, self.capabilities, self.events
        )

    def as_dict(self) -> dict:
        """
        A JSON-friendly view of the record, for display only.
        """
        chain = []
        for der in self.certificate_chain:
            try:
                cert = load_der_x509_certificate(der)
                info = crypto.get_cert_info(cert)
                info["fingerprint"] = crypto.get_cert_fingerprint(cert)
                chain.append(info)
            except ValueError:
                chain.append({"error": "Failed to parse certificate", "der": der.hex()})
        return {
            FIELD_MEASUREMENT: self.measurement.hex(),
            FIELD_COMMIT: self.commit,
            FIELD_CAPABILITIES: sorted(self.capabilities),
            FIELD_EVENTS: [base64.b64encode(e).decode("ascii") for e in self.events],
            FIELD_SIGNATURE: base64.b64encode(self.signature).decode("ascii"),
            FIELD_CERTIFICATE_CHAIN: chain,
            FIELD_KEY_VERSION: self.key_version,
        }

    def pretty(self) -> str:
        return json.dumps(self.as_dict(), indent=2)


def encode_record(record: EndorsementRecord) -> bytes:
    obj = {
        FIELD_MEASUREMENT: record.measurement,
        FIELD_COMMIT: record.commit,
        FIELD_CAPABILITIES: sorted(record.capabilities),
        FIELD_SIGNATURE: record.signature,
        FIELD_CERTIFICATE_CHAIN: list(record.certificate_chain),
    }
    # An absent event list is the same as an empty one.
    if record.events:
        obj[FIELD_EVENTS] = list(record.events.events)
    if record.key_version is not None:
        obj[FIELD_KEY_VERSION] = record.key_version
    return cbor2.dumps(obj, canonical=True)


def _expect(obj: dict, key: str, kind, *, required: bool = True) -> Any:
    if key not in obj:
        if required:
            raise MalformedEndorsement(f"Missing field: {key}")
        return None
    value = obj[key]
    if not isinstance(value, kind):
        raise MalformedEndorsement(
            f"Field {key} has type {type(value).__name__}, expected {kind.__name__}"
        )
    return value


def _expect_list_of(obj: dict, key: str, kind, *, required: bool = True) -> List:
    values = _expect(obj, key, list, required=required)
    if values is None:
        return []
    for i, value in enumerate(values):
        if not isinstance(value, kind):
            raise MalformedEndorsement(
                f"Field {key}[{i}] has type {type(value).__name__}, expected {kind.__name__}"
            )
    return values


def decode_record(buf: bytes) -> EndorsementRecord:
    """
    Parse a serialized endorsement. Only the structure is checked here; the
    result is untrusted until it has been verified.
    """
    try:
        obj = cbor2.loads(buf)
    except (CBORError, ValueError, TypeError, EOFError) as e:
        raise MalformedEndorsement(f"Invalid CBOR: {e}") from e
    if not isinstance(obj, dict):
        raise MalformedEndorsement("Endorsement must be a CBOR map")

    capabilities = _expect_list_of(obj, FIELD_CAPABILITIES, str, required=False)
    if len(set(capabilities)) != len(capabilities):
        raise MalformedEndorsement("Duplicate capability flags")

    return EndorsementRecord(
        measurement=_expect(obj, FIELD_MEASUREMENT, bytes),
        commit=_expect(obj, FIELD_COMMIT, str),
        capabilities=frozenset(capabilities),
        events=EventLog(tuple(_expect_list_of(obj, FIELD_EVENTS, bytes, required=False))),
        signature=_expect(obj, FIELD_SIGNATURE, bytes),
        certificate_chain=tuple(_expect_list_of(obj, FIELD_CERTIFICATE_CHAIN, bytes)),
        key_version=_expect(obj, FIELD_KEY_VERSION, str, required=False),
    )
