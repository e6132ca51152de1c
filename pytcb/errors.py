# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

from dataclasses import dataclass
from enum import Enum


class EndorsementError(Exception):
    """Base class for every error raised while issuing or verifying endorsements."""


@dataclass
class DuplicateVersionName(EndorsementError):
    version_name: str

    def __str__(self):
        return f"Key version is already registered: {self.version_name}"


@dataclass
class UnknownVersionName(EndorsementError):
    version_name: str

    def __str__(self):
        return f"Key version is not registered: {self.version_name}"


class SigningFailureReason(Enum):
    NO_PRIMARY_KEY = "NoPrimaryKey"
    NO_CERTIFICATE = "NoCertificate"
    BACKEND_ERROR = "BackendError"


@dataclass
class SigningFailure(EndorsementError):
    reason: SigningFailureReason
    message: str = ""

    def __str__(self):
        if self.message:
            return f"{self.reason.value}: {self.message}"
        return self.reason.value


@dataclass
class TrustStoreError(EndorsementError):
    path: str
    message: str

    def __str__(self):
        return f"Cannot load trusted roots from {self.path}: {self.message}"


@dataclass
class VerificationError(EndorsementError):
    """
    A rejected endorsement. `check` names the verification step that failed,
    so that operators can tell a misconfigured root of trust apart from a
    tampered record. Any instance means the firmware must not be trusted.
    """

    check: str
    message: str

    def __str__(self):
        return f"{self.check}: {self.message}"


class ChainInvalid(VerificationError):
    def __init__(self, message: str):
        super().__init__("chain", message)


class SignatureInvalid(VerificationError):
    def __init__(self, message: str):
        super().__init__("signature", message)


class InvalidEventLog(VerificationError):
    def __init__(self, message: str):
        super().__init__("events", message)


class MeasurementMismatch(VerificationError):
    def __init__(self, message: str):
        super().__init__("measurement", message)


class MalformedEndorsement(VerificationError):
    def __init__(self, message: str):
        super().__init__("decode", message)
