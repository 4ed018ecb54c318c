"""Error taxonomy for pass signing and verification.

Signing-path errors abort the operation. Verification outcomes are also
modelled as exceptions so the verifier can short-circuit internally, but
they are converted to a ``VerificationResult`` before reaching callers.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ReasonCode(Enum):
    """Machine-readable reason a verification failed."""

    INVALID_BUNDLE = "InvalidBundleError"
    MALFORMED_SIGNATURE = "MalformedSignatureError"
    UNTRUSTED_CHAIN = "UntrustedChainError"
    INVALID_SIGNATURE = "InvalidSignatureError"
    CONTENT_MISMATCH = "ContentMismatchError"
    EXPIRED_AT_SIGNING_TIME = "ExpiredAtSigningTimeError"
    EXPIRED_AT_VERIFY_TIME = "ExpiredAtVerifyTimeError"


class PassKitError(Exception):
    """Base class for all passkit errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class InvalidBundleError(PassKitError):
    """Payload is empty, unsafe or otherwise not a valid pass."""


class IdentityError(PassKitError):
    """Signing identity could not be resolved."""


class IdentityNotFoundError(IdentityError):
    """No identity matches the selection hint."""

    def __init__(self, hint: str) -> None:
        super().__init__(
            f"No signing identity matches '{hint}'",
            details={"hint": hint},
        )
        self.hint = hint


class AmbiguousIdentityError(IdentityError):
    """More than one identity matches the selection hint."""

    def __init__(self, hint: str, common_names: list[str]) -> None:
        super().__init__(
            f"Identity hint '{hint}' matches {len(common_names)} identities: "
            + ", ".join(common_names),
            details={"hint": hint, "matches": common_names},
        )
        self.hint = hint
        self.common_names = common_names


class IncompleteChainError(IdentityError):
    """Identity's certificate chain does not reach a trusted root."""


class SigningError(PassKitError):
    """Private key operation failed."""


class IOTimeoutError(PassKitError):
    """A collaborator did not answer within the configured timeout."""


class OperationCancelledError(PassKitError):
    """Verification was cancelled between file checks."""


class VerificationError(PassKitError):
    """A verification check failed. Subclasses carry a reason code."""

    reason: ReasonCode = ReasonCode.INVALID_SIGNATURE


class MalformedSignatureError(VerificationError):
    reason = ReasonCode.MALFORMED_SIGNATURE


class UntrustedChainError(VerificationError):
    reason = ReasonCode.UNTRUSTED_CHAIN


class InvalidSignatureError(VerificationError):
    reason = ReasonCode.INVALID_SIGNATURE


class ContentMismatchError(VerificationError):
    reason = ReasonCode.CONTENT_MISMATCH


class ExpiredAtSigningTimeError(VerificationError):
    reason = ReasonCode.EXPIRED_AT_SIGNING_TIME


class ExpiredAtVerifyTimeError(VerificationError):
    reason = ReasonCode.EXPIRED_AT_VERIFY_TIME
