"""passkit - build, sign and verify tamper-evident pass bundles."""

from __future__ import annotations

__version__ = "0.3.0"

from passkit.bundle import PassBundler, SignedBundle, SignState, VerifyState
from passkit.config import ExpiryPolicy, PassConfig
from passkit.digest import DigestAlgorithm, digest
from passkit.errors import (
    AmbiguousIdentityError,
    ContentMismatchError,
    ExpiredAtSigningTimeError,
    ExpiredAtVerifyTimeError,
    IdentityNotFoundError,
    IncompleteChainError,
    InvalidBundleError,
    InvalidSignatureError,
    IOTimeoutError,
    MalformedSignatureError,
    OperationCancelledError,
    PassKitError,
    ReasonCode,
    SigningError,
    UntrustedChainError,
    VerificationError,
)
from passkit.provenance import Manifest, ManifestBuilder, Signature, Signer, VerificationResult, Verifier

__all__ = [
    "__version__",
    "AmbiguousIdentityError",
    "ContentMismatchError",
    "DigestAlgorithm",
    "ExpiredAtSigningTimeError",
    "ExpiredAtVerifyTimeError",
    "ExpiryPolicy",
    "IdentityNotFoundError",
    "IncompleteChainError",
    "InvalidBundleError",
    "InvalidSignatureError",
    "IOTimeoutError",
    "MalformedSignatureError",
    "Manifest",
    "ManifestBuilder",
    "OperationCancelledError",
    "PassBundler",
    "PassConfig",
    "PassKitError",
    "ReasonCode",
    "SignState",
    "Signature",
    "SignedBundle",
    "Signer",
    "SigningError",
    "UntrustedChainError",
    "VerificationError",
    "VerificationResult",
    "Verifier",
    "VerifyState",
    "digest",
]
