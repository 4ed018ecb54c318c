"""Signature verification for pass manifests."""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from cryptography import x509
from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives.asymmetric import ec, padding, rsa

from passkit.certs import ChainBuildError, build_chain, common_name, valid_at
from passkit.clock import Clock, SystemClock
from passkit.config import ExpiryPolicy, PassConfig
from passkit.errors import (
    ContentMismatchError,
    ExpiredAtSigningTimeError,
    ExpiredAtVerifyTimeError,
    InvalidSignatureError,
    ReasonCode,
    UntrustedChainError,
    VerificationError,
)
from passkit.provenance.signing import DIGEST_ALGORITHMS, Signature

logger = logging.getLogger(__name__)


@dataclass
class VerificationResult:
    """Result of verifying a signature (and, via the bundler, a bundle)."""

    valid: bool
    reason: ReasonCode | None = None
    message: str | None = None
    details: dict[str, Any] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)
    signer: str | None = None
    signing_time: datetime | None = None
    files_checked: int = 0
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    @classmethod
    def failure(cls, error: VerificationError, **kwargs: Any) -> VerificationResult:
        """Build a failed result from a verification error."""
        return cls(
            valid=False,
            reason=error.reason,
            message=error.message,
            details=dict(error.details),
            **kwargs,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "valid": self.valid,
            "reason": self.reason.value if self.reason else None,
            "message": self.message,
            "details": self.details,
            "warnings": self.warnings,
            "signer": self.signer,
            "signing_time": self.signing_time.isoformat() if self.signing_time else None,
            "files_checked": self.files_checked,
            "timestamp": self.timestamp,
        }

    def write_json(self, path: Path) -> None:
        """Write to JSON file."""
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(self.to_dict(), f, indent=2, sort_keys=True)

    def write_markdown(self, path: Path) -> None:
        """Write to Markdown file."""
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            f.write(self._generate_markdown())

    def _generate_markdown(self) -> str:
        """Generate markdown report."""
        lines = [
            "# Pass Verification Report",
            "",
            f"**Status:** {'✅ VALID' if self.valid else '❌ INVALID'}",
            f"**Timestamp:** {self.timestamp}",
            "",
            "## Summary",
            "",
            f"- **Signer:** {self.signer or 'unknown'}",
            f"- **Signing Time:** {self.signing_time.isoformat() if self.signing_time else 'not recorded'}",
            f"- **Files Checked:** {self.files_checked}",
        ]

        if self.reason:
            lines.append(f"- **Reason:** `{self.reason.value}`")
        lines.append("")

        if self.message:
            lines.extend(["## Failure", "", self.message, ""])

        for key in ("tampered", "missing", "added"):
            paths = self.details.get(key)
            if paths:
                lines.extend([f"## {key.capitalize()} Files", ""])
                lines.extend(f"- `{p}`" for p in paths)
                lines.append("")

        if self.warnings:
            lines.extend(["## Warnings", ""])
            lines.extend(f"- {w}" for w in self.warnings)
            lines.append("")

        return "\n".join(lines)


def _validity_window(cert: x509.Certificate) -> tuple[datetime, datetime]:
    return cert.not_valid_before_utc, cert.not_valid_after_utc


class Verifier:
    """Checks a detached signature against manifest bytes.

    Checks run in a fixed order and stop at the first failure:
    format, chain of trust, signature, content digest, signing-time
    validity. Verify-time expiry is then handled per ``expiry_policy``.
    Expected invalidity is returned as a result, never raised.
    """

    def __init__(
        self,
        trusted_roots: Sequence[x509.Certificate],
        config: PassConfig | None = None,
        clock: Clock | None = None,
    ) -> None:
        self.trusted_roots = list(trusted_roots)
        self.config = config or PassConfig()
        self.clock = clock or SystemClock()

    def verify(self, manifest_bytes: bytes, signature: bytes | Signature) -> VerificationResult:
        """Verify ``signature`` covers exactly ``manifest_bytes``.

        Args:
            manifest_bytes: Manifest bytes as stored in the bundle
            signature: Raw signature file bytes or a parsed Signature

        Returns:
            VerificationResult with a reason code on failure
        """
        now = self.clock.now()
        parsed: Signature | None = None
        warnings: list[str] = []
        try:
            parsed = signature if isinstance(signature, Signature) else Signature.from_bytes(signature)
            chain = self._check_chain(parsed)
            self._check_signature(parsed)
            self._check_content(parsed, manifest_bytes)
            warnings.extend(self._check_signing_time(parsed))
            warnings.extend(self._check_current_validity(chain, now))
        except VerificationError as e:
            logger.info(f"Verification failed [{e.reason.value}]: {e.message}")
            return VerificationResult.failure(
                e,
                warnings=warnings,
                signer=parsed.signer if parsed else None,
                signing_time=parsed.signing_time if parsed else None,
                timestamp=now.isoformat(),
            )

        logger.info(f"Signature valid (signer '{parsed.signer}')")
        return VerificationResult(
            valid=True,
            warnings=warnings,
            signer=parsed.signer,
            signing_time=parsed.signing_time,
            timestamp=now.isoformat(),
        )

    def _check_chain(self, parsed: Signature) -> list[x509.Certificate]:
        """Chain to a trusted root, with every CA valid at signing time."""
        if not self.trusted_roots:
            raise UntrustedChainError(
                "No trusted roots configured", details={"signer": parsed.signer}
            )
        at = parsed.signing_time or self.clock.now()
        try:
            return build_chain(
                parsed.signer_certificate, parsed.intermediates, self.trusted_roots, at=at
            )
        except ChainBuildError as e:
            raise UntrustedChainError(
                f"Signer '{parsed.signer}' does not chain to a trusted root: {e}",
                details={"signer": parsed.signer, "checked_at": at.isoformat()},
            ) from e

    def _check_signature(self, parsed: Signature) -> None:
        hash_algorithm = DIGEST_ALGORITHMS[parsed.digest_algorithm]()
        try:
            public_key = parsed.signer_certificate.public_key()
        except (UnsupportedAlgorithm, ValueError) as e:
            raise InvalidSignatureError(
                f"Signer key of '{parsed.signer}' is not usable: {e}",
                details={"signer": parsed.signer},
            ) from e
        try:
            if parsed.signature_algorithm == "rsassa_pkcs1v15" and isinstance(public_key, rsa.RSAPublicKey):
                public_key.verify(
                    parsed.signature, parsed.signed_attributes, padding.PKCS1v15(), hash_algorithm
                )
            elif parsed.signature_algorithm == "ecdsa" and isinstance(public_key, ec.EllipticCurvePublicKey):
                public_key.verify(parsed.signature, parsed.signed_attributes, ec.ECDSA(hash_algorithm))
            else:
                raise InvalidSignatureError(
                    f"Unsupported signature algorithm {parsed.signature_algorithm} "
                    f"for {type(public_key).__name__}",
                    details={"algorithm": parsed.signature_algorithm},
                )
        except InvalidSignature:
            raise InvalidSignatureError(
                f"Signature by '{parsed.signer}' does not verify",
                details={"signer": parsed.signer},
            ) from None

    def _check_content(self, parsed: Signature, manifest_bytes: bytes) -> None:
        actual = hashlib.new(parsed.digest_algorithm, manifest_bytes).digest()
        if not hmac.compare_digest(actual, parsed.message_digest):
            raise ContentMismatchError(
                "Manifest does not match the signed digest",
                details={
                    "algorithm": parsed.digest_algorithm,
                    "expected": parsed.message_digest.hex(),
                    "actual": actual.hex(),
                },
            )

    def _check_signing_time(self, parsed: Signature) -> list[str]:
        if parsed.signing_time is None:
            return ["Signature carries no signing time; signing-time validity not checked"]

        not_before, not_after = _validity_window(parsed.signer_certificate)
        if not not_before <= parsed.signing_time <= not_after:
            raise ExpiredAtSigningTimeError(
                f"Certificate '{parsed.signer}' was not valid at signing time "
                f"{parsed.signing_time.isoformat()} (valid {not_before.isoformat()} "
                f"to {not_after.isoformat()})",
                details={
                    "signing_time": parsed.signing_time.isoformat(),
                    "not_before": not_before.isoformat(),
                    "not_after": not_after.isoformat(),
                },
            )
        return []

    def _check_current_validity(self, chain: list[x509.Certificate], now: datetime) -> list[str]:
        """Apply the expiry policy to every certificate on the chain."""
        messages: list[str] = []
        for cert in chain:
            if valid_at(cert, now):
                continue
            not_before, not_after = _validity_window(cert)
            message = (
                f"Certificate '{common_name(cert)}' is not valid now ({now.isoformat()}); "
                f"valid {not_before.isoformat()} to {not_after.isoformat()}"
            )
            if self.config.expiry_policy is ExpiryPolicy.FAIL:
                raise ExpiredAtVerifyTimeError(
                    message,
                    details={
                        "certificate": common_name(cert),
                        "verify_time": now.isoformat(),
                        "not_before": not_before.isoformat(),
                        "not_after": not_after.isoformat(),
                    },
                )
            logger.warning(message)
            messages.append(message)
        return messages
