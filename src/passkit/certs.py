"""Certificate helpers and path building from a leaf to a trusted root."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime

from cryptography import x509
from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes
from cryptography.x509.oid import NameOID

MAX_CHAIN_DEPTH = 8


class ChainBuildError(Exception):
    """No path from the leaf to a trusted root could be built."""


def fingerprint(cert: x509.Certificate) -> str:
    return cert.fingerprint(hashes.SHA256()).hex()


def common_name(cert: x509.Certificate) -> str:
    """Subject common name, or the full subject when it has none."""
    attrs = cert.subject.get_attributes_for_oid(NameOID.COMMON_NAME)
    if not attrs:
        return cert.subject.rfc4514_string()
    value = attrs[0].value
    return value.decode("utf-8") if isinstance(value, bytes) else value


def is_ca(cert: x509.Certificate) -> bool:
    try:
        constraints = cert.extensions.get_extension_for_class(x509.BasicConstraints).value
    except x509.ExtensionNotFound:
        return False
    except ValueError:
        # Malformed or duplicate extensions
        return False
    return constraints.ca


def valid_at(cert: x509.Certificate, instant: datetime) -> bool:
    """True when ``instant`` lies inside the certificate's validity window."""
    return cert.not_valid_before_utc <= instant <= cert.not_valid_after_utc


def issued_by(cert: x509.Certificate, issuer: x509.Certificate) -> bool:
    """True when ``issuer``'s key signed ``cert`` and the names link up."""
    if cert.issuer != issuer.subject:
        return False
    try:
        cert.verify_directly_issued_by(issuer)
    except (ValueError, TypeError, InvalidSignature, UnsupportedAlgorithm):
        return False
    return True


def build_chain(
    leaf: x509.Certificate,
    intermediates: Sequence[x509.Certificate],
    trusted_roots: Sequence[x509.Certificate],
    at: datetime | None = None,
) -> list[x509.Certificate]:
    """Build ``[leaf, intermediate..., root]`` ending at a trusted root.

    Checks cryptographic linkage and CA flags. When ``at`` is given, every
    intermediate and root on the path must be valid at that instant; the
    leaf's own window is left to the caller, which reports it separately.

    Raises:
        ChainBuildError: If no complete path exists
    """
    root_fps = {fingerprint(root) for root in trusted_roots}
    if fingerprint(leaf) in root_fps:
        return [leaf]

    def usable(ca: x509.Certificate) -> bool:
        return at is None or valid_at(ca, at)

    chain = [leaf]
    seen = {fingerprint(leaf)}
    current = leaf
    expired: list[str] = []
    for _ in range(MAX_CHAIN_DEPTH):
        for root in trusted_roots:
            if issued_by(current, root):
                if usable(root):
                    chain.append(root)
                    return chain
                expired.append(common_name(root))

        issuer = None
        for candidate in intermediates:
            fp = fingerprint(candidate)
            if fp in seen or fp in root_fps:
                continue
            if is_ca(candidate) and issued_by(current, candidate):
                if not usable(candidate):
                    expired.append(common_name(candidate))
                    continue
                issuer = candidate
                seen.add(fp)
                break

        if issuer is None:
            if expired:
                raise ChainBuildError(
                    f"Issuer of '{common_name(current)}' is not valid at {at.isoformat()}: "
                    + ", ".join(expired)
                )
            raise ChainBuildError(
                f"No trusted issuer found for '{common_name(current)}' "
                f"(issuer: {current.issuer.rfc4514_string()})"
            )
        chain.append(issuer)
        current = issuer

    raise ChainBuildError(f"Certificate chain exceeds {MAX_CHAIN_DEPTH} certificates")
