"""Directory-backed keystore.

Layout::

    keystore/
        <name>.p12 | <name>.pfx   PKCS#12 identities (key + cert + extra certs)
        intermediates/            CA certificates used for chain building
        roots/                    trusted root certificates

Certificates may be PEM (one or more per file) or DER.
"""

from __future__ import annotations

import logging
from pathlib import Path

from cryptography import x509
from cryptography.hazmat.primitives.serialization import pkcs12

from passkit.identity.base import Identity, IdentityStore
from passkit.identity.keys import key_matches_certificate, private_key_signer
from passkit.security import SecurityLimits

logger = logging.getLogger(__name__)

IDENTITY_SUFFIXES = {".p12", ".pfx"}
CERTIFICATE_SUFFIXES = {".pem", ".crt", ".cer", ".der"}


def load_certificates(path: Path) -> list[x509.Certificate]:
    """Load every certificate from a PEM or DER file.

    Raises:
        ValueError: If the file holds no parseable certificate
    """
    data = Path(path).read_bytes()
    if b"-----BEGIN CERTIFICATE-----" in data:
        return x509.load_pem_x509_certificates(data)
    return [x509.load_der_x509_certificate(data)]


def _load_directory(directory: Path) -> list[x509.Certificate]:
    if not directory.is_dir():
        return []
    certs: list[x509.Certificate] = []
    for path in sorted(directory.iterdir()):
        if path.suffix.lower() not in CERTIFICATE_SUFFIXES or not path.is_file():
            continue
        try:
            certs.extend(load_certificates(path))
        except ValueError as e:
            logger.warning(f"Skipping unreadable certificate {path}: {e}")
    return certs


class KeystoreDirectory(IdentityStore):
    """Identity store reading PKCS#12 files from a directory.

    Files are re-read on every query.
    """

    def __init__(
        self,
        path: Path,
        password: bytes | None = None,
        limits: SecurityLimits | None = None,
    ) -> None:
        self.path = Path(path)
        self._password = password
        self.limits = limits or SecurityLimits()

    def __repr__(self) -> str:
        return f"KeystoreDirectory(path={str(self.path)!r}, password=<hidden>)"

    def list_identities(self) -> list[Identity]:
        if not self.path.is_dir():
            raise FileNotFoundError(f"Keystore directory not found: {self.path}")

        identities: list[Identity] = []
        for path in sorted(self.path.iterdir()):
            if path.suffix.lower() not in IDENTITY_SUFFIXES or not path.is_file():
                continue
            identity = self._load_identity(path)
            if identity is not None:
                identities.append(identity)
        logger.debug(f"Keystore {self.path}: {len(identities)} identities")
        return identities

    def _load_identity(self, path: Path) -> Identity | None:
        self.limits.check_size(path.name, path.stat().st_size)
        try:
            key, cert, extra = pkcs12.load_key_and_certificates(
                path.read_bytes(), self._password
            )
        except ValueError as e:
            # Wrong password or corrupt file: other identities stay usable
            logger.warning(f"Skipping identity {path.name}: {e}")
            return None

        if key is None or cert is None:
            logger.warning(f"Skipping identity {path.name}: missing key or certificate")
            return None
        if not key_matches_certificate(key, cert):
            logger.warning(f"Skipping identity {path.name}: key does not match certificate")
            return None

        return Identity([cert, *extra], private_key_signer(key), label=path.name)

    def intermediate_certificates(self) -> list[x509.Certificate]:
        return _load_directory(self.path / "intermediates")

    def trusted_roots(self) -> list[x509.Certificate]:
        return _load_directory(self.path / "roots")
