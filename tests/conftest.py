"""Shared fixtures: a throwaway root -> intermediate -> leaf PKI."""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from cryptography.hazmat.primitives.serialization import pkcs12
from cryptography.x509.oid import NameOID

from passkit.archive import EntrySource
from passkit.clock import FixedClock
from passkit.identity import Identity, MemoryIdentityStore, private_key_signer

VALID_FROM = datetime(2020, 1, 1, tzinfo=timezone.utc)
VALID_UNTIL = datetime(2040, 1, 1, tzinfo=timezone.utc)
SIGNING_TIME = datetime(2026, 6, 1, 12, 0, 0, tzinfo=timezone.utc)

LEAF_CN = "Pass Type ID: pass.com.example.event"
PNG_BYTES = b"\x89PNG\r\n\x1a\n\x00\x00\x00\rIHDR\x00\x00\x00\x01\x00\x00\x00\x01"


def make_key(kind: str = "rsa"):
    if kind == "ec":
        return ec.generate_private_key(ec.SECP256R1())
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


def issue_certificate(
    common_name: str,
    key,
    issuer: x509.Certificate | None = None,
    issuer_key=None,
    ca: bool = False,
    not_before: datetime = VALID_FROM,
    not_after: datetime = VALID_UNTIL,
) -> x509.Certificate:
    """Issue a certificate; self-signed when no issuer is given."""
    subject = x509.Name([
        x509.NameAttribute(NameOID.COMMON_NAME, common_name),
        x509.NameAttribute(NameOID.ORGANIZATION_NAME, "Example Test PKI"),
    ])
    builder = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer.subject if issuer else subject)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(not_before)
        .not_valid_after(not_after)
        .add_extension(x509.BasicConstraints(ca=ca, path_length=None), critical=True)
    )
    return builder.sign(issuer_key or key, hashes.SHA256())


@dataclass
class PKI:
    root_key: object
    root: x509.Certificate
    intermediate_key: object
    intermediate: x509.Certificate
    leaf_key: object
    leaf: x509.Certificate

    def identity(self, with_intermediate: bool = True) -> Identity:
        chain = [self.leaf, self.intermediate] if with_intermediate else [self.leaf]
        return Identity(chain, private_key_signer(self.leaf_key))

    def issue_leaf(self, common_name: str, kind: str = "rsa", **kwargs) -> tuple[object, x509.Certificate]:
        key = make_key(kind)
        cert = issue_certificate(
            common_name, key, issuer=self.intermediate, issuer_key=self.intermediate_key, **kwargs
        )
        return key, cert

    def store(self, *identities: Identity, intermediates: bool = False) -> MemoryIdentityStore:
        return MemoryIdentityStore(
            identities=identities or [self.identity()],
            trusted_roots=[self.root],
            intermediates=[self.intermediate] if intermediates else [],
        )

    def write_keystore(self, directory: Path, password: bytes | None = b"secret") -> Path:
        """Write a PKCS#12 identity plus roots/ and intermediates/."""
        directory.mkdir(parents=True, exist_ok=True)
        encryption = (
            serialization.BestAvailableEncryption(password) if password
            else serialization.NoEncryption()
        )
        (directory / "event.p12").write_bytes(
            pkcs12.serialize_key_and_certificates(b"event", self.leaf_key, self.leaf, None, encryption)
        )
        (directory / "roots").mkdir(exist_ok=True)
        (directory / "roots" / "root.pem").write_bytes(self.root.public_bytes(serialization.Encoding.PEM))
        (directory / "intermediates").mkdir(exist_ok=True)
        (directory / "intermediates" / "wwdr.cer").write_bytes(
            self.intermediate.public_bytes(serialization.Encoding.DER)
        )
        return directory


@pytest.fixture(scope="session")
def pki() -> PKI:
    root_key = make_key()
    root = issue_certificate("Example Root CA", root_key, ca=True)
    intermediate_key = make_key()
    intermediate = issue_certificate(
        "Example Developer Relations CA", intermediate_key, issuer=root, issuer_key=root_key, ca=True
    )
    leaf_key = make_key()
    leaf = issue_certificate(LEAF_CN, leaf_key, issuer=intermediate, issuer_key=intermediate_key)
    return PKI(root_key, root, intermediate_key, intermediate, leaf_key, leaf)


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(SIGNING_TIME)


@pytest.fixture
def payload_dir(tmp_path: Path) -> Path:
    """Minimal three-file pass: a.txt, b.json, img.png."""
    source = tmp_path / "Event.pass"
    source.mkdir()
    (source / "a.txt").write_text("hi")
    (source / "b.json").write_text("{}")
    (source / "img.png").write_bytes(PNG_BYTES)
    return source


class MemorySource(EntrySource):
    """Entry source over a dict, optionally listing in a fixed order or slowly."""

    def __init__(self, files: dict[str, bytes], order: list[str] | None = None, delay: float = 0.0) -> None:
        super().__init__()
        self.files = files
        self.order = order
        self.delay = delay

    @property
    def description(self) -> str:
        return "memory"

    def list_entries(self) -> list[str]:
        return list(self.order if self.order is not None else self.files)

    def read_entry(self, path: str) -> bytes:
        if self.delay:
            time.sleep(self.delay)
        return self.files[path]
