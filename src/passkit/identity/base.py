"""Signing identities and the identity store collaborator interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence

from cryptography import x509

from passkit.certs import common_name
from passkit.errors import SigningError

SignFunction = Callable[[bytes], bytes]


class Identity:
    """A leaf certificate, its chain, and an opaque signing capability.

    The private key never leaves the store; callers only get ``sign``.
    Closing the identity (or leaving its ``with`` block) releases the
    capability.
    """

    def __init__(
        self,
        certificate_chain: Sequence[x509.Certificate],
        signer: SignFunction,
        label: str | None = None,
    ) -> None:
        if not certificate_chain:
            raise ValueError("Identity requires at least a leaf certificate")
        self._chain = list(certificate_chain)
        self._signer: SignFunction | None = signer
        self.label = label

    @property
    def certificate(self) -> x509.Certificate:
        """Leaf (signer) certificate."""
        return self._chain[0]

    @property
    def intermediates(self) -> list[x509.Certificate]:
        """Certificates after the leaf, in issuing order."""
        return self._chain[1:]

    @property
    def certificate_chain(self) -> list[x509.Certificate]:
        return list(self._chain)

    @property
    def common_name(self) -> str:
        return common_name(self.certificate)

    @property
    def released(self) -> bool:
        return self._signer is None

    def sign(self, data: bytes) -> bytes:
        """Sign ``data`` with the identity's private key (SHA-256)."""
        if self._signer is None:
            raise SigningError(f"Identity '{self.common_name}' has been released")
        return self._signer(data)

    def with_chain(self, chain: Sequence[x509.Certificate]) -> Identity:
        """Copy of this identity carrying a completed chain."""
        if self._signer is None:
            raise SigningError(f"Identity '{self.common_name}' has been released")
        return Identity(chain, self._signer, label=self.label)

    def close(self) -> None:
        self._signer = None

    def __enter__(self) -> Identity:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def __repr__(self) -> str:
        return (
            f"Identity(common_name={self.common_name!r}, chain_length={len(self._chain)}, "
            f"private_key=<hidden>)"
        )


class IdentityStore(ABC):
    """Read-only source of signing identities and trust anchors.

    Implementations must not cache results between calls; every query
    reflects the store's current contents.
    """

    @abstractmethod
    def list_identities(self) -> list[Identity]:
        """Return every available signing identity."""

    def intermediate_certificates(self) -> list[x509.Certificate]:
        """Extra CA certificates available for chain building."""
        return []

    @abstractmethod
    def trusted_roots(self) -> list[x509.Certificate]:
        """Root certificates chains must terminate at."""
