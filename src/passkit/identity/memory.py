"""In-memory identity store for tests and embedding."""

from __future__ import annotations

from collections.abc import Sequence

from cryptography import x509

from passkit.identity.base import Identity, IdentityStore


class MemoryIdentityStore(IdentityStore):
    """Identity store backed by plain lists."""

    def __init__(
        self,
        identities: Sequence[Identity] = (),
        trusted_roots: Sequence[x509.Certificate] = (),
        intermediates: Sequence[x509.Certificate] = (),
    ) -> None:
        self._identities = list(identities)
        self._roots = list(trusted_roots)
        self._intermediates = list(intermediates)

    def list_identities(self) -> list[Identity]:
        return list(self._identities)

    def intermediate_certificates(self) -> list[x509.Certificate]:
        return list(self._intermediates)

    def trusted_roots(self) -> list[x509.Certificate]:
        return list(self._roots)
