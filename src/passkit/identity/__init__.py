"""Signing identities, identity stores and the identity resolver."""

from __future__ import annotations

from passkit.identity.base import Identity, IdentityStore
from passkit.identity.keys import private_key_signer
from passkit.identity.keystore import KeystoreDirectory, load_certificates
from passkit.identity.memory import MemoryIdentityStore
from passkit.identity.resolver import IdentityResolver

__all__ = [
    "Identity",
    "IdentityStore",
    "IdentityResolver",
    "KeystoreDirectory",
    "MemoryIdentityStore",
    "load_certificates",
    "private_key_signer",
]
