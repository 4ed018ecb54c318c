"""Tests for identities, identity stores and the resolver."""

from __future__ import annotations

import time
from datetime import datetime, timezone
from pathlib import Path

import pytest

from passkit.clock import FixedClock
from passkit.errors import (
    AmbiguousIdentityError,
    IdentityNotFoundError,
    IncompleteChainError,
    IOTimeoutError,
    SigningError,
)
from passkit.identity import (
    Identity,
    IdentityResolver,
    KeystoreDirectory,
    MemoryIdentityStore,
    load_certificates,
    private_key_signer,
)

from conftest import LEAF_CN, SIGNING_TIME, issue_certificate, make_key


class SlowStore(MemoryIdentityStore):
    def list_identities(self):
        time.sleep(1.0)
        return super().list_identities()


class TestIdentity:
    """Test the Identity handle."""

    def test_properties(self, pki):
        identity = pki.identity()
        assert identity.common_name == LEAF_CN
        assert identity.certificate == pki.leaf
        assert identity.intermediates == [pki.intermediate]

    def test_repr_hides_key(self, pki):
        assert "private_key=<hidden>" in repr(pki.identity())

    def test_released_after_context(self, pki):
        with pki.identity() as identity:
            assert identity.sign(b"data")
        assert identity.released
        with pytest.raises(SigningError, match="released"):
            identity.sign(b"data")

    def test_empty_chain_rejected(self):
        with pytest.raises(ValueError):
            Identity([], lambda data: b"")


class TestIdentityResolver:
    """Test identity selection by common-name suffix."""

    def test_resolves_unique_suffix(self, pki):
        resolver = IdentityResolver(pki.store())

        with resolver.resolve("pass.com.example.event") as identity:
            assert identity.common_name == LEAF_CN
            assert identity.certificate_chain == [pki.leaf, pki.intermediate, pki.root]

    def test_store_identity_survives_release(self, pki):
        """Releasing the resolved copy leaves the store usable."""
        store = pki.store()
        resolver = IdentityResolver(store)
        with resolver.resolve("event"):
            pass
        with resolver.resolve("event") as identity:
            assert not identity.released

    def test_not_found(self, pki):
        with pytest.raises(IdentityNotFoundError) as exc_info:
            IdentityResolver(pki.store()).resolve("pass.com.example.coupon")
        assert exc_info.value.hint == "pass.com.example.coupon"

    def test_match_is_case_sensitive(self, pki):
        with pytest.raises(IdentityNotFoundError):
            IdentityResolver(pki.store()).resolve("EVENT")

    def test_ambiguous(self, pki):
        key_a, cert_a = pki.issue_leaf("Alpha Vendor")
        key_b, cert_b = pki.issue_leaf("Beta Vendor")
        store = pki.store(
            Identity([cert_a, pki.intermediate], private_key_signer(key_a)),
            Identity([cert_b, pki.intermediate], private_key_signer(key_b)),
        )

        with pytest.raises(AmbiguousIdentityError) as exc_info:
            IdentityResolver(store).resolve("Vendor")
        assert exc_info.value.common_names == ["Alpha Vendor", "Beta Vendor"]

    def test_incomplete_chain(self, pki):
        """A leaf without its intermediate cannot reach the root."""
        store = pki.store(pki.identity(with_intermediate=False))
        with pytest.raises(IncompleteChainError):
            IdentityResolver(store).resolve("event")

    def test_store_intermediates_complete_chain(self, pki):
        store = pki.store(pki.identity(with_intermediate=False), intermediates=True)
        with IdentityResolver(store).resolve("event") as identity:
            assert identity.certificate_chain[-1] == pki.root

    def test_untrusted_root(self, pki):
        store = MemoryIdentityStore(identities=[pki.identity()], trusted_roots=[])
        with pytest.raises(IncompleteChainError):
            IdentityResolver(store).resolve("event")

    def test_expired_intermediate_is_incomplete(self, pki):
        """An intermediate past its validity window does not complete the chain."""
        ca_key = make_key()
        lapsed_ca = issue_certificate(
            "Lapsed CA", ca_key, issuer=pki.root, issuer_key=pki.root_key, ca=True,
            not_before=datetime(2000, 1, 1, tzinfo=timezone.utc),
            not_after=datetime(2001, 1, 1, tzinfo=timezone.utc),
        )
        key = make_key()
        leaf = issue_certificate(LEAF_CN, key, issuer=lapsed_ca, issuer_key=ca_key)
        store = MemoryIdentityStore(
            identities=[Identity([leaf, lapsed_ca], private_key_signer(key))],
            trusted_roots=[pki.root],
        )

        with pytest.raises(IncompleteChainError, match="Lapsed CA"):
            IdentityResolver(store, clock=FixedClock(SIGNING_TIME)).resolve("event")

    def test_store_timeout(self, pki):
        store = SlowStore(identities=[pki.identity()], trusted_roots=[pki.root])
        with pytest.raises(IOTimeoutError):
            IdentityResolver(store, timeout=0.05).resolve("event")


class TestKeystoreDirectory:
    """Test the PKCS#12 keystore directory."""

    def test_loads_identity_and_trust(self, pki, tmp_path: Path):
        keystore = KeystoreDirectory(pki.write_keystore(tmp_path / "keys"), password=b"secret")

        identities = keystore.list_identities()

        assert [i.common_name for i in identities] == [LEAF_CN]
        assert keystore.trusted_roots() == [pki.root]
        assert keystore.intermediate_certificates() == [pki.intermediate]

    def test_resolves_through_keystore(self, pki, tmp_path: Path):
        keystore = KeystoreDirectory(pki.write_keystore(tmp_path / "keys"), password=b"secret")
        with IdentityResolver(keystore).resolve("example.event") as identity:
            assert len(identity.certificate_chain) == 3

    def test_wrong_password_skips_identity(self, pki, tmp_path: Path):
        keystore = KeystoreDirectory(pki.write_keystore(tmp_path / "keys"), password=b"wrong")
        assert keystore.list_identities() == []

    def test_missing_directory(self, tmp_path: Path):
        with pytest.raises(FileNotFoundError):
            KeystoreDirectory(tmp_path / "missing").list_identities()

    def test_repr_hides_password(self, tmp_path: Path):
        assert "secret" not in repr(KeystoreDirectory(tmp_path, password=b"secret"))

    def test_load_certificates_pem_and_der(self, pki, tmp_path: Path):
        keys = pki.write_keystore(tmp_path / "keys")
        assert load_certificates(keys / "roots" / "root.pem") == [pki.root]
        assert load_certificates(keys / "intermediates" / "wwdr.cer") == [pki.intermediate]
