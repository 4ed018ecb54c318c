"""Private keys wrapped as opaque signing capabilities."""

from __future__ import annotations

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, padding, rsa

from passkit.errors import SigningError
from passkit.identity.base import SignFunction


def private_key_signer(key: object) -> SignFunction:
    """Return a ``sign(data) -> signature`` closure over ``key``.

    RSA keys sign with PKCS#1 v1.5, EC keys with ECDSA; both over SHA-256.
    """
    if isinstance(key, rsa.RSAPrivateKey):
        def sign_rsa(data: bytes) -> bytes:
            return key.sign(data, padding.PKCS1v15(), hashes.SHA256())
        return sign_rsa

    if isinstance(key, ec.EllipticCurvePrivateKey):
        def sign_ec(data: bytes) -> bytes:
            return key.sign(data, ec.ECDSA(hashes.SHA256()))
        return sign_ec

    raise SigningError(f"Unsupported private key type: {type(key).__name__}")


def key_matches_certificate(key: object, certificate: x509.Certificate) -> bool:
    """True when ``key`` is the private half of the certificate's key."""
    public_key = getattr(key, "public_key", None)
    if public_key is None:
        return False

    def spki(k: object) -> bytes:
        return k.public_bytes(  # type: ignore[attr-defined]
            encoding=serialization.Encoding.DER,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )

    return spki(public_key()) == spki(certificate.public_key())
