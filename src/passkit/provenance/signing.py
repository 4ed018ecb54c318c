"""Detached CMS (PKCS#7) signatures over pass manifests.

The signature file is a DER ``ContentInfo`` wrapping ``SignedData`` with no
encapsulated content. It carries the signer certificate and intermediates
(never the root), and one ``SignerInfo`` whose signed attributes bind the
content type, the signing time and the SHA-256 digest of the manifest.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from asn1crypto import algos, cms, core
from asn1crypto import x509 as asn1_x509
from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from cryptography.hazmat.primitives.serialization import Encoding

from passkit.certs import common_name
from passkit.clock import Clock, SystemClock
from passkit.errors import MalformedSignatureError, SigningError
from passkit.identity.base import Identity

logger = logging.getLogger(__name__)

# Digest algorithms accepted in signatures we verify
DIGEST_ALGORITHMS: dict[str, type[hashes.HashAlgorithm]] = {
    "sha1": hashes.SHA1,
    "sha256": hashes.SHA256,
    "sha384": hashes.SHA384,
    "sha512": hashes.SHA512,
}

# Digest algorithm used for signatures we produce
SIGNING_DIGEST = "sha256"

# UTCTime covers 1950-2049; later dates must use GeneralizedTime
UTC_TIME_MAX_YEAR = 2049


@dataclass
class Signature:
    """Parsed detached signature plus its exact DER encoding."""

    der: bytes = field(repr=False)
    signer_certificate: x509.Certificate
    certificates: list[x509.Certificate]
    digest_algorithm: str
    message_digest: bytes = field(repr=False)
    signature_algorithm: str
    signature: bytes = field(repr=False)
    signed_attributes: bytes = field(repr=False)
    signing_time: datetime | None = None

    @property
    def signer(self) -> str:
        return common_name(self.signer_certificate)

    @property
    def intermediates(self) -> list[x509.Certificate]:
        """Embedded certificates other than the signer's."""
        return [c for c in self.certificates if c != self.signer_certificate]

    def to_bytes(self) -> bytes:
        """Serialize to bytes (DER)."""
        return self.der

    @classmethod
    def from_bytes(cls, data: bytes) -> Signature:
        """Parse a DER detached signature.

        Raises:
            MalformedSignatureError: If the blob is not a well-formed
                single-signer detached SignedData
        """
        if not data:
            raise MalformedSignatureError("Signature is empty")
        try:
            return cls._parse(data)
        except MalformedSignatureError:
            raise
        except (ValueError, TypeError, KeyError, IndexError) as e:
            raise MalformedSignatureError(f"Signature is not a valid CMS structure: {e}") from e

    @classmethod
    def _parse(cls, data: bytes) -> Signature:
        info = cms.ContentInfo.load(data, strict=True)
        if info["content_type"].native != "signed_data":
            raise MalformedSignatureError(
                f"Expected signed_data, got {info['content_type'].native}"
            )

        signed_data = info["content"]
        if signed_data["encap_content_info"]["content"].native is not None:
            raise MalformedSignatureError("Signature is not detached (embeds content)")

        certificates: list[x509.Certificate] = []
        embedded = signed_data["certificates"]
        if not isinstance(embedded, core.Void):
            for choice in embedded:
                if choice.name == "certificate":
                    certificates.append(x509.load_der_x509_certificate(choice.chosen.dump()))

        signer_infos = signed_data["signer_infos"]
        if len(signer_infos) != 1:
            raise MalformedSignatureError(
                f"Expected exactly one signer, found {len(signer_infos)}"
            )
        signer_info = signer_infos[0]

        digest_algorithm = signer_info["digest_algorithm"]["algorithm"].native
        if digest_algorithm not in DIGEST_ALGORITHMS:
            raise MalformedSignatureError(f"Unsupported digest algorithm: {digest_algorithm}")

        signed_attrs = signer_info["signed_attrs"]
        if isinstance(signed_attrs, core.Void) or len(signed_attrs) == 0:
            raise MalformedSignatureError("Signature has no signed attributes")

        attributes = {attr["type"].native: attr["values"] for attr in signed_attrs}
        if "message_digest" not in attributes:
            raise MalformedSignatureError("Signature has no message digest attribute")
        message_digest = attributes["message_digest"][0].native

        signing_time = None
        if "signing_time" in attributes:
            signing_time = attributes["signing_time"][0].native
            if not isinstance(signing_time, datetime):
                raise MalformedSignatureError(f"Unreadable signing time: {signing_time!r}")
            if signing_time.tzinfo is None:
                # GeneralizedTime without a zone designator; read as UTC
                signing_time = signing_time.replace(tzinfo=timezone.utc)

        signer_certificate = _find_signer(signer_info["sid"], certificates)

        # The signature covers the attributes re-tagged as a universal SET OF
        signed_attributes = b"\x31" + signed_attrs.dump()[1:]

        return cls(
            der=bytes(data),
            signer_certificate=signer_certificate,
            certificates=certificates,
            digest_algorithm=digest_algorithm,
            message_digest=message_digest,
            signature_algorithm=signer_info["signature_algorithm"].signature_algo,
            signature=signer_info["signature"].native,
            signed_attributes=signed_attributes,
            signing_time=signing_time,
        )


def _find_signer(sid: cms.SignerIdentifier, certificates: list[x509.Certificate]) -> x509.Certificate:
    if sid.name == "issuer_and_serial_number":
        issuer = sid.chosen["issuer"]
        serial = sid.chosen["serial_number"].native
        for cert in certificates:
            if cert.serial_number == serial and _to_asn1(cert).issuer == issuer:
                return cert
    elif sid.name == "subject_key_identifier":
        key_id = sid.chosen.native
        for cert in certificates:
            try:
                ski = cert.extensions.get_extension_for_class(x509.SubjectKeyIdentifier).value
            except x509.ExtensionNotFound:
                continue
            if ski.digest == key_id:
                return cert
    raise MalformedSignatureError("Signer certificate is not embedded in the signature")


def _to_asn1(cert: x509.Certificate) -> asn1_x509.Certificate:
    return asn1_x509.Certificate.load(cert.public_bytes(Encoding.DER))


def _signature_algorithm(cert: x509.Certificate) -> str:
    public_key = cert.public_key()
    if isinstance(public_key, rsa.RSAPublicKey):
        return "rsassa_pkcs1v15"
    if isinstance(public_key, ec.EllipticCurvePublicKey):
        return "sha256_ecdsa"
    raise SigningError(f"Unsupported signer key type: {type(public_key).__name__}")


def _signing_time_value(signing_time: datetime) -> cms.Time:
    if signing_time.year <= UTC_TIME_MAX_YEAR:
        return cms.Time(name="utc_time", value=signing_time)
    return cms.Time(name="generalized_time", value=signing_time)


class Signer:
    """Produces detached signatures over manifest bytes."""

    def __init__(self, clock: Clock | None = None) -> None:
        self.clock = clock or SystemClock()

    def sign(self, manifest_bytes: bytes, identity: Identity) -> Signature:
        """Sign manifest bytes with a resolved identity.

        Args:
            manifest_bytes: Exact serialized manifest
            identity: Identity from the resolver (leaf first, root last)

        Returns:
            Parsed Signature; ``to_bytes()`` gives the signature file

        Raises:
            SigningError: If the key operation fails. Not retried.
        """
        leaf = identity.certificate
        signing_time = self.clock.now().replace(microsecond=0)
        embedded = [leaf] + [c for c in identity.intermediates if c.issuer != c.subject]

        signed_attrs = cms.CMSAttributes([
            cms.CMSAttribute({"type": "content_type", "values": ["data"]}),
            cms.CMSAttribute({"type": "signing_time", "values": [_signing_time_value(signing_time)]}),
            cms.CMSAttribute({
                "type": "message_digest",
                "values": [hashlib.new(SIGNING_DIGEST, manifest_bytes).digest()],
            }),
        ])

        try:
            raw_signature = identity.sign(signed_attrs.dump())
        except SigningError:
            raise
        except Exception as e:
            raise SigningError(
                f"Private key operation failed for '{identity.common_name}': {e}",
                details={"common_name": identity.common_name},
            ) from e

        leaf_asn1 = _to_asn1(leaf)
        signer_info = cms.SignerInfo({
            "version": "v1",
            "sid": cms.SignerIdentifier(
                name="issuer_and_serial_number",
                value=cms.IssuerAndSerialNumber({
                    "issuer": leaf_asn1.issuer,
                    "serial_number": leaf_asn1.serial_number,
                }),
            ),
            "digest_algorithm": algos.DigestAlgorithm({"algorithm": SIGNING_DIGEST}),
            "signed_attrs": signed_attrs,
            "signature_algorithm": algos.SignedDigestAlgorithm({"algorithm": _signature_algorithm(leaf)}),
            "signature": raw_signature,
        })

        signed_data = cms.SignedData({
            "version": "v1",
            "digest_algorithms": [algos.DigestAlgorithm({"algorithm": SIGNING_DIGEST})],
            "encap_content_info": {"content_type": "data"},
            "certificates": [
                cms.CertificateChoices(name="certificate", value=_to_asn1(cert)) for cert in embedded
            ],
            "signer_infos": [signer_info],
        })

        der = cms.ContentInfo({"content_type": "signed_data", "content": signed_data}).dump()
        logger.info(
            f"Signed manifest ({len(manifest_bytes)} bytes) as '{identity.common_name}' "
            f"at {signing_time.isoformat()}"
        )
        return Signature.from_bytes(der)
