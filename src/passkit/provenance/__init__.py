"""Manifest generation, signing and verification (tamper-evident passes).

Provides deterministic manifest generation, detached CMS signatures over
the manifest, and verification of both.
"""

from __future__ import annotations

from passkit.provenance.manifest import FileEntry, Manifest, ManifestBuilder, ManifestDiff, ScanResult
from passkit.provenance.signing import Signature, Signer
from passkit.provenance.verifier import VerificationResult, Verifier

__all__ = [
    "FileEntry",
    "Manifest",
    "ManifestBuilder",
    "ManifestDiff",
    "ScanResult",
    "Signature",
    "Signer",
    "VerificationResult",
    "Verifier",
]
