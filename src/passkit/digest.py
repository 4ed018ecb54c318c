"""Digest engine for manifest entries.

SHA-256 is the current manifest format. SHA-1 is the legacy format used by
older passes and is only produced when explicitly configured.
"""

from __future__ import annotations

import hashlib
from enum import Enum

from passkit.errors import InvalidBundleError


class DigestAlgorithm(Enum):
    """Versioned manifest digest algorithms."""

    SHA1 = "sha1"  # legacy
    SHA256 = "sha256"

    @property
    def hex_length(self) -> int:
        return hashlib.new(self.value).digest_size * 2

    @classmethod
    def parse(cls, name: str) -> DigestAlgorithm:
        """Parse an algorithm name such as ``sha256`` or ``SHA-1``."""
        normalized = name.strip().lower().replace("-", "")
        try:
            return cls(normalized)
        except ValueError:
            raise ValueError(
                f"Unsupported digest algorithm: {name}. "
                f"Allowed: {', '.join(a.value for a in cls)}"
            ) from None


DEFAULT_ALGORITHM = DigestAlgorithm.SHA256


def digest(data: bytes, algorithm: DigestAlgorithm = DEFAULT_ALGORITHM) -> str:
    """Return the lowercase hex digest of ``data``."""
    return hashlib.new(algorithm.value, data).hexdigest()


def algorithm_for_digest(hexdigest: str) -> DigestAlgorithm:
    """Infer which algorithm produced a stored hex digest."""
    for algorithm in DigestAlgorithm:
        if len(hexdigest) == algorithm.hex_length:
            return algorithm
    raise InvalidBundleError(
        f"Unrecognised digest length {len(hexdigest)}: {hexdigest!r}",
        details={"digest": hexdigest},
    )
