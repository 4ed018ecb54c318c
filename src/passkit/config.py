"""
Configuration for pass signing and verification.

Supports:
- Environment variable configuration
- YAML file configuration
- Runtime overrides
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Any

import yaml

from passkit.digest import DEFAULT_ALGORITHM, DigestAlgorithm
from passkit.security import DEFAULT_MAX_FILE_SIZE, DEFAULT_MAX_FILES, SecurityLimits

MANIFEST_NAME = "manifest.json"
SIGNATURE_NAME = "signature"


class ExpiryPolicy(Enum):
    """What to do when the signer certificate is expired at verify time."""
    WARN = "warn"
    FAIL = "fail"


@dataclass
class PassConfig:
    """
    Settings shared by the manifest builder, signer, verifier and bundler.

    Defaults:
    - digest_algorithm: SHA-256 (SHA-1 only for legacy passes)
    - hash_workers: 4 threads for per-file hashing
    - io_timeout: 30 seconds per file read / identity store query
    - expiry_policy: WARN
    """

    manifest_name: str = MANIFEST_NAME
    signature_name: str = SIGNATURE_NAME
    digest_algorithm: DigestAlgorithm = DEFAULT_ALGORITHM
    hash_workers: int = 4
    io_timeout: float = 30.0
    expiry_policy: ExpiryPolicy = ExpiryPolicy.WARN
    limits: SecurityLimits = field(default_factory=SecurityLimits)

    def __post_init__(self):
        """Validate configuration after initialization."""
        if self.hash_workers < 1:
            raise ValueError(f"hash_workers must be >= 1, got {self.hash_workers}")

        if self.io_timeout <= 0:
            raise ValueError(f"io_timeout must be > 0, got {self.io_timeout}")

        if not self.manifest_name or not self.signature_name:
            raise ValueError("manifest_name and signature_name must be non-empty")

        if self.manifest_name.lower() == self.signature_name.lower():
            raise ValueError("manifest_name and signature_name must differ")

    @property
    def reserved_names(self) -> frozenset[str]:
        """Case-folded names excluded from the manifest key set."""
        return frozenset({self.manifest_name.lower(), self.signature_name.lower()})

    def is_reserved(self, rel_path: str) -> bool:
        """Reserved names only apply at the bundle root."""
        return rel_path.lower() in self.reserved_names

    def with_overrides(self, **overrides: Any) -> PassConfig:
        """Return a copy with non-None overrides applied."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})

    @classmethod
    def from_env(cls) -> PassConfig:
        """
        Create configuration from environment variables.

        Environment variables:
            PASSKIT_DIGEST: Manifest digest algorithm (sha256/sha1)
            PASSKIT_HASH_WORKERS: Hashing thread pool size
            PASSKIT_IO_TIMEOUT: Per-operation I/O timeout in seconds
            PASSKIT_EXPIRY_POLICY: Verify-time expiry handling (warn/fail)
            PASSKIT_MAX_FILE_SIZE: Maximum payload file size in bytes
            PASSKIT_MAX_FILES: Maximum number of payload files
        """
        return cls.from_dict({
            "digest_algorithm": os.getenv("PASSKIT_DIGEST"),
            "hash_workers": os.getenv("PASSKIT_HASH_WORKERS"),
            "io_timeout": os.getenv("PASSKIT_IO_TIMEOUT"),
            "expiry_policy": os.getenv("PASSKIT_EXPIRY_POLICY"),
            "max_file_size": os.getenv("PASSKIT_MAX_FILE_SIZE"),
            "max_files": os.getenv("PASSKIT_MAX_FILES"),
        })

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PassConfig:
        """Create from dictionary. Missing or None values keep defaults."""
        data = {k: v for k, v in data.items() if v is not None}
        kwargs: dict[str, Any] = {}

        if "manifest_name" in data:
            kwargs["manifest_name"] = str(data["manifest_name"])
        if "signature_name" in data:
            kwargs["signature_name"] = str(data["signature_name"])
        if "digest_algorithm" in data:
            kwargs["digest_algorithm"] = DigestAlgorithm.parse(str(data["digest_algorithm"]))
        if "hash_workers" in data:
            kwargs["hash_workers"] = int(data["hash_workers"])
        if "io_timeout" in data:
            kwargs["io_timeout"] = float(data["io_timeout"])
        if "expiry_policy" in data:
            try:
                kwargs["expiry_policy"] = ExpiryPolicy(str(data["expiry_policy"]).lower())
            except ValueError:
                raise ValueError(
                    f"expiry_policy must be 'warn' or 'fail', got {data['expiry_policy']!r}"
                ) from None

        kwargs["limits"] = SecurityLimits(
            max_file_size=int(data.get("max_file_size", DEFAULT_MAX_FILE_SIZE)),
            max_files=int(data.get("max_files", DEFAULT_MAX_FILES)),
        )
        return cls(**kwargs)

    @classmethod
    def from_yaml(cls, path: Path) -> PassConfig:
        """Load configuration from a YAML file.

        The file may hold the settings at top level or under a ``passkit`` key.
        """
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise ValueError(f"Config file must contain a mapping: {path}")

        section = data.get("passkit", data)
        if not isinstance(section, dict):
            raise ValueError(f"'passkit' section must be a mapping: {path}")
        return cls.from_dict(section)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "manifest_name": self.manifest_name,
            "signature_name": self.signature_name,
            "digest_algorithm": self.digest_algorithm.value,
            "hash_workers": self.hash_workers,
            "io_timeout": self.io_timeout,
            "expiry_policy": self.expiry_policy.value,
            "max_file_size": self.limits.max_file_size,
            "max_files": self.limits.max_files,
        }
