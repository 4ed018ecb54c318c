"""Pass manifest and manifest builder.

The manifest maps every payload path to the hex digest of its bytes. Its
serialized form is what gets signed, so serialization is fixed: a UTF-8
JSON object with keys sorted by code point and two-space indentation.
"""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from passkit.archive import EntrySource
from passkit.concurrency import map_bounded
from passkit.config import PassConfig
from passkit.digest import DEFAULT_ALGORITHM, DigestAlgorithm, algorithm_for_digest, digest
from passkit.errors import InvalidBundleError
from passkit.security import normalize_entry_path

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FileEntry:
    """A payload file: relative POSIX path plus raw bytes."""

    path: str
    content: bytes = field(repr=False)


@dataclass
class ManifestDiff:
    """Differences between an expected and an actual manifest."""

    tampered: list[str] = field(default_factory=list)
    missing: list[str] = field(default_factory=list)
    added: list[str] = field(default_factory=list)

    def __bool__(self) -> bool:
        return bool(self.tampered or self.missing or self.added)

    def to_dict(self) -> dict[str, list[str]]:
        return {"tampered": self.tampered, "missing": self.missing, "added": self.added}

    def summary(self) -> str:
        parts = []
        if self.tampered:
            parts.append(f"modified: {', '.join(self.tampered)}")
        if self.missing:
            parts.append(f"missing: {', '.join(self.missing)}")
        if self.added:
            parts.append(f"not in manifest: {', '.join(self.added)}")
        return "; ".join(parts)


@dataclass
class Manifest:
    """Ordered mapping of relative path -> hex digest."""

    entries: dict[str, str] = field(default_factory=dict)
    algorithm: DigestAlgorithm = DEFAULT_ALGORITHM

    def __post_init__(self) -> None:
        self.entries = dict(sorted(self.entries.items()))

    def __len__(self) -> int:
        return len(self.entries)

    @property
    def paths(self) -> list[str]:
        return list(self.entries)

    def to_bytes(self) -> bytes:
        """Serialize deterministically. The signature covers these bytes."""
        return json.dumps(
            self.entries, sort_keys=True, indent=2, ensure_ascii=False
        ).encode("utf-8")

    @classmethod
    def from_bytes(cls, data: bytes) -> Manifest:
        """Parse a stored manifest.

        Raises:
            InvalidBundleError: If not a JSON object of path -> hex digest
        """
        try:
            parsed = json.loads(data.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise InvalidBundleError(f"Manifest is not valid JSON: {e}") from e

        if not isinstance(parsed, dict):
            raise InvalidBundleError("Manifest must be a JSON object")

        algorithms: set[DigestAlgorithm] = set()
        for path, value in parsed.items():
            if not isinstance(value, str):
                raise InvalidBundleError(
                    f"Manifest digest for {path} is not a string", details={"path": path}
                )
            algorithms.add(algorithm_for_digest(value))

        if len(algorithms) > 1:
            raise InvalidBundleError(
                "Manifest mixes digest algorithms: "
                + ", ".join(sorted(a.value for a in algorithms))
            )
        algorithm = algorithms.pop() if algorithms else DEFAULT_ALGORITHM
        return cls(entries=parsed, algorithm=algorithm)

    @classmethod
    def from_entries(
        cls,
        entries: Iterable[FileEntry],
        algorithm: DigestAlgorithm = DEFAULT_ALGORITHM,
    ) -> Manifest:
        """Hash entries sequentially. See ManifestBuilder for the pooled path."""
        return cls(
            entries={e.path: digest(e.content, algorithm) for e in entries},
            algorithm=algorithm,
        )

    def diff(self, actual: Manifest) -> ManifestDiff:
        """Compare this (expected) manifest with one rebuilt from the payload."""
        result = ManifestDiff()
        for path, expected in self.entries.items():
            if path not in actual.entries:
                result.missing.append(path)
            elif actual.entries[path].lower() != expected.lower():
                result.tampered.append(path)
        result.added = [p for p in actual.entries if p not in self.entries]
        return result

    def to_dict(self) -> dict[str, Any]:
        return {"algorithm": self.algorithm.value, "entries": dict(self.entries)}


@dataclass
class ScanResult:
    """Manifest plus the exact entries it was computed from."""

    manifest: Manifest
    entries: list[FileEntry]


class ManifestBuilder:
    """Builds manifests from an entry source.

    Files are read and hashed on a bounded thread pool. Results are sorted
    by path before serialization, so completion order never matters.
    """

    def __init__(self, config: PassConfig | None = None) -> None:
        self.config = config or PassConfig()

    def build(
        self,
        source: EntrySource,
        algorithm: DigestAlgorithm | None = None,
        overrides: Mapping[str, bytes] | None = None,
        cancel_event: threading.Event | None = None,
    ) -> Manifest:
        """Build the manifest for a source. See ``scan``."""
        return self.scan(source, algorithm, overrides, cancel_event).manifest

    def scan(
        self,
        source: EntrySource,
        algorithm: DigestAlgorithm | None = None,
        overrides: Mapping[str, bytes] | None = None,
        cancel_event: threading.Event | None = None,
    ) -> ScanResult:
        """Read and hash every payload entry of ``source``.

        Args:
            source: Directory or archive entry source
            algorithm: Digest algorithm (default: configured algorithm)
            overrides: Extra or replacement payload entries as raw bytes
            cancel_event: Checked between file hashes

        Returns:
            ScanResult with the manifest and the payload entries

        Raises:
            InvalidBundleError: Symlinks, unsafe paths, or empty payload
            IOTimeoutError: A file read exceeded the configured timeout
            OperationCancelledError: ``cancel_event`` was set
        """
        algorithm = algorithm or self.config.digest_algorithm
        override_map = self._normalize_overrides(overrides or {})

        paths = sorted(
            p for p in source.list_entries()
            if not self.config.is_reserved(p) and p not in override_map
        )
        logger.debug(f"Hashing {len(paths)} entries from {source.description}")

        def load(path: str) -> tuple[FileEntry, str]:
            content = source.read_entry(path)
            return FileEntry(path, content), digest(content, algorithm)

        loaded = map_bounded(
            load,
            paths,
            workers=self.config.hash_workers,
            timeout=self.config.io_timeout,
            what=f"Reading {source.description}",
            cancel_event=cancel_event,
        )
        for path, content in override_map.items():
            loaded.append((FileEntry(path, content), digest(content, algorithm)))

        if not loaded:
            raise InvalidBundleError(
                f"No payload files to sign in {source.description}",
                details={"source": source.description},
            )

        loaded.sort(key=lambda item: item[0].path)
        manifest = Manifest(
            entries={entry.path: hexdigest for entry, hexdigest in loaded},
            algorithm=algorithm,
        )
        return ScanResult(manifest=manifest, entries=[entry for entry, _ in loaded])

    def _normalize_overrides(self, overrides: Mapping[str, bytes]) -> dict[str, bytes]:
        normalized: dict[str, bytes] = {}
        for raw, content in overrides.items():
            path = normalize_entry_path(raw)
            if self.config.is_reserved(path):
                raise InvalidBundleError(
                    f"Override uses a reserved name: {path}", details={"path": path}
                )
            self.config.limits.check_size(path, len(content))
            normalized[path] = bytes(content)
        return normalized
