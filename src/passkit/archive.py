"""Archive collaborator and file-entry sources.

The manifest builder never touches directories or zip internals directly;
it reads through an ``EntrySource``. ``DirectorySource`` walks a loose pass
directory, ``ArchiveSource`` adapts any ``Archive`` (``ZipArchive`` for
``.pkpass`` files) to the same interface.
"""

from __future__ import annotations

import logging
import os
import stat
import zipfile
from abc import ABC, abstractmethod
from collections.abc import Iterable
from pathlib import Path
from typing import BinaryIO

from passkit.errors import InvalidBundleError
from passkit.security import SecurityLimits, normalize_entry_path

logger = logging.getLogger(__name__)

# Fixed timestamp so identical inputs produce identical archives
ZIP_EPOCH = (1980, 1, 1, 0, 0, 0)


class EntrySource(ABC):
    """Provider of relative file paths and their bytes."""

    def __init__(self, limits: SecurityLimits | None = None) -> None:
        self.limits = limits or SecurityLimits()

    @property
    @abstractmethod
    def description(self) -> str:
        """Human-readable location used in logs and errors."""

    @abstractmethod
    def list_entries(self) -> list[str]:
        """Return every file entry as a normalized relative path.

        Raises:
            InvalidBundleError: On symbolic links, unsafe or duplicate paths
        """

    @abstractmethod
    def read_entry(self, path: str) -> bytes:
        """Return the exact bytes of one entry."""


class DirectorySource(EntrySource):
    """Entries of a directory tree on the local filesystem."""

    def __init__(self, root: Path, limits: SecurityLimits | None = None) -> None:
        super().__init__(limits)
        self.root = Path(root)

    @property
    def description(self) -> str:
        return str(self.root)

    def list_entries(self) -> list[str]:
        if not self.root.is_dir():
            raise InvalidBundleError(f"Not a directory: {self.root}", details={"path": str(self.root)})
        if self.root.is_symlink():
            raise InvalidBundleError(f"Bundle root is a symbolic link: {self.root}")

        entries: list[str] = []
        for dirpath, dirnames, filenames in os.walk(self.root, followlinks=False):
            base = Path(dirpath)
            for name in dirnames:
                if (base / name).is_symlink():
                    rel = (base / name).relative_to(self.root).as_posix()
                    raise InvalidBundleError(
                        f"Symbolic link not allowed in bundle: {rel}", details={"path": rel}
                    )
            for name in filenames:
                full = base / name
                rel = normalize_entry_path(full.relative_to(self.root).as_posix())
                mode = full.lstat().st_mode
                if stat.S_ISLNK(mode):
                    raise InvalidBundleError(
                        f"Symbolic link not allowed in bundle: {rel}", details={"path": rel}
                    )
                if not stat.S_ISREG(mode):
                    raise InvalidBundleError(
                        f"Not a regular file: {rel}", details={"path": rel}
                    )
                entries.append(rel)
                self.limits.check_count(len(entries))
        return entries

    def read_entry(self, path: str) -> bytes:
        full = self.root / normalize_entry_path(path)
        self.limits.check_size(path, full.stat().st_size)
        return full.read_bytes()


class Archive(ABC):
    """Archive container collaborator: list, read and write entries."""

    @abstractmethod
    def list_entries(self, ref: Path) -> list[str]:
        """Return raw member names of file entries (directories excluded)."""

    @abstractmethod
    def read_entry(self, ref: Path, path: str) -> bytes:
        """Return the bytes of one member."""

    @abstractmethod
    def write_entries(self, output: Path | BinaryIO, entries: Iterable[tuple[str, bytes]]) -> None:
        """Write a new archive containing ``entries``."""


class ZipArchive(Archive):
    """Zip container, the ``.pkpass`` on-disk format."""

    def __init__(self, compression: int = zipfile.ZIP_DEFLATED) -> None:
        self.compression = compression

    def _open(self, ref: Path) -> zipfile.ZipFile:
        try:
            return zipfile.ZipFile(ref, "r")
        except zipfile.BadZipFile as e:
            raise InvalidBundleError(f"Not a valid archive: {ref} ({e})", details={"path": str(ref)}) from e

    def list_entries(self, ref: Path) -> list[str]:
        names: list[str] = []
        with self._open(ref) as zf:
            for info in zf.infolist():
                if info.is_dir():
                    continue
                if stat.S_ISLNK(info.external_attr >> 16):
                    raise InvalidBundleError(
                        f"Symbolic link not allowed in bundle: {info.filename}",
                        details={"path": info.filename},
                    )
                names.append(info.filename)
        return names

    def read_entry(self, ref: Path, path: str) -> bytes:
        with self._open(ref) as zf:
            try:
                return zf.read(path)
            except KeyError:
                raise InvalidBundleError(f"No such entry: {path}", details={"path": path}) from None
            except zipfile.BadZipFile as e:
                raise InvalidBundleError(f"Corrupt entry {path}: {e}", details={"path": path}) from e

    def write_entries(self, output: Path | BinaryIO, entries: Iterable[tuple[str, bytes]]) -> None:
        with zipfile.ZipFile(output, "w", compression=self.compression) as zf:
            for path, data in entries:
                info = zipfile.ZipInfo(path, date_time=ZIP_EPOCH)
                info.compress_type = self.compression
                info.external_attr = (stat.S_IFREG | 0o644) << 16
                zf.writestr(info, data)


class ArchiveSource(EntrySource):
    """Entries of an archive, read through the archive collaborator."""

    def __init__(
        self,
        ref: Path,
        archive: Archive | None = None,
        limits: SecurityLimits | None = None,
    ) -> None:
        super().__init__(limits)
        self.ref = Path(ref)
        self.archive = archive or ZipArchive()
        self._members: dict[str, str] | None = None

    @property
    def description(self) -> str:
        return str(self.ref)

    def _member_map(self) -> dict[str, str]:
        if self._members is None:
            members: dict[str, str] = {}
            for raw in self.archive.list_entries(self.ref):
                rel = normalize_entry_path(raw)
                if rel in members:
                    raise InvalidBundleError(
                        f"Duplicate entry in archive: {rel}", details={"path": rel}
                    )
                members[rel] = raw
                self.limits.check_count(len(members))
            self._members = members
        return self._members

    def list_entries(self) -> list[str]:
        return list(self._member_map())

    def read_entry(self, path: str) -> bytes:
        members = self._member_map()
        if path not in members:
            raise InvalidBundleError(f"No such entry: {path}", details={"path": path})
        data = self.archive.read_entry(self.ref, members[path])
        self.limits.check_size(path, len(data))
        return data


def open_source(path: Path, limits: SecurityLimits | None = None) -> EntrySource:
    """Pick the entry source for a directory or archive path."""
    path = Path(path)
    if path.is_dir():
        return DirectorySource(path, limits)
    if path.is_file():
        return ArchiveSource(path, limits=limits)
    raise InvalidBundleError(f"Bundle not found: {path}", details={"path": str(path)})
