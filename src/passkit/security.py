"""Limits and path checks for untrusted bundle input.

Provides limits and sanitization to prevent:
- Path traversal via archive member names
- Resource exhaustion (oversized files, huge bundles)
"""

from __future__ import annotations

from pathlib import PurePosixPath

from passkit.errors import InvalidBundleError

# Default security limits
DEFAULT_MAX_FILE_SIZE = 50 * 1024 * 1024  # 50 MB
DEFAULT_MAX_FILES = 10_000


class SecurityLimits:
    """Configurable security limits."""

    def __init__(
        self,
        max_file_size: int = DEFAULT_MAX_FILE_SIZE,
        max_files: int = DEFAULT_MAX_FILES,
    ) -> None:
        if max_file_size < 1:
            raise ValueError(f"max_file_size must be >= 1, got {max_file_size}")
        if max_files < 1:
            raise ValueError(f"max_files must be >= 1, got {max_files}")
        self.max_file_size = max_file_size
        self.max_files = max_files

    def __repr__(self) -> str:
        return f"SecurityLimits(max_file_size={self.max_file_size}, max_files={self.max_files})"

    def check_size(self, path: str, size: int) -> None:
        """Raise if a single entry is larger than allowed."""
        if size > self.max_file_size:
            raise InvalidBundleError(
                f"File too large: {path} ({size} bytes > {self.max_file_size})",
                details={"path": path, "size": size},
            )

    def check_count(self, count: int) -> None:
        """Raise if a bundle has too many entries."""
        if count > self.max_files:
            raise InvalidBundleError(
                f"Too many files in bundle: {count} > {self.max_files}",
                details={"count": count},
            )


def normalize_entry_path(name: str) -> str:
    """Validate a relative entry path and return it in POSIX form.

    Args:
        name: Entry name from a directory walk or archive listing

    Returns:
        Normalized relative path (no leading slash, ``/`` separators)

    Raises:
        InvalidBundleError: If path is empty, absolute or escapes the root
    """
    if not name or not name.strip():
        raise InvalidBundleError("Zero-length entry path in bundle")

    posix = name.replace("\\", "/")
    if posix.startswith("/"):
        raise InvalidBundleError(f"Absolute path in bundle: {name}", details={"path": name})

    path = PurePosixPath(posix)
    if ".." in path.parts:
        raise InvalidBundleError(f"Path traversal in bundle: {name}", details={"path": name})

    normalized = str(path)
    if normalized in ("", "."):
        raise InvalidBundleError(f"Zero-length entry path in bundle: {name!r}")
    return normalized
