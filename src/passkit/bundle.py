"""Bundle orchestration: sign a pass source, verify a signed pass.

Sign path:   IDLE -> MANIFEST_BUILT -> SIGNED -> WRITTEN
Verify path: IDLE -> EXTRACTED -> MANIFEST_REBUILT -> VERIFIED

Output is staged next to the destination and moved into place only after
every step succeeded, so a failed run never leaves a partial bundle.
"""

from __future__ import annotations

import io
import logging
import os
import shutil
import tempfile
import threading
import uuid
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from cryptography import x509

from passkit.archive import Archive, EntrySource, ZipArchive, open_source
from passkit.clock import Clock, SystemClock
from passkit.concurrency import call_with_timeout
from passkit.config import PassConfig
from passkit.errors import ContentMismatchError, InvalidBundleError, ReasonCode
from passkit.identity.base import IdentityStore
from passkit.identity.resolver import IdentityResolver
from passkit.provenance.manifest import FileEntry, Manifest, ManifestBuilder
from passkit.provenance.signing import Signature, Signer
from passkit.provenance.verifier import VerificationResult, Verifier

logger = logging.getLogger(__name__)


class SignState(Enum):
    IDLE = "idle"
    MANIFEST_BUILT = "manifest_built"
    SIGNED = "signed"
    WRITTEN = "written"


class VerifyState(Enum):
    IDLE = "idle"
    EXTRACTED = "extracted"
    MANIFEST_REBUILT = "manifest_rebuilt"
    VERIFIED = "verified"


class _Progress:
    """Forward-only walk through an ordered list of states."""

    def __init__(self, states: Sequence[Enum], label: str) -> None:
        self._states = list(states)
        self._index = 0
        self._label = label

    @property
    def state(self) -> Enum:
        return self._states[self._index]

    def advance(self, state: Enum) -> None:
        expected = self._states[self._index + 1] if self._index + 1 < len(self._states) else None
        if state is not expected:
            raise RuntimeError(f"Invalid {self._label} transition: {self.state.name} -> {state.name}")
        self._index += 1
        logger.debug(f"{self._label}: {state.name}")


@dataclass
class SignedBundle:
    """Everything that goes into one pass: payload, manifest, signature."""

    entries: list[FileEntry]
    manifest: Manifest
    manifest_bytes: bytes
    signature: Signature

    def files(self, config: PassConfig) -> list[tuple[str, bytes]]:
        """Payload in path order, then manifest, then signature."""
        files = [(entry.path, entry.content) for entry in self.entries]
        files.append((config.manifest_name, self.manifest_bytes))
        files.append((config.signature_name, self.signature.to_bytes()))
        return files


class PassBundler:
    """Signs pass sources and verifies signed passes."""

    def __init__(
        self,
        identity_store: IdentityStore | None = None,
        trusted_roots: Sequence[x509.Certificate] | None = None,
        config: PassConfig | None = None,
        clock: Clock | None = None,
        archive: Archive | None = None,
    ) -> None:
        self.identity_store = identity_store
        self.trusted_roots = list(trusted_roots) if trusted_roots is not None else None
        self.config = config or PassConfig()
        self.clock = clock or SystemClock()
        self.archive = archive or ZipArchive()
        self.builder = ManifestBuilder(self.config)

    # Signing

    def prepare(
        self,
        source: Path | EntrySource,
        hint: str,
        overrides: Mapping[str, bytes] | None = None,
    ) -> SignedBundle:
        """Build the manifest for ``source`` and sign it.

        Args:
            source: Pass directory, archive, or an EntrySource
            hint: Common-name suffix selecting the signing identity
            overrides: Extra or replacement payload files (raw bytes)

        Returns:
            SignedBundle ready to be written

        Raises:
            InvalidBundleError, IdentityError, SigningError, IOTimeoutError
        """
        return self._prepare(source, hint, overrides, _Progress(list(SignState), "sign"))

    def _prepare(
        self,
        source: Path | EntrySource,
        hint: str,
        overrides: Mapping[str, bytes] | None,
        progress: _Progress,
    ) -> SignedBundle:
        if self.identity_store is None:
            raise ValueError("Signing requires an identity store")

        entry_source = source if isinstance(source, EntrySource) else open_source(source, self.config.limits)

        scan = self.builder.scan(entry_source, overrides=overrides)
        manifest_bytes = scan.manifest.to_bytes()
        progress.advance(SignState.MANIFEST_BUILT)

        resolver = IdentityResolver(
            self.identity_store, timeout=self.config.io_timeout, clock=self.clock
        )
        with resolver.resolve(hint) as identity:
            signature = Signer(self.clock).sign(manifest_bytes, identity)
        progress.advance(SignState.SIGNED)

        return SignedBundle(
            entries=scan.entries,
            manifest=scan.manifest,
            manifest_bytes=manifest_bytes,
            signature=signature,
        )

    def sign(
        self,
        source: Path,
        hint: str,
        output: Path,
        as_archive: bool = True,
        overrides: Mapping[str, bytes] | None = None,
        force: bool = False,
    ) -> Path:
        """Sign ``source`` and write the pass to ``output``.

        Args:
            source: Pass directory or archive
            hint: Common-name suffix selecting the signing identity
            output: Destination archive file or directory
            as_archive: Write a zip archive (True) or a loose directory
            overrides: Extra or replacement payload files (raw bytes)
            force: Replace an existing output

        Returns:
            Path to the written pass
        """
        output = Path(output)
        if (output.exists() or output.is_symlink()) and not force:
            raise FileExistsError(f"Output already exists: {output} (use force to replace)")

        progress = _Progress(list(SignState), "sign")
        signed = self._prepare(source, hint, overrides, progress)
        files = signed.files(self.config)

        if as_archive:
            self._commit_archive(files, output)
        else:
            self._commit_directory(files, output)
        progress.advance(SignState.WRITTEN)

        logger.info(
            f"Wrote pass {output} ({len(signed.entries)} payload files, signer '{signed.signature.signer}')"
        )
        return output

    def build_archive_bytes(
        self,
        source: Path | EntrySource,
        hint: str,
        overrides: Mapping[str, bytes] | None = None,
    ) -> bytes:
        """Sign ``source`` and return the archive in memory."""
        signed = self.prepare(source, hint, overrides)
        buffer = io.BytesIO()
        self.archive.write_entries(buffer, signed.files(self.config))
        return buffer.getvalue()

    def _commit_archive(self, files: list[tuple[str, bytes]], output: Path) -> None:
        output.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=output.parent, prefix=f".{output.name}.", suffix=".tmp")
        os.close(fd)
        tmp = Path(tmp_name)
        try:
            self.archive.write_entries(tmp, files)
            if output.is_dir() and not output.is_symlink():
                self._swap_into_place(tmp, output)
            else:
                os.replace(tmp, output)
        except BaseException:
            tmp.unlink(missing_ok=True)
            raise

    def _commit_directory(self, files: list[tuple[str, bytes]], output: Path) -> None:
        output.parent.mkdir(parents=True, exist_ok=True)
        staging = Path(tempfile.mkdtemp(dir=output.parent, prefix=f".{output.name}."))
        try:
            for rel_path, data in files:
                target = staging / rel_path
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_bytes(data)
            self._swap_into_place(staging, output)
        except BaseException:
            shutil.rmtree(staging, ignore_errors=True)
            raise

    @staticmethod
    def _swap_into_place(staging: Path, output: Path) -> None:
        if not (output.exists() or output.is_symlink()):
            os.replace(staging, output)
            return

        backup = output.with_name(f".{output.name}.old-{uuid.uuid4().hex[:8]}")
        os.replace(output, backup)
        try:
            os.replace(staging, output)
        except OSError:
            os.replace(backup, output)
            raise
        if backup.is_dir() and not backup.is_symlink():
            shutil.rmtree(backup)
        else:
            backup.unlink()

    # Verification

    def verify(
        self,
        bundle: Path | EntrySource,
        cancel_event: threading.Event | None = None,
    ) -> VerificationResult:
        """Verify a signed pass directory or archive.

        Invalid bundles and failed checks are reported in the result.
        Only collaborator I/O failures (``IOTimeoutError``, ``OSError``)
        and cancellation raise.
        """
        progress = _Progress(list(VerifyState), "verify")
        try:
            source = bundle if isinstance(bundle, EntrySource) else open_source(bundle, self.config.limits)
            manifest_bytes, signature_bytes = self._extract_reserved(source)
            stored = Manifest.from_bytes(manifest_bytes)
            progress.advance(VerifyState.EXTRACTED)

            rebuilt = self.builder.build(source, algorithm=stored.algorithm, cancel_event=cancel_event)
            progress.advance(VerifyState.MANIFEST_REBUILT)
        except InvalidBundleError as e:
            logger.info(f"Invalid bundle {bundle}: {e.message}")
            return VerificationResult(
                valid=False,
                reason=ReasonCode.INVALID_BUNDLE,
                message=e.message,
                details=dict(e.details),
                timestamp=self.clock.now().isoformat(),
            )

        result = self._verifier().verify(manifest_bytes, signature_bytes)
        result.files_checked = len(rebuilt)

        if result.valid:
            diff = stored.diff(rebuilt)
            if diff:
                error = ContentMismatchError(
                    f"Payload does not match the signed manifest ({diff.summary()})",
                    details=diff.to_dict(),
                )
                logger.info(f"Verification failed [{error.reason.value}]: {error.message}")
                result = VerificationResult.failure(
                    error,
                    warnings=result.warnings,
                    signer=result.signer,
                    signing_time=result.signing_time,
                    files_checked=len(rebuilt),
                    timestamp=result.timestamp,
                )

        progress.advance(VerifyState.VERIFIED)
        return result

    def verify_and_report(
        self,
        bundle: Path,
        output_dir: Path,
        cancel_event: threading.Event | None = None,
    ) -> tuple[VerificationResult, dict[str, Path]]:
        """Verify and write reports.

        Returns:
            Tuple of (result, report_paths)
        """
        result = self.verify(bundle, cancel_event=cancel_event)

        output_dir.mkdir(parents=True, exist_ok=True)
        paths = {}

        # Write JSON report
        json_path = output_dir / "verification_report.json"
        result.write_json(json_path)
        paths["json"] = json_path

        # Write Markdown report
        md_path = output_dir / "verification_report.md"
        result.write_markdown(md_path)
        paths["markdown"] = md_path

        return result, paths

    def _extract_reserved(self, source: EntrySource) -> tuple[bytes, bytes]:
        entries = source.list_entries()

        def find(name: str) -> str:
            matches = [p for p in entries if p.lower() == name.lower()]
            if not matches:
                raise InvalidBundleError(
                    f"Bundle has no {name} file: {source.description}", details={"missing": name}
                )
            if len(matches) > 1:
                raise InvalidBundleError(
                    f"Bundle has more than one {name} file: {', '.join(matches)}",
                    details={"duplicates": matches},
                )
            return matches[0]

        manifest_path = find(self.config.manifest_name)
        signature_path = find(self.config.signature_name)
        return source.read_entry(manifest_path), source.read_entry(signature_path)

    def _verifier(self) -> Verifier:
        roots = self.trusted_roots
        if roots is None:
            if self.identity_store is None:
                roots = []
            else:
                roots = call_with_timeout(
                    self.identity_store.trusted_roots, self.config.io_timeout, "Listing trusted roots"
                )
        return Verifier(roots, config=self.config, clock=self.clock)
