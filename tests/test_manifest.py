"""Tests for manifests, the manifest builder and entry sources."""

from __future__ import annotations

import hashlib
import json
import os
import threading
import zipfile
from pathlib import Path

import pytest

from passkit.archive import ArchiveSource, DirectorySource, ZipArchive, open_source
from passkit.config import PassConfig
from passkit.digest import DigestAlgorithm
from passkit.errors import InvalidBundleError, IOTimeoutError, OperationCancelledError
from passkit.provenance.manifest import FileEntry, Manifest, ManifestBuilder
from passkit.security import SecurityLimits

from conftest import PNG_BYTES, MemorySource


class TestManifest:
    """Test Manifest serialization and comparison."""

    def test_serialization_format(self):
        """Keys sorted, two-space indent, UTF-8, no trailing newline."""
        manifest = Manifest(entries={"b.json": "2" * 64, "a.txt": "1" * 64})
        data = manifest.to_bytes()

        assert data == (
            '{\n  "a.txt": "' + "1" * 64 + '",\n  "b.json": "' + "2" * 64 + '"\n}'
        ).encode("utf-8")

    def test_non_ascii_paths_kept_verbatim(self):
        manifest = Manifest(entries={"fr.lproj/café.png": "0" * 64})
        assert "café".encode("utf-8") in manifest.to_bytes()

    def test_from_entries(self):
        manifest = Manifest.from_entries([FileEntry("a.txt", b"hi")])
        assert manifest.entries == {"a.txt": hashlib.sha256(b"hi").hexdigest()}

    def test_from_bytes_round_trip(self):
        manifest = Manifest.from_entries([FileEntry("a.txt", b"hi"), FileEntry("b.json", b"{}")])
        parsed = Manifest.from_bytes(manifest.to_bytes())
        assert parsed.entries == manifest.entries
        assert parsed.algorithm is DigestAlgorithm.SHA256

    def test_from_bytes_legacy_algorithm(self):
        manifest = Manifest.from_entries([FileEntry("a.txt", b"hi")], DigestAlgorithm.SHA1)
        assert Manifest.from_bytes(manifest.to_bytes()).algorithm is DigestAlgorithm.SHA1

    @pytest.mark.parametrize("data", [b"not json", b"[1, 2]", b'{"a.txt": 5}', b"\xff\xfe"])
    def test_from_bytes_invalid(self, data):
        with pytest.raises(InvalidBundleError):
            Manifest.from_bytes(data)

    def test_from_bytes_mixed_algorithms(self):
        data = json.dumps({"a.txt": "a" * 40, "b.txt": "b" * 64}).encode()
        with pytest.raises(InvalidBundleError, match="mixes"):
            Manifest.from_bytes(data)

    def test_diff(self):
        expected = Manifest(entries={"a.txt": "1" * 64, "b.json": "2" * 64, "c.png": "3" * 64})
        actual = Manifest(entries={"a.txt": "1" * 64, "b.json": "f" * 64, "d.png": "4" * 64})

        diff = expected.diff(actual)

        assert diff.tampered == ["b.json"]
        assert diff.missing == ["c.png"]
        assert diff.added == ["d.png"]
        assert "b.json" in diff.summary()

    def test_diff_identical_is_falsy(self):
        manifest = Manifest(entries={"a.txt": "1" * 64})
        assert not manifest.diff(Manifest(entries={"a.txt": "1" * 64}))


class TestManifestBuilder:
    """Test building manifests from sources."""

    def test_three_file_payload(self, payload_dir: Path):
        manifest = ManifestBuilder().build(DirectorySource(payload_dir))

        assert manifest.paths == ["a.txt", "b.json", "img.png"]
        assert manifest.entries["a.txt"] == hashlib.sha256(b"hi").hexdigest()
        assert manifest.entries["img.png"] == hashlib.sha256(PNG_BYTES).hexdigest()

    def test_nested_paths(self, tmp_path: Path):
        """Deeply nested files appear with their full relative path."""
        deep = tmp_path / "src" / "a" / "b" / "c" / "d"
        deep.mkdir(parents=True)
        (deep / "x.bin").write_bytes(b"\x00\x01")
        (tmp_path / "src" / "top.txt").write_text("top")

        manifest = ManifestBuilder().build(DirectorySource(tmp_path / "src"))

        assert manifest.paths == ["a/b/c/d/x.bin", "top.txt"]

    def test_reserved_names_excluded(self, payload_dir: Path):
        """Existing manifest/signature at the root never enter the key set."""
        (payload_dir / "Manifest.json").write_text("{}")
        (payload_dir / "SIGNATURE").write_bytes(b"junk")
        nested = payload_dir / "en.lproj"
        nested.mkdir()
        (nested / "manifest.json").write_text("{}")

        manifest = ManifestBuilder().build(DirectorySource(payload_dir))

        assert "Manifest.json" not in manifest.entries
        assert "SIGNATURE" not in manifest.entries
        assert "en.lproj/manifest.json" in manifest.entries

    def test_serialization_independent_of_listing_order(self):
        """Same content listed in different orders gives identical bytes."""
        files = {f"f{i:02d}.txt": f"content {i}".encode() for i in range(20)}
        forward = MemorySource(files, order=sorted(files))
        backward = MemorySource(files, order=sorted(files, reverse=True))
        builder = ManifestBuilder(PassConfig(hash_workers=8))

        assert builder.build(forward).to_bytes() == builder.build(backward).to_bytes()

    def test_empty_payload_rejected(self, tmp_path: Path):
        source_dir = tmp_path / "empty"
        source_dir.mkdir()
        (source_dir / "manifest.json").write_text("{}")

        with pytest.raises(InvalidBundleError, match="No payload files"):
            ManifestBuilder().build(DirectorySource(source_dir))

    def test_symlink_rejected(self, payload_dir: Path, tmp_path: Path):
        outside = tmp_path / "outside.txt"
        outside.write_text("secret")
        os.symlink(outside, payload_dir / "link.txt")

        with pytest.raises(InvalidBundleError, match="Symbolic link"):
            ManifestBuilder().build(DirectorySource(payload_dir))

    def test_symlinked_directory_rejected(self, payload_dir: Path, tmp_path: Path):
        elsewhere = tmp_path / "elsewhere"
        elsewhere.mkdir()
        (elsewhere / "x.txt").write_text("x")
        os.symlink(elsewhere, payload_dir / "linked")

        with pytest.raises(InvalidBundleError, match="Symbolic link"):
            ManifestBuilder().build(DirectorySource(payload_dir))

    def test_overrides_replace_and_add(self, payload_dir: Path):
        overrides = {"b.json": b'{"serialNumber": "42"}', "extra/strip.png": b"strip"}

        scan = ManifestBuilder().scan(DirectorySource(payload_dir), overrides=overrides)

        assert scan.manifest.entries["b.json"] == hashlib.sha256(overrides["b.json"]).hexdigest()
        assert "extra/strip.png" in scan.manifest.entries
        assert [e.path for e in scan.entries] == ["a.txt", "b.json", "extra/strip.png", "img.png"]

    def test_override_reserved_name_rejected(self, payload_dir: Path):
        with pytest.raises(InvalidBundleError, match="reserved"):
            ManifestBuilder().build(DirectorySource(payload_dir), overrides={"signature": b"x"})

    def test_size_limit(self, payload_dir: Path):
        config = PassConfig(limits=SecurityLimits(max_file_size=3))
        with pytest.raises(InvalidBundleError, match="img.png"):
            ManifestBuilder(config).build(DirectorySource(payload_dir, config.limits))

    def test_cancellation(self, payload_dir: Path):
        cancel = threading.Event()
        cancel.set()
        with pytest.raises(OperationCancelledError):
            ManifestBuilder().build(DirectorySource(payload_dir), cancel_event=cancel)

    def test_read_timeout(self):
        source = MemorySource({"slow.txt": b"x"}, delay=1.0)
        config = PassConfig(io_timeout=0.05)
        with pytest.raises(IOTimeoutError, match="timed out"):
            ManifestBuilder(config).build(source)


class TestArchiveSource:
    """Test zip-backed entry sources."""

    def test_round_trip_through_archive(self, payload_dir: Path, tmp_path: Path):
        archive_path = tmp_path / "pass.zip"
        ZipArchive().write_entries(archive_path, [("a.txt", b"hi"), ("nested/b.json", b"{}")])

        source = open_source(archive_path)

        assert isinstance(source, ArchiveSource)
        assert sorted(source.list_entries()) == ["a.txt", "nested/b.json"]
        assert source.read_entry("nested/b.json") == b"{}"

    def test_archive_is_deterministic(self, tmp_path: Path):
        entries = [("a.txt", b"hi"), ("b.json", b"{}")]
        ZipArchive().write_entries(tmp_path / "one.zip", entries)
        ZipArchive().write_entries(tmp_path / "two.zip", entries)
        assert (tmp_path / "one.zip").read_bytes() == (tmp_path / "two.zip").read_bytes()

    def test_not_a_zip(self, tmp_path: Path):
        bogus = tmp_path / "bogus.pkpass"
        bogus.write_bytes(b"definitely not a zip")
        with pytest.raises(InvalidBundleError, match="Not a valid archive"):
            open_source(bogus).list_entries()

    def test_traversal_member_rejected(self, tmp_path: Path):
        archive_path = tmp_path / "evil.zip"
        with zipfile.ZipFile(archive_path, "w") as zf:
            zf.writestr("../evil.txt", b"x")
        with pytest.raises(InvalidBundleError, match="traversal"):
            open_source(archive_path).list_entries()

    def test_symlink_member_rejected(self, tmp_path: Path):
        archive_path = tmp_path / "link.zip"
        info = zipfile.ZipInfo("link.txt")
        info.external_attr = (0o120777) << 16
        with zipfile.ZipFile(archive_path, "w") as zf:
            zf.writestr(info, "/etc/passwd")
        with pytest.raises(InvalidBundleError, match="Symbolic link"):
            open_source(archive_path).list_entries()

    def test_missing_path(self, tmp_path: Path):
        with pytest.raises(InvalidBundleError, match="not found"):
            open_source(tmp_path / "nope.pkpass")
