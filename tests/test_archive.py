"""Tests for ACI packaging and parallel compression."""

import gzip
import json
import os
import tarfile
from pathlib import Path

import pytest

from aci_imagegen.builds.archive import (
    ArchiveError,
    compress,
    list_archive_entries,
    package_directory,
    read_archive_manifest,
)


@pytest.fixture
def staged(tmp_path: Path) -> Path:
    """Staged image directory with a manifest and a small rootfs."""
    path = tmp_path / "builder"
    (path / "rootfs" / "dir").mkdir(parents=True)
    (path / "manifest").write_text(json.dumps({"name": "example.com/a"}))
    (path / "rootfs" / "a").write_text("a")
    (path / "rootfs" / "dir" / "b").write_text("b")
    return path


class TestPackageDirectory:
    """Tests for package_directory function."""

    def test_entries(self, staged: Path) -> None:
        """Archive holds the manifest and every rootfs file."""
        archive = package_directory(staged)
        assert archive == staged / "image.aci"

        with tarfile.open(archive) as tar:
            files = {m.name for m in tar.getmembers() if m.isfile()}
        assert files == {"manifest", "rootfs/a", "rootfs/dir/b"}

    def test_empty_rootfs(self, staged: Path) -> None:
        """Only the manifest (and rootfs dir) for an empty rootfs."""
        for p in (staged / "rootfs" / "dir" / "b", staged / "rootfs" / "a"):
            p.unlink()
        (staged / "rootfs" / "dir").rmdir()
        names = list_archive_entries(package_directory(staged))
        assert "manifest" in names
        assert all(n in ("manifest", "rootfs") for n in names)

    def test_missing_manifest(self, tmp_path: Path) -> None:
        """A directory without manifest cannot be packaged."""
        with pytest.raises(ArchiveError):
            package_directory(tmp_path)
        assert not (tmp_path / "image.aci").exists()

    def test_no_temporary_file_left(self, staged: Path) -> None:
        package_directory(staged)
        assert not (staged / "image.aci.tmp").exists()


class TestCompress:
    """Tests for compress function."""

    def test_roundtrip(self, tmp_path: Path) -> None:
        """Multi-block output decompresses to the original bytes."""
        source = tmp_path / "image.aci"
        data = os.urandom(200 * 1024) + b"\x00" * (300 * 1024)
        source.write_bytes(data)
        target = tmp_path / "image.gz.aci"

        compress(source, target, threads=3, block_size=64 * 1024)

        assert gzip.decompress(target.read_bytes()) == data
        assert not target.with_name("image.gz.aci.tmp").exists()

    def test_header_records_source_name(self, tmp_path: Path) -> None:
        """The gzip FNAME field is the source file name."""
        source = tmp_path / "image.aci"
        source.write_bytes(b"hello")
        target = compress(source, tmp_path / "image.gz.aci", threads=1)

        raw = target.read_bytes()
        assert raw[:2] == b"\x1f\x8b"
        assert raw[10:20] == b"image.aci\x00"

    def test_empty_source(self, tmp_path: Path) -> None:
        source = tmp_path / "image.aci"
        source.write_bytes(b"")
        target = compress(source, tmp_path / "image.gz.aci")
        assert gzip.decompress(target.read_bytes()) == b""

    def test_existing_target_is_kept(self, tmp_path: Path) -> None:
        """Compression is skipped when the target already exists."""
        source = tmp_path / "image.aci"
        source.write_bytes(b"new content")
        target = tmp_path / "image.gz.aci"
        target.write_bytes(b"previous")

        compress(source, target)
        assert target.read_bytes() == b"previous"

    def test_missing_source(self, tmp_path: Path) -> None:
        with pytest.raises(ArchiveError):
            compress(tmp_path / "nope.aci", tmp_path / "out.gz.aci")
        assert not (tmp_path / "out.gz.aci").exists()


class TestReadArchiveManifest:
    """Tests for read_archive_manifest function."""

    def test_plain_archive(self, staged: Path) -> None:
        archive = package_directory(staged)
        assert json.loads(read_archive_manifest(archive)) == {"name": "example.com/a"}

    def test_compressed_archive(self, staged: Path, tmp_path: Path) -> None:
        """Compressed images are read transparently."""
        archive = package_directory(staged)
        target = compress(archive, tmp_path / "image.gz.aci", block_size=64 * 1024)
        assert b"example.com/a" in read_archive_manifest(target)

    def test_missing_archive(self, tmp_path: Path) -> None:
        with pytest.raises(ArchiveError):
            read_archive_manifest(tmp_path / "image.aci")

    def test_archive_without_manifest(self, tmp_path: Path) -> None:
        archive = tmp_path / "image.aci"
        (tmp_path / "other").write_text("x")
        with tarfile.open(archive, "w") as tar:
            tar.add(tmp_path / "other", arcname="other")
        with pytest.raises(ArchiveError, match="No manifest"):
            read_archive_manifest(archive)
