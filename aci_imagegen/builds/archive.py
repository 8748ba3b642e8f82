"""ACI archive packaging and compression.

This module handles:
- Packaging a staged directory (``manifest`` + ``rootfs/``) into an ACI tar
- Parallel block-based gzip compression of an archive
- Reading the image manifest back from an archive
"""

from __future__ import annotations

import logging
import os
import struct
import tarfile
import zlib
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path

logger = logging.getLogger(__name__)

IMAGE_ACI = "image.aci"
MANIFEST_ENTRY = "manifest"
ROOTFS_ENTRY = "rootfs"

DEFAULT_BLOCK_SIZE = 1024 * 1024  # 1 MiB
DEFAULT_THREADS = 10
COMPRESS_LEVEL = 6

GZIP_MAGIC = b"\x1f\x8b"
GZIP_FLAG_FNAME = 0x08
GZIP_OS_UNKNOWN = 255


class ArchiveError(Exception):
    """Raised when packaging, compressing or reading an archive fails."""

    def __init__(self, message: str, path: Path, code: str = "archive_error") -> None:
        super().__init__(message)
        self.path = path
        self.code = code


def package_directory(path: Path) -> Path:
    """Package a staged image directory into ``<path>/image.aci``.

    The archive holds the ``manifest`` file at its root and the whole
    ``rootfs`` subtree. Entries are added in sorted order, but timestamps
    are kept as found so the output is not byte-for-byte reproducible.

    Args:
        path: Directory containing ``manifest`` and ``rootfs/``.

    Returns:
        Path to the written archive.

    Raises:
        ArchiveError: If the manifest is missing or the tar cannot be written.
    """
    manifest = path / MANIFEST_ENTRY
    rootfs = path / ROOTFS_ENTRY
    archive = path / IMAGE_ACI
    tmp_archive = path / f"{IMAGE_ACI}.tmp"

    if not manifest.is_file():
        raise ArchiveError(f"Manifest not found: {manifest}", manifest)

    try:
        with tarfile.open(tmp_archive, "w") as tar:
            tar.add(manifest, arcname=MANIFEST_ENTRY)
            if rootfs.is_dir():
                tar.add(rootfs, arcname=ROOTFS_ENTRY, recursive=True)
        os.replace(tmp_archive, archive)
    except (OSError, tarfile.TarError) as e:
        tmp_archive.unlink(missing_ok=True)
        raise ArchiveError(f"Failed to tar aci: {e}", path) from e

    logger.debug("Packaged %s", archive)
    return archive


def _deflate_block(block: bytes) -> bytes:
    compressor = zlib.compressobj(COMPRESS_LEVEL, zlib.DEFLATED, -zlib.MAX_WBITS)
    return compressor.compress(block) + compressor.flush(zlib.Z_SYNC_FLUSH)


def _gzip_header(filename: str, mtime: int) -> bytes:
    return (
        GZIP_MAGIC
        + bytes([zlib.DEFLATED, GZIP_FLAG_FNAME])
        + struct.pack("<I", mtime & 0xFFFFFFFF)
        + bytes([0, GZIP_OS_UNKNOWN])
        + filename.encode("latin-1", errors="replace")
        + b"\x00"
    )


def compress(
    source: Path,
    target: Path,
    threads: int = DEFAULT_THREADS,
    block_size: int = DEFAULT_BLOCK_SIZE,
) -> Path:
    """Gzip ``source`` into ``target`` using parallel block compression.

    Blocks are deflated independently on a thread pool and joined into a
    single gzip member. The gzip header records the base name of
    ``source``. Nothing is done when ``target`` already exists.

    Args:
        source: Uncompressed archive.
        target: Compressed archive to produce.
        threads: Number of compression workers.
        block_size: Size in bytes of each independently deflated block.

    Returns:
        Path to the compressed archive.

    Raises:
        ArchiveError: If reading or writing fails.
    """
    if target.exists():
        logger.debug("Compressed archive already exists: %s", target)
        return target

    tmp_target = target.with_name(f"{target.name}.tmp")
    crc = 0
    size = 0
    max_pending = threads * 2

    try:
        mtime = int(source.stat().st_mtime)
        with (
            source.open("rb") as reader,
            tmp_target.open("wb") as writer,
            ThreadPoolExecutor(max_workers=threads) as executor,
        ):
            writer.write(_gzip_header(source.name, mtime))
            pending: deque[Future[bytes]] = deque()
            while block := reader.read(block_size):
                crc = zlib.crc32(block, crc)
                size += len(block)
                pending.append(executor.submit(_deflate_block, block))
                if len(pending) >= max_pending:
                    writer.write(pending.popleft().result())
            while pending:
                writer.write(pending.popleft().result())
            # Final empty block closes the deflate stream
            writer.write(zlib.compressobj(
                COMPRESS_LEVEL, zlib.DEFLATED, -zlib.MAX_WBITS
            ).flush(zlib.Z_FINISH))
            writer.write(struct.pack("<II", crc & 0xFFFFFFFF, size & 0xFFFFFFFF))
        os.replace(tmp_target, target)
    except OSError as e:
        tmp_target.unlink(missing_ok=True)
        raise ArchiveError(f"Failed to zip aci: {e}", target) from e

    logger.info("Compressed %s (%d bytes) to %s", source.name, size, target)
    return target


def read_archive_manifest(archive_path: Path) -> bytes:
    """Return the content of the ``manifest`` entry of an ACI.

    Args:
        archive_path: Plain or gzip-compressed ACI.

    Returns:
        Raw manifest bytes.

    Raises:
        ArchiveError: If the archive cannot be read or has no manifest.
    """
    try:
        with tarfile.open(archive_path, "r:*") as tar:
            member = tar.getmember(MANIFEST_ENTRY)
            extracted = tar.extractfile(member)
            if extracted is None:
                raise ArchiveError("Manifest entry is not a file", archive_path)
            return extracted.read()
    except KeyError as e:
        raise ArchiveError("No manifest in archive", archive_path) from e
    except (OSError, tarfile.TarError) as e:
        raise ArchiveError(f"Cannot read archive: {e}", archive_path) from e


def list_archive_entries(archive_path: Path) -> list[str]:
    """List the names of all entries of an archive."""
    with tarfile.open(archive_path, "r:*") as tar:
        return tar.getnames()


__all__ = [
    "DEFAULT_BLOCK_SIZE",
    "DEFAULT_THREADS",
    "IMAGE_ACI",
    "MANIFEST_ENTRY",
    "ROOTFS_ENTRY",
    "ArchiveError",
    "compress",
    "list_archive_entries",
    "package_directory",
    "read_archive_manifest",
]
