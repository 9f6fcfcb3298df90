"""Zip container layout and member I/O.

Layout::

    manifest.json
    schema.json
    data/<table>.json
    files/<relative path>        (only when media is included)

The reader and writer are synchronous; the engine drives them through
``asyncio.to_thread`` so bulk copies never block the event loop.
"""

import hashlib
import os
import zipfile
from pathlib import Path

from tenant_snapshot.errors import ArchiveIOError, CapacityExceededError

MANIFEST_MEMBER = "manifest.json"
SCHEMA_MEMBER = "schema.json"
DATA_PREFIX = "data/"
FILES_PREFIX = "files/"

COMPRESSION = zipfile.ZIP_DEFLATED
COMPRESS_LEVEL = 6
CHUNK_SIZE = 64 * 1024


def data_member(table: str) -> str:
    return f"{DATA_PREFIX}{table}.json"


def file_member(relative_path: str) -> str:
    return f"{FILES_PREFIX}{relative_path}"


class ArchiveWriter:
    """Writes members into a new zip file, tracking bundled media bytes.

    Args:
        path: Destination file (created or truncated).
        max_media_bytes: Ceiling for the sum of bundled file sizes.
    """

    def __init__(self, path: Path, max_media_bytes: int) -> None:
        self.path = path
        self.max_media_bytes = max_media_bytes
        self.media_bytes = 0
        try:
            self._zip = zipfile.ZipFile(
                path, "w", compression=COMPRESSION, compresslevel=COMPRESS_LEVEL
            )
        except OSError as e:
            raise ArchiveIOError(f"Cannot create archive: {e}", path=str(path)) from e

    def write_bytes(self, member: str, data: bytes) -> None:
        self._zip.writestr(member, data)

    def add_file(self, member: str, source: Path, size_hint: int) -> tuple[int, str]:
        """Stream a file into the archive.

        The ceiling is checked against ``size_hint`` before anything is
        written, then against the bytes actually read.

        Returns:
            ``(bytes_written, sha256_hex)``.

        Raises:
            CapacityExceededError: If the bundle would cross the ceiling.
        """
        if self.media_bytes + size_hint > self.max_media_bytes:
            self._raise_capacity(self.media_bytes + size_hint, member)

        digest = hashlib.sha256()
        written = 0
        with open(source, "rb") as src, self._zip.open(member, "w", force_zip64=True) as dst:
            for chunk in iter(lambda: src.read(CHUNK_SIZE), b""):
                written += len(chunk)
                if self.media_bytes + written > self.max_media_bytes:
                    self._raise_capacity(self.media_bytes + written, member)
                digest.update(chunk)
                dst.write(chunk)

        self.media_bytes += written
        return written, digest.hexdigest()

    def close(self) -> None:
        self._zip.close()

    def _raise_capacity(self, total: int, member: str) -> None:
        raise CapacityExceededError(
            f"Snapshot too large (~{total // (1024 * 1024)} MB with media, "
            f"limit {self.max_media_bytes // (1024 * 1024)} MB). "
            f"Export without media or purge old media.",
            total_bytes=total,
            limit_bytes=self.max_media_bytes,
            path=member,
        )


class ArchiveReader:
    """Read access to an existing archive."""

    def __init__(self, path: Path) -> None:
        self.path = path
        try:
            self._zip = zipfile.ZipFile(path, "r")
        except FileNotFoundError as e:
            raise ArchiveIOError("Snapshot archive not found", path=str(path)) from e
        except (OSError, zipfile.BadZipFile) as e:
            raise ArchiveIOError(f"Unreadable snapshot archive: {e}", path=str(path)) from e
        self._names = set(self._zip.namelist())

    def __enter__(self) -> "ArchiveReader":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def has(self, member: str) -> bool:
        return member in self._names

    def member_size(self, member: str) -> int:
        return self._zip.getinfo(member).file_size

    def read(self, member: str) -> bytes:
        try:
            return self._zip.read(member)
        except KeyError as e:
            raise ArchiveIOError("Archive member missing", path=member) from e
        except (OSError, zipfile.BadZipFile) as e:
            raise ArchiveIOError(f"Cannot read archive member: {e}", path=member) from e

    def extract_file(self, member: str, target: Path, expected_sha256: str | None = None) -> int:
        """Stream a member to ``target`` via a temporary sibling.

        The target is only replaced once the bytes (and digest, when
        ``expected_sha256`` is given) check out.

        Returns:
            Number of bytes written.

        Raises:
            ArchiveIOError: On read/write failure or digest mismatch.
        """
        target.parent.mkdir(parents=True, exist_ok=True)
        partial = target.with_name(target.name + ".part")
        digest = hashlib.sha256()
        written = 0
        try:
            with self._zip.open(member, "r") as src, open(partial, "wb") as dst:
                for chunk in iter(lambda: src.read(CHUNK_SIZE), b""):
                    digest.update(chunk)
                    dst.write(chunk)
                    written += len(chunk)
            if expected_sha256 is not None and digest.hexdigest() != expected_sha256:
                raise ArchiveIOError("Media checksum mismatch", path=member)
            os.replace(partial, target)
        except (OSError, zipfile.BadZipFile) as e:
            partial.unlink(missing_ok=True)
            raise ArchiveIOError(f"Cannot extract media file: {e}", path=member) from e
        except BaseException:
            partial.unlink(missing_ok=True)
            raise
        return written

    def close(self) -> None:
        self._zip.close()
