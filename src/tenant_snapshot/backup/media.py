"""Device-local media paths.

Archives only ever contain device-independent relative paths.  A path is
made relative by stripping the device's document root, or -- for a path
recorded on another device -- by cutting it at a known relocatable
directory (``.../media_pipeline/...``), or by matching the tail of the path
against the relative paths an archive actually carries.  On restore every
relative path is checked before it is joined back onto the local document
root.

Usage:
    paths = MediaPaths(Path("/data/app"), ["media_pipeline", "exports_doe"])
    rel = paths.to_relative("/data/app/media_pipeline/a.jpg")   # "media_pipeline/a.jpg"
    abs_path = paths.to_absolute(rel)
"""

from collections.abc import Collection
from pathlib import Path, PurePosixPath

from tenant_snapshot.errors import UnsafePathError

FILE_URI_PREFIX = "file://"


def assert_safe_relative_path(path: str) -> str:
    """Validate an archive-relative path.

    Rejects traversal sequences, absolute paths, drive letters, URIs,
    backslashes and NUL bytes.

    Returns:
        The path unchanged (POSIX form).

    Raises:
        UnsafePathError: If the path could escape the media root.

    Example:
        >>> assert_safe_relative_path("media_pipeline/a.jpg")
        'media_pipeline/a.jpg'
    """
    if not path or not path.strip():
        raise UnsafePathError("Empty media path", path=path)
    if ".." in path:
        raise UnsafePathError("Path traversal rejected", path=path)
    if path.startswith("/") or "\\" in path or "\x00" in path:
        raise UnsafePathError("Absolute or non-POSIX path rejected", path=path)
    if ":" in path.split("/", 1)[0]:
        raise UnsafePathError("URI or drive prefix rejected", path=path)
    return path


class MediaPaths:
    """Conversions between device-absolute and archive-relative paths."""

    def __init__(self, document_root: Path, relocatable_dirs: list[str]) -> None:
        self.document_root = Path(document_root)
        self._relocatable_dirs = list(relocatable_dirs)

    def to_relative(self, value: str, known: Collection[str] = ()) -> str | None:
        """Device-relative form of a stored path, or ``None`` if it has none.

        Args:
            value: Stored path, absolute, relative or ``file://`` URI.
            known: Relative paths carried by an archive.  A foreign absolute
                path ending in ``/<known path>`` maps to the longest match.
        """
        if not value:
            return None
        if value.startswith(FILE_URI_PREFIX):
            value = value[len(FILE_URI_PREFIX):]

        if not value.startswith("/"):
            try:
                return assert_safe_relative_path(value)
            except UnsafePathError:
                return None

        root = self.document_root.as_posix().rstrip("/") + "/"
        if value.startswith(root):
            candidate = value[len(root):]
        else:
            candidate = _match_known(value, known)
        if candidate is None:
            for directory in self._relocatable_dirs:
                token = f"/{directory}/"
                index = value.find(token)
                if index >= 0:
                    candidate = value[index + 1:]
                    break
        if candidate is None:
            return None
        try:
            return assert_safe_relative_path(candidate)
        except UnsafePathError:
            return None

    def to_absolute(self, relative: str) -> Path:
        """Join a validated relative path onto the document root.

        Raises:
            UnsafePathError: If the path is unsafe or resolves outside the root.
        """
        safe = assert_safe_relative_path(relative)
        target = self.document_root.joinpath(*PurePosixPath(safe).parts)
        root = self.document_root.resolve()
        if not target.resolve().is_relative_to(root):
            raise UnsafePathError("Path resolves outside the media root", path=relative)
        return target



def _match_known(value: str, known: Collection[str]) -> str | None:
    matches = [path for path in known if value.endswith("/" + path)]
    return max(matches, key=len) if matches else None
