"""Deterministic ZIP packaging of generated projects."""

from __future__ import annotations

import io
import zipfile
from collections.abc import Iterable, Mapping
from pathlib import PurePosixPath

from forge.errors import ArchiveError

from .templates import RenderedFile

# 1980-01-01 is the earliest timestamp the ZIP format can store.
FIXED_TIMESTAMP = (1980, 1, 1, 0, 0, 0)

_UNIX_FILE = 0o100000


def _entries(files: Iterable[RenderedFile] | Mapping[str, bytes]) -> list[tuple[str, bytes, bool]]:
    if isinstance(files, Mapping):
        return [(path, content, False) for path, content in files.items()]
    return [(f.path, f.content, f.executable) for f in files]


def pack_archive(
    files: Iterable[RenderedFile] | Mapping[str, bytes], root: str | None = None
) -> bytes:
    """Pack *files* into a ZIP archive.

    Entries are sorted by path and stamped with a fixed time, so the same
    files always produce the same bytes.  Executable files keep mode 0755.

    Args:
        files: Rendered files, or a plain ``{path: content}`` mapping.
        root: Optional top-level folder every entry is placed under.
    """
    entries = sorted(_entries(files), key=lambda entry: entry[0])
    prefix = f"{root.strip('/')}/" if root else ""

    blob = io.BytesIO()
    with zipfile.ZipFile(blob, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        for path, content, executable in entries:
            info = zipfile.ZipInfo(prefix + path, date_time=FIXED_TIMESTAMP)
            info.compress_type = zipfile.ZIP_DEFLATED
            info.create_system = 3  # unix, so external_attr carries the mode
            mode = 0o755 if executable else 0o644
            info.external_attr = (_UNIX_FILE | mode) << 16
            archive.writestr(info, content)
    return blob.getvalue()


def unpack_archive(blob: bytes) -> dict[str, bytes]:
    """Read an archive back into ``{path: content}``.

    Raises:
        ArchiveError: The blob is not a ZIP, or a member name is absolute
            or contains ``..``.
    """
    files: dict[str, bytes] = {}
    try:
        with zipfile.ZipFile(io.BytesIO(blob), "r") as archive:
            for info in archive.infolist():
                name = info.filename
                if info.is_dir():
                    continue
                if name.startswith("/") or "\\" in name or ".." in PurePosixPath(name).parts:
                    raise ArchiveError(f"unsafe path in archive: {name}")
                files[name] = archive.read(info)
    except zipfile.BadZipFile as exc:
        raise ArchiveError(f"invalid archive: {exc}") from exc
    return files


def archive_modes(blob: bytes) -> dict[str, int]:
    """Return the Unix permission bits recorded for each member."""
    with zipfile.ZipFile(io.BytesIO(blob), "r") as archive:
        return {
            info.filename: (info.external_attr >> 16) & 0o777
            for info in archive.infolist()
            if not info.is_dir()
        }
