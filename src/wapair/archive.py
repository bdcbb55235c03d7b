"""
Session blob packing.

A blob is a base64-encoded zip of every file in a credential directory.
Entries are written in sorted order with a fixed timestamp, so the same
directory contents always produce the same blob.
"""

from __future__ import annotations

import base64
import binascii
import io
import zipfile
from pathlib import Path, PurePosixPath

from .exceptions import ArchiveError

_FIXED_DATE_TIME = (1980, 1, 1, 0, 0, 0)


def _iter_files(directory: Path) -> list[Path]:
    return sorted(p for p in directory.rglob("*") if p.is_file())


def archive_directory(directory: str | Path) -> str:
    root = Path(directory)
    if not root.is_dir():
        raise ArchiveError(f"credential directory {root} does not exist")

    buf = io.BytesIO()
    try:
        with zipfile.ZipFile(buf, "w", compression=zipfile.ZIP_DEFLATED) as zf:
            for path in _iter_files(root):
                # The library may still be writing files; a file that vanished
                # between listing and reading is simply left out.
                try:
                    data = path.read_bytes()
                except FileNotFoundError:
                    continue
                info = zipfile.ZipInfo(path.relative_to(root).as_posix(), _FIXED_DATE_TIME)
                info.compress_type = zipfile.ZIP_DEFLATED
                info.external_attr = 0o600 << 16
                zf.writestr(info, data)
    except OSError as e:
        raise ArchiveError(f"failed to archive {root}: {e}") from e

    return base64.b64encode(buf.getvalue()).decode("ascii")


def extract_archive(blob: str, destination: str | Path) -> list[Path]:
    """
    Unpack a session blob into `destination` (the consuming bot's side).

    Returns the written paths. Entries that would land outside `destination`
    are rejected.
    """

    try:
        raw = base64.b64decode(blob.encode("ascii"), validate=True)
    except (binascii.Error, UnicodeEncodeError) as e:
        raise ArchiveError(f"session blob is not valid base64: {e}") from e

    dest = Path(destination)
    dest.mkdir(parents=True, exist_ok=True)
    written: list[Path] = []
    try:
        with zipfile.ZipFile(io.BytesIO(raw)) as zf:
            for info in zf.infolist():
                if info.is_dir():
                    continue
                rel = PurePosixPath(info.filename)
                if rel.is_absolute() or ".." in rel.parts:
                    raise ArchiveError(f"unsafe entry in session blob: {info.filename}")
                target = dest.joinpath(*rel.parts)
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_bytes(zf.read(info))
                written.append(target)
    except zipfile.BadZipFile as e:
        raise ArchiveError(f"session blob is not a zip archive: {e}") from e

    return written
