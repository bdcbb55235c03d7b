from __future__ import annotations

import base64
import io
import zipfile

import pytest

from wapair.archive import archive_directory, extract_archive
from wapair.exceptions import ArchiveError


def _populate(root) -> dict[str, bytes]:
    files = {
        "creds.json": b'{"me": {"id": "94712345678@s.whatsapp.net"}}',
        "pre-key-1.json": b'{"public": "AAAA"}',
        "app-state-sync-key-AAAAAA==.json": bytes(range(256)),
        "nested/session-94712345678.0.json": b"\x00\x01binary\xff",
    }
    for name, data in files.items():
        path = root / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
    return files


def test_archive_roundtrip_reproduces_files(tmp_path) -> None:
    src = tmp_path / "src"
    files = _populate(src)

    restored = extract_archive(archive_directory(src), tmp_path / "dst")

    got = {p.relative_to(tmp_path / "dst").as_posix(): p.read_bytes() for p in restored}
    assert got == files


def test_archive_is_deterministic(tmp_path) -> None:
    src = tmp_path / "src"
    _populate(src)

    assert archive_directory(src) == archive_directory(src)


def test_archive_blob_is_text_safe_zip(tmp_path) -> None:
    src = tmp_path / "src"
    _populate(src)

    blob = archive_directory(src)

    assert blob.isascii()
    with zipfile.ZipFile(io.BytesIO(base64.b64decode(blob))) as zf:
        assert zf.namelist() == sorted(zf.namelist())


def test_empty_directory_archives_to_empty_zip(tmp_path) -> None:
    (tmp_path / "empty").mkdir()

    blob = archive_directory(tmp_path / "empty")

    assert extract_archive(blob, tmp_path / "out") == []


def test_missing_directory_raises_archive_error(tmp_path) -> None:
    with pytest.raises(ArchiveError):
        archive_directory(tmp_path / "missing")


def test_extract_rejects_path_traversal(tmp_path) -> None:
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as zf:
        zf.writestr("../escape.json", b"{}")
    blob = base64.b64encode(buf.getvalue()).decode("ascii")

    with pytest.raises(ArchiveError):
        extract_archive(blob, tmp_path / "out")
    assert not (tmp_path / "escape.json").exists()


@pytest.mark.parametrize("blob", ["not base64!", base64.b64encode(b"not a zip").decode("ascii")])
def test_extract_rejects_garbage(tmp_path, blob) -> None:
    with pytest.raises(ArchiveError):
        extract_archive(blob, tmp_path / "out")
