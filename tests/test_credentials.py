from __future__ import annotations

import pytest

from wapair.credentials import CredentialStore


@pytest.mark.asyncio
async def test_create_makes_phone_folder(tmp_path) -> None:
    store = CredentialStore(tmp_path / "sessions")

    path = await store.create("94712345678")

    assert path == tmp_path / "sessions" / "94712345678"
    assert path.is_dir()
    assert store.exists("94712345678")


@pytest.mark.asyncio
async def test_create_wipes_leftovers_from_previous_attempt(tmp_path) -> None:
    store = CredentialStore(tmp_path)
    stale = store.path_for("94712345678") / "creds.json"
    stale.parent.mkdir(parents=True)
    stale.write_text("{}", "utf-8")

    path = await store.create("94712345678")

    assert path.is_dir()
    assert list(path.iterdir()) == []


@pytest.mark.asyncio
async def test_remove_deletes_folder_and_tolerates_missing(tmp_path) -> None:
    store = CredentialStore(tmp_path)
    path = await store.create("94712345678")
    (path / "pre-key-1.json").write_text("{}", "utf-8")

    await store.remove("94712345678")
    await store.remove("94712345678")

    assert not path.exists()
    assert not store.exists("94712345678")
