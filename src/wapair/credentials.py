from __future__ import annotations

import asyncio
import shutil
from pathlib import Path

from loguru import logger


def _rmtree(path: Path) -> None:
    if path.exists():
        shutil.rmtree(path)


class CredentialStore:
    """
    One auth folder per phone number under a common sessions root.

    The folders hold whatever the protocol library persists (`creds.json`
    plus `{type}-{id}.json` key files). Filesystem calls run in a worker
    thread so a slow disk never stalls other phones' handlers.
    """

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root).expanduser()

    def path_for(self, phone: str) -> Path:
        return self.root / phone

    def exists(self, phone: str) -> bool:
        return self.path_for(phone).is_dir()

    async def create(self, phone: str) -> Path:
        # Leftovers from an earlier attempt would make the library resume a
        # half-registered identity instead of starting a new registration.
        path = self.path_for(phone)
        await asyncio.to_thread(_rmtree, path)
        await asyncio.to_thread(path.mkdir, parents=True, exist_ok=True)
        return path

    async def remove(self, phone: str) -> None:
        path = self.path_for(phone)
        try:
            await asyncio.to_thread(_rmtree, path)
        except OSError:
            logger.exception(f"Failed to remove credential dir {path}")
