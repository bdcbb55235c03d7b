from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import pytest
from fakes import FakeAdapter

from wapair.credentials import CredentialStore
from wapair.delivery import DeliverySlots
from wapair.manager import SessionLifecycleManager, SessionRegistry


@pytest.fixture
def adapter() -> FakeAdapter:
    return FakeAdapter()


@pytest.fixture
def store(tmp_path: Path) -> CredentialStore:
    return CredentialStore(tmp_path / "sessions")


@pytest.fixture
def make_manager(
    adapter: FakeAdapter, store: CredentialStore
) -> Callable[..., SessionLifecycleManager]:
    def _make(**kwargs: object) -> SessionLifecycleManager:
        return SessionLifecycleManager(
            registry=SessionRegistry(),
            adapter=adapter,
            store=store,
            deliveries=DeliverySlots(),
            brand="TestBrand",
            **kwargs,  # type: ignore[arg-type]
        )

    return _make
