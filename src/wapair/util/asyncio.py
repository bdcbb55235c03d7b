from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Coroutine
from typing import Any, TypeVar

T = TypeVar("T")


def ensure_task(coro: Coroutine[Any, Any, T], *, name: str | None = None) -> asyncio.Task[T]:
    return asyncio.create_task(coro, name=f"wapair.{name}" if name else None)


def cancel_soon(task: asyncio.Task[Any] | None) -> None:
    # A handler running inside `task` must finish on its own; cancelling it
    # here would abort the cleanup it is about to perform.
    if task is None or task.done() or task is asyncio.current_task():
        return
    task.cancel()


async def cancel_suppress(task: asyncio.Task[Any] | None) -> None:
    if task is None or task is asyncio.current_task():
        return
    task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await task
