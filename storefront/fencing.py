"""Last-write-wins helpers for debounced input and overlapping requests."""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, TypeVar

T = TypeVar("T")


class RequestFence:
    """Hands out increasing tickets; only the newest ticket may apply its result."""

    def __init__(self) -> None:
        self._latest = 0

    def issue(self) -> int:
        self._latest += 1
        return self._latest

    def is_current(self, ticket: int) -> bool:
        return ticket == self._latest


class Debouncer:
    """Delay a call; a newer call cancels the pending one before it fires."""

    def __init__(self, delay: float):
        self.delay = delay
        self._pending: asyncio.Task | None = None

    async def call(self, fn: Callable[..., Awaitable[T]], *args: Any) -> T | None:
        """Run ``fn(*args)`` after the delay, or return ``None`` if superseded."""
        self.cancel()
        task = asyncio.create_task(self._delayed(fn, *args))
        self._pending = task
        await asyncio.wait({task})
        if self._pending is task:
            self._pending = None
        if task.cancelled():
            return None
        return task.result()

    async def _delayed(self, fn: Callable[..., Awaitable[T]], *args: Any) -> T:
        await asyncio.sleep(self.delay)
        return await fn(*args)

    def cancel(self) -> None:
        if self._pending and not self._pending.done():
            self._pending.cancel()
        self._pending = None
