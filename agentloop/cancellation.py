"""Cooperative cancellation token shared by a loop and its tool calls."""

from __future__ import annotations

import asyncio

from .errors import LoopError


class CancellationToken:
    """Wraps an ``asyncio.Event``; once cancelled it stays cancelled."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise LoopError("CANCELLED", "Operation was cancelled")
