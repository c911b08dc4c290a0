"""Progress update bus and collector."""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Awaitable, Callable

from .types import ErrorUpdate, LoopUpdate, Step, StepCompleteUpdate

logger = logging.getLogger(__name__)

Handler = Callable[[LoopUpdate], Awaitable[None]]


class UpdateEmitter:
    """Publish/subscribe for loop updates. Handler failures never reach the loop."""

    def __init__(self) -> None:
        self._handlers: dict[str, list[Handler]] = defaultdict(list)
        self._wildcard: list[Handler] = []

    def on(self, update_type: str, handler: Handler) -> None:
        self._handlers[update_type].append(handler)

    def on_all(self, handler: Handler) -> None:
        self._wildcard.append(handler)

    def off(self, update_type: str, handler: Handler) -> None:
        handlers = self._handlers.get(update_type, [])
        if handler in handlers:
            handlers.remove(handler)
        if handler in self._wildcard:
            self._wildcard.remove(handler)

    async def emit(self, update: LoopUpdate) -> None:
        update_type = getattr(update, "type", "")
        for h in self._handlers.get(update_type, []) + self._wildcard:
            try:
                await h(update)
            except Exception:
                logger.exception("Update handler error for %s", update_type)


class UpdateCollector:
    """Collects updates and rebuilds the step history from them."""

    def __init__(self) -> None:
        self.updates: list[LoopUpdate] = []

    def add(self, update: LoopUpdate) -> None:
        self.updates.append(update)

    async def __call__(self, update: LoopUpdate) -> None:
        self.add(update)

    def filter(self, update_type: str) -> list[LoopUpdate]:
        return [u for u in self.updates if u.type == update_type]

    def types(self) -> list[str]:
        return [u.type for u in self.updates]

    def steps(self) -> list[Step]:
        # A paused step is reported again once resumed; the later record wins.
        by_number: dict[int, Step] = {}
        for u in self.updates:
            if isinstance(u, StepCompleteUpdate):
                by_number[u.record.step_number] = u.record
        return [by_number[n] for n in sorted(by_number)]

    def final_answer(self) -> str | None:
        answers = self.filter("answer")
        return answers[-1].answer if answers else None

    def errors(self) -> list[ErrorUpdate]:
        return [u for u in self.updates if isinstance(u, ErrorUpdate)]

    def clear(self) -> None:
        self.updates.clear()
