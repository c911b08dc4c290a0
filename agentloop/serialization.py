"""JSON-safe dumps of updates and loop snapshots for any transport."""

from __future__ import annotations

from functools import lru_cache
from typing import Any

from pydantic import TypeAdapter


@lru_cache(maxsize=None)
def _adapter(tp: type) -> TypeAdapter:
    return TypeAdapter(tp)


def to_jsonable(value: Any) -> Any:
    """Dump a LoopState, Step, update or message into plain JSON types."""
    return _adapter(type(value)).dump_python(value, mode="json")
