"""Tool types."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Protocol, runtime_checkable

from .messages import ToolCall

if TYPE_CHECKING:
    from ..cancellation import CancellationToken


@runtime_checkable
class ToolSchema(Protocol):
    def parse(self, raw: Any) -> Any: ...
    def to_json_schema(self) -> dict: ...


@dataclass(frozen=True)
class ToolDefinition:
    name: str
    description: str
    parameters: ToolSchema | None = None
    execute: Any = None  # (input, ctx) -> Any | Awaitable[Any]
    requires_confirmation: bool = False


@dataclass
class ToolExecutionConfig:
    timeout_ms: int = 30000


@dataclass(frozen=True)
class ToolResult:
    success: bool
    content: Any = None
    error: str | None = None

    @classmethod
    def ok(cls, content: Any) -> ToolResult:
        return cls(success=True, content=content)

    @classmethod
    def fail(cls, error: str) -> ToolResult:
        return cls(success=False, error=error)

    @classmethod
    def coerce(cls, raw: Any) -> ToolResult:
        """Accept a ToolResult or a ``{"success", "content", "error"}`` mapping."""
        if isinstance(raw, ToolResult):
            return raw
        if isinstance(raw, Mapping) and "success" in raw:
            return cls(
                success=bool(raw["success"]),
                content=raw.get("content"),
                error=raw.get("error"),
            )
        raise TypeError(f"Tool executor returned {type(raw).__name__}, expected ToolResult")


@dataclass(frozen=True)
class ToolContext:
    signal: CancellationToken
    loop_id: str
    step_number: int
    metadata: dict[str, Any] = field(default_factory=dict)


ToolExecutor = Callable[[ToolCall, ToolContext], Awaitable["ToolResult | Mapping[str, Any]"]]
