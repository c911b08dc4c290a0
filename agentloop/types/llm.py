"""Decision service types."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, Sequence, runtime_checkable

from .messages import Message, ToolCall
from .tools import ToolDefinition

if TYPE_CHECKING:
    from ..config import ModelConfig


@dataclass(frozen=True)
class TokenUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass(frozen=True)
class CompletionResult:
    content: str = ""
    tool_calls: tuple[ToolCall, ...] = ()
    usage: TokenUsage | None = None


@runtime_checkable
class DecisionService(Protocol):
    """Anything that turns a conversation plus a tool catalog into a completion."""

    async def complete(
        self,
        messages: Sequence[Message],
        model: ModelConfig,
        tools: Sequence[ToolDefinition],
    ) -> CompletionResult: ...
