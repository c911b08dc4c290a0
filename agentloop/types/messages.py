"""Conversation message types."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class ToolCall:
    id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class SystemMessage:
    content: str
    role: str = "system"


@dataclass(frozen=True)
class UserMessage:
    content: str
    role: str = "user"


@dataclass(frozen=True)
class AssistantMessage:
    content: str
    tool_calls: tuple[ToolCall, ...] = ()
    role: str = "assistant"


@dataclass(frozen=True)
class ToolMessage:
    content: str
    tool_call_id: str
    tool_name: str = ""
    role: str = "tool"


Message = SystemMessage | UserMessage | AssistantMessage | ToolMessage
