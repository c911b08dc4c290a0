"""
Pytest Configuration and Fixtures
"""

from __future__ import annotations

import asyncio
from typing import Any, Sequence

import pytest

from agentloop import (
    AgentPersona,
    CompletionResult,
    LoopConfig,
    ModelConfig,
    TokenUsage,
    ToolCall,
    ToolResult,
)


def answer(text: str, prompt_tokens: int = 10, completion_tokens: int = 5) -> CompletionResult:
    return CompletionResult(
        content=text,
        usage=TokenUsage(prompt_tokens, completion_tokens, prompt_tokens + completion_tokens),
    )


def tool_calls(*calls: ToolCall, content: str = "") -> CompletionResult:
    return CompletionResult(
        content=content,
        tool_calls=tuple(calls),
        usage=TokenUsage(20, 10, 30),
    )


def call(name: str, call_id: str | None = None, **arguments: Any) -> ToolCall:
    return ToolCall(id=call_id or f"call_{name}", name=name, arguments=arguments)


class ScriptedDecisionService:
    """Replays a fixed list of completions (or exceptions) in order.

    When the script runs out, the last entry is repeated.
    """

    def __init__(self, *script: CompletionResult | Exception) -> None:
        self.script = list(script)
        self.calls: list[dict] = []

    async def complete(self, messages: Sequence, model: ModelConfig, tools: Sequence) -> CompletionResult:
        self.calls.append({"messages": list(messages), "model": model, "tools": list(tools)})
        index = min(len(self.calls) - 1, len(self.script) - 1)
        item = self.script[index]
        if isinstance(item, Exception):
            raise item
        return item


class BlockingDecisionService:
    """Never answers until released; used to exercise cancellation."""

    def __init__(self) -> None:
        self.started = asyncio.Event()
        self.release = asyncio.Event()
        self.calls = 0

    async def complete(self, messages, model, tools) -> CompletionResult:
        self.calls += 1
        self.started.set()
        await self.release.wait()
        return answer("late answer")


class RecordingExecutor:
    """Tool executor that returns canned results per tool name."""

    def __init__(self, results: dict[str, Any] | None = None, delay: float = 0.0) -> None:
        self.results = results or {}
        self.delay = delay
        self.calls: list[ToolCall] = []
        self.contexts: list = []

    async def __call__(self, tool_call: ToolCall, ctx) -> ToolResult:
        self.calls.append(tool_call)
        self.contexts.append(ctx)
        if self.delay:
            await asyncio.sleep(self.delay)
        outcome = self.results.get(tool_call.name, f"{tool_call.name} ok")
        if isinstance(outcome, BaseException):
            raise outcome
        if isinstance(outcome, ToolResult):
            return outcome
        return ToolResult.ok(outcome)


@pytest.fixture
def persona() -> AgentPersona:
    return AgentPersona(id="agent-1", name="Researcher", instructions="You are a careful researcher.")


@pytest.fixture
def model() -> ModelConfig:
    return ModelConfig(model="gpt-4o-mini", api_key="test-key")


@pytest.fixture
def search_tool():
    from agentloop import ToolDefinition
    return ToolDefinition(name="search", description="Search the web")


@pytest.fixture
def make_config(search_tool):
    def _make(executor=None, tools=None, **kwargs) -> LoopConfig:
        catalog = (search_tool,) if tools is None else tuple(tools)
        if executor is None and catalog:
            executor = RecordingExecutor()
        return LoopConfig(tools=catalog, tool_executor=executor, **kwargs)
    return _make
