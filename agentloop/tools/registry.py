"""Tool registry, a ready-made tool executor for the loop."""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any

from pydantic import ValidationError

from ..errors import ToolNotFoundError, ToolTimeoutError
from ..types import ToolCall, ToolContext, ToolDefinition, ToolExecutionConfig, ToolResult

logger = logging.getLogger(__name__)


class ToolRegistry:
    def __init__(self, execution: ToolExecutionConfig | None = None) -> None:
        self._tools: dict[str, ToolDefinition] = {}
        self._execution = execution or ToolExecutionConfig()

    def register(self, tool: ToolDefinition) -> None:
        if tool.execute is None:
            raise ValueError(f"Tool '{tool.name}' has no execute handler")
        self._tools[tool.name] = tool

    def unregister(self, name: str) -> None:
        self._tools.pop(name, None)

    def get(self, name: str) -> ToolDefinition | None:
        return self._tools.get(name)

    def list(self) -> list[ToolDefinition]:
        return list(self._tools.values())

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    async def execute(self, call: ToolCall, ctx: ToolContext) -> ToolResult:
        """Validate arguments, run the handler, and report failures as results."""
        tool = self._tools.get(call.name)
        if tool is None:
            return ToolResult.fail(ToolNotFoundError(call.name).message)

        try:
            args: Any = tool.parameters.parse(call.arguments) if tool.parameters else call.arguments
        except (ValidationError, ValueError) as e:
            return ToolResult.fail(f"Invalid arguments for {call.name}: {e}")

        timeout_ms = self._execution.timeout_ms
        try:
            result = await asyncio.wait_for(self._invoke(tool, args, ctx), timeout_ms / 1000)
        except asyncio.TimeoutError:
            logger.warning("Tool %s timed out after %dms", call.name, timeout_ms)
            return ToolResult.fail(ToolTimeoutError(call.name, timeout_ms).message)
        except Exception as e:
            logger.exception("Tool execution error: %s", call.name)
            return ToolResult.fail(str(e) or type(e).__name__)

        if isinstance(result, ToolResult):
            return result
        return ToolResult.ok(result)

    @staticmethod
    async def _invoke(tool: ToolDefinition, args: Any, ctx: ToolContext) -> Any:
        if inspect.iscoroutinefunction(tool.execute):
            return await tool.execute(args, ctx)
        # Plain functions run in a worker thread; on timeout the thread is left to finish.
        result = await asyncio.to_thread(tool.execute, args, ctx)
        if inspect.isawaitable(result):
            result = await result
        return result
