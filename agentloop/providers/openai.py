"""OpenAI-compatible decision service."""

from __future__ import annotations

import json
import logging
from typing import Any, Sequence

from ..config import ModelConfig
from ..types import (
    AssistantMessage,
    CompletionResult,
    Message,
    TokenUsage,
    ToolCall,
    ToolDefinition,
    ToolMessage,
)
from .base import BaseDecisionService

logger = logging.getLogger(__name__)


def _msg_to_dict(m: Message) -> dict:
    d: dict = {"role": m.role, "content": m.content}
    if isinstance(m, AssistantMessage) and m.tool_calls:
        d["tool_calls"] = [
            {
                "id": tc.id,
                "type": "function",
                "function": {"name": tc.name, "arguments": json.dumps(tc.arguments)},
            }
            for tc in m.tool_calls
        ]
    if isinstance(m, ToolMessage):
        d["tool_call_id"] = m.tool_call_id
    return d


def _tools_to_dicts(tools: Sequence[ToolDefinition]) -> list[dict]:
    return [
        {
            "type": "function",
            "function": {
                "name": t.name,
                "description": t.description,
                "parameters": (
                    t.parameters.to_json_schema()
                    if t.parameters
                    else {"type": "object", "properties": {}}
                ),
            },
        }
        for t in tools
    ]


def _field(obj: Any, name: str, default: Any = None) -> Any:
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)


def _parse_arguments(raw: Any) -> dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    if not isinstance(raw, str) or not raw.strip():
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Discarding malformed tool arguments: %.200s", raw)
        return {}
    return parsed if isinstance(parsed, dict) else {}


def parse_openai_tool_calls(raw_calls: Sequence[Any] | None) -> tuple[ToolCall, ...]:
    """Convert OpenAI tool calls (SDK objects or dicts) into ToolCalls.

    Entries whose type is not ``function`` are dropped. Argument strings that
    are empty, blank or not valid JSON become an empty dict.
    """
    calls = []
    for raw in raw_calls or ():
        if _field(raw, "type", "function") != "function":
            continue
        fn = _field(raw, "function")
        if fn is None:
            continue
        calls.append(
            ToolCall(
                id=_field(raw, "id") or "",
                name=_field(fn, "name") or "",
                arguments=_parse_arguments(_field(fn, "arguments")),
            )
        )
    return tuple(calls)


class OpenAIDecisionService(BaseDecisionService):
    provider = "openai"

    def __init__(self, client: Any = None, **kwargs) -> None:
        super().__init__(**kwargs)
        self._client = client
        self._clients: dict[tuple[str | None, str | None], Any] = {}

    def _client_for(self, model: ModelConfig) -> Any:
        if self._client is not None:
            return self._client
        key = (model.api_key, model.base_url)
        if key not in self._clients:
            try:
                from openai import AsyncOpenAI
            except ImportError:
                raise ImportError("pip install openai") from None
            self._clients[key] = AsyncOpenAI(api_key=model.api_key, base_url=model.base_url)
        return self._clients[key]

    async def _do_complete(
        self,
        messages: Sequence[Message],
        model: ModelConfig,
        tools: Sequence[ToolDefinition],
    ) -> CompletionResult:
        kwargs: dict = {
            "model": model.model,
            "messages": [_msg_to_dict(m) for m in messages],
            "temperature": model.temperature,
        }
        if model.max_tokens is not None:
            kwargs["max_tokens"] = model.max_tokens
        if tools:
            kwargs["tools"] = _tools_to_dicts(tools)
        resp = await self._client_for(model).chat.completions.create(**kwargs)
        choice = resp.choices[0]
        usage = None
        if resp.usage:
            usage = TokenUsage(
                prompt_tokens=resp.usage.prompt_tokens or 0,
                completion_tokens=resp.usage.completion_tokens or 0,
                total_tokens=resp.usage.total_tokens or 0,
            )
        return CompletionResult(
            content=choice.message.content or "",
            tool_calls=parse_openai_tool_calls(choice.message.tool_calls),
            usage=usage,
        )
