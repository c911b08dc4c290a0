"""
Agent Loop Demo

Runs a research persona with two tools, streams the progress updates, and
pauses before the one tool that needs a human go-ahead.

Uses the OpenAI-compatible decision service when AGENTLOOP_MODEL (and an API
key) are set in the environment, and a scripted offline service otherwise.

Run:
  python examples/agent_loop_demo.py
"""

import asyncio
import logging

from pydantic import BaseModel, Field

from agentloop import (
    AgentLoop,
    AgentPersona,
    CompletionResult,
    LoopConfig,
    LoopStatus,
    ModelConfig,
    TokenUsage,
    ToolCall,
    ToolRegistry,
    define_tool,
)
from agentloop.providers import OpenAIDecisionService


class SearchArgs(BaseModel):
    query: str = Field(description="What to look up")


class SaveArgs(BaseModel):
    title: str
    body: str


async def search(args: SearchArgs, ctx):
    await asyncio.sleep(0.1)
    return {"query": args.query, "results": [f"{args.query} overview", f"{args.query} history"]}


def save_note(args: SaveArgs, ctx):
    return f"Saved note '{args.title}' ({len(args.body)} chars)"


class OfflineService:
    """Scripted decisions so the demo runs without network access."""

    def __init__(self) -> None:
        self._turn = 0

    async def complete(self, messages, model, tools) -> CompletionResult:
        self._turn += 1
        usage = TokenUsage(prompt_tokens=400, completion_tokens=60, total_tokens=460)
        if self._turn == 1:
            return CompletionResult(
                content="I'll search two angles in parallel.",
                tool_calls=(
                    ToolCall(id="c1", name="search", arguments={"query": "asyncio"}),
                    ToolCall(id="c2", name="search", arguments={"query": "event loops"}),
                ),
                usage=usage,
            )
        if self._turn == 2:
            return CompletionResult(
                tool_calls=(
                    ToolCall(id="c3", name="save_note", arguments={"title": "asyncio", "body": "..."}),
                ),
                usage=usage,
            )
        return CompletionResult(content="asyncio schedules coroutines on an event loop.", usage=usage)


def build_registry() -> ToolRegistry:
    registry = ToolRegistry()
    registry.register(define_tool("search", "Search the knowledge base", SearchArgs, search))
    registry.register(
        define_tool("save_note", "Save a note for the user", SaveArgs, save_note, requires_confirmation=True)
    )
    return registry


async def print_updates(updates) -> None:
    async for update in updates:
        if update.type == "step_start":
            print(f"\n--- step {update.step} ---")
        elif update.type == "reasoning" and update.content:
            print(f"thinking: {update.content}")
        elif update.type == "tools_start":
            print("tools: " + ", ".join(t.name for t in update.tools))
        elif update.type == "tools_complete":
            for obs in update.observations:
                print(f"  [{obs.source}] {'ok' if obs.success else 'failed'} ({obs.duration_ms}ms)")
        elif update.type == "answer":
            print(f"\nanswer: {update.answer}")
        elif update.type == "error":
            print(f"\nerror: {update.error}")


async def main() -> None:
    logging.basicConfig(level=logging.INFO)

    model = ModelConfig.from_env()
    if model is not None:
        service = OpenAIDecisionService()
    else:
        model = ModelConfig(model="gpt-4o-mini")
        service = OfflineService()

    persona = AgentPersona(id="researcher", name="Researcher", instructions="You research topics briefly.")
    config = LoopConfig.from_registry(build_registry(), max_steps=6)
    loop = AgentLoop(persona, "Explain asyncio and save a note about it.", service, model, config)

    await print_updates(loop.stream())

    while loop.get_state().status is LoopStatus.AWAITING_CONFIRMATION:
        pending = loop.get_state().steps[-1].action.tool_calls
        print(f"\nneeds confirmation: {[c.name for c in pending]} -> approving")
        await print_updates(loop.resume_stream(approved=True))

    state = loop.get_state()
    print(f"\nstatus={state.status.value} steps={len(state.steps)} "
          f"tokens={state.usage.total_tokens} cost=${state.usage.estimated_cost:.5f}")


if __name__ == "__main__":
    asyncio.run(main())
