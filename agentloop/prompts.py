"""System prompt assembly for a persona running inside the loop."""

from __future__ import annotations

from typing import Sequence

from .types import AgentPersona, ToolDefinition

_GUIDELINES = """## Guidelines
- Break complex tasks into smaller steps
- Use tools to gather information before making assumptions
- Provide clear, actionable answers
- If you need more information, use the appropriate tool
- When you have gathered enough information, provide your final answer directly"""

_RESPONSE_FORMAT = """## Response Format
When you need to use tools, make tool calls. The system will execute them and provide results.
When you have all the information needed, respond directly with your final answer to the user."""


def build_system_prompt(persona: AgentPersona, tools: Sequence[ToolDefinition]) -> str:
    catalog = "\n".join(f"- {t.name}: {t.description}" for t in tools) or "No tools available"
    sections = [
        persona.instructions.strip(),
        "You are operating in an agentic loop with the following capabilities:",
        f"## Available Tools\n{catalog}",
        _GUIDELINES,
        _RESPONSE_FORMAT,
    ]
    return "\n\n".join(s for s in sections if s)
