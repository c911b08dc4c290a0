"""Loop state types: decisions, observations, steps and the loop snapshot."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from .messages import ToolCall


class LoopStatus(str, Enum):
    RUNNING = "running"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    PAUSED = "paused"  # reserved, never entered
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (LoopStatus.COMPLETED, LoopStatus.FAILED, LoopStatus.CANCELLED)


class DecisionType(str, Enum):
    TOOL_CALL = "tool_call"
    ANSWER = "answer"


class ObservationType(str, Enum):
    TOOL_RESULT = "tool_result"
    ERROR = "error"
    HUMAN_FEEDBACK = "human_feedback"


@dataclass(frozen=True)
class AgentPersona:
    id: str
    name: str
    instructions: str = ""


@dataclass(frozen=True)
class Decision:
    type: DecisionType
    reasoning: str
    confidence: float
    tool_calls: tuple[ToolCall, ...] = ()
    answer: str | None = None
    requires_confirmation: bool = False


@dataclass(frozen=True)
class Observation:
    type: ObservationType
    content: str
    source: str
    timestamp: datetime
    success: bool
    duration_ms: int | None = None
    data: Any = None


@dataclass(frozen=True)
class PlanRecord:
    decision: Decision
    reasoning: str
    tokens_used: int = 0


@dataclass(frozen=True)
class ActionRecord:
    tool_calls: tuple[ToolCall, ...]
    parallel_execution: bool = True


@dataclass(frozen=True)
class SynthesisRecord:
    summary: str
    should_continue: bool
    next_step_hint: str | None = None


@dataclass(frozen=True)
class Step:
    id: str
    step_number: int
    timestamp: datetime
    duration_ms: int
    plan: PlanRecord
    action: ActionRecord | None = None
    observations: tuple[Observation, ...] = ()
    synthesis: SynthesisRecord | None = None


@dataclass(frozen=True)
class Usage:
    total_tokens: int = 0
    prompt_tokens: int = 0
    completion_tokens: int = 0
    estimated_cost: float = 0.0
    llm_calls: int = 0


@dataclass(frozen=True)
class LoopState:
    """Immutable snapshot of one loop execution."""

    id: str
    agent_id: str
    prompt: str
    max_steps: int
    started_at: datetime
    status: LoopStatus = LoopStatus.RUNNING
    steps: tuple[Step, ...] = ()
    current_step: int = 0
    result: Decision | None = None
    error: str | None = None
    completed_at: datetime | None = None
    usage: Usage = field(default_factory=Usage)

    @property
    def final_answer(self) -> str | None:
        return self.result.answer if self.result else None
