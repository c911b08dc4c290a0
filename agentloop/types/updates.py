"""Progress update types emitted while a loop advances."""

from __future__ import annotations

from dataclasses import dataclass

from .messages import ToolCall
from .state import Decision, Observation, Step


@dataclass(frozen=True)
class StepStartUpdate:
    step: int
    type: str = "step_start"


@dataclass(frozen=True)
class ReasoningUpdate:
    step: int
    content: str | None  # None when reasoning is hidden
    type: str = "reasoning"


@dataclass(frozen=True)
class DecisionUpdate:
    step: int
    decision: Decision
    type: str = "decision"


@dataclass(frozen=True)
class ToolsStartUpdate:
    step: int
    tools: tuple[ToolCall, ...]
    type: str = "tools_start"


@dataclass(frozen=True)
class ToolsCompleteUpdate:
    step: int
    observations: tuple[Observation, ...]
    type: str = "tools_complete"


@dataclass(frozen=True)
class StepCompleteUpdate:
    step: int
    record: Step
    type: str = "step_complete"


@dataclass(frozen=True)
class AnswerUpdate:
    step: int
    answer: str
    type: str = "answer"


@dataclass(frozen=True)
class ErrorUpdate:
    error: str
    code: str = "UNKNOWN"
    step: int | None = None
    type: str = "error"


LoopUpdate = (
    StepStartUpdate
    | ReasoningUpdate
    | DecisionUpdate
    | ToolsStartUpdate
    | ToolsCompleteUpdate
    | StepCompleteUpdate
    | AnswerUpdate
    | ErrorUpdate
)
