"""Core type definitions, re-exported from sub-modules."""

from .messages import (
    Message, SystemMessage, UserMessage, AssistantMessage, ToolMessage, ToolCall,
)
from .tools import (
    ToolSchema, ToolDefinition, ToolContext, ToolExecutionConfig, ToolResult, ToolExecutor,
)
from .llm import TokenUsage, CompletionResult, DecisionService
from .state import (
    LoopStatus, DecisionType, ObservationType, AgentPersona,
    Decision, Observation, PlanRecord, ActionRecord, SynthesisRecord, Step, Usage, LoopState,
)
from .updates import (
    LoopUpdate, StepStartUpdate, ReasoningUpdate, DecisionUpdate, ToolsStartUpdate,
    ToolsCompleteUpdate, StepCompleteUpdate, AnswerUpdate, ErrorUpdate,
)

__all__ = [
    "Message", "SystemMessage", "UserMessage", "AssistantMessage", "ToolMessage", "ToolCall",
    "ToolSchema", "ToolDefinition", "ToolContext", "ToolExecutionConfig", "ToolResult", "ToolExecutor",
    "TokenUsage", "CompletionResult", "DecisionService",
    "LoopStatus", "DecisionType", "ObservationType", "AgentPersona",
    "Decision", "Observation", "PlanRecord", "ActionRecord", "SynthesisRecord", "Step", "Usage",
    "LoopState",
    "LoopUpdate", "StepStartUpdate", "ReasoningUpdate", "DecisionUpdate", "ToolsStartUpdate",
    "ToolsCompleteUpdate", "StepCompleteUpdate", "AnswerUpdate", "ErrorUpdate",
]
