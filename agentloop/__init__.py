"""agentloop: a bounded plan/act/observe/synthesize loop for tool-using agents."""

from .accounting import DEFAULT_RATE_TABLE, ModelRate, RateTable, accumulate_usage, estimate_cost
from .cancellation import CancellationToken
from .config import LoopConfig, ModelConfig
from .controller import AgentLoop, run_agent_loop
from .errors import (
    ConfigurationError,
    DecisionServiceError,
    DecisionServiceUnavailableError,
    InvalidStateError,
    LoopError,
    ToolError,
    ToolNotFoundError,
    ToolTimeoutError,
)
from .events import UpdateCollector, UpdateEmitter
from .prompts import build_system_prompt
from .serialization import to_jsonable
from .tools import ToolRegistry, define_tool
from .types import (
    AgentPersona,
    CompletionResult,
    Decision,
    DecisionType,
    LoopState,
    LoopStatus,
    LoopUpdate,
    Observation,
    ObservationType,
    Step,
    TokenUsage,
    ToolCall,
    ToolContext,
    ToolDefinition,
    ToolResult,
    Usage,
)

__version__ = "0.1.0"

__all__ = [
    "AgentLoop", "run_agent_loop",
    "LoopConfig", "ModelConfig",
    "RateTable", "ModelRate", "DEFAULT_RATE_TABLE", "estimate_cost", "accumulate_usage",
    "CancellationToken",
    "UpdateEmitter", "UpdateCollector",
    "ToolRegistry", "define_tool",
    "build_system_prompt", "to_jsonable",
    "LoopError", "ConfigurationError", "InvalidStateError",
    "DecisionServiceError", "DecisionServiceUnavailableError",
    "ToolError", "ToolNotFoundError", "ToolTimeoutError",
    "AgentPersona", "CompletionResult", "Decision", "DecisionType", "LoopState", "LoopStatus",
    "LoopUpdate", "Observation", "ObservationType", "Step", "TokenUsage", "ToolCall",
    "ToolContext", "ToolDefinition", "ToolResult", "Usage",
]
