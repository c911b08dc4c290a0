"""Decision service implementations."""

from .base import BaseDecisionService, CircuitBreakerConfig, RetryConfig
from .openai import OpenAIDecisionService, parse_openai_tool_calls

__all__ = [
    "BaseDecisionService",
    "CircuitBreakerConfig",
    "RetryConfig",
    "OpenAIDecisionService",
    "parse_openai_tool_calls",
]
