"""Loop and model configuration.

``ModelConfig`` describes which decision-service model to call and is a
pydantic model so that it validates when loaded from the environment or a
file. ``LoopConfig`` is the per-loop policy and is frozen for the lifetime
of one loop.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Awaitable, Callable, Sequence

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .accounting import DEFAULT_RATE_TABLE, RateTable
from .errors import ConfigurationError
from .types import LoopState, LoopUpdate, Step, ToolDefinition, ToolExecutor

if TYPE_CHECKING:
    from .tools import ToolRegistry


class ModelConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    provider: str = Field(default="openai", description="Decision service provider id")
    model: str = Field(min_length=1, description="Model id, also used for cost lookup")
    api_key: str | None = Field(default=None, repr=False)
    base_url: str | None = None
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_tokens: int | None = Field(default=None, ge=1)

    @field_validator("model")
    @classmethod
    def _strip_model(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("model must not be blank")
        return v

    @classmethod
    def from_env(cls, prefix: str = "AGENTLOOP_") -> ModelConfig | None:
        """Build a config from environment variables, or None if no model is set."""
        model = os.getenv(f"{prefix}MODEL")
        if not model:
            return None
        kwargs: dict = {
            "model": model,
            "api_key": os.getenv(f"{prefix}API_KEY") or os.getenv("OPENAI_API_KEY"),
            "base_url": os.getenv(f"{prefix}BASE_URL"),
        }
        if provider := os.getenv(f"{prefix}PROVIDER"):
            kwargs["provider"] = provider
        if temperature := os.getenv(f"{prefix}TEMPERATURE"):
            kwargs["temperature"] = float(temperature)
        if max_tokens := os.getenv(f"{prefix}MAX_TOKENS"):
            kwargs["max_tokens"] = int(max_tokens)
        return cls(**kwargs)


ModelConfigResolver = Callable[[], "ModelConfig | None | Awaitable[ModelConfig | None]"]


@dataclass(frozen=True)
class LoopConfig:
    max_steps: int = 10
    tools: tuple[ToolDefinition, ...] = ()
    tool_executor: ToolExecutor | None = None
    require_confirmation: bool = False
    show_reasoning: bool = True
    on_update: Callable[[LoopState], None] | None = None
    on_step_complete: Callable[[Step], None] | None = None
    on_progress: Callable[[LoopUpdate], None] | None = None
    rates: RateTable = field(default=DEFAULT_RATE_TABLE)

    def __post_init__(self) -> None:
        if isinstance(self.max_steps, bool) or not isinstance(self.max_steps, int):
            raise ConfigurationError(f"max_steps must be an integer, got {self.max_steps!r}")
        if self.max_steps < 1:
            raise ConfigurationError(f"max_steps must be >= 1, got {self.max_steps}")
        if not isinstance(self.tools, tuple):
            object.__setattr__(self, "tools", tuple(self.tools))
        names = [t.name for t in self.tools]
        if len(names) != len(set(names)):
            raise ConfigurationError(f"Duplicate tool names in catalog: {sorted(names)}")
        if self.tools and self.tool_executor is None:
            raise ConfigurationError("A tool catalog was given without a tool executor")

    @property
    def confirm_tools(self) -> frozenset[str]:
        """Names of catalog tools that always need a human go-ahead."""
        return frozenset(t.name for t in self.tools if t.requires_confirmation)

    @classmethod
    def from_registry(
        cls, registry: ToolRegistry, tools: Sequence[str] | None = None, **kwargs
    ) -> LoopConfig:
        """Use a registry's tools as the catalog and its ``execute`` as executor."""
        if tools is None:
            catalog = registry.list()
        else:
            missing = [n for n in tools if registry.get(n) is None]
            if missing:
                raise ConfigurationError(f"Tools not registered: {', '.join(missing)}")
            catalog = [registry.get(n) for n in tools]
        return cls(tools=tuple(catalog), tool_executor=registry.execute, **kwargs)
