"""Usage accounting: token totals and estimated USD cost per model.

Rates are expressed in USD per one million tokens. Model ids without an
entry in the table are priced at the table's default rate.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Mapping

from pydantic import BaseModel, ConfigDict, Field

from .types import TokenUsage, Usage


class ModelRate(BaseModel):
    model_config = ConfigDict(frozen=True)

    input: float = Field(ge=0, description="USD per 1M prompt tokens")
    output: float = Field(ge=0, description="USD per 1M completion tokens")


class RateTable(BaseModel):
    model_config = ConfigDict(frozen=True)

    rates: dict[str, ModelRate] = Field(default_factory=dict)
    default: ModelRate = ModelRate(input=1.0, output=3.0)

    def rate_for(self, model_id: str) -> ModelRate:
        return self.rates.get(model_id, self.default)

    def is_known(self, model_id: str) -> bool:
        return model_id in self.rates

    def with_rates(self, rates: Mapping[str, ModelRate | Mapping[str, float]]) -> RateTable:
        merged = dict(self.rates)
        for model_id, rate in rates.items():
            merged[model_id] = rate if isinstance(rate, ModelRate) else ModelRate(**rate)
        return RateTable(rates=merged, default=self.default)

    @classmethod
    def from_json_file(cls, path: str | Path) -> RateTable:
        """Load ``{"rates": {"model": {"input": .., "output": ..}}, "default": {...}}``."""
        return cls.model_validate(json.loads(Path(path).read_text(encoding="utf-8")))


DEFAULT_RATE_TABLE = RateTable(
    rates={
        # OpenAI
        "gpt-4o": ModelRate(input=2.5, output=10.0),
        "gpt-4o-mini": ModelRate(input=0.15, output=0.6),
        "gpt-4-turbo": ModelRate(input=10.0, output=30.0),
        "gpt-4": ModelRate(input=30.0, output=60.0),
        "gpt-3.5-turbo": ModelRate(input=0.5, output=1.5),
        # Anthropic
        "claude-3-5-sonnet": ModelRate(input=3.0, output=15.0),
        "claude-3-5-haiku": ModelRate(input=0.25, output=1.25),
        "claude-3-opus": ModelRate(input=15.0, output=75.0),
        "claude-3-sonnet": ModelRate(input=3.0, output=15.0),
        "claude-3-haiku": ModelRate(input=0.25, output=1.25),
        # Google
        "gemini-1.5-pro": ModelRate(input=1.25, output=5.0),
        "gemini-1.5-flash": ModelRate(input=0.075, output=0.3),
        "gemini-2.0-flash": ModelRate(input=0.1, output=0.4),
    },
    default=ModelRate(input=1.0, output=3.0),
)


def estimate_cost(
    prompt_tokens: int,
    completion_tokens: int,
    model_id: str,
    table: RateTable = DEFAULT_RATE_TABLE,
) -> float:
    rate = table.rate_for(model_id)
    return (prompt_tokens / 1_000_000) * rate.input + (completion_tokens / 1_000_000) * rate.output


def accumulate_usage(
    usage: Usage,
    tokens: TokenUsage | None,
    model_id: str,
    table: RateTable = DEFAULT_RATE_TABLE,
) -> Usage:
    """Fold one decision-service call into the running totals.

    The call counter always advances, even when the provider reported no
    token usage.
    """
    if tokens is None:
        return Usage(
            total_tokens=usage.total_tokens,
            prompt_tokens=usage.prompt_tokens,
            completion_tokens=usage.completion_tokens,
            estimated_cost=usage.estimated_cost,
            llm_calls=usage.llm_calls + 1,
        )
    total = tokens.total_tokens or tokens.prompt_tokens + tokens.completion_tokens
    return Usage(
        total_tokens=usage.total_tokens + total,
        prompt_tokens=usage.prompt_tokens + tokens.prompt_tokens,
        completion_tokens=usage.completion_tokens + tokens.completion_tokens,
        estimated_cost=usage.estimated_cost
        + estimate_cost(tokens.prompt_tokens, tokens.completion_tokens, model_id, table),
        llm_calls=usage.llm_calls + 1,
    )
