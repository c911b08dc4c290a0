"""Base decision service with retry and circuit breaker."""

from __future__ import annotations

import asyncio
import logging
import random
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Sequence, TypeVar

from ..config import ModelConfig
from ..errors import DecisionServiceError, DecisionServiceUnavailableError
from ..types import CompletionResult, Message, ToolDefinition

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryConfig:
    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0


@dataclass
class CircuitBreakerConfig:
    failure_threshold: int = 5
    reset_time: float = 60.0


class BaseDecisionService:
    """Abstract base with retry + circuit breaker. Subclass and implement _do_complete."""

    provider = "base"

    def __init__(
        self,
        retry: RetryConfig | None = None,
        circuit_breaker: CircuitBreakerConfig | None = None,
    ) -> None:
        self._retry = retry or RetryConfig()
        self._cb = circuit_breaker or CircuitBreakerConfig()
        self._failures = 0
        self._last_failure = 0.0

    async def complete(
        self,
        messages: Sequence[Message],
        model: ModelConfig,
        tools: Sequence[ToolDefinition],
    ) -> CompletionResult:
        self._check_circuit()
        return await self._with_retry(lambda: self._do_complete(messages, model, tools))

    @property
    def circuit_open(self) -> bool:
        return (
            self._failures >= self._cb.failure_threshold
            and time.monotonic() - self._last_failure < self._cb.reset_time
        )

    # -- Override this --

    async def _do_complete(
        self,
        messages: Sequence[Message],
        model: ModelConfig,
        tools: Sequence[ToolDefinition],
    ) -> CompletionResult:
        raise NotImplementedError

    # -- Internals --

    def _check_circuit(self) -> None:
        if self._failures >= self._cb.failure_threshold:
            if time.monotonic() - self._last_failure < self._cb.reset_time:
                raise DecisionServiceUnavailableError(self.provider)
            self._failures = 0

    async def _with_retry(self, fn: Callable[[], Awaitable[T]]) -> T:
        last_err: Exception | None = None
        for i in range(self._retry.max_retries + 1):
            try:
                result = await fn()
                self._failures = 0
                return result
            except Exception as e:
                last_err = e
                self._failures += 1
                self._last_failure = time.monotonic()
                if i < self._retry.max_retries:
                    delay = min(
                        self._retry.base_delay * (2 ** i) + random.random() * 0.1,
                        self._retry.max_delay,
                    )
                    logger.debug(
                        "%s call failed (%s), retry %d in %.2fs", self.provider, e, i + 1, delay
                    )
                    await asyncio.sleep(delay)
        if isinstance(last_err, DecisionServiceError):
            raise last_err
        raise DecisionServiceError(
            "DECISION_SERVICE_ERROR",
            self.provider,
            f"{self.provider} request failed: {last_err}",
            status_code=getattr(last_err, "status_code", None),
            cause=last_err,
        ) from last_err
