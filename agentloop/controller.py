"""AgentLoop: drives the step machine against a decision service and tools."""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from collections import deque
from contextlib import aclosing
from datetime import datetime, timezone
from typing import Any, AsyncGenerator, Callable, Sequence
from uuid import uuid4

from .accounting import DEFAULT_RATE_TABLE
from .cancellation import CancellationToken
from .config import LoopConfig, ModelConfig, ModelConfigResolver
from .errors import ConfigurationError, InvalidStateError, LoopError, ToolError
from .events import Handler, UpdateEmitter
from .machine import (
    Advance,
    Cancel,
    DecisionReceived,
    Effect,
    Emit,
    ExecuteTools,
    Fail,
    MachineInput,
    MachineSettings,
    MachineState,
    NotifyStep,
    RequestDecision,
    Resume,
    ToolOutcome,
    ToolsSettled,
    pending_work,
    render_content,
    transition,
)
from .prompts import build_system_prompt
from .types import (
    AgentPersona,
    DecisionService,
    LoopState,
    LoopStatus,
    LoopUpdate,
    SystemMessage,
    ToolCall,
    ToolContext,
    ToolDefinition,
    ToolExecutor,
    ToolResult,
    UserMessage,
)

logger = logging.getLogger(__name__)

NO_MODEL_MESSAGE = "No LLM provider configured"
NO_SERVICE_MESSAGE = "No decision service configured"

_CANCELLED = object()


def _now() -> datetime:
    return datetime.now(timezone.utc)


class AgentLoop:
    """One bounded plan/act/observe/synthesize run for a persona and a prompt.

    Usage::

        loop = AgentLoop(persona, "Summarize today's tickets", service, model, config)
        async for update in loop.stream():
            ...
        state = loop.get_state()
    """

    def __init__(
        self,
        persona: AgentPersona,
        prompt: str,
        decision_service: DecisionService | None,
        model: ModelConfig | ModelConfigResolver | None,
        config: LoopConfig | None = None,
        *,
        loop_id: str | None = None,
    ) -> None:
        self.persona = persona
        self.config = config or LoopConfig()
        self._service = decision_service
        self._model_source = model
        self._model: ModelConfig | None = None
        self._settings: MachineSettings | None = None
        self._token = CancellationToken()
        self._emitter = UpdateEmitter()
        self._driving = False
        self._abandoning = False
        # Work computed but not yet performed, kept across drives.
        self._effects: deque[Effect] = deque()
        self._inputs: deque[MachineInput] = deque()

        loop = LoopState(
            id=loop_id or str(uuid4()),
            agent_id=persona.id,
            prompt=prompt,
            max_steps=self.config.max_steps,
            started_at=_now(),
        )
        conversation = (
            SystemMessage(content=build_system_prompt(persona, self.config.tools)),
            UserMessage(content=prompt),
        )
        self._machine = MachineState(loop=loop, conversation=conversation)

    # -- Public API --

    def get_state(self) -> LoopState:
        return self._machine.loop

    @property
    def conversation(self) -> tuple:
        return self._machine.conversation

    @property
    def cancellation(self) -> CancellationToken:
        return self._token

    def on(self, update_type: str, handler: Handler) -> None:
        self._emitter.on(update_type, handler)

    def on_all(self, handler: Handler) -> None:
        self._emitter.on_all(handler)

    def off(self, update_type: str, handler: Handler) -> None:
        self._emitter.off(update_type, handler)

    def cancel(self) -> None:
        """Stop the loop. Safe to call any number of times, from any state."""
        if self._machine.loop.status.is_terminal:
            return
        self._apply(Cancel(_now()))
        self._effects.clear()
        self._inputs.clear()
        self._token.cancel()
        logger.debug("Loop %s cancelled", self._machine.loop.id)

    async def run(self) -> LoopState:
        async with aclosing(self.stream()) as updates:
            async for _ in updates:
                pass
        return self.get_state()

    async def stream(self) -> AsyncGenerator[LoopUpdate, None]:
        """Drive the loop, yielding each progress update as it happens.

        Stopping iteration early leaves the loop where it was; a later
        ``stream()`` or ``run()`` delivers the undelivered updates first and
        then carries on from the same step.
        """
        status = self._machine.loop.status
        if status is LoopStatus.AWAITING_CONFIRMATION and not self._effects:
            raise InvalidStateError(
                status.value, "Cannot run: loop is awaiting confirmation, call resume()"
            )
        self._ensure_idle()
        if status.is_terminal and not self._effects:
            return
        async with aclosing(self._drive(None)) as updates:
            async for update in updates:
                yield update

    async def resume(self, approved: bool, feedback: str | None = None) -> LoopState:
        async with aclosing(self.resume_stream(approved, feedback)) as updates:
            async for _ in updates:
                pass
        return self.get_state()

    async def resume_stream(
        self, approved: bool, feedback: str | None = None
    ) -> AsyncGenerator[LoopUpdate, None]:
        status = self._machine.loop.status
        if status is not LoopStatus.AWAITING_CONFIRMATION:
            raise InvalidStateError(status.value, "Cannot resume: loop is not awaiting confirmation")
        self._ensure_idle()
        logger.debug("Loop %s resumed (approved=%s)", self._machine.loop.id, approved)
        async with aclosing(
            self._drive(Resume(approved=approved, at=_now(), feedback=feedback))
        ) as updates:
            async for update in updates:
                yield update

    # -- Driver --

    def _ensure_idle(self) -> None:
        if self._driving:
            raise InvalidStateError(
                self._machine.loop.status.value, "Loop is already being driven"
            )

    async def _drive(self, first: MachineInput | None) -> AsyncGenerator[LoopUpdate, None]:
        self._driving = True
        try:
            if not self._machine.loop.status.is_terminal:
                failure = await self._prepare()
                if failure is not None:
                    self._effects.extend(self._apply(Fail(failure.message, _now(), failure.code)))
                    while self._effects:
                        effect = self._effects.popleft()
                        if isinstance(effect, Emit):
                            await self._publish(effect.update)
                            yield effect.update
                    raise failure

            if first is not None:
                self._inputs.append(first)
            while True:
                if self._effects:
                    effect = self._effects.popleft()
                    if isinstance(effect, Emit):
                        await self._publish(effect.update)
                        yield effect.update
                        continue
                    follow_up = await self._perform(effect)
                    if follow_up is not None:
                        self._inputs.append(follow_up)
                    continue
                if self._inputs:
                    self._effects.extend(self._apply(self._inputs.popleft()))
                    continue
                if self._token.cancelled or self._machine.loop.status is not LoopStatus.RUNNING:
                    break
                if self._machine.active is not None:
                    # The previous drive stopped while this step was in flight.
                    logger.debug(
                        "Loop %s picking up step %d", self._machine.loop.id, self._machine.active.number
                    )
                    self._effects.extend(pending_work(self._machine))
                else:
                    self._inputs.append(Advance(step_id=str(uuid4()), at=_now()))
        except LoopError:
            raise
        except Exception as e:
            logger.exception("Loop %s failed unexpectedly", self._machine.loop.id)
            err = LoopError.wrap(e)
            self._effects.clear()
            self._inputs.clear()
            for effect in self._apply(Fail(err.message, _now(), err.code)):
                if isinstance(effect, Emit):
                    await self._publish(effect.update)
                    yield effect.update
            raise
        finally:
            self._driving = False

    async def _prepare(self) -> ConfigurationError | None:
        if self._settings is not None:
            return None
        if self._service is None:
            return ConfigurationError(NO_SERVICE_MESSAGE)
        try:
            model = self._model_source
            if callable(model) and not isinstance(model, ModelConfig):
                model = model()
                if inspect.isawaitable(model):
                    model = await model
        except Exception as e:
            logger.exception("Model configuration lookup failed")
            return ConfigurationError(f"{NO_MODEL_MESSAGE}: {e}", cause=e)
        if model is None:
            return ConfigurationError(NO_MODEL_MESSAGE)

        if not self.config.rates.is_known(model.model):
            logger.warning(
                "No rate for model %r, cost estimates use the default rate", model.model
            )
        self._model = model
        self._settings = MachineSettings(
            model_id=model.model,
            rates=self.config.rates,
            require_confirmation=self.config.require_confirmation,
            show_reasoning=self.config.show_reasoning,
            confirm_tools=self.config.confirm_tools,
        )
        return None

    def _apply(self, event: MachineInput) -> tuple[Effect, ...]:
        before = self._machine.loop
        result = transition(self._machine, event, self._settings or _FALLBACK_SETTINGS)
        self._machine = result.state
        if result.state.loop is not before:
            self._notify(self.config.on_update, result.state.loop)
        return result.effects

    async def _perform(self, effect: Effect) -> MachineInput | None:
        if isinstance(effect, NotifyStep):
            self._notify(self.config.on_step_complete, effect.step)
            return None
        if isinstance(effect, RequestDecision):
            return await self._request_decision(effect)
        if isinstance(effect, ExecuteTools):
            return await self._execute_tools(effect)
        raise TypeError(f"Unknown effect: {type(effect).__name__}")

    async def _request_decision(self, effect: RequestDecision) -> MachineInput | None:
        call = asyncio.ensure_future(
            self._service.complete(list(effect.messages), self._model, list(self.config.tools))
        )
        try:
            completion = await self._until_cancelled(call)
        except Exception as e:
            err = LoopError.wrap(e)
            logger.warning("Decision service failed in loop %s: %s", self._machine.loop.id, err)
            return Fail(err.message, _now(), err.code)
        if completion is _CANCELLED:
            if self._token.cancelled:
                return None
            return Fail("Decision request was cancelled", _now(), "CANCELLED")
        return DecisionReceived(completion=completion, at=_now())

    async def _execute_tools(self, effect: ExecuteTools) -> MachineInput | None:
        ctx = ToolContext(
            signal=self._token,
            loop_id=self._machine.loop.id,
            step_number=effect.step_number,
        )
        logger.debug(
            "Step %d: executing %d tool(s) in parallel", effect.step_number, len(effect.tool_calls)
        )
        batch = asyncio.gather(*(self._run_tool(call, ctx) for call in effect.tool_calls))
        outcomes = await self._until_cancelled(batch)
        if outcomes is _CANCELLED:
            if self._token.cancelled:
                return None
            return Fail("Tool execution was cancelled", _now(), "CANCELLED")
        return ToolsSettled(outcomes=tuple(outcomes), at=_now())

    async def _run_tool(self, call: ToolCall, ctx: ToolContext) -> ToolOutcome:
        start = time.monotonic()
        try:
            if self.config.tool_executor is None:
                raise ToolError("NO_TOOL_EXECUTOR", call.name, "No tool executor configured")
            result = ToolResult.coerce(await self.config.tool_executor(call, ctx))
        except asyncio.CancelledError:
            if self._token.cancelled or self._abandoning:
                raise
            # Raised by the tool itself, not by the loop.
            logger.warning("Tool %s was cancelled", call.name)
            return ToolOutcome(
                call=call,
                success=False,
                error="Tool execution was cancelled",
                duration_ms=int((time.monotonic() - start) * 1000),
            )
        except Exception as e:
            logger.warning("Tool %s failed: %s", call.name, e)
            return ToolOutcome(
                call=call,
                success=False,
                error=str(e) or type(e).__name__,
                duration_ms=int((time.monotonic() - start) * 1000),
            )
        duration_ms = int((time.monotonic() - start) * 1000)
        if result.success:
            return ToolOutcome(call=call, success=True, content=result.content, duration_ms=duration_ms)
        error = result.error or render_content(result.content) or None
        return ToolOutcome(call=call, success=False, error=error, duration_ms=duration_ms)

    async def _until_cancelled(self, work: asyncio.Future) -> Any:
        """Await ``work`` unless the loop is cancelled first, then abandon it."""
        waiter = asyncio.ensure_future(self._token.wait())
        try:
            await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
            if not work.done():
                self._abandoning = True
                work.cancel()
                try:
                    await asyncio.gather(work, return_exceptions=True)
                finally:
                    self._abandoning = False
        # A cancelled gather finishes with a CancelledError instead of a cancelled state.
        if work.cancelled() or isinstance(work.exception(), asyncio.CancelledError):
            return _CANCELLED
        return work.result()

    async def _publish(self, update: LoopUpdate) -> None:
        self._notify(self.config.on_progress, update)
        await self._emitter.emit(update)

    @staticmethod
    def _notify(callback: Callable[[Any], None] | None, payload: Any) -> None:
        if callback is None:
            return
        try:
            callback(payload)
        except Exception:
            logger.exception("Loop callback %r raised", callback)


_FALLBACK_SETTINGS = MachineSettings(model_id="default", rates=DEFAULT_RATE_TABLE)


async def run_agent_loop(
    persona: AgentPersona,
    prompt: str,
    decision_service: DecisionService,
    model: ModelConfig | ModelConfigResolver | None,
    tools: Sequence[ToolDefinition] = (),
    tool_executor: ToolExecutor | None = None,
    **options,
) -> LoopState:
    """Build a loop for a single task and run it to the end."""
    config = LoopConfig(tools=tuple(tools), tool_executor=tool_executor, **options)
    return await AgentLoop(persona, prompt, decision_service, model, config).run()
