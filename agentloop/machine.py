"""Pure step-transition function for the agent loop.

``transition(state, event, settings)`` takes the current ``MachineState`` and
one input event and returns the next state together with the effects the
driver must perform (emit an update, call the decision service, run tools,
notify callbacks). Nothing in this module does I/O or reads the clock; every
timestamp arrives on the input event.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Any

from .accounting import RateTable, accumulate_usage
from .errors import InvalidStateError
from .types import (
    ActionRecord,
    AnswerUpdate,
    AssistantMessage,
    CompletionResult,
    Decision,
    DecisionType,
    DecisionUpdate,
    ErrorUpdate,
    LoopState,
    LoopStatus,
    LoopUpdate,
    Message,
    Observation,
    ObservationType,
    PlanRecord,
    ReasoningUpdate,
    Step,
    StepCompleteUpdate,
    StepStartUpdate,
    SynthesisRecord,
    ToolCall,
    ToolMessage,
    ToolsCompleteUpdate,
    ToolsStartUpdate,
    UserMessage,
)

TOOL_CALL_CONFIDENCE = 0.8
ANSWER_CONFIDENCE = 0.9
FALLBACK_CONFIDENCE = 0.5

FALLBACK_ANSWER = "I apologize, but I was unable to generate a response."
MAX_STEPS_MESSAGE = "Maximum steps reached without completing the task"
HINT_ALL_SUCCEEDED = "Continue processing with gathered information"
HINT_SOME_FAILED = "Some tools failed, consider alternative approaches"


# -- Settings / state --


@dataclass(frozen=True)
class MachineSettings:
    model_id: str
    rates: RateTable
    require_confirmation: bool = False
    show_reasoning: bool = True
    confirm_tools: frozenset[str] = frozenset()


@dataclass(frozen=True)
class ActiveStep:
    """A step whose tools are in flight."""

    id: str
    number: int
    started_at: datetime
    plan: PlanRecord | None = None
    tool_calls: tuple[ToolCall, ...] = ()
    elapsed_ms: int = 0  # time already spent before a confirmation pause


@dataclass(frozen=True)
class MachineState:
    loop: LoopState
    conversation: tuple[Message, ...]
    active: ActiveStep | None = None


# -- Inputs --


@dataclass(frozen=True)
class Advance:
    step_id: str
    at: datetime


@dataclass(frozen=True)
class DecisionReceived:
    completion: CompletionResult
    at: datetime


@dataclass(frozen=True)
class ToolOutcome:
    call: ToolCall
    success: bool
    content: Any = None
    error: str | None = None
    duration_ms: int = 0


@dataclass(frozen=True)
class ToolsSettled:
    outcomes: tuple[ToolOutcome, ...]
    at: datetime


@dataclass(frozen=True)
class Resume:
    approved: bool
    at: datetime
    feedback: str | None = None


@dataclass(frozen=True)
class Cancel:
    at: datetime


@dataclass(frozen=True)
class Fail:
    error: str
    at: datetime
    code: str = "UNKNOWN"


MachineInput = Advance | DecisionReceived | ToolsSettled | Resume | Cancel | Fail


# -- Effects --


@dataclass(frozen=True)
class Emit:
    update: LoopUpdate


@dataclass(frozen=True)
class RequestDecision:
    messages: tuple[Message, ...]


@dataclass(frozen=True)
class ExecuteTools:
    step_number: int
    tool_calls: tuple[ToolCall, ...]


@dataclass(frozen=True)
class NotifyStep:
    step: Step


Effect = Emit | RequestDecision | ExecuteTools | NotifyStep


@dataclass(frozen=True)
class Transition:
    state: MachineState
    effects: tuple[Effect, ...] = ()


# -- Helpers --


def classify_decision(completion: CompletionResult, requires_confirmation: bool = False) -> Decision:
    if completion.tool_calls:
        return Decision(
            type=DecisionType.TOOL_CALL,
            reasoning=completion.content or "Executing tools",
            confidence=TOOL_CALL_CONFIDENCE,
            tool_calls=tuple(completion.tool_calls),
            requires_confirmation=requires_confirmation,
        )
    if completion.content:
        return Decision(
            type=DecisionType.ANSWER,
            reasoning="Providing final answer",
            confidence=ANSWER_CONFIDENCE,
            answer=completion.content,
        )
    return Decision(
        type=DecisionType.ANSWER,
        reasoning="No response generated",
        confidence=FALLBACK_CONFIDENCE,
        answer=FALLBACK_ANSWER,
    )


def render_content(content: Any) -> str:
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    try:
        return json.dumps(content, indent=2, default=str)
    except (TypeError, ValueError):
        return str(content)


def summarize_observations(observations: tuple[Observation, ...]) -> str:
    return "\n".join(
        f"[{o.source}] {'✓' if o.success else '✗'} {o.content[:100]}" for o in observations
    )


def pending_work(state: MachineState) -> tuple[Effect, ...]:
    """Re-issue the outstanding request of a step whose driver went away.

    A step that was started but never received its decision asks again; a
    step that was planned but never saw its tool results runs the tools again.
    """
    active = state.active
    if active is None or state.loop.status is not LoopStatus.RUNNING:
        return ()
    if active.plan is None:
        return (RequestDecision(state.conversation),)
    return (ExecuteTools(active.number, active.tool_calls),)


def _elapsed_ms(start: datetime, end: datetime) -> int:
    return max(0, (end - start) // timedelta(milliseconds=1))


def _observe(outcome: ToolOutcome, at: datetime) -> Observation:
    if outcome.success:
        data = outcome.content if isinstance(outcome.content, (dict, list)) else None
        return Observation(
            type=ObservationType.TOOL_RESULT,
            content=render_content(outcome.content),
            source=outcome.call.name,
            timestamp=at,
            success=True,
            duration_ms=outcome.duration_ms,
            data=data,
        )
    return Observation(
        type=ObservationType.ERROR,
        content=f"Error: {outcome.error or 'Unknown error'}",
        source=outcome.call.name,
        timestamp=at,
        success=False,
        duration_ms=outcome.duration_ms,
    )


def _put_step(steps: tuple[Step, ...], step: Step) -> tuple[Step, ...]:
    if steps and steps[-1].step_number == step.step_number:
        return steps[:-1] + (step,)
    return steps + (step,)


def _finish(loop: LoopState, status: LoopStatus, at: datetime, **changes) -> LoopState:
    return replace(loop, status=status, completed_at=at, **changes)


# -- Transition --


def transition(state: MachineState, event: MachineInput, settings: MachineSettings) -> Transition:
    """Compute the next state and effects for one input.

    Raises ``InvalidStateError`` without producing a new state when the input
    is not allowed in the current status.
    """
    if isinstance(event, Advance):
        return _on_advance(state, event)
    if isinstance(event, DecisionReceived):
        return _on_decision(state, event, settings)
    if isinstance(event, ToolsSettled):
        return _on_tools_settled(state, event)
    if isinstance(event, Resume):
        return _on_resume(state, event)
    if isinstance(event, Cancel):
        return _on_cancel(state, event)
    if isinstance(event, Fail):
        return _on_fail(state, event)
    raise TypeError(f"Unknown machine input: {type(event).__name__}")


def _on_advance(state: MachineState, event: Advance) -> Transition:
    loop = state.loop
    if loop.status is LoopStatus.AWAITING_CONFIRMATION:
        raise InvalidStateError(
            loop.status.value, "Cannot advance: loop is awaiting confirmation, call resume()"
        )
    if loop.status.is_terminal or state.active is not None:
        return Transition(state)
    if loop.current_step >= loop.max_steps:
        failed = _finish(loop, LoopStatus.FAILED, event.at, error=MAX_STEPS_MESSAGE)
        return Transition(
            replace(state, loop=failed),
            (Emit(ErrorUpdate(MAX_STEPS_MESSAGE, "MAX_STEPS_EXCEEDED", loop.current_step)),),
        )
    number = loop.current_step + 1
    active = ActiveStep(id=event.step_id, number=number, started_at=event.at)
    return Transition(
        replace(state, loop=replace(loop, current_step=number), active=active),
        (Emit(StepStartUpdate(number)), RequestDecision(state.conversation)),
    )


def _on_decision(
    state: MachineState, event: DecisionReceived, settings: MachineSettings
) -> Transition:
    loop, active = state.loop, state.active
    if loop.status is not LoopStatus.RUNNING or active is None or active.plan is not None:
        return Transition(state)

    completion = event.completion
    needs_confirmation = settings.require_confirmation or any(
        tc.name in settings.confirm_tools for tc in completion.tool_calls
    )
    decision = classify_decision(completion, needs_confirmation)
    reasoning = completion.content or decision.reasoning
    plan = PlanRecord(
        decision=decision,
        reasoning=reasoning,
        tokens_used=completion.usage.total_tokens if completion.usage else 0,
    )
    loop = replace(
        loop, usage=accumulate_usage(loop.usage, completion.usage, settings.model_id, settings.rates)
    )
    effects: list[Effect] = [
        Emit(ReasoningUpdate(active.number, reasoning if settings.show_reasoning else None)),
        Emit(DecisionUpdate(active.number, decision)),
    ]

    if decision.type is DecisionType.ANSWER:
        step = Step(
            id=active.id,
            step_number=active.number,
            timestamp=active.started_at,
            duration_ms=_elapsed_ms(active.started_at, event.at),
            plan=plan,
            synthesis=SynthesisRecord(summary="Final answer provided", should_continue=False),
        )
        loop = _finish(
            loop, LoopStatus.COMPLETED, event.at, steps=loop.steps + (step,), result=decision
        )
        effects += [
            Emit(StepCompleteUpdate(active.number, step)),
            NotifyStep(step),
            Emit(AnswerUpdate(active.number, decision.answer or "")),
        ]
        conversation = state.conversation + (AssistantMessage(content=decision.answer or ""),)
        return Transition(MachineState(loop, conversation), tuple(effects))

    action = ActionRecord(tool_calls=decision.tool_calls, parallel_execution=True)
    if decision.requires_confirmation:
        step = Step(
            id=active.id,
            step_number=active.number,
            timestamp=active.started_at,
            duration_ms=_elapsed_ms(active.started_at, event.at),
            plan=plan,
            action=action,
        )
        loop = replace(loop, status=LoopStatus.AWAITING_CONFIRMATION, steps=loop.steps + (step,))
        effects.append(Emit(StepCompleteUpdate(active.number, step)))
        return Transition(replace(state, loop=loop, active=None), tuple(effects))

    active = replace(active, plan=plan, tool_calls=decision.tool_calls)
    effects += [
        Emit(ToolsStartUpdate(active.number, decision.tool_calls)),
        ExecuteTools(active.number, decision.tool_calls),
    ]
    return Transition(replace(state, loop=loop, active=active), tuple(effects))


def _on_tools_settled(state: MachineState, event: ToolsSettled) -> Transition:
    loop, active = state.loop, state.active
    # Results that arrive after cancellation (or any terminal move) are dropped.
    if loop.status is not LoopStatus.RUNNING or active is None or active.plan is None:
        return Transition(replace(state, active=None) if loop.status.is_terminal else state)

    observations = tuple(_observe(o, event.at) for o in event.outcomes)
    conversation = state.conversation
    for outcome, obs in zip(event.outcomes, observations):
        conversation += (
            AssistantMessage(content="", tool_calls=(outcome.call,)),
            ToolMessage(content=obs.content, tool_call_id=outcome.call.id, tool_name=outcome.call.name),
        )

    all_ok = all(o.success for o in observations)
    step = Step(
        id=active.id,
        step_number=active.number,
        timestamp=active.started_at,
        duration_ms=active.elapsed_ms + _elapsed_ms(active.started_at, event.at),
        plan=active.plan,
        action=ActionRecord(tool_calls=active.tool_calls, parallel_execution=True),
        observations=observations,
        synthesis=SynthesisRecord(
            summary=summarize_observations(observations),
            should_continue=True,
            next_step_hint=HINT_ALL_SUCCEEDED if all_ok else HINT_SOME_FAILED,
        ),
    )
    loop = replace(loop, steps=_put_step(loop.steps, step))
    effects = (
        Emit(ToolsCompleteUpdate(active.number, observations)),
        Emit(StepCompleteUpdate(active.number, step)),
        NotifyStep(step),
    )
    return Transition(MachineState(loop, conversation), effects)


def _on_resume(state: MachineState, event: Resume) -> Transition:
    loop = state.loop
    if loop.status is not LoopStatus.AWAITING_CONFIRMATION or not loop.steps:
        raise InvalidStateError(
            loop.status.value, "Cannot resume: loop is not awaiting confirmation"
        )
    paused = loop.steps[-1]
    calls = paused.action.tool_calls if paused.action else ()

    if event.approved and calls:
        active = ActiveStep(
            id=paused.id,
            number=paused.step_number,
            started_at=event.at,
            plan=paused.plan,
            tool_calls=calls,
            elapsed_ms=paused.duration_ms,
        )
        loop = replace(loop, status=LoopStatus.RUNNING)
        return Transition(
            replace(state, loop=loop, active=active),
            (
                Emit(ToolsStartUpdate(paused.step_number, calls)),
                ExecuteTools(paused.step_number, calls),
            ),
        )

    conversation = state.conversation
    observations = paused.observations
    if event.feedback:
        feedback = Observation(
            type=ObservationType.HUMAN_FEEDBACK,
            content=event.feedback,
            source="human",
            timestamp=event.at,
            success=True,
        )
        observations += (feedback,)
        conversation += (UserMessage(content=f"[Human Feedback]: {event.feedback}"),)
    step = replace(
        paused,
        observations=observations,
        synthesis=SynthesisRecord(
            summary=summarize_observations(observations) or "Tool calls rejected",
            should_continue=True,
        ),
    )
    loop = replace(loop, status=LoopStatus.RUNNING, steps=_put_step(loop.steps, step))
    return Transition(
        MachineState(loop, conversation),
        (Emit(StepCompleteUpdate(step.step_number, step)), NotifyStep(step)),
    )


def _on_cancel(state: MachineState, event: Cancel) -> Transition:
    if state.loop.status.is_terminal:
        return Transition(state)
    return Transition(
        replace(state, loop=_finish(state.loop, LoopStatus.CANCELLED, event.at), active=None)
    )


def _on_fail(state: MachineState, event: Fail) -> Transition:
    loop = state.loop
    if loop.status.is_terminal:
        return Transition(state)
    failed = _finish(loop, LoopStatus.FAILED, event.at, error=event.error)
    return Transition(
        replace(state, loop=failed, active=None),
        (Emit(ErrorUpdate(event.error, event.code, loop.current_step or None)),),
    )
