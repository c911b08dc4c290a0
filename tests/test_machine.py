"""
Tests for the pure step-transition function
"""

from datetime import datetime, timedelta, timezone

import pytest

from agentloop import (
    CompletionResult,
    DecisionType,
    InvalidStateError,
    LoopState,
    LoopStatus,
    ObservationType,
    TokenUsage,
)
from agentloop.accounting import DEFAULT_RATE_TABLE
from agentloop.machine import (
    ANSWER_CONFIDENCE,
    FALLBACK_ANSWER,
    FALLBACK_CONFIDENCE,
    MAX_STEPS_MESSAGE,
    TOOL_CALL_CONFIDENCE,
    Advance,
    Cancel,
    DecisionReceived,
    Emit,
    ExecuteTools,
    Fail,
    MachineSettings,
    MachineState,
    NotifyStep,
    RequestDecision,
    Resume,
    ToolOutcome,
    ToolsSettled,
    classify_decision,
    pending_work,
    summarize_observations,
    transition,
)
from agentloop.types import SystemMessage, ToolMessage, UserMessage

from conftest import answer, call, tool_calls

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)
SETTINGS = MachineSettings(model_id="gpt-4o", rates=DEFAULT_RATE_TABLE)


def at(ms: int) -> datetime:
    return T0 + timedelta(milliseconds=ms)


def fresh(max_steps: int = 3) -> MachineState:
    loop = LoopState(id="loop-1", agent_id="a", prompt="hi", max_steps=max_steps, started_at=T0)
    return MachineState(loop=loop, conversation=(SystemMessage("sys"), UserMessage("hi")))


def update_types(effects) -> list[str]:
    return [e.update.type for e in effects if isinstance(e, Emit)]


def run_to_tools(state, completion, settings=SETTINGS):
    t1 = transition(state, Advance("s1", at(0)), settings)
    return transition(t1.state, DecisionReceived(completion, at(10)), settings)


class TestClassifyDecision:
    """Test decision classification from a completion."""

    def test_tool_calls_win_over_text(self):
        decision = classify_decision(tool_calls(call("search"), content="Let me look"))
        assert decision.type is DecisionType.TOOL_CALL
        assert decision.confidence == TOOL_CALL_CONFIDENCE
        assert decision.reasoning == "Let me look"

    def test_tool_call_default_reasoning(self):
        decision = classify_decision(tool_calls(call("search")))
        assert decision.reasoning == "Executing tools"

    def test_text_is_answer(self):
        decision = classify_decision(answer("Paris"))
        assert decision.type is DecisionType.ANSWER
        assert decision.answer == "Paris"
        assert decision.confidence == ANSWER_CONFIDENCE

    def test_empty_completion_falls_back(self):
        decision = classify_decision(CompletionResult())
        assert decision.type is DecisionType.ANSWER
        assert decision.answer == FALLBACK_ANSWER
        assert decision.confidence == FALLBACK_CONFIDENCE

    def test_confirmation_only_marks_tool_calls(self):
        assert classify_decision(answer("x"), requires_confirmation=True).requires_confirmation is False
        assert classify_decision(tool_calls(call("a")), requires_confirmation=True).requires_confirmation


class TestAdvance:
    """Test starting a step."""

    def test_starts_step_and_requests_decision(self):
        result = transition(fresh(), Advance("s1", at(0)), SETTINGS)

        assert result.state.loop.current_step == 1
        assert result.state.active.number == 1
        assert update_types(result.effects) == ["step_start"]
        assert isinstance(result.effects[-1], RequestDecision)
        assert len(result.effects[-1].messages) == 2

    def test_step_limit_fails_loop(self):
        state = fresh(max_steps=1)
        state = run_to_tools(state, tool_calls(call("search"))).state
        state = transition(state, ToolsSettled((ToolOutcome(call("search"), True, "r"),), at(20)), SETTINGS).state

        result = transition(state, Advance("s2", at(30)), SETTINGS)

        assert result.state.loop.status is LoopStatus.FAILED
        assert result.state.loop.error == MAX_STEPS_MESSAGE
        assert result.state.loop.completed_at == at(30)
        assert update_types(result.effects) == ["error"]
        assert result.effects[0].update.code == "MAX_STEPS_EXCEEDED"

    def test_awaiting_confirmation_rejects_advance(self):
        settings = MachineSettings(model_id="gpt-4o", rates=DEFAULT_RATE_TABLE, require_confirmation=True)
        state = run_to_tools(fresh(), tool_calls(call("search")), settings).state

        with pytest.raises(InvalidStateError):
            transition(state, Advance("s2", at(20)), settings)

    def test_terminal_state_is_inert(self):
        state = transition(fresh(), Cancel(at(0)), SETTINGS).state
        result = transition(state, Advance("s1", at(1)), SETTINGS)
        assert result.state is state
        assert result.effects == ()


class TestDecisionReceived:
    """Test folding a decision into the state."""

    def test_answer_completes_loop(self):
        result = run_to_tools(fresh(), answer("42"))
        loop = result.state.loop

        assert loop.status is LoopStatus.COMPLETED
        assert loop.result.answer == "42"
        assert loop.completed_at == at(10)
        assert len(loop.steps) == 1
        assert loop.steps[0].synthesis.summary == "Final answer provided"
        assert loop.steps[0].synthesis.should_continue is False
        assert loop.steps[0].duration_ms == 10
        assert update_types(result.effects) == ["reasoning", "decision", "step_complete", "answer"]
        assert any(isinstance(e, NotifyStep) for e in result.effects)

    def test_usage_accumulates_once_per_plan(self):
        loop = run_to_tools(fresh(), answer("42", prompt_tokens=100, completion_tokens=20)).state.loop
        assert loop.usage.llm_calls == 1
        assert loop.usage.total_tokens == 120
        assert loop.usage.estimated_cost > 0

    def test_tool_call_requests_execution(self):
        calls = (call("search", q="a"), call("fetch", url="b"))
        result = run_to_tools(fresh(), tool_calls(*calls))

        assert result.state.loop.status is LoopStatus.RUNNING
        assert result.state.loop.steps == ()
        assert update_types(result.effects) == ["reasoning", "decision", "tools_start"]
        execute = result.effects[-1]
        assert isinstance(execute, ExecuteTools)
        assert execute.tool_calls == calls

    def test_hidden_reasoning(self):
        settings = MachineSettings(model_id="gpt-4o", rates=DEFAULT_RATE_TABLE, show_reasoning=False)
        result = run_to_tools(fresh(), answer("secret thoughts"), settings)
        reasoning = result.effects[0].update
        assert reasoning.type == "reasoning"
        assert reasoning.content is None

    def test_confirmation_pauses_without_executing(self):
        settings = MachineSettings(model_id="gpt-4o", rates=DEFAULT_RATE_TABLE, require_confirmation=True)
        result = run_to_tools(fresh(), tool_calls(call("delete")), settings)
        loop = result.state.loop

        assert loop.status is LoopStatus.AWAITING_CONFIRMATION
        assert loop.completed_at is None
        assert loop.steps[0].action.tool_calls == (call("delete"),)
        assert loop.steps[0].observations == ()
        assert not any(isinstance(e, ExecuteTools) for e in result.effects)
        assert update_types(result.effects)[-1] == "step_complete"

    def test_per_tool_confirmation(self):
        settings = MachineSettings(
            model_id="gpt-4o", rates=DEFAULT_RATE_TABLE, confirm_tools=frozenset({"delete"})
        )
        paused = run_to_tools(fresh(), tool_calls(call("search"), call("delete")), settings)
        assert paused.state.loop.status is LoopStatus.AWAITING_CONFIRMATION

        free = run_to_tools(fresh(), tool_calls(call("search")), settings)
        assert free.state.loop.status is LoopStatus.RUNNING

    def test_ignored_after_cancel(self):
        state = transition(fresh(), Advance("s1", at(0)), SETTINGS).state
        state = transition(state, Cancel(at(5)), SETTINGS).state
        result = transition(state, DecisionReceived(answer("late"), at(10)), SETTINGS)
        assert result.state is state
        assert result.state.loop.usage.llm_calls == 0


class TestToolsSettled:
    """Test folding tool outcomes into a step."""

    def test_observations_in_request_order(self):
        calls = (call("a"), call("b"), call("c"))
        state = run_to_tools(fresh(), tool_calls(*calls)).state
        outcomes = (
            ToolOutcome(calls[0], True, "A", duration_ms=30),
            ToolOutcome(calls[1], False, error="boom", duration_ms=5),
            ToolOutcome(calls[2], True, {"k": 1}, duration_ms=1),
        )
        result = transition(state, ToolsSettled(outcomes, at(50)), SETTINGS)
        step = result.state.loop.steps[0]

        assert [o.source for o in step.observations] == ["a", "b", "c"]
        assert step.observations[1].type is ObservationType.ERROR
        assert step.observations[1].content == "Error: boom"
        assert step.observations[2].data == {"k": 1}
        assert step.observations[2].content == '{\n  "k": 1\n}'
        assert step.synthesis.next_step_hint == "Some tools failed, consider alternative approaches"
        assert step.synthesis.should_continue is True
        assert step.duration_ms == 50
        assert update_types(result.effects) == ["tools_complete", "step_complete"]

    def test_conversation_gets_call_and_result_pairs(self):
        calls = (call("a", call_id="1"), call("b", call_id="2"))
        state = run_to_tools(fresh(), tool_calls(*calls)).state
        outcomes = (ToolOutcome(calls[0], True, "A"), ToolOutcome(calls[1], False, error="nope"))
        conversation = transition(state, ToolsSettled(outcomes, at(20)), SETTINGS).state.conversation

        added = conversation[2:]
        assert [m.role for m in added] == ["assistant", "tool", "assistant", "tool"]
        assert added[0].tool_calls == (calls[0],)
        assert isinstance(added[3], ToolMessage)
        assert added[3].tool_call_id == "2"
        assert added[3].content == "Error: nope"

    def test_all_success_hint(self):
        state = run_to_tools(fresh(), tool_calls(call("a"))).state
        step = transition(
            state, ToolsSettled((ToolOutcome(call("a"), True, "ok"),), at(1)), SETTINGS
        ).state.loop.steps[0]
        assert step.synthesis.next_step_hint == "Continue processing with gathered information"
        assert step.synthesis.summary == "[a] ✓ ok"

    def test_discarded_after_cancel(self):
        state = run_to_tools(fresh(), tool_calls(call("a"))).state
        state = transition(state, Cancel(at(15)), SETTINGS).state
        result = transition(state, ToolsSettled((ToolOutcome(call("a"), True, "ok"),), at(20)), SETTINGS)

        assert result.state.loop.status is LoopStatus.CANCELLED
        assert result.state.loop.steps == ()
        assert result.effects == ()


class TestResume:
    """Test leaving the confirmation pause."""

    settings = MachineSettings(model_id="gpt-4o", rates=DEFAULT_RATE_TABLE, require_confirmation=True)

    def paused(self):
        return run_to_tools(fresh(), tool_calls(call("delete", path="/tmp/x")), self.settings).state

    def test_resume_outside_pause_raises(self):
        state = fresh()
        with pytest.raises(InvalidStateError) as exc:
            transition(state, Resume(approved=True, at=at(0)), self.settings)
        assert exc.value.status == "running"

    def test_approved_executes_recorded_calls(self):
        result = transition(self.paused(), Resume(approved=True, at=at(100)), self.settings)

        assert result.state.loop.status is LoopStatus.RUNNING
        assert update_types(result.effects) == ["tools_start"]
        assert result.effects[-1].tool_calls == (call("delete", path="/tmp/x"),)

    def test_approved_step_is_replaced_not_appended(self):
        state = transition(self.paused(), Resume(approved=True, at=at(100)), self.settings).state
        state = transition(
            state, ToolsSettled((ToolOutcome(call("delete", path="/tmp/x"), True, "done"),), at(120)), self.settings
        ).state

        assert len(state.loop.steps) == 1
        assert state.loop.steps[0].step_number == 1
        assert state.loop.steps[0].observations[0].content == "done"

    def test_rejected_with_feedback(self):
        result = transition(
            self.paused(), Resume(approved=False, at=at(100), feedback="Do not delete"), self.settings
        )
        loop = result.state.loop

        assert loop.status is LoopStatus.RUNNING
        feedback = loop.steps[0].observations[0]
        assert feedback.type is ObservationType.HUMAN_FEEDBACK
        assert feedback.source == "human"
        assert result.state.conversation[-1] == UserMessage("[Human Feedback]: Do not delete")
        assert not any(isinstance(e, ExecuteTools) for e in result.effects)

    def test_rejected_without_feedback(self):
        result = transition(self.paused(), Resume(approved=False, at=at(100)), self.settings)
        assert result.state.loop.steps[0].observations == ()
        assert result.state.loop.steps[0].synthesis.summary == "Tool calls rejected"


class TestCancelAndFail:
    """Test terminal transitions."""

    def test_cancel_sets_completed_at(self):
        result = transition(fresh(), Cancel(at(7)), SETTINGS)
        assert result.state.loop.status is LoopStatus.CANCELLED
        assert result.state.loop.completed_at == at(7)
        assert result.effects == ()

    def test_cancel_is_idempotent(self):
        first = transition(fresh(), Cancel(at(7)), SETTINGS).state
        second = transition(first, Cancel(at(9)), SETTINGS).state
        assert second is first

    def test_fail_emits_error(self):
        state = transition(fresh(), Advance("s1", at(0)), SETTINGS).state
        result = transition(state, Fail("service down", at(5), "DECISION_SERVICE_ERROR"), SETTINGS)

        assert result.state.loop.status is LoopStatus.FAILED
        assert result.state.loop.error == "service down"
        update = result.effects[0].update
        assert (update.type, update.code, update.step) == ("error", "DECISION_SERVICE_ERROR", 1)


class TestPendingWork:
    """Outstanding request of a step left in flight."""

    def test_idle_loop_has_none(self):
        assert pending_work(fresh()) == ()

    def test_started_step_asks_for_decision_again(self):
        state = transition(fresh(), Advance("s1", at(0)), SETTINGS).state
        assert pending_work(state) == (RequestDecision(state.conversation),)

    def test_planned_step_runs_tools_again(self):
        state = run_to_tools(fresh(), tool_calls(call("search"), call("fetch"))).state
        (effect,) = pending_work(state)
        assert isinstance(effect, ExecuteTools)
        assert effect.step_number == 1
        assert [c.name for c in effect.tool_calls] == ["search", "fetch"]

    def test_cancelled_loop_has_none(self):
        state = transition(fresh(), Advance("s1", at(0)), SETTINGS).state
        state = transition(state, Cancel(at(5)), SETTINGS).state
        assert pending_work(state) == ()


def test_summary_truncates_content():
    from agentloop.types import Observation

    obs = Observation(ObservationType.TOOL_RESULT, "x" * 300, "long", T0, True)
    assert summarize_observations((obs,)) == "[long] ✓ " + "x" * 100


def test_usage_tokens_recorded_on_plan():
    completion = CompletionResult(content="ok", usage=TokenUsage(3, 4, 7))
    step = run_to_tools(fresh(), completion).state.loop.steps[0]
    assert step.plan.tokens_used == 7
    assert step.plan.reasoning == "ok"
