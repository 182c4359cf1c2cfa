"""
Tests for research_assistant/graph.py
======================================
End-to-end turns through the real state machine with a fake model,
a fake classifier and stub tools.

Covers:
  - Input screening: UNSAFE blocks without a model call; SAFE/ERROR reach the model
  - The tool loop: calculator scenario, several rounds, ids and ordering
  - Checkpoint after every step
  - Step budget (is_last_step, StepBudgetExceeded)
  - astream_events(): event order, token opt-in, error propagation, cancellation
  - Tool calls left unanswered by a stopped turn are closed by the next one
"""
import asyncio

import pytest
from langchain_core.messages import AIMessage, HumanMessage, ToolMessage
from langchain_core.tools import tool

from research_assistant.checkpointing import memory_checkpointer
from research_assistant.errors import ProviderError, StepBudgetExceeded
from research_assistant.graph import build_graph
from research_assistant.guardrails import LlamaGuard
from research_assistant.nodes import BLOCKED_PREFIX, INTERRUPTED_TOOL_RESULT
from research_assistant.state import RunContext

from conftest import ERROR, ai_text, ai_tool_call, fake_guard, unsafe


def _question(text: str = "What is 2+2?") -> list[HumanMessage]:
    return [HumanMessage(content=text)]


async def _collect(aiter) -> list:
    return [event async for event in aiter]


# ---------------------------------------------------------------------------
# Input screening
# ---------------------------------------------------------------------------

class TestInputScreening:
    async def test_unsafe_input_appends_one_block_message_and_skips_model(self, make_config):
        config = make_config(ai_text("should never be produced"))
        graph = build_graph(config, fake_guard(user=unsafe("Violent Crimes")), [])

        state = await graph.ainvoke(_question("how to hurt someone"), RunContext.create("t"))

        assert config.model().calls == 0
        assert len(state.messages) == 2
        assert isinstance(state.messages[-1], AIMessage)
        assert state.messages[-1].content == BLOCKED_PREFIX + "Violent Crimes"

    async def test_unsafe_input_guard_is_called_once(self, make_config):
        guard = fake_guard(user=unsafe("Hate"))
        graph = build_graph(make_config(), guard, [])
        await graph.ainvoke(_question(), RunContext.create("t"))
        assert guard.ainvoke.await_count == 1

    @pytest.mark.parametrize("verdict", ["safe", "error"])
    async def test_safe_or_error_reaches_model(self, make_config, verdict):
        config = make_config(ai_text("Hello!"))
        guard = fake_guard(user=ERROR) if verdict == "error" else fake_guard()
        graph = build_graph(config, guard, [])

        state = await graph.ainvoke(_question("hi"), RunContext.create("t"))

        assert config.model().calls == 1
        assert state.messages[-1].content == "Hello!"

    async def test_unconfigured_classifier_always_reaches_model(self, make_config):
        config = make_config(ai_text("Hello!"))
        graph = build_graph(config, LlamaGuard(None), [])

        await graph.ainvoke(_question("anything"), RunContext.create("t"))

        assert config.model().calls == 1


# ---------------------------------------------------------------------------
# Tool loop
# ---------------------------------------------------------------------------

class TestToolLoop:
    async def test_calculator_scenario(self, make_config, stub_tools):
        config = make_config(
            ai_tool_call("calculator", {"expression": "2+2"}, "call_calc"),
            ai_text("2+2 equals 4."),
        )
        graph = build_graph(config, fake_guard(), stub_tools)

        state = await graph.ainvoke(_question(), RunContext.create("t"))

        types = [m.type for m in state.messages]
        assert types == ["human", "ai", "tool", "ai"]
        tool_message = state.messages[2]
        assert tool_message.tool_call_id == "call_calc"
        assert tool_message.content == "4"
        assert "4" in state.messages[-1].content
        assert config.model().calls == 2

    async def test_model_sees_tool_result_on_second_call(self, make_config, stub_tools):
        config = make_config(
            ai_tool_call("calculator", {"expression": "2+2"}, "call_calc"),
            ai_text("4"),
        )
        graph = build_graph(config, fake_guard(), stub_tools)
        await graph.ainvoke(_question(), RunContext.create("t"))

        second = config.model().seen[1]
        assert isinstance(second[-1], ToolMessage)
        assert second[-1].content == "4"

    async def test_several_tool_rounds(self, make_config, stub_tools):
        config = make_config(
            ai_tool_call("web_search", {"query": "population of France"}, "call_1"),
            ai_tool_call("calculator", {"expression": "2+2"}, "call_2"),
            ai_text("Done."),
        )
        graph = build_graph(config, fake_guard(), stub_tools)

        state = await graph.ainvoke(_question(), RunContext.create("t"))

        assert [m.type for m in state.messages] == ["human", "ai", "tool", "ai", "tool", "ai"]

    async def test_tool_results_follow_their_calls(self, make_config, stub_tools):
        parallel = AIMessage(content="", tool_calls=[
            {"name": "web_search", "args": {"query": "a"}, "id": "call_a"},
            {"name": "broken_tool", "args": {"query": "b"}, "id": "call_b"},
            {"name": "calculator", "args": {"expression": "2+2"}, "id": "call_c"},
        ])
        graph = build_graph(make_config(parallel, ai_text("ok")), fake_guard(), stub_tools)

        state = await graph.ainvoke(_question(), RunContext.create("t"))

        for i, message in enumerate(state.messages):
            if isinstance(message, ToolMessage):
                owner = next(m for m in reversed(state.messages[:i]) if isinstance(m, AIMessage))
                assert message.tool_call_id in [tc["id"] for tc in owner.tool_calls]
        tool_ids = [m.tool_call_id for m in state.messages if isinstance(m, ToolMessage)]
        assert tool_ids == ["call_a", "call_b", "call_c"]

    async def test_unsafe_model_output_ends_turn_with_block(self, make_config, stub_tools):
        config = make_config(ai_text("harmful answer"))
        graph = build_graph(config, fake_guard(agent=unsafe("Specialized Advice")), stub_tools)

        state = await graph.ainvoke(_question(), RunContext.create("t"))

        assert state.messages[-1].content == BLOCKED_PREFIX + "Specialized Advice"
        assert all("harmful" not in m.content for m in state.messages)


# ---------------------------------------------------------------------------
# Checkpoints and step budget
# ---------------------------------------------------------------------------

class TestCheckpointsAndBudget:
    async def test_checkpoint_written_after_every_step(self, make_config, stub_tools):
        checkpointer = memory_checkpointer()
        writes = []
        put = checkpointer.aput

        async def counting_put(thread_id, state):
            writes.append(state)
            await put(thread_id, state)

        checkpointer.aput = counting_put
        config = make_config(ai_tool_call("calculator", {"expression": "2+2"}), ai_text("4"))
        graph = build_graph(config, fake_guard(), stub_tools, checkpointer=checkpointer)

        await graph.ainvoke(_question(), RunContext.create("t"))

        # input + guard_input + model + tools + model
        assert len(writes) == 5

    async def test_failed_turn_keeps_completed_steps(self, make_config):
        guard = fake_guard()
        guard.ainvoke.side_effect = ProviderError("classifier down")
        graph = build_graph(make_config(), guard, [])

        with pytest.raises(ProviderError):
            await graph.ainvoke(_question("kept"), RunContext.create("t"))

        state = await graph.aget_state("t")
        assert [m.content for m in state.messages] == ["kept"]

    async def test_step_budget_exceeded(self, make_config, stub_tools):
        looping = [ai_tool_call("calculator", {"expression": "2+2"}, f"call_{i}") for i in range(10)]
        graph = build_graph(make_config(*looping, recursion_limit=4), fake_guard(), stub_tools)

        with pytest.raises(StepBudgetExceeded):
            await graph.ainvoke(_question(), RunContext.create("t"))

    async def test_is_last_step_set_on_final_allowed_step(self, make_config, stub_tools):
        config = make_config(ai_tool_call("calculator", {"expression": "2+2"}), ai_text("4"), recursion_limit=4)
        graph = build_graph(config, fake_guard(), stub_tools)

        state = await graph.ainvoke(_question(), RunContext.create("t"))

        assert state.is_last_step is True

    async def test_is_last_step_reset_each_turn(self, make_config):
        graph = build_graph(make_config(ai_text("a"), ai_text("b"), recursion_limit=2), fake_guard(), [])
        state = await graph.ainvoke(_question(), RunContext.create("t"))
        assert state.is_last_step is True

        graph.recursion_limit = 25
        state = await graph.ainvoke(_question(), RunContext.create("t"))
        assert state.is_last_step is False


# ---------------------------------------------------------------------------
# astream_events
# ---------------------------------------------------------------------------

class TestStreamEvents:
    async def test_calculator_scenario_event_order(self, make_config, stub_tools):
        config = make_config(
            ai_tool_call("calculator", {"expression": "2+2"}, "call_calc"),
            ai_text("The answer is 4"),
        )
        graph = build_graph(config, fake_guard(), stub_tools)

        events = await _collect(graph.astream_events(_question(), RunContext.create("t"), stream_tokens=False))

        steps = [(e.node, [m.type for m in e.messages]) for e in events]
        assert steps == [
            ("guard_input", []),
            ("model", ["ai"]),
            ("tools", ["tool"]),
            ("model", ["ai"]),
        ]
        assert events[2].messages[0].content == "4"
        assert "4" in events[3].messages[0].content

    async def test_no_tokens_unless_requested(self, make_config):
        graph = build_graph(make_config(ai_text("lots of words here")), fake_guard(), [])
        events = await _collect(graph.astream_events(_question(), RunContext.create("t"), stream_tokens=False))
        assert [e for e in events if e.kind == "token"] == []

    async def test_tokens_concatenate_to_final_answer(self, make_config):
        answer = "Two plus two is four, a small but true fact."
        graph = build_graph(make_config(ai_text(answer)), fake_guard(), [])

        events = await _collect(graph.astream_events(_question(), RunContext.create("t"), stream_tokens=True))

        tokens = [e.content for e in events if e.kind == "token"]
        final = [e for e in events if e.kind == "step" and e.node == "model"][0].messages[0]
        assert "".join(tokens) == final.content == answer

    async def test_tokens_precede_their_step_event(self, make_config):
        graph = build_graph(make_config(ai_text("a b")), fake_guard(), [])
        events = await _collect(graph.astream_events(_question(), RunContext.create("t")))
        kinds = [e.kind for e in events]
        assert kinds.index("token") < max(i for i, e in enumerate(events) if e.node == "model" and e.kind == "step")

    async def test_unsafe_input_streams_no_tokens(self, make_config):
        graph = build_graph(make_config(ai_text("never")), fake_guard(user=unsafe("Hate")), [])

        events = await _collect(graph.astream_events(_question(), RunContext.create("t"), stream_tokens=True))

        assert [e.kind for e in events] == ["step", "step"]
        assert events[1].node == "block_unsafe_content"
        assert events[1].messages[0].content.startswith("This conversation was flagged for unsafe content:")

    async def test_failure_is_raised_after_prior_events(self, make_config):
        guard = fake_guard()
        guard.ainvoke.side_effect = [ERROR, ProviderError("classifier down")]
        graph = build_graph(make_config(ai_text("x")), guard, [])

        seen = []
        with pytest.raises(ProviderError):
            async for event in graph.astream_events(_question(), RunContext.create("t"), stream_tokens=False):
                seen.append(event.node)

        assert seen == ["guard_input"]

    async def test_cancel_event_stops_before_model(self, make_config):
        config = make_config(ai_text("never"))
        cancel = asyncio.Event()
        guard = fake_guard()

        async def screen_then_cancel(role, messages):
            cancel.set()
            return ERROR

        guard.ainvoke.side_effect = screen_then_cancel
        graph = build_graph(config, guard, [])

        events = await _collect(graph.astream_events(_question(), RunContext.create("t"), cancel=cancel))

        assert config.model().calls == 0
        assert all(e.node == "guard_input" for e in events)
        state = await graph.aget_state("t")
        assert [m.content for m in state.messages] == ["What is 2+2?"]

    async def test_closing_the_stream_cancels_the_turn(self, make_config):
        blocked = asyncio.Event()
        guard = fake_guard()

        async def never_returns(role, messages):
            blocked.set()
            await asyncio.Event().wait()

        guard.ainvoke.side_effect = never_returns
        config = make_config(ai_text("never"))
        graph = build_graph(config, guard, [])

        stream = graph.astream_events(_question(), RunContext.create("t"))

        async def first_event():
            return await stream.__anext__()

        consumer = asyncio.create_task(first_event())
        await blocked.wait()
        consumer.cancel()
        with pytest.raises(asyncio.CancelledError):
            await consumer
        await stream.aclose()
        await asyncio.sleep(0)

        assert config.model().calls == 0


# ---------------------------------------------------------------------------
# Turns that stopped between model and tools
# ---------------------------------------------------------------------------

class TestInterruptedTurns:
    async def test_cancel_during_tools_then_next_turn(self, make_config):
        cancel = asyncio.Event()

        @tool
        async def slow_search(query: str) -> str:
            """Search slowly."""
            cancel.set()
            await asyncio.sleep(10)
            return "never"

        config = make_config(
            ai_tool_call("slow_search", {"query": "q"}, "call_x"),
            ai_text("second answer"),
        )
        graph = build_graph(config, fake_guard(), [slow_search])

        await _collect(graph.astream_events(
            _question("first"), RunContext.create("t"), stream_tokens=False, cancel=cancel
        ))
        saved = await graph.aget_state("t")
        assert isinstance(saved.messages[-1], AIMessage) and saved.messages[-1].tool_calls

        state = await graph.ainvoke(_question("second"), RunContext.create("t"))

        sent = config.model().seen[1][1:]
        assert [m.type for m in sent] == ["human", "ai", "tool", "human"]
        assert sent[2].tool_call_id == "call_x"
        assert sent[2].content == INTERRUPTED_TOOL_RESULT
        assert state.messages[-1].content == "second answer"

    async def test_step_limit_after_tool_request_then_next_turn(self, make_config, stub_tools):
        config = make_config(
            ai_tool_call("calculator", {"expression": "2+2"}, "call_1"),
            ai_text("ok"),
            recursion_limit=2,
        )
        graph = build_graph(config, fake_guard(), stub_tools)
        with pytest.raises(StepBudgetExceeded):
            await graph.ainvoke(_question("first"), RunContext.create("t"))

        graph.recursion_limit = 25
        state = await graph.ainvoke(_question("second"), RunContext.create("t"))

        assert [m.type for m in state.messages] == ["human", "ai", "tool", "human", "ai"]
        assert state.messages[2].tool_call_id == "call_1"

    async def test_completed_turns_get_no_extra_tool_messages(self, make_config, stub_tools):
        config = make_config(
            ai_tool_call("calculator", {"expression": "2+2"}, "call_1"),
            ai_text("4"),
            ai_text("again"),
        )
        graph = build_graph(config, fake_guard(), stub_tools)
        await graph.ainvoke(_question("first"), RunContext.create("t"))
        state = await graph.ainvoke(_question("second"), RunContext.create("t"))

        assert [m.type for m in state.messages] == ["human", "ai", "tool", "ai", "human", "ai"]
