"""
Graph Construction
==================
Assembles the agent state machine from nodes and routing functions and runs
one conversational turn through it.

Architecture:

    START
      │
      ▼
    guard_input ──── unsafe ──► block_unsafe_content ──► END
      │
      │ safe / error
      ▼
    model ─────────────────────────────────────────────► END (final answer)
      │ tool calls                                 ▲
      ▼                                            │
    tools ─────────────────────────────────────────┘  (loops back to model)

Checkpointing:
  State is loaded from the checkpointer at turn start and written back after
  the input is appended and after every node. An interrupted turn keeps
  everything its completed steps produced. Tool calls it left unanswered
  are closed with error ToolMessages when the next turn on the thread starts.

Streaming:
  astream_events() runs the turn as a producer task that pushes GraphEvents
  onto a queue; the caller consumes them in order. Closing the iterator, or
  setting the `cancel` event, cancels the producer at its next await.

Concurrency:
  Turns on different thread ids are independent. Turns on the same thread id
  are NOT serialised here; the last checkpoint write wins.
"""
import asyncio
import logging
from typing import AsyncIterator, Awaitable, Callable, Sequence

from langchain_core.messages import BaseMessage
from langchain_core.tools import BaseTool

from .checkpointing import CheckpointStore, memory_checkpointer
from .errors import StepBudgetExceeded
from .guardrails import LlamaGuard
from .model import TokenCallback
from .nodes import (
    NodeContext,
    block_unsafe_content,
    build_interrupted_tool_messages,
    create_guard_input_node,
    create_model_node,
    create_tools_node,
)
from .providers import AgentConfig
from .routing import (
    BLOCK_UNSAFE_CONTENT,
    END,
    GUARD_INPUT,
    MODEL,
    TOOLS,
    route_after_block,
    route_after_guard_input,
    route_after_model,
    route_after_tools,
)
from .state import AgentState, GraphEvent, RunContext, apply_update
from .tools import ToolRegistry

logger = logging.getLogger(__name__)

StepCallback = Callable[[str, list[BaseMessage]], Awaitable[None]]

_STREAM_END = object()


class AgentGraph:
    """
    The compiled agent graph.

    Args:
        config:       Chat models and the step budget.
        guard:        Safety classifier used by guard_input and model.
        registry:     Tools bound to the model and run by the tools node.
        checkpointer: Where per-thread state lives.
    """

    def __init__(
        self,
        config: AgentConfig,
        guard: LlamaGuard,
        registry: ToolRegistry,
        checkpointer: CheckpointStore,
    ):
        self.checkpointer = checkpointer
        self.recursion_limit = config.recursion_limit
        self._nodes = {
            GUARD_INPUT:          create_guard_input_node(guard),
            BLOCK_UNSAFE_CONTENT: block_unsafe_content,
            MODEL:                create_model_node(config, guard, registry),
            TOOLS:                create_tools_node(registry),
        }
        self._routes = {
            GUARD_INPUT:          route_after_guard_input,
            BLOCK_UNSAFE_CONTENT: route_after_block,
            MODEL:                route_after_model,
            TOOLS:                route_after_tools,
        }

    async def aget_state(self, thread_id: str) -> AgentState | None:
        return await self.checkpointer.aget(thread_id)

    async def _run(
        self,
        messages: Sequence[BaseMessage],
        run: RunContext,
        on_token: TokenCallback | None = None,
        on_step: StepCallback | None = None,
        cancel: asyncio.Event | None = None,
    ) -> AgentState:
        state = await self.checkpointer.aget(run.thread_id) or AgentState()
        interrupted = build_interrupted_tool_messages(state.messages)
        if interrupted:
            logger.warning(
                "[graph] thread=%s closing %d interrupted tool call(s)", run.thread_id, len(interrupted)
            )
        state = apply_update(state, {"messages": [*interrupted, *messages], "is_last_step": False})
        await self.checkpointer.aput(run.thread_id, state)

        ctx = NodeContext(run=run, on_token=on_token)
        node = GUARD_INPUT
        step = 0

        while node != END:
            if cancel is not None and cancel.is_set():
                logger.info("[graph] thread=%s cancelled before %s", run.thread_id, node)
                break

            step += 1
            if step > self.recursion_limit:
                raise StepBudgetExceeded(
                    f"Recursion limit of {self.recursion_limit} reached without hitting a stop condition"
                )
            state = apply_update(state, {"is_last_step": step == self.recursion_limit})

            update = await self._nodes[node](state, ctx)
            state = apply_update(state, update)
            await self.checkpointer.aput(run.thread_id, state)
            logger.debug("[graph] thread=%s step=%d node=%s", run.thread_id, step, node)

            if on_step is not None:
                await on_step(node, list(update.get("messages", [])))
            node = self._routes[node](state)

        return state

    async def ainvoke(self, messages: Sequence[BaseMessage], run: RunContext) -> AgentState:
        """Run one full turn and return the final state."""
        return await self._run(messages, run)

    async def astream_events(
        self,
        messages: Sequence[BaseMessage],
        run: RunContext,
        *,
        stream_tokens: bool = True,
        cancel: asyncio.Event | None = None,
    ) -> AsyncIterator[GraphEvent]:
        """
        Run one turn, yielding GraphEvents as they happen.

        Token events are only produced when stream_tokens is True.
        Exceptions from the turn are re-raised after the events that preceded
        them have been yielded.
        """
        queue: asyncio.Queue = asyncio.Queue()

        async def on_token(text: str) -> None:
            await queue.put(GraphEvent(kind="token", node=MODEL, run_id=run.run_id, content=text))

        async def on_step(node: str, new_messages: list[BaseMessage]) -> None:
            await queue.put(GraphEvent(kind="step", node=node, run_id=run.run_id, messages=new_messages))

        async def produce() -> None:
            try:
                await self._run(messages, run, on_token if stream_tokens else None, on_step, cancel)
            finally:
                queue.put_nowait(_STREAM_END)

        producer = asyncio.create_task(produce())
        watcher = asyncio.create_task(_cancel_when_set(cancel, producer)) if cancel is not None else None
        try:
            while True:
                item = await queue.get()
                if item is _STREAM_END:
                    break
                yield item

            await asyncio.wait({producer})
            if producer.cancelled():
                logger.info("[graph] thread=%s stream cancelled", run.thread_id)
                return
            exc = producer.exception()
            if exc is not None:
                raise exc
        finally:
            for task in (producer, watcher):
                if task is not None and not task.done():
                    task.cancel()


async def _cancel_when_set(cancel: asyncio.Event, task: asyncio.Task) -> None:
    await cancel.wait()
    task.cancel()


def build_graph(
    config: AgentConfig,
    guard: LlamaGuard,
    tools: Sequence[BaseTool],
    checkpointer: CheckpointStore | None = None,
) -> AgentGraph:
    """
    Build the agent graph for the given tools.

    Args:
        config:       AgentConfig from providers.build_agent_config().
        guard:        LlamaGuard (pass LlamaGuard(None) to disable screening).
        tools:        LangChain tools, e.g. from MultiServerMCPClient.get_tools().
        checkpointer: Any CheckpointStore. If None, falls back to an
                      in-process store (conversations are lost on restart).
    """
    if checkpointer is None:
        checkpointer = memory_checkpointer()
    return AgentGraph(config, guard, ToolRegistry(tools), checkpointer)
