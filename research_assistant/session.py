"""
Assistant Session
=================
High-level turn service used by the HTTP API and the CLI demo.

Responsibilities:
  - Start the MCP tool server (stdio transport) and load its tools
  - Manage the checkpointer lifecycle via AsyncExitStack
  - Build and hold the agent graph
  - Map requests onto turns:
      · invoke   → run a turn to completion, return the last message
      · stream   → run a turn, relay message/token/error events as SSE lines
      · feedback → forward to LangSmith (or just log it)
      · history  → the persisted messages of a thread

Checkpointer modes:
  SQLite (default, durable)
    AssistantSession(db_path="agent_checkpoints.db")

  In-memory (ephemeral)
    AssistantSession(in_memory=True)

Turns on one thread id must not overlap; the session does not serialise them.
"""
import asyncio
import functools
import json
import logging
import sys
from contextlib import AsyncExitStack
from pathlib import Path
from typing import AsyncIterator, Sequence

from langchain_core.messages import HumanMessage
from langchain_core.tools import BaseTool
from langchain_mcp_adapters.client import MultiServerMCPClient
from langsmith import Client as LangSmithClient

from .checkpointing import get_db_path, memory_checkpointer, sqlite_checkpointer
from .config import Settings, get_settings
from .errors import ThreadNotFoundError, UnsupportedMessageError
from .graph import AgentGraph, build_graph
from .guardrails import LlamaGuard
from .providers import AgentConfig, build_agent_config, build_guard_model
from .schema import ChatHistory, ChatMessage, Feedback, FeedbackResponse, StreamInput, UserInput
from .state import RunContext

logger = logging.getLogger(__name__)

STREAM_DONE = "data: [DONE]\n\n"
_FEEDBACK_FIELDS = frozenset({"run_id", "key", "score"})


# ── Request helpers ─────────────────────────────────────────────────────────

def parse_input(user_input: UserInput) -> tuple[list[HumanMessage], RunContext]:
    """Turn a request into the turn's input messages and a fresh RunContext."""
    run = RunContext.create(thread_id=user_input.thread_id, model=user_input.model)
    return [HumanMessage(content=user_input.message)], run


def sse(payload: dict) -> str:
    """Format one server-sent event line."""
    return f"data: {json.dumps(payload)}\n\n"


def default_tools_server_path() -> str:
    return str(Path(__file__).resolve().parent.parent / "mcp_server.py")


# ── AssistantSession ────────────────────────────────────────────────────────

class AssistantSession:
    """
    Manages the agent's lifecycle.

    Args:
        db_path:      Path to the SQLite checkpoint database file.
                      Defaults to CHECKPOINT_DB_PATH env var or "agent_checkpoints.db".
        in_memory:    If True, use the in-memory checkpointer.
        tools:        Use these tools instead of starting the MCP tool server.
        agent_config: Use this AgentConfig instead of building one from settings.
        guard:        Use this classifier instead of building one from settings.

    Usage:
        session = AssistantSession()
        await session.start()
        reply = await session.invoke(UserInput(message="What is 2+2?"))
        await session.stop()
    """

    def __init__(
        self,
        db_path: str | None = None,
        in_memory: bool = False,
        tools: Sequence[BaseTool] | None = None,
        agent_config: AgentConfig | None = None,
        guard: LlamaGuard | None = None,
        settings: Settings | None = None,
    ):
        self._db_path      = db_path
        self._in_memory    = in_memory
        self._tools        = list(tools) if tools is not None else None
        self._agent_config = agent_config
        self._guard        = guard
        self._settings     = settings or get_settings()
        self._graph: AgentGraph | None = None
        self._exit_stack   = AsyncExitStack()

    @property
    def graph(self) -> AgentGraph:
        if self._graph is None:
            raise RuntimeError("AssistantSession.start() has not been called")
        return self._graph

    @property
    def ready(self) -> bool:
        return self._graph is not None

    async def start(self) -> None:
        """Open the checkpointer, load the tools, and build the graph."""
        # ── Checkpointer ──────────────────────────────────────────────────
        if self._in_memory:
            checkpointer = memory_checkpointer()
            logger.info("[session] Using in-memory checkpointer (ephemeral)")
        else:
            path = self._db_path or get_db_path()
            checkpointer = await self._exit_stack.enter_async_context(sqlite_checkpointer(path))
            logger.info("[session] Using SQLite checkpointer at: %s", path)

        # ── Tools ─────────────────────────────────────────────────────────
        tools = self._tools
        if tools is None:
            client = MultiServerMCPClient({
                "research": {
                    "command":   sys.executable,
                    "args":      [self._settings.tools_server_path or default_tools_server_path()],
                    "transport": "stdio",
                }
            })
            tools = await client.get_tools()

        # ── Graph ─────────────────────────────────────────────────────────
        agent_config = self._agent_config or build_agent_config(self._settings)
        guard        = self._guard or LlamaGuard(build_guard_model(self._settings))
        self._graph  = build_graph(agent_config, guard, tools, checkpointer=checkpointer)

        logger.info("[session] Ready. %d tools: %s", len(tools), [t.name for t in tools])

    async def stop(self) -> None:
        """Close the checkpointer connection."""
        await self._exit_stack.aclose()
        self._graph = None

    # ── Turn interface ──────────────────────────────────────────────────────

    async def invoke(self, user_input: UserInput) -> ChatMessage:
        """Run one turn to completion and return its last message."""
        messages, run = parse_input(user_input)
        state = await self.graph.ainvoke(messages, run)
        output = ChatMessage.from_langchain(state.messages[-1])
        output.run_id = run.run_id
        return output

    async def stream(
        self,
        user_input: StreamInput,
        cancel: asyncio.Event | None = None,
    ) -> AsyncIterator[str]:
        """
        Run one turn and yield SSE lines.

        Events:
          {"type": "message", "content": ChatMessage}  one per message a step produced
          {"type": "token",   "content": str}          only with stream_tokens
          {"type": "error",   "content": str}          conversion or turn failure
        Always ends with "data: [DONE]".
        """
        messages, run = parse_input(user_input)
        try:
            async for event in self.graph.astream_events(
                messages, run, stream_tokens=user_input.stream_tokens, cancel=cancel
            ):
                if event.kind == "step":
                    for message in event.messages:
                        try:
                            chat_message = ChatMessage.from_langchain(message)
                        except UnsupportedMessageError as exc:
                            logger.error("[session] Error parsing message: %s", exc)
                            yield sse({"type": "error", "content": f"Error parsing message: {exc}"})
                            continue
                        chat_message.run_id = run.run_id
                        yield sse({"type": "message", "content": chat_message.model_dump()})

                elif event.kind == "token":
                    yield sse({"type": "token", "content": event.content})
        except Exception as exc:
            logger.exception("[session] Turn failed for thread %s", run.thread_id)
            yield sse({"type": "error", "content": str(exc)})

        yield STREAM_DONE

    async def feedback(self, feedback: Feedback) -> FeedbackResponse:
        """
        Forward feedback to LangSmith when LANGCHAIN_API_KEY is set; always succeed.

        kwargs entries named like the explicit fields (run_id, key, score) are
        dropped. Forwarding failures are logged, not returned to the caller.
        """
        if self._settings.langchain_api_key:
            extra = {k: v for k, v in feedback.kwargs.items() if k not in _FEEDBACK_FIELDS}
            dropped = sorted(set(feedback.kwargs) - set(extra))
            if dropped:
                logger.warning("[feedback] Ignoring kwargs that clash with feedback fields: %s", dropped)

            try:
                client = LangSmithClient(api_key=self._settings.langchain_api_key)
                send = functools.partial(
                    client.create_feedback,
                    feedback.run_id,
                    key=feedback.key,
                    score=feedback.score,
                    **extra,
                )
                await asyncio.to_thread(send)
            except Exception:
                logger.exception("[feedback] Forwarding to LangSmith failed for run_id=%s", feedback.run_id)
        logger.info(
            "[feedback] run_id=%s key=%s score=%s", feedback.run_id, feedback.key, feedback.score
        )
        return FeedbackResponse()

    async def history(self, thread_id: str) -> ChatHistory:
        state = await self.graph.aget_state(thread_id)
        if state is None:
            raise ThreadNotFoundError(thread_id)
        return ChatHistory(messages=[ChatMessage.from_langchain(m) for m in state.messages])
