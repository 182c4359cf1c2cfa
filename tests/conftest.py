"""
pytest configuration for the research assistant test suite.

Sets sys.path so tests can import from the project root.
Provides fake chat models, a fake safety classifier and stub tools so no test
makes a real LLM, classifier, search or MCP call.

asyncio_mode = "auto" (pyproject.toml) means all async test functions are
collected as asyncio tests — no @pytest.mark.asyncio needed.
"""
import json
import os
import re
import sys
from typing import Any, Iterator
from unittest.mock import AsyncMock, MagicMock

import pytest
from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage, AIMessageChunk, BaseMessage
from langchain_core.outputs import ChatGeneration, ChatGenerationChunk, ChatResult
from langchain_core.tools import tool

# Ensure the project root is on sys.path so `import research_assistant`, `import api`
# and `import mcp_server` work
sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

# Tests never reach a provider; the classifier stays disabled unless a test injects one.
os.environ.setdefault("OPENAI_API_KEY", "test-key")
os.environ.pop("GROQ_API_KEY", None)
os.environ.pop("LANGCHAIN_API_KEY", None)

from research_assistant.guardrails import LlamaGuard  # noqa: E402
from research_assistant.providers import AgentConfig  # noqa: E402
from research_assistant.state import SafetyAssessment, SafetyVerdict  # noqa: E402


# ── Fake chat model ──────────────────────────────────────────────────────────

class FakeToolChatModel(BaseChatModel):
    """
    Replays scripted AIMessages, one per call, in order.

    Streaming splits the content on whitespace (keeping the whitespace) and
    sends tool calls as a final tool_call_chunks fragment, the way real
    providers do.
    """
    responses: list[AIMessage]
    index: int = 0
    seen: list[list[BaseMessage]] = []

    @property
    def _llm_type(self) -> str:
        return "fake-tool-chat"

    def bind_tools(self, tools, **kwargs):
        return self

    def _next(self, messages: list[BaseMessage]) -> AIMessage:
        self.seen.append(list(messages))
        response = self.responses[self.index]
        self.index += 1
        return response

    def _generate(self, messages, stop=None, run_manager=None, **kwargs) -> ChatResult:
        return ChatResult(generations=[ChatGeneration(message=self._next(messages))])

    def _stream(self, messages, stop=None, run_manager=None, **kwargs) -> Iterator[ChatGenerationChunk]:
        response = self._next(messages)
        for token in re.split(r"(\s)", response.content):
            if token:
                yield ChatGenerationChunk(message=AIMessageChunk(content=token))
        if response.tool_calls:
            yield ChatGenerationChunk(message=AIMessageChunk(
                content="",
                tool_call_chunks=[
                    {"name": tc["name"], "args": json.dumps(tc["args"]), "id": tc["id"], "index": i}
                    for i, tc in enumerate(response.tool_calls)
                ],
            ))

    @property
    def calls(self) -> int:
        return self.index


def ai_text(content: str) -> AIMessage:
    return AIMessage(content=content)


def ai_tool_call(name: str, args: dict[str, Any], call_id: str = "call_1") -> AIMessage:
    return AIMessage(content="", tool_calls=[{"name": name, "args": args, "id": call_id}])


# ── Fake classifier ──────────────────────────────────────────────────────────

SAFE = SafetyAssessment(SafetyVerdict.SAFE)
ERROR = SafetyAssessment(SafetyVerdict.ERROR)


def unsafe(*categories: str) -> SafetyAssessment:
    return SafetyAssessment(SafetyVerdict.UNSAFE, tuple(categories))


def fake_guard(user: SafetyAssessment = SAFE, agent: SafetyAssessment = SAFE) -> MagicMock:
    """A LlamaGuard stand-in returning fixed verdicts per role."""
    guard = MagicMock(spec=LlamaGuard)
    guard.ainvoke = AsyncMock(side_effect=lambda role, messages: user if role == "User" else agent)
    return guard


# ── Stub tools ───────────────────────────────────────────────────────────────

@tool
def calculator(expression: str) -> str:
    """Calculate a mathematical expression."""
    return "4" if expression.replace(" ", "") == "2+2" else "0"


@tool
def web_search(query: str) -> str:
    """Search the web."""
    return json.dumps([{"title": query, "link": "https://example.com", "snippet": "result"}])


@tool
def broken_tool(query: str) -> str:
    """Always fails."""
    raise ValueError("backend unavailable")


# ── Fixtures ─────────────────────────────────────────────────────────────────

@pytest.fixture
def stub_tools() -> list:
    return [web_search, calculator, broken_tool]


@pytest.fixture
def make_config():
    def _make(*responses: AIMessage, recursion_limit: int = 25) -> AgentConfig:
        llm = FakeToolChatModel(responses=list(responses))
        return AgentConfig(models={"fake-model": llm}, default_model="fake-model", recursion_limit=recursion_limit)
    return _make
