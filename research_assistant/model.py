"""
Model Client
============
Wraps a LangChain chat model with the registry's tools bound.

Two call styles:
  ainvoke()  — one request, returns the complete AIMessage
  astream()  — streams chunks, hands every plain-text delta to on_token,
               and returns the AIMessage rebuilt from all chunks
               (tool calls included)

Tool-call fragments never reach on_token: only str content and "text"
content blocks count as text. Everything else is reassembled at the message
level once the stream ends.
"""
import logging
from typing import Awaitable, Callable, Sequence

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage, AIMessageChunk, BaseMessage, message_chunk_to_message
from langchain_core.tools import BaseTool

from .errors import MessageShapeError, ProviderError

logger = logging.getLogger(__name__)

TokenCallback = Callable[[str], Awaitable[None]]


def text_delta(chunk: AIMessageChunk) -> str:
    """Return the plain text carried by a streamed chunk, skipping tool-call blocks."""
    content = chunk.content
    if isinstance(content, str):
        return content
    parts: list[str] = []
    for block in content:
        if isinstance(block, str):
            parts.append(block)
        elif block.get("type") == "text":
            parts.append(block.get("text", ""))
    return "".join(parts)


class ModelClient:
    def __init__(self, llm: BaseChatModel, tools: Sequence[BaseTool] = ()):
        self._llm = llm.bind_tools(list(tools)) if tools else llm

    async def ainvoke(self, messages: Sequence[BaseMessage], config: dict | None = None) -> AIMessage:
        try:
            response = await self._llm.ainvoke(list(messages), config=config)
        except Exception as exc:
            raise ProviderError(f"Model call failed: {exc}") from exc
        return _as_ai_message(response)

    async def astream(
        self,
        messages: Sequence[BaseMessage],
        on_token: TokenCallback,
        config: dict | None = None,
    ) -> AIMessage:
        gathered: AIMessageChunk | None = None
        try:
            async for chunk in self._llm.astream(list(messages), config=config):
                text = text_delta(chunk)
                if text:
                    await on_token(text)
                gathered = chunk if gathered is None else gathered + chunk
        except Exception as exc:
            raise ProviderError(f"Model stream failed: {exc}") from exc

        if gathered is None:
            raise ProviderError("Model stream ended without producing a message")
        return _as_ai_message(message_chunk_to_message(gathered))


def _as_ai_message(message: BaseMessage) -> AIMessage:
    if not isinstance(message, AIMessage):
        raise MessageShapeError(f"Expected AIMessage from model, got {type(message).__name__}")
    return message
