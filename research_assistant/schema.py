"""
Wire Schema
===========
Pydantic request/response models shared by the HTTP layer, the session and
the CLI demo.

ChatMessage is the closed wire representation of a conversation message.
ChatMessage.from_langchain() is the only way LangChain messages cross into it.
"""
from typing import Any, Literal

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, ToolMessage
from pydantic import BaseModel, Field

from .errors import UnsupportedMessageError


def convert_message_content_to_string(content: str | list[str | dict]) -> str:
    """Flatten LangChain message content (plain text or content blocks) to text."""
    if isinstance(content, str):
        return content
    text: list[str] = []
    for item in content:
        if isinstance(item, str):
            text.append(item)
        elif item.get("type") == "text":
            text.append(item.get("text", ""))
    return "".join(text)


class UserInput(BaseModel):
    message: str = Field(description="User input to the agent.", examples=["What is the weather in Tokyo?"])
    model: str | None = Field(default=None, description="Requested model (currently informational).")
    thread_id: str | None = Field(default=None, description="Conversation thread; generated when omitted.")


class StreamInput(UserInput):
    stream_tokens: bool = Field(default=True, description="Relay model text deltas as token events.")


class ChatMessage(BaseModel):
    type: Literal["human", "ai", "tool"]
    content: str
    tool_calls: list[dict[str, Any]] = Field(default_factory=list)
    tool_call_id: str | None = None
    run_id: str | None = None

    @classmethod
    def from_langchain(cls, message: BaseMessage) -> "ChatMessage":
        content = convert_message_content_to_string(message.content)
        if isinstance(message, HumanMessage):
            return cls(type="human", content=content)
        if isinstance(message, AIMessage):
            tool_calls = [
                {"name": tc["name"], "args": tc.get("args", {}), "id": tc.get("id")}
                for tc in message.tool_calls
            ]
            return cls(type="ai", content=content, tool_calls=tool_calls)
        if isinstance(message, ToolMessage):
            return cls(type="tool", content=content, tool_call_id=message.tool_call_id)
        raise UnsupportedMessageError(f"Unsupported message type: {type(message).__name__}")


class Feedback(BaseModel):
    run_id: str
    key: str
    score: float
    kwargs: dict[str, Any] = Field(default_factory=dict)


class FeedbackResponse(BaseModel):
    status: Literal["success"] = "success"


class ChatHistoryInput(BaseModel):
    thread_id: str


class ChatHistory(BaseModel):
    messages: list[ChatMessage]
