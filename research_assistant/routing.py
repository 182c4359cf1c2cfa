"""
Routing Functions
=================
Pure functions that read AgentState and return a destination node name.
The graph runner calls these after each node to decide where execution goes.

Graph routing map:
  guard_input           → route_after_guard_input → "block_unsafe_content" | "model"
  block_unsafe_content  → END
  model                 → route_after_model       → "tools" | END
  tools                 → "model"
"""
from typing import Literal

from langchain_core.messages import AIMessage

from .errors import MessageShapeError
from .state import AgentState

GUARD_INPUT = "guard_input"
BLOCK_UNSAFE_CONTENT = "block_unsafe_content"
MODEL = "model"
TOOLS = "tools"
END = "__end__"


def route_after_guard_input(state: AgentState) -> Literal["block_unsafe_content", "model"]:
    """Only an UNSAFE verdict blocks. SAFE and ERROR both reach the model."""
    if state.safety is not None and state.safety.is_unsafe:
        return BLOCK_UNSAFE_CONTENT
    return MODEL


def route_after_model(state: AgentState) -> Literal["tools", "__end__"]:
    """Tool calls on the last message → run them; otherwise the turn is done."""
    last = state.messages[-1]
    if not isinstance(last, AIMessage):
        raise MessageShapeError(f"Expected AIMessage, got {type(last).__name__}")
    if last.tool_calls:
        return TOOLS
    return END


def route_after_block(state: AgentState) -> Literal["__end__"]:
    return END


def route_after_tools(state: AgentState) -> Literal["model"]:
    return MODEL
