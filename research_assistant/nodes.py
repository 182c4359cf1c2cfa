"""
Graph Nodes
===========
Each function here is one node of the agent graph.

Node responsibilities:
  guard_input           — screens the whole conversation as "User"
  block_unsafe_content  — answers a flagged conversation with a canned message
  model                 — calls the chat model, then screens its answer as "Agent"
  tools                 — runs every tool call of the last AIMessage

Design principle: nodes are pure state transformers.
They read AgentState, return a dict of updates, and never decide where the
graph goes next — routing is handled by the functions in routing.py.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Sequence

from langchain_core.messages import AIMessage, BaseMessage, SystemMessage, ToolMessage

from .errors import MessageShapeError
from .guardrails import LlamaGuard
from .model import ModelClient, TokenCallback
from .prompts import system_prompt
from .providers import AgentConfig
from .state import AgentState, RunContext, SafetyAssessment
from .tools import ToolRegistry

logger = logging.getLogger(__name__)

BLOCKED_PREFIX = "This conversation was flagged for unsafe content: "
INTERRUPTED_TOOL_RESULT = "Error: tool call interrupted before it returned a result."


@dataclass
class NodeContext:
    run: RunContext
    # Set when the caller streams tokens; the model node then streams too.
    on_token: TokenCallback | None = None


def blocked_message(safety: SafetyAssessment) -> AIMessage:
    return AIMessage(content=BLOCKED_PREFIX + ", ".join(safety.unsafe_categories))


def build_interrupted_tool_messages(messages: Sequence[BaseMessage]) -> list[ToolMessage]:
    """
    Build an error ToolMessage for every unanswered tool_call of the last AIMessage.

    A turn stopped between the model and tools steps (cancelled stream,
    provider failure, step limit) leaves tool calls without results.
    Chat APIs reject a history like that, so the next turn closes them first.
    """
    for i in range(len(messages) - 1, -1, -1):
        message = messages[i]
        if isinstance(message, AIMessage):
            answered = {
                m.tool_call_id for m in messages[i + 1:] if isinstance(m, ToolMessage)
            }
            return [
                ToolMessage(content=INTERRUPTED_TOOL_RESULT, tool_call_id=tc["id"], name=tc["name"])
                for tc in message.tool_calls
                if tc["id"] not in answered
            ]
    return []


def create_guard_input_node(guard: LlamaGuard):
    async def guard_input(state: AgentState, ctx: NodeContext) -> dict:
        safety = await guard.ainvoke("User", state.messages)
        return {"safety": safety}

    return guard_input


async def block_unsafe_content(state: AgentState, ctx: NodeContext) -> dict:
    logger.info("[block] thread=%s categories=%s", ctx.run.thread_id, state.safety.unsafe_categories)
    return {"messages": [blocked_message(state.safety)]}


def create_model_node(config: AgentConfig, guard: LlamaGuard, registry: ToolRegistry):
    """
    Factory that returns the model node bound to the default model + tools.

    The requested model (RunContext.model) is not honoured: every turn uses
    config.default_model.
    """
    client = ModelClient(config.model(), registry.tools)

    async def model(state: AgentState, ctx: NodeContext) -> dict:
        if ctx.run.model and ctx.run.model != config.default_model:
            logger.info(
                "[model] requested=%s not honoured, using %s", ctx.run.model, config.default_model
            )

        messages = [SystemMessage(content=system_prompt()), *state.messages]
        run_config = {"metadata": {"run_id": ctx.run.run_id, "thread_id": ctx.run.thread_id}}
        if ctx.on_token is not None:
            response = await client.astream(messages, ctx.on_token, config=run_config)
        else:
            response = await client.ainvoke(messages, config=run_config)

        safety = await guard.ainvoke("Agent", [*state.messages, response])
        if safety.is_unsafe:
            # The flagged response is dropped, never stored.
            return {"messages": [blocked_message(safety)], "safety": safety}
        return {"messages": [response], "safety": safety}

    return model


def create_tools_node(registry: ToolRegistry):
    async def tools(state: AgentState, ctx: NodeContext) -> dict:
        last = state.messages[-1]
        if not isinstance(last, AIMessage):
            raise MessageShapeError(f"Expected AIMessage before tools, got {type(last).__name__}")

        calls = list(last.tool_calls)
        # Dispatched together, written back in call order.
        results = await asyncio.gather(
            *(registry.ainvoke(call["name"], call.get("args", {})) for call in calls)
        )
        return {
            "messages": [
                ToolMessage(content=result, tool_call_id=call["id"], name=call["name"])
                for call, result in zip(calls, results)
            ]
        }

    return tools
