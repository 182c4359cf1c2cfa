"""
research_assistant — Safety-screened Research Agent Package
===========================================================

Package layout:

    config.py         Settings (env / .env) and get_settings()
    errors.py         AgentError hierarchy
    state.py          AgentState, SafetyAssessment, RunContext, GraphEvent
    schema.py         Wire models (ChatMessage, UserInput, Feedback, ...)
    prompts.py        System prompt and Llama Guard template + taxonomy
    providers.py      AgentConfig and chat model construction
    guardrails.py     LlamaGuard safety classifier
    model.py          ModelClient — single-shot and streamed model calls
    tools.py          ToolRegistry — tools by name, failures as text
    checkpointing.py  SQLite + memory checkpoint stores
    nodes.py          Graph node functions
    routing.py        Pure routing functions for conditional edges
    graph.py          AgentGraph and build_graph()
    session.py        AssistantSession — invoke / stream / feedback / history

Entry points for external callers:
"""
from .checkpointing import CheckpointStore, get_db_path, memory_checkpointer, sqlite_checkpointer
from .graph import AgentGraph, build_graph
from .guardrails import LlamaGuard
from .providers import AgentConfig
from .session import AssistantSession
from .state import AgentState, RunContext, SafetyAssessment, SafetyVerdict

__all__ = [
    "AssistantSession",
    "AgentGraph",
    "build_graph",
    "AgentConfig",
    "AgentState",
    "RunContext",
    "SafetyAssessment",
    "SafetyVerdict",
    "LlamaGuard",
    "CheckpointStore",
    "sqlite_checkpointer",
    "memory_checkpointer",
    "get_db_path",
]
