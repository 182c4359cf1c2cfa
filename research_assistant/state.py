"""
Agent State
===========
Defines the state that flows through every node of the graph, plus the
small value types the nodes exchange.

Nodes never mutate AgentState. They return a dict of updates and
apply_update() merges it:
  messages      — concatenated (append-only, never replaced)
  safety        — overwritten by each screening step
  is_last_step  — overwritten by the graph runner
"""
import uuid
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

from langchain_core.messages import BaseMessage, messages_from_dict, messages_to_dict


class SafetyVerdict(str, Enum):
    SAFE = "safe"
    UNSAFE = "unsafe"
    ERROR = "error"


@dataclass(frozen=True)
class SafetyAssessment:
    verdict: SafetyVerdict
    unsafe_categories: tuple[str, ...] = ()

    @classmethod
    def safe(cls) -> "SafetyAssessment":
        return cls(SafetyVerdict.SAFE)

    @classmethod
    def error(cls) -> "SafetyAssessment":
        return cls(SafetyVerdict.ERROR)

    @property
    def is_unsafe(self) -> bool:
        return self.verdict is SafetyVerdict.UNSAFE

    def to_dict(self) -> dict:
        return {"verdict": self.verdict.value, "unsafe_categories": list(self.unsafe_categories)}

    @classmethod
    def from_dict(cls, data: dict) -> "SafetyAssessment":
        return cls(SafetyVerdict(data["verdict"]), tuple(data.get("unsafe_categories", ())))


@dataclass(frozen=True)
class AgentState:
    messages: tuple[BaseMessage, ...] = ()
    safety: SafetyAssessment | None = None
    is_last_step: bool = False

    def to_dict(self) -> dict:
        return {
            "messages": messages_to_dict(list(self.messages)),
            "safety": self.safety.to_dict() if self.safety else None,
            "is_last_step": self.is_last_step,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "AgentState":
        safety = data.get("safety")
        return cls(
            messages=tuple(messages_from_dict(data.get("messages", []))),
            safety=SafetyAssessment.from_dict(safety) if safety else None,
            is_last_step=bool(data.get("is_last_step", False)),
        )


def apply_update(state: AgentState, update: dict[str, Any]) -> AgentState:
    """Merge a node's returned update into state using the field reducers."""
    changes: dict[str, Any] = {}
    if update.get("messages"):
        changes["messages"] = state.messages + tuple(update["messages"])
    if "safety" in update:
        changes["safety"] = update["safety"]
    if "is_last_step" in update:
        changes["is_last_step"] = update["is_last_step"]
    return replace(state, **changes) if changes else state


@dataclass(frozen=True)
class RunContext:
    """Per-invocation identifiers. Never persisted."""
    run_id: str
    thread_id: str
    model: str | None = None

    @classmethod
    def create(cls, thread_id: str | None = None, model: str | None = None) -> "RunContext":
        return cls(
            run_id=str(uuid.uuid4()),
            thread_id=thread_id or str(uuid.uuid4()),
            model=model,
        )


@dataclass
class GraphEvent:
    """
    One record on the streaming channel.

    kind="token" — a text delta from the model step (content set)
    kind="step"  — a node finished; messages holds what it appended
    """
    kind: str
    node: str
    run_id: str
    content: str = ""
    messages: list[BaseMessage] = field(default_factory=list)
