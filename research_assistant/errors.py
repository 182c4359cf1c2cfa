"""
Error Types
===========
Every failure the agent can raise derives from AgentError.

Which errors end a turn:
  ClassifierParseError  — never escapes; the classifier maps it to ERROR
  ToolInvocationError   — never escapes; rendered into the tool result text
  MessageShapeError     — fatal to the turn
  ProviderError         — fatal to the turn, no retry
  StepBudgetExceeded    — fatal to the turn
  ThreadNotFoundError   — history lookup on a thread with no checkpoint
"""


class AgentError(Exception):
    """Base class for all research assistant errors."""


class ClassifierParseError(AgentError, ValueError):
    """The safety classifier returned text outside the safe/unsafe contract."""


class ToolInvocationError(AgentError):
    """A tool call failed or named a tool that is not registered."""

    def __init__(self, tool_name: str, message: str):
        super().__init__(message)
        self.tool_name = tool_name


class MessageShapeError(AgentError, TypeError):
    """A message of the wrong type sits where the graph requires another."""


class UnsupportedMessageError(MessageShapeError):
    """A LangChain message type with no wire representation."""


class ProviderError(AgentError):
    """The chat model or safety classifier call failed."""


class StepBudgetExceeded(AgentError, RecursionError):
    """A turn ran more graph steps than the configured recursion limit."""


class ThreadNotFoundError(AgentError, KeyError):
    """No checkpoint exists for the requested thread id."""

    def __init__(self, thread_id: str):
        super().__init__(thread_id)
        self.thread_id = thread_id

    def __str__(self) -> str:
        return f"No conversation found for thread '{self.thread_id}'"
