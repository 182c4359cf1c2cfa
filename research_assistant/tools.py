"""
Tool Registry
=============
The fixed set of tools the model may call, addressed by name.

Tools arrive as LangChain BaseTool objects — in production from the MCP
tool server (mcp_server.py) via MultiServerMCPClient, in tests from plain
@tool functions. The registry does not care where they come from.

Tool failures are data: ainvoke() always returns text. An unknown name or
an exception inside the tool becomes an error string the model can read
and react to; the turn keeps going.
"""
import json
import logging
from typing import Any, Sequence

from langchain_core.tools import BaseTool

from .errors import ToolInvocationError
from .schema import convert_message_content_to_string

logger = logging.getLogger(__name__)


def _result_to_text(result: Any) -> str:
    if isinstance(result, tuple) and len(result) == 2:
        # content_and_artifact tools (MCP adapters): keep the content
        result = result[0]
    if isinstance(result, str):
        return result
    if isinstance(result, list):
        return convert_message_content_to_string(result)
    return json.dumps(result, default=str)


class ToolRegistry:
    def __init__(self, tools: Sequence[BaseTool]):
        self._tools: dict[str, BaseTool] = {t.name: t for t in tools}

    @property
    def tools(self) -> list[BaseTool]:
        """Tool declarations to bind to the chat model."""
        return list(self._tools.values())

    @property
    def names(self) -> list[str]:
        return list(self._tools)

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    async def _call(self, name: str, args: dict[str, Any]) -> str:
        tool = self._tools.get(name)
        if tool is None:
            raise ToolInvocationError(
                name, f"{name} is not a valid tool, try one of [{', '.join(self._tools)}]."
            )
        try:
            result = await tool.ainvoke(args)
        except Exception as exc:
            raise ToolInvocationError(name, f"{exc!r}") from exc
        return _result_to_text(result)

    async def ainvoke(self, name: str, args: dict[str, Any]) -> str:
        try:
            result = await self._call(name, args)
        except ToolInvocationError as exc:
            logger.warning("[tools] %s failed: %s", exc.tool_name, exc)
            return f"Error: {exc}\n Please fix your mistakes."
        logger.info("[tools] %s ok (%d chars)", name, len(result))
        return result
