"""
MCP Server: Research Tools
==========================
Exposes the research assistant's tools via the Model Context Protocol.

Tools:
  - web_search  → DuckDuckGo text search, returns titles, links and snippets
  - calculator  → Evaluates a numeric expression with numexpr

Run standalone:   python mcp_server.py
Or via agent:     the session starts this as a subprocess (stdio transport).
"""
import json
import math

import numexpr
from ddgs import DDGS
from mcp.server.fastmcp import FastMCP

mcp = FastMCP("Research Tools")

MAX_SEARCH_RESULTS = 5


@mcp.tool()
def web_search(query: str) -> str:
    """
    Search the web with DuckDuckGo.

    Use this for current events, facts you are unsure of, or anything that
    needs a citation. Cite results with the links returned here.

    Args:
        query: What to search for
    """
    if not query.strip():
        return json.dumps({"error": "Search query must not be empty."})

    hits = DDGS().text(query, max_results=MAX_SEARCH_RESULTS)
    return json.dumps([
        {
            "title":   hit.get("title", ""),
            "link":    hit.get("href", ""),
            "snippet": hit.get("body", ""),
        }
        for hit in hits
    ])


@mcp.tool()
def calculator(expression: str) -> str:
    """
    Calculate a single mathematical expression using numexpr.

    Supports arithmetic, ** for powers, and functions like sqrt, sin, log.
    The constants pi and e are available.

    Args:
        expression: A numexpr expression, e.g. "37593 * 67" or "37593**(1/5)"
    """
    try:
        value = numexpr.evaluate(
            expression.strip(),
            global_dict={},
            local_dict={"pi": math.pi, "e": math.e},
        )
    except Exception as exc:
        return json.dumps({"error": f'calculator("{expression}") raised error: {exc}.'})

    result = value.item() if hasattr(value, "item") else value
    if isinstance(result, float) and result.is_integer():
        result = int(result)
    return str(result)


if __name__ == "__main__":
    mcp.run()
